"""
MockSASession -- AsyncSession stand-in driven by a queue of canned results.

Each execute() pops the next queued result, in call order, so a test
reads as the sequence of statements the unit under test issues:

    session = MockSASession()
    session.returns_one(event)            # select(Event)        -> scalars().first()
    session.returns_none()                # select(EventMember)  -> scalars().first() = None
    session.returns_scalar(41)            # insert ... returning -> scalar()
    session.returns_rowcount(1)           # update/delete        -> rowcount
    session.returns_row(member, user)     # select(A, B)         -> first()
    session.returns_rows([(m, u), ...])   # select(A, B)         -> all()
    session.raises(IntegrityError(...))   # next execute raises

An exhausted queue yields an empty result (no rows, rowcount 0).

Assert via:
    session.mock.commit.assert_awaited()
    session.mock.rollback.assert_awaited_once()
    session.statements                    # every statement passed to execute()
"""

from __future__ import annotations

from collections import deque
from typing import Any
from unittest.mock import AsyncMock, MagicMock

_UNSET = object()


class _ScalarsResult:
    def __init__(self, items: list[Any] | None, single: Any = _UNSET):
        self._items = items
        self._single = single

    def all(self) -> list[Any]:
        if self._items is not None:
            return list(self._items)
        if self._single is not _UNSET and self._single is not None:
            return [self._single]
        return []

    def first(self) -> Any | None:
        if self._single is not _UNSET:
            return self._single
        if self._items:
            return self._items[0]
        return None


class _ExecuteResult:
    def __init__(
        self,
        *,
        scalars_items: list[Any] | None = None,
        scalars_single: Any = _UNSET,
        rowcount: int | None = None,
        row: tuple | None = None,
        rows: list[tuple] | None = None,
        scalar_value: Any = _UNSET,
    ):
        self._scalars_items = scalars_items
        self._scalars_single = scalars_single
        self._rowcount = rowcount
        self._row = row
        self._rows = rows
        self._scalar_value = scalar_value

    def scalars(self) -> _ScalarsResult:
        return _ScalarsResult(self._scalars_items, self._scalars_single)

    @property
    def rowcount(self) -> int:
        return self._rowcount if self._rowcount is not None else 0

    def scalar(self) -> Any:
        if self._scalar_value is not _UNSET:
            return self._scalar_value
        return None

    def first(self) -> tuple | None:
        return self._row

    def all(self) -> list[tuple]:
        return self._rows if self._rows is not None else []


class _Raise:
    def __init__(self, exc: BaseException):
        self.exc = exc


class MockSASession:
    def __init__(self) -> None:
        self._queue: deque[_ExecuteResult | _Raise] = deque()
        self.statements: list[Any] = []
        self.mock = AsyncMock()
        self.mock.commit = AsyncMock()
        self.mock.rollback = AsyncMock()
        self.mock.close = AsyncMock()
        self.mock.flush = AsyncMock()
        self.mock.add = MagicMock()

        async def _execute_side_effect(statement, *args, **kwargs):
            self.statements.append(statement)
            if not self._queue:
                return _ExecuteResult()
            entry = self._queue.popleft()
            if isinstance(entry, _Raise):
                raise entry.exc
            return entry

        self.mock.execute = AsyncMock(side_effect=_execute_side_effect)

    @property
    def pending(self) -> int:
        """Queued results not yet consumed."""
        return len(self._queue)

    def returns_one(self, obj: Any) -> MockSASession:
        """Next execute() -> scalars().first() is obj."""
        self._queue.append(_ExecuteResult(scalars_single=obj))
        return self

    def returns_many(self, items: list[Any]) -> MockSASession:
        """Next execute() -> scalars().all() is items."""
        self._queue.append(_ExecuteResult(scalars_items=items))
        return self

    def returns_none(self) -> MockSASession:
        self._queue.append(_ExecuteResult())
        return self

    def returns_rowcount(self, count: int) -> MockSASession:
        self._queue.append(_ExecuteResult(rowcount=count))
        return self

    def returns_row(self, *values: Any) -> MockSASession:
        """Next execute() -> first() is the tuple of values."""
        self._queue.append(_ExecuteResult(row=values))
        return self

    def returns_rows(self, rows: list[tuple]) -> MockSASession:
        self._queue.append(_ExecuteResult(rows=rows))
        return self

    def returns_scalar(self, value: Any) -> MockSASession:
        """Next execute() -> scalar() is value (insert ... returning id)."""
        self._queue.append(_ExecuteResult(scalar_value=value))
        return self

    def raises(self, exc: BaseException) -> MockSASession:
        """Next execute() raises exc."""
        self._queue.append(_Raise(exc))
        return self
