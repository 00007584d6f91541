"""
Unit tests: one-shot sweep job.

Validates:
- run_once sweeps through a standalone session and persists without a socket server
- --at replays a cycle at a fixed instant; a failed cycle exits non-zero
"""

import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.sql.dml import Insert

from services.tripcrew.jobs import sweep_once
from services.tripcrew.notifications.sweep import SweepResult
from services.tripcrew.tests.helpers.factories import make_obj, make_step

NOW = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


def _row(step, event_name: str):
    step.eventName = event_name
    return step


@pytest.fixture
def standalone(monkeypatch, mock_session):
    @asynccontextmanager
    async def fake_standalone_session():
        yield mock_session.mock

    monkeypatch.setattr(sweep_once, "standalone_session", fake_standalone_session)
    monkeypatch.setattr(sweep_once.settings, "socketio_message_queue", "")
    return mock_session


@pytest.mark.asyncio
async def test_run_once_persists_without_live_push(standalone):
    step = make_obj(make_step(id=5, event_id=1, scheduledTime=NOW + timedelta(minutes=10)))
    standalone.returns_rows([_row(step, "Lisbon")]).returns_many([9])

    result = await sweep_once.run_once(NOW)

    assert result.now == NOW
    assert result.created == 1
    assert result.push_failures == 0
    assert sum(isinstance(s, Insert) for s in standalone.statements) == 1


@pytest.mark.asyncio
async def test_run_once_with_nothing_due(standalone):
    result = await sweep_once.run_once(NOW)
    assert result.steps_due == 0
    assert result.failed is False


def test_main_exits_non_zero_on_failed_cycle(monkeypatch, capsys):
    seen = {}

    async def fake_run_once(at=None):
        seen["at"] = at
        return SweepResult(now=at, failed=True)

    monkeypatch.setattr(sweep_once, "run_once", fake_run_once)
    monkeypatch.setattr(sys, "argv", ["sweep_once", "--at", "2026-05-01T09:00:00+00:00"])

    with pytest.raises(SystemExit) as exc_info:
        sweep_once.main()

    assert exc_info.value.code == 1
    assert seen["at"] == NOW
    assert "failed=True" in capsys.readouterr().out
