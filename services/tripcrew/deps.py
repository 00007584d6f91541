"""
Shared router dependencies: caller identity, role checks, per-request services.

Identity comes from the upstream auth layer, which authenticates the user and
forwards their id as the X-User-Id header. This service never sees tokens.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.tripcrew.checkin.ledger import CheckInLedger
from services.tripcrew.db.models import EventMember, EventStep
from services.tripcrew.db.session import get_db
from services.tripcrew.directory import IdentityDirectory
from services.tripcrew.errors import Forbidden, NotFound, Unauthenticated
from services.tripcrew.events.store import EventStore
from services.tripcrew.membership.engine import MembershipEngine


async def current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> int:
    if x_user_id is None or not x_user_id.strip():
        raise Unauthenticated()
    try:
        user_id = int(x_user_id.strip())
    except ValueError:
        raise Unauthenticated("Invalid user identity.")
    if user_id <= 0:
        raise Unauthenticated("Invalid user identity.")
    request.state.user_id = user_id
    return user_id


# ---------------------------------------------------------------------------
# Per-request services
# ---------------------------------------------------------------------------


def get_directory(session: AsyncSession = Depends(get_db)) -> IdentityDirectory:
    return IdentityDirectory(session)


def get_membership_engine(
    session: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_directory),
) -> MembershipEngine:
    return MembershipEngine(session, directory)


def get_ledger(session: AsyncSession = Depends(get_db)) -> CheckInLedger:
    return CheckInLedger(session)


def get_event_store(
    session: AsyncSession = Depends(get_db),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> EventStore:
    return EventStore(session, engine)


# ---------------------------------------------------------------------------
# Role checks
# ---------------------------------------------------------------------------


async def _active_role(session: AsyncSession, event_id: int, user_id: int) -> Optional[str]:
    stmt = select(EventMember.role).where(
        and_(
            EventMember.eventId == event_id,
            EventMember.userId == user_id,
            EventMember.status == "active",
        )
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def _step_event_id(session: AsyncSession, step_id: int) -> int:
    result = await session.execute(select(EventStep.eventId).where(EventStep.id == step_id))
    event_id = result.scalars().first()
    if event_id is None:
        raise NotFound("Step not found.")
    return event_id


async def require_organizer(
    event_id: int,
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_db),
) -> int:
    if await _active_role(session, event_id, user_id) != "organizer":
        raise Forbidden("Access denied. Organizer role required.")
    return user_id


async def require_member(
    event_id: int,
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_db),
) -> int:
    if await _active_role(session, event_id, user_id) is None:
        raise Forbidden("Access denied. You are not a member of this event.")
    return user_id


async def require_step_organizer(
    step_id: int,
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_db),
) -> int:
    event_id = await _step_event_id(session, step_id)
    if await _active_role(session, event_id, user_id) != "organizer":
        raise Forbidden("Access denied. Organizer role required.")
    return user_id


async def require_step_member(
    step_id: int,
    user_id: int = Depends(current_user_id),
    session: AsyncSession = Depends(get_db),
) -> int:
    event_id = await _step_event_id(session, step_id)
    if await _active_role(session, event_id, user_id) is None:
        raise Forbidden("Access denied. You are not a member of this event.")
    return user_id
