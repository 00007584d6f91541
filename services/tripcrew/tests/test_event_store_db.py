"""
Integration tests: EventStore on a real AsyncSession (SQLite via aiosqlite, foreign keys on).

Validates:
- Listing counts every active organizer of each event the caller belongs to
- Deleting an event takes its memberships and steps with it
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import event as sa_event
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from services.tripcrew.db.models import Base, EventMember, EventStep, User
from services.tripcrew.events.store import EventStore

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
async def session(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")

    @sa_event.listens_for(engine.sync_engine, "connect")
    def _enforce_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        session.add_all(
            [
                User(id=user_id, phone=f"+1555000000{user_id}", firstName=f"Traveller{user_id}", createdAt=NOW)
                for user_id in (1, 2, 3)
            ]
        )
        await session.commit()
        yield session
    await engine.dispose()


async def _count(session, column, event_id: int) -> int:
    result = await session.execute(select(func.count()).where(column == event_id))
    return result.scalar()


async def test_listing_counts_active_organizers(session):
    store = EventStore(session)
    lisbon = await store.create_event(1, name="Lisbon")
    joined = await store.membership.join_directly(lisbon["id"], 2)
    await store.membership.update_role(lisbon["id"], joined.member_id, "organizer")
    await store.membership.join_directly(lisbon["id"], 3)

    listed = await store.list_events(3)

    assert len(listed) == 1
    assert listed[0]["id"] == lisbon["id"]
    assert listed[0]["role"] == "member"
    assert listed[0]["organizerCount"] == 2
    assert await store.list_events(2) == [
        dict(listed[0], role="organizer", paymentStatus="pending", memberId=joined.member_id)
    ]


async def test_delete_takes_memberships_and_steps(session):
    store = EventStore(session)
    lisbon = await store.create_event(1, name="Lisbon")
    await store.create_step(lisbon["id"], name="Walking tour", scheduled_time=NOW)
    await store.membership.join_directly(lisbon["id"], 2)

    await store.delete_event(lisbon["id"])

    assert await _count(session, EventMember.eventId, lisbon["id"]) == 0
    assert await _count(session, EventStep.eventId, lisbon["id"]) == 0
    assert await store.list_events(1) == []
