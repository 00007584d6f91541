"""
Step reminder sweep.

Runs once per interval (60 s by default) inside the API process:

  1. select steps scheduled after `now`
  2. keep those inside their alert window:
         alertBeforeMinutes > 0  and  scheduledTime <= now + alertBeforeMinutes
  3. fan out to every member of the step's event (any role, any status)
  4. per (userId, stepId): skip if a Notification already exists, otherwise
     insert it and push a `notification` event to the user's channel

Idempotency: the existence check plus the unique (userId, stepId) constraint
guarantee at most one Notification per pair across any number of ticks.
Each insert commits on its own; a failed cycle is never rolled back as a batch.

Failure handling: any error inside a cycle is logged and ends that cycle.
Nothing is re-raised, there is no in-cycle retry and no backlog; the next
tick starts from scratch. A failed push does not undo the persisted row.

The sweep owns no connection of its own: it opens a session from the
injected factory per tick, and pushes through the injected PushSender.
`tick(now=...)` is the unit under test; `run_periodic()` is the timer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import and_, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.tripcrew.db.models import Event, EventMember, EventStep, Notification

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification"


class PushSender(Protocol):
    async def push_to_user(self, user_id: int, event: str, payload: dict[str, Any]) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_due(
    scheduled_time: datetime,
    alert_before_minutes: Optional[int],
    now: datetime,
) -> bool:
    """True when `now` is inside the step's alert window."""
    if not alert_before_minutes or alert_before_minutes <= 0:
        return False
    scheduled_time = _aware(scheduled_time)
    now = _aware(now)
    if scheduled_time <= now:
        return False
    return scheduled_time <= now + timedelta(minutes=alert_before_minutes)


def build_messages(step: Any, event_name: str) -> tuple[str, str, str]:
    """(title, persisted message, pushed message) for a step reminder."""
    title = f"Upcoming: {step.name}"
    stored = (
        f"{step.name} for {event_name} is scheduled at "
        f"{_aware(step.scheduledTime).isoformat()}. Location: {step.location or 'TBD'}"
    )
    pushed = f"{step.name} is coming up soon!"
    return title, stored, pushed


@dataclass
class SweepResult:
    now: datetime
    steps_due: int = 0
    created: int = 0
    already_notified: int = 0
    push_failures: int = 0
    failed: bool = False


class NotificationSweep:
    def __init__(
        self,
        session_factory: Callable[[], Any],
        push: PushSender,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.push = push
        self.clock = clock

    async def tick(self, now: Optional[datetime] = None) -> SweepResult:
        """Run one sweep cycle. Never raises (except on task cancellation)."""
        now = _aware(now or self.clock())
        result = SweepResult(now=now)
        try:
            async with self.session_factory() as session:
                await self._run_cycle(session, now, result)
        except Exception:
            result.failed = True
            logger.exception("notification_sweep_failed at=%s", now.isoformat())

        if result.created or result.failed:
            logger.info(
                "notification_sweep at=%s due=%d created=%d existing=%d push_failures=%d failed=%s",
                now.isoformat(),
                result.steps_due,
                result.created,
                result.already_notified,
                result.push_failures,
                result.failed,
            )
        return result

    async def _run_cycle(self, session: AsyncSession, now: datetime, result: SweepResult) -> None:
        # Column rows, not entities: they survive the rollback after a lost insert race.
        stmt = (
            select(
                EventStep.id,
                EventStep.eventId,
                EventStep.name,
                EventStep.location,
                EventStep.scheduledTime,
                EventStep.alertBeforeMinutes,
                Event.name.label("eventName"),
            )
            .join(Event, Event.id == EventStep.eventId)
            .where(EventStep.scheduledTime > now)
            .order_by(EventStep.scheduledTime.asc())
        )
        upcoming = (await session.execute(stmt)).all()

        for step in upcoming:
            if not is_due(step.scheduledTime, step.alertBeforeMinutes, now):
                continue
            result.steps_due += 1

            members_stmt = select(EventMember.userId).where(EventMember.eventId == step.eventId)
            user_ids = (await session.execute(members_stmt)).scalars().all()

            for user_id in dict.fromkeys(user_ids):
                await self._notify(session, step, step.eventName, user_id, now, result)

    async def _notify(
        self,
        session: AsyncSession,
        step: Any,
        event_name: str,
        user_id: int,
        now: datetime,
        result: SweepResult,
    ) -> None:
        existing_stmt = select(Notification.id).where(
            and_(Notification.userId == user_id, Notification.stepId == step.id)
        )
        if (await session.execute(existing_stmt)).scalars().first() is not None:
            result.already_notified += 1
            return

        title, stored_message, pushed_message = build_messages(step, event_name)
        stmt = insert(Notification).values(
            userId=user_id,
            eventId=step.eventId,
            stepId=step.id,
            title=title,
            message=stored_message,
            isRead=False,
            createdAt=now,
        )
        try:
            await session.execute(stmt)
            await session.commit()
        except IntegrityError:
            # Another writer got there between the check and the insert.
            await session.rollback()
            result.already_notified += 1
            return
        result.created += 1

        try:
            await self.push.push_to_user(
                user_id,
                NOTIFICATION_EVENT,
                {
                    "title": title,
                    "message": pushed_message,
                    "eventId": step.eventId,
                    "stepId": step.id,
                },
            )
        except Exception:
            result.push_failures += 1
            logger.exception("notification_push_failed user=%s step=%s", user_id, step.id)

    async def run_periodic(self, interval_s: float) -> None:
        """Tick every `interval_s` seconds until the task is cancelled."""
        logger.info("notification_sweep_started interval_s=%s", interval_s)
        try:
            while True:
                started = time.monotonic()
                await self.tick()
                elapsed = time.monotonic() - started
                await asyncio.sleep(max(interval_s - elapsed, 0.0))
        except asyncio.CancelledError:
            logger.info("notification_sweep_stopped")
            raise
