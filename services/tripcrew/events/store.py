"""
Event store adapter: events and their itinerary steps.

Events are owned by the event service; this adapter carries their whole
lifecycle (the creator gets an organizer membership) and keeps each step's
scheduledTime inside the event's [startDate, endDate] window when those
bounds are set, including when the event's own dates move.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.tripcrew.config import settings
from services.tripcrew.db.models import Event, EventMember, EventStep
from services.tripcrew.directory import IdentityDirectory
from services.tripcrew.errors import Forbidden, NotFound, StepOutOfBounds, ValidationFailed
from services.tripcrew.membership.engine import MembershipEngine

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return _aware(value).isoformat() if value is not None else None


def check_step_within_event(event: Event, scheduled_time: datetime) -> None:
    """Inclusive on both ends; an unset bound is open."""
    scheduled_time = _aware(scheduled_time)
    start = _aware(event.startDate)
    end = _aware(event.endDate)
    if start is not None and scheduled_time < start:
        raise StepOutOfBounds("Step cannot be scheduled before the event starts.")
    if end is not None and scheduled_time > end:
        raise StepOutOfBounds("Step cannot be scheduled after the event ends.")


def serialize_event(event: Event) -> dict[str, Any]:
    return {
        "id": event.id,
        "name": event.name,
        "description": event.description,
        "location": event.location,
        "startDate": _iso(event.startDate),
        "endDate": _iso(event.endDate),
        "isPaid": bool(event.isPaid),
        "price": float(event.price) if event.price is not None else None,
        "createdBy": event.createdBy,
    }


def serialize_step(step: EventStep) -> dict[str, Any]:
    return {
        "id": step.id,
        "eventId": step.eventId,
        "name": step.name,
        "description": step.description,
        "location": step.location,
        "scheduledTime": _iso(step.scheduledTime),
        "alertBeforeMinutes": step.alertBeforeMinutes,
    }


class EventStore:
    def __init__(self, session: AsyncSession, membership: Optional[MembershipEngine] = None):
        self.session = session
        self.membership = membership or MembershipEngine(session, IdentityDirectory(session))

    # -- events -------------------------------------------------------------

    async def get_event(self, event_id: int) -> Event:
        result = await self.session.execute(select(Event).where(Event.id == event_id))
        event = result.scalars().first()
        if event is None:
            raise NotFound("Event not found.")
        return event

    async def create_event(
        self,
        created_by: int,
        *,
        name: str,
        description: Optional[str] = None,
        location: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        is_paid: bool = False,
        price: Optional[Decimal] = None,
    ) -> dict[str, Any]:
        """Create an event and make its creator the first active organizer."""
        if not name or not name.strip():
            raise ValidationFailed("Event name is required.")
        start_date, end_date = _aware(start_date), _aware(end_date)
        if start_date is not None and end_date is not None and end_date < start_date:
            raise ValidationFailed("Event end date must be after its start date.")

        now = _now()
        values = dict(
            name=name.strip(),
            description=description,
            location=location,
            startDate=start_date,
            endDate=end_date,
            isPaid=is_paid,
            price=price,
            createdBy=created_by,
            createdAt=now,
            updatedAt=now,
        )
        result = await self.session.execute(insert(Event).values(**values).returning(Event.id))
        event_id = result.scalar()
        await self.session.commit()

        member_id = await self.membership.create_organizer_membership(event_id, created_by)
        logger.info("event_created event=%s by=%s member=%s", event_id, created_by, member_id)

        return {
            "id": event_id,
            "name": values["name"],
            "description": description,
            "location": location,
            "startDate": _iso(start_date),
            "endDate": _iso(end_date),
            "isPaid": is_paid,
            "price": float(price) if price is not None else None,
            "createdBy": created_by,
            "memberId": member_id,
        }

    async def list_events(self, user_id: int) -> list[dict[str, Any]]:
        """Events the user is an active member of, newest first, with their place in each."""
        stmt = (
            select(EventMember, Event)
            .join(Event, Event.id == EventMember.eventId)
            .where(and_(EventMember.userId == user_id, EventMember.status == "active"))
            .order_by(Event.createdAt.desc())
        )
        memberships = (await self.session.execute(stmt)).all()
        if not memberships:
            return []

        counts_stmt = (
            select(EventMember.eventId, func.count(EventMember.id))
            .where(
                and_(
                    EventMember.eventId.in_([event.id for _, event in memberships]),
                    EventMember.role == "organizer",
                    EventMember.status == "active",
                )
            )
            .group_by(EventMember.eventId)
        )
        organizer_counts = {
            event_id: count for event_id, count in (await self.session.execute(counts_stmt)).all()
        }

        events = []
        for member, event in memberships:
            item = serialize_event(event)
            item.update(
                role=member.role,
                paymentStatus=member.paymentStatus,
                status=member.status,
                memberId=member.id,
                organizerCount=organizer_counts.get(event.id, 0),
            )
            events.append(item)
        return events

    async def get_event_detail(self, event_id: int, user_id: int) -> dict[str, Any]:
        """
        Event, itinerary and roster as seen by one active member.

        Organizers also see pending invitations in the roster and the
        event's open join requests.
        """
        role = await self.membership.active_role(event_id, user_id)
        if role is None:
            raise Forbidden("Access denied. You are not a member of this event.")
        is_organizer = role == "organizer"

        event = await self.get_event(event_id)
        detail = serialize_event(event)
        detail["role"] = role
        detail["steps"] = [serialize_step(step) for step in await self._steps(event_id)]
        detail["members"] = await self.membership.list_members(event_id, active_only=not is_organizer)

        join_requests = await self.membership.list_event_join_requests(event_id) if is_organizer else []
        detail["joinRequests"] = join_requests
        detail["joinRequestCount"] = len(join_requests)
        return detail

    async def update_event(
        self,
        event_id: int,
        *,
        name: Any = _UNSET,
        description: Any = _UNSET,
        location: Any = _UNSET,
        start_date: Any = _UNSET,
        end_date: Any = _UNSET,
        is_paid: Any = _UNSET,
        price: Any = _UNSET,
    ) -> dict[str, Any]:
        """Partial update. New dates must still cover every existing step."""
        event = await self.get_event(event_id)

        changes: dict[str, Any] = {}
        if name is not _UNSET:
            if not name or not name.strip():
                raise ValidationFailed("Event name is required.")
            changes["name"] = name.strip()
        if description is not _UNSET:
            changes["description"] = description
        if location is not _UNSET:
            changes["location"] = location
        if start_date is not _UNSET:
            changes["startDate"] = _aware(start_date)
        if end_date is not _UNSET:
            changes["endDate"] = _aware(end_date)
        if is_paid is not _UNSET:
            changes["isPaid"] = bool(is_paid)
        if price is not _UNSET:
            changes["price"] = price

        if "startDate" in changes or "endDate" in changes:
            start = changes["startDate"] if "startDate" in changes else _aware(event.startDate)
            end = changes["endDate"] if "endDate" in changes else _aware(event.endDate)
            if start is not None and end is not None and end < start:
                raise ValidationFailed("Event end date must be after its start date.")
            await self._check_steps_inside(event_id, start, end)

        merged = serialize_event(event)
        if not changes:
            return merged

        stmt = update(Event).where(Event.id == event_id).values(**changes, updatedAt=_now())
        await self.session.execute(stmt)
        await self.session.commit()
        logger.info("event_updated event=%s fields=%s", event_id, sorted(changes))

        for key, value in changes.items():
            if key in ("startDate", "endDate"):
                value = _iso(value)
            elif key == "price" and value is not None:
                value = float(value)
            merged[key] = value
        return merged

    async def _check_steps_inside(
        self, event_id: int, start: Optional[datetime], end: Optional[datetime]
    ) -> None:
        stmt = select(func.min(EventStep.scheduledTime), func.max(EventStep.scheduledTime)).where(
            EventStep.eventId == event_id
        )
        row = (await self.session.execute(stmt)).first()
        earliest, latest = row if row is not None else (None, None)
        if earliest is not None and start is not None and _aware(earliest) < start:
            raise StepOutOfBounds("Existing steps would fall before the new start date.")
        if latest is not None and end is not None and _aware(latest) > end:
            raise StepOutOfBounds("Existing steps would fall after the new end date.")

    async def delete_event(self, event_id: int) -> None:
        """Memberships, steps and everything hanging off them go with the event (ON DELETE CASCADE)."""
        result = await self.session.execute(delete(Event).where(Event.id == event_id))
        if result.rowcount == 0:
            await self.session.rollback()
            raise NotFound("Event not found.")
        await self.session.commit()
        logger.info("event_deleted event=%s", event_id)

        # -- steps --------------------------------------------------------------

    async def get_steps(self, event_id: int) -> list[EventStep]:
        await self.get_event(event_id)
        return await self._steps(event_id)

    async def _steps(self, event_id: int) -> list[EventStep]:
        stmt = (
            select(EventStep)
            .where(EventStep.eventId == event_id)
            .order_by(EventStep.scheduledTime.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_step(self, event_id: int, step_id: int) -> EventStep:
        stmt = select(EventStep).where(
            and_(EventStep.id == step_id, EventStep.eventId == event_id)
        )
        result = await self.session.execute(stmt)
        step = result.scalars().first()
        if step is None:
            raise NotFound("Step not found.")
        return step

    async def create_step(
        self,
        event_id: int,
        *,
        name: str,
        scheduled_time: datetime,
        description: Optional[str] = None,
        location: Optional[str] = None,
        alert_before_minutes: Optional[int] = None,
    ) -> dict[str, Any]:
        if not name or not name.strip():
            raise ValidationFailed("Step name is required.")
        event = await self.get_event(event_id)
        check_step_within_event(event, scheduled_time)

        if alert_before_minutes is None:
            alert_before_minutes = settings.default_alert_before_minutes

        now = _now()
        values = dict(
            eventId=event_id,
            name=name.strip(),
            description=description,
            location=location,
            scheduledTime=_aware(scheduled_time),
            alertBeforeMinutes=alert_before_minutes,
            createdAt=now,
            updatedAt=now,
        )
        result = await self.session.execute(
            insert(EventStep).values(**values).returning(EventStep.id)
        )
        step_id = result.scalar()
        await self.session.commit()

        logger.info("step_created event=%s step=%s at=%s", event_id, step_id, _iso(scheduled_time))
        return {
            "id": step_id,
            "eventId": event_id,
            "name": values["name"],
            "description": description,
            "location": location,
            "scheduledTime": _iso(scheduled_time),
            "alertBeforeMinutes": alert_before_minutes,
        }

    async def update_step(
        self,
        event_id: int,
        step_id: int,
        *,
        name: Any = _UNSET,
        scheduled_time: Any = _UNSET,
        description: Any = _UNSET,
        location: Any = _UNSET,
        alert_before_minutes: Any = _UNSET,
    ) -> dict[str, Any]:
        """Partial update. Only the keyword arguments passed are written."""
        event = await self.get_event(event_id)
        step = await self.get_step(event_id, step_id)

        changes: dict[str, Any] = {}
        if name is not _UNSET:
            if not name or not name.strip():
                raise ValidationFailed("Step name is required.")
            changes["name"] = name.strip()
        if scheduled_time is not _UNSET:
            if scheduled_time is None:
                raise ValidationFailed("Step scheduled time is required.")
            check_step_within_event(event, scheduled_time)
            changes["scheduledTime"] = _aware(scheduled_time)
        if description is not _UNSET:
            changes["description"] = description
        if location is not _UNSET:
            changes["location"] = location
        if alert_before_minutes is not _UNSET:
            changes["alertBeforeMinutes"] = alert_before_minutes

        if changes:
            stmt = (
                update(EventStep)
                .where(and_(EventStep.id == step.id, EventStep.eventId == event_id))
                .values(**changes, updatedAt=_now())
            )
            await self.session.execute(stmt)
            await self.session.commit()
            logger.info("step_updated event=%s step=%s fields=%s", event_id, step.id, sorted(changes))

        merged = serialize_step(step)
        for key, value in changes.items():
            merged[key] = _iso(value) if key == "scheduledTime" else value
        return merged

    async def delete_step(self, event_id: int, step_id: int) -> None:
        stmt = delete(EventStep).where(
            and_(EventStep.id == step_id, EventStep.eventId == event_id)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            await self.session.rollback()
            raise NotFound("Step not found.")
        await self.session.commit()
        logger.info("step_deleted event=%s step=%s", event_id, step_id)
