"""
Check-in ledger: attendance of event members at itinerary steps.

One row per (stepId, memberId). A second check-in for the same pair is a
conflict (AlreadyCheckedIn), never a silent no-op. The unique constraint on
check_ins is the backstop when two scanners race on the same member.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import and_, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.tripcrew.db.models import CheckIn, EventMember, EventStep, User
from services.tripcrew.errors import (
    AlreadyCheckedIn,
    EventMismatch,
    InvalidPayload,
    NotFound,
)
from services.tripcrew.membership.qr import parse_scanned

logger = logging.getLogger(__name__)


class CheckInLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _require_step(self, step_id: int) -> EventStep:
        result = await self.session.execute(select(EventStep).where(EventStep.id == step_id))
        step = result.scalars().first()
        if step is None:
            raise NotFound("Step not found.")
        return step

    async def _record(
        self,
        step: EventStep,
        member_id: int,
        checked_by: Optional[int],
        expected_user_id: Optional[int] = None,
    ) -> tuple[dict[str, Any], User]:
        member_stmt = (
            select(EventMember, User)
            .join(User, User.id == EventMember.userId)
            .where(and_(EventMember.id == member_id, EventMember.eventId == step.eventId))
        )
        row = (await self.session.execute(member_stmt)).first()
        if row is None:
            raise NotFound("Member not found for this event.")
        member, user = row
        if expected_user_id is not None and member.userId != expected_user_id:
            logger.warning(
                "qr_user_mismatch step=%s member=%s payload_user=%s",
                step.id,
                member.id,
                expected_user_id,
            )
            raise InvalidPayload("QR code does not match this member.")

        existing_stmt = select(CheckIn.id).where(
            and_(CheckIn.stepId == step.id, CheckIn.memberId == member.id)
        )
        existing = (await self.session.execute(existing_stmt)).scalars().first()
        if existing is not None:
            raise AlreadyCheckedIn()

        now = datetime.now(timezone.utc)
        stmt = (
            insert(CheckIn)
            .values(stepId=step.id, memberId=member.id, checkedInAt=now, checkedBy=checked_by)
            .returning(CheckIn.id)
        )
        try:
            result = await self.session.execute(stmt)
            check_in_id = result.scalar()
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise AlreadyCheckedIn()

        logger.info(
            "checked_in step=%s member=%s by=%s check_in=%s",
            step.id,
            member.id,
            checked_by,
            check_in_id,
        )
        record = {
            "id": check_in_id,
            "stepId": step.id,
            "memberId": member.id,
            "checkedInAt": now.isoformat(),
            "checkedBy": checked_by,
        }
        return record, user

    async def check_in(
        self, step_id: int, member_id: int, checked_by: Optional[int]
    ) -> dict[str, Any]:
        step = await self._require_step(step_id)
        record, _ = await self._record(step, member_id, checked_by)
        return record

    async def scan_qr_code(
        self, step_id: int, qr_data: Any, checked_by: Optional[int]
    ) -> dict[str, Any]:
        """Check in the member a scanned QR payload identifies. Returns the record plus display name."""
        payload = parse_scanned(qr_data)

        step = await self._require_step(step_id)
        if payload.eventId != step.eventId:
            raise EventMismatch()

        record, user = await self._record(
            step, payload.memberId, checked_by, expected_user_id=payload.userId
        )
        return {
            **record,
            "member": {"firstName": user.firstName, "lastName": user.lastName},
        }

    async def get_check_ins(self, step_id: int) -> list[dict[str, Any]]:
        stmt = (
            select(CheckIn, EventMember, User)
            .join(EventMember, EventMember.id == CheckIn.memberId)
            .join(User, User.id == EventMember.userId)
            .where(CheckIn.stepId == step_id)
            .order_by(CheckIn.checkedInAt.desc())
        )
        result = await self.session.execute(stmt)
        return [
            {
                "id": check_in.id,
                "memberId": member.id,
                "firstName": user.firstName,
                "lastName": user.lastName,
                "role": member.role,
                "checkedInAt": check_in.checkedInAt.isoformat(),
                "checkedBy": check_in.checkedBy,
            }
            for check_in, member, user in result.all()
        ]

    async def get_status(self, step_id: int) -> dict[str, Any]:
        step = await self._require_step(step_id)

        members_stmt = (
            select(EventMember, User)
            .join(User, User.id == EventMember.userId)
            .where(EventMember.eventId == step.eventId)
            .order_by(EventMember.joinedAt.asc())
        )
        members = (await self.session.execute(members_stmt)).all()

        checked_stmt = select(CheckIn.memberId).where(CheckIn.stepId == step.id)
        checked_ids = set((await self.session.execute(checked_stmt)).scalars().all())

        roster = [
            {
                "memberId": member.id,
                "userId": user.id,
                "firstName": user.firstName,
                "lastName": user.lastName,
                "role": member.role,
                "checkedIn": member.id in checked_ids,
            }
            for member, user in members
        ]
        checked_in = sum(1 for entry in roster if entry["checkedIn"])
        return {
            "stepId": step.id,
            "eventId": step.eventId,
            "total": len(roster),
            "checkedIn": checked_in,
            "pending": len(roster) - checked_in,
            "members": roster,
        }
