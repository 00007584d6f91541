"""
Membership state machine for events.

A user's relationship to an event lives in one ``event_members`` row:

    (none) --invite--------------> pending member
    (none) --join / accepted req-> active member (QR minted)
    pending --accept / join------> active (QR minted)
    pending --decline / remove---> (deleted)
    active  --remove / leave-----> (deleted, unless last active organizer)

Join requests (``event_join_requests``) are the organizer-approved path:
pending -> accepted | declined | cancelled, and any terminal request is
reopened to pending by a new request from the same user.

Invariants:
  - unique (eventId, userId) on both tables; the database constraint is the
    race backstop and an IntegrityError at insert is reported as a conflict.
  - an event keeps at least one active organizer. Enforced on remove and
    leave only. update_role() does not check it; demoting the last organizer
    is allowed through.

QR minting needs the row id inside the payload, so creating an active row is
two commits: insert with an empty qrCode, then update it with the payload.
Activating an existing row knows its id and mints in the same update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from services.tripcrew.db.models import (
    MEMBER_ROLES,
    PAYMENT_STATUSES,
    Event,
    EventJoinRequest,
    EventMember,
    User,
)
from services.tripcrew.directory import IdentityDirectory, display_name
from services.tripcrew.errors import (
    AlreadyMember,
    AlreadyPending,
    AlreadyProcessed,
    InvalidPaymentStatus,
    InvalidRole,
    LastOrganizer,
    NotFound,
    SelfInvite,
    ValidationFailed,
)
from services.tripcrew.membership.qr import QRPayload, is_ready, render_data_url

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class MembershipOutcome:
    member_id: Optional[int]
    event_id: int
    status: str
    created: bool = False
    activated: bool = False
    already_member: bool = False
    user_id: Optional[int] = None


@dataclass
class JoinRequestOutcome:
    request_id: int
    event_id: int
    status: str
    created: bool = False
    reopened: bool = False


@dataclass
class QRCodeView:
    qr_code: Optional[str]
    payload: Optional[str]
    ready: bool


class MembershipEngine:
    """Owns every write to event_members and event_join_requests."""

    def __init__(self, session: AsyncSession, directory: IdentityDirectory):
        self.session = session
        self.directory = directory

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _require_event(self, event_id: int) -> Event:
        result = await self.session.execute(select(Event).where(Event.id == event_id))
        event = result.scalars().first()
        if event is None:
            raise NotFound("Event not found.")
        return event

    async def _find_membership(self, event_id: int, user_id: int) -> Optional[EventMember]:
        stmt = select(EventMember).where(
            and_(EventMember.eventId == event_id, EventMember.userId == user_id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def active_role(self, event_id: int, user_id: int) -> Optional[str]:
        """Role of the caller's active membership, or None."""
        stmt = select(EventMember.role).where(
            and_(
                EventMember.eventId == event_id,
                EventMember.userId == user_id,
                EventMember.status == "active",
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def _lock_active_organizers(self, event_id: int) -> int:
        """Count active organizers, holding row locks until the unit of work ends."""
        stmt = (
            select(EventMember.id)
            .where(
                and_(
                    EventMember.eventId == event_id,
                    EventMember.role == "organizer",
                    EventMember.status == "active",
                )
            )
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return len(result.scalars().all())

    # ------------------------------------------------------------------
    # Row writes
    # ------------------------------------------------------------------

    async def _insert_member(
        self,
        event_id: int,
        user_id: int,
        *,
        role: str,
        status: str,
        payment_status: str,
        invited_by: Optional[int] = None,
    ) -> int:
        now = _now()
        stmt = (
            insert(EventMember)
            .values(
                eventId=event_id,
                userId=user_id,
                role=role,
                paymentStatus=payment_status,
                status=status,
                invitedBy=invited_by,
                qrCode=None,
                joinedAt=now,
                updatedAt=now,
            )
            .returning(EventMember.id)
        )
        try:
            result = await self.session.execute(stmt)
            member_id = result.scalar()
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info("member_insert_conflict event=%s user=%s", event_id, user_id)
            raise AlreadyMember()
        return member_id

    async def _mint_qr(self, member_id: int, event_id: int, user_id: int) -> None:
        payload = QRPayload(eventId=event_id, userId=user_id, memberId=member_id)
        stmt = (
            update(EventMember)
            .where(EventMember.id == member_id)
            .values(qrCode=render_data_url(payload), updatedAt=_now())
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def _create_active_member(
        self,
        event_id: int,
        user_id: int,
        *,
        role: str = "member",
        payment_status: str = "pending",
    ) -> int:
        member_id = await self._insert_member(
            event_id,
            user_id,
            role=role,
            status="active",
            payment_status=payment_status,
        )
        await self._mint_qr(member_id, event_id, user_id)
        return member_id

    async def _activate(self, member: EventMember) -> bool:
        """pending -> active with a freshly minted QR. False if the row was no longer pending."""
        payload = QRPayload(eventId=member.eventId, userId=member.userId, memberId=member.id)
        stmt = (
            update(EventMember)
            .where(and_(EventMember.id == member.id, EventMember.status == "pending"))
            .values(status="active", qrCode=render_data_url(payload), updatedAt=_now())
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Organizer membership (event creation)
    # ------------------------------------------------------------------

    async def create_organizer_membership(self, event_id: int, user_id: int) -> int:
        member_id = await self._create_active_member(
            event_id, user_id, role="organizer", payment_status="paid"
        )
        logger.info("organizer_created event=%s user=%s member=%s", event_id, user_id, member_id)
        return member_id

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    async def invite(self, event_id: int, organizer_id: int, phone: str) -> MembershipOutcome:
        if not phone or not phone.strip():
            raise ValidationFailed("Phone number is required.")

        await self._require_event(event_id)
        invited_id = await self.directory.resolve_user_by_phone(phone)

        if invited_id == organizer_id:
            raise SelfInvite()

        existing = await self._find_membership(event_id, invited_id)
        if existing is not None:
            if existing.status == "pending":
                return MembershipOutcome(
                    member_id=existing.id, event_id=event_id, status="pending"
                )
            raise AlreadyMember("User is already a member of this event.")

        member_id = await self._insert_member(
            event_id,
            invited_id,
            role="member",
            status="pending",
            payment_status="pending",
            invited_by=organizer_id,
        )
        logger.info(
            "member_invited event=%s user=%s by=%s member=%s",
            event_id,
            invited_id,
            organizer_id,
            member_id,
        )
        return MembershipOutcome(
            member_id=member_id, event_id=event_id, status="pending", created=True
        )

    async def _owned_invitation(self, member_id: int, user_id: int) -> EventMember:
        stmt = select(EventMember).where(
            and_(EventMember.id == member_id, EventMember.userId == user_id)
        )
        result = await self.session.execute(stmt)
        member = result.scalars().first()
        if member is None:
            raise NotFound("Invitation not found.")
        if member.status != "pending":
            raise AlreadyProcessed("Invitation already processed.")
        return member

    async def accept_invitation(self, member_id: int, user_id: int) -> MembershipOutcome:
        member = await self._owned_invitation(member_id, user_id)
        if not await self._activate(member):
            raise AlreadyProcessed("Invitation already processed.")

        logger.info("invitation_accepted event=%s user=%s member=%s", member.eventId, user_id, member.id)
        return MembershipOutcome(
            member_id=member.id, event_id=member.eventId, status="active", activated=True
        )

    async def decline_invitation(self, member_id: int, user_id: int) -> int:
        member = await self._owned_invitation(member_id, user_id)
        stmt = delete(EventMember).where(
            and_(EventMember.id == member.id, EventMember.status == "pending")
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            await self.session.rollback()
            raise AlreadyProcessed("Invitation already processed.")
        await self.session.commit()

        logger.info("invitation_declined event=%s user=%s member=%s", member.eventId, user_id, member.id)
        return member.eventId

    async def list_pending_invitations(self, user_id: int) -> list[dict[str, Any]]:
        inviter = aliased(User)
        stmt = (
            select(EventMember, Event, inviter)
            .join(Event, Event.id == EventMember.eventId)
            .outerjoin(inviter, inviter.id == EventMember.invitedBy)
            .where(and_(EventMember.userId == user_id, EventMember.status == "pending"))
            .order_by(EventMember.joinedAt.desc())
        )
        result = await self.session.execute(stmt)
        return [
            {
                "memberId": member.id,
                "eventId": event.id,
                "eventName": event.name,
                "startDate": _iso(event.startDate),
                "invitedBy": member.invitedBy,
                "inviter": display_name(inv.firstName, inv.lastName) if inv is not None else None,
            }
            for member, event, inv in result.all()
        ]

    # ------------------------------------------------------------------
    # Direct join
    # ------------------------------------------------------------------

    async def join_directly(self, event_id: int, user_id: int) -> MembershipOutcome:
        await self._require_event(event_id)

        existing = await self._find_membership(event_id, user_id)
        if existing is not None:
            if existing.status == "pending":
                if not await self._activate(existing):
                    raise AlreadyMember()
                logger.info("invitation_accepted event=%s user=%s member=%s", event_id, user_id, existing.id)
                return MembershipOutcome(
                    member_id=existing.id, event_id=event_id, status="active", activated=True
                )
            raise AlreadyMember()

        member_id = await self._create_active_member(event_id, user_id)
        logger.info("member_joined event=%s user=%s member=%s", event_id, user_id, member_id)
        return MembershipOutcome(
            member_id=member_id, event_id=event_id, status="active", created=True
        )

    # ------------------------------------------------------------------
    # Join requests
    # ------------------------------------------------------------------

    async def request_join(self, event_id: int, user_id: int) -> JoinRequestOutcome:
        await self._require_event(event_id)

        membership = await self._find_membership(event_id, user_id)
        if membership is not None:
            if membership.status == "pending":
                raise AlreadyPending("An invitation is already pending for this event.")
            raise AlreadyMember("You are already a member of this event.")

        stmt = select(EventJoinRequest).where(
            and_(EventJoinRequest.eventId == event_id, EventJoinRequest.userId == user_id)
        )
        result = await self.session.execute(stmt)
        existing = result.scalars().first()

        if existing is not None:
            if existing.status == "pending":
                raise AlreadyPending("Your request is already awaiting approval.")
            reopen = (
                update(EventJoinRequest)
                .where(EventJoinRequest.id == existing.id)
                .values(status="pending", updatedAt=_now())
            )
            await self.session.execute(reopen)
            await self.session.commit()
            logger.info(
                "join_request_reopened event=%s user=%s request=%s previous=%s",
                event_id,
                user_id,
                existing.id,
                existing.status,
            )
            return JoinRequestOutcome(
                request_id=existing.id, event_id=event_id, status="pending", reopened=True
            )

        now = _now()
        create = (
            insert(EventJoinRequest)
            .values(eventId=event_id, userId=user_id, status="pending", createdAt=now, updatedAt=now)
            .returning(EventJoinRequest.id)
        )
        try:
            created = await self.session.execute(create)
            request_id = created.scalar()
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise AlreadyPending("Your request is already awaiting approval.")

        logger.info("join_requested event=%s user=%s request=%s", event_id, user_id, request_id)
        return JoinRequestOutcome(
            request_id=request_id, event_id=event_id, status="pending", created=True
        )

    async def _pending_request(self, event_id: int, request_id: int) -> EventJoinRequest:
        result = await self.session.execute(
            select(EventJoinRequest).where(EventJoinRequest.id == request_id)
        )
        request = result.scalars().first()
        if request is None or request.eventId != event_id:
            raise NotFound("Join request not found.")
        if request.status != "pending":
            raise AlreadyProcessed("This request has already been processed.")
        return request

    async def _resolve_request(self, request_id: int, status: str) -> bool:
        stmt = (
            update(EventJoinRequest)
            .where(and_(EventJoinRequest.id == request_id, EventJoinRequest.status == "pending"))
            .values(status=status, updatedAt=_now())
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount > 0

    async def accept_join_request(self, event_id: int, request_id: int) -> MembershipOutcome:
        request = await self._pending_request(event_id, request_id)

        membership = await self._find_membership(event_id, request.userId)
        outcome: MembershipOutcome
        if membership is not None and membership.status == "active":
            outcome = MembershipOutcome(
                member_id=membership.id,
                event_id=event_id,
                status="active",
                already_member=True,
                user_id=request.userId,
            )
        elif membership is not None:
            await self._activate(membership)
            outcome = MembershipOutcome(
                member_id=membership.id,
                event_id=event_id,
                status="active",
                activated=True,
                user_id=request.userId,
            )
        else:
            member_id = await self._create_active_member(event_id, request.userId)
            outcome = MembershipOutcome(
                member_id=member_id,
                event_id=event_id,
                status="active",
                created=True,
                user_id=request.userId,
            )

        await self._resolve_request(request.id, "accepted")
        logger.info(
            "join_request_accepted event=%s user=%s request=%s member=%s",
            event_id,
            request.userId,
            request.id,
            outcome.member_id,
        )
        return outcome

    async def decline_join_request(self, event_id: int, request_id: int) -> None:
        request = await self._pending_request(event_id, request_id)
        if not await self._resolve_request(request.id, "declined"):
            raise AlreadyProcessed("This request has already been processed.")
        logger.info("join_request_declined event=%s user=%s request=%s", event_id, request.userId, request.id)

    async def cancel_join_request(self, request_id: int, user_id: int) -> None:
        stmt = (
            update(EventJoinRequest)
            .where(
                and_(
                    EventJoinRequest.id == request_id,
                    EventJoinRequest.userId == user_id,
                    EventJoinRequest.status == "pending",
                )
            )
            .values(status="cancelled", updatedAt=_now())
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            await self.session.rollback()
            raise NotFound("Join request not found or already processed.")
        await self.session.commit()
        logger.info("join_request_cancelled user=%s request=%s", user_id, request_id)

    async def list_event_join_requests(self, event_id: int) -> list[dict[str, Any]]:
        stmt = (
            select(EventJoinRequest, User)
            .join(User, User.id == EventJoinRequest.userId)
            .where(
                and_(EventJoinRequest.eventId == event_id, EventJoinRequest.status == "pending")
            )
            .order_by(EventJoinRequest.createdAt.asc())
        )
        result = await self.session.execute(stmt)
        return [
            {
                "id": request.id,
                "userId": user.id,
                "firstName": user.firstName,
                "lastName": user.lastName,
                "email": user.email,
                "phone": user.phone,
                "avatarUrl": user.avatarUrl,
                "requestedAt": _iso(request.createdAt),
            }
            for request, user in result.all()
        ]

    async def list_user_join_requests(self, user_id: int) -> list[dict[str, Any]]:
        stmt = (
            select(EventJoinRequest, Event)
            .join(Event, Event.id == EventJoinRequest.eventId)
            .where(and_(EventJoinRequest.userId == user_id, EventJoinRequest.status == "pending"))
            .order_by(EventJoinRequest.createdAt.desc())
        )
        result = await self.session.execute(stmt)
        return [
            {
                "id": request.id,
                "eventId": event.id,
                "eventName": event.name,
                "requestedAt": _iso(request.createdAt),
            }
            for request, event in result.all()
        ]

    # ------------------------------------------------------------------
    # Member administration
    # ------------------------------------------------------------------

    async def update_role(self, event_id: int, member_id: int, role: Optional[str]) -> None:
        # No last-organizer check here; only remove_member and leave enforce it.
        if role not in MEMBER_ROLES:
            raise InvalidRole()

        stmt = (
            update(EventMember)
            .where(and_(EventMember.id == member_id, EventMember.eventId == event_id))
            .values(role=role, updatedAt=_now())
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            await self.session.rollback()
            raise NotFound("Member not found.")
        await self.session.commit()
        logger.info("member_role_updated event=%s member=%s role=%s", event_id, member_id, role)

    async def update_payment_status(
        self, event_id: int, member_id: int, payment_status: Optional[str]
    ) -> None:
        if payment_status not in PAYMENT_STATUSES:
            raise InvalidPaymentStatus()

        stmt = (
            update(EventMember)
            .where(and_(EventMember.id == member_id, EventMember.eventId == event_id))
            .values(paymentStatus=payment_status, updatedAt=_now())
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            await self.session.rollback()
            raise NotFound("Member not found.")
        await self.session.commit()
        logger.info(
            "member_payment_updated event=%s member=%s payment=%s",
            event_id,
            member_id,
            payment_status,
        )

    async def _delete_member(self, member_id: int) -> None:
        await self.session.execute(delete(EventMember).where(EventMember.id == member_id))
        await self.session.commit()

    async def remove_member(self, event_id: int, member_id: int) -> str:
        """Delete a membership. Returns the status the row had ("pending" or "active")."""
        stmt = select(EventMember).where(
            and_(EventMember.id == member_id, EventMember.eventId == event_id)
        )
        result = await self.session.execute(stmt)
        member = result.scalars().first()
        if member is None:
            raise NotFound("Member not found.")

        if member.status == "pending":
            await self._delete_member(member.id)
            logger.info("invitation_removed event=%s member=%s", event_id, member.id)
            return "pending"

        if member.role == "organizer":
            if await self._lock_active_organizers(event_id) <= 1:
                await self.session.rollback()
                raise LastOrganizer()

        await self._delete_member(member.id)
        logger.info("member_removed event=%s member=%s user=%s", event_id, member.id, member.userId)
        return "active"

    async def leave(self, event_id: int, user_id: int) -> None:
        stmt = select(EventMember).where(
            and_(
                EventMember.eventId == event_id,
                EventMember.userId == user_id,
                EventMember.status == "active",
            )
        )
        result = await self.session.execute(stmt)
        member = result.scalars().first()
        if member is None:
            raise NotFound("Membership not found.")

        if member.role == "organizer":
            if await self._lock_active_organizers(event_id) <= 1:
                await self.session.rollback()
                raise LastOrganizer("Cannot leave: you are the last organizer of this event.")

        await self._delete_member(member.id)
        logger.info("member_left event=%s user=%s member=%s", event_id, user_id, member.id)

    async def list_members(self, event_id: int, *, active_only: bool = False) -> list[dict[str, Any]]:
        stmt = (
            select(EventMember, User)
            .join(User, User.id == EventMember.userId)
            .where(EventMember.eventId == event_id)
            .order_by(EventMember.joinedAt.asc())
        )
        if active_only:
            stmt = stmt.where(EventMember.status == "active")
        result = await self.session.execute(stmt)
        return [
            {
                "id": member.id,
                "userId": user.id,
                "firstName": user.firstName,
                "lastName": user.lastName,
                "email": user.email,
                "phone": user.phone,
                "avatarUrl": user.avatarUrl,
                "role": member.role,
                "paymentStatus": member.paymentStatus,
                "status": member.status,
                "invitedBy": member.invitedBy,
            }
            for member, user in result.all()
        ]

    # ------------------------------------------------------------------
    # QR
    # ------------------------------------------------------------------

    async def get_qr_code(self, event_id: int, user_id: int) -> QRCodeView:
        member = await self._find_membership(event_id, user_id)
        if member is None:
            raise NotFound("Member not found.")

        if not is_ready(member.qrCode):
            return QRCodeView(qr_code=None, payload=None, ready=False)

        payload = QRPayload(eventId=member.eventId, userId=member.userId, memberId=member.id)
        return QRCodeView(qr_code=member.qrCode, payload=payload.to_json(), ready=True)
