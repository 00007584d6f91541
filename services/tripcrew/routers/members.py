"""
Event membership: direct join, invitations, roster administration, QR codes.

Endpoints:
  POST   /events/{id}/join                        -- join directly (activates a pending invitation)
  POST   /events/{id}/invitations                 -- invite by phone number (organizer only)
  GET    /events/{id}/members                     -- roster (active members)
  PUT    /events/{id}/members/{memberId}/role     -- organizer | member (organizer only)
  PUT    /events/{id}/members/{memberId}/payment  -- pending | paid | refunded (organizer only)
  DELETE /events/{id}/members/{memberId}          -- remove or revoke invitation (organizer only)
  DELETE /events/{id}/leave                       -- leave the event
  GET    /events/{id}/qrcode                      -- caller's check-in QR code
  GET    /invitations/pending                     -- caller's pending invitations
  POST   /invitations/{memberId}/accept
  POST   /invitations/{memberId}/decline

An event always keeps one active organizer: removing or leaving as the last
one is refused. Role changes are not guarded.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from services.tripcrew.deps import (
    current_user_id,
    get_membership_engine,
    require_member,
    require_organizer,
)
from services.tripcrew.directory import IdentityDirectory
from services.tripcrew.membership.engine import MembershipEngine, MembershipOutcome
from services.tripcrew.routers._envelope import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["members"])
invitations_router = APIRouter(prefix="/invitations", tags=["invitations"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class InviteBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    phone: str = Field(..., max_length=32)


class RoleBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: str


class PaymentBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paymentStatus: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _outcome(outcome: MembershipOutcome) -> dict[str, Any]:
    return {
        "memberId": outcome.member_id,
        "eventId": outcome.event_id,
        "status": outcome.status,
        "created": outcome.created,
        "activated": outcome.activated,
        "alreadyMember": outcome.already_member,
    }


async def publish_event_update(
    request: Request,
    event_id: int,
    name: str,
    payload: dict,
    directory: IdentityDirectory | None = None,
) -> None:
    """Best-effort fan-out to the event room. The write has already committed."""
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        return
    try:
        if directory is not None and payload.get("userId") is not None:
            payload = {**payload, "user": await directory.get_display(payload["userId"])}
        await relay.publish_to_event(event_id, name, payload)
    except Exception:
        logger.exception("event_publish_failed event=%s name=%s", event_id, name)


# ---------------------------------------------------------------------------
# Joining and invitations
# ---------------------------------------------------------------------------


@router.post("/{event_id}/join")
async def join_event(
    event_id: int,
    request: Request,
    response: Response,
    user_id: int = Depends(current_user_id),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    outcome = await engine.join_directly(event_id, user_id)
    if outcome.created:
        response.status_code = 201
    await publish_event_update(
        request,
        event_id,
        "member_joined",
        {"eventId": event_id, "userId": user_id},
        directory=engine.directory,
    )
    return ok(request, _outcome(outcome))


@router.post("/{event_id}/invitations")
async def invite_member(
    event_id: int,
    body: InviteBody,
    request: Request,
    response: Response,
    user_id: int = Depends(require_organizer),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    outcome = await engine.invite(event_id, user_id, body.phone)
    if outcome.created:
        response.status_code = 201
    return ok(request, _outcome(outcome))


@invitations_router.get("/pending")
async def list_pending_invitations(
    request: Request,
    user_id: int = Depends(current_user_id),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    return ok(request, await engine.list_pending_invitations(user_id))


@invitations_router.post("/{member_id}/accept")
async def accept_invitation(
    member_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    outcome = await engine.accept_invitation(member_id, user_id)
    await publish_event_update(
        request,
        outcome.event_id,
        "member_joined",
        {"eventId": outcome.event_id, "userId": user_id},
        directory=engine.directory,
    )
    return ok(request, _outcome(outcome))


@invitations_router.post("/{member_id}/decline")
async def decline_invitation(
    member_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    event_id = await engine.decline_invitation(member_id, user_id)
    return ok(request, {"memberId": member_id, "eventId": event_id, "declined": True})


# ---------------------------------------------------------------------------
# Roster administration
# ---------------------------------------------------------------------------


@router.get("/{event_id}/members")
async def list_members(
    event_id: int,
    request: Request,
    user_id: int = Depends(require_member),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    return ok(request, await engine.list_members(event_id))


@router.put("/{event_id}/members/{member_id}/role")
async def update_member_role(
    event_id: int,
    member_id: int,
    body: RoleBody,
    request: Request,
    user_id: int = Depends(require_organizer),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    await engine.update_role(event_id, member_id, body.role)
    return ok(request, {"memberId": member_id, "role": body.role})


@router.put("/{event_id}/members/{member_id}/payment")
async def update_payment_status(
    event_id: int,
    member_id: int,
    body: PaymentBody,
    request: Request,
    user_id: int = Depends(require_organizer),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    await engine.update_payment_status(event_id, member_id, body.paymentStatus)
    return ok(request, {"memberId": member_id, "paymentStatus": body.paymentStatus})


@router.delete("/{event_id}/members/{member_id}")
async def remove_member(
    event_id: int,
    member_id: int,
    request: Request,
    user_id: int = Depends(require_organizer),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    previous_status = await engine.remove_member(event_id, member_id)
    message = "Invitation revoked." if previous_status == "pending" else "Member removed."
    return ok(request, {"memberId": member_id, "previousStatus": previous_status, "message": message})


@router.delete("/{event_id}/leave")
async def leave_event(
    event_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    await engine.leave(event_id, user_id)
    await publish_event_update(
        request,
        event_id,
        "member_left",
        {"eventId": event_id, "userId": user_id},
        directory=engine.directory,
    )
    return ok(request, {"eventId": event_id, "left": True})


# ---------------------------------------------------------------------------
# QR
# ---------------------------------------------------------------------------


@router.get("/{event_id}/qrcode")
async def get_qr_code(
    event_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    view = await engine.get_qr_code(event_id, user_id)
    return ok(request, {"qrCode": view.qr_code, "payload": view.payload, "ready": view.ready})
