"""
Organizer-approved joining.

Endpoints:
  POST /events/{id}/requests                  -- ask to join
  GET  /events/{id}/requests                  -- pending requests, oldest first (organizer only)
  POST /events/{id}/requests/{reqId}/accept   -- approve; creates or activates the membership (organizer only)
  POST /events/{id}/requests/{reqId}/decline  -- (organizer only)
  GET  /requests/mine                         -- caller's pending requests
  POST /requests/{reqId}/cancel               -- withdraw a pending request
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from services.tripcrew.deps import current_user_id, get_membership_engine, require_organizer
from services.tripcrew.membership.engine import MembershipEngine
from services.tripcrew.routers._envelope import ok
from services.tripcrew.routers.members import publish_event_update

router = APIRouter(prefix="/events", tags=["join-requests"])
mine_router = APIRouter(prefix="/requests", tags=["join-requests"])


@router.post("/{event_id}/requests")
async def request_join(
    event_id: int,
    request: Request,
    response: Response,
    user_id: int = Depends(current_user_id),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    outcome = await engine.request_join(event_id, user_id)
    if outcome.created:
        response.status_code = 201
    return ok(
        request,
        {
            "id": outcome.request_id,
            "eventId": outcome.event_id,
            "status": outcome.status,
            "reopened": outcome.reopened,
        },
    )


@router.get("/{event_id}/requests")
async def list_event_requests(
    event_id: int,
    request: Request,
    user_id: int = Depends(require_organizer),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    return ok(request, await engine.list_event_join_requests(event_id))


@router.post("/{event_id}/requests/{request_id}/accept")
async def accept_request(
    event_id: int,
    request_id: int,
    request: Request,
    user_id: int = Depends(require_organizer),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    outcome = await engine.accept_join_request(event_id, request_id)
    if not outcome.already_member:
        await publish_event_update(
            request,
            event_id,
            "member_joined",
            {"eventId": event_id, "userId": outcome.user_id, "memberId": outcome.member_id},
            directory=engine.directory,
        )
    return ok(
        request,
        {
            "requestId": request_id,
            "memberId": outcome.member_id,
            "eventId": event_id,
            "status": "accepted",
            "alreadyMember": outcome.already_member,
        },
    )


@router.post("/{event_id}/requests/{request_id}/decline")
async def decline_request(
    event_id: int,
    request_id: int,
    request: Request,
    user_id: int = Depends(require_organizer),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    await engine.decline_join_request(event_id, request_id)
    return ok(request, {"requestId": request_id, "eventId": event_id, "status": "declined"})


@mine_router.get("/mine")
async def list_my_requests(
    request: Request,
    user_id: int = Depends(current_user_id),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    return ok(request, await engine.list_user_join_requests(user_id))


@mine_router.post("/{request_id}/cancel")
async def cancel_request(
    request_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> dict:
    await engine.cancel_join_request(request_id, user_id)
    return ok(request, {"requestId": request_id, "status": "cancelled"})
