"""
Step attendance.

Endpoints:
  POST /steps/{id}/checkin   -- check a member in by id (organizer only)
  POST /steps/{id}/scan      -- check in from a scanned QR payload (organizer only)
  GET  /steps/{id}/checkins  -- check-ins, most recent first (active members)
  GET  /steps/{id}/status    -- full roster with a checkedIn flag and counts (active members)
"""

from __future__ import annotations

from typing import Any, Union

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict

from services.tripcrew.checkin.ledger import CheckInLedger
from services.tripcrew.deps import get_ledger, require_step_member, require_step_organizer
from services.tripcrew.routers._envelope import ok

router = APIRouter(prefix="/steps", tags=["checkins"])


class CheckInBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    memberId: int


class ScanBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # The decoded QR text, or the already-parsed JSON object.
    qrData: Union[str, dict[str, Any]]


@router.post("/{step_id}/checkin", status_code=201)
async def check_in(
    step_id: int,
    body: CheckInBody,
    request: Request,
    user_id: int = Depends(require_step_organizer),
    ledger: CheckInLedger = Depends(get_ledger),
) -> dict:
    record = await ledger.check_in(step_id, body.memberId, user_id)
    return ok(request, record)


@router.post("/{step_id}/scan", status_code=201)
async def scan_qr_code(
    step_id: int,
    body: ScanBody,
    request: Request,
    user_id: int = Depends(require_step_organizer),
    ledger: CheckInLedger = Depends(get_ledger),
) -> dict:
    record = await ledger.scan_qr_code(step_id, body.qrData, user_id)
    return ok(request, record)


@router.get("/{step_id}/checkins")
async def list_check_ins(
    step_id: int,
    request: Request,
    user_id: int = Depends(require_step_member),
    ledger: CheckInLedger = Depends(get_ledger),
) -> dict:
    return ok(request, await ledger.get_check_ins(step_id))


@router.get("/{step_id}/status")
async def check_in_status(
    step_id: int,
    request: Request,
    user_id: int = Depends(require_step_member),
    ledger: CheckInLedger = Depends(get_ledger),
) -> dict:
    return ok(request, await ledger.get_status(step_id))
