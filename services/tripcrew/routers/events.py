"""
Events and itinerary steps.

Endpoints:
  POST   /events                           -- create an event; caller becomes its organizer
  GET    /events                           -- caller's active events with their role in each
  GET    /events/{id}                      -- detail, steps and roster (active members)
  PUT    /events/{id}                      -- partial update (organizer only)
  DELETE /events/{id}                      -- delete with everything under it (organizer only)
  GET    /events/{id}/steps                -- itinerary, earliest first (active members)
  POST   /events/{id}/steps                -- add a step (organizer only)
  PUT    /events/{id}/steps/{stepId}       -- partial update (organizer only)
  DELETE /events/{id}/steps/{stepId}       -- delete (organizer only)

A step's scheduledTime must fall inside [startDate, endDate] of its event
(inclusive) whenever the event has those bounds.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from services.tripcrew.deps import (
    current_user_id,
    get_event_store,
    require_member,
    require_organizer,
)
from services.tripcrew.events.store import EventStore, serialize_step
from services.tripcrew.routers._envelope import ok

router = APIRouter(prefix="/events", tags=["events"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class EventCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=255)
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    isPaid: bool = False
    price: Optional[Decimal] = Field(default=None, ge=0)


class EventUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=255)
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    isPaid: Optional[bool] = None
    price: Optional[Decimal] = Field(default=None, ge=0)


class StepCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    scheduledTime: datetime
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=255)
    alertBeforeMinutes: Optional[int] = Field(default=None, ge=0)


class StepUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, max_length=255)
    scheduledTime: Optional[datetime] = None
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=255)
    alertBeforeMinutes: Optional[int] = Field(default=None, ge=0)


_EVENT_FIELDS = {
    "name": "name",
    "description": "description",
    "location": "location",
    "startDate": "start_date",
    "endDate": "end_date",
    "isPaid": "is_paid",
    "price": "price",
}

_STEP_FIELDS = {
    "name": "name",
    "scheduledTime": "scheduled_time",
    "description": "description",
    "location": "location",
    "alertBeforeMinutes": "alert_before_minutes",
}


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@router.post("", status_code=201)
async def create_event(
    body: EventCreate,
    request: Request,
    user_id: int = Depends(current_user_id),
    store: EventStore = Depends(get_event_store),
) -> dict:
    event = await store.create_event(
        user_id,
        name=body.name,
        description=body.description,
        location=body.location,
        start_date=body.startDate,
        end_date=body.endDate,
        is_paid=body.isPaid,
        price=body.price,
    )
    return ok(request, event)


@router.get("")
async def list_events(
    request: Request,
    user_id: int = Depends(current_user_id),
    store: EventStore = Depends(get_event_store),
) -> dict:
    return ok(request, await store.list_events(user_id))


@router.get("/{event_id}")
async def get_event(
    event_id: int,
    request: Request,
    user_id: int = Depends(current_user_id),
    store: EventStore = Depends(get_event_store),
) -> dict:
    return ok(request, await store.get_event_detail(event_id, user_id))


@router.put("/{event_id}")
async def update_event(
    event_id: int,
    body: EventUpdate,
    request: Request,
    user_id: int = Depends(require_organizer),
    store: EventStore = Depends(get_event_store),
) -> dict:
    changes = {
        _EVENT_FIELDS[key]: value
        for key, value in body.model_dump(exclude_unset=True).items()
    }
    return ok(request, await store.update_event(event_id, **changes))


@router.delete("/{event_id}")
async def delete_event(
    event_id: int,
    request: Request,
    user_id: int = Depends(require_organizer),
    store: EventStore = Depends(get_event_store),
) -> dict:
    await store.delete_event(event_id)
    return ok(request, {"id": event_id, "deleted": True})


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


@router.get("/{event_id}/steps")
async def list_steps(
    event_id: int,
    request: Request,
    user_id: int = Depends(require_member),
    store: EventStore = Depends(get_event_store),
) -> dict:
    steps = await store.get_steps(event_id)
    return ok(request, [serialize_step(step) for step in steps])


@router.post("/{event_id}/steps", status_code=201)
async def create_step(
    event_id: int,
    body: StepCreate,
    request: Request,
    user_id: int = Depends(require_organizer),
    store: EventStore = Depends(get_event_store),
) -> dict:
    step = await store.create_step(
        event_id,
        name=body.name,
        scheduled_time=body.scheduledTime,
        description=body.description,
        location=body.location,
        alert_before_minutes=body.alertBeforeMinutes,
    )
    return ok(request, step)


@router.put("/{event_id}/steps/{step_id}")
async def update_step(
    event_id: int,
    step_id: int,
    body: StepUpdate,
    request: Request,
    user_id: int = Depends(require_organizer),
    store: EventStore = Depends(get_event_store),
) -> dict:
    changes = {
        _STEP_FIELDS[key]: value
        for key, value in body.model_dump(exclude_unset=True).items()
    }
    step = await store.update_step(event_id, step_id, **changes)
    return ok(request, step)


@router.delete("/{event_id}/steps/{step_id}")
async def delete_step(
    event_id: int,
    step_id: int,
    request: Request,
    user_id: int = Depends(require_organizer),
    store: EventStore = Depends(get_event_store),
) -> dict:
    await store.delete_step(event_id, step_id)
    return ok(request, {"id": step_id, "deleted": True})
