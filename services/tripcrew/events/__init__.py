from services.tripcrew.events.store import (
    EventStore,
    check_step_within_event,
    serialize_event,
    serialize_step,
)

__all__ = ["EventStore", "check_step_within_event", "serialize_event", "serialize_step"]
