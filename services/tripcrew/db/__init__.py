"""
SQLAlchemy async database module.

Re-exports engine, session, and model utilities for the FastAPI service.
"""

from services.tripcrew.db.engine import create_engine, standalone_session
from services.tripcrew.db.session import get_db
from services.tripcrew.db.models import (
    Base,
    User,
    Event,
    EventStep,
    EventMember,
    EventJoinRequest,
    CheckIn,
    Notification,
)

__all__ = [
    "create_engine",
    "standalone_session",
    "get_db",
    "Base",
    "User",
    "Event",
    "EventStep",
    "EventMember",
    "EventJoinRequest",
    "CheckIn",
    "Notification",
]
