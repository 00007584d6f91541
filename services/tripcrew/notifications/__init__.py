from services.tripcrew.notifications.sweep import (
    NOTIFICATION_EVENT,
    NotificationSweep,
    PushSender,
    SweepResult,
    build_messages,
    is_due,
)

__all__ = [
    "NOTIFICATION_EVENT",
    "NotificationSweep",
    "PushSender",
    "SweepResult",
    "build_messages",
    "is_due",
]
