"""
SQLAlchemy DeclarativeBase models for the Trip Crew schema.

Column names use camelCase to match the actual PostgreSQL column names
used by the web and mobile clients.

IMPORTANT: These models are NOT used for migrations. `users`, `events` and
`event_steps` are owned by the identity and event services; this service
only reads them (steps are written through EventStore as a pass-through).
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


MEMBER_ROLES = ("organizer", "member")
PAYMENT_STATUSES = ("pending", "paid", "refunded")
MEMBER_STATUSES = ("pending", "active")
JOIN_REQUEST_STATUSES = ("pending", "accepted", "declined", "cancelled")

MemberRoleEnum = Enum(*MEMBER_ROLES, name="MemberRole")
PaymentStatusEnum = Enum(*PAYMENT_STATUSES, name="PaymentStatus")
MemberStatusEnum = Enum(*MEMBER_STATUSES, name="MemberStatus")
JoinRequestStatusEnum = Enum(*JOIN_REQUEST_STATUSES, name="JoinRequestStatus")


class Base(DeclarativeBase):
    pass


class User(Base):
    """Read-only mirror of the identity directory's user table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone: Mapped[str] = mapped_column(String(20), unique=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    firstName: Mapped[str] = mapped_column(String(100))
    lastName: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    avatarUrl: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    startDate: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    endDate: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    isPaid: Mapped[bool] = mapped_column(Boolean, default=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    createdBy: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class EventStep(Base):
    __tablename__ = "event_steps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    eventId: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    scheduledTime: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    alertBeforeMinutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=30)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class EventMember(Base):
    """One user's relationship to one event. Hard-deleted, never soft-deleted."""

    __tablename__ = "event_members"
    __table_args__ = (UniqueConstraint("eventId", "userId", name="uq_event_members_event_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    eventId: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    userId: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(MemberRoleEnum, default="member")
    paymentStatus: Mapped[str] = mapped_column(PaymentStatusEnum, default="pending")
    status: Mapped[str] = mapped_column(MemberStatusEnum, default="pending")
    invitedBy: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    # Empty between row creation and the id-bearing payload update.
    qrCode: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    joinedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class EventJoinRequest(Base):
    __tablename__ = "event_join_requests"
    __table_args__ = (UniqueConstraint("eventId", "userId", name="uq_event_join_requests_event_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    eventId: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"))
    userId: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    status: Mapped[str] = mapped_column(JoinRequestStatusEnum, default="pending")
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CheckIn(Base):
    __tablename__ = "check_ins"
    __table_args__ = (UniqueConstraint("stepId", "memberId", name="uq_check_ins_step_member"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stepId: Mapped[int] = mapped_column(ForeignKey("event_steps.id", ondelete="CASCADE"))
    memberId: Mapped[int] = mapped_column(ForeignKey("event_members.id", ondelete="CASCADE"))
    checkedInAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    checkedBy: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (UniqueConstraint("userId", "stepId", name="uq_notifications_user_step"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    userId: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    eventId: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"))
    stepId: Mapped[int] = mapped_column(ForeignKey("event_steps.id", ondelete="CASCADE"))
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    isRead: Mapped[bool] = mapped_column(Boolean, default=False)
    createdAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
