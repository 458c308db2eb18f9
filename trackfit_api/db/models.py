"""SQLAlchemy ORM models for TrackFit payments."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BOOLEAN, FLOAT, TEXT, TIMESTAMP, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Payment.type
PAYMENT_TYPE_MEMBERSHIP = "Membership"
PAYMENT_TYPE_SPA = "SpaService"
PAYMENT_TYPES = (PAYMENT_TYPE_MEMBERSHIP, PAYMENT_TYPE_SPA)

# Payment.status
PAYMENT_PENDING = "Pending"
PAYMENT_COMPLETED = "Completed"
PAYMENT_FAILED = "Failed"

# Membership.status
MEMBERSHIP_PENDING = "Pending"
MEMBERSHIP_ACTIVE = "Active"
MEMBERSHIP_EXPIRED = "Expired"

# SpaBooking.status
BOOKING_PENDING = "Pending"
BOOKING_CONFIRMED = "Confirmed"

# User.role
ROLE_USER = "user"
ROLE_TRAINER = "trainer"
ROLE_ADMIN = "admin"

PLACEHOLDER_SESSION_PREFIX = "pending-"


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class User(Base):
    """Gym member, trainer or administrator."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(TEXT, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    role: Mapped[str] = mapped_column(TEXT, nullable=False, default=ROLE_USER)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (Index("idx_users_role", "role"),)


class Membership(Base):
    """Membership plan purchased (or being purchased) by a user."""

    __tablename__ = "memberships"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False)  # FK to users
    plan_type: Mapped[str] = mapped_column(TEXT, nullable=False)
    duration: Mapped[str] = mapped_column(TEXT, nullable=False)  # Monthly/Quarterly/Yearly
    price: Mapped[Optional[float]] = mapped_column(FLOAT, nullable=True)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=MEMBERSHIP_PENDING)
    start_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (Index("idx_memberships_user_status", "user_id", "status"),)


class SpaBooking(Base):
    """Spa service booking paid through checkout."""

    __tablename__ = "spa_bookings"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False)  # FK to users
    service_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    price: Mapped[Optional[float]] = mapped_column(FLOAT, nullable=True)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=BOOKING_PENDING)
    payment_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)  # FK to payments
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )


class Payment(Base):
    """Local record of a checkout attempt.

    Status moves Pending -> Completed or Pending -> Failed, never back.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False)  # FK to users
    amount: Mapped[float] = mapped_column(FLOAT, nullable=False)  # major currency units
    type: Mapped[str] = mapped_column(TEXT, nullable=False)  # Membership/SpaService
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=PAYMENT_PENDING)

    # Provider checkout session id, or "pending-<hex>" placeholder
    stripe_session_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True, unique=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    membership_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    booking_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    trainer_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    plan_type: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )
    payment_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_payments_user_created", "user_id", "created_at"),
        Index("idx_payments_membership_status", "membership_id", "status"),
        Index("idx_payments_booking_status", "booking_id", "status"),
        Index("idx_payments_trainer", "trainer_id"),
    )


class OTPSession(Base):
    """One live verification code per user; deleted on success or expiry."""

    __tablename__ = "otp_sessions"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    email: Mapped[str] = mapped_column(TEXT, nullable=False)
    code: Mapped[str] = mapped_column(TEXT, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )


class Notification(Base):
    """In-app notification (admins are told about confirmed spa bookings)."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    recipient_id: Mapped[str] = mapped_column(TEXT, nullable=False)  # FK to users
    type: Mapped[str] = mapped_column(TEXT, nullable=False)
    title: Mapped[str] = mapped_column(TEXT, nullable=False)
    message: Mapped[str] = mapped_column(TEXT, nullable=False)
    related_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    is_read: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (Index("idx_notifications_recipient", "recipient_id", "is_read"),)


class WebhookDedupEvent(Base):
    """Webhook dedup gate: at most one successful processing per provider event.

    Status: processing -> done, or processing -> failed (re-claimable).
    """

    __tablename__ = "webhook_dedup_events"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=_new_id)
    provider: Mapped[str] = mapped_column(TEXT, nullable=False)
    dedup_key: Mapped[str] = mapped_column(TEXT, nullable=False)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default="processing")
    request_hash: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_now
    )
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "dedup_key", name="uq_webhook_dedup_provider_key"),
    )
