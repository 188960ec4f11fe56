# backend/courtside/models/booking.py
"""
Booking model for Courtside.

A booking targets an ordered list of courts at one venue for one date and a
list of time slots. Holds (pending/reserved) carry ``hold_until``; every other
status has it cleared, which the table enforces with a check constraint.

Status changes never happen by assigning attributes on a loaded row: they go
through BookingLifecycle, which issues conditional updates.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.timezone_utils import as_utc, isoformat_utc
from ..database import Base


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"  # quick hold, awaiting payment or owner approval
    RESERVED = "reserved"  # payment session hold
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"  # checked in
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    PAYOS = "payos"
    CASH = "cash"
    VNPAY = "vnpay"
    MOMO = "momo"
    ZALOPAY = "zalopay"


HOLD_STATUSES = frozenset({BookingStatus.PENDING.value, BookingStatus.RESERVED.value})
ACTIVE_STATUSES = HOLD_STATUSES | {BookingStatus.CONFIRMED.value}
TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.COMPLETED.value,
        BookingStatus.CANCELLED.value,
        BookingStatus.EXPIRED.value,
        BookingStatus.NO_SHOW.value,
    }
)


class BookingCourt(Base):
    """Ordered link between a booking and one of its courts."""

    __tablename__ = "booking_courts"

    booking_id = Column(String(26), ForeignKey("bookings.id"), primary_key=True)
    court_id = Column(String(26), ForeignKey("courts.id"), primary_key=True, index=True)
    position = Column(Integer, nullable=False, default=0)

    booking = relationship("Booking", back_populates="court_links")

    __table_args__ = (
        UniqueConstraint("booking_id", "position", name="uq_booking_courts_position"),
    )


class Booking(Base):
    """
    Court booking or hold.

    ``total_price`` is ``sum(slot.price) * court_quantity`` in VND and is
    written once at insert.
    """

    __tablename__ = "bookings"

    # Identity
    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    booking_code = Column(String(32), nullable=False, unique=True)

    # Targets
    user_id = Column(String(64), nullable=True, index=True, comment="Holder actor id; null for guests")
    venue_id = Column(String(26), ForeignKey("venues.id"), nullable=False, index=True)

    # Temporal
    booking_date = Column(Date, nullable=False, index=True)
    time_slots = Column(JSON, nullable=False, default=list)

    # Commercial
    total_price = Column(Integer, nullable=False, comment="Amount in VND")
    payment_method = Column(String(20), nullable=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    gateway_order_ref = Column(String(64), nullable=True, index=True)
    gateway_transaction_ref = Column(String(128), nullable=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    hold_until = Column(DateTime(timezone=True), nullable=True, index=True)
    status_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(64), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    reserved_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    no_show_at = Column(DateTime(timezone=True), nullable=True)

    # Customer snapshot
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(32), nullable=True)
    customer_email = Column(String(255), nullable=True)

    # Relationships
    venue = relationship("Venue")
    court_links = relationship(
        "BookingCourt",
        back_populates="booking",
        order_by="BookingCourt.position",
        cascade="all, delete-orphan",
    )
    payment_sessions = relationship(
        "PaymentSession",
        back_populates="booking",
        order_by="PaymentSession.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'reserved', 'confirmed', 'in_progress', 'completed', "
            "'cancelled', 'expired', 'no_show')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "(status IN ('pending', 'reserved') AND hold_until IS NOT NULL) "
            "OR (status NOT IN ('pending', 'reserved') AND hold_until IS NULL)",
            name="ck_bookings_hold_until_iff_hold",
        ),
        CheckConstraint("total_price >= 0", name="check_price_non_negative"),
        Index("ix_bookings_date_status", "booking_date", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id} ({self.booking_code}): courts={self.court_ids}, "
            f"date={self.booking_date}, status={self.status}>"
        )

    @property
    def court_ids(self) -> List[str]:
        return [cast(str, link.court_id) for link in self.court_links]

    @property
    def court_quantity(self) -> int:
        return len(self.court_links)

    @property
    def customer_info(self) -> Dict[str, Optional[str]]:
        return {
            "name": self.customer_name,
            "phone": self.customer_phone,
            "email": self.customer_email,
        }

    @property
    def is_hold(self) -> bool:
        return self.status in HOLD_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_active_at(self, now: datetime) -> bool:
        """Confirmed bookings always block; holds block only until ``hold_until``."""
        if self.status == BookingStatus.CONFIRMED.value:
            return True
        if self.status in HOLD_STATUSES:
            hold_until = as_utc(self.hold_until)
            return hold_until is not None and hold_until > now
        return False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        booking_date = cast(date, self.booking_date)
        return {
            "id": self.id,
            "booking_code": self.booking_code,
            "user_id": self.user_id,
            "venue_id": self.venue_id,
            "court_ids": self.court_ids,
            "court_quantity": self.court_quantity,
            "booking_date": booking_date.isoformat() if booking_date else None,
            "time_slots": list(self.time_slots or []),
            "total_price": self.total_price,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "gateway_order_ref": self.gateway_order_ref,
            "gateway_transaction_ref": self.gateway_transaction_ref,
            "status": self.status,
            "status_reason": self.status_reason,
            "hold_until": isoformat_utc(self.hold_until),
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "customer_info": self.customer_info,
            "created_at": isoformat_utc(self.created_at),
            "reserved_at": isoformat_utc(self.reserved_at),
            "confirmed_at": isoformat_utc(self.confirmed_at),
            "paid_at": isoformat_utc(self.paid_at),
            "checked_in_at": isoformat_utc(self.checked_in_at),
            "completed_at": isoformat_utc(self.completed_at),
            "cancelled_at": isoformat_utc(self.cancelled_at),
            "expired_at": isoformat_utc(self.expired_at),
            "no_show_at": isoformat_utc(self.no_show_at),
        }
