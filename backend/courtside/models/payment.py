"""
Payment models for the PayOS integration.

A PaymentSession correlates one booking with one gateway attempt (one
integer order code). A PaymentTransaction is the append-only ledger row
written when a reconciliation applies a gateway result.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

import ulid
from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courtside.core.constants import CURRENCY
from courtside.core.timezone_utils import as_utc
from courtside.database import Base

if TYPE_CHECKING:
    from courtside.models.booking import Booking


class PaymentSessionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class PaymentTransactionStatus(str, Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ReconciliationSource(str, Enum):
    WEBHOOK = "webhook"
    VERIFY = "verify"
    RETURN = "return"
    CANCEL = "cancel"
    SWEEPER = "sweeper"


OPEN_SESSION_STATUSES = frozenset(
    {PaymentSessionStatus.PENDING.value, PaymentSessionStatus.PROCESSING.value}
)


class PaymentSession(Base):
    """One gateway attempt for a booking."""

    __tablename__ = "payment_sessions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, comment="Amount in VND")
    order_code: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentSessionStatus.PENDING.value)

    # Gateway link details
    checkout_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qr_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_link_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    gateway_response: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    booking: Mapped["Booking"] = relationship("Booking", back_populates="payment_sessions")

    def __repr__(self) -> str:
        return f"<PaymentSession(booking_id={self.booking_id}, order_code={self.order_code}, status={self.status})>"

    def is_open_at(self, now: datetime) -> bool:
        """Pending/processing and not past ``expires_at``."""
        expires_at = as_utc(self.expires_at)
        return self.status in OPEN_SESSION_STATUSES and expires_at is not None and expires_at > now

    def to_dict(self) -> dict[str, Any]:
        expires_at = as_utc(self.expires_at)
        return {
            "id": self.id,
            "method": self.method,
            "amount": self.amount,
            "order_code": self.order_code,
            "status": self.status,
            "checkout_url": self.checkout_url,
            "qr_code": self.qr_code,
            "payment_link_id": self.payment_link_id,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "error_message": self.error_message,
        }


class PaymentTransaction(Base):
    """Ledger entry for an applied gateway result; ``payment_ref`` is unique."""

    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_ref: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("payment_sessions.id"), nullable=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False, comment="Amount in VND")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=CURRENCY)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<PaymentTransaction(ref={self.payment_ref}, booking_id={self.booking_id}, status={self.status})>"
