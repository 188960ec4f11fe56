# backend/courtside/schemas/booking.py
"""
Booking schemas for Courtside.

Requests for holds, availability checks and lifecycle actions, plus the
response envelopes the booking routes return.
"""

from datetime import date
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..core.constants import MAX_COURTS_PER_BOOKING, MAX_REASON_LENGTH, MAX_SLOTS_PER_BOOKING
from ..core.time_slots import to_minutes
from ._strict_base import StrictModel, StrictRequestModel

DATE_ONLY_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")

PaymentMethodLiteral = Literal["payos", "cash", "vnpay", "momo", "zalopay"]


def _ensure_date_only(value: object, field_name: str) -> object:
    if isinstance(value, str):
        candidate = value.strip()
        if not DATE_ONLY_REGEX.fullmatch(candidate):
            raise ValueError(f"{field_name} must be a YYYY-MM-DD date-only string")
        return candidate
    return value


class SlotInput(StrictRequestModel):
    """A requested ``HH:MM`` range; ``price`` is used only where no pricing rule applies."""

    start: str = Field(..., description="Start time, HH:MM")
    end: str = Field(..., description="End time, HH:MM")
    price: Optional[int] = Field(None, ge=0, description="Client price in VND")

    @field_validator("start", "end")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        to_minutes(value)
        return value

    @model_validator(mode="after")
    def _start_before_end(self) -> "SlotInput":
        if to_minutes(self.start) >= to_minutes(self.end):
            raise ValueError(f"slot {self.start}-{self.end} must start before it ends")
        return self


class CustomerInfo(StrictRequestModel):
    name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = Field(None, max_length=255)

    @property
    def is_complete(self) -> bool:
        return bool(self.name and (self.phone or self.email))


class HoldCreate(StrictRequestModel):
    """Create a quick hold or a payment-session booking."""

    venue_id: str = Field(..., min_length=1, description="Venue the courts belong to")
    court_ids: List[str] = Field(
        ..., min_length=1, max_length=MAX_COURTS_PER_BOOKING, description="Ordered courts to hold"
    )
    booking_date: date = Field(..., description="Date of play")
    time_slots: List[SlotInput] = Field(..., min_length=1, max_length=MAX_SLOTS_PER_BOOKING)
    payment_method: Optional[PaymentMethodLiteral] = Field(
        None, description="payos creates a checkout link after the hold commits"
    )
    customer_info: Optional[CustomerInfo] = None

    @field_validator("booking_date", mode="before")
    @classmethod
    def _date_only(cls, value: object) -> object:
        return _ensure_date_only(value, "booking_date")

    @field_validator("court_ids")
    @classmethod
    def _unique_courts(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("court_ids must not contain duplicates")
        return value


class AvailabilityCheckRequest(StrictRequestModel):
    court_ids: List[str] = Field(..., min_length=1, max_length=MAX_COURTS_PER_BOOKING)
    booking_date: date
    time_slots: List[SlotInput] = Field(default_factory=list, max_length=MAX_SLOTS_PER_BOOKING)
    exclude_booking_id: Optional[str] = None

    @field_validator("booking_date", mode="before")
    @classmethod
    def _date_only(cls, value: object) -> object:
        return _ensure_date_only(value, "booking_date")


class ReasonRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class StartPaymentRequest(StrictRequestModel):
    payment_method: PaymentMethodLiteral = "payos"


class CleanupRequest(StrictRequestModel):
    max_age_minutes: int = Field(0, ge=0, le=24 * 60, description="Grace period past hold_until")


# Responses


class BookingResponse(BaseModel):
    """Booking as returned by the API (built from ``Booking.to_dict``)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    booking_code: str
    user_id: Optional[str] = None
    venue_id: str
    court_ids: List[str]
    court_quantity: int
    booking_date: date
    time_slots: List[Dict[str, Any]]
    total_price: int
    payment_method: Optional[str] = None
    payment_status: str
    gateway_order_ref: Optional[str] = None
    gateway_transaction_ref: Optional[str] = None
    status: str
    status_reason: Optional[str] = None
    hold_until: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    customer_info: Dict[str, Optional[str]]
    created_at: Optional[str] = None
    reserved_at: Optional[str] = None
    confirmed_at: Optional[str] = None
    paid_at: Optional[str] = None
    checked_in_at: Optional[str] = None
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    expired_at: Optional[str] = None
    no_show_at: Optional[str] = None


class PaymentSessionResponse(StrictModel):
    id: str
    method: str
    amount: int
    order_code: int
    status: str
    checkout_url: Optional[str] = None
    qr_code: Optional[str] = None
    payment_link_id: Optional[str] = None
    expires_at: Optional[str] = None
    error_message: Optional[str] = None


class HoldResponse(StrictModel):
    booking: BookingResponse
    payment: Optional[PaymentSessionResponse] = None
    payment_error: Optional[str] = None


class SlotAvailabilityResponse(StrictModel):
    start: str
    end: str
    is_available: bool
    conflicts: List[str]


class AvailabilityResponse(StrictModel):
    is_available: bool
    slots: List[SlotAvailabilityResponse]
    conflicting_bookings: List[Dict[str, Any]]


class CourtSlotView(StrictModel):
    start: str
    end: str
    price: Optional[int] = None
    status: Literal["available", "booked", "held"]
    booking_id: Optional[str] = None
    holder_id: Optional[str] = None
    hold_until: Optional[str] = None


class CourtAvailabilityResponse(StrictModel):
    court_id: str
    venue_id: str
    date: date
    day_type: Literal["weekday", "weekend"]
    slots: List[CourtSlotView]


class SweepFailure(StrictModel):
    booking_id: str
    error: str


class SweepReportResponse(StrictModel):
    scanned: int
    confirmed: int
    cancelled: int
    expired: int
    skipped: int
    sessions_expired: int
    failed: int
    failures: List[SweepFailure]
    processed_at: str
