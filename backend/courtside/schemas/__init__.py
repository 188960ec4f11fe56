# backend/courtside/schemas/__init__.py
"""
Pydantic schemas for the Courtside API.
"""

from .booking import (
    AvailabilityCheckRequest,
    AvailabilityResponse,
    BookingResponse,
    CleanupRequest,
    CourtAvailabilityResponse,
    CustomerInfo,
    HoldCreate,
    HoldResponse,
    PaymentSessionResponse,
    ReasonRequest,
    SlotInput,
    StartPaymentRequest,
    SweepReportResponse,
)
from .payment import PaymentVerifyRequest, PaymentVerifyResponse, WebhookAckResponse

__all__ = [
    "AvailabilityCheckRequest",
    "AvailabilityResponse",
    "BookingResponse",
    "CleanupRequest",
    "CourtAvailabilityResponse",
    "CustomerInfo",
    "HoldCreate",
    "HoldResponse",
    "PaymentSessionResponse",
    "PaymentVerifyRequest",
    "PaymentVerifyResponse",
    "ReasonRequest",
    "SlotInput",
    "StartPaymentRequest",
    "SweepReportResponse",
    "WebhookAckResponse",
]
