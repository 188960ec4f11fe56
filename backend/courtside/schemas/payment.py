# backend/courtside/schemas/payment.py
"""Payment verification and webhook acknowledgement schemas."""

from typing import Literal, Optional

from pydantic import Field, model_validator

from ._strict_base import StrictModel, StrictRequestModel
from .booking import BookingResponse

ReconcileOutcome = Literal[
    "confirmed", "cancelled", "pending", "unknown", "already_applied", "not_found"
]


class PaymentVerifyRequest(StrictRequestModel):
    """Poll after the browser returns from checkout; either identifier is enough."""

    order_code: Optional[int] = Field(None, gt=0)
    booking_id: Optional[str] = Field(None, min_length=1)

    @model_validator(mode="after")
    def _one_identifier(self) -> "PaymentVerifyRequest":
        if self.order_code is None and not self.booking_id:
            raise ValueError("order_code or booking_id is required")
        return self


class PaymentVerifyResponse(StrictModel):
    outcome: ReconcileOutcome
    source: str
    order_code: Optional[int] = None
    gateway_status: Optional[str] = None
    message: Optional[str] = None
    booking: Optional[BookingResponse] = None


class WebhookAckResponse(StrictModel):
    status: Literal["ok", "error"]
    outcome: Optional[ReconcileOutcome] = None
