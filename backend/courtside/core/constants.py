"""Application-wide constants for the Courtside booking core."""

from __future__ import annotations

BRAND_NAME = "Courtside"

API_TITLE = f"{BRAND_NAME} Booking API"
API_DESCRIPTION = "Court availability, holds, and payment reconciliation"
API_VERSION = "1.0.0"

# Hold durations (minutes)
QUICK_HOLD_MINUTES = 5  # POST /bookings/hold
PAYMENT_HOLD_MINUTES = 15  # POST /bookings (payment-session flow)

# Booking codes: prefix + YYMMDDHHMMSS + random suffix
BOOKING_CODE_PREFIX = "BK"
BOOKING_CODE_SUFFIX_LENGTH = 4

# Currency for every amount stored in this service (no minor unit)
CURRENCY = "VND"

# Payment methods backed by a gateway integration in this service
GATEWAY_PAYMENT_METHODS = frozenset({"payos"})

# Sweeper cancellation reasons
REASON_NO_PAYMENT_METHOD = "hold expired, no payment method"
REASON_GATEWAY_CANCELLED = "payment cancelled at gateway"
REASON_GATEWAY_EXPIRED = "payment link expired at gateway"
REASON_PAYMENT_NOT_COMPLETED = "hold expired, payment not completed"
REASON_GATEWAY_UNREACHABLE = "hold expired, gateway unreachable"
REASON_RELEASED_BY_HOLDER = "released by holder"
REASON_PAID_AFTER_SLOT_TAKEN = "paid after hold lapsed, slot taken"
REASON_HOLD_EXPIRED_MESSAGE = "this reservation has expired, please book again"

# Slot generation
DEFAULT_SLOT_MINUTES = 60
WEEKEND_DAYS = frozenset({0, 6})  # 0 = Sunday, 6 = Saturday

# Query limits
DEFAULT_SWEEP_BATCH_SIZE = 200
MAX_REASON_LENGTH = 255
MAX_SLOTS_PER_BOOKING = 24
MAX_COURTS_PER_BOOKING = 10
