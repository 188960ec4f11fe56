"""
Database models for Courtside.

- Venue / Court: minimal records carrying opening hours and pricing rules
- Booking / BookingCourt: holds and bookings over an ordered list of courts
- PaymentSession / PaymentTransaction: gateway attempts and the applied-result ledger
"""

from .booking import (
    ACTIVE_STATUSES,
    HOLD_STATUSES,
    TERMINAL_STATUSES,
    Booking,
    BookingCourt,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
)
from .payment import (
    OPEN_SESSION_STATUSES,
    PaymentSession,
    PaymentSessionStatus,
    PaymentTransaction,
    PaymentTransactionStatus,
    ReconciliationSource,
)
from .venue import Court, Venue

__all__ = [
    "ACTIVE_STATUSES",
    "HOLD_STATUSES",
    "OPEN_SESSION_STATUSES",
    "TERMINAL_STATUSES",
    "Booking",
    "BookingCourt",
    "BookingStatus",
    "Court",
    "PaymentMethod",
    "PaymentSession",
    "PaymentSessionStatus",
    "PaymentStatus",
    "PaymentTransaction",
    "PaymentTransactionStatus",
    "ReconciliationSource",
    "Venue",
]
