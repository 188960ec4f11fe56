"""External service integrations for Courtside."""

from .payos_client import (
    FakePayOSClient,
    PaymentInfo,
    PaymentLink,
    PayOSClient,
    PayOSError,
    build_payment_gateway,
)

__all__ = [
    "FakePayOSClient",
    "PayOSClient",
    "PayOSError",
    "PaymentInfo",
    "PaymentLink",
    "build_payment_gateway",
]
