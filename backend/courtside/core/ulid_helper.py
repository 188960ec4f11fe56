"""ULID and code generation helpers."""

import secrets
from datetime import datetime

from .constants import BOOKING_CODE_PREFIX, BOOKING_CODE_SUFFIX_LENGTH

# Crockford base32 alphabet, same as ULID
_CODE_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def generate_booking_code(now: datetime, prefix: str = BOOKING_CODE_PREFIX) -> str:
    """``BK`` + ``YYMMDDHHMMSS`` (UTC) + random base32 suffix."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(BOOKING_CODE_SUFFIX_LENGTH))
    return f"{prefix}{now.strftime('%y%m%d%H%M%S')}{suffix}"


def generate_order_code(now: datetime) -> int:
    """Integer gateway order code: epoch milliseconds * 1000 + random 0..999."""
    epoch_ms = int(now.timestamp() * 1000)
    return epoch_ms * 1000 + secrets.randbelow(1000)
