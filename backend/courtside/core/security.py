# backend/courtside/core/security.py
"""
JWT helpers and the Actor identity carried into services.

Identity arrives as an HS256 bearer token with ``sub`` (actor id) and
``role`` claims. Account management lives elsewhere.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional, cast

import jwt

from .config import settings

logger = logging.getLogger(__name__)

ROLE_CUSTOMER = "customer"
ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
VALID_ROLES = frozenset({ROLE_CUSTOMER, ROLE_OWNER, ROLE_ADMIN})


@dataclass(frozen=True)
class Actor:
    """The authenticated caller behind a mutation."""

    id: str
    role: str = ROLE_CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def _secret_value(secret_obj: Any) -> str:
    getter = getattr(secret_obj, "get_secret_value", None)
    if callable(getter):
        return cast(str, getter())
    return cast(str, secret_obj)


def create_access_token(
    subject: str,
    role: str = ROLE_CUSTOMER,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: Actor id stored in ``sub``
        role: One of customer, owner, admin
        expires_delta: Optional expiration time delta

    Returns:
        str: The encoded JWT token
    """
    if role not in VALID_ROLES:
        raise ValueError(f"unknown role: {role}")

    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode: Dict[str, Any] = {"sub": subject, "role": role, "exp": expire}
    encoded_jwt = cast(
        str,
        jwt.encode(
            to_encode,
            _secret_value(settings.secret_key),
            algorithm=settings.algorithm,
        ),
    )
    logger.debug("Created access token for actor %s (%s)", subject, role)
    return encoded_jwt


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT access token. Raises ``jwt.PyJWTError`` on failure."""
    payload_raw = jwt.decode(
        token,
        _secret_value(settings.secret_key),
        algorithms=[settings.algorithm],
        options={"verify_aud": False},
    )
    return cast(Dict[str, Any], payload_raw)


def actor_from_claims(payload: Dict[str, Any]) -> Optional[Actor]:
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        return None
    role = payload.get("role") or ROLE_CUSTOMER
    if role not in VALID_ROLES:
        return None
    return Actor(id=subject, role=role)
