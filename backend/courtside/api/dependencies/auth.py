# backend/courtside/api/dependencies/auth.py
"""
Authentication and authorization dependencies.

Callers are identified by an HS256 bearer token; there is no user table
behind it. Guest endpoints use the optional variant and receive None.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
import jwt

from ...core.security import Actor, actor_from_claims, decode_access_token

logger = logging.getLogger(__name__)

oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def _credentials_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": detail, "code": "UNAUTHORIZED", "details": {}},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _actor_from_token(token: str) -> Actor:
    try:
        payload = decode_access_token(token)
    except jwt.ExpiredSignatureError:
        raise _credentials_exception("Token has expired")
    except jwt.PyJWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise _credentials_exception("Could not validate credentials")

    actor = actor_from_claims(payload)
    if actor is None:
        raise _credentials_exception("Could not validate credentials")
    return actor


def get_current_actor_optional(
    token: Optional[str] = Depends(oauth2_scheme_optional),
) -> Optional[Actor]:
    """
    The caller, or None for a guest.

    A token that is present but invalid is still rejected with 401.
    """
    if not token:
        return None
    return _actor_from_token(token)


def get_current_actor(
    actor: Optional[Actor] = Depends(get_current_actor_optional),
) -> Actor:
    """The authenticated caller; 401 when no bearer token was sent."""
    if actor is None:
        raise _credentials_exception("Not authenticated")
    return actor


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Admin access required", "code": "FORBIDDEN", "details": {}},
        )
    return actor
