from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from courtside.core.security import (
    ROLE_ADMIN,
    ROLE_OWNER,
    Actor,
    actor_from_claims,
    create_access_token,
    decode_access_token,
)


def test_token_carries_subject_and_role():
    token = create_access_token("owner-7", ROLE_OWNER)
    payload = decode_access_token(token)

    assert payload["sub"] == "owner-7"
    assert payload["role"] == ROLE_OWNER
    assert actor_from_claims(payload) == Actor(id="owner-7", role=ROLE_OWNER)


def test_unknown_role_is_rejected_when_issuing():
    with pytest.raises(ValueError):
        create_access_token("someone", "superuser")


def test_expired_token_fails_to_decode():
    token = create_access_token("customer-1", expires_delta=timedelta(seconds=-5))
    with pytest.raises(jwt.ExpiredSignatureError):
        decode_access_token(token)


def test_token_signed_with_another_key_fails_to_decode():
    forged = jwt.encode({"sub": "customer-1", "role": ROLE_ADMIN}, "not-the-secret", algorithm="HS256")
    with pytest.raises(jwt.PyJWTError):
        decode_access_token(forged)


def test_actor_from_claims_defaults_and_rejects():
    assert actor_from_claims({"sub": "c-1"}) == Actor(id="c-1", role="customer")
    assert actor_from_claims({"sub": "a-1", "role": ROLE_ADMIN}).is_admin is True
    assert actor_from_claims({"sub": ""}) is None
    assert actor_from_claims({"role": "customer"}) is None
    assert actor_from_claims({"sub": "x", "role": "root"}) is None
