import json
import time
import uuid

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException
from jwt.algorithms import RSAAlgorithm

from checkin_svc import deps
from checkin_svc.core.qr import checkin_url, sign_checkin_qr, verify_checkin_qr


@pytest.fixture
def signing_key(monkeypatch):
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk["kid"] = "test-key"

    async def fake_jwks():
        return {"keys": [jwk]}

    monkeypatch.setattr(deps, "fetch_jwks", fake_jwks)
    return private_key


def _token(private_key, **claims):
    payload = {"sub": "auth0|volunteer-1", "exp": int(time.time()) + 60, **claims}
    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": "test-key"})


async def test_valid_bearer_token(signing_key):
    claims = await deps.get_claims(f"Bearer {_token(signing_key)}")
    assert claims["sub"] == "auth0|volunteer-1"
    assert claims["role"] == "volunteer"


async def test_missing_header():
    with pytest.raises(HTTPException) as exc:
        await deps.get_claims(None)
    assert exc.value.status_code == 401


async def test_expired_token(signing_key):
    with pytest.raises(HTTPException) as exc:
        await deps.get_claims(f"Bearer {_token(signing_key, exp=int(time.time()) - 10)}")
    assert exc.value.status_code == 401


async def test_token_signed_by_someone_else(signing_key):
    other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    with pytest.raises(HTTPException) as exc:
        await deps.get_claims(f"Bearer {_token(other)}")
    assert exc.value.status_code == 401


def test_organiser_guard():
    assert deps.require_organiser({"sub": "x", "role": "admin"})["role"] == "admin"
    with pytest.raises(HTTPException) as exc:
        deps.require_organiser({"sub": "x", "role": "volunteer"})
    assert exc.value.status_code == 403


def test_qr_token_round_trip_and_url():
    event_id, session_id = uuid.uuid4(), uuid.uuid4()
    token, exp = sign_checkin_qr(event_id=event_id, session_id=session_id, issuer_id="auth0|org")
    payload = verify_checkin_qr(token)
    assert payload["event_id"] == str(event_id)
    assert payload["session_id"] == str(session_id)
    assert exp > time.time()
    assert checkin_url(event_id=event_id, session_id=None, token="t") == f"/events/check-in?eventId={event_id}&token=t"


def test_expired_qr_token_is_rejected():
    token, _ = sign_checkin_qr(event_id=uuid.uuid4(), session_id=None, issuer_id="auth0|org", ttl_seconds=-5)
    with pytest.raises(jwt.ExpiredSignatureError):
        verify_checkin_qr(token)
