from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Tuple
from urllib.parse import urlencode
import secrets
import uuid
import jwt

from ..core.config import get_settings
settings = get_settings()

QR_AUD = "event-checkin"
QR_ISS = "checkin-svc"
CHECKIN_PAGE = "/events/check-in"

def _now():
    return datetime.now(timezone.utc)

def sign_checkin_qr(
    *,
    event_id: uuid.UUID,
    session_id: uuid.UUID | None,
    issuer_id: str,
    ttl_seconds: int | None = None,
) -> Tuple[str, int]:
    exp = _now() + timedelta(seconds=ttl_seconds or settings.qr_ttl_seconds)
    payload: Dict[str, Any] = {
        "aud": QR_AUD,
        "iss": QR_ISS,
        "jti": secrets.token_urlsafe(16),
        "iat": int(_now().timestamp()),
        "exp": int(exp.timestamp()),
        "scope": "checkin",
        "event_id": str(event_id),
        "session_id": str(session_id) if session_id else None,
        "issuer_id": issuer_id,  # organiser who generated the QR
    }
    token = jwt.encode(payload, settings.qr_secret_effective, algorithm="HS256")
    return token, int(exp.timestamp())

def verify_checkin_qr(token: str) -> Dict[str, Any]:
    payload = jwt.decode(
        token,
        settings.qr_secret_effective,
        algorithms=["HS256"],
        audience=QR_AUD,
        issuer=QR_ISS,
        options={"require": ["exp", "aud", "iss"]},
    )
    if payload.get("scope") != "checkin":
        raise jwt.InvalidTokenError("invalid scope")
    for k in ("event_id", "issuer_id"):
        if k not in payload:
            raise jwt.InvalidTokenError("missing claim: " + k)
    return payload

def checkin_url(*, event_id: uuid.UUID, session_id: uuid.UUID | None, token: str) -> str:
    """Page the volunteer's phone opens after scanning."""
    params = {"eventId": str(event_id)}
    if session_id:
        params["sessionId"] = str(session_id)
    params["token"] = token
    return f"{CHECKIN_PAGE}?{urlencode(params)}"
