from __future__ import annotations
from typing import Any, Dict, AsyncGenerator
from fastapi import Depends, Header, HTTPException, status
import time
import httpx
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .core.config import get_settings
from .services.audit import AuditSink, get_audit_sink
from .services.badges import BadgeDispatcher, get_dispatcher
from .services.checkins import AttendanceRecorder
from .services.stores import AttendanceStore, EventSessionStore, EventStore

settings = get_settings()

ORGANISER_ROLES = {"organization", "admin"}

_JWKS: Dict[str, Any] | None = None
_JWKS_TS: float = 0.0
_JWKS_TTL: int = 3600

async def fetch_jwks() -> Dict[str, Any]:
    global _JWKS, _JWKS_TS
    now = time.time()
    if _JWKS is None or (now - _JWKS_TS) > _JWKS_TTL:
        async with httpx.AsyncClient() as client:
            r = await client.get(settings.auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _JWKS = r.json()
            _JWKS_TS = now
    return _JWKS

async def get_signing_key(token: str):
    from jwt.algorithms import RSAAlgorithm
    jwks = await fetch_jwks()
    kid = jwt.get_unverified_header(token).get("kid")
    keys = jwks.get("keys", [])
    key = next((k for k in keys if k.get("kid") == kid), keys[0] if keys else None)
    if key is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No signing keys available")
    return RSAAlgorithm.from_jwk(key)

async def get_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        key = await get_signing_key(token)
        payload = jwt.decode(
            token,
            key=key,
            algorithms=["RS256"],
            issuer=settings.token_issuer,
            options={"verify_aud": False, "verify_iss": settings.token_issuer is not None},
        )
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if "sub" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    payload.setdefault("role", "volunteer")
    return payload

def bearer_token(authorization: str | None = Header(default=None)) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None

def get_volunteer_id(claims: Dict[str, Any] = Depends(get_claims)) -> str:
    return str(claims["sub"])

def require_organiser(claims: Dict[str, Any] = Depends(get_claims)) -> Dict[str, Any]:
    if claims.get("role") not in ORGANISER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organiser role required")
    return claims

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for s in get_session():
        yield s

def get_badge_dispatcher() -> BadgeDispatcher:
    return get_dispatcher()

def get_audit() -> AuditSink:
    return get_audit_sink()

def get_recorder(
    db: AsyncSession = Depends(get_db),
    badges: BadgeDispatcher = Depends(get_badge_dispatcher),
    audit: AuditSink = Depends(get_audit),
) -> AttendanceRecorder:
    return AttendanceRecorder(
        events=EventStore(db),
        sessions=EventSessionStore(db),
        attendance=AttendanceStore(db),
        badges=badges,
        audit=audit,
        default_radius=settings.default_geofence_radius,
        persistence_timeout=settings.persistence_timeout_seconds,
    )
