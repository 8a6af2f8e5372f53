from __future__ import annotations
import uuid
from io import BytesIO
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
import jwt

from ..deps import bearer_token, get_db, get_recorder, get_volunteer_id, require_organiser
from ..core.config import get_settings
from ..core.errors import ConfigurationError, Conflict, NotFound, ValidationFailed
from ..core.metrics import CHECKIN_OUTCOMES
from ..core.qr import checkin_url, sign_checkin_qr, verify_checkin_qr
from ..core.redis import allow_request
from ..schemas import (
    AttendanceRead,
    CheckinContext,
    CheckinCreate,
    CheckinErrorBody,
    CheckinResponse,
    EventRead,
    QRCreateResponse,
    ReferenceLocation,
    SessionRead,
)
from ..services.checkins import AttendanceRecorder
from ..services.geofence import resolve_radius, resolve_reference
from ..services.stores import AttendanceStore, EventSessionStore, EventStore

settings = get_settings()
router = APIRouter(prefix="/checkin", tags=["checkin"])

ERROR_RESPONSES = {
    400: {"model": CheckinErrorBody, "description": "Outside the event geofence"},
    404: {"model": CheckinErrorBody, "description": "Event or session not found"},
    409: {"model": CheckinErrorBody, "description": "Session belongs to another event"},
    422: {"model": CheckinErrorBody, "description": "Malformed location or QR token"},
}

def _check_qr(token: str | None, event_id: uuid.UUID, session_id: uuid.UUID | None) -> None:
    if token is None:
        if settings.require_qr_token:
            raise ValidationFailed("invalid_qr", "Scan the event QR code to check in")
        return
    try:
        qr = verify_checkin_qr(token)
    except jwt.PyJWTError:
        raise ValidationFailed("invalid_qr", "Invalid or expired QR code")
    if qr["event_id"] != str(event_id) or qr.get("session_id") != (str(session_id) if session_id else None):
        raise ValidationFailed("invalid_qr", "QR code is for a different event or session")

async def _load_event_and_session(db: AsyncSession, event_id: uuid.UUID, session_id: uuid.UUID | None):
    event = await EventStore(db).get_by_id(event_id)
    if event is None:
        raise NotFound("event")
    session = None
    if session_id is not None:
        session = await EventSessionStore(db).get_by_id(session_id)
        if session is None:
            raise NotFound("session")
        if session.event_id != event.id:
            raise Conflict("session_event_mismatch", "Session does not belong to this event")
    return event, session

# --- 1) Volunteer scans the event QR and submits their location
@router.post("/scan", response_model=CheckinResponse, responses=ERROR_RESPONSES)
async def scan_and_checkin(
    payload: CheckinCreate,
    request: Request,
    volunteer_id: str = Depends(get_volunteer_id),
    recorder: AttendanceRecorder = Depends(get_recorder),
    raw_token: str | None = Depends(bearer_token),
):
    ip = request.client.host if request.client else "unknown"
    if not await allow_request(ip, "checkin.scan"):
        raise HTTPException(status_code=429, detail="Too many requests")

    _check_qr(payload.qr_token, payload.event_id, payload.session_id)

    result = await recorder.check_in(
        volunteer_id=volunteer_id,
        event_id=payload.event_id,
        session_id=payload.session_id,
        claimed_location=payload.location.model_dump(exclude_none=True),
        token=raw_token,
    )
    CHECKIN_OUTCOMES.labels(outcome="duplicate" if result.already_checked_in else "admitted").inc()
    return CheckinResponse(
        already_checked_in=result.already_checked_in,
        message=result.message,
        attendance_id=result.attendance.id if result.attendance else None,
        distance_meters=round(result.decision.distance_meters, 1) if result.decision else None,
        radius_meters=result.decision.radius_meters if result.decision else None,
    )

# --- 2) Check-in page context: event, session, fence and whether the caller is already in
@router.get("/events/{event_id}", response_model=CheckinContext, responses=ERROR_RESPONSES)
async def checkin_context(
    event_id: uuid.UUID,
    session_id: uuid.UUID | None = Query(default=None, alias="sessionId"),
    volunteer_id: str = Depends(get_volunteer_id),
    db: AsyncSession = Depends(get_db),
):
    event, session = await _load_event_and_session(db, event_id, session_id)
    try:
        reference = resolve_reference(event, session)
        radius = resolve_radius(event, session, default=settings.default_geofence_radius)
    except ConfigurationError:
        reference, radius = None, None
    if reference is None:
        radius = None
    existing = await AttendanceStore(db).get_checked_in(event.id, volunteer_id)
    return CheckinContext(
        event=EventRead.model_validate(event),
        session=SessionRead.model_validate(session) if session else None,
        location_configured=reference is not None,
        reference=ReferenceLocation(lat=reference.lat, lng=reference.lng) if reference else None,
        radius_meters=radius,
        already_checked_in=existing is not None,
    )

# --- 3) Organiser generates a signed QR token for an event (or one of its sessions)
@router.post("/events/{event_id}/qr", response_model=QRCreateResponse, status_code=201)
async def create_qr_for_event(
    event_id: uuid.UUID,
    session_id: uuid.UUID | None = Query(default=None, alias="sessionId"),
    claims: dict = Depends(require_organiser),
    db: AsyncSession = Depends(get_db),
):
    await _load_event_and_session(db, event_id, session_id)
    token, exp = sign_checkin_qr(event_id=event_id, session_id=session_id, issuer_id=str(claims["sub"]))
    return QRCreateResponse(token=token, expires_at=exp, url=checkin_url(event_id=event_id, session_id=session_id, token=token))

# (Optional) PNG for printing / kiosk display
@router.get("/events/{event_id}/qr.png")
async def create_qr_png(
    event_id: uuid.UUID,
    session_id: uuid.UUID | None = Query(default=None, alias="sessionId"),
    claims: dict = Depends(require_organiser),
    db: AsyncSession = Depends(get_db),
):
    import qrcode
    await _load_event_and_session(db, event_id, session_id)
    token, _ = sign_checkin_qr(event_id=event_id, session_id=session_id, issuer_id=str(claims["sub"]))
    img = qrcode.make(checkin_url(event_id=event_id, session_id=session_id, token=token))
    b = BytesIO(); img.save(b, format="PNG")
    return Response(content=b.getvalue(), media_type="image/png")

# --- 4) Organiser roster
@router.get("/events/{event_id}/roster", response_model=list[AttendanceRead])
async def roster(event_id: uuid.UUID, _: dict = Depends(require_organiser), db: AsyncSession = Depends(get_db)):
    if await EventStore(db).get_by_id(event_id) is None:
        raise NotFound("event")
    rows = await AttendanceStore(db).list_for_event(event_id)
    return [AttendanceRead.model_validate(r) for r in rows]

# --- 5) Volunteer history
@router.get("/users/me", response_model=list[AttendanceRead])
async def my_checkins(volunteer_id: str = Depends(get_volunteer_id), db: AsyncSession = Depends(get_db)):
    rows = await AttendanceStore(db).list_for_volunteer(volunteer_id)
    return [AttendanceRead.model_validate(r) for r in rows]
