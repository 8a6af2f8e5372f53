from __future__ import annotations
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from uuid import UUID
from datetime import datetime
from typing import Any, Dict

from .models import AttendanceStatus

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

class LocationIn(CamelModel):
    # range checks happen in the geofence evaluator so they map to a validation error kind
    lat: float
    lng: float
    accuracy: float | None = None

class CheckinCreate(CamelModel):
    event_id: UUID
    session_id: UUID | None = None
    location: LocationIn = Field(validation_alias=AliasChoices("location", "claimedLocation"))
    qr_token: str | None = None  # signed token from the scanned QR, when present

class CheckinResponse(CamelModel):
    success: bool = True
    already_checked_in: bool
    message: str
    attendance_id: UUID | None = None
    distance_meters: float | None = None
    radius_meters: float | None = None

class CheckinErrorBody(CamelModel):
    kind: str
    code: str
    message: str
    retryable: bool
    distance_meters: float | None = None
    radius_meters: float | None = None

class AttendanceRead(CamelModel):
    id: UUID
    event_id: UUID
    event_session_id: UUID | None = None
    volunteer_id: str
    check_in_time: datetime
    check_in_method: str
    check_in_location: Dict[str, Any] | None = None
    location_verified: bool
    status: AttendanceStatus

class EventRead(CamelModel):
    id: UUID
    title: str
    starts_at: datetime | None = None
    ends_at: datetime | None = None

class SessionRead(CamelModel):
    id: UUID
    event_id: UUID
    title: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None

class ReferenceLocation(CamelModel):
    lat: float
    lng: float

class CheckinContext(CamelModel):
    event: EventRead
    session: SessionRead | None = None
    location_configured: bool
    reference: ReferenceLocation | None = None
    radius_meters: float | None = None
    already_checked_in: bool

class QRCreateResponse(CamelModel):
    token: str
    expires_at: int
    url: str  # frontends encode this into the QR image
