"""
Attendance recording for QR check-in.

``AttendanceRecorder.check_in`` loads the event (and session), resolves the
geofence, and records at most one ``checked_in`` row per volunteer per
event. Duplicate submissions, whether sequential retries or concurrent
double taps, come back as success with ``already_checked_in=True`` and do
not reach the badge engine a second time.
"""
from __future__ import annotations
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Mapping, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError

from ..core.errors import ConfigurationError, Conflict, GeofenceViolation, InternalError, NotFound
from ..models import Attendance, AttendanceStatus, CHECKIN_METHOD_QR, utcnow
from .audit import AuditSink
from .badges import BadgeDispatcher
from .geofence import (
    DEFAULT_GEOFENCE_RADIUS_METERS,
    GeofenceDecision,
    evaluate,
    resolve_radius,
    resolve_reference,
    validate_coordinates,
)
from .stores import AttendanceStore, EventSessionStore, EventStore, InsertResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

MSG_CHECKED_IN = "Check-in successful! Enjoy the event."
MSG_ALREADY = "You are already checked in!"


@dataclass
class CheckinResult:
    already_checked_in: bool
    attendance: Attendance | None
    decision: GeofenceDecision | None = None

    @property
    def message(self) -> str:
        return MSG_ALREADY if self.already_checked_in else MSG_CHECKED_IN


class AttendanceRecorder:
    def __init__(
        self,
        *,
        events: EventStore,
        sessions: EventSessionStore,
        attendance: AttendanceStore,
        badges: BadgeDispatcher,
        audit: AuditSink,
        default_radius: float = DEFAULT_GEOFENCE_RADIUS_METERS,
        persistence_timeout: float = 5.0,
    ):
        self.events = events
        self.sessions = sessions
        self.attendance = attendance
        self.badges = badges
        self.audit = audit
        self.default_radius = default_radius
        self.persistence_timeout = persistence_timeout

    async def _bounded(self, op: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(op, timeout=self.persistence_timeout)
        except asyncio.TimeoutError:
            logger.error("persistence timeout (%.1fs) during %s", self.persistence_timeout, what)
            raise InternalError("persistence_timeout", f"Timed out during {what}")

    async def check_in(
        self,
        *,
        volunteer_id: str,
        event_id: uuid.UUID,
        session_id: uuid.UUID | None,
        claimed_location: Mapping[str, Any],
        token: str | None = None,
    ) -> CheckinResult:
        claimed = validate_coordinates(claimed_location.get("lat"), claimed_location.get("lng"))

        event = await self._bounded(self.events.get_by_id(event_id), "event lookup")
        if event is None:
            raise NotFound("event")
        # rollbacks during the insert expire loaded rows; keep the key as a plain value
        event_pk = event.id

        session = None
        if session_id is not None:
            session = await self._bounded(self.sessions.get_by_id(session_id), "session lookup")
            if session is None:
                raise NotFound("session")
            if session.event_id != event_pk:
                raise Conflict("session_event_mismatch", "Session does not belong to this event")

        try:
            reference = resolve_reference(event, session)
            if reference is None:
                raise ConfigurationError("event_location_missing", f"Event {event_pk} has no location configured")
            radius = resolve_radius(event, session, default=self.default_radius)
        except ConfigurationError as exc:
            await self.audit.emit(
                "checkin.configuration_error", event_id=str(event_pk), session_id=_str(session_id), code=exc.code
            )
            raise

        existing = await self._bounded(self.attendance.get_checked_in(event_pk, volunteer_id), "attendance lookup")
        if existing is not None:
            return await self._duplicate(existing, volunteer_id, event_pk)

        decision = evaluate(claimed, reference, radius)
        if not decision.admitted:
            logger.warning(
                "check-in denied volunteer=%s event=%s distance=%.1fm radius=%.1fm",
                volunteer_id, event_pk, decision.distance_meters, decision.radius_meters,
            )
            await self.audit.emit(
                "checkin.denied",
                event_id=str(event_pk),
                session_id=_str(session_id),
                volunteer_id=volunteer_id,
                distance_meters=round(decision.distance_meters, 1),
                radius_meters=decision.radius_meters,
            )
            raise GeofenceViolation(decision.distance_meters, decision.radius_meters)

        result = await self._insert(event_pk, session_id, volunteer_id, claimed_location)
        if not result.inserted:
            # lost the race to a concurrent request for the same pair
            return await self._duplicate(result.record, volunteer_id, event_pk)

        logger.info(
            "volunteer %s checked in to event %s (%.1fm of %.1fm)",
            volunteer_id, event_pk, decision.distance_meters, decision.radius_meters,
        )
        await self.audit.emit(
            "checkin.recorded",
            attendance_id=str(result.record.id),
            event_id=str(event_pk),
            session_id=_str(session_id),
            volunteer_id=volunteer_id,
            distance_meters=round(decision.distance_meters, 1),
        )
        self.badges.enqueue(volunteer_id, event_id=str(event_pk), token=token)
        return CheckinResult(already_checked_in=False, attendance=result.record, decision=decision)

    async def _insert(
        self,
        event_id: uuid.UUID,
        session_id: uuid.UUID | None,
        volunteer_id: str,
        claimed_location: Mapping[str, Any],
    ) -> InsertResult:
        # one internal retry for transient failures; uniqueness conflicts are not failures.
        # fixed id: a retry recognises a row its own timed-out attempt committed
        attendance_id = uuid.uuid4()
        last_exc: Exception | None = None
        for attempt in (1, 2):
            try:
                if attempt > 1:
                    existing = await self._bounded(
                        self.attendance.get_checked_in(event_id, volunteer_id), "attendance lookup"
                    )
                    if existing is not None:
                        return InsertResult(inserted=existing.id == attendance_id, record=existing)
                record = Attendance(
                    id=attendance_id,
                    event_session_id=session_id,
                    check_in_time=utcnow(),
                    check_in_method=CHECKIN_METHOD_QR,
                    check_in_location=dict(claimed_location),
                    location_verified=True,
                    status=AttendanceStatus.CHECKED_IN,
                )
                return await self._bounded(
                    self.attendance.try_insert_checked_in(event_id, volunteer_id, record), "attendance insert"
                )
            except IntegrityError as exc:
                logger.error("attendance insert rejected for event %s: %s", event_id, exc.orig)
                raise InternalError("persistence_failed", "Could not record attendance") from exc
            except (InternalError, OperationalError) as exc:
                logger.warning("attendance insert attempt %d failed: %s", attempt, exc)
                await self._bounded(self.attendance.rollback(), "rollback")
                last_exc = exc
        raise InternalError("persistence_failed", "Could not record attendance") from last_exc

    async def _duplicate(self, existing: Attendance | None, volunteer_id: str, event_id: uuid.UUID) -> CheckinResult:
        logger.info("volunteer %s already checked in to event %s", volunteer_id, event_id)
        await self.audit.emit(
            "checkin.duplicate",
            attendance_id=str(existing.id) if existing else None,
            event_id=str(event_id),
            volunteer_id=volunteer_id,
        )
        return CheckinResult(already_checked_in=True, attendance=existing)


def _str(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None
