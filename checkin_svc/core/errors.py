"""
Check-in error taxonomy.

Every failure the recorder can produce is a ``CheckinError`` subclass
carrying a ``kind`` (stable, machine readable), a ``code`` (the specific
reason), the HTTP status it maps to, and whether the volunteer can fix it
by retrying.
"""
from __future__ import annotations
from typing import Any, Dict


class CheckinError(Exception):
    kind = "internal"
    status_code = 500
    retryable = False

    def __init__(self, code: str, message: str | None = None):
        self.code = code
        self.message = message or code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationFailed(CheckinError):
    kind = "validation"
    status_code = 422
    retryable = True


class NotFound(CheckinError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"{entity}_not_found", f"{entity.capitalize()} not found")


class Conflict(CheckinError):
    kind = "conflict"
    status_code = 409


class ConfigurationError(CheckinError):
    """Operator fault (event without coordinates, degenerate radius).

    Never rendered to the volunteer as geofence feedback.
    """
    kind = "configuration"
    status_code = 500
    public_message = "Check-in is temporarily unavailable for this event"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "code": "checkin_unavailable",
            "message": self.public_message,
            "retryable": False,
        }


class GeofenceViolation(CheckinError):
    kind = "geofence_violation"
    status_code = 400
    retryable = True

    def __init__(self, distance_meters: float, radius_meters: float):
        self.distance_meters = distance_meters
        self.radius_meters = radius_meters
        super().__init__(
            "location_too_far",
            f"You are {round(distance_meters)}m away. "
            f"Please be within {round(radius_meters)}m of the event location.",
        )

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["distanceMeters"] = round(self.distance_meters, 1)
        body["radiusMeters"] = self.radius_meters
        return body


class InternalError(CheckinError):
    kind = "internal"
    status_code = 500

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": "Internal server error",
            "retryable": False,
        }
