"""
Geofence evaluation for event check-in.

Pure functions only: no I/O, no shared state. ``evaluate`` decides whether
a claimed position lies inside the circular fence around a reference
point; the ``resolve_*`` helpers pick that reference point and radius from
an event and its optional session.
"""
from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Mapping

from ..core.errors import ConfigurationError, ValidationFailed

EARTH_RADIUS_METERS = 6_371_000.0
DEFAULT_GEOFENCE_RADIUS_METERS = 500.0


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(frozen=True)
class GeofenceDecision:
    admitted: bool
    distance_meters: float
    radius_meters: float


def _is_coordinate(value: Any, bound: float) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and -bound <= value <= bound


def validate_coordinates(lat: Any, lng: Any) -> Coordinates:
    """Return ``Coordinates`` or raise ``ValidationFailed`` for bad input."""
    if not _is_coordinate(lat, 90.0) or not _is_coordinate(lng, 180.0):
        raise ValidationFailed(
            "invalid_coordinates",
            "Location must have a finite latitude in [-90, 90] and longitude in [-180, 180]",
        )
    return Coordinates(lat=float(lat), lng=float(lng))


def haversine_meters(a: Coordinates, b: Coordinates) -> float:
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlambda = math.radians(b.lng - a.lng)

    h = (math.sin(dphi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2)
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def evaluate(claimed: Coordinates, reference: Coordinates, radius_meters: float) -> GeofenceDecision:
    claimed = validate_coordinates(claimed.lat, claimed.lng)
    if not _is_coordinate(radius_meters, math.inf) or radius_meters <= 0:
        raise ConfigurationError("geofence_radius_invalid", f"Geofence radius must be positive, got {radius_meters!r}")

    distance = haversine_meters(claimed, reference)
    return GeofenceDecision(
        admitted=distance <= radius_meters,
        distance_meters=distance,
        radius_meters=radius_meters,
    )


def coordinates_from_json(value: Mapping[str, Any] | None) -> Coordinates | None:
    """Parse a stored ``location_coordinates`` blob.

    Accepts ``{lat, lng}`` or ``{latitude, longitude}``. An empty value means
    "not configured"; a present but unusable one is an operator error.
    """
    if not value:
        return None
    lat = value.get("lat", value.get("latitude"))
    lng = value.get("lng", value.get("longitude"))
    if lat is None and lng is None:
        return None
    try:
        return validate_coordinates(lat, lng)
    except ValidationFailed:
        raise ConfigurationError("event_location_invalid", f"Stored location is unusable: {dict(value)!r}")


def resolve_reference(event: Any, session: Any | None) -> Coordinates | None:
    """Session coordinates win over event coordinates."""
    if session is not None:
        ref = coordinates_from_json(session.location_coordinates)
        if ref is not None:
            return ref
    return coordinates_from_json(event.location_coordinates)


def resolve_radius(event: Any, session: Any | None, default: float = DEFAULT_GEOFENCE_RADIUS_METERS) -> float:
    """Session radius, then event radius, then ``default``."""
    for source in (session, event):
        if source is not None and source.geofence_radius is not None:
            radius = float(source.geofence_radius)
            break
    else:
        radius = float(default)
    if radius <= 0 or not math.isfinite(radius):
        raise ConfigurationError("geofence_radius_invalid", f"Geofence radius must be positive, got {radius!r}")
    return radius
