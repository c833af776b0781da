# offsite_api/services/geofence.py
import math
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from offsite_api.common.errors import ValidationFailed

EARTH_RADIUS_M = 6371000

INSIDE = "INSIDE"
OUTSIDE = "OUTSIDE"


@dataclass(frozen=True)
class GeoFence:
    center_lat: float
    center_lon: float
    radius_m: float
    buffer_m: float = 0.0
    enabled: bool = True

    def __post_init__(self):
        if self.radius_m < 0 or self.buffer_m < 0:
            raise ValidationFailed(message="Geofence radius and buffer must be >= 0")

    @property
    def allowed_m(self) -> float:
        return self.radius_m + self.buffer_m


@dataclass(frozen=True)
class GeofenceResult:
    distance_m: float
    status: str
    violation: bool

    @property
    def inside(self) -> bool:
        return not self.violation

    def to_dict(self):
        return {
            "distance_m": round(self.distance_m, 2),
            "status": self.status,
            "violation": self.violation,
        }


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great circle distance in meters between two points given in decimal
    degrees (haversine formula).
    """
    lat1, lon1, lat2, lon2 = map(float, [lat1, lon1, lat2, lon2])

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2.0)**2 + \
        math.cos(phi1) * math.cos(phi2) * \
        math.sin(dlambda / 2.0)**2

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def validate(lat: float, lon: float, fence: GeoFence) -> GeofenceResult:
    # boundary is inclusive: exactly radius + buffer is still INSIDE
    dist = calculate_distance(lat, lon, fence.center_lat, fence.center_lon)
    violation = dist > fence.allowed_m
    return GeofenceResult(distance_m=dist, status=OUTSIDE if violation else INSIDE, violation=violation)


def validate_coordinates(lat, lon):
    """Range-check a coordinate pair; both or neither must be given."""
    if lat is None and lon is None:
        return None, None
    if lat is None or lon is None:
        raise ValidationFailed(message="latitude and longitude must be provided together")
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise ValidationFailed(message="latitude/longitude must be numbers")
    if not -90 <= lat <= 90:
        raise ValidationFailed(message="latitude must be between -90 and 90")
    if not -180 <= lon <= 180:
        raise ValidationFailed(message="longitude must be between -180 and 180")
    return lat, lon


def fence_for_project(project) -> Optional[GeoFence]:
    """
    The project's fence, or None when geofencing is off for it.
    Callers treat None as "unvalidated", never as a violation.
    """
    if not project or not project.geo_enabled:
        return None
    if project.geo_center_lat is None or project.geo_center_lon is None:
        return None
    cfg = current_app.config
    radius = project.geo_radius_m
    buffer = project.geo_buffer_m
    return GeoFence(
        center_lat=project.geo_center_lat,
        center_lon=project.geo_center_lon,
        radius_m=radius if radius is not None else cfg["GEOFENCE_DEFAULT_RADIUS_M"],
        buffer_m=buffer if buffer is not None else cfg["GEOFENCE_DEFAULT_BUFFER_M"],
    )


def check_point(project, lat, lon) -> Optional[GeofenceResult]:
    """Validate a point against a project's fence; None means unvalidated."""
    if lat is None or lon is None:
        return None
    fence = fence_for_project(project)
    if fence is None:
        return None
    return validate(lat, lon, fence)
