from __future__ import annotations
"""Great-circle distance and the completion geofence gate."""
import math
import re
from typing import Any, Optional, Tuple
from flask import current_app
from fieldops.errors import GeofenceError, ValidationError
from fieldops.models.user import User

EARTH_RADIUS_M = 6371000.0

Coordinates = Tuple[float, float]

_WKT_POINT = re.compile(r'^\s*POINT\s*\(\s*(-?[\d.]+)\s+(-?[\d.]+)\s*\)\s*$', re.IGNORECASE)


def haversine_m(a: Coordinates, b: Coordinates) -> float:
    """Distance in metres between two (lat, lng) pairs."""
    lat1, lng1 = a
    lat2, lng2 = b
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    h = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2)
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def parse_position(raw: Any) -> Optional[Coordinates]:
    """Accept {'lat','lng'} mappings, (lat, lng) pairs, GeoJSON points or WKT 'POINT(lng lat)'.

    Returns None for a missing position; raises ValidationError for garbage.
    """
    if raw is None:
        return None
    try:
        if isinstance(raw, dict):
            if raw.get('type') == 'Point' and isinstance(raw.get('coordinates'), (list, tuple)):
                lng, lat = raw['coordinates'][:2]
            else:
                if raw.get('lat') is None and raw.get('lng') is None:
                    return None
                lat, lng = raw.get('lat'), raw.get('lng')
        elif isinstance(raw, str):
            m = _WKT_POINT.match(raw)
            if not m:
                raise ValueError(raw)
            lng, lat = m.group(1), m.group(2)
        else:
            lat, lng = raw
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError('position must be {lat, lng}, a (lat, lng) pair, GeoJSON Point or WKT POINT')
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        raise ValidationError('position out of range')
    return (lat, lng)


def geofence_radius_m() -> float:
    return float(current_app.config.get('GEOFENCE_RADIUS_M', 100.0))


def assert_within_geofence(actor: User, position: Optional[Coordinates], target: Coordinates) -> Optional[float]:
    """Completion gate. Only field-dispatch technicians are checked; unknown position fails closed.

    Returns the measured distance when one was computed.
    """
    if actor.role != User.ROLE_FIELD_TECH:
        return haversine_m(position, target) if position else None
    radius = geofence_radius_m()
    if position is None:
        raise GeofenceError('Current position unavailable; enable location to complete this job', radius_m=radius)
    distance = haversine_m(position, target)
    # boundary inclusive: exactly radius metres passes
    if distance > radius:
        raise GeofenceError(f'You are {distance:.0f} m away; move within {radius:.0f} m of the vehicle', distance_m=distance, radius_m=radius)
    return distance
