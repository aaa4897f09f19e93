import math
from typing import List, Tuple

from sqlmodel import Session, select

from ..errors import ValidationError
from ..models import Report

EARTH_RADIUS_KM = 6371.0


def parse_finite(value, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}") from None
    if not math.isfinite(number):
        raise ValidationError(f"Invalid {name}")
    return number


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two points given in degrees."""
    lat1, lon1, lat2, lon2 = map(math.radians, (lat1, lon1, lat2, lon2))
    cos_angle = (
        math.cos(lat1) * math.cos(lat2) * math.cos(lon2 - lon1)
        + math.sin(lat1) * math.sin(lat2)
    )
    # rounding can push identical points just past 1.0
    cos_angle = min(1.0, max(-1.0, cos_angle))
    return EARTH_RADIUS_KM * math.acos(cos_angle)


def find_nearby(session: Session, latitude, longitude, radius_km) -> List[Tuple[Report, float]]:
    """Reports strictly closer than ``radius_km`` to the point, nearest first."""
    try:
        lat = parse_finite(latitude, "latitude")
        lon = parse_finite(longitude, "longitude")
    except ValidationError:
        raise ValidationError("Invalid latitude or longitude") from None
    radius = parse_finite(radius_km, "radius")
    if radius < 0:
        raise ValidationError("Radius must not be negative")

    matches = []
    for report in session.exec(select(Report)).all():
        distance = haversine_km(lat, lon, report.latitude, report.longitude)
        if distance < radius:
            matches.append((report, distance))
    matches.sort(key=lambda item: item[1])
    return matches
