"""
Geospatial helpers for UK postcodes.

Pure functions: great-circle distance, postcode area/district extraction and
a piecewise driving-time estimate.
"""
import math
import re


EARTH_RADIUS_KM = 6371.0

# Piecewise speed model: (upper bound km, average km/h)
URBAN_LIMIT_KM = 10.0
URBAN_SPEED_KMH = 30.0
MIXED_LIMIT_KM = 50.0
MIXED_SPEED_KMH = 40.0
MOTORWAY_SPEED_KMH = 50.0

_WHITESPACE = re.compile(r"\s+")
_LEADING_LETTERS = re.compile(r"^[A-Z]+")


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return great-circle (Haversine) distance in kilometres between two points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dl / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def clean_postcode(postcode: str) -> str:
    """Remove all whitespace and uppercase."""
    return _WHITESPACE.sub("", postcode or "").upper()


def postcode_area(postcode: str) -> str:
    """
    Postcode area: the one or two letters before the first digit.

    "SW1A 1AA" -> "SW", "e1 6an" -> "E"
    """
    match = _LEADING_LETTERS.match(clean_postcode(postcode))
    return match.group(0)[:2] if match else ""


def postcode_district(postcode: str) -> str:
    """
    Outward code: everything before the final three characters.

    "SW1A 1AA" -> "SW1A". Strings of three characters or fewer are returned as-is.
    """
    cleaned = clean_postcode(postcode)
    if len(cleaned) <= 3:
        return cleaned
    return cleaned[:-3]


def _minutes_at(distance: float, speed_kmh: float) -> float:
    return distance / speed_kmh * 60


def estimated_drive_minutes(distance: float) -> int:
    """
    Estimate driving time in whole minutes for a straight-line distance.

    Urban speed up to 10 km, mixed up to 50 km, motorway beyond. Each band is
    floored at the previous band's upper edge so the estimate never drops as
    distance grows.
    """
    distance = max(0.0, float(distance or 0))
    if distance <= URBAN_LIMIT_KM:
        minutes = _minutes_at(distance, URBAN_SPEED_KMH)
    elif distance <= MIXED_LIMIT_KM:
        minutes = max(
            _minutes_at(distance, MIXED_SPEED_KMH),
            _minutes_at(URBAN_LIMIT_KM, URBAN_SPEED_KMH),
        )
    else:
        minutes = max(
            _minutes_at(distance, MOTORWAY_SPEED_KMH),
            _minutes_at(MIXED_LIMIT_KM, MIXED_SPEED_KMH),
        )
    return int(round(minutes))


def prefix_covers(prefix: str, postcode: str) -> bool:
    """
    Whether a coverage prefix includes a postcode.

    A letters-only prefix ("SW") covers its whole postcode area. A prefix with
    digits ("SW1") covers that district and its lettered sub-districts
    ("SW1A") but not "SW10".
    """
    prefix = clean_postcode(prefix)
    if not prefix or not postcode:
        return False
    if prefix.isalpha():
        return postcode_area(postcode) == prefix
    district = postcode_district(postcode)
    if district == prefix:
        return True
    return district.startswith(prefix) and district[len(prefix):].isalpha()
