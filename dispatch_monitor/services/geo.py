"""Great-circle distance between coordinates."""

import math

EARTH_RADIUS_MILES = 3958.8


class InvalidCoordinate(ValueError):
    """Raised when a latitude or longitude is missing or non-finite."""

    pass


def _require_finite(name: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidCoordinate(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidCoordinate(f"{name} must be finite, got {value!r}")
    return float(value)


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Compute the great-circle distance between two points in miles.

    Args:
        lat1, lon1: First point in decimal degrees
        lat2, lon2: Second point in decimal degrees

    Returns:
        Non-negative distance in miles

    Raises:
        InvalidCoordinate: If any input is not a finite number
    """
    lat1 = _require_finite("lat1", lat1)
    lon1 = _require_finite("lon1", lon1)
    lat2 = _require_finite("lat2", lat2)
    lon2 = _require_finite("lon2", lon2)

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Clamp against float drift for antipodal points
    c = 2 * math.asin(min(1.0, math.sqrt(a)))
    return EARTH_RADIUS_MILES * c
