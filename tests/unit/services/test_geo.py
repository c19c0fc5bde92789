"""Unit tests for great-circle distance."""

import math

import pytest

from dispatch_monitor.services.geo import (
    EARTH_RADIUS_MILES,
    InvalidCoordinate,
    haversine_miles,
)


class TestHaversineMiles:
    """Tests for haversine_miles."""

    def test_same_point_is_zero(self):
        """Identical coordinates are zero miles apart."""
        assert haversine_miles(41.88, -87.63, 41.88, -87.63) == 0.0

    def test_new_york_to_los_angeles(self):
        """Known city pair lands near the published distance."""
        distance = haversine_miles(40.7128, -74.0060, 34.0522, -118.2437)
        assert distance == pytest.approx(2445.6, abs=2.0)

    def test_one_degree_of_latitude(self):
        """One degree of latitude is about 69.09 miles."""
        distance = haversine_miles(40.0, -90.0, 41.0, -90.0)
        assert distance == pytest.approx(2 * math.pi * EARTH_RADIUS_MILES / 360)

    def test_symmetric(self):
        """Distance does not depend on argument order."""
        a = haversine_miles(29.76, -95.37, 32.78, -96.80)
        b = haversine_miles(32.78, -96.80, 29.76, -95.37)
        assert a == pytest.approx(b)

    def test_antipodal_points(self):
        """Antipodal points are half the circumference apart."""
        distance = haversine_miles(0.0, 0.0, 0.0, 180.0)
        assert distance == pytest.approx(math.pi * EARTH_RADIUS_MILES)

    def test_accepts_integers(self):
        """Integer degrees are accepted."""
        assert haversine_miles(0, 0, 1, 0) > 0

    @pytest.mark.parametrize(
        "coords",
        [
            (float("nan"), 0.0, 0.0, 0.0),
            (0.0, float("inf"), 0.0, 0.0),
            (0.0, 0.0, float("-inf"), 0.0),
            (0.0, 0.0, 0.0, float("nan")),
        ],
    )
    def test_non_finite_rejected(self, coords):
        """NaN and infinite coordinates raise InvalidCoordinate."""
        with pytest.raises(InvalidCoordinate):
            haversine_miles(*coords)

    def test_missing_coordinate_rejected(self):
        """None is not a coordinate."""
        with pytest.raises(InvalidCoordinate):
            haversine_miles(None, 0.0, 0.0, 0.0)

    def test_string_coordinate_rejected(self):
        """Strings are not coerced."""
        with pytest.raises(InvalidCoordinate):
            haversine_miles("41.0", 0.0, 0.0, 0.0)

    def test_bool_coordinate_rejected(self):
        """Booleans are not treated as numbers."""
        with pytest.raises(InvalidCoordinate):
            haversine_miles(True, 0.0, 0.0, 0.0)

    def test_invalid_coordinate_is_value_error(self):
        """Callers catching ValueError also catch InvalidCoordinate."""
        assert issubclass(InvalidCoordinate, ValueError)
