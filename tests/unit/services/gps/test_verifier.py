"""Unit tests for GPS proximity verification."""

import math
from datetime import date, datetime, timezone

import pytest

from dispatch_monitor.services.geo import EARTH_RADIUS_MILES
from dispatch_monitor.services.gps.verifier import (
    GpsProximityVerifier,
    VerificationStatus,
    classify_distance,
)
from dispatch_monitor.services.jobs.models import JobRecord, JobStatus, VehiclePosition


NOW = datetime(2024, 6, 3, 15, 0, tzinfo=timezone.utc)
TODAY = date(2024, 6, 3)
SITE_LAT = 41.8781
SITE_LON = -87.6298

# Miles per degree of latitude
MILES_PER_DEGREE = 2 * math.pi * EARTH_RADIUS_MILES / 360


def make_job(job_id="J1", **overrides) -> JobRecord:
    fields = dict(
        job_id=job_id,
        status=JobStatus.IN_PROGRESS,
        scheduled_date=TODAY,
        vehicle_id="T1",
        driver_id="D1",
        site_lat=SITE_LAT,
        site_lon=SITE_LON,
    )
    fields.update(overrides)
    return JobRecord(**fields)


def position_north_of_site(miles: float, vehicle_id: str = "T1") -> VehiclePosition:
    """Vehicle position the given distance due north of the test site."""
    return VehiclePosition(
        vehicle_id=vehicle_id,
        lat=SITE_LAT + miles / MILES_PER_DEGREE,
        lon=SITE_LON,
        observed_at=NOW,
    )


@pytest.fixture
def verifier():
    """Verifier with the default 2 mile threshold."""
    return GpsProximityVerifier(proximity_threshold_miles=2.0)


# =============================================================================
# Distance classification
# =============================================================================


class TestClassifyDistance:
    """Tests for threshold classification."""

    def test_inside_threshold(self):
        """Distances below the threshold are verified."""
        assert classify_distance(1.999, 2.0) == VerificationStatus.VERIFIED

    def test_threshold_is_inclusive(self):
        """A distance equal to the threshold is verified."""
        assert classify_distance(2.0, 2.0) == VerificationStatus.VERIFIED

    def test_outside_threshold(self):
        """Distances above the threshold are unverified."""
        assert classify_distance(2.001, 2.0) == VerificationStatus.UNVERIFIED


# =============================================================================
# Per-job verification
# =============================================================================


class TestVerify:
    """Tests for GpsProximityVerifier.verify."""

    def test_vehicle_near_site_verified(self, verifier):
        """Vehicle within the threshold on the scheduled day is verified."""
        result = verifier.verify(make_job(), position_north_of_site(0.5), NOW)

        assert result.verification_status == VerificationStatus.VERIFIED
        assert result.proximity_satisfied is True
        assert result.distance_miles == pytest.approx(0.5, abs=0.01)
        assert result.vehicle_id == "T1"
        assert result.observed_at == NOW

    def test_vehicle_far_from_site_unverified(self, verifier):
        """Vehicle beyond the threshold is unverified."""
        result = verifier.verify(make_job(), position_north_of_site(5.0), NOW)

        assert result.verification_status == VerificationStatus.UNVERIFIED
        assert result.proximity_satisfied is False
        assert result.distance_miles == pytest.approx(5.0, abs=0.01)

    def test_classifies_before_rounding(self):
        """A distance just past the threshold stays unverified after rounding."""
        verifier = GpsProximityVerifier(proximity_threshold_miles=2.0)
        result = verifier.verify(make_job(), position_north_of_site(2.003), NOW)

        assert result.verification_status == VerificationStatus.UNVERIFIED
        assert result.distance_miles == pytest.approx(2.0, abs=0.01)

    def test_tomorrow_job_is_off_schedule(self, verifier):
        """A nearby vehicle on a job scheduled for another day is off schedule."""
        job = make_job(scheduled_date=date(2024, 6, 4))
        result = verifier.verify(job, position_north_of_site(0.1), NOW)

        assert result.verification_status == VerificationStatus.OFF_SCHEDULE
        assert result.proximity_satisfied is False
        assert result.distance_miles == pytest.approx(0.1, abs=0.01)

    def test_completed_job_is_off_schedule(self, verifier):
        """Finished jobs are outside the verification window."""
        job = make_job(
            status=JobStatus.COMPLETED,
            completion_time=datetime(2024, 6, 3, 14, 0, tzinfo=timezone.utc),
        )
        result = verifier.verify(job, position_north_of_site(0.1), NOW)

        assert result.verification_status == VerificationStatus.OFF_SCHEDULE

    def test_schedule_day_uses_configured_timezone(self):
        """The scheduled day is compared in the schedule timezone."""
        verifier = GpsProximityVerifier(2.0, schedule_tz="America/Chicago")
        # 02:00 UTC on June 3 is still June 2 in Chicago
        early_utc = datetime(2024, 6, 3, 2, 0, tzinfo=timezone.utc)

        yesterday_local = make_job(scheduled_date=date(2024, 6, 2))
        today_utc = make_job(scheduled_date=date(2024, 6, 3))

        assert (
            verifier.verify(
                yesterday_local, position_north_of_site(0.1), early_utc
            ).verification_status
            == VerificationStatus.VERIFIED
        )
        assert (
            verifier.verify(
                today_utc, position_north_of_site(0.1), early_utc
            ).verification_status
            == VerificationStatus.OFF_SCHEDULE
        )

    def test_no_vehicle_assigned(self, verifier):
        """Jobs without a vehicle have no tracking."""
        result = verifier.verify(make_job(vehicle_id=None), None, NOW)

        assert result.verification_status == VerificationStatus.NO_TRACKING
        assert result.reason == "no_vehicle"
        assert result.distance_miles is None

    def test_no_position_for_vehicle(self, verifier):
        """Assigned vehicle without a position has no tracking."""
        result = verifier.verify(make_job(), None, NOW)

        assert result.verification_status == VerificationStatus.NO_TRACKING
        assert result.reason == "no_position"
        assert result.vehicle_id == "T1"

    def test_no_site_coordinates(self, verifier):
        """Jobs without site coordinates cannot be verified."""
        job = make_job(site_lat=None, site_lon=None)
        result = verifier.verify(job, position_north_of_site(0.1), NOW)

        assert result.verification_status == VerificationStatus.NO_TRACKING
        assert result.reason == "no_site_coordinates"

    def test_invalid_position_coordinate(self, verifier):
        """A non-finite vehicle coordinate yields no tracking, not an error."""
        position = VehiclePosition(vehicle_id="T1", lat=float("nan"), lon=SITE_LON)
        result = verifier.verify(make_job(), position, NOW)

        assert result.verification_status == VerificationStatus.NO_TRACKING
        assert result.reason == "invalid_coordinate"


class TestVerifyAll:
    """Tests for GpsProximityVerifier.verify_all."""

    def test_results_keyed_by_job(self, verifier):
        """Every job in the snapshot gets a result."""
        jobs = {
            "J1": make_job("J1", vehicle_id="T1"),
            "J2": make_job("J2", vehicle_id="T2"),
            "J3": make_job("J3", vehicle_id=None),
        }
        positions = {
            "T1": position_north_of_site(0.2, "T1"),
            "T2": position_north_of_site(8.0, "T2"),
        }

        results = verifier.verify_all(jobs, positions, NOW)

        assert set(results) == {"J1", "J2", "J3"}
        assert results["J1"].verification_status == VerificationStatus.VERIFIED
        assert results["J2"].verification_status == VerificationStatus.UNVERIFIED
        assert results["J3"].verification_status == VerificationStatus.NO_TRACKING

    def test_empty_snapshot(self, verifier):
        """No jobs, no results."""
        assert verifier.verify_all({}, {}, NOW) == {}
