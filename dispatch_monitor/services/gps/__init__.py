"""GPS proximity verification."""

from dispatch_monitor.services.gps.verifier import (
    GpsProximityVerifier,
    VerificationResult,
    VerificationStatus,
    classify_distance,
)

__all__ = [
    "GpsProximityVerifier",
    "VerificationResult",
    "VerificationStatus",
    "classify_distance",
]
