"""Upstream job and telemetry sources."""

from dispatch_monitor.services.sources.base import (
    JobSource,
    TelemetrySource,
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from dispatch_monitor.services.sources.http import HttpJobSource, HttpTelemetrySource

__all__ = [
    "HttpJobSource",
    "HttpTelemetrySource",
    "JobSource",
    "TelemetrySource",
    "UpstreamError",
    "UpstreamTimeout",
    "UpstreamUnavailable",
]
