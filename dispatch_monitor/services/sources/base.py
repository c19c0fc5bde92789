"""Upstream collaborator interfaces and their failure kinds."""

from typing import Optional, Protocol, runtime_checkable

from dispatch_monitor.services.jobs.models import FetchResult, VehiclePosition


class UpstreamError(Exception):
    """Base class for transient upstream failures."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class UpstreamUnavailable(UpstreamError):
    """The upstream could not be reached or returned an unusable response."""

    pass


class UpstreamTimeout(UpstreamError):
    """The upstream did not answer within the configured timeout."""

    pass


@runtime_checkable
class JobSource(Protocol):
    """Returns the current set of active jobs."""

    async def fetch_active_jobs(self, limit: Optional[int] = None) -> FetchResult:
        ...


@runtime_checkable
class TelemetrySource(Protocol):
    """Returns the latest known position per vehicle."""

    async def fetch_latest_positions(self) -> dict[str, VehiclePosition]:
        ...
