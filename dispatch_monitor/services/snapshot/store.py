"""Snapshot store: last committed job snapshot plus a short-lived fetch cache."""

import time
from types import MappingProxyType
from typing import Callable, Mapping, Optional

import structlog

from dispatch_monitor.services.jobs.models import FetchResult, JobRecord

logger = structlog.get_logger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 15.0


class SnapshotStore:
    """
    Holds the previous snapshot and the cached fetch result.

    The cache TTL is kept short: a stale fetch keeps alerts alive after the
    underlying job has already been completed.
    """

    def __init__(
        self,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = cache_ttl_seconds
        self._clock = clock
        self._previous: Mapping[str, JobRecord] = MappingProxyType({})
        self._cached: Optional[FetchResult] = None
        self._cached_expires_at: float = 0.0

    @property
    def previous(self) -> Mapping[str, JobRecord]:
        """Read-only snapshot from the last committed cycle."""
        return self._previous

    @property
    def cache_ttl_seconds(self) -> float:
        return self._ttl

    def get(self) -> Optional[FetchResult]:
        """
        Return the cached fetch result if still fresh.

        Returns:
            Copy of the cached fetch, or None when a refetch is required
        """
        if self._cached is None:
            return None
        if self._clock() >= self._cached_expires_at:
            self._cached = None
            return None
        return self._cached.copy()

    def put(self, fetched: FetchResult) -> None:
        """Cache a fresh fetch result."""
        if self._ttl <= 0:
            return
        self._cached = fetched.copy()
        self._cached_expires_at = self._clock() + self._ttl

    def invalidate(self) -> None:
        """Drop the cached fetch result."""
        self._cached = None

    def replace(self, new_snapshot: Mapping[str, JobRecord]) -> None:
        """Atomically swap in the snapshot of a completed cycle."""
        self._previous = MappingProxyType(dict(new_snapshot))
        logger.debug("snapshot_committed", jobs=len(new_snapshot))

    def reset(self) -> None:
        """Clear both the committed snapshot and the cache."""
        self._previous = MappingProxyType({})
        self._cached = None
