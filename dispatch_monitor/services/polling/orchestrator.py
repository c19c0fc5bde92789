"""Polling orchestrator.

Owns the fixed-rate fetch -> diff -> verify -> evaluate -> commit cycle,
the single-cycle concurrency guard and upstream failure handling.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from prometheus_client import Counter, Gauge, Histogram

from dispatch_monitor.config import Settings
from dispatch_monitor.services.alerts.engine import AlertEngine
from dispatch_monitor.services.alerts.models import EvalResult, Severity
from dispatch_monitor.services.changes.detector import ChangeDetector
from dispatch_monitor.services.events.bus import EventBus
from dispatch_monitor.services.events.schemas import (
    MonitorEvent,
    alert_event,
    poll_completed,
    poll_failed,
    poll_skipped,
)
from dispatch_monitor.services.gps.verifier import (
    GpsProximityVerifier,
    VerificationResult,
    VerificationStatus,
)
from dispatch_monitor.services.history.base import HistorySink, SnapshotMetrics
from dispatch_monitor.services.jobs.models import (
    FetchResult,
    JobRecord,
    index_snapshot,
)
from dispatch_monitor.services.snapshot.store import SnapshotStore
from dispatch_monitor.services.sources.base import (
    JobSource,
    TelemetrySource,
    UpstreamError,
    UpstreamTimeout,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Prometheus Metrics
# =============================================================================

POLL_RUNNING = Gauge(
    "dispatch_poll_running",
    "Whether the polling timer is running (1=running, 0=stopped)",
)
POLL_CYCLES_TOTAL = Counter(
    "dispatch_poll_cycles_total",
    "Poll cycles by outcome",
    ["status"],  # completed, failed, skipped, error
)
POLL_CYCLE_DURATION = Histogram(
    "dispatch_poll_cycle_duration_seconds",
    "Duration of completed poll cycles",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)
POLL_CONSECUTIVE_FAILURES = Gauge(
    "dispatch_poll_consecutive_failures",
    "Back-to-back failed poll cycles",
)
POLL_LAST_SUCCESS_TIMESTAMP = Gauge(
    "dispatch_poll_last_success_timestamp",
    "Unix timestamp of the last completed poll cycle",
)
JOBS_IN_SNAPSHOT = Gauge(
    "dispatch_jobs_in_snapshot",
    "Jobs in the last committed snapshot",
)
ALERTS_ACTIVE = Gauge(
    "dispatch_alerts_active",
    "Open alerts (active or acknowledged) by severity",
    ["severity"],
)
ALERTS_CREATED_TOTAL = Counter(
    "dispatch_alerts_created_total",
    "Alerts created",
    ["rule_id"],
)
ALERTS_RESOLVED_TOTAL = Counter(
    "dispatch_alerts_resolved_total",
    "Alerts resolved",
    ["rule_id"],
)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class CycleResult:
    """Result of a single poll cycle."""

    status: str  # completed, failed, skipped, error
    started_at: Optional[datetime] = None
    duration_ms: int = 0
    jobs_total: int = 0
    jobs_carried_forward: int = 0
    changes: dict[str, int] = field(default_factory=dict)
    change_categories: dict[str, int] = field(default_factory=dict)
    alerts_new: int = 0
    alerts_resolved: int = 0
    telemetry_error: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PollingStatus:
    """Status of the polling orchestrator."""

    running: bool = False
    cycle_in_progress: bool = False
    last_poll_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_duration_ms: Optional[int] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_telemetry_error: Optional[str] = None
    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    skipped_cycles: int = 0
    success_rate: Optional[float] = None
    poll_interval_ms: int = 0
    healthy: bool = False


@dataclass
class VehicleGpsStatus:
    """GPS verification summary for one vehicle."""

    vehicle_id: str
    verification_status: VerificationStatus
    tracked: bool
    job_id: Optional[str] = None
    job_ids: list[str] = field(default_factory=list)
    distance_miles: Optional[float] = None
    observed_at: Optional[datetime] = None


@dataclass
class GpsStatus:
    """Fleet-wide GPS verification summary from the last cycle."""

    total_vehicles: int = 0
    verified_count: int = 0
    telemetry_available: bool = False
    updated_at: Optional[datetime] = None
    vehicles: list[VehicleGpsStatus] = field(default_factory=list)


# Which job's verdict represents a vehicle with several jobs
_STATUS_PRIORITY = {
    VerificationStatus.VERIFIED: 0,
    VerificationStatus.UNVERIFIED: 1,
    VerificationStatus.OFF_SCHEDULE: 2,
    VerificationStatus.NO_TRACKING: 3,
}


# =============================================================================
# Orchestrator
# =============================================================================


class PollingOrchestrator:
    """
    Background service that drives poll cycles.

    Features:
    - Fixed-rate timer owning its own stop event
    - At most one cycle at a time; overdue ticks are skipped, not queued
    - Failed job fetches leave the snapshot and alerts untouched
    - Telemetry failures skip GPS rules but not the cycle
    - History writes are fire-and-forget
    - Exposes Prometheus metrics
    """

    def __init__(
        self,
        job_source: JobSource,
        telemetry_source: Optional[TelemetrySource],
        engine: AlertEngine,
        snapshot_store: SnapshotStore,
        verifier: GpsProximityVerifier,
        settings: Settings,
        history_sink: Optional[HistorySink] = None,
        detector: Optional[ChangeDetector] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._job_source = job_source
        self._telemetry_source = telemetry_source
        self._engine = engine
        self._snapshot_store = snapshot_store
        self._verifier = verifier
        self._settings = settings
        self._history_sink = history_sink
        self._detector = detector or ChangeDetector()
        self._event_bus = event_bus
        self._clock = clock

        # Background task management
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._running = False

        # Concurrency guard
        self._cycle_in_progress = False
        self._cycle_task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._history_tasks: set[asyncio.Task] = set()

        # Status tracking
        self._last_poll_at: Optional[datetime] = None
        self._last_attempt_at: Optional[datetime] = None
        self._last_duration_ms: Optional[int] = None
        self._consecutive_failures = 0
        self._last_error: Optional[str] = None
        self._last_telemetry_error: Optional[str] = None
        self._total_cycles = 0
        self._successful_cycles = 0
        self._failed_cycles = 0
        self._skipped_cycles = 0

        # Last cycle's GPS view
        self._last_verifications: Optional[dict[str, VerificationResult]] = None
        self._last_snapshot: dict[str, JobRecord] = {}
        self._last_tracked_vehicles: set[str] = set()
        self._gps_updated_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        """Check if the timer is currently running."""
        return self._running

    @property
    def engine(self) -> AlertEngine:
        return self._engine

    @property
    def detector(self) -> ChangeDetector:
        return self._detector

    async def start(self) -> None:
        """Start the polling timer."""
        if self._running:
            logger.warning("poller_already_running")
            return

        logger.info(
            "poller_starting",
            poll_interval_ms=self._settings.poll_interval_ms,
            cache_ttl_ms=self._settings.cache_ttl_ms,
            batch_size=self._settings.batch_size,
            proximity_threshold_miles=self._settings.proximity_threshold_miles,
        )

        self._stop_event.clear()
        self._running = True
        POLL_RUNNING.set(1)
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the timer, letting an in-flight cycle finish.

        Args:
            timeout: Max seconds to wait for the in-flight cycle. The cycle is
                never cancelled; on timeout it completes in the background.
        """
        if not self._running:
            return

        timeout = timeout if timeout is not None else self._settings.stop_timeout_seconds
        logger.info("poller_stopping")
        self._stop_event.set()

        try:
            if self._task:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("poller_stop_timeout", timeout_seconds=timeout)

        if self._history_tasks:
            await asyncio.gather(*list(self._history_tasks), return_exceptions=True)

        self._running = False
        self._task = None
        POLL_RUNNING.set(0)
        logger.info("poller_stopped")

    async def run_once(self) -> CycleResult:
        """
        Run a single cycle now (manual trigger).

        Returns a skipped result if a cycle is already in progress.
        """
        if not self._begin_cycle():
            return await self._record_skip()
        return await self._run_claimed_cycle()

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> PollingStatus:
        """Current polling status."""
        interval_ms = self._settings.poll_interval_ms
        stale = True
        if self._last_poll_at is not None:
            age = self._clock() - self._last_poll_at
            stale = age > timedelta(milliseconds=2 * interval_ms)

        success_rate = None
        if self._total_cycles:
            success_rate = round(self._successful_cycles / self._total_cycles, 4)

        return PollingStatus(
            running=self._running,
            cycle_in_progress=self._cycle_in_progress,
            last_poll_at=self._last_poll_at,
            last_attempt_at=self._last_attempt_at,
            last_duration_ms=self._last_duration_ms,
            consecutive_failures=self._consecutive_failures,
            last_error=self._last_error,
            last_telemetry_error=self._last_telemetry_error,
            total_cycles=self._total_cycles,
            successful_cycles=self._successful_cycles,
            failed_cycles=self._failed_cycles,
            skipped_cycles=self._skipped_cycles,
            success_rate=success_rate,
            poll_interval_ms=interval_ms,
            healthy=self._running and self._consecutive_failures == 0 and not stale,
        )

    def get_gps_status(self) -> GpsStatus:
        """Per-vehicle GPS verification summary from the last completed cycle."""
        status = GpsStatus(
            telemetry_available=self._last_verifications is not None,
            updated_at=self._gps_updated_at,
        )

        jobs_by_vehicle: dict[str, list[str]] = {}
        for job in self._last_snapshot.values():
            if job.vehicle_id:
                jobs_by_vehicle.setdefault(job.vehicle_id, []).append(job.job_id)
        for vehicle_id in self._last_tracked_vehicles:
            jobs_by_vehicle.setdefault(vehicle_id, [])

        verifications = self._last_verifications or {}
        for vehicle_id in sorted(jobs_by_vehicle):
            job_ids = sorted(jobs_by_vehicle[vehicle_id])
            results = [verifications[j] for j in job_ids if j in verifications]
            tracked = vehicle_id in self._last_tracked_vehicles

            if results:
                best = min(
                    results,
                    key=lambda r: (
                        _STATUS_PRIORITY[r.verification_status],
                        r.distance_miles if r.distance_miles is not None else float("inf"),
                    ),
                )
                entry = VehicleGpsStatus(
                    vehicle_id=vehicle_id,
                    verification_status=best.verification_status,
                    tracked=tracked,
                    job_id=best.job_id,
                    job_ids=job_ids,
                    distance_miles=best.distance_miles,
                    observed_at=best.observed_at,
                )
            else:
                entry = VehicleGpsStatus(
                    vehicle_id=vehicle_id,
                    verification_status=VerificationStatus.NO_TRACKING,
                    tracked=tracked,
                    job_ids=job_ids,
                )

            status.vehicles.append(entry)
            if entry.verification_status == VerificationStatus.VERIFIED:
                status.verified_count += 1

        status.total_vehicles = len(status.vehicles)
        return status

    # =========================================================================
    # Internal Methods
    # =========================================================================

    async def _poll_loop(self) -> None:
        """Fixed-rate timer - runs until stop_event is set."""
        interval = self._settings.poll_interval_ms / 1000
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while not self._stop_event.is_set():
            await self._tick()

            next_tick += interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind; realign instead of firing a burst of ticks
                next_tick = loop.time()
                delay = 0

            # Wait for next tick (interruptible)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass

        # Let the in-flight cycle finish
        if self._cycle_task is not None and not self._cycle_task.done():
            await asyncio.shield(self._cycle_task)

    async def _tick(self) -> None:
        if not self._begin_cycle():
            await self._record_skip()
            return
        self._cycle_task = asyncio.create_task(self._run_claimed_cycle())

    def _begin_cycle(self) -> bool:
        """Claim the cycle slot. No await between the check and the claim."""
        if self._cycle_in_progress:
            return False
        self._cycle_in_progress = True
        self._idle.clear()
        return True

    async def _record_skip(self) -> CycleResult:
        self._skipped_cycles += 1
        POLL_CYCLES_TOTAL.labels(status="skipped").inc()
        logger.warning("poll_cycle_skipped", reason="cycle_in_progress")
        await self._publish(poll_skipped("cycle_in_progress", self._skipped_cycles))
        return CycleResult(status="skipped")

    async def _run_claimed_cycle(self) -> CycleResult:
        try:
            return await self._execute_cycle()
        except Exception as e:
            logger.exception("poll_cycle_error", error=str(e))
            POLL_CYCLES_TOTAL.labels(status="error").inc()
            self._register_failure(f"internal error: {e}")
            return CycleResult(status="error", error=str(e))
        finally:
            self._cycle_in_progress = False
            self._idle.set()

    async def _execute_cycle(self) -> CycleResult:
        """Execute a single poll cycle."""
        start_time = time.time()
        now = self._clock()
        self._last_attempt_at = now
        result = CycleResult(status="completed", started_at=now)

        # 1. Fetch jobs (cache first)
        try:
            fetched = await self._fetch_jobs()
        except UpstreamError as e:
            result.status = "failed"
            result.error = str(e)
            result.duration_ms = int((time.time() - start_time) * 1000)
            self._last_duration_ms = result.duration_ms
            self._register_failure(result.error)
            POLL_CYCLES_TOTAL.labels(status="failed").inc()
            logger.warning(
                "poll_fetch_failed",
                error=result.error,
                error_type=type(e).__name__,
                consecutive_failures=self._consecutive_failures,
            )
            await self._publish(poll_failed(result.error, self._consecutive_failures))
            return result

        snapshot = index_snapshot(fetched.jobs)
        result.jobs_carried_forward = self._carry_forward(snapshot, fetched.invalid_ids)

        # 2. Telemetry (failure skips GPS rules only)
        positions = None
        if self._telemetry_source is not None:
            try:
                positions = await asyncio.wait_for(
                    self._telemetry_source.fetch_latest_positions(),
                    timeout=self._settings.upstream_timeout_seconds,
                )
            except asyncio.TimeoutError:
                result.telemetry_error = "telemetry_source: timeout"
            except UpstreamError as e:
                result.telemetry_error = str(e)
            if result.telemetry_error:
                logger.warning("poll_telemetry_failed", error=result.telemetry_error)
        else:
            result.telemetry_error = "telemetry_source: not configured"

        # 3. Change detection against the committed snapshot
        previous = self._snapshot_store.previous
        changes = self._detector.detect(previous, snapshot)

        # 4. GPS verification
        verifications = None
        if positions is not None:
            verifications = self._verifier.verify_all(snapshot, positions, now)

        # 5. Alert evaluation
        eval_result = await self._engine.evaluate(snapshot, changes, verifications, now)

        # 6. Commit
        self._snapshot_store.replace(snapshot)
        self._detector.record_history(changes, previous, snapshot, now)
        self._last_snapshot = snapshot
        self._last_verifications = verifications
        self._last_tracked_vehicles = set(positions) if positions is not None else set()
        self._gps_updated_at = now

        # 7. Status
        result.duration_ms = int((time.time() - start_time) * 1000)
        result.jobs_total = len(snapshot)
        result.changes = changes.summary()
        result.change_categories = changes.analyze().as_dict()
        result.alerts_new = eval_result.alerts_new
        result.alerts_resolved = eval_result.alerts_resolved

        self._total_cycles += 1
        self._successful_cycles += 1
        self._consecutive_failures = 0
        self._last_error = None
        self._last_telemetry_error = result.telemetry_error
        self._last_poll_at = now
        self._last_duration_ms = result.duration_ms

        self._update_metrics(result, eval_result)

        logger.info(
            "poll_cycle_complete",
            jobs_total=result.jobs_total,
            jobs_carried_forward=result.jobs_carried_forward,
            changes=result.changes,
            change_categories=result.change_categories,
            alerts_new=result.alerts_new,
            alerts_resolved=result.alerts_resolved,
            telemetry_error=result.telemetry_error,
            duration_ms=result.duration_ms,
        )

        # 8. Notify and record history
        for alert in eval_result.created:
            await self._publish(alert_event("alert.created", alert))
        for alert in eval_result.resolved:
            await self._publish(alert_event("alert.resolved", alert))
        await self._publish(
            poll_completed(
                duration_ms=result.duration_ms,
                jobs_total=result.jobs_total,
                changes=result.changes,
                alerts_new=result.alerts_new,
                alerts_resolved=result.alerts_resolved,
                telemetry_error=result.telemetry_error,
            )
        )

        verified = sum(
            1
            for v in (verifications or {}).values()
            if v.verification_status == VerificationStatus.VERIFIED
        )
        self._record_history(
            SnapshotMetrics(
                polled_at=now,
                duration_ms=result.duration_ms,
                jobs_total=result.jobs_total,
                jobs_added=result.changes.get("added", 0),
                jobs_removed=result.changes.get("removed", 0),
                jobs_modified=result.changes.get("modified", 0),
                alerts_new=eval_result.alerts_new,
                alerts_resolved=eval_result.alerts_resolved,
                alerts_active=self._engine.active_count(),
                vehicles_tracked=len(self._last_tracked_vehicles),
                vehicles_verified=verified,
                telemetry_error=result.telemetry_error,
                field_changes=changes.field_counts(),
            )
        )

        return result

    async def _fetch_jobs(self) -> FetchResult:
        """Return the cached fetch or fetch from the job source under a timeout."""
        cached = self._snapshot_store.get()
        if cached is not None:
            logger.debug("poll_fetch_cache_hit", jobs=len(cached.jobs))
            return cached

        try:
            fetched = await asyncio.wait_for(
                self._job_source.fetch_active_jobs(limit=self._settings.batch_size),
                timeout=self._settings.upstream_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(
                "job_source",
                f"no response within {self._settings.upstream_timeout_seconds}s",
            ) from e

        self._snapshot_store.put(fetched)
        return fetched

    def _carry_forward(
        self, snapshot: dict[str, JobRecord], invalid_ids: set[str]
    ) -> int:
        """
        Keep the committed record of jobs whose fresh record failed to parse.

        The job is still upstream, so it must not count as removed and its
        alerts must not resolve. Ids never seen before have nothing to carry.
        """
        previous = self._snapshot_store.previous
        carried = []
        for job_id in sorted(invalid_ids):
            if job_id in snapshot or job_id not in previous:
                continue
            snapshot[job_id] = previous[job_id]
            carried.append(job_id)
        if carried:
            logger.warning("poll_invalid_jobs_carried_forward", job_ids=carried)
        return len(carried)

    def _register_failure(self, error: str) -> None:
        self._total_cycles += 1
        self._failed_cycles += 1
        self._consecutive_failures += 1
        self._last_error = error
        POLL_CONSECUTIVE_FAILURES.set(self._consecutive_failures)

    def _update_metrics(self, result: CycleResult, eval_result: EvalResult) -> None:
        POLL_CYCLES_TOTAL.labels(status="completed").inc()
        POLL_CYCLE_DURATION.observe(result.duration_ms / 1000)
        POLL_CONSECUTIVE_FAILURES.set(0)
        if result.started_at is not None:
            POLL_LAST_SUCCESS_TIMESTAMP.set(result.started_at.timestamp())
        JOBS_IN_SNAPSHOT.set(result.jobs_total)

        for alert in eval_result.created:
            ALERTS_CREATED_TOTAL.labels(rule_id=alert.rule_id).inc()
        for alert in eval_result.resolved:
            ALERTS_RESOLVED_TOTAL.labels(rule_id=alert.rule_id).inc()

        _, stats = self._engine.get_active_alerts()
        for severity in Severity:
            ALERTS_ACTIVE.labels(severity=severity.value).set(
                stats.by_severity.get(severity.value, 0)
            )

    async def _publish(self, event: MonitorEvent) -> None:
        if self._event_bus is None:
            return
        try:
            await self._event_bus.publish(event)
        except Exception as e:
            logger.warning("event_publish_failed", topic=event.topic, error=str(e))

    def _record_history(self, metrics: SnapshotMetrics) -> None:
        if self._history_sink is None:
            return
        task = asyncio.create_task(self._history_sink.record(metrics))
        self._history_tasks.add(task)
        task.add_done_callback(self._on_history_done)

    def _on_history_done(self, task: asyncio.Task) -> None:
        self._history_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "poll_history_write_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )


# =============================================================================
# Module-level singleton (for lifespan management)
# =============================================================================

_orchestrator: Optional[PollingOrchestrator] = None


def get_orchestrator() -> Optional[PollingOrchestrator]:
    """Get the global orchestrator instance."""
    return _orchestrator


def set_orchestrator(orchestrator: Optional[PollingOrchestrator]) -> None:
    """Set the global orchestrator instance."""
    global _orchestrator
    _orchestrator = orchestrator
