"""Alert engine - evaluates rules and manages the alert lifecycle."""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

import structlog

from dispatch_monitor.services.alerts.models import (
    Alert,
    AlertHistoryEntry,
    AlertNotFoundError,
    AlertRule,
    AlertState,
    AlertStats,
    BulkActionResult,
    EvalContext,
    EvalResult,
    InvalidStateTransition,
    RuleScope,
    Severity,
    make_alert_id,
)
from dispatch_monitor.services.alerts.store import AlertStore
from dispatch_monitor.services.changes.detector import ChangeKind, ChangeSet
from dispatch_monitor.services.gps.verifier import VerificationResult
from dispatch_monitor.services.jobs.models import JobRecord

logger = structlog.get_logger(__name__)


class _MessageFields(dict):
    def __missing__(self, key: str) -> str:
        return "unknown"


def render_message(
    rule: AlertRule,
    job: JobRecord,
    verification: Optional[VerificationResult],
) -> str:
    """Render a rule's message template for one job."""
    fields: dict[str, Any] = {
        "job_id": job.job_id,
        "status": job.status.value,
        "vehicle_id": job.vehicle_id or "unassigned",
        "driver_id": job.driver_id or "unassigned",
        "route_id": job.route_id or "none",
        "site_address": job.site_address or "unknown",
    }
    if job.driver_reported_status is not None:
        fields["driver_reported_status"] = job.driver_reported_status.value
    if job.arrival_time is not None:
        fields["arrival_time"] = job.arrival_time.isoformat()
    if verification is not None and verification.distance_miles is not None:
        fields["distance_miles"] = f"{verification.distance_miles:.2f}"
    if verification is not None and verification.reason:
        fields["gps_reason"] = verification.reason.replace("_", " ")
    return rule.message_template.format_map(_MessageFields(fields))


class AlertEngine:
    """
    Evaluates the rule set against each snapshot and reconciles alerts.

    Every mutation of the alert store, from poll cycles and from operator
    actions alike, runs under the store's lock with no awaits inside.
    """

    def __init__(self, rules: Iterable[AlertRule], store: AlertStore):
        self.rules = tuple(rules)
        self.store = store
        self._rule_ids = {rule.rule_id for rule in self.rules}
        # (rule_id, job_id) -> last outcome of a job-scope rule
        self._memo: dict[tuple[str, str], bool] = {}

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def evaluate(
        self,
        snapshot: Mapping[str, JobRecord],
        changes: ChangeSet,
        verifications: Optional[Mapping[str, VerificationResult]],
        now: Optional[datetime] = None,
    ) -> EvalResult:
        """
        Evaluate all rules and reconcile the alert set.

        Args:
            snapshot: job_id -> JobRecord for this cycle
            changes: Change set against the previous snapshot
            verifications: GPS results keyed by job_id, or None when telemetry
                was unavailable (GPS rules are skipped and their alerts kept)
            now: Cycle timestamp

        Returns:
            EvalResult with counts and the alerts created or resolved
        """
        now = now or datetime.now(timezone.utc)
        async with self.store.lock:
            return self._evaluate_locked(snapshot, changes, verifications, now)

    def _evaluate_locked(
        self,
        snapshot: Mapping[str, JobRecord],
        changes: ChangeSet,
        verifications: Optional[Mapping[str, VerificationResult]],
        now: datetime,
    ) -> EvalResult:
        result = EvalResult(timestamp=now, gps_rules_skipped=verifications is None)
        ctx = EvalContext.build(now, snapshot, verifications)

        # (rule_id, job_id) -> holds; missing means skipped or errored
        outcomes: dict[tuple[str, str], bool] = {}

        for rule in self.rules:
            if rule.scope == RuleScope.GPS and verifications is None:
                continue

            triggered = 0
            for job_id, job in snapshot.items():
                key = (rule.rule_id, job_id)
                verification = (
                    verifications.get(job_id) if verifications is not None else None
                )

                if (
                    rule.scope == RuleScope.JOB
                    and key in self._memo
                    and changes.kind_of(job_id) == ChangeKind.UNCHANGED
                ):
                    holds = self._memo[key]
                    result.conditions_reused += 1
                else:
                    try:
                        holds = bool(rule.predicate(job, verification, ctx))
                    except Exception as e:
                        self._memo.pop(key, None)
                        result.errors.append(f"{rule.rule_id}:{job_id}: {e}")
                        logger.warning(
                            "alert_rule_error",
                            rule_id=rule.rule_id,
                            job_id=job_id,
                            error=str(e),
                        )
                        continue
                    result.conditions_evaluated += 1
                    if rule.scope == RuleScope.JOB:
                        self._memo[key] = holds

                outcomes[key] = holds
                if holds:
                    triggered += 1
                    self._raise(rule, job, verification, now, result)

            if triggered:
                result.by_rule[rule.rule_id] = triggered

        self._resolve_cleared(snapshot, outcomes, now, result)

        # Forget cached outcomes of jobs that left the snapshot
        for key in [k for k in self._memo if k[1] not in snapshot]:
            del self._memo[key]

        logger.info(
            "alert_eval_complete",
            jobs=len(snapshot),
            conditions_evaluated=result.conditions_evaluated,
            conditions_reused=result.conditions_reused,
            alerts_new=result.alerts_new,
            alerts_updated=result.alerts_updated,
            alerts_resolved=result.alerts_resolved,
            alerts_suppressed=result.alerts_suppressed,
            gps_rules_skipped=result.gps_rules_skipped,
            errors=len(result.errors),
        )
        return result

    def _raise(
        self,
        rule: AlertRule,
        job: JobRecord,
        verification: Optional[VerificationResult],
        now: datetime,
        result: EvalResult,
    ) -> None:
        alert_id = make_alert_id(rule.rule_id, job.job_id)
        result.alerts_triggered += 1
        existing = self.store.get(alert_id)

        if existing is not None and existing.is_open:
            existing.last_seen_at = now
            existing.occurrence_count += 1
            result.alerts_updated += 1
            return

        if (
            existing is not None
            and existing.state == AlertState.DISMISSED
            and self.store.is_suppressed(alert_id)
        ):
            result.alerts_suppressed += 1
            return

        alert = Alert(
            alert_id=alert_id,
            rule_id=rule.rule_id,
            rule_name=rule.name,
            severity=rule.severity,
            message=render_message(rule, job, verification),
            job_id=job.job_id,
            vehicle_id=job.vehicle_id,
            first_seen_at=now,
            last_seen_at=now,
        )
        self.store.put(alert)
        self.store.record(alert, "created", now)
        result.alerts_new += 1
        result.created.append(replace(alert))

        logger.info(
            "alert_created",
            alert_id=alert_id,
            rule_id=rule.rule_id,
            job_id=job.job_id,
            severity=rule.severity.value,
        )

    def _resolve_cleared(
        self,
        snapshot: Mapping[str, JobRecord],
        outcomes: Mapping[tuple[str, str], bool],
        now: datetime,
        result: EvalResult,
    ) -> None:
        for alert in self.store.open_alerts():
            if alert.job_id in snapshot and alert.rule_id in self._rule_ids:
                holds = outcomes.get((alert.rule_id, alert.job_id))
                # Not evaluated this cycle: keep as is
                if holds is None or holds:
                    continue

            alert.state = AlertState.RESOLVED
            alert.resolved_at = now
            self.store.record(alert, "resolved", now)
            result.alerts_resolved += 1
            result.resolved.append(replace(alert))

            logger.info(
                "alert_resolved",
                alert_id=alert.alert_id,
                rule_id=alert.rule_id,
                job_id=alert.job_id,
                job_removed=alert.job_id not in snapshot,
            )

        for alert_id in self.store.suppressed_ids:
            alert = self.store.get(alert_id)
            if (
                alert is None
                or alert.job_id not in snapshot
                or outcomes.get((alert.rule_id, alert.job_id)) is False
            ):
                self.store.unsuppress(alert_id)

    # =========================================================================
    # Operator actions
    # =========================================================================

    async def acknowledge(
        self,
        alert_id: str,
        by: str,
        now: Optional[datetime] = None,
    ) -> tuple[Alert, bool]:
        """
        Acknowledge an open alert.

        Idempotent: acknowledging an already-acknowledged alert succeeds
        without changing it.

        Returns:
            (alert copy, was_already_acknowledged)

        Raises:
            AlertNotFoundError: Unknown alert id
            InvalidStateTransition: Alert is Dismissed or Resolved
        """
        now = now or datetime.now(timezone.utc)
        async with self.store.lock:
            alert = self._require(alert_id)
            if alert.state == AlertState.ACKNOWLEDGED:
                return replace(alert), True
            if alert.state != AlertState.ACTIVE:
                raise InvalidStateTransition(alert_id, alert.state, "acknowledge")

            alert.state = AlertState.ACKNOWLEDGED
            alert.acknowledged_by = by
            alert.acknowledged_at = now
            self.store.record(alert, "acknowledged", now, by=by)

        logger.info("alert_acknowledged", alert_id=alert_id, by=by)
        return replace(alert), False

    async def dismiss(
        self,
        alert_id: str,
        by: str,
        now: Optional[datetime] = None,
    ) -> tuple[Alert, bool]:
        """
        Dismiss an open alert.

        The condition is suppressed until it clears, so later cycles do not
        bring the dismissed incident back. Idempotent on Dismissed alerts.

        Returns:
            (alert copy, was_already_dismissed)

        Raises:
            AlertNotFoundError: Unknown alert id
            InvalidStateTransition: Alert is Resolved
        """
        now = now or datetime.now(timezone.utc)
        async with self.store.lock:
            alert = self._require(alert_id)
            if alert.state == AlertState.DISMISSED:
                return replace(alert), True
            if not alert.is_open:
                raise InvalidStateTransition(alert_id, alert.state, "dismiss")

            alert.state = AlertState.DISMISSED
            alert.dismissed_by = by
            alert.dismissed_at = now
            self.store.suppress(alert_id)
            self.store.record(alert, "dismissed", now, by=by)

        logger.info("alert_dismissed", alert_id=alert_id, by=by)
        return replace(alert), False

    async def bulk_acknowledge(
        self,
        alert_ids: Iterable[str],
        by: str,
        now: Optional[datetime] = None,
    ) -> BulkActionResult:
        """
        Acknowledge each alert in turn.

        One failure does not stop the rest; unknown ids and alerts that
        cannot be acknowledged are reported in BulkActionResult.failed.
        """
        return await self._bulk(self.acknowledge, "acknowledge", alert_ids, by, now)

    async def bulk_dismiss(
        self,
        alert_ids: Iterable[str],
        by: str,
        now: Optional[datetime] = None,
    ) -> BulkActionResult:
        """Dismiss each alert in turn, collecting failures."""
        return await self._bulk(self.dismiss, "dismiss", alert_ids, by, now)

    async def _bulk(
        self,
        action,
        action_name: str,
        alert_ids: Iterable[str],
        by: str,
        now: Optional[datetime],
    ) -> BulkActionResult:
        now = now or datetime.now(timezone.utc)
        result = BulkActionResult()
        # Repeated ids are acted on once
        for alert_id in dict.fromkeys(alert_ids):
            try:
                alert, already = await action(alert_id, by, now)
            except (AlertNotFoundError, InvalidStateTransition) as e:
                result.failed[alert_id] = str(e)
                continue
            if already:
                result.already_applied.append(alert_id)
            else:
                result.applied.append(alert)

        logger.info(
            "alerts_bulk_action",
            action=action_name,
            by=by,
            applied=len(result.applied),
            already_applied=len(result.already_applied),
            failed=len(result.failed),
        )
        return result

    def _require(self, alert_id: str) -> Alert:
        alert = self.store.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    # =========================================================================
    # Views
    # =========================================================================

    def get_alert(self, alert_id: str) -> Alert:
        return replace(self._require(alert_id))

    def get_active_alerts(
        self,
        severity: Optional[Severity] = None,
        include_acknowledged: bool = True,
        rule_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> tuple[list[Alert], AlertStats]:
        """
        Open alerts, oldest-critical-first, with stats over all open alerts.

        Args:
            severity: Only return alerts of this severity
            include_acknowledged: Include Acknowledged alerts in the list
            rule_id: Only return alerts raised by this rule
            limit: Return at most this many alerts after sorting

        Returns:
            (sorted alert copies, AlertStats)
        """
        open_alerts = self.store.open_alerts()

        stats = AlertStats()
        for alert in open_alerts:
            stats.total += 1
            stats.by_severity[alert.severity.value] += 1
            stats.by_rule[alert.rule_id] = stats.by_rule.get(alert.rule_id, 0) + 1
            if alert.state == AlertState.ACKNOWLEDGED:
                stats.acknowledged += 1
            else:
                stats.unacknowledged += 1

        selected = [
            a
            for a in open_alerts
            if (severity is None or a.severity == severity)
            and (include_acknowledged or a.state == AlertState.ACTIVE)
            and (rule_id is None or a.rule_id == rule_id)
        ]
        selected.sort(key=lambda a: (-a.severity.rank, a.first_seen_at, a.alert_id))
        if limit is not None:
            selected = selected[:limit]
        return [replace(a) for a in selected], stats

    def active_count(self) -> int:
        return len(self.store.open_alerts())

    def get_history(self, limit: Optional[int] = None) -> list[AlertHistoryEntry]:
        return self.store.history(limit)

    def reset(self) -> None:
        """Clear all alert state (explicit operator/test reset only)."""
        self.store.reset()
        self._memo.clear()


# =============================================================================
# Module-level singleton (for lifespan management)
# =============================================================================

_engine: Optional[AlertEngine] = None


def get_alert_engine() -> Optional[AlertEngine]:
    """Get the global alert engine instance."""
    return _engine


def set_alert_engine(engine: Optional[AlertEngine]) -> None:
    """Set the global alert engine instance."""
    global _engine
    _engine = engine
