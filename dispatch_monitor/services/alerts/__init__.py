"""Operational alerts: rules, lifecycle store and evaluation engine."""

from dispatch_monitor.services.alerts.engine import (
    AlertEngine,
    get_alert_engine,
    set_alert_engine,
)
from dispatch_monitor.services.alerts.models import (
    Alert,
    AlertNotFoundError,
    AlertRule,
    AlertState,
    AlertStats,
    BulkActionResult,
    EvalResult,
    InvalidStateTransition,
    Severity,
    make_alert_id,
)
from dispatch_monitor.services.alerts.rules import build_rules
from dispatch_monitor.services.alerts.store import AlertStore

__all__ = [
    "Alert",
    "AlertEngine",
    "AlertNotFoundError",
    "AlertRule",
    "AlertState",
    "AlertStats",
    "AlertStore",
    "BulkActionResult",
    "EvalResult",
    "InvalidStateTransition",
    "Severity",
    "build_rules",
    "get_alert_engine",
    "make_alert_id",
    "set_alert_engine",
]
