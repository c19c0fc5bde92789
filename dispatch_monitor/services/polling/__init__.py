"""Polling orchestrator."""

from dispatch_monitor.services.polling.orchestrator import (
    CycleResult,
    GpsStatus,
    PollingOrchestrator,
    PollingStatus,
    VehicleGpsStatus,
    get_orchestrator,
    set_orchestrator,
)

__all__ = [
    "CycleResult",
    "GpsStatus",
    "PollingOrchestrator",
    "PollingStatus",
    "VehicleGpsStatus",
    "get_orchestrator",
    "set_orchestrator",
]
