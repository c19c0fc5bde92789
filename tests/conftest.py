"""Root conftest for test suite.

Auto-skips slow tests and resets process-wide singletons between tests.
Run slow tests explicitly with: pytest -m slow
"""

import pytest

from dispatch_monitor.services.alerts import set_alert_engine
from dispatch_monitor.services.events import reset_event_bus
from dispatch_monitor.services.polling import set_orchestrator


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless explicitly requested."""
    markexpr = config.getoption("-m", default="")
    explicit_slow = "slow" in markexpr

    skip_slow = pytest.mark.skip(
        reason="slow tests skipped by default. Run with: pytest -m slow"
    )

    for item in items:
        if "slow" in item.keywords and not explicit_slow:
            item.add_marker(skip_slow)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Clear the engine, orchestrator and event bus singletons around each test."""
    set_alert_engine(None)
    set_orchestrator(None)
    reset_event_bus()
    yield
    set_alert_engine(None)
    set_orchestrator(None)
    reset_event_bus()
