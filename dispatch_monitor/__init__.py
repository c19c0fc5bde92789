"""Dispatch Monitor - field operations alerting service

Polls the job/work-order source, detects field-level changes, verifies
vehicle proximity against live telemetry and maintains operational alerts.
"""

__version__ = "0.1.0"
