"""Clinic security observability service: tamper-evident audit log and behavioral anomaly detection."""

__version__ = "0.1.0"
