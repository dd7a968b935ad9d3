"""
Domain models for configuration snapshots, audit records and health results.

These models are plain dataclasses with no infrastructure dependencies.
"""

from .audit import AuditAction, AuditAnalytics, AuditEntry, AuditQuery, ComplianceResult
from .configuration import BotConfiguration, VersionRecord, split_path
from .events import AuditEvents, ConfigEvents, Event, EventPriority, HealthEvents
from .health import (
    AggregateHealthStatus,
    AlertState,
    HealthCheckResult,
    HealthStatus,
    Severity,
    worst_status,
)

__all__ = [
    "AuditAction",
    "AuditAnalytics",
    "AuditEntry",
    "AuditQuery",
    "ComplianceResult",
    "BotConfiguration",
    "VersionRecord",
    "split_path",
    "AuditEvents",
    "ConfigEvents",
    "Event",
    "EventPriority",
    "HealthEvents",
    "AggregateHealthStatus",
    "AlertState",
    "HealthCheckResult",
    "HealthStatus",
    "Severity",
    "worst_status",
]
