"""
Event domain models for configuration and health notifications.

Events are the only way the configuration service tells the rest of the
bot that something changed; consumers subscribe through the event bus.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional


class EventPriority(IntEnum):
    """Event priority levels for handler ordering."""
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


@dataclass(frozen=True)
class Event:
    """
    Immutable notification published on the event bus.
    """

    name: str
    """Event name, e.g. ``config.changed``."""

    data: Any = None
    """Event payload."""

    priority: EventPriority = EventPriority.NORMAL
    """Priority used to order handlers."""

    timestamp: float = field(default_factory=time.time)
    """Unix timestamp when the event was created."""

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    """Unique event identifier."""

    source: Optional[str] = None
    """Component that published the event."""

    metadata: Dict[str, Any] = field(default_factory=dict)
    """Additional event metadata."""

    def __post_init__(self) -> None:
        """Validate event after creation."""
        if not self.name:
            raise ValueError("Event name cannot be empty")

        if not isinstance(self.priority, EventPriority):
            raise ValueError("Priority must be an EventPriority enum value")

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert event to dictionary representation.

        Returns:
            Dictionary representation of the event
        """
        return {
            'name': self.name,
            'data': self.data,
            'priority': self.priority.name,
            'timestamp': self.timestamp,
            'event_id': self.event_id,
            'source': self.source,
            'metadata': self.metadata
        }


class ConfigEvents:
    """Event names published by the configuration manager."""

    CHANGED = "config.changed"
    RELOADED = "config.reloaded"
    ERROR = "config.error"
    ROLLED_BACK = "config.rolled_back"
    SAVED = "config.saved"
    PROFILE_CHANGED = "config.profile_changed"


class HealthEvents:
    """Event names published by the configuration monitor."""

    CHANGED = "health.changed"
    DEGRADED = "health.degraded"
    UNHEALTHY = "health.unhealthy"
    RECOVERED = "health.recovered"
    CHECK_FAILED = "health.check_failed"
    ALERT = "health.alert"


class AuditEvents:
    """Event names published by the configuration auditor."""

    ENTRY_ADDED = "audit.entry_added"
    SIGNIFICANT_CHANGE = "audit.significant_change"
    RETENTION_CLEANUP = "audit.retention_cleanup"
    CLEARED = "audit.cleared"
