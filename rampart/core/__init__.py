"""
Core module containing domain models, interfaces, the event bus and the
error taxonomy of the configuration service.
"""

from .domain.events import Event, EventPriority
from .exceptions import (
    ConfigParseError,
    ConfigPathError,
    ErrorCode,
    IntegrityError,
    NotFoundError,
    NotInitializedError,
    PersistenceError,
    RampartError,
    StartupValidationError,
    ValidationError,
)
from .interfaces.lifecycle import IComponent, IStartable, IStoppable
from .interfaces.messaging import IEventBus
from .services.event_bus import EventBus

__all__ = [
    "Event",
    "EventPriority",
    "ConfigParseError",
    "ConfigPathError",
    "ErrorCode",
    "IntegrityError",
    "NotFoundError",
    "NotInitializedError",
    "PersistenceError",
    "RampartError",
    "StartupValidationError",
    "ValidationError",
    "IComponent",
    "IStartable",
    "IStoppable",
    "IEventBus",
    "EventBus",
]
