"""
Core services.
"""

from .event_bus import EventBus, EventSubscription

__all__ = ["EventBus", "EventSubscription"]
