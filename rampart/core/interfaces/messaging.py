"""
Publish/subscribe interface used by the configuration service.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Union

from ..domain.events import Event, EventPriority


class IEventBus(ABC):
    """Interface for event bus implementations."""

    @abstractmethod
    async def publish(self, event: Union[Event, str], data: Any = None,
                      priority: EventPriority = EventPriority.NORMAL) -> str:
        """
        Publish an event to all matching subscribers.

        Args:
            event: Event object or event name string
            data: Event data (if event is a string)
            priority: Event priority (if event is a string)

        Returns:
            Event ID for tracking
        """
        pass

    @abstractmethod
    async def subscribe(self, event_pattern: str, handler: Callable[[Event], Any],
                        priority: EventPriority = EventPriority.NORMAL) -> str:
        """
        Subscribe a handler to events matching a pattern.

        Subscribing the same handler to the same pattern twice returns the
        existing subscription ID instead of registering it again.

        Args:
            event_pattern: Event name or shell-style wildcard pattern
            handler: Sync or async callable receiving the event
            priority: Handler priority for ordering

        Returns:
            Subscription ID for unsubscribing
        """
        pass

    @abstractmethod
    async def unsubscribe(self, subscription_id: str) -> bool:
        """
        Remove a subscription.

        Returns:
            True if a subscription was removed, False if it did not exist
        """
        pass

    @abstractmethod
    async def get_metrics(self) -> Dict[str, Any]:
        """Get event bus metrics."""
        pass
