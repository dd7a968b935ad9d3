"""
In-process event bus for configuration and health notifications.

Events are dispatched directly to matching handlers in priority order when
they are published, so a publisher observes every handler having run once
``publish`` returns. Handler failures are logged and counted, never raised
to the publisher.
"""

import asyncio
import fnmatch
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from ..domain.events import Event, EventPriority
from ..interfaces.lifecycle import IComponent
from ..interfaces.messaging import IEventBus

logger = logging.getLogger(__name__)


class EventSubscription:
    """Represents an event subscription."""

    def __init__(self, subscription_id: str, event_pattern: str,
                 handler: Callable[[Event], Any], priority: EventPriority):
        self.subscription_id = subscription_id
        self.event_pattern = event_pattern
        self.handler = handler
        self.priority = priority
        self.created_at = time.time()
        self.call_count = 0
        self.last_called: Optional[float] = None
        self.error_count = 0

    def matches(self, event_name: str) -> bool:
        if self.event_pattern == event_name:
            return True
        return fnmatch.fnmatchcase(event_name, self.event_pattern)


class EventBus(IComponent, IEventBus):
    """
    Direct-dispatch publish/subscribe bus.

    Subscriptions support shell-style wildcards (``config.*``). Registration
    is idempotent: the same handler on the same pattern is stored once.
    """

    def __init__(self) -> None:
        self._subscriptions: List[EventSubscription] = []
        self._running = False
        self._metrics: Dict[str, Any] = {
            'events_published': 0,
            'events_processed': 0,
            'events_failed': 0,
            'subscriptions_count': 0,
        }

    @property
    def name(self) -> str:
        """Get component name."""
        return "EventBus"

    async def start(self) -> None:
        """Start the event bus."""
        if self._running:
            return
        self._running = True
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop the event bus and drop all subscriptions."""
        if not self._running:
            return
        self._running = False
        self._subscriptions.clear()
        self._metrics['subscriptions_count'] = 0
        logger.info("Event bus stopped")

    async def check_health(self) -> Dict[str, Any]:
        """Check event bus health."""
        return {
            'healthy': True,
            'status': 'running' if self._running else 'stopped',
            'details': dict(self._metrics)
        }

    async def publish(self, event: Union[Event, str], data: Any = None,
                      priority: EventPriority = EventPriority.NORMAL) -> str:
        """Publish an event and dispatch it to every matching handler."""
        if isinstance(event, str):
            event = Event(name=event, data=data, priority=priority)

        self._metrics['events_published'] += 1
        logger.debug(f"Published event: {event.name} (ID: {event.event_id})")

        matching = [s for s in self._subscriptions if s.matches(event.name)]
        matching.sort(key=lambda s: s.priority.value, reverse=True)

        for subscription in matching:
            try:
                result = subscription.handler(event)
                if asyncio.iscoroutine(result):
                    await result
                subscription.call_count += 1
                subscription.last_called = time.time()
            except Exception as e:
                subscription.error_count += 1
                self._metrics['events_failed'] += 1
                logger.error(f"Handler error for event {event.name}: {e}")

        self._metrics['events_processed'] += 1
        return event.event_id

    async def subscribe(self, event_pattern: str, handler: Callable[[Event], Any],
                        priority: EventPriority = EventPriority.NORMAL) -> str:
        """Subscribe to events matching a name pattern."""
        for subscription in self._subscriptions:
            if subscription.event_pattern == event_pattern and subscription.handler == handler:
                return subscription.subscription_id

        subscription_id = str(uuid.uuid4())
        self._subscriptions.append(EventSubscription(
            subscription_id=subscription_id,
            event_pattern=event_pattern,
            handler=handler,
            priority=priority
        ))
        self._metrics['subscriptions_count'] = len(self._subscriptions)

        logger.debug(f"Added subscription for '{event_pattern}' (ID: {subscription_id})")
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> bool:
        """Unsubscribe using subscription ID."""
        for i, subscription in enumerate(self._subscriptions):
            if subscription.subscription_id == subscription_id:
                self._subscriptions.pop(i)
                self._metrics['subscriptions_count'] = len(self._subscriptions)
                logger.debug(f"Removed subscription {subscription_id}")
                return True
        return False

    async def get_metrics(self) -> Dict[str, Any]:
        """Get event bus metrics."""
        return dict(self._metrics)
