"""
Best-effort remedial actions for persistent alerts.
"""

import asyncio
import gc
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Healer = Callable[[int], Any]

# Consecutive alerts after which a kind is reported as persistent
ESCALATION_THRESHOLD = 3


class SelfHealer:
    """
    Registry of healing hooks keyed by alert kind.

    Failures inside a hook are logged and swallowed; healing never raises.
    """

    def __init__(self) -> None:
        self._healers: Dict[str, List[Healer]] = {}
        self._caches: List[Callable[[], Any]] = []
        self.register_healer('memory', self._heal_memory)

    def register_cache(self, clear: Callable[[], Any]) -> None:
        """Register a cache-clearing callable used by the memory healer."""
        if clear not in self._caches:
            self._caches.append(clear)

    def unregister_cache(self, clear: Callable[[], Any]) -> None:
        if clear in self._caches:
            self._caches.remove(clear)

    def register_healer(self, kind: str, healer: Healer) -> None:
        healers = self._healers.setdefault(kind, [])
        if healer not in healers:
            healers.append(healer)

    def unregister_healer(self, kind: str, healer: Healer) -> None:
        healers = self._healers.get(kind, [])
        if healer in healers:
            healers.remove(healer)

    async def heal(self, kind: str, consecutive: int) -> bool:
        """
        Run healing hooks for an alert kind.

        Args:
            kind: Alert kind
            consecutive: Number of consecutive alerts of this kind

        Returns:
            True if every registered hook ran without error
        """
        healers = self._healers.get(kind, [])
        if not healers:
            logger.debug(f"No self-healing action for alert kind: {kind}")
            return False

        logger.info(f"Attempting self-healing for {kind} (consecutive: {consecutive})")
        if consecutive >= ESCALATION_THRESHOLD:
            logger.warning(f"Alert {kind} has fired {consecutive} times in a row")

        succeeded = True
        for healer in list(healers):
            try:
                result = healer(consecutive)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                succeeded = False
                logger.error(f"Self-healing hook for {kind} failed: {e}")
        return succeeded

    def _heal_memory(self, consecutive: int) -> None:
        cleared = 0
        for clear in list(self._caches):
            try:
                clear()
                cleared += 1
            except Exception as e:
                logger.warning(f"Cache clear failed during memory healing: {e}")
        collected = gc.collect()
        logger.info(f"Memory healing cleared {cleared} cache(s), collected {collected} object(s)")
