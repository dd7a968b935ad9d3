"""
Lifecycle interfaces for components that own timers, watchers or files.

Every long-lived component is an explicitly constructed instance that is
started and stopped by its owner; nothing runs at import time.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class IStartable(ABC):
    """Interface for components that can be started."""

    @abstractmethod
    async def start(self) -> None:
        """
        Start the component.

        Raises:
            Exception: If the component fails to start.
        """
        pass


class IStoppable(ABC):
    """Interface for components that can be stopped."""

    @abstractmethod
    async def stop(self) -> None:
        """
        Stop the component, cancel its tasks and flush pending writes.
        """
        pass


class IHealthCheckable(ABC):
    """Interface for components that can report their own health."""

    @abstractmethod
    async def check_health(self) -> Dict[str, Any]:
        """
        Check the health status of the component.

        Returns:
            Dict containing at least:
            - 'healthy': bool indicating if component is healthy
            - 'status': str describing current status
            - 'details': Dict with additional health details
        """
        pass


class IComponent(IStartable, IStoppable, IHealthCheckable):
    """Base interface for components managed by the application startup."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the component name."""
        pass
