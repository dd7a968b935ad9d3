"""
Application startup and shutdown.

Builds the event bus, configuration manager, monitor and health gate from
service settings, starts them in dependency order and stops them in reverse.
"""

import logging
from typing import Any, List, Mapping, Optional

from ..core.domain.events import ConfigEvents, Event
from ..core.domain.health import AggregateHealthStatus
from ..core.interfaces.lifecycle import IComponent, IStoppable
from ..core.services.event_bus import EventBus
from ..infrastructure.config.manager import ConfigurationManager
from ..infrastructure.config.settings import ServiceSettings
from ..infrastructure.health.gate import HealthGate
from ..infrastructure.logging.setup import LoggingManager
from ..infrastructure.monitoring.monitor import ConfigurationMonitor

logger = logging.getLogger(__name__)


class ApplicationStartup:
    """
    Owns the configuration service components and their lifecycle.
    """

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        environ: Optional[Mapping[str, str]] = None,
        configure_logging: bool = True
    ) -> None:
        self.settings = settings or ServiceSettings()
        self.event_bus = EventBus()
        self.logging_manager = LoggingManager(self.settings.logging) if configure_logging else None
        self.manager = ConfigurationManager(self.settings, event_bus=self.event_bus, environ=environ)
        self.monitor = ConfigurationMonitor(
            self.manager.get_snapshot,
            event_bus=self.event_bus,
            poll_interval=self.settings.monitoring.poll_interval,
            alert_cooldown=self.settings.monitoring.alert_cooldown,
            environ=environ,
        )
        self.gate = HealthGate(
            self.manager,
            self.monitor,
            production=self.settings.is_production,
            stability_window=self.settings.monitoring.stability_window,
            environ=environ,
        )
        self._started_components: List[IComponent] = []
        self._subscription_id: Optional[str] = None
        self._applied_log_level: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return bool(self._started_components)

    def _startup_order(self) -> List[IComponent]:
        components: List[IComponent] = []
        if self.logging_manager is not None:
            components.append(self.logging_manager)
        components += [self.event_bus, self.manager]
        if self.settings.monitoring.enabled:
            components.append(self.monitor)
        return components

    async def start_application(self) -> AggregateHealthStatus:
        """
        Start all components, then run startup validation.

        Raises:
            StartupValidationError: In production, if critical checks fail
        """
        logger.info(f"Starting configuration service ({self.settings.environment})")

        try:
            for component in self._startup_order():
                logger.debug(f"Starting component: {component.name}")
                await component.start()
                self._started_components.append(component)
                logger.info(f"Started component: {component.name}")

            self._subscription_id = await self.event_bus.subscribe(
                ConfigEvents.CHANGED, self._on_config_changed)
            self._apply_log_level()

            status = await self.gate.startup_validation()
        except Exception as e:
            logger.error(f"Configuration service failed to start: {e}")
            await self.stop_application()
            raise

        logger.info("Configuration service startup completed")
        return status

    async def stop_application(self) -> None:
        """Stop all started components in reverse order."""
        logger.info("Stopping configuration service")
        if self._subscription_id is not None:
            await self.event_bus.unsubscribe(self._subscription_id)
            self._subscription_id = None

        for component in reversed(self._started_components):
            try:
                if isinstance(component, IStoppable):
                    logger.debug(f"Stopping component: {component.name}")
                    await component.stop()
                    logger.info(f"Stopped component: {component.name}")
            except Exception as e:
                logger.error(f"Error stopping component {component.name}: {e}")

        self._started_components.clear()
        logger.info("Configuration service stopped")

    def _apply_log_level(self) -> None:
        if self.logging_manager is None or not self.manager.is_initialized:
            return
        level = self.manager.get_value(('features', 'monitoring', 'log_level'), None)
        if level and level != self._applied_log_level:
            self.logging_manager.set_level(level)
            self._applied_log_level = level

    async def _on_config_changed(self, event: Event) -> None:
        changes: Any = (event.data or {}).get('changes', [])
        if any(change.get('path') == 'features.monitoring.log_level' for change in changes):
            self._apply_log_level()
