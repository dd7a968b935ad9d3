"""
Tests for lifecycle interfaces.

Every long-lived service object implements IComponent; these tests check the
interface contract and the shape of each component's health report.
"""

import pytest
from typing import Any, Dict

from rampart.core.domain.configuration import BotConfiguration
from rampart.core.interfaces.lifecycle import IComponent, IHealthCheckable, IStartable, IStoppable
from rampart.core.services.event_bus import EventBus
from rampart.infrastructure.config.manager import ConfigurationManager
from rampart.infrastructure.config.settings import ServiceSettings
from rampart.infrastructure.logging.setup import LoggingManager
from rampart.infrastructure.monitoring.monitor import ConfigurationMonitor


class MockComponent(IComponent):
    """Minimal IComponent implementation."""

    def __init__(self) -> None:
        self.running = False

    @property
    def name(self) -> str:
        return "MockComponent"

    async def start(self) -> None:
        self.running = True

    async def stop(self) -> None:
        self.running = False

    async def check_health(self) -> Dict[str, Any]:
        return {'healthy': True, 'status': 'running' if self.running else 'stopped', 'details': {}}


class TestLifecycleInterfaces:
    """Test cases for the lifecycle interfaces."""

    def test_interfaces_are_abstract(self) -> None:
        for interface in (IStartable, IStoppable, IHealthCheckable, IComponent):
            with pytest.raises(TypeError):
                interface()  # type: ignore[abstract]

    def test_partial_implementation_rejected(self) -> None:
        class StartOnly(IComponent):
            async def start(self) -> None:
                pass

        with pytest.raises(TypeError):
            StartOnly()  # type: ignore[abstract]

    @pytest.mark.asyncio
    async def test_mock_component_lifecycle(self) -> None:
        component = MockComponent()

        await component.start()
        assert (await component.check_health())['status'] == 'running'
        await component.stop()
        assert (await component.check_health())['status'] == 'stopped'

    @pytest.mark.asyncio
    async def test_service_components_report_health(self, service_settings: ServiceSettings) -> None:
        components = [
            EventBus(),
            LoggingManager(service_settings.logging),
            ConfigurationManager(service_settings, environ={}),
            ConfigurationMonitor(BotConfiguration, poll_interval=0, register_builtin_checks=False),
        ]

        for component in components:
            assert isinstance(component, IComponent)
            health = await component.check_health()
            assert set(health) >= {'healthy', 'status', 'details'}
            assert health['status'] == 'stopped'
