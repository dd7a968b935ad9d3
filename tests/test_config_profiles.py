"""
Tests for environment profiles.
"""

import dataclasses
import json

import pytest
from pathlib import Path
from typing import List

from rampart.core.domain.events import Event
from rampart.core.exceptions import NotFoundError, ValidationError
from rampart.core.services.event_bus import EventBus
from rampart.infrastructure.config.loader import ConfigurationLoader
from rampart.infrastructure.config.manager import ConfigurationManager
from rampart.infrastructure.config.profiles import (
    DEFAULT_PROFILES,
    ConfigurationProfile,
    ProfileRegistry,
    detect_profile,
)
from rampart.infrastructure.config.settings import ServiceSettings


class TestProfileRegistry:
    """Test cases for profile lookup and resolution."""

    @pytest.mark.parametrize("environment,expected", [
        ('production', 'production'),
        ('PROD', 'production'),
        ('stage', 'staging'),
        ('testing', 'test'),
        ('dev', 'development'),
        ('qa', 'development'),
        (None, 'development'),
    ])
    def test_detect_profile(self, environment, expected) -> None:
        assert detect_profile(environment) == expected

    def test_builtin_profiles_are_valid(self) -> None:
        registry = ProfileRegistry()

        assert set(registry.available()) == {'development', 'test', 'production', 'staging'}
        for profile in DEFAULT_PROFILES.values():
            assert registry.validate(profile) == []

    def test_staging_inherits_production(self) -> None:
        overrides = ProfileRegistry().resolve('staging')

        assert overrides['rate_limiting']['rpm'] == 20
        assert overrides['rate_limiting']['safety_margin'] == 0.8
        assert overrides['gemini']['temperature'] == 0.7
        assert overrides['features']['monitoring']['alerts']['enabled'] is True

    def test_register_custom_profile(self) -> None:
        registry = ProfileRegistry()
        registry.register(ConfigurationProfile(
            'canary', "Canary hosts", {'rate_limiting.rpm': 5}, base_profile='production'))

        overrides = registry.resolve('canary')

        assert 'canary' in registry.available()
        assert overrides['rate_limiting']['rpm'] == 5
        assert overrides['gemini']['temperature'] == 0.7

    def test_register_rejects_bad_profiles(self) -> None:
        registry = ProfileRegistry()

        with pytest.raises(ValidationError):
            registry.register(ConfigurationProfile('production'))
        with pytest.raises(ValidationError) as exc_info:
            registry.register(ConfigurationProfile(
                'broken', overrides={'rate_limiting.nope': 1, 'Bad Path': 2}, base_profile='missing'))

        assert exc_info.value.errors == [
            "Unknown override path: rate_limiting.nope",
            "Invalid override path: Bad Path",
            "Unknown base profile: missing",
        ]
        with pytest.raises(NotFoundError):
            registry.resolve('broken')


class TestProfileLayer:
    """Test cases for applying profiles in the loader."""

    def test_profile_sits_between_store_and_environment(self, tmp_path: Path) -> None:
        loader = ConfigurationLoader(
            tmp_path / "bot-config.json",
            environ={'GEMINI_RATE_LIMIT_RPM': '12'},
            profile_overrides=ProfileRegistry().resolve('production'))
        loader.load_environment_overrides()

        candidate = loader.load()
        persisted = json.loads((tmp_path / "bot-config.json").read_text())

        assert candidate['rate_limiting']['rpm'] == 12
        assert candidate['gemini']['temperature'] == 0.7
        assert persisted['rate_limiting']['rpm'] == 10
        assert persisted['gemini']['temperature'] == 0.9

    def test_save_keeps_persisted_values_under_layers(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bot-config.json"
        loader = ConfigurationLoader(config_file, environ={},
                                     profile_overrides={'gemini': {'temperature': 0.7}})
        candidate = loader.load()
        candidate['gemini']['top_k'] = 20

        loader.save(candidate)
        persisted = json.loads(config_file.read_text())

        assert persisted['gemini']['temperature'] == 0.9
        assert persisted['gemini']['top_k'] == 20


class TestManagerProfiles:
    """Test cases for profile selection in the configuration manager."""

    @pytest.mark.asyncio
    async def test_environment_selects_profile(self, service_settings: ServiceSettings) -> None:
        settings = dataclasses.replace(service_settings, environment='production')
        manager = ConfigurationManager(settings, environ={})
        await manager.initialize()
        try:
            await manager.save()

            assert manager.profile == 'production'
            assert manager.get_value(('rate_limiting', 'rpm')) == 15
            assert manager.get_value(('gemini', 'safety_settings', 'harassment')) == 'block_medium_and_above'
            assert json.loads(manager.config_path.read_text())['rate_limiting']['rpm'] == 10
            assert (await manager.check_health())['details']['profile'] == 'production'
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_switch_profile(self, service_settings: ServiceSettings) -> None:
        event_bus = EventBus()
        events: List[Event] = []
        await event_bus.subscribe("config.profile_changed", events.append)
        manager = ConfigurationManager(service_settings, event_bus, environ={})
        await manager.initialize()
        try:
            changes = await manager.switch_profile('production', modified_by="operator")

            assert manager.profile == 'production'
            assert ('rate_limiting.rpm', 10, 15) in changes
            assert manager.get_audit_log(1)[0].modified_by == "operator"
            assert events[0].data == {'from': 'test', 'to': 'production', 'changes': len(changes)}

            with pytest.raises(NotFoundError):
                await manager.switch_profile('missing')
            assert manager.profile == 'production'
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_profile_result_keeps_previous_profile(self, service_settings: ServiceSettings) -> None:
        registry = ProfileRegistry([ConfigurationProfile('greedy', overrides={'rate_limiting.rpm': 100})])
        manager = ConfigurationManager(service_settings, environ={}, profiles=registry)
        await manager.initialize()
        try:
            with pytest.raises(ValidationError):
                await manager.switch_profile('greedy')

            assert manager.profile == 'test'
            assert manager.get_value(('rate_limiting', 'rpm')) == 10
            assert manager.loader.profile_overrides == {}
        finally:
            await manager.shutdown()
