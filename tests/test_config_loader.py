"""
Tests for configuration loading, environment overrides and durable storage.
"""

import json
import os

import pytest
from pathlib import Path
from unittest.mock import patch

from rampart.core.domain.configuration import BotConfiguration
from rampart.core.exceptions import ConfigParseError, PersistenceError
from rampart.infrastructure.config.loader import (
    ConfigurationLoader,
    _parse_scalar,
    merge_configs,
    set_nested_value,
)
from rampart.infrastructure.storage import (
    atomic_write_data,
    atomic_write_text,
    dump_data,
    format_for_path,
    parse_data,
    with_retries,
)


class TestConfigurationLoader:
    """Test cases for the configuration loader."""

    def test_missing_file_persists_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "data" / "bot-config.json"
        loader = ConfigurationLoader(config_file, environ={})

        candidate = loader.load()

        assert candidate == BotConfiguration().to_dict()
        assert config_file.exists()
        assert json.loads(config_file.read_text()) == candidate

    def test_reads_existing_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bot-config.json"
        data = BotConfiguration().to_dict()
        data['rate_limiting']['rpm'] = 7
        config_file.write_text(json.dumps(data))

        candidate = ConfigurationLoader(config_file, environ={}).load()

        assert candidate['rate_limiting']['rpm'] == 7

    def test_reads_yaml_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bot-config.yaml"
        config_file.write_text(dump_data(BotConfiguration().to_dict(), "yaml"))

        candidate = ConfigurationLoader(config_file, environ={}).load()

        assert candidate['gemini']['model'] == 'gemini-2.5-flash'

    def test_environment_overrides(self, tmp_path: Path) -> None:
        loader = ConfigurationLoader(tmp_path / "bot-config.json", environ={
            'GEMINI_RATE_LIMIT_RPM': '15',
            'ENABLE_CODE_EXECUTION': 'true',
            'GROUNDING_THRESHOLD': '0.5',
            'LOG_LEVEL': 'DEBUG',
            'ROAST_MAX_CHANCE': '',
            'UNRELATED': 'ignored',
        })

        overrides = loader.load_environment_overrides()
        candidate = loader.load()

        assert overrides == {
            'rate_limiting': {'rpm': 15},
            'features': {'code_execution': True, 'monitoring': {'log_level': 'DEBUG'}},
            'gemini': {'grounding': {'threshold': 0.5}},
        }
        assert candidate['rate_limiting']['rpm'] == 15
        assert candidate['rate_limiting']['daily'] == 500
        assert candidate['features']['code_execution'] is True
        assert candidate['gemini']['grounding'] == {'threshold': 0.5, 'enabled': True}
        assert candidate['features']['roasting']['max_chance'] == 0.9

    def test_overrides_are_not_persisted(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bot-config.json"
        loader = ConfigurationLoader(config_file, environ={'GEMINI_RATE_LIMIT_RPM': '15'})
        loader.load_environment_overrides()

        loader.load()

        assert json.loads(config_file.read_text())['rate_limiting']['rpm'] == 10

    def test_parse_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bot-config.json"
        config_file.write_text("{ not json")

        with pytest.raises(ConfigParseError) as exc_info:
            ConfigurationLoader(config_file, environ={}).load()
        assert exc_info.value.path == str(config_file)

    def test_non_object_document(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bot-config.json"
        config_file.write_text("[1, 2, 3]")

        with pytest.raises(ConfigParseError):
            ConfigurationLoader(config_file, environ={}).load()

    def test_save_snapshot(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bot-config.json"
        loader = ConfigurationLoader(config_file, environ={})

        loader.save(BotConfiguration(version='v1'))

        assert json.loads(config_file.read_text())['version'] == 'v1'

    def test_dotenv_loaded_only_for_process_environment(self, tmp_path: Path) -> None:
        dotenv_file = tmp_path / ".env"
        dotenv_file.write_text("GEMINI_RATE_LIMIT_DAILY=480\n")
        loader = ConfigurationLoader(tmp_path / "bot-config.json", dotenv_path=dotenv_file)

        with patch.dict(os.environ, {}, clear=True):
            overrides = loader.load_environment_overrides()

        assert overrides == {'rate_limiting': {'daily': 480}}


class TestLoaderHelpers:

    @pytest.mark.parametrize("raw,expected", [
        ("true", True),
        ("FALSE", False),
        ("42", 42),
        ("0.25", 0.25),
        ("gemini-pro", "gemini-pro"),
    ])
    def test_parse_scalar(self, raw: str, expected: object) -> None:
        assert _parse_scalar(raw) == expected
        assert type(_parse_scalar(raw)) is type(expected)

    def test_merge_configs_is_deep_and_pure(self) -> None:
        base = {'a': {'b': 1, 'c': [1, 2]}, 'd': 1}
        override = {'a': {'b': 2}, 'e': {'f': 3}}

        merged = merge_configs(base, override)

        assert merged == {'a': {'b': 2, 'c': [1, 2]}, 'd': 1, 'e': {'f': 3}}
        assert base == {'a': {'b': 1, 'c': [1, 2]}, 'd': 1}
        merged['a']['c'].append(3)
        assert base['a']['c'] == [1, 2]

    def test_set_nested_value(self) -> None:
        config: dict = {'a': 'scalar'}
        set_nested_value(config, 'a.b.c', 1)
        assert config == {'a': {'b': {'c': 1}}}


class TestStorage:
    """Test cases for atomic record writes."""

    def test_atomic_write_replaces_content(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "record.json"

        atomic_write_text(target, "first")
        atomic_write_text(target, "second")

        assert target.read_text() == "second"
        assert [p.name for p in target.parent.iterdir()] == ["record.json"]

    def test_failed_replace_keeps_previous_content(self, tmp_path: Path) -> None:
        target = tmp_path / "record.json"
        target.write_text("previous")

        with patch("rampart.infrastructure.storage.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError):
                atomic_write_text(target, "next")

        assert target.read_text() == "previous"
        assert [p.name for p in tmp_path.iterdir()] == ["record.json"]

    def test_format_detection(self, tmp_path: Path) -> None:
        assert format_for_path(tmp_path / "a.yml") == "yaml"
        assert format_for_path(tmp_path / "a.YAML") == "yaml"
        assert format_for_path(tmp_path / "a.json") == "json"

    def test_atomic_write_data_yaml(self, tmp_path: Path) -> None:
        target = tmp_path / "record.yaml"
        atomic_write_data(target, {'a': [1, 2]})
        assert parse_data(target.read_text(), "yaml") == {'a': [1, 2]}

    def test_unsupported_format(self) -> None:
        with pytest.raises(ValueError):
            dump_data({}, "toml")
        with pytest.raises(ValueError):
            parse_data("", "toml")

    def test_invalid_text(self) -> None:
        with pytest.raises(ValueError):
            parse_data("{", "json")
        with pytest.raises(ValueError):
            parse_data("a: [", "yaml")


class TestWithRetries:

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self) -> None:
        attempts = []

        async def operation() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise OSError("busy")
            return "done"

        result = await with_retries(operation, attempts=3, delay=0)

        assert result == "done"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_raises_last_error(self) -> None:
        attempts = []

        async def operation() -> None:
            attempts.append(1)
            raise PersistenceError("still broken")

        with pytest.raises(PersistenceError):
            await with_retries(operation, attempts=2, delay=0)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_unlisted_errors_are_not_retried(self) -> None:
        attempts = []

        async def operation() -> None:
            attempts.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await with_retries(operation, attempts=3, delay=0)
        assert len(attempts) == 1
