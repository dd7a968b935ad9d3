"""
Loading and saving of the persisted bot configuration.

The loader reads the backing store (JSON or YAML by file suffix), falls back
to built-in defaults when the store does not exist yet, then overlays the
active profile and recognized environment variables, in that order. It
returns an unvalidated candidate. Profile and environment values are never
written back to the store.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from dotenv import load_dotenv

from ...core.domain.configuration import BotConfiguration
from ...core.exceptions import ConfigParseError, PersistenceError
from ..storage import atomic_write_data, format_for_path, parse_data

logger = logging.getLogger(__name__)

_MISSING = object()


def _parse_scalar(value: str) -> Union[bool, int, float, str]:
    """Coerce an environment string to bool, int, float or str, in that order."""
    lowered = value.strip().lower()
    if lowered in ('true', 'false'):
        return lowered == 'true'
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


# Environment variable -> (configuration path, converter)
ENV_MAPPINGS: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    'GEMINI_RATE_LIMIT_RPM': ('rate_limiting.rpm', _parse_scalar),
    'GEMINI_RATE_LIMIT_DAILY': ('rate_limiting.daily', _parse_scalar),
    'ROAST_BASE_CHANCE': ('features.roasting.base_chance', _parse_scalar),
    'ROAST_CONSECUTIVE_BONUS': ('features.roasting.consecutive_bonus', _parse_scalar),
    'ROAST_MAX_CHANCE': ('features.roasting.max_chance', _parse_scalar),
    'ROAST_COOLDOWN': ('features.roasting.cooldown_enabled', _parse_scalar),
    'CONVERSATION_TIMEOUT_MINUTES': ('features.context_memory.timeout_minutes', _parse_scalar),
    'MAX_CONVERSATION_MESSAGES': ('features.context_memory.max_messages', _parse_scalar),
    'MAX_CONTEXT_CHARS': ('features.context_memory.max_context_chars', _parse_scalar),
    'GROUNDING_THRESHOLD': ('gemini.grounding.threshold', _parse_scalar),
    'THINKING_BUDGET': ('gemini.thinking.budget', _parse_scalar),
    'INCLUDE_THOUGHTS': ('gemini.thinking.include_in_response', _parse_scalar),
    'ENABLE_CODE_EXECUTION': ('features.code_execution', _parse_scalar),
    'ENABLE_STRUCTURED_OUTPUT': ('features.structured_output', _parse_scalar),
    'LOG_LEVEL': ('features.monitoring.log_level', str),
}


def merge_configs(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge two configuration dictionaries into a new one."""
    result = copy.deepcopy(dict(base))

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, Mapping):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = copy.deepcopy(value)

    return result


def set_nested_value(config: Dict[str, Any], path: str, value: Any) -> None:
    """Set a nested configuration value using dot notation."""
    keys = path.split('.')
    current = config

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value


def get_nested_value(config: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Get a nested configuration value using dot notation."""
    current: Any = config
    for key in path.split('.'):
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return current


def _leaf_paths(config: Mapping[str, Any], prefix: str = '') -> List[str]:
    paths: List[str] = []
    for key, value in config.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, Mapping) and value:
            paths.extend(_leaf_paths(value, path))
        else:
            paths.append(path)
    return paths


class ConfigurationLoader:
    """Reads the backing store and applies profile and environment overrides."""

    def __init__(self, config_path: Union[str, Path],
                 environ: Optional[Mapping[str, str]] = None,
                 dotenv_path: Optional[Union[str, Path]] = None,
                 profile_overrides: Optional[Mapping[str, Any]] = None) -> None:
        """
        Initialize the loader.

        Args:
            config_path: Path of the persisted configuration file
            environ: Environment mapping, ``os.environ`` when omitted
            dotenv_path: ``.env`` file to load before reading the environment
            profile_overrides: Nested overrides of the active profile
        """
        self.config_path = Path(config_path)
        self._environ = environ
        self._dotenv_path = dotenv_path
        self._overrides: Dict[str, Any] = {}
        self._profile_overrides: Dict[str, Any] = copy.deepcopy(dict(profile_overrides or {}))
        self._persisted: Dict[str, Any] = {}

    @property
    def environment_overrides(self) -> Dict[str, Any]:
        return copy.deepcopy(self._overrides)

    @property
    def profile_overrides(self) -> Dict[str, Any]:
        return copy.deepcopy(self._profile_overrides)

    def set_profile_overrides(self, overrides: Mapping[str, Any]) -> None:
        """Replace the profile layer; takes effect on the next ``load``."""
        self._profile_overrides = copy.deepcopy(dict(overrides))

    def get_default_configuration(self) -> Dict[str, Any]:
        """Return a fresh copy of the built-in default configuration."""
        return BotConfiguration().to_dict()

    def load_environment_overrides(self) -> Dict[str, Any]:
        """
        Read recognized environment variables into a nested override dict.

        Returns:
            The overrides that will be applied by ``load``
        """
        if self._environ is None:
            # Only the real process environment is populated from .env
            load_dotenv(dotenv_path=self._dotenv_path, override=False)
            environ: Mapping[str, str] = os.environ
        else:
            environ = self._environ

        overrides: Dict[str, Any] = {}
        for env_var, (config_path, converter) in ENV_MAPPINGS.items():
            value = environ.get(env_var)
            if value is None or value == '':
                continue
            set_nested_value(overrides, config_path, converter(value))
            logger.debug(f"Environment override {env_var} -> {config_path}")

        self._overrides = overrides
        if overrides:
            logger.info(f"Loaded {len(overrides)} environment override section(s)")
        return copy.deepcopy(overrides)

    def load(self) -> Dict[str, Any]:
        """
        Load the persisted configuration merged with profile and environment overrides.

        When no persisted configuration exists, the defaults are written to
        the backing store first.

        Returns:
            Unvalidated configuration candidate

        Raises:
            ConfigParseError: If the persisted configuration cannot be parsed
            PersistenceError: If the store cannot be read or written
        """
        if self.config_path.exists():
            base = self._read_store()
            self._persisted = copy.deepcopy(base)
        else:
            logger.info(f"No configuration found at {self.config_path}, using defaults")
            base = self.get_default_configuration()
            self.save(base)

        return merge_configs(merge_configs(base, self._profile_overrides), self._overrides)

    def save(self, configuration: Union[BotConfiguration, Mapping[str, Any]]) -> None:
        """
        Atomically write a configuration to the backing store.

        Paths covered by the profile or environment layers are written with
        their last persisted value, falling back to the default.
        """
        if isinstance(configuration, BotConfiguration):
            data = configuration.to_dict()
        else:
            data = copy.deepcopy(dict(configuration))
        data = self._strip_layered(data)
        atomic_write_data(self.config_path, data)
        self._persisted = copy.deepcopy(data)
        logger.debug(f"Configuration written to {self.config_path}")

    def _strip_layered(self, data: Dict[str, Any]) -> Dict[str, Any]:
        layered = merge_configs(self._profile_overrides, self._overrides)
        if not layered:
            return data
        defaults = self.get_default_configuration()
        for path in _leaf_paths(layered):
            value = get_nested_value(self._persisted, path, _MISSING)
            if value is _MISSING:
                value = get_nested_value(defaults, path, _MISSING)
            if value is not _MISSING:
                set_nested_value(data, path, copy.deepcopy(value))
        return data

    def _read_store(self) -> Dict[str, Any]:
        try:
            text = self.config_path.read_text(encoding='utf-8')
        except OSError as e:
            raise PersistenceError(f"Error reading {self.config_path}: {e}", str(self.config_path)) from e

        try:
            data = parse_data(text, format_for_path(self.config_path))
        except ValueError as e:
            raise ConfigParseError(f"Invalid configuration in {self.config_path}: {e}",
                                   str(self.config_path)) from e

        if not isinstance(data, dict):
            raise ConfigParseError(
                f"Configuration in {self.config_path} must be an object, got {type(data).__name__}",
                str(self.config_path))
        return data
