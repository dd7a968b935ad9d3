"""
Settings for the configuration service itself.

These are distinct from the bot configuration the service manages: they say
where records live, how long audit entries are kept and how often health is
polled. They are read from an optional YAML/JSON file and ``RAMPART_*``
environment variables.
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..storage import format_for_path, parse_data

ENV_PREFIX = "RAMPART_"

DEFAULT_SENSITIVE_PATHS = [
    'discord.permissions',
    'gemini.model',
    'gemini.safety_settings',
    'features.code_execution',
    'features.monitoring.enabled',
    'features.monitoring.alerts.enabled',
    'features.monitoring.health_metrics.enabled',
]


@dataclass
class PathSettings:
    """Locations of durable records."""
    config_file: str = "data/bot-config.json"
    versions_directory: str = "data/config-versions"
    audit_file: str = "data/config-audit.json"
    audit_fallback_file: str = "data/config-audit.jsonl"


@dataclass
class VersioningSettings:
    max_versions: int = 50
    cleanup_batch_size: int = 5


@dataclass
class AuditSettings:
    """Audit log retention and significance rules."""
    retention_days: int = 90
    max_entries: int = 10000
    trim_margin: int = 100
    cleanup_interval: float = 24 * 60 * 60
    significance_threshold: float = 0.5
    sensitive_paths: List[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_PATHS))
    persist_attempts: int = 3
    persist_retry_delay: float = 0.2


@dataclass
class MonitoringSettings:
    """Health polling and alerting."""
    enabled: bool = True
    poll_interval: float = 5 * 60
    alert_cooldown: float = 5 * 60
    stability_window: float = 60 * 60


@dataclass
class WatcherSettings:
    enabled: bool = True
    use_polling: bool = False
    debounce_delay: float = 1.0
    poll_interval: float = 1.0


@dataclass
class LoggingSettings:
    """Log sinks."""
    level: str = "INFO"
    log_directory: str = "logs"
    max_file_size: str = "10 MB"
    backup_count: int = 5
    console_enabled: bool = True
    file_enabled: bool = True


@dataclass
class ServiceSettings:
    """Top-level settings for the configuration service."""

    environment: str = "development"
    paths: PathSettings = field(default_factory=PathSettings)
    versioning: VersioningSettings = field(default_factory=VersioningSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)
    watcher: WatcherSettings = field(default_factory=WatcherSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if self.versioning.max_versions < 1:
            raise ValueError("versioning.max_versions must be at least 1")
        if self.versioning.cleanup_batch_size < 1:
            raise ValueError("versioning.cleanup_batch_size must be at least 1")
        if self.audit.max_entries < 1:
            raise ValueError("audit.max_entries must be at least 1")
        if not 0 <= self.audit.trim_margin < self.audit.max_entries:
            raise ValueError("audit.trim_margin must be between 0 and max_entries")
        if self.audit.significance_threshold < 0:
            raise ValueError("audit.significance_threshold cannot be negative")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ('production', 'prod')

    def with_base_directory(self, base: Path) -> 'ServiceSettings':
        """Return settings whose relative record paths are resolved under ``base``."""
        def resolve(value: str) -> str:
            path = Path(value)
            return str(path if path.is_absolute() else Path(base) / path)

        paths = PathSettings(
            config_file=resolve(self.paths.config_file),
            versions_directory=resolve(self.paths.versions_directory),
            audit_file=resolve(self.paths.audit_file),
            audit_fallback_file=resolve(self.paths.audit_fallback_file),
        )
        return ServiceSettings.from_dict({**self.to_dict(), 'paths': asdict(paths)})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServiceSettings':
        """Create settings from dictionary."""
        return cls(
            environment=data.get('environment', 'development'),
            paths=PathSettings(**data.get('paths', {})),
            versioning=VersioningSettings(**data.get('versioning', {})),
            audit=AuditSettings(**data.get('audit', {})),
            monitoring=MonitoringSettings(**data.get('monitoring', {})),
            watcher=WatcherSettings(**data.get('watcher', {})),
            logging=LoggingSettings(**data.get('logging', {})),
        )


def _parse_bool(value: str) -> bool:
    return value.lower() in ('true', '1', 'yes', 'on', 'enabled')


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _environment_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    """Collect ``RAMPART_*`` overrides into a nested dictionary."""
    env_mappings: Dict[str, Tuple[str, Callable[[str], Any]]] = {
        f"{ENV_PREFIX}ENVIRONMENT": ("environment", str),
        f"{ENV_PREFIX}CONFIG_FILE": ("paths.config_file", str),
        f"{ENV_PREFIX}VERSIONS_DIR": ("paths.versions_directory", str),
        f"{ENV_PREFIX}AUDIT_FILE": ("paths.audit_file", str),
        f"{ENV_PREFIX}AUDIT_FALLBACK_FILE": ("paths.audit_fallback_file", str),
        f"{ENV_PREFIX}MAX_VERSIONS": ("versioning.max_versions", int),
        f"{ENV_PREFIX}AUDIT_RETENTION_DAYS": ("audit.retention_days", int),
        f"{ENV_PREFIX}AUDIT_MAX_ENTRIES": ("audit.max_entries", int),
        f"{ENV_PREFIX}SIGNIFICANCE_THRESHOLD": ("audit.significance_threshold", float),
        f"{ENV_PREFIX}SENSITIVE_PATHS": ("audit.sensitive_paths", _parse_list),
        f"{ENV_PREFIX}HEALTH_POLL_INTERVAL": ("monitoring.poll_interval", float),
        f"{ENV_PREFIX}ALERT_COOLDOWN": ("monitoring.alert_cooldown", float),
        f"{ENV_PREFIX}MONITORING_ENABLED": ("monitoring.enabled", _parse_bool),
        f"{ENV_PREFIX}WATCH_ENABLED": ("watcher.enabled", _parse_bool),
        f"{ENV_PREFIX}WATCH_POLLING": ("watcher.use_polling", _parse_bool),
        f"{ENV_PREFIX}LOG_LEVEL": ("logging.level", str),
        f"{ENV_PREFIX}LOG_DIR": ("logging.log_directory", str),
    }

    overrides: Dict[str, Any] = {}
    for env_var, (path, converter) in env_mappings.items():
        value = environ.get(env_var)
        if value is None:
            continue
        try:
            converted = converter(value)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid value for {env_var}: {value} ({e})")
        current = overrides
        keys = path.split('.')
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = converted

    if 'environment' not in overrides and environ.get('NODE_ENV'):
        overrides['environment'] = environ['NODE_ENV']
    return overrides


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def load_service_settings(
    settings_file: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None
) -> ServiceSettings:
    """
    Load service settings from an optional file plus environment overrides.

    Args:
        settings_file: YAML or JSON file with settings (optional)
        environ: Environment mapping, ``os.environ`` when omitted

    Returns:
        Validated service settings
    """
    data: Dict[str, Any] = {}
    if settings_file:
        path = Path(settings_file)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {settings_file}")
        data = parse_data(path.read_text(encoding='utf-8'), format_for_path(path)) or {}

    env = dict(os.environ) if environ is None else environ
    return ServiceSettings.from_dict(_merge(data, _environment_overrides(env)))
