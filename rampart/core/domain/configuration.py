"""
Configuration snapshot models.

A snapshot is a tree of frozen dataclasses. Sections are built from plain
dictionaries with ``from_dict`` and flattened back with ``to_dict``; keys the
schema does not know are dropped on the way in.
"""

import copy
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from ..exceptions import ConfigPathError

# Metadata fields are excluded from content hashing and diffing.
METADATA_FIELDS = ('version', 'last_modified', 'modified_by')

PathSegments = Sequence[str]

_MISSING = object()


def _known(cls: Type[Any], data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return only the keys of ``data`` that are fields of ``cls``."""
    if not data:
        return {}
    names = {f.name for f in dataclasses.fields(cls)}
    return {key: copy.deepcopy(value) for key, value in data.items() if key in names}


def _default_commands() -> Dict[str, Dict[str, Any]]:
    admin = 'admin'
    return {
        'chat': {'enabled': True, 'permissions': 'all', 'cooldown': 2000},
        'status': {'enabled': True, 'permissions': 'all', 'cooldown': 5000},
        'health': {'enabled': True, 'permissions': admin, 'cooldown': 10000},
        'clear': {'enabled': True, 'permissions': 'all', 'cooldown': 3000},
        'remember': {'enabled': True, 'permissions': 'all', 'cooldown': 5000},
        'setpersonality': {'enabled': True, 'permissions': admin, 'cooldown': 0},
        'execute': {'enabled': False, 'permissions': admin, 'cooldown': 10000},
        'contextstats': {'enabled': True, 'permissions': 'all', 'cooldown': 10000},
        'summarize': {'enabled': True, 'permissions': admin, 'cooldown': 30000},
        'config': {'enabled': True, 'permissions': admin, 'cooldown': 0},
        'reload': {'enabled': True, 'permissions': admin, 'cooldown': 0},
        'validate': {'enabled': True, 'permissions': admin, 'cooldown': 5000},
    }


@dataclass(frozen=True)
class DiscordConfig:
    """Messaging host settings."""
    intents: List[str] = field(default_factory=lambda: [
        'Guilds', 'GuildMessages', 'MessageContent', 'GuildMessageReactions'
    ])
    permissions: Dict[str, Any] = field(default_factory=dict)
    commands: Dict[str, Dict[str, Any]] = field(default_factory=_default_commands)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'DiscordConfig':
        return cls(**_known(cls, data))


@dataclass(frozen=True)
class GroundingConfig:
    threshold: float = 0.3
    enabled: bool = True


@dataclass(frozen=True)
class ThinkingConfig:
    budget: int = 1024
    include_in_response: bool = False


@dataclass(frozen=True)
class GeminiConfig:
    """Language model settings."""
    model: str = 'gemini-2.5-flash'
    temperature: float = 0.9
    top_k: int = 40
    top_p: float = 0.8
    max_tokens: int = 8192
    safety_settings: Dict[str, str] = field(default_factory=lambda: {
        'harassment': 'block_none',
        'hate_speech': 'block_none',
        'sexually_explicit': 'block_none',
        'dangerous_content': 'block_none',
    })
    system_instructions: Dict[str, str] = field(default_factory=lambda: {
        'roasting': 'You are a witty AI assistant with a talent for clever roasting.',
        'helpful': 'You are a helpful AI assistant.',
    })
    grounding: GroundingConfig = field(default_factory=GroundingConfig)
    thinking: ThinkingConfig = field(default_factory=ThinkingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'GeminiConfig':
        values = _known(cls, data)
        values['grounding'] = GroundingConfig(**_known(GroundingConfig, values.get('grounding')))
        values['thinking'] = ThinkingConfig(**_known(ThinkingConfig, values.get('thinking')))
        return cls(**values)


@dataclass(frozen=True)
class RetryOptions:
    max_retries: int = 3
    retry_delay: int = 1000
    retry_multiplier: float = 2


@dataclass(frozen=True)
class RateLimitingConfig:
    """Request budget for the language model."""
    rpm: int = 10
    daily: int = 500
    burst_size: int = 5
    safety_margin: float = 0.9
    retry_options: RetryOptions = field(default_factory=RetryOptions)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'RateLimitingConfig':
        values = _known(cls, data)
        values['retry_options'] = RetryOptions(**_known(RetryOptions, values.get('retry_options')))
        return cls(**values)


@dataclass(frozen=True)
class RoastingConfig:
    enabled: bool = True
    base_chance: float = 0.5
    consecutive_bonus: float = 0.25
    max_chance: float = 0.9
    cooldown_enabled: bool = True
    mood_system: Dict[str, Any] = field(default_factory=lambda: {
        'enabled': True,
        'mood_duration': 3600000,
        'chaos_events': {
            'enabled': True,
            'trigger_chance': 0.05,
            'duration_range': [300000, 1800000],
            'multiplier_range': [0.5, 2.5],
        },
    })
    psychological_warfare: Dict[str, bool] = field(default_factory=lambda: {
        'roast_debt': True,
        'mercy_kills': True,
        'cooldown_breaking': True,
    })


@dataclass(frozen=True)
class HealthMetricsConfig:
    enabled: bool = True
    collection_interval: int = 30000
    retention_days: int = 7


@dataclass(frozen=True)
class AlertsConfig:
    enabled: bool = True
    memory_threshold: int = 512
    error_rate_threshold: float = 5
    response_time_threshold: int = 5000


@dataclass(frozen=True)
class GracefulDegradationConfig:
    enabled: bool = True
    circuit_breaker: Dict[str, int] = field(default_factory=lambda: {
        'failure_threshold': 5,
        'timeout': 30000,
        'reset_timeout': 60000,
    })
    queueing: Dict[str, int] = field(default_factory=lambda: {
        'max_size': 100,
        'max_age': 300000,
    })


@dataclass(frozen=True)
class MonitoringConfig:
    enabled: bool = True
    log_level: str = 'INFO'
    health_metrics: HealthMetricsConfig = field(default_factory=HealthMetricsConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    graceful_degradation: GracefulDegradationConfig = field(
        default_factory=GracefulDegradationConfig)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'MonitoringConfig':
        values = _known(cls, data)
        values['health_metrics'] = HealthMetricsConfig(
            **_known(HealthMetricsConfig, values.get('health_metrics')))
        values['alerts'] = AlertsConfig(**_known(AlertsConfig, values.get('alerts')))
        values['graceful_degradation'] = GracefulDegradationConfig(
            **_known(GracefulDegradationConfig, values.get('graceful_degradation')))
        return cls(**values)


@dataclass(frozen=True)
class ContextMemoryConfig:
    enabled: bool = True
    max_messages: int = 100
    timeout_minutes: int = 30
    max_context_chars: int = 50000
    compression_enabled: bool = True
    cross_server_enabled: bool = False


@dataclass(frozen=True)
class CachingConfig:
    enabled: bool = True
    max_size: int = 100
    ttl_minutes: int = 5
    compression_enabled: bool = True


@dataclass(frozen=True)
class FeatureConfig:
    """Feature toggles and per-feature settings."""
    roasting: RoastingConfig = field(default_factory=RoastingConfig)
    code_execution: bool = False
    structured_output: bool = False
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    context_memory: ContextMemoryConfig = field(default_factory=ContextMemoryConfig)
    caching: CachingConfig = field(default_factory=CachingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'FeatureConfig':
        values = _known(cls, data)
        values['roasting'] = RoastingConfig(**_known(RoastingConfig, values.get('roasting')))
        values['monitoring'] = MonitoringConfig.from_dict(values.get('monitoring'))
        values['context_memory'] = ContextMemoryConfig(
            **_known(ContextMemoryConfig, values.get('context_memory')))
        values['caching'] = CachingConfig(**_known(CachingConfig, values.get('caching')))
        return cls(**values)


@dataclass(frozen=True)
class BotConfiguration:
    """
    A complete, immutable configuration snapshot.

    Instances are never modified; every change produces a new snapshot via
    ``from_dict`` or ``with_metadata``.
    """

    version: str = '1.0.0'
    last_modified: str = ''
    modified_by: str = 'system'
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    rate_limiting: RateLimitingConfig = field(default_factory=RateLimitingConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'BotConfiguration':
        """Create a snapshot from its dictionary form."""
        return cls(
            version=str(data.get('version', '1.0.0')),
            last_modified=str(data.get('last_modified', '')),
            modified_by=str(data.get('modified_by', 'system')),
            discord=DiscordConfig.from_dict(data.get('discord')),
            gemini=GeminiConfig.from_dict(data.get('gemini')),
            rate_limiting=RateLimitingConfig.from_dict(data.get('rate_limiting')),
            features=FeatureConfig.from_dict(data.get('features')),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the snapshot to a plain, independent dictionary."""
        return dataclasses.asdict(self)

    def content(self) -> Dict[str, Any]:
        """Return the dictionary form without metadata fields."""
        data = self.to_dict()
        for name in METADATA_FIELDS:
            data.pop(name, None)
        return data

    def with_metadata(self, version: str, last_modified: str,
                      modified_by: str) -> 'BotConfiguration':
        """Return a copy relabelled with new metadata."""
        return dataclasses.replace(
            self, version=version, last_modified=last_modified, modified_by=modified_by)

    def get_value(self, path: PathSegments, default: Any = _MISSING) -> Any:
        """
        Resolve a typed path against the snapshot.

        Args:
            path: Sequence of segments, e.g. ``('rate_limiting', 'rpm')``
            default: Returned when the path does not resolve

        Returns:
            An independent copy of the resolved value

        Raises:
            ConfigPathError: If the path does not resolve and no default is given
        """
        current: Any = self
        for segment in path:
            if dataclasses.is_dataclass(current) and not isinstance(current, type):
                names = {f.name for f in dataclasses.fields(current)}
                if segment not in names:
                    current = _MISSING
                    break
                current = getattr(current, segment)
            elif isinstance(current, Mapping) and segment in current:
                current = current[segment]
            else:
                current = _MISSING
                break

        if current is _MISSING:
            if default is _MISSING:
                raise ConfigPathError(path)
            return default

        if dataclasses.is_dataclass(current):
            return dataclasses.asdict(current)
        return copy.deepcopy(current)


@dataclass(frozen=True)
class VersionRecord:
    """An archived snapshot with its content hash."""

    version: str
    timestamp: str
    configuration: Dict[str, Any]
    hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'timestamp': self.timestamp,
            'configuration': copy.deepcopy(self.configuration),
            'hash': self.hash,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'VersionRecord':
        return cls(
            version=data['version'],
            timestamp=data['timestamp'],
            configuration=data['configuration'],
            hash=data['hash'],
        )


def split_path(path: str) -> Tuple[str, ...]:
    """Split a dotted path into typed segments."""
    return tuple(segment for segment in path.split('.') if segment)
