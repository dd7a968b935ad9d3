"""
Environment profiles.

A profile is a named set of dotted-path overrides layered onto the persisted
configuration before environment variables are applied. Profiles may name a
base profile whose overrides are applied first.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ...core.domain.configuration import BotConfiguration
from ...core.exceptions import NotFoundError, ValidationError
from .loader import set_nested_value

logger = logging.getLogger(__name__)

_PATH_PATTERN = re.compile(r'^[a-z][a-z0-9_]*(\.[a-z0-9_]+)*$')

PROFILE_ALIASES = {
    'dev': 'development',
    'prod': 'production',
    'stage': 'staging',
    'testing': 'test',
}


@dataclass(frozen=True)
class ConfigurationProfile:
    """Named overrides for one deployment environment."""

    name: str
    description: str = ""
    overrides: Dict[str, Any] = field(default_factory=dict)
    base_profile: Optional[str] = None


DEFAULT_PROFILES: Dict[str, ConfigurationProfile] = {
    'development': ConfigurationProfile(
        'development',
        "Short cache lifetimes and frequent health sampling",
        {
            'features.caching.ttl_minutes': 1,
            'features.monitoring.health_metrics.collection_interval': 10000,
        },
    ),
    'test': ConfigurationProfile(
        'test',
        "Persisted configuration used as-is for automated tests",
    ),
    'production': ConfigurationProfile(
        'production',
        "Consistent responses, stricter safety and conservative limits",
        {
            'gemini.temperature': 0.7,
            'gemini.safety_settings.harassment': 'block_medium_and_above',
            'gemini.safety_settings.hate_speech': 'block_medium_and_above',
            'rate_limiting.rpm': 15,
            'rate_limiting.safety_margin': 0.8,
            'features.monitoring.health_metrics.retention_days': 30,
            'features.monitoring.graceful_degradation.enabled': True,
        },
    ),
    'staging': ConfigurationProfile(
        'staging',
        "Production settings with a slightly higher request rate",
        {
            'rate_limiting.rpm': 20,
            'features.monitoring.alerts.enabled': True,
        },
        base_profile='production',
    ),
}


def detect_profile(environment: Optional[str]) -> str:
    """Map an environment name to a profile name. Unknown names fall back to development."""
    name = (environment or '').strip().lower()
    name = PROFILE_ALIASES.get(name, name)
    return name if name in DEFAULT_PROFILES else 'development'


def _resolves(defaults: Mapping[str, Any], path: str) -> bool:
    current: Any = defaults
    for segment in path.split('.'):
        if not isinstance(current, Mapping) or segment not in current:
            return False
        current = current[segment]
    return True


class ProfileRegistry:
    """Built-in and custom profiles, resolved into nested override dicts."""

    def __init__(self, profiles: Optional[Iterable[ConfigurationProfile]] = None) -> None:
        self._profiles: Dict[str, ConfigurationProfile] = dict(DEFAULT_PROFILES)
        for profile in profiles or ():
            self.register(profile)

    def available(self) -> List[str]:
        return list(self._profiles)

    def get(self, name: str) -> ConfigurationProfile:
        try:
            return self._profiles[name]
        except KeyError:
            raise NotFoundError(f"Profile not found: {name}", name) from None

    def register(self, profile: ConfigurationProfile) -> None:
        """
        Add a custom profile.

        Raises:
            ValidationError: If the name is a built-in profile or an override
                path does not exist in the configuration
        """
        if profile.name in DEFAULT_PROFILES:
            raise ValidationError(f"Cannot replace built-in profile: {profile.name}")
        errors = self.validate(profile)
        if errors:
            raise ValidationError(f"Invalid profile {profile.name}: {'; '.join(errors)}", errors)
        self._profiles[profile.name] = profile
        logger.info(f"Custom profile registered: {profile.name}")

    def validate(self, profile: ConfigurationProfile) -> List[str]:
        """Return the problems with ``profile``; empty when it can be applied."""
        errors: List[str] = []
        defaults = BotConfiguration().to_dict()
        for path in profile.overrides:
            if not _PATH_PATTERN.match(path):
                errors.append(f"Invalid override path: {path}")
            elif not _resolves(defaults, path):
                errors.append(f"Unknown override path: {path}")
        if profile.base_profile is not None and profile.base_profile not in self._profiles:
            errors.append(f"Unknown base profile: {profile.base_profile}")
        return errors

    def resolve(self, name: str) -> Dict[str, Any]:
        """
        Build the nested override dict for a profile, base profiles first.

        Raises:
            NotFoundError: If the profile or one of its bases does not exist
            ValidationError: If the base chain loops
        """
        chain: List[ConfigurationProfile] = []
        current: Optional[str] = name
        while current is not None:
            if any(profile.name == current for profile in chain):
                raise ValidationError(f"Profile {name} has a circular base chain")
            profile = self.get(current)
            chain.append(profile)
            current = profile.base_profile

        overrides: Dict[str, Any] = {}
        for profile in reversed(chain):
            for path, value in profile.overrides.items():
                set_nested_value(overrides, path, value)
        return overrides
