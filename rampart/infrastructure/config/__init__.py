"""
Configuration management infrastructure.

Loading, environment profiles, validation, version archiving, auditing, file watching and the
manager that composes them.
"""

from .auditor import ConfigurationAuditor, detect_changes
from .loader import ConfigurationLoader, merge_configs
from .manager import ConfigurationManager
from .migrator import ConfigurationMigrator, compute_hash
from .profiles import ConfigurationProfile, ProfileRegistry, detect_profile
from .settings import ServiceSettings, load_service_settings
from .validator import ConfigurationValidator, ValidationResult, validate_configuration
from .watcher import ConfigWatcher, IConfigWatcher, PollingConfigWatcher, create_config_watcher

__all__ = [
    "ConfigurationAuditor",
    "detect_changes",
    "ConfigurationLoader",
    "merge_configs",
    "ConfigurationManager",
    "ConfigurationMigrator",
    "compute_hash",
    "ConfigurationProfile",
    "ProfileRegistry",
    "detect_profile",
    "ServiceSettings",
    "load_service_settings",
    "ConfigurationValidator",
    "ValidationResult",
    "validate_configuration",
    "ConfigWatcher",
    "IConfigWatcher",
    "PollingConfigWatcher",
    "create_config_watcher",
]
