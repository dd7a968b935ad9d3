"""Health checks, alerting and self-healing for the live configuration."""

from .checks import CRITICAL_CHECKS, CheckRegistration, builtin_checks
from .healing import SelfHealer
from .monitor import ConfigurationMonitor

__all__ = [
    "CRITICAL_CHECKS",
    "CheckRegistration",
    "builtin_checks",
    "SelfHealer",
    "ConfigurationMonitor",
]
