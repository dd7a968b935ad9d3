"""
Rampart - versioned, audited, hot-reloadable configuration service for a Discord bot.

This package keeps one validated configuration snapshot in memory, archives
every committed version, records an audit trail of changes and continuously
evaluates the configuration's health.
"""

__version__ = "1.0.0"

from .core.domain.configuration import BotConfiguration
from .core.interfaces.lifecycle import IComponent, IHealthCheckable, IStartable, IStoppable
from .core.interfaces.messaging import IEventBus
from .infrastructure.config.manager import ConfigurationManager
from .infrastructure.monitoring.monitor import ConfigurationMonitor
from .application.startup import ApplicationStartup

__all__ = [
    "BotConfiguration",
    "IComponent",
    "IHealthCheckable",
    "IStartable",
    "IStoppable",
    "IEventBus",
    "ConfigurationManager",
    "ConfigurationMonitor",
    "ApplicationStartup",
]
