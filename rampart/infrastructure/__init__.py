"""
Infrastructure layer containing persistence, file watching, health
monitoring and logging.
"""

from .config.manager import ConfigurationManager
from .logging.setup import LoggingManager

__all__ = [
    "ConfigurationManager",
    "LoggingManager",
]
