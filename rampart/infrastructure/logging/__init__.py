"""
Logging infrastructure.
"""

from .setup import LoggingManager, setup_logging

__all__ = [
    "LoggingManager",
    "setup_logging",
]
