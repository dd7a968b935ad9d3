"""
Application layer wiring the configuration service components together and
managing their lifecycle.
"""

from .startup import ApplicationStartup

__all__ = [
    "ApplicationStartup",
]
