"""
Component interfaces shared across the configuration service.
"""

from .lifecycle import IComponent, IHealthCheckable, IStartable, IStoppable
from .messaging import IEventBus

__all__ = [
    "IComponent",
    "IHealthCheckable",
    "IStartable",
    "IStoppable",
    "IEventBus",
]
