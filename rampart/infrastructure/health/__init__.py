from .gate import HealthGate, ProductionReadiness

__all__ = [
    "HealthGate",
    "ProductionReadiness",
]
