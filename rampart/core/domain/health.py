"""
Health evaluation models.

Overall status is always the worst status over the individual check
results: unhealthy beats degraded, degraded beats healthy.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class HealthStatus(Enum):
    """Health status of a single check or of the whole configuration."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


class Severity(Enum):
    """How urgently a failing check needs attention."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class HealthCheckResult:
    """Outcome of one health check predicate."""

    check_name: str
    status: HealthStatus
    message: str
    severity: Severity = Severity.INFO
    recommendation: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def passed(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            'check_name': self.check_name,
            'status': self.status.value,
            'message': self.message,
            'severity': self.severity.value,
            'recommendation': self.recommendation,
            'timestamp': self.timestamp,
        }


def worst_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Return the worst status of ``statuses``, healthy when empty."""
    worst = HealthStatus.HEALTHY
    for status in statuses:
        if status.rank > worst.rank:
            worst = status
    return worst


@dataclass(frozen=True)
class AggregateHealthStatus:
    """Worst-of summary over a set of check results."""

    overall: HealthStatus
    checks_passed: int
    checks_failed: int
    checks: List[HealthCheckResult]
    recommendations: List[str]
    last_checked: float = field(default_factory=time.time)

    @classmethod
    def from_results(cls, results: List[HealthCheckResult]) -> 'AggregateHealthStatus':
        """Aggregate check results into an overall status."""
        passed = sum(1 for result in results if result.passed)
        recommendations: List[str] = []
        for result in results:
            if result.recommendation and result.recommendation not in recommendations:
                recommendations.append(result.recommendation)

        return cls(
            overall=worst_status(result.status for result in results),
            checks_passed=passed,
            checks_failed=len(results) - passed,
            checks=list(results),
            recommendations=recommendations,
        )

    def get_check(self, name: str) -> Optional[HealthCheckResult]:
        for result in self.checks:
            if result.check_name == name:
                return result
        return None

    def failing(self, status: Optional[HealthStatus] = None) -> List[HealthCheckResult]:
        """Return non-healthy results, optionally only those with ``status``."""
        if status is None:
            return [result for result in self.checks if not result.passed]
        return [result for result in self.checks if result.status is status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'overall': self.overall.value,
            'checks_passed': self.checks_passed,
            'checks_failed': self.checks_failed,
            'checks': [result.to_dict() for result in self.checks],
            'recommendations': list(self.recommendations),
            'last_checked': self.last_checked,
        }


@dataclass
class AlertState:
    """Cooldown and repetition bookkeeping for one alert kind."""

    last_fired: Optional[float] = None
    consecutive: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {'last_fired': self.last_fired, 'consecutive': self.consecutive}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlertState':
        last_fired = data.get('last_fired')
        return cls(
            last_fired=None if last_fired is None else float(last_fired),
            consecutive=int(data.get('consecutive', 0)),
        )
