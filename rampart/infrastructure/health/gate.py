"""
Startup validation and production readiness.

The gate combines the monitor's health checks, configuration validation and
recent audit activity into a verdict on whether the running configuration is
safe for production use.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from ...core.domain.audit import AuditQuery
from ...core.domain.health import AggregateHealthStatus, HealthStatus
from ...core.exceptions import StartupValidationError
from ..config.auditor import ConfigurationAuditor
from ..config.manager import ConfigurationManager
from ..monitoring.monitor import ConfigurationMonitor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductionReadiness:
    """Independently inspectable readiness criteria."""

    all_health_checks_passed: bool
    api_keys_configured: bool
    rate_limits_valid: bool
    memory_limits_valid: bool
    discord_intents_valid: bool
    features_consistent: bool
    no_validation_errors: bool
    recent_stability: bool
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def criteria(self) -> Dict[str, bool]:
        values = asdict(self)
        values.pop('checked_at')
        return values

    @property
    def ready(self) -> bool:
        return all(self.criteria.values())

    @property
    def blockers(self) -> List[str]:
        return [name for name, passed in self.criteria.items() if not passed]


class HealthGate:
    """
    Startup validation and production readiness verdicts.
    """

    def __init__(
        self,
        manager: ConfigurationManager,
        monitor: ConfigurationMonitor,
        auditor: Optional[ConfigurationAuditor] = None,
        production: bool = False,
        stability_window: float = 60 * 60,
        environ: Optional[Mapping[str, str]] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        """
        Initialize the gate.

        Args:
            manager: Configuration manager providing validation
            monitor: Monitor providing health checks
            auditor: Audit log, the manager's auditor when omitted
            production: Whether critical failures abort startup
            stability_window: Seconds without significant changes required for readiness
            environ: Environment mapping for secret presence metrics
            now: Time source, replaced in tests
        """
        self.manager = manager
        self.monitor = monitor
        self.auditor = auditor or manager.auditor
        self.production = production
        self.stability_window = stability_window
        self._environ = environ
        self._now = now

    async def startup_validation(self) -> AggregateHealthStatus:
        """
        Run all health checks before serving.

        Raises:
            StartupValidationError: In production, if a critical check is unhealthy
        """
        status = await self.monitor.run_checks()
        critical = set(self.monitor.critical_checks)
        failed = [result.check_name for result in status.checks
                  if result.check_name in critical and result.status is HealthStatus.UNHEALTHY]

        if failed:
            if self.production:
                logger.critical(f"Startup validation failed: {', '.join(failed)}")
                raise StartupValidationError(failed)
            logger.warning(f"Critical checks failing outside production: {', '.join(failed)}")
        else:
            logger.info(f"Startup validation passed ({status.overall.value})")

        for result in status.failing():
            logger.warning(f"Health check {result.check_name}: {result.message}")
        return status

    def _check_passed(self, status: AggregateHealthStatus, name: str) -> bool:
        result = status.get_check(name)
        return result is not None and result.passed

    async def production_readiness(self) -> ProductionReadiness:
        """Evaluate every readiness criterion against fresh health results."""
        status = await self.monitor.run_checks()
        since = self._now() - timedelta(seconds=self.stability_window)
        recent_significant = self.auditor.query(AuditQuery(from_date=since, significant=True, limit=1))

        readiness = ProductionReadiness(
            all_health_checks_passed=status.overall is HealthStatus.HEALTHY,
            api_keys_configured=self._check_passed(status, 'api_keys'),
            rate_limits_valid=self._check_passed(status, 'rate_limits'),
            memory_limits_valid=self._check_passed(status, 'memory_limits'),
            discord_intents_valid=self._check_passed(status, 'discord_intents'),
            features_consistent=self._check_passed(status, 'feature_compatibility'),
            no_validation_errors=self.manager.validate_configuration().valid,
            recent_stability=not recent_significant,
        )

        if readiness.ready:
            logger.info("Configuration is production ready")
        else:
            logger.warning(f"Configuration not production ready: {', '.join(readiness.blockers)}")
        return readiness

    def health_metrics(self) -> Dict[str, Any]:
        """Counters from the monitor and auditor plus secret presence flags."""
        env = os.environ if self._environ is None else self._environ
        status = self.monitor.last_status
        return {
            'overall': status.overall.value if status else None,
            'checks_passed': status.checks_passed if status else 0,
            'checks_failed': status.checks_failed if status else 0,
            'registered_checks': len(self.monitor.check_names),
            'audit': self.auditor.statistics(),
            'alerts': self.monitor.get_alert_state(),
            'secrets': {
                'discord_token_present': bool(env.get('DISCORD_BOT_TOKEN')),
                'model_api_key_present': bool(env.get('GOOGLE_API_KEY') or env.get('GEMINI_API_KEY')),
            },
        }

    async def generate_report(self) -> str:
        """Render health, readiness and audit analytics as markdown."""
        readiness = await self.production_readiness()
        status = self.monitor.last_status
        analytics = self.auditor.analytics()
        compliance = self.auditor.compliance_check(self.manager.get_snapshot())

        lines = [
            "# Configuration Health Report",
            "",
            f"Generated: {self._now().isoformat()}",
            f"Environment: {'production' if self.production else 'non-production'}",
            "",
            "## Health",
            "",
        ]
        if status is not None:
            lines.append(f"Overall: **{status.overall.value}** "
                         f"({status.checks_passed} passed, {status.checks_failed} failed)")
            lines.append("")
            for result in status.checks:
                lines.append(f"- `{result.check_name}`: {result.status.value} - {result.message}")

        lines += ["", "## Production readiness", "",
                  f"Ready: **{'yes' if readiness.ready else 'no'}**", ""]
        for name, passed in readiness.criteria.items():
            lines.append(f"- [{'x' if passed else ' '}] {name.replace('_', ' ')}")

        lines += ["", "## Compliance", ""]
        if not compliance.violations and not compliance.warnings:
            lines.append("No violations or warnings.")
        lines += [f"- Violation: {item}" for item in compliance.violations]
        lines += [f"- Warning: {item}" for item in compliance.warnings]

        lines += ["", "## Audit activity", "",
                  f"- Total changes: {analytics.total_changes}",
                  f"- Significant changes: {analytics.significant_changes}"]
        for item in analytics.most_changed_paths[:5]:
            lines.append(f"- `{item['path']}` changed {item['count']} time(s)")

        if status is not None and status.recommendations:
            lines += ["", "## Recommendations", ""]
            lines += [f"- {item}" for item in status.recommendations]

        return '\n'.join(lines) + '\n'
