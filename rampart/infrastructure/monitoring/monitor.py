"""
Configuration health monitor.

The monitor runs registered health checks over the live configuration,
aggregates them worst-of, publishes transition events when the aggregate
status changes and raises cooldown-limited alerts that feed self-healing.
"""

import asyncio
import dataclasses
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from ...core.domain.configuration import BotConfiguration
from ...core.domain.events import AuditEvents, EventPriority, HealthEvents
from ...core.domain.health import (
    AggregateHealthStatus,
    AlertState,
    HealthCheckResult,
    HealthStatus,
    Severity,
)
from ...core.interfaces.lifecycle import IComponent
from ...core.interfaces.messaging import IEventBus
from .checks import CheckRegistration, HealthPredicate, builtin_checks
from .healing import SelfHealer

logger = logging.getLogger(__name__)


class ConfigurationMonitor(IComponent):
    """
    Health check registry, aggregator and alerting engine.
    """

    def __init__(
        self,
        snapshot_provider: Callable[[], BotConfiguration],
        event_bus: Optional[IEventBus] = None,
        poll_interval: float = 5 * 60,
        alert_cooldown: float = 5 * 60,
        healer: Optional[SelfHealer] = None,
        register_builtin_checks: bool = True,
        environ: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the monitor.

        Args:
            snapshot_provider: Returns an independent copy of the live snapshot
            event_bus: Bus for health events
            poll_interval: Seconds between scheduled check runs
            alert_cooldown: Seconds during which a repeated alert kind is suppressed
            healer: Self-healing registry
            register_builtin_checks: Register the default checks
            environ: Environment mapping for credential checks
            clock: Time source, replaced in tests
        """
        self._snapshot_provider = snapshot_provider
        self._event_bus = event_bus
        self.poll_interval = poll_interval
        self.alert_cooldown = alert_cooldown
        self.healer = healer or SelfHealer()
        self._clock = clock

        self._checks: Dict[str, CheckRegistration] = {}
        self._last_status: Optional[AggregateHealthStatus] = None
        self._alert_states: Dict[str, AlertState] = {}
        self._run_lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._triggered_runs: List[asyncio.Task[Any]] = []
        self._subscription_id: Optional[str] = None
        self._started = False
        self._metrics: Dict[str, int] = {
            'runs': 0,
            'alerts_fired': 0,
            'alerts_suppressed': 0,
        }

        if register_builtin_checks:
            for registration in builtin_checks(environ):
                self._checks[registration.name] = registration

    @property
    def name(self) -> str:
        """Get component name."""
        return "ConfigurationMonitor"

    @property
    def last_status(self) -> Optional[AggregateHealthStatus]:
        return self._last_status

    @property
    def check_names(self) -> List[str]:
        return list(self._checks)

    @property
    def critical_checks(self) -> List[str]:
        return [name for name, registration in self._checks.items() if registration.critical]

    async def start(self) -> None:
        """Start periodic polling and listen for significant audit events."""
        if self._started:
            return

        self._started = True
        if self._event_bus is not None:
            self._subscription_id = await self._event_bus.subscribe(
                AuditEvents.SIGNIFICANT_CHANGE, self._on_significant_change)
        if self.poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Configuration monitor started ({len(self._checks)} checks, "
                    f"interval {self.poll_interval}s)")

    async def stop(self) -> None:
        """Stop polling and wait for out-of-cadence runs."""
        if not self._started:
            return

        self._started = False
        if self._subscription_id and self._event_bus is not None:
            await self._event_bus.unsubscribe(self._subscription_id)
            self._subscription_id = None

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        if self._triggered_runs:
            await asyncio.gather(*self._triggered_runs, return_exceptions=True)
            self._triggered_runs.clear()
        logger.info("Configuration monitor stopped")

    async def check_health(self) -> Dict[str, Any]:
        """Check monitor health."""
        status = self._last_status
        return {
            'healthy': status is None or status.overall is not HealthStatus.UNHEALTHY,
            'status': 'running' if self._started else 'stopped',
            'details': {
                'checks': len(self._checks),
                'overall': status.overall.value if status else None,
                **self._metrics,
            }
        }

    def register_check(self, name: str, predicate: HealthPredicate, critical: bool = False) -> None:
        """
        Register or replace a named health check.

        Args:
            name: Unique check name
            predicate: Callable receiving the snapshot and returning a result
            critical: Whether failure blocks a production startup
        """
        self._checks[name] = CheckRegistration(name, predicate, critical)
        logger.debug(f"Registered health check: {name}")

    def unregister_check(self, name: str) -> bool:
        if self._checks.pop(name, None) is None:
            return False
        logger.debug(f"Unregistered health check: {name}")
        return True

    async def run_checks(self) -> AggregateHealthStatus:
        """
        Run every registered check and aggregate the results.

        A check that raises becomes an unhealthy critical result with its
        own name; other checks still run. Transition events are published
        only when the aggregate status changes.
        """
        async with self._run_lock:
            results = await self._collect_results()
            status = AggregateHealthStatus.from_results(results)
            previous = self._last_status
            self._last_status = status
            self._metrics['runs'] += 1

        await self._publish_transitions(previous, status)
        return status

    async def _collect_results(self) -> List[HealthCheckResult]:
        try:
            snapshot = self._snapshot_provider()
        except Exception as e:
            logger.error(f"Cannot run health checks without a configuration: {e}")
            return [self._failure_result(name, e) for name in self._checks]

        results: List[HealthCheckResult] = []
        for name, registration in list(self._checks.items()):
            try:
                outcome = registration.predicate(snapshot)
                if asyncio.iscoroutine(outcome):
                    outcome = await outcome
                if not isinstance(outcome, HealthCheckResult):
                    raise TypeError(f"check returned {type(outcome).__name__}")
                if outcome.check_name != name:
                    outcome = dataclasses.replace(outcome, check_name=name)
                results.append(outcome)
            except Exception as e:
                logger.error(f"Health check {name} failed: {e}")
                results.append(self._failure_result(name, e))
        return results

    def _failure_result(self, name: str, error: BaseException) -> HealthCheckResult:
        return HealthCheckResult(
            check_name=name,
            status=HealthStatus.UNHEALTHY,
            message=f"Health check failed: {error}",
            severity=Severity.CRITICAL,
            recommendation=f"Investigate the {name} check",
        )

    async def _publish_transitions(self, previous: Optional[AggregateHealthStatus],
                                   current: AggregateHealthStatus) -> None:
        if self._event_bus is None:
            return

        previous_checks = {r.check_name: r.status for r in previous.checks} if previous else {}
        for result in current.failing():
            if previous_checks.get(result.check_name) is not result.status:
                await self._event_bus.publish(HealthEvents.CHECK_FAILED, result)

        before = previous.overall if previous else None
        after = current.overall
        if before is after:
            return

        logger.info(f"Configuration health changed: {before.value if before else 'unknown'} -> {after.value}")
        await self._event_bus.publish(HealthEvents.CHANGED, current)

        if after is HealthStatus.UNHEALTHY:
            await self._event_bus.publish(
                HealthEvents.UNHEALTHY, current.failing(HealthStatus.UNHEALTHY), EventPriority.CRITICAL)
        elif after is HealthStatus.DEGRADED and before in (None, HealthStatus.HEALTHY):
            await self._event_bus.publish(
                HealthEvents.DEGRADED, current.failing(HealthStatus.DEGRADED), EventPriority.HIGH)
        elif after is HealthStatus.HEALTHY and before is not None:
            await self._event_bus.publish(HealthEvents.RECOVERED, current)

    def _alerts_enabled(self) -> bool:
        try:
            return self._snapshot_provider().features.monitoring.alerts.enabled
        except Exception:
            return True

    async def evaluate_alerts(self, status: Optional[AggregateHealthStatus] = None) -> List[str]:
        """
        Raise alerts derived from a health status.

        Alert kinds not observed in this evaluation have their consecutive
        counters reset.

        Returns:
            Alert kinds that fired (suppressed kinds are not included)
        """
        status = status or self._last_status
        if status is None or not self._alerts_enabled():
            return []

        observed: Dict[str, str] = {}
        memory = status.get_check('memory_limits')
        if memory is not None and not memory.passed:
            observed['memory'] = memory.message
        if status.overall is HealthStatus.UNHEALTHY:
            observed['config_unhealthy'] = self._summarize(status.failing(HealthStatus.UNHEALTHY))
        elif status.overall is HealthStatus.DEGRADED:
            observed['config_degraded'] = self._summarize(status.failing(HealthStatus.DEGRADED))

        for kind, state in self._alert_states.items():
            if kind not in observed:
                state.consecutive = 0

        fired = []
        for kind, message in observed.items():
            if await self.trigger_alert(kind, message, {'overall': status.overall.value}):
                fired.append(kind)
        return fired

    def _summarize(self, results: List[HealthCheckResult]) -> str:
        return "; ".join(f"{r.check_name}: {r.message}" for r in results)

    async def trigger_alert(self, kind: str, message: str,
                            details: Optional[Dict[str, Any]] = None) -> bool:
        """
        Fire an alert unless the same kind fired within the cooldown window.

        Returns:
            True if the alert fired, False if it was suppressed
        """
        now = self._clock()
        state = self._alert_states.setdefault(kind, AlertState())
        if state.last_fired is not None and now - state.last_fired < self.alert_cooldown:
            self._metrics['alerts_suppressed'] += 1
            logger.debug(f"Alert {kind} suppressed by cooldown")
            return False

        state.last_fired = now
        state.consecutive += 1
        self._metrics['alerts_fired'] += 1
        logger.warning(f"Configuration alert [{kind}]: {message}")

        if self._event_bus is not None:
            await self._event_bus.publish(HealthEvents.ALERT, {
                'kind': kind,
                'message': message,
                'consecutive': state.consecutive,
                'details': dict(details or {}),
            }, EventPriority.HIGH)

        await self.self_heal(kind, state.consecutive)
        return True

    async def self_heal(self, kind: str, consecutive: int) -> bool:
        """Run self-healing for an alert kind. Never raises."""
        try:
            return await self.healer.heal(kind, consecutive)
        except Exception as e:
            logger.error(f"Self-healing for {kind} failed: {e}")
            return False

    def get_alert_state(self) -> Dict[str, Dict[str, Any]]:
        """Export alert state for persistence."""
        return {kind: state.to_dict() for kind, state in self._alert_states.items()}

    def set_alert_state(self, state: Dict[str, Dict[str, Any]]) -> None:
        """Restore alert state previously exported with ``get_alert_state``."""
        self._alert_states = {kind: AlertState.from_dict(value) for kind, value in state.items()}

    async def run_once(self) -> AggregateHealthStatus:
        """Run checks and evaluate alerts."""
        status = await self.run_checks()
        await self.evaluate_alerts(status)
        return status

    async def _poll_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.poll_interval)
                if self._run_lock.locked():
                    continue
                try:
                    await self.run_once()
                except Exception as e:
                    logger.error(f"Scheduled health check run failed: {e}")
        except asyncio.CancelledError:
            logger.debug("Health polling cancelled")

    async def _on_significant_change(self, event: Any) -> None:
        if not self._started:
            return
        # Run outside the publisher's call stack; it may hold the config lock
        task = asyncio.create_task(self._triggered_run())
        self._triggered_runs.append(task)
        task.add_done_callback(self._forget_run)

    def _forget_run(self, task: "asyncio.Task[Any]") -> None:
        if task in self._triggered_runs:
            self._triggered_runs.remove(task)

    async def _triggered_run(self) -> None:
        try:
            await self.run_once()
        except Exception as e:
            logger.error(f"Triggered health check run failed: {e}")

    def generate_health_report(self) -> str:
        """Render the last aggregate status as text."""
        status = self._last_status
        if status is None:
            return "Configuration health: not yet checked\n"

        lines = [
            f"Configuration health: {status.overall.value.upper()}",
            f"Checked: {datetime.fromtimestamp(status.last_checked).isoformat()}",
            f"Passed: {status.checks_passed}  Failed: {status.checks_failed}",
            "",
        ]
        for result in status.checks:
            marker = {'healthy': 'OK', 'degraded': 'WARN', 'unhealthy': 'FAIL'}[result.status.value]
            lines.append(f"[{marker}] {result.check_name}: {result.message}")
        if status.recommendations:
            lines += ["", "Recommendations:"]
            lines += [f"- {item}" for item in status.recommendations]
        return '\n'.join(lines) + '\n'
