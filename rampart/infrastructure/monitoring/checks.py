"""
Built-in health checks over the live configuration.

Each check takes a snapshot and returns a HealthCheckResult. Checks that
look at secrets only report presence and format; values are never kept.
"""

import os
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Union

import psutil

from ...core.domain.configuration import BotConfiguration
from ...core.domain.health import HealthCheckResult, HealthStatus, Severity

CheckOutcome = Union[HealthCheckResult, Awaitable[HealthCheckResult]]
HealthPredicate = Callable[[BotConfiguration], CheckOutcome]

API_KEY_PATTERN = re.compile(r'^[A-Za-z0-9._-]+$')

REQUIRED_INTENTS = ('Guilds', 'GuildMessages', 'MessageContent')

VALID_MODELS = (
    'gemini-2.5-flash',
    'gemini-2.5-pro',
    'gemini-2.5-flash-lite',
    'gemini-2.0-flash',
    'gemini-1.5-pro',
    'gemini-1.5-flash',
)

TIMEOUT_RANGE_MS = (5000, 60000)

# Fraction of host memory a configured threshold may claim before it is flagged
MEMORY_CAPACITY_RATIO = 0.8

CRITICAL_CHECKS = ('api_keys', 'discord_intents', 'rate_limits')


@dataclass(frozen=True)
class CheckRegistration:
    name: str
    predicate: HealthPredicate
    critical: bool = False


def _healthy(name: str, message: str) -> HealthCheckResult:
    return HealthCheckResult(name, HealthStatus.HEALTHY, message)


def api_keys_check(environ: Optional[Mapping[str, str]] = None) -> HealthPredicate:
    """Credential presence and format."""
    def check(snapshot: BotConfiguration) -> HealthCheckResult:
        env = os.environ if environ is None else environ
        discord_token = env.get('DISCORD_BOT_TOKEN')
        model_key = env.get('GOOGLE_API_KEY') or env.get('GEMINI_API_KEY')

        missing = []
        if not discord_token:
            missing.append('DISCORD_BOT_TOKEN')
        if not model_key:
            missing.append('GOOGLE_API_KEY or GEMINI_API_KEY')
        if missing:
            return HealthCheckResult(
                'api_keys', HealthStatus.UNHEALTHY,
                f"Missing credentials: {', '.join(missing)}",
                Severity.CRITICAL,
                "Set the missing credentials in the environment")

        malformed = [name for name, value in (('DISCORD_BOT_TOKEN', discord_token),
                                              ('model API key', model_key))
                     if not API_KEY_PATTERN.match(value or '')]
        if malformed:
            return HealthCheckResult(
                'api_keys', HealthStatus.DEGRADED,
                f"Credentials with unexpected format: {', '.join(malformed)}",
                Severity.WARNING,
                "Check credentials for stray whitespace or quoting")

        return _healthy('api_keys', "Credentials present")
    return check


def rate_limits_check(snapshot: BotConfiguration) -> HealthCheckResult:
    """Rate limit sanity."""
    limits = snapshot.rate_limiting
    if limits.rpm < 1 or limits.daily < 1:
        return HealthCheckResult(
            'rate_limits', HealthStatus.UNHEALTHY,
            f"Rate limits must be positive (rpm={limits.rpm}, daily={limits.daily})",
            Severity.CRITICAL, "Set rate_limiting.rpm and rate_limiting.daily to positive values")
    if limits.rpm > limits.daily / 24:
        return HealthCheckResult(
            'rate_limits', HealthStatus.UNHEALTHY,
            f"Per-minute limit {limits.rpm} exceeds daily budget over 24 hours",
            Severity.CRITICAL, "Lower rate_limiting.rpm or raise rate_limiting.daily")
    if limits.rpm < 10 or limits.daily < 100:
        return HealthCheckResult(
            'rate_limits', HealthStatus.DEGRADED,
            f"Rate limits are very low (rpm={limits.rpm}, daily={limits.daily})",
            Severity.WARNING, "Consider raising rate limits for normal operation")
    return _healthy('rate_limits', "Rate limits are within expected bounds")


def memory_limits_check(snapshot: BotConfiguration) -> HealthCheckResult:
    """Memory alert threshold against host capacity and current usage."""
    threshold_mb = snapshot.features.monitoring.alerts.memory_threshold
    total_mb = psutil.virtual_memory().total / (1024 * 1024)
    rss_mb = psutil.Process().memory_info().rss / (1024 * 1024)

    if threshold_mb > total_mb * MEMORY_CAPACITY_RATIO:
        return HealthCheckResult(
            'memory_limits', HealthStatus.DEGRADED,
            f"Memory threshold {threshold_mb}MB exceeds {MEMORY_CAPACITY_RATIO:.0%} "
            f"of host memory ({total_mb:.0f}MB)",
            Severity.WARNING, "Lower features.monitoring.alerts.memory_threshold")
    if rss_mb > threshold_mb:
        return HealthCheckResult(
            'memory_limits', HealthStatus.DEGRADED,
            f"Process memory {rss_mb:.0f}MB exceeds threshold {threshold_mb}MB",
            Severity.WARNING, "Investigate memory growth or raise the threshold")
    return _healthy('memory_limits', f"Process memory {rss_mb:.0f}MB within {threshold_mb}MB")


def feature_compatibility_check(snapshot: BotConfiguration) -> HealthCheckResult:
    """Cross-feature consistency."""
    features = snapshot.features
    problems: List[str] = []
    if features.code_execution and not features.structured_output:
        problems.append("code execution is enabled without structured output")
    if features.context_memory.cross_server_enabled and not features.context_memory.enabled:
        problems.append("cross-server context is enabled while context memory is disabled")
    if features.monitoring.alerts.enabled and not features.monitoring.enabled:
        problems.append("alerts are enabled while monitoring is disabled")

    if problems:
        return HealthCheckResult(
            'feature_compatibility', HealthStatus.DEGRADED,
            "Inconsistent features: " + "; ".join(problems),
            Severity.WARNING, "Align dependent feature toggles")
    return _healthy('feature_compatibility', "Feature toggles are consistent")


def discord_intents_check(snapshot: BotConfiguration) -> HealthCheckResult:
    """Required gateway intents."""
    missing = [intent for intent in REQUIRED_INTENTS if intent not in snapshot.discord.intents]
    if missing:
        return HealthCheckResult(
            'discord_intents', HealthStatus.UNHEALTHY,
            f"Missing required intents: {', '.join(missing)}",
            Severity.CRITICAL, "Add the missing intents to discord.intents")
    return _healthy('discord_intents', "Required intents configured")


def gemini_model_check(snapshot: BotConfiguration) -> HealthCheckResult:
    """Model name and sampling parameter validity."""
    gemini = snapshot.gemini
    if not 0 <= gemini.temperature <= 2:
        return HealthCheckResult(
            'gemini_model', HealthStatus.UNHEALTHY,
            f"Temperature {gemini.temperature} outside [0, 2]",
            Severity.CRITICAL, "Set gemini.temperature between 0 and 2")
    if not 0 <= gemini.top_p <= 1:
        return HealthCheckResult(
            'gemini_model', HealthStatus.UNHEALTHY,
            f"top_p {gemini.top_p} outside [0, 1]",
            Severity.CRITICAL, "Set gemini.top_p between 0 and 1")
    if gemini.model not in VALID_MODELS:
        return HealthCheckResult(
            'gemini_model', HealthStatus.DEGRADED,
            f"Unrecognized model: {gemini.model}",
            Severity.WARNING, f"Use one of: {', '.join(VALID_MODELS)}")
    return _healthy('gemini_model', f"Model {gemini.model} configured")


def timeouts_check(environ: Optional[Mapping[str, str]] = None) -> HealthPredicate:
    """Request timeout sanity."""
    def check(snapshot: BotConfiguration) -> HealthCheckResult:
        env = os.environ if environ is None else environ
        raw = env.get('GEMINI_TIMEOUT_MS')
        if raw is None:
            return _healthy('timeouts', "Using default request timeout")
        low, high = TIMEOUT_RANGE_MS
        try:
            timeout = int(raw)
        except ValueError:
            return HealthCheckResult(
                'timeouts', HealthStatus.DEGRADED, f"GEMINI_TIMEOUT_MS is not a number: {raw!r}",
                Severity.WARNING, f"Set GEMINI_TIMEOUT_MS between {low} and {high}")
        if not low <= timeout <= high:
            return HealthCheckResult(
                'timeouts', HealthStatus.DEGRADED, f"GEMINI_TIMEOUT_MS {timeout} outside [{low}, {high}]",
                Severity.WARNING, f"Set GEMINI_TIMEOUT_MS between {low} and {high}")
        return _healthy('timeouts', f"Request timeout {timeout}ms")
    return check


def builtin_checks(environ: Optional[Mapping[str, Any]] = None) -> List[CheckRegistration]:
    """The default set of checks, in registration order."""
    return [
        CheckRegistration('api_keys', api_keys_check(environ), critical=True),
        CheckRegistration('rate_limits', rate_limits_check, critical=True),
        CheckRegistration('memory_limits', memory_limits_check),
        CheckRegistration('feature_compatibility', feature_compatibility_check),
        CheckRegistration('discord_intents', discord_intents_check, critical=True),
        CheckRegistration('gemini_model', gemini_model_check),
        CheckRegistration('timeouts', timeouts_check(environ)),
    ]
