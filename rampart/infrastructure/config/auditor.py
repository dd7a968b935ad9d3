"""
Append-only audit log for configuration changes.

Entries are kept in memory and persisted asynchronously. A failed durable
write is retried, then the entry is appended to a JSON-lines fallback file;
the in-memory entry is never dropped because of a persistence failure.
"""

import asyncio
import csv
import io
import json
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from ...core.domain.audit import (
    AuditAction,
    AuditAnalytics,
    AuditEntry,
    AuditQuery,
    ComplianceResult,
    utc_now,
)
from ...core.domain.configuration import BotConfiguration
from ...core.domain.events import AuditEvents, EventPriority
from ...core.interfaces.lifecycle import IComponent
from ...core.interfaces.messaging import IEventBus
from ...core.exceptions import PersistenceError
from ..storage import atomic_write_text, with_retries
from .settings import DEFAULT_SENSITIVE_PATHS

logger = logging.getLogger(__name__)

ALWAYS_SIGNIFICANT_ACTIONS = (AuditAction.ROLLBACK, AuditAction.IMPORT)

Change = Tuple[str, Any, Any]


def detect_changes(old: Any, new: Any, prefix: str = '') -> List[Change]:
    """
    Diff two configuration trees leaf by leaf.

    Dictionaries are descended into; every other value, lists included, is
    compared as a leaf. Added and removed keys appear with ``None`` on the
    missing side.

    Returns:
        Sorted list of ``(path, old_value, new_value)`` tuples
    """
    changes: List[Change] = []
    if isinstance(old, Mapping) and isinstance(new, Mapping):
        for key in sorted(set(old) | set(new), key=str):
            path = f"{prefix}.{key}" if prefix else str(key)
            if key not in old:
                changes.extend(_leaves(new[key], path, added=True))
            elif key not in new:
                changes.extend(_leaves(old[key], path, added=False))
            else:
                changes.extend(detect_changes(old[key], new[key], path))
    elif old != new:
        changes.append((prefix, old, new))
    return changes


def _leaves(value: Any, path: str, added: bool) -> List[Change]:
    if isinstance(value, Mapping) and value:
        result: List[Change] = []
        for key in sorted(value, key=str):
            result.extend(_leaves(value[key], f"{path}.{key}", added))
        return result
    return [(path, None, value) if added else (path, value, None)]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ConfigurationAuditor(IComponent):
    """
    Audit log with significance classification, retention and analytics.
    """

    def __init__(
        self,
        audit_file: Union[str, Path],
        fallback_file: Optional[Union[str, Path]] = None,
        event_bus: Optional[IEventBus] = None,
        retention_days: int = 90,
        max_entries: int = 10000,
        trim_margin: int = 100,
        cleanup_interval: float = 24 * 60 * 60,
        significance_threshold: float = 0.5,
        sensitive_paths: Optional[Iterable[str]] = None,
        persist_attempts: int = 3,
        persist_retry_delay: float = 0.2
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if not 0 <= trim_margin < max_entries:
            raise ValueError("trim_margin must be between 0 and max_entries")
        self.audit_file = Path(audit_file)
        self.fallback_file = Path(fallback_file) if fallback_file else self.audit_file.with_suffix('.jsonl')
        self._event_bus = event_bus
        self.retention_days = retention_days
        self.max_entries = max_entries
        self.trim_margin = trim_margin
        self.cleanup_interval = cleanup_interval
        self.significance_threshold = significance_threshold
        self.sensitive_paths = list(DEFAULT_SENSITIVE_PATHS if sensitive_paths is None else sensitive_paths)
        self.persist_attempts = persist_attempts
        self.persist_retry_delay = persist_retry_delay

        self._entries: List[AuditEntry] = []
        self._pending: Set[asyncio.Task[None]] = set()
        self._write_lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task[None]] = None
        self._cleanup_running = False
        self._started = False
        self._metrics: Dict[str, int] = {
            'persist_failures': 0,
            'fallback_writes': 0,
            'entries_purged': 0,
        }

    @property
    def name(self) -> str:
        """Get component name."""
        return "ConfigurationAuditor"

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    async def start(self) -> None:
        """Load persisted entries and start the retention sweep."""
        if self._started:
            return

        self._entries = self._load_entries()
        self._started = True
        if self.cleanup_interval > 0:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info(f"Configuration auditor started with {len(self._entries)} entries")

    async def stop(self) -> None:
        """Stop the sweep, wait for pending writes and flush the log."""
        if not self._started:
            return

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        await self.flush()
        self._started = False
        logger.info("Configuration auditor stopped")

    async def check_health(self) -> Dict[str, Any]:
        """Check auditor health."""
        return {
            'healthy': self._metrics['persist_failures'] == 0,
            'status': 'running' if self._started else 'stopped',
            'details': {
                'entries': len(self._entries),
                'pending_writes': len(self._pending),
                'audit_file': str(self.audit_file),
                **self._metrics,
            }
        }

    async def flush(self) -> None:
        """Wait for pending writes, then write the whole log once more."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        try:
            async with self._write_lock:
                self._write_log()
        except (PersistenceError, OSError) as e:
            logger.error(f"Failed to flush audit log: {e}")

    def is_significant(self, action: AuditAction, path: Optional[str],
                       previous_value: Any, new_value: Any) -> bool:
        """
        Classify whether a change needs operator attention.

        Rollbacks and imports are always significant, as is any change at,
        under or above a sensitive path. A numeric change is significant
        when its relative change is strictly greater than the threshold.
        """
        if action in ALWAYS_SIGNIFICANT_ACTIONS:
            return True

        if path:
            for sensitive in self.sensitive_paths:
                if (path == sensitive or path.startswith(sensitive + '.')
                        or sensitive.startswith(path + '.')):
                    return True

        if _is_number(previous_value) and _is_number(new_value):
            if previous_value == new_value:
                return False
            if previous_value == 0:
                return True
            relative_change = abs(new_value - previous_value) / abs(previous_value)
            return relative_change > self.significance_threshold

        return False

    async def record(
        self,
        action: AuditAction,
        path: Optional[str] = None,
        previous_value: Any = None,
        new_value: Any = None,
        modified_by: str = "system",
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AuditEntry:
        """
        Append an audit entry and schedule its persistence.

        Returns:
            The recorded entry
        """
        entry = AuditEntry(
            action=action,
            path=path,
            previous_value=previous_value,
            new_value=new_value,
            modified_by=modified_by,
            reason=reason,
            significant=self.is_significant(action, path, previous_value, new_value),
            metadata=dict(metadata or {}),
        )

        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            removed = len(self._entries) - (self.max_entries - self.trim_margin)
            del self._entries[:removed]
            logger.info(f"Trimmed {removed} oldest audit entries")

        logger.debug(f"Audit: {action.value} {path or '<snapshot>'} by {modified_by}")

        if self._event_bus is not None:
            await self._event_bus.publish(AuditEvents.ENTRY_ADDED, entry)
            if entry.significant:
                logger.warning(f"Significant configuration change: {action.value} {path or '<snapshot>'}")
                await self._event_bus.publish(AuditEvents.SIGNIFICANT_CHANGE, entry, EventPriority.HIGH)

        task = asyncio.create_task(self._persist(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return entry

    async def _persist(self, entry: AuditEntry) -> None:
        async def write() -> None:
            async with self._write_lock:
                self._write_log()

        try:
            await with_retries(write, attempts=self.persist_attempts, delay=self.persist_retry_delay,
                               description="audit log write")
            return
        except (PersistenceError, OSError) as e:
            self._metrics['persist_failures'] += 1
            logger.warning(f"Audit log write failed, using fallback for entry {entry.id}: {e}")

        try:
            self.fallback_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.fallback_file, 'a', encoding='utf-8') as f:
                f.write(json.dumps(entry.to_dict(), default=str) + '\n')
            self._metrics['fallback_writes'] += 1
        except OSError as e:
            logger.error(f"Failed to persist audit entry {entry.id}: {e}")

    def _write_log(self) -> None:
        payload = {
            'entries': [entry.to_dict() for entry in self._entries],
            'last_updated': utc_now().isoformat(),
        }
        atomic_write_text(self.audit_file, json.dumps(payload, indent=2, default=str))

    def _load_entries(self) -> List[AuditEntry]:
        entries: Dict[str, AuditEntry] = {}

        if self.audit_file.exists():
            try:
                data = json.loads(self.audit_file.read_text(encoding='utf-8'))
                for item in data.get('entries', []):
                    entry = AuditEntry.from_dict(item)
                    entries[entry.id] = entry
            except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Could not load audit log {self.audit_file}: {e}")

        if self.fallback_file.exists():
            try:
                with open(self.fallback_file, 'r', encoding='utf-8') as f:
                    for line in f:
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            entry = AuditEntry.from_dict(json.loads(line))
                        except (ValueError, KeyError, TypeError) as e:
                            logger.warning(f"Skipping malformed fallback audit line: {e}")
                            continue
                        entries.setdefault(entry.id, entry)
            except OSError as e:
                logger.warning(f"Could not read audit fallback {self.fallback_file}: {e}")

        ordered = sorted(entries.values(), key=lambda e: e.timestamp)
        return ordered[-self.max_entries:]

    def query(self, filters: Optional[AuditQuery] = None) -> List[AuditEntry]:
        """
        Query the audit log.

        Returns:
            Matching entries newest first, capped at ``filters.limit``
        """
        filters = filters or AuditQuery()
        matches = [entry for entry in reversed(self._entries) if filters.matches(entry)]
        if filters.limit is not None:
            matches = matches[:filters.limit]
        return matches

    def get_recent(self, limit: int = 50) -> List[AuditEntry]:
        return self.query(AuditQuery(limit=limit))

    async def perform_retention_cleanup(self, now: Optional[datetime] = None) -> int:
        """
        Purge entries older than ``retention_days``.

        Returns:
            Number of entries removed
        """
        now = now or utc_now()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = now - timedelta(days=self.retention_days)
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if entry.timestamp >= cutoff]
        removed = before - len(self._entries)

        if removed:
            self._metrics['entries_purged'] += removed
            logger.info(f"Purged {removed} audit entries older than {self.retention_days} days")
            try:
                async with self._write_lock:
                    self._write_log()
            except (PersistenceError, OSError) as e:
                logger.error(f"Failed to persist audit log after cleanup: {e}")
            if self._event_bus is not None:
                await self._event_bus.publish(AuditEvents.RETENTION_CLEANUP, {'removed': removed})
        return removed

    async def _cleanup_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.cleanup_interval)
                if self._cleanup_running:
                    continue
                self._cleanup_running = True
                try:
                    await self.perform_retention_cleanup()
                except Exception as e:
                    logger.error(f"Audit retention cleanup failed: {e}")
                finally:
                    self._cleanup_running = False
        except asyncio.CancelledError:
            logger.debug("Audit retention sweep cancelled")

    async def clear(self, reason: str, cleared_by: str = "system") -> int:
        """
        Empty the audit log, leaving a single entry recording the clear.

        Returns:
            Number of entries removed
        """
        removed = len(self._entries)
        await self.flush()
        self._entries = []
        await self.record(AuditAction.CLEAR, reason=reason, modified_by=cleared_by,
                          metadata={'cleared_entries': removed})
        if self._event_bus is not None:
            await self._event_bus.publish(AuditEvents.CLEARED, {'removed': removed, 'reason': reason})
        logger.warning(f"Audit log cleared by {cleared_by}: {reason}")
        return removed

    def analytics(self, filters: Optional[AuditQuery] = None) -> AuditAnalytics:
        """Aggregate entries matching ``filters``."""
        entries = self.query(filters)
        path_counts = Counter(entry.path for entry in entries if entry.path)

        return AuditAnalytics(
            total_changes=len(entries),
            changes_by_action=dict(Counter(entry.action.value for entry in entries)),
            changes_by_user=dict(Counter(entry.modified_by for entry in entries)),
            significant_changes=sum(1 for entry in entries if entry.significant),
            most_changed_paths=[
                {'path': path, 'count': count} for path, count in path_counts.most_common(10)
            ],
            change_frequency=dict(sorted(Counter(
                entry.timestamp.date().isoformat() for entry in entries).items())),
        )

    def compliance_check(self, snapshot: Union[BotConfiguration, Mapping[str, Any]]) -> ComplianceResult:
        """Check a snapshot against operational policy."""
        data = snapshot.to_dict() if isinstance(snapshot, BotConfiguration) else snapshot
        violations: List[str] = []
        warnings: List[str] = []

        limits = data.get('rate_limiting', {})
        if limits.get('rpm', 0) > 60:
            violations.append("Rate limit exceeds recommended maximum (60 RPM)")
        if limits.get('daily', 0) > 10000:
            warnings.append("Daily limit is very high and may exceed API quotas")

        safety = data.get('gemini', {}).get('safety_settings', {})
        if any(level == 'block_none' for level in safety.values()):
            warnings.append("Some safety settings are set to 'block_none'")

        monitoring = data.get('features', {}).get('monitoring', {})
        health_metrics = monitoring.get('health_metrics', {})
        if not health_metrics.get('enabled', True):
            warnings.append("Health metrics collection is disabled")
        if health_metrics.get('retention_days', 0) > 90:
            violations.append("Health metrics retention exceeds 90 days")
        if not monitoring.get('alerts', {}).get('enabled', True):
            warnings.append("Alerting is disabled")

        memory = data.get('features', {}).get('context_memory', {})
        if memory.get('max_context_chars', 0) > 100000:
            warnings.append("Large context size may impact performance")

        return ComplianceResult(compliant=not violations, violations=violations, warnings=warnings)

    def statistics(self) -> Dict[str, Any]:
        """Summary statistics over the whole log."""
        now = utc_now()
        entries = self._entries
        return {
            'total_entries': len(entries),
            'significant_entries': sum(1 for entry in entries if entry.significant),
            'entries_last_24h': sum(1 for entry in entries if entry.timestamp >= now - timedelta(days=1)),
            'entries_last_7d': sum(1 for entry in entries if entry.timestamp >= now - timedelta(days=7)),
            'oldest_entry': entries[0].timestamp.isoformat() if entries else None,
            'newest_entry': entries[-1].timestamp.isoformat() if entries else None,
            'unique_users': len({entry.modified_by for entry in entries}),
            **self._metrics,
        }

    def compliance_report(self, start: datetime, end: datetime) -> Dict[str, Any]:
        """Report on changes within a period."""
        entries = self.query(AuditQuery(from_date=start, to_date=end))
        sources = Counter(str(entry.metadata.get('source', 'unknown')) for entry in entries)
        timeline = Counter(entry.timestamp.date().isoformat() for entry in entries)

        return {
            'period': {'start': start.isoformat(), 'end': end.isoformat()},
            'total_changes': len(entries),
            'changes_by_action': dict(Counter(entry.action.value for entry in entries)),
            'changes_by_user': dict(Counter(entry.modified_by for entry in entries)),
            'changes_by_source': dict(sources),
            'critical_changes': [entry.to_dict() for entry in entries if entry.significant],
            'timeline': [{'date': date, 'changes': count} for date, count in sorted(timeline.items())],
        }

    def generate_report(self, fmt: str = "markdown", filters: Optional[AuditQuery] = None) -> str:
        """
        Render the audit log as json, csv or markdown.

        Raises:
            ValueError: For an unknown format
        """
        entries = self.query(filters)
        fmt = fmt.lower()

        if fmt == "json":
            return json.dumps({
                'generated_at': utc_now().isoformat(),
                'analytics': self.analytics(filters).to_dict(),
                'entries': [entry.to_dict() for entry in entries],
            }, indent=2, default=str)

        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer)
            writer.writerow(['timestamp', 'action', 'path', 'previous_value', 'new_value',
                             'modified_by', 'reason', 'significant'])
            for entry in entries:
                writer.writerow([
                    entry.timestamp.isoformat(), entry.action.value, entry.path or '',
                    json.dumps(entry.previous_value, default=str),
                    json.dumps(entry.new_value, default=str),
                    entry.modified_by, entry.reason or '', entry.significant,
                ])
            return buffer.getvalue()

        if fmt == "markdown":
            return self._markdown_report(entries, filters)

        raise ValueError(f"Unsupported report format: {fmt}")

    def _markdown_report(self, entries: Sequence[AuditEntry], filters: Optional[AuditQuery]) -> str:
        analytics = self.analytics(filters)
        lines = [
            "# Configuration Audit Report",
            "",
            f"Generated: {utc_now().isoformat()}",
            "",
            "## Summary",
            "",
            f"- Total changes: {analytics.total_changes}",
            f"- Significant changes: {analytics.significant_changes}",
            "",
            "## Changes by action",
            "",
        ]
        for action, count in sorted(analytics.changes_by_action.items()):
            lines.append(f"- {action}: {count}")

        lines += ["", "## Most changed paths", ""]
        for item in analytics.most_changed_paths:
            lines.append(f"- `{item['path']}`: {item['count']}")

        lines += ["", "## Recent changes", "",
                  "| Time | Action | Path | User | Significant |",
                  "|------|--------|------|------|-------------|"]
        for entry in entries[:50]:
            lines.append(
                f"| {entry.timestamp.isoformat()} | {entry.action.value} | {entry.path or '-'} "
                f"| {entry.modified_by} | {'yes' if entry.significant else 'no'} |")
        return '\n'.join(lines) + '\n'

    async def export(self, path: Union[str, Path], fmt: str = "json",
                     filters: Optional[AuditQuery] = None, exported_by: str = "system") -> Path:
        """Write a report to ``path`` atomically and audit the export."""
        target = Path(path)
        atomic_write_text(target, self.generate_report(fmt, filters))
        await self.record(AuditAction.EXPORT, path=None, modified_by=exported_by,
                          metadata={'format': fmt, 'destination': str(target)})
        logger.info(f"Exported audit log to {target}")
        return target
