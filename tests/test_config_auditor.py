"""
Tests for the configuration audit log.
"""

import csv
import io
import json

import pytest
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncGenerator, List
from unittest.mock import patch

from rampart.core.domain.audit import AuditAction, AuditQuery, utc_now
from rampart.core.domain.configuration import BotConfiguration
from rampart.core.domain.events import Event
from rampart.core.exceptions import PersistenceError
from rampart.core.services.event_bus import EventBus
from rampart.infrastructure.config.auditor import ConfigurationAuditor, detect_changes


def make_auditor(tmp_path: Path, **kwargs: object) -> ConfigurationAuditor:
    options = {'cleanup_interval': 0, 'persist_retry_delay': 0}
    options.update(kwargs)
    return ConfigurationAuditor(tmp_path / "audit.json", fallback_file=tmp_path / "audit.jsonl",
                                **options)  # type: ignore[arg-type]


@pytest.fixture
async def auditor(tmp_path: Path) -> AsyncGenerator[ConfigurationAuditor, None]:
    instance = make_auditor(tmp_path)
    await instance.start()
    yield instance
    await instance.stop()


class TestDetectChanges:

    def test_nested_leaf_changes(self) -> None:
        old = {'rate_limiting': {'rpm': 10, 'daily': 500}, 'gemini': {'model': 'a'}}
        new = {'rate_limiting': {'rpm': 5, 'daily': 500}, 'gemini': {'model': 'b'}}

        assert detect_changes(old, new) == [
            ('gemini.model', 'a', 'b'),
            ('rate_limiting.rpm', 10, 5),
        ]

    def test_lists_are_leaves(self) -> None:
        changes = detect_changes({'discord': {'intents': ['A']}}, {'discord': {'intents': ['A', 'B']}})
        assert changes == [('discord.intents', ['A'], ['A', 'B'])]

    def test_added_and_removed_keys(self) -> None:
        changes = detect_changes({'a': {'x': 1}}, {'b': {'y': {'z': 2}}})
        assert changes == [('a.x', 1, None), ('b.y.z', None, 2)]

    def test_identical_trees(self) -> None:
        config = BotConfiguration().content()
        assert detect_changes(config, config) == []


class TestSignificance:
    """Test cases for significance classification."""

    def setup_method(self) -> None:
        self.auditor = ConfigurationAuditor("unused.json", cleanup_interval=0)

    def test_exactly_half_is_not_significant(self) -> None:
        assert not self.auditor.is_significant(AuditAction.SET, 'rate_limiting.rpm', 10, 5)
        assert not self.auditor.is_significant(AuditAction.SET, 'rate_limiting.rpm', 10, 15)

    def test_more_than_half_is_significant(self) -> None:
        assert self.auditor.is_significant(AuditAction.SET, 'rate_limiting.rpm', 10, 4)
        assert self.auditor.is_significant(AuditAction.SET, 'rate_limiting.daily', 500, 1000)

    def test_change_from_zero(self) -> None:
        assert self.auditor.is_significant(AuditAction.SET, 'gemini.thinking.budget', 0, 1)
        assert not self.auditor.is_significant(AuditAction.SET, 'gemini.thinking.budget', 0, 0)

    def test_booleans_are_not_numeric(self) -> None:
        assert not self.auditor.is_significant(AuditAction.SET, 'features.structured_output', False, True)

    def test_sensitive_paths(self) -> None:
        assert self.auditor.is_significant(AuditAction.SET, 'gemini.model', 'a', 'b')
        assert self.auditor.is_significant(AuditAction.SET, 'gemini.safety_settings.harassment',
                                           'block_none', 'block_some')
        assert self.auditor.is_significant(AuditAction.DELETE, 'features.monitoring', {}, None)
        assert not self.auditor.is_significant(AuditAction.SET, 'gemini.model_extra', 'a', 'b')

    def test_always_significant_actions(self) -> None:
        assert self.auditor.is_significant(AuditAction.ROLLBACK, None, 'v1', 'v2')
        assert self.auditor.is_significant(AuditAction.IMPORT, None, None, None)
        assert not self.auditor.is_significant(AuditAction.SAVE, None, 'v1', 'v2')


class TestConfigurationAuditor:
    """Test cases for recording and querying audit entries."""

    @pytest.mark.asyncio
    async def test_record_and_persist(self, auditor: ConfigurationAuditor, tmp_path: Path) -> None:
        entry = await auditor.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5,
                                     modified_by='alice', reason='tuning')
        await auditor.flush()

        assert not entry.significant
        stored = json.loads((tmp_path / "audit.json").read_text())
        assert [item['id'] for item in stored['entries']] == [entry.id]
        assert 'last_updated' in stored

    @pytest.mark.asyncio
    async def test_events_published(self, tmp_path: Path) -> None:
        bus = EventBus()
        received: List[Event] = []
        await bus.subscribe("audit.*", received.append)
        instance = make_auditor(tmp_path, event_bus=bus)
        await instance.start()

        await instance.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5)
        await instance.record(AuditAction.SET, 'gemini.model', 'a', 'b')
        await instance.stop()

        assert [event.name for event in received] == [
            'audit.entry_added', 'audit.entry_added', 'audit.significant_change']
        assert received[-1].data.path == 'gemini.model'

    @pytest.mark.asyncio
    async def test_query_filters_newest_first(self, auditor: ConfigurationAuditor) -> None:
        await auditor.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5, modified_by='alice')
        await auditor.record(AuditAction.SET, 'gemini.model', 'a', 'b', modified_by='bob')
        await auditor.record(AuditAction.SAVE, None, 'v1', 'v2', modified_by='alice')

        assert [e.action for e in auditor.query()] == [AuditAction.SAVE, AuditAction.SET, AuditAction.SET]
        assert [e.path for e in auditor.query(AuditQuery(modified_by='alice', action=AuditAction.SET))] == [
            'rate_limiting.rpm']
        assert [e.path for e in auditor.query(AuditQuery(significant=True))] == ['gemini.model']
        assert len(auditor.query(AuditQuery(limit=2))) == 2
        assert len(auditor.get_recent(1)) == 1

    @pytest.mark.asyncio
    async def test_trim_keeps_newest(self, tmp_path: Path) -> None:
        instance = make_auditor(tmp_path, max_entries=10, trim_margin=3)
        await instance.start()

        for value in range(11):
            await instance.record(AuditAction.SET, 'rate_limiting.rpm', value, value + 1)
        await instance.stop()

        assert instance.entry_count == 7
        assert instance.query()[0].previous_value == 10
        assert instance.query()[-1].previous_value == 4

    def test_trim_margin_must_leave_room(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            make_auditor(tmp_path, max_entries=5)
        with pytest.raises(ValueError):
            make_auditor(tmp_path, max_entries=0, trim_margin=0)

    @pytest.mark.asyncio
    async def test_small_log_keeps_latest_entry(self, tmp_path: Path) -> None:
        instance = make_auditor(tmp_path, max_entries=5, trim_margin=4)
        await instance.start()

        for value in range(6):
            latest = await instance.record(AuditAction.SET, 'rate_limiting.rpm', value, value + 1)
        await instance.stop()

        assert instance.query() == [latest]

    @pytest.mark.asyncio
    async def test_naive_date_bounds(self, auditor: ConfigurationAuditor) -> None:
        await auditor.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5)
        naive_now = utc_now().replace(tzinfo=None)

        assert len(auditor.query(AuditQuery(from_date=datetime(2000, 1, 1)))) == 1
        assert auditor.query(AuditQuery(to_date=datetime(2000, 1, 1))) == []
        assert auditor.analytics(AuditQuery(from_date=naive_now - timedelta(hours=1))).total_changes == 1
        report = auditor.compliance_report(naive_now - timedelta(days=1), naive_now + timedelta(days=1))
        assert report['total_changes'] == 1
        assert await auditor.perform_retention_cleanup(now=naive_now) == 0

    @pytest.mark.asyncio
    async def test_failed_write_falls_back_to_jsonl(self, tmp_path: Path) -> None:
        instance = make_auditor(tmp_path, persist_attempts=2)
        await instance.start()

        with patch("rampart.infrastructure.config.auditor.atomic_write_text",
                   side_effect=PersistenceError("disk full")):
            entry = await instance.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5)
            await instance.stop()

        assert instance.entry_count == 1
        lines = (tmp_path / "audit.jsonl").read_text().splitlines()
        assert json.loads(lines[0])['id'] == entry.id
        health = await instance.check_health()
        assert not health['healthy']
        assert health['details']['fallback_writes'] == 1

        reloaded = make_auditor(tmp_path)
        await reloaded.start()
        assert [e.id for e in reloaded.query()] == [entry.id]
        await reloaded.stop()

    @pytest.mark.asyncio
    async def test_start_merges_log_and_fallback_without_duplicates(self, tmp_path: Path) -> None:
        first = make_auditor(tmp_path)
        await first.start()
        entry = await first.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5)
        await first.stop()
        with open(tmp_path / "audit.jsonl", 'a') as f:
            f.write(json.dumps(entry.to_dict()) + "\n")
            f.write("not json\n")

        second = make_auditor(tmp_path)
        await second.start()

        assert second.entry_count == 1
        await second.stop()

    @pytest.mark.asyncio
    async def test_retention_cleanup(self, auditor: ConfigurationAuditor) -> None:
        await auditor.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5)
        await auditor.record(AuditAction.SET, 'rate_limiting.daily', 500, 400)

        assert await auditor.perform_retention_cleanup(now=utc_now() + timedelta(days=89)) == 0
        assert await auditor.perform_retention_cleanup(now=utc_now() + timedelta(days=91)) == 2
        assert auditor.entry_count == 0

    @pytest.mark.asyncio
    async def test_clear_leaves_marker_entry(self, auditor: ConfigurationAuditor) -> None:
        await auditor.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5)
        await auditor.record(AuditAction.SET, 'rate_limiting.daily', 500, 400)

        removed = await auditor.clear("rotation", cleared_by="admin")

        assert removed == 2
        entries = auditor.query()
        assert len(entries) == 1
        assert entries[0].action is AuditAction.CLEAR
        assert entries[0].metadata == {'cleared_entries': 2}

    @pytest.mark.asyncio
    async def test_analytics_and_statistics(self, auditor: ConfigurationAuditor) -> None:
        await auditor.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5, modified_by='alice')
        await auditor.record(AuditAction.SET, 'rate_limiting.rpm', 5, 6, modified_by='bob')
        await auditor.record(AuditAction.ROLLBACK, None, 'v2', 'v3', modified_by='alice')

        analytics = auditor.analytics()
        stats = auditor.statistics()

        assert analytics.total_changes == 3
        assert analytics.changes_by_action == {'set': 2, 'rollback': 1}
        assert analytics.changes_by_user == {'alice': 2, 'bob': 1}
        assert analytics.significant_changes == 1
        assert analytics.most_changed_paths == [{'path': 'rate_limiting.rpm', 'count': 2}]
        assert stats['total_entries'] == 3
        assert stats['entries_last_24h'] == 3
        assert stats['unique_users'] == 2

    @pytest.mark.asyncio
    async def test_compliance_report(self, auditor: ConfigurationAuditor) -> None:
        await auditor.record(AuditAction.SET, 'gemini.model', 'a', 'b', metadata={'source': 'manual'})
        now = utc_now()

        report = auditor.compliance_report(now - timedelta(hours=1), now + timedelta(hours=1))

        assert report['total_changes'] == 1
        assert report['changes_by_source'] == {'manual': 1}
        assert len(report['critical_changes']) == 1

    def test_compliance_check(self) -> None:
        auditor = ConfigurationAuditor("unused.json", cleanup_interval=0)
        data = BotConfiguration().to_dict()

        default_result = auditor.compliance_check(data)
        assert default_result.compliant
        assert "Some safety settings are set to 'block_none'" in default_result.warnings

        data['rate_limiting']['rpm'] = 100
        data['features']['monitoring']['health_metrics']['retention_days'] = 120
        data['features']['monitoring']['alerts']['enabled'] = False
        result = auditor.compliance_check(data)

        assert not result.compliant
        assert len(result.violations) == 2
        assert "Alerting is disabled" in result.warnings

    @pytest.mark.asyncio
    async def test_reports(self, auditor: ConfigurationAuditor) -> None:
        await auditor.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5, modified_by='alice')

        as_json = json.loads(auditor.generate_report("json"))
        rows = list(csv.reader(io.StringIO(auditor.generate_report("csv"))))
        markdown = auditor.generate_report("markdown")

        assert as_json['analytics']['total_changes'] == 1
        assert rows[0][0] == 'timestamp'
        assert rows[1][1:3] == ['set', 'rate_limiting.rpm']
        assert markdown.startswith("# Configuration Audit Report")
        assert "`rate_limiting.rpm`: 1" in markdown
        with pytest.raises(ValueError):
            auditor.generate_report("xml")

    @pytest.mark.asyncio
    async def test_export_is_audited(self, auditor: ConfigurationAuditor, tmp_path: Path) -> None:
        await auditor.record(AuditAction.SET, 'rate_limiting.rpm', 10, 5)

        target = await auditor.export(tmp_path / "reports" / "audit.csv", "csv", exported_by='ops')

        assert target.read_text().startswith("timestamp,")
        latest = auditor.query()[0]
        assert latest.action is AuditAction.EXPORT
        assert latest.modified_by == 'ops'
