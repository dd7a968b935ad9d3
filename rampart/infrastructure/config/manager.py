"""
Configuration manager.

The manager owns the single current configuration snapshot. Every mutating
operation runs under one ``asyncio.Lock`` and publishes a new snapshot with
a single reference assignment, so readers always see either the previous or
the next complete snapshot. Reads never take the lock.
"""

import asyncio
import copy
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ...core.domain.audit import AuditAction, AuditEntry, AuditQuery
from ...core.domain.configuration import BotConfiguration, VersionRecord
from ...core.domain.events import ConfigEvents, EventPriority
from ...core.exceptions import ConfigParseError, NotInitializedError, ValidationError
from ...core.interfaces.lifecycle import IComponent
from ...core.interfaces.messaging import IEventBus
from ..storage import dump_data, parse_data
from .auditor import Change, ConfigurationAuditor, detect_changes
from .loader import ConfigurationLoader, merge_configs
from .migrator import ConfigurationMigrator, compute_hash
from .profiles import ProfileRegistry, detect_profile
from .settings import ServiceSettings
from .validator import ConfigurationValidator, ValidationResult
from .watcher import IConfigWatcher, create_config_watcher

logger = logging.getLogger(__name__)

_MISSING = object()


class ConfigurationManager(IComponent):
    """
    Versioned, audited, hot-reloadable configuration service.

    Composes the loader, validator, migrator, auditor and file watcher.
    Consumers read configuration through copy-returning getters and are
    notified of changes through the event bus.
    """

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        event_bus: Optional[IEventBus] = None,
        loader: Optional[ConfigurationLoader] = None,
        validator: Optional[ConfigurationValidator] = None,
        migrator: Optional[ConfigurationMigrator] = None,
        auditor: Optional[ConfigurationAuditor] = None,
        environ: Optional[Mapping[str, str]] = None,
        profiles: Optional[ProfileRegistry] = None
    ) -> None:
        self.settings = settings or ServiceSettings()
        self._event_bus = event_bus
        paths = self.settings.paths

        self.profiles = profiles or ProfileRegistry()
        self.profile = detect_profile(self.settings.environment)
        self.loader = loader or ConfigurationLoader(
            paths.config_file, environ=environ,
            profile_overrides=self.profiles.resolve(self.profile))
        self.validator = validator or ConfigurationValidator()
        self.migrator = migrator or ConfigurationMigrator(
            paths.versions_directory,
            max_versions=self.settings.versioning.max_versions,
            cleanup_batch_size=self.settings.versioning.cleanup_batch_size,
        )
        audit = self.settings.audit
        self.auditor = auditor or ConfigurationAuditor(
            paths.audit_file,
            fallback_file=paths.audit_fallback_file,
            event_bus=event_bus,
            retention_days=audit.retention_days,
            max_entries=audit.max_entries,
            trim_margin=audit.trim_margin,
            cleanup_interval=audit.cleanup_interval,
            significance_threshold=audit.significance_threshold,
            sensitive_paths=audit.sensitive_paths,
            persist_attempts=audit.persist_attempts,
            persist_retry_delay=audit.persist_retry_delay,
        )

        self._lock = asyncio.Lock()
        self._is_reloading = False
        self._config: Optional[BotConfiguration] = None
        self._watcher: Optional[IConfigWatcher] = None
        self._initialized = False

    @property
    def name(self) -> str:
        """Get component name."""
        return "ConfigurationManager"

    @property
    def config_path(self) -> Path:
        return self.loader.config_path

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_reloading(self) -> bool:
        return self._is_reloading

    async def start(self) -> None:
        await self.initialize()

    async def stop(self) -> None:
        await self.shutdown()

    async def initialize(self) -> None:
        """
        Load, validate and publish the first snapshot, then start watching.

        Raises:
            ValidationError: If the persisted configuration is invalid
            PersistenceError: If the backing paths cannot be created
        """
        if self._initialized:
            return

        logger.info(f"Initializing configuration manager (profile {self.profile})")
        self.migrator.initialize()
        self.loader.load_environment_overrides()

        async with self._lock:
            candidate = self.loader.load()
            self._ensure_valid(candidate)
            self._config = BotConfiguration.from_dict(candidate)

        await self.auditor.start()

        if self.settings.watcher.enabled:
            self._watcher = create_config_watcher(
                self.config_path,
                self._on_file_changed,
                use_polling=self.settings.watcher.use_polling,
                debounce_delay=self.settings.watcher.debounce_delay,
                poll_interval=self.settings.watcher.poll_interval,
            )
            await self._watcher.start()

        self._initialized = True
        logger.info(f"Configuration manager initialized (version {self._config.version})")
        await self._publish(ConfigEvents.RELOADED, {
            'version': self._config.version, 'changes': 0, 'source': 'initialize'})

    async def shutdown(self) -> None:
        """Stop watching, flush the audit log and release resources."""
        if not self._initialized:
            return

        logger.info("Shutting down configuration manager")
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None

        # Wait for any in-flight mutation before flushing
        async with self._lock:
            await self.auditor.stop()
            self._initialized = False
        logger.info("Configuration manager shut down")

    async def check_health(self) -> Dict[str, Any]:
        """Check manager health."""
        validation = self.validator.validate(self._config) if self._config is not None else None
        return {
            'healthy': self._initialized and bool(validation and validation.valid),
            'status': 'running' if self._initialized else 'stopped',
            'details': {
                'version': self._config.version if self._config else None,
                'profile': self.profile,
                'config_file': str(self.config_path),
                'watching': self._watcher.is_running() if self._watcher else False,
                'versions_archived': self.migrator.cached_version_count,
                'audit_entries': self.auditor.entry_count,
                'validation_errors': list(validation.errors) if validation else [],
            }
        }

    # Read side

    def _require(self) -> BotConfiguration:
        if not self._initialized or self._config is None:
            raise NotInitializedError()
        return self._config

    def get_snapshot(self) -> BotConfiguration:
        """Return an independent deep copy of the current snapshot."""
        return copy.deepcopy(self._require())

    def get_configuration_dict(self) -> Dict[str, Any]:
        return self._require().to_dict()

    def get_discord_config(self) -> Dict[str, Any]:
        return self.get_value(('discord',))

    def get_gemini_config(self) -> Dict[str, Any]:
        return self.get_value(('gemini',))

    def get_rate_limiting_config(self) -> Dict[str, Any]:
        return self.get_value(('rate_limiting',))

    def get_feature_config(self) -> Dict[str, Any]:
        return self.get_value(('features',))

    def get_roasting_config(self) -> Dict[str, Any]:
        return self.get_value(('features', 'roasting'))

    def get_monitoring_config(self) -> Dict[str, Any]:
        return self.get_value(('features', 'monitoring'))

    def get_value(self, path: Sequence[str], default: Any = _MISSING) -> Any:
        """
        Resolve a typed path against the current snapshot.

        Raises:
            ConfigPathError: If the path is unknown and no default is given
        """
        snapshot = self._require()
        if default is _MISSING:
            return snapshot.get_value(path)
        return snapshot.get_value(path, default)

    def get_version_history(self) -> List[VersionRecord]:
        return self.migrator.history()

    def get_audit_log(self, limit: Optional[int] = 50,
                      filters: Optional[AuditQuery] = None) -> List[AuditEntry]:
        if filters is None:
            filters = AuditQuery(limit=limit)
        return self.auditor.query(filters)

    def validate_configuration(self, candidate: Optional[Mapping[str, Any]] = None) -> ValidationResult:
        """Validate ``candidate``, or the current snapshot when omitted."""
        if candidate is None:
            return self.validator.validate(self._require())
        return self.validator.validate(candidate)

    # Mutations

    def _ensure_valid(self, candidate: Any) -> None:
        result = self.validator.validate(candidate)
        if not result.valid:
            raise ValidationError(
                f"Configuration validation failed: {'; '.join(result.errors)}", result.errors)
        for warning in result.warnings:
            logger.warning(f"Configuration warning: {warning}")

    async def reload(self, source: str = "manual", reason: Optional[str] = None,
                     modified_by: str = "system") -> List[Change]:
        """
        Re-read the backing store and publish the result.

        One audit entry is written per changed leaf path. On failure the
        current snapshot is kept, ``config.error`` is published and the error
        is re-raised.

        Returns:
            The list of ``(path, before, after)`` changes applied
        """
        self._require()
        try:
            async with self._lock:
                self._is_reloading = True
                try:
                    snapshot, changes = await self._apply_reload(source, reason, modified_by)
                finally:
                    self._is_reloading = False
        except Exception as e:
            logger.error(f"Configuration reload from {source} failed: {e}")
            await self._publish(ConfigEvents.ERROR, {'error': str(e), 'source': source},
                                EventPriority.HIGH)
            raise

        logger.info(f"Configuration reloaded from {source} ({len(changes)} change(s))")
        if changes:
            await self._publish(ConfigEvents.CHANGED, {
                'changes': [{'path': p, 'previous_value': b, 'new_value': a} for p, b, a in changes],
                'source': source,
            })
        await self._publish(ConfigEvents.RELOADED, {
            'version': snapshot.version, 'changes': len(changes), 'source': source})
        return changes

    async def _apply_reload(self, source: str, reason: Optional[str],
                            modified_by: str) -> Tuple[BotConfiguration, List[Change]]:
        """Load, validate, audit and publish a new snapshot. Caller must hold the lock."""
        candidate = self.loader.load()
        self._ensure_valid(candidate)
        snapshot = BotConfiguration.from_dict(candidate)
        changes = detect_changes(self._require().content(), snapshot.content())

        for path, before, after in changes:
            await self.auditor.record(
                AuditAction.SET, path, before, after,
                modified_by=modified_by, reason=reason, metadata={'source': source})

        self._config = snapshot
        return snapshot, changes

    async def switch_profile(self, name: str, modified_by: str = "system") -> List[Change]:
        """
        Activate another profile and reload under it.

        On failure the previous profile stays active.

        Raises:
            NotFoundError: If the profile does not exist
            ValidationError: If the configuration is invalid under the new profile
        """
        self._require()
        overrides = self.profiles.resolve(name)
        previous = self.profile

        self.loader.set_profile_overrides(overrides)
        self.profile = name
        try:
            changes = await self.reload(source="profile", modified_by=modified_by,
                                        reason=f"Profile switched from {previous} to {name}")
        except Exception:
            self.loader.set_profile_overrides(self.profiles.resolve(previous))
            self.profile = previous
            raise

        logger.info(f"Switched configuration profile from {previous} to {name}")
        await self._publish(ConfigEvents.PROFILE_CHANGED, {
            'from': previous, 'to': name, 'changes': len(changes)})
        return changes

    async def _on_file_changed(self) -> None:
        """Watcher callback. Never raises."""
        if self._is_reloading:
            logger.debug("Ignoring file change during an in-flight reload")
            return
        if not self._initialized:
            return

        try:
            candidate = self.loader.load()
        except Exception as e:
            logger.error(f"Cannot read changed configuration, keeping last good configuration: {e}")
            await self._publish(ConfigEvents.ERROR, {'error': str(e), 'source': 'file_watcher'},
                                EventPriority.HIGH)
            return

        if self._matches_current(candidate):
            logger.debug("Configuration file matches the current snapshot, skipping reload")
            return

        try:
            await self.reload(source="file_watcher", reason="Configuration file changed")
        except Exception as e:
            logger.error(f"Hot reload failed, keeping last good configuration: {e}")

    def _matches_current(self, candidate: Mapping[str, Any]) -> bool:
        current = self._config
        if current is None:
            return False
        try:
            return compute_hash(BotConfiguration.from_dict(candidate)) == compute_hash(current)
        except (TypeError, ValueError):
            return False

    async def _commit(self, snapshot: BotConfiguration,
                      modified_by: str) -> Tuple[BotConfiguration, VersionRecord]:
        """
        Relabel, validate, persist and archive ``snapshot``, then publish it.

        Caller must hold the lock. On failure the persisted file is restored
        and the current snapshot is left untouched.
        """
        previous = self._require()
        labelled = snapshot.with_metadata(
            version=self.migrator.generate_version_id(),
            last_modified=datetime.now(timezone.utc).isoformat(),
            modified_by=modified_by,
        )
        self._ensure_valid(labelled)

        self.loader.save(labelled)
        try:
            record = await self.migrator.archive(labelled)
        except Exception:
            logger.error("Archiving failed, restoring previous configuration file")
            self.loader.save(previous)
            raise

        self._config = labelled
        return labelled, record

    async def save(self, modified_by: str = "system", reason: Optional[str] = None) -> VersionRecord:
        """
        Persist and archive the current snapshot under a new version id.

        Returns:
            The archived version record
        """
        self._require()
        async with self._lock:
            self._is_reloading = True
            try:
                previous = self._require()
                snapshot, record = await self._commit(previous, modified_by)
                await self.auditor.record(
                    AuditAction.SAVE, None, previous.version, snapshot.version,
                    modified_by=modified_by, reason=reason, metadata={'hash': record.hash})
            finally:
                self._is_reloading = False

        logger.info(f"Configuration saved as version {record.version}")
        await self._publish(ConfigEvents.SAVED, {'version': record.version, 'hash': record.hash})
        return record

    async def rollback_to_version(self, version_id: str, modified_by: str = "system",
                                  reason: Optional[str] = None) -> VersionRecord:
        """
        Restore an archived version under a fresh version id.

        Raises:
            NotFoundError: If the version does not exist
            IntegrityError: If the archived record fails hash verification
        """
        self._require()
        async with self._lock:
            self._is_reloading = True
            try:
                restored = self.migrator.rollback(version_id)
                previous = self._require()
                snapshot, record = await self._commit(
                    BotConfiguration.from_dict(restored.configuration), modified_by)
                await self.auditor.record(
                    AuditAction.ROLLBACK, None, previous.version, snapshot.version,
                    modified_by=modified_by, reason=reason,
                    metadata={'restored_version': version_id, 'hash': record.hash})
            finally:
                self._is_reloading = False

        logger.warning(f"Configuration rolled back to {version_id} as {record.version}")
        await self._publish(ConfigEvents.ROLLED_BACK, {
            'from': previous.version, 'to': record.version, 'restored_version': version_id,
        }, EventPriority.HIGH)
        return record

    async def update_section(self, partial: Mapping[str, Any], modified_by: str = "system",
                             reason: Optional[str] = None) -> VersionRecord:
        """
        Deep-merge ``partial`` into the current snapshot and commit it.

        The merged result is validated before anything is written.
        """
        return await self._apply_update(
            lambda current: merge_configs(current, partial), modified_by, reason, "update_section")

    async def update_configuration(self, updates: Mapping[str, Any], modified_by: str = "system",
                                   reason: Optional[str] = None) -> VersionRecord:
        """Replace whole top-level sections and commit the result."""
        def replace(current: Dict[str, Any]) -> Dict[str, Any]:
            result = dict(current)
            result.update(copy.deepcopy(dict(updates)))
            return result
        return await self._apply_update(replace, modified_by, reason, "update_configuration")

    async def _apply_update(self, build: Callable[[Dict[str, Any]], Dict[str, Any]],
                            modified_by: str, reason: Optional[str],
                            source: str) -> VersionRecord:
        self._require()
        async with self._lock:
            self._is_reloading = True
            try:
                previous = self._require()
                candidate = build(previous.to_dict())
                self._ensure_valid(candidate)
                snapshot, record = await self._commit(BotConfiguration.from_dict(candidate), modified_by)
                changes = detect_changes(previous.content(), snapshot.content())
                for path, before, after in changes:
                    await self.auditor.record(
                        AuditAction.SET, path, before, after, modified_by=modified_by,
                        reason=reason, metadata={'source': source, 'version': record.version})
            finally:
                self._is_reloading = False

        await self._publish_changes(changes, source, record)
        return record

    async def import_configuration(self, text: str, fmt: str = "json", modified_by: str = "system",
                                   reason: Optional[str] = None) -> VersionRecord:
        """
        Replace the configuration with serialized content.

        Raises:
            ConfigParseError: If ``text`` cannot be parsed
            ValidationError: If the imported configuration is invalid
        """
        try:
            candidate = parse_data(text, fmt)
        except ValueError as e:
            raise ConfigParseError(f"Cannot import configuration: {e}") from e
        if not isinstance(candidate, dict):
            raise ConfigParseError("Imported configuration must be an object")

        self._require()
        async with self._lock:
            self._is_reloading = True
            try:
                previous = self._require()
                self._ensure_valid(candidate)
                snapshot, record = await self._commit(BotConfiguration.from_dict(candidate), modified_by)
                changes = detect_changes(previous.content(), snapshot.content())
                await self.auditor.record(
                    AuditAction.IMPORT, None, previous.version, snapshot.version,
                    modified_by=modified_by, reason=reason,
                    metadata={'format': fmt, 'changes': len(changes), 'hash': record.hash})
            finally:
                self._is_reloading = False

        logger.warning(f"Configuration imported as version {record.version} ({len(changes)} change(s))")
        await self._publish_changes(changes, "import", record)
        return record

    async def export_configuration(self, fmt: str = "json", modified_by: str = "system") -> str:
        """Serialize the current snapshot as JSON or YAML."""
        snapshot = self._require()
        text = dump_data(snapshot.to_dict(), fmt)
        await self.auditor.record(AuditAction.EXPORT, None, modified_by=modified_by,
                                  metadata={'format': fmt, 'version': snapshot.version})
        return text

    async def _publish_changes(self, changes: List[Change], source: str, record: VersionRecord) -> None:
        if changes:
            await self._publish(ConfigEvents.CHANGED, {
                'changes': [{'path': p, 'previous_value': b, 'new_value': a} for p, b, a in changes],
                'source': source,
                'version': record.version,
            })
        await self._publish(ConfigEvents.SAVED, {'version': record.version, 'hash': record.hash})

    async def _publish(self, name: str, data: Any,
                       priority: EventPriority = EventPriority.NORMAL) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(name, data, priority)
