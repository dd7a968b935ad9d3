"""
Configuration version archive.

This module mints version ids, hashes snapshot content, archives version
records, trims the archive to a retention bound and restores archived
versions with integrity verification.
"""

import asyncio
import copy
import hashlib
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ...core.domain.configuration import METADATA_FIELDS, BotConfiguration, VersionRecord
from ...core.exceptions import IntegrityError, NotFoundError, PersistenceError
from ..storage import atomic_write_data

logger = logging.getLogger(__name__)

VERSION_ID_PATTERN = re.compile(r'^v\d{8}T\d{12}Z$')
_VERSION_ID_FORMAT = '%Y%m%dT%H%M%S%fZ'

Transform = Callable[[Dict[str, Any]], Dict[str, Any]]
Snapshot = Union[BotConfiguration, Mapping[str, Any]]


def _content(snapshot: Snapshot) -> Dict[str, Any]:
    if isinstance(snapshot, BotConfiguration):
        return snapshot.content()
    data = copy.deepcopy(dict(snapshot))
    for name in METADATA_FIELDS:
        data.pop(name, None)
    return data


def compute_hash(snapshot: Snapshot) -> str:
    """
    Compute the SHA256 digest of a snapshot's content.

    Metadata (version, last_modified, modified_by) is excluded so restored
    content hashes identically under a new version id.

    Args:
        snapshot: Snapshot or its dictionary form

    Returns:
        SHA256 digest as hex string
    """
    canonical = json.dumps(_content(snapshot), sort_keys=True, separators=(',', ':'),
                           ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def is_version_compatible(from_version: str, to_version: str) -> bool:
    """
    Check whether a schema version can be migrated to another.

    Versions are compatible when the major versions match and the source
    minor version is not newer than the target's.
    """
    def parse(version: str) -> Tuple[int, int]:
        parts = version.lstrip('v').split('.')
        return int(parts[0]), int(parts[1]) if len(parts) > 1 else 0

    try:
        from_major, from_minor = parse(from_version)
        to_major, to_minor = parse(to_version)
    except ValueError:
        return False
    return from_major == to_major and from_minor <= to_minor


def _add_monitoring_section(config: Dict[str, Any]) -> Dict[str, Any]:
    features = config.setdefault('features', {})
    if 'monitoring' not in features:
        features['monitoring'] = BotConfiguration().to_dict()['features']['monitoring']
    return config


class ConfigurationMigrator:
    """
    Archive of configuration versions.

    Each record lives in ``<versions_dir>/<version_id>.json``. Version ids
    sort lexicographically in creation order.
    """

    def __init__(self, versions_dir: Union[str, Path], max_versions: int = 50,
                 cleanup_batch_size: int = 5):
        """
        Initialize the migrator.

        Args:
            versions_dir: Directory holding version records
            max_versions: Number of most recent records to retain
            cleanup_batch_size: Number of deletions run concurrently during trimming
        """
        self.versions_dir = Path(versions_dir)
        self.max_versions = max_versions
        self.cleanup_batch_size = cleanup_batch_size
        self._last_issued: Optional[datetime] = None
        self._cleanup_lock = asyncio.Lock()

    def initialize(self) -> None:
        """Create the archive directory and seed the id clock from existing records."""
        try:
            self.versions_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create versions directory: {e}", str(self.versions_dir)) from e

        ids = self._version_ids()
        if ids:
            self._last_issued = datetime.strptime(ids[0], 'v' + _VERSION_ID_FORMAT).replace(
                tzinfo=timezone.utc)

    @property
    def cached_version_count(self) -> int:
        return len(self._version_ids())

    def generate_version_id(self) -> str:
        """
        Mint a new version id.

        Ids are derived from the current UTC time with microsecond precision
        and are strictly increasing within the process; a collision with the
        previous id bumps the new one by a microsecond.
        """
        now = datetime.now(timezone.utc)
        if self._last_issued is not None and now <= self._last_issued:
            now = self._last_issued + timedelta(microseconds=1)
        self._last_issued = now
        return 'v' + now.strftime(_VERSION_ID_FORMAT)

    def compute_hash(self, snapshot: Snapshot) -> str:
        return compute_hash(snapshot)

    def _record_path(self, version_id: str) -> Path:
        if not VERSION_ID_PATTERN.match(version_id):
            raise NotFoundError(f"Invalid version id: {version_id}", version_id)
        return self.versions_dir / f"{version_id}.json"

    def _version_ids(self) -> List[str]:
        """Archived ids, newest first."""
        if not self.versions_dir.exists():
            return []
        ids = [p.stem for p in self.versions_dir.glob('v*.json') if VERSION_ID_PATTERN.match(p.stem)]
        return sorted(ids, reverse=True)

    async def archive(self, snapshot: Snapshot) -> VersionRecord:
        """
        Persist an immutable version record for ``snapshot``.

        The snapshot's own version id is used when it is a minted id;
        otherwise a new one is minted. Existing records are never
        overwritten.

        Returns:
            The archived record

        Raises:
            PersistenceError: If the id already exists or the write fails
        """
        data = snapshot.to_dict() if isinstance(snapshot, BotConfiguration) else copy.deepcopy(dict(snapshot))
        version_id = str(data.get('version', ''))
        if not VERSION_ID_PATTERN.match(version_id):
            version_id = self.generate_version_id()
            data['version'] = version_id

        record = VersionRecord(
            version=version_id,
            timestamp=data.get('last_modified') or datetime.now(timezone.utc).isoformat(),
            configuration=data,
            hash=compute_hash(data),
        )

        path = self._record_path(version_id)
        if path.exists():
            raise PersistenceError(f"Version {version_id} already archived", str(path))

        atomic_write_data(path, record.to_dict(), 'json')
        logger.info(f"Archived configuration version {version_id}")

        await self.cleanup_old_versions()
        return record

    async def cleanup_old_versions(self) -> int:
        """
        Trim the archive to the ``max_versions`` newest records.

        Deletions run in batches of ``cleanup_batch_size``.

        Returns:
            Number of records deleted
        """
        if self._cleanup_lock.locked():
            return 0

        async with self._cleanup_lock:
            stale = self._version_ids()[self.max_versions:]
            deleted = 0
            for start in range(0, len(stale), self.cleanup_batch_size):
                batch = stale[start:start + self.cleanup_batch_size]
                results = await asyncio.gather(
                    *(asyncio.to_thread(self._delete_record, version_id) for version_id in batch),
                    return_exceptions=True
                )
                for version_id, result in zip(batch, results):
                    if isinstance(result, BaseException):
                        logger.error(f"Failed to delete old version {version_id}: {result}")
                    else:
                        deleted += 1

            if deleted:
                logger.info(f"Deleted {deleted} old configuration version(s)")
            return deleted

    def _delete_record(self, version_id: str) -> None:
        self._record_path(version_id).unlink()

    def _read_record(self, version_id: str) -> VersionRecord:
        path = self._record_path(version_id)
        if not path.exists():
            raise NotFoundError(f"Version not found: {version_id}", version_id)

        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            raise IntegrityError(f"Version record {version_id} is unreadable: {e}", version_id) from e

        if not isinstance(data, dict) or not isinstance(data.get('configuration'), dict):
            raise IntegrityError(
                f"Version record {version_id} is malformed: configuration must be an object", version_id)
        try:
            return VersionRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise IntegrityError(f"Version record {version_id} is malformed: {e}", version_id) from e

    def history(self) -> List[VersionRecord]:
        """
        List archived records newest first.

        Corrupt records are skipped with a warning.
        """
        records: List[VersionRecord] = []
        for version_id in self._version_ids():
            try:
                records.append(self._read_record(version_id))
            except (IntegrityError, NotFoundError) as e:
                logger.warning(f"Skipping version record {version_id}: {e}")
        return records

    def rollback(self, version_id: str) -> VersionRecord:
        """
        Load an archived record and verify its integrity.

        Args:
            version_id: Id of the version to restore

        Returns:
            The verified record

        Raises:
            NotFoundError: If the version does not exist
            IntegrityError: If the record is unreadable or its hash does not match
        """
        record = self._read_record(version_id)
        actual = compute_hash(record.configuration)
        if actual != record.hash:
            raise IntegrityError(
                f"Version {version_id} failed integrity check: checksum mismatch", version_id)

        logger.info(f"Verified configuration version {version_id} for rollback")
        return record

    def migrate(self, from_version: str, to_version: str,
                transform: Optional[Transform] = None) -> Dict[str, Any]:
        """
        Produce a migrated configuration from an archived version.

        Args:
            from_version: Archived version id to start from
            to_version: Label for the migrated configuration
            transform: Optional function applied to a copy of the configuration

        Returns:
            The migrated configuration dictionary (not archived)
        """
        record = self.rollback(from_version)
        migrated = copy.deepcopy(record.configuration)
        if transform is not None:
            migrated = transform(migrated)
        migrated['version'] = to_version
        migrated['last_modified'] = datetime.now(timezone.utc).isoformat()
        logger.info(f"Migrated configuration from {from_version} to {to_version}")
        return migrated

    def get_migration_strategies(self) -> Dict[str, Transform]:
        """Known schema migrations keyed ``"<from>-><to>"``."""
        return {
            '1.0.0->2.0.0': _add_monitoring_section,
        }
