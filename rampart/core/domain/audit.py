"""
Audit log models.

Audit entries are immutable; the log is append-only and only ever trimmed
from its oldest end.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union


class AuditAction(Enum):
    """Kinds of audited configuration operations."""
    SET = "set"
    DELETE = "delete"
    SAVE = "save"
    RELOAD = "reload"
    IMPORT = "import"
    EXPORT = "export"
    ROLLBACK = "rollback"
    VALIDATE = "validate"
    CLEAR = "clear"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuditEntry:
    """One immutable audit log record."""

    action: AuditAction
    path: Optional[str] = None
    previous_value: Any = None
    new_value: Any = None
    modified_by: str = "system"
    reason: Optional[str] = None
    significant: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'action': self.action.value,
            'path': self.path,
            'previous_value': self.previous_value,
            'new_value': self.new_value,
            'modified_by': self.modified_by,
            'reason': self.reason,
            'significant': self.significant,
            'metadata': self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'AuditEntry':
        timestamp = datetime.fromisoformat(data['timestamp'])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            id=data['id'],
            timestamp=timestamp,
            action=AuditAction(data['action']),
            path=data.get('path'),
            previous_value=data.get('previous_value'),
            new_value=data.get('new_value'),
            modified_by=data.get('modified_by', 'system'),
            reason=data.get('reason'),
            significant=bool(data.get('significant', False)),
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass(frozen=True)
class AuditQuery:
    """Filters for querying the audit log. Unset fields match everything."""

    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    action: Union[AuditAction, Sequence[AuditAction], None] = None
    path: Optional[str] = None
    modified_by: Optional[str] = None
    significant: Optional[bool] = None
    limit: Optional[int] = None

    def __post_init__(self) -> None:
        # Naive bounds are taken as UTC, like persisted entry timestamps
        for name in ('from_date', 'to_date'):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                object.__setattr__(self, name, value.replace(tzinfo=timezone.utc))

    def actions(self) -> Optional[List[AuditAction]]:
        if self.action is None:
            return None
        if isinstance(self.action, AuditAction):
            return [self.action]
        return list(self.action)

    def matches(self, entry: AuditEntry) -> bool:
        if self.from_date is not None and entry.timestamp < self.from_date:
            return False
        if self.to_date is not None and entry.timestamp > self.to_date:
            return False
        actions = self.actions()
        if actions is not None and entry.action not in actions:
            return False
        if self.path is not None and (entry.path is None or self.path not in entry.path):
            return False
        if self.modified_by is not None and entry.modified_by != self.modified_by:
            return False
        if self.significant is not None and entry.significant != self.significant:
            return False
        return True


@dataclass(frozen=True)
class AuditAnalytics:
    """Aggregate view over a set of audit entries."""

    total_changes: int
    changes_by_action: Dict[str, int]
    changes_by_user: Dict[str, int]
    significant_changes: int
    most_changed_paths: List[Dict[str, Any]]
    change_frequency: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_changes': self.total_changes,
            'changes_by_action': dict(self.changes_by_action),
            'changes_by_user': dict(self.changes_by_user),
            'significant_changes': self.significant_changes,
            'most_changed_paths': list(self.most_changed_paths),
            'change_frequency': dict(self.change_frequency),
        }


@dataclass(frozen=True)
class ComplianceResult:
    """Policy violations and warnings for a snapshot."""

    compliant: bool
    violations: List[str]
    warnings: List[str]
