"""
Change types, pending changes, validation results and the client-side
change set that collapses edits before commit.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

NO_OP_WARNING = 'change has no effect'


class ChangeType(str, Enum):
    GRANT_PERMISSION = 'grant_permission'
    REVOKE_PERMISSION = 'revoke_permission'
    ENABLE_MODULE = 'enable_module'
    DISABLE_MODULE = 'disable_module'
    CHANGE_ROLE = 'change_role'
    CHANGE_COMPANY = 'change_company'

    @property
    def kind(self) -> str:
        """The attribute this change type writes: permission, module, role or company."""
        return _KINDS[self]


_KINDS = {
    ChangeType.GRANT_PERMISSION: 'permission',
    ChangeType.REVOKE_PERMISSION: 'permission',
    ChangeType.ENABLE_MODULE: 'module',
    ChangeType.DISABLE_MODULE: 'module',
    ChangeType.CHANGE_ROLE: 'role',
    ChangeType.CHANGE_COMPANY: 'company',
}


@dataclass(frozen=True)
class Change:
    """
    A single proposed access change. ``key`` is the permission key or
    module id; ``value`` carries the new role or company id.
    """
    change_type: ChangeType
    key: str = ''
    value: Any = None

    @classmethod
    def grant_permission(cls, key):
        return cls(ChangeType.GRANT_PERMISSION, key)

    @classmethod
    def revoke_permission(cls, key):
        return cls(ChangeType.REVOKE_PERMISSION, key)

    @classmethod
    def enable_module(cls, module_id):
        return cls(ChangeType.ENABLE_MODULE, module_id)

    @classmethod
    def disable_module(cls, module_id):
        return cls(ChangeType.DISABLE_MODULE, module_id)

    @classmethod
    def change_role(cls, role):
        return cls(ChangeType.CHANGE_ROLE, 'role', str(role))

    @classmethod
    def change_company(cls, company_id):
        return cls(ChangeType.CHANGE_COMPANY, 'company', str(company_id) if company_id else None)

    @property
    def kind(self) -> str:
        return self.change_type.kind

    @property
    def desired(self):
        """Effective value this change asks for."""
        if self.change_type in (ChangeType.GRANT_PERMISSION, ChangeType.ENABLE_MODULE):
            return True
        if self.change_type in (ChangeType.REVOKE_PERMISSION, ChangeType.DISABLE_MODULE):
            return False
        return self.value

    def to_dict(self):
        data = {'type': self.change_type.value, 'key': self.key}
        if self.kind in ('role', 'company'):
            data['value'] = self.value
        return data

    @classmethod
    def from_dict(cls, data):
        change_type = ChangeType(data['type'])
        if change_type == ChangeType.CHANGE_ROLE:
            return cls.change_role(data.get('value'))
        if change_type == ChangeType.CHANGE_COMPANY:
            return cls.change_company(data.get('value'))
        return cls(change_type, data.get('key', ''))


@dataclass(frozen=True)
class PendingChange:
    """
    A change proposed for one target user, with the effective value the
    proposer observed (the baseline).
    """
    target_id: str
    change: Change
    baseline: Any = None
    source: str = 'manual'

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (str(self.target_id), self.change.kind, self.change.key)

    def to_dict(self):
        return {
            'target_id': str(self.target_id),
            'change': self.change.to_dict(),
            'baseline': self.baseline,
            'source': self.source,
        }


@dataclass
class ValidationResult:
    allowed: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    code: Optional[str] = None
    no_op: bool = False

    @classmethod
    def deny(cls, code, message, warnings=None):
        return cls(allowed=False, errors=[message], warnings=list(warnings or []), code=code)

    def to_dict(self):
        return {
            'allowed': self.allowed,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'code': self.code,
            'no_op': self.no_op,
        }


class CommitStatus(str, Enum):
    COMMITTED = 'committed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


@dataclass
class RejectedChange:
    pending: PendingChange
    code: str
    message: str

    def to_dict(self):
        return {
            'change': self.pending.change.to_dict(),
            'baseline': self.pending.baseline,
            'code': self.code,
            'message': self.message,
        }


@dataclass
class PerUserCommitResult:
    """Outcome of committing one target user's group of changes."""
    target_id: str
    status: CommitStatus
    applied: List[PendingChange] = field(default_factory=list)
    no_ops: List[PendingChange] = field(default_factory=list)
    rejected: List[RejectedChange] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    message: str = ''
    attempts: int = 0
    audit_event_ids: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == CommitStatus.COMMITTED

    def to_dict(self):
        return {
            'target_id': str(self.target_id),
            'status': self.status.value,
            'applied': [p.change.to_dict() for p in self.applied],
            'no_ops': [p.change.to_dict() for p in self.no_ops],
            'rejected': [r.to_dict() for r in self.rejected],
            'warnings': list(self.warnings),
            'error': self.error,
            'message': self.message,
            'audit_event_ids': list(self.audit_event_ids),
        }


class ChangeSet:
    """
    Ordered collection of pending changes keyed by (target, kind, key).

    A later edit of the same key replaces the earlier desired value but keeps
    the first baseline. When the merged edit ends up back at its baseline the
    entry is dropped.
    """

    def __init__(self, changes=None):
        self._entries: Dict[Tuple[str, str, str], PendingChange] = {}
        for pending in changes or ():
            self.add(pending)

    def add(self, pending: PendingChange):
        identity = pending.identity
        existing = self._entries.get(identity)
        if existing is None:
            self._entries[identity] = pending
            return

        merged = replace(pending, baseline=existing.baseline)
        if merged.change.desired == merged.baseline:
            del self._entries[identity]
        else:
            self._entries[identity] = merged

    def extend(self, changes):
        for pending in changes:
            self.add(pending)

    def discard(self, target_id, kind, key):
        self._entries.pop((str(target_id), kind, key), None)

    def clear(self):
        self._entries.clear()

    def changes(self) -> List[PendingChange]:
        return list(self._entries.values())

    def by_target(self) -> Dict[str, List[PendingChange]]:
        groups: Dict[str, List[PendingChange]] = {}
        for pending in self._entries.values():
            groups.setdefault(str(pending.target_id), []).append(pending)
        return groups

    def __iter__(self) -> Iterator[PendingChange]:
        return iter(self.changes())

    def __len__(self):
        return len(self._entries)

    def __bool__(self):
        return bool(self._entries)
