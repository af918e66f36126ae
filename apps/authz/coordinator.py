"""
Batched commit of pending access changes.

Changes are grouped by target user. Each group is re-validated against
current state and persisted inside one transaction while the target's row
is locked, so a group lands completely or not at all. Groups are isolated
from each other: a failed group never rolls back one that already committed.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Union

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from apps.core.logging import SecurityLogger
from apps.authz.audit import AuditRecorder
from apps.authz.catalog import PermissionCatalog
from apps.authz.changes import (
    ChangeSet, ChangeType, CommitStatus, PendingChange, PerUserCommitResult, RejectedChange,
)
from apps.authz.exceptions import DENIAL_MESSAGES, ConcurrentModification, UserNotFound, ValidationFailed
from apps.authz.models import AuditAction, User, UserModuleGrant, UserPermissionOverride
from apps.authz.resolver import PermissionResolver
from apps.authz.roles import is_staff_role, is_super_admin
from apps.authz.validator import AccessValidator

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = {
    ChangeType.GRANT_PERMISSION: AuditAction.PERMISSION_GRANTED,
    ChangeType.REVOKE_PERMISSION: AuditAction.PERMISSION_REVOKED,
    ChangeType.ENABLE_MODULE: AuditAction.MODULE_ENABLED,
    ChangeType.DISABLE_MODULE: AuditAction.MODULE_DISABLED,
    ChangeType.CHANGE_ROLE: AuditAction.ROLE_CHANGED,
    ChangeType.CHANGE_COMPANY: AuditAction.COMPANY_CHANGED,
}

# User attributes are written before grants so that grant rows carry the new company
_APPLY_ORDER = {'role': 0, 'company': 0, 'permission': 1, 'module': 1}


def risk_factors_for(change, baseline=None, code=None):
    """Risk factors describing one change, for audit scoring."""
    factors = {}
    if change.kind == 'permission':
        factors['super_tier'] = PermissionCatalog.is_super_tier_permission(change.key)
        factors['sensitive'] = (
            change.change_type == ChangeType.GRANT_PERMISSION
            and change.key in PermissionCatalog.DANGEROUS_PERMISSIONS
        )
    elif change.kind == 'module':
        factors['super_tier'] = PermissionCatalog.is_super_tier_module(change.key)
    elif change.kind == 'role':
        factors['role_before'] = baseline
        factors['role_after'] = change.value
    if code == 'cross_tenant':
        factors['cross_tenant'] = True
    return factors


@dataclass
class _GroupOutcome:
    target: Any
    applied: List[PendingChange]
    no_ops: List[PendingChange]
    warnings: List[str]


def target_visible_to(actor: User, target: Optional[User]) -> bool:
    """True when ``target`` exists and may be named in records the actor's company can read."""
    if target is None:
        return False
    return is_super_admin(actor.role) or target.company_id == actor.company_id


def unknown_target_code(actor: User) -> str:
    """Denial reported for a missing target, matching what another tenant's user would get."""
    if actor.is_active and is_staff_role(actor.role):
        return 'cross_tenant'
    return 'unauthorized'


class BulkMutationCoordinator:
    """
    Commits pending changes one target user at a time.
    """

    @classmethod
    def max_attempts(cls) -> int:
        return max(1, getattr(settings, 'AUTHZ_PERSISTENCE_MAX_RETRIES', 3))

    @classmethod
    def commit(cls, actor: User, changes: Union[ChangeSet, Iterable[PendingChange]],
               cancel_event=None, origin: Optional[dict] = None) -> List[PerUserCommitResult]:
        """
        Commit ``changes`` on behalf of ``actor``.

        ``cancel_event`` (a ``threading.Event``) is checked before each group
        starts; groups not yet started when it is set are reported as
        cancelled and never touch the database. A group already writing runs
        to completion.

        Returns one PerUserCommitResult per target user, in the order targets
        first appear in ``changes``.
        """
        change_set = changes if isinstance(changes, ChangeSet) else ChangeSet(changes)
        results = []

        for target_id, group in change_set.by_target().items():
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Commit cancelled before group started", extra={'target_id': target_id})
                results.append(PerUserCommitResult(
                    target_id=target_id,
                    status=CommitStatus.CANCELLED,
                    message='Commit was cancelled before these changes were applied.',
                ))
                continue
            results.append(cls.commit_group(actor, target_id, group, origin=origin))

        committed = sum(1 for r in results if r.ok)
        logger.info(
            "Commit finished",
            extra={
                'actor_id': str(actor.id),
                'groups': len(results),
                'committed': committed,
                'change_count': len(change_set),
            }
        )
        return results

    @classmethod
    def commit_group(cls, actor: User, target_id, group: List[PendingChange],
                     origin: Optional[dict] = None) -> PerUserCommitResult:
        """Commit every change for one target atomically, retrying transient store errors."""
        attempts = 0
        while True:
            attempts += 1
            try:
                outcome = cls._apply_group(actor, target_id, group)
                break

            except ValidationFailed as e:
                cls._record_denials(actor, target_id, e.rejected, origin)
                return PerUserCommitResult(
                    target_id=target_id,
                    status=CommitStatus.FAILED,
                    rejected=e.rejected,
                    error=e.code,
                    message=e.message,
                    attempts=attempts,
                )

            except (ConcurrentModification, UserNotFound) as e:
                logger.warning(
                    f"Commit group rejected: {e.code}",
                    extra={'actor_id': str(actor.id), 'target_id': str(target_id), 'details': e.details}
                )
                return PerUserCommitResult(
                    target_id=target_id,
                    status=CommitStatus.FAILED,
                    error=e.code,
                    message=e.message,
                    attempts=attempts,
                )

            except DatabaseError as e:
                if attempts >= cls.max_attempts():
                    logger.error(
                        "Commit group failed after retries",
                        extra={'target_id': str(target_id), 'attempts': attempts, 'exception': str(e)},
                        exc_info=True
                    )
                    return PerUserCommitResult(
                        target_id=target_id,
                        status=CommitStatus.FAILED,
                        error='persistence_failure',
                        message='The change could not be saved. Try again later.',
                        attempts=attempts,
                    )
                logger.warning(
                    "Commit group hit a store error, retrying",
                    extra={'target_id': str(target_id), 'attempt': attempts, 'exception': str(e)}
                )

        PermissionResolver.invalidate(outcome.target.id)
        event_ids = cls._record_changes(actor, outcome, origin)

        return PerUserCommitResult(
            target_id=target_id,
            status=CommitStatus.COMMITTED,
            applied=outcome.applied,
            no_ops=outcome.no_ops,
            warnings=outcome.warnings,
            attempts=attempts,
            audit_event_ids=event_ids,
        )

    @classmethod
    def _apply_group(cls, actor: User, target_id, group: List[PendingChange]) -> _GroupOutcome:
        with transaction.atomic():
            target = User.objects.select_for_update().filter(pk=target_id).first()
            if target is None:
                if is_super_admin(actor.role):
                    raise UserNotFound()
                # Indistinguishable from a target in another company
                code = unknown_target_code(User.objects.filter(pk=actor.pk).first() or actor)
                for pending in group:
                    SecurityLogger.log_denied_change(
                        code,
                        actor_id=str(actor.id),
                        target_id=str(target_id),
                        company_id=str(actor.company_id) if actor.company_id else None,
                        change_type=pending.change.change_type.value,
                        key=pending.change.key,
                    )
                raise ValidationFailed(rejected=[
                    RejectedChange(pending, code, DENIAL_MESSAGES[code]) for pending in group
                ])

            # Authority is judged on the actor's current row, not the caller's copy
            current_actor = target if str(actor.pk) == str(target.pk) else (
                User.objects.filter(pk=actor.pk).first() or actor
            )

            batch = [pending.change for pending in group]
            rejected, stale, no_ops, to_apply, warnings = [], [], [], [], []

            for pending in group:
                result = AccessValidator.validate(
                    current_actor, target, pending.change, batch=batch, fresh=True,
                )
                if not result.allowed:
                    rejected.append(RejectedChange(pending, result.code, result.errors[0]))
                    continue

                current = PermissionResolver.current_value(
                    target, pending.change.kind, pending.change.key, fresh=True,
                )
                if current != pending.baseline:
                    stale.append({
                        'change': pending.change.to_dict(),
                        'baseline': pending.baseline,
                        'current': current,
                    })
                    continue

                if result.no_op:
                    no_ops.append(pending)
                else:
                    to_apply.append(pending)
                    warnings.extend(result.warnings)

            if rejected:
                raise ValidationFailed(rejected=rejected)
            if stale:
                raise ConcurrentModification(details={'stale': stale})

            if to_apply:
                updated = User.objects.filter(pk=target.pk, version=target.version).update(
                    version=F('version') + 1,
                    updated_at=timezone.now(),
                )
                if updated != 1:
                    raise ConcurrentModification(details={'target_id': str(target.pk)})
                target.version += 1

                for pending in sorted(to_apply, key=lambda p: _APPLY_ORDER[p.change.kind]):
                    cls._apply_change(current_actor, target, pending.change)

        return _GroupOutcome(target, to_apply, no_ops, warnings)

    @staticmethod
    def _apply_change(actor: User, target: User, change):
        if change.kind == 'permission':
            UserPermissionOverride.objects.set_override(target, change.key, change.desired, granted_by=actor)
        elif change.kind == 'module':
            UserModuleGrant.objects.set_enabled(target, change.key, change.desired, granted_by=actor)
        elif change.kind == 'role':
            target.role = change.value
            target.save(update_fields=['role', 'updated_at'])
        elif change.kind == 'company':
            target.company_id = uuid.UUID(change.value) if change.value else None
            target.save(update_fields=['company', 'updated_at'])
            # Grants written under the previous company never follow the user
            UserPermissionOverride.objects_with_deleted.filter(user=target).hard_delete()
            UserModuleGrant.objects_with_deleted.filter(user=target).hard_delete()

    @classmethod
    def _record_changes(cls, actor: User, outcome: _GroupOutcome, origin) -> List[str]:
        target = outcome.target
        event_ids = []
        for pending, is_noop in [(p, False) for p in outcome.applied] + [(p, True) for p in outcome.no_ops]:
            change = pending.change
            payload = AuditRecorder.record(
                AUDIT_ACTIONS[change.change_type],
                actor=actor,
                target_user=target,
                company=target.company_id or actor.company_id,
                resource=change.key,
                before=pending.baseline,
                after=change.desired,
                details={'change_type': change.change_type.value, 'source': pending.source},
                is_noop=is_noop,
                origin=origin,
                risk_factors=risk_factors_for(change, pending.baseline),
            )
            event_ids.append(payload['id'])
        return event_ids

    @classmethod
    def _record_denials(cls, actor: User, target_id, rejected: List[RejectedChange], origin):
        target = User.objects.filter(pk=target_id).first()
        for item in rejected:
            record_denial(actor, target, item.pending.change, item.code, item.message, origin,
                          baseline=item.pending.baseline)


def record_denial(actor: User, target: Optional[User], change, code: str, message: str,
                  origin: Optional[dict] = None, baseline=None):
    """
    Record an access_denied audit event for a rejected change.

    The event lands in the actor's company log, so a target from another
    company is recorded anonymously and without its current value.
    """
    if not target_visible_to(actor, target):
        target, baseline = None, None
    company_id = actor.company_id
    if company_id is None and target is not None and is_super_admin(actor.role):
        company_id = target.company_id
    return AuditRecorder.record(
        AuditAction.ACCESS_DENIED,
        actor=actor,
        target_user=target,
        company=company_id,
        resource=change.key,
        before=baseline,
        after=change.desired,
        details={'change_type': change.change_type.value, 'code': code, 'reason': message},
        origin=origin,
        risk_factors=risk_factors_for(change, baseline, code=code),
    )
