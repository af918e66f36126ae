"""
Access change validation.

Rules are evaluated in order and the first failing rule decides:

1. the actor must be an active admin or super-admin (unauthorized)
2. admins only act inside their own company (cross_tenant)
3. admins never touch super-admins or super-tier entries (insufficient_authority)
4. required modules cannot be disabled (required_module_protected)
5. nobody raises a role above their own authority (insufficient_authority)
6. keys, modules and values must exist (invalid_change)
7. a module cannot be enabled while its company gate is off (company_module_disabled)

A change that passes every rule but would not alter the effective value is
allowed with a "change has no effect" warning.
"""
import logging
import uuid
from typing import Iterable, List, Optional

from apps.core.logging import SecurityLogger
from apps.companies.models import Company
from apps.authz.catalog import PermissionCatalog
from apps.authz.changes import NO_OP_WARNING, Change, ChangeType, ValidationResult
from apps.authz.exceptions import DENIAL_MESSAGES
from apps.authz.models import CompanyModuleGrant
from apps.authz.resolver import AccessState, PermissionResolver
from apps.authz.roles import Role, authority, is_staff_role, is_super_admin

logger = logging.getLogger(__name__)

SENSITIVE_WARNING = '{key} grants a sensitive permission'
ADMIN_CAPABILITY_WARNING = '{key} grants administrative capability to a standard user'
REQUIRES_WARNING = '{key} requires {required}, which is not granted'
REQUIRED_BY_WARNING = '{key} is required by {dependents}'
MODULE_REQUIRES_WARNING = '{key} requires module {required}, which is not enabled'
REQUIRED_GATE_WARNING = '{key} is a required module; disabling its company gate hides it from every user'


class AccessValidator:
    """
    Decides whether an actor may apply a change to a target user.

    Validation never writes to the database. It reads effective state through
    PermissionResolver; ``fresh=True`` bypasses the resolver cache, which the
    commit path uses while holding the target's row lock.
    """

    @classmethod
    def validate(cls, actor, target, change: Change, batch: Iterable[Change] = (),
                 fresh: bool = False, log_denials: bool = True) -> ValidationResult:
        """
        Validate ``change`` for ``target`` on behalf of ``actor``.

        ``batch`` holds the other changes proposed for the same target in the
        same commit; dependency warnings are computed against the state the
        whole batch would produce.
        """
        code = cls._denial_code(actor, target, change)
        if code is not None:
            if log_denials:
                SecurityLogger.log_denied_change(
                    code,
                    actor_id=str(actor.id),
                    target_id=str(target.id),
                    company_id=str(actor.company_id) if actor.company_id else None,
                    change_type=change.change_type.value,
                    key=change.key,
                )
            return ValidationResult.deny(code, DENIAL_MESSAGES[code])

        current = PermissionResolver.current_value(target, change.kind, change.key, fresh=fresh)
        if current == change.desired:
            return ValidationResult(allowed=True, warnings=[NO_OP_WARNING], no_op=True)

        warnings = cls._warnings(target, change, batch)
        return ValidationResult(allowed=True, warnings=warnings)

    @classmethod
    def _denial_code(cls, actor, target, change: Change) -> Optional[str]:
        # 1. Only active staff roles may change access
        if not actor.is_active or not is_staff_role(actor.role):
            return 'unauthorized'

        actor_is_super = is_super_admin(actor.role)

        # 2. Company isolation for admins
        if not actor_is_super:
            if target.company_id is None or target.company_id != actor.company_id:
                return 'cross_tenant'
            if change.change_type == ChangeType.CHANGE_COMPANY:
                if change.value != str(actor.company_id):
                    return 'cross_tenant'

        # 3. Super-admin targets and super-tier entries
        if not actor_is_super:
            if is_super_admin(target.role):
                return 'insufficient_authority'
            if change.kind == 'permission' and PermissionCatalog.is_super_tier_permission(change.key):
                return 'insufficient_authority'
            if change.kind == 'module' and PermissionCatalog.is_super_tier_module(change.key):
                return 'insufficient_authority'

        # 4. Required modules stay enabled per user
        if (change.change_type == ChangeType.DISABLE_MODULE
                and PermissionCatalog.is_required_module(change.key)):
            return 'required_module_protected'

        # 5. No escalation above the actor's own authority
        if change.change_type == ChangeType.CHANGE_ROLE:
            if authority(change.value) > authority(actor.role):
                return 'insufficient_authority'

        # 6. Catalog membership and value shape
        if not cls._is_well_formed(target, change):
            return 'invalid_change'

        # 7. Company gate
        if change.change_type == ChangeType.ENABLE_MODULE and not is_super_admin(target.role):
            enabled = CompanyModuleGrant.objects.enabled_module_ids(target.company_id)
            if change.key not in enabled:
                return 'company_module_disabled'

        return None

    @staticmethod
    def _is_well_formed(target, change: Change) -> bool:
        if change.kind == 'permission':
            return PermissionCatalog.has_permission(change.key)
        if change.kind == 'module':
            return PermissionCatalog.has_module(change.key)
        if change.kind == 'role':
            if change.value not in Role.values:
                return False
            # Only super-admins may exist without a company
            return target.company_id is not None or change.value == Role.SUPER_ADMIN
        if change.kind == 'company':
            if change.value is None:
                return is_super_admin(target.role)
            try:
                company_id = uuid.UUID(str(change.value))
            except ValueError:
                return False
            return Company.objects.active().filter(pk=company_id).exists()
        return False

    @classmethod
    def projected_state(cls, target, changes: Iterable[Change]) -> AccessState:
        """State the target would have after ``changes`` were all applied."""
        state = PermissionResolver.load_state(target)
        for change in changes:
            if change.kind == 'permission':
                state.overrides[change.key] = change.desired
            elif change.kind == 'module':
                state.user_modules[change.key] = change.desired
            elif change.kind == 'role':
                state.role = change.value
            elif change.kind == 'company':
                state.company_id = change.value
                state.overrides = {}
                state.user_modules = {}
                state.company_modules = set(CompanyModuleGrant.objects.enabled_module_ids(change.value))
        return state

    @classmethod
    def _warnings(cls, target, change: Change, batch: Iterable[Change]) -> List[str]:
        others = [c for c in batch if c != change]
        projected = cls.projected_state(target, others + [change])
        warnings = []

        if change.change_type == ChangeType.GRANT_PERMISSION:
            definition = PermissionCatalog.permission(change.key)
            for required in definition.requires:
                if not PermissionResolver.resolve_from_state(projected, 'permission', required):
                    warnings.append(REQUIRES_WARNING.format(key=change.key, required=required))
            if change.key in PermissionCatalog.DANGEROUS_PERMISSIONS:
                warnings.append(SENSITIVE_WARNING.format(key=change.key))
            if (change.key in PermissionCatalog.ADMINISTRATIVE_PERMISSIONS
                    and projected.role == Role.USER):
                warnings.append(ADMIN_CAPABILITY_WARNING.format(key=change.key))

        elif change.change_type == ChangeType.REVOKE_PERMISSION:
            dependents = [
                key for key in PermissionCatalog.dependents_of(change.key)
                if PermissionResolver.resolve_from_state(projected, 'permission', key)
            ]
            if dependents:
                warnings.append(REQUIRED_BY_WARNING.format(key=change.key, dependents=', '.join(dependents)))

        elif change.change_type == ChangeType.ENABLE_MODULE:
            module = PermissionCatalog.module(change.key)
            for required in module.dependencies:
                if not PermissionResolver.resolve_from_state(projected, 'module', required):
                    warnings.append(MODULE_REQUIRES_WARNING.format(key=change.key, required=required))

        return warnings

    @classmethod
    def validate_company_module_change(cls, actor, module_id: str, enabled: bool) -> ValidationResult:
        """
        Company gates are switched by super-admins only.
        """
        if not actor.is_active or not is_staff_role(actor.role):
            code = 'unauthorized'
        elif not is_super_admin(actor.role):
            code = 'insufficient_authority'
        elif not PermissionCatalog.has_module(module_id):
            code = 'invalid_change'
        else:
            code = None

        if code is not None:
            SecurityLogger.log_denied_change(
                code,
                actor_id=str(actor.id),
                company_id=str(actor.company_id) if actor.company_id else None,
                change_type='set_company_module',
                key=module_id,
            )
            return ValidationResult.deny(code, DENIAL_MESSAGES[code])

        warnings = []
        if not enabled and PermissionCatalog.is_required_module(module_id):
            warnings.append(REQUIRED_GATE_WARNING.format(key=module_id))
        return ValidationResult(allowed=True, warnings=warnings)

    @classmethod
    def check_template_contents(cls, actor, permission_keys, module_ids) -> Optional[str]:
        """
        Denial code for a template body the actor may not author, else None.
        """
        if not actor.is_active or not is_staff_role(actor.role):
            return 'unauthorized'
        if PermissionCatalog.unknown_permissions(permission_keys) or PermissionCatalog.unknown_modules(module_ids):
            return 'invalid_change'
        if not is_super_admin(actor.role):
            if any(PermissionCatalog.is_super_tier_permission(key) for key in permission_keys):
                return 'insufficient_authority'
            if any(PermissionCatalog.is_super_tier_module(module_id) for module_id in module_ids):
                return 'insufficient_authority'
        return None
