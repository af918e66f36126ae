"""
Authorization and authentication services.

Implements:
- AuthorizationService: resolution, validation, commits, templates, company
  module gates and audit listing, addressed by user id
- AuthService: JWT issue/validation and audited login
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

import jwt
from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from apps.core.logging import SecurityLogger
from apps.companies.models import Company
from apps.authz.audit import AuditRecorder
from apps.authz.catalog import PermissionCatalog
from apps.authz.changes import Change, ChangeSet, PendingChange, PerUserCommitResult, ValidationResult
from apps.authz.coordinator import (
    BulkMutationCoordinator, record_denial, target_visible_to, unknown_target_code,
)
from apps.authz.exceptions import (
    CompanyNotFound, Unauthorized, UserNotFound, denial_for,
)
from apps.authz.models import AuditAction, AuditEvent, CompanyModuleGrant, User
from apps.authz.resolver import PermissionResolver
from apps.authz.roles import is_staff_role, is_super_admin
from apps.authz.template_engine import TemplateEngine
from apps.authz.validator import AccessValidator

logger = logging.getLogger(__name__)


def _lookup(model, pk):
    try:
        return model.objects.filter(pk=pk).first()
    except (ValidationError, ValueError):
        return None


class AuthorizationService:
    """
    Entry points of the authorization engine.
    """

    @staticmethod
    def get_active_user(user_id) -> Optional[User]:
        user = _lookup(User, user_id)
        if user is None or not user.is_active:
            return None
        return user

    @classmethod
    def get_actor(cls, actor_id) -> User:
        actor = cls.get_active_user(actor_id)
        if actor is None:
            raise Unauthorized()
        return actor

    @classmethod
    def get_visible_user(cls, actor: User, target_id) -> User:
        """
        Look up a user the actor may see. Missing users and users of another
        company are indistinguishable to non-super-admins.
        """
        target = _lookup(User, target_id)
        if target is None:
            raise UserNotFound()
        if is_super_admin(actor.role) or target.pk == actor.pk:
            return target
        if not is_staff_role(actor.role) or target.company_id != actor.company_id:
            raise UserNotFound()
        return target

    @classmethod
    def resolve_permission(cls, user_id, key: str, audit: bool = False, origin=None) -> bool:
        """Effective value of a permission; missing or inactive users resolve to False."""
        user = cls.get_active_user(user_id)
        allowed = PermissionResolver.resolve(user, key) if user is not None else False
        if audit and user is not None:
            AuditRecorder.record(
                AuditAction.PERMISSION_CHECKED,
                target_user=user,
                company=user.company_id,
                resource=key,
                after=allowed,
                origin=origin,
            )
        return allowed

    @classmethod
    def resolve_module(cls, user_id, module_id: str) -> bool:
        """Effective value of a module; missing or inactive users resolve to False."""
        user = cls.get_active_user(user_id)
        if user is None:
            return False
        return PermissionResolver.resolve_module(user, module_id)

    @classmethod
    def effective_summary(cls, actor_id, target_id) -> Dict[str, Any]:
        """
        Full resolved permission and module maps for a user.

        Plain users may only read their own summary.
        """
        actor = cls.get_actor(actor_id)
        target = cls.get_visible_user(actor, target_id)
        return {
            'user_id': str(target.id),
            'role': target.role,
            'company_id': str(target.company_id) if target.company_id else None,
            'is_active': target.is_active,
            'version': target.version,
            'permissions': PermissionResolver.effective_permissions(target) if target.is_active else {},
            'modules': PermissionResolver.effective_modules(target) if target.is_active else {},
        }

    @classmethod
    def validate_change(cls, actor_id, target_id, change: Change,
                        batch: Iterable[Change] = (), origin=None) -> ValidationResult:
        """
        Validate one change without persisting it. Denials are audited as
        access_denied.
        """
        actor = _lookup(User, actor_id)
        target = _lookup(User, target_id)

        if actor is None or not actor.is_active:
            return ValidationResult.deny('unauthorized', denial_for('unauthorized').message)

        if target is None:
            # Indistinguishable from a target in another company
            if is_super_admin(actor.role):
                raise UserNotFound()
            code = unknown_target_code(actor)
            SecurityLogger.log_denied_change(
                code, actor_id=str(actor.id), target_id=str(target_id),
                company_id=str(actor.company_id) if actor.company_id else None,
                change_type=change.change_type.value, key=change.key,
            )
            record_denial(actor, None, change, code, denial_for(code).message, origin)
            return ValidationResult.deny(code, denial_for(code).message)

        result = AccessValidator.validate(actor, target, change, batch=batch)
        if not result.allowed:
            baseline = None
            if target_visible_to(actor, target):
                baseline = PermissionResolver.current_value(target, change.kind, change.key)
            record_denial(actor, target, change, result.code, result.errors[0], origin, baseline=baseline)
        return result

    @classmethod
    def propose(cls, actor_id, target_id, change: Change) -> PendingChange:
        """A pending change baselined on the target's current effective value."""
        actor = cls.get_actor(actor_id)
        target = cls.get_visible_user(actor, target_id)
        return PendingChange(
            target_id=str(target.id),
            change=change,
            baseline=PermissionResolver.current_value(target, change.kind, change.key),
        )

    @classmethod
    def commit_changes(cls, actor_id, changes, cancel_event=None, origin=None) -> List[PerUserCommitResult]:
        """
        Commit pending changes, grouped and applied atomically per target user.
        """
        actor = cls.get_actor(actor_id)
        change_set = changes if isinstance(changes, ChangeSet) else ChangeSet(changes)
        return BulkMutationCoordinator.commit(actor, change_set, cancel_event=cancel_event, origin=origin)

    @classmethod
    def apply_template(cls, template_id, target_id, actor_id, origin=None) -> PerUserCommitResult:
        actor = cls.get_actor(actor_id)
        if not is_staff_role(actor.role):
            raise Unauthorized()
        target = cls.get_visible_user(actor, target_id)
        return TemplateEngine.apply(template_id, target, actor, origin=origin)

    @classmethod
    def set_company_module(cls, actor_id, company_id, module_id: str, enabled: bool,
                           origin=None) -> Dict[str, Any]:
        """
        Switch a company's module gate. Super-admin only.

        Per-user module grants are left untouched, so re-enabling a gate
        restores earlier opt-ins.
        """
        actor = cls.get_actor(actor_id)
        result = AccessValidator.validate_company_module_change(actor, module_id, enabled)
        if not result.allowed:
            AuditRecorder.record(
                AuditAction.ACCESS_DENIED,
                actor=actor,
                company=actor.company_id,
                resource=module_id,
                after=enabled,
                details={'change_type': 'set_company_module', 'code': result.code, 'reason': result.errors[0]},
                origin=origin,
                risk_factors={'super_tier': PermissionCatalog.is_super_tier_module(module_id)},
            )
            raise denial_for(result.code)

        company = _lookup(Company, company_id)
        if company is None:
            raise CompanyNotFound()

        before = module_id in CompanyModuleGrant.objects.enabled_module_ids(company.id)
        grant = CompanyModuleGrant.objects.set_enabled(company, module_id, enabled, changed_by=actor)
        PermissionResolver.invalidate_company(company.id)

        for warning in result.warnings:
            logger.warning(warning, extra={'company_id': str(company.id), 'module_id': module_id})

        AuditRecorder.record(
            AuditAction.COMPANY_MODULE_ENABLED if enabled else AuditAction.COMPANY_MODULE_DISABLED,
            actor=actor,
            company=company,
            resource=module_id,
            before=before,
            after=enabled,
            is_noop=before == enabled,
            origin=origin,
            risk_factors={'super_tier': PermissionCatalog.is_super_tier_module(module_id)},
        )

        return {
            'company_id': str(company.id),
            'module_id': grant.module_id,
            'is_enabled': grant.is_enabled,
            'warnings': result.warnings,
        }

    @classmethod
    def list_audit_events(cls, actor_id, filters: Optional[Dict[str, Any]] = None):
        """
        Audit events visible to the actor, newest first.

        Admins only see their own company; asking for another company yields
        an empty result.
        """
        actor = cls.get_actor(actor_id)
        if not is_staff_role(actor.role):
            raise Unauthorized()

        filters = dict(filters or {})
        if is_super_admin(actor.role):
            queryset = AuditEvent.objects.all()
        else:
            requested = filters.get('company_id')
            if requested and str(requested) != str(actor.company_id):
                return AuditEvent.objects.none()
            queryset = AuditEvent.objects.for_company(actor.company_id)
            filters.pop('company_id', None)

        return AuditRecorder.list_events(queryset=queryset, **filters)


class AuthService:
    """
    Service for authentication operations: JWT and login.
    """

    @classmethod
    def generate_jwt(cls, user: User) -> str:
        """
        Generate JWT token for a user.

        Args:
            user: User instance

        Returns:
            JWT token string
        """
        now = timezone.now()
        payload = {
            'user_id': str(user.id),
            'role': user.role,
            'exp': now + timedelta(hours=getattr(settings, 'JWT_EXPIRATION_HOURS', 24)),
            'iat': now,
        }

        return jwt.encode(
            payload,
            settings.JWT_SECRET_KEY,
            algorithm=getattr(settings, 'JWT_ALGORITHM', 'HS256')
        )

    @classmethod
    def validate_jwt(cls, token: str) -> Optional[Dict[str, Any]]:
        """
        Validate JWT token and return payload.

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[getattr(settings, 'JWT_ALGORITHM', 'HS256')]
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

    @classmethod
    def get_user_from_jwt(cls, token: str) -> Optional[User]:
        payload = cls.validate_jwt(token)
        if not payload or not payload.get('user_id'):
            return None
        return AuthorizationService.get_active_user(payload['user_id'])

    @classmethod
    def login(cls, email: str, password: str, origin: Optional[dict] = None) -> Optional[Dict[str, Any]]:
        """
        Authenticate a user and return a JWT token.

        Both outcomes are audited; a failure is attributed to the matching
        account when the email exists.

        Returns:
            Dict with user and token, or None if authentication failed
        """
        origin = origin or {}
        user = User.objects.by_email(email) if email else None

        if user is None or not user.is_active or not user.check_password(password):
            reason = 'unknown_email' if user is None else (
                'inactive' if not user.is_active else 'invalid_password'
            )
            SecurityLogger.log_failed_login(
                email,
                ip_address=origin.get('ip_address'),
                user_agent=origin.get('user_agent'),
                reason=reason,
            )
            AuditRecorder.record(
                AuditAction.LOGIN_FAILED,
                target_user=user,
                company=user.company_id if user else None,
                resource='auth.login',
                details={'reason': reason},
                origin=origin,
            )
            return None

        user.update_last_login()
        AuditRecorder.record(
            AuditAction.LOGIN_SUCCESS,
            actor=user,
            target_user=user,
            company=user.company_id,
            resource='auth.login',
            origin=origin,
        )

        return {
            'user': user,
            'token': cls.generate_jwt(user),
        }
