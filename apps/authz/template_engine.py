"""
Permission templates.

Applying a template expands it into grant and enable changes and commits
them through BulkMutationCoordinator exactly like a manual bulk edit, so
every rule of AccessValidator still applies.
"""
import logging
from typing import Iterable, List, Optional

from django.db import transaction
from django.utils.text import slugify

from apps.authz.audit import AuditRecorder
from apps.authz.changes import Change, CommitStatus, PendingChange, PerUserCommitResult
from apps.authz.coordinator import BulkMutationCoordinator
from apps.authz.exceptions import (
    CrossTenant, InsufficientAuthority, InvalidChange, TemplateNotFound, Unauthorized, denial_for,
)
from apps.authz.models import AuditAction, PermissionTemplate, User
from apps.authz.resolver import PermissionResolver
from apps.authz.roles import Role, authority, is_staff_role, is_super_admin
from apps.authz.validator import AccessValidator

logger = logging.getLogger(__name__)


def template_snapshot(template: PermissionTemplate) -> dict:
    return {
        'name': template.name,
        'display_name': template.display_name,
        'description': template.description,
        'target_role': template.target_role,
        'permission_keys': list(template.permission_keys),
        'module_ids': list(template.module_ids),
    }


class TemplateEngine:
    """
    Template lookup, expansion, application and custom template management.
    """

    @staticmethod
    def _require_staff(actor: User):
        if not actor.is_active or not is_staff_role(actor.role):
            raise Unauthorized()

    @classmethod
    def list_templates(cls, actor: User):
        cls._require_staff(actor)
        return PermissionTemplate.objects.visible_to(actor)

    @classmethod
    def get_template(cls, actor: User, template_id) -> PermissionTemplate:
        """
        Look up a template the actor may see. Another company's custom
        template is reported exactly like a missing one.
        """
        cls._require_staff(actor)
        template = PermissionTemplate.objects.visible_to(actor).filter(pk=template_id).first()
        if template is None:
            raise TemplateNotFound()
        return template

    @classmethod
    def expand(cls, template: PermissionTemplate, target: User) -> List[PendingChange]:
        """Grant and enable changes equivalent to ``template``, baselined on current state."""
        source = f'template:{template.name}'
        changes = [
            PendingChange(
                target_id=str(target.id),
                change=Change.grant_permission(key),
                baseline=PermissionResolver.current_value(target, 'permission', key, fresh=True),
                source=source,
            )
            for key in template.permission_keys
        ]
        changes.extend(
            PendingChange(
                target_id=str(target.id),
                change=Change.enable_module(module_id),
                baseline=PermissionResolver.current_value(target, 'module', module_id, fresh=True),
                source=source,
            )
            for module_id in template.module_ids
        )
        return changes

    @classmethod
    def apply(cls, template_id, target: User, actor: User, origin: Optional[dict] = None,
              cancel_event=None) -> PerUserCommitResult:
        """
        Apply a template to one user.

        Re-applying a template produces the same effective state; the second
        run's changes are all committed as audited no-ops.
        """
        template = cls.get_template(actor, template_id)
        changes = cls.expand(template, target)

        logger.info(
            f"Applying template {template.name}",
            extra={
                'template_id': str(template.id),
                'actor_id': str(actor.id),
                'target_id': str(target.id),
                'change_count': len(changes),
            }
        )

        if not changes:
            return PerUserCommitResult(target_id=str(target.id), status=CommitStatus.COMMITTED)

        results = BulkMutationCoordinator.commit(actor, changes, cancel_event=cancel_event, origin=origin)
        return results[0]

    @classmethod
    def _check_contents(cls, actor: User, permission_keys, module_ids, target_role):
        if target_role not in Role.values:
            raise InvalidChange('Unknown target role.')
        if authority(target_role) > authority(actor.role):
            raise InsufficientAuthority()
        code = AccessValidator.check_template_contents(actor, permission_keys, module_ids)
        if code is not None:
            raise denial_for(code)

    @classmethod
    def _check_can_modify(cls, actor: User, template: PermissionTemplate):
        if template.is_system:
            raise InsufficientAuthority('System templates cannot be modified.')
        if not is_super_admin(actor.role) and template.created_by_id != actor.id:
            raise InsufficientAuthority('Only the template author or a super-admin can change this template.')

    @staticmethod
    def _name_taken(company_id, name, exclude_id=None) -> bool:
        qs = PermissionTemplate.objects.filter(company_id=company_id, name=name)
        if exclude_id is not None:
            qs = qs.exclude(pk=exclude_id)
        return qs.exists()

    @classmethod
    def create_template(cls, actor: User, display_name: str, permission_keys: Iterable[str] = (),
                        module_ids: Iterable[str] = (), name: str = '', description: str = '',
                        target_role: str = Role.USER, company_id=None,
                        origin: Optional[dict] = None) -> PermissionTemplate:
        """
        Create a custom template. Admins create templates for their own
        company; super-admins for any company.
        """
        cls._require_staff(actor)
        permission_keys = list(dict.fromkeys(permission_keys))
        module_ids = list(dict.fromkeys(module_ids))

        if is_super_admin(actor.role):
            company_id = company_id or actor.company_id
        elif company_id and str(company_id) != str(actor.company_id):
            raise CrossTenant()
        else:
            company_id = actor.company_id
        if company_id is None:
            raise InvalidChange('Custom templates belong to a company.')

        cls._check_contents(actor, permission_keys, module_ids, target_role)

        name = slugify(name or display_name).replace('-', '_')
        if not name:
            raise InvalidChange('Template name is required.')
        if cls._name_taken(company_id, name):
            raise InvalidChange('A template with this name already exists.')

        with transaction.atomic():
            template = PermissionTemplate.objects.create(
                name=name,
                display_name=display_name,
                description=description,
                target_role=target_role,
                permission_keys=permission_keys,
                module_ids=module_ids,
                is_system=False,
                company_id=company_id,
                created_by=actor,
            )

        AuditRecorder.record(
            AuditAction.TEMPLATE_CREATED,
            actor=actor,
            company=company_id,
            resource=template.name,
            after=template_snapshot(template),
            details={'template_id': str(template.id)},
            origin=origin,
        )
        logger.info("Template created", extra={'template_id': str(template.id), 'company_id': str(company_id)})
        return template

    @classmethod
    def update_template(cls, actor: User, template_id, origin: Optional[dict] = None,
                        **fields) -> PermissionTemplate:
        """Update a custom template's display name, description, role or contents."""
        template = cls.get_template(actor, template_id)
        cls._check_can_modify(actor, template)

        before = template_snapshot(template)
        permission_keys = list(dict.fromkeys(fields.get('permission_keys', template.permission_keys)))
        module_ids = list(dict.fromkeys(fields.get('module_ids', template.module_ids)))
        target_role = fields.get('target_role', template.target_role)
        cls._check_contents(actor, permission_keys, module_ids, target_role)

        template.permission_keys = permission_keys
        template.module_ids = module_ids
        template.target_role = target_role
        if 'display_name' in fields:
            template.display_name = fields['display_name']
        if 'description' in fields:
            template.description = fields['description']
        template.save()

        AuditRecorder.record(
            AuditAction.TEMPLATE_UPDATED,
            actor=actor,
            company=template.company_id,
            resource=template.name,
            before=before,
            after=template_snapshot(template),
            details={'template_id': str(template.id)},
            origin=origin,
        )
        return template

    @classmethod
    def delete_template(cls, actor: User, template_id, origin: Optional[dict] = None):
        """
        Soft delete a custom template. Access already granted through it is
        left in place.
        """
        template = cls.get_template(actor, template_id)
        cls._check_can_modify(actor, template)

        before = template_snapshot(template)
        template.delete()

        AuditRecorder.record(
            AuditAction.TEMPLATE_DELETED,
            actor=actor,
            company=template.company_id,
            resource=template.name,
            before=before,
            details={'template_id': str(template.id)},
            origin=origin,
        )
        logger.info("Template deleted", extra={'template_id': str(template.id)})
