"""
Authorization signals.

Seeds company module gates when a company is created and provisions default
module grants when a user is created.
"""
import logging

from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_save, sender='companies.Company')
def seed_required_modules_on_company_creation(sender, instance, created, **kwargs):
    """
    Enable the company gate of every core-required module for a new company.
    """
    if not created:
        return

    from apps.authz.catalog import PermissionCatalog
    from apps.authz.models import CompanyModuleGrant

    with transaction.atomic():
        for module_id in PermissionCatalog.required_module_ids():
            CompanyModuleGrant.objects.get_or_create(
                company=instance,
                module_id=module_id,
                defaults={'is_enabled': True},
            )

    logger.info(
        "Seeded required modules for company",
        extra={'company_id': str(instance.id), 'module_count': len(PermissionCatalog.required_module_ids())}
    )


@receiver(post_save, sender='authz.User')
def provision_default_modules_on_user_creation(sender, instance, created, **kwargs):
    """
    Create per-user module grants for the role's default modules.

    Super-admins resolve every module through the bypass and get no rows.
    """
    if not created or instance.company_id is None:
        return

    from apps.authz.defaults import RoleDefaults
    from apps.authz.models import UserModuleGrant
    from apps.authz.roles import is_super_admin

    if is_super_admin(instance.role):
        return

    with transaction.atomic():
        for module_id in sorted(RoleDefaults.modules_for(instance.role)):
            UserModuleGrant.objects.get_or_create(
                user=instance,
                module_id=module_id,
                defaults={'company_id': instance.company_id, 'is_enabled': True},
            )
