"""
Tests for override and grant row managers.
"""
import pytest

from apps.authz.models import CompanyModuleGrant, UserModuleGrant, UserPermissionOverride


@pytest.mark.django_db
class TestSoftDeletedRows:

    def test_override_can_be_set_again_after_soft_delete(self, admin_user, plain_user):
        UserPermissionOverride.objects.set_override(plain_user, 'expenses.approve', True).delete()

        override = UserPermissionOverride.objects.set_override(
            plain_user, 'expenses.approve', False, granted_by=admin_user,
        )

        assert override.is_granted is False
        assert UserPermissionOverride.objects.filter(user=plain_user).count() == 1
        assert UserPermissionOverride.objects_with_deleted.filter(user=plain_user).count() == 2

    def test_user_module_grant_can_be_set_again_after_soft_delete(self, plain_user):
        UserModuleGrant.objects.set_enabled(plain_user, 'advanced_analytics', True).delete()

        grant = UserModuleGrant.objects.set_enabled(plain_user, 'advanced_analytics', False)

        assert grant.is_enabled is False
        assert UserModuleGrant.objects.filter(user=plain_user, module_id='advanced_analytics').count() == 1

    def test_company_gate_can_be_set_again_after_soft_delete(self, company):
        CompanyModuleGrant.objects.set_enabled(company, 'ingrid_ai', True).delete()

        grant = CompanyModuleGrant.objects.set_enabled(company, 'ingrid_ai', True)

        assert grant.is_enabled is True
        assert 'ingrid_ai' in CompanyModuleGrant.objects.enabled_module_ids(company.id)

    def test_set_override_updates_live_row(self, plain_user):
        first = UserPermissionOverride.objects.set_override(plain_user, 'expenses.approve', True)
        second = UserPermissionOverride.objects.set_override(plain_user, 'expenses.approve', False)

        assert first.pk == second.pk
        assert UserPermissionOverride.objects_with_deleted.filter(user=plain_user).count() == 1
