"""
Tests for company creation side effects.
"""
import pytest

from apps.authz.catalog import PermissionCatalog
from apps.authz.models import CompanyModuleGrant, User, UserModuleGrant
from apps.authz.roles import Role
from apps.companies.models import Company


@pytest.mark.django_db
class TestCompanySeeding:

    def test_new_company_gets_required_gates_only(self, company):
        enabled = CompanyModuleGrant.objects.enabled_module_ids(company.id)
        assert enabled == set(PermissionCatalog.required_module_ids())

    def test_saving_again_does_not_reseed(self, company, enable_gate):
        enable_gate(company, 'dashboard', False)
        company.name = 'Acme Corporation'
        company.save()

        assert 'dashboard' not in CompanyModuleGrant.objects.enabled_module_ids(company.id)

    def test_active_and_slug_lookup(self, company, other_company):
        other_company.status = Company.STATUS_SUSPENDED
        other_company.save()

        assert list(Company.objects.active()) == [company]
        assert Company.objects.by_slug('globex') == other_company


@pytest.mark.django_db
class TestUserProvisioning:

    def test_user_gets_role_default_modules(self, plain_user, admin_user):
        assert set(UserModuleGrant.objects.for_user(plain_user).values_list('module_id', flat=True)) == {
            'expense_management', 'ingrid_ai',
        }
        assert set(UserModuleGrant.objects.for_user(admin_user).values_list('module_id', flat=True)) == {
            'expense_management', 'ingrid_ai', 'process_automation', 'advanced_analytics', 'api_management',
        }

    def test_super_admin_gets_no_rows(self, super_admin):
        assert not UserModuleGrant.objects.filter(user=super_admin).exists()

    def test_user_without_company_is_rejected(self, db):
        from django.core.exceptions import ValidationError

        with pytest.raises(ValidationError):
            User.objects.create_user(email='lost@nowhere.test', password='SecurePass123!', role=Role.USER)
