"""
Tests for effective permission and module resolution.
"""
import pytest
from django.db.models import F

from apps.authz.catalog import PermissionCatalog
from apps.authz.models import User, UserModuleGrant, UserPermissionOverride
from apps.authz.resolver import AccessState, PermissionResolver, resolve_module_value
from apps.authz.roles import Role


@pytest.mark.django_db
class TestPermissionResolution:
    """Override rows win over role defaults."""

    def test_role_default_applies_without_override(self, plain_user):
        assert PermissionResolver.resolve(plain_user, 'expenses.create') is True
        assert PermissionResolver.resolve(plain_user, 'expenses.approve') is False

    def test_grant_override_beats_role_default(self, plain_user):
        UserPermissionOverride.objects.set_override(plain_user, 'expenses.approve', True)
        assert PermissionResolver.resolve(plain_user, 'expenses.approve') is True

    def test_revoke_override_beats_role_default(self, plain_user):
        UserPermissionOverride.objects.set_override(plain_user, 'expenses.create', False)
        assert PermissionResolver.resolve(plain_user, 'expenses.create') is False

    def test_overrides_from_another_company_are_ignored(self, plain_user, other_company):
        UserPermissionOverride.objects.create(
            user=plain_user,
            company=other_company,
            permission_key='expenses.approve',
            is_granted=True,
        )
        assert PermissionResolver.resolve(plain_user, 'expenses.approve') is False

    def test_unknown_key_resolves_false(self, admin_user):
        assert PermissionResolver.resolve(admin_user, 'no.such.key') is False

    def test_super_admin_bypass_ignores_overrides(self, super_admin):
        UserPermissionOverride.objects.create(
            user=super_admin, permission_key='expenses.approve', is_granted=False,
        )
        for key in PermissionCatalog.permission_keys():
            assert PermissionResolver.resolve(super_admin, key) is True
        assert PermissionResolver.resolve(super_admin, 'no.such.key') is True


@pytest.mark.django_db
class TestModuleResolution:
    """Company gate, then required floor, then per-user grant."""

    def test_required_module_on_while_gate_on(self, plain_user):
        for module_id in PermissionCatalog.required_module_ids():
            assert PermissionResolver.resolve_module(plain_user, module_id) is True

    def test_required_module_ignores_user_disable_row(self, plain_user):
        UserModuleGrant.objects.set_enabled(plain_user, 'dashboard', False)
        assert PermissionResolver.resolve_module(plain_user, 'dashboard') is True

    def test_missing_gate_hides_module_despite_user_grant(self, plain_user):
        # expense_management is provisioned for users but its gate is not seeded
        assert UserModuleGrant.objects.for_user(plain_user).filter(module_id='expense_management').exists()
        assert PermissionResolver.resolve_module(plain_user, 'expense_management') is False

    def test_add_on_needs_gate_and_user_grant(self, plain_user, company, enable_gate):
        enable_gate(company, 'expense_management')
        enable_gate(company, 'advanced_analytics')
        assert PermissionResolver.resolve_module(plain_user, 'expense_management') is True
        assert PermissionResolver.resolve_module(plain_user, 'advanced_analytics') is False

    def test_disabled_gate_dominates_user_grant(self, plain_user, company, enable_gate):
        enable_gate(company, 'expense_management')
        enable_gate(company, 'expense_management', False)
        assert PermissionResolver.resolve_module(plain_user, 'expense_management') is False

    def test_disabled_gate_hides_required_module(self, plain_user, company, enable_gate):
        enable_gate(company, 'dashboard', False)
        assert PermissionResolver.resolve_module(plain_user, 'dashboard') is False

    def test_super_admin_sees_every_module(self, super_admin):
        for module_id in PermissionCatalog.module_ids():
            assert PermissionResolver.resolve_module(super_admin, module_id) is True

    def test_unknown_module_resolves_false(self, plain_user):
        assert PermissionResolver.resolve_module(plain_user, 'no_such_module') is False

    def test_state_function_matches_precedence(self):
        state = AccessState(
            role=Role.USER,
            company_id='c1',
            company_modules={'dashboard', 'expense_management'},
            user_modules={'expense_management': True, 'ingrid_ai': True, 'dashboard': False},
        )
        assert resolve_module_value(state, 'dashboard') is True
        assert resolve_module_value(state, 'expense_management') is True
        assert resolve_module_value(state, 'ingrid_ai') is False


@pytest.mark.django_db
class TestResolverCache:
    """The effective view is cached per user and rebuilt on invalidation."""

    def test_view_is_cached_until_invalidated(self, plain_user):
        assert PermissionResolver.resolve(plain_user, 'expenses.approve') is False

        UserPermissionOverride.objects.set_override(plain_user, 'expenses.approve', True)
        assert PermissionResolver.resolve(plain_user, 'expenses.approve') is False

        PermissionResolver.invalidate(plain_user.id)
        assert PermissionResolver.resolve(plain_user, 'expenses.approve') is True

    def test_version_change_rebuilds_view(self, plain_user):
        assert PermissionResolver.resolve(plain_user, 'expenses.approve') is False

        UserPermissionOverride.objects.set_override(plain_user, 'expenses.approve', True)
        User.objects.filter(pk=plain_user.pk).update(version=F('version') + 1)
        plain_user.refresh_from_db()

        assert PermissionResolver.resolve(plain_user, 'expenses.approve') is True

    def test_fresh_read_bypasses_cache(self, plain_user):
        PermissionResolver.effective_view(plain_user)
        UserPermissionOverride.objects.set_override(plain_user, 'expenses.approve', True)

        assert PermissionResolver.current_value(plain_user, 'permission', 'expenses.approve', fresh=True) is True
        assert PermissionResolver.current_value(plain_user, 'permission', 'expenses.approve') is False

    def test_invalidate_company_drops_every_member(self, plain_user, admin_user, company):
        PermissionResolver.effective_view(plain_user)
        PermissionResolver.effective_view(admin_user)

        UserPermissionOverride.objects.set_override(plain_user, 'expenses.approve', True)
        UserPermissionOverride.objects.set_override(admin_user, 'expenses.approve', False)
        PermissionResolver.invalidate_company(company.id)

        assert PermissionResolver.resolve(plain_user, 'expenses.approve') is True
        assert PermissionResolver.resolve(admin_user, 'expenses.approve') is False

    def test_current_value_for_role_and_company(self, plain_user, super_admin):
        assert PermissionResolver.current_value(plain_user, 'role', 'role') == 'user'
        assert PermissionResolver.current_value(plain_user, 'company', 'company') == str(plain_user.company_id)
        assert PermissionResolver.current_value(super_admin, 'company', 'company') is None
