"""
Tests for the authorization REST API.
"""
import uuid
from io import StringIO

import pytest
from django.core.management import call_command

from apps.authz.models import AuditAction, AuditEvent, PermissionTemplate
from apps.authz.resolver import PermissionResolver


@pytest.mark.django_db
class TestCatalogAPI:

    def test_requires_authentication(self, api_client):
        response = api_client.get('/v1/authz/catalog')
        assert response.status_code in (401, 403)

    def test_lists_modules_and_permissions(self, client_for, plain_user):
        response = client_for(plain_user).get('/v1/authz/catalog')

        assert response.status_code == 200
        module_ids = {m['id'] for m in response.data['modules']}
        assert 'expense_management' in module_ids
        assert 'system_administration' in module_ids
        dashboard = next(m for m in response.data['modules'] if m['id'] == 'dashboard')
        assert dashboard['is_core_required'] is True


@pytest.mark.django_db
class TestResolutionAPI:

    def test_resolve_permission(self, client_for, admin_user, plain_user):
        response = client_for(admin_user).get(f'/v1/authz/users/{plain_user.id}/permissions/expenses.create')

        assert response.status_code == 200
        assert response.data == {'user_id': str(plain_user.id), 'permission': 'expenses.create', 'allowed': True}
        assert AuditEvent.objects.filter(action=AuditAction.PERMISSION_CHECKED).count() == 1

    def test_resolve_module(self, client_for, admin_user, plain_user):
        response = client_for(admin_user).get(f'/v1/authz/users/{plain_user.id}/modules/dashboard')

        assert response.status_code == 200
        assert response.data['enabled'] is True

    def test_other_company_is_not_found(self, client_for, admin_user, other_user):
        response = client_for(admin_user).get(f'/v1/authz/users/{other_user.id}/permissions/expenses.create')

        assert response.status_code == 404
        assert response.data['code'] == 'not_found'

    def test_effective_summary_for_self(self, client_for, plain_user):
        response = client_for(plain_user).get(f'/v1/authz/users/{plain_user.id}/effective')

        assert response.status_code == 200
        assert response.data['permissions']['expenses.create'] is True
        assert response.data['version'] == 0

    def test_inactive_account_is_rejected(self, client_for, plain_user):
        plain_user.is_active = False
        plain_user.save()

        response = client_for(plain_user).get(f'/v1/authz/users/{plain_user.id}/effective')
        assert response.status_code == 403


@pytest.mark.django_db
class TestChangesAPI:

    def test_validate_allowed_change(self, client_for, admin_user, plain_user):
        response = client_for(admin_user).post('/v1/authz/changes/validate', {
            'target_id': str(plain_user.id),
            'change': {'type': 'grant_permission', 'key': 'users.delete'},
        }, format='json')

        assert response.status_code == 200
        assert response.data['allowed'] is True
        assert 'users.delete grants a sensitive permission' in response.data['warnings']

    def test_validate_denied_change(self, client_for, admin_user, plain_user):
        response = client_for(admin_user).post('/v1/authz/changes/validate', {
            'target_id': str(plain_user.id),
            'change': {'type': 'change_role', 'key': 'role', 'value': 'super-admin'},
        }, format='json')

        assert response.status_code == 200
        assert response.data['allowed'] is False
        assert response.data['code'] == 'insufficient_authority'

    def test_validate_rejects_malformed_input(self, client_for, admin_user, plain_user):
        response = client_for(admin_user).post('/v1/authz/changes/validate', {
            'target_id': str(plain_user.id),
            'change': {'type': 'grant_permission'},
        }, format='json')

        assert response.status_code == 400

    def test_commit_all_groups(self, client_for, admin_user, plain_user, second_user):
        response = client_for(admin_user).post('/v1/authz/changes/commit', {
            'changes': [
                {'target_id': str(plain_user.id),
                 'change': {'type': 'grant_permission', 'key': 'expenses.approve'},
                 'baseline': False},
                {'target_id': str(second_user.id),
                 'change': {'type': 'revoke_permission', 'key': 'expenses.edit'}},
            ],
        }, format='json')

        assert response.status_code == 200
        assert [r['status'] for r in response.data['results']] == ['committed', 'committed']
        assert PermissionResolver.resolve(second_user, 'expenses.edit') is False

    def test_commit_partial_failure_is_multi_status(self, client_for, admin_user, plain_user, other_user):
        response = client_for(admin_user).post('/v1/authz/changes/commit', {
            'changes': [
                {'target_id': str(plain_user.id),
                 'change': {'type': 'grant_permission', 'key': 'expenses.approve'},
                 'baseline': False},
                {'target_id': str(other_user.id),
                 'change': {'type': 'grant_permission', 'key': 'expenses.approve'},
                 'baseline': False},
            ],
        }, format='json')

        assert response.status_code == 207
        committed, failed = response.data['results']
        assert committed['status'] == 'committed'
        assert failed['status'] == 'failed'
        assert failed['rejected'][0]['code'] == 'cross_tenant'

    def test_commit_stale_baseline(self, client_for, admin_user, plain_user):
        body = {
            'changes': [
                {'target_id': str(plain_user.id),
                 'change': {'type': 'grant_permission', 'key': 'expenses.approve'},
                 'baseline': False},
            ],
        }
        client = client_for(admin_user)
        client.post('/v1/authz/changes/commit', body, format='json')
        response = client.post('/v1/authz/changes/commit', body, format='json')

        assert response.status_code == 207
        assert response.data['results'][0]['error'] == 'concurrent_modification'

    def test_commit_needs_changes(self, client_for, admin_user):
        response = client_for(admin_user).post('/v1/authz/changes/commit', {'changes': []}, format='json')
        assert response.status_code == 400


@pytest.mark.django_db
class TestTemplatesAPI:

    @pytest.fixture(autouse=True)
    def seed(self, db):
        call_command('seed_permission_templates', stdout=StringIO())

    def test_plain_user_cannot_list(self, client_for, plain_user):
        response = client_for(plain_user).get('/v1/authz/templates')
        assert response.status_code == 403
        assert response.data['code'] == 'unauthorized'

    def test_list_is_paginated(self, client_for, admin_user):
        response = client_for(admin_user).get('/v1/authz/templates')

        assert response.status_code == 200
        assert response.data['count'] == 4
        assert {t['name'] for t in response.data['results']} >= {'basic_user', 'controller'}

    def test_create_update_delete(self, client_for, admin_user):
        client = client_for(admin_user)

        created = client.post('/v1/authz/templates', {
            'display_name': 'Approver',
            'permission_keys': ['expenses.approve'],
        }, format='json')
        assert created.status_code == 201
        template_id = created.data['id']
        assert created.data['name'] == 'approver'

        updated = client.patch(f'/v1/authz/templates/{template_id}', {
            'description': 'Approves expenses',
        }, format='json')
        assert updated.status_code == 200
        assert updated.data['description'] == 'Approves expenses'
        assert updated.data['permission_keys'] == ['expenses.approve']

        deleted = client.delete(f'/v1/authz/templates/{template_id}')
        assert deleted.status_code == 204
        assert not PermissionTemplate.objects.filter(pk=template_id).exists()

    def test_create_with_super_tier_is_forbidden(self, client_for, admin_user):
        response = client_for(admin_user).post('/v1/authz/templates', {
            'display_name': 'Billing',
            'permission_keys': ['billing.super_override'],
        }, format='json')

        assert response.status_code == 403
        assert response.data['code'] == 'insufficient_authority'

    def test_apply_template(self, client_for, admin_user, plain_user):
        template = PermissionTemplate.objects.get(name='basic_user', is_system=True)
        PermissionResolver.invalidate(plain_user.id)

        response = client_for(admin_user).post(
            f'/v1/authz/templates/{template.id}/apply', {'target_id': str(plain_user.id)}, format='json',
        )

        # expense_management is not enabled for the company yet
        assert response.status_code == 422
        assert response.data['status'] == 'failed'

    def test_unknown_template_is_not_found(self, client_for, admin_user, plain_user):
        response = client_for(admin_user).post(
            f'/v1/authz/templates/{uuid.uuid4()}/apply', {'target_id': str(plain_user.id)}, format='json',
        )
        assert response.status_code == 404


@pytest.mark.django_db
class TestCompanyModulesAPI:

    def test_super_admin_switches_gate(self, client_for, super_admin, company, plain_user):
        response = client_for(super_admin).post(
            f'/v1/authz/companies/{company.id}/modules/expense_management', {'is_enabled': True}, format='json',
        )

        assert response.status_code == 200
        assert response.data['is_enabled'] is True
        assert PermissionResolver.resolve_module(plain_user, 'expense_management') is True

    def test_admin_is_forbidden(self, client_for, admin_user, company):
        response = client_for(admin_user).post(
            f'/v1/authz/companies/{company.id}/modules/expense_management', {'is_enabled': True}, format='json',
        )
        assert response.status_code == 403
        assert response.data['code'] == 'insufficient_authority'


@pytest.mark.django_db
class TestAuditAPI:

    def test_admin_lists_company_events(self, client_for, admin_user, plain_user, other_admin, other_user):
        client_for(admin_user).get(f'/v1/authz/users/{plain_user.id}/permissions/expenses.create')
        client_for(other_admin).get(f'/v1/authz/users/{other_user.id}/permissions/expenses.create')

        response = client_for(admin_user).get('/v1/authz/audit-events')

        assert response.status_code == 200
        assert response.data['count'] == 1
        event = response.data['results'][0]
        assert event['action'] == 'permission_checked'
        assert event['target_email'] == plain_user.email
        assert event['risk_level'] in ('low', 'medium', 'high')

    def test_invalid_filter(self, client_for, admin_user):
        response = client_for(admin_user).get('/v1/authz/audit-events', {'risk_level': 'extreme'})
        assert response.status_code == 400

    def test_plain_user_is_forbidden(self, client_for, plain_user):
        response = client_for(plain_user).get('/v1/authz/audit-events')
        assert response.status_code == 403
