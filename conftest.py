"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'authz-tests',
        }
    }
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = True
    django.setup()

    from config.celery import app
    app.conf.task_always_eager = True
    app.conf.task_eager_propagates = True


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database from the app migrations."""
    with django_db_blocker.unblock():
        call_command("migrate", verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Resolver views and rate limit counters never leak between tests."""
    from django.core.cache import cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def reset_audit_queue():
    from apps.authz.audit import AuditRecorder
    AuditRecorder._pending.clear()
    yield
    AuditRecorder._pending.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def client_for():
    """Return a factory for API clients authenticated as a given user."""
    from rest_framework.test import APIClient

    def _client(user):
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    return _client


@pytest.fixture
def company(db):
    """Create a test company; required module gates are seeded on creation."""
    from apps.companies.models import Company
    return Company.objects.create(name='Acme Corp', slug='acme-corp')


@pytest.fixture
def other_company(db):
    """Create another company for isolation tests."""
    from apps.companies.models import Company
    return Company.objects.create(name='Globex Inc', slug='globex')


@pytest.fixture
def enable_gate():
    """Return a helper that switches a company module gate on or off."""
    from apps.authz.models import CompanyModuleGrant
    from apps.authz.resolver import PermissionResolver

    def _enable(company, module_id, is_enabled=True):
        grant = CompanyModuleGrant.objects.set_enabled(company, module_id, is_enabled)
        PermissionResolver.invalidate_company(company.id)
        return grant

    return _enable


@pytest.fixture
def admin_user(db, company):
    from apps.authz.models import User
    from apps.authz.roles import Role
    return User.objects.create_user(
        email='admin@acme.test',
        password='SecurePass123!',
        first_name='Ada',
        last_name='Admin',
        role=Role.ADMIN,
        company=company,
    )


@pytest.fixture
def plain_user(db, company):
    from apps.authz.models import User
    from apps.authz.roles import Role
    return User.objects.create_user(
        email='user@acme.test',
        password='SecurePass123!',
        first_name='Uma',
        last_name='User',
        role=Role.USER,
        company=company,
    )


@pytest.fixture
def second_user(db, company):
    from apps.authz.models import User
    from apps.authz.roles import Role
    return User.objects.create_user(
        email='second@acme.test',
        password='SecurePass123!',
        role=Role.USER,
        company=company,
    )


@pytest.fixture
def other_admin(db, other_company):
    from apps.authz.models import User
    from apps.authz.roles import Role
    return User.objects.create_user(
        email='admin@globex.test',
        password='SecurePass123!',
        role=Role.ADMIN,
        company=other_company,
    )


@pytest.fixture
def other_user(db, other_company):
    from apps.authz.models import User
    from apps.authz.roles import Role
    return User.objects.create_user(
        email='user@globex.test',
        password='SecurePass123!',
        role=Role.USER,
        company=other_company,
    )


@pytest.fixture
def super_admin(db):
    from apps.authz.models import User
    return User.objects.create_super_admin(
        email='root@platform.test',
        password='SecurePass123!',
    )
