"""
Management command to seed the system permission templates.

System templates are immutable through the API; this command is the only
writer. It is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.authz.catalog import PermissionCatalog
from apps.authz.models import PermissionTemplate
from apps.authz.roles import Role


class Command(BaseCommand):
    help = 'Seed system permission templates (idempotent)'

    SYSTEM_TEMPLATES = [
        {
            'name': 'basic_user',
            'display_name': 'Basic User',
            'description': 'Submit and track own expenses',
            'target_role': Role.USER,
            'permission_keys': [
                'dashboard.view', 'expenses.view', 'expenses.create', 'notifications.view',
            ],
            'module_ids': ['expense_management'],
        },
        {
            'name': 'expense_reviewer',
            'display_name': 'Expense Reviewer',
            'description': 'Review and approve expenses with analytics access',
            'target_role': Role.USER,
            'permission_keys': [
                'dashboard.view', 'expenses.view', 'expenses.create', 'expenses.review',
                'expenses.approve', 'analytics.view',
            ],
            'module_ids': ['expense_management', 'advanced_analytics'],
        },
        {
            'name': 'department_manager',
            'display_name': 'Department Manager',
            'description': 'Manage department expenses, vendors and customers',
            'target_role': Role.ADMIN,
            'permission_keys': [
                'dashboard.view', 'analytics.view',
                'expenses.view', 'expenses.create', 'expenses.edit', 'expenses.approve', 'expenses.review',
                'vendors.view', 'vendors.create', 'vendors.edit',
                'customers.view', 'customers.create', 'customers.edit',
                'users.view', 'notifications.view', 'notifications.manage',
            ],
            'module_ids': ['expense_management', 'advanced_analytics'],
        },
        {
            'name': 'controller',
            'display_name': 'Controller',
            'description': 'Full financial control including GL accounts and company settings',
            'target_role': Role.ADMIN,
            'permission_keys': [
                'dashboard.view', 'analytics.view', 'analytics.export',
                'expenses.view', 'expenses.create', 'expenses.edit', 'expenses.review',
                'expenses.approve', 'expenses.delete',
                'vendors.view', 'vendors.create', 'vendors.edit', 'vendors.delete',
                'customers.view', 'customers.create', 'customers.edit', 'customers.delete',
                'gl_accounts.view', 'gl_accounts.create', 'gl_accounts.edit', 'gl_accounts.delete',
                'expense_categories.view', 'expense_categories.create', 'expense_categories.edit',
                'expense_categories.delete',
                'users.view', 'users.create', 'users.edit',
                'company.settings.view', 'company.settings.edit',
            ],
            'module_ids': ['expense_management', 'advanced_analytics'],
        },
    ]

    def handle(self, *args, **options):
        """Create or update all system templates."""
        for data in self.SYSTEM_TEMPLATES:
            unknown = (
                PermissionCatalog.unknown_permissions(data['permission_keys'])
                + PermissionCatalog.unknown_modules(data['module_ids'])
            )
            if unknown:
                raise CommandError(f"Template {data['name']} references unknown entries: {', '.join(unknown)}")

        created_count = 0
        updated_count = 0

        self.stdout.write('Seeding system permission templates...\n')

        with transaction.atomic():
            for data in self.SYSTEM_TEMPLATES:
                defaults = {key: value for key, value in data.items() if key != 'name'}
                template = PermissionTemplate.objects.filter(
                    name=data['name'], is_system=True, company__isnull=True
                ).first()

                if template is None:
                    PermissionTemplate.objects.create(name=data['name'], is_system=True, **defaults)
                    created_count += 1
                    self.stdout.write(self.style.SUCCESS(f"✓ Created: {data['name']}"))
                    continue

                changed = [key for key, value in defaults.items() if getattr(template, key) != value]
                if changed:
                    for key in changed:
                        setattr(template, key, defaults[key])
                    template.save()
                    updated_count += 1
                    self.stdout.write(self.style.WARNING(f"↻ Updated: {data['name']}"))
                else:
                    self.stdout.write(self.style.HTTP_INFO(f"  Exists: {data['name']}"))

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, {updated_count} updated, '
                f'{len(self.SYSTEM_TEMPLATES) - created_count - updated_count} unchanged'
            )
        )
