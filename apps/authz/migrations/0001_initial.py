# Initial authorization schema

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


ROLE_CHOICES = [('user', 'User'), ('admin', 'Admin'), ('super-admin', 'Super Admin')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('companies', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('email', models.EmailField(help_text='User email address (unique globally)', max_length=254, unique=True)),
                ('password_hash', models.CharField(blank=True, help_text='Hashed password', max_length=255)),
                ('first_name', models.CharField(blank=True, max_length=100)),
                ('last_name', models.CharField(blank=True, max_length=100)),
                ('role', models.CharField(choices=ROLE_CHOICES, db_index=True, default='user', help_text='Position in the role hierarchy', max_length=20)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Whether the account is active')),
                ('last_login_at', models.DateTimeField(blank=True, null=True)),
                ('version', models.PositiveIntegerField(default=0, help_text='Incremented on every committed access change')),
                ('company', models.ForeignKey(blank=True, help_text='Owning company (null only for super-admins)', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='users', to='companies.company')),
            ],
            options={
                'db_table': 'authz_users',
                'ordering': ['email'],
                'indexes': [
                    models.Index(fields=['company', 'role'], name='authz_user_company_role_idx'),
                    models.Index(fields=['company', 'is_active'], name='authz_user_company_active_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UserPermissionOverride',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('permission_key', models.CharField(db_index=True, max_length=100)),
                ('is_granted', models.BooleanField()),
                ('granted_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('company', models.ForeignKey(blank=True, help_text='Company the override was written under', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='permission_overrides', to='companies.company')),
                ('granted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='permission_overrides_made', to='authz.user')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='permission_overrides', to='authz.user')),
            ],
            options={
                'db_table': 'authz_user_permission_overrides',
                'ordering': ['permission_key'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('deleted_at__isnull', True)), fields=('user', 'permission_key'), name='uniq_user_permission_override'),
                ],
            },
        ),
        migrations.CreateModel(
            name='CompanyModuleGrant',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('module_id', models.CharField(db_index=True, max_length=64)),
                ('is_enabled', models.BooleanField(default=True)),
                ('changed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='company_module_changes', to='authz.user')),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='module_grants', to='companies.company')),
            ],
            options={
                'db_table': 'authz_company_module_grants',
                'ordering': ['module_id'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('deleted_at__isnull', True)), fields=('company', 'module_id'), name='uniq_company_module_grant'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UserModuleGrant',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('module_id', models.CharField(db_index=True, max_length=64)),
                ('is_enabled', models.BooleanField(default=True)),
                ('company', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='user_module_grants', to='companies.company')),
                ('granted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='module_grants_made', to='authz.user')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='module_grants', to='authz.user')),
            ],
            options={
                'db_table': 'authz_user_module_grants',
                'ordering': ['module_id'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('deleted_at__isnull', True)), fields=('user', 'module_id'), name='uniq_user_module_grant'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PermissionTemplate',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the record was created')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the record was last updated')),
                ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='Timestamp when the record was soft deleted', null=True)),
                ('name', models.SlugField(help_text='Stable template identifier', max_length=100)),
                ('display_name', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True)),
                ('target_role', models.CharField(choices=ROLE_CHOICES, default='user', max_length=20)),
                ('permission_keys', models.JSONField(blank=True, default=list)),
                ('module_ids', models.JSONField(blank=True, default=list)),
                ('is_system', models.BooleanField(db_index=True, default=False)),
                ('company', models.ForeignKey(blank=True, help_text='Owning company for custom templates', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='permission_templates', to='companies.company')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='permission_templates_created', to='authz.user')),
            ],
            options={
                'db_table': 'authz_permission_templates',
                'ordering': ['-is_system', 'display_name'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('deleted_at__isnull', True)), fields=('company', 'name'), name='uniq_live_template_name'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AuditEvent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier', primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='Timestamp when the row was written')),
                ('occurred_at', models.DateTimeField(db_index=True, help_text='UTC time the decision was made')),
                ('action', models.CharField(choices=[
                    ('permission_granted', 'Permission granted'),
                    ('permission_revoked', 'Permission revoked'),
                    ('permission_checked', 'Permission checked'),
                    ('module_enabled', 'Module enabled'),
                    ('module_disabled', 'Module disabled'),
                    ('company_module_enabled', 'Company module enabled'),
                    ('company_module_disabled', 'Company module disabled'),
                    ('role_changed', 'Role changed'),
                    ('company_changed', 'Company changed'),
                    ('access_denied', 'Access denied'),
                    ('login_success', 'Login succeeded'),
                    ('login_failed', 'Login failed'),
                    ('template_created', 'Template created'),
                    ('template_updated', 'Template updated'),
                    ('template_deleted', 'Template deleted'),
                ], db_index=True, max_length=40)),
                ('resource', models.CharField(blank=True, help_text='Permission key, module id, template or user field affected', max_length=150)),
                ('before', models.JSONField(blank=True, null=True)),
                ('after', models.JSONField(blank=True, null=True)),
                ('details', models.JSONField(blank=True, default=dict)),
                ('risk_score', models.PositiveSmallIntegerField(db_index=True, default=0)),
                ('is_noop', models.BooleanField(default=False)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.TextField(blank=True)),
                ('request_id', models.CharField(blank=True, db_index=True, max_length=64)),
                ('actor', models.ForeignKey(blank=True, help_text='Acting user (null for system or anonymous events)', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='audit_events_performed', to='authz.user')),
                ('company', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='audit_events', to='companies.company')),
                ('target_user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='audit_events_received', to='authz.user')),
            ],
            options={
                'db_table': 'authz_audit_events',
                'ordering': ['-occurred_at'],
                'indexes': [
                    models.Index(fields=['company', 'occurred_at'], name='authz_audit_company_time_idx'),
                    models.Index(fields=['action', 'occurred_at'], name='authz_audit_action_time_idx'),
                    models.Index(fields=['target_user', 'action', 'occurred_at'], name='authz_audit_target_idx'),
                ],
            },
        ),
    ]
