"""
Authorization models.

Implements:
- User (role, company, active flag, optimistic-concurrency version)
- UserPermissionOverride (explicit per-user grant or revoke of a key)
- CompanyModuleGrant (company gate for a module)
- UserModuleGrant (per-user opt-in to a module)
- PermissionTemplate (system or custom bundle of keys and modules)
- AuditEvent (append-only decision log)
"""
import logging
from datetime import timedelta
from django.contrib.auth.hashers import make_password, check_password
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from apps.core.models import (
    AppendOnlyModel, AppendOnlyQuerySet, BaseModel, BaseModelManager, BaseModelQuerySet,
)
from apps.authz.roles import Role, is_super_admin

logger = logging.getLogger(__name__)


class UserManager(BaseModelManager):
    """Manager for User queries."""

    def active(self):
        return self.filter(is_active=True)

    def for_company(self, company):
        return self.filter(company=company)

    def by_email(self, email):
        return self.filter(email__iexact=email).first()

    def create_user(self, email, password=None, **extra_fields):
        """Create a user with a hashed password."""
        if not email:
            raise ValueError('Email address is required')

        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('role', Role.USER)

        user = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            user.set_password(password)
        user.full_clean(exclude=['password_hash'])
        user.save(using=self._db)
        return user

    def create_super_admin(self, email, password=None, **extra_fields):
        extra_fields['role'] = Role.SUPER_ADMIN
        return self.create_user(email, password, **extra_fields)

    @staticmethod
    def normalize_email(email):
        """Lowercase the domain part of an email address."""
        email = (email or '').strip()
        name, sep, domain = email.rpartition('@')
        if not sep:
            return email
        return f"{name}@{domain.lower()}"


class User(BaseModel):
    """
    A person acting in, or being acted on by, the authorization engine.

    Users belong to exactly one company, except super-admins who are
    cross-tenant and may have no company. Users are deactivated rather
    than deleted so audit history keeps its references.
    """

    email = models.EmailField(
        unique=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        blank=True,
        help_text="Hashed password"
    )
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)

    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.USER,
        db_index=True,
        help_text="Position in the role hierarchy"
    )
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='users',
        help_text="Owning company (null only for super-admins)"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether the account is active"
    )
    last_login_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(
        default=0,
        help_text="Incremented on every committed access change"
    )

    objects = UserManager()

    class Meta:
        db_table = 'authz_users'
        ordering = ['email']
        indexes = [
            models.Index(fields=['company', 'role'], name='authz_user_company_role_idx'),
            models.Index(fields=['company', 'is_active'], name='authz_user_company_active_idx'),
        ]

    def __str__(self):
        return self.email

    def clean(self):
        if not self.company_id and not is_super_admin(self.role):
            raise ValidationError({'company': 'Only super-admins may exist without a company.'})

    def check_password(self, raw_password):
        return bool(self.password_hash) and check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def update_last_login(self):
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at', 'updated_at'])

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_super_admin(self):
        return is_super_admin(self.role)


class UserPermissionOverrideManager(BaseModelManager):
    """Manager for UserPermissionOverride queries."""

    def for_user(self, user):
        """Overrides that apply to the user's current company."""
        return self.filter(user=user, company_id=user.company_id)

    def set_override(self, user, permission_key, is_granted, granted_by=None):
        """Insert or update the override row for (user, key)."""
        override, _ = self.update_or_create(
            user=user,
            permission_key=permission_key,
            defaults={
                'company_id': user.company_id,
                'is_granted': is_granted,
                'granted_by': granted_by,
                'granted_at': timezone.now(),
            }
        )
        return override


class UserPermissionOverride(BaseModel):
    """
    Explicit per-user value for a permission key.

    A row means "explicit override"; no row means "use the role default".
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='permission_overrides',
    )
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='permission_overrides',
        help_text="Company the override was written under"
    )
    permission_key = models.CharField(max_length=100, db_index=True)
    is_granted = models.BooleanField()
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_overrides_made',
    )
    granted_at = models.DateTimeField(default=timezone.now)

    objects = UserPermissionOverrideManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'authz_user_permission_overrides'
        ordering = ['permission_key']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'permission_key'],
                condition=Q(deleted_at__isnull=True),
                name='uniq_user_permission_override',
            ),
        ]

    def __str__(self):
        action = "GRANT" if self.is_granted else "REVOKE"
        return f"{action} {self.permission_key} for {self.user_id}"


class CompanyModuleGrantManager(BaseModelManager):

    def enabled_module_ids(self, company_id):
        if not company_id:
            return set()
        return set(
            self.filter(company_id=company_id, is_enabled=True).values_list('module_id', flat=True)
        )

    def set_enabled(self, company, module_id, is_enabled, changed_by=None):
        grant, _ = self.update_or_create(
            company=company,
            module_id=module_id,
            defaults={
                'is_enabled': is_enabled,
                'changed_by': changed_by,
            }
        )
        return grant


class CompanyModuleGrant(BaseModel):
    """
    Company gate for a module. A disabled or missing gate hides the module
    from every non-super-admin user of the company.
    """

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        related_name='module_grants',
    )
    module_id = models.CharField(max_length=64, db_index=True)
    is_enabled = models.BooleanField(default=True)
    changed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='company_module_changes',
    )

    objects = CompanyModuleGrantManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'authz_company_module_grants'
        ordering = ['module_id']
        constraints = [
            models.UniqueConstraint(
                fields=['company', 'module_id'],
                condition=Q(deleted_at__isnull=True),
                name='uniq_company_module_grant',
            ),
        ]

    def __str__(self):
        state = "on" if self.is_enabled else "off"
        return f"{self.company_id}:{self.module_id} ({state})"


class UserModuleGrantManager(BaseModelManager):

    def for_user(self, user):
        return self.filter(user=user, company_id=user.company_id)

    def set_enabled(self, user, module_id, is_enabled, granted_by=None):
        grant, _ = self.update_or_create(
            user=user,
            module_id=module_id,
            defaults={
                'company_id': user.company_id,
                'is_enabled': is_enabled,
                'granted_by': granted_by,
            }
        )
        return grant


class UserModuleGrant(BaseModel):
    """
    Per-user module opt-in. Only meaningful while the company gate is on.
    """

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='module_grants',
    )
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='user_module_grants',
    )
    module_id = models.CharField(max_length=64, db_index=True)
    is_enabled = models.BooleanField(default=True)
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='module_grants_made',
    )

    objects = UserModuleGrantManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'authz_user_module_grants'
        ordering = ['module_id']
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'module_id'],
                condition=Q(deleted_at__isnull=True),
                name='uniq_user_module_grant',
            ),
        ]

    def __str__(self):
        state = "on" if self.is_enabled else "off"
        return f"{self.user_id}:{self.module_id} ({state})"


class PermissionTemplateManager(BaseModelManager):

    def system(self):
        return self.filter(is_system=True)

    def visible_to(self, user):
        """System templates plus the user's company templates; everything for super-admins."""
        if user.is_super_admin:
            return self.all()
        return self.filter(Q(is_system=True) | Q(company_id=user.company_id))


class PermissionTemplate(BaseModel):
    """
    Named, role-targeted bundle of permission keys and module ids.
    """

    name = models.SlugField(max_length=100, help_text="Stable template identifier")
    display_name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    target_role = models.CharField(max_length=20, choices=Role.choices, default=Role.USER)
    permission_keys = models.JSONField(default=list, blank=True)
    module_ids = models.JSONField(default=list, blank=True)

    is_system = models.BooleanField(default=False, db_index=True)
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='permission_templates',
        help_text="Owning company for custom templates"
    )
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_templates_created',
    )

    objects = PermissionTemplateManager.from_queryset(BaseModelQuerySet)()

    class Meta:
        db_table = 'authz_permission_templates'
        ordering = ['-is_system', 'display_name']
        constraints = [
            models.UniqueConstraint(
                fields=['company', 'name'],
                condition=Q(deleted_at__isnull=True),
                name='uniq_live_template_name',
            ),
        ]

    def __str__(self):
        return self.display_name


class AuditAction(models.TextChoices):
    PERMISSION_GRANTED = 'permission_granted', 'Permission granted'
    PERMISSION_REVOKED = 'permission_revoked', 'Permission revoked'
    PERMISSION_CHECKED = 'permission_checked', 'Permission checked'
    MODULE_ENABLED = 'module_enabled', 'Module enabled'
    MODULE_DISABLED = 'module_disabled', 'Module disabled'
    COMPANY_MODULE_ENABLED = 'company_module_enabled', 'Company module enabled'
    COMPANY_MODULE_DISABLED = 'company_module_disabled', 'Company module disabled'
    ROLE_CHANGED = 'role_changed', 'Role changed'
    COMPANY_CHANGED = 'company_changed', 'Company changed'
    ACCESS_DENIED = 'access_denied', 'Access denied'
    LOGIN_SUCCESS = 'login_success', 'Login succeeded'
    LOGIN_FAILED = 'login_failed', 'Login failed'
    TEMPLATE_CREATED = 'template_created', 'Template created'
    TEMPLATE_UPDATED = 'template_updated', 'Template updated'
    TEMPLATE_DELETED = 'template_deleted', 'Template deleted'


class AuditEventQuerySet(AppendOnlyQuerySet):
    """Filters used by audit listing and risk scoring."""

    def for_company(self, company_id):
        return self.filter(company_id=company_id)

    def by_action(self, action):
        return self.filter(action=action)

    def in_range(self, start=None, end=None):
        qs = self
        if start:
            qs = qs.filter(occurred_at__gte=start)
        if end:
            qs = qs.filter(occurred_at__lte=end)
        return qs

    def with_risk_between(self, low, high):
        return self.filter(risk_score__gte=low, risk_score__lte=high)

    def search(self, text):
        return self.filter(
            Q(actor__email__icontains=text)
            | Q(target_user__email__icontains=text)
            | Q(resource__icontains=text)
            | Q(company__name__icontains=text)
        )

    def recent_failed_logins(self, user_id, before, minutes):
        return self.filter(
            action=AuditAction.LOGIN_FAILED,
            target_user_id=user_id,
            occurred_at__lt=before,
            occurred_at__gte=before - timedelta(minutes=minutes),
        )


class AuditEvent(AppendOnlyModel):
    """
    Immutable record of an authorization decision, change or login.
    """

    occurred_at = models.DateTimeField(
        db_index=True,
        help_text="UTC time the decision was made"
    )
    action = models.CharField(max_length=40, choices=AuditAction.choices, db_index=True)
    actor = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='audit_events_performed',
        help_text="Acting user (null for system or anonymous events)"
    )
    target_user = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='audit_events_received',
    )
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='audit_events',
    )
    resource = models.CharField(
        max_length=150,
        blank=True,
        help_text="Permission key, module id, template or user field affected"
    )

    before = models.JSONField(null=True, blank=True)
    after = models.JSONField(null=True, blank=True)
    details = models.JSONField(default=dict, blank=True)

    risk_score = models.PositiveSmallIntegerField(default=0, db_index=True)
    is_noop = models.BooleanField(default=False)

    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    request_id = models.CharField(max_length=64, blank=True, db_index=True)

    objects = models.Manager.from_queryset(AuditEventQuerySet)()

    class Meta:
        db_table = 'authz_audit_events'
        ordering = ['-occurred_at']
        indexes = [
            models.Index(fields=['company', 'occurred_at'], name='authz_audit_company_time_idx'),
            models.Index(fields=['action', 'occurred_at'], name='authz_audit_action_time_idx'),
            models.Index(fields=['target_user', 'action', 'occurred_at'], name='authz_audit_target_idx'),
        ]

    def __str__(self):
        return f"{self.occurred_at:%Y-%m-%d %H:%M:%S} {self.action} {self.resource}"

    @classmethod
    def create_from_payload(cls, payload):
        """Persist a payload produced by AuditRecorder.build_payload."""
        occurred_at = payload['occurred_at']
        if isinstance(occurred_at, str):
            occurred_at = parse_datetime(occurred_at)
        return cls.objects.create(
            id=payload['id'],
            occurred_at=occurred_at,
            action=payload['action'],
            actor_id=payload.get('actor_id'),
            target_user_id=payload.get('target_user_id'),
            company_id=payload.get('company_id'),
            resource=payload.get('resource') or '',
            before=payload.get('before'),
            after=payload.get('after'),
            details=payload.get('details') or {},
            risk_score=payload.get('risk_score', 0),
            is_noop=payload.get('is_noop', False),
            ip_address=payload.get('ip_address'),
            user_agent=payload.get('user_agent') or '',
            request_id=payload.get('request_id') or '',
        )
