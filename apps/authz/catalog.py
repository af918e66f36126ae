"""
Static registry of permission keys and system modules.

The catalog is built once at import time and exposed through read-only
mappings. Entries are never removed; retired entries are marked deprecated
so they keep resolving but drop out of listings.
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Tuple


class Tier(str, Enum):
    CORE = 'core'
    ADD_ON = 'add-on'
    SUPER = 'super'


@dataclass(frozen=True)
class ModuleDefinition:
    id: str
    name: str
    category: str
    tier: Tier
    is_core_required: bool = False
    dependencies: Tuple[str, ...] = ()
    description: str = ''
    deprecated: bool = False


@dataclass(frozen=True)
class PermissionDefinition:
    key: str
    name: str
    module_id: str
    tier: Tier
    requires: Tuple[str, ...] = ()
    description: str = ''
    deprecated: bool = False

    @property
    def category(self) -> str:
        return self.key.rsplit('.', 1)[0]


_MODULES = (
    # Core modules every company receives; users cannot be opted out of them
    ModuleDefinition('dashboard', 'Dashboard', 'core', Tier.CORE, True,
                     description='Company overview and key metrics'),
    ModuleDefinition('user_management', 'User Management', 'core', Tier.CORE, True,
                     description='Invite and manage company users'),
    ModuleDefinition('company_settings', 'Company Settings', 'core', Tier.CORE, True,
                     description='Company profile and configuration'),
    ModuleDefinition('notifications', 'Notifications', 'core', Tier.CORE, True,
                     description='In-app and email notifications'),
    ModuleDefinition('vendors', 'Vendors', 'core', Tier.CORE, True,
                     description='Vendor records'),
    ModuleDefinition('customers', 'Customers', 'core', Tier.CORE, True,
                     description='Customer records'),
    ModuleDefinition('gl_accounts', 'GL Accounts', 'core', Tier.CORE, True,
                     description='General ledger account codes'),
    ModuleDefinition('expense_categories', 'Expense Categories', 'core', Tier.CORE, True,
                     description='Expense classification'),

    # Add-on modules enabled per company, then opted into per user
    ModuleDefinition('expense_management', 'Expense Management', 'finance', Tier.ADD_ON,
                     dependencies=('expense_categories',),
                     description='Expense capture, review and approval'),
    ModuleDefinition('ingrid_ai', 'Ingrid AI', 'ai', Tier.ADD_ON,
                     dependencies=('expense_management',),
                     description='AI assistant for expense processing'),
    ModuleDefinition('process_automation', 'Process Automation', 'automation', Tier.ADD_ON,
                     dependencies=('expense_management',),
                     description='Rule based workflow automation'),
    ModuleDefinition('advanced_analytics', 'Advanced Analytics', 'analytics', Tier.ADD_ON,
                     dependencies=('dashboard',),
                     description='Reporting and data export'),
    ModuleDefinition('api_management', 'API Management', 'integration', Tier.ADD_ON,
                     description='API keys and integrations'),

    # Platform operations, reserved for super-admins
    ModuleDefinition('system_administration', 'System Administration', 'platform', Tier.SUPER,
                     description='Cross-company platform administration'),
)

_MODULE_TIERS = {module.id: module.tier for module in _MODULES}


def _permission(key, name, module_id, requires=(), description=''):
    return PermissionDefinition(
        key=key,
        name=name,
        module_id=module_id,
        tier=_MODULE_TIERS[module_id],
        requires=tuple(requires),
        description=description,
    )


def _crud(prefix, label, module_id):
    """view/create/edit/delete keys where every write requires view."""
    view_key = f'{prefix}.view'
    return [
        _permission(view_key, f'View {label}', module_id),
        _permission(f'{prefix}.create', f'Create {label}', module_id, [view_key]),
        _permission(f'{prefix}.edit', f'Edit {label}', module_id, [view_key]),
        _permission(f'{prefix}.delete', f'Delete {label}', module_id, [view_key]),
    ]


_PERMISSIONS = (
    _permission('dashboard.view', 'View Dashboard', 'dashboard'),
    *_crud('users', 'Users', 'user_management'),
    _permission('company.settings.view', 'View Company Settings', 'company_settings'),
    _permission('company.settings.edit', 'Edit Company Settings', 'company_settings',
                ['company.settings.view']),
    _permission('notifications.view', 'View Notifications', 'notifications'),
    _permission('notifications.manage', 'Manage Notifications', 'notifications',
                ['notifications.view']),
    *_crud('vendors', 'Vendors', 'vendors'),
    *_crud('customers', 'Customers', 'customers'),
    *_crud('gl_accounts', 'GL Accounts', 'gl_accounts'),
    *_crud('expense_categories', 'Expense Categories', 'expense_categories'),

    _permission('expenses.view', 'View Expenses', 'expense_management'),
    _permission('expenses.create', 'Create Expenses', 'expense_management', ['expenses.view']),
    _permission('expenses.edit', 'Edit Expenses', 'expense_management', ['expenses.view']),
    _permission('expenses.review', 'Review Expenses', 'expense_management', ['expenses.view']),
    _permission('expenses.approve', 'Approve Expenses', 'expense_management', ['expenses.view']),
    _permission('expenses.delete', 'Delete Expenses', 'expense_management', ['expenses.view']),

    _permission('ingrid.chat', 'Chat with Ingrid', 'ingrid_ai'),
    _permission('ingrid.suggestions.view', 'View AI Suggestions', 'ingrid_ai'),
    _permission('ingrid.suggestions.approve', 'Approve AI Suggestions', 'ingrid_ai',
                ['ingrid.suggestions.view']),
    _permission('ingrid.configure', 'Configure Ingrid', 'ingrid_ai'),
    _permission('ingrid.analytics.view', 'View Ingrid Analytics', 'ingrid_ai'),

    _permission('automation.view', 'View Automations', 'process_automation'),
    _permission('automation.create', 'Create Automations', 'process_automation',
                ['automation.view']),
    _permission('automation.edit', 'Edit Automations', 'process_automation',
                ['automation.view']),

    _permission('analytics.view', 'View Analytics', 'advanced_analytics'),
    _permission('analytics.export', 'Export Analytics', 'advanced_analytics',
                ['analytics.view']),

    _permission('api.manage', 'Manage API Access', 'api_management'),

    _permission('billing.super_override', 'Override Billing', 'system_administration',
                description='Bypass subscription billing limits'),
    _permission('system.super_admin_access', 'Platform Administration', 'system_administration'),
    _permission('companies.manage', 'Manage Companies', 'system_administration'),
)


class PermissionCatalog:
    """
    Read-only lookups over the permission and module registry.
    """

    MODULES = MappingProxyType({module.id: module for module in _MODULES})
    PERMISSIONS = MappingProxyType({perm.key: perm for perm in _PERMISSIONS})

    # Granting any of these produces a "sensitive permission" warning
    DANGEROUS_PERMISSIONS = frozenset({'users.delete', 'company.settings.edit', 'api.manage'})

    # Granting any of these to a plain user produces an elevation warning
    ADMINISTRATIVE_PERMISSIONS = frozenset({
        'users.create', 'users.edit', 'users.delete',
        'company.settings.edit', 'ingrid.configure',
    })

    @classmethod
    def permission(cls, key: str) -> Optional[PermissionDefinition]:
        return cls.PERMISSIONS.get(key)

    @classmethod
    def module(cls, module_id: str) -> Optional[ModuleDefinition]:
        return cls.MODULES.get(module_id)

    @classmethod
    def has_permission(cls, key: str) -> bool:
        return key in cls.PERMISSIONS

    @classmethod
    def has_module(cls, module_id: str) -> bool:
        return module_id in cls.MODULES

    @classmethod
    def permissions(cls, include_deprecated: bool = False) -> List[PermissionDefinition]:
        return [p for p in cls.PERMISSIONS.values() if include_deprecated or not p.deprecated]

    @classmethod
    def modules(cls, include_deprecated: bool = False) -> List[ModuleDefinition]:
        return [m for m in cls.MODULES.values() if include_deprecated or not m.deprecated]

    @classmethod
    def permission_keys(cls) -> Tuple[str, ...]:
        return tuple(cls.PERMISSIONS)

    @classmethod
    def module_ids(cls) -> Tuple[str, ...]:
        return tuple(cls.MODULES)

    @classmethod
    def required_module_ids(cls) -> Tuple[str, ...]:
        return tuple(m.id for m in _MODULES if m.is_core_required)

    @classmethod
    def is_required_module(cls, module_id: str) -> bool:
        module = cls.module(module_id)
        return bool(module and module.is_core_required)

    @classmethod
    def is_super_tier_permission(cls, key: str) -> bool:
        perm = cls.permission(key)
        return bool(perm and perm.tier == Tier.SUPER)

    @classmethod
    def is_super_tier_module(cls, module_id: str) -> bool:
        module = cls.module(module_id)
        return bool(module and module.tier == Tier.SUPER)

    @classmethod
    def keys_with_tier(cls, *tiers: Tier) -> Tuple[str, ...]:
        return tuple(p.key for p in _PERMISSIONS if p.tier in tiers)

    @classmethod
    def dependents_of(cls, key: str) -> Tuple[str, ...]:
        """Permission keys that list ``key`` in their requirements."""
        return tuple(p.key for p in _PERMISSIONS if key in p.requires)

    @classmethod
    def module_dependents_of(cls, module_id: str) -> Tuple[str, ...]:
        return tuple(m.id for m in _MODULES if module_id in m.dependencies)

    @classmethod
    def unknown_permissions(cls, keys: Iterable[str]) -> List[str]:
        return [key for key in keys if key not in cls.PERMISSIONS]

    @classmethod
    def unknown_modules(cls, module_ids: Iterable[str]) -> List[str]:
        return [module_id for module_id in module_ids if module_id not in cls.MODULES]

    @classmethod
    def as_dict(cls) -> Dict[str, list]:
        """Serializable listing of non-deprecated entries."""
        return {
            'modules': [
                {
                    'id': m.id,
                    'name': m.name,
                    'category': m.category,
                    'tier': m.tier.value,
                    'is_core_required': m.is_core_required,
                    'dependencies': list(m.dependencies),
                    'description': m.description,
                }
                for m in cls.modules()
            ],
            'permissions': [
                {
                    'key': p.key,
                    'name': p.name,
                    'category': p.category,
                    'module_id': p.module_id,
                    'tier': p.tier.value,
                    'requires': list(p.requires),
                    'description': p.description,
                }
                for p in cls.permissions()
            ],
        }
