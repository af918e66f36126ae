"""
Role defaults: the fallback layer beneath explicit per-user overrides.
"""
from types import MappingProxyType
from typing import FrozenSet

from apps.authz.catalog import PermissionCatalog, Tier
from apps.authz.roles import Role


_USER_PERMISSIONS = frozenset({
    'dashboard.view',
    'vendors.view',
    'customers.view',
    'expense_categories.view',
    'expenses.view',
    'expenses.create',
    'expenses.edit',
    'ingrid.chat',
    'ingrid.suggestions.view',
})

# Admins hold every company-level key apart from end-user AI chat
_ADMIN_PERMISSIONS = frozenset(
    PermissionCatalog.keys_with_tier(Tier.CORE, Tier.ADD_ON)
) - {'ingrid.chat'}

_ADD_ON_MODULES = frozenset(
    m.id for m in PermissionCatalog.modules(include_deprecated=True) if m.tier == Tier.ADD_ON
)


class RoleDefaults:
    """
    Default permission sets and default module visibility per role.
    """

    PERMISSIONS = MappingProxyType({
        Role.USER: _USER_PERMISSIONS,
        Role.ADMIN: _ADMIN_PERMISSIONS,
        Role.SUPER_ADMIN: frozenset(PermissionCatalog.permission_keys()),
    })

    MODULES = MappingProxyType({
        Role.USER: frozenset({'expense_management', 'ingrid_ai'}),
        Role.ADMIN: _ADD_ON_MODULES,
        Role.SUPER_ADMIN: frozenset(PermissionCatalog.module_ids()),
    })

    @classmethod
    def permissions_for(cls, role) -> FrozenSet[str]:
        try:
            return cls.PERMISSIONS.get(Role(role), frozenset())
        except ValueError:
            return frozenset()

    @classmethod
    def modules_for(cls, role) -> FrozenSet[str]:
        try:
            return cls.MODULES.get(Role(role), frozenset())
        except ValueError:
            return frozenset()

    @classmethod
    def grants(cls, role, key: str) -> bool:
        """Default value of ``key`` for ``role``."""
        return key in cls.permissions_for(role)
