"""
Effective permission and module resolution.

Precedence, highest first, stopping at the first layer that decides:

1. super-admin: every permission and module is effective
2. module: a missing or disabled company gate hides the module
3. module: a core-required module is effective while its gate is on
4. module: the user's module grant row, else not effective
5. permission: the user's override row, else the role default

The per-user effective view is cached through CacheService and invalidated
on every write that can change it.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set

from django.conf import settings

from apps.core.cache import CacheKeys, CacheService, CacheTTL
from apps.authz.catalog import PermissionCatalog
from apps.authz.defaults import RoleDefaults
from apps.authz.models import CompanyModuleGrant, User, UserModuleGrant, UserPermissionOverride
from apps.authz.roles import is_super_admin

logger = logging.getLogger(__name__)


@dataclass
class AccessState:
    """
    Everything resolution depends on for one user, loaded in one pass.

    The validator builds hypothetical copies of this to evaluate a batch of
    pending changes before any of them is persisted.
    """
    role: str
    company_id: Optional[str]
    overrides: Dict[str, bool] = field(default_factory=dict)
    company_modules: Set[str] = field(default_factory=set)
    user_modules: Dict[str, bool] = field(default_factory=dict)

    def copy(self):
        return AccessState(
            role=self.role,
            company_id=self.company_id,
            overrides=dict(self.overrides),
            company_modules=set(self.company_modules),
            user_modules=dict(self.user_modules),
        )


def resolve_permission_value(state: AccessState, key: str) -> bool:
    if is_super_admin(state.role):
        return True
    if key in state.overrides:
        return state.overrides[key]
    return RoleDefaults.grants(state.role, key)


def resolve_module_value(state: AccessState, module_id: str) -> bool:
    if is_super_admin(state.role):
        return True
    if module_id not in state.company_modules:
        return False
    if PermissionCatalog.is_required_module(module_id):
        return True
    return state.user_modules.get(module_id, False)


class PermissionResolver:
    """
    Resolves effective permission and module state for users.
    """

    @staticmethod
    def cache_ttl() -> int:
        return getattr(settings, 'AUTHZ_RESOLVER_CACHE_TTL', CacheTTL.EFFECTIVE_ACCESS)

    @staticmethod
    def cache_key(user_id) -> str:
        return CacheKeys.format(CacheKeys.EFFECTIVE_ACCESS, user_id=user_id)

    @classmethod
    def load_state(cls, user: User) -> AccessState:
        """Read the rows that feed resolution for ``user``."""
        company_id = str(user.company_id) if user.company_id else None
        if is_super_admin(user.role):
            return AccessState(role=user.role, company_id=company_id)

        overrides = dict(
            UserPermissionOverride.objects.for_user(user).values_list('permission_key', 'is_granted')
        )
        user_modules = dict(
            UserModuleGrant.objects.for_user(user).values_list('module_id', 'is_enabled')
        )
        company_modules = CompanyModuleGrant.objects.enabled_module_ids(user.company_id)

        return AccessState(
            role=user.role,
            company_id=company_id,
            overrides=overrides,
            company_modules=set(company_modules),
            user_modules=user_modules,
        )

    @staticmethod
    def compute(state: AccessState) -> Dict[str, Dict[str, bool]]:
        """Effective value of every catalog entry for ``state``."""
        return {
            'permissions': {
                key: resolve_permission_value(state, key)
                for key in PermissionCatalog.permission_keys()
            },
            'modules': {
                module_id: resolve_module_value(state, module_id)
                for module_id in PermissionCatalog.module_ids()
            },
        }

    @classmethod
    def effective_view(cls, user: User, fresh: bool = False) -> Dict[str, Dict[str, bool]]:
        """
        Cached effective view for ``user``.

        The cached entry records the role, company and version it was built
        for; an entry that no longer matches the user row is rebuilt.
        ``fresh=True`` bypasses the cache entirely.
        """
        cache_key = cls.cache_key(user.id)
        fingerprint = [user.role, str(user.company_id) if user.company_id else None, user.version]

        if not fresh:
            cached = CacheService.get(cache_key)
            if cached is not None and cached.get('fingerprint') == fingerprint:
                return cached['view']

        view = cls.compute(cls.load_state(user))
        if not fresh:
            CacheService.set(cache_key, {'fingerprint': fingerprint, 'view': view}, cls.cache_ttl())
        return view

    @classmethod
    def resolve(cls, user: User, key: str) -> bool:
        """Effective value of permission ``key`` for ``user``."""
        if is_super_admin(user.role):
            return True
        view = cls.effective_view(user)
        if key in view['permissions']:
            return view['permissions'][key]
        # Keys outside the catalog only resolve through an override row
        return resolve_permission_value(cls.load_state(user), key)

    @classmethod
    def resolve_module(cls, user: User, module_id: str) -> bool:
        """Effective value of module ``module_id`` for ``user``."""
        if is_super_admin(user.role):
            return True
        return cls.effective_view(user)['modules'].get(module_id, False)

    @classmethod
    def effective_permissions(cls, user: User) -> Dict[str, bool]:
        return dict(cls.effective_view(user)['permissions'])

    @classmethod
    def effective_modules(cls, user: User) -> Dict[str, bool]:
        return dict(cls.effective_view(user)['modules'])

    @classmethod
    def current_value(cls, user: User, kind: str, key: str, fresh: bool = False):
        """
        Current effective value of the attribute a change of ``kind`` writes.

        Permissions and modules resolve to booleans, role to the role string
        and company to the company id string (or None).
        """
        if kind == 'role':
            return str(user.role)
        if kind == 'company':
            return str(user.company_id) if user.company_id else None

        view = cls.effective_view(user, fresh=fresh)
        if kind == 'permission':
            return view['permissions'].get(key, is_super_admin(user.role))
        if kind == 'module':
            return view['modules'].get(key, is_super_admin(user.role))
        raise ValueError(f"Unknown change kind: {kind}")

    @classmethod
    def invalidate(cls, user_id):
        """Drop the cached view for one user."""
        CacheService.delete(cls.cache_key(user_id))
        logger.debug("Invalidated effective access", extra={'user_id': str(user_id)})

    @classmethod
    def invalidate_many(cls, user_ids: Iterable):
        CacheService.delete_many(cls.cache_key(user_id) for user_id in user_ids)

    @classmethod
    def invalidate_company(cls, company_id):
        """Drop the cached view of every user in a company."""
        user_ids = list(
            User.objects.filter(company_id=company_id).values_list('id', flat=True)
        )
        cls.invalidate_many(user_ids)
        logger.info(
            "Invalidated effective access for company",
            extra={'company_id': str(company_id), 'user_count': len(user_ids)}
        )

    @staticmethod
    def resolve_from_state(state: AccessState, kind: str, key: str):
        """Resolution against an in-memory state, used for batch evaluation."""
        if kind == 'permission':
            return resolve_permission_value(state, key)
        if kind == 'module':
            return resolve_module_value(state, key)
        if kind == 'role':
            return str(state.role)
        if kind == 'company':
            return state.company_id
        raise ValueError(f"Unknown change kind: {kind}")
