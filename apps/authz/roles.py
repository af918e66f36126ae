"""
Closed role hierarchy.

Every authority comparison in the engine goes through ``authority()``.
"""
from django.db import models


class Role(models.TextChoices):
    USER = 'user', 'User'
    ADMIN = 'admin', 'Admin'
    SUPER_ADMIN = 'super-admin', 'Super Admin'


_AUTHORITY = {
    Role.USER: 10,
    Role.ADMIN: 20,
    Role.SUPER_ADMIN: 30,
}


def authority(role) -> int:
    """
    Return the authority level of a role. Unknown values rank below every
    real role.
    """
    try:
        return _AUTHORITY[Role(role)]
    except ValueError:
        return 0


def is_staff_role(role) -> bool:
    """True for roles allowed to change other users' access."""
    return authority(role) >= authority(Role.ADMIN)


def is_super_admin(role) -> bool:
    return authority(role) >= authority(Role.SUPER_ADMIN)
