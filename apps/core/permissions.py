"""
DRF permission classes shared by API views.

Role and tenant checks belong to the authorization engine itself; these
classes only gate on an authenticated, active account.
"""
import logging
from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


class IsActiveAccount(BasePermission):
    """
    Allow only authenticated requests whose user account is active.
    """
    message = 'Authentication credentials were not provided or the account is inactive.'

    def has_permission(self, request, view):
        user = getattr(request, 'user', None)
        if not user or not getattr(user, 'is_authenticated', False):
            return False

        if not getattr(user, 'is_active', False):
            logger.warning(
                "Inactive account rejected",
                extra={
                    'user_id': str(getattr(user, 'id', '')),
                    'view': view.__class__.__name__,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        return True
