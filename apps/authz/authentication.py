"""
DRF bearer-token authentication.
"""
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed

from apps.core.sentry_utils import set_user_context


class JWTAuthentication(BaseAuthentication):
    """
    Authenticate ``Authorization: Bearer <token>`` headers with tokens issued
    by AuthService.

    Requests without a bearer header are left anonymous; a bearer header with
    an invalid or expired token, or one for an inactive user, is rejected.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        from apps.authz.services import AuthService

        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None
        if len(auth) != 2:
            raise AuthenticationFailed('Invalid bearer header.')

        try:
            token = auth[1].decode()
        except UnicodeError:
            raise AuthenticationFailed('Invalid bearer header.')

        user = AuthService.get_user_from_jwt(token)
        if user is None:
            raise AuthenticationFailed('Invalid or expired token.')

        set_user_context(user)
        return (user, token)

    def authenticate_header(self, request):
        return self.keyword
