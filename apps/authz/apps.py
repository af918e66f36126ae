"""
Authorization app configuration.
"""
from django.apps import AppConfig


class AuthzConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.authz'
    label = 'authz'
    verbose_name = 'Authorization'

    def ready(self):
        """Import signals when app is ready."""
        import apps.authz.signals  # noqa
