from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate security-critical configuration before serving requests.
        """
        import sys
        if 'runserver' not in sys.argv and 'gunicorn' not in sys.argv[0]:
            # Management commands other than runserver skip validation
            if len(sys.argv) > 1 and sys.argv[1] not in ['runserver', 'test']:
                return

        self._validate_jwt_configuration()
        logger.info("Startup security validations passed")

    def _validate_jwt_configuration(self):
        """Validate JWT secret key configuration."""
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured("JWT_SECRET_KEY must be set in environment variables.")

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}."
            )

        if jwt_secret == secret_key:
            raise ImproperlyConfigured("JWT_SECRET_KEY must be different from SECRET_KEY.")
