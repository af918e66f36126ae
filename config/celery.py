"""
Celery configuration for the authorization service.
"""
import os
from celery import Celery
from celery.signals import task_failure, task_retry
import logging

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('authz')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()

logger = logging.getLogger(__name__)


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, args=None, kwargs=None, traceback=None, einfo=None, **extra):
    """Log task failure. LoggedTask reports the exception to Sentry."""
    logger.error(
        f"Task failed: {sender.name}",
        extra={
            'task_id': task_id,
            'task_name': sender.name,
            'exception': str(exception)[:500] if exception else None,
        },
        exc_info=exception
    )


@task_retry.connect
def task_retry_handler(sender=None, task_id=None, reason=None, einfo=None, **extra):
    """Log task retry."""
    logger.warning(
        f"Task retry: {sender.name}",
        extra={
            'task_id': task_id,
            'task_name': sender.name,
            'reason': str(reason)[:200] if reason else None,
            'retry_count': getattr(sender.request, 'retries', 0),
        }
    )


app.conf.timezone = 'UTC'


# Celery Beat Schedule for Periodic Tasks
app.conf.beat_schedule = {
    # Drain audit events held in memory while the broker was down
    'flush-pending-audit-events': {
        'task': 'apps.authz.tasks.flush_pending_audit_events',
        'schedule': 60.0,  # Every 60 seconds
    },
}
