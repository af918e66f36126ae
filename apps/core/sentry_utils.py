"""
Sentry utilities for adding context and breadcrumbs.

Every helper is a no-op when SENTRY_DSN is not configured.
"""
import sentry_sdk
from django.conf import settings


def set_user_context(user):
    """
    Set user context in Sentry. Only identifiers and role are sent.
    """
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.set_user({
        "id": str(user.id),
        "role": user.role,
        "company_id": str(user.company_id) if user.company_id else None,
    })


def add_breadcrumb(category, message, level="info", data=None):
    """
    Add a breadcrumb to Sentry for debugging.

    Args:
        category: Category of the breadcrumb (e.g., "authz", "task")
        message: Human-readable message
        level: Severity level (debug, info, warning, error)
        data: Optional dictionary of additional data
    """
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )


def capture_exception(exception, **kwargs):
    """
    Capture an exception in Sentry with optional context.
    """
    if not settings.SENTRY_DSN:
        return

    with sentry_sdk.push_scope() as scope:
        for key, value in kwargs.items():
            scope.set_context(key, value)
        sentry_sdk.capture_exception(exception)


def capture_message(message, level="info", **kwargs):
    """
    Capture a message in Sentry with optional context.
    """
    if not settings.SENTRY_DSN:
        return

    with sentry_sdk.push_scope() as scope:
        for key, value in kwargs.items():
            scope.set_context(key, value)
        sentry_sdk.capture_message(message, level=level)


def start_transaction(name, op):
    """
    Start a Sentry transaction for performance monitoring.

    Returns:
        Transaction object or None if Sentry is not configured
    """
    if not settings.SENTRY_DSN:
        return None

    return sentry_sdk.start_transaction(name=name, op=op)
