"""
Celery tasks for the authorization engine.
"""
import logging

from celery import shared_task
from django.conf import settings
from django.db import DatabaseError, transaction

from apps.core.logging import SecurityLogger
from apps.core.tasks import LoggedTask

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    base=LoggedTask,
    max_retries=getattr(settings, 'AUTHZ_AUDIT_MAX_RETRIES', 5),
)
def persist_audit_event(self, payload):
    """
    Write an audit payload that could not be written synchronously.

    Retries with exponential backoff while the database is unavailable. When
    retries are exhausted the loss is escalated as an operational alert.

    Args:
        payload: dict built by AuditRecorder.build_payload

    Returns:
        dict: {'status': 'persisted' | 'duplicate' | 'escalated', 'id': ...}
    """
    from apps.authz.models import AuditEvent

    event_id = payload['id']

    try:
        if AuditEvent.objects.filter(pk=event_id).exists():
            return {'status': 'duplicate', 'id': event_id}

        with transaction.atomic():
            AuditEvent.create_from_payload(payload)

    except DatabaseError as e:
        attempts = self.request.retries + 1
        if self.request.retries >= self.max_retries:
            logger.error(
                "Audit event could not be persisted, escalating",
                extra={'audit_event_id': event_id, 'action': payload.get('action'), 'attempts': attempts},
                exc_info=True
            )
            SecurityLogger.log_audit_sink_unavailable(
                payload.get('action'),
                attempts=attempts,
                error=str(e),
                audit_event_id=event_id,
                company_id=payload.get('company_id'),
            )
            return {'status': 'escalated', 'id': event_id}

        backoff = getattr(settings, 'AUTHZ_AUDIT_RETRY_BACKOFF', 2)
        raise self.retry(exc=e, countdown=backoff * (2 ** self.request.retries))

    logger.info(
        "Audit event persisted on retry",
        extra={'audit_event_id': event_id, 'action': payload.get('action'), 'attempts': self.request.retries + 1}
    )
    return {'status': 'persisted', 'id': event_id}


@shared_task(bind=True, base=LoggedTask)
def flush_pending_audit_events(self):
    """
    Periodically retry audit payloads this worker holds in memory.

    Payloads land there only when both the database and the broker were
    unreachable. Entries still failing after the flush are escalated.

    Returns:
        dict: {'written': int, 'remaining': int}
    """
    from apps.authz.audit import AuditRecorder

    written = AuditRecorder.flush_pending()
    remaining = AuditRecorder.pending_count()

    if remaining:
        SecurityLogger.log_audit_sink_unavailable(
            'pending_flush',
            attempts=1,
            error=f"{remaining} audit events still held in memory",
            remaining=remaining,
        )
    elif written:
        logger.info("Held audit events flushed", extra={'written': written})

    return {'written': written, 'remaining': remaining}
