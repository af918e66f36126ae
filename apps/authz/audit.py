"""
Audit event recording.

Events are written straight to the database. When the write fails the
payload is handed to the ``persist_audit_event`` Celery task, which retries
with exponential backoff and escalates once its retries are exhausted. If the
broker itself is unreachable the payload is kept in process memory and
retried by ``flush_pending``, both after the next successful write in the
same process and by the periodic ``flush_pending_audit_events`` task.
Callers never see audit failures.
"""
import logging
import threading
import uuid
from collections import deque
from datetime import timedelta
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from apps.core.logging import SecurityLogger
from apps.core.middleware import get_current_request_id
from apps.authz.models import AuditAction, AuditEvent
from apps.authz.risk import build_context, score_event, score_range

logger = logging.getLogger(__name__)


def origin_from_request(request) -> Dict[str, Optional[str]]:
    """Network origin and client identity of an API request."""
    if request is None:
        return {}
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    ip_address = forwarded.split(',')[0].strip() if forwarded else request.META.get('REMOTE_ADDR')
    return {
        'ip_address': ip_address or None,
        'user_agent': request.META.get('HTTP_USER_AGENT', ''),
        'request_id': getattr(request, 'request_id', None),
    }


def _id(value):
    if value is None:
        return None
    return str(getattr(value, 'pk', value))


class AuditRecorder:
    """
    Builds, scores and durably records audit events.
    """

    _pending = deque()
    _lock = threading.Lock()

    @classmethod
    def prior_failed_logins(cls, user_id, occurred_at) -> int:
        if not user_id:
            return 0
        window = getattr(settings, 'AUTHZ_FAILED_LOGIN_WINDOW_MINUTES', 15)
        with transaction.atomic():
            return AuditEvent.objects.recent_failed_logins(user_id, occurred_at, window).count()

    @classmethod
    def build_payload(cls, action: str, actor=None, target_user=None, company=None,
                      resource: str = '', before=None, after=None,
                      details: Optional[Dict[str, Any]] = None, is_noop: bool = False,
                      origin: Optional[Dict[str, Any]] = None, risk_factors: Optional[Dict[str, Any]] = None,
                      occurred_at=None) -> Dict[str, Any]:
        """
        Build a JSON-serialisable audit payload with its risk score.

        ``risk_factors`` feed ``score_event``; together with the event time
        and failed-login history they are stored as ``details['risk_context']``.
        """
        if action not in AuditAction.values:
            raise ValueError(f"Unknown audit action: {action}")

        occurred_at = occurred_at or timezone.now()
        origin = origin or {}
        target_id = _id(target_user)

        factors = dict(risk_factors or {})
        if 'prior_failed_logins' not in factors:
            try:
                factors['prior_failed_logins'] = cls.prior_failed_logins(target_id or _id(actor), occurred_at)
            except DatabaseError as e:
                # Counted as zero prior failures and flagged in the stored context
                logger.warning(
                    "Failed login history unavailable, scoring without it",
                    extra={'action': action, 'exception': str(e)}
                )
                factors['prior_failed_logins'] = 0
                factors['failed_login_history_unavailable'] = True
        factors['is_noop'] = is_noop
        risk_context = build_context(occurred_at=occurred_at, **factors)

        details = dict(details or {})
        details['risk_context'] = risk_context

        return {
            'id': str(uuid.uuid4()),
            'occurred_at': occurred_at.isoformat(),
            'action': action,
            'actor_id': _id(actor),
            'target_user_id': target_id,
            'company_id': _id(company),
            'resource': resource or '',
            'before': before,
            'after': after,
            'details': details,
            'risk_score': score_event(action, risk_context),
            'is_noop': is_noop,
            'ip_address': origin.get('ip_address'),
            'user_agent': origin.get('user_agent') or '',
            'request_id': origin.get('request_id') or get_current_request_id() or '',
        }

    @classmethod
    def record(cls, action: str, **kwargs) -> Dict[str, Any]:
        """
        Record an event. Returns the payload whether or not it was written
        synchronously.
        """
        payload = cls.build_payload(action, **kwargs)
        cls.record_payload(payload)
        return payload

    @classmethod
    def record_payload(cls, payload: Dict[str, Any]) -> Optional[AuditEvent]:
        try:
            with transaction.atomic():
                event = AuditEvent.create_from_payload(payload)
        except DatabaseError as e:
            logger.warning(
                "Audit write failed, queueing for retry",
                extra={'audit_event_id': payload['id'], 'action': payload['action'], 'exception': str(e)}
            )
            cls.enqueue(payload)
            return None

        logger.info(
            f"Audit event recorded: {payload['action']}",
            extra={
                'audit_event_id': payload['id'],
                'action': payload['action'],
                'company_id': payload.get('company_id'),
                'risk_score': payload['risk_score'],
            }
        )
        if cls._pending:
            # The store is reachable again; drain what this process is holding
            cls.flush_pending()
        return event

    @classmethod
    def enqueue(cls, payload: Dict[str, Any]):
        """Hand a payload to the retry task, or hold it locally if the broker is down."""
        from apps.authz.tasks import persist_audit_event

        try:
            persist_audit_event.apply_async(args=[payload])
        except Exception as e:
            with cls._lock:
                cls._pending.append(payload)
            logger.error(
                "Audit retry queue unavailable, holding event in memory",
                extra={'audit_event_id': payload['id'], 'exception': str(e)},
                exc_info=True
            )
            SecurityLogger.log_audit_sink_unavailable(
                payload['action'],
                attempts=1,
                error=str(e),
                audit_event_id=payload['id'],
            )

    @classmethod
    def pending_count(cls) -> int:
        with cls._lock:
            return len(cls._pending)

    @classmethod
    def flush_pending(cls) -> int:
        """
        Retry payloads held in memory. Returns how many were written.
        """
        with cls._lock:
            batch = list(cls._pending)
            cls._pending.clear()

        written = 0
        for payload in batch:
            try:
                with transaction.atomic():
                    if AuditEvent.objects.filter(pk=payload['id']).exists():
                        continue
                    AuditEvent.create_from_payload(payload)
                written += 1
            except DatabaseError:
                with cls._lock:
                    cls._pending.append(payload)
        return written

    @classmethod
    def list_events(cls, queryset=None, date_from=None, date_to=None, date_range=None,
                    action=None, risk_level=None, company_id=None, search=None):
        """
        Filter audit events, newest first.
        """
        qs = queryset if queryset is not None else AuditEvent.objects.all()
        qs = qs.select_related('actor', 'target_user', 'company')

        if date_range:
            date_from = timezone.now() - DATE_RANGES[date_range]
        qs = qs.in_range(date_from, date_to)

        if action:
            qs = qs.by_action(action)
        if risk_level:
            low, high = score_range(risk_level)
            qs = qs.with_risk_between(low, high)
        if company_id:
            qs = qs.for_company(company_id)
        if search:
            qs = qs.search(search)

        return qs.order_by('-occurred_at')


DATE_RANGES = {
    '24h': timedelta(hours=24),
    '7d': timedelta(days=7),
    '30d': timedelta(days=30),
    '90d': timedelta(days=90),
}
