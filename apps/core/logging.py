"""
Structured JSON logging, PII masking and security event logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone

from apps.core.sentry_utils import capture_message


class PIIMasker:
    """
    Utility class to mask sensitive data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )
    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9\-_.=]+')

    # Field names whose values are always replaced
    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd',
        'token', 'access_token', 'refresh_token', 'authorization',
        'secret', 'secret_key', 'jwt_secret_key',
        'email', 'user_email', 'actor_email', 'target_email',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses, keeping the first character and domain."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            if len(username) > 1:
                username = username[0] + '*' * (len(username) - 1)
            return f"{username}@{domain}"

        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask tokens, passwords and bearer credentials."""
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub('Bearer ********', text)
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value and not isinstance(value, (dict, list)) else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            else:
                masked[key] = cls.mask_text(value)

        return masked


# Standard LogRecord attributes that are not copied as extra fields
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info', 'taskName',
    'request_id', 'company_id', 'task_id', 'task_name',
}


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.

    request_id, company_id and Celery task identifiers are promoted to top
    level keys; other extra fields are copied after PII masking.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for attr in ('request_id', 'company_id', 'task_id', 'task_name'):
            if getattr(record, attr, None) is not None:
                log_data[attr] = str(getattr(record, attr))

        if record.exc_info and record.exc_info[0]:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [
                    PIIMasker.mask_text(line)
                    for line in traceback.format_exception(*record.exc_info)
                ],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if key.lower() in PIIMasker.SENSITIVE_FIELDS and value:
                log_data[key] = '********'
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging for authorization-relevant security events.

    Every event goes to the ``security`` logger with structured context.
    Critical events are also sent to Sentry so they alert operators.
    """

    CRITICAL_EVENTS = {
        'cross_tenant_attempt',
        'privilege_escalation_attempt',
        'audit_sink_unavailable',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g. 'cross_tenant_attempt')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context (actor_id, company_id, ip_address, ...)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra={'security': log_data})

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            capture_message(
                f"Critical security event: {event_type}",
                level='error',
                security={key: value for key, value in log_data.items() if key != 'timestamp'},
            )

    @staticmethod
    def log_failed_login(email: str, ip_address: str = None, user_agent: str = None,
                         reason: str = None):
        """Log a failed login attempt."""
        SecurityLogger.log_event(
            'failed_login',
            level='warning',
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            reason=reason
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str = None, user_email: str = None,
                                limit: str = None):
        """Log a rate limit violation."""
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            user_email=user_email,
            limit=limit
        )

    @staticmethod
    def log_denied_change(code: str, actor_id: str, target_id: str = None,
                          company_id: str = None, change_type: str = None,
                          key: str = None):
        """
        Log a change rejected by the access validator.

        Only cross-tenant and authority denials are security events; other
        denial codes are logged at info level.
        """
        event_type = {
            'cross_tenant': 'cross_tenant_attempt',
            'insufficient_authority': 'privilege_escalation_attempt',
            'required_module_protected': 'required_module_disable_attempt',
        }.get(code, 'change_denied')

        SecurityLogger.log_event(
            event_type,
            level='warning' if event_type in SecurityLogger.CRITICAL_EVENTS else 'info',
            denial_code=code,
            actor_id=actor_id,
            target_id=target_id,
            company_id=company_id,
            change_type=change_type,
            key=key,
        )

    @staticmethod
    def log_audit_sink_unavailable(action: str, attempts: int, error: str = None, **context):
        """
        Escalate an audit event that could not be persisted after retries.
        """
        SecurityLogger.log_event(
            'audit_sink_unavailable',
            level='critical',
            action=action,
            attempts=attempts,
            error=error,
            **context
        )
