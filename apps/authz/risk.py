"""
Deterministic risk scoring for audit events.

``score_event`` depends only on its arguments: replaying an event's stored
``details['risk_context']`` reproduces the stored score.
"""
from typing import Any, Dict, Mapping, Optional, Tuple

from django.conf import settings
from django.utils.dateparse import parse_datetime

from apps.authz.roles import Role, authority

MAX_SCORE = 10
MIN_SCORE = 0

HIGH_THRESHOLD = 7
MEDIUM_THRESHOLD = 4

RISK_LEVELS = ('low', 'medium', 'high')

BASE_WEIGHTS = {
    'permission_checked': 0,
    'login_success': 0,
    'template_created': 1,
    'template_updated': 1,
    'template_deleted': 1,
    'permission_granted': 2,
    'permission_revoked': 2,
    'module_enabled': 2,
    'module_disabled': 2,
    'login_failed': 2,
    'company_module_enabled': 3,
    'company_module_disabled': 3,
    'access_denied': 3,
    'role_changed': 4,
    'company_changed': 4,
}

OUT_OF_HOURS_WEIGHT = 2
FAILED_LOGIN_CAP = 4
REPEATED_FAILURES_THRESHOLD = 3
REPEATED_FAILURES_WEIGHT = 2
ROLE_ELEVATION_WEIGHT = 3
SUPER_ADMIN_ELEVATION_WEIGHT = 2
CROSS_TENANT_WEIGHT = 4
SUPER_TIER_WEIGHT = 3
SENSITIVE_PERMISSION_WEIGHT = 2
NO_OP_ADJUSTMENT = -2


def business_hours(context: Optional[Mapping[str, Any]] = None) -> Tuple[int, int]:
    """Start and end hour, from the context when recorded there, else settings."""
    if context and context.get('business_hours'):
        start, end = context['business_hours']
        return int(start), int(end)
    start, end = getattr(settings, 'AUTHZ_BUSINESS_HOURS', (6, 22))
    return int(start), int(end)


def _event_hour(context: Mapping[str, Any]) -> Optional[int]:
    if context.get('hour') is not None:
        return int(context['hour'])
    occurred_at = context.get('occurred_at')
    if isinstance(occurred_at, str):
        occurred_at = parse_datetime(occurred_at)
    return occurred_at.hour if occurred_at is not None else None


def score_event(action: str, context: Optional[Mapping[str, Any]] = None) -> int:
    """
    Score an event from 0 to 10.

    Recognised context keys:
        hour / occurred_at: event time (UTC)
        business_hours: (start, end) hours; events outside [start, end) are out of hours
        prior_failed_logins: failed logins for the target in the look-back window
        role_before / role_after: roles around a role change
        cross_tenant: a cross-tenant attempt was blocked
        super_tier: a super-tier permission or module is involved
        sensitive: a sensitive permission is involved
        is_noop: the change had no effect
        failed_login_history_unavailable: informational; history could not be read
    """
    context = context or {}
    score = BASE_WEIGHTS.get(action, 0)

    hour = _event_hour(context)
    if hour is not None:
        start, end = business_hours(context)
        if hour < start or hour >= end:
            score += OUT_OF_HOURS_WEIGHT

    failures = int(context.get('prior_failed_logins') or 0)
    if action == 'login_failed':
        score += min(failures, FAILED_LOGIN_CAP)
    elif failures >= REPEATED_FAILURES_THRESHOLD:
        score += REPEATED_FAILURES_WEIGHT

    role_before = context.get('role_before')
    role_after = context.get('role_after')
    if role_before and role_after and authority(role_after) > authority(role_before):
        score += ROLE_ELEVATION_WEIGHT
        if role_after == Role.SUPER_ADMIN:
            score += SUPER_ADMIN_ELEVATION_WEIGHT

    if context.get('cross_tenant'):
        score += CROSS_TENANT_WEIGHT
    if context.get('super_tier'):
        score += SUPER_TIER_WEIGHT
    if context.get('sensitive'):
        score += SENSITIVE_PERMISSION_WEIGHT
    if context.get('is_noop'):
        score += NO_OP_ADJUSTMENT

    return max(MIN_SCORE, min(MAX_SCORE, score))


def risk_level(score: int) -> str:
    """Bucket a score into low, medium or high."""
    if score >= HIGH_THRESHOLD:
        return 'high'
    if score >= MEDIUM_THRESHOLD:
        return 'medium'
    return 'low'


def score_range(level: str) -> Tuple[int, int]:
    """Inclusive score bounds of a risk level, for filtering."""
    return {
        'low': (MIN_SCORE, MEDIUM_THRESHOLD - 1),
        'medium': (MEDIUM_THRESHOLD, HIGH_THRESHOLD - 1),
        'high': (HIGH_THRESHOLD, MAX_SCORE),
    }[level]


def build_context(occurred_at=None, **factors) -> Dict[str, Any]:
    """
    Assemble a JSON-serialisable risk context.

    The business hours in force are stored with the context so that a later
    settings change does not alter replayed scores.
    """
    context = {key: value for key, value in factors.items() if value not in (None, False)}
    if occurred_at is not None:
        context['hour'] = occurred_at.hour
    context['business_hours'] = list(business_hours())
    return context
