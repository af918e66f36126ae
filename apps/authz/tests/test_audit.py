"""
Tests for audit recording, the retry task and audit listing.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.db import DatabaseError, OperationalError
from django.utils import timezone

from apps.core.models import AppendOnlyViolation
from apps.authz.audit import AuditRecorder, origin_from_request
from apps.authz.models import AuditAction, AuditEvent
from apps.authz.risk import score_event
from apps.authz.tasks import flush_pending_audit_events, persist_audit_event


@pytest.mark.django_db
class TestAuditRecorder:

    def test_record_writes_scored_event(self, admin_user, plain_user):
        payload = AuditRecorder.record(
            AuditAction.PERMISSION_GRANTED,
            actor=admin_user,
            target_user=plain_user,
            company=admin_user.company,
            resource='expenses.approve',
            before=False,
            after=True,
        )

        event = AuditEvent.objects.get(pk=payload['id'])
        assert event.action == AuditAction.PERMISSION_GRANTED
        assert event.company_id == admin_user.company_id
        assert event.risk_score == payload['risk_score']
        assert 'risk_context' in event.details

    def test_stored_context_replays_stored_score(self, admin_user, plain_user):
        payload = AuditRecorder.record(
            AuditAction.ROLE_CHANGED,
            actor=admin_user,
            target_user=plain_user,
            resource='role',
            risk_factors={'role_before': 'user', 'role_after': 'admin'},
        )

        event = AuditEvent.objects.get(pk=payload['id'])
        assert score_event(event.action, event.details['risk_context']) == event.risk_score

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            AuditRecorder.build_payload('made_up_action')

    def test_prior_failed_logins_feed_score(self, plain_user):
        for _ in range(3):
            AuditRecorder.record(AuditAction.LOGIN_FAILED, target_user=plain_user)

        payload = AuditRecorder.build_payload(AuditAction.LOGIN_FAILED, target_user=plain_user)
        assert payload['details']['risk_context']['prior_failed_logins'] == 3

    def test_events_are_append_only(self, admin_user):
        payload = AuditRecorder.record(AuditAction.LOGIN_SUCCESS, actor=admin_user, target_user=admin_user)
        event = AuditEvent.objects.get(pk=payload['id'])

        with pytest.raises(AppendOnlyViolation):
            event.save()
        with pytest.raises(AppendOnlyViolation):
            event.delete()
        with pytest.raises(AppendOnlyViolation):
            AuditEvent.objects.filter(pk=event.pk).update(resource='tampered')
        with pytest.raises(AppendOnlyViolation):
            AuditEvent.objects.all().delete()

    def test_failed_write_is_persisted_by_task(self, admin_user):
        original = AuditEvent.create_from_payload.__func__
        calls = {'count': 0}

        def fail_once(cls, payload):
            calls['count'] += 1
            if calls['count'] == 1:
                raise DatabaseError('database is locked')
            return original(cls, payload)

        with patch.object(AuditEvent, 'create_from_payload', classmethod(fail_once)):
            payload = AuditRecorder.record(AuditAction.LOGIN_SUCCESS, actor=admin_user, target_user=admin_user)

        assert AuditEvent.objects.filter(pk=payload['id']).exists()
        assert AuditRecorder.pending_count() == 0

    def test_unreachable_broker_holds_event_in_memory(self, admin_user):
        with patch.object(AuditEvent, 'create_from_payload', side_effect=DatabaseError('down')), \
                patch('apps.authz.tasks.persist_audit_event.apply_async', side_effect=ConnectionError('broker down')), \
                patch('apps.authz.audit.SecurityLogger.log_audit_sink_unavailable') as escalate:
            payload = AuditRecorder.record(AuditAction.LOGIN_SUCCESS, actor=admin_user, target_user=admin_user)

        assert AuditRecorder.pending_count() == 1
        escalate.assert_called_once()

        assert AuditRecorder.flush_pending() == 1
        assert AuditRecorder.pending_count() == 0
        assert AuditEvent.objects.filter(pk=payload['id']).exists()

    def test_flush_keeps_events_that_still_fail(self, admin_user):
        payload = AuditRecorder.build_payload(AuditAction.LOGIN_SUCCESS, actor=admin_user)
        AuditRecorder._pending.append(payload)

        with patch.object(AuditEvent, 'create_from_payload', side_effect=DatabaseError('down')):
            assert AuditRecorder.flush_pending() == 0

        assert AuditRecorder.pending_count() == 1

    def test_unreadable_history_does_not_block_recording(self, admin_user, plain_user):
        with patch.object(AuditRecorder, 'prior_failed_logins', side_effect=OperationalError('db gone')):
            payload = AuditRecorder.record(
                AuditAction.PERMISSION_GRANTED, actor=admin_user, target_user=plain_user,
                resource='expenses.approve', before=False, after=True,
            )

        event = AuditEvent.objects.get(pk=payload['id'])
        context = event.details['risk_context']
        assert context['failed_login_history_unavailable'] is True
        assert event.risk_score == score_event(event.action, context)

    def test_database_outage_queues_event(self, admin_user, plain_user):
        with patch.object(AuditRecorder, 'prior_failed_logins', side_effect=OperationalError('db gone')), \
                patch.object(AuditEvent, 'create_from_payload', side_effect=OperationalError('db gone')), \
                patch('apps.authz.tasks.persist_audit_event.apply_async') as retry:
            payload = AuditRecorder.record(AuditAction.PERMISSION_GRANTED, actor=admin_user, target_user=plain_user)

        retry.assert_called_once_with(args=[payload])
        assert not AuditEvent.objects.filter(pk=payload['id']).exists()

    def test_next_successful_write_drains_held_events(self, admin_user):
        held = AuditRecorder.build_payload(AuditAction.LOGIN_FAILED, target_user=admin_user)
        AuditRecorder._pending.append(held)

        AuditRecorder.record(AuditAction.LOGIN_SUCCESS, actor=admin_user, target_user=admin_user)

        assert AuditRecorder.pending_count() == 0
        assert AuditEvent.objects.filter(pk=held['id']).exists()

    def test_flush_skips_events_already_written(self, admin_user):
        payload = AuditRecorder.record(AuditAction.LOGIN_SUCCESS, actor=admin_user)
        AuditRecorder._pending.append(payload)

        assert AuditRecorder.flush_pending() == 0
        assert AuditRecorder.pending_count() == 0
        assert AuditEvent.objects.filter(pk=payload['id']).count() == 1


@pytest.mark.django_db
class TestFlushPendingAuditEventsTask:

    def test_writes_held_events(self, admin_user):
        payload = AuditRecorder.build_payload(AuditAction.LOGIN_SUCCESS, actor=admin_user)
        AuditRecorder._pending.append(payload)

        result = flush_pending_audit_events.apply().get()

        assert result == {'written': 1, 'remaining': 0}
        assert AuditEvent.objects.filter(pk=payload['id']).exists()

    def test_escalates_events_that_stay_held(self, admin_user):
        AuditRecorder._pending.append(AuditRecorder.build_payload(AuditAction.LOGIN_SUCCESS, actor=admin_user))

        with patch.object(AuditEvent, 'create_from_payload', side_effect=DatabaseError('down')), \
                patch('apps.authz.tasks.SecurityLogger.log_audit_sink_unavailable') as escalate:
            result = flush_pending_audit_events.apply().get()

        assert result == {'written': 0, 'remaining': 1}
        escalate.assert_called_once()
        assert escalate.call_args.kwargs['remaining'] == 1

    def test_nothing_held(self):
        assert flush_pending_audit_events.apply().get() == {'written': 0, 'remaining': 0}


        assert AuditRecorder.pending_count() == 1


@pytest.mark.django_db
class TestPersistAuditEventTask:

    def test_persists_payload(self, admin_user):
        payload = AuditRecorder.build_payload(AuditAction.LOGIN_SUCCESS, actor=admin_user)
        result = persist_audit_event.apply(args=[payload]).get()

        assert result == {'status': 'persisted', 'id': payload['id']}
        assert AuditEvent.objects.filter(pk=payload['id']).exists()

    def test_duplicate_is_not_written_twice(self, admin_user):
        payload = AuditRecorder.record(AuditAction.LOGIN_SUCCESS, actor=admin_user)
        result = persist_audit_event.apply(args=[payload]).get()

        assert result['status'] == 'duplicate'
        assert AuditEvent.objects.filter(pk=payload['id']).count() == 1

    def test_escalates_after_retries(self, admin_user, settings):
        settings.AUTHZ_AUDIT_RETRY_BACKOFF = 0
        payload = AuditRecorder.build_payload(AuditAction.LOGIN_SUCCESS, actor=admin_user)

        with patch.object(AuditEvent, 'create_from_payload', side_effect=DatabaseError('down')), \
                patch('apps.authz.tasks.SecurityLogger.log_audit_sink_unavailable') as escalate:
            result = persist_audit_event.apply(args=[payload]).get()

        assert result['status'] == 'escalated'
        escalate.assert_called_once()
        assert escalate.call_args.kwargs['audit_event_id'] == payload['id']
        assert not AuditEvent.objects.filter(pk=payload['id']).exists()


@pytest.mark.django_db
class TestAuditListing:

    @pytest.fixture
    def events(self, admin_user, plain_user, other_admin):
        now = timezone.now()
        return {
            'recent_grant': AuditRecorder.record(
                AuditAction.PERMISSION_GRANTED, actor=admin_user, target_user=plain_user,
                company=admin_user.company_id, resource='expenses.approve',
                occurred_at=now - timedelta(hours=1),
                risk_factors={'prior_failed_logins': 0},
            ),
            'old_denial': AuditRecorder.record(
                AuditAction.ACCESS_DENIED, actor=admin_user, target_user=plain_user,
                company=admin_user.company_id, resource='billing.super_override',
                occurred_at=now - timedelta(days=10),
                risk_factors={'cross_tenant': True, 'super_tier': True},
            ),
            'other_company': AuditRecorder.record(
                AuditAction.ROLE_CHANGED, actor=other_admin, target_user=other_admin,
                company=other_admin.company_id, resource='role',
                occurred_at=now - timedelta(hours=2),
            ),
        }

    def ids(self, qs):
        return {str(pk) for pk in qs.values_list('id', flat=True)}

    def test_date_range(self, events):
        assert self.ids(AuditRecorder.list_events(date_range='24h')) == {
            events['recent_grant']['id'], events['other_company']['id'],
        }
        assert len(self.ids(AuditRecorder.list_events(date_range='30d'))) == 3

    def test_action_filter(self, events):
        assert self.ids(AuditRecorder.list_events(action=AuditAction.ACCESS_DENIED)) == {events['old_denial']['id']}

    def test_company_filter(self, events, other_admin):
        assert self.ids(AuditRecorder.list_events(company_id=other_admin.company_id)) == {
            events['other_company']['id'],
        }

    def test_risk_level_filter(self, events):
        assert events['old_denial']['id'] in self.ids(AuditRecorder.list_events(risk_level='high'))
        assert events['recent_grant']['id'] not in self.ids(AuditRecorder.list_events(risk_level='high'))

    def test_search_by_resource_and_email(self, events):
        assert self.ids(AuditRecorder.list_events(search='billing')) == {events['old_denial']['id']}
        assert self.ids(AuditRecorder.list_events(search='globex.test')) == {events['other_company']['id']}

    def test_newest_first(self, events):
        ordered = [str(pk) for pk in AuditRecorder.list_events().values_list('id', flat=True)]
        assert ordered[-1] == events['old_denial']['id']


class TestOriginFromRequest:

    def test_forwarded_for_wins(self, rf):
        request = rf.get('/', HTTP_X_FORWARDED_FOR='198.51.100.1, 10.0.0.1', HTTP_USER_AGENT='curl/8')
        request.request_id = 'abc'

        assert origin_from_request(request) == {
            'ip_address': '198.51.100.1', 'user_agent': 'curl/8', 'request_id': 'abc',
        }

    def test_none_request(self):
        assert origin_from_request(None) == {}
