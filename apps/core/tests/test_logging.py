"""
Tests for structured logging, PII masking and security events.
"""
import json
import logging
import sys
from unittest.mock import patch

from apps.core.logging import JSONFormatter, PIIMasker, SecurityLogger


class TestPIIMasker:

    def test_mask_email(self):
        masked = PIIMasker.mask_email('Contact admin@acme.test now')
        assert masked == 'Contact a****@acme.test now'

    def test_mask_secrets(self):
        masked = PIIMasker.mask_secrets('password="hunter2" and Bearer abc.def.ghi')
        assert 'hunter2' not in masked
        assert 'abc.def.ghi' not in masked
        assert 'Bearer ********' in masked

    def test_mask_dict_replaces_sensitive_fields(self):
        masked = PIIMasker.mask_dict({
            'email': 'user@acme.test',
            'actor_id': '42',
            'nested': {'token': 'abc', 'note': 'mail root@platform.test'},
            'items': [{'password': 'x'}, 'plain'],
        })

        assert masked['email'] == '********'
        assert masked['actor_id'] == '42'
        assert masked['nested']['token'] == '********'
        assert masked['nested']['note'] == 'mail r***@platform.test'
        assert masked['items'] == [{'password': '********'}, 'plain']

    def test_non_strings_pass_through(self):
        assert PIIMasker.mask_text(7) == 7
        assert PIIMasker.mask_dict(None) is None


class TestJSONFormatter:

    def make_record(self, msg='hello', exc_info=None, **extra):
        record = logging.LogRecord('authz', logging.INFO, __file__, 10, msg, None, exc_info)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_promotes_context_and_masks_extras(self):
        record = self.make_record(
            'Login by user@acme.test', request_id='req-1', company_id='c-1',
            user_email='user@acme.test', details={'secret': 'x', 'count': 2},
        )
        data = json.loads(JSONFormatter().format(record))

        assert data['message'] == 'Login by u***@acme.test'
        assert data['request_id'] == 'req-1'
        assert data['company_id'] == 'c-1'
        assert data['user_email'] == '********'
        assert data['details'] == {'secret': '********', 'count': 2}

    def test_unserializable_extra_is_stringified(self):
        data = json.loads(JSONFormatter().format(self.make_record(thing=object())))
        assert data['thing'].startswith('<object object')

    def test_exception_info(self):
        try:
            raise ValueError('bad value for user@acme.test')
        except ValueError:
            record = self.make_record('failed', exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))
        assert data['exception']['type'] == 'ValueError'
        assert 'user@acme.test' not in data['exception']['message']

    def test_empty_exception_info(self):
        data = json.loads(JSONFormatter().format(self.make_record(exc_info=(None, None, None))))
        assert 'exception' not in data


class TestSecurityLogger:

    def test_denials_map_to_event_types(self):
        with patch.object(SecurityLogger, 'log_event') as log_event:
            SecurityLogger.log_denied_change('cross_tenant', actor_id='a')
            SecurityLogger.log_denied_change('insufficient_authority', actor_id='a')
            SecurityLogger.log_denied_change('invalid_change', actor_id='a')

        event_types = [c.args[0] for c in log_event.call_args_list]
        assert event_types == ['cross_tenant_attempt', 'privilege_escalation_attempt', 'change_denied']
        assert log_event.call_args_list[2].kwargs['level'] == 'info'

    def test_critical_events_reach_sentry(self):
        with patch('apps.core.logging.capture_message') as capture:
            SecurityLogger.log_audit_sink_unavailable('role_changed', attempts=6, error='down')
            SecurityLogger.log_failed_login('user@acme.test', reason='invalid_password')

        capture.assert_called_once()
        assert capture.call_args.kwargs['security']['event_type'] == 'audit_sink_unavailable'

    def test_event_context_is_masked(self):
        with patch('apps.core.logging.logging.getLogger') as get_logger:
            SecurityLogger.log_failed_login('user@acme.test', ip_address='203.0.113.9')

        get_logger.assert_called_once_with('security')
        security = get_logger.return_value.warning.call_args.kwargs['extra']['security']
        assert security['email'] == '********'
        assert security['ip_address'] == '203.0.113.9'
