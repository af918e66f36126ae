"""
Tests for the API exception handler.
"""
from rest_framework.exceptions import NotFound

from apps.core.exceptions import ServiceException, custom_exception_handler


class Conflict(ServiceException):
    code = 'conflict'
    status_code = 409
    default_message = 'Conflicting update.'


class TestCustomExceptionHandler:

    def context(self, rf):
        request = rf.post('/v1/authz/changes/commit')
        request.request_id = 'req-9'
        return {'request': request}

    def test_service_exception_format(self, rf):
        response = custom_exception_handler(Conflict(details={'target_id': 'u1'}), self.context(rf))

        assert response.status_code == 409
        assert response.data == {
            'error': 'Conflicting update.',
            'code': 'conflict',
            'details': {'target_id': 'u1'},
            'request_id': 'req-9',
        }

    def test_custom_message(self):
        assert Conflict('Reload first').to_dict()['error'] == 'Reload first'

    def test_drf_exception_gets_request_id(self, rf):
        response = custom_exception_handler(NotFound(), self.context(rf))

        assert response.status_code == 404
        assert response.data['request_id'] == 'req-9'

    def test_unhandled_exception_is_500(self, rf):
        response = custom_exception_handler(RuntimeError('boom'), self.context(rf))

        assert response.status_code == 500
        assert response.data['code'] == 'internal_error'
        assert 'boom' not in str(response.data)
