"""
Core middleware for request processing.
"""
import uuid
import logging
import threading
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

_local = threading.local()


def get_current_request_id():
    """Return the request id bound to the current thread, if any."""
    return getattr(_local, 'request_id', None)


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object and to log records.
    """

    def process_request(self, request):
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id
        _local.request_id = request_id

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        _local.request_id = None
        return response


class LoggingFilter(logging.Filter):
    """
    Add request_id from thread-local storage to log records.
    """

    def filter(self, record):
        request_id = get_current_request_id()
        if request_id and not hasattr(record, 'request_id'):
            record.request_id = request_id
        return True
