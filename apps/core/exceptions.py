"""
Service exception base class and the DRF exception handler.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class ServiceException(Exception):
    """
    Base exception for domain errors raised by service layers.

    Subclasses set ``code`` (stable, machine readable) and ``status_code``
    (the HTTP status used when the error reaches the API).
    """
    code = 'service_error'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Request could not be completed'

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        return {
            'error': self.message,
            'code': self.code,
            'details': self.details,
        }


def custom_exception_handler(exc, context):
    """
    Render ServiceException subclasses in a consistent format and log every
    API exception with request context.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, ServiceException):
        logger.warning(
            f"Service exception: {exc.__class__.__name__}",
            extra={
                'code': exc.code,
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        data = exc.to_dict()
        data['request_id'] = request_id
        return Response(data, status=exc.status_code)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        return Response(
            {
                'error': 'Internal server error',
                'code': 'internal_error',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
