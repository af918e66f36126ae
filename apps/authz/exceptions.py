"""
Authorization error taxonomy.

Denials (Unauthorized, CrossTenant, InsufficientAuthority,
RequiredModuleProtected, CompanyModuleDisabled, InvalidChange) are
deterministic and never retried. ConcurrentModification is retryable by the
caller after re-reading effective state. PersistenceFailure is retried
internally before surfacing. AuditSinkUnavailable never reaches end users.
"""
from rest_framework import status

from apps.core.exceptions import ServiceException


class Unauthorized(ServiceException):
    code = 'unauthorized'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'You are not allowed to change access for other users.'


class CrossTenant(ServiceException):
    code = 'cross_tenant'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'The target is outside your company.'


class InsufficientAuthority(ServiceException):
    code = 'insufficient_authority'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'This change requires a higher role than yours.'


class RequiredModuleProtected(ServiceException):
    code = 'required_module_protected'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'Required modules cannot be disabled.'


class CompanyModuleDisabled(ServiceException):
    code = 'company_module_disabled'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'This module is not enabled for the company.'


class InvalidChange(ServiceException):
    code = 'invalid_change'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'The change refers to an unknown permission, module or value.'


class ValidationFailed(ServiceException):
    code = 'validation_failed'
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = 'One or more changes were rejected.'

    def __init__(self, message=None, details=None, rejected=None):
        self.rejected = list(rejected or [])
        if details is None and self.rejected:
            details = {'rejected': [r.to_dict() for r in self.rejected]}
        super().__init__(message, details)


class ConcurrentModification(ServiceException):
    code = 'concurrent_modification'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Access changed since it was loaded. Reload and try again.'


class PersistenceFailure(ServiceException):
    code = 'persistence_failure'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = 'The change could not be saved. Try again later.'


class AuditSinkUnavailable(ServiceException):
    code = 'audit_sink_unavailable'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = 'Audit storage is unavailable.'


class TemplateNotFound(ServiceException):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found or not permitted.'


class UserNotFound(ServiceException):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found or not permitted.'


class CompanyNotFound(ServiceException):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found or not permitted.'


DENIAL_EXCEPTIONS = {
    exc.code: exc
    for exc in (
        Unauthorized, CrossTenant, InsufficientAuthority, RequiredModuleProtected,
        CompanyModuleDisabled, InvalidChange,
    )
}

# Stable human-readable reason for every denial code
DENIAL_MESSAGES = {code: exc.default_message for code, exc in DENIAL_EXCEPTIONS.items()}


def denial_for(code, message=None, details=None):
    """Build the exception instance that corresponds to a denial code."""
    return DENIAL_EXCEPTIONS[code](message, details)
