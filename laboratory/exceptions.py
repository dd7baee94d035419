"""
Unified exception hierarchy.

Every business exception inherits BaseAppException and carries:
- type:        error kind (validation_error / auth_error / not_found / block / ...)
- code:        business error code (OTP_INVALID, ORDER_STATUS_FINAL, ...)
- message:     human readable description
- detail:      optional extra payload (dict / list / None)
- http_status: HTTP status code

Views and services only raise; exception_handler formats the response.
"""


class BaseAppException(Exception):
    """Base class for all business exceptions."""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """Input validation failed. 400."""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class AuthenticationError(BaseAppException):
    """Missing, malformed, expired or revoked token. 401."""

    type = 'auth_error'
    code = 'AUTH_REQUIRED'
    http_status = 401


class PermissionDenied(BaseAppException):
    """Authenticated, but the account may not do this. 403."""

    type = 'forbidden'
    code = 'FORBIDDEN'
    http_status = 403


class NotFoundError(BaseAppException):
    """Resource missing or owned by another laboratory. 404."""

    type = 'not_found'
    code = 'NOT_FOUND'
    http_status = 404


class BlockError(BaseAppException):
    """A business rule blocks the operation. 409."""

    type = 'block'
    code = 'BUSINESS_BLOCK'
    http_status = 409


class WarningError(BaseAppException):
    """
    Business warning that needs user confirmation.

    Not a failure but a pause: the client shows the warnings and
    resubmits with confirm=true.
    """

    type = 'warning'
    code = 'CONFIRMATION_REQUIRED'
    http_status = 409


class RateLimitError(BaseAppException):
    """Too many attempts. 429."""

    type = 'rate_limit'
    code = 'TOO_MANY_ATTEMPTS'
    http_status = 429
