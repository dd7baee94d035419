"""
Unified exception handler.

Registered as DRF's EXCEPTION_HANDLER. The SPA checks one thing on every
response: a body with a `type` field is an error, anything else is success.

Error body:
{
    "type":    "validation_error" | "auth_error" | "forbidden" | "not_found" | "block" | ...,
    "code":    "OTP_INVALID",
    "message": "Invalid OTP",
    "detail":  { ... }  // optional
}
"""

import logging
import math

from django.http import Http404, JsonResponse
from rest_framework.exceptions import (
    AuthenticationFailed,
    NotAuthenticated,
    NotFound,
    ParseError,
    PermissionDenied as DRFPermissionDenied,
    Throttled,
    ValidationError as DRFValidationError,
)
from rest_framework.views import exception_handler as drf_default_handler

from .exceptions import BaseAppException

logger = logging.getLogger(__name__)


def _error(type_, code, message, status, detail=None):
    body = {
        'type': type_,
        'code': code,
        'message': message,
    }
    if detail is not None:
        body['detail'] = detail
    return JsonResponse(body, status=status)


def unified_exception_handler(exc, context):
    """
    DRF exception handler entry point.

    Order:
    1. BaseAppException and subclasses -> unified body
    2. DRF's own validation / auth / parse / 404 errors -> same body
    3. anything else -> DRF default handling
    """

    # --- 1. our own hierarchy ---
    if isinstance(exc, BaseAppException):
        if exc.http_status >= 500:
            logger.error("Unhandled app error %s: %s", exc.code, exc.message)
        return _error(exc.type, exc.code, exc.message, exc.http_status, exc.detail)

    # --- 2. DRF built-ins ---
    if isinstance(exc, DRFValidationError):
        return _error('validation_error', 'VALIDATION_ERROR', 'Request validation failed', 400, exc.detail)

    if isinstance(exc, ParseError):
        return _error('validation_error', 'PARSE_ERROR', str(exc.detail), 400)

    if isinstance(exc, (NotAuthenticated, AuthenticationFailed)):
        return _error('auth_error', 'AUTH_REQUIRED', str(exc.detail), 401)

    if isinstance(exc, DRFPermissionDenied):
        return _error('forbidden', 'FORBIDDEN', str(exc.detail), 403)

    if isinstance(exc, Throttled):
        wait = math.ceil(exc.wait) if exc.wait is not None else None
        response = _error('rate_limit', 'THROTTLED', 'Too many requests. Please try again later.', 429,
                          {'retry_after': wait})
        if wait is not None:
            response['Retry-After'] = str(wait)
        return response

    if isinstance(exc, (Http404, NotFound)):
        return _error('not_found', 'NOT_FOUND', 'Not found', 404)

    # --- 3. everything else ---
    return drf_default_handler(exc, context)
