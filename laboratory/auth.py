"""
Bearer token auth for laboratory accounts.

Tokens are HS256 JWTs:
  sub   laboratory id
  role  'laboratory'
  type  'access' | 'refresh'
  jti   unique id, used for revocation
  iat / exp / iss

Revoked jtis live in Redis until the token would have expired anyway.
"""

import logging
import time
import uuid
from datetime import timedelta

import jwt
from django.conf import settings
from rest_framework.authentication import BaseAuthentication
from rest_framework.permissions import BasePermission

from . import redis_client
from .exceptions import AuthenticationError, PermissionDenied
from .models import Laboratory

logger = logging.getLogger(__name__)

ALGORITHM = 'HS256'
ROLE = 'laboratory'
ACCESS = 'access'
REFRESH = 'refresh'


def _lifetime(token_type):
    if token_type == REFRESH:
        return timedelta(days=settings.JWT_REFRESH_TTL_DAYS)
    return timedelta(minutes=settings.JWT_ACCESS_TTL_MINUTES)


def encode_token(laboratory_id, token_type=ACCESS):
    now = int(time.time())
    payload = {
        'sub': str(laboratory_id),
        'role': ROLE,
        'type': token_type,
        'jti': uuid.uuid4().hex,
        'iat': now,
        'exp': now + int(_lifetime(token_type).total_seconds()),
        'iss': settings.JWT_ISSUER,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def issue_token_pair(laboratory):
    return {
        'access_token': encode_token(laboratory.id, ACCESS),
        'refresh_token': encode_token(laboratory.id, REFRESH),
    }


def _revoked_key(jti):
    return f"revoked_token:{jti}"


def is_revoked(jti):
    return bool(redis_client.get_redis_client().exists(_revoked_key(jti)))


def revoke(payload):
    """Blacklist a decoded token until its own expiry."""
    ttl = int(payload.get('exp', 0) - time.time())
    if ttl <= 0:
        return
    redis_client.get_redis_client().set(_revoked_key(payload['jti']), '1', ex=ttl)
    logger.info("Revoked %s token %s", payload.get('type'), payload['jti'])


def decode_token(token, expected_type=ACCESS):
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[ALGORITHM],
            issuer=settings.JWT_ISSUER,
            options={'require': ['exp', 'iat', 'sub', 'jti']},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError('Token has expired', code='TOKEN_EXPIRED')
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token: %s", e)
        raise AuthenticationError('Invalid token', code='TOKEN_INVALID')

    if payload.get('type') != expected_type:
        raise AuthenticationError('Invalid token type', code='TOKEN_INVALID')
    if is_revoked(payload['jti']):
        raise AuthenticationError('Token has been revoked', code='TOKEN_REVOKED')
    return payload


def rotate_refresh_token(refresh_token):
    """Exchange a refresh token for a new pair; the old refresh token is revoked."""
    if not refresh_token:
        raise AuthenticationError('Refresh token is required', code='TOKEN_INVALID')
    payload = decode_token(refresh_token, expected_type=REFRESH)
    laboratory = _load_laboratory(payload)
    revoke(payload)
    return laboratory, issue_token_pair(laboratory)


def _load_laboratory(payload):
    if payload.get('role') != ROLE:
        raise PermissionDenied('This route is only available to laboratories', code='ROLE_FORBIDDEN')
    laboratory = Laboratory.objects.filter(id=payload['sub']).first()
    if laboratory is None:
        raise AuthenticationError('Account not found', code='ACCOUNT_NOT_FOUND')
    return laboratory


class BearerTokenAuthentication(BaseAuthentication):
    """
    `Authorization: Bearer <jwt>`.

    Returns (laboratory, payload). A request without the header stays
    anonymous and is rejected by IsApprovedLaboratory.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        header = request.META.get('HTTP_AUTHORIZATION', '')
        if not header:
            return None

        parts = header.split()
        if len(parts) != 2 or parts[0] != self.keyword:
            raise AuthenticationError('Invalid authorization header', code='TOKEN_INVALID')

        payload = decode_token(parts[1], expected_type=ACCESS)
        return _load_laboratory(payload), payload

    def authenticate_header(self, request):
        return self.keyword


class IsApprovedLaboratory(BasePermission):

    def has_permission(self, request, view):
        laboratory = request.user
        if laboratory is None:
            raise AuthenticationError('Authentication required', code='AUTH_REQUIRED')
        if not laboratory.is_active:
            raise PermissionDenied('Account is inactive. Please contact support.', code='ACCOUNT_INACTIVE')
        if laboratory.status != 'approved':
            raise PermissionDenied(
                'Account pending admin approval. Please wait for confirmation.',
                code='ACCOUNT_NOT_APPROVED',
            )
        return True
