"""
Login OTPs for laboratory accounts.

Only a salted HMAC of the code is kept, in a Redis hash that expires after
OTP_EXPIRY_MINUTES. Wrong guesses bump an attempt counter; once it reaches
OTP_MAX_ATTEMPTS the record is dropped and the user has to request a new code.
"""

import logging
import re

from django.conf import settings
from django.utils.crypto import constant_time_compare, get_random_string, salted_hmac

from . import redis_client
from .exceptions import NotFoundError, RateLimitError, ValidationError

logger = logging.getLogger(__name__)

ROLE = 'laboratory'
OTP_LENGTH = 6


def normalize_phone(phone):
    """Digits only, one leading 0 stripped. Raises if fewer than 10 digits remain."""
    cleaned = re.sub(r'\D', '', str(phone or ''))
    if cleaned.startswith('0'):
        cleaned = cleaned[1:]
    if len(cleaned) < 10:
        raise ValidationError('Invalid phone number', code='INVALID_PHONE')
    return cleaned


def _key(phone):
    return f"login_otp:{ROLE}:{phone}"


def _hash(otp):
    return salted_hmac('laboratory.otp', str(otp)).hexdigest()


def generate_otp():
    return get_random_string(OTP_LENGTH, allowed_chars='0123456789')


def issue_otp(phone):
    """Store a fresh OTP for an already normalized phone and return the plain code."""
    otp = generate_otp()
    client = redis_client.get_redis_client()
    key = _key(phone)
    client.delete(key)
    client.hset(key, mapping={'otp_hash': _hash(otp), 'attempts': 0})
    client.expire(key, settings.OTP_EXPIRY_MINUTES * 60)
    logger.info("Issued login OTP for %s", phone[-4:].rjust(len(phone), '*'))
    return otp


def verify_otp(phone, otp):
    """Check the code; the record is consumed on success."""
    client = redis_client.get_redis_client()
    key = _key(phone)
    record = client.hgetall(key)

    if not record:
        raise NotFoundError(
            'No login OTP request found. Please request a new OTP.',
            code='OTP_NOT_FOUND',
        )

    if int(record.get('attempts', 0)) >= settings.OTP_MAX_ATTEMPTS:
        client.delete(key)
        raise RateLimitError(
            'Maximum OTP attempts exceeded. Please request a new OTP.',
            code='OTP_ATTEMPTS_EXCEEDED',
        )

    if not otp or not constant_time_compare(_hash(otp), record.get('otp_hash', '')):
        client.hincrby(key, 'attempts', 1)
        raise ValidationError('Invalid OTP. Please try again.', code='OTP_INVALID')

    client.delete(key)
