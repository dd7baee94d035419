"""
Laboratory sign-up, OTP login, token refresh, profile and logout.
"""

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from . import auth, otp
from .exceptions import BlockError, NotFoundError, PermissionDenied, ValidationError
from .models import Laboratory

logger = logging.getLogger(__name__)

# request key (SPA camelCase accepted too) -> model field
PROFILE_FIELDS = {
    'lab_name': ('lab_name', 'labName'),
    'owner_name': ('owner_name', 'ownerName'),
    'gst_number': ('gst_number', 'gstNumber'),
    'gender': ('gender',),
    'bio': ('bio',),
    'address': ('address',),
    'timings': ('timings',),
    'operating_hours': ('operating_hours', 'operatingHours'),
    'contact_person': ('contact_person', 'contactPerson'),
}
JSON_DICT_FIELDS = ('address', 'operating_hours', 'contact_person')


def _pick(data, keys):
    for key in keys:
        if key in data:
            return True, data[key]
    return False, None


def _profile_updates(data):
    updates = {}
    for field, keys in PROFILE_FIELDS.items():
        found, value = _pick(data, keys)
        if not found:
            continue
        if field == 'timings':
            value = value if isinstance(value, list) else ([value] if value else [])
        elif field in JSON_DICT_FIELDS:
            if value is None:
                value = {}
            if not isinstance(value, dict):
                raise ValidationError(f'{field} must be an object', code='VALIDATION_ERROR', detail={'field': field})
        else:
            value = str(value or '').strip()
        updates[field] = value
    return updates


def _taken(email, phone, license_number):
    if Laboratory.objects.filter(email__iexact=email).exists():
        return BlockError('Email already registered.', code='EMAIL_TAKEN')
    if Laboratory.objects.filter(phone=phone).exists():
        return BlockError('Phone number already registered.', code='PHONE_TAKEN')
    if Laboratory.objects.filter(license_number=license_number).exists():
        return BlockError('License number already registered.', code='LICENSE_TAKEN')
    return None


def signup(data):
    lab_name = str(_pick(data, ('lab_name', 'labName'))[1] or '').strip()
    email = str(data.get('email') or '').strip().lower()
    raw_phone = data.get('phone')
    license_number = str(_pick(data, ('license_number', 'licenseNumber'))[1] or '').strip()

    if not lab_name or not email or not raw_phone or not license_number:
        raise ValidationError(
            'Required fields missing. Provide lab name, email, phone, and license number.',
            code='VALIDATION_ERROR',
        )
    phone = otp.normalize_phone(raw_phone)

    error = _taken(email, phone, license_number)
    if error is not None:
        raise error

    updates = _profile_updates(data)
    updates['lab_name'] = lab_name
    try:
        with transaction.atomic():
            laboratory = Laboratory.objects.create(
                email=email,
                phone=phone,
                license_number=license_number,
                status='pending',
                **updates,
            )
    except IntegrityError:
        # a concurrent signup won the unique constraint
        raise _taken(email, phone, license_number) or BlockError(
            'Laboratory already registered.', code='LABORATORY_TAKEN',
        )
    logger.info("Laboratory %s signed up (%s), pending approval", laboratory.id, email)
    return laboratory


def _check_can_login(laboratory):
    if not laboratory.is_active:
        raise PermissionDenied('Account is inactive. Please contact support.', code='ACCOUNT_INACTIVE')
    if laboratory.status != 'approved':
        raise PermissionDenied(
            'Account pending admin approval. Please wait for confirmation.',
            code='ACCOUNT_NOT_APPROVED',
        )


def request_login_otp(raw_phone):
    if not raw_phone:
        raise ValidationError('Phone number is required.', code='VALIDATION_ERROR')
    phone = otp.normalize_phone(raw_phone)

    laboratory = Laboratory.objects.filter(phone=phone).first()
    if laboratory is None:
        raise NotFoundError('Invalid phone number or account not found', code='ACCOUNT_NOT_FOUND')
    _check_can_login(laboratory)

    code = otp.issue_otp(phone)

    from laboratory.tasks import send_login_otp
    send_login_otp.delay(str(laboratory.id), code)
    return phone


def login(raw_phone, code):
    if not raw_phone or not code:
        raise ValidationError('Phone number and OTP are required.', code='VALIDATION_ERROR')
    phone = otp.normalize_phone(raw_phone)

    otp.verify_otp(phone, str(code).strip())

    laboratory = Laboratory.objects.filter(phone=phone).first()
    if laboratory is None:
        raise NotFoundError('Account not found.', code='ACCOUNT_NOT_FOUND')
    _check_can_login(laboratory)

    laboratory.last_login_at = timezone.now()
    laboratory.save(update_fields=['last_login_at', 'updated_at'])
    logger.info("Laboratory %s logged in", laboratory.id)
    return laboratory, auth.issue_token_pair(laboratory)


def refresh(refresh_token):
    laboratory, tokens = auth.rotate_refresh_token(refresh_token)
    _check_can_login(laboratory)
    return laboratory, tokens


def update_profile(laboratory, data):
    updates = _profile_updates(data)
    if 'lab_name' in updates and not updates['lab_name']:
        raise ValidationError('Lab name cannot be empty', code='VALIDATION_ERROR', detail={'field': 'lab_name'})

    for field, value in updates.items():
        setattr(laboratory, field, value)
    if updates:
        laboratory.save(update_fields=list(updates) + ['updated_at'])
    return laboratory


def logout(token_payload):
    if token_payload:
        auth.revoke(token_payload)
