"""
Field-name normalization for loosely shaped booking payloads.

Bookings reach the lab from the patient app, the admin console and older
clients, and the same fact can sit under several keys:

    patient name:  patientId.firstName/lastName | patientId.name | patientName | patient.name
    test name:     testName | name
    lab id:        labId | lab | laboratoryId
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .exceptions import ValidationError

UNKNOWN_PATIENT = 'Unknown Patient'
CENTS = Decimal('0.01')


def money(value):
    """Decimal rounded to 2 places. None and '' count as zero; NaN and Infinity are rejected."""
    if value is None or value == '':
        return Decimal('0.00')
    if isinstance(value, bool):
        raise InvalidOperation(value)
    amount = Decimal(str(value))
    if not amount.is_finite():
        raise InvalidOperation(value)
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_amount(value, field, allow_negative=False):
    try:
        amount = money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f'{field} must be a number', code='INVALID_AMOUNT', detail={'field': field})
    if amount < 0 and not allow_negative:
        raise ValidationError(f'{field} cannot be negative', code='INVALID_AMOUNT', detail={'field': field})
    return amount


def _str(value):
    return str(value).strip() if value is not None else ''


def _join(first, last):
    return f"{_str(first)} {_str(last)}".strip()


def patient_name(record):
    """Best display name for the patient in a booking or order payload."""
    ref = record.get('patientId')
    if isinstance(ref, dict):
        if ref.get('firstName') and ref.get('lastName'):
            return _join(ref['firstName'], ref['lastName'])
        if ref.get('name'):
            return _str(ref['name'])
        if ref.get('firstName'):
            return _str(ref['firstName'])

    if record.get('patientName'):
        return _str(record['patientName'])

    patient = record.get('patient')
    if isinstance(patient, dict):
        if patient.get('firstName') or patient.get('lastName'):
            return _join(patient.get('firstName'), patient.get('lastName'))
        if patient.get('name'):
            return _str(patient['name'])

    return UNKNOWN_PATIENT


def split_name(full_name):
    parts = _str(full_name).split(' ', 1)
    first = parts[0] if parts[0] else UNKNOWN_PATIENT
    last = parts[1].strip() if len(parts) > 1 else ''
    return first, last


def lab_id_of(entry):
    for key in ('labId', 'lab', 'laboratoryId', 'laboratory_id'):
        value = entry.get(key)
        if isinstance(value, dict):
            value = value.get('id') or value.get('_id')
        if value:
            return _str(value)
    return ''


def test_item(entry, default_lab_id=''):
    """
    One booked test as {name, price, test_id, laboratory_id}.

    `entry` is either a bare test name or a dict using any of the key
    spellings above. Price stays a Decimal here; callers store it as float.
    """
    if isinstance(entry, str):
        return {'name': entry.strip(), 'price': Decimal('0.00'), 'test_id': '', 'laboratory_id': default_lab_id}

    if not isinstance(entry, dict):
        return {'name': '', 'price': Decimal('0.00'), 'test_id': '', 'laboratory_id': default_lab_id}

    return {
        'name': _str(entry.get('testName') or entry.get('name')),
        'price': parse_amount(entry.get('price'), 'price', allow_negative=True),
        'test_id': _str(entry.get('testId') or entry.get('test_id')),
        'laboratory_id': lab_id_of(entry) or default_lab_id,
    }
