import logging
import uuid
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.db.models import Q, Sum
from django.utils import timezone

from . import notifications, status_flow, wallet
from .exceptions import BlockError, NotFoundError, ValidationError, WarningError
from .models import (
    Bill,
    LabReport,
    LabTest,
    Notification,
    Order,
    OrderItem,
    Patient,
    SupportTicket,
    TestRequest,
)
from .normalize import money, parse_amount

logger = logging.getLogger(__name__)

REQUEST_TYPES = ('book_test_visit', 'lab')
OPEN_REQUEST_STATUSES = ('accepted', 'confirmed')


def _uuid(value):
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def get_owned(queryset, pk, code, message):
    """Row by id within an already lab-scoped queryset, else 404."""
    key = _uuid(pk)
    obj = queryset.filter(pk=key).first() if key else None
    if obj is None:
        raise NotFoundError(message, code=code, detail={'id': str(pk)})
    return obj


def _bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes')
    return bool(value)


# ── test catalog ───────────────────────────────────────────────────────────

TEST_FIELDS = ('name', 'description', 'price', 'category', 'preparation_instructions', 'report_time')


def list_tests(laboratory, params):
    queryset = LabTest.objects.filter(laboratory=laboratory, is_active=True)
    if params.get('category'):
        queryset = queryset.filter(category=params['category'])
    search = (params.get('search') or '').strip()
    if search:
        queryset = queryset.filter(Q(name__icontains=search) | Q(description__icontains=search))
    return queryset.order_by('name')


def get_test(laboratory, test_id):
    return get_owned(LabTest.objects.filter(laboratory=laboratory, is_active=True), test_id,
                     'TEST_NOT_FOUND', 'Test not found')


def create_test(laboratory, data):
    name = str(data.get('name') or '').strip()
    if not name:
        raise ValidationError('Test name is required', code='VALIDATION_ERROR', detail={'field': 'name'})
    price = parse_amount(data.get('price'), 'price')
    if price <= 0:
        raise ValidationError('Price must be greater than 0', code='VALIDATION_ERROR', detail={'field': 'price'})

    test = LabTest.objects.create(
        laboratory=laboratory,
        name=name,
        price=price,
        **{f: str(data.get(f) or '').strip() for f in TEST_FIELDS if f not in ('name', 'price')},
    )
    logger.info("Laboratory %s added test %s (%s)", laboratory.id, test.id, name)
    return test


def update_test(laboratory, test_id, data):
    test = get_test(laboratory, test_id)
    changed = []
    for field in TEST_FIELDS:
        if field not in data:
            continue
        if field == 'price':
            value = parse_amount(data['price'], 'price')
        else:
            value = str(data[field] or '').strip()
            if field == 'name' and not value:
                raise ValidationError('Test name cannot be empty', code='VALIDATION_ERROR', detail={'field': 'name'})
        setattr(test, field, value)
        changed.append(field)

    if changed:
        test.save(update_fields=changed + ['updated_at'])
    return test


def delete_test(laboratory, test_id):
    test = get_test(laboratory, test_id)
    test.is_active = False
    test.save(update_fields=['is_active', 'updated_at'])
    logger.info("Laboratory %s deactivated test %s", laboratory.id, test.id)
    return test


# ── orders from booking requests ───────────────────────────────────────────

def _assigned_requests(laboratory):
    return TestRequest.objects.filter(laboratories=laboratory, request_type__in=REQUEST_TYPES)


def _request_items(laboratory, request):
    """
    Order lines for this lab:
      1. the request's tests assigned to the lab
      2. legacy flat testName / totalAmount on the raw booking
      3. a single zero-priced "Lab Test"
    """
    items = [
        {'name': item.get('name'), 'price': money(item.get('price')), 'test_id': item.get('test_id') or ''}
        for item in request.items_for(laboratory) if item.get('name')
    ]
    if items:
        return items

    raw = request.raw_payload if isinstance(request.raw_payload, dict) else {}
    if raw.get('testName'):
        return [{'name': str(raw['testName']), 'price': money(raw.get('totalAmount')), 'test_id': ''}]

    return [{'name': 'Lab Test', 'price': Decimal('0.00'), 'test_id': ''}]


def _order_from_request(laboratory, request):
    """Find or create this lab's order for a booking request."""
    order = Order.objects.filter(request=request, laboratory=laboratory).first()
    if order is not None:
        return order, False

    items = _request_items(laboratory, request)
    payment_status = request.payment_status if request.payment_status in ('pending', 'paid', 'refunded') else 'pending'
    order = Order.objects.create(
        patient=request.patient,
        laboratory=laboratory,
        request=request,
        total_amount=sum((item['price'] for item in items), Decimal('0.00')),
        delivery_option='home_delivery' if request.visit_type == 'home' else 'pickup',
        delivery_address=request.patient_address or {},
        status=status_flow.PENDING,
        payment_status=payment_status,
    )
    catalog = {
        str(t.id): t for t in LabTest.objects.filter(
            laboratory=laboratory, id__in=[k for k in (_uuid(i['test_id']) for i in items) if k],
        )
    }
    OrderItem.objects.bulk_create([
        OrderItem(
            order=order,
            test=catalog.get(item['test_id']),
            name=item['name'],
            quantity=1,
            price=item['price'],
            total=item['price'],
        )
        for item in items
    ])
    logger.info("Created order %s from request %s for laboratory %s", order.id, request.id, laboratory.id)
    return order, True


def _resolve_order(laboratory, ref_id, prefer_request=False):
    """
    An order of this lab by order id or by booking request id.

    A request assigned to the lab that has no order yet gets one created.
    prefer_request looks the id up as a request first.
    """
    key = _uuid(ref_id)
    if key is None:
        raise NotFoundError('Order not found', code='ORDER_NOT_FOUND', detail={'id': str(ref_id)})

    orders = Order.objects.filter(laboratory=laboratory)
    if prefer_request:
        order = orders.filter(request_id=key).first() or orders.filter(pk=key).first()
    else:
        order = orders.filter(pk=key).first()
    if order is not None:
        return order

    request = _assigned_requests(laboratory).filter(pk=key).first()
    if request is None:
        raise NotFoundError(
            'Order not found. Please ensure the order has been created from the request.',
            code='ORDER_NOT_FOUND',
            detail={'id': str(ref_id)},
        )
    order, _ = _order_from_request(laboratory, request)
    return order


# ── leads (lab orders) ─────────────────────────────────────────────────────

def list_leads(laboratory, params):
    queryset = Order.objects.filter(laboratory=laboratory).select_related('patient', 'laboratory')

    statuses = [s.strip() for s in (params.get('status') or '').split(',') if s.strip()]
    if statuses:
        queryset = queryset.filter(status__in=statuses)

    start = wallet.parse_day(params.get('startDate'))
    end = wallet.parse_day(params.get('endDate'), end_of_day=True)
    if start:
        queryset = queryset.filter(created_at__gte=start)
    if end:
        queryset = queryset.filter(created_at__lte=end)

    return queryset.prefetch_related('items').order_by('-created_at')


def get_lead(laboratory, order_id):
    queryset = Order.objects.filter(laboratory=laboratory).select_related('patient', 'laboratory', 'request')
    return get_owned(queryset, order_id, 'ORDER_NOT_FOUND', 'Lead not found')


def apply_status(order_id, status, reason=None):
    """Write the new status and its timestamps under a row lock. Returns (order, previous)."""
    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order_id)
        previous = order.status

        if previous == status:
            return order, previous
        if previous in status_flow.FINAL_STATUSES:
            raise BlockError(
                f"Order is already {previous} and cannot be changed",
                code='ORDER_STATUS_FINAL',
                detail={'order_id': str(order.id), 'current_status': previous},
            )

        order.status = status
        fields = ['status', 'updated_at']
        now = timezone.now()
        if status in status_flow.DELIVERED_STATUSES and order.delivered_at is None:
            order.delivered_at = now
            fields.append('delivered_at')
        if status == status_flow.CANCELLED:
            order.cancelled_at = now
            order.cancellation_reason = (reason or '').strip()
            fields += ['cancelled_at', 'cancellation_reason']
        order.save(update_fields=fields)

    logger.info("Order %s status %s -> %s", order.id, previous, status)
    return order, previous


def update_order_status(laboratory, ref_id, status, reason=None, prefer_request=False):
    if not status or not status_flow.is_valid_status(status):
        raise ValidationError(
            'Valid status is required',
            code='INVALID_STATUS',
            detail={'valid_statuses': status_flow.VALID_STATUSES},
        )

    with transaction.atomic():
        order = _resolve_order(laboratory, ref_id, prefer_request=prefer_request)
        order, previous = apply_status(order.pk, status, reason)
    if previous != order.status:
        notifications.order_status_changed(order, previous)
    return order


def advance_order(laboratory, order_id):
    order = get_lead(laboratory, order_id)
    with transaction.atomic():
        # next step is read under the same lock that writes it
        locked = Order.objects.select_for_update().get(pk=order.pk)
        target = status_flow.next_status(locked.status, locked.visit_type)
        if target is None:
            raise BlockError(
                'Order is already at its final status',
                code='ORDER_STATUS_FINAL',
                detail={'order_id': str(order.id), 'current_status': locked.status},
            )
        order, previous = apply_status(order.pk, target)
    if previous != order.status:
        notifications.order_status_changed(order, previous)
    return order


def record_payment(laboratory, order_id, data):
    method = data.get('payment_method') or data.get('paymentMethod')
    allowed = [choice for choice, _ in Order.PAYMENT_METHOD_CHOICES]
    if method not in allowed:
        raise ValidationError('Valid payment method is required', code='INVALID_PAYMENT_METHOD',
                              detail={'allowed': allowed})

    order = get_lead(laboratory, order_id)
    with transaction.atomic():
        order = Order.objects.select_for_update().select_related('laboratory').get(pk=order.pk)
        if order.payment_status == 'paid':
            raise BlockError('Order is already paid', code='ORDER_ALREADY_PAID',
                             detail={'order_id': str(order.id)})
        if order.status == status_flow.CANCELLED:
            raise BlockError('Cancelled orders cannot be paid', code='ORDER_CANCELLED',
                             detail={'order_id': str(order.id)})

        order.payment_status = 'paid'
        order.payment_method = method
        order.payment_id = str(data.get('payment_id') or data.get('paymentId') or '')
        order.save(update_fields=['payment_status', 'payment_method', 'payment_id', 'updated_at'])
        wallet.credit_earning(order)

    logger.info("Order %s paid via %s", order.id, method)
    return order


# ── booking intake ─────────────────────────────────────────────────────────

def _resolve_patient(patient_data, confirm=False):
    """
    Patient for an incoming booking.
    - id given      -> must exist
    - phone matches -> reuse; a different name needs confirm=true
    - otherwise     -> create
    """
    if patient_data.id:
        patient = Patient.objects.filter(pk=patient_data.id).first()
        if patient is None:
            raise NotFoundError('Patient not found', code='PATIENT_NOT_FOUND', detail={'id': patient_data.id})
        return patient

    existing = Patient.objects.filter(phone=patient_data.phone).order_by('created_at').first()
    if existing is None:
        return Patient.objects.create(
            first_name=patient_data.first_name,
            last_name=patient_data.last_name,
            phone=patient_data.phone,
            email=patient_data.email,
        )

    same_name = (existing.first_name.lower() == patient_data.first_name.lower()
                 and existing.last_name.lower() == patient_data.last_name.lower())
    if not same_name and not confirm:
        raise WarningError(
            message='A patient with this phone already exists under another name. Resubmit with confirm=true to use it.',
            detail={'warnings': [{
                'code': 'PATIENT_INFO_MISMATCH',
                'message': (f"Phone {patient_data.phone} belongs to '{existing.full_name}', "
                            f"booking says '{patient_data.first_name} {patient_data.last_name}'".strip()),
            }]},
        )
    return existing


def create_booking(booking, confirm=False):
    """Store a normalized InternalBooking as a TestRequest for its laboratories."""
    from .models import Laboratory

    lab_keys = [_uuid(lab_id) for lab_id in booking.laboratory_ids]
    laboratories = list(Laboratory.objects.filter(pk__in=lab_keys, status='approved', is_active=True))
    known = {str(lab.id) for lab in laboratories}
    missing = [lab_id for lab_id in booking.laboratory_ids if str(_uuid(lab_id)) not in known]
    if missing:
        raise ValidationError(
            'Unknown or inactive laboratory',
            code='UNKNOWN_LABORATORY',
            detail={'laboratory_ids': missing},
        )

    with transaction.atomic():
        patient = _resolve_patient(booking.patient, confirm=confirm or booking.confirm)
        request = TestRequest.objects.create(
            patient=patient,
            request_type=booking.request_type if booking.request_type in REQUEST_TYPES else 'book_test_visit',
            status='accepted',
            visit_type=booking.visit_type,
            patient_address=booking.patient_address,
            payment_status=booking.payment_status,
            source=booking.source,
            items=[item.as_json() for item in booking.items],
            raw_payload=booking.raw_payload,
        )
        request.laboratories.set(laboratories)

    logger.info("Stored %s booking %s for %d laboratories", booking.source, request.id, len(laboratories))
    return request


# ── request orders ─────────────────────────────────────────────────────────

def list_request_orders(laboratory, params):
    queryset = _assigned_requests(laboratory).select_related('patient')
    if params.get('status'):
        queryset = queryset.filter(status=params['status'])
    else:
        queryset = queryset.filter(status__in=OPEN_REQUEST_STATUSES)
    return queryset.order_by('-created_at')


def get_request_order(laboratory, request_id):
    return get_owned(_assigned_requests(laboratory).select_related('patient'), request_id,
                     'REQUEST_NOT_FOUND', 'Request order not found')


def confirm_request_order(laboratory, request_id):
    request = get_request_order(laboratory, request_id)

    with transaction.atomic():
        order, created = _order_from_request(laboratory, request)
        if order.status in status_flow.FINAL_STATUSES:
            raise BlockError(
                f"Order is already {order.status}",
                code='ORDER_STATUS_FINAL',
                detail={'order_id': str(order.id), 'current_status': order.status},
            )
        # an order already moving through the flow keeps its status
        if order.status == status_flow.PENDING:
            order.status = status_flow.ACCEPTED
            order.save(update_fields=['status', 'updated_at'])
        if request.status in ('pending', 'accepted'):
            request.status = 'confirmed'
            request.save(update_fields=['status', 'updated_at'])

    logger.info("Laboratory %s confirmed request %s (order %s, new=%s)", laboratory.id, request.id, order.id, created)
    notifications.order_confirmed(order)
    return order


def get_bill(laboratory, request_id):
    request = get_request_order(laboratory, request_id)
    bill = Bill.objects.filter(request=request, laboratory=laboratory).select_related('laboratory').first()
    if bill is None:
        raise NotFoundError('Bill not found for this request', code='BILL_NOT_FOUND',
                            detail={'request_id': str(request.id)})
    return bill


def generate_bill(laboratory, request_id, data):
    """
    Build (or rebuild) this lab's bill for a booking request.

    Every item needs a name; delivery charge only counts for home visits;
    the total must come out above zero. Rebuilding a bill the patient has
    already received needs confirm=true.
    """
    request = get_request_order(laboratory, request_id)

    errors = []
    items = []
    for i, entry in enumerate(data.get('items') or []):
        entry = entry if isinstance(entry, dict) else {'name': entry}
        name = str(entry.get('name') or entry.get('testName') or '').strip()
        if not name:
            errors.append({'field': f'items[{i}].name', 'message': 'Test name is required'})
            continue
        items.append({'name': name, 'price': parse_amount(entry.get('price'), f'items[{i}].price')})
    if errors:
        raise ValidationError('Request validation failed.', code='VALIDATION_ERROR', detail={'errors': errors})

    if items:
        test_amount = sum((item['price'] for item in items), Decimal('0.00'))
    else:
        test_amount = parse_amount(data.get('test_amount', data.get('testAmount')), 'test_amount')

    delivery_charge = Decimal('0.00')
    if request.visit_type == 'home':
        delivery_charge = parse_amount(data.get('delivery_charge', data.get('deliveryCharge')), 'delivery_charge')
    additional = parse_amount(data.get('additional_charges', data.get('additionalCharges')), 'additional_charges')

    total = test_amount + delivery_charge + additional
    if total <= 0:
        raise ValidationError('Total amount must be greater than 0', code='INVALID_BILL_TOTAL',
                              detail={'total_amount': str(total)})

    existing = Bill.objects.filter(request=request, laboratory=laboratory).first()
    if existing is not None and existing.sent_at and not _bool(data.get('confirm')):
        raise WarningError(
            message='This bill was already sent to the patient. Resubmit with confirm=true to replace it.',
            detail={'warnings': [{'code': 'BILL_ALREADY_SENT', 'message': f"Sent at {existing.sent_at.isoformat()}"}]},
        )

    share = _bool(data.get('share'))
    bill, _ = Bill.objects.update_or_create(
        request=request,
        laboratory=laboratory,
        defaults={
            'items': [{'name': item['name'], 'price': float(item['price'])} for item in items],
            'test_amount': test_amount,
            'delivery_charge': delivery_charge,
            'additional_charges': additional,
            'total_amount': total,
            'sent_at': timezone.now() if share else None,
        },
    )
    logger.info("Laboratory %s billed request %s: %s", laboratory.id, request.id, total)

    if share:
        notifications.bill_shared(bill)
    return bill


def share_bill(laboratory, request_id):
    bill = get_bill(laboratory, request_id)
    bill.sent_at = timezone.now()
    bill.save(update_fields=['sent_at'])
    notifications.bill_shared(bill)
    return bill


# ── patients ───────────────────────────────────────────────────────────────

def _lab_patients(laboratory):
    return Patient.objects.filter(pk__in=Order.objects.filter(laboratory=laboratory).values('patient_id'))


def list_patients(laboratory, params):
    queryset = _lab_patients(laboratory)
    search = (params.get('search') or '').strip()
    if search:
        queryset = queryset.filter(
            Q(first_name__icontains=search) | Q(last_name__icontains=search)
            | Q(email__icontains=search) | Q(phone__icontains=search)
        )
    return queryset.order_by('first_name', 'last_name')


def patient_statistics(laboratory):
    since = timezone.now() - timedelta(days=30)
    orders = Order.objects.filter(laboratory=laboratory)
    return {
        'total_patients': orders.values('patient_id').distinct().count(),
        'active_patients': orders.filter(created_at__gte=since).values('patient_id').distinct().count(),
        'total_orders': orders.count(),
        'total_reports': LabReport.objects.filter(laboratory=laboratory).count(),
    }


def get_patient(laboratory, patient_id):
    return get_owned(_lab_patients(laboratory), patient_id, 'PATIENT_NOT_FOUND', 'Patient not found')


def patient_orders(laboratory, patient_id):
    patient = get_patient(laboratory, patient_id)
    return (Order.objects.filter(laboratory=laboratory, patient=patient)
            .select_related('patient', 'laboratory').prefetch_related('items').order_by('-created_at'))


# ── dashboard ──────────────────────────────────────────────────────────────

def dashboard_stats(laboratory):
    today = wallet.day_start()
    this_month, last_month = wallet.month_starts()
    orders = Order.objects.filter(laboratory=laboratory)
    earnings = laboratory.wallet_transactions.filter(type='earning', status='completed')

    def earned(queryset):
        return money(queryset.aggregate(total=Sum('amount'))['total'])

    return {
        'total_orders': orders.count(),
        'today_orders': orders.filter(created_at__gte=today).count(),
        'this_month_orders': orders.filter(created_at__gte=this_month).count(),
        'last_month_orders': orders.filter(created_at__gte=last_month, created_at__lt=this_month).count(),
        'total_tests': LabTest.objects.filter(laboratory=laboratory, is_active=True).count(),
        'total_reports': LabReport.objects.filter(laboratory=laboratory).count(),
        'total_patients': orders.values('patient_id').distinct().count(),
        'total_earnings': earned(earnings),
        'today_earnings': earned(earnings.filter(created_at__gte=today)),
        'this_month_earnings': earned(earnings.filter(created_at__gte=this_month)),
        'last_month_earnings': earned(earnings.filter(created_at__gte=last_month, created_at__lt=this_month)),
    }


# ── notifications ──────────────────────────────────────────────────────────

def _lab_notifications(laboratory):
    return Notification.objects.filter(recipient_type='laboratory', recipient_id=laboratory.id)


def list_notifications(laboratory, params):
    queryset = _lab_notifications(laboratory)
    if _bool(params.get('unread')):
        queryset = queryset.filter(read_at__isnull=True)
    return queryset.order_by('-created_at')


def unread_count(laboratory):
    return _lab_notifications(laboratory).filter(read_at__isnull=True).count()


def mark_notification_read(laboratory, notification_id):
    notification = get_owned(_lab_notifications(laboratory), notification_id,
                             'NOTIFICATION_NOT_FOUND', 'Notification not found')
    if notification.read_at is None:
        notification.read_at = timezone.now()
        notification.save(update_fields=['read_at'])
    return notification


def mark_all_notifications_read(laboratory):
    return _lab_notifications(laboratory).filter(read_at__isnull=True).update(read_at=timezone.now())


def delete_notification(laboratory, notification_id):
    notification = get_owned(_lab_notifications(laboratory), notification_id,
                             'NOTIFICATION_NOT_FOUND', 'Notification not found')
    notification.delete()


# ── support ────────────────────────────────────────────────────────────────

def list_support_tickets(laboratory, history=False):
    queryset = SupportTicket.objects.filter(laboratory=laboratory)
    if not history:
        queryset = queryset.filter(status__in=['open', 'in_progress'])
    return queryset.order_by('-created_at')


def create_support_ticket(laboratory, data):
    subject = str(data.get('subject') or '').strip()
    message = str(data.get('message') or '').strip()
    if not subject or not message:
        raise ValidationError('Subject and message are required', code='VALIDATION_ERROR')

    priority = data.get('priority') or 'medium'
    if priority not in dict(SupportTicket.PRIORITY_CHOICES):
        raise ValidationError('Invalid priority', code='VALIDATION_ERROR',
                              detail={'allowed': [p for p, _ in SupportTicket.PRIORITY_CHOICES]})

    ticket = SupportTicket.objects.create(laboratory=laboratory, subject=subject, message=message, priority=priority)
    logger.info("Laboratory %s opened support ticket %s", laboratory.id, ticket.id)
    notifications.support_ticket_created(ticket)
    return ticket
