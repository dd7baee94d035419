"""
In-app notifications and the emails that go with some of them.

Notification failures never fail the request that triggered them: they
are logged and the caller carries on.
"""

import logging

from django.db import DatabaseError

from . import status_flow
from .models import Notification

logger = logging.getLogger(__name__)


def notify(recipient_type, recipient_id, event_type, title, message, data=None):
    try:
        return Notification.objects.create(
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            event_type=event_type,
            title=title,
            message=message,
            data=data or {},
        )
    except DatabaseError:
        logger.exception("Failed to create %s notification for %s %s", event_type, recipient_type, recipient_id)
        return None


def queue_email(to, subject, body):
    if not to:
        return
    from .tasks import send_notification_email
    try:
        send_notification_email.delay(to, subject, body)
    except Exception:
        # broker down: the in-app notification still exists
        logger.exception("Failed to queue email to %s", to)


def order_status_changed(order, previous_status):
    status = order.status
    label = status_flow.status_label(status_flow.normalize_status(status))
    lab_name = order.laboratory.lab_name
    message = f"Your test order at {lab_name} is now: {label}."
    if status == status_flow.CANCELLED and order.cancellation_reason:
        message = f"{message} Reason: {order.cancellation_reason}"

    notify(
        'patient', order.patient_id, 'order_status',
        'Lab order update', message,
        {'order_id': str(order.id), 'status': status, 'previous_status': previous_status},
    )
    if status in status_flow.EMAIL_STATUSES:
        queue_email(order.patient.email, f"Lab order update: {label}", message)


def order_confirmed(order):
    notify(
        'patient', order.patient_id, 'order_confirmed',
        'Test booking confirmed',
        f"{order.laboratory.lab_name} has confirmed your test booking.",
        {'order_id': str(order.id), 'request_id': str(order.request_id or '')},
    )


def bill_shared(bill):
    patient = bill.request.patient
    message = f"{bill.laboratory.lab_name} sent you a bill of {bill.total_amount:.2f}."
    notify(
        'patient', patient.id, 'bill_generated', 'Bill generated', message,
        {'request_id': str(bill.request_id), 'bill_id': str(bill.id), 'total_amount': float(bill.total_amount)},
    )
    queue_email(patient.email, 'Your lab test bill', message)


def report_ready(report):
    notify(
        'patient', report.patient_id, 'report_ready', 'Lab report ready',
        f"Your {report.test_name} report from {report.laboratory.lab_name} is ready.",
        {'report_id': str(report.id), 'order_id': str(report.order_id)},
    )


def report_shared(report, target):
    if target == 'admin':
        notify(
            'admin', None, 'report_shared', 'Lab report shared',
            f"{report.laboratory.lab_name} shared a {report.test_name} report.",
            {'report_id': str(report.id), 'laboratory_id': str(report.laboratory_id)},
        )
        return

    message = f"{report.laboratory.lab_name} shared your {report.test_name} report."
    notify(
        'patient', report.patient_id, 'report_shared', 'Lab report shared', message,
        {'report_id': str(report.id), 'order_id': str(report.order_id)},
    )
    queue_email(report.patient.email, 'Your lab report is available', message)


def withdrawal_requested(withdrawal):
    notify(
        'admin', None, 'withdrawal_requested', 'Withdrawal requested',
        f"{withdrawal.laboratory.lab_name} requested a withdrawal of {withdrawal.amount:.2f}.",
        {'withdrawal_id': str(withdrawal.id), 'laboratory_id': str(withdrawal.laboratory_id)},
    )
    notify(
        'laboratory', withdrawal.laboratory_id, 'withdrawal_requested', 'Withdrawal requested',
        f"Your withdrawal request of {withdrawal.amount:.2f} is pending review.",
        {'withdrawal_id': str(withdrawal.id)},
    )


def support_ticket_created(ticket):
    notify(
        'admin', None, 'support_ticket', 'New support ticket',
        f"{ticket.laboratory.lab_name}: {ticket.subject}",
        {'ticket_id': str(ticket.id), 'priority': ticket.priority},
    )
