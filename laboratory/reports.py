"""
Lab reports: one per order.

A report is completed once it has a PDF, either uploaded by the lab or
rendered by the generate_report_pdf task. Completed and cancelled reports
are read-only apart from sharing.
"""

import json
import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from . import notifications, status_flow
from .exceptions import BlockError, ValidationError
from .models import LabReport, Order
from .services import apply_status, get_owned

logger = logging.getLogger(__name__)

RESULT_STATUSES = ('normal', 'abnormal', 'critical')
LOCKED_STATUSES = ('completed', 'cancelled')
SHARE_TARGETS = ('patient', 'admin')


def parse_results(value):
    """
    Result rows as a list of dicts. Multipart bodies send them as a JSON
    string; anything unparseable becomes an empty list.
    """
    if isinstance(value, str):
        try:
            value = json.loads(value) if value.strip() else []
        except ValueError:
            logger.warning("Discarding unparseable report results")
            return []
    if not isinstance(value, list):
        return []

    rows = []
    for row in value:
        if not isinstance(row, dict):
            continue
        status = str(row.get('status') or 'normal').lower()
        rows.append({
            'parameter': str(row.get('parameter') or row.get('name') or '').strip(),
            'value': str(row.get('value') if row.get('value') is not None else '').strip(),
            'unit': str(row.get('unit') or '').strip(),
            'normal_range': str(row.get('normal_range') or row.get('normalRange') or '').strip(),
            'status': status if status in RESULT_STATUSES else 'normal',
        })
    return rows


def validate_pdf_upload(upload):
    max_bytes = settings.MAX_REPORT_UPLOAD_MB * 1024 * 1024
    if upload.size > max_bytes:
        raise ValidationError(
            f'PDF must be at most {settings.MAX_REPORT_UPLOAD_MB} MB',
            code='FILE_TOO_LARGE',
            detail={'size': upload.size, 'max_bytes': max_bytes},
        )

    head = upload.read(5)
    upload.seek(0)
    if upload.content_type != 'application/pdf' and not head.startswith(b'%PDF'):
        raise ValidationError('Only PDF files are allowed', code='INVALID_FILE_TYPE',
                              detail={'content_type': upload.content_type})


def _lab_reports(laboratory):
    return LabReport.objects.filter(laboratory=laboratory).select_related('patient', 'laboratory', 'order')


def list_reports(laboratory, params):
    queryset = _lab_reports(laboratory)
    status = params.get('status')
    if status == 'shared':
        queryset = queryset.filter(shared_with_patient=True)
    elif status:
        queryset = queryset.filter(status=status)
    return queryset.order_by('-created_at')


def get_report(laboratory, report_id):
    return get_owned(_lab_reports(laboratory), report_id, 'REPORT_NOT_FOUND', 'Report not found')


def create_report(laboratory, data, upload=None):
    """
    Create or update the report for an order.

    With an uploaded PDF the report completes at once; without one the
    PDF is rendered in the background. Either way the order is completed.
    """
    order_id = data.get('order_id') or data.get('orderId')
    test_name = str(data.get('test_name') or data.get('testName') or '').strip()
    if not order_id or not test_name:
        raise ValidationError('Order ID and test name are required', code='VALIDATION_ERROR')

    order = get_owned(Order.objects.filter(laboratory=laboratory).select_related('patient', 'laboratory'),
                      order_id, 'ORDER_NOT_FOUND', 'Order not found')
    if order.status == status_flow.CANCELLED:
        raise BlockError('Cannot add a report to a cancelled order', code='ORDER_CANCELLED',
                         detail={'order_id': str(order.id)})
    if upload is not None:
        validate_pdf_upload(upload)

    results = parse_results(data.get('results'))
    notes = str(data.get('notes') or '')

    with transaction.atomic():
        report, created = LabReport.objects.select_for_update().get_or_create(
            order=order,
            defaults={
                'patient': order.patient,
                'laboratory': laboratory,
                'test_name': test_name,
                'results': results,
                'notes': notes,
                'status': 'pending',
                'report_date': timezone.now(),
            },
        )
        if not created:
            if report.status == 'cancelled':
                raise ValidationError('Cancelled reports cannot be changed', code='REPORT_LOCKED')
            report.test_name = test_name
            if results:
                report.results = results
            if notes:
                report.notes = notes
            report.error_message = ''

        if upload is not None:
            report.pdf_file.save(f"report-{report.id}.pdf", upload, save=False)
            report.status = 'completed'
            report.report_date = timezone.now()
        report.save()

        previous_status = order.status
        if previous_status != status_flow.COMPLETED:
            order, _ = apply_status(order.pk, status_flow.COMPLETED)

    logger.info("Laboratory %s %s report %s for order %s (uploaded=%s)",
                laboratory.id, 'created' if created else 'updated', report.id, order.id, upload is not None)

    if previous_status != order.status:
        notifications.order_status_changed(order, previous_status)

    if upload is not None:
        notifications.report_ready(report)
    else:
        from laboratory.tasks import generate_report_pdf
        generate_report_pdf.delay(str(report.id))
        report.refresh_from_db()

    return report


def share_report(report, target):
    if report.status == 'cancelled':
        raise ValidationError('Cancelled reports cannot be shared', code='REPORT_LOCKED')

    if target == 'admin':
        report.shared_with_admin = True
    else:
        report.shared_with_patient = True
    report.shared_at = timezone.now()
    report.save(update_fields=['shared_with_patient', 'shared_with_admin', 'shared_at', 'updated_at'])
    logger.info("Report %s shared with %s", report.id, target)
    notifications.report_shared(report, target)
    return report


def update_report(laboratory, report_id, data):
    report = get_report(laboratory, report_id)

    status = data.get('status')
    share = data.get('share')
    if status == 'shared' or share in SHARE_TARGETS:
        target = share if share in SHARE_TARGETS else 'patient'
        return share_report(report, target)

    if report.status in LOCKED_STATUSES:
        raise ValidationError(
            f'{report.status.title()} reports cannot be changed',
            code='REPORT_LOCKED',
            detail={'status': report.status},
        )

    fields = []
    if 'results' in data:
        report.results = parse_results(data['results'])
        fields.append('results')
    if 'notes' in data:
        report.notes = str(data['notes'] or '')
        fields.append('notes')
    if 'test_name' in data or 'testName' in data:
        name = str(data.get('test_name') or data.get('testName') or '').strip()
        if not name:
            raise ValidationError('Test name cannot be empty', code='VALIDATION_ERROR')
        report.test_name = name
        fields.append('test_name')

    regenerate = False
    if status:
        if status not in ('pending', 'completed', 'cancelled'):
            raise ValidationError('Invalid report status', code='INVALID_STATUS',
                                  detail={'allowed': ['pending', 'completed', 'cancelled', 'shared']})
        if status == 'cancelled':
            report.status = 'cancelled'
            fields.append('status')
        elif status == 'completed':
            # completed only once a PDF exists
            regenerate = True

    if fields:
        report.save(update_fields=fields + ['updated_at'])

    if regenerate:
        from laboratory.tasks import generate_report_pdf
        generate_report_pdf.delay(str(report.id))
        report.refresh_from_db()

    return report


def report_file(laboratory, report_id):
    report = get_report(laboratory, report_id)
    if not report.pdf_file:
        raise ValidationError(
            'Report PDF is not ready yet',
            code='REPORT_NOT_READY',
            detail={'report_id': str(report.id), 'status': report.status},
        )
    return report
