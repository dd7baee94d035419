"""
Response serializers: ORM objects -> JSON-able dicts.

Output formatting only. Input parsing and validation live in the
services and in laboratory/intake/.
"""

from . import status_flow


def _iso(value):
    return value.isoformat() if value else None


def _amount(value):
    return float(value) if value is not None else 0.0


def serialize_laboratory(lab):
    return {
        'id': str(lab.id),
        'lab_name': lab.lab_name,
        'owner_name': lab.owner_name,
        'email': lab.email,
        'phone': lab.phone,
        'license_number': lab.license_number,
        'gst_number': lab.gst_number,
        'gender': lab.gender,
        'bio': lab.bio,
        'address': lab.address,
        'timings': lab.timings,
        'operating_hours': lab.operating_hours,
        'contact_person': lab.contact_person,
        'status': lab.status,
        'is_active': lab.is_active,
        'approved_at': _iso(lab.approved_at),
        'last_login_at': _iso(lab.last_login_at),
        'created_at': _iso(lab.created_at),
    }


def serialize_patient(patient):
    return {
        'id': str(patient.id),
        'first_name': patient.first_name,
        'last_name': patient.last_name,
        'name': patient.full_name,
        'phone': patient.phone,
        'email': patient.email,
        'date_of_birth': _iso(patient.date_of_birth),
        'gender': patient.gender,
        'address': patient.address,
    }


def serialize_test(test):
    return {
        'id': str(test.id),
        'name': test.name,
        'description': test.description,
        'price': _amount(test.price),
        'category': test.category,
        'preparation_instructions': test.preparation_instructions,
        'report_time': test.report_time,
        'is_active': test.is_active,
        'created_at': _iso(test.created_at),
        'updated_at': _iso(test.updated_at),
    }


def serialize_order(order):
    display_status = status_flow.normalize_status(order.status)
    return {
        'id': str(order.id),
        'patient': serialize_patient(order.patient),
        'patient_name': order.patient.full_name,
        'laboratory_id': str(order.laboratory_id),
        'request_id': str(order.request_id) if order.request_id else None,
        'items': [
            {
                'name': item.name,
                'test_id': str(item.test_id) if item.test_id else None,
                'quantity': item.quantity,
                'price': _amount(item.price),
                'total': _amount(item.total),
            }
            for item in order.items.all()
        ],
        'total_amount': _amount(order.total_amount),
        'status': order.status,
        'display_status': display_status,
        'status_label': status_flow.status_label(display_status),
        'next_status': status_flow.next_status(order.status, order.visit_type),
        'visit_type': order.visit_type,
        'delivery_option': order.delivery_option,
        'delivery_address': order.delivery_address,
        'payment_status': order.payment_status,
        'payment_method': order.payment_method or None,
        'notes': order.notes,
        'delivered_at': _iso(order.delivered_at),
        'cancelled_at': _iso(order.cancelled_at),
        'cancellation_reason': order.cancellation_reason or None,
        'created_at': _iso(order.created_at),
        'updated_at': _iso(order.updated_at),
    }


def serialize_bill(bill):
    return {
        'id': str(bill.id),
        'request_id': str(bill.request_id),
        'laboratory_id': str(bill.laboratory_id),
        'items': bill.items,
        'billing_summary': {
            'test_amount': _amount(bill.test_amount),
            'delivery_charge': _amount(bill.delivery_charge),
            'additional_charges': _amount(bill.additional_charges),
            'total_amount': _amount(bill.total_amount),
        },
        'generated_at': _iso(bill.generated_at),
        'sent_at': _iso(bill.sent_at),
        'pdf_url': f'/api/laboratory/request-orders/{bill.request_id}/bill/pdf',
    }


def serialize_request_order(request, laboratory=None, bill=None):
    items = request.items_for(laboratory) if laboratory is not None else request.items
    data = {
        'id': str(request.id),
        'patient': serialize_patient(request.patient),
        'patient_name': request.patient.full_name,
        'request_type': request.request_type,
        'status': request.status,
        'visit_type': request.visit_type,
        'patient_address': request.patient_address,
        'payment_status': request.payment_status,
        'source': request.source,
        'items': items,
        'total_amount': round(sum(float(item.get('price') or 0) for item in items), 2),
        'created_at': _iso(request.created_at),
    }
    if bill is not None:
        data['bill'] = serialize_bill(bill)
    return data


def serialize_report(report):
    return {
        'id': str(report.id),
        'order_id': str(report.order_id),
        'patient': serialize_patient(report.patient),
        'patient_name': report.patient.full_name,
        'laboratory_id': str(report.laboratory_id),
        'test_name': report.test_name,
        'results': report.results,
        'status': report.status,
        'notes': report.notes,
        'report_date': _iso(report.report_date),
        'has_pdf': bool(report.pdf_file),
        'download_url': f'/api/laboratory/reports/{report.id}/download' if report.pdf_file else None,
        'error_message': report.error_message or None,
        'shared_with_patient': report.shared_with_patient,
        'shared_with_admin': report.shared_with_admin,
        'shared_at': _iso(report.shared_at),
        'created_at': _iso(report.created_at),
        'updated_at': _iso(report.updated_at),
    }


def serialize_transaction(txn):
    return {
        'id': str(txn.id),
        'type': txn.type,
        'amount': _amount(txn.amount),
        'balance': _amount(txn.balance),
        'status': txn.status,
        'description': txn.description,
        'reference_id': txn.reference_id,
        'order_id': str(txn.order_id) if txn.order_id else None,
        'withdrawal_request_id': str(txn.withdrawal_request_id) if txn.withdrawal_request_id else None,
        'metadata': txn.metadata,
        'created_at': _iso(txn.created_at),
    }


def serialize_withdrawal(withdrawal):
    return {
        'id': str(withdrawal.id),
        'amount': _amount(withdrawal.amount),
        'payout_method': withdrawal.payout_method,
        'status': withdrawal.status,
        'admin_note': withdrawal.admin_note,
        'payout_reference': withdrawal.payout_reference,
        'processed_at': _iso(withdrawal.processed_at),
        'rejection_reason': withdrawal.rejection_reason or None,
        'created_at': _iso(withdrawal.created_at),
    }


def serialize_amounts(summary):
    """Decimal sums -> floats; counts pass through."""
    return {key: (value if isinstance(value, int) else _amount(value)) for key, value in summary.items()}


def serialize_notification(notification):
    return {
        'id': str(notification.id),
        'event_type': notification.event_type,
        'title': notification.title,
        'message': notification.message,
        'data': notification.data,
        'read': notification.read_at is not None,
        'read_at': _iso(notification.read_at),
        'created_at': _iso(notification.created_at),
    }


def serialize_support_ticket(ticket):
    return {
        'id': str(ticket.id),
        'subject': ticket.subject,
        'message': ticket.message,
        'priority': ticket.priority,
        'status': ticket.status,
        'admin_response': ticket.admin_response or None,
        'created_at': _iso(ticket.created_at),
        'updated_at': _iso(ticket.updated_at),
    }
