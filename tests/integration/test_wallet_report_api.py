"""
Integration tests: reports, wallet, dashboard, notifications and support over HTTP.
"""
import json
import uuid
from decimal import Decimal

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from laboratory.models import LabReport, Notification, SupportTicket
from tests.conftest import (
    LabReportFactory,
    LabTestFactory,
    NotificationFactory,
    OrderFactory,
    SupportTicketFactory,
    WalletTransactionFactory,
)

PDF_BYTES = b'%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF'


def call(api_client, method, url, payload=None, **kwargs):
    if payload is not None:
        kwargs.update(data=json.dumps(payload), content_type='application/json')
    response = getattr(api_client, method)(url, **kwargs)
    return response.status_code, json.loads(response.content)


# ===================================================================
# Reports
# ===================================================================

@pytest.mark.django_db
class TestReportApi:

    def test_multipart_upload_and_download(self, api_client, auth_headers, laboratory):
        order = OrderFactory(laboratory=laboratory, status='being_tested')
        response = api_client.post('/api/laboratory/reports', data={
            'order_id': str(order.id),
            'test_name': 'Thyroid Panel',
            'pdf': SimpleUploadedFile('tsh.pdf', PDF_BYTES, content_type='application/pdf'),
        }, **auth_headers)
        body = json.loads(response.content)

        assert response.status_code == 201
        assert body['status'] == 'completed'
        assert body['has_pdf'] is True

        download = api_client.get(body['download_url'], **auth_headers)
        assert download.status_code == 200
        assert download['Content-Type'] == 'application/pdf'
        assert b''.join(download.streaming_content).startswith(b'%PDF')

    def test_upload_rejects_images(self, api_client, auth_headers, laboratory):
        order = OrderFactory(laboratory=laboratory)
        response = api_client.post('/api/laboratory/reports', data={
            'order_id': str(order.id),
            'test_name': 'X-ray',
            'pdf': SimpleUploadedFile('scan.png', b'\x89PNG\r\n', content_type='image/png'),
        }, **auth_headers)

        assert response.status_code == 400
        assert json.loads(response.content)['code'] == 'INVALID_FILE_TYPE'
        assert LabReport.objects.count() == 0

    def test_json_report_is_rendered(self, api_client, auth_headers, laboratory):
        order = OrderFactory(laboratory=laboratory)
        status, body = call(api_client, 'post', '/api/laboratory/reports', {
            'orderId': str(order.id),
            'testName': 'Lipid Profile',
            'results': [{'parameter': 'HDL', 'value': '52', 'unit': 'mg/dL'}],
        }, **auth_headers)

        assert status == 201
        assert body['results'][0]['status'] == 'normal'
        assert body['has_pdf'] is True

    def test_download_before_ready(self, api_client, auth_headers, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory))
        status, body = call(api_client, 'get', f'/api/laboratory/reports/{report.id}/download', **auth_headers)
        assert status == 400
        assert body['code'] == 'REPORT_NOT_READY'

    def test_share_and_list(self, api_client, auth_headers, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory), status='completed')

        status, body = call(api_client, 'patch', f'/api/laboratory/reports/{report.id}', {'share': 'patient'},
                            **auth_headers)
        assert status == 200
        assert body['shared_with_patient'] is True

        status, page = call(api_client, 'get', '/api/laboratory/reports?status=shared', **auth_headers)
        assert page['pagination']['total'] == 1

    def test_share_false_does_not_share(self, api_client, auth_headers, laboratory):
        report = LabReportFactory(order=OrderFactory(laboratory=laboratory))
        status, body = call(api_client, 'patch', f'/api/laboratory/reports/{report.id}', {'share': 'false'},
                            **auth_headers)
        assert status == 200
        assert body['shared_with_patient'] is False
        assert not Notification.objects.filter(event_type='report_shared').exists()

    def test_other_labs_report(self, api_client, auth_headers):
        report = LabReportFactory()
        status, body = call(api_client, 'get', f'/api/laboratory/reports/{report.id}', **auth_headers)
        assert status == 404


# ===================================================================
# Wallet
# ===================================================================

@pytest.mark.django_db
class TestWalletApi:

    def test_balance(self, api_client, auth_headers, laboratory):
        WalletTransactionFactory(laboratory=laboratory, amount=Decimal('1200.00'))
        status, body = call(api_client, 'get', '/api/laboratory/wallet/balance', **auth_headers)

        assert status == 200
        assert body['balance'] == 1200.0
        assert body['available_balance'] == 1200.0
        assert body['total_transactions'] == 1

    def test_earnings_page_has_summary(self, api_client, auth_headers, laboratory):
        WalletTransactionFactory.create_batch(3, laboratory=laboratory, amount=Decimal('100.00'))
        status, body = call(api_client, 'get', '/api/laboratory/wallet/earnings?limit=2', **auth_headers)

        assert len(body['items']) == 2
        assert body['pagination']['totalPages'] == 2
        assert body['summary']['total_earnings'] == 300.0

    def test_withdraw(self, api_client, auth_headers, laboratory):
        WalletTransactionFactory(laboratory=laboratory, amount=Decimal('500.00'))

        status, body = call(api_client, 'post', '/api/laboratory/wallet/withdraw',
                            {'amount': 300, 'paymentMethod': 'upi', 'upiId': 'lab@okaxis'}, **auth_headers)
        assert status == 201
        assert body['withdrawal']['status'] == 'pending'

        status, body = call(api_client, 'post', '/api/laboratory/wallet/withdraw',
                            {'amount': 300, 'paymentMethod': 'upi', 'upiId': 'lab@okaxis'}, **auth_headers)
        assert status == 400
        assert body['code'] == 'INSUFFICIENT_BALANCE'

        status, body = call(api_client, 'get', '/api/laboratory/wallet/withdrawals', **auth_headers)
        assert body['pagination']['total'] == 1
        assert body['summary']['pending_withdrawals'] == 300.0

    def test_earnings_impossible_date(self, api_client, auth_headers):
        status, body = call(api_client, 'get', '/api/laboratory/wallet/earnings?dateFrom=2024-02-30', **auth_headers)
        assert status == 400
        assert body['code'] == 'INVALID_DATE'

    def test_withdraw_bank_account_not_an_object(self, api_client, auth_headers, laboratory):
        WalletTransactionFactory(laboratory=laboratory, amount=Decimal('500.00'))
        status, body = call(api_client, 'post', '/api/laboratory/wallet/withdraw',
                            {'amount': 100, 'payment_method': 'bank', 'bank_account': 'x'}, **auth_headers)
        assert status == 400
        assert body['code'] == 'PAYOUT_DETAILS_REQUIRED'

    def test_transactions_filter(self, api_client, auth_headers, laboratory):
        WalletTransactionFactory(laboratory=laboratory)
        WalletTransactionFactory(laboratory=laboratory, type='withdrawal')
        status, body = call(api_client, 'get', '/api/laboratory/wallet/transactions?type=earning', **auth_headers)
        assert [t['type'] for t in body['items']] == ['earning']


# ===================================================================
# Dashboard
# ===================================================================

@pytest.mark.django_db
class TestDashboardApi:

    def test_stats(self, api_client, auth_headers, laboratory):
        OrderFactory.create_batch(2, laboratory=laboratory)
        LabTestFactory(laboratory=laboratory)
        WalletTransactionFactory(laboratory=laboratory, amount=Decimal('80.00'))

        status, body = call(api_client, 'get', '/api/laboratory/dashboard/stats', **auth_headers)

        assert status == 200
        assert body['total_orders'] == 2
        assert body['today_orders'] == 2
        assert body['total_tests'] == 1
        assert body['total_patients'] == 2
        assert body['total_earnings'] == 80.0


# ===================================================================
# Notifications
# ===================================================================

@pytest.mark.django_db
class TestNotificationApi:

    def test_read_flow(self, api_client, auth_headers, laboratory):
        first, second = NotificationFactory.create_batch(2, recipient_id=laboratory.id)
        NotificationFactory()

        status, body = call(api_client, 'get', '/api/laboratory/notifications/unread-count', **auth_headers)
        assert body == {'unread_count': 2}

        status, body = call(api_client, 'patch', f'/api/laboratory/notifications/{first.id}/read', **auth_headers)
        assert body['read'] is True

        status, page = call(api_client, 'get', '/api/laboratory/notifications?unread=true', **auth_headers)
        assert [n['id'] for n in page['items']] == [str(second.id)]

        status, body = call(api_client, 'patch', '/api/laboratory/notifications/read-all', **auth_headers)
        assert body['updated'] == 1

        status, body = call(api_client, 'delete', f'/api/laboratory/notifications/{second.id}', **auth_headers)
        assert status == 200
        assert Notification.objects.filter(recipient_id=laboratory.id).count() == 1

    def test_someone_elses_notification(self, api_client, auth_headers):
        other = NotificationFactory()
        status, body = call(api_client, 'patch', f'/api/laboratory/notifications/{other.id}/read', **auth_headers)
        assert status == 404
        assert body['code'] == 'NOTIFICATION_NOT_FOUND'

    def test_bad_id(self, api_client, auth_headers):
        status, body = call(api_client, 'delete', f'/api/laboratory/notifications/{uuid.uuid4()}', **auth_headers)
        assert status == 404


# ===================================================================
# Support
# ===================================================================

@pytest.mark.django_db
class TestSupportApi:

    def test_create_and_list(self, api_client, auth_headers, laboratory):
        SupportTicketFactory(laboratory=laboratory, status='resolved')

        status, body = call(api_client, 'post', '/api/laboratory/support',
                            {'subject': 'Bill PDF blank', 'message': 'Totals missing', 'priority': 'high'},
                            **auth_headers)
        assert status == 201
        assert body['status'] == 'open'

        status, page = call(api_client, 'get', '/api/laboratory/support', **auth_headers)
        assert [t['subject'] for t in page['items']] == ['Bill PDF blank']

        status, page = call(api_client, 'get', '/api/laboratory/support/history', **auth_headers)
        assert page['pagination']['total'] == 2
        assert Notification.objects.filter(recipient_type='admin', event_type='support_ticket').count() == 1

    def test_invalid_priority(self, api_client, auth_headers):
        status, body = call(api_client, 'post', '/api/laboratory/support',
                            {'subject': 'x', 'message': 'y', 'priority': 'panic'}, **auth_headers)
        assert status == 400
        assert SupportTicket.objects.count() == 0
