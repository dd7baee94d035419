import logging
import os

from django.http import FileResponse, HttpResponse
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import accounts, reports, services, wallet
from .intake import get_adapter
from .intake.factory import DEFAULT_SOURCE
from .pagination import CATALOG_MAX_LIMIT, paginate
from .pdf import render_bill_pdf
from .serializers import (
    serialize_amounts,
    serialize_bill,
    serialize_laboratory,
    serialize_notification,
    serialize_order,
    serialize_patient,
    serialize_report,
    serialize_request_order,
    serialize_support_ticket,
    serialize_test,
    serialize_transaction,
    serialize_withdrawal,
)

logger = logging.getLogger(__name__)


class PublicAPIView(APIView):
    """Routes reachable without a token (sign-up, login, refresh)."""

    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]


# ── auth ───────────────────────────────────────────────────────────────────

class SignupView(PublicAPIView):
    """POST /api/laboratories/auth/signup"""

    throttle_scope = 'auth'

    def post(self, request):
        laboratory = accounts.signup(request.data)
        return Response({
            'message': 'Registration submitted. Your account will be activated after admin approval.',
            'laboratory': serialize_laboratory(laboratory),
        }, status=status.HTTP_201_CREATED)


class LoginOtpView(PublicAPIView):
    """POST /api/laboratories/auth/login/otp"""

    throttle_scope = 'otp'

    def post(self, request):
        phone = accounts.request_login_otp(request.data.get('phone'))
        return Response({'message': 'OTP sent to registered mobile number.', 'phone': phone})


class LoginView(PublicAPIView):
    """POST /api/laboratories/auth/login"""

    throttle_scope = 'auth'

    def post(self, request):
        laboratory, tokens = accounts.login(request.data.get('phone'), request.data.get('otp'))
        return Response({'laboratory': serialize_laboratory(laboratory), 'tokens': tokens})


class RefreshTokenView(PublicAPIView):
    """POST /api/laboratories/auth/refresh-token"""

    def post(self, request):
        token = request.data.get('refresh_token') or request.data.get('refreshToken')
        laboratory, tokens = accounts.refresh(token)
        return Response({'laboratory': serialize_laboratory(laboratory), 'tokens': tokens})


class MeView(APIView):
    """GET / PUT /api/laboratories/auth/me"""

    def get(self, request):
        return Response(serialize_laboratory(request.user))

    def put(self, request):
        laboratory = accounts.update_profile(request.user, request.data)
        return Response(serialize_laboratory(laboratory))


class LogoutView(APIView):
    """POST /api/laboratories/auth/logout"""

    def post(self, request):
        accounts.logout(request.auth)
        return Response({'message': 'Logout successful.'})


# ── test catalog ───────────────────────────────────────────────────────────

class LabTestListView(APIView):
    """GET / POST /api/laboratory/tests"""

    def get(self, request):
        queryset = services.list_tests(request.user, request.query_params)
        return Response(paginate(queryset, request.query_params, serialize_test, max_limit=CATALOG_MAX_LIMIT))

    def post(self, request):
        test = services.create_test(request.user, request.data)
        return Response(serialize_test(test), status=status.HTTP_201_CREATED)


class LabTestDetailView(APIView):
    """GET / PATCH / DELETE /api/laboratory/tests/<id>"""

    def get(self, request, test_id):
        return Response(serialize_test(services.get_test(request.user, test_id)))

    def patch(self, request, test_id):
        return Response(serialize_test(services.update_test(request.user, test_id, request.data)))

    def delete(self, request, test_id):
        services.delete_test(request.user, test_id)
        return Response({'message': 'Test deleted successfully'})


# ── leads ──────────────────────────────────────────────────────────────────

class LeadListView(APIView):
    """GET /api/labs/leads"""

    def get(self, request):
        queryset = services.list_leads(request.user, request.query_params)
        return Response(paginate(queryset, request.query_params, serialize_order))


class LeadDetailView(APIView):
    """GET /api/labs/leads/<id>"""

    def get(self, request, lead_id):
        return Response(serialize_order(services.get_lead(request.user, lead_id)))


class LeadStatusView(APIView):
    """PATCH /api/labs/leads/<id>/status"""

    def patch(self, request, lead_id):
        order = services.update_order_status(
            request.user, lead_id, request.data.get('status'), reason=request.data.get('reason'),
        )
        return Response(serialize_order(order))


class LeadAdvanceView(APIView):
    """POST /api/labs/leads/<id>/advance"""

    def post(self, request, lead_id):
        return Response(serialize_order(services.advance_order(request.user, lead_id)))


class LeadPaymentView(APIView):
    """POST /api/labs/leads/<id>/payment"""

    def post(self, request, lead_id):
        return Response(serialize_order(services.record_payment(request.user, lead_id, request.data)))


# ── request orders ─────────────────────────────────────────────────────────

class RequestOrderListView(APIView):
    """GET /api/laboratory/request-orders"""

    def get(self, request):
        laboratory = request.user
        queryset = services.list_request_orders(laboratory, request.query_params)
        return Response(paginate(
            queryset, request.query_params, lambda r: serialize_request_order(r, laboratory),
        ))


class RequestOrderIntakeView(APIView):
    """
    POST /api/laboratory/request-orders/intake

    Source comes from the X-Request-Source header or ?source=; the body is
    handed to the matching intake adapter untouched.
    """

    def post(self, request):
        source = (request.headers.get('X-Request-Source')
                  or request.query_params.get('source')
                  or DEFAULT_SOURCE)
        adapter = get_adapter(source, request.body, request.content_type or '')
        booking = adapter.process()
        confirm = request.query_params.get('confirm', '').lower() in ('1', 'true', 'yes')
        test_request = services.create_booking(booking, confirm=confirm)
        return Response(serialize_request_order(test_request), status=status.HTTP_201_CREATED)


class RequestOrderDetailView(APIView):
    """GET /api/laboratory/request-orders/<id>"""

    def get(self, request, request_id):
        laboratory = request.user
        test_request = services.get_request_order(laboratory, request_id)
        bill = test_request.bills.filter(laboratory=laboratory).first()
        return Response(serialize_request_order(test_request, laboratory, bill))


class RequestOrderConfirmView(APIView):
    """PATCH /api/laboratory/request-orders/<id>/confirm"""

    def patch(self, request, request_id):
        order = services.confirm_request_order(request.user, request_id)
        return Response({'message': 'Request order confirmed', 'order': serialize_order(order)})


class RequestOrderStatusView(APIView):
    """PATCH /api/laboratory/request-orders/<id>/status"""

    def patch(self, request, request_id):
        order = services.update_order_status(
            request.user, request_id, request.data.get('status'),
            reason=request.data.get('reason'), prefer_request=True,
        )
        return Response(serialize_order(order))


class BillView(APIView):
    """GET / POST /api/laboratory/request-orders/<id>/bill"""

    def get(self, request, request_id):
        return Response(serialize_bill(services.get_bill(request.user, request_id)))

    def post(self, request, request_id):
        bill = services.generate_bill(request.user, request_id, request.data)
        return Response({'message': 'Bill generated successfully', 'bill': serialize_bill(bill)})


class BillShareView(APIView):
    """POST /api/laboratory/request-orders/<id>/bill/share"""

    def post(self, request, request_id):
        bill = services.share_bill(request.user, request_id)
        return Response({'message': 'Bill shared with patient', 'bill': serialize_bill(bill)})


class BillPdfView(APIView):
    """GET /api/laboratory/request-orders/<id>/bill/pdf"""

    def get(self, request, request_id):
        bill = services.get_bill(request.user, request_id)
        content = render_bill_pdf(bill, bill.request.patient)
        response = HttpResponse(content, content_type='application/pdf')
        response['Content-Disposition'] = f'attachment; filename="bill_{str(bill.request_id)[:8]}.pdf"'
        return response


# ── patients ───────────────────────────────────────────────────────────────

class PatientListView(APIView):
    """GET /api/laboratory/patients"""

    def get(self, request):
        queryset = services.list_patients(request.user, request.query_params)
        return Response(paginate(queryset, request.query_params, serialize_patient))


class PatientStatisticsView(APIView):
    """GET /api/laboratory/patients/statistics"""

    def get(self, request):
        return Response(services.patient_statistics(request.user))


class PatientDetailView(APIView):
    """GET /api/laboratory/patients/<id>"""

    def get(self, request, patient_id):
        return Response(serialize_patient(services.get_patient(request.user, patient_id)))


class PatientOrdersView(APIView):
    """GET /api/laboratory/patients/<id>/orders"""

    def get(self, request, patient_id):
        queryset = services.patient_orders(request.user, patient_id)
        return Response(paginate(queryset, request.query_params, serialize_order))


# ── reports ────────────────────────────────────────────────────────────────

class ReportListView(APIView):
    """GET / POST /api/laboratory/reports (POST accepts JSON or multipart with a `pdf` file)"""

    def get(self, request):
        queryset = reports.list_reports(request.user, request.query_params)
        return Response(paginate(queryset, request.query_params, serialize_report))

    def post(self, request):
        report = reports.create_report(request.user, request.data, upload=request.FILES.get('pdf'))
        return Response(serialize_report(report), status=status.HTTP_201_CREATED)


class ReportDetailView(APIView):
    """GET / PATCH /api/laboratory/reports/<id>"""

    def get(self, request, report_id):
        return Response(serialize_report(reports.get_report(request.user, report_id)))

    def patch(self, request, report_id):
        return Response(serialize_report(reports.update_report(request.user, report_id, request.data)))


class ReportDownloadView(APIView):
    """GET /api/laboratory/reports/<id>/download"""

    def get(self, request, report_id):
        report = reports.report_file(request.user, report_id)
        filename = f"{report.test_name.replace(' ', '_')}_{report.created_at.strftime('%Y%m%d')}.pdf"
        return FileResponse(
            report.pdf_file.open('rb'),
            as_attachment=True,
            filename=os.path.basename(filename),
            content_type='application/pdf',
        )


# ── wallet ─────────────────────────────────────────────────────────────────

class WalletBalanceView(APIView):
    """GET /api/laboratory/wallet/balance"""

    def get(self, request):
        return Response(serialize_amounts(wallet.balance_summary(request.user)))


class WalletEarningsView(APIView):
    """GET /api/laboratory/wallet/earnings"""

    def get(self, request):
        queryset, summary = wallet.earnings(request.user, request.query_params)
        data = paginate(queryset, request.query_params, serialize_transaction)
        data['summary'] = serialize_amounts(summary)
        return Response(data)


class WalletTransactionsView(APIView):
    """GET /api/laboratory/wallet/transactions"""

    def get(self, request):
        queryset = wallet.transactions(request.user, request.query_params)
        return Response(paginate(queryset, request.query_params, serialize_transaction))


class WalletWithdrawalsView(APIView):
    """GET /api/laboratory/wallet/withdrawals"""

    def get(self, request):
        queryset, summary = wallet.withdrawals(request.user, request.query_params)
        data = paginate(queryset, request.query_params, serialize_withdrawal)
        data['summary'] = serialize_amounts(summary)
        return Response(data)


class WalletWithdrawView(APIView):
    """POST /api/laboratory/wallet/withdraw"""

    def post(self, request):
        withdrawal = wallet.request_withdrawal(request.user, request.data)
        return Response({
            'message': 'Withdrawal request submitted successfully',
            'withdrawal': serialize_withdrawal(withdrawal),
        }, status=status.HTTP_201_CREATED)


# ── dashboard ──────────────────────────────────────────────────────────────

class DashboardStatsView(APIView):
    """GET /api/laboratory/dashboard/stats"""

    def get(self, request):
        return Response(serialize_amounts(services.dashboard_stats(request.user)))


# ── notifications ──────────────────────────────────────────────────────────

class NotificationListView(APIView):
    """GET /api/laboratory/notifications"""

    def get(self, request):
        queryset = services.list_notifications(request.user, request.query_params)
        return Response(paginate(queryset, request.query_params, serialize_notification))


class NotificationUnreadCountView(APIView):
    """GET /api/laboratory/notifications/unread-count"""

    def get(self, request):
        return Response({'unread_count': services.unread_count(request.user)})


class NotificationReadView(APIView):
    """PATCH /api/laboratory/notifications/<id>/read"""

    def patch(self, request, notification_id):
        notification = services.mark_notification_read(request.user, notification_id)
        return Response(serialize_notification(notification))


class NotificationReadAllView(APIView):
    """PATCH /api/laboratory/notifications/read-all"""

    def patch(self, request):
        updated = services.mark_all_notifications_read(request.user)
        return Response({'message': 'All notifications marked as read', 'updated': updated})


class NotificationDetailView(APIView):
    """DELETE /api/laboratory/notifications/<id>"""

    def delete(self, request, notification_id):
        services.delete_notification(request.user, notification_id)
        return Response({'message': 'Notification deleted'})


# ── support ────────────────────────────────────────────────────────────────

class SupportTicketListView(APIView):
    """GET / POST /api/laboratory/support"""

    def get(self, request):
        queryset = services.list_support_tickets(request.user)
        return Response(paginate(queryset, request.query_params, serialize_support_ticket))

    def post(self, request):
        ticket = services.create_support_ticket(request.user, request.data)
        return Response(serialize_support_ticket(ticket), status=status.HTTP_201_CREATED)


class SupportHistoryView(APIView):
    """GET /api/laboratory/support/history"""

    def get(self, request):
        queryset = services.list_support_tickets(request.user, history=True)
        return Response(paginate(queryset, request.query_params, serialize_support_ticket))
