from django.urls import path

from . import views

urlpatterns = [
    # auth
    path('laboratories/auth/signup', views.SignupView.as_view(), name='lab-signup'),
    path('laboratories/auth/login/otp', views.LoginOtpView.as_view(), name='lab-login-otp'),
    path('laboratories/auth/login', views.LoginView.as_view(), name='lab-login'),
    path('laboratories/auth/refresh-token', views.RefreshTokenView.as_view(), name='lab-refresh-token'),
    path('laboratories/auth/me', views.MeView.as_view(), name='lab-me'),
    path('laboratories/auth/logout', views.LogoutView.as_view(), name='lab-logout'),

    # test catalog
    path('laboratory/tests', views.LabTestListView.as_view(), name='lab-tests'),
    path('laboratory/tests/<str:test_id>', views.LabTestDetailView.as_view(), name='lab-test-detail'),

    # leads
    path('labs/leads', views.LeadListView.as_view(), name='lab-leads'),
    path('labs/leads/<str:lead_id>', views.LeadDetailView.as_view(), name='lab-lead-detail'),
    path('labs/leads/<str:lead_id>/status', views.LeadStatusView.as_view(), name='lab-lead-status'),
    path('labs/leads/<str:lead_id>/advance', views.LeadAdvanceView.as_view(), name='lab-lead-advance'),
    path('labs/leads/<str:lead_id>/payment', views.LeadPaymentView.as_view(), name='lab-lead-payment'),

    # request orders and bills
    path('laboratory/request-orders', views.RequestOrderListView.as_view(), name='lab-request-orders'),
    path('laboratory/request-orders/intake', views.RequestOrderIntakeView.as_view(), name='lab-request-intake'),
    path('laboratory/request-orders/<str:request_id>', views.RequestOrderDetailView.as_view(),
         name='lab-request-order-detail'),
    path('laboratory/request-orders/<str:request_id>/confirm', views.RequestOrderConfirmView.as_view(),
         name='lab-request-order-confirm'),
    path('laboratory/request-orders/<str:request_id>/status', views.RequestOrderStatusView.as_view(),
         name='lab-request-order-status'),
    path('laboratory/request-orders/<str:request_id>/bill', views.BillView.as_view(), name='lab-bill'),
    path('laboratory/request-orders/<str:request_id>/bill/share', views.BillShareView.as_view(),
         name='lab-bill-share'),
    path('laboratory/request-orders/<str:request_id>/bill/pdf', views.BillPdfView.as_view(), name='lab-bill-pdf'),

    # patients
    path('laboratory/patients', views.PatientListView.as_view(), name='lab-patients'),
    path('laboratory/patients/statistics', views.PatientStatisticsView.as_view(), name='lab-patient-statistics'),
    path('laboratory/patients/<str:patient_id>', views.PatientDetailView.as_view(), name='lab-patient-detail'),
    path('laboratory/patients/<str:patient_id>/orders', views.PatientOrdersView.as_view(),
         name='lab-patient-orders'),

    # reports
    path('laboratory/reports', views.ReportListView.as_view(), name='lab-reports'),
    path('laboratory/reports/<str:report_id>', views.ReportDetailView.as_view(), name='lab-report-detail'),
    path('laboratory/reports/<str:report_id>/download', views.ReportDownloadView.as_view(),
         name='lab-report-download'),

    # wallet
    path('laboratory/wallet/balance', views.WalletBalanceView.as_view(), name='lab-wallet-balance'),
    path('laboratory/wallet/earnings', views.WalletEarningsView.as_view(), name='lab-wallet-earnings'),
    path('laboratory/wallet/transactions', views.WalletTransactionsView.as_view(), name='lab-wallet-transactions'),
    path('laboratory/wallet/withdrawals', views.WalletWithdrawalsView.as_view(), name='lab-wallet-withdrawals'),
    path('laboratory/wallet/withdraw', views.WalletWithdrawView.as_view(), name='lab-wallet-withdraw'),

    # dashboard
    path('laboratory/dashboard/stats', views.DashboardStatsView.as_view(), name='lab-dashboard-stats'),

    # notifications
    path('laboratory/notifications', views.NotificationListView.as_view(), name='lab-notifications'),
    path('laboratory/notifications/unread-count', views.NotificationUnreadCountView.as_view(),
         name='lab-notifications-unread-count'),
    path('laboratory/notifications/read-all', views.NotificationReadAllView.as_view(),
         name='lab-notifications-read-all'),
    path('laboratory/notifications/<str:notification_id>', views.NotificationDetailView.as_view(),
         name='lab-notification-detail'),
    path('laboratory/notifications/<str:notification_id>/read', views.NotificationReadView.as_view(),
         name='lab-notification-read'),

    # support
    path('laboratory/support', views.SupportTicketListView.as_view(), name='lab-support'),
    path('laboratory/support/history', views.SupportHistoryView.as_view(), name='lab-support-history'),
]
