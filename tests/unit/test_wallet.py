"""
Unit tests for wallet balances, earnings and withdrawals.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from laboratory import wallet
from laboratory.exceptions import ValidationError
from laboratory.models import Notification, WalletTransaction, WithdrawalRequest
from tests.conftest import OrderFactory, WalletTransactionFactory, WithdrawalRequestFactory


class TestPeriods:

    def test_month_starts_cross_year(self):
        now = timezone.make_aware(datetime(2024, 1, 15, 10, 30))
        this_month, last_month = wallet.month_starts(now)
        assert (this_month.year, this_month.month, this_month.day, this_month.hour) == (2024, 1, 1, 0)
        assert (last_month.year, last_month.month, last_month.day) == (2023, 12, 1)

    def test_year_start(self):
        now = timezone.make_aware(datetime(2024, 7, 4, 18, 0))
        assert wallet.year_start(now).date().isoformat() == '2024-01-01'

    def test_parse_day_end_is_inclusive(self):
        end = wallet.parse_day('2024-03-05', end_of_day=True)
        assert (end.hour, end.minute, end.second) == (23, 59, 59)

    def test_parse_day_invalid(self):
        with pytest.raises(ValidationError) as exc_info:
            wallet.parse_day('05/03/2024')
        assert exc_info.value.code == 'INVALID_DATE'

    @pytest.mark.parametrize('value', ['2024-02-30', '2023-13-01', '2024-04-31'])
    def test_parse_day_not_a_calendar_day(self, value):
        with pytest.raises(ValidationError) as exc_info:
            wallet.parse_day(value)
        assert exc_info.value.code == 'INVALID_DATE'

    def test_split_earning(self):
        assert wallet.split_earning('999.99') == (Decimal('799.99'), Decimal('200.00'))


@pytest.mark.django_db
class TestCreditEarning:

    def test_credit_is_idempotent(self, laboratory):
        order = OrderFactory(laboratory=laboratory, total_amount=Decimal('250.00'))

        first = wallet.credit_earning(order)
        second = wallet.credit_earning(order)

        assert first.pk == second.pk
        assert first.amount == Decimal('200.00')
        assert first.balance == Decimal('200.00')
        assert WalletTransaction.objects.count() == 1

    def test_running_balance(self, laboratory):
        WalletTransactionFactory(laboratory=laboratory, amount=Decimal('100.00'))
        txn = wallet.credit_earning(OrderFactory(laboratory=laboratory, total_amount=Decimal('100.00')))
        assert txn.balance == Decimal('180.00')


@pytest.mark.django_db
class TestBalanceSummary:

    def test_summary(self, laboratory):
        WalletTransactionFactory(laboratory=laboratory, amount=Decimal('1000.00'))
        WalletTransactionFactory(laboratory=laboratory, type='withdrawal', amount=Decimal('300.00'))
        WalletTransactionFactory(laboratory=laboratory, type='earning', status='pending', amount=Decimal('50.00'))
        WithdrawalRequestFactory(laboratory=laboratory, amount=Decimal('200.00'), status='pending')
        WithdrawalRequestFactory(laboratory=laboratory, amount=Decimal('300.00'), status='paid')
        WalletTransactionFactory(amount=Decimal('999.00'))

        summary = wallet.balance_summary(laboratory)

        assert summary['balance'] == Decimal('700.00')
        assert summary['total_balance'] == Decimal('700.00')
        assert summary['pending_balance'] == Decimal('200.00')
        assert summary['available_balance'] == Decimal('500.00')
        assert summary['total_earnings'] == Decimal('1000.00')
        assert summary['total_withdrawals'] == Decimal('300.00')
        assert summary['this_month_earnings'] == Decimal('1000.00')
        assert summary['total_transactions'] == 3

    def test_available_never_negative(self, laboratory):
        WithdrawalRequestFactory(laboratory=laboratory, amount=Decimal('50.00'))
        assert wallet.balance_summary(laboratory)['available_balance'] == Decimal('0.00')


@pytest.mark.django_db
class TestEarningsAndLists:

    def test_earnings_date_filter_keeps_summary_totals(self, laboratory):
        recent = WalletTransactionFactory(laboratory=laboratory, amount=Decimal('100.00'))
        old = WalletTransactionFactory(laboratory=laboratory, amount=Decimal('40.00'))
        WalletTransaction.objects.filter(pk=old.pk).update(created_at=timezone.now() - timedelta(days=400))

        today = timezone.localdate().isoformat()
        queryset, summary = wallet.earnings(laboratory, {'dateFrom': today})

        assert list(queryset) == [recent]
        assert summary['total_earnings'] == Decimal('140.00')
        assert summary['today_earnings'] == Decimal('100.00')

    def test_transactions_filter(self, laboratory):
        WalletTransactionFactory(laboratory=laboratory)
        WalletTransactionFactory(laboratory=laboratory, type='withdrawal', status='pending')
        assert wallet.transactions(laboratory, {'type': 'withdrawal'}).count() == 1
        assert wallet.transactions(laboratory, {'status': 'completed'}).count() == 1

    def test_withdrawals_summary(self, laboratory):
        WithdrawalRequestFactory(laboratory=laboratory, amount=Decimal('10.00'), status='paid')
        WithdrawalRequestFactory(laboratory=laboratory, amount=Decimal('20.00'), status='approved')
        queryset, summary = wallet.withdrawals(laboratory, {'status': 'paid'})
        assert queryset.count() == 1
        assert summary['total_withdrawals'] == Decimal('10.00')
        assert summary['pending_withdrawals'] == Decimal('20.00')


@pytest.mark.django_db
class TestRequestWithdrawal:

    @pytest.fixture
    def funded(self, laboratory):
        WalletTransactionFactory(laboratory=laboratory, amount=Decimal('500.00'))
        return laboratory

    def test_upi_withdrawal(self, funded):
        withdrawal = wallet.request_withdrawal(funded, {'amount': '200', 'paymentMethod': 'upi', 'upiId': 'lab@okhdfc'})

        assert withdrawal.status == 'pending'
        assert withdrawal.payout_method == {'type': 'upi', 'details': {'upi_id': 'lab@okhdfc'}}
        txn = WalletTransaction.objects.get(withdrawal_request=withdrawal)
        assert txn.status == 'pending'
        assert wallet.balance_summary(funded)['available_balance'] == Decimal('300.00')
        assert Notification.objects.filter(recipient_type='admin', event_type='withdrawal_requested').exists()

    def test_bank_details_required(self, funded):
        with pytest.raises(ValidationError) as exc_info:
            wallet.request_withdrawal(funded, {'amount': 100, 'payment_method': 'bank', 'bank_account': {}})
        assert exc_info.value.code == 'PAYOUT_DETAILS_REQUIRED'

    @pytest.mark.parametrize('account', ['12345678', ['12345678', 'HDFC0001'], 42])
    def test_bank_account_must_be_an_object(self, funded, account):
        with pytest.raises(ValidationError) as exc_info:
            wallet.request_withdrawal(funded, {'amount': 100, 'payment_method': 'bank', 'bank_account': account})
        assert exc_info.value.code == 'PAYOUT_DETAILS_REQUIRED'
        assert WithdrawalRequest.objects.count() == 0

    def test_bank_withdrawal(self, funded):
        withdrawal = wallet.request_withdrawal(funded, {
            'amount': 100,
            'payment_method': 'bank',
            'bankAccount': {'accountNumber': '12345678', 'ifscCode': 'hdfc0001', 'accountHolderName': 'Lab'},
        })
        assert withdrawal.payout_method['type'] == 'bank_transfer'
        assert withdrawal.payout_method['details']['ifsc_code'] == 'HDFC0001'

    def test_wallet_method_maps_to_paytm(self, funded):
        withdrawal = wallet.request_withdrawal(funded, {'amount': 1, 'payment_method': 'wallet',
                                                        'wallet_number': '9000000000'})
        assert withdrawal.payout_method['type'] == 'paytm'

    def test_insufficient_balance_counts_pending(self, funded):
        WithdrawalRequestFactory(laboratory=funded, amount=Decimal('450.00'))
        with pytest.raises(ValidationError) as exc_info:
            wallet.request_withdrawal(funded, {'amount': 100, 'payment_method': 'upi', 'upi_id': 'x@y'})
        assert exc_info.value.code == 'INSUFFICIENT_BALANCE'
        assert exc_info.value.detail['available_balance'] == '50.00'

    @pytest.mark.parametrize('amount', [0, -5, 'lots'])
    def test_bad_amount(self, funded, amount):
        with pytest.raises(ValidationError) as exc_info:
            wallet.request_withdrawal(funded, {'amount': amount, 'payment_method': 'upi', 'upi_id': 'x@y'})
        assert exc_info.value.code == 'INVALID_AMOUNT'
        assert WithdrawalRequest.objects.count() == 0

    def test_unknown_method(self, funded):
        with pytest.raises(ValidationError) as exc_info:
            wallet.request_withdrawal(funded, {'amount': 10, 'payment_method': 'cheque'})
        assert exc_info.value.code == 'INVALID_PAYMENT_METHOD'
