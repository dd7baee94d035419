"""
Laboratory wallet.

    balance   = completed earnings - completed withdrawals
    pending   = withdrawal requests still pending or approved
    available = max(0, balance - pending)

Earnings are credited net of the platform commission
(LABORATORY_COMMISSION_RATE, 0.2 by default).
"""

import logging
from datetime import datetime, time, timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from django.utils.dateparse import parse_date

from . import notifications
from .exceptions import ValidationError
from .models import Laboratory, WalletTransaction, WithdrawalRequest
from .normalize import money, parse_amount

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

# payment_method from the client -> payout type stored on the request
PAYOUT_METHODS = {
    'bank': 'bank_transfer',
    'upi': 'upi',
    'wallet': 'paytm',
}


# ── periods ────────────────────────────────────────────────────────────────

def day_start(now=None):
    now = timezone.localtime(now or timezone.now())
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def month_starts(now=None):
    """(start of this month, start of last month), local time."""
    this_month = day_start(now).replace(day=1)
    last_month = (this_month - timedelta(days=1)).replace(day=1)
    return this_month, last_month


def year_start(now=None):
    return day_start(now).replace(month=1, day=1)


def parse_day(value, end_of_day=False):
    """'YYYY-MM-DD' -> aware datetime at the start (or inclusive end) of that day."""
    if not value:
        return None
    try:
        day = parse_date(str(value)[:10])
    except ValueError:
        # well formed but not a real day, e.g. 2024-02-30
        day = None
    if day is None:
        raise ValidationError(f'Invalid date: {value!r}', code='INVALID_DATE')
    moment = datetime.combine(day, time.max if end_of_day else time.min)
    return timezone.make_aware(moment)


def _sum(queryset, field='amount'):
    return money(queryset.aggregate(total=Sum(field))['total'])


# ── commission ─────────────────────────────────────────────────────────────

def commission_rate():
    return Decimal(str(settings.LABORATORY_COMMISSION_RATE))


def split_earning(gross):
    """gross -> (net earning, commission)."""
    gross = money(gross)
    commission = money(gross * commission_rate())
    return gross - commission, commission


def current_balance(laboratory):
    txns = WalletTransaction.objects.filter(laboratory=laboratory, status='completed')
    return _sum(txns.filter(type='earning')) - _sum(txns.filter(type='withdrawal'))


def pending_withdrawals(laboratory):
    return _sum(WithdrawalRequest.objects.filter(laboratory=laboratory, status__in=['pending', 'approved']))


def credit_earning(order):
    """
    Credit the lab for a paid order. One earning per order; a second call
    returns the existing transaction.
    """
    existing = WalletTransaction.objects.filter(order=order, type='earning').first()
    if existing is not None:
        return existing

    net, commission = split_earning(order.total_amount)
    balance = current_balance(order.laboratory) + net
    txn = WalletTransaction.objects.create(
        laboratory=order.laboratory,
        type='earning',
        amount=net,
        balance=balance,
        status='completed',
        description=f"Earning from order {str(order.id)[:8].upper()}",
        reference_id=str(order.id),
        order=order,
        metadata={
            'gross_amount': str(money(order.total_amount)),
            'commission': str(commission),
            'commission_rate': str(commission_rate()),
        },
    )
    logger.info("Credited %s to laboratory %s for order %s (commission %s)",
                net, order.laboratory_id, order.id, commission)
    return txn


# ── reads ──────────────────────────────────────────────────────────────────

def balance_summary(laboratory):
    txns = WalletTransaction.objects.filter(laboratory=laboratory)
    earnings = txns.filter(type='earning', status='completed')
    withdrawals = txns.filter(type='withdrawal', status='completed')
    this_month, last_month = month_starts()

    total_earnings = _sum(earnings)
    total_withdrawals = _sum(withdrawals)
    balance = total_earnings - total_withdrawals
    pending = pending_withdrawals(laboratory)

    return {
        'balance': balance,
        'total_balance': balance,
        'available_balance': max(ZERO, balance - pending),
        'pending_balance': pending,
        'total_earnings': total_earnings,
        'total_withdrawals': total_withdrawals,
        'this_month_earnings': _sum(earnings.filter(created_at__gte=this_month)),
        'last_month_earnings': _sum(earnings.filter(created_at__gte=last_month, created_at__lt=this_month)),
        'this_month_withdrawals': _sum(
            WithdrawalRequest.objects.filter(laboratory=laboratory, created_at__gte=this_month)
        ),
        'total_transactions': txns.count(),
    }


def earnings(laboratory, params):
    """(queryset, summary) of completed earnings, optionally limited to dateFrom..dateTo."""
    all_earnings = WalletTransaction.objects.filter(laboratory=laboratory, type='earning', status='completed')

    queryset = all_earnings
    date_from = parse_day(params.get('dateFrom'))
    date_to = parse_day(params.get('dateTo'), end_of_day=True)
    if date_from:
        queryset = queryset.filter(created_at__gte=date_from)
    if date_to:
        queryset = queryset.filter(created_at__lte=date_to)

    this_month, last_month = month_starts()
    summary = {
        'total_earnings': _sum(all_earnings),
        'today_earnings': _sum(all_earnings.filter(created_at__gte=day_start())),
        'this_month_earnings': _sum(all_earnings.filter(created_at__gte=this_month)),
        'last_month_earnings': _sum(all_earnings.filter(created_at__gte=last_month, created_at__lt=this_month)),
        'this_year_earnings': _sum(all_earnings.filter(created_at__gte=year_start())),
    }
    return queryset.order_by('-created_at'), summary


def transactions(laboratory, params):
    queryset = WalletTransaction.objects.filter(laboratory=laboratory)
    if params.get('type'):
        queryset = queryset.filter(type=params['type'])
    if params.get('status'):
        queryset = queryset.filter(status=params['status'])
    return queryset.order_by('-created_at')


def withdrawals(laboratory, params):
    all_requests = WithdrawalRequest.objects.filter(laboratory=laboratory)
    queryset = all_requests
    if params.get('status'):
        queryset = queryset.filter(status=params['status'])

    this_month, _ = month_starts()
    summary = {
        'total_withdrawals': _sum(all_requests.filter(status='paid')),
        'pending_withdrawals': _sum(all_requests.filter(status__in=['pending', 'approved'])),
        'this_month_withdrawals': _sum(all_requests.filter(created_at__gte=this_month)),
    }
    return queryset.order_by('-created_at'), summary


# ── withdraw ───────────────────────────────────────────────────────────────

def _payout_method(data):
    method = data.get('payment_method') or data.get('paymentMethod')
    if method not in PAYOUT_METHODS:
        raise ValidationError(
            'Invalid payment method',
            code='INVALID_PAYMENT_METHOD',
            detail={'allowed': list(PAYOUT_METHODS)},
        )

    if method == 'bank':
        account = data.get('bank_account') or data.get('bankAccount') or {}
        if not isinstance(account, dict):
            raise ValidationError('bank_account must be an object', code='PAYOUT_DETAILS_REQUIRED',
                                  detail={'field': 'bank_account'})
        number = str(account.get('account_number') or account.get('accountNumber') or '').strip()
        ifsc = str(account.get('ifsc_code') or account.get('ifscCode') or '').strip()
        if not number or not ifsc:
            raise ValidationError('Bank account number and IFSC code are required', code='PAYOUT_DETAILS_REQUIRED')
        details = {
            'account_number': number,
            'ifsc_code': ifsc.upper(),
            'account_holder_name': str(account.get('account_holder_name') or account.get('accountHolderName') or ''),
        }
    elif method == 'upi':
        upi_id = str(data.get('upi_id') or data.get('upiId') or '').strip()
        if not upi_id:
            raise ValidationError('UPI ID is required', code='PAYOUT_DETAILS_REQUIRED')
        details = {'upi_id': upi_id}
    else:
        wallet_number = str(data.get('wallet_number') or data.get('walletNumber') or '').strip()
        if not wallet_number:
            raise ValidationError('Wallet number is required', code='PAYOUT_DETAILS_REQUIRED')
        details = {'wallet_number': wallet_number}

    return {'type': PAYOUT_METHODS[method], 'details': details}


def request_withdrawal(laboratory, data):
    amount = parse_amount(data.get('amount'), 'amount')
    if amount <= 0:
        raise ValidationError('Withdrawal amount must be greater than 0', code='INVALID_AMOUNT')
    payout_method = _payout_method(data)

    with transaction.atomic():
        # serializes concurrent withdrawals for the same lab
        Laboratory.objects.select_for_update().get(pk=laboratory.pk)

        balance = current_balance(laboratory)
        available = max(ZERO, balance - pending_withdrawals(laboratory))
        if amount > available:
            raise ValidationError(
                'Insufficient balance',
                code='INSUFFICIENT_BALANCE',
                detail={'available_balance': str(available), 'requested': str(amount)},
            )

        withdrawal = WithdrawalRequest.objects.create(
            laboratory=laboratory,
            amount=amount,
            payout_method=payout_method,
            status='pending',
        )
        WalletTransaction.objects.create(
            laboratory=laboratory,
            type='withdrawal',
            amount=amount,
            balance=balance,
            status='pending',
            description='Withdrawal request',
            reference_id=str(withdrawal.id),
            withdrawal_request=withdrawal,
            metadata={'payout_type': payout_method['type']},
        )

    logger.info("Laboratory %s requested withdrawal %s of %s", laboratory.id, withdrawal.id, amount)
    notifications.withdrawal_requested(withdrawal)
    return withdrawal
