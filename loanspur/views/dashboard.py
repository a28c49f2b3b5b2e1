"""
Dashboard View
==============

Role-based portfolio statistics for the signed-in user
"""

from django.contrib.auth.decorators import login_required
from django.db.models import Sum
from django.http import JsonResponse
from django.utils import timezone
from decimal import Decimal

from loanspur.models import Client, Loan, SavingsAccount, Transaction
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.utils.money import MoneyCalculator


@login_required
@tenant_required
def dashboard_view(request):
    """
    Main dashboard - shows role-based statistics

    - Admins and accountants: tenant-wide
    - Cashiers: their office
    - Loan officers: their assigned clients
    """
    checker = PermissionChecker(request.user, request.tenant)
    today = timezone.now().date()
    this_month_start = today.replace(day=1)

    # =========================================================================
    # BASE QUERYSETS (FILTERED BY ROLE)
    # =========================================================================

    clients = checker.filter_clients(Client.objects.all())
    loans = checker.filter_loans(Loan.objects.all())
    savings_accounts = checker.filter_savings_accounts(SavingsAccount.objects.all())
    transactions = checker.filter_transactions(Transaction.objects.all())

    client_stats = clients.get_statistics()
    client_stats['new_this_month'] = clients.filter(created_at__date__gte=this_month_start).count()

    # =========================================================================
    # LOAN STATISTICS
    # =========================================================================

    servicing = loans.servicing()
    total_outstanding = loans.total_outstanding()
    overdue_loans = loans.with_overdue_installments()
    overdue_amount = overdue_loans.aggregate(total=Sum('outstanding_balance'))['total'] or Decimal('0.00')

    loan_stats = {
        'total': loans.count(),
        'pending': loans.pending().count(),
        'approved': loans.approved().count(),
        'active': servicing.count(),
        'closed': loans.closed().count(),
        'written_off': loans.written_off().count(),
        'total_disbursed': loans.total_disbursed(),
        'total_outstanding': total_outstanding,
        'total_collected': loans.aggregate(total=Sum('amount_paid'))['total'] or Decimal('0.00'),
        'overdue_count': overdue_loans.count(),
        'overdue_amount': overdue_amount,
        'portfolio_at_risk': MoneyCalculator.safe_divide(overdue_amount * 100, total_outstanding),
        'disbursed_this_month': loans.filter(disbursement_date__gte=this_month_start).count(),
    }

    # =========================================================================
    # SAVINGS & TRANSACTIONS
    # =========================================================================

    savings_stats = {
        'total_accounts': savings_accounts.count(),
        'active_accounts': savings_accounts.active().count(),
        'total_balance': savings_accounts.total_balance(),
    }

    month_transactions = transactions.completed().in_period(this_month_start, today)
    transaction_stats = {
        'repayments_this_month': month_transactions.of_type('loan_repayment').total_amount(),
        'deposits_this_month': month_transactions.of_type('savings_deposit').total_amount(),
        'withdrawals_this_month': month_transactions.of_type('savings_withdrawal').total_amount(),
        'pending_mpesa': transactions.mpesa().pending().count(),
    }

    return JsonResponse({
        'tenant': request.tenant.name,
        'role': request.user.role,
        'clients': client_stats,
        'loans': loan_stats,
        'savings': savings_stats,
        'transactions': transaction_stats,
    })
