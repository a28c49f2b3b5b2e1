"""
Savings Views
=============

Savings account opening, approval, deposits, withdrawals, fees, interest,
reversals, closure and statements
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied
from django.db.models import Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods
import logging

from loanspur.models import SavingsAccount, SavingsTransaction, SavingsInterestPosting
from loanspur.forms.savings_forms import (
    SavingsAccountForm, SavingsActivationForm, SavingsTransactionForm, SavingsWithdrawalForm,
    SavingsFeeForm, InterestPeriodForm, AccountClosureForm,
)
from loanspur.forms.accounting_forms import DateRangeForm
from loanspur.forms.loan_forms import ReversalForm
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.utils.pdf_export import generate_savings_statement_pdf
from loanspur.views.common import parse_request_data, form_error_response, json_errors, paginate
from loanspur.views.serializers import (
    serialize_savings_account, serialize_savings_transaction, serialize_interest_posting,
)

logger = logging.getLogger(__name__)


def get_savings_account_or_404(request, account_id):
    account = get_object_or_404(
        SavingsAccount.objects.for_tenant(request.tenant).select_related('client', 'product'),
        id=account_id,
    )
    if not PermissionChecker(request.user, request.tenant).can_view_savings_account(account):
        raise PermissionDenied("You don't have permission to view this account")
    return account


def _check_can_process(request):
    if not PermissionChecker(request.user, request.tenant).can_process_savings():
        raise PermissionDenied("You don't have permission to process savings transactions")


# =============================================================================
# ACCOUNT LIST, DETAIL & OPENING
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def savings_list(request):
    """
    GET lists savings accounts visible to the user. POST opens a pending
    account for an approved client.
    """
    checker = PermissionChecker(request.user, request.tenant)

    if request.method == 'POST':
        if not checker.can_open_savings():
            raise PermissionDenied("You don't have permission to open savings accounts")
        form = SavingsAccountForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        if not checker.can_view_client(form.cleaned_data['client']):
            raise PermissionDenied("You don't have permission to open an account for this client")
        account = form.save(commit=False)
        account.created_by = request.user
        account.save()
        logger.info(f"Savings account opened: {account.account_number} for {account.client}")
        return JsonResponse({'savings_account': serialize_savings_account(account)}, status=201)

    accounts = checker.filter_savings_accounts(SavingsAccount.objects.select_related('client', 'product'))
    q = request.GET.get('q')
    if q:
        accounts = accounts.filter(
            Q(account_number__icontains=q) |
            Q(client__first_name__icontains=q) |
            Q(client__last_name__icontains=q)
        )
    if request.GET.get('status'):
        accounts = accounts.filter(status=request.GET['status'])
    return JsonResponse(paginate(request, accounts.order_by('-created_at'), serialize_savings_account))


@login_required
@tenant_required
@require_GET
@json_errors
def savings_detail(request, account_id):
    account = get_savings_account_or_404(request, account_id)
    data = serialize_savings_account(account)
    data['transactions'] = [
        serialize_savings_transaction(txn)
        for txn in account.transactions.order_by('-transaction_date', '-created_at')[:50]
    ]
    data['interest_postings'] = [
        serialize_interest_posting(posting) for posting in account.interest_postings.order_by('-period_end')
    ]
    return JsonResponse({'savings_account': data})


# =============================================================================
# APPROVAL, ACTIVATION & CLOSURE
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def savings_approve(request, account_id):
    account = get_savings_account_or_404(request, account_id)
    if not PermissionChecker(request.user, request.tenant).can_approve_savings():
        raise PermissionDenied("You don't have permission to approve savings accounts")

    account.approve(request.user)
    logger.info(f"Savings account approved: {account.account_number} by {request.user.email}")
    return JsonResponse({'savings_account': serialize_savings_account(account)})


@login_required
@tenant_required
@require_POST
@json_errors
def savings_activate(request, account_id):
    """Activate an approved account with its opening deposit"""
    account = get_savings_account_or_404(request, account_id)
    _check_can_process(request)

    form = SavingsActivationForm(parse_request_data(request), account=account)
    if not form.is_valid():
        return form_error_response(form)

    account.activate(
        request.user,
        opening_deposit=form.cleaned_data['opening_deposit'],
        method=form.cleaned_data['method'],
        reference=form.cleaned_data.get('reference', ''),
    )
    account.refresh_from_db()
    return JsonResponse({'savings_account': serialize_savings_account(account)})


@login_required
@tenant_required
@require_POST
@json_errors
def savings_close(request, account_id):
    account = get_savings_account_or_404(request, account_id)
    if not PermissionChecker(request.user, request.tenant).can_approve_savings():
        raise PermissionDenied("You don't have permission to close savings accounts")

    form = AccountClosureForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    account.close(request.user, reason=form.cleaned_data.get('reason', ''))
    return JsonResponse({'savings_account': serialize_savings_account(account)})


# =============================================================================
# DEPOSITS, WITHDRAWALS & FEES
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def savings_deposit(request, account_id):
    account = get_savings_account_or_404(request, account_id)
    _check_can_process(request)

    form = SavingsTransactionForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    data = form.cleaned_data
    txn = account.deposit(
        data['amount'],
        request.user,
        method=data['method'],
        reference=data.get('reference', ''),
        description=data.get('description', ''),
        transaction_date=data.get('transaction_date'),
    )
    return JsonResponse({
        'savings_account': serialize_savings_account(account),
        'transaction': serialize_savings_transaction(txn),
    }, status=201)


@login_required
@tenant_required
@require_POST
@json_errors
def savings_withdraw(request, account_id):
    account = get_savings_account_or_404(request, account_id)
    _check_can_process(request)

    form = SavingsWithdrawalForm(parse_request_data(request), account=account)
    if not form.is_valid():
        return form_error_response(form)

    data = form.cleaned_data
    txn = account.withdraw(
        data['amount'],
        request.user,
        method=data['method'],
        reference=data.get('reference', ''),
        description=data.get('description', ''),
        transaction_date=data.get('transaction_date'),
    )
    return JsonResponse({
        'savings_account': serialize_savings_account(account),
        'transaction': serialize_savings_transaction(txn),
    }, status=201)


@login_required
@tenant_required
@require_POST
@json_errors
def savings_charge_fee(request, account_id):
    account = get_savings_account_or_404(request, account_id)
    _check_can_process(request)

    form = SavingsFeeForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    txn = account.charge_fee(
        request.user,
        fee=form.cleaned_data.get('fee'),
        amount=form.cleaned_data.get('amount'),
        description=form.cleaned_data.get('description', ''),
    )
    return JsonResponse({
        'savings_account': serialize_savings_account(account),
        'transaction': serialize_savings_transaction(txn),
    }, status=201)


@login_required
@tenant_required
@require_POST
@json_errors
def savings_transaction_undo(request, account_id, transaction_id):
    """
    Reverse a deposit or withdrawal

    Permissions:
    - Tenant admins, accountants and super admins
    """
    account = get_savings_account_or_404(request, account_id)
    if not PermissionChecker(request.user, request.tenant).can_reverse_payments():
        raise PermissionDenied("You don't have permission to reverse transactions")

    txn = get_object_or_404(
        SavingsTransaction.objects.for_tenant(request.tenant), id=transaction_id, savings_account=account
    )
    form = ReversalForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    reversal = account.undo_transaction(txn, request.user, reason=form.cleaned_data['reason'])
    return JsonResponse({
        'savings_account': serialize_savings_account(account),
        'reversal': serialize_savings_transaction(reversal),
    })


# =============================================================================
# INTEREST
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def savings_calculate_interest(request, account_id):
    """Compute interest for a period without posting it"""
    account = get_savings_account_or_404(request, account_id)
    if not PermissionChecker(request.user, request.tenant).can_post_interest():
        raise PermissionDenied("You don't have permission to calculate interest")

    form = InterestPeriodForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    posting = account.calculate_interest(form.cleaned_data['period_start'], form.cleaned_data['period_end'])
    return JsonResponse({'interest_posting': serialize_interest_posting(posting)}, status=201)


@login_required
@tenant_required
@require_POST
@json_errors
def savings_post_interest(request, account_id, posting_id):
    account = get_savings_account_or_404(request, account_id)
    if not PermissionChecker(request.user, request.tenant).can_post_interest():
        raise PermissionDenied("You don't have permission to post interest")

    posting = get_object_or_404(SavingsInterestPosting, id=posting_id, savings_account=account)
    account.post_interest(posting, request.user)
    posting.refresh_from_db()
    return JsonResponse({
        'savings_account': serialize_savings_account(account),
        'interest_posting': serialize_interest_posting(posting),
    })


# =============================================================================
# STATEMENT
# =============================================================================

@login_required
@tenant_required
@require_GET
@json_errors
def savings_statement(request, account_id):
    """Statement for ``?date_from=&date_to=``, as JSON or with ``?format=pdf``"""
    account = get_savings_account_or_404(request, account_id)
    date_from = date_to = None
    if request.GET.get('date_from') or request.GET.get('date_to'):
        form = DateRangeForm(request.GET)
        if not form.is_valid():
            return form_error_response(form)
        date_from, date_to = form.cleaned_data['date_from'], form.cleaned_data['date_to']

    if request.GET.get('format') == 'pdf':
        return generate_savings_statement_pdf(account, date_from, date_to)
    return JsonResponse({
        'savings_account': serialize_savings_account(account),
        'statement': account.get_statement(date_from, date_to),
    })
