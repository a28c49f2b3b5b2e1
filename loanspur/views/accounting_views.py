"""
Accounting Views
================

Chart of accounts, manual journals, financial reports, accruals,
provisions and period closing
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied
from django.db import transaction
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods
import logging

from loanspur.models import ChartOfAccounts, JournalEntry, Accrual, Provision, ClosingEntry
from loanspur.forms.accounting_forms import (
    TrialBalanceForm, DateRangeForm, BalanceSheetForm, GeneralLedgerForm, ChartOfAccountsForm,
    JournalEntryForm, JournalReversalForm, AccrualForm, AccrualReversalForm, ProvisionForm, ClosePeriodForm,
)
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.utils import accounting_helpers
from loanspur.utils.excel_export import (
    export_trial_balance_excel, export_income_statement_excel, export_general_ledger_excel,
)
from loanspur.views.common import parse_request_data, form_error_response, json_errors, paginate
from loanspur.views.serializers import (
    serialize_account, serialize_journal_entry, serialize_accrual, serialize_provision,
    serialize_closing_entry, serialize_report,
)

logger = logging.getLogger(__name__)


def _check_can_view_financials(request):
    if not PermissionChecker(request.user, request.tenant).can_view_financials():
        raise PermissionDenied("You don't have permission to view financial reports")


def _check_can_manage_journals(request):
    if not PermissionChecker(request.user, request.tenant).can_manage_journals():
        raise PermissionDenied("You don't have permission to manage journal entries")


def _wants_excel(request):
    return request.GET.get('format') == 'xlsx'


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def chart_of_accounts(request):
    """
    GET lists the chart, POST adds an account

    Permissions:
    - Tenant admins, accountants and super admins
    """
    if not PermissionChecker(request.user, request.tenant).can_manage_chart_of_accounts():
        raise PermissionDenied("You don't have permission to manage the chart of accounts")

    if request.method == 'POST':
        form = ChartOfAccountsForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        account = form.save()
        logger.info(f"Account created: {account.account_code} {account.account_name}")
        return JsonResponse({'account': serialize_account(account)}, status=201)

    accounts = ChartOfAccounts.objects.for_tenant(request.tenant).order_by('account_code')
    if request.GET.get('account_type'):
        accounts = accounts.filter(account_type=request.GET['account_type'])
    return JsonResponse({'accounts': [serialize_account(account) for account in accounts]})


@login_required
@tenant_required
@require_POST
@json_errors
def chart_account_update(request, account_id):
    if not PermissionChecker(request.user, request.tenant).can_manage_chart_of_accounts():
        raise PermissionDenied("You don't have permission to manage the chart of accounts")

    account = get_object_or_404(ChartOfAccounts.objects.for_tenant(request.tenant), id=account_id)
    form = ChartOfAccountsForm(parse_request_data(request), instance=account, tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)
    if form.cleaned_data['account_type'] != account.account_type and account.journal_lines.exists():
        raise ValueError("Cannot change the type of an account that has journal lines")
    account = form.save()
    return JsonResponse({'account': serialize_account(account)})


# =============================================================================
# JOURNAL ENTRIES
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def journal_list(request):
    """
    GET lists journal entries, POST creates a manual entry

    A manual entry stays a draft unless ``post`` is true.
    """
    _check_can_manage_journals(request)

    if request.method == 'POST':
        form = JournalEntryForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        data = form.cleaned_data
        entry = accounting_helpers.create_journal_entry(
            tenant=request.tenant,
            transaction_date=data['transaction_date'],
            description=data['description'],
            lines=data['lines'],
            created_by=request.user,
            entry_type='manual',
            office=data.get('office'),
            auto_post=data.get('post', False),
        )
        return JsonResponse({'journal_entry': serialize_journal_entry(entry)}, status=201)

    entries = JournalEntry.objects.for_tenant(request.tenant).order_by('-transaction_date', '-created_at')
    for name in ('status', 'entry_type', 'reference_type'):
        if request.GET.get(name):
            entries = entries.filter(**{name: request.GET[name]})
    form = DateRangeForm(request.GET)
    if (request.GET.get('date_from') or request.GET.get('date_to')) and form.is_valid():
        entries = entries.filter(
            transaction_date__gte=form.cleaned_data['date_from'],
            transaction_date__lte=form.cleaned_data['date_to'],
        )
    return JsonResponse(paginate(request, entries, lambda entry: serialize_journal_entry(entry, with_lines=False)))


@login_required
@tenant_required
@require_GET
@json_errors
def journal_detail(request, entry_id):
    _check_can_manage_journals(request)
    entry = get_object_or_404(JournalEntry.objects.for_tenant(request.tenant), id=entry_id)
    return JsonResponse({'journal_entry': serialize_journal_entry(entry)})


@login_required
@tenant_required
@require_POST
@json_errors
def journal_post(request, entry_id):
    _check_can_manage_journals(request)
    entry = get_object_or_404(JournalEntry.objects.for_tenant(request.tenant), id=entry_id)
    entry.post(request.user)
    return JsonResponse({'journal_entry': serialize_journal_entry(entry)})


@login_required
@tenant_required
@require_POST
@json_errors
def journal_reverse(request, entry_id):
    """Post the mirror entry of a posted journal"""
    _check_can_manage_journals(request)
    entry = get_object_or_404(JournalEntry.objects.for_tenant(request.tenant), id=entry_id)

    form = JournalReversalForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    reversal = entry.reverse(
        request.user,
        reason=form.cleaned_data['reason'],
        reversal_date=form.cleaned_data.get('reversal_date'),
    )
    return JsonResponse({
        'journal_entry': serialize_journal_entry(entry),
        'reversal': serialize_journal_entry(reversal),
    })


# =============================================================================
# FINANCIAL REPORTS
# =============================================================================

@login_required
@tenant_required
@require_GET
@json_errors
def trial_balance(request):
    _check_can_view_financials(request)
    form = TrialBalanceForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    report = accounting_helpers.get_trial_balance(
        request.tenant,
        date_from=form.cleaned_data['date_from'],
        date_to=form.cleaned_data['date_to'],
        show_zero_balances=form.cleaned_data['show_zero_balances'],
    )
    if _wants_excel(request):
        return export_trial_balance_excel(report, currency=request.tenant.currency_code)
    return JsonResponse(serialize_report(report))


@login_required
@tenant_required
@require_GET
@json_errors
def income_statement(request):
    _check_can_view_financials(request)
    form = DateRangeForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    report = accounting_helpers.get_income_statement(
        request.tenant, form.cleaned_data['date_from'], form.cleaned_data['date_to']
    )
    if _wants_excel(request):
        return export_income_statement_excel(report, currency=request.tenant.currency_code)
    return JsonResponse(serialize_report(report))


@login_required
@tenant_required
@require_GET
@json_errors
def balance_sheet(request):
    _check_can_view_financials(request)
    form = BalanceSheetForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    report = accounting_helpers.get_balance_sheet(request.tenant, form.cleaned_data['as_of_date'])
    return JsonResponse(serialize_report(report))


@login_required
@tenant_required
@require_GET
@json_errors
def general_ledger(request):
    """One account's lines with running balance for ``?account=<id>``"""
    _check_can_view_financials(request)
    form = GeneralLedgerForm(request.GET, tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    report = accounting_helpers.get_general_ledger(
        form.cleaned_data['account'], form.cleaned_data['date_from'], form.cleaned_data['date_to']
    )
    if _wants_excel(request):
        return export_general_ledger_excel(report, currency=request.tenant.currency_code)
    return JsonResponse(serialize_report(report))


# =============================================================================
# ACCRUALS & PROVISIONS
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def accrual_list(request):
    _check_can_manage_journals(request)

    if request.method == 'POST':
        form = AccrualForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        with transaction.atomic():
            accrual = form.save(commit=False)
            accrual.created_by = request.user
            accrual.save()
            if parse_request_data(request).get('post'):
                accrual.post(request.user)
        return JsonResponse({'accrual': serialize_accrual(accrual)}, status=201)

    accruals = Accrual.objects.for_tenant(request.tenant)
    if request.GET.get('status'):
        accruals = accruals.filter(status=request.GET['status'])
    return JsonResponse({'accruals': [serialize_accrual(accrual) for accrual in accruals]})


@login_required
@tenant_required
@require_POST
@json_errors
def accrual_post(request, accrual_id):
    _check_can_manage_journals(request)
    accrual = get_object_or_404(Accrual.objects.for_tenant(request.tenant), id=accrual_id)
    accrual.post(request.user)
    return JsonResponse({'accrual': serialize_accrual(accrual)})


@login_required
@tenant_required
@require_POST
@json_errors
def accrual_reverse(request, accrual_id):
    _check_can_manage_journals(request)
    accrual = get_object_or_404(Accrual.objects.for_tenant(request.tenant), id=accrual_id)
    form = JournalReversalForm({'reason': 'Accrual reversal', **parse_request_data(request).dict()}
                               if hasattr(parse_request_data(request), 'dict') else
                               {'reason': 'Accrual reversal', **parse_request_data(request)})
    reversal_date = form.cleaned_data.get('reversal_date') if form.is_valid() else None
    accrual.reverse(request.user, reversal_date=reversal_date)
    return JsonResponse({'accrual': serialize_accrual(accrual)})


@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def provision_list(request):
    """
    GET lists provisions, POST records one

    Percentage provisions take their amount from ``base_amount * rate``.
    """
    _check_can_manage_journals(request)

    if request.method == 'POST':
        form = ProvisionForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        with transaction.atomic():
            provision = form.save(commit=False)
            provision.created_by = request.user
            provision.calculate()
            provision.save()
            if parse_request_data(request).get('post'):
                provision.post(request.user)
        return JsonResponse({'provision': serialize_provision(provision)}, status=201)

    provisions = Provision.objects.for_tenant(request.tenant)
    return JsonResponse({'provisions': [serialize_provision(provision) for provision in provisions]})


@login_required
@tenant_required
@require_POST
@json_errors
def provision_post(request, provision_id):
    _check_can_manage_journals(request)
    provision = get_object_or_404(Provision.objects.for_tenant(request.tenant), id=provision_id)
    provision.post(request.user)
    return JsonResponse({'provision': serialize_provision(provision)})


# =============================================================================
# PERIOD CLOSE
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def close_period(request):
    """
    GET lists closed periods, POST closes income and expense for a period
    into retained earnings

    Permissions:
    - Tenant admins, accountants and super admins
    """
    _check_can_manage_journals(request)

    if request.method == 'POST':
        form = ClosePeriodForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        closing = accounting_helpers.close_period(
            request.tenant,
            form.cleaned_data['period_start'],
            form.cleaned_data['period_end'],
            form.cleaned_data['retained_earnings_account'],
            request.user,
        )
        return JsonResponse({'closing_entry': serialize_closing_entry(closing)}, status=201)

    closings = ClosingEntry.objects.for_tenant(request.tenant)
    return JsonResponse({'closing_entries': [serialize_closing_entry(closing) for closing in closings]})
