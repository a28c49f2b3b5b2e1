"""
Transaction Views
=================

The money movement ledger: listing with filters, detail and reconciliation
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied
from django.db.models import Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST
import logging

from loanspur.models import Transaction
from loanspur.forms.accounting_forms import DateRangeForm
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.views.common import form_error_response, json_errors, paginate
from loanspur.views.serializers import serialize_transaction

logger = logging.getLogger(__name__)


@login_required
@tenant_required
@require_GET
@json_errors
def transaction_list(request):
    """
    Ledger rows visible to the user

    Filters: ``type``, ``status``, ``payment_type``, ``reconciliation_status``,
    ``q`` (transaction id, M-Pesa receipt or external id), ``date_from`` and
    ``date_to``.
    """
    checker = PermissionChecker(request.user, request.tenant)
    transactions = checker.filter_transactions(Transaction.objects.select_related('client'))

    if request.GET.get('type'):
        transactions = transactions.of_type(request.GET['type'])
    for name in ('status', 'payment_type', 'reconciliation_status'):
        if request.GET.get(name):
            transactions = transactions.filter(**{name: request.GET[name]})

    q = request.GET.get('q')
    if q:
        transactions = transactions.filter(
            Q(transaction_id__icontains=q) |
            Q(mpesa_receipt_number__icontains=q) |
            Q(external_transaction_id__icontains=q)
        )

    if request.GET.get('date_from') or request.GET.get('date_to'):
        form = DateRangeForm(request.GET)
        if not form.is_valid():
            return form_error_response(form)
        transactions = transactions.in_period(form.cleaned_data['date_from'], form.cleaned_data['date_to'])

    transactions = transactions.order_by('-transaction_date')
    data = paginate(request, transactions, serialize_transaction)
    data['total_amount'] = transactions.total_amount()
    return JsonResponse(data)


@login_required
@tenant_required
@require_GET
@json_errors
def transaction_detail(request, transaction_id):
    checker = PermissionChecker(request.user, request.tenant)
    txn = get_object_or_404(checker.filter_transactions(Transaction.objects.all()), id=transaction_id)
    data = serialize_transaction(txn)
    data['callback_payload'] = txn.callback_payload
    return JsonResponse({'transaction': data})


@login_required
@tenant_required
@require_POST
@json_errors
def transaction_reconcile(request, transaction_id):
    """
    Mark a completed transaction as matched against the bank or M-Pesa statement

    Permissions:
    - Tenant admins, accountants and super admins
    """
    checker = PermissionChecker(request.user, request.tenant)
    if not checker.can_manage_journals():
        raise PermissionDenied("You don't have permission to reconcile transactions")

    txn = get_object_or_404(Transaction.objects.for_tenant(request.tenant), id=transaction_id)
    if txn.status != 'completed':
        raise ValueError(f"Only completed transactions can be reconciled (status: {txn.get_status_display()})")
    txn.reconcile()
    logger.info(f"Transaction reconciled: {txn.transaction_id} by {request.user.email}")
    return JsonResponse({'transaction': serialize_transaction(txn)})
