"""
M-Pesa Views
============

Staff requests to the Daraja API and the public callbacks Safaricom posts
results to. Callbacks always acknowledge, otherwise the gateway keeps
retrying.
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
import json
import logging

from loanspur.forms.mpesa_forms import MpesaRequestForm
from loanspur.mpesa import (
    ACKNOWLEDGEMENT, initiate_stk_push, initiate_b2c_disbursement,
    handle_stk_callback, handle_b2c_result, handle_b2c_timeout,
)
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.views.common import parse_request_data, form_error_response, json_errors
from loanspur.views.serializers import serialize_transaction

logger = logging.getLogger(__name__)


@login_required
@tenant_required
@require_POST
@json_errors
def mpesa_request(request):
    """
    Start an STK push or a B2C disbursement

    Permissions:
    - STK push for loans: whoever can record payments
    - STK push for savings: whoever can process savings
    - B2C: whoever can disburse loans
    """
    checker = PermissionChecker(request.user, request.tenant)
    form = MpesaRequestForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    data = form.cleaned_data
    loan = data.get('loan')
    savings_account = data.get('savings_account')
    phone = data.get('phone') or None

    if data['action'] == 'b2c_disbursement':
        if not checker.can_disburse_loans() or not checker.can_view_loan(loan):
            raise PermissionDenied("You don't have permission to disburse this loan")
        txn = initiate_b2c_disbursement(loan, request.user, phone=phone)
    else:
        if loan is not None and not (checker.can_record_payments() and checker.can_view_loan(loan)):
            raise PermissionDenied("You don't have permission to collect payments for this loan")
        if savings_account is not None and not (
            checker.can_process_savings() and checker.can_view_savings_account(savings_account)
        ):
            raise PermissionDenied("You don't have permission to collect deposits for this account")
        txn = initiate_stk_push(
            request.tenant,
            phone,
            data['amount'],
            loan=loan,
            savings_account=savings_account,
            user=request.user,
        )

    return JsonResponse({'transaction': serialize_transaction(txn)}, status=201)


def _acknowledge(request, handler, label):
    try:
        payload = json.loads(request.body or b'{}')
    except ValueError:
        logger.error(f"M-Pesa {label} with unreadable body from {request.META.get('REMOTE_ADDR')}")
        return JsonResponse(ACKNOWLEDGEMENT)

    try:
        handler(payload)
    except Exception:
        logger.exception(f"M-Pesa {label} could not be processed")
    return JsonResponse(ACKNOWLEDGEMENT)


@csrf_exempt
def mpesa_callback(request):
    """STK push result"""
    return _acknowledge(request, handle_stk_callback, 'STK callback')


@csrf_exempt
def mpesa_result(request):
    """B2C result"""
    return _acknowledge(request, handle_b2c_result, 'B2C result')


@csrf_exempt
def mpesa_timeout(request):
    """B2C queue timeout"""
    return _acknowledge(request, handle_b2c_timeout, 'B2C timeout')
