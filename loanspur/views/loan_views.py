"""
Loan Views
==========

Views for loan management including application, approval, disbursement,
repayment posting and reversal, charges, write-off and statements
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied
from django.db import transaction
from django.db.models import Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods
import logging

from loanspur.models import Loan, LoanPayment, LoanCharge
from loanspur.forms.loan_forms import (
    LoanApplicationForm, LoanApprovalForm, LoanDisbursementForm, LoanRepaymentForm,
    ReversalForm, LoanChargeForm, LoanWriteOffForm, LoanSearchForm,
)
from loanspur.mpesa import initiate_b2c_disbursement
from loanspur.email_service import send_loan_approval_email
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.utils.excel_export import export_loan_portfolio_excel
from loanspur.utils.helpers import get_derived_loan_status
from loanspur.utils.pdf_export import generate_loan_statement_pdf
from loanspur.views.common import parse_request_data, form_error_response, json_errors, paginate
from loanspur.views.serializers import (
    serialize_loan, serialize_schedule_row, serialize_loan_payment, serialize_loan_charge,
    serialize_transaction,
)

logger = logging.getLogger(__name__)


def get_loan_or_404(request, loan_id):
    """A loan of the request's tenant the user is allowed to see"""
    loan = get_object_or_404(
        Loan.objects.for_tenant(request.tenant).select_related('client', 'product', 'office'),
        id=loan_id,
    )
    if not PermissionChecker(request.user, request.tenant).can_view_loan(loan):
        raise PermissionDenied("You don't have permission to view this loan")
    return loan


def _visible_loans(request):
    checker = PermissionChecker(request.user, request.tenant)
    loans = checker.filter_loans(Loan.objects.select_related('client', 'product'))

    search_form = LoanSearchForm(request.GET, tenant=request.tenant)
    if search_form.is_valid():
        q = search_form.cleaned_data.get('q')
        if q:
            loans = loans.filter(
                Q(loan_number__icontains=q) |
                Q(client__first_name__icontains=q) |
                Q(client__last_name__icontains=q) |
                Q(client__client_number__icontains=q)
            )
        for name in ('status', 'product', 'client'):
            if search_form.cleaned_data.get(name):
                loans = loans.filter(**{name: search_form.cleaned_data[name]})
    return loans.order_by('-created_at')


# =============================================================================
# LOAN LIST, DETAIL & APPLICATION
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def loan_list(request):
    """
    GET lists loans visible to the user. POST creates a loan application.

    Permissions:
    - All authenticated users, filtered by office or client assignment
    - Loan officers and admins can apply
    """
    if request.method == 'POST':
        return loan_create(request)
    return JsonResponse(paginate(request, _visible_loans(request), serialize_loan))


def loan_create(request):
    checker = PermissionChecker(request.user, request.tenant)
    if not checker.can_create_loan():
        raise PermissionDenied("You don't have permission to create loans")

    form = LoanApplicationForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    if not checker.can_view_client(form.cleaned_data['client']):
        raise PermissionDenied("You don't have permission to lend to this client")

    loan = form.save(commit=False)
    loan.office = loan.client.office
    loan.created_by = request.user
    if not loan.loan_officer_id and checker.is_loan_officer():
        loan.loan_officer = request.user
    loan.save()

    logger.info(f"Loan application created: {loan.loan_number} for {loan.client} by {request.user.email}")
    return JsonResponse({'loan': serialize_loan(loan)}, status=201)


@login_required
@tenant_required
@require_GET
@json_errors
def loan_detail(request, loan_id):
    loan = get_loan_or_404(request, loan_id)
    data = serialize_loan(loan)
    data['outstanding'] = loan.get_outstanding_balances()
    data['derived_status'] = get_derived_loan_status(loan)
    data['schedule'] = [serialize_schedule_row(row) for row in loan.schedule.all()]
    data['payments'] = [serialize_loan_payment(payment) for payment in loan.payments.order_by('-payment_date')]
    data['charges'] = [serialize_loan_charge(charge) for charge in loan.charges.order_by('-charge_date')]
    return JsonResponse({'loan': data})


# =============================================================================
# APPROVAL
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def loan_approve(request, loan_id):
    """
    Approve or reject a loan application

    Permissions:
    - Tenant admins and super admins
    """
    loan = get_loan_or_404(request, loan_id)
    if not PermissionChecker(request.user, request.tenant).can_approve_loans():
        raise PermissionDenied("You don't have permission to approve loans")

    form = LoanApprovalForm(parse_request_data(request), loan=loan)
    if not form.is_valid():
        return form_error_response(form)

    if form.cleaned_data['decision'] == 'approve':
        with transaction.atomic():
            loan.approve(request.user, approved_amount=form.cleaned_data.get('approved_amount'))
            transaction.on_commit(lambda: send_loan_approval_email(loan))
    else:
        loan.reject(request.user, reason=form.cleaned_data.get('notes', ''))

    return JsonResponse({'loan': serialize_loan(loan)})


@login_required
@tenant_required
@require_POST
@json_errors
def loan_withdraw(request, loan_id):
    """The applicant withdraws before disbursement"""
    loan = get_loan_or_404(request, loan_id)
    checker = PermissionChecker(request.user, request.tenant)
    if not (checker.can_create_loan() or checker.can_approve_loans()):
        raise PermissionDenied("You don't have permission to withdraw loans")

    loan.withdraw(parse_request_data(request).get('reason', ''))
    logger.info(f"Loan withdrawn: {loan.loan_number} by {request.user.email}")
    return JsonResponse({'loan': serialize_loan(loan)})


# =============================================================================
# DISBURSEMENT
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def loan_disburse(request, loan_id):
    """
    Disburse an approved loan

    M-Pesa disbursements go out through B2C and stay pending until the
    result callback arrives.

    Permissions:
    - Tenant admins, accountants and super admins
    """
    loan = get_loan_or_404(request, loan_id)
    if not PermissionChecker(request.user, request.tenant).can_disburse_loans():
        raise PermissionDenied("You don't have permission to disburse loans")

    form = LoanDisbursementForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    data = form.cleaned_data
    if data['method'] == 'mpesa':
        txn = initiate_b2c_disbursement(loan, request.user, phone=data.get('phone') or None)
    else:
        txn = loan.disburse(
            request.user,
            method=data['method'],
            reference=data.get('reference', ''),
            disbursement_date=data.get('disbursement_date'),
        )

    loan.refresh_from_db()
    return JsonResponse({'loan': serialize_loan(loan), 'transaction': serialize_transaction(txn)})


# =============================================================================
# REPAYMENTS
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def loan_repay(request, loan_id):
    """
    Post a repayment against an active loan

    Permissions:
    - Everyone who can record payments and can see the loan
    """
    loan = get_loan_or_404(request, loan_id)
    if not PermissionChecker(request.user, request.tenant).can_record_payments():
        raise PermissionDenied("You don't have permission to record payments")

    form = LoanRepaymentForm(parse_request_data(request), loan=loan)
    if not form.is_valid():
        return form_error_response(form)

    data = form.cleaned_data
    payment = loan.record_repayment(
        data['amount'],
        request.user,
        payment_date=data.get('payment_date'),
        method=data['method'],
        reference=data.get('reference', ''),
        description=data.get('description', ''),
    )
    return JsonResponse({'loan': serialize_loan(loan), 'payment': serialize_loan_payment(payment)}, status=201)


@login_required
@tenant_required
@require_POST
@json_errors
def loan_payment_undo(request, loan_id, payment_id):
    """
    Reverse a posted repayment

    Permissions:
    - Tenant admins, accountants and super admins
    """
    loan = get_loan_or_404(request, loan_id)
    if not PermissionChecker(request.user, request.tenant).can_reverse_payments():
        raise PermissionDenied("You don't have permission to reverse payments")

    payment = get_object_or_404(LoanPayment.objects.for_tenant(request.tenant), id=payment_id, loan=loan)
    form = ReversalForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    loan.undo_repayment(payment, request.user, reason=form.cleaned_data['reason'])
    payment.refresh_from_db()
    return JsonResponse({'loan': serialize_loan(loan), 'payment': serialize_loan_payment(payment)})


# =============================================================================
# CHARGES & WRITE-OFF
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def loan_charge(request, loan_id):
    loan = get_loan_or_404(request, loan_id)
    if not PermissionChecker(request.user, request.tenant).can_apply_charges():
        raise PermissionDenied("You don't have permission to apply charges")

    form = LoanChargeForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    data = form.cleaned_data
    charge = loan.apply_charge(
        data['charge_type'],
        data.get('amount'),
        request.user,
        charge_date=data.get('charge_date'),
        description=data.get('description', ''),
        fee=data.get('fee'),
    )
    return JsonResponse({'loan': serialize_loan(loan), 'charge': serialize_loan_charge(charge)}, status=201)


@login_required
@tenant_required
@require_POST
@json_errors
def loan_charge_waive(request, loan_id, charge_id):
    loan = get_loan_or_404(request, loan_id)
    if not PermissionChecker(request.user, request.tenant).can_reverse_payments():
        raise PermissionDenied("You don't have permission to waive charges")

    charge = get_object_or_404(LoanCharge.objects.for_tenant(request.tenant), id=charge_id, loan=loan)
    charge.waive(request.user)
    loan.refresh_from_db()
    return JsonResponse({'loan': serialize_loan(loan), 'charge': serialize_loan_charge(charge)})


@login_required
@tenant_required
@require_POST
@json_errors
def loan_write_off(request, loan_id):
    """
    Write off the outstanding balance

    Permissions:
    - Tenant admins and super admins
    """
    loan = get_loan_or_404(request, loan_id)
    if not PermissionChecker(request.user, request.tenant).can_write_off_loans():
        raise PermissionDenied("You don't have permission to write off loans")

    form = LoanWriteOffForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    loan.write_off(request.user, reason=form.cleaned_data['reason'])
    return JsonResponse({'loan': serialize_loan(loan)})


# =============================================================================
# SCHEDULE, STATEMENT & EXPORTS
# =============================================================================

@login_required
@tenant_required
@require_GET
@json_errors
def loan_schedule(request, loan_id):
    """
    Repayment schedule

    Before disbursement this is a preview built from today's date.
    """
    loan = get_loan_or_404(request, loan_id)
    if loan.schedule.exists():
        rows = [serialize_schedule_row(row) for row in loan.schedule.all()]
        return JsonResponse({'preview': False, 'schedule': rows})
    return JsonResponse({'preview': True, 'schedule': loan.build_schedule(loan.application_date)})


@login_required
@tenant_required
@require_GET
@json_errors
def loan_statement(request, loan_id):
    loan = get_loan_or_404(request, loan_id)
    if request.GET.get('format') == 'pdf':
        return generate_loan_statement_pdf(loan)
    return JsonResponse({'loan': serialize_loan(loan), 'statement': loan.get_statement()})


@login_required
@tenant_required
@require_GET
@json_errors
def loan_portfolio_export(request):
    """Loan book as an Excel workbook, honouring the list filters"""
    if not PermissionChecker(request.user, request.tenant).can_view_financials():
        raise PermissionDenied("You don't have permission to export the portfolio")
    return export_loan_portfolio_excel(_visible_loans(request), currency=request.tenant.currency_code)
