"""
Client Views
============

Client onboarding, approval workflow, transfers and next of kin
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied
from django.db import transaction
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods
import logging

from loanspur.models import Client
from loanspur.forms.client_forms import (
    ClientForm, NextOfKinForm, ClientSearchForm, ClientTransferForm,
    AssignLoanOfficerForm, RejectionForm,
)
from loanspur.forms.group_forms import ClientImportForm
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.utils.client_import import import_clients
from loanspur.views.common import parse_request_data, form_error_response, json_errors, paginate
from loanspur.views.serializers import (
    serialize_client, serialize_next_of_kin, serialize_loan, serialize_savings_account,
)

logger = logging.getLogger(__name__)


def get_client_or_404(request, client_id):
    """A client of the request's tenant the user is allowed to see"""
    client = get_object_or_404(
        Client.objects.for_tenant(request.tenant).select_related('office', 'loan_officer'),
        id=client_id,
    )
    if not PermissionChecker(request.user, request.tenant).can_view_client(client):
        raise PermissionDenied("You don't have permission to view this client")
    return client


# =============================================================================
# CLIENT LIST & DETAIL
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def client_list(request):
    """
    GET lists clients visible to the user. POST creates a draft client.

    Permissions:
    - Loan officers see assigned clients, cashiers their office
    - Admins and accountants see the whole tenant
    """
    checker = PermissionChecker(request.user, request.tenant)

    if request.method == 'POST':
        return client_create(request, checker)

    clients = checker.filter_clients(Client.objects.select_related('office'))
    search_form = ClientSearchForm(request.GET)
    if search_form.is_valid():
        clients = clients.search(search_form.cleaned_data.get('q'))
        if search_form.cleaned_data.get('office'):
            clients = clients.for_office(search_form.cleaned_data['office'])
        if search_form.cleaned_data.get('approval_status'):
            clients = clients.filter(approval_status=search_form.cleaned_data['approval_status'])
        if search_form.cleaned_data.get('is_active') is not None:
            clients = clients.filter(is_active=search_form.cleaned_data['is_active'])

    return JsonResponse(paginate(request, clients.order_by('-created_at'), serialize_client))


def client_create(request, checker):
    if not checker.can_create_client():
        raise PermissionDenied("You don't have permission to create clients")

    form = ClientForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    client = form.save(commit=False)
    client.created_by = request.user
    if not client.office_id:
        client.office = request.user.office
    if not client.loan_officer_id and checker.is_loan_officer():
        client.loan_officer = request.user
    client.save()

    logger.info(f"Client created: {client.client_number} by {request.user.email}")
    return JsonResponse({'client': serialize_client(client)}, status=201)


@login_required
@tenant_required
@require_GET
@json_errors
def client_detail(request, client_id):
    client = get_client_or_404(request, client_id)
    data = serialize_client(client)
    data['next_of_kin'] = [serialize_next_of_kin(kin) for kin in client.next_of_kin.all()]
    data['loans'] = [serialize_loan(loan) for loan in client.loans.select_related('client', 'product')]
    data['savings_accounts'] = [
        serialize_savings_account(account)
        for account in client.savings_accounts.select_related('client', 'product')
    ]
    data['total_savings_balance'] = client.get_total_savings_balance()
    return JsonResponse({'client': data})


@login_required
@tenant_required
@require_POST
@json_errors
def client_update(request, client_id):
    client = get_client_or_404(request, client_id)
    if not PermissionChecker(request.user, request.tenant).can_edit_client(client):
        raise PermissionDenied("You don't have permission to edit this client")

    form = ClientForm(parse_request_data(request), instance=client, tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)
    client = form.save()
    return JsonResponse({'client': serialize_client(client)})


@login_required
@tenant_required
@require_POST
@json_errors
def client_delete(request, client_id):
    """Soft delete. Refused while the client has active loans or savings."""
    client = get_client_or_404(request, client_id)
    if not PermissionChecker(request.user, request.tenant).can_delete_client(client):
        raise PermissionDenied("You don't have permission to delete clients")

    client.delete()
    logger.info(f"Client deleted: {client.client_number} by {request.user.email}")
    return JsonResponse({'success': True})


@login_required
@tenant_required
@require_POST
@json_errors
def client_import(request):
    """
    Create clients from an uploaded CSV or Excel sheet

    Imported clients wait for approval. Rows that fail validation are
    listed in ``errors`` and the rest are still created.

    Permissions:
    - Tenant admins and super admins
    """
    if not PermissionChecker(request.user, request.tenant).can_import_clients():
        raise PermissionDenied("You don't have permission to import clients")

    form = ClientImportForm(request.POST, request.FILES, tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    result = import_clients(
        request.tenant,
        form.cleaned_data['file'],
        request.user,
        office=form.cleaned_data.get('office'),
    )

    message = f"Successfully imported {result['imported']} clients"
    if result['errors']:
        message += f" with {len(result['errors'])} errors"
    return JsonResponse({
        'success': True,
        'imported': result['imported'],
        'errors': result['errors'],
        'message': message,
        'clients': [serialize_client(client) for client in result['clients']],
    }, status=201)


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def client_submit(request, client_id):
    client = get_client_or_404(request, client_id)
    if not PermissionChecker(request.user, request.tenant).can_edit_client(client):
        raise PermissionDenied("You don't have permission to submit this client")

    client.submit_for_approval()
    return JsonResponse({'client': serialize_client(client)})


@login_required
@tenant_required
@require_POST
@json_errors
def client_approve(request, client_id):
    """
    Approve a pending client

    Permissions:
    - Tenant admins and super admins
    """
    client = get_client_or_404(request, client_id)
    if not PermissionChecker(request.user, request.tenant).can_approve_clients():
        raise PermissionDenied("You don't have permission to approve clients")

    client.approve(request.user)
    logger.info(f"Client approved: {client.client_number} by {request.user.email}")
    return JsonResponse({'client': serialize_client(client)})


@login_required
@tenant_required
@require_POST
@json_errors
def client_reject(request, client_id):
    client = get_client_or_404(request, client_id)
    if not PermissionChecker(request.user, request.tenant).can_approve_clients():
        raise PermissionDenied("You don't have permission to reject clients")

    form = RejectionForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    client.reject(request.user, form.cleaned_data['reason'])
    logger.info(f"Client rejected: {client.client_number} by {request.user.email}")
    return JsonResponse({'client': serialize_client(client)})


@login_required
@tenant_required
@require_POST
@json_errors
def client_activate(request, client_id):
    client = get_client_or_404(request, client_id)
    if not PermissionChecker(request.user, request.tenant).can_approve_clients():
        raise PermissionDenied("You don't have permission to activate clients")

    client.activate()
    return JsonResponse({'client': serialize_client(client)})


@login_required
@tenant_required
@require_POST
@json_errors
def client_deactivate(request, client_id):
    client = get_client_or_404(request, client_id)
    if not PermissionChecker(request.user, request.tenant).can_approve_clients():
        raise PermissionDenied("You don't have permission to deactivate clients")

    reason = parse_request_data(request).get('reason', '')
    if client.get_active_loans().exists():
        raise ValueError("Cannot deactivate a client with active loans")

    client.deactivate(reason)
    return JsonResponse({'client': serialize_client(client)})


# =============================================================================
# TRANSFER & LOAN OFFICER
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def client_transfer(request, client_id):
    client = get_client_or_404(request, client_id)
    if not PermissionChecker(request.user, request.tenant).can_transfer_client():
        raise PermissionDenied("You don't have permission to transfer clients")

    form = ClientTransferForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    client.transfer_to_office(form.cleaned_data['office'], transferred_by=request.user)
    return JsonResponse({'client': serialize_client(client)})


@login_required
@tenant_required
@require_POST
@json_errors
def client_assign_officer(request, client_id):
    client = get_client_or_404(request, client_id)
    if not PermissionChecker(request.user, request.tenant).can_assign_loan_officer():
        raise PermissionDenied("You don't have permission to assign loan officers")

    form = AssignLoanOfficerForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    client.assign_loan_officer(form.cleaned_data['loan_officer'])
    return JsonResponse({'client': serialize_client(client)})


# =============================================================================
# NEXT OF KIN
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
@transaction.atomic
def client_next_of_kin(request, client_id):
    client = get_client_or_404(request, client_id)

    if request.method == 'POST':
        if not PermissionChecker(request.user, request.tenant).can_edit_client(client):
            raise PermissionDenied("You don't have permission to edit this client")
        form = NextOfKinForm(parse_request_data(request))
        if not form.is_valid():
            return form_error_response(form)
        kin = form.save(commit=False)
        kin.client = client
        kin.save()
        return JsonResponse({'next_of_kin': serialize_next_of_kin(kin)}, status=201)

    return JsonResponse({'next_of_kin': [serialize_next_of_kin(kin) for kin in client.next_of_kin.all()]})
