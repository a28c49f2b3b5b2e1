"""
Client Group Views
==================

Group registration and approval, membership and meeting collections
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied, ValidationError
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils.dateparse import parse_date
from django.views.decorators.http import require_GET, require_POST, require_http_methods
from decimal import Decimal, InvalidOperation
import logging

from loanspur.models import ClientGroup, Loan
from loanspur.forms.group_forms import (
    ClientGroupForm, ClientGroupSearchForm, GroupDecisionForm, AddMemberForm,
    RemoveMemberForm, MemberRoleForm, GroupCollectionForm,
)
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.views.common import parse_request_data, form_error_response, json_errors, paginate
from loanspur.views.serializers import (
    serialize_group, serialize_group_member, serialize_loan_payment,
)

logger = logging.getLogger(__name__)


def get_group_or_404(request, group_id):
    """A group of the request's tenant the user is allowed to see"""
    group = get_object_or_404(
        ClientGroup.objects.for_tenant(request.tenant).select_related('office', 'loan_officer'),
        id=group_id,
    )
    if not PermissionChecker(request.user, request.tenant).can_view_group(group):
        raise PermissionDenied("You don't have permission to view this group")
    return group


def _require_edit(request, group):
    if not PermissionChecker(request.user, request.tenant).can_edit_group(group):
        raise PermissionDenied("You don't have permission to manage this group")


# =============================================================================
# GROUP LIST & DETAIL
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def group_list(request):
    """
    GET lists groups visible to the user. POST registers a group pending approval.

    Permissions:
    - Loan officers see groups they manage or created, cashiers their office
    - Admins and accountants see the whole tenant
    """
    checker = PermissionChecker(request.user, request.tenant)

    if request.method == 'POST':
        return group_create(request, checker)

    groups = checker.filter_groups(ClientGroup.objects.select_related('office', 'loan_officer'))
    search_form = ClientGroupSearchForm(request.GET)
    if search_form.is_valid():
        groups = groups.search(search_form.cleaned_data.get('q'))
        for name in ('office', 'status', 'group_type'):
            if search_form.cleaned_data.get(name):
                groups = groups.filter(**{name: search_form.cleaned_data[name]})

    return JsonResponse(paginate(request, groups.order_by('name'), serialize_group))


def group_create(request, checker):
    if not checker.can_create_group():
        raise PermissionDenied("You don't have permission to create groups")

    form = ClientGroupForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    group = form.save(commit=False)
    group.created_by = request.user
    if not group.office_id:
        if request.user.office_id is None:
            raise ValidationError({'office': ["Choose the office this group meets under"]})
        group.office = request.user.office
    if not group.loan_officer_id and checker.is_loan_officer():
        group.loan_officer = request.user
    group.save()

    logger.info(f"Group created: {group.group_number} by {request.user.email}")
    return JsonResponse({'group': serialize_group(group)}, status=201)


@login_required
@tenant_required
@require_GET
@json_errors
def group_detail(request, group_id):
    group = get_group_or_404(request, group_id)
    data = serialize_group(group)
    data['members'] = [serialize_group_member(m) for m in group.get_active_members()]
    return JsonResponse({'group': data})


@login_required
@tenant_required
@require_POST
@json_errors
def group_update(request, group_id):
    group = get_group_or_404(request, group_id)
    _require_edit(request, group)
    if group.status in ('closed', 'rejected'):
        raise ValueError(f"Cannot edit a {group.get_status_display().lower()} group")

    form = ClientGroupForm(parse_request_data(request), instance=group, tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)
    group = form.save()
    return JsonResponse({'group': serialize_group(group)})


# =============================================================================
# APPROVAL & CLOSURE
# =============================================================================

@login_required
@tenant_required
@require_POST
@json_errors
def group_approve(request, group_id):
    """
    Approve or reject a pending group

    Permissions:
    - Tenant admins and super admins
    """
    group = get_group_or_404(request, group_id)
    if not PermissionChecker(request.user, request.tenant).can_approve_groups():
        raise PermissionDenied("You don't have permission to approve groups")

    form = GroupDecisionForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    if form.cleaned_data['decision'] == 'approve':
        group.approve(request.user)
    else:
        group.reject(request.user, form.cleaned_data['reason'])
        logger.info(f"Group rejected: {group.group_number} by {request.user.email}")
    return JsonResponse({'group': serialize_group(group)})


@login_required
@tenant_required
@require_POST
@json_errors
def group_close(request, group_id):
    group = get_group_or_404(request, group_id)
    if not PermissionChecker(request.user, request.tenant).can_approve_groups():
        raise PermissionDenied("You don't have permission to close groups")

    group.close(request.user, parse_request_data(request).get('reason', ''))
    return JsonResponse({'group': serialize_group(group)})


# =============================================================================
# MEMBERSHIP
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def group_members(request, group_id):
    """GET lists current members. POST adds an approved client."""
    group = get_group_or_404(request, group_id)

    if request.method == 'POST':
        _require_edit(request, group)
        form = AddMemberForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        membership = group.add_member(
            form.cleaned_data['client'], form.cleaned_data['role'] or 'member', added_by=request.user
        )
        return JsonResponse({'member': serialize_group_member(membership)}, status=201)

    return JsonResponse({'members': [serialize_group_member(m) for m in group.get_active_members()]})


@login_required
@tenant_required
@require_POST
@json_errors
def group_member_remove(request, group_id):
    group = get_group_or_404(request, group_id)
    _require_edit(request, group)

    form = RemoveMemberForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    membership = group.remove_member(
        form.cleaned_data['client'], removed_by=request.user, reason=form.cleaned_data['reason']
    )
    return JsonResponse({'member': serialize_group_member(membership)})


@login_required
@tenant_required
@require_POST
@json_errors
def group_member_role(request, group_id):
    group = get_group_or_404(request, group_id)
    _require_edit(request, group)

    form = MemberRoleForm(parse_request_data(request), tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)

    membership = group.change_member_role(form.cleaned_data['client'], form.cleaned_data['role'])
    return JsonResponse({'member': serialize_group_member(membership)})


# =============================================================================
# COLLECTIONS
# =============================================================================

@login_required
@tenant_required
@require_GET
@json_errors
def group_collection_sheet(request, group_id):
    """What each member owes as of ``?date=`` (default today)"""
    group = get_group_or_404(request, group_id)
    as_of = parse_date(request.GET['date']) if request.GET.get('date') else None

    rows = group.get_collection_sheet(as_of)
    return JsonResponse({
        'group': serialize_group(group),
        'rows': [{
            'client_id': row['client'].id,
            'client_name': row['client'].get_full_name(),
            'loan_id': row['loan'].id,
            'loan_number': row['loan'].loan_number,
            'amount_due': row['amount_due'],
            'outstanding_balance': row['outstanding_balance'],
        } for row in rows],
        'total_due': sum((row['amount_due'] for row in rows), Decimal('0')),
    })


def _collection_items(request, items):
    if not isinstance(items, list) or not items:
        raise ValidationError("Enter at least one member amount in 'items'")

    loans = {
        str(loan.id): loan
        for loan in Loan.objects.for_tenant(request.tenant).filter(
            id__in=[str(item.get('loan', '')) for item in items if isinstance(item, dict)]
        )
    }
    collections = []
    for item in items:
        if not isinstance(item, dict) or str(item.get('loan', '')) not in loans:
            raise ValidationError(f"Unknown loan in collection: {item}")
        try:
            amount = Decimal(str(item.get('amount') or '0'))
        except InvalidOperation:
            raise ValidationError(f"Invalid amount for loan {loans[str(item['loan'])].loan_number}")
        collections.append((loans[str(item['loan'])], amount))
    return collections


@login_required
@tenant_required
@require_POST
@json_errors
def group_collect(request, group_id):
    """
    Post a meeting's repayments

    Body: ``total_amount``, ``method``, ``payment_date``, ``reference`` and
    ``items`` as ``[{"loan": <id>, "amount": "1500.00"}, ...]``. The items
    must add up to the total, otherwise nothing is posted.

    Permissions:
    - Everyone who can record payments and can see the group
    """
    group = get_group_or_404(request, group_id)
    if not PermissionChecker(request.user, request.tenant).can_collect_for_group(group):
        raise PermissionDenied("You don't have permission to post collections for this group")

    data = parse_request_data(request)
    form = GroupCollectionForm(data)
    if not form.is_valid():
        return form_error_response(form)

    collections = _collection_items(request, data.get('items'))
    payments = group.collect_repayments(
        collections,
        form.cleaned_data['total_amount'],
        request.user,
        method=form.cleaned_data['method'],
        payment_date=form.cleaned_data.get('payment_date'),
        reference=form.cleaned_data.get('reference', ''),
    )
    return JsonResponse({
        'group': serialize_group(group),
        'payments': [serialize_loan_payment(payment) for payment in payments],
    }, status=201)
