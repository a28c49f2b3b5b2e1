"""
Product Views
=============

Loan and savings products, fee structures, payment types and fund source
mappings
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied
from django.db import transaction
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods
from decimal import Decimal, InvalidOperation
import logging

from loanspur.models import (
    LoanProduct, SavingsProduct, FeeStructure, PaymentType, ProductFundSourceMapping,
)
from loanspur.forms.product_forms import (
    LoanProductForm, SavingsProductForm, FeeStructureForm, PaymentTypeForm, FundSourceMappingForm,
)
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.utils.money import calculate_total_fees
from loanspur.views.common import parse_request_data, form_error_response, json_errors
from loanspur.views.serializers import (
    serialize_loan_product, serialize_savings_product, serialize_fee,
    serialize_payment_type, serialize_fund_source_mapping,
)

logger = logging.getLogger(__name__)


def _check_can_manage_products(request):
    if not PermissionChecker(request.user, request.tenant).can_manage_products():
        raise PermissionDenied("You don't have permission to manage products")


def _list_or_create(request, model, form_class, serializer, key):
    """GET lists the tenant's rows, POST validates ``form_class`` and saves a new one"""
    if request.method == 'POST':
        _check_can_manage_products(request)
        form = form_class(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        with transaction.atomic():
            obj = form.save()
        logger.info(f"{model.__name__} created: {obj} in {request.tenant.subdomain}")
        return JsonResponse({key: serializer(obj)}, status=201)

    queryset = model.objects.for_tenant(request.tenant)
    if request.GET.get('active') == 'true':
        queryset = queryset.filter(is_active=True)
    return JsonResponse({f'{key}s': [serializer(obj) for obj in queryset]})


def _update(request, model, object_id, form_class, serializer, key):
    _check_can_manage_products(request)
    obj = get_object_or_404(model.objects.for_tenant(request.tenant), id=object_id)
    form = form_class(parse_request_data(request), instance=obj, tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)
    with transaction.atomic():
        obj = form.save()
    return JsonResponse({key: serializer(obj)})


def _set_active(request, model, object_id, serializer, key, active):
    _check_can_manage_products(request)
    obj = get_object_or_404(model.objects.for_tenant(request.tenant), id=object_id)
    if active:
        obj.activate()
    else:
        obj.deactivate(parse_request_data(request).get('reason', ''))
    logger.info(f"{model.__name__} {'activated' if active else 'deactivated'}: {obj}")
    return JsonResponse({key: serializer(obj)})


# =============================================================================
# LOAN PRODUCTS
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def loan_product_list(request):
    """
    GET lists loan products, POST creates one

    Permissions:
    - Everyone can list
    - Tenant admins and super admins can create
    """
    return _list_or_create(request, LoanProduct, LoanProductForm, serialize_loan_product, 'loan_product')


@login_required
@tenant_required
@require_GET
@json_errors
def loan_product_detail(request, product_id):
    """
    Loan product, with the disbursement fees it would charge when
    ``?amount=`` is given
    """
    product = get_object_or_404(LoanProduct.objects.for_tenant(request.tenant), id=product_id)
    data = {'loan_product': serialize_loan_product(product)}

    amount = request.GET.get('amount')
    if amount:
        try:
            amount = Decimal(amount)
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {amount}")
        fees = calculate_total_fees(product.get_fees('disbursement'), amount)
        data['fee_preview'] = {
            'amount': amount,
            'total': fees['total'],
            'has_limits_applied': fees['has_limits_applied'],
            'fees': [
                {'fee': serialize_fee(item['fee']), 'amount': item['amount'], 'applied_limit': item['applied_limit']}
                for item in fees['fees']
            ],
        }
    return JsonResponse(data)


@login_required
@tenant_required
@require_POST
@json_errors
def loan_product_update(request, product_id):
    return _update(request, LoanProduct, product_id, LoanProductForm, serialize_loan_product, 'loan_product')


@login_required
@tenant_required
@require_POST
@json_errors
def loan_product_activate(request, product_id):
    return _set_active(request, LoanProduct, product_id, serialize_loan_product, 'loan_product', True)


@login_required
@tenant_required
@require_POST
@json_errors
def loan_product_deactivate(request, product_id):
    return _set_active(request, LoanProduct, product_id, serialize_loan_product, 'loan_product', False)


# =============================================================================
# SAVINGS PRODUCTS
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def savings_product_list(request):
    return _list_or_create(
        request, SavingsProduct, SavingsProductForm, serialize_savings_product, 'savings_product'
    )


@login_required
@tenant_required
@require_GET
def savings_product_detail(request, product_id):
    product = get_object_or_404(SavingsProduct.objects.for_tenant(request.tenant), id=product_id)
    return JsonResponse({'savings_product': serialize_savings_product(product)})


@login_required
@tenant_required
@require_POST
@json_errors
def savings_product_update(request, product_id):
    return _update(
        request, SavingsProduct, product_id, SavingsProductForm, serialize_savings_product, 'savings_product'
    )


@login_required
@tenant_required
@require_POST
@json_errors
def savings_product_activate(request, product_id):
    return _set_active(request, SavingsProduct, product_id, serialize_savings_product, 'savings_product', True)


@login_required
@tenant_required
@require_POST
@json_errors
def savings_product_deactivate(request, product_id):
    return _set_active(request, SavingsProduct, product_id, serialize_savings_product, 'savings_product', False)


# =============================================================================
# FEES, PAYMENT TYPES, FUND SOURCES
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def fee_list(request):
    return _list_or_create(request, FeeStructure, FeeStructureForm, serialize_fee, 'fee')


@login_required
@tenant_required
@require_POST
@json_errors
def fee_update(request, fee_id):
    return _update(request, FeeStructure, fee_id, FeeStructureForm, serialize_fee, 'fee')


@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def payment_type_list(request):
    return _list_or_create(request, PaymentType, PaymentTypeForm, serialize_payment_type, 'payment_type')


@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def fund_source_mapping_list(request):
    """Per-channel GL routing for a product's disbursements and receipts"""
    if request.method == 'POST':
        _check_can_manage_products(request)
        form = FundSourceMappingForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        mapping = form.save()
        return JsonResponse({'mapping': serialize_fund_source_mapping(mapping)}, status=201)

    mappings = ProductFundSourceMapping.objects.for_tenant(request.tenant)
    if request.GET.get('product_id'):
        mappings = mappings.filter(product_id=request.GET['product_id'])
    return JsonResponse({'mappings': [serialize_fund_source_mapping(m) for m in mappings]})


@login_required
@tenant_required
@require_POST
@json_errors
def fund_source_mapping_delete(request, mapping_id):
    _check_can_manage_products(request)
    mapping = get_object_or_404(ProductFundSourceMapping.objects.for_tenant(request.tenant), id=mapping_id)
    mapping.delete()
    return JsonResponse({'success': True})
