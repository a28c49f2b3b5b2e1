"""
Tenant Views
============

Organisation sign-up, platform administration of tenants, custom domains,
currency and M-Pesa settings, offices and staff users
"""

from django.contrib.auth.decorators import login_required
from django.core.exceptions import PermissionDenied
from django.db import transaction
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils.crypto import get_random_string
from django.views.decorators.http import require_GET, require_POST, require_http_methods
import logging

from loanspur.models import Tenant, DomainVerification, Office, User, TenantCurrencySettings
from loanspur.forms.tenant_forms import (
    TenantRegistrationForm, TenantStatusForm, DomainForm, CurrencySettingsForm,
    MpesaSettingsForm, OfficeForm, StaffUserForm,
)
from loanspur.permissions import PermissionChecker, tenant_required
from loanspur.tenancy import register_tenant, create_domain_verification, verify_domain, build_subdomain_url
from loanspur.email_service import send_user_invitation_email
from loanspur.views.common import parse_request_data, form_error_response, json_errors, paginate
from loanspur.views.serializers import (
    serialize_tenant, serialize_domain_verification, serialize_currency_settings,
    serialize_office, serialize_user,
)

logger = logging.getLogger(__name__)

MPESA_SECRET_KEYS = ('consumer_secret', 'passkey', 'security_credential')


# =============================================================================
# REGISTRATION
# =============================================================================

@require_POST
@json_errors
def tenant_register(request):
    """
    Public sign-up for a new organisation

    Creates the tenant, its admin user, currency settings, the default chart of
    accounts and payment types.
    """
    form = TenantRegistrationForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    data = form.cleaned_data
    tenant, admin_user = register_tenant(
        name=data['organisation_name'],
        admin_email=data['admin_email'],
        admin_password=data['admin_password'],
        admin_first_name=data.get('admin_first_name', ''),
        admin_last_name=data.get('admin_last_name', ''),
        subdomain=data.get('subdomain') or None,
        contact_phone=data.get('contact_phone', ''),
        country=data.get('country') or 'Kenya',
        currency_code=data.get('currency_code') or 'KES',
    )

    return JsonResponse({
        'tenant': serialize_tenant(tenant),
        'admin': serialize_user(admin_user),
        'login_url': build_subdomain_url(tenant.subdomain, '/auth/login/'),
    }, status=201)


# =============================================================================
# CURRENT TENANT
# =============================================================================

@login_required
@tenant_required
def tenant_current(request):
    return JsonResponse({'tenant': serialize_tenant(request.tenant)})


# =============================================================================
# PLATFORM ADMINISTRATION
# =============================================================================

@login_required
@require_GET
@json_errors
def tenant_list(request):
    """
    All tenants on the platform

    Permissions:
    - Super admin only
    """
    if not PermissionChecker(request.user).can_manage_tenants():
        raise PermissionDenied("Only platform administrators can list tenants")

    tenants = Tenant.objects.all().order_by('name')
    status = request.GET.get('status')
    if status:
        tenants = tenants.filter(status=status)
    return JsonResponse(paginate(request, tenants, serialize_tenant))


def _change_tenant_status(request, tenant_id, action):
    if not PermissionChecker(request.user).can_manage_tenants():
        raise PermissionDenied("Only platform administrators can change a tenant's status")

    tenant = get_object_or_404(Tenant, id=tenant_id)
    form = TenantStatusForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    reason = form.cleaned_data.get('reason', '')
    if action == 'suspend':
        tenant.suspend(reason)
    elif action == 'cancel':
        tenant.cancel(reason)
    else:
        tenant.activate()

    logger.info(f"Tenant {tenant.subdomain} {action} by {request.user.email}")
    return JsonResponse({'tenant': serialize_tenant(tenant)})


@login_required
@require_POST
@json_errors
def tenant_suspend(request, tenant_id):
    return _change_tenant_status(request, tenant_id, 'suspend')


@login_required
@require_POST
@json_errors
def tenant_activate(request, tenant_id):
    return _change_tenant_status(request, tenant_id, 'activate')


@login_required
@require_POST
@json_errors
def tenant_cancel(request, tenant_id):
    return _change_tenant_status(request, tenant_id, 'cancel')


# =============================================================================
# CUSTOM DOMAINS
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def domain_list(request):
    """
    GET lists the tenant's domain verifications. POST issues the TXT
    challenge for a new domain.

    Permissions:
    - Tenant admins and super admins
    """
    checker = PermissionChecker(request.user, request.tenant)
    if not checker.can_manage_tenant_settings():
        raise PermissionDenied("You don't have permission to manage domains")

    if request.method == 'POST':
        form = DomainForm(parse_request_data(request))
        if not form.is_valid():
            return form_error_response(form)
        verification = create_domain_verification(request.tenant, form.cleaned_data['domain'])
        return JsonResponse({'verification': serialize_domain_verification(verification)}, status=201)

    verifications = DomainVerification.objects.filter(tenant=request.tenant).order_by('-created_at')
    return JsonResponse({'domains': [serialize_domain_verification(v) for v in verifications]})


@login_required
@tenant_required
@require_POST
@json_errors
def domain_verify(request, verification_id):
    checker = PermissionChecker(request.user, request.tenant)
    if not checker.can_manage_tenant_settings():
        raise PermissionDenied("You don't have permission to manage domains")

    verification = get_object_or_404(DomainVerification, id=verification_id, tenant=request.tenant)
    verified = verify_domain(verification)
    return JsonResponse({
        'verified': verified,
        'verification': serialize_domain_verification(verification),
    })


# =============================================================================
# CURRENCY & M-PESA SETTINGS
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def currency_settings(request):
    currency_settings = TenantCurrencySettings.objects.filter(tenant=request.tenant).select_related('currency').first()

    if request.method == 'POST':
        if not PermissionChecker(request.user, request.tenant).can_manage_tenant_settings():
            raise PermissionDenied("You don't have permission to change currency settings")
        form = CurrencySettingsForm(
            parse_request_data(request),
            instance=currency_settings or TenantCurrencySettings(tenant=request.tenant),
        )
        if not form.is_valid():
            return form_error_response(form)
        currency_settings = form.save()
        request.tenant.currency_code = currency_settings.currency.code
        request.tenant.save(update_fields=['currency_code', 'updated_at'])
        logger.info(f"Currency settings updated for {request.tenant.subdomain}: {currency_settings.currency.code}")

    return JsonResponse({
        'currency_settings': serialize_currency_settings(currency_settings) if currency_settings else None,
    })


@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def mpesa_settings(request):
    """
    Tenant overrides of the platform's Daraja credentials

    Secrets are never echoed back, only whether they are set.
    """
    if not PermissionChecker(request.user, request.tenant).can_manage_tenant_settings():
        raise PermissionDenied("You don't have permission to manage M-Pesa settings")

    tenant = request.tenant
    if request.method == 'POST':
        form = MpesaSettingsForm(parse_request_data(request))
        if not form.is_valid():
            return form_error_response(form)
        tenant.mpesa_settings = {**(tenant.mpesa_settings or {}), **form.get_settings()}
        tenant.save(update_fields=['mpesa_settings', 'updated_at'])
        logger.info(f"M-Pesa settings updated for {tenant.subdomain}")

    overrides = tenant.mpesa_settings or {}
    visible = {
        key: (bool(value) if key in MPESA_SECRET_KEYS else value)
        for key, value in overrides.items()
    }
    return JsonResponse({'mpesa_settings': visible})


# =============================================================================
# OFFICES
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def office_list(request):
    if request.method == 'POST':
        if not PermissionChecker(request.user, request.tenant).can_manage_offices():
            raise PermissionDenied("You don't have permission to create offices")
        form = OfficeForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)
        office = form.save()
        logger.info(f"Office created: {office.code} in {request.tenant.subdomain}")
        return JsonResponse({'office': serialize_office(office)}, status=201)

    offices = Office.objects.for_tenant(request.tenant).order_by('name')
    return JsonResponse({'offices': [serialize_office(office) for office in offices]})


@login_required
@tenant_required
@require_POST
@json_errors
def office_update(request, office_id):
    if not PermissionChecker(request.user, request.tenant).can_manage_offices():
        raise PermissionDenied("You don't have permission to edit offices")

    office = get_object_or_404(Office.objects.for_tenant(request.tenant), id=office_id)
    form = OfficeForm(parse_request_data(request), instance=office, tenant=request.tenant)
    if not form.is_valid():
        return form_error_response(form)
    office = form.save()
    return JsonResponse({'office': serialize_office(office)})


# =============================================================================
# STAFF USERS
# =============================================================================

@login_required
@tenant_required
@require_http_methods(['GET', 'POST'])
@json_errors
def user_list(request):
    """
    GET lists the tenant's users. POST invites a staff member with a
    temporary password sent by email.

    Permissions:
    - Tenant admins and super admins
    """
    checker = PermissionChecker(request.user, request.tenant)
    if not checker.can_manage_users():
        raise PermissionDenied("You don't have permission to manage users")

    if request.method == 'POST':
        form = StaffUserForm(parse_request_data(request), tenant=request.tenant)
        if not form.is_valid():
            return form_error_response(form)

        temporary_password = get_random_string(12)
        with transaction.atomic():
            user = form.save(commit=False)
            user.set_password(temporary_password)
            user.save()
            transaction.on_commit(lambda: send_user_invitation_email(user, temporary_password))

        logger.info(f"User invited: {user.email} ({user.role}) to {request.tenant.subdomain}")
        return JsonResponse({'user': serialize_user(user)}, status=201)

    users = User.objects.for_tenant(request.tenant)
    role = request.GET.get('role')
    if role:
        users = users.filter(role=role)
    return JsonResponse(paginate(request, users, serialize_user))


@login_required
@tenant_required
@require_POST
@json_errors
def user_deactivate(request, user_id):
    if not PermissionChecker(request.user, request.tenant).can_manage_users():
        raise PermissionDenied("You don't have permission to manage users")

    user = get_object_or_404(User.objects.for_tenant(request.tenant), id=user_id)
    if user.pk == request.user.pk:
        raise ValueError("You cannot deactivate your own account")
    user.is_active = False
    user.save(update_fields=['is_active'])
    logger.info(f"User deactivated: {user.email} by {request.user.email}")
    return JsonResponse({'user': serialize_user(user)})
