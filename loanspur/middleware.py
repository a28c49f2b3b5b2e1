"""
Tenant resolution middleware

Sets ``request.tenant`` from the Host header, falling back to the signed-in
user's tenant. Requests for a suspended or cancelled tenant are refused.
"""

from django.http import JsonResponse
import logging

from loanspur.tenancy import resolve_tenant_for_host

logger = logging.getLogger(__name__)


class TenantMiddleware:

    # reachable whatever state the tenant is in
    EXEMPT_PREFIXES = (
        '/admin/',
        '/auth/',
        '/tenants/register/',
        '/mpesa/callback/',
        '/mpesa/result/',
        '/mpesa/timeout/',
    )

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        host = request.META.get('HTTP_HOST', '')
        tenant = resolve_tenant_for_host(host, active_only=False)

        user = getattr(request, 'user', None)
        if tenant is None and user is not None and user.is_authenticated:
            tenant = user.tenant

        request.tenant = tenant

        if tenant is not None and tenant.status != 'active' and not request.path.startswith(self.EXEMPT_PREFIXES):
            is_super_admin = user is not None and user.is_authenticated and user.role == 'super_admin'
            if not is_super_admin:
                logger.warning(f"Blocked request to {tenant.status} tenant {tenant.subdomain}: {request.path}")
                return JsonResponse(
                    {'error': f"This organisation's account is {tenant.status}."},
                    status=403
                )

        return self.get_response(request)
