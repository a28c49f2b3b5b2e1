"""
Authentication Views
====================

Session login and logout for the JSON API
"""

from django.contrib.auth import login, logout, authenticate
from django.contrib.auth.decorators import login_required
from django.middleware.csrf import get_token
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods, require_POST
import logging

from loanspur.forms.tenant_forms import LoginForm
from loanspur.views.common import parse_request_data, json_error, form_error_response, json_errors
from loanspur.views.serializers import serialize_user, serialize_tenant

logger = logging.getLogger(__name__)


@require_http_methods(['GET', 'POST'])
@json_errors
def login_view(request):
    """
    GET returns a CSRF token for the client to send with the login POST.
    POST signs the user in with email and password.
    """
    if request.method == 'GET':
        return JsonResponse({'csrf_token': get_token(request)})

    form = LoginForm(parse_request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    email = form.cleaned_data['email'].lower()
    user = authenticate(request, username=email, password=form.cleaned_data['password'])
    if user is None:
        logger.warning(f"Failed login attempt for {email}")
        return json_error("Invalid email or password", status=401)

    if user.tenant is not None and user.tenant.status != 'active':
        return json_error(f"This organisation's account is {user.tenant.status}.", status=403)

    login(request, user)
    logger.info(f"User logged in: {user.email}")
    return JsonResponse({'user': serialize_user(user)})


@require_POST
def logout_view(request):
    if request.user.is_authenticated:
        logger.info(f"User logged out: {request.user.email}")
    logout(request)
    return JsonResponse({'success': True})


@login_required
def me_view(request):
    """The signed-in user and the tenant the request resolved to"""
    tenant = getattr(request, 'tenant', None)
    return JsonResponse({
        'user': serialize_user(request.user),
        'tenant': serialize_tenant(tenant) if tenant else None,
    })
