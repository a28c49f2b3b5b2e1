"""
Shared View Helpers
===================

Request parsing, JSON error responses and pagination used by every view
"""

from functools import wraps
from django.core.exceptions import PermissionDenied, ValidationError
from django.core.paginator import Paginator
from django.http import JsonResponse
import json
import logging

from loanspur.mpesa import MpesaError

logger = logging.getLogger(__name__)


DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 200


def parse_request_data(request):
    """JSON object body, or the form-encoded POST"""
    if request.content_type == 'application/json':
        try:
            data = json.loads(request.body or b'{}')
        except ValueError:
            raise ValidationError("Request body is not valid JSON")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data
    return request.POST


def json_error(message, status=400, errors=None):
    payload = {'error': message}
    if errors:
        payload['errors'] = errors
    return JsonResponse(payload, status=status)


def form_error_response(form):
    errors = {
        field: [error['message'] for error in field_errors]
        for field, field_errors in form.errors.get_json_data().items()
    }
    return json_error("Please correct the errors below", errors=errors)


def json_errors(view_func):
    """
    Turn domain exceptions raised by a view into JSON responses

    - ValidationError / ValueError  -> 400
    - PermissionDenied              -> 403
    - MpesaError                    -> 502
    """
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except ValidationError as e:
            errors = e.message_dict if hasattr(e, 'error_dict') else None
            return json_error('; '.join(e.messages), errors=errors)
        except ValueError as e:
            return json_error(str(e))
        except PermissionDenied as e:
            return json_error(str(e) or "You don't have permission to perform this action", status=403)
        except MpesaError as e:
            logger.error(f"M-Pesa request failed on {request.path}: {e}")
            return json_error(str(e), status=502)
    return wrapper


def paginate(request, queryset, serializer):
    """
    Page a queryset with ``?page=`` and ``?page_size=``

    Returns:
        dict: {'results', 'count', 'page', 'num_pages'}
    """
    try:
        page_size = min(int(request.GET.get('page_size', DEFAULT_PAGE_SIZE)), MAX_PAGE_SIZE)
    except ValueError:
        page_size = DEFAULT_PAGE_SIZE
    paginator = Paginator(queryset, max(page_size, 1))
    page = paginator.get_page(request.GET.get('page'))
    return {
        'results': [serializer(obj) for obj in page.object_list],
        'count': paginator.count,
        'page': page.number,
        'num_pages': paginator.num_pages,
    }
