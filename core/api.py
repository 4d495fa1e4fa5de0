# core/api.py
"""
Shared plumbing for the JSON API: response envelopes, body parsing,
pagination, access control and rate limiting.
"""
import json
import logging
import time
from functools import wraps

from django.conf import settings
from django.core.cache import cache
from django.core.exceptions import ObjectDoesNotExist, PermissionDenied, ValidationError
from django.core.paginator import EmptyPage, Paginator
from django.http import Http404, JsonResponse
from django.views.decorators.http import require_http_methods

from .i18n import DEFAULT_LANGUAGE, localize_message, translate
from .models import AuditLog

logger = logging.getLogger(__name__)

METHOD_ACTIONS = {
    'GET': 'read',
    'HEAD': 'read',
    'POST': 'create',
    'PUT': 'update',
    'PATCH': 'update',
    'DELETE': 'delete',
}


class ApiError(Exception):
    """An error that maps directly onto an HTTP error response"""

    def __init__(self, status, message_key, code, details=None, **params):
        super().__init__(message_key)
        self.status = status
        self.message_key = message_key
        self.code = code
        self.details = details
        self.params = params


class NotFound(ApiError):
    def __init__(self, message_key='error.not_found_message'):
        super().__init__(404, message_key, 'NOT_FOUND')


class Forbidden(ApiError):
    def __init__(self, message_key='error.access_denied_message'):
        super().__init__(403, message_key, 'ACCESS_DENIED')


def get_language(request):
    return getattr(request, 'LANGUAGE', DEFAULT_LANGUAGE)


def json_error(request, status, message_key, code, details=None, extra=None, message=None, **params):
    payload = {
        'success': False,
        'error': message or translate(message_key, get_language(request), **params),
        'code': code,
    }
    if details:
        payload['details'] = details
    if extra:
        payload.update(extra)
    return JsonResponse(payload, status=status, json_dumps_params={'ensure_ascii': False})


def json_success(data=None, message_key=None, status=200, request=None, **extra):
    payload = {'success': True}
    if message_key and request is not None:
        payload['message'] = translate(message_key, get_language(request), **extra.pop('params', {}))
    if data is not None:
        payload['data'] = data
    payload.update(extra)
    return JsonResponse(payload, status=status, json_dumps_params={'ensure_ascii': False})


def validation_details(error, language):
    """Flatten a ValidationError into {field: [messages]} localized for the request"""
    if hasattr(error, 'error_dict'):
        details = {}
        for field, errors in error.error_dict.items():
            details[field] = [localize_message(e.message, language, e.params) for e in errors]
        return details
    return {'__all__': [localize_message(e.message, language, e.params) for e in error.error_list]}


def form_validation_error(form):
    """Turn an invalid Django form into a ValidationError"""
    return ValidationError(form.errors.as_data())


def parse_json_body(request):
    """Decode a JSON object request body"""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ApiError(400, 'error.invalid_json', 'VALIDATION_ERROR')
    if not isinstance(data, dict):
        raise ApiError(400, 'error.invalid_json', 'VALIDATION_ERROR')
    return data


def paginate(request, queryset, serializer, per_page=None):
    """Paginate a queryset into the standard list envelope"""
    per_page = per_page or getattr(settings, 'API_PAGE_SIZE', 20)
    paginator = Paginator(queryset, per_page)
    try:
        page_number = int(request.GET.get('page', 1))
    except (TypeError, ValueError):
        page_number = 1
    try:
        page = paginator.page(page_number)
    except EmptyPage:
        page = paginator.page(paginator.num_pages)

    language = get_language(request)
    return {
        'success': True,
        'results': [serializer(obj, language) for obj in page.object_list],
        'pagination': {
            'page': page.number,
            'per_page': per_page,
            'total': paginator.count,
            'total_pages': paginator.num_pages,
            'has_next': page.has_next(),
            'has_previous': page.has_previous(),
        },
    }


def api_view(methods, resource=None, action=None, roles=None, login_required=True):
    """
    Wrap a JSON endpoint with method filtering, authentication, role based
    access control and error mapping.

    Args:
        methods: Allowed HTTP methods
        resource: Permission resource checked with user.has_permission(); the
            action defaults from the HTTP method (GET=read, POST=create, ...)
        action: Force a specific action instead of the method default
        roles: Restrict to users holding one of these role names
        login_required: Reject anonymous requests with 401
    """
    def decorator(view_func):
        @require_http_methods(methods)
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            user = request.user
            if login_required and not user.is_authenticated:
                return json_error(request, 401, 'error.auth_required', 'AUTH_REQUIRED')

            if resource:
                needed = action or METHOD_ACTIONS.get(request.method, 'read')
                if not user.has_permission(resource, needed):
                    logger.warning(f'Permission denied: {user.username} {needed} {resource}')
                    return json_error(request, 403, 'error.access_denied_message', 'ACCESS_DENIED')

            if roles and not user.has_role(*roles):
                logger.warning(f'Role denied: {user.username} on {request.path}')
                return json_error(request, 403, 'error.access_denied_message', 'ACCESS_DENIED')

            try:
                return view_func(request, *args, **kwargs)
            except ApiError as e:
                return json_error(request, e.status, e.message_key, e.code, e.details, **e.params)
            except ValidationError as e:
                details = validation_details(e, get_language(request))
                first_messages = next(iter(details.values()), [])
                return json_error(
                    request, 400, 'validation.invalid_input', 'VALIDATION_ERROR',
                    details=details, message=first_messages[0] if first_messages else None
                )
            except (ObjectDoesNotExist, Http404):
                return json_error(request, 404, 'error.not_found_message', 'NOT_FOUND')
            except PermissionDenied:
                return json_error(request, 403, 'error.access_denied_message', 'ACCESS_DENIED')
            except Exception as e:
                logger.error(f'Error in {view_func.__name__}: {str(e)}', exc_info=True)
                return json_error(request, 500, 'error.server_message', 'SERVER_ERROR')
        return wrapper
    return decorator


def rate_limit(key_prefix, max_requests, window_seconds, key_field=None):
    """
    Limit how often a client may call a view.

    Requests are counted per client IP plus user id (or, for anonymous
    calls, the JSON/POST field named by key_field, e.g. the username).
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            identity = 'anonymous'
            if request.user.is_authenticated:
                identity = str(request.user.pk)
            elif key_field:
                try:
                    identity = str(json.loads(request.body or b'{}').get(key_field, 'anonymous'))
                except (json.JSONDecodeError, UnicodeDecodeError, AttributeError):
                    identity = request.POST.get(key_field, 'anonymous')

            cache_key = f'ratelimit:{key_prefix}:{AuditLog.get_client_ip(request)}:{identity}'
            now = int(time.time())
            reset_key = f'{cache_key}:reset'

            if cache.add(cache_key, 1, window_seconds):
                cache.set(reset_key, now + window_seconds, window_seconds)
            else:
                try:
                    count = cache.incr(cache_key)
                except ValueError:
                    cache.set(cache_key, 1, window_seconds)
                    cache.set(reset_key, now + window_seconds, window_seconds)
                    count = 1
                if count > max_requests:
                    retry_after = max(1, cache.get(reset_key, now + window_seconds) - now)
                    logger.warning(f'Rate limit exceeded for {cache_key}')
                    response = json_error(
                        request, 429, 'error.rate_limited', 'RATE_LIMIT_EXCEEDED',
                        extra={'retry_after': retry_after}, seconds=retry_after
                    )
                    response['Retry-After'] = str(retry_after)
                    return response

            return view_func(request, *args, **kwargs)
        return wrapper
    return decorator
