# users/views.py
import logging
import secrets
import string

from django.contrib.auth import authenticate, login, logout
from django.forms.models import model_to_dict
from django.http import JsonResponse
from django.middleware.csrf import get_token
from django.views.decorators.csrf import ensure_csrf_cookie

from core.api import (
    ApiError, NotFound, api_view, form_validation_error, get_language,
    json_success, paginate, parse_json_body, rate_limit,
)
from core.i18n import translate
from core.models import AuditLog
from .forms import LoginForm, PasswordResetForm, UserForm
from .models import Role, User

logger = logging.getLogger(__name__)


def serialize_user(user, language='ar'):
    role_name = user.role_name
    if user.is_superuser:
        permissions = Role.DEFAULT_PERMISSIONS[Role.ADMIN]
    else:
        permissions = user.role.permissions if user.role else {}
    return {
        'id': user.id,
        'username': user.username,
        'full_name': user.display_name,
        'email': user.email,
        'phone': user.phone,
        'role': role_name,
        'role_display': translate(f'roles.{role_name}', language) if role_name else None,
        'permissions': permissions,
        'is_active': user.is_active,
        'last_login': user.last_login.isoformat() if user.last_login else None,
        'created_at': user.created_at.isoformat() if user.created_at else None,
    }


def get_user_or_404(pk):
    try:
        return User.objects.select_related('role').get(pk=pk)
    except User.DoesNotExist:
        raise NotFound('users.not_found')


@ensure_csrf_cookie
@api_view(['GET'], login_required=False)
def csrf_token(request):
    """Hand the CSRF token to API clients; also sets the csrftoken cookie"""
    return JsonResponse({'csrfToken': get_token(request)})


@rate_limit('login', max_requests=10, window_seconds=15 * 60, key_field='username')
@api_view(['POST'], login_required=False)
def login_view(request):
    data = parse_json_body(request)
    form = LoginForm(data)
    if not form.is_valid():
        raise ApiError(400, 'auth.credentials_required', 'MISSING_CREDENTIALS')

    username = form.cleaned_data['username'].strip()
    password = form.cleaned_data['password']

    # authenticate() rejects inactive users, so check first for a clearer message
    existing = User.objects.filter(username=username).first()
    if existing and not existing.is_active and existing.check_password(password):
        logger.warning(f'Login attempt for inactive account {username}')
        AuditLog.log_login(None, request, success=False, username=username)
        raise ApiError(401, 'auth.account_inactive', 'ACCOUNT_INACTIVE')

    user = authenticate(request, username=username, password=password)
    if user is None:
        logger.warning(f'Failed login for {username}')
        raise ApiError(401, 'auth.invalid_credentials', 'INVALID_CREDENTIALS')

    login(request, user)
    logger.info(f'User {user.username} logged in')
    return json_success(
        {'user': serialize_user(user, get_language(request)), 'csrfToken': get_token(request)},
        'auth.login_success', request=request,
    )


@api_view(['POST'])
def logout_view(request):
    """
    Custom logout view that properly clears session and prevents caching.
    """
    username = request.user.username
    logout(request)
    logger.info(f'User {username} logged out')
    return json_success(message_key='auth.logout_success', request=request)


@api_view(['GET'])
def me(request):
    return json_success(serialize_user(request.user, get_language(request)))


@api_view(['GET', 'POST'], resource='users')
def user_list(request):
    if request.method == 'POST':
        return user_create(request)

    queryset = User.objects.select_related('role').order_by('username')
    role = request.GET.get('role')
    if role:
        queryset = queryset.filter(role__name=role)
    if request.GET.get('active') in ('0', '1'):
        queryset = queryset.filter(is_active=request.GET['active'] == '1')

    return JsonResponse(paginate(request, queryset, serialize_user), json_dumps_params={'ensure_ascii': False})


def user_create(request):
    data = parse_json_body(request)
    data.setdefault('is_active', True)
    form = UserForm(data, request_user=request.user)
    if not form.is_valid():
        raise form_validation_error(form)
    user = form.save()
    logger.info(f'User {user.username} created by {request.user.username}')
    return json_success(serialize_user(user, get_language(request)), 'users.created_successfully',
                        status=201, request=request)


@api_view(['GET', 'PUT', 'DELETE'], resource='users')
def user_detail(request, pk):
    user = get_user_or_404(pk)
    language = get_language(request)

    if request.method == 'GET':
        return json_success(serialize_user(user, language))

    if request.method == 'DELETE':
        if user == request.user:
            raise ApiError(400, 'users.cannot_delete_self', 'CANNOT_DELETE_SELF')
        user.is_active = False
        user.save(update_fields=['is_active', 'updated_at'])
        logger.info(f'User {user.username} deactivated by {request.user.username}')
        return json_success(message_key='users.deleted_successfully', request=request)

    data = {
        **model_to_dict(user, fields=UserForm.Meta.fields),
        'role': user.role_name,
        **parse_json_body(request),
    }
    form = UserForm(data, instance=user, is_update=True, request_user=request.user)
    if not form.is_valid():
        raise form_validation_error(form)
    user = form.save()
    return json_success(serialize_user(user, language), 'users.updated_successfully', request=request)


@rate_limit('password_reset', max_requests=5, window_seconds=15 * 60)
@api_view(['POST'], resource='users', action='update')
def reset_user_password(request, pk):
    """Set a new password for a user; a random one is generated when none is given"""
    user_to_reset = get_user_or_404(pk)

    form = PasswordResetForm(parse_json_body(request))
    if not form.is_valid():
        raise form_validation_error(form)

    new_password = form.cleaned_data.get('password')
    generated = not new_password
    if generated:
        # Mix of uppercase, lowercase, digits, and a few safe special characters
        alphabet = string.ascii_letters + string.digits + '!@#$%'
        new_password = ''.join(secrets.choice(alphabet) for _ in range(12))

    user_to_reset.set_password(new_password)
    user_to_reset._skip_audit_log = True
    user_to_reset.save()

    AuditLog.log_action(
        user=request.user,
        action=AuditLog.PASSWORD_RESET,
        model_instance=user_to_reset,
        new_values={'password': AuditLog.HIDDEN_VALUE},
        request=request,
        description=f'Password reset for user: {user_to_reset.username}'
    )
    logger.info(f'Password reset for {user_to_reset.username} by {request.user.username}')

    data = {'user_id': user_to_reset.id}
    if generated:
        # Shown only once
        data['temporary_password'] = new_password
    return json_success(data, 'auth.password_reset_success', request=request,
                        params={'username': user_to_reset.username})


@api_view(['GET'])
def doctor_list(request):
    """Active doctors, for any logged-in user"""
    doctors = User.objects.filter(is_active=True, role__name=Role.DOCTOR).order_by('full_name', 'username')
    return json_success([
        {'id': d.id, 'full_name': d.display_name, 'phone': d.phone}
        for d in doctors
    ])
