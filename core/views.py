# core/views.py
import logging

from django.db.models import Sum
from django.http import JsonResponse

from appointments.models import Appointment
from billing.models import Invoice, Payment
from billing.views import serialize_invoice
from patients.models import Patient
from patients.views import serialize_patient
from users.models import Role
from .api import (
    ApiError, api_view, form_validation_error, get_language, json_error, json_success,
    paginate, parse_json_body,
)
from .forms import SystemSettingsForm
from .i18n import format_currency, get_relative_time
from .models import AuditLog, SystemSetting
from .utils import get_kuwait_today, kuwait_day_bounds

logger = logging.getLogger(__name__)


def csrf_failure(request, reason=''):
    """CSRF_FAILURE_VIEW: localized JSON 403 instead of Django's HTML page"""
    logger.warning(f'CSRF failure on {request.path}: {reason}')
    return json_error(request, 403, 'error.csrf_message', 'CSRF_ERROR')


def handler404(request, exception=None):
    return json_error(request, 404, 'error.not_found_message', 'NOT_FOUND')


def handler500(request):
    return json_error(request, 500, 'error.server_message', 'SERVER_ERROR')


def _money(amount, language):
    return {'amount': str(amount), 'display': format_currency(amount, language)}


@api_view(['GET'], resource='dashboard')
def dashboard_stats(request):
    """Headline numbers for the landing screen, scoped to the user's role"""
    language = get_language(request)
    user = request.user

    today = get_kuwait_today()
    day_start, day_end = kuwait_day_bounds(today)
    month_start, _ = kuwait_day_bounds(today.replace(day=1))

    todays_appointments = Appointment.objects.filter(
        start__gte=day_start,
        start__lt=day_end,
        status__in=Appointment.BLOCKING_STATUSES,
    )
    # Doctors only see their own schedule
    if user.has_role(Role.DOCTOR):
        todays_appointments = todays_appointments.filter(doctor=user)

    stats = {
        'total_patients': Patient.active.count(),
        'total_appointments': Appointment.objects.count(),
        'todays_appointments': todays_appointments.count(),
    }

    if user.has_permission('patients', 'read'):
        stats['recent_patients'] = [
            serialize_patient(p, language) for p in Patient.active.order_by('-created_at')[:5]
        ]

    # Payment metrics only for users with billing access
    if user.has_permission('billing', 'read'):
        valid_payments = Payment.objects.filter(invoice__is_active=True)
        total_revenue = valid_payments.aggregate(total=Sum('amount'))['total'] or 0
        monthly_revenue = valid_payments.filter(
            payment_date__gte=month_start
        ).aggregate(total=Sum('amount'))['total'] or 0

        stats.update({
            'total_revenue': _money(total_revenue, language),
            'monthly_revenue': _money(monthly_revenue, language),
            'pending_payments': _money(Invoice.total_outstanding(), language),
            'pending_invoices': [
                serialize_invoice(invoice, language)
                for invoice in Invoice.outstanding_queryset().select_related('patient').order_by('issue_date')[:5]
            ],
        })

    return json_success(stats)


def get_settings_payload():
    """Every known setting with its effective value, grouped by category"""
    stored = {s.key: s.value for s in SystemSetting.objects.filter(is_active=True)}
    grouped = {}
    for key, (default, category, description) in SystemSetting.DEFAULTS.items():
        grouped.setdefault(category, {})[key] = stored.get(key, default)
    for key, value in stored.items():
        if key not in SystemSetting.DEFAULTS:
            grouped.setdefault('general', {})[key] = value
    return grouped


@api_view(['GET', 'PUT'], resource='settings')
def settings_view(request):
    if request.method == 'GET':
        return json_success(get_settings_payload())

    data = parse_json_body(request)
    unknown = sorted(set(data) - set(SystemSettingsForm.base_fields))
    if unknown:
        raise ApiError(400, 'validation.invalid_input', 'VALIDATION_ERROR', details={'unknown_keys': unknown})

    form = SystemSettingsForm(data)
    if not form.is_valid():
        raise form_validation_error(form)

    changes = form.save()
    if changes:
        logger.info(f"{request.user.username} updated settings: {', '.join(changes)}")

    return json_success(get_settings_payload(), 'settings.updated_successfully', request=request,
                        changed=sorted(changes))


def serialize_audit_log(log, language='ar'):
    return {
        'id': log.id,
        'user': log.user.username if log.user else None,
        'action': log.action,
        'table_name': log.table_name,
        'record_id': log.record_id,
        'object_repr': log.object_repr,
        'old_values': log.old_values,
        'new_values': log.new_values,
        'changed_fields': log.changed_fields,
        'description': log.description,
        'ip_address': log.ip_address,
        'user_agent': log.user_agent,
        'timestamp': log.timestamp.isoformat(),
        'timestamp_display': get_relative_time(log.timestamp, language),
    }


@api_view(['GET'], resource='audit')
def audit_log_list(request):
    queryset = AuditLog.objects.select_related('user').order_by('-timestamp')

    user_filter = request.GET.get('user')
    if user_filter:
        if user_filter.isdigit():
            queryset = queryset.filter(user_id=int(user_filter))
        else:
            queryset = queryset.filter(user__username=user_filter)

    action_filter = request.GET.get('action')
    if action_filter:
        queryset = queryset.filter(action=action_filter.upper())

    table_filter = request.GET.get('table')
    if table_filter:
        queryset = queryset.filter(table_name=table_filter)

    return JsonResponse(paginate(request, queryset, serialize_audit_log), json_dumps_params={'ensure_ascii': False})
