# services/views.py
import logging

from django.forms.models import model_to_dict
from django.http import JsonResponse

from core.api import (
    Forbidden, NotFound, api_view, form_validation_error, get_language,
    json_success, paginate, parse_json_body,
)
from core.i18n import format_currency
from users.models import Role
from .forms import ServiceForm
from .models import Service

logger = logging.getLogger(__name__)


def serialize_service(service, language='ar'):
    return {
        'id': service.id,
        'code': service.code,
        'name': service.get_name(language),
        'name_ar': service.name_ar,
        'name_en': service.name_en,
        'description': service.get_description(language),
        'description_ar': service.description_ar,
        'description_en': service.description_en,
        'price': str(service.price),
        'price_display': format_currency(service.price, language),
        'duration_minutes': service.duration_minutes,
        'category': service.category,
        'is_active': service.is_active,
    }


def get_service_or_404(pk):
    try:
        return Service.objects.get(pk=pk)
    except Service.DoesNotExist:
        raise NotFound('services.not_found')


@api_view(['GET', 'POST'], resource='services')
def service_list(request):
    """Active services; ADMIN may request all with ?all=1"""
    if request.method == 'POST':
        return service_create(request)

    show_all = request.GET.get('all') in ('1', 'true') and request.user.has_role(Role.ADMIN)
    queryset = Service.objects.all() if show_all else Service.active.all()

    category = request.GET.get('category')
    if category:
        queryset = queryset.filter(category=category)

    return JsonResponse(paginate(request, queryset.order_by('code'), serialize_service),
                        json_dumps_params={'ensure_ascii': False})


def service_create(request):
    data = parse_json_body(request)
    data.setdefault('is_active', True)
    data.setdefault('duration_minutes', 30)
    data.setdefault('category', 'GENERAL')
    form = ServiceForm(data)
    if not form.is_valid():
        raise form_validation_error(form)
    service = form.save()
    logger.info(f'Service {service.code} created by {request.user.username}')
    return json_success(serialize_service(service, get_language(request)), 'services.created_successfully',
                        status=201, request=request)


@api_view(['GET', 'PUT', 'DELETE'], resource='services')
def service_detail(request, pk):
    service = get_service_or_404(pk)
    language = get_language(request)

    if request.method == 'GET':
        if not service.is_active and not request.user.has_role(Role.ADMIN):
            raise NotFound('services.not_found')
        return json_success(serialize_service(service, language))

    if not request.user.has_role(Role.ADMIN):
        raise Forbidden()

    if request.method == 'DELETE':
        service.is_active = False
        service.save(update_fields=['is_active', 'updated_at'])
        logger.info(f'Service {service.code} deactivated by {request.user.username}')
        return json_success(message_key='services.deleted_successfully', request=request)

    data = {**model_to_dict(service, fields=ServiceForm.Meta.fields), **parse_json_body(request)}
    form = ServiceForm(data, instance=service)
    if not form.is_valid():
        raise form_validation_error(form)
    service = form.save()
    return json_success(serialize_service(service, language), 'services.updated_successfully', request=request)
