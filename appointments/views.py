# appointments/views.py
import logging

from django.db import transaction
from django.forms.models import model_to_dict
from django.http import JsonResponse

from billing.models import Invoice
from billing.views import serialize_invoice
from core.api import (
    ApiError, Forbidden, NotFound, api_view, form_validation_error,
    get_language, json_success, paginate, parse_json_body,
)
from core.i18n import format_currency, format_date, format_time, translate
from core.pdf import render_pdf
from core.utils import get_kuwait_date, get_kuwait_today, kuwait_day_bounds, parse_date
from users.models import Role, User
from .forms import AppointmentForm, AppointmentStatusForm, AvailableSlotsForm, VisitForm
from .models import Appointment, Visit
from .utils import get_available_slots

logger = logging.getLogger(__name__)


def _person(user):
    if not user:
        return None
    return {'id': user.id, 'full_name': user.display_name}


def serialize_appointment(appointment, language='ar'):
    patient = appointment.patient
    service = appointment.service
    return {
        'id': appointment.id,
        'patient': {
            'id': patient.id,
            'full_name': patient.full_name,
            'civil_id': patient.civil_id,
            'phone': patient.phone,
        },
        'doctor': _person(appointment.doctor),
        'service': {
            'id': service.id,
            'code': service.code,
            'name': service.get_name(language),
        } if service else None,
        'start': appointment.start.isoformat(),
        'end': appointment.end.isoformat(),
        'date': get_kuwait_date(appointment.start).isoformat(),
        'date_display': format_date(appointment.start, language),
        'time_display': f"{format_time(appointment.start, language)} - {format_time(appointment.end, language)}",
        'duration_minutes': appointment.duration_minutes,
        'status': appointment.status,
        'status_display': translate(f'appointment_status.{appointment.status}', language),
        'notes': appointment.notes,
        'has_visit': hasattr(appointment, 'visit') and appointment.visit is not None,
    }


def serialize_visit(visit, language='ar'):
    procedures = []
    for row in visit.get_procedure_rows():
        service = row['service']
        procedures.append({
            'service_id': service.id,
            'service_code': service.code,
            'name': service.get_name(language),
            'price': str(service.price),
            'tooth': row.get('tooth'),
            'surfaces': row.get('surfaces'),
            'notes': row.get('notes', ''),
        })

    return {
        'id': visit.id,
        'appointment_id': visit.appointment_id,
        'patient': {'id': visit.patient.id, 'full_name': visit.patient.full_name, 'civil_id': visit.patient.civil_id},
        'doctor': _person(visit.doctor),
        'visit_date': visit.visit_date.isoformat(),
        'visit_date_display': format_date(visit.visit_date, language),
        'status': visit.status,
        'status_display': translate(f'visit_status.{visit.status}', language),
        'chief_complaint': visit.chief_complaint,
        'diagnosis': visit.diagnosis,
        'procedures': procedures,
        'tooth_map': visit.tooth_map,
        'doctor_notes': visit.doctor_notes,
        'follow_up_date': visit.follow_up_date.isoformat() if visit.follow_up_date else None,
        'total_amount': str(visit.total_amount),
        'total_display': format_currency(visit.total_amount, language),
    }


def lock_doctor(doctor_id):
    """
    Lock the doctor row so concurrent bookings for the same doctor are
    validated one after another.
    """
    try:
        doctor_id = int(doctor_id)
    except (TypeError, ValueError):
        return
    list(User.objects.select_for_update().filter(pk=doctor_id))


def get_appointment_or_404(request, pk):
    try:
        appointment = Appointment.objects.select_related('patient', 'doctor', 'service').get(pk=pk)
    except Appointment.DoesNotExist:
        raise NotFound('appointments.not_found')
    if request.user.is_doctor and appointment.doctor_id != request.user.pk:
        raise Forbidden()
    return appointment


def get_visit_or_404(request, pk):
    try:
        visit = Visit.objects.select_related('patient', 'doctor', 'appointment').get(pk=pk)
    except Visit.DoesNotExist:
        raise NotFound('visits.not_found')
    if request.user.is_doctor and visit.doctor_id != request.user.pk:
        raise Forbidden()
    return visit


def appointment_queryset(request):
    queryset = Appointment.objects.select_related('patient', 'doctor', 'service')
    # Doctors only see their own schedule
    if request.user.is_doctor:
        queryset = queryset.filter(doctor=request.user)
    return queryset


@api_view(['GET', 'POST'], resource='appointments')
def appointment_list(request):
    if request.method == 'POST':
        return appointment_create(request)

    queryset = appointment_queryset(request)

    date_param = request.GET.get('date')
    if date_param:
        day = parse_date(date_param)
        if day is None:
            raise ApiError(400, 'validation.invalid_date', 'VALIDATION_ERROR')
        start, end = kuwait_day_bounds(day)
        queryset = queryset.filter(start__gte=start, start__lt=end)

    for param, lookup in (('patient', 'patient_id'), ('doctor', 'doctor_id')):
        value = request.GET.get(param)
        if value:
            if not value.isdigit():
                raise ApiError(400, 'validation.invalid_input', 'VALIDATION_ERROR')
            queryset = queryset.filter(**{lookup: int(value)})

    status = request.GET.get('status')
    if status:
        queryset = queryset.filter(status=status.upper())

    return JsonResponse(paginate(request, queryset.order_by('start'), serialize_appointment),
                        json_dumps_params={'ensure_ascii': False})


def appointment_create(request):
    data = parse_json_body(request)

    with transaction.atomic():
        lock_doctor(data.get('doctor'))
        form = AppointmentForm(data)
        if not form.is_valid():
            raise form_validation_error(form)
        appointment = form.save(commit=False)
        appointment.created_by = request.user
        appointment.save()

    logger.info(f'Appointment {appointment.pk} booked for doctor {appointment.doctor_id} by {request.user.username}')
    return json_success(serialize_appointment(appointment, get_language(request)),
                        'appointments.created_successfully', status=201, request=request)


@api_view(['GET', 'PUT', 'DELETE'], resource='appointments')
def appointment_detail(request, pk):
    appointment = get_appointment_or_404(request, pk)
    language = get_language(request)

    if request.method == 'GET':
        return json_success(serialize_appointment(appointment, language))

    if request.method == 'DELETE':
        appointment.cancel()
        logger.info(f'Appointment {appointment.pk} cancelled by {request.user.username}')
        return json_success(serialize_appointment(appointment, language), 'appointments.cancelled_successfully',
                            request=request)

    data = {**model_to_dict(appointment, fields=AppointmentForm.Meta.fields), **parse_json_body(request)}
    with transaction.atomic():
        lock_doctor(data.get('doctor'))
        form = AppointmentForm(data, instance=appointment)
        if not form.is_valid():
            raise form_validation_error(form)
        appointment = form.save()

    return json_success(serialize_appointment(appointment, language), 'appointments.updated_successfully',
                        request=request)


@api_view(['PATCH'], resource='appointments', action='update')
def appointment_status(request, pk):
    """Apply a status transition; the audit trail records it as STATUS_UPDATE"""
    appointment = get_appointment_or_404(request, pk)
    form = AppointmentStatusForm(parse_json_body(request))
    if not form.is_valid():
        raise form_validation_error(form)

    old_status = appointment.status
    appointment.set_status(form.cleaned_data['status'])
    logger.info(f'Appointment {appointment.pk} status {old_status} -> {appointment.status} by {request.user.username}')
    return json_success(serialize_appointment(appointment, get_language(request)), 'appointments.status_updated',
                        request=request)


@api_view(['GET'], resource='appointments')
def appointments_today(request):
    start, end = kuwait_day_bounds(get_kuwait_today())
    queryset = appointment_queryset(request).filter(start__gte=start, start__lt=end).order_by('start')
    language = get_language(request)
    appointments = [serialize_appointment(a, language) for a in queryset]
    return json_success(appointments, summary=translate('appointments.count', language, count=len(appointments)))


@api_view(['GET'], resource='appointments', action='read')
def available_slots(request):
    form = AvailableSlotsForm(request.GET)
    if not form.is_valid():
        raise form_validation_error(form)

    service = form.cleaned_data.get('service')
    duration = service.duration_minutes if service else None
    slots = get_available_slots(form.cleaned_data['doctor'], form.cleaned_data['date'], duration)
    language = get_language(request)
    return json_success([
        {'start': slot.isoformat(), 'time_display': format_time(slot, language)}
        for slot in slots
    ])


# Visits

@api_view(['GET', 'POST'], resource='visits')
def visit_list(request):
    if request.method == 'POST':
        return visit_create(request)

    queryset = Visit.objects.select_related('patient', 'doctor')
    if request.user.is_doctor:
        queryset = queryset.filter(doctor=request.user)

    patient = request.GET.get('patient')
    if patient:
        if not patient.isdigit():
            raise ApiError(400, 'validation.invalid_input', 'VALIDATION_ERROR')
        queryset = queryset.filter(patient_id=int(patient))

    return JsonResponse(paginate(request, queryset.order_by('-visit_date'), serialize_visit),
                        json_dumps_params={'ensure_ascii': False})


@transaction.atomic
def visit_create(request):
    data = parse_json_body(request)
    if request.user.is_doctor:
        data['doctor'] = request.user.pk

    form = VisitForm(data)
    if not form.is_valid():
        raise form_validation_error(form)

    visit = form.save(commit=False)
    visit.created_by = request.user
    visit.save()

    if visit.appointment:
        visit.appointment.complete()

    logger.info(f'Visit {visit.pk} recorded for patient {visit.patient_id} by {request.user.username}')
    return json_success(serialize_visit(visit, get_language(request)), 'visits.created_successfully',
                        status=201, request=request)


@api_view(['GET', 'PUT', 'DELETE'], resource='visits')
def visit_detail(request, pk):
    visit = get_visit_or_404(request, pk)
    language = get_language(request)

    if request.method == 'GET':
        data = serialize_visit(visit, language)
        data['invoices'] = [serialize_invoice(i, language) for i in visit.invoices.filter(is_active=True)]
        return json_success(data)

    if request.method == 'DELETE':
        visit.delete()
        logger.info(f'Visit {pk} deleted by {request.user.username}')
        return json_success(message_key='visits.deleted_successfully', request=request)

    data = {**model_to_dict(visit, fields=VisitForm.Meta.fields), **parse_json_body(request)}
    if request.user.is_doctor:
        data['doctor'] = request.user.pk
    form = VisitForm(data, instance=visit)
    if not form.is_valid():
        raise form_validation_error(form)
    visit = form.save()
    return json_success(serialize_visit(visit, language), 'visits.updated_successfully', request=request)


@api_view(['POST'], resource='visits', action='create')
def visit_start(request, appointment_id):
    """Open an in-progress visit from an appointment and complete the appointment"""
    appointment = get_appointment_or_404(request, appointment_id)

    if appointment.status == Appointment.COMPLETED:
        raise ApiError(400, 'visits.already_completed', 'ALREADY_COMPLETED')
    if Visit.objects.filter(appointment=appointment).exists():
        raise ApiError(400, 'visits.already_has_visit', 'VISIT_EXISTS')

    with transaction.atomic():
        visit = Visit(
            appointment=appointment,
            patient=appointment.patient,
            doctor=appointment.doctor,
            status=Visit.IN_PROGRESS,
            procedures=[{'service_id': appointment.service_id}] if appointment.service_id else [],
            created_by=request.user,
        )
        visit.full_clean()
        visit.save()
        appointment.complete()

    logger.info(f'Visit {visit.pk} started from appointment {appointment.pk} by {request.user.username}')
    return json_success(serialize_visit(visit, get_language(request)), 'visits.started_successfully',
                        status=201, request=request)


@api_view(['POST'], resource='billing', action='create')
def visit_invoice(request, pk):
    """Bill the procedures of a visit"""
    visit = get_visit_or_404(request, pk)
    if visit.invoices.filter(is_active=True).exists():
        raise ApiError(400, 'visits.invoice_exists', 'INVOICE_EXISTS')

    language = get_language(request)
    invoice = Invoice.create_from_visit(visit, user=request.user, language=language)
    logger.info(f'Invoice {invoice.invoice_number} created from visit {visit.pk} by {request.user.username}')
    return json_success(serialize_invoice(invoice, language), 'billing.invoice_created_successfully',
                        status=201, request=request)


@api_view(['GET'], resource='visits', action='read')
def visit_summary_pdf(request, pk):
    visit = get_visit_or_404(request, pk)
    language = get_language(request)

    procedures = []
    for row in visit.get_procedure_rows():
        procedures.append({
            'name': row['service'].get_name(language),
            'tooth': row.get('tooth'),
            'surfaces': row.get('surfaces'),
            'notes': row.get('notes', ''),
        })

    context = {
        'visit': visit,
        'patient': visit.patient,
        'procedures': procedures,
    }
    filename = f'visit-summary-{visit.pk}-{get_kuwait_date(visit.visit_date):%Y%m%d}.pdf'
    return render_pdf('pdf/visit_summary.html', context, filename, language)
