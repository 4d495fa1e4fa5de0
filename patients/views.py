# patients/views.py
import logging

from django.db import transaction
from django.db.models import Q
from django.forms.models import model_to_dict
from django.http import FileResponse, JsonResponse
from django.shortcuts import get_object_or_404

from core.api import (
    ApiError, NotFound, api_view, form_validation_error, get_language,
    json_success, paginate, parse_json_body,
)
from core.i18n import format_currency, translate
from users.models import Role
from .forms import PatientFileForm, PatientForm, PatientSearchForm
from .models import Patient, PatientFile

logger = logging.getLogger(__name__)


def serialize_patient(patient, language='ar'):
    return {
        'id': patient.id,
        'civil_id': patient.civil_id,
        'first_name': patient.first_name,
        'last_name': patient.last_name,
        'full_name': patient.full_name,
        'phone': patient.phone,
        'email': patient.email,
        'date_of_birth': patient.date_of_birth.isoformat() if patient.date_of_birth else None,
        'age': patient.age,
        'gender': patient.gender,
        'address': patient.address,
        'emergency_contact': patient.emergency_contact,
        'emergency_phone': patient.emergency_phone,
        'allergies': patient.allergies,
        'medical_history': patient.medical_history,
        'notes': patient.notes,
        'is_active': patient.is_active,
        'created_at': patient.created_at.isoformat() if patient.created_at else None,
        'updated_at': patient.updated_at.isoformat() if patient.updated_at else None,
    }


def serialize_patient_file(patient_file, language='ar'):
    return {
        'id': patient_file.id,
        'patient_id': patient_file.patient_id,
        'original_name': patient_file.original_name,
        'mime_type': patient_file.mime_type,
        'size': patient_file.size,
        'category': patient_file.category,
        'description': patient_file.description,
        'is_image': patient_file.is_image,
        'uploaded_by': patient_file.uploaded_by.display_name if patient_file.uploaded_by else None,
        'uploaded_at': patient_file.uploaded_at.isoformat() if patient_file.uploaded_at else None,
    }


def get_patient_or_404(pk):
    try:
        return Patient.objects.get(pk=pk)
    except Patient.DoesNotExist:
        raise NotFound('patients.not_found')


@api_view(['GET', 'POST'], resource='patients')
def patient_list(request):
    """List patients with search, or register a new patient"""
    if request.method == 'POST':
        return patient_create(request)

    form = PatientSearchForm(request.GET)
    form.is_valid()
    search = form.cleaned_data.get('search', '').strip()
    include_inactive = form.cleaned_data.get('include_inactive') and request.user.has_role(Role.ADMIN)

    queryset = Patient.objects.all() if include_inactive else Patient.active.all()
    if search:
        queryset = queryset.filter(
            Q(first_name__icontains=search) |
            Q(last_name__icontains=search) |
            Q(civil_id__icontains=search) |
            Q(phone__icontains=search)
        )

    payload = paginate(request, queryset.order_by('last_name', 'first_name'), serialize_patient)
    total = payload['pagination']['total']
    payload['summary'] = translate('patients.count', get_language(request), count=total)
    return JsonResponse(payload, json_dumps_params={'ensure_ascii': False})


def patient_create(request):
    data = parse_json_body(request)
    form = PatientForm(data)
    if not form.is_valid():
        raise form_validation_error(form)

    patient = form.save(commit=False)
    patient.created_by = request.user
    patient.save()
    logger.info(f'Patient {patient.civil_id} created by {request.user.username}')

    return json_success(serialize_patient(patient), 'patients.created_successfully', status=201, request=request)


@api_view(['GET', 'PUT', 'DELETE'], resource='patients')
def patient_detail(request, pk):
    patient = get_patient_or_404(pk)
    language = get_language(request)

    if request.method == 'GET':
        data = serialize_patient(patient, language)
        outstanding = patient.outstanding_balance
        data.update({
            'appointments_count': patient.appointments.count(),
            'visits_count': patient.visits.count(),
            'invoices_count': patient.invoices.filter(is_active=True).count(),
            'outstanding_balance': str(outstanding),
            'outstanding_balance_display': format_currency(outstanding, language),
        })
        return json_success(data)

    if request.method == 'DELETE':
        patient.soft_delete()
        logger.info(f'Patient {patient.civil_id} deactivated by {request.user.username}')
        return json_success(message_key='patients.deleted_successfully', request=request)

    data = {**model_to_dict(patient, fields=PatientForm.Meta.fields), **parse_json_body(request)}
    form = PatientForm(data, instance=patient)
    if not form.is_valid():
        raise form_validation_error(form)
    patient = form.save()
    return json_success(serialize_patient(patient, language), 'patients.updated_successfully', request=request)


@api_view(['GET'], resource='patients')
def patient_by_civil_id(request, civil_id):
    try:
        patient = Patient.objects.get(civil_id=civil_id.strip())
    except Patient.DoesNotExist:
        raise NotFound('patients.not_found')
    return json_success(serialize_patient(patient, get_language(request)))


@api_view(['GET', 'POST'], resource='patients')
def patient_files(request, pk):
    """List a patient's files, or upload up to MAX_FILES_PER_UPLOAD new ones"""
    patient = get_patient_or_404(pk)
    language = get_language(request)

    if request.method == 'GET':
        files = [serialize_patient_file(f, language) for f in patient.files.select_related('uploaded_by')]
        return json_success(files)

    uploads = request.FILES.getlist('files') or request.FILES.getlist('file')
    if not uploads:
        raise ApiError(400, 'files.no_files', 'NO_FILES')
    if len(uploads) > PatientFile.MAX_FILES_PER_UPLOAD:
        raise ApiError(400, 'files.too_many', 'TOO_MANY_FILES', max=PatientFile.MAX_FILES_PER_UPLOAD)

    form = PatientFileForm(request.POST)
    if not form.is_valid():
        raise form_validation_error(form)

    # Validate everything before storing anything
    for upload in uploads:
        PatientFile.validate_upload(upload)

    created = []
    stored = []
    try:
        with transaction.atomic():
            for upload in uploads:
                patient_file = PatientFile(
                    patient=patient,
                    original_name=upload.name[:255],
                    mime_type=upload.content_type,
                    size=upload.size,
                    category=form.cleaned_data['category'],
                    description=form.cleaned_data.get('description', ''),
                    uploaded_by=request.user,
                )
                patient_file.file.save(upload.name, upload, save=False)
                stored.append(patient_file.file)
                patient_file.save()
                created.append(patient_file)
    except Exception:
        # Rows were rolled back; remove the files written so far
        for stored_file in stored:
            stored_file.storage.delete(stored_file.name)
        logger.error(f'File upload for patient {patient.pk} failed, removed {len(stored)} stored file(s)')
        raise

    logger.info(f'{len(created)} file(s) uploaded for patient {patient.pk} by {request.user.username}')
    return json_success(
        [serialize_patient_file(f, language) for f in created],
        'files.uploaded_successfully', status=201, request=request,
        params={'count': len(created)},
    )


@api_view(['GET'], resource='patients', action='read')
def patient_file_download(request, pk, file_id):
    patient_file = get_object_or_404(PatientFile, pk=file_id, patient_id=pk)
    if not patient_file.file or not patient_file.file.storage.exists(patient_file.file.name):
        raise NotFound('files.not_found')

    response = FileResponse(
        patient_file.file.open('rb'),
        as_attachment=True,
        filename=patient_file.original_name,
        content_type=patient_file.mime_type,
    )
    return response


@api_view(['DELETE'], resource='patients')
def patient_file_delete(request, pk, file_id):
    try:
        patient_file = PatientFile.objects.get(pk=file_id, patient_id=pk)
    except PatientFile.DoesNotExist:
        raise NotFound('files.not_found')
    patient_file.delete()
    logger.info(f'File {file_id} of patient {pk} deleted by {request.user.username}')
    return json_success(message_key='files.deleted_successfully', request=request)
