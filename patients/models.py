# patients/models.py
import os
import re

from django.core.exceptions import ValidationError
from django.core.validators import RegexValidator
from django.db import models
from django.utils import timezone

from core.utils import get_kuwait_today

civil_id_validator = RegexValidator(
    regex=r'^\d{12}$',
    message='validation.invalid_civil_id',
    code='invalid_civil_id',
)


class ActivePatientManager(models.Manager):
    def get_queryset(self):
        return super().get_queryset().filter(is_active=True)


class Patient(models.Model):
    GENDER_CHOICES = [
        ('MALE', 'Male'),
        ('FEMALE', 'Female'),
    ]

    civil_id = models.CharField(max_length=12, unique=True, validators=[civil_id_validator],
                                help_text="Kuwait Civil ID (12 digits)")
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    phone = models.CharField(max_length=20)
    email = models.EmailField(blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    address = models.TextField(blank=True)
    emergency_contact = models.CharField(max_length=200, blank=True)
    emergency_phone = models.CharField(max_length=20, blank=True)
    allergies = models.JSONField(default=list, blank=True)
    medical_history = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)

    created_by = models.ForeignKey('users.User', on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='created_patients')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = models.Manager()
    active = ActivePatientManager()

    class Meta:
        ordering = ['last_name', 'first_name']
        indexes = [
            models.Index(fields=['last_name', 'first_name'], name='patient_name_idx'),
            models.Index(fields=['phone'], name='patient_phone_idx'),
            models.Index(fields=['is_active'], name='patient_active_idx'),
        ]

    def __str__(self):
        return f"{self.full_name} ({self.civil_id})"

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def age(self):
        if not self.date_of_birth:
            return None
        today = get_kuwait_today()
        return today.year - self.date_of_birth.year - (
            (today.month, today.day) < (self.date_of_birth.month, self.date_of_birth.day)
        )

    @property
    def outstanding_balance(self):
        from billing.models import Invoice
        return Invoice.outstanding_for_patient(self)

    def clean(self):
        if self.date_of_birth and self.date_of_birth > get_kuwait_today():
            raise ValidationError({'date_of_birth': ValidationError('validation.future_date', code='future_date')})

    def soft_delete(self):
        """Deactivate instead of deleting; clinical history is kept"""
        self.is_active = False
        self.save(update_fields=['is_active', 'updated_at'])


def patient_file_path(instance, filename):
    return PatientFile.build_storage_name(instance.patient_id, filename)


class PatientFile(models.Model):
    """Attachment uploaded to a patient record (x-rays, lab results, documents)"""
    CATEGORY_CHOICES = [
        ('xray', 'X-Ray'),
        ('lab', 'Lab Result'),
        ('document', 'Document'),
        ('photo', 'Photo'),
        ('other', 'Other'),
    ]

    # MIME type -> allowed extensions
    ALLOWED_TYPES = {
        'image/jpeg': ['.jpg', '.jpeg'],
        'image/png': ['.png'],
        'image/webp': ['.webp'],
        'application/pdf': ['.pdf'],
        'application/msword': ['.doc'],
        'application/vnd.openxmlformats-officedocument.wordprocessingml.document': ['.docx'],
        'text/plain': ['.txt'],
        'image/tiff': ['.tiff', '.tif'],
    }

    MAX_IMAGE_SIZE = 5 * 1024 * 1024
    MAX_DOCUMENT_SIZE = 10 * 1024 * 1024
    MAX_FILES_PER_UPLOAD = 5

    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='files')
    file = models.FileField(upload_to=patient_file_path, max_length=255)
    original_name = models.CharField(max_length=255)
    mime_type = models.CharField(max_length=100)
    size = models.PositiveIntegerField(default=0)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='document')
    description = models.CharField(max_length=255, blank=True)
    uploaded_by = models.ForeignKey('users.User', on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name='uploaded_patient_files')
    uploaded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-uploaded_at']

    def __str__(self):
        return f"{self.original_name} ({self.patient.full_name})"

    @property
    def is_image(self):
        return self.mime_type.startswith('image/')

    @classmethod
    def max_size_for(cls, mime_type):
        return cls.MAX_IMAGE_SIZE if mime_type.startswith('image/') else cls.MAX_DOCUMENT_SIZE

    @staticmethod
    def sanitize_basename(filename):
        """Keep only ASCII letters and digits in the base name, max 50 chars"""
        base, _ = os.path.splitext(os.path.basename(filename))
        return re.sub(r'[^a-zA-Z0-9]', '_', base)[:50] or 'file'

    @classmethod
    def build_storage_name(cls, patient_id, filename, now=None):
        """patient-files/<patient_id>/<timestamp>-<sanitized><ext>"""
        now = now or timezone.now()
        timestamp = int(now.timestamp() * 1000)
        ext = os.path.splitext(filename)[1].lower()
        return f"patient-files/{patient_id}/{timestamp}-{cls.sanitize_basename(filename)}{ext}"

    @classmethod
    def validate_upload(cls, uploaded_file):
        """
        Check type, extension and size of an uploaded file.

        Raises:
            ValidationError: with a catalog key message and params
        """
        mime_type = uploaded_file.content_type or ''
        if mime_type not in cls.ALLOWED_TYPES:
            raise ValidationError('files.type_not_allowed', code='type_not_allowed',
                                  params={'type': mime_type or 'unknown'})

        ext = os.path.splitext(uploaded_file.name)[1].lower()
        if ext not in cls.ALLOWED_TYPES[mime_type]:
            raise ValidationError('files.extension_mismatch', code='extension_mismatch',
                                  params={'ext': ext or '-'})

        max_size = cls.max_size_for(mime_type)
        if uploaded_file.size > max_size:
            raise ValidationError('files.too_large', code='too_large',
                                  params={'name': uploaded_file.name, 'max_mb': max_size // (1024 * 1024)})

    def delete(self, *args, **kwargs):
        storage, name = self.file.storage, self.file.name
        result = super().delete(*args, **kwargs)
        if name and storage.exists(name):
            storage.delete(name)
        return result
