# appointments/models.py
from datetime import timedelta
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from core.utils import to_kuwait
from .utils import AppointmentConfig


class Appointment(models.Model):
    """
    Doctor appointment occupying [start, start + duration)
    """
    SCHEDULED = 'SCHEDULED'
    CONFIRMED = 'CONFIRMED'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    NO_SHOW = 'NO_SHOW'

    STATUS_CHOICES = [
        (SCHEDULED, 'Scheduled'),
        (CONFIRMED, 'Confirmed'),
        (COMPLETED, 'Completed'),
        (CANCELLED, 'Cancelled'),
        (NO_SHOW, 'No Show'),
    ]

    # Define blocking statuses as a class attribute
    BLOCKING_STATUSES = [SCHEDULED, CONFIRMED, COMPLETED]
    NON_BLOCKING_STATUSES = [CANCELLED, NO_SHOW]

    ALLOWED_TRANSITIONS = {
        SCHEDULED: [CONFIRMED, CANCELLED, NO_SHOW, COMPLETED],
        CONFIRMED: [COMPLETED, CANCELLED, NO_SHOW],
        COMPLETED: [],
        CANCELLED: [],
        NO_SHOW: [],
    }

    patient = models.ForeignKey('patients.Patient', on_delete=models.PROTECT, related_name='appointments')
    doctor = models.ForeignKey('users.User', on_delete=models.PROTECT, related_name='doctor_appointments')
    service = models.ForeignKey('services.Service', on_delete=models.PROTECT, null=True, blank=True,
                                related_name='appointments')

    start = models.DateTimeField(help_text="Start of the appointment")
    duration_minutes = models.PositiveIntegerField(default=30)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=SCHEDULED)
    notes = models.TextField(blank=True)

    created_by = models.ForeignKey('users.User', on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='created_appointments')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['start']
        indexes = [
            models.Index(fields=['status'], name='appt_status_idx'),
            models.Index(fields=['patient'], name='appt_patient_idx'),
            models.Index(fields=['doctor', 'start'], name='appt_doctor_start_idx'),
            models.Index(fields=['start'], name='appt_start_idx'),
        ]

    def __str__(self):
        local_start = to_kuwait(self.start)
        return f"{self.patient.full_name} - {local_start:%Y-%m-%d %H:%M} ({self.status})"

    @property
    def end(self):
        return self.start + timedelta(minutes=self.duration_minutes)

    @property
    def blocks_time_slot(self):
        """Whether this appointment blocks its time slot"""
        return self.status in self.BLOCKING_STATUSES

    def can_transition_to(self, new_status):
        return new_status in self.ALLOWED_TRANSITIONS.get(self.status, [])

    def set_status(self, new_status):
        """Move to a new status, enforcing the allowed transitions"""
        if new_status not in dict(self.STATUS_CHOICES):
            raise ValidationError({'status': ValidationError('validation.invalid_choice', code='invalid_choice',
                                                             params={'field': 'status'})})
        if not self.can_transition_to(new_status):
            raise ValidationError('appointments.invalid_transition', code='invalid_transition',
                                  params={'old': self.status, 'new': new_status})
        self.status = new_status
        self.save(update_fields=['status', 'updated_at'])

    def cancel(self):
        self.set_status(self.CANCELLED)

    def complete(self):
        if self.status != self.COMPLETED:
            self.set_status(self.COMPLETED)

    def has_changed(self, *fields):
        """Check if specified fields have changed since last save"""
        if not self.pk:
            return True

        old_instance = Appointment.objects.get(pk=self.pk)
        for field in fields:
            if getattr(self, field) != getattr(old_instance, field):
                return True
        return False

    def clean(self):
        """Model-level validation"""
        if self.doctor_id and not self.doctor.is_doctor:
            raise ValidationError({'doctor': ValidationError('appointments.doctor_required', code='doctor_required')})

        if not self.start or not self.duration_minutes:
            return

        if not self.blocks_time_slot:
            return

        # Only re-check scheduling rules when the slot itself moves
        if self.pk and not self.has_changed('start', 'duration_minutes', 'doctor_id'):
            return

        ok, message_key, params = self.check_timeslot_availability(
            self.doctor_id, self.start, self.duration_minutes, exclude_appointment_id=self.pk
        )
        if not ok:
            code = 'slot_conflict' if message_key == 'appointments.slot_conflict' else 'working_hours'
            raise ValidationError({'start': ValidationError(message_key, code=code, params=params)})

    @classmethod
    def get_conflicting_appointments(cls, doctor_id, start, duration_minutes, exclude_appointment_id=None):
        """Blocking appointments of a doctor that overlap [start, start + duration)"""
        end = start + timedelta(minutes=duration_minutes)

        # Any appointment overlapping must start before our end and within a day before our start
        candidates = cls.objects.filter(
            doctor_id=doctor_id,
            status__in=cls.BLOCKING_STATUSES,
            start__lt=end,
            start__gte=start - timedelta(days=1),
        )
        if exclude_appointment_id:
            candidates = candidates.exclude(pk=exclude_appointment_id)

        return [
            appointment for appointment in candidates
            if appointment.start < end and start < appointment.end
        ]

    @classmethod
    def check_timeslot_availability(cls, doctor_id, start, duration_minutes, exclude_appointment_id=None):
        """
        Check if a slot can be booked for a doctor

        Returns:
            Tuple of (is_available: bool, message_key: str, params: dict)
        """
        ok, message_key, params = AppointmentConfig.check_working_hours(start, duration_minutes)
        if not ok:
            return ok, message_key, params

        if cls.get_conflicting_appointments(doctor_id, start, duration_minutes, exclude_appointment_id):
            return False, 'appointments.slot_conflict', {}

        return True, '', {}


class Visit(models.Model):
    """Clinical encounter, usually following an appointment"""
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (IN_PROGRESS, 'In Progress'),
        (COMPLETED, 'Completed'),
        (CANCELLED, 'Cancelled'),
    ]

    appointment = models.OneToOneField(Appointment, on_delete=models.SET_NULL, null=True, blank=True,
                                       related_name='visit')
    patient = models.ForeignKey('patients.Patient', on_delete=models.PROTECT, related_name='visits')
    doctor = models.ForeignKey('users.User', on_delete=models.PROTECT, related_name='doctor_visits')
    visit_date = models.DateTimeField(default=timezone.now)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=IN_PROGRESS)

    # Clinical documentation
    chief_complaint = models.TextField(blank=True)
    diagnosis = models.TextField(blank=True)
    procedures = models.JSONField(
        default=list, blank=True,
        help_text="List of {service_id, tooth, surfaces, notes}"
    )
    tooth_map = models.JSONField(default=dict, blank=True)
    doctor_notes = models.TextField(blank=True)
    follow_up_date = models.DateField(null=True, blank=True)

    total_amount = models.DecimalField(max_digits=10, decimal_places=3, default=Decimal('0.000'))

    created_by = models.ForeignKey('users.User', on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='created_visits')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-visit_date']
        indexes = [
            models.Index(fields=['patient', 'visit_date'], name='visit_patient_date_idx'),
            models.Index(fields=['doctor', 'visit_date'], name='visit_doctor_date_idx'),
        ]

    def __str__(self):
        return f"{self.patient.full_name} - {to_kuwait(self.visit_date):%Y-%m-%d}"

    @staticmethod
    def procedure_service_id(procedure):
        try:
            return int(procedure.get('service_id'))
        except (AttributeError, TypeError, ValueError):
            return None

    def get_procedure_services(self):
        """Map of service id -> Service for the services referenced by procedures"""
        from services.models import Service
        ids = [self.procedure_service_id(p) for p in self.procedures or []]
        return Service.objects.in_bulk([i for i in ids if i is not None])

    def get_procedure_rows(self):
        """Procedures joined with their services, in order"""
        services = self.get_procedure_services()
        rows = []
        for procedure in self.procedures or []:
            service = services.get(self.procedure_service_id(procedure))
            if service:
                rows.append({'service': service, **procedure})
        return rows

    def calculate_total(self):
        """Sum of service prices over the recorded procedures"""
        services = self.get_procedure_services()
        total = Decimal('0.000')
        for procedure in self.procedures or []:
            service = services.get(self.procedure_service_id(procedure))
            if service:
                total += service.price
        return total

    def clean(self):
        if not isinstance(self.procedures, list):
            raise ValidationError({'procedures': ValidationError('validation.invalid_input', code='invalid')})

        services = self.get_procedure_services()
        for procedure in self.procedures:
            if not isinstance(procedure, dict) or self.procedure_service_id(procedure) not in services:
                raise ValidationError({'procedures': ValidationError('services.not_found', code='invalid_service')})

        if self.follow_up_date and self.visit_date and self.follow_up_date < to_kuwait(self.visit_date).date():
            raise ValidationError({'follow_up_date': ValidationError('validation.invalid_date', code='invalid_date')})

    def save(self, *args, **kwargs):
        self.total_amount = self.calculate_total()
        if 'update_fields' in kwargs and kwargs['update_fields'] is not None:
            kwargs['update_fields'] = set(kwargs['update_fields']) | {'total_amount'}
        super().save(*args, **kwargs)
