# appointments/forms.py
from django import forms

from patients.models import Patient
from services.models import Service
from users.models import Role, User
from .models import Appointment, Visit


def doctor_queryset():
    return User.objects.filter(is_active=True, role__name=Role.DOCTOR)


class AppointmentForm(forms.ModelForm):
    """Form for creating/editing appointments"""

    class Meta:
        model = Appointment
        fields = ['patient', 'doctor', 'service', 'start', 'duration_minutes', 'notes']
        error_messages = {
            'doctor': {'invalid_choice': 'appointments.doctor_required'},
        }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['patient'].queryset = Patient.active.all()
        self.fields['doctor'].queryset = doctor_queryset()
        self.fields['service'].queryset = Service.active.all()
        self.fields['duration_minutes'].required = False

    def clean_duration_minutes(self):
        duration = self.cleaned_data.get('duration_minutes')
        if duration is not None and duration <= 0:
            raise forms.ValidationError('validation.invalid_input', code='invalid_duration')
        return duration

    def clean(self):
        cleaned_data = super().clean()

        # Default the length from the service, else one slot
        if not cleaned_data.get('duration_minutes'):
            service = cleaned_data.get('service')
            cleaned_data['duration_minutes'] = service.duration_minutes if service else 30

        return cleaned_data


class AppointmentStatusForm(forms.Form):
    status = forms.ChoiceField(choices=Appointment.STATUS_CHOICES)


class AvailableSlotsForm(forms.Form):
    doctor = forms.ModelChoiceField(queryset=User.objects.none())
    date = forms.DateField(input_formats=['%Y-%m-%d'], error_messages={'invalid': 'validation.invalid_date'})
    service = forms.ModelChoiceField(queryset=Service.objects.none(), required=False)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['doctor'].queryset = doctor_queryset()
        self.fields['service'].queryset = Service.active.all()


class VisitForm(forms.ModelForm):
    """Clinical documentation of a visit"""

    class Meta:
        model = Visit
        fields = [
            'appointment', 'patient', 'doctor', 'visit_date', 'status',
            'chief_complaint', 'diagnosis', 'procedures', 'tooth_map',
            'doctor_notes', 'follow_up_date',
        ]
        error_messages = {
            'doctor': {'invalid_choice': 'appointments.doctor_required'},
            'appointment': {'unique': 'visits.already_has_visit'},
        }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['doctor'].queryset = doctor_queryset()
        self.fields['visit_date'].required = False
        self.fields['status'].required = False

    def clean_procedures(self):
        return self.cleaned_data.get('procedures') or []

    def clean_tooth_map(self):
        return self.cleaned_data.get('tooth_map') or {}

    def clean_status(self):
        return self.cleaned_data.get('status') or Visit.IN_PROGRESS

    def clean_visit_date(self):
        return self.cleaned_data.get('visit_date') or self.instance.visit_date

    def clean(self):
        cleaned_data = super().clean()
        appointment = cleaned_data.get('appointment')
        patient = cleaned_data.get('patient')

        if appointment and patient and appointment.patient_id != patient.pk:
            self.add_error('appointment', forms.ValidationError('validation.invalid_input', code='patient_mismatch'))

        return cleaned_data
