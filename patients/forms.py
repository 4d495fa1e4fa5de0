# patients/forms.py
import re

from django import forms
from django.core.exceptions import ValidationError

from .models import Patient, PatientFile


def clean_name(name, field_name="first_name"):
    """
    Utility function to clean and validate names.

    Arabic and Latin letters, spaces, hyphens and apostrophes are accepted.

    Returns:
        Cleaned name string

    Raises:
        ValidationError: If name format is invalid
    """
    if not name:
        raise ValidationError('validation.required_field', code='required',
                              params={'field': field_name})

    # Strip whitespace and remove extra spaces
    name = ' '.join(name.split())

    if len(name) < 2:
        raise ValidationError('validation.min_length', code='min_length', params={'field': field_name})

    if len(name) > 100:
        raise ValidationError('validation.max_length', code='max_length', params={'field': field_name})

    if not any(c.isalpha() for c in name) or re.search(r'[0-9<>{}\[\]@#$%^&*=+|\\/]', name):
        raise ValidationError('validation.invalid_input', code='invalid_name')

    return name


def clean_kuwait_phone_number(phone):
    """
    Utility function to clean and validate Kuwait phone numbers.

    Accepts local numbers of at least 8 digits with an optional +965 / 00965 prefix.

    Returns:
        Cleaned phone number string in +965XXXXXXXX format or empty string if empty

    Raises:
        ValidationError: If phone number format is invalid
    """
    if not phone:
        return ''

    # Strip all whitespace, spaces, and dashes
    phone = phone.strip().replace(' ', '').replace('-', '')

    if not phone:
        return ''

    if phone.startswith('+965'):
        phone = phone[4:]
    elif phone.startswith('00965'):
        phone = phone[5:]
    elif phone.startswith('965') and len(phone) == 11:
        phone = phone[3:]

    if not phone.isdigit() or not 8 <= len(phone) <= 16:
        raise ValidationError('validation.invalid_phone', code='invalid_phone')

    return '+965' + phone


class PatientForm(forms.ModelForm):
    """Form for creating and updating patient information"""

    class Meta:
        model = Patient
        fields = [
            'civil_id', 'first_name', 'last_name', 'phone', 'email',
            'date_of_birth', 'gender', 'address', 'emergency_contact',
            'emergency_phone', 'allergies', 'medical_history', 'notes',
        ]
        error_messages = {
            'civil_id': {'unique': 'validation.civil_id_exists'},
        }

    def clean_civil_id(self):
        civil_id = (self.cleaned_data.get('civil_id') or '').strip().replace(' ', '')
        if not re.fullmatch(r'\d{12}', civil_id):
            raise ValidationError('validation.invalid_civil_id', code='invalid_civil_id')
        return civil_id

    def clean_first_name(self):
        return clean_name(self.cleaned_data.get('first_name'), 'first_name')

    def clean_last_name(self):
        return clean_name(self.cleaned_data.get('last_name'), 'last_name')

    def clean_phone(self):
        phone = clean_kuwait_phone_number(self.cleaned_data.get('phone'))
        if not phone:
            raise ValidationError('validation.required_field', code='required', params={'field': 'phone'})
        return phone

    def clean_emergency_phone(self):
        return clean_kuwait_phone_number(self.cleaned_data.get('emergency_phone'))

    def clean_email(self):
        return (self.cleaned_data.get('email') or '').strip().lower()

    def clean_allergies(self):
        allergies = self.cleaned_data.get('allergies')
        if allergies in (None, ''):
            return []
        if isinstance(allergies, str):
            allergies = [a.strip() for a in allergies.split(',') if a.strip()]
        if not isinstance(allergies, list):
            raise ValidationError('validation.invalid_input', code='invalid')
        return allergies


class PatientSearchForm(forms.Form):
    """Form for searching patients"""
    search = forms.CharField(max_length=100, required=False)
    include_inactive = forms.BooleanField(required=False)


class PatientFileForm(forms.Form):
    """Metadata accompanying an upload"""
    category = forms.ChoiceField(choices=PatientFile.CATEGORY_CHOICES, required=False)
    description = forms.CharField(max_length=255, required=False)

    def clean_category(self):
        return self.cleaned_data.get('category') or 'document'
