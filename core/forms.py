from datetime import datetime
from decimal import Decimal

from django import forms
from core.models import SystemSetting


def _invalid():
    return forms.ValidationError('validation.invalid_input', code='invalid')


class SystemSettingsForm(forms.Form):
    """
    Single form for all system settings.

    Every field is optional so clients can update a subset; only keys
    present in the submitted data are saved.
    """

    # Clinic Identity
    clinic_name_ar = forms.CharField(max_length=200, required=False)
    clinic_name_en = forms.CharField(max_length=200, required=False)
    clinic_address_ar = forms.CharField(required=False)
    clinic_address_en = forms.CharField(required=False)

    # Contact Information
    clinic_phone = forms.CharField(max_length=50, required=False)
    clinic_email = forms.EmailField(required=False)

    # Scheduling
    working_days = forms.CharField(max_length=20, required=False,
                                   help_text='Comma separated weekdays, Monday=0 ... Sunday=6')
    working_hours_start = forms.CharField(max_length=5, required=False)
    working_hours_end = forms.CharField(max_length=5, required=False)
    slot_duration = forms.IntegerField(min_value=5, max_value=240, required=False)

    # Billing
    tax_rate = forms.DecimalField(min_value=Decimal('0'), max_value=Decimal('100'), decimal_places=2,
                                  required=False)
    invoice_due_days = forms.IntegerField(min_value=0, max_value=365, required=False)

    def clean_working_days(self):
        value = self.cleaned_data.get('working_days')
        if not value:
            return value
        days = [d.strip() for d in value.split(',') if d.strip()]
        if not days or any(not d.isdigit() or int(d) > 6 for d in days):
            raise _invalid()
        return ','.join(sorted(set(days), key=int))

    def _clean_time(self, name):
        value = self.cleaned_data.get(name)
        if not value:
            return value
        try:
            parsed = datetime.strptime(value, '%H:%M')
        except ValueError:
            raise _invalid()
        return parsed.strftime('%H:%M')

    def clean_working_hours_start(self):
        return self._clean_time('working_hours_start')

    def clean_working_hours_end(self):
        return self._clean_time('working_hours_end')

    def clean(self):
        cleaned_data = super().clean()
        start = cleaned_data.get('working_hours_start') or SystemSetting.get_setting('working_hours_start')
        end = cleaned_data.get('working_hours_end') or SystemSetting.get_setting('working_hours_end')
        if start and end and start >= end:
            self.add_error('working_hours_end', _invalid())
        return cleaned_data

    def save(self):
        """Save the submitted settings and return {key: {'old', 'new'}} for what changed"""
        changes = {}

        for field_name, value in self.cleaned_data.items():
            if field_name not in self.data or value is None:
                continue

            new_value = str(value)
            old_value = SystemSetting.get_setting(field_name, '')

            if old_value != new_value:
                SystemSetting.set_setting(field_name, new_value)
                changes[field_name] = {'old': old_value, 'new': new_value}

        return changes
