# services/forms.py
from decimal import Decimal

from django import forms

from .models import Service


class ServiceForm(forms.ModelForm):
    """Form for creating and updating services"""

    class Meta:
        model = Service
        fields = [
            'code', 'name_ar', 'name_en', 'description_ar', 'description_en',
            'price', 'duration_minutes', 'category', 'is_active',
        ]
        error_messages = {
            'code': {'unique': 'services.code_exists'},
        }

    def clean_code(self):
        return (self.cleaned_data.get('code') or '').strip().upper()

    def clean_price(self):
        price = self.cleaned_data.get('price')
        if price is None or price <= Decimal('0'):
            raise forms.ValidationError('services.price_positive', code='price_positive')
        return price

    def clean_duration_minutes(self):
        """Duration must be a positive number of minutes"""
        duration = self.cleaned_data.get('duration_minutes')

        if duration is None:
            return 30

        if duration <= 0:
            raise forms.ValidationError('services.duration_positive', code='duration_positive')

        return duration
