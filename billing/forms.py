# billing/forms.py
from decimal import Decimal

from django import forms

from appointments.models import Visit
from patients.models import Patient
from services.models import Service
from .models import KWD_PLACES, Payment


class InvoiceItemForm(forms.Form):
    """One invoice line; the price defaults from the service"""
    service = forms.ModelChoiceField(queryset=Service.objects.all(), required=False)
    description = forms.CharField(max_length=255, required=False)
    quantity = forms.IntegerField(min_value=1, required=False)
    unit_price = forms.DecimalField(max_digits=10, decimal_places=3, min_value=Decimal('0'), required=False)

    def clean(self):
        cleaned_data = super().clean()
        service = cleaned_data.get('service')

        if not cleaned_data.get('quantity'):
            cleaned_data['quantity'] = 1

        if cleaned_data.get('unit_price') is None:
            if not service:
                self.add_error('unit_price', forms.ValidationError(
                    'validation.required_field', code='required', params={'field': 'unit_price'}
                ))
            else:
                cleaned_data['unit_price'] = service.price

        if not service and not cleaned_data.get('description'):
            self.add_error('description', forms.ValidationError(
                'validation.required_field', code='required', params={'field': 'description'}
            ))

        return cleaned_data


class InvoiceForm(forms.Form):
    """Invoice header; items are validated separately with InvoiceItemForm"""
    patient = forms.ModelChoiceField(queryset=Patient.objects.none())
    visit = forms.ModelChoiceField(queryset=Visit.objects.all(), required=False)
    issue_date = forms.DateField(required=False)
    due_date = forms.DateField(required=False)
    discount_amount = forms.DecimalField(max_digits=10, decimal_places=3, required=False)
    tax_amount = forms.DecimalField(max_digits=10, decimal_places=3, required=False)
    tax_rate = forms.DecimalField(max_digits=5, decimal_places=2, min_value=Decimal('0'), required=False,
                                  help_text="Percent; used when tax_amount is not given")
    notes = forms.CharField(required=False)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['patient'].queryset = Patient.active.all()

    def clean_discount_amount(self):
        discount = self.cleaned_data.get('discount_amount')
        if discount is None:
            return Decimal('0.000')
        if discount < 0:
            raise forms.ValidationError('billing.discount_invalid', code='discount_invalid')
        return discount.quantize(KWD_PLACES)

    def clean_tax_amount(self):
        tax = self.cleaned_data.get('tax_amount')
        if tax is not None and tax < 0:
            raise forms.ValidationError('billing.tax_invalid', code='tax_invalid')
        return tax

    def clean(self):
        cleaned_data = super().clean()
        visit = cleaned_data.get('visit')
        patient = cleaned_data.get('patient')
        if visit and patient and visit.patient_id != patient.pk:
            self.add_error('visit', forms.ValidationError('validation.invalid_input', code='patient_mismatch'))
        return cleaned_data


class PaymentForm(forms.Form):
    invoice_id = forms.IntegerField()
    amount = forms.DecimalField(max_digits=10, decimal_places=3)
    payment_method = forms.ChoiceField(choices=Payment.METHOD_CHOICES, required=False)
    transaction_id = forms.CharField(max_length=100, required=False)
    payment_date = forms.DateTimeField(required=False)
    notes = forms.CharField(required=False)

    def clean_amount(self):
        amount = self.cleaned_data.get('amount')
        if amount is None or amount <= 0:
            raise forms.ValidationError('billing.amount_positive', code='amount_positive')
        return amount

    def clean_payment_method(self):
        return self.cleaned_data.get('payment_method') or Payment.CASH
