# billing/models.py
from datetime import timedelta
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models, transaction
from django.db.models import F, IntegerField, Max, Sum
from django.db.models.functions import Cast, Substr
from django.utils import timezone

from core.i18n import format_date, translate
from core.utils import get_kuwait_now, get_kuwait_today

ZERO = Decimal('0.000')
KWD_PLACES = Decimal('0.001')


def next_sequence(queryset, field, prefix):
    """Highest numeric suffix after prefix plus one, compared as integers"""
    last_seq = queryset.filter(**{f'{field}__startswith': prefix}).aggregate(
        last_seq=Max(Cast(Substr(field, len(prefix) + 1), IntegerField()))
    )['last_seq']
    return (last_seq or 0) + 1


class ActiveInvoiceManager(models.Manager):
    def get_queryset(self):
        return super().get_queryset().filter(is_active=True)


class Invoice(models.Model):
    """Patient bill made of items; paid through one or more payments"""
    PENDING = 'PENDING'
    PARTIAL = 'PARTIAL'
    PAID = 'PAID'
    REFUNDED = 'REFUNDED'

    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (PARTIAL, 'Partially Paid'),
        (PAID, 'Paid'),
        (REFUNDED, 'Refunded'),
    ]

    UNPAID_STATUSES = [PENDING, PARTIAL]

    invoice_number = models.CharField(max_length=20, unique=True, blank=True)
    patient = models.ForeignKey('patients.Patient', on_delete=models.PROTECT, related_name='invoices')
    visit = models.ForeignKey('appointments.Visit', on_delete=models.SET_NULL, null=True, blank=True,
                              related_name='invoices')
    issue_date = models.DateField(default=get_kuwait_today)
    due_date = models.DateField(null=True, blank=True)

    subtotal = models.DecimalField(max_digits=10, decimal_places=3, default=ZERO)
    discount_amount = models.DecimalField(max_digits=10, decimal_places=3, default=ZERO)
    tax_amount = models.DecimalField(max_digits=10, decimal_places=3, default=ZERO)
    total_amount = models.DecimalField(max_digits=10, decimal_places=3, default=ZERO)
    paid_amount = models.DecimalField(max_digits=10, decimal_places=3, default=ZERO)
    payment_status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)

    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey('users.User', on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='created_invoices')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = models.Manager()
    active = ActiveInvoiceManager()

    class Meta:
        ordering = ['-issue_date', '-invoice_number']
        indexes = [
            models.Index(fields=['payment_status'], name='invoice_status_idx'),
            models.Index(fields=['patient'], name='invoice_patient_idx'),
            models.Index(fields=['issue_date'], name='invoice_issue_date_idx'),
        ]

    def __str__(self):
        return f"{self.invoice_number} - {self.patient.full_name} - {self.paid_amount}/{self.total_amount} KWD"

    @property
    def outstanding_balance(self):
        """Calculate remaining balance"""
        return max(ZERO, self.total_amount - self.paid_amount)

    @property
    def is_fully_paid(self):
        return self.total_amount > 0 and self.paid_amount >= self.total_amount

    @property
    def is_overdue(self):
        if not self.due_date or self.payment_status not in self.UNPAID_STATUSES:
            return False
        return self.due_date < get_kuwait_today()

    @property
    def has_payments(self):
        return self.pk is not None and self.payments.exists()

    @classmethod
    def next_invoice_number(cls, year=None):
        """INV-YYYY-NNNN, sequential within the year"""
        year = year or get_kuwait_today().year
        prefix = f'INV-{year}-'
        next_seq = next_sequence(cls.objects.all(), 'invoice_number', prefix)
        return f'{prefix}{next_seq:04d}'

    @staticmethod
    def calculate_tax(taxable_amount, tax_rate):
        """Tax at tax_rate percent of the taxable amount, rounded to fils"""
        return (Decimal(taxable_amount) * Decimal(tax_rate) / Decimal('100')).quantize(KWD_PLACES)

    def calculate_subtotal(self):
        if not self.pk:
            return ZERO
        return self.items.aggregate(total=Sum('total_price'))['total'] or ZERO

    def validate_amounts(self):
        """Discount within [0, subtotal], non-negative tax and paid <= total"""
        errors = {}
        if self.discount_amount < 0 or self.discount_amount > self.subtotal:
            errors['discount_amount'] = ValidationError('billing.discount_invalid', code='discount_invalid')
        if self.tax_amount < 0:
            errors['tax_amount'] = ValidationError('billing.tax_invalid', code='tax_invalid')
        if errors:
            raise ValidationError(errors)

        if self.paid_amount > self.total_amount:
            raise ValidationError({
                'paid_amount': ValidationError('billing.paid_exceeds_total', code='paid_exceeds_total')
            })

    def recalculate_totals(self, save=True):
        """Recompute subtotal and total from the items: total = subtotal - discount + tax"""
        self.subtotal = self.calculate_subtotal()
        self.total_amount = self.subtotal - self.discount_amount + self.tax_amount
        self.validate_amounts()
        self.update_status(save=False)
        if save:
            self.save(update_fields=['subtotal', 'total_amount', 'payment_status', 'updated_at'])
        return self.total_amount

    def update_status(self, save=True):
        """Update payment status based on amount paid"""
        if self.payment_status == self.REFUNDED:
            return self.payment_status

        if self.is_fully_paid:
            self.payment_status = self.PAID
        elif self.paid_amount > 0:
            self.payment_status = self.PARTIAL
        else:
            self.payment_status = self.PENDING

        if save:
            self.save(update_fields=['payment_status', 'updated_at'])
        return self.payment_status

    def add_payment(self, amount, payment_method, received_by=None, transaction_id='', notes='',
                    payment_date=None):
        """
        Record a payment against this invoice.

        The invoice row is locked for the duration so concurrent payments
        cannot push the paid amount over the total.

        Returns:
            Payment: the created payment

        Raises:
            ValidationError: amount <= 0 or amount above the outstanding balance
        """
        amount = Decimal(str(amount)).quantize(KWD_PLACES)
        if amount <= 0:
            raise ValidationError({'amount': ValidationError('billing.amount_positive', code='amount_positive')})

        with transaction.atomic():
            invoice = Invoice.objects.select_for_update().get(pk=self.pk)
            if amount > invoice.outstanding_balance:
                raise ValidationError({
                    'amount': ValidationError('billing.amount_exceeds_balance', code='amount_exceeds_balance')
                })

            payment = Payment.objects.create(
                invoice=invoice,
                amount=amount,
                payment_method=payment_method,
                transaction_id=transaction_id or '',
                notes=notes or '',
                payment_date=payment_date or timezone.now(),
                received_by=received_by,
            )

            invoice.paid_amount = invoice.paid_amount + amount
            invoice.update_status(save=False)
            invoice.save(update_fields=['paid_amount', 'payment_status', 'updated_at'])

        self.paid_amount = invoice.paid_amount
        self.payment_status = invoice.payment_status
        return payment

    def void(self):
        """Soft delete; refused once money has been received"""
        if self.has_payments:
            raise ValidationError('billing.has_payments', code='has_payments')
        self.is_active = False
        self.save(update_fields=['is_active', 'updated_at'])

    def clean(self):
        if self.pk:
            self.subtotal = self.calculate_subtotal()
        self.validate_amounts()

    def save(self, *args, **kwargs):
        if not self.invoice_number:
            self.invoice_number = self.next_invoice_number(self.issue_date.year if self.issue_date else None)
        super().save(*args, **kwargs)

    @classmethod
    def outstanding_queryset(cls):
        return cls.active.filter(payment_status__in=cls.UNPAID_STATUSES)

    @classmethod
    def total_outstanding(cls, queryset=None):
        """Sum of (total - paid) over unpaid active invoices"""
        queryset = cls.outstanding_queryset() if queryset is None else queryset
        balance = queryset.aggregate(balance=Sum(F('total_amount') - F('paid_amount')))['balance'] or ZERO
        return Decimal(balance).quantize(KWD_PLACES)

    @classmethod
    def outstanding_for_patient(cls, patient):
        return cls.total_outstanding(cls.outstanding_queryset().filter(patient=patient))

    @classmethod
    @transaction.atomic
    def create_from_visit(cls, visit, user=None, language='ar', tax_rate=None):
        """
        Bill the procedures recorded on a visit: one item per procedure,
        priced from the service.
        """
        from core.models import SystemSetting

        rows = visit.get_procedure_rows()
        if not rows:
            raise ValidationError({'items': ValidationError('billing.items_required', code='items_required')})

        issue_date = get_kuwait_today()
        invoice = cls.objects.create(
            patient=visit.patient,
            visit=visit,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=SystemSetting.get_int_setting('invoice_due_days')),
            created_by=user,
            notes=translate('billing.visit_invoice_note', language, date=format_date(visit.visit_date, language)),
        )
        for row in rows:
            service = row['service']
            description = service.name_en
            if row.get('tooth'):
                description = f"{description} (#{row['tooth']})"
            if row.get('notes'):
                description = f"{description} - {row['notes']}"
            InvoiceItem.objects.create(
                invoice=invoice,
                service=service,
                description=description,
                quantity=1,
                unit_price=service.price,
            )

        if tax_rate is None:
            tax_rate = SystemSetting.get_decimal_setting('tax_rate')
        invoice.subtotal = invoice.calculate_subtotal()
        invoice.tax_amount = cls.calculate_tax(invoice.subtotal, tax_rate)
        invoice.recalculate_totals(save=False)
        invoice.save()
        return invoice


class InvoiceItem(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='items')
    service = models.ForeignKey('services.Service', on_delete=models.PROTECT, null=True, blank=True,
                                related_name='invoice_items')
    description = models.CharField(max_length=255, blank=True)
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=10, decimal_places=3,
                                     validators=[MinValueValidator(ZERO)])
    total_price = models.DecimalField(max_digits=10, decimal_places=3, default=ZERO)

    class Meta:
        ordering = ['id']
        indexes = [
            models.Index(fields=['invoice'], name='invoice_item_invoice_idx'),
            models.Index(fields=['service'], name='invoice_item_service_idx'),
        ]

    def __str__(self):
        return f"{self.description} x{self.quantity} @ {self.unit_price}"

    def get_description(self, language='ar'):
        if self.service and (not self.description or self.description == self.service.name_en):
            return self.service.get_name(language)
        return self.description

    def save(self, *args, **kwargs):
        if not self.description and self.service:
            self.description = self.service.name_en
        self.total_price = (Decimal(self.quantity) * Decimal(self.unit_price)).quantize(KWD_PLACES)
        super().save(*args, **kwargs)


class Payment(models.Model):
    """Individual payment against an invoice, with its receipt number"""
    CASH = 'CASH'
    CARD = 'CARD'
    KNET = 'KNET'
    BANK_TRANSFER = 'BANK_TRANSFER'
    INSURANCE = 'INSURANCE'

    METHOD_CHOICES = [
        (CASH, 'Cash'),
        (CARD, 'Card'),
        (KNET, 'KNET'),
        (BANK_TRANSFER, 'Bank Transfer'),
        (INSURANCE, 'Insurance'),
    ]

    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name='payments')
    amount = models.DecimalField(max_digits=10, decimal_places=3,
                                 validators=[MinValueValidator(KWD_PLACES)])
    payment_method = models.CharField(max_length=20, choices=METHOD_CHOICES, default=CASH)
    transaction_id = models.CharField(max_length=100, blank=True)
    payment_date = models.DateTimeField(default=timezone.now)
    notes = models.TextField(blank=True)

    # Receipt tracking
    receipt_number = models.CharField(max_length=50, blank=True, unique=True)

    received_by = models.ForeignKey(
        'users.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='received_payments',
        help_text="Staff member who received this payment"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-payment_date']
        indexes = [
            models.Index(fields=['invoice'], name='payment_invoice_idx'),
            models.Index(fields=['payment_date'], name='payment_date_idx'),
            models.Index(fields=['receipt_number'], name='payment_receipt_idx'),
        ]

    def __str__(self):
        return f"{self.receipt_number} - {self.amount} KWD - {self.invoice.invoice_number}"

    def balance_after(self):
        """Invoice balance remaining right after this payment"""
        paid_until_now = self.invoice.payments.filter(pk__lte=self.pk).aggregate(total=Sum('amount'))['total'] or ZERO
        return max(ZERO, self.invoice.total_amount - paid_until_now)

    def save(self, *args, **kwargs):
        if not self.receipt_number:
            prefix = f'RCP-{get_kuwait_now().strftime("%Y%m%d")}-'
            next_seq = next_sequence(Payment.objects.all(), 'receipt_number', prefix)
            self.receipt_number = f'{prefix}{next_seq:04d}'

        super().save(*args, **kwargs)
