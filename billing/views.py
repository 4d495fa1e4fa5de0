# billing/views.py
import logging
from datetime import timedelta

from django.core.exceptions import ValidationError
from django.db import transaction
from django.http import JsonResponse

from core.api import (
    ApiError, NotFound, api_view, form_validation_error, get_language,
    json_success, paginate, parse_json_body,
)
from core.i18n import format_currency, format_date, format_datetime, translate
from core.models import SystemSetting
from core.pdf import render_pdf
from .forms import InvoiceForm, InvoiceItemForm, PaymentForm
from .models import Invoice, InvoiceItem, Payment

logger = logging.getLogger(__name__)


def serialize_invoice_item(item, language='ar'):
    return {
        'id': item.id,
        'service_id': item.service_id,
        'description': item.get_description(language),
        'quantity': item.quantity,
        'unit_price': str(item.unit_price),
        'total_price': str(item.total_price),
    }


def serialize_payment(payment, language='ar'):
    return {
        'id': payment.id,
        'receipt_number': payment.receipt_number,
        'invoice_id': payment.invoice_id,
        'invoice_number': payment.invoice.invoice_number,
        'amount': str(payment.amount),
        'amount_display': format_currency(payment.amount, language),
        'payment_method': payment.payment_method,
        'payment_method_display': translate(f'payment_method.{payment.payment_method}', language),
        'transaction_id': payment.transaction_id,
        'payment_date': payment.payment_date.isoformat(),
        'payment_date_display': format_datetime(payment.payment_date, language),
        'notes': payment.notes,
        'received_by': payment.received_by.display_name if payment.received_by else None,
    }


def serialize_invoice(invoice, language='ar'):
    return {
        'id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'patient': {
            'id': invoice.patient.id,
            'full_name': invoice.patient.full_name,
            'civil_id': invoice.patient.civil_id,
        },
        'visit_id': invoice.visit_id,
        'issue_date': invoice.issue_date.isoformat(),
        'issue_date_display': format_date(invoice.issue_date, language),
        'due_date': invoice.due_date.isoformat() if invoice.due_date else None,
        'subtotal': str(invoice.subtotal),
        'discount_amount': str(invoice.discount_amount),
        'tax_amount': str(invoice.tax_amount),
        'total_amount': str(invoice.total_amount),
        'paid_amount': str(invoice.paid_amount),
        'outstanding_balance': str(invoice.outstanding_balance),
        'total_display': format_currency(invoice.total_amount, language),
        'balance_display': format_currency(invoice.outstanding_balance, language),
        'payment_status': invoice.payment_status,
        'payment_status_display': translate(f'payment_status.{invoice.payment_status}', language),
        'is_overdue': invoice.is_overdue,
        'is_active': invoice.is_active,
        'notes': invoice.notes,
        'items': [serialize_invoice_item(item, language) for item in invoice.items.all()],
        'payments': [serialize_payment(p, language) for p in invoice.payments.select_related('received_by')],
    }


def get_invoice_or_404(pk, lock=False):
    queryset = Invoice.active.select_related('patient')
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=pk)
    except Invoice.DoesNotExist:
        raise NotFound('billing.invoice_not_found')


def clean_items(raw_items):
    """Validate the item list of an invoice body"""
    if not isinstance(raw_items, list) or not raw_items:
        raise ApiError(400, 'billing.items_required', 'VALIDATION_ERROR')

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ApiError(400, 'validation.invalid_input', 'VALIDATION_ERROR')
        form = InvoiceItemForm(raw)
        if not form.is_valid():
            raise form_validation_error(form)
        items.append(form.cleaned_data)
    return items


def replace_items(invoice, items):
    invoice.items.all().delete()
    for item in items:
        InvoiceItem.objects.create(
            invoice=invoice,
            service=item.get('service'),
            description=item.get('description') or '',
            quantity=item['quantity'],
            unit_price=item['unit_price'],
        )


def apply_totals(invoice, tax_amount=None, tax_rate=None):
    """Fix the tax, then recompute and validate subtotal, total and status"""
    invoice.subtotal = invoice.calculate_subtotal()
    if tax_amount is not None:
        invoice.tax_amount = tax_amount
    elif tax_rate is not None:
        invoice.tax_amount = Invoice.calculate_tax(max(invoice.subtotal - invoice.discount_amount, 0), tax_rate)
    invoice.recalculate_totals(save=False)
    invoice.save()


@api_view(['GET', 'POST'], resource='billing')
def invoice_list(request):
    if request.method == 'POST':
        return invoice_create(request)

    queryset = Invoice.active.select_related('patient').prefetch_related('items')

    patient = request.GET.get('patient')
    if patient:
        if not patient.isdigit():
            raise ApiError(400, 'validation.invalid_input', 'VALIDATION_ERROR')
        queryset = queryset.filter(patient_id=int(patient))

    if request.GET.get('unpaid') in ('1', 'true'):
        queryset = queryset.filter(payment_status__in=Invoice.UNPAID_STATUSES)

    status = request.GET.get('status')
    if status:
        queryset = queryset.filter(payment_status=status.upper())

    return JsonResponse(paginate(request, queryset, serialize_invoice), json_dumps_params={'ensure_ascii': False})


def invoice_create(request):
    data = parse_json_body(request)
    form = InvoiceForm(data)
    if not form.is_valid():
        raise form_validation_error(form)
    items = clean_items(data.get('items'))
    header = form.cleaned_data

    tax_rate = header.get('tax_rate')
    if header.get('tax_amount') is None and tax_rate is None:
        tax_rate = SystemSetting.get_decimal_setting('tax_rate')

    with transaction.atomic():
        invoice = Invoice(
            patient=header['patient'],
            visit=header.get('visit'),
            discount_amount=header['discount_amount'],
            notes=header.get('notes', ''),
            created_by=request.user,
        )
        if header.get('issue_date'):
            invoice.issue_date = header['issue_date']
        invoice.due_date = header.get('due_date') or (
            invoice.issue_date + timedelta(days=SystemSetting.get_int_setting('invoice_due_days'))
        )
        invoice.save()
        replace_items(invoice, items)
        apply_totals(invoice, header.get('tax_amount'), tax_rate)

    logger.info(f'Invoice {invoice.invoice_number} created by {request.user.username}')
    return json_success(serialize_invoice(invoice, get_language(request)), 'billing.invoice_created_successfully',
                        status=201, request=request)


@api_view(['GET', 'PUT', 'DELETE'], resource='billing')
def invoice_detail(request, pk):
    language = get_language(request)

    if request.method == 'GET':
        return json_success(serialize_invoice(get_invoice_or_404(pk), language))

    if request.method == 'DELETE':
        invoice = get_invoice_or_404(pk)
        invoice.void()
        logger.info(f'Invoice {invoice.invoice_number} voided by {request.user.username}')
        return json_success(message_key='billing.invoice_voided', request=request)

    data = parse_json_body(request)
    with transaction.atomic():
        invoice = get_invoice_or_404(pk, lock=True)
        current = {
            'patient': invoice.patient_id,
            'visit': invoice.visit_id,
            'issue_date': invoice.issue_date,
            'due_date': invoice.due_date,
            'discount_amount': invoice.discount_amount,
            'notes': invoice.notes,
        }
        form = InvoiceForm({**current, **data})
        if not form.is_valid():
            raise form_validation_error(form)
        header = form.cleaned_data
        if header['patient'].pk != invoice.patient_id:
            raise ValidationError({'patient': ValidationError('billing.patient_locked', code='patient_locked')})

        if 'items' in data:
            if invoice.has_payments:
                raise ApiError(400, 'billing.items_locked', 'ITEMS_LOCKED')
            replace_items(invoice, clean_items(data['items']))

        invoice.visit = header.get('visit')
        invoice.issue_date = header.get('issue_date') or invoice.issue_date
        invoice.due_date = header.get('due_date')
        invoice.discount_amount = header['discount_amount']
        invoice.notes = header.get('notes', '')
        apply_totals(invoice, header.get('tax_amount'), header.get('tax_rate'))

    return json_success(serialize_invoice(invoice, language), 'billing.invoice_updated_successfully',
                        request=request)


@api_view(['GET'], resource='billing')
def invoice_pending(request):
    """Unpaid and partially paid invoices, oldest first"""
    queryset = Invoice.outstanding_queryset().select_related('patient').order_by('issue_date', 'invoice_number')
    payload = paginate(request, queryset, serialize_invoice)
    payload['total_outstanding'] = str(Invoice.total_outstanding())
    return JsonResponse(payload, json_dumps_params={'ensure_ascii': False})


@api_view(['GET'], resource='billing', action='read')
def invoice_pdf(request, pk):
    invoice = get_invoice_or_404(pk)
    language = get_language(request)

    items = [
        {
            'label': item.get_description(language),
            'quantity': item.quantity,
            'unit_price': item.unit_price,
            'total_price': item.total_price,
        }
        for item in invoice.items.select_related('service')
    ]
    context = {
        'invoice': invoice,
        'patient': invoice.patient,
        'items': items,
        'status_label': translate(f'payment_status.{invoice.payment_status}', language),
    }
    return render_pdf('pdf/invoice.html', context, f'{invoice.invoice_number}.pdf', language)


@api_view(['GET', 'POST'], resource='billing')
def payment_list(request):
    language = get_language(request)

    if request.method == 'GET':
        queryset = Payment.objects.select_related('invoice', 'received_by').filter(invoice__is_active=True)
        for param, lookup in (('invoice', 'invoice_id'), ('patient', 'invoice__patient_id')):
            value = request.GET.get(param)
            if value:
                if not value.isdigit():
                    raise ApiError(400, 'validation.invalid_input', 'VALIDATION_ERROR')
                queryset = queryset.filter(**{lookup: int(value)})
        return JsonResponse(paginate(request, queryset, serialize_payment), json_dumps_params={'ensure_ascii': False})

    form = PaymentForm(parse_json_body(request))
    if not form.is_valid():
        raise form_validation_error(form)

    invoice = get_invoice_or_404(form.cleaned_data['invoice_id'])
    payment = invoice.add_payment(
        form.cleaned_data['amount'],
        form.cleaned_data['payment_method'],
        received_by=request.user,
        transaction_id=form.cleaned_data.get('transaction_id', ''),
        notes=form.cleaned_data.get('notes', ''),
        payment_date=form.cleaned_data.get('payment_date'),
    )
    logger.info(
        f'Payment {payment.receipt_number} of {payment.amount} KWD on {invoice.invoice_number} '
        f'by {request.user.username}'
    )

    data = serialize_payment(payment, language)
    data['invoice'] = {
        'payment_status': invoice.payment_status,
        'paid_amount': str(invoice.paid_amount),
        'outstanding_balance': str(invoice.outstanding_balance),
    }
    return json_success(data, 'billing.payment_recorded', status=201, request=request)


@api_view(['GET'], resource='billing', action='read')
def payment_receipt_pdf(request, pk):
    try:
        payment = Payment.objects.select_related('invoice__patient', 'received_by').get(pk=pk)
    except Payment.DoesNotExist:
        raise NotFound('billing.payment_not_found')
    language = get_language(request)

    context = {
        'payment': payment,
        'invoice': payment.invoice,
        'patient': payment.invoice.patient,
        'balance_after': payment.balance_after(),
        'method_label': translate(f'payment_method.{payment.payment_method}', language),
    }
    return render_pdf('pdf/receipt.html', context, f'{payment.receipt_number}.pdf', language)
