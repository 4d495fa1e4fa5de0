# reports/views.py
from datetime import timedelta
from decimal import Decimal

from django.db.models import Count, DecimalField, Sum, Value
from django.db.models.functions import Coalesce, TruncDate

from billing.models import Invoice, InvoiceItem, Payment
from core.api import ApiError, api_view, get_language, json_success
from core.i18n import format_currency, translate
from core.utils import get_kuwait_today, kuwait_day_bounds, parse_date
from users.models import Role

ZERO = Value(Decimal('0.000'), output_field=DecimalField(max_digits=12, decimal_places=3))


def get_date_range(start_param, end_param):
    """
    Resolve the report period from ?start=&end= (YYYY-MM-DD).

    Defaults to the last 30 days; a reversed range is swapped.

    Returns:
        Tuple of (start_date, end_date)
    """
    today = get_kuwait_today()
    start_date = parse_date(start_param) if start_param else today - timedelta(days=30)
    end_date = parse_date(end_param) if end_param else today

    if start_date is None or end_date is None:
        raise ApiError(400, 'validation.invalid_date', 'VALIDATION_ERROR')

    if start_date > end_date:
        start_date, end_date = end_date, start_date

    return start_date, end_date


def get_revenue_report(start_date, end_date, language='ar'):
    """
    Cash received in [start_date, end_date] (Kuwait dates), broken down by
    payment method, day and service, plus the current outstanding balance.
    """
    range_start, _ = kuwait_day_bounds(start_date)
    _, range_end = kuwait_day_bounds(end_date)

    payments = Payment.objects.filter(
        payment_date__gte=range_start,
        payment_date__lt=range_end,
        invoice__is_active=True,
    )

    total_revenue = payments.aggregate(total=Coalesce(Sum('amount'), ZERO))['total']

    by_method = [
        {
            'payment_method': row['payment_method'],
            'label': translate(f"payment_method.{row['payment_method']}", language),
            'total': str(row['total']),
            'count': row['count'],
        }
        for row in payments.values('payment_method').annotate(
            total=Sum('amount'), count=Count('id')
        ).order_by('payment_method')
    ]

    by_day = [
        {'date': row['day'].isoformat(), 'total': str(row['total']), 'count': row['count']}
        for row in payments.annotate(day=TruncDate('payment_date')).values('day').annotate(
            total=Sum('amount'), count=Count('id')
        ).order_by('day')
    ]

    # Services billed on invoices issued in the period
    service_rows = InvoiceItem.objects.filter(
        invoice__is_active=True,
        invoice__issue_date__gte=start_date,
        invoice__issue_date__lte=end_date,
        service__isnull=False,
    ).values('service_id', 'service__code', 'service__name_ar', 'service__name_en').annotate(
        total=Sum('total_price'), quantity=Sum('quantity')
    ).order_by('-total')

    by_service = [
        {
            'service_id': row['service_id'],
            'code': row['service__code'],
            'name': row['service__name_ar'] if language == 'ar' else row['service__name_en'],
            'quantity': row['quantity'],
            'total': str(row['total']),
        }
        for row in service_rows
    ]

    outstanding = Invoice.total_outstanding()

    return {
        'start_date': start_date.isoformat(),
        'end_date': end_date.isoformat(),
        'total_revenue': str(total_revenue),
        'total_revenue_display': format_currency(total_revenue, language),
        'payments_count': payments.count(),
        'by_method': by_method,
        'by_day': by_day,
        'by_service': by_service,
        'outstanding_balance': str(outstanding),
        'outstanding_balance_display': format_currency(outstanding, language),
    }


@api_view(['GET'], resource='reports', roles=[Role.ADMIN, Role.ACCOUNTANT])
def revenue_report(request):
    start_date, end_date = get_date_range(request.GET.get('start'), request.GET.get('end'))
    return json_success(get_revenue_report(start_date, end_date, get_language(request)))
