# reports/tests.py
"""
Tests for the revenue report
"""
from datetime import timedelta
from decimal import Decimal

from django.core.cache import cache
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from billing.models import Invoice, InvoiceItem, Payment
from core.utils import get_kuwait_today
from patients.models import Patient
from services.models import Service
from users.models import Role, User
from .views import get_date_range, get_revenue_report


def make_user(username, role_name):
    return User.objects.create_user(username=username, password='secret123', role=Role.get_default(role_name))


class RevenueReportTest(TestCase):
    """Test revenue totals and access"""

    def setUp(self):
        cache.clear()
        self.patient = Patient.objects.create(civil_id='290010112345', first_name='Ahmad', last_name='Ali',
                                              phone='+96599991234')
        self.service = Service.objects.create(code='FILLING', name_ar='حشوة', name_en='Filling',
                                              price=Decimal('25.000'))

        self.invoice = Invoice.objects.create(patient=self.patient)
        InvoiceItem.objects.create(invoice=self.invoice, service=self.service, quantity=2,
                                   unit_price=self.service.price)
        self.invoice.recalculate_totals()
        self.invoice.add_payment(Decimal('20.000'), Payment.CASH)
        self.invoice.add_payment(Decimal('10.000'), Payment.KNET)

        # Voided invoices never count as revenue
        voided = Invoice.objects.create(patient=self.patient)
        InvoiceItem.objects.create(invoice=voided, description='Other', unit_price=Decimal('9.000'))
        voided.recalculate_totals()
        Payment.objects.create(invoice=voided, amount=Decimal('9.000'), payment_method=Payment.CASH)
        Invoice.objects.filter(pk=voided.pk).update(is_active=False)

        self.url = reverse('reports:revenue_report')

    def test_report_totals(self):
        """Test totals by method and service over the default period"""
        today = get_kuwait_today()
        report = get_revenue_report(today - timedelta(days=30), today, 'en')
        self.assertEqual(report['total_revenue'], '30.000')
        self.assertEqual(report['total_revenue_display'], 'KWD 30.000')
        self.assertEqual(report['payments_count'], 2)
        self.assertEqual({row['payment_method']: row['total'] for row in report['by_method']},
                         {'CASH': '20.000', 'KNET': '10.000'})
        self.assertEqual(report['by_service'][0]['code'], 'FILLING')
        self.assertEqual(report['by_service'][0]['quantity'], 2)
        self.assertEqual(report['outstanding_balance'], '20.000')

    def test_payments_outside_period_excluded(self):
        """Test the period bounds are respected"""
        Payment.objects.filter(payment_method=Payment.KNET).update(payment_date=timezone.now() - timedelta(days=60))
        today = get_kuwait_today()
        report = get_revenue_report(today - timedelta(days=7), today)
        self.assertEqual(report['total_revenue'], '20.000')

    def test_date_range_defaults_and_swaps(self):
        """Test the default window and reversed ranges"""
        today = get_kuwait_today()
        self.assertEqual(get_date_range(None, None), (today - timedelta(days=30), today))
        start, end = get_date_range('2025-03-31', '2025-03-01')
        self.assertEqual((start.isoformat(), end.isoformat()), ('2025-03-01', '2025-03-31'))

    def test_accountant_access(self):
        """Test accountants read the report"""
        self.client.force_login(make_user('accountant', Role.ACCOUNTANT))
        response = self.client.get(self.url + '?lang=ar')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['total_revenue_display'], '30.000 د.ك')

    def test_invalid_date(self):
        """Test malformed dates are a 400"""
        self.client.force_login(make_user('admin', Role.ADMIN))
        response = self.client.get(self.url + '?start=yesterday')
        self.assertEqual(response.status_code, 400)

    def test_other_roles_forbidden(self):
        """Test reception and doctors cannot see revenue"""
        for username, role in (('reception', Role.RECEPTION), ('doctor', Role.DOCTOR)):
            self.client.force_login(make_user(username, role))
            response = self.client.get(self.url)
            self.assertEqual(response.status_code, 403)
            self.assertEqual(response.json()['code'], 'ACCESS_DENIED')
