# billing/tests.py
"""
Tests for invoices, payments and billing documents
"""
import json
from decimal import Decimal

from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.test import TestCase
from django.urls import reverse

from core.models import SystemSetting
from core.utils import get_kuwait_now, get_kuwait_today
from patients.models import Patient
from services.models import Service
from users.models import Role, User
from .models import Invoice, InvoiceItem, Payment


def make_user(username, role_name):
    return User.objects.create_user(username=username, password='secret123', role=Role.get_default(role_name))


class BillingTestMixin:

    def setUp(self):
        cache.clear()
        self.admin = make_user('admin', Role.ADMIN)
        self.reception = make_user('reception', Role.RECEPTION)
        self.accountant = make_user('accountant', Role.ACCOUNTANT)
        self.doctor = make_user('doctor', Role.DOCTOR)
        self.patient = Patient.objects.create(civil_id='290010112345', first_name='Ahmad', last_name='Ali',
                                              phone='+96599991234')
        self.service = Service.objects.create(code='SCALING', name_ar='تنظيف الجير', name_en='Scaling',
                                              price=Decimal('15.000'))

    def make_invoice(self, amount='20.000', discount='0.000', tax='0.000'):
        invoice = Invoice.objects.create(patient=self.patient, discount_amount=Decimal(discount),
                                         tax_amount=Decimal(tax))
        InvoiceItem.objects.create(invoice=invoice, description='Treatment', quantity=1, unit_price=Decimal(amount))
        invoice.recalculate_totals()
        return invoice

    def post_json(self, url, data, **extra):
        return self.client.post(url, data=json.dumps(data), content_type='application/json', **extra)


class InvoiceModelTest(BillingTestMixin, TestCase):
    """Test invoice arithmetic and status"""

    def test_total_formula(self):
        """Test total = subtotal - discount + tax"""
        invoice = self.make_invoice('50.000', discount='5.000', tax='2.250')
        self.assertEqual(invoice.subtotal, Decimal('50.000'))
        self.assertEqual(invoice.total_amount, Decimal('47.250'))
        self.assertEqual(invoice.payment_status, Invoice.PENDING)

    def test_item_total(self):
        """Test line totals are quantity times unit price"""
        invoice = self.make_invoice()
        item = InvoiceItem.objects.create(invoice=invoice, service=self.service, quantity=3,
                                          unit_price=self.service.price)
        self.assertEqual(item.total_price, Decimal('45.000'))
        self.assertEqual(item.get_description('ar'), 'تنظيف الجير')
        self.assertEqual(invoice.recalculate_totals(), Decimal('65.000'))

    def test_tax_calculation(self):
        """Test tax is a percentage rounded to fils"""
        self.assertEqual(Invoice.calculate_tax(Decimal('10.005'), Decimal('5')), Decimal('0.500'))

    def test_discount_above_subtotal(self):
        """Test a discount larger than the subtotal is invalid"""
        with self.assertRaises(ValidationError):
            self.make_invoice('10.000', discount='11.000')

    def test_partial_then_paid(self):
        """Test the status follows the paid amount"""
        invoice = self.make_invoice('20.000')
        invoice.add_payment(Decimal('5'), Payment.CASH)
        self.assertEqual(invoice.payment_status, Invoice.PARTIAL)
        self.assertEqual(invoice.outstanding_balance, Decimal('15.000'))

        invoice.add_payment(Decimal('15.000'), Payment.KNET)
        invoice.refresh_from_db()
        self.assertEqual(invoice.payment_status, Invoice.PAID)
        self.assertEqual(invoice.paid_amount, invoice.total_amount)

    def test_overpayment_rejected(self):
        """Test payments cannot exceed the outstanding balance"""
        invoice = self.make_invoice('20.000')
        invoice.add_payment(Decimal('19.999'), Payment.CASH)
        with self.assertRaises(ValidationError):
            invoice.add_payment(Decimal('0.002'), Payment.CASH)
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal('19.999'))
        self.assertEqual(invoice.payments.count(), 1)

    def test_paid_cannot_exceed_total(self):
        """Test lowering the total below the paid amount fails validation"""
        invoice = self.make_invoice('20.000')
        invoice.add_payment(Decimal('20.000'), Payment.CASH)
        invoice.discount_amount = Decimal('5.000')
        with self.assertRaises(ValidationError):
            invoice.recalculate_totals()

    def test_numbers_are_sequential(self):
        """Test invoice and receipt numbering"""
        year = get_kuwait_today().year
        first = self.make_invoice()
        second = self.make_invoice()
        self.assertEqual(first.invoice_number, f'INV-{year}-0001')
        self.assertEqual(second.invoice_number, f'INV-{year}-0002')

        payment = first.add_payment(Decimal('1.000'), Payment.CASH)
        self.assertRegex(payment.receipt_number, r'^RCP-\d{8}-0001$')

    def test_numbers_continue_past_four_digits(self):
        """Test numbering compares sequence numbers, not text"""
        year = get_kuwait_today().year
        Invoice.objects.create(patient=self.patient, invoice_number=f'INV-{year}-9999')
        self.assertEqual(self.make_invoice().invoice_number, f'INV-{year}-10000')
        self.assertEqual(self.make_invoice().invoice_number, f'INV-{year}-10001')

        invoice = self.make_invoice('50.000')
        prefix = f'RCP-{get_kuwait_now().strftime("%Y%m%d")}-'
        Payment.objects.create(invoice=invoice, amount=Decimal('1.000'), receipt_number=f'{prefix}9999')
        self.assertEqual(invoice.add_payment(Decimal('1.000'), Payment.CASH).receipt_number, f'{prefix}10000')
        self.assertEqual(invoice.add_payment(Decimal('1.000'), Payment.KNET).receipt_number, f'{prefix}10001')

    def test_void_with_payments(self):
        """Test invoices that received money cannot be voided"""
        invoice = self.make_invoice()
        invoice.add_payment(Decimal('1.000'), Payment.CASH)
        with self.assertRaises(ValidationError):
            invoice.void()


class InvoiceApiTest(BillingTestMixin, TestCase):
    """Test the invoice endpoints"""

    def test_create_invoice(self):
        """Test items, discount and tax rate produce the totals"""
        self.client.force_login(self.reception)
        response = self.post_json(reverse('billing:invoice_list'), {
            'patient': self.patient.pk,
            'items': [
                {'service': self.service.pk},
                {'description': 'Fluoride', 'quantity': 2, 'unit_price': '5.250'},
            ],
            'discount_amount': '3',
            'tax_rate': '10',
        }, HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['subtotal'], '25.500')
        self.assertEqual(data['tax_amount'], '2.250')
        self.assertEqual(data['total_amount'], '24.750')
        self.assertEqual(data['total_display'], 'KWD 24.750')
        self.assertEqual(data['items'][0]['description'], 'Scaling')
        self.assertEqual(data['payment_status'], Invoice.PENDING)
        self.assertIsNotNone(data['due_date'])

    def test_default_tax_rate_from_settings(self):
        """Test the settings tax rate applies when none is given"""
        SystemSetting.set_setting('tax_rate', '5')
        self.client.force_login(self.reception)
        response = self.post_json(reverse('billing:invoice_list'), {
            'patient': self.patient.pk,
            'items': [{'description': 'Crown', 'unit_price': '100'}],
        })
        self.assertEqual(response.json()['data']['total_amount'], '105.000')

    def test_items_required(self):
        """Test an invoice needs at least one item"""
        self.client.force_login(self.reception)
        response = self.post_json(reverse('billing:invoice_list'), {'patient': self.patient.pk, 'items': []})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Invoice.objects.exists())

    def test_discount_above_subtotal_rejected(self):
        """Test nothing is stored when the discount is too large"""
        self.client.force_login(self.reception)
        response = self.post_json(reverse('billing:invoice_list'), {
            'patient': self.patient.pk,
            'items': [{'description': 'Crown', 'unit_price': '10'}],
            'discount_amount': '20',
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn('discount_amount', response.json()['details'])
        self.assertFalse(Invoice.objects.exists())

    def test_update_discount(self):
        """Test changing the discount recomputes the total"""
        invoice = self.make_invoice('30.000')
        self.client.force_login(self.accountant)
        response = self.client.put(reverse('billing:invoice_detail', args=[invoice.pk]),
                                   data=json.dumps({'discount_amount': '5'}), content_type='application/json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['total_amount'], '25.000')

    def test_items_locked_after_payment(self):
        """Test items cannot be replaced once paid into"""
        invoice = self.make_invoice('30.000')
        invoice.add_payment(Decimal('10'), Payment.CASH)
        self.client.force_login(self.accountant)
        response = self.client.put(reverse('billing:invoice_detail', args=[invoice.pk]),
                                   data=json.dumps({'items': [{'description': 'Other', 'unit_price': '1'}]}),
                                   content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'ITEMS_LOCKED')

    def test_patient_cannot_change(self):
        """Test an invoice stays with its patient"""
        invoice = self.make_invoice('30.000')
        other = Patient.objects.create(civil_id='291020212345', first_name='Mona', last_name='Saleh',
                                       phone='+96566661234')
        self.client.force_login(self.accountant)
        response = self.client.put(reverse('billing:invoice_detail', args=[invoice.pk]),
                                   data=json.dumps({'patient': other.pk, 'discount_amount': '5'}),
                                   content_type='application/json', HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload['code'], 'VALIDATION_ERROR')
        self.assertEqual(payload['details']['patient'], ['An invoice cannot be moved to another patient'])

        invoice.refresh_from_db()
        self.assertEqual(invoice.patient, self.patient)
        self.assertEqual(invoice.total_amount, Decimal('30.000'))

    def test_void(self):
        """Test voiding hides the invoice; paid invoices are refused"""
        invoice = self.make_invoice()
        paid = self.make_invoice()
        paid.add_payment(Decimal('1.000'), Payment.CASH)
        self.client.force_login(self.admin)

        response = self.client.delete(reverse('billing:invoice_detail', args=[invoice.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(reverse('billing:invoice_detail', args=[invoice.pk])).status_code, 404)

        response = self.client.delete(reverse('billing:invoice_detail', args=[paid.pk]), HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'An invoice with payments cannot be voided')

    def test_accountant_cannot_void(self):
        """Test only administrators void invoices"""
        invoice = self.make_invoice()
        self.client.force_login(self.accountant)
        self.assertEqual(self.client.delete(reverse('billing:invoice_detail', args=[invoice.pk])).status_code, 403)

    def test_doctor_read_only(self):
        """Test doctors can view but not create invoices"""
        self.make_invoice()
        self.client.force_login(self.doctor)
        self.assertEqual(self.client.get(reverse('billing:invoice_list')).status_code, 200)
        response = self.post_json(reverse('billing:invoice_list'), {
            'patient': self.patient.pk, 'items': [{'description': 'X', 'unit_price': '1'}],
        })
        self.assertEqual(response.status_code, 403)

    def test_pending_invoices(self):
        """Test pending lists unpaid and partially paid invoices"""
        unpaid = self.make_invoice('10.000')
        partial = self.make_invoice('20.000')
        partial.add_payment(Decimal('5.000'), Payment.CASH)
        paid = self.make_invoice('30.000')
        paid.add_payment(Decimal('30.000'), Payment.CASH)

        self.client.force_login(self.accountant)
        payload = self.client.get(reverse('billing:invoice_pending')).json()
        self.assertEqual({i['id'] for i in payload['results']}, {unpaid.pk, partial.pk})
        self.assertEqual(payload['total_outstanding'], '25.000')

    def test_invoice_pdf(self):
        """Test the invoice renders as a PDF"""
        invoice = self.make_invoice()
        self.client.force_login(self.accountant)
        response = self.client.get(reverse('billing:invoice_pdf', args=[invoice.pk]) + '?lang=en')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertIn(invoice.invoice_number, response['Content-Disposition'])


class PaymentApiTest(BillingTestMixin, TestCase):
    """Test recording payments"""

    def setUp(self):
        super().setUp()
        self.invoice = self.make_invoice('20.000')
        self.client.force_login(self.accountant)
        self.url = reverse('billing:payment_list')

    def test_partial_then_full_payment(self):
        """Test the invoice moves PENDING -> PARTIAL -> PAID"""
        response = self.post_json(self.url, {'invoice_id': self.invoice.pk, 'amount': '12.500',
                                             'payment_method': 'KNET'})
        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['invoice']['payment_status'], Invoice.PARTIAL)
        self.assertEqual(data['invoice']['outstanding_balance'], '7.500')
        self.assertEqual(data['payment_method'], 'KNET')

        response = self.post_json(self.url, {'invoice_id': self.invoice.pk, 'amount': '7.500'})
        data = response.json()['data']
        self.assertEqual(data['payment_method'], Payment.CASH)
        self.assertEqual(data['invoice']['payment_status'], Invoice.PAID)

    def test_overpayment_rejected(self):
        """Test paying more than the balance"""
        response = self.post_json(self.url, {'invoice_id': self.invoice.pk, 'amount': '20.001'},
                                  HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['details']['amount'],
                         ['Payment amount cannot exceed the outstanding balance'])
        self.assertFalse(Payment.objects.exists())

    def test_amount_must_be_positive(self):
        """Test zero and negative amounts"""
        for amount in ('0', '-5'):
            response = self.post_json(self.url, {'invoice_id': self.invoice.pk, 'amount': amount})
            self.assertEqual(response.status_code, 400)

    def test_unknown_invoice(self):
        """Test paying an invoice that does not exist"""
        response = self.post_json(self.url, {'invoice_id': 9999, 'amount': '1'})
        self.assertEqual(response.status_code, 404)

    def test_reception_can_take_payment(self):
        """Test reception holds billing create"""
        self.client.force_login(self.reception)
        response = self.post_json(self.url, {'invoice_id': self.invoice.pk, 'amount': '1'})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Payment.objects.get().received_by, self.reception)

    def test_list_and_receipt(self):
        """Test listing payments and printing the receipt"""
        payment = self.invoice.add_payment(Decimal('5.000'), Payment.CASH, received_by=self.accountant)
        response = self.client.get(self.url + f'?invoice={self.invoice.pk}')
        self.assertEqual([p['receipt_number'] for p in response.json()['results']], [payment.receipt_number])

        self.assertEqual(payment.balance_after(), Decimal('15.000'))
        response = self.client.get(reverse('billing:payment_receipt_pdf', args=[payment.pk]) + '?lang=en')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
