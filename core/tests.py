# core/tests.py
"""
Tests for the shared API plumbing: translations, formatting, error
envelopes, settings, audit trail, dashboard and rate limiting
"""
import json
from datetime import datetime, time, timedelta, timezone as dt_timezone
from decimal import Decimal

from django.core.cache import cache
from django.test import Client, RequestFactory, TestCase
from django.urls import reverse
from django.utils import timezone

from appointments.models import Appointment
from billing.models import Invoice, InvoiceItem
from patients.models import Patient
from services.models import Service
from users.models import Role, User
from .api import rate_limit, json_success
from .i18n import (
    format_currency, format_number, format_time, get_relative_time, get_validation_message,
    localize_message, plural_form, translate,
)
from .models import AuditLog, SystemSetting
from .pdf import build_pdf_context
from .utils import get_kuwait_today, kuwait_datetime


def make_user(username, role_name, **extra):
    return User.objects.create_user(
        username=username,
        password='secret123',
        full_name=extra.pop('full_name', username.title()),
        role=Role.get_default(role_name),
        **extra
    )


class TranslationTest(TestCase):
    """Test catalog lookup and fallbacks"""

    def test_translate_both_languages(self):
        """Test a key resolves in Arabic and English"""
        self.assertEqual(translate('error.auth_required', 'en'), 'Authentication required')
        self.assertEqual(translate('error.auth_required', 'ar'), 'يجب تسجيل الدخول')

    def test_missing_key_falls_back_to_last_segment(self):
        """Test unknown keys degrade to their last segment"""
        self.assertEqual(translate('nothing.here.some_label', 'en'), 'some_label')

    def test_parameters_are_interpolated(self):
        """Test {placeholders} are filled from parameters"""
        message = translate('error.rate_limited', 'en', seconds=42)
        self.assertIn('42', message)

    def test_regional_language_tags(self):
        """Test en-US is treated as English"""
        self.assertEqual(translate('currency.symbol', 'en-US'), 'KWD')

    def test_localize_message_translates_field_name(self):
        """Test the field parameter of a validation key is localized"""
        message = localize_message('validation.required_field', 'en', {'field': 'phone'})
        self.assertNotIn('{field}', message)

    def test_plain_text_is_returned_unchanged(self):
        """Test Django's own messages pass through"""
        self.assertEqual(localize_message('This field is required.', 'en'), 'This field is required.')


class PluralTest(TestCase):
    """Test plural category selection"""

    def test_arabic_plural_forms(self):
        """Test Arabic zero/one/two/few/many categories"""
        self.assertEqual(plural_form(0, 'ar'), 'zero')
        self.assertEqual(plural_form(1, 'ar'), 'one')
        self.assertEqual(plural_form(2, 'ar'), 'two')
        self.assertEqual(plural_form(5, 'ar'), 'few')
        self.assertEqual(plural_form(11, 'ar'), 'many')

    def test_english_plural_forms(self):
        """Test English one/other categories"""
        self.assertEqual(translate('patients.count', 'en', count=1), '1 patient')
        self.assertEqual(translate('patients.count', 'en', count=3), '3 patients')

    def test_arabic_plural_messages(self):
        """Test Arabic plural messages per category"""
        self.assertEqual(translate('patients.count', 'ar', count=2), 'مريضان')
        self.assertEqual(translate('patients.count', 'ar', count=5), '5 مرضى')
        self.assertEqual(translate('files.uploaded_successfully', 'ar', count=1), 'تم رفع ملف واحد بنجاح')


class FormattingTest(TestCase):
    """Test currency and time formatting"""

    def test_currency_english(self):
        """Test KWD amounts keep three decimals with the code first"""
        self.assertEqual(format_currency(Decimal('12.5'), 'en'), 'KWD 12.500')

    def test_currency_arabic(self):
        """Test Arabic amounts put the symbol after the number"""
        self.assertEqual(format_currency(Decimal('12.5'), 'ar'), '12.500 د.ك')

    def test_currency_rounding_and_grouping(self):
        """Test half-up rounding to fils and thousands separators"""
        self.assertEqual(format_currency(Decimal('1234.5675'), 'en'), 'KWD 1,234.568')
        self.assertEqual(format_currency(None, 'en'), 'KWD 0.000')

    def test_time_suffix(self):
        """Test 12 hour clock suffix per language"""
        self.assertEqual(format_time(time(14, 5), 'en'), '2:05 PM')
        self.assertEqual(format_time(time(9, 0), 'ar'), '9:00 ص')

    def test_relative_time_thresholds(self):
        """Test moments, minutes, hours and days ago"""
        now = datetime(2025, 3, 15, 12, 0, tzinfo=dt_timezone.utc)
        self.assertEqual(get_relative_time(now - timedelta(seconds=30), 'en', now=now), 'moments ago')
        self.assertEqual(get_relative_time(now - timedelta(minutes=5), 'en', now=now), '5 minutes ago')
        self.assertEqual(get_relative_time(now - timedelta(hours=1), 'en', now=now), '1 hour ago')
        self.assertEqual(get_relative_time(now - timedelta(hours=3), 'ar', now=now), 'منذ 3 ساعات')
        self.assertEqual(get_relative_time(now - timedelta(days=2), 'en', now=now), '2 days ago')

    def test_relative_time_falls_back_to_date(self):
        """Test values older than a month show the long date"""
        now = datetime(2025, 3, 15, 12, 0, tzinfo=dt_timezone.utc)
        self.assertEqual(get_relative_time(now - timedelta(days=40), 'en', now=now), '3 February 2025')

    def test_number_grouping(self):
        """Test thousands separators for integers and decimals"""
        self.assertEqual(format_number(1234567, 'en'), '1,234,567')
        self.assertEqual(format_number(Decimal('1234.5'), 'ar'), '1,234.5')

    def test_validation_messages(self):
        """Test validation codes map to localized messages naming the field"""
        self.assertEqual(get_validation_message('required', 'phone', 'en'), 'Phone is required')
        self.assertEqual(get_validation_message('min_length', 'first_name', 'ar'), 'الاسم الأول قصير جداً')
        self.assertEqual(get_validation_message('invalid_phone', 'phone', 'en'),
                         translate('validation.invalid_phone', 'en'))
        self.assertEqual(get_validation_message('something_else', 'phone', 'en'), 'The submitted data is invalid')

    def test_pdf_context_direction(self):
        """Test PDF layout follows the document language"""
        self.assertEqual(build_pdf_context({}, 'ar')['pdf']['direction'], 'rtl')
        context = build_pdf_context({}, 'en')
        self.assertEqual(context['pdf']['direction'], 'ltr')
        self.assertEqual(context['clinic']['name'], 'Dental Clinic')


class ErrorEnvelopeTest(TestCase):
    """Test JSON error responses"""

    def setUp(self):
        cache.clear()

    def test_unauthenticated_request(self):
        """Test protected endpoints answer 401 with a localized message"""
        response = self.client.get(reverse('patients:patient_list'), HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertFalse(payload['success'])
        self.assertEqual(payload['code'], 'AUTH_REQUIRED')
        self.assertEqual(payload['error'], 'Authentication required')

    def test_language_from_query_string(self):
        """Test ?lang= wins over the header and is remembered in a cookie"""
        response = self.client.get(reverse('patients:patient_list') + '?lang=ar', HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.json()['error'], 'يجب تسجيل الدخول')
        self.assertEqual(response.cookies['lang'].value, 'ar')

    def test_unknown_url_returns_json_404(self):
        """Test unmatched URLs use the JSON envelope"""
        response = self.client.get('/api/does-not-exist', HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['code'], 'NOT_FOUND')

    def test_csrf_failure_is_json(self):
        """Test a POST without CSRF token gets a localized JSON 403"""
        client = Client(enforce_csrf_checks=True)
        response = client.post(
            reverse('users:login'),
            data=json.dumps({'username': 'x', 'password': 'y'}),
            content_type='application/json',
            HTTP_ACCEPT_LANGUAGE='en',
        )
        self.assertEqual(response.status_code, 403)
        payload = response.json()
        self.assertEqual(payload['code'], 'CSRF_ERROR')
        self.assertIn('security token', payload['error'])

    def test_invalid_json_body(self):
        """Test malformed bodies are rejected as validation errors"""
        self.client.force_login(make_user('admin', Role.ADMIN))
        response = self.client.post(reverse('patients:patient_list'), data='{not json',
                                    content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'VALIDATION_ERROR')

    def test_method_not_allowed(self):
        """Test unsupported verbs are refused"""
        self.client.force_login(make_user('admin', Role.ADMIN))
        response = self.client.delete(reverse('core:dashboard_stats'))
        self.assertEqual(response.status_code, 405)

    def test_health_check(self):
        """Test the health endpoint needs no login"""
        response = self.client.get(reverse('core:health'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'ok')


class RateLimitTest(TestCase):
    """Test the cache based rate limiter"""

    def setUp(self):
        cache.clear()
        self.factory = RequestFactory()

        @rate_limit('test', max_requests=2, window_seconds=60)
        def view(request):
            return json_success({'ok': True})

        self.view = view

    def _request(self):
        request = self.factory.get('/api/anything', REMOTE_ADDR='10.0.0.1')
        request.user = User(username='anon')
        request.user.pk = 99
        return request

    def test_limit_then_reject(self):
        """Test the request over the limit gets 429 with Retry-After"""
        self.assertEqual(self.view(self._request()).status_code, 200)
        self.assertEqual(self.view(self._request()).status_code, 200)
        response = self.view(self._request())
        self.assertEqual(response.status_code, 429)
        self.assertEqual(json.loads(response.content)['code'], 'RATE_LIMIT_EXCEEDED')
        self.assertTrue(int(response['Retry-After']) > 0)

    def test_counts_are_per_client(self):
        """Test another IP has its own budget"""
        for _ in range(3):
            self.view(self._request())
        request = self.factory.get('/api/anything', REMOTE_ADDR='10.0.0.2')
        request.user = User(username='other')
        request.user.pk = 100
        self.assertEqual(self.view(request).status_code, 200)


class SystemSettingsApiTest(TestCase):
    """Test reading and updating clinic settings"""

    def setUp(self):
        cache.clear()
        self.admin = make_user('admin', Role.ADMIN)
        self.reception = make_user('reception', Role.RECEPTION)
        self.url = reverse('core:settings')

    def test_defaults_are_returned(self):
        """Test unset keys report their defaults"""
        self.client.force_login(self.admin)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data['scheduling']['working_hours_start'], '09:00')
        self.assertEqual(data['clinic']['clinic_name_en'], 'Dental Clinic')

    def test_update_settings(self):
        """Test a partial update stores only the submitted keys"""
        self.client.force_login(self.admin)
        response = self.client.put(
            self.url,
            data=json.dumps({'tax_rate': '5', 'working_hours_start': '8:30'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(sorted(response.json()['changed']), ['tax_rate', 'working_hours_start'])
        self.assertEqual(SystemSetting.get_setting('working_hours_start'), '08:30')
        self.assertEqual(SystemSetting.get_decimal_setting('tax_rate'), Decimal('5'))

    def test_closing_before_opening_is_rejected(self):
        """Test working hours must be an increasing range"""
        self.client.force_login(self.admin)
        response = self.client.put(self.url, data=json.dumps({'working_hours_start': '18:00'}),
                                   content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('working_hours_end', response.json()['details'])

    def test_unknown_keys_are_rejected(self):
        """Test keys outside the known settings are refused"""
        self.client.force_login(self.admin)
        response = self.client.put(self.url, data=json.dumps({'favourite_colour': 'blue'}),
                                   content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['details']['unknown_keys'], ['favourite_colour'])

    def test_non_admin_forbidden(self):
        """Test reception cannot read settings"""
        self.client.force_login(self.reception)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['code'], 'ACCESS_DENIED')


class AuditLogTest(TestCase):
    """Test the automatic audit trail"""

    def setUp(self):
        cache.clear()
        self.admin = make_user('admin', Role.ADMIN)

    def test_create_and_update_are_logged(self):
        """Test model saves produce CREATE and UPDATE entries with changes"""
        service = Service.objects.create(code='XRAY', name_ar='أشعة', name_en='X-Ray', price=Decimal('8.000'))
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.CREATE, table_name='services_service',
                                                record_id=str(service.pk)).exists())

        service.price = Decimal('9.000')
        service.save()
        log = AuditLog.objects.filter(action=AuditLog.UPDATE, record_id=str(service.pk)).latest('timestamp')
        self.assertEqual(log.old_values, {'price': '8.000'})
        self.assertEqual(log.new_values, {'price': '9.000'})
        self.assertEqual(log.changed_fields, ['price'])

    def test_password_is_hidden(self):
        """Test password hashes never reach the audit log"""
        user = make_user('doctor', Role.DOCTOR)
        log = AuditLog.objects.get(action=AuditLog.CREATE, table_name='users_user', record_id=str(user.pk))
        self.assertEqual(log.new_values['password'], AuditLog.HIDDEN_VALUE)

    def test_request_user_is_recorded(self):
        """Test API changes are attributed to the logged-in user"""
        self.client.force_login(self.admin)
        response = self.client.post(
            reverse('services:service_list'),
            data=json.dumps({'code': 'polish', 'name_ar': 'تلميع', 'name_en': 'Polishing', 'price': '12.000'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 201)
        log = AuditLog.objects.get(action=AuditLog.CREATE, table_name='services_service')
        self.assertEqual(log.user, self.admin)

    def test_list_endpoint_filters(self):
        """Test audit log listing with action filter"""
        Service.objects.create(code='XRAY', name_ar='أشعة', name_en='X-Ray', price=Decimal('8.000'))
        self.client.force_login(self.admin)
        response = self.client.get(reverse('core:audit_logs') + '?action=create&table=services_service')
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload['pagination']['total'], 1)
        self.assertEqual(payload['results'][0]['action'], 'CREATE')
        self.assertEqual(payload['results'][0]['timestamp_display'], 'منذ لحظات')

    def test_list_requires_admin(self):
        """Test accountants cannot read the audit trail"""
        self.client.force_login(make_user('accountant', Role.ACCOUNTANT))
        response = self.client.get(reverse('core:audit_logs'))
        self.assertEqual(response.status_code, 403)


class DashboardTest(TestCase):
    """Test the dashboard statistics"""

    def setUp(self):
        cache.clear()
        self.doctor = make_user('doctor', Role.DOCTOR)
        self.other_doctor = make_user('doctor2', Role.DOCTOR)
        self.accountant = make_user('accountant', Role.ACCOUNTANT)
        self.patient = Patient.objects.create(civil_id='290010112345', first_name='Ali', last_name='Salem',
                                              phone='+96550000001')
        start = kuwait_datetime(get_kuwait_today(), time(10, 0))
        Appointment.objects.create(patient=self.patient, doctor=self.doctor, start=start)
        Appointment.objects.create(patient=self.patient, doctor=self.other_doctor, start=start)

        invoice = Invoice.objects.create(patient=self.patient)
        InvoiceItem.objects.create(invoice=invoice, description='Cleaning', quantity=1,
                                   unit_price=Decimal('20.000'))
        invoice.recalculate_totals()
        invoice.add_payment(Decimal('5.000'), 'CASH')

    def test_doctor_sees_own_schedule_only(self):
        """Test doctors count only their appointments for today"""
        self.client.force_login(self.doctor)
        data = self.client.get(reverse('core:dashboard_stats')).json()['data']
        self.assertEqual(data['todays_appointments'], 1)
        self.assertEqual(data['total_patients'], 1)

    def test_revenue_for_billing_roles(self):
        """Test revenue figures are present for the accountant"""
        self.client.force_login(self.accountant)
        data = self.client.get(reverse('core:dashboard_stats') + '?lang=en').json()['data']
        self.assertEqual(data['todays_appointments'], 2)
        self.assertEqual(data['total_revenue']['amount'], '5.000')
        self.assertEqual(data['pending_payments']['display'], 'KWD 15.000')
        self.assertEqual(len(data['pending_invoices']), 1)
