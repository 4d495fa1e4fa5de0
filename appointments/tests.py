# appointments/tests.py
"""
Tests for appointment booking rules, status changes and visits
"""
import json
from datetime import time, timedelta
from decimal import Decimal
from unittest import mock

from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.test import TestCase
from django.urls import reverse

from billing.models import Invoice
from core.models import AuditLog, SystemSetting
from core.utils import get_kuwait_today, kuwait_datetime
from patients.models import Patient
from services.models import Service
from users.models import Role, User
from .models import Appointment, Visit
from .utils import AppointmentConfig, get_available_slots


def make_user(username, role_name, **extra):
    return User.objects.create_user(username=username, password='secret123', role=Role.get_default(role_name),
                                    **extra)


def next_monday():
    today = get_kuwait_today()
    return today + timedelta(days=(7 - today.weekday()) % 7 or 7)


class AppointmentTestMixin:

    def setUp(self):
        cache.clear()
        self.doctor = make_user('doctor', Role.DOCTOR, full_name='Dr. Sara')
        self.other_doctor = make_user('doctor2', Role.DOCTOR, full_name='Dr. Omar')
        self.reception = make_user('reception', Role.RECEPTION)
        self.patient = Patient.objects.create(civil_id='290010112345', first_name='Ahmad', last_name='Ali',
                                              phone='+96599991234')
        self.service = Service.objects.create(code='SCALING', name_ar='تنظيف الجير', name_en='Scaling',
                                              price=Decimal('15.000'), duration_minutes=30)
        self.day = next_monday()

    def at(self, hour, minute=0, day=None):
        return kuwait_datetime(day or self.day, time(hour, minute))

    def book(self, start, doctor=None, **extra):
        data = {
            'patient': self.patient.pk,
            'doctor': (doctor or self.doctor).pk,
            'service': self.service.pk,
            'start': start.isoformat(),
            **extra,
        }
        return self.client.post(reverse('appointments:appointment_list'), data=json.dumps(data),
                                content_type='application/json', HTTP_ACCEPT_LANGUAGE='en')


class WorkingHoursTest(AppointmentTestMixin, TestCase):
    """Test the clinic calendar"""

    def test_friday_is_closed(self):
        """Test the default week has Friday off"""
        friday = self.day + timedelta(days=4)
        ok, key, _ = AppointmentConfig.check_working_hours(self.at(10, day=friday), 30)
        self.assertFalse(ok)
        self.assertEqual(key, 'appointments.non_working_day')

    def test_must_end_by_closing_time(self):
        """Test an appointment running past 17:00"""
        ok, key, params = AppointmentConfig.check_working_hours(self.at(16, 45), 30)
        self.assertFalse(ok)
        self.assertEqual(key, 'appointments.outside_working_hours')
        self.assertEqual(params, {'start': '09:00', 'end': '17:00'})

    def test_last_slot_of_the_day(self):
        """Test an appointment ending exactly at closing time"""
        ok, _, _ = AppointmentConfig.check_working_hours(self.at(16, 30), 30)
        self.assertTrue(ok)

    def test_settings_change_hours(self):
        """Test working hours come from the settings"""
        SystemSetting.set_setting('working_hours_start', '08:00')
        ok, _, _ = AppointmentConfig.check_working_hours(self.at(8), 30)
        self.assertTrue(ok)


class AppointmentBookingTest(AppointmentTestMixin, TestCase):
    """Test booking through the API"""

    def setUp(self):
        super().setUp()
        self.client.force_login(self.reception)

    def test_book_appointment(self):
        """Test a valid booking takes its length from the service"""
        response = self.book(self.at(10))
        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['status'], Appointment.SCHEDULED)
        self.assertEqual(data['duration_minutes'], 30)
        self.assertEqual(data['doctor']['full_name'], 'Dr. Sara')

    def test_overlap_rejected(self):
        """Test a second booking overlapping the first"""
        self.book(self.at(10))
        response = self.book(self.at(10, 15))
        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload['code'], 'VALIDATION_ERROR')
        self.assertEqual(payload['details']['start'], ['The doctor already has an appointment at this time'])
        self.assertEqual(Appointment.objects.count(), 1)

    def test_back_to_back_allowed(self):
        """Test an appointment may start when the previous one ends"""
        self.book(self.at(10))
        self.assertEqual(self.book(self.at(10, 30)).status_code, 201)
        self.assertEqual(self.book(self.at(9, 30)).status_code, 201)

    def test_other_doctor_same_time(self):
        """Test overlap is checked per doctor"""
        self.book(self.at(10))
        self.assertEqual(self.book(self.at(10), doctor=self.other_doctor).status_code, 201)

    def test_cancelled_slot_can_be_rebooked(self):
        """Test cancelled appointments free their slot"""
        appointment_id = self.book(self.at(10)).json()['data']['id']
        response = self.client.delete(reverse('appointments:appointment_detail', args=[appointment_id]))
        self.assertEqual(response.json()['data']['status'], Appointment.CANCELLED)
        self.assertEqual(self.book(self.at(10)).status_code, 201)

    def test_non_working_day_rejected(self):
        """Test bookings on Friday"""
        response = self.book(self.at(10, day=self.day + timedelta(days=4)))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'The clinic is closed on this day')

    def test_outside_hours_rejected(self):
        """Test bookings before opening"""
        response = self.book(self.at(7))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'The appointment must be within working hours (09:00 - 17:00)')

    def test_non_doctor_rejected(self):
        """Test appointments must be with a doctor"""
        response = self.book(self.at(10), doctor=self.reception)
        self.assertEqual(response.status_code, 400)
        self.assertIn('doctor', response.json()['details'])

    def test_reschedule_into_conflict(self):
        """Test moving an appointment onto another one"""
        self.book(self.at(10))
        other_id = self.book(self.at(11)).json()['data']['id']
        response = self.client.put(reverse('appointments:appointment_detail', args=[other_id]),
                                   data=json.dumps({'start': self.at(10).isoformat()}),
                                   content_type='application/json')
        self.assertEqual(response.status_code, 400)

        response = self.client.put(reverse('appointments:appointment_detail', args=[other_id]),
                                   data=json.dumps({'notes': 'Bring x-ray'}),
                                   content_type='application/json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['notes'], 'Bring x-ray')

    def test_doctor_cannot_book(self):
        """Test doctors have no create permission on appointments"""
        self.client.force_login(self.doctor)
        self.assertEqual(self.book(self.at(10)).status_code, 403)


class AppointmentStatusTest(AppointmentTestMixin, TestCase):
    """Test status transitions"""

    def setUp(self):
        super().setUp()
        self.appointment = Appointment.objects.create(patient=self.patient, doctor=self.doctor,
                                                      service=self.service, start=self.at(10))
        self.url = reverse('appointments:appointment_status', args=[self.appointment.pk])
        self.client.force_login(self.reception)

    def test_confirm(self):
        """Test SCHEDULED to CONFIRMED is logged as a status update"""
        response = self.client.patch(self.url, data=json.dumps({'status': 'CONFIRMED'}),
                                     content_type='application/json')
        self.assertEqual(response.status_code, 200)
        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.status, Appointment.CONFIRMED)
        log = AuditLog.objects.get(action=AuditLog.STATUS_UPDATE, record_id=str(self.appointment.pk))
        self.assertEqual(log.new_values['status'], Appointment.CONFIRMED)
        self.assertEqual(log.user, self.reception)

    def test_final_status_cannot_change(self):
        """Test completed appointments stay completed"""
        self.appointment.set_status(Appointment.COMPLETED)
        response = self.client.patch(self.url, data=json.dumps({'status': 'CANCELLED'}),
                                     content_type='application/json', HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Cannot change status from COMPLETED to CANCELLED')

    def test_unknown_status(self):
        """Test a status outside the choices"""
        response = self.client.patch(self.url, data=json.dumps({'status': 'LOST'}),
                                     content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_model_transition_guard(self):
        """Test set_status enforces the transition table"""
        self.appointment.set_status(Appointment.NO_SHOW)
        with self.assertRaises(ValidationError):
            self.appointment.set_status(Appointment.CONFIRMED)


class DoctorScopeTest(AppointmentTestMixin, TestCase):
    """Test doctors only see their own schedule"""

    def setUp(self):
        super().setUp()
        self.mine = Appointment.objects.create(patient=self.patient, doctor=self.doctor, start=self.at(10))
        self.theirs = Appointment.objects.create(patient=self.patient, doctor=self.other_doctor, start=self.at(10))
        self.client.force_login(self.doctor)

    def test_list_is_filtered(self):
        """Test the list only has the doctor's appointments"""
        response = self.client.get(reverse('appointments:appointment_list'))
        self.assertEqual([a['id'] for a in response.json()['results']], [self.mine.pk])

    def test_other_doctor_appointment_forbidden(self):
        """Test fetching a colleague's appointment"""
        response = self.client.get(reverse('appointments:appointment_detail', args=[self.theirs.pk]))
        self.assertEqual(response.status_code, 403)

    def test_date_filter(self):
        """Test ?date= limits the list to one Kuwait day"""
        url = reverse('appointments:appointment_list')
        self.client.force_login(self.reception)
        self.assertEqual(self.client.get(url + f'?date={self.day.isoformat()}').json()['pagination']['total'], 2)
        tomorrow = self.day + timedelta(days=1)
        self.assertEqual(self.client.get(url + f'?date={tomorrow.isoformat()}').json()['pagination']['total'], 0)
        self.assertEqual(self.client.get(url + '?date=26-10-2025').status_code, 400)


class AvailableSlotsTest(AppointmentTestMixin, TestCase):
    """Test free slot calculation"""

    def test_full_day(self):
        """Test an empty day offers every half hour"""
        slots = get_available_slots(self.doctor, self.day)
        self.assertEqual(len(slots), 16)
        self.assertEqual(slots[0], self.at(9))
        self.assertEqual(slots[-1], self.at(16, 30))

    def test_booked_slot_is_removed(self):
        """Test a booking removes the slots it overlaps"""
        Appointment.objects.create(patient=self.patient, doctor=self.doctor, start=self.at(10), duration_minutes=60)
        slots = get_available_slots(self.doctor, self.day)
        self.assertNotIn(self.at(10), slots)
        self.assertNotIn(self.at(10, 30), slots)
        self.assertIn(self.at(11), slots)
        self.assertEqual(len(slots), 14)

    def test_past_times_today_skipped(self):
        """Test slots already started are not offered on the current day"""
        with mock.patch('appointments.utils.get_kuwait_now', return_value=self.at(10, 15)):
            slots = get_available_slots(self.doctor, self.day)
        self.assertEqual(slots[0], self.at(10, 30))
        self.assertNotIn(self.at(10), slots)
        self.assertEqual(len(slots), 13)

    def test_closed_day(self):
        """Test no slots on Friday"""
        self.assertEqual(get_available_slots(self.doctor, self.day + timedelta(days=4)), [])

    def test_endpoint(self):
        """Test the slots endpoint"""
        self.client.force_login(self.reception)
        url = reverse('appointments:available_slots')
        response = self.client.get(url, {'doctor': self.doctor.pk, 'date': self.day.isoformat(), 'lang': 'en'})
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data[0]['start'], self.at(9).isoformat())
        self.assertEqual(data[0]['time_display'], '9:00 AM')

        response = self.client.get(url, {'doctor': self.doctor.pk, 'date': 'tomorrow'})
        self.assertEqual(response.status_code, 400)


class VisitTest(AppointmentTestMixin, TestCase):
    """Test starting visits and billing them"""

    def setUp(self):
        super().setUp()
        self.appointment = Appointment.objects.create(patient=self.patient, doctor=self.doctor,
                                                      service=self.service, start=self.at(10))

    def _start_visit(self):
        return self.client.post(reverse('appointments:visit_start', args=[self.appointment.pk]))

    def test_start_visit(self):
        """Test a visit opens from the appointment and completes it"""
        self.client.force_login(self.doctor)
        response = self._start_visit()
        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['status'], Visit.IN_PROGRESS)
        self.assertEqual(data['procedures'][0]['service_code'], 'SCALING')
        self.assertEqual(data['total_amount'], '15.000')

        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.status, Appointment.COMPLETED)

        response = self._start_visit()
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'ALREADY_COMPLETED')

    def test_start_visit_twice(self):
        """Test an appointment that already has a visit cannot open another"""
        Visit.objects.create(appointment=self.appointment, patient=self.patient, doctor=self.doctor)
        self.client.force_login(self.doctor)
        response = self._start_visit()
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'VISIT_EXISTS')

    def test_create_visit_completes_appointment(self):
        """Test recording a visit for an appointment completes it"""
        self.client.force_login(self.doctor)
        response = self.client.post(
            reverse('appointments:visit_list'),
            data=json.dumps({
                'appointment': self.appointment.pk,
                'patient': self.patient.pk,
                'chief_complaint': 'Sensitivity',
                'procedures': [{'service_id': self.service.pk, 'tooth': '16'}],
            }),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['total_amount'], '15.000')
        self.assertEqual(data['status'], Visit.IN_PROGRESS)

        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.status, Appointment.COMPLETED)

    def test_document_visit(self):
        """Test recording procedures with tooth numbers"""
        self.client.force_login(self.doctor)
        visit_id = self._start_visit().json()['data']['id']
        filling = Service.objects.create(code='FILLING', name_ar='حشوة', name_en='Filling', price=Decimal('25.000'))
        response = self.client.put(
            reverse('appointments:visit_detail', args=[visit_id]),
            data=json.dumps({
                'diagnosis': 'Caries on 14',
                'procedures': [{'service_id': self.service.pk}, {'service_id': filling.pk, 'tooth': '14'}],
            }),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data['total_amount'], '40.000')
        self.assertEqual(data['procedures'][1]['tooth'], '14')

    def test_unknown_procedure_service(self):
        """Test procedures must reference existing services"""
        self.client.force_login(self.doctor)
        visit_id = self._start_visit().json()['data']['id']
        response = self.client.put(reverse('appointments:visit_detail', args=[visit_id]),
                                   data=json.dumps({'procedures': [{'service_id': 9999}]}),
                                   content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('procedures', response.json()['details'])

    def test_invoice_from_visit(self):
        """Test billing a visit once"""
        self.client.force_login(self.doctor)
        visit_id = self._start_visit().json()['data']['id']
        url = reverse('appointments:visit_invoice', args=[visit_id])

        # Doctors only read billing
        self.assertEqual(self.client.post(url).status_code, 403)

        self.client.force_login(self.reception)
        response = self.client.post(url)
        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['total_amount'], '15.000')
        self.assertEqual(data['payment_status'], Invoice.PENDING)
        self.assertEqual(len(data['items']), 1)

        response = self.client.post(url)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'INVOICE_EXISTS')

    def test_summary_pdf(self):
        """Test the visit summary renders as a PDF"""
        self.client.force_login(self.doctor)
        visit_id = self._start_visit().json()['data']['id']
        response = self.client.get(reverse('appointments:visit_summary_pdf', args=[visit_id]) + '?lang=en')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertTrue(response.content.startswith(b'%PDF'))
