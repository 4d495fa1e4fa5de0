# patients/tests.py
"""
Tests for patient records and patient file uploads
"""
import json
import os
import shutil
import tempfile
from unittest import mock

from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.urls import reverse

from users.models import Role, User
from .forms import clean_kuwait_phone_number
from .models import Patient, PatientFile

PATIENT_DATA = {
    'civil_id': '290010112345',
    'first_name': 'Ahmad',
    'last_name': 'Al-Sabah',
    'phone': '9999 1234',
    'email': 'Ahmad@Example.com',
    'date_of_birth': '1990-01-01',
    'gender': 'MALE',
    'allergies': ['Penicillin'],
}


def make_user(username, role_name):
    return User.objects.create_user(username=username, password='secret123', role=Role.get_default(role_name))


class PhoneNumberTest(TestCase):
    """Test Kuwait phone normalization"""

    def test_local_number(self):
        """Test eight digit numbers get the country code"""
        self.assertEqual(clean_kuwait_phone_number('9999 1234'), '+96599991234')

    def test_prefixed_numbers(self):
        """Test +965 and 00965 prefixes"""
        self.assertEqual(clean_kuwait_phone_number('+965 5555-1234'), '+96555551234')
        self.assertEqual(clean_kuwait_phone_number('0096555551234'), '+96555551234')

    def test_longer_number(self):
        """Test numbers longer than eight digits are accepted"""
        self.assertEqual(clean_kuwait_phone_number('123456789'), '+965123456789')
        self.assertEqual(clean_kuwait_phone_number('+965 2222 33334'), '+965222233334')

    def test_invalid_number(self):
        """Test short numbers are rejected"""
        with self.assertRaises(ValidationError):
            clean_kuwait_phone_number('12345')
        with self.assertRaises(ValidationError):
            clean_kuwait_phone_number('9999-12a4')


class PatientApiTest(TestCase):
    """Test the patient endpoints"""

    def setUp(self):
        cache.clear()
        self.reception = make_user('reception', Role.RECEPTION)
        self.client.force_login(self.reception)
        self.url = reverse('patients:patient_list')

    def _create(self, **overrides):
        return self.client.post(self.url, data=json.dumps({**PATIENT_DATA, **overrides}),
                                content_type='application/json', HTTP_ACCEPT_LANGUAGE='en')

    def test_create_and_fetch(self):
        """Test a registered patient reads back with the same details"""
        response = self._create()
        self.assertEqual(response.status_code, 201)
        created = response.json()['data']
        self.assertEqual(created['phone'], '+96599991234')
        self.assertEqual(created['email'], 'ahmad@example.com')

        response = self.client.get(reverse('patients:patient_detail', args=[created['id']]))
        fetched = response.json()['data']
        for field in ('civil_id', 'first_name', 'last_name', 'phone', 'date_of_birth', 'gender', 'allergies'):
            self.assertEqual(fetched[field], created[field])
        self.assertEqual(fetched['outstanding_balance'], '0.000')

        patient = Patient.objects.get(pk=created['id'])
        self.assertEqual(patient.created_by, self.reception)

    def test_invalid_civil_id(self):
        """Test civil IDs must be exactly twelve digits"""
        response = self._create(civil_id='12345')
        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload['code'], 'VALIDATION_ERROR')
        self.assertEqual(payload['details']['civil_id'], ['Civil ID must be exactly 12 digits'])

    def test_duplicate_civil_id(self):
        """Test a civil ID can only be registered once"""
        self._create()
        response = self._create(first_name='Other')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'A patient with this Civil ID already exists')

    def test_future_birth_date(self):
        """Test dates of birth cannot be in the future"""
        response = self._create(date_of_birth='2999-01-01')
        self.assertEqual(response.status_code, 400)
        self.assertIn('date_of_birth', response.json()['details'])

    def test_lookup_by_civil_id(self):
        """Test fetching a patient by civil ID"""
        self._create()
        response = self.client.get(reverse('patients:patient_by_civil_id', args=['290010112345']))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['first_name'], 'Ahmad')

        response = self.client.get(reverse('patients:patient_by_civil_id', args=['000000000000']))
        self.assertEqual(response.status_code, 404)

    def test_search(self):
        """Test searching by name, civil ID or phone"""
        self._create()
        self._create(civil_id='285123456789', first_name='Fatma', last_name='Hassan', phone='66661111')

        response = self.client.get(self.url + '?search=fatma&lang=en')
        payload = response.json()
        self.assertEqual([p['first_name'] for p in payload['results']], ['Fatma'])
        self.assertEqual(payload['summary'], '1 patient')

        response = self.client.get(self.url + '?search=2900101')
        self.assertEqual(response.json()['pagination']['total'], 1)

    def test_update_patient(self):
        """Test a partial update keeps the other fields"""
        patient_id = self._create().json()['data']['id']
        response = self.client.put(reverse('patients:patient_detail', args=[patient_id]),
                                   data=json.dumps({'phone': '+96555550000'}),
                                   content_type='application/json')
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data['phone'], '+96555550000')
        self.assertEqual(data['civil_id'], '290010112345')

    def test_soft_delete(self):
        """Test deleting only deactivates the record"""
        patient_id = self._create().json()['data']['id']
        admin = make_user('admin', Role.ADMIN)
        self.client.force_login(admin)
        response = self.client.delete(reverse('patients:patient_detail', args=[patient_id]))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Patient.objects.get(pk=patient_id).is_active)
        self.assertEqual(self.client.get(self.url).json()['pagination']['total'], 0)
        self.assertEqual(self.client.get(self.url + '?include_inactive=true').json()['pagination']['total'], 1)

    def test_reception_cannot_delete(self):
        """Test reception has no delete permission on patients"""
        patient_id = self._create().json()['data']['id']
        response = self.client.delete(reverse('patients:patient_detail', args=[patient_id]))
        self.assertEqual(response.status_code, 403)

    def test_accountant_read_only(self):
        """Test accountants may read but not register patients"""
        self.client.force_login(make_user('accountant', Role.ACCOUNTANT))
        self.assertEqual(self.client.get(self.url).status_code, 200)
        self.assertEqual(self._create().status_code, 403)


class PatientFileTest(TestCase):
    """Test uploading, listing and deleting patient files"""

    def setUp(self):
        cache.clear()
        self.media_root = tempfile.mkdtemp()
        self.override = override_settings(MEDIA_ROOT=self.media_root)
        self.override.enable()

        self.user = make_user('doctor', Role.DOCTOR)
        self.client.force_login(self.user)
        self.patient = Patient.objects.create(civil_id='290010112345', first_name='Ahmad', last_name='Ali',
                                              phone='+96599991234')
        self.url = reverse('patients:patient_files', args=[self.patient.pk])

    def tearDown(self):
        self.override.disable()
        shutil.rmtree(self.media_root, ignore_errors=True)

    def test_storage_name_is_sanitized(self):
        """Test stored names keep only safe characters"""
        name = PatientFile.build_storage_name(7, 'أشعة panoramic (1).PNG')
        self.assertTrue(name.startswith('patient-files/7/'))
        self.assertTrue(name.endswith('.png'))
        self.assertNotIn(' ', name)

    def test_upload_multiple_files(self):
        """Test uploading two files at once"""
        files = [
            SimpleUploadedFile('xray.png', b'\x89PNG fake image', content_type='image/png'),
            SimpleUploadedFile('report.pdf', b'%PDF-1.4 fake', content_type='application/pdf'),
        ]
        response = self.client.post(self.url, {'files': files, 'category': 'xray'}, HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['message'], '2 files uploaded successfully')
        self.assertEqual(self.patient.files.count(), 2)

        listing = self.client.get(self.url).json()['data']
        self.assertEqual({f['original_name'] for f in listing}, {'xray.png', 'report.pdf'})

    def test_upload_message_arabic_plural(self):
        """Test the Arabic dual form for two files"""
        files = [
            SimpleUploadedFile('a.txt', b'notes', content_type='text/plain'),
            SimpleUploadedFile('b.txt', b'notes', content_type='text/plain'),
        ]
        response = self.client.post(self.url, {'files': files}, HTTP_ACCEPT_LANGUAGE='ar')
        self.assertEqual(response.json()['message'], 'تم رفع ملفين بنجاح')

    def test_disallowed_type_rejected(self):
        """Test executables are refused and nothing is stored"""
        upload = SimpleUploadedFile('run.exe', b'MZ', content_type='application/x-msdownload')
        response = self.client.post(self.url, {'files': [upload]})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.patient.files.count(), 0)

    def test_extension_must_match_type(self):
        """Test a PDF content type with an image extension is refused"""
        upload = SimpleUploadedFile('scan.jpg', b'%PDF', content_type='application/pdf')
        response = self.client.post(self.url, {'files': [upload]})
        self.assertEqual(response.status_code, 400)

    def test_too_many_files(self):
        """Test at most five files per upload"""
        files = [SimpleUploadedFile(f'f{i}.txt', b'x', content_type='text/plain') for i in range(6)]
        response = self.client.post(self.url, {'files': files})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'TOO_MANY_FILES')

    def test_failed_upload_leaves_no_files(self):
        """Test a failing save removes the files already written"""
        files = [
            SimpleUploadedFile('a.txt', b'first', content_type='text/plain'),
            SimpleUploadedFile('b.txt', b'second', content_type='text/plain'),
        ]
        with mock.patch.object(PatientFile, 'save', side_effect=[None, DatabaseError('write failed')]):
            response = self.client.post(self.url, {'files': files})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(self.patient.files.count(), 0)
        stored = [name for _, _, names in os.walk(self.media_root) for name in names]
        self.assertEqual(stored, [])

    def test_no_files(self):
        """Test an upload without files"""
        response = self.client.post(self.url, {'category': 'xray'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'NO_FILES')

    def test_download_and_delete(self):
        """Test downloading a stored file, then deleting it"""
        upload = SimpleUploadedFile('notes.txt', b'tooth 14 sensitive', content_type='text/plain')
        file_id = self.client.post(self.url, {'files': [upload]}).json()['data'][0]['id']

        response = self.client.get(reverse('patients:patient_file_download', args=[self.patient.pk, file_id]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(b''.join(response.streaming_content), b'tooth 14 sensitive')

        url = reverse('patients:patient_file_delete', args=[self.patient.pk, file_id])
        self.assertEqual(self.client.delete(url).status_code, 403)

        self.client.force_login(make_user('admin', Role.ADMIN))
        response = self.client.delete(reverse('patients:patient_file_delete', args=[self.patient.pk, file_id]))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(PatientFile.objects.filter(pk=file_id).exists())
