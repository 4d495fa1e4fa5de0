# services/tests.py
"""
Tests for the dental service catalog
"""
import json
from decimal import Decimal

from django.core.cache import cache
from django.test import TestCase
from django.urls import reverse

from users.models import Role, User
from .models import Service


def make_user(username, role_name):
    return User.objects.create_user(username=username, password='secret123', role=Role.get_default(role_name))


class ServiceApiTest(TestCase):
    """Test listing and managing services"""

    def setUp(self):
        cache.clear()
        self.admin = make_user('admin', Role.ADMIN)
        self.reception = make_user('reception', Role.RECEPTION)
        self.scaling = Service.objects.create(code='SCALING', name_ar='تنظيف الجير', name_en='Scaling',
                                              price=Decimal('15.000'), duration_minutes=30,
                                              category='PREVENTIVE')
        self.retired = Service.objects.create(code='OLD', name_ar='قديم', name_en='Old', price=Decimal('1.000'),
                                              is_active=False)

    def test_list_active_services_localized(self):
        """Test names and prices follow the request language"""
        self.client.force_login(self.reception)
        response = self.client.get(reverse('services:service_list') + '?lang=ar')
        results = response.json()['results']
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]['name'], 'تنظيف الجير')
        self.assertEqual(results[0]['price_display'], '15.000 د.ك')

        response = self.client.get(reverse('services:service_list') + '?lang=en')
        self.assertEqual(response.json()['results'][0]['price_display'], 'KWD 15.000')

    def test_admin_sees_inactive(self):
        """Test ?all=1 includes retired services for administrators only"""
        self.client.force_login(self.admin)
        self.assertEqual(self.client.get(reverse('services:service_list') + '?all=1').json()['pagination']['total'], 2)

        self.client.force_login(self.reception)
        self.assertEqual(self.client.get(reverse('services:service_list') + '?all=1').json()['pagination']['total'], 1)

    def test_create_service(self):
        """Test codes are stored upper case"""
        self.client.force_login(self.admin)
        response = self.client.post(
            reverse('services:service_list'),
            data=json.dumps({'code': 'crown', 'name_ar': 'تاج', 'name_en': 'Crown', 'price': '120.500',
                             'duration_minutes': 60, 'category': 'RESTORATIVE'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Service.objects.get(code='CROWN').price, Decimal('120.500'))

    def test_price_must_be_positive(self):
        """Test zero prices are rejected"""
        self.client.force_login(self.admin)
        response = self.client.post(
            reverse('services:service_list'),
            data=json.dumps({'code': 'FREE', 'name_ar': 'مجاني', 'name_en': 'Free', 'price': '0'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('price', response.json()['details'])

    def test_duplicate_code(self):
        """Test service codes are unique"""
        self.client.force_login(self.admin)
        response = self.client.post(
            reverse('services:service_list'),
            data=json.dumps({'code': 'scaling', 'name_ar': 'تنظيف', 'name_en': 'Cleaning', 'price': '10'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('code', response.json()['details'])

    def test_reception_cannot_create(self):
        """Test only administrators manage the catalog"""
        self.client.force_login(self.reception)
        response = self.client.post(
            reverse('services:service_list'),
            data=json.dumps({'code': 'X', 'name_ar': 'س', 'name_en': 'X', 'price': '5'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 403)

    def test_update_and_deactivate(self):
        """Test editing the price, then retiring the service"""
        self.client.force_login(self.admin)
        url = reverse('services:service_detail', args=[self.scaling.pk])
        response = self.client.put(url, data=json.dumps({'price': '17.250'}), content_type='application/json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['price'], '17.250')

        response = self.client.delete(url)
        self.assertEqual(response.status_code, 200)
        self.scaling.refresh_from_db()
        self.assertFalse(self.scaling.is_active)

    def test_inactive_hidden_from_staff(self):
        """Test retired services are not found for non-admins"""
        self.client.force_login(self.reception)
        response = self.client.get(reverse('services:service_detail', args=[self.retired.pk]))
        self.assertEqual(response.status_code, 404)
