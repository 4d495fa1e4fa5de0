# users/tests.py
"""
Tests for authentication, user management and role permissions
"""
import json

from django.core.cache import cache
from django.test import TestCase
from django.urls import reverse

from core.models import AuditLog
from .models import Role, User


def make_user(username, role_name, password='secret123', **extra):
    return User.objects.create_user(
        username=username,
        password=password,
        role=Role.get_default(role_name),
        **extra
    )


class RolePermissionTest(TestCase):
    """Test the role permission matrix"""

    def test_default_roles_exist(self):
        """Test the four built-in roles are seeded"""
        names = set(Role.objects.values_list('name', flat=True))
        self.assertTrue({Role.ADMIN, Role.DOCTOR, Role.RECEPTION, Role.ACCOUNTANT} <= names)

    def test_doctor_permissions(self):
        """Test doctors document visits but cannot manage users or bill"""
        doctor = make_user('doctor', Role.DOCTOR)
        self.assertTrue(doctor.has_permission('visits', 'create'))
        self.assertFalse(doctor.has_permission('appointments', 'create'))
        self.assertFalse(doctor.has_permission('billing', 'create'))
        self.assertFalse(doctor.has_permission('users', 'read'))
        self.assertTrue(doctor.is_doctor)

    def test_accountant_permissions(self):
        """Test accountants read reports and take payments"""
        accountant = make_user('accountant', Role.ACCOUNTANT)
        self.assertTrue(accountant.has_permission('reports', 'read'))
        self.assertTrue(accountant.has_permission('billing', 'update'))
        self.assertFalse(accountant.has_permission('patients', 'create'))

    def test_inactive_user_has_no_permissions(self):
        """Test deactivated accounts lose every permission"""
        admin = make_user('admin', Role.ADMIN, is_active=False)
        self.assertFalse(admin.has_permission('patients', 'read'))

    def test_superuser_without_role(self):
        """Test superusers act as administrators"""
        root = User.objects.create_superuser('root', 'root@clinic.com.kw', 'secret123')
        self.assertEqual(root.role_name, Role.ADMIN)
        self.assertTrue(root.has_permission('settings', 'update'))


class LoginTest(TestCase):
    """Test session login and logout"""

    def setUp(self):
        cache.clear()
        self.user = make_user('reception', Role.RECEPTION, full_name='Mona Reception')
        self.url = reverse('users:login')

    def _login(self, username, password, **extra):
        return self.client.post(self.url, data=json.dumps({'username': username, 'password': password}),
                                content_type='application/json', **extra)

    def test_login_success(self):
        """Test valid credentials return the user and a CSRF token"""
        response = self._login('reception', 'secret123', HTTP_ACCEPT_LANGUAGE='en')
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload['data']['user']['role'], Role.RECEPTION)
        self.assertIn('csrfToken', payload['data'])
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.LOGIN, user=self.user).exists())

    def test_login_wrong_password(self):
        """Test bad credentials get 401 and a failed-login audit entry"""
        response = self._login('reception', 'wrong-password')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['code'], 'INVALID_CREDENTIALS')
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.LOGIN_FAILED,
                                                object_repr='reception').exists())

    def test_login_missing_fields(self):
        """Test an empty body is a 400"""
        response = self.client.post(self.url, data=json.dumps({}), content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'MISSING_CREDENTIALS')

    def test_login_inactive_account(self):
        """Test deactivated accounts are told so"""
        self.user.is_active = False
        self.user.save()
        response = self._login('reception', 'secret123')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['code'], 'ACCOUNT_INACTIVE')

    def test_login_rate_limited(self):
        """Test the eleventh attempt within the window is refused"""
        for _ in range(10):
            self.assertEqual(self._login('reception', 'wrong-password').status_code, 401)
        response = self._login('reception', 'wrong-password')
        self.assertEqual(response.status_code, 429)
        self.assertIn('Retry-After', response)

    def test_me_and_logout(self):
        """Test the session identifies the user until logout"""
        self._login('reception', 'secret123')
        response = self.client.get(reverse('users:me'))
        self.assertEqual(response.json()['data']['username'], 'reception')

        response = self.client.post(reverse('users:logout'))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.LOGOUT, user=self.user).exists())
        self.assertEqual(self.client.get(reverse('users:me')).status_code, 401)

    def test_csrf_token_endpoint(self):
        """Test anonymous clients can fetch a CSRF token"""
        response = self.client.get(reverse('users:csrf_token'))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['csrfToken'])


class UserManagementTest(TestCase):
    """Test the user administration endpoints"""

    def setUp(self):
        cache.clear()
        self.admin = make_user('admin', Role.ADMIN)
        self.doctor = make_user('doctor', Role.DOCTOR, full_name='Dr. Sara')
        self.client.force_login(self.admin)

    def test_create_user(self):
        """Test creating a user with a role"""
        response = self.client.post(
            reverse('users:user_list'),
            data=json.dumps({'username': 'acc', 'password': 'secret123', 'role': Role.ACCOUNTANT,
                             'full_name': 'Khaled'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 201)
        user = User.objects.get(username='acc')
        self.assertEqual(user.role_name, Role.ACCOUNTANT)
        self.assertTrue(user.check_password('secret123'))

    def test_short_password_rejected(self):
        """Test passwords shorter than six characters"""
        response = self.client.post(
            reverse('users:user_list'),
            data=json.dumps({'username': 'acc', 'password': '123', 'role': Role.ACCOUNTANT}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('password', response.json()['details'])

    def test_duplicate_username_rejected(self):
        """Test usernames are unique regardless of case"""
        response = self.client.post(
            reverse('users:user_list'),
            data=json.dumps({'username': 'Doctor', 'password': 'secret123', 'role': Role.DOCTOR}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('username', response.json()['details'])

    def test_update_user_role(self):
        """Test changing a user's role"""
        response = self.client.put(
            reverse('users:user_detail', args=[self.doctor.pk]),
            data=json.dumps({'role': Role.RECEPTION}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 200)
        self.doctor.refresh_from_db()
        self.assertEqual(self.doctor.role_name, Role.RECEPTION)
        self.assertEqual(self.doctor.full_name, 'Dr. Sara')

    def test_cannot_delete_self(self):
        """Test administrators cannot deactivate their own account"""
        response = self.client.delete(reverse('users:user_detail', args=[self.admin.pk]))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'CANNOT_DELETE_SELF')

    def test_delete_deactivates(self):
        """Test deleting a user keeps the row but deactivates it"""
        response = self.client.delete(reverse('users:user_detail', args=[self.doctor.pk]))
        self.assertEqual(response.status_code, 200)
        self.doctor.refresh_from_db()
        self.assertFalse(self.doctor.is_active)

    def test_reset_password_generates_temporary(self):
        """Test a blank reset returns a generated password and hides it in the audit log"""
        response = self.client.post(reverse('users:reset_user_password', args=[self.doctor.pk]),
                                    data=json.dumps({}), content_type='application/json')
        self.assertEqual(response.status_code, 200)
        temporary = response.json()['data']['temporary_password']
        self.doctor.refresh_from_db()
        self.assertTrue(self.doctor.check_password(temporary))

        log = AuditLog.objects.get(action=AuditLog.PASSWORD_RESET)
        self.assertEqual(log.new_values, {'password': AuditLog.HIDDEN_VALUE})
        self.assertNotIn(temporary, json.dumps(log.new_values))

    def test_reset_password_rate_limited(self):
        """Test the sixth reset within the window is refused"""
        url = reverse('users:reset_user_password', args=[self.doctor.pk])
        for _ in range(5):
            response = self.client.post(url, data=json.dumps({'password': 'newpass1'}),
                                        content_type='application/json')
            self.assertEqual(response.status_code, 200)
        response = self.client.post(url, data=json.dumps({'password': 'newpass1'}),
                                    content_type='application/json')
        self.assertEqual(response.status_code, 429)

    def test_non_admin_forbidden(self):
        """Test doctors cannot list users"""
        self.client.force_login(self.doctor)
        response = self.client.get(reverse('users:user_list'))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['code'], 'ACCESS_DENIED')

    def test_doctor_list_for_any_role(self):
        """Test every logged-in user can list doctors"""
        self.client.force_login(make_user('reception', Role.RECEPTION))
        response = self.client.get(reverse('users:doctor_list'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual([d['full_name'] for d in response.json()['data']], ['Dr. Sara'])
