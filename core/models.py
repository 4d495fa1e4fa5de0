# core/models.py
from datetime import datetime
from decimal import Decimal, InvalidOperation

from django.db import models


class SystemSetting(models.Model):
    """Key-value clinic settings grouped by category"""
    CATEGORY_CHOICES = [
        ('general', 'General'),
        ('clinic', 'Clinic Information'),
        ('scheduling', 'Scheduling'),
        ('billing', 'Billing'),
    ]

    # key: (value, category, description)
    DEFAULTS = {
        'clinic_name_ar': ('عيادة الأسنان', 'clinic', 'Clinic name in Arabic'),
        'clinic_name_en': ('Dental Clinic', 'clinic', 'Clinic name in English'),
        'clinic_address_ar': ('الكويت', 'clinic', 'Clinic address in Arabic'),
        'clinic_address_en': ('Kuwait', 'clinic', 'Clinic address in English'),
        'clinic_phone': ('+965 2222 2222', 'clinic', 'Clinic phone number'),
        'clinic_email': ('info@clinic.com.kw', 'clinic', 'Clinic contact email'),
        'working_days': ('0,1,2,3,5,6', 'scheduling', 'Working weekdays (Mon=0 ... Sun=6), Friday off'),
        'working_hours_start': ('09:00', 'scheduling', 'Opening time'),
        'working_hours_end': ('17:00', 'scheduling', 'Closing time'),
        'slot_duration': ('30', 'scheduling', 'Appointment slot length in minutes'),
        'tax_rate': ('0', 'billing', 'Default tax rate (percent) applied to new invoices'),
        'invoice_due_days': ('30', 'billing', 'Days until an invoice falls due'),
    }

    key = models.CharField(max_length=100, unique=True)
    value = models.TextField()
    description = models.TextField(blank=True)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='general')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'System Setting'
        verbose_name_plural = 'System Settings'
        ordering = ['category', 'key']

    def __str__(self):
        return f"{self.key}: {self.value}"

    @classmethod
    def _default(cls, key, default):
        if default is None and key in cls.DEFAULTS:
            return cls.DEFAULTS[key][0]
        return default

    @classmethod
    def get_setting(cls, key, default=None):
        """Get a setting value by key"""
        try:
            setting = cls.objects.get(key=key, is_active=True)
            return setting.value
        except cls.DoesNotExist:
            return cls._default(key, default)

    @classmethod
    def get_int_setting(cls, key, default=None):
        """Get an integer setting value"""
        try:
            return int(cls.get_setting(key, default))
        except (TypeError, ValueError):
            return int(cls._default(key, default) or 0)

    @classmethod
    def get_decimal_setting(cls, key, default=None):
        """Get a decimal setting value"""
        try:
            return Decimal(str(cls.get_setting(key, default)))
        except (TypeError, InvalidOperation):
            return Decimal(str(cls._default(key, default) or '0'))

    @classmethod
    def get_bool_setting(cls, key, default=False):
        """Get a boolean setting value"""
        try:
            setting = cls.objects.get(key=key, is_active=True)
            return setting.value.lower() in ('true', '1', 'yes', 'on')
        except cls.DoesNotExist:
            return default

    @classmethod
    def get_time_setting(cls, key, default=None):
        """Get a time setting value (HH:MM)"""
        try:
            return datetime.strptime(cls.get_setting(key, default), '%H:%M').time()
        except (TypeError, ValueError):
            fallback = cls._default(key, default)
            return datetime.strptime(fallback, '%H:%M').time() if fallback else None

    @classmethod
    def get_list_setting(cls, key, default=None):
        """Get a comma separated setting as a list of strings"""
        value = cls.get_setting(key, default) or ''
        return [item.strip() for item in value.split(',') if item.strip()]

    @classmethod
    def set_setting(cls, key, value, description='', category=None):
        """Set or update a setting"""
        if category is None:
            category = cls.DEFAULTS.get(key, (None, 'general'))[1]
        setting, created = cls.objects.get_or_create(
            key=key,
            defaults={
                'value': str(value),
                'description': description,
                'category': category,
                'is_active': True
            }
        )
        if not created:
            setting.value = str(value)
            if description:
                setting.description = description
            setting.is_active = True
            setting.save()
        return setting

    @classmethod
    def initialize_defaults(cls):
        """Create any missing default settings. Returns the number created."""
        created_count = 0
        for key, (value, category, description) in cls.DEFAULTS.items():
            _, created = cls.objects.get_or_create(
                key=key,
                defaults={
                    'value': value,
                    'category': category,
                    'description': description,
                    'is_active': True
                }
            )
            if created:
                created_count += 1
        return created_count

    @classmethod
    def get_clinic_info(cls, language='ar'):
        """Clinic header details in the requested language"""
        suffix = 'ar' if language == 'ar' else 'en'
        return {
            'name': cls.get_setting(f'clinic_name_{suffix}'),
            'address': cls.get_setting(f'clinic_address_{suffix}'),
            'phone': cls.get_setting('clinic_phone'),
            'email': cls.get_setting('clinic_email'),
        }


class AuditLog(models.Model):
    """Audit trail of user actions with before/after values"""
    LOGIN = 'LOGIN'
    LOGOUT = 'LOGOUT'
    LOGIN_FAILED = 'LOGIN_FAILED'
    CREATE = 'CREATE'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'
    STATUS_UPDATE = 'STATUS_UPDATE'
    PASSWORD_RESET = 'PASSWORD_RESET'

    ACTION_CHOICES = [
        (LOGIN, 'Login'),
        (LOGOUT, 'Logout'),
        (LOGIN_FAILED, 'Login Failed'),
        (CREATE, 'Create'),
        (UPDATE, 'Update'),
        (DELETE, 'Delete'),
        (STATUS_UPDATE, 'Status Update'),
        (PASSWORD_RESET, 'Password Reset'),
    ]

    HIDDEN_VALUE = '[HIDDEN]'
    SENSITIVE_FIELDS = ('password',)

    # User and action info
    user = models.ForeignKey('users.User', on_delete=models.SET_NULL, null=True, blank=True,
                             related_name='audit_logs')
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)

    # Record info
    table_name = models.CharField(max_length=100)
    record_id = models.CharField(max_length=64, blank=True)
    object_repr = models.CharField(max_length=200, blank=True)

    # Change details
    old_values = models.JSONField(null=True, blank=True)
    new_values = models.JSONField(null=True, blank=True)
    description = models.TextField(blank=True)

    # Request info
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True)

    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['user', 'timestamp'], name='audit_user_time_idx'),
            models.Index(fields=['table_name', 'timestamp'], name='audit_table_time_idx'),
            models.Index(fields=['action', 'timestamp'], name='audit_action_time_idx'),
            models.Index(fields=['timestamp'], name='audit_time_idx'),
        ]
        verbose_name = 'Audit Log'
        verbose_name_plural = 'Audit Logs'

    def __str__(self):
        user_str = self.user.username if self.user else 'Anonymous'
        return f"{user_str} {self.action} {self.table_name} at {self.timestamp}"

    @property
    def changed_fields(self):
        """Get list of changed field names"""
        return list((self.new_values or {}).keys()) if self.action == self.UPDATE else []

    def _attach_request(self, request):
        if request is not None:
            self.ip_address = self.get_client_ip(request)
            self.user_agent = request.META.get('HTTP_USER_AGENT', '')[:255]

    @classmethod
    def log_action(cls, user, action, model_instance, old_values=None, new_values=None,
                   request=None, description=''):
        """
        Log an action against a model instance

        Args:
            user: User who performed the action (can be None for anonymous)
            action: One of ACTION_CHOICES
            model_instance: The model instance that was changed
            old_values / new_values: Dicts of field values before and after
            request: HttpRequest object for IP/user agent
            description: Human-readable description
        """
        log_entry = cls(
            user=user if user is not None and user.is_authenticated else None,
            action=action,
            table_name=model_instance._meta.db_table,
            record_id=str(model_instance.pk or ''),
            object_repr=str(model_instance)[:200],
            old_values=cls.mask_sensitive(old_values),
            new_values=cls.mask_sensitive(new_values),
            description=description
        )
        log_entry._attach_request(request)
        log_entry.save()
        return log_entry

    @classmethod
    def log_login(cls, user, request, success=True, username=''):
        """Log login attempts"""
        log_entry = cls(
            user=user if success else None,
            action=cls.LOGIN if success else cls.LOGIN_FAILED,
            table_name='users',
            record_id=str(user.pk) if user else '',
            object_repr=user.username if user else (username or 'Unknown'),
            description='User logged in successfully' if success else f'Failed login attempt for {username or "unknown user"}'
        )
        log_entry._attach_request(request)
        log_entry.save()
        return log_entry

    @classmethod
    def log_logout(cls, user, request):
        """Log logout"""
        log_entry = cls(
            user=user,
            action=cls.LOGOUT,
            table_name='users',
            record_id=str(user.pk),
            object_repr=user.username,
            description='User logged out'
        )
        log_entry._attach_request(request)
        log_entry.save()
        return log_entry

    @staticmethod
    def get_client_ip(request):
        """Get client IP address from request"""
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            ip = x_forwarded_for.split(',')[0].strip()
        else:
            ip = request.META.get('REMOTE_ADDR')
        return ip or None

    @classmethod
    def mask_sensitive(cls, values):
        if not values:
            return values
        return {
            key: (cls.HIDDEN_VALUE if key in cls.SENSITIVE_FIELDS else value)
            for key, value in values.items()
        }

    @staticmethod
    def format_field_value(value):
        """Make a field value JSON friendly"""
        if value is None or isinstance(value, (bool, int, float, str, list, dict)):
            return value
        if isinstance(value, Decimal):
            return str(value)
        if hasattr(value, 'isoformat'):
            return value.isoformat()
        if isinstance(value, models.Model):
            return value.pk
        return str(value)

    @classmethod
    def snapshot(cls, instance, fields_to_ignore=None):
        """Dict of concrete field values for an instance"""
        if fields_to_ignore is None:
            fields_to_ignore = ['updated_at', 'created_at', 'last_login']
        values = {}
        for field in instance._meta.concrete_fields:
            if field.name in fields_to_ignore:
                continue
            values[field.name] = cls.format_field_value(getattr(instance, field.attname, None))
        return cls.mask_sensitive(values)

    @classmethod
    def get_field_changes(cls, old_instance, new_instance, fields_to_ignore=None):
        """
        Compare two model instances

        Returns:
            Tuple (old_values, new_values) restricted to changed fields
        """
        old_snapshot = cls.snapshot(old_instance, fields_to_ignore)
        new_snapshot = cls.snapshot(new_instance, fields_to_ignore)

        old_values = {}
        new_values = {}
        for field_name, new_value in new_snapshot.items():
            old_value = old_snapshot.get(field_name)
            raw_old = getattr(old_instance, new_instance._meta.get_field(field_name).attname, None)
            raw_new = getattr(new_instance, new_instance._meta.get_field(field_name).attname, None)
            if raw_old != raw_new:
                old_values[field_name] = old_value
                new_values[field_name] = new_value
        return old_values, new_values
