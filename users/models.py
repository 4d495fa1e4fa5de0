# users/models.py
from django.contrib.auth.models import AbstractUser
from django.db import models

ALL_ACTIONS = ['create', 'read', 'update', 'delete']


class Role(models.Model):
    ADMIN = 'ADMIN'
    DOCTOR = 'DOCTOR'
    RECEPTION = 'RECEPTION'
    ACCOUNTANT = 'ACCOUNTANT'

    ROLE_CHOICES = [
        (ADMIN, 'Administrator'),
        (DOCTOR, 'Doctor'),
        (RECEPTION, 'Reception'),
        (ACCOUNTANT, 'Accountant'),
    ]

    RESOURCES = ['patients', 'appointments', 'visits', 'billing', 'services',
                 'reports', 'users', 'settings', 'audit', 'dashboard']

    # resource -> allowed actions
    DEFAULT_PERMISSIONS = {
        ADMIN: {resource: list(ALL_ACTIONS) for resource in RESOURCES},
        DOCTOR: {
            'dashboard': ['read'],
            'patients': ['create', 'read', 'update'],
            'appointments': ['read', 'update'],
            'visits': ['create', 'read', 'update'],
            'billing': ['read'],
            'services': ['read'],
        },
        RECEPTION: {
            'dashboard': ['read'],
            'patients': ['create', 'read', 'update'],
            'appointments': ['create', 'read', 'update', 'delete'],
            'visits': ['create', 'read'],
            'billing': ['create', 'read'],
            'services': ['read'],
        },
        ACCOUNTANT: {
            'dashboard': ['read'],
            'patients': ['read'],
            'appointments': ['read'],
            'visits': ['read'],
            'billing': ['create', 'read', 'update'],
            'services': ['read'],
            'reports': ['read'],
        },
    }

    name = models.CharField(max_length=20, choices=ROLE_CHOICES, unique=True)
    display_name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    permissions = models.JSONField(default=dict, help_text="Resource permissions, e.g. {'patients': ['read']}")
    is_default = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.display_name

    def allows(self, resource, action='read'):
        return action in self.permissions.get(resource, [])

    def save(self, *args, **kwargs):
        # Fill in default permissions for default roles only if permissions are empty
        if self.is_default and not self.permissions:
            self.permissions = self.DEFAULT_PERMISSIONS.get(self.name, {})
        if not self.display_name:
            self.display_name = dict(self.ROLE_CHOICES).get(self.name, self.name)
        super().save(*args, **kwargs)

    @classmethod
    def get_default(cls, name):
        """Fetch a built-in role, creating it with default permissions if missing"""
        role, _ = cls.objects.get_or_create(
            name=name,
            defaults={
                'display_name': dict(cls.ROLE_CHOICES).get(name, name),
                'permissions': cls.DEFAULT_PERMISSIONS.get(name, {}),
                'is_default': True,
            }
        )
        return role


class User(AbstractUser):

    role = models.ForeignKey(Role, on_delete=models.PROTECT, null=True, blank=True, related_name='users')
    full_name = models.CharField(max_length=200, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['username']

    def __str__(self):
        return f"{self.display_name} ({self.username})"

    @property
    def display_name(self):
        return self.full_name or self.get_full_name() or self.username

    @property
    def role_name(self):
        if self.role:
            return self.role.name
        return Role.ADMIN if self.is_superuser else None

    def has_permission(self, resource, action='read'):
        """Check if user may perform an action on a resource"""
        if not self.is_active:
            return False
        if self.is_superuser:
            return True
        if not self.role:
            return False
        return self.role.allows(resource, action)

    def has_role(self, *role_names):
        return self.role_name in role_names

    @property
    def is_doctor(self):
        return self.role_name == Role.DOCTOR

    @property
    def is_admin(self):
        return self.role_name == Role.ADMIN
