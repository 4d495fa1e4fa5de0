# users/migrations/0002_create_default_roles.py
from django.db import migrations

ALL_ACTIONS = ['create', 'read', 'update', 'delete']

RESOURCES = ['patients', 'appointments', 'visits', 'billing', 'services',
             'reports', 'users', 'settings', 'audit', 'dashboard']

# Frozen copy of the permission matrix at the time of this migration
DEFAULT_ROLES = {
    'ADMIN': ('Administrator', {resource: list(ALL_ACTIONS) for resource in RESOURCES}),
    'DOCTOR': ('Doctor', {
        'dashboard': ['read'],
        'patients': ['create', 'read', 'update'],
        'appointments': ['read', 'update'],
        'visits': ['create', 'read', 'update'],
        'billing': ['read'],
        'services': ['read'],
    }),
    'RECEPTION': ('Reception', {
        'dashboard': ['read'],
        'patients': ['create', 'read', 'update'],
        'appointments': ['create', 'read', 'update', 'delete'],
        'visits': ['create', 'read'],
        'billing': ['create', 'read'],
        'services': ['read'],
    }),
    'ACCOUNTANT': ('Accountant', {
        'dashboard': ['read'],
        'patients': ['read'],
        'appointments': ['read'],
        'visits': ['read'],
        'billing': ['create', 'read', 'update'],
        'services': ['read'],
        'reports': ['read'],
    }),
}


def create_default_roles(apps, schema_editor):
    Role = apps.get_model('users', 'Role')
    existing = set(Role.objects.values_list('name', flat=True))
    # bulk_create sends no model signals, so nothing is audited mid-migration
    Role.objects.bulk_create([
        Role(name=name, display_name=display_name, permissions=permissions, is_default=True)
        for name, (display_name, permissions) in DEFAULT_ROLES.items()
        if name not in existing
    ])


def remove_default_roles(apps, schema_editor):
    Role = apps.get_model('users', 'Role')
    Role.objects.filter(name__in=list(DEFAULT_ROLES), is_default=True, users__isnull=True).delete()


class Migration(migrations.Migration):

    dependencies = [
        ('users', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(create_default_roles, remove_default_roles),
    ]
