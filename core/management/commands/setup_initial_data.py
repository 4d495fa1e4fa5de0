from decimal import Decimal

from django.core.management.base import BaseCommand
from django.contrib.auth import get_user_model

from core.models import SystemSetting
from services.models import Service
from users.models import Role

User = get_user_model()

DEMO_PASSWORD = '123456'


class Command(BaseCommand):
    help = 'Set up initial data for the clinic: roles, demo users, services and settings'

    def add_arguments(self, parser):
        parser.add_argument('--password', default=DEMO_PASSWORD,
                            help='Password given to newly created demo users')

    def handle(self, *args, **options):
        self.stdout.write(self.style.SUCCESS('Setting up initial data...'))

        self.create_default_roles()
        self.create_demo_users(options['password'])
        self.create_default_services()
        self.create_system_settings()

        self.stdout.write(self.style.SUCCESS('Initial data setup completed!'))

    def create_default_roles(self):
        """Create the four built-in roles with default permissions"""
        self.stdout.write('Creating default roles...')

        for name, _ in Role.ROLE_CHOICES:
            existed = Role.objects.filter(name=name).exists()
            role = Role.get_default(name)
            if existed:
                self.stdout.write(f'  - Role already exists: {role.display_name}')
            else:
                self.stdout.write(f'  ✓ Created role: {role.display_name}')

    def create_demo_users(self, password):
        self.stdout.write('Creating demo users...')

        users_data = [
            ('admin', Role.ADMIN, 'System Administrator'),
            ('doctor', Role.DOCTOR, 'Dr. Demo'),
            ('reception', Role.RECEPTION, 'Reception Desk'),
            ('accountant', Role.ACCOUNTANT, 'Clinic Accountant'),
        ]

        for username, role_name, full_name in users_data:
            if User.objects.filter(username=username).exists():
                self.stdout.write(f'  - User already exists: {username}')
                continue

            user = User(username=username, full_name=full_name, role=Role.get_default(role_name))
            if role_name == Role.ADMIN:
                user.is_staff = True
                user.is_superuser = True
            user.set_password(password)
            user.save()
            self.stdout.write(f'  ✓ Created user: {username} ({role_name})')

        self.stdout.write(self.style.WARNING('    Please change the demo passwords after first login!'))

    def create_default_services(self):
        """Create default dental services"""
        self.stdout.write('Creating default services...')

        services_data = [
            {
                'code': 'SCALING',
                'name_ar': 'تنظيف الأسنان',
                'name_en': 'Teeth Scaling',
                'price': Decimal('15.000'),
                'duration_minutes': 30,
                'category': 'PREVENTIVE',
            },
            {
                'code': 'WHITENING',
                'name_ar': 'تبييض الأسنان',
                'name_en': 'Teeth Whitening',
                'price': Decimal('150.000'),
                'duration_minutes': 60,
                'category': 'COSMETIC',
            },
            {
                'code': 'ROOT_CANAL',
                'name_ar': 'علاج جذور الأسنان',
                'name_en': 'Root Canal Treatment',
                'price': Decimal('90.000'),
                'duration_minutes': 90,
                'category': 'ENDODONTIC',
            },
            {
                'code': 'FILLING',
                'name_ar': 'حشوة الأسنان',
                'name_en': 'Tooth Filling',
                'price': Decimal('25.000'),
                'duration_minutes': 45,
                'category': 'RESTORATIVE',
            },
            {
                'code': 'EXTRACTION',
                'name_ar': 'خلع الأسنان',
                'name_en': 'Tooth Extraction',
                'price': Decimal('20.000'),
                'duration_minutes': 30,
                'category': 'SURGICAL',
            },
            {
                'code': 'CONSULTATION',
                'name_ar': 'استشارة',
                'name_en': 'Consultation',
                'price': Decimal('10.000'),
                'duration_minutes': 15,
                'category': 'GENERAL',
            },
        ]

        for service_data in services_data:
            service, created = Service.objects.get_or_create(
                code=service_data['code'],
                defaults=service_data
            )
            if created:
                self.stdout.write(f'  ✓ Created service: {service.code}')
            else:
                self.stdout.write(f'  - Service already exists: {service.code}')

    def create_system_settings(self):
        self.stdout.write('Creating system settings...')
        created_count = SystemSetting.initialize_defaults()
        self.stdout.write(f'  ✓ {created_count} setting(s) created')
