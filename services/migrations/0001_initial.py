# services/migrations/0001_initial.py
from decimal import Decimal

import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='Service',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=50, unique=True)),
                ('name_ar', models.CharField(max_length=200)),
                ('name_en', models.CharField(max_length=200)),
                ('description_ar', models.TextField(blank=True)),
                ('description_en', models.TextField(blank=True)),
                ('price', models.DecimalField(decimal_places=3, help_text='Price in KWD', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.001'))])),
                ('duration_minutes', models.PositiveIntegerField(default=30, help_text='Default appointment length in minutes')),
                ('category', models.CharField(choices=[('GENERAL', 'General'), ('PREVENTIVE', 'Preventive'), ('RESTORATIVE', 'Restorative'), ('ENDODONTIC', 'Endodontic'), ('SURGICAL', 'Surgical'), ('COSMETIC', 'Cosmetic'), ('ORTHODONTIC', 'Orthodontic')], default='GENERAL', max_length=20)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['code'],
            },
        ),
    ]
