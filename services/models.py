# services/models.py
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


class ActiveServiceManager(models.Manager):
    def get_queryset(self):
        return super().get_queryset().filter(is_active=True)


class Service(models.Model):
    CATEGORY_CHOICES = [
        ('GENERAL', 'General'),
        ('PREVENTIVE', 'Preventive'),
        ('RESTORATIVE', 'Restorative'),
        ('ENDODONTIC', 'Endodontic'),
        ('SURGICAL', 'Surgical'),
        ('COSMETIC', 'Cosmetic'),
        ('ORTHODONTIC', 'Orthodontic'),
    ]

    code = models.CharField(max_length=50, unique=True)
    name_ar = models.CharField(max_length=200)
    name_en = models.CharField(max_length=200)
    description_ar = models.TextField(blank=True)
    description_en = models.TextField(blank=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=3,
        validators=[MinValueValidator(Decimal('0.001'))],
        help_text="Price in KWD"
    )
    duration_minutes = models.PositiveIntegerField(default=30, help_text="Default appointment length in minutes")
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='GENERAL')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = models.Manager()  # Default manager
    active = ActiveServiceManager()  # Custom manager for active services only

    class Meta:
        ordering = ['code']

    def __str__(self):
        return f"{self.code} - {self.name_en}"

    def get_name(self, language='ar'):
        return self.name_ar if language == 'ar' else self.name_en

    def get_description(self, language='ar'):
        return self.description_ar if language == 'ar' else self.description_en

    def clean(self):
        """Model-level validation"""
        if self.code:
            self.code = self.code.strip().upper()
        if self.duration_minutes is not None and self.duration_minutes <= 0:
            raise ValidationError({
                'duration_minutes': ValidationError('services.duration_positive', code='duration_positive')
            })

    def save(self, *args, **kwargs):
        if self.code:
            self.code = self.code.strip().upper()
        super().save(*args, **kwargs)
