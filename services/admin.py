# services/admin.py
from django.contrib import admin

from .models import Service


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ['code', 'name_en', 'name_ar', 'price', 'duration_minutes', 'category', 'is_active']
    list_filter = ['category', 'is_active']
    search_fields = ['code', 'name_en', 'name_ar']
