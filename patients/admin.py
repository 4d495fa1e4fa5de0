# patients/admin.py
from django.contrib import admin

from .models import Patient, PatientFile


class PatientFileInline(admin.TabularInline):
    model = PatientFile
    extra = 0
    fields = ['original_name', 'category', 'mime_type', 'size', 'uploaded_by', 'uploaded_at']
    readonly_fields = fields


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['civil_id', 'first_name', 'last_name', 'phone', 'is_active', 'created_at']
    list_filter = ['is_active', 'gender']
    search_fields = ['civil_id', 'first_name', 'last_name', 'phone', 'email']
    readonly_fields = ['created_by', 'created_at', 'updated_at']
    inlines = [PatientFileInline]
