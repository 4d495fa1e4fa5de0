# appointments/admin.py
from django.contrib import admin
from django.core.exceptions import ValidationError
from django.utils.html import format_html

from core.utils import to_kuwait
from .models import Appointment, Visit

STATUS_COLORS = {
    Appointment.SCHEDULED: 'gray',
    Appointment.CONFIRMED: 'blue',
    Appointment.COMPLETED: 'green',
    Appointment.CANCELLED: 'red',
    Appointment.NO_SHOW: 'orange',
}


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ['patient', 'start_local', 'duration_minutes', 'service', 'doctor', 'status_badge']
    list_filter = ['status', 'doctor', 'service', 'start']
    search_fields = ['patient__first_name', 'patient__last_name', 'patient__civil_id', 'notes']
    readonly_fields = ['created_by', 'created_at', 'updated_at']
    date_hierarchy = 'start'

    fieldsets = (
        ('Appointment Details', {
            'fields': ('patient', 'service', 'doctor', 'start', 'duration_minutes')
        }),
        ('Status', {
            'fields': ('status', 'notes')
        }),
        ('Timestamps', {
            'fields': ('created_by', 'created_at', 'updated_at'),
            'classes': ['collapse']
        }),
    )

    actions = ['confirm_selected_appointments', 'cancel_selected_appointments']

    def start_local(self, obj):
        return f'{to_kuwait(obj.start):%Y-%m-%d %H:%M}'
    start_local.short_description = 'Start (Kuwait)'
    start_local.admin_order_field = 'start'

    def status_badge(self, obj):
        return format_html('<span style="color: {};">{}</span>',
                           STATUS_COLORS.get(obj.status, 'black'), obj.get_status_display())
    status_badge.short_description = 'Status'

    def _bulk_set_status(self, request, queryset, new_status):
        changed = 0
        errors = []
        for appointment in queryset:
            try:
                appointment.set_status(new_status)
                changed += 1
            except ValidationError as e:
                errors.append(f'{appointment}: {e.messages[0]}')

        if changed:
            self.message_user(request, f'Updated {changed} appointment(s).')
        if errors:
            self.message_user(request, f"Errors: {'; '.join(errors)}", level='ERROR')

    def confirm_selected_appointments(self, request, queryset):
        self._bulk_set_status(request, queryset.filter(status=Appointment.SCHEDULED), Appointment.CONFIRMED)
    confirm_selected_appointments.short_description = 'Confirm selected appointments'

    def cancel_selected_appointments(self, request, queryset):
        self._bulk_set_status(
            request,
            queryset.filter(status__in=[Appointment.SCHEDULED, Appointment.CONFIRMED]),
            Appointment.CANCELLED,
        )
    cancel_selected_appointments.short_description = 'Cancel selected appointments'

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('patient', 'doctor', 'service')


@admin.register(Visit)
class VisitAdmin(admin.ModelAdmin):
    list_display = ['patient', 'doctor', 'visit_date', 'status', 'total_amount']
    list_filter = ['status', 'doctor', 'visit_date']
    search_fields = ['patient__first_name', 'patient__last_name', 'patient__civil_id', 'diagnosis']
    readonly_fields = ['created_by', 'created_at', 'updated_at']
    date_hierarchy = 'visit_date'

    fieldsets = (
        ('Visit', {
            'fields': ('appointment', 'patient', 'doctor', 'visit_date', 'status')
        }),
        ('Clinical Notes', {
            'fields': ('chief_complaint', 'diagnosis', 'procedures', 'tooth_map', 'doctor_notes', 'follow_up_date')
        }),
        ('Billing', {
            'fields': ('total_amount',)
        }),
        ('Timestamps', {
            'fields': ('created_by', 'created_at', 'updated_at'),
            'classes': ['collapse']
        }),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('patient', 'doctor')


# Custom admin site configuration
admin.site.site_header = "Dental Clinic Administration"
admin.site.site_title = "Dental Clinic Admin"
admin.site.index_title = "Welcome to Dental Clinic Administration"
