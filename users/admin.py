# users/admin.py
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import Role, User


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ['name', 'display_name', 'is_default']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['username', 'full_name', 'email', 'role', 'is_active']
    list_filter = ['role', 'is_active', 'is_superuser']
    search_fields = ['username', 'full_name', 'email', 'phone']
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Clinic', {'fields': ('role', 'full_name', 'phone')}),
    )
