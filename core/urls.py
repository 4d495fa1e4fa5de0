# core/urls.py
from django.urls import path
from . import views
from .health_check import health_check

app_name = 'core'

urlpatterns = [
    path('dashboard/stats', views.dashboard_stats, name='dashboard_stats'),

    # Administration
    path('settings', views.settings_view, name='settings'),
    path('audit-logs', views.audit_log_list, name='audit_logs'),

    path('health', health_check, name='health'),
]
