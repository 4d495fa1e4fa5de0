# reports/urls.py
from django.urls import path
from . import views

app_name = 'reports'

urlpatterns = [
    path('reports/revenue', views.revenue_report, name='revenue_report'),
]
