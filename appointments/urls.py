# appointments/urls.py
from django.urls import path
from . import views

app_name = 'appointments'

urlpatterns = [
    # Appointments
    path('appointments', views.appointment_list, name='appointment_list'),
    path('appointments/today', views.appointments_today, name='appointments_today'),
    path('appointments/available-slots', views.available_slots, name='available_slots'),
    path('appointments/<int:pk>', views.appointment_detail, name='appointment_detail'),
    path('appointments/<int:pk>/status', views.appointment_status, name='appointment_status'),

    # Visits
    path('visits', views.visit_list, name='visit_list'),
    path('visits/start/<int:appointment_id>', views.visit_start, name='visit_start'),
    path('visits/<int:pk>', views.visit_detail, name='visit_detail'),
    path('visits/<int:pk>/invoice', views.visit_invoice, name='visit_invoice'),
    path('visits/<int:pk>/summary.pdf', views.visit_summary_pdf, name='visit_summary_pdf'),
]
