# patients/urls.py
from django.urls import path
from . import views

app_name = 'patients'

urlpatterns = [
    # Patient management
    path('patients', views.patient_list, name='patient_list'),
    path('patients/<int:pk>', views.patient_detail, name='patient_detail'),
    path('patients/civil-id/<str:civil_id>', views.patient_by_civil_id, name='patient_by_civil_id'),

    # Patient files
    path('patients/<int:pk>/files', views.patient_files, name='patient_files'),
    path('patients/<int:pk>/files/<int:file_id>', views.patient_file_delete, name='patient_file_delete'),
    path('patients/<int:pk>/files/<int:file_id>/download', views.patient_file_download,
         name='patient_file_download'),
]
