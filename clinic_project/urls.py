# clinic_project/urls.py
from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('core.urls', namespace='core')),
    path('api/', include('users.urls', namespace='users')),
    path('api/', include('patients.urls', namespace='patients')),
    path('api/', include('services.urls', namespace='services')),
    path('api/', include('appointments.urls', namespace='appointments')),
    path('api/', include('billing.urls', namespace='billing')),
    path('api/', include('reports.urls', namespace='reports')),
]

handler404 = 'core.views.handler404'
handler500 = 'core.views.handler500'

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
