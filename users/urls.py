# users/urls.py
from django.urls import path
from . import views

app_name = 'users'

urlpatterns = [
    # Authentication
    path('csrf-token', views.csrf_token, name='csrf_token'),
    path('auth/login', views.login_view, name='login'),
    path('auth/logout', views.logout_view, name='logout'),
    path('auth/me', views.me, name='me'),

    # User management
    path('users', views.user_list, name='user_list'),
    path('users/<int:pk>', views.user_detail, name='user_detail'),
    path('users/<int:pk>/reset-password', views.reset_user_password, name='reset_user_password'),
    path('doctors', views.doctor_list, name='doctor_list'),
]
