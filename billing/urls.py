# billing/urls.py
from django.urls import path
from . import views

app_name = 'billing'

urlpatterns = [
    # Invoices
    path('invoices', views.invoice_list, name='invoice_list'),
    path('invoices/pending', views.invoice_pending, name='invoice_pending'),
    path('invoices/<int:pk>', views.invoice_detail, name='invoice_detail'),
    path('invoices/<int:pk>/pdf', views.invoice_pdf, name='invoice_pdf'),

    # Payments
    path('payments', views.payment_list, name='payment_list'),
    path('payments/<int:pk>/receipt.pdf', views.payment_receipt_pdf, name='payment_receipt_pdf'),
]
