# billing/admin.py
from django.contrib import admin
from django.utils.html import format_html

from .models import Invoice, InvoiceItem, Payment


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 1
    fields = ['service', 'description', 'quantity', 'unit_price', 'total_price']
    readonly_fields = ['total_price']


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    fields = ['receipt_number', 'amount', 'payment_method', 'payment_date', 'received_by']
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['invoice_number', 'patient', 'issue_date', 'total_amount', 'paid_amount',
                    'balance_display', 'payment_status', 'is_active']
    list_filter = ['payment_status', 'is_active', 'issue_date']
    search_fields = ['invoice_number', 'patient__first_name', 'patient__last_name', 'patient__civil_id']
    readonly_fields = ['invoice_number', 'subtotal', 'total_amount', 'paid_amount', 'payment_status',
                       'created_by', 'created_at', 'updated_at']
    date_hierarchy = 'issue_date'
    inlines = [InvoiceItemInline, PaymentInline]

    fieldsets = (
        ('Invoice', {
            'fields': ('invoice_number', 'patient', 'visit', 'issue_date', 'due_date')
        }),
        ('Amounts', {
            'fields': ('subtotal', 'discount_amount', 'tax_amount', 'total_amount', 'paid_amount', 'payment_status')
        }),
        ('Notes', {
            'fields': ('notes', 'is_active')
        }),
        ('Metadata', {
            'fields': ('created_by', 'created_at', 'updated_at'),
            'classes': ['collapse']
        }),
    )

    def balance_display(self, obj):
        balance = obj.outstanding_balance
        if balance <= 0:
            return format_html('<span style="color: green;">{} (Paid)</span>', balance)
        if obj.is_overdue:
            return format_html('<span style="color: red;">{} (Overdue)</span>', balance)
        return balance
    balance_display.short_description = 'Balance'

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        form.instance.recalculate_totals()

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('patient')


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['receipt_number', 'invoice', 'amount', 'payment_method', 'payment_date', 'received_by']
    list_filter = ['payment_method', 'payment_date']
    search_fields = ['receipt_number', 'transaction_id', 'invoice__invoice_number']
    readonly_fields = ['receipt_number', 'created_at']
    date_hierarchy = 'payment_date'

    def has_change_permission(self, request, obj=None):
        # Payments go through Invoice.add_payment so balances stay consistent
        return False

    def has_add_permission(self, request):
        return False

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('invoice', 'received_by')
