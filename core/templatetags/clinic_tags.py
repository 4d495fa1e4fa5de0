# core/templatetags/clinic_tags.py
from decimal import Decimal, InvalidOperation

import arabic_reshaper
from bidi.algorithm import get_display
from django import template

from core.i18n import format_currency, format_date, format_datetime, format_time, translate

register = template.Library()


@register.filter
def shape(value):
    """
    Reshape and bidi-order Arabic text for the PDF renderer.
    Usage: {{ patient.full_name|shape }}
    """
    if value is None:
        return ''
    text = str(value)
    if not any('؀' <= ch <= 'ۿ' for ch in text):
        return text
    return get_display(arabic_reshaper.reshape(text))


@register.filter
def currency(value, lang='ar'):
    """Format amount as Kuwaiti Dinar"""
    try:
        return format_currency(Decimal(str(value)), lang)
    except (ValueError, TypeError, InvalidOperation):
        return format_currency(Decimal('0'), lang)


@register.filter
def t(key, lang='ar'):
    """Translate a catalog key: {{ 'pdf.invoice'|t:lang }}"""
    return translate(key, lang)


@register.simple_tag
def trans_with(key, lang, **params):
    """Translate with interpolation: {% trans_with 'pdf.printed_on' lang date=value %}"""
    return translate(key, lang, **params)


@register.filter
def local_date(value, lang='ar'):
    return format_date(value, lang)


@register.filter
def local_datetime(value, lang='ar'):
    return format_datetime(value, lang)


@register.filter
def local_time(value, lang='ar'):
    return format_time(value, lang)
