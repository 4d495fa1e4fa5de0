# core/i18n.py
"""
Arabic/English translation catalogs and locale-aware formatting.

Catalogs live in core/locale/<lang>.json as nested dictionaries addressed
with dot-notation keys ("billing.invoice_not_found"). A value may be a plural
dictionary keyed by CLDR-style forms (zero/one/two/few/many/other), selected
through the ``count`` parameter.
"""
import json
import logging
import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path

from django.utils import timezone

from .utils import to_kuwait

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ('ar', 'en')
DEFAULT_LANGUAGE = 'ar'
LOCALE_DIR = Path(__file__).resolve().parent / 'locale'

# Matches "section.key" style message identifiers, not free text
MESSAGE_KEY_RE = re.compile(r'^[a-z_]+(\.[A-Za-z0-9_]+)+$')

_catalogs = {}


def get_catalog(language):
    """Load (once) and return the catalog for a language."""
    if language not in _catalogs:
        path = LOCALE_DIR / f'{language}.json'
        with open(path, encoding='utf-8') as fh:
            _catalogs[language] = json.load(fh)
    return _catalogs[language]


def normalize_language(value):
    """
    Reduce a language tag to a supported code.

    'en-US' -> 'en', 'AR' -> 'ar', anything unsupported -> None.
    """
    if not value:
        return None
    code = str(value).strip().lower().replace('_', '-').split('-')[0]
    return code if code in SUPPORTED_LANGUAGES else None


def _lookup(catalog, key):
    value = catalog
    for part in key.split('.'):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return None
    return value


def plural_form(count, language):
    """Pick the plural category for a count."""
    if language == 'ar':
        if count == 0:
            return 'zero'
        if count == 1:
            return 'one'
        if count == 2:
            return 'two'
        if 3 <= count <= 10:
            return 'few'
        return 'many'
    return 'one' if count == 1 else 'other'


def translate(key, language=DEFAULT_LANGUAGE, **params):
    """
    Translate a dot-notation key.

    Missing Arabic entries fall back to English; keys missing everywhere
    fall back to their last segment. ``{name}`` placeholders are filled
    from params.
    """
    language = normalize_language(language) or DEFAULT_LANGUAGE
    value = _lookup(get_catalog(language), key)

    if value is None and language == 'ar':
        value = _lookup(get_catalog('en'), key)

    if value is None:
        logger.warning(f'Translation missing for key: {key}')
        return key.split('.')[-1]

    if isinstance(value, dict):
        if 'count' not in params:
            return key.split('.')[-1]
        form = plural_form(int(params['count']), language)
        value = value.get(form) or value.get('other') or value.get('one') or ''

    if not isinstance(value, str):
        return key.split('.')[-1]

    for name, param_value in params.items():
        value = value.replace('{' + name + '}', str(param_value))

    return value


def localize_message(message, language, params=None):
    """
    Translate a message when it is a catalog key, otherwise return it as is.

    Used for ValidationError messages, which are catalog keys when raised by
    our models and plain (already localized) text when raised by Django.
    """
    message = str(message)
    if MESSAGE_KEY_RE.match(message):
        params = dict(params or {})
        if 'field' in params:
            params['field'] = translate(f"fields.{params['field']}", language)
        return translate(message, language, **params)
    if params:
        try:
            return message % params
        except (TypeError, ValueError, KeyError):
            return message
    return message


def get_direction(language):
    return 'rtl' if normalize_language(language) == 'ar' else 'ltr'


def is_rtl(language):
    return get_direction(language) == 'rtl'


def _quantize(amount, places='0.001'):
    if amount is None:
        amount = Decimal('0')
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return amount.quantize(Decimal(places), rounding=ROUND_HALF_UP)


def format_currency(amount, language, show_currency=True):
    """Format a Kuwaiti Dinar amount with 3 decimals."""
    formatted = f"{_quantize(amount):,.3f}"
    if not show_currency:
        return formatted
    symbol = translate('currency.symbol', language)
    if is_rtl(language):
        return f"{formatted} {symbol}"
    return f"{symbol} {formatted}"


def format_number(number, language):
    if isinstance(number, Decimal) or isinstance(number, float):
        return f"{number:,}"
    return f"{int(number):,}"


def format_date(value, language):
    """Long date, e.g. '15 March 2025' / '15 مارس 2025'."""
    if value is None:
        return ''
    if isinstance(value, datetime):
        value = to_kuwait(value).date()
    months = get_catalog(normalize_language(language) or DEFAULT_LANGUAGE)['months']
    return f"{value.day} {months[value.month - 1]} {value.year}"


def format_time(value, language, hour12=True):
    """Format the Kuwait wall-clock time of a datetime (or a time object)."""
    if value is None:
        return ''
    if isinstance(value, datetime):
        value = to_kuwait(value).time()
    if not hour12:
        return value.strftime('%H:%M')
    hour = value.hour % 12 or 12
    if is_rtl(language):
        suffix = 'ص' if value.hour < 12 else 'م'
    else:
        suffix = 'AM' if value.hour < 12 else 'PM'
    return f"{hour}:{value.minute:02d} {suffix}"


def format_datetime(value, language, include_time=True):
    if value is None:
        return ''
    if isinstance(value, date) and not isinstance(value, datetime):
        return format_date(value, language)
    text = format_date(value, language)
    if include_time:
        text = f"{text} {format_time(value, language)}"
    return text


def get_relative_time(value, language, now=None):
    """Human-readable age of a datetime: 'moments ago', '3 hours ago', ..."""
    now = now or timezone.now()
    seconds = int((now - value).total_seconds())

    if seconds < 60:
        return translate('time.moments_ago', language)
    if seconds < 3600:
        return translate('time.minutes_ago', language, count=seconds // 60)
    if seconds < 86400:
        return translate('time.hours_ago', language, count=seconds // 3600)
    if seconds < 2592000:
        return translate('time.days_ago', language, count=seconds // 86400)
    return format_date(value, language)


def get_validation_message(error, field, language):
    """Map a validation error code to a localized message for a field."""
    field_name = translate(f'fields.{field}', language)

    if error == 'required':
        return translate('validation.required_field', language, field=field_name)
    if error == 'invalid_email':
        return translate('validation.invalid_email', language)
    if error == 'invalid_phone':
        return translate('validation.invalid_phone', language)
    if error == 'min_length':
        return translate('validation.min_length', language, field=field_name)
    if error == 'max_length':
        return translate('validation.max_length', language, field=field_name)
    return translate('validation.invalid_input', language)


def get_pdf_language_config(language):
    """Font and layout parameters for PDF documents in a language."""
    rtl = is_rtl(language)
    return {
        'language': language,
        'direction': get_direction(language),
        'align': 'right' if rtl else 'left',
        'opposite_align': 'left' if rtl else 'right',
        'font': 'NotoSansArabic' if rtl else 'Helvetica',
        'font_size': 14 if rtl else 12,
        'line_height': 1.8 if rtl else 1.6,
    }
