"""
Timezone utility functions for consistent date/time handling across the application.
All clinic-facing dates are expressed in Asia/Kuwait time.
"""
from datetime import datetime, timedelta

import pytz
from django.utils import timezone

KUWAIT_TZ = pytz.timezone('Asia/Kuwait')


def get_kuwait_now():
    """
    Get current datetime in Kuwait timezone.

    Returns:
        datetime: Current datetime localized to Asia/Kuwait
    """
    return timezone.now().astimezone(KUWAIT_TZ)


def get_kuwait_today():
    """Get today's date in Kuwait timezone."""
    return get_kuwait_now().date()


def to_kuwait(dt):
    """
    Convert a datetime to Kuwait timezone.

    Naive datetimes are assumed to already be Kuwait wall-clock time.
    """
    if dt is None:
        return None
    if timezone.is_naive(dt):
        return KUWAIT_TZ.localize(dt)
    return dt.astimezone(KUWAIT_TZ)


def get_kuwait_date(dt):
    """Extract the Kuwait calendar date of a datetime."""
    if dt is None:
        return None
    return to_kuwait(dt).date()


def kuwait_datetime(date_obj, time_obj):
    """Combine a date and a wall-clock time into an aware Kuwait datetime."""
    return KUWAIT_TZ.localize(datetime.combine(date_obj, time_obj))


def kuwait_day_bounds(date_obj):
    """Return the aware [start, end) datetimes covering a Kuwait calendar day."""
    start = kuwait_datetime(date_obj, datetime.min.time())
    end = KUWAIT_TZ.normalize(start + timedelta(days=1))
    return start, end


def parse_date(value):
    """Parse a YYYY-MM-DD string, returning None when empty or malformed."""
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (ValueError, TypeError):
        return None
