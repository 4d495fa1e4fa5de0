# appointments/utils.py - Working hours and slot utilities
from datetime import timedelta

from core.utils import get_kuwait_now, kuwait_datetime, to_kuwait


class AppointmentConfig:
    """Helper class for appointment-related configuration"""

    @classmethod
    def get_working_days(cls):
        """Working weekdays as Python weekday numbers (Monday=0)"""
        from core.models import SystemSetting
        days = []
        for value in SystemSetting.get_list_setting('working_days'):
            try:
                days.append(int(value))
            except (TypeError, ValueError):
                continue
        return days

    @classmethod
    def get_working_hours(cls):
        """Tuple of (start time, end time) for the clinic day"""
        from core.models import SystemSetting
        return (
            SystemSetting.get_time_setting('working_hours_start'),
            SystemSetting.get_time_setting('working_hours_end'),
        )

    @classmethod
    def get_slot_duration(cls):
        from core.models import SystemSetting
        return SystemSetting.get_int_setting('slot_duration', 30) or 30

    @classmethod
    def check_working_hours(cls, start, duration_minutes):
        """
        Check that [start, start + duration) falls inside one working day.

        Returns:
            tuple: (ok, message_key, params)
        """
        local_start = to_kuwait(start)
        local_end = local_start + timedelta(minutes=duration_minutes)

        if local_start.weekday() not in cls.get_working_days():
            return False, 'appointments.non_working_day', {}

        open_time, close_time = cls.get_working_hours()
        params = {'start': open_time.strftime('%H:%M'), 'end': close_time.strftime('%H:%M')}

        day_open = kuwait_datetime(local_start.date(), open_time)
        day_close = kuwait_datetime(local_start.date(), close_time)
        if local_start < day_open or local_end > day_close:
            return False, 'appointments.outside_working_hours', params

        return True, '', {}


def get_available_slots(doctor, date_obj, duration_minutes=None):
    """
    Get bookable start times for a doctor on a given date

    Args:
        doctor: User instance with the doctor role
        date_obj: date object (Kuwait local)
        duration_minutes: Length of the appointment; defaults to the slot duration

    Returns:
        list: List of aware datetimes, one per free slot
    """
    from .models import Appointment

    if date_obj.weekday() not in AppointmentConfig.get_working_days():
        return []

    step = AppointmentConfig.get_slot_duration()
    duration_minutes = duration_minutes or step
    open_time, close_time = AppointmentConfig.get_working_hours()
    day_open = kuwait_datetime(date_obj, open_time)
    day_close = kuwait_datetime(date_obj, close_time)

    booked = list(Appointment.objects.filter(
        doctor=doctor,
        status__in=Appointment.BLOCKING_STATUSES,
        start__lt=day_close,
        start__gte=day_open - timedelta(days=1),
    ))

    now = get_kuwait_now()
    slots = []
    current = day_open
    while current + timedelta(minutes=duration_minutes) <= day_close:
        end = current + timedelta(minutes=duration_minutes)
        # Past times of today are never offered
        if current > now and not any(a.start < end and current < a.end for a in booked):
            slots.append(current)
        current += timedelta(minutes=step)

    return slots

