from flask import current_app

from models.appointment import Appointment
from utils.timeslots import check_duration, time_to_minutes

DEFAULT_BREAK_MINUTES = 15


def break_minutes() -> int:
    return int(current_app.config.get("BOOKING_BREAK_MINUTES", DEFAULT_BREAK_MINUTES))


def booked_intervals(practitioner: str, slot_date: str, exclude_id=None):
    """
    [(start, end), ...] in minutes for every live appointment of the practitioner that day.
    Always read from appointments, never from the PractitionerDay cache.
    """
    q = Appointment.query.filter_by(practitioner=practitioner, slot_date=slot_date, cancelled=False)
    if exclude_id is not None:
        q = q.filter(Appointment.id != exclude_id)

    intervals = []
    for appt in q.all():
        start = time_to_minutes(appt.slot_time)
        intervals.append((start, start + int(appt.duration)))
    intervals.sort()
    return intervals


def slot_is_free(start: int, end: int, intervals, gap: int = DEFAULT_BREAK_MINUTES) -> bool:
    free = True
    for booked_start, booked_end in intervals:
        overlaps = start < booked_end and end > booked_start
        # too soon after the booked appointment ends
        crowds_after = booked_end <= start < booked_end + gap
        # ends too close to the booked appointment's start
        crowds_before = booked_start - gap < end <= booked_start
        if overlaps or crowds_after or crowds_before:
            free = False
    return free


def is_practitioner_available(practitioner: str, slot_date: str, slot_time: str, duration, exclude_id=None) -> bool:
    start = time_to_minutes(slot_time)
    end = start + check_duration(duration)
    intervals = booked_intervals(practitioner, slot_date, exclude_id=exclude_id)
    return slot_is_free(start, end, intervals, break_minutes())
