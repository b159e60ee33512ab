from datetime import date, datetime

from flask import current_app

from services.availability import booked_intervals, break_minutes, slot_is_free
from utils.timeslots import check_duration, day_key, minutes_to_time, time_to_minutes


def _first_cursor(day: date, now: datetime, open_at: int):
    if day < now.date():
        return None
    if day > now.date():
        return open_at
    # today: start from the next whole hour
    next_hour = now.hour + (1 if (now.minute or now.second or now.microsecond) else 0)
    return max(open_at, next_hour * 60)


def iter_slots(day: date, duration, practitioner: str, now: datetime = None):
    """
    Yield bookable {"start", "end"} slots for a practitioner on a day, in order.

    Candidates step forward from opening time, must finish by closing time and must
    start a full break after the previously offered slot. Stops after MAX_SLOTS_PER_DAY.
    """
    duration = check_duration(duration)
    cfg = current_app.config
    open_at = time_to_minutes(cfg.get("BUSINESS_OPEN", "09:00"))
    close_at = time_to_minutes(cfg.get("BUSINESS_CLOSE", "17:00"))
    step = int(cfg.get("SLOT_STEP_MINUTES", 15))
    cap = int(cfg.get("MAX_SLOTS_PER_DAY", 12))
    gap = break_minutes()

    cursor = _first_cursor(day, now or datetime.now(), open_at)
    if cursor is None:
        return

    intervals = booked_intervals(practitioner, day_key(day))

    emitted = 0
    last_end = None
    while cursor < close_at and emitted < cap:
        end = cursor + duration
        if end <= close_at and (last_end is None or cursor >= last_end + gap):
            if slot_is_free(cursor, end, intervals, gap):
                yield {"start": minutes_to_time(cursor), "end": minutes_to_time(end)}
                emitted += 1
                last_end = end
        cursor += step


def generate_slots(day: date, duration, practitioner: str, now: datetime = None) -> list:
    return list(iter_slots(day, duration, practitioner, now=now))
