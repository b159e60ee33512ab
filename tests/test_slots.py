from datetime import date, datetime

from conftest import BOOKING_DAY, PRACTITIONER
from services.slots import generate_slots, iter_slots

BEFORE_BOOKING_DAY = datetime(2030, 6, 1, 8, 0)


def _starts(slots):
    return [s["start"] for s in slots]


def test_free_day_steps_forward_with_breaks(app):
    slots = generate_slots(BOOKING_DAY, 60, PRACTITIONER, now=BEFORE_BOOKING_DAY)

    assert _starts(slots) == ["09:00", "10:15", "11:30", "12:45", "14:00", "15:15"]
    assert slots[0] == {"start": "09:00", "end": "10:00"}
    # last slot must still finish by closing time
    assert slots[-1]["end"] <= "17:00"


def test_slots_capped_per_day(app):
    slots = generate_slots(BOOKING_DAY, 15, PRACTITIONER, now=BEFORE_BOOKING_DAY)

    assert len(slots) == 12
    assert slots[0]["start"] == "09:00"
    assert slots[-1]["start"] == "14:30"


def test_past_day_has_no_slots(app):
    assert generate_slots(date(2030, 5, 31), 60, PRACTITIONER, now=BEFORE_BOOKING_DAY) == []


def test_today_starts_at_next_whole_hour(app):
    slots = generate_slots(BOOKING_DAY, 60, PRACTITIONER, now=datetime(2030, 6, 5, 10, 20))
    assert slots[0]["start"] == "11:00"

    slots = generate_slots(BOOKING_DAY, 60, PRACTITIONER, now=datetime(2030, 6, 5, 10, 0))
    assert slots[0]["start"] == "10:00"


def test_today_after_closing_has_no_slots(app):
    assert generate_slots(BOOKING_DAY, 30, PRACTITIONER, now=datetime(2030, 6, 5, 16, 30)) == []


def test_booked_appointment_is_skipped(user, make_appointment):
    make_appointment(user, slot_time="10:00", duration=60)

    slots = generate_slots(BOOKING_DAY, 60, PRACTITIONER, now=BEFORE_BOOKING_DAY)

    assert _starts(slots) == ["11:15", "12:30", "13:45", "15:00"]


def test_iter_slots_is_lazy(app):
    gen = iter_slots(BOOKING_DAY, 30, PRACTITIONER, now=BEFORE_BOOKING_DAY)
    assert next(gen) == {"start": "09:00", "end": "09:30"}
    assert next(gen) == {"start": "09:45", "end": "10:15"}
