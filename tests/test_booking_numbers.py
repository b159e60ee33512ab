from services.booking_numbers import format_booking_number, next_booking_number


def test_format_is_zero_padded(app):
    assert format_booking_number(1) == "000001"
    assert format_booking_number(42) == "000042"


def test_first_booking_number(app):
    assert next_booking_number() == "000001"


def test_numbers_increase_with_each_booking(user, make_appointment):
    first = make_appointment(user, slot_time="09:00")
    second = make_appointment(user, slot_time="11:00")

    assert first.booking_number == "000001"
    assert second.booking_number == "000002"
    assert next_booking_number() == "000003"


def test_cancelled_appointments_keep_their_number(user, make_appointment):
    from services import ledger

    first = make_appointment(user, slot_time="09:00")
    ledger.cancel_appointment(first.id, requesting_user_id=user.id)

    second = make_appointment(user, slot_time="09:00")
    assert second.booking_number == "000002"


def test_deleting_newest_appointment_does_not_free_its_number(user, make_appointment):
    from services import ledger

    make_appointment(user, slot_time="09:00")
    newest = make_appointment(user, slot_time="11:00")
    assert newest.booking_number == "000002"

    ledger.delete_appointment(newest.id, authorized=True)

    third = make_appointment(user, slot_time="13:00")
    assert third.booking_number == "000003"


def test_counter_continues_from_numbers_already_issued(user, make_appointment):
    from models import db
    from models.booking_counter import BookingCounter

    make_appointment(user, slot_time="09:00")
    db.session.query(BookingCounter).delete()
    db.session.commit()

    assert next_booking_number() == "000002"
