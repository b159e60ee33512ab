from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import DAY_KEY, PRACTITIONER
from models import db
from models.appointment import PaymentStatus
from services import ledger, payments
from services.errors import (
    AppointmentNotFound,
    BookingNumberConflict,
    InvalidTimeFormat,
    NotEligible,
    SlotConflict,
    TreatmentUnavailable,
    Unauthorized,
    ValidationError,
)
from services.ledger import PaymentRecord


def test_create_appointment_prices_from_treatment(user, treatment, make_appointment):
    appt = make_appointment(user, slot_time="9:30", duration=60)

    assert appt.amount == Decimal("800.00")
    assert appt.paid_amount == Decimal("0.00")
    assert appt.payment_status == PaymentStatus.NONE.value
    assert appt.slot_time == "09:30"
    assert appt.slot_date == DAY_KEY
    assert appt.user_snapshot["email"] == user.email
    assert appt.treatment_snapshot["name"] == treatment.name
    assert "price_list" not in appt.treatment_snapshot
    assert ledger.practitioner_bookings(PRACTITIONER, DAY_KEY) == ["09:30"]


def test_snapshots_do_not_follow_later_edits(user, treatment, make_appointment):
    appt = make_appointment(user)

    user.full_name = "Someone Else"
    treatment.name = "Renamed"
    db.session.commit()

    fresh = ledger.get_appointment(appt.id)
    assert fresh.user_snapshot["name"] == "Lerato Mokoena"
    assert fresh.treatment_snapshot["name"] == "Swedish Massage"


def test_overlapping_booking_is_rejected(make_user, make_appointment):
    first = make_user()
    second = make_user()
    make_appointment(first, slot_time="10:00", duration=30)

    with pytest.raises(SlotConflict) as exc:
        make_appointment(second, slot_time="10:00", duration=60)
    assert exc.value.retryable
    assert ledger.practitioner_bookings(PRACTITIONER, DAY_KEY) == ["10:00"]


def test_amount_must_match_price(user, treatment):
    with pytest.raises(ValidationError):
        ledger.create_appointment(user.id, treatment.id, DAY_KEY, "10:00", 30, PRACTITIONER, "full", amount="450")

    appt = ledger.create_appointment(user.id, treatment.id, DAY_KEY, "10:00", 30, PRACTITIONER, "full", amount="500")
    assert appt.amount == Decimal("500.00")


@pytest.mark.parametrize("kwargs,error", [
    ({"duration": 45}, ValidationError),           # no price for 45 minutes
    ({"payment_type": "balance"}, ValidationError),
    ({"slot_time": "16:45"}, ValidationError),      # runs past closing
    ({"slot_time": "08:30"}, ValidationError),      # before opening
    ({"slot_time": "10h00"}, InvalidTimeFormat),
    ({"slot_date": "2030-06-05"}, ValidationError),
    ({"practitioner": "  "}, ValidationError),
])
def test_invalid_booking_requests(user, make_appointment, kwargs, error):
    with pytest.raises(error):
        make_appointment(user, **kwargs)
    assert ledger.list_user_appointments(user.id) == []


def test_unavailable_treatment(user, make_treatment, make_appointment):
    hidden = make_treatment(name="Retired", available=False)
    with pytest.raises(TreatmentUnavailable):
        make_appointment(user, treatment_id=hidden.id)


def test_booking_retries_once_after_storage_conflict(app):
    work = MagicMock(side_effect=[IntegrityError("INSERT", {}, Exception("duplicate")), "booked"])

    assert ledger.run_booking_unit(work) == "booked"
    assert work.call_count == 2


def test_booking_gives_up_after_second_conflict(app):
    work = MagicMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate")))

    with pytest.raises(BookingNumberConflict):
        ledger.run_booking_unit(work)
    assert work.call_count == 2


@pytest.mark.parametrize("message", [
    "UNIQUE constraint failed: practitioner_days.practitioner, practitioner_days.slot_date",
    'duplicate key value violates unique constraint "uq_practitioner_day"',
])
def test_racing_first_bookings_of_a_day_report_slot_conflict(app, message):
    work = MagicMock(side_effect=IntegrityError("INSERT", {}, Exception(message)))

    with pytest.raises(SlotConflict):
        ledger.run_booking_unit(work)
    assert work.call_count == 2


def test_append_transaction_moves_paid_amount(user, make_appointment):
    appt = make_appointment(user)

    ledger.append_transaction(appt, PaymentRecord(amount="250", payment_type="partial", payment_method="cash"))
    assert appt.paid_amount == Decimal("250.00")
    assert appt.payment_status == PaymentStatus.PARTIAL.value

    ledger.append_transaction(appt, PaymentRecord(amount="250", payment_type="balance", payment_method="speed_point"))
    db.session.commit()

    assert appt.paid_amount == Decimal("500.00")
    assert appt.payment_status == PaymentStatus.FULL.value
    assert [t.payment_type for t in appt.transactions] == ["partial", "balance"]
    assert appt.transactions[0].reference.startswith("CASH_")


def test_payment_record_rejects_unknown_variants():
    with pytest.raises(ValueError):
        PaymentRecord(amount="10", payment_type="tip", payment_method="cash")
    with pytest.raises(ValueError):
        PaymentRecord(amount="10", payment_type="full", payment_method="bitcoin")


def test_client_cancels_own_appointment_only(make_user, make_appointment):
    owner = make_user()
    stranger = make_user()
    appt = make_appointment(owner)

    with pytest.raises(Unauthorized):
        ledger.cancel_appointment(appt.id, requesting_user_id=stranger.id)

    cancelled = ledger.cancel_appointment(appt.id, requesting_user_id=owner.id)
    assert cancelled.cancelled
    assert cancelled.cancelled_at is not None
    assert ledger.practitioner_bookings(PRACTITIONER, DAY_KEY) == []

    # second cancel is a no-op
    again = ledger.cancel_appointment(appt.id, requesting_user_id=owner.id)
    assert again.cancelled_at == cancelled.cancelled_at


def test_cancel_unknown_appointment(app):
    with pytest.raises(AppointmentNotFound):
        ledger.cancel_appointment(999, authorized=True)


def test_complete_requires_staff_and_a_payment(user, staff, make_appointment):
    appt = make_appointment(user)

    with pytest.raises(Unauthorized):
        ledger.complete_appointment(appt.id)
    with pytest.raises(NotEligible):
        ledger.complete_appointment(appt.id, authorized=True, actor_id=staff.id)

    payments.record_immediate_payment(appt.id, "cash", "partial", authorized=True, actor_id=staff.id)
    done = ledger.complete_appointment(appt.id, authorized=True, actor_id=staff.id)
    assert done.is_completed
    assert done.completed_at is not None

    with pytest.raises(NotEligible):
        ledger.cancel_appointment(appt.id, authorized=True)


def test_cancelled_appointment_cannot_be_completed(user, make_appointment):
    appt = make_appointment(user)
    ledger.cancel_appointment(appt.id, authorized=True)

    with pytest.raises(NotEligible):
        ledger.complete_appointment(appt.id, authorized=True)


def test_delete_appointment(user, staff, make_appointment):
    appt = make_appointment(user)
    appt_id = appt.id

    with pytest.raises(Unauthorized):
        ledger.delete_appointment(appt_id)

    ledger.delete_appointment(appt_id, authorized=True, actor_id=staff.id)
    with pytest.raises(AppointmentNotFound):
        ledger.get_appointment(appt_id)
    assert ledger.practitioner_bookings(PRACTITIONER, DAY_KEY) == []


def test_list_appointments_filters(make_user, make_appointment):
    a = make_appointment(make_user(), slot_time="09:00")
    b = make_appointment(make_user(), slot_time="11:00")
    ledger.cancel_appointment(b.id, authorized=True)

    assert [x.id for x in ledger.list_appointments(status="cancelled")] == [b.id]
    assert [x.id for x in ledger.list_appointments(status="active")] == [a.id]
    assert len(ledger.list_appointments(practitioner=PRACTITIONER, slot_date=DAY_KEY)) == 2
    assert ledger.list_appointments(practitioner="Thandi") == []
