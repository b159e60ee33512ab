from decimal import Decimal

import pytest

from conftest import DAY_KEY, PRACTITIONER
from models import db
from services import credit as credit_ledger
from services import ledger, payments
from services.errors import InsufficientCredit, InvalidAmount, NotEligible, Unauthorized, UserNotFound


def _partially_paid(user, staff, treatment):
    return payments.admin_book_appointment(
        user.id, treatment.id, DAY_KEY, "09:00", 30, PRACTITIONER, "cash", "partial",
        authorized=True, actor_id=staff.id,
    )


def test_cancelled_payment_moves_to_credit_once(user, staff, treatment):
    appt = _partially_paid(user, staff, treatment)
    assert appt.paid_amount == Decimal("250.00")
    ledger.cancel_appointment(appt.id, requesting_user_id=user.id)

    appt = credit_ledger.credit_from_cancelled_appointment(appt.id, authorized=True, actor_id=staff.id)

    assert appt.credit_processed
    assert credit_ledger.get_balance(user.id) == Decimal("250.00")
    refund = appt.transactions[-1]
    assert (refund.payment_type, refund.payment_method, refund.amount) == (
        "credit_refund", "admin_credit", Decimal("250.00"))
    # a refund does not count as money paid toward the booking
    assert appt.paid_amount == Decimal("250.00")

    with pytest.raises(NotEligible):
        credit_ledger.credit_from_cancelled_appointment(appt.id, authorized=True, actor_id=staff.id)
    assert credit_ledger.get_balance(user.id) == Decimal("250.00")


def test_credit_requires_cancelled_and_paid(user, staff, treatment, make_appointment):
    paid = _partially_paid(user, staff, treatment)
    with pytest.raises(NotEligible):
        credit_ledger.credit_from_cancelled_appointment(paid.id, authorized=True)

    unpaid = make_appointment(user, slot_time="13:00")
    ledger.cancel_appointment(unpaid.id, requesting_user_id=user.id)
    with pytest.raises(NotEligible):
        credit_ledger.credit_from_cancelled_appointment(unpaid.id, authorized=True)

    with pytest.raises(Unauthorized):
        credit_ledger.credit_from_cancelled_appointment(unpaid.id)


def test_debit_cannot_overdraw(make_user):
    user = make_user(credit="100.00")

    with pytest.raises(InsufficientCredit) as exc:
        credit_ledger.debit(user.id, "150.00", None, "too much")
    assert exc.value.details == {"balance": "100.00", "requested": "150.00"}

    credit_ledger.debit(user.id, "40.00", None, "spend")
    db.session.commit()
    assert credit_ledger.get_balance(user.id) == Decimal("60.00")


@pytest.mark.parametrize("amount", ["0", "-5", "abc", None])
def test_amounts_must_be_positive(user, amount):
    with pytest.raises(InvalidAmount):
        credit_ledger.credit(user.id, amount, None, "bad")


def test_unknown_user(app):
    with pytest.raises(UserNotFound):
        credit_ledger.get_balance(404)
    with pytest.raises(UserNotFound):
        credit_ledger.credit(404, "10", None, "nobody")


def test_grant_credit_and_history(user, staff):
    with pytest.raises(Unauthorized):
        credit_ledger.grant_credit(user.id, "50")

    credit_ledger.grant_credit(user.id, "50", "Loyalty", authorized=True, actor_id=staff.id)
    credit_ledger.grant_credit(user.id, "25.50", authorized=True, actor_id=staff.id)

    assert credit_ledger.get_balance(user.id) == Decimal("75.50")
    entries = credit_ledger.history(user.id)
    assert [e.amount for e in entries] == [Decimal("25.50"), Decimal("50.00")]
    assert entries[0].description == "Credit added by staff"
    assert all(e.type == "credit" for e in entries)


def test_booking_spend_is_in_history(make_user, treatment):
    user = make_user(credit="100.00")
    appt, due = payments.book_appointment(user.id, treatment.id, DAY_KEY, "09:00", 30, PRACTITIONER, "full")

    assert due == Decimal("400.00")
    [entry] = credit_ledger.history(user.id)
    assert entry.amount == Decimal("-100.00")
    assert entry.type == "debit"
    assert entry.appointment_id == appt.id
