"""
Credit ledger: per-user account credit and its history.

`credit` and `debit` join the caller's unit of work (they flush, never commit) so a
booking can spend credit atomically with creating the appointment. The staff-facing
operations below them commit on their own.
"""
import logging
from datetime import datetime

from models import db, atomic
from models.appointment import Appointment, AppointmentTransaction, PaymentMethod, PaymentType
from models.credit_transaction import CreditTransaction
from models.user import User
from services.errors import (
    AppointmentNotFound,
    InsufficientCredit,
    InvalidAmount,
    NotEligible,
    Unauthorized,
    UserNotFound,
)
from utils.audit import log_event
from utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


def _locked_user(user_id) -> User:
    user = (
        db.session.query(User)
        .filter_by(id=user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not user:
        raise UserNotFound()
    return user


def _positive(amount):
    try:
        value = to_money(amount)
    except ValueError:
        raise InvalidAmount()
    if value <= ZERO:
        raise InvalidAmount()
    return value


def credit(user_id, amount, appointment_id, description: str) -> CreditTransaction:
    value = _positive(amount)
    user = _locked_user(user_id)

    user.credit_balance = to_money(user.credit_balance) + value
    entry = CreditTransaction(
        user_id=user.id,
        amount=value,
        type="credit",
        appointment_id=appointment_id,
        description=description,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def debit(user_id, amount, appointment_id, description: str) -> CreditTransaction:
    value = _positive(amount)
    user = _locked_user(user_id)

    balance = to_money(user.credit_balance)
    if value > balance:
        raise InsufficientCredit(
            f"Insufficient credit: balance {balance}, requested {value}",
            details={"balance": str(balance), "requested": str(value)},
        )

    user.credit_balance = balance - value
    entry = CreditTransaction(
        user_id=user.id,
        amount=-value,
        type="debit",
        appointment_id=appointment_id,
        description=description,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def locked_balance(user_id):
    """Balance read under the same row lock debit() takes."""
    return to_money(_locked_user(user_id).credit_balance)


def get_balance(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise UserNotFound()
    return to_money(user.credit_balance)


def history(user_id):
    return (
        CreditTransaction.query
        .filter_by(user_id=user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .all()
    )


def credit_from_cancelled_appointment(appointment_id, authorized: bool = False, actor_id=None) -> Appointment:
    """Refund what was paid on a cancelled appointment into the client's credit, once."""
    if not authorized:
        raise Unauthorized()

    with atomic():
        appt = (
            db.session.query(Appointment)
            .filter_by(id=appointment_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not appt:
            raise AppointmentNotFound()
        if not appt.cancelled:
            raise NotEligible("Only cancelled appointments can be credited")
        if appt.credit_processed:
            raise NotEligible("Credit has already been processed for this appointment")
        paid = to_money(appt.paid_amount)
        if paid <= ZERO:
            raise NotEligible("Nothing was paid on this appointment")

        credit(
            appt.user_id,
            paid,
            appt.id,
            f"Refund for cancelled booking #{appt.booking_number}",
        )
        db.session.add(AppointmentTransaction(
            appointment_id=appt.id,
            reference=f"CREDIT_{int(datetime.utcnow().timestamp() * 1000)}",
            status="COMPLETED",
            amount=paid,
            payment_type=PaymentType.CREDIT_REFUND,
            payment_method=PaymentMethod.ADMIN_CREDIT,
            description="Paid amount moved to account credit",
        ))
        appt.credit_processed = True

    logger.info("Credited %s to user %s for appointment %s", paid, appt.user_id, appt.id)
    log_event("APPOINTMENT_CREDIT_REFUND", user_id=actor_id, entity="appointment", entity_id=appt.id,
              metadata={"amount": str(paid), "client_id": appt.user_id})
    return appt


def grant_credit(user_id, amount, description: str = None, authorized: bool = False, actor_id=None) -> CreditTransaction:
    """Manual staff top-up of a client's credit."""
    if not authorized:
        raise Unauthorized()

    with atomic():
        entry = credit(user_id, amount, None, description or "Credit added by staff")

    log_event("CREDIT_GRANT", user_id=actor_id, entity="user", entity_id=user_id,
              metadata={"amount": str(entry.amount)})
    return entry
