"""
Appointment ledger: the store of appointments and their append-only payment log.

A booking is one unit of work: lock the practitioner's day, re-check the slot against
live appointments, take a booking number, insert, update the day's display index.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db, atomic
from models.appointment import (
    Appointment,
    AppointmentTransaction,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
)
from models.practitioner_day import PractitionerDay
from models.treatment import Treatment
from models.user import User
from services.availability import is_practitioner_available
from services.booking_numbers import next_booking_number
from services.errors import (
    AppointmentNotFound,
    BookingNumberConflict,
    NotEligible,
    SlotConflict,
    TreatmentUnavailable,
    Unauthorized,
    UserNotFound,
    ValidationError,
)
from utils.audit import log_event
from utils.money import ZERO, to_money
from utils.timeslots import check_duration, day_key, normalize_time, parse_day_key, time_to_minutes

logger = logging.getLogger(__name__)

BOOKING_ATTEMPTS = 2  # first try plus one retry after a storage conflict

# payment types that move money onto the appointment
_PAYING_TYPES = {PaymentType.FULL, PaymentType.PARTIAL, PaymentType.BALANCE, PaymentType.CREDIT}


@dataclass(frozen=True)
class PaymentRecord:
    amount: Decimal
    payment_type: PaymentType
    payment_method: PaymentMethod
    status: str = "COMPLETED"
    reference: str = None
    gateway_reference: str = None
    description: str = None

    def __post_init__(self):
        object.__setattr__(self, "payment_type", PaymentType(self.payment_type))
        object.__setattr__(self, "payment_method", PaymentMethod(self.payment_method))
        object.__setattr__(self, "amount", to_money(self.amount))


def make_reference(method) -> str:
    return f"{PaymentMethod(method).value.upper()}_{int(datetime.utcnow().timestamp() * 1000)}"


# ---------- payment bookkeeping ----------

def refresh_payment_status(appt: Appointment) -> str:
    paid = to_money(appt.paid_amount)
    if paid >= to_money(appt.amount):
        appt.payment_status = PaymentStatus.FULL.value
    elif paid > ZERO:
        appt.payment_status = PaymentStatus.PARTIAL.value
    else:
        appt.payment_status = PaymentStatus.NONE.value
    return appt.payment_status


def append_transaction(appt: Appointment, record: PaymentRecord) -> AppointmentTransaction:
    """Push a log row and move paid_amount/payment_status in the same flush."""
    row = AppointmentTransaction(
        appointment_id=appt.id,
        reference=record.reference or make_reference(record.payment_method),
        status=record.status,
        amount=record.amount,
        payment_type=record.payment_type,
        payment_method=record.payment_method,
        description=record.description,
        gateway_reference=record.gateway_reference,
    )
    appt.transactions.append(row)

    if record.payment_type in _PAYING_TYPES:
        appt.paid_amount = to_money(appt.paid_amount) + record.amount
        refresh_payment_status(appt)

    db.session.flush()
    return row


# ---------- practitioner day index ----------

def lock_practitioner_day(practitioner: str, slot_date: str) -> PractitionerDay:
    day = (
        db.session.query(PractitionerDay)
        .filter_by(practitioner=practitioner, slot_date=slot_date)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if day is None:
        # a concurrent first booking for this day fails here on uq_practitioner_day
        day = PractitionerDay(practitioner=practitioner, slot_date=slot_date, booked_times=[], version=0)
        db.session.add(day)
        db.session.flush()
    return day


def _index_add(day: PractitionerDay, slot_time: str):
    day.booked_times = sorted([*(day.booked_times or []), slot_time])
    day.version = (day.version or 0) + 1


def unindex_appointment(appt: Appointment):
    day = PractitionerDay.query.filter_by(practitioner=appt.practitioner, slot_date=appt.slot_date).first()
    if not day or appt.slot_time not in (day.booked_times or []):
        return
    times = list(day.booked_times)
    times.remove(appt.slot_time)
    day.booked_times = times
    day.version = (day.version or 0) + 1


def practitioner_bookings(practitioner: str, slot_date: str) -> list:
    day = PractitionerDay.query.filter_by(practitioner=practitioner, slot_date=slot_date).first()
    return list(day.booked_times) if day else []


# ---------- booking ----------

@dataclass(frozen=True)
class SlotRequest:
    user_id: int
    treatment_id: int
    practitioner: str
    slot_date: str
    slot_time: str
    duration: int
    payment_type: PaymentType


def validate_slot_request(user_id, treatment_id, slot_date, slot_time, duration, practitioner, payment_type) -> SlotRequest:
    """Shape checks that run before any storage access."""
    practitioner = (practitioner or "").strip() if isinstance(practitioner, str) else ""
    if not practitioner:
        raise ValidationError("practitioner required")
    if not user_id:
        raise ValidationError("user_id required")
    if not treatment_id:
        raise ValidationError("treatment_id required")

    try:
        payment_type = PaymentType(payment_type)
    except ValueError:
        payment_type = None
    if payment_type not in (PaymentType.FULL, PaymentType.PARTIAL):
        raise ValidationError('Invalid payment type. Must be "full" or "partial"')

    duration = check_duration(duration)
    slot_time = normalize_time(slot_time)
    day = parse_day_key(slot_date)

    cfg = current_app.config
    start = time_to_minutes(slot_time)
    if start < time_to_minutes(cfg.get("BUSINESS_OPEN", "09:00")) or \
            start + duration > time_to_minutes(cfg.get("BUSINESS_CLOSE", "17:00")):
        raise ValidationError("Slot falls outside business hours")

    return SlotRequest(
        user_id=user_id,
        treatment_id=treatment_id,
        practitioner=practitioner,
        slot_date=day_key(day),
        slot_time=slot_time,
        duration=duration,
        payment_type=payment_type,
    )


def insert_appointment(req: SlotRequest, amount=None, initial_transactions=()) -> Appointment:
    """The storage half of a booking. Joins the caller's unit of work."""
    treatment = db.session.get(Treatment, req.treatment_id)
    if not treatment or not treatment.available:
        raise TreatmentUnavailable()

    price = treatment.price_for(req.duration)
    if price is None:
        raise ValidationError(f"{treatment.name} is not offered for {req.duration} minutes")
    price = to_money(price)
    if amount is not None:
        try:
            amount = to_money(amount)
        except ValueError:
            raise ValidationError("Invalid amount")
        if amount != price:
            raise ValidationError("Amount does not match the treatment price for this duration")

    day = lock_practitioner_day(req.practitioner, req.slot_date)

    if not is_practitioner_available(req.practitioner, req.slot_date, req.slot_time, req.duration):
        raise SlotConflict()

    user = db.session.get(User, req.user_id)
    if not user:
        raise UserNotFound()

    appt = Appointment(
        booking_number=next_booking_number(),
        user_id=user.id,
        treatment_id=treatment.id,
        practitioner=req.practitioner,
        slot_date=req.slot_date,
        slot_time=req.slot_time,
        duration=req.duration,
        user_snapshot=user.snapshot(),
        treatment_snapshot=treatment.snapshot(),
        amount=price,
        paid_amount=ZERO,
        payment_status=PaymentStatus.NONE.value,
        credit_applied=ZERO,
    )
    db.session.add(appt)
    db.session.flush()

    for record in initial_transactions:
        append_transaction(appt, record)

    _index_add(day, req.slot_time)
    return appt


def _is_day_row_collision(exc: IntegrityError) -> bool:
    # postgres names the constraint, sqlite names the table and columns
    message = str(exc.orig)
    return "uq_practitioner_day" in message or "practitioner_days." in message


def run_booking_unit(work, attempts: int = BOOKING_ATTEMPTS):
    """
    Run `work()` inside a transaction. A storage-level uniqueness violation (booking number
    or practitioner day row taken by a concurrent booking) rolls back and reruns the whole
    unit once, availability check included.
    """
    for attempt in range(1, attempts + 1):
        try:
            with atomic():
                return work()
        except IntegrityError as exc:
            if attempt >= attempts:
                logger.warning("Booking failed after %s attempts: %s", attempt, exc.orig)
                if _is_day_row_collision(exc):
                    raise SlotConflict() from exc
                raise BookingNumberConflict() from exc
            logger.info("Booking hit a storage conflict, retrying (%s)", exc.orig)


def create_appointment(user_id, treatment_id, slot_date, slot_time, duration, practitioner,
                       payment_type, initial_transactions=(), amount=None) -> Appointment:
    req = validate_slot_request(user_id, treatment_id, slot_date, slot_time, duration, practitioner, payment_type)
    appt = run_booking_unit(lambda: insert_appointment(req, amount=amount, initial_transactions=initial_transactions))
    log_event("APPOINTMENT_BOOKED", user_id=user_id, entity="appointment", entity_id=appt.id,
              metadata={"booking_number": appt.booking_number})
    return appt


# ---------- lookups ----------

def get_appointment(appointment_id) -> Appointment:
    appt = db.session.get(Appointment, appointment_id) if appointment_id else None
    if not appt:
        raise AppointmentNotFound()
    return appt


def lock_appointment(appointment_id) -> Appointment:
    appt = (
        db.session.query(Appointment)
        .filter_by(id=appointment_id)
        .with_for_update()
        .populate_existing()
        .first()
    ) if appointment_id else None
    if not appt:
        raise AppointmentNotFound()
    return appt


def list_user_appointments(user_id):
    return (
        Appointment.query
        .filter_by(user_id=user_id)
        .order_by(Appointment.created_at.desc(), Appointment.id.desc())
        .all()
    )


def list_appointments(practitioner=None, slot_date=None, status=None, limit=200):
    q = Appointment.query
    if practitioner:
        q = q.filter_by(practitioner=practitioner)
    if slot_date:
        q = q.filter_by(slot_date=slot_date)
    if status == "cancelled":
        q = q.filter_by(cancelled=True)
    elif status == "completed":
        q = q.filter_by(is_completed=True)
    elif status == "active":
        q = q.filter_by(cancelled=False, is_completed=False)
    elif status in {s.value for s in PaymentStatus}:
        q = q.filter_by(payment_status=status)
    return q.order_by(Appointment.created_at.desc(), Appointment.id.desc()).limit(limit).all()


# ---------- lifecycle ----------

def cancel_appointment(appointment_id, requesting_user_id=None, authorized: bool = False, actor_id=None) -> Appointment:
    """
    Mark an appointment cancelled. Clients may only cancel their own; staff any.
    No refund happens here, see services.credit.credit_from_cancelled_appointment.
    """
    with atomic():
        appt = lock_appointment(appointment_id)
        if not authorized and appt.user_id != requesting_user_id:
            raise Unauthorized()
        if appt.cancelled:
            return appt
        if appt.is_completed:
            raise NotEligible("Completed appointments cannot be cancelled")

        appt.cancelled = True
        appt.cancelled_at = datetime.utcnow()
        unindex_appointment(appt)

    log_event("APPOINTMENT_CANCEL", user_id=actor_id or requesting_user_id, entity="appointment",
              entity_id=appt.id, metadata={"by_staff": bool(authorized)})
    return appt


def complete_appointment(appointment_id, authorized: bool = False, actor_id=None) -> Appointment:
    if not authorized:
        raise Unauthorized()

    with atomic():
        appt = lock_appointment(appointment_id)
        if appt.cancelled:
            raise NotEligible("Cancelled appointments cannot be completed")
        if appt.payment_status == PaymentStatus.NONE.value:
            raise NotEligible("No payment has been recorded for this appointment")
        appt.is_completed = True
        appt.completed_at = appt.completed_at or datetime.utcnow()

    log_event("APPOINTMENT_COMPLETE", user_id=actor_id, entity="appointment", entity_id=appt.id)
    return appt


def delete_appointment(appointment_id, authorized: bool = False, actor_id=None) -> None:
    if not authorized:
        raise Unauthorized()

    with atomic():
        appt = lock_appointment(appointment_id)
        booking_number = appt.booking_number
        if not appt.cancelled:
            unindex_appointment(appt)
        db.session.delete(appt)

    log_event("APPOINTMENT_DELETE", user_id=actor_id, entity="appointment", entity_id=appointment_id,
              metadata={"booking_number": booking_number})
