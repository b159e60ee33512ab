"""
Payment orchestration for appointments.

Amounts due come from `quote`. Cash and speed-point payments settle immediately
(staff only). PayFast and PayPal go through a single pending-payment entry on the
appointment that `reconcile` later applies or discards.
"""
import json
import logging
import secrets
from datetime import datetime

from flask import current_app

from models import db, atomic
from models.appointment import (
    Appointment,
    AppointmentTransaction,
    GATEWAY_METHODS,
    IMMEDIATE_METHODS,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
)
from services import credit as credit_ledger
from services.errors import (
    AppointmentNotFound,
    GatewayError,
    NoPendingPayment,
    NotEligible,
    PaymentMismatch,
    Unauthorized,
    ValidationError,
)
from services.gateways import payfast, paypal
from services.ledger import (
    PaymentRecord,
    append_transaction,
    insert_appointment,
    lock_appointment,
    run_booking_unit,
    unindex_appointment,
    validate_slot_request,
)
from utils.audit import log_event
from utils.money import ZERO, half, to_money

logger = logging.getLogger(__name__)

SUCCESS = "success"
CANCELLED = "cancelled"


def _booking_payment_type(payment_type) -> PaymentType:
    try:
        pt = PaymentType(payment_type)
    except ValueError:
        pt = None
    if pt not in (PaymentType.FULL, PaymentType.PARTIAL):
        raise ValidationError('Invalid payment type. Must be "full" or "partial"')
    return pt


def _method(value, allowed) -> PaymentMethod:
    try:
        method = PaymentMethod(value)
    except ValueError:
        method = None
    if method not in allowed:
        names = ", ".join(f'"{m.value}"' for m in allowed)
        raise ValidationError(f"Invalid payment method. Must be one of {names}")
    return method


# ---------- amounts ----------

def required_amount(appt: Appointment, payment_type):
    """What still has to be paid to reach the full total or the 50% deposit."""
    pt = _booking_payment_type(payment_type)
    total = to_money(appt.amount)
    target = total if pt == PaymentType.FULL else half(total)
    return max(ZERO, target - to_money(appt.paid_amount))


def quote(appt: Appointment, payment_type, user_credit=0):
    """Amount due after spending up to `user_credit`; never negative."""
    base = required_amount(appt, payment_type)
    try:
        available = max(ZERO, to_money(user_credit or 0))
    except ValueError:
        raise ValidationError("Invalid credit amount")
    return base - min(available, base)


# ---------- booking ----------

def _apply_credit(appt: Appointment, payment_type: PaymentType):
    balance = credit_ledger.locked_balance(appt.user_id)
    applied = required_amount(appt, payment_type) - quote(appt, payment_type, balance)
    if applied <= ZERO:
        return ZERO

    credit_ledger.debit(appt.user_id, applied, appt.id, f"Used for booking #{appt.booking_number}")
    append_transaction(appt, PaymentRecord(
        amount=applied,
        payment_type=PaymentType.CREDIT,
        payment_method=PaymentMethod.CREDIT_BALANCE,
        description="Account credit applied at booking",
    ))
    appt.credit_applied = applied
    return applied


def book_appointment(user_id, treatment_id, slot_date, slot_time, duration, practitioner,
                     payment_type, use_credit: bool = True, amount=None):
    """
    Client booking. Creates the appointment and spends account credit in one unit.
    Returns (appointment, amount still due now).
    """
    req = validate_slot_request(user_id, treatment_id, slot_date, slot_time, duration, practitioner, payment_type)

    def work():
        appt = insert_appointment(req, amount=amount)
        if use_credit:
            _apply_credit(appt, req.payment_type)
        return appt, quote(appt, req.payment_type, 0)

    appt, due = run_booking_unit(work)

    log_event("APPOINTMENT_BOOKED", user_id=user_id, entity="appointment", entity_id=appt.id,
              metadata={"booking_number": appt.booking_number, "credit_applied": str(appt.credit_applied),
                        "amount_due": str(due)})
    return appt, due


def settle_immediate(appt: Appointment, method, payment_type, authorized: bool = False):
    """Staff-taken cash or speed-point payment. Joins the caller's unit of work."""
    if not authorized:
        raise Unauthorized()
    method = _method(method, IMMEDIATE_METHODS)
    pt = _booking_payment_type(payment_type)
    if appt.cancelled:
        raise NotEligible("Appointment is cancelled")

    due = quote(appt, pt, 0)
    if due <= ZERO:
        raise NotEligible("Nothing is due for this payment type")

    return append_transaction(appt, PaymentRecord(amount=due, payment_type=pt, payment_method=method))


def record_immediate_payment(appointment_id, method, payment_type, authorized: bool = False, actor_id=None) -> Appointment:
    if not authorized:
        raise Unauthorized()
    with atomic():
        appt = lock_appointment(appointment_id)
        row = settle_immediate(appt, method, payment_type, authorized=True)

    log_event("PAYMENT_RECORDED", user_id=actor_id, entity="appointment", entity_id=appt.id,
              metadata={"amount": str(row.amount), "method": row.payment_method})
    return appt


def admin_book_appointment(user_id, treatment_id, slot_date, slot_time, duration, practitioner,
                           payment_method, payment_type, authorized: bool = False, actor_id=None, amount=None):
    """Staff booking on behalf of a client, paid at the counter."""
    if not authorized:
        raise Unauthorized()
    _method(payment_method, IMMEDIATE_METHODS)
    req = validate_slot_request(user_id, treatment_id, slot_date, slot_time, duration, practitioner, payment_type)

    def work():
        appt = insert_appointment(req, amount=amount)
        settle_immediate(appt, payment_method, req.payment_type, authorized=True)
        return appt

    appt = run_booking_unit(work)

    log_event("ADMIN_APPOINTMENT_BOOKED", user_id=actor_id, entity="appointment", entity_id=appt.id,
              metadata={"booking_number": appt.booking_number, "client_id": user_id,
                        "method": str(PaymentMethod(payment_method).value)})
    return appt


def accept_balance(appointment_id, method, authorized: bool = False, actor_id=None) -> Appointment:
    """Settle the remainder of a deposit-paid appointment at the counter."""
    if not authorized:
        raise Unauthorized()
    method = _method(method, IMMEDIATE_METHODS)

    with atomic():
        appt = lock_appointment(appointment_id)
        if appt.cancelled or appt.payment_status != PaymentStatus.PARTIAL.value:
            raise NotEligible("This appointment is not eligible for balance payment")

        remaining = to_money(appt.amount) - to_money(appt.paid_amount)
        append_transaction(appt, PaymentRecord(
            amount=remaining,
            payment_type=PaymentType.BALANCE,
            payment_method=method,
        ))

    log_event("BALANCE_ACCEPTED", user_id=actor_id, entity="appointment", entity_id=appt.id,
              metadata={"amount": str(remaining), "method": method.value})
    return appt


# ---------- gateways ----------

def _gateway_urls(appt: Appointment, method: PaymentMethod) -> dict:
    cfg = current_app.config
    front = cfg.get("FRONTEND_BASE_URL", "").rstrip("/")
    back = cfg.get("BACKEND_BASE_URL", "").rstrip("/")
    verify = f"{front}/verify?appointmentId={appt.id}&{method.value}=true"
    return {
        "return_url": f"{verify}&success=true",
        "cancel_url": f"{verify}&success=false",
        "notify_url": f"{back}/webhooks/payfast",
    }


def _gateway_amount_due(appt: Appointment, pt: PaymentType):
    if appt.cancelled:
        raise NotEligible("Appointment Cancelled or not found")
    if appt.is_completed:
        raise NotEligible("Appointment already completed")

    amount = quote(appt, pt, 0)
    if amount <= ZERO:
        raise NotEligible("Nothing left to pay for this appointment")
    return amount


def initiate_gateway_payment(appointment_id, method, payment_type, user_id=None, authorized: bool = False) -> dict:
    """
    Start a PayFast or PayPal payment for what is currently due.

    The gateway redirect is built before the appointment is locked; the lock is only
    taken to re-check the amount and record the pending entry. Overwrites any earlier
    pending attempt; paid_amount only moves on reconcile.
    """
    method = _method(method, GATEWAY_METHODS)
    pt = _booking_payment_type(payment_type)

    appt = db.session.get(Appointment, appointment_id) if appointment_id else None
    if not appt:
        raise AppointmentNotFound()
    if not authorized and appt.user_id != user_id:
        raise Unauthorized()
    amount = _gateway_amount_due(appt, pt)

    urls = _gateway_urls(appt, method)
    name = (appt.treatment_snapshot or {}).get("name", "Treatment")
    item = f"{name} - Booking #{appt.booking_number}"
    custom = {"appointmentId": appt.id, "paymentType": pt.value, "amount": str(amount)}

    if method == PaymentMethod.PAYFAST:
        reference = f"PF_{int(datetime.utcnow().timestamp() * 1000)}_{appt.id}_{secrets.token_hex(3)}"
        snapshot = appt.user_snapshot or {}
        redirect = payfast.build_payment(
            reference=reference,
            amount=amount,
            item_name=item,
            first_name=snapshot.get("name"),
            email=snapshot.get("email"),
            custom=json.dumps(custom),
            **urls,
        )
    else:
        redirect = paypal.create_order(
            amount=amount,
            description=item,
            custom=custom,
            return_url=urls["return_url"],
            cancel_url=urls["cancel_url"],
        )
        reference = redirect["order_id"]

    with atomic():
        appt = lock_appointment(appt.id)
        if _gateway_amount_due(appt, pt) != amount:
            raise PaymentMismatch("Amount due changed while starting the payment, please try again",
                                  details={"expected": str(amount)})
        appt.set_pending_payment(amount, pt.value, method.value, reference)

    log_event("PAYMENT_INITIATED", user_id=user_id, entity="appointment", entity_id=appt.id,
              metadata={"method": method.value, "amount": str(amount), "reference": reference})
    return {**redirect, "amount": str(amount), "reference": reference, "appointment_id": appt.id}


def _already_recorded(appt: Appointment, reference=None, gateway_reference=None) -> bool:
    if gateway_reference and AppointmentTransaction.query.filter_by(gateway_reference=gateway_reference).first():
        return True
    if reference and AppointmentTransaction.query.filter_by(appointment_id=appt.id, reference=reference).first():
        return True
    return False


def _refund_late_payment(appt: Appointment, amount) -> bool:
    """
    A gateway success that lands after the cancelled appointment was already refunded
    goes straight to the client's credit, so nothing paid is left on the appointment.
    """
    credit_ledger.credit(
        appt.user_id,
        amount,
        appt.id,
        f"Late payment on cancelled booking #{appt.booking_number}",
    )
    append_transaction(appt, PaymentRecord(
        amount=amount,
        payment_type=PaymentType.CREDIT_REFUND,
        payment_method=PaymentMethod.ADMIN_CREDIT,
        description="Late payment moved to account credit",
    ))
    logger.warning("Late payment of %s on refunded appointment %s moved to credit", amount, appt.id)
    return True


def reconcile(appointment_id, outcome: str, reference=None, gateway_reference=None, amount=None, actor_id=None):
    """
    Apply a gateway result to the appointment's pending payment.

    Returns (appointment, applied). A callback that was already applied comes back
    with applied=False and changes nothing.
    """
    if outcome not in (SUCCESS, CANCELLED):
        raise ValidationError("outcome must be 'success' or 'cancelled'")

    voided = False
    refunded_late = False
    with atomic():
        appt = lock_appointment(appointment_id)
        pending = appt.pending_payment

        if outcome == SUCCESS and _already_recorded(appt, reference, gateway_reference):
            logger.info("Duplicate gateway success for appointment %s (%s)", appt.id, gateway_reference or reference)
            return appt, False

        if pending is None:
            if outcome == CANCELLED:
                return appt, False
            raise NoPendingPayment()

        if reference and reference != pending["reference"]:
            raise PaymentMismatch(details={"expected": pending["reference"], "received": reference})

        if outcome == SUCCESS:
            if amount is not None and to_money(amount) != to_money(pending["amount"]):
                raise PaymentMismatch("Paid amount does not match the pending payment",
                                      details={"expected": str(pending["amount"]), "received": str(amount)})
            # a short "full" payment simply leaves the appointment partial
            append_transaction(appt, PaymentRecord(
                amount=pending["amount"],
                payment_type=pending["payment_type"],
                payment_method=pending["method"],
                status="COMPLETE",
                reference=pending["reference"],
                gateway_reference=gateway_reference,
            ))
            if appt.cancelled and appt.credit_processed:
                refunded_late = _refund_late_payment(appt, to_money(pending["amount"]))
        elif appt.payment_status == PaymentStatus.NONE.value and not appt.cancelled:
            # first payment abandoned: the booking is void
            appt.cancelled = True
            appt.cancelled_at_checkout = True
            appt.cancelled_at = datetime.utcnow()
            unindex_appointment(appt)
            voided = True

        appt.clear_pending_payment()

    if refunded_late:
        log_event("APPOINTMENT_CREDIT_REFUND", user_id=actor_id, entity="appointment", entity_id=appt.id,
                  metadata={"amount": str(pending["amount"]), "client_id": appt.user_id, "late_payment": True})
    action = "PAYMENT_RECONCILED" if outcome == SUCCESS else ("PAYMENT_ABANDONED" if voided else "PAYMENT_CANCELLED")
    log_event(action, user_id=actor_id, entity="appointment", entity_id=appt.id,
              metadata={"reference": pending["reference"], "gateway_reference": gateway_reference,
                        "amount": str(pending["amount"]), "payment_status": appt.payment_status})
    return appt, True


def complete_paypal_return(appointment_id, order_id, success: bool, user_id=None, authorized: bool = False):
    appt = db.session.get(Appointment, appointment_id) if appointment_id else None
    if not appt:
        raise AppointmentNotFound()
    if not authorized and appt.user_id != user_id:
        raise Unauthorized()

    if not success:
        return reconcile(appt.id, CANCELLED, reference=order_id or None, actor_id=user_id)

    if not order_id:
        raise ValidationError("PayPal order token required")
    if _already_recorded(appt, reference=order_id):
        return appt, False

    captured = paypal.capture_order(order_id)
    if captured.get("status") != "COMPLETED":
        raise GatewayError("Payment Failed", details={"status": captured.get("status")})

    return reconcile(
        appt.id, SUCCESS,
        reference=order_id,
        gateway_reference=captured.get("capture_id") or order_id,
        actor_id=user_id,
    )


def complete_payfast_return(appointment_id, success: bool, user_id=None, authorized: bool = False):
    """
    Browser return from PayFast. Live payments are confirmed by the ITN webhook; in
    sandbox mode the ITN cannot reach a local server, so the return itself confirms.
    """
    appt = db.session.get(Appointment, appointment_id) if appointment_id else None
    if not appt:
        raise AppointmentNotFound()
    if not authorized and appt.user_id != user_id:
        raise Unauthorized()

    if not success:
        return reconcile(appt.id, CANCELLED, actor_id=user_id)

    if current_app.config.get("PAYFAST_SANDBOX", False) and appt.pending_payment is not None:
        return reconcile(appt.id, SUCCESS, reference=appt.pending_reference, actor_id=user_id)

    return appt, False


def handle_payfast_notification(form) -> tuple:
    """PayFast ITN. Returns (appointment or None, applied)."""
    if not payfast.verify_notification(form):
        raise ValidationError("Invalid PayFast signature")
    if current_app.config.get("PAYFAST_VALIDATE_ITN") and not payfast.validate_with_server(form):
        raise ValidationError("PayFast did not confirm this notification")

    note = payfast.parse_notification(form)
    if note["outcome"] is None:
        logger.info("Ignoring PayFast ITN with status %s", note["status"])
        return None, False

    reference = note["reference"]
    appt = Appointment.query.filter_by(pending_reference=reference).first() if reference else None
    if appt is None and reference:
        row = AppointmentTransaction.query.filter_by(reference=reference).first()
        appt = row.appointment if row else None
    if appt is None:
        raise AppointmentNotFound("No appointment for this PayFast payment")

    return reconcile(
        appt.id, note["outcome"],
        reference=reference,
        gateway_reference=note["gateway_reference"],
        amount=note["amount"],
    )
