from flask import Blueprint, request, jsonify, g

from models import db
from models.treatment import Treatment
from security.rbac import ensure_owner_or_staff
from services import credit as credit_ledger
from services import ledger, payments
from services.availability import is_practitioner_available
from services.slots import generate_slots
from utils.auth_context import login_required
from utils.timeslots import day_key, parse_day, parse_day_key

booking_bp = Blueprint("booking", __name__)


# ---------- catalog ----------
@booking_bp.get("/treatments")
def list_treatments():
    treatments = Treatment.query.filter_by(available=True).order_by(Treatment.name.asc()).all()
    return jsonify([t.to_dict() for t in treatments]), 200


@booking_bp.get("/treatments/<int:treatment_id>")
def get_treatment(treatment_id: int):
    treatment = db.session.get(Treatment, treatment_id)
    if not treatment:
        return jsonify(error="Treatment not found"), 404
    return jsonify(treatment.to_dict()), 200


# ---------- availability ----------
@booking_bp.get("/slots")
def list_slots():
    practitioner = (request.args.get("practitioner") or "").strip()
    duration = request.args.get("duration", type=int)
    date_str = request.args.get("date")
    if not practitioner or not duration or not date_str:
        return jsonify(error="practitioner, duration and date are required"), 400

    treatment_id = request.args.get("treatment_id", type=int)
    if treatment_id:
        treatment = db.session.get(Treatment, treatment_id)
        if not treatment or not treatment.available:
            return jsonify(error="Treatment Not Available"), 404
        if treatment.price_for(duration) is None:
            return jsonify(error=f"{treatment.name} is not offered for {duration} minutes"), 400

    day = parse_day(date_str)
    slots = generate_slots(day, duration, practitioner)
    return jsonify(slot_date=day_key(day), practitioner=practitioner, duration=duration, slots=slots), 200


@booking_bp.post("/availability")
def check_availability():
    data = request.get_json(silent=True) or {}
    practitioner = (data.get("practitioner") or "").strip()
    slot_date = data.get("slot_date")
    slot_time = data.get("slot_time")
    duration = data.get("duration")
    if not practitioner or not slot_date or not slot_time or not duration:
        return jsonify(error="Missing required fields"), 400

    slot_date = day_key(parse_day_key(slot_date))
    available = is_practitioner_available(practitioner, slot_date, slot_time, duration)
    return jsonify(available=available), 200


@booking_bp.get("/practitioners/<string:practitioner>/bookings")
def practitioner_bookings(practitioner: str):
    date_str = request.args.get("date")
    if not date_str:
        return jsonify(error="date is required"), 400
    slot_date = day_key(parse_day(date_str))
    return jsonify(
        practitioner=practitioner,
        slot_date=slot_date,
        booked_times=ledger.practitioner_bookings(practitioner, slot_date),
    ), 200


# ---------- CLIENTS: book ----------
@booking_bp.post("/appointments")
@login_required
def create_appointment():
    data = request.get_json(silent=True) or {}
    if not data.get("duration"):
        return jsonify(error="Duration is required"), 400

    appt, due = payments.book_appointment(
        user_id=g.user.id,
        treatment_id=data.get("treatment_id"),
        slot_date=data.get("slot_date"),
        slot_time=data.get("slot_time"),
        duration=data.get("duration"),
        practitioner=data.get("practitioner"),
        payment_type=data.get("payment_type"),
        use_credit=bool(data.get("use_credit", True)),
        amount=data.get("amount"),
    )
    return jsonify(
        message="Appointment Created",
        appointment=appt.to_dict(),
        amount_due=str(due),
    ), 201


@booking_bp.get("/appointments/me")
@login_required
def my_appointments():
    rows = ledger.list_user_appointments(g.user.id)
    return jsonify([a.to_dict() for a in rows]), 200


@booking_bp.get("/appointments/<int:appointment_id>")
@login_required
def get_appointment(appointment_id: int):
    appt = ledger.get_appointment(appointment_id)
    ensure_owner_or_staff(appt.user_id)
    return jsonify(appt.to_dict()), 200


@booking_bp.post("/appointments/<int:appointment_id>/cancel")
@login_required
def cancel_appointment(appointment_id: int):
    appt = ledger.cancel_appointment(appointment_id, requesting_user_id=g.user.id)
    return jsonify(message="Appointment Cancelled", appointment=appt.to_dict()), 200


# ---------- CLIENTS: credit ----------
@booking_bp.get("/credit/me")
@login_required
def my_credit():
    return jsonify(
        balance=str(credit_ledger.get_balance(g.user.id)),
        history=[h.to_dict() for h in credit_ledger.history(g.user.id)],
    ), 200
