from flask import Blueprint, jsonify, g, request
from sqlalchemy import func

from models import db
from models.appointment import Appointment
from models.treatment import Treatment, TreatmentPrice
from models.audit_log import AuditLog
from models.user import User, Role
from routes.auth import create_user, validate_registration
from security.rbac import require_roles
from services.errors import BookingError
from services import credit as credit_ledger
from services import ledger, payments
from utils.audit import log_event
from utils.money import to_money
from utils.timeslots import check_duration, day_key, parse_day

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _parse_price_list(raw):
    """[{duration, price}, ...] -> list of (int, Decimal) or an error message."""
    if not isinstance(raw, list) or not raw:
        return None, "price_list must be a non-empty list"
    out = {}
    for entry in raw:
        if not isinstance(entry, dict):
            return None, "Each price entry needs duration and price"
        try:
            duration = check_duration(entry.get("duration"))
            price = to_money(entry.get("price"))
        except (ValueError, BookingError):
            return None, "Each price entry needs a positive duration and price"
        if price <= 0:
            return None, "Price must be greater than 0"
        out[duration] = price
    return sorted(out.items()), None


# ---------- dashboard ----------
@admin_bp.get("/dashboard")
@require_roles()
def dashboard():
    latest = ledger.list_appointments(limit=10)
    paid_total = db.session.query(func.coalesce(func.sum(Appointment.paid_amount), 0)).scalar()
    return jsonify(
        treatments=Treatment.query.count(),
        appointments=Appointment.query.count(),
        clients=User.query.count(),
        paid_total=str(to_money(paid_total)),
        latest_appointments=[a.to_dict() for a in latest],
    ), 200


# ---------- treatments ----------
@admin_bp.get("/treatments")
@require_roles()
def all_treatments():
    return jsonify([t.to_dict() for t in Treatment.query.order_by(Treatment.name.asc()).all()]), 200


@admin_bp.post("/treatments")
@require_roles("ADMIN")
def add_treatment():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    speciality = (data.get("speciality") or "").strip()
    about = (data.get("about") or "").strip() or None
    if not name or not speciality:
        return jsonify(error="Missing Details"), 400

    prices, error = _parse_price_list(data.get("price_list"))
    if error:
        return jsonify(error=error), 400

    treatment = Treatment(name=name[:120], speciality=speciality[:120], about=about,
                          available=bool(data.get("available", True)))
    treatment.prices = [TreatmentPrice(duration=d, price=p) for d, p in prices]
    db.session.add(treatment)
    db.session.commit()

    log_event("TREATMENT_CREATE", user_id=g.user.id, entity="treatment", entity_id=treatment.id)
    return jsonify(message="Treatment Added", treatment=treatment.to_dict()), 201


@admin_bp.put("/treatments/<int:treatment_id>")
@require_roles("ADMIN")
def update_treatment(treatment_id: int):
    treatment = db.session.get(Treatment, treatment_id)
    if not treatment:
        return jsonify(error="Treatment not found"), 404

    data = request.get_json(silent=True) or {}
    for field in ("name", "speciality"):
        if field in data:
            value = (data.get(field) or "").strip()
            if not value:
                return jsonify(error=f"{field} cannot be empty"), 400
            setattr(treatment, field, value[:120])
    if "about" in data:
        treatment.about = (data.get("about") or "").strip() or None
    if "available" in data:
        treatment.available = bool(data.get("available"))
    if "price_list" in data:
        prices, error = _parse_price_list(data.get("price_list"))
        if error:
            return jsonify(error=error), 400
        treatment.prices = [TreatmentPrice(duration=d, price=p) for d, p in prices]

    db.session.commit()
    log_event("TREATMENT_UPDATE", user_id=g.user.id, entity="treatment", entity_id=treatment.id)
    return jsonify(message="Treatment Updated Successfully", treatment=treatment.to_dict()), 200


@admin_bp.delete("/treatments/<int:treatment_id>")
@require_roles("ADMIN")
def delete_treatment(treatment_id: int):
    treatment = db.session.get(Treatment, treatment_id)
    if not treatment:
        return jsonify(error="Treatment not found"), 404

    # appointments keep their treatment snapshot
    Appointment.query.filter_by(treatment_id=treatment.id).update({"treatment_id": None})
    db.session.delete(treatment)
    db.session.commit()

    log_event("TREATMENT_DELETE", user_id=g.user.id, entity="treatment", entity_id=treatment_id)
    return jsonify(message="Treatment Deleted Successfully"), 200


# ---------- clients ----------
@admin_bp.get("/users")
@require_roles()
def list_users():
    q = User.query
    email = (request.args.get("email") or "").strip().lower()
    if email:
        q = q.filter(User.email == email)
    role_filter = (request.args.get("role") or "").strip().upper()
    if role_filter:
        q = q.join(User.roles).filter(Role.name == role_filter)

    users = q.order_by(User.created_at.desc()).limit(200).all()
    return jsonify([
        {
            "id": u.id,
            "email": u.email,
            "full_name": u.full_name,
            "phone_number": u.phone_number,
            "roles": [r.name for r in u.roles],
            "credit_balance": str(to_money(u.credit_balance)),
            "created_at": u.created_at.isoformat(),
        }
        for u in users
    ]), 200


@admin_bp.post("/users")
@require_roles()
def register_client():
    fields, failure = validate_registration(request.get_json(silent=True) or {})
    if failure:
        return failure

    user = create_user(**fields)
    log_event("ADMIN_REGISTER_CLIENT", user_id=g.user.id, entity="user", entity_id=user.id)
    return jsonify(message="User registered successfully", id=user.id), 201


@admin_bp.get("/users/<int:user_id>/credit")
@require_roles()
def user_credit(user_id: int):
    return jsonify(
        balance=str(credit_ledger.get_balance(user_id)),
        history=[h.to_dict() for h in credit_ledger.history(user_id)],
    ), 200


@admin_bp.post("/users/<int:user_id>/credit")
@require_roles("ADMIN")
def grant_credit(user_id: int):
    data = request.get_json(silent=True) or {}
    entry = credit_ledger.grant_credit(
        user_id, data.get("amount"), data.get("description"), authorized=True, actor_id=g.user.id
    )
    return jsonify(message="Credit added", entry=entry.to_dict(),
                   balance=str(credit_ledger.get_balance(user_id))), 201


# ---------- appointments ----------
@admin_bp.get("/appointments")
@require_roles()
def list_appointments():
    date_str = request.args.get("date")
    slot_date = day_key(parse_day(date_str)) if date_str else None
    rows = ledger.list_appointments(
        practitioner=(request.args.get("practitioner") or "").strip() or None,
        slot_date=slot_date,
        status=request.args.get("status"),
    )
    return jsonify([a.to_dict() for a in rows]), 200


@admin_bp.post("/appointments")
@require_roles()
def book_for_client():
    data = request.get_json(silent=True) or {}
    if not data.get("user_id"):
        return jsonify(error="user_id required"), 400

    appt = payments.admin_book_appointment(
        user_id=data.get("user_id"),
        treatment_id=data.get("treatment_id"),
        slot_date=data.get("slot_date"),
        slot_time=data.get("slot_time"),
        duration=data.get("duration"),
        practitioner=data.get("practitioner"),
        payment_method=data.get("payment_method"),
        payment_type=data.get("payment_type"),
        authorized=True,
        actor_id=g.user.id,
        amount=data.get("amount"),
    )
    return jsonify(message="Appointment Created and Payment Recorded", appointment=appt.to_dict()), 201


@admin_bp.post("/appointments/<int:appointment_id>/cancel")
@require_roles()
def cancel_appointment(appointment_id: int):
    appt = ledger.cancel_appointment(appointment_id, authorized=True, actor_id=g.user.id)
    return jsonify(message="Appointment Cancelled", appointment=appt.to_dict()), 200


@admin_bp.post("/appointments/<int:appointment_id>/complete")
@require_roles()
def complete_appointment(appointment_id: int):
    appt = ledger.complete_appointment(appointment_id, authorized=True, actor_id=g.user.id)
    return jsonify(message="Appointment Completed Successfully", appointment=appt.to_dict()), 200


@admin_bp.delete("/appointments/<int:appointment_id>")
@require_roles("ADMIN")
def delete_appointment(appointment_id: int):
    ledger.delete_appointment(appointment_id, authorized=True, actor_id=g.user.id)
    return jsonify(message="Appointment Deleted Successfully"), 200


@admin_bp.post("/appointments/<int:appointment_id>/payments")
@require_roles()
def record_payment(appointment_id: int):
    data = request.get_json(silent=True) or {}
    appt = payments.record_immediate_payment(
        appointment_id, data.get("payment_method"), data.get("payment_type"),
        authorized=True, actor_id=g.user.id,
    )
    return jsonify(message="Payment Recorded", appointment=appt.to_dict()), 200


@admin_bp.post("/appointments/<int:appointment_id>/balance")
@require_roles()
def accept_balance(appointment_id: int):
    data = request.get_json(silent=True) or {}
    appt = payments.accept_balance(appointment_id, data.get("payment_method"), authorized=True, actor_id=g.user.id)
    return jsonify(message="Balance payment accepted successfully", appointment=appt.to_dict()), 200


@admin_bp.post("/appointments/<int:appointment_id>/credit")
@require_roles("ADMIN")
def credit_cancelled(appointment_id: int):
    appt = credit_ledger.credit_from_cancelled_appointment(appointment_id, authorized=True, actor_id=g.user.id)
    return jsonify(
        message="Paid amount credited to client",
        appointment=appt.to_dict(),
        balance=str(credit_ledger.get_balance(appt.user_id)),
    ), 200


# ---------- audit trail ----------
@admin_bp.get("/audit-logs")
@require_roles("ADMIN")
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    q = AuditLog.query
    action = request.args.get("action")
    if action:
        q = q.filter(AuditLog.action == action)
    entity_id = request.args.get("entity_id")
    if entity_id:
        q = q.filter(AuditLog.entity_id == str(entity_id))

    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify([r.to_dict() for r in rows]), 200
