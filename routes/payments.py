from flask import Blueprint, request, jsonify, g

from security.rbac import is_staff
from services import payments
from utils.auth_context import login_required

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _start(method: str):
    data = request.get_json(silent=True) or {}
    appointment_id = data.get("appointment_id")
    if not appointment_id:
        return jsonify(error="appointment_id required"), 400

    redirect = payments.initiate_gateway_payment(
        int(appointment_id),
        method,
        data.get("payment_type") or "full",
        user_id=g.user.id,
        authorized=is_staff(),
    )
    return jsonify(redirect), 200


@payments_bp.post("/payfast")
@login_required
def start_payfast():
    return _start("payfast")


@payments_bp.post("/paypal")
@login_required
def start_paypal():
    return _start("paypal")


@payments_bp.post("/verify")
@login_required
def verify_payment():
    """Browser came back from the gateway (success or cancel)."""
    data = request.get_json(silent=True) or {}
    appointment_id = data.get("appointment_id")
    method = (data.get("method") or "").strip().lower()
    if not appointment_id or method not in ("payfast", "paypal"):
        return jsonify(error="appointment_id and method (payfast|paypal) required"), 400

    success = _as_bool(data.get("success"))
    if method == "paypal":
        appt, applied = payments.complete_paypal_return(
            int(appointment_id), data.get("token"), success, user_id=g.user.id, authorized=is_staff()
        )
    else:
        appt, applied = payments.complete_payfast_return(
            int(appointment_id), success, user_id=g.user.id, authorized=is_staff()
        )

    if not success:
        message = "Payment cancelled"
    elif applied:
        message = "Payment Successful"
    else:
        message = "Payment pending confirmation"
    return jsonify(
        message=message,
        applied=applied,
        payment_status=appt.payment_status,
        appointment=appt.to_dict(),
    ), 200
