from flask import Blueprint, request, jsonify, g

from models import db
from models.user import User
from security.csrf import issue_csrf_token
from security.password import hash_password, validate_password, verify_password
from security.session import clear_session_cookie, end_session, set_session_cookie, start_session
from utils.audit import log_event
from utils.auth_context import login_required
from utils.money import to_money
from utils.seed import ensure_role


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def _is_valid_phone(phone: str) -> bool:
    digits = "".join(ch for ch in phone or "" if ch.isdigit())
    return 7 <= len(digits) <= 15 and len(phone) <= 30


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "phone_number": user.phone_number,
        "roles": [r.name for r in user.roles],
        "credit_balance": str(to_money(user.credit_balance)),
    }


def create_user(email: str, password: str, full_name: str, phone_number: str, role_name: str = "CLIENT"):
    """Shared by self-registration and staff registering a walk-in client."""
    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        phone_number=phone_number,
    )
    db.session.add(user)
    db.session.flush()

    user.roles.append(ensure_role(role_name))
    db.session.commit()
    return user


def validate_registration(data: dict):
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    full_name = (data.get("full_name") or data.get("name") or "").strip()
    phone_number = (data.get("phone_number") or data.get("phone") or "").strip()

    if not full_name or not email or not password or not phone_number:
        return None, (jsonify(error="Missing Details"), 400)
    if not _is_valid_email(email):
        return None, (jsonify(error="Please enter a valid email"), 400)
    if not _is_valid_phone(phone_number):
        return None, (jsonify(error="Please enter a valid phone number"), 400)
    valid, errors = validate_password(password)
    if not valid:
        return None, (jsonify(error="Password does not meet policy", details=errors), 400)
    if User.query.filter_by(email=email).first():
        return None, (jsonify(error="Email already registered"), 409)

    return {"email": email, "password": password, "full_name": full_name[:120], "phone_number": phone_number}, None


@auth_bp.post("/register")
def register():
    fields, failure = validate_registration(request.get_json(silent=True) or {})
    if failure:
        return failure

    user = create_user(**fields)
    log_event("REGISTER_SUCCESS", user_id=user.id)
    return jsonify(message="Registered successfully", id=user.id), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"email": email})
        return jsonify(error="Invalid credentials"), 401

    raw_token, revoked_count = start_session(user.id)

    resp = jsonify(message="Login OK", user=_user_payload(user))
    set_session_cookie(resp, raw_token)
    issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id, metadata={"revoked_sessions": revoked_count})
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(_user_payload(g.user)), 200


@auth_bp.post("/profile")
@login_required
def update_profile():
    data = request.get_json(silent=True) or {}
    full_name = data.get("full_name")
    phone_number = data.get("phone_number")

    if full_name is not None:
        if not isinstance(full_name, str) or not full_name.strip() or len(full_name.strip()) > 120:
            return jsonify(error="Invalid full_name"), 400
        g.user.full_name = full_name.strip()

    if phone_number is not None:
        if not isinstance(phone_number, str) or not _is_valid_phone(phone_number.strip()):
            return jsonify(error="Invalid phone_number"), 400
        g.user.phone_number = phone_number.strip()

    db.session.commit()
    log_event("PROFILE_UPDATE", user_id=g.user.id)
    return jsonify(message="Profile Updated", user=_user_payload(g.user)), 200


@auth_bp.post("/logout")
@login_required
def logout():
    end_session()
    log_event("LOGOUT", user_id=g.user.id)

    return clear_session_cookie(jsonify(message="Logged out")), 200
