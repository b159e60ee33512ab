from flask import Blueprint, jsonify

from .auth import auth_bp
from .booking import booking_bp
from .payments import payments_bp
from .webhooks import webhook_bp
from .admin import admin_bp

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    return jsonify(status="ok"), 200


__all__ = ["health_bp", "auth_bp", "booking_bp", "payments_bp", "webhook_bp", "admin_bp"]
