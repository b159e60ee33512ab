import logging

from flask import Blueprint, request, jsonify

from services import payments

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/payfast")
def payfast_notify():
    # keep PayFast's field order: the signature is computed over it
    form = request.form.to_dict()
    if not form:
        return jsonify(error="Empty notification"), 400

    appt, applied = payments.handle_payfast_notification(form)
    logger.info(
        "PayFast ITN %s for appointment %s (applied=%s)",
        form.get("payment_status"), appt.id if appt else None, applied,
    )
    return jsonify(received=True, applied=applied), 200
