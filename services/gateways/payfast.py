"""
PayFast redirect payments.

Outbound: a signed form the browser posts to PayFast's process page.
Inbound: ITN (instant transaction notification) posts, whose signature we recompute
and optionally confirm with PayFast's validate endpoint.
"""
import hashlib
import hmac
import logging
from urllib.parse import quote_plus

import requests
from flask import current_app

from services.errors import GatewayError
from utils.money import to_money

logger = logging.getLogger(__name__)

LIVE_HOST = "https://www.payfast.co.za"
SANDBOX_HOST = "https://sandbox.payfast.co.za"


def host() -> str:
    return SANDBOX_HOST if current_app.config.get("PAYFAST_SANDBOX", False) else LIVE_HOST


def process_url() -> str:
    return f"{host()}/eng/process"


def _param_string(data: dict) -> str:
    # field order matters: PayFast signs the parameters in the order they were sent
    return "&".join(
        f"{key}={quote_plus(str(value).strip())}"
        for key, value in data.items()
        if key != "signature" and value not in (None, "")
    )


def generate_signature(data: dict, passphrase: str = None) -> str:
    payload = _param_string(data)
    if passphrase:
        payload += f"&passphrase={quote_plus(passphrase.strip())}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def build_payment(*, reference: str, amount, item_name: str, first_name: str, email: str,
                  return_url: str, cancel_url: str, notify_url: str, custom: str = None) -> dict:
    cfg = current_app.config
    merchant_id = cfg.get("PAYFAST_MERCHANT_ID")
    merchant_key = cfg.get("PAYFAST_MERCHANT_KEY")
    if not merchant_id or not merchant_key:
        raise GatewayError("PayFast merchant credentials not configured")

    fields = {
        "merchant_id": merchant_id,
        "merchant_key": merchant_key,
        "return_url": return_url,
        "cancel_url": cancel_url,
        "notify_url": notify_url,
        "name_first": first_name,
        "email_address": email,
        "m_payment_id": reference,
        "amount": f"{to_money(amount):.2f}",
        "item_name": item_name[:100],
        "custom_str1": custom,
    }
    fields = {k: v for k, v in fields.items() if v not in (None, "")}
    fields["signature"] = generate_signature(fields, cfg.get("PAYFAST_PASSPHRASE"))

    return {"method": "payfast", "redirect_url": process_url(), "http_method": "POST", "fields": fields}


def verify_notification(form: dict) -> bool:
    received = form.get("signature") or ""
    expected = generate_signature(dict(form), current_app.config.get("PAYFAST_PASSPHRASE"))
    return hmac.compare_digest(received, expected)


def validate_with_server(form: dict) -> bool:
    """Ask PayFast whether it really sent this ITN."""
    try:
        resp = requests.post(
            f"{host()}/eng/query/validate",
            data=_param_string(dict(form)),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=current_app.config.get("GATEWAY_TIMEOUT_SECONDS", 15),
        )
    except requests.RequestException as exc:
        logger.error("PayFast validate call failed: %s", exc)
        raise GatewayError("PayFast unreachable") from exc

    return resp.status_code == 200 and resp.text.strip() == "VALID"


def parse_notification(form: dict) -> dict:
    status = (form.get("payment_status") or "").upper()
    if status == "COMPLETE":
        outcome = "success"
    elif status == "CANCELLED":
        outcome = "cancelled"
    else:
        outcome = None  # e.g. PENDING: nothing to reconcile yet

    amount = form.get("amount_gross")
    return {
        "outcome": outcome,
        "reference": form.get("m_payment_id"),
        "gateway_reference": form.get("pf_payment_id"),
        "amount": to_money(amount) if amount not in (None, "") else None,
        "status": status,
    }
