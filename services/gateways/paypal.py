"""
PayPal Orders v2: create an order, send the client to the approve link, capture on return.
Prices are kept in ZAR; PayPal is charged in USD at PAYPAL_ZAR_TO_USD.
"""
import json
import logging
from decimal import Decimal

import requests
from flask import current_app

from services.errors import GatewayError
from utils.money import to_money

logger = logging.getLogger(__name__)


def _base() -> str:
    return current_app.config.get("PAYPAL_API_BASE", "https://api-m.sandbox.paypal.com").rstrip("/")


def _timeout() -> int:
    return current_app.config.get("GATEWAY_TIMEOUT_SECONDS", 15)


def to_usd(amount) -> str:
    rate = Decimal(str(current_app.config.get("PAYPAL_ZAR_TO_USD", "0.059")))
    return f"{to_money(to_money(amount) * rate):.2f}"


def _call(method: str, path: str, **kwargs) -> dict:
    try:
        resp = requests.request(method, f"{_base()}{path}", timeout=_timeout(), **kwargs)
    except requests.RequestException as exc:
        logger.error("PayPal %s %s failed: %s", method, path, exc)
        raise GatewayError("PayPal unreachable") from exc

    try:
        data = resp.json()
    except ValueError:
        data = {}

    if resp.status_code >= 400:
        logger.error("PayPal %s %s -> %s %s", method, path, resp.status_code, data)
        raise GatewayError(data.get("message") or f"PayPal request failed ({resp.status_code})",
                           details={"status": resp.status_code})
    return data


def get_access_token() -> str:
    cfg = current_app.config
    client_id = cfg.get("PAYPAL_CLIENT_ID")
    secret = cfg.get("PAYPAL_CLIENT_SECRET")
    if not client_id or not secret:
        raise GatewayError("PayPal credentials not configured")

    data = _call(
        "POST", "/v1/oauth2/token",
        data={"grant_type": "client_credentials"},
        auth=(client_id, secret),
    )
    token = data.get("access_token")
    if not token:
        raise GatewayError("PayPal did not return an access token")
    return token


def _auth_headers() -> dict:
    return {
        "Authorization": f"Bearer {get_access_token()}",
        "Content-Type": "application/json",
    }


def create_order(*, amount, description: str, custom: dict, return_url: str, cancel_url: str) -> dict:
    body = {
        "intent": "CAPTURE",
        "purchase_units": [{
            "amount": {"currency_code": "USD", "value": to_usd(amount)},
            "description": description[:127],
            "custom_id": json.dumps(custom, default=str)[:127],
        }],
        "application_context": {
            "brand_name": current_app.config.get("PAYPAL_BRAND_NAME", ""),
            "landing_page": "NO_PREFERENCE",
            "user_action": "PAY_NOW",
            "return_url": return_url,
            "cancel_url": cancel_url,
        },
    }
    data = _call("POST", "/v2/checkout/orders", headers=_auth_headers(), json=body)

    approve = next((link["href"] for link in data.get("links", []) if link.get("rel") == "approve"), None)
    if not data.get("id") or not approve:
        raise GatewayError("Failed to create PayPal order")

    return {"method": "paypal", "order_id": data["id"], "redirect_url": approve, "http_method": "GET"}


def capture_order(order_id: str) -> dict:
    data = _call("POST", f"/v2/checkout/orders/{order_id}/capture", headers=_auth_headers())

    capture_id = None
    try:
        capture_id = data["purchase_units"][0]["payments"]["captures"][0]["id"]
    except (KeyError, IndexError, TypeError):
        pass

    return {
        "order_id": data.get("id", order_id),
        "status": data.get("status"),
        "capture_id": capture_id,
        "payer": data.get("payer"),
    }
