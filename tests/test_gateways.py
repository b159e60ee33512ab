import hashlib
from unittest.mock import MagicMock, patch

import pytest
import requests

from services.errors import GatewayError
from services.gateways import payfast, paypal


def _response(status_code=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    resp.json.return_value = payload if payload is not None else {}
    return resp


# ---------- PayFast ----------

def test_signature_matches_payfast_recipe(app):
    data = {"merchant_id": "10000100", "amount": "100.00", "item_name": "Test Item", "email_address": ""}
    expected = hashlib.md5(
        b"merchant_id=10000100&amount=100.00&item_name=Test+Item&passphrase=jt7NOE43FZPn"
    ).hexdigest()

    assert payfast.generate_signature(data, "jt7NOE43FZPn") == expected
    # signature field itself is never signed
    assert payfast.generate_signature({**data, "signature": "x"}, "jt7NOE43FZPn") == expected


def test_build_payment_is_signed(app):
    out = payfast.build_payment(
        reference="PF_1_1",
        amount="250",
        item_name="Swedish Massage - Booking #000001",
        first_name="Lerato",
        email="lerato@example.com",
        return_url="http://front/verify?success=true",
        cancel_url="http://front/verify?success=false",
        notify_url="http://back/webhooks/payfast",
    )

    assert out["redirect_url"] == "https://sandbox.payfast.co.za/eng/process"
    assert out["http_method"] == "POST"
    fields = out["fields"]
    assert fields["amount"] == "250.00"
    assert fields["m_payment_id"] == "PF_1_1"
    assert "custom_str1" not in fields
    assert payfast.verify_notification(fields)


def test_build_payment_needs_merchant_credentials(app, monkeypatch):
    monkeypatch.setitem(app.config, "PAYFAST_MERCHANT_ID", None)
    with pytest.raises(GatewayError):
        payfast.build_payment(reference="r", amount="1", item_name="x", first_name="a", email="b@c.d",
                              return_url="u", cancel_url="u", notify_url="u")


def test_live_host(app, monkeypatch):
    monkeypatch.setitem(app.config, "PAYFAST_SANDBOX", False)
    assert payfast.process_url() == "https://www.payfast.co.za/eng/process"


@pytest.mark.parametrize("status,outcome", [("COMPLETE", "success"), ("CANCELLED", "cancelled"), ("PENDING", None)])
def test_parse_notification(status, outcome):
    note = payfast.parse_notification({
        "payment_status": status, "m_payment_id": "PF_1_1", "pf_payment_id": "99", "amount_gross": "250.00",
    })
    assert note["outcome"] == outcome
    assert note["reference"] == "PF_1_1"
    assert note["gateway_reference"] == "99"
    assert str(note["amount"]) == "250.00"


def test_validate_with_server(app):
    with patch("services.gateways.payfast.requests.post", return_value=_response(text="VALID")) as post:
        assert payfast.validate_with_server({"m_payment_id": "PF_1_1"})
    assert post.call_args.args[0] == "https://sandbox.payfast.co.za/eng/query/validate"

    with patch("services.gateways.payfast.requests.post", return_value=_response(text="INVALID")):
        assert not payfast.validate_with_server({"m_payment_id": "PF_1_1"})

    with patch("services.gateways.payfast.requests.post", side_effect=requests.ConnectionError("down")):
        with pytest.raises(GatewayError):
            payfast.validate_with_server({"m_payment_id": "PF_1_1"})


# ---------- PayPal ----------

def test_zar_to_usd(app):
    assert paypal.to_usd("500.00") == "29.50"
    assert paypal.to_usd("250") == "14.75"


def test_create_order(app):
    token = _response(payload={"access_token": "tok"})
    order = _response(status_code=201, payload={
        "id": "ORDER-1",
        "links": [{"rel": "self", "href": "https://x/self"}, {"rel": "approve", "href": "https://x/approve"}],
    })
    with patch("services.gateways.paypal.requests.request", side_effect=[token, order]) as call:
        out = paypal.create_order(amount="500.00", description="Swedish Massage", custom={"appointmentId": 1},
                                  return_url="http://front/ok", cancel_url="http://front/cancel")

    assert out == {"method": "paypal", "order_id": "ORDER-1", "redirect_url": "https://x/approve", "http_method": "GET"}
    body = call.call_args_list[1].kwargs["json"]
    assert body["purchase_units"][0]["amount"] == {"currency_code": "USD", "value": "29.50"}
    assert call.call_args_list[1].kwargs["headers"]["Authorization"] == "Bearer tok"


def test_capture_order_extracts_capture_id(app):
    token = _response(payload={"access_token": "tok"})
    captured = _response(status_code=201, payload={
        "id": "ORDER-1",
        "status": "COMPLETED",
        "purchase_units": [{"payments": {"captures": [{"id": "CAP-1"}]}}],
        "payer": {"email_address": "buyer@example.com"},
    })
    with patch("services.gateways.paypal.requests.request", side_effect=[token, captured]):
        out = paypal.capture_order("ORDER-1")

    assert out["status"] == "COMPLETED"
    assert out["capture_id"] == "CAP-1"


def test_paypal_error_status(app):
    token = _response(payload={"access_token": "tok"})
    failed = _response(status_code=422, payload={"message": "ORDER_NOT_APPROVED"})
    with patch("services.gateways.paypal.requests.request", side_effect=[token, failed]):
        with pytest.raises(GatewayError) as exc:
            paypal.capture_order("ORDER-1")
    assert exc.value.message == "ORDER_NOT_APPROVED"
    assert exc.value.details == {"status": 422}


def test_paypal_unreachable(app):
    with patch("services.gateways.paypal.requests.request", side_effect=requests.Timeout("slow")):
        with pytest.raises(GatewayError):
            paypal.get_access_token()


def test_paypal_needs_credentials(app, monkeypatch):
    monkeypatch.setitem(app.config, "PAYPAL_CLIENT_SECRET", None)
    with pytest.raises(GatewayError):
        paypal.get_access_token()
