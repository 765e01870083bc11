import base64
import json

import httpx
import pytest

from gateway import GatewayError, GatewayTimeout, RazorpayClient

from conftest import BASE_URL, KEY_ID, KEY_SECRET


def test_fetch_payment_returns_authoritative_fields(gateway, fake_razorpay):
    fake_razorpay.add_payment("pay_1", status="captured", amount=50000, method="card")

    payment = gateway.fetch_payment("pay_1")

    assert payment.id == "pay_1"
    assert payment.status == "captured"
    assert payment.captured is True
    assert payment.method == "card"
    assert payment.amount == 50000
    assert payment.order_id == "order_1"
    assert payment.raw["entity"] == "payment"

def test_fetch_payment_uses_basic_auth(gateway, fake_razorpay):
    fake_razorpay.add_payment("pay_1")
    gateway.fetch_payment("pay_1")

    request = fake_razorpay.requests[0]
    assert request.method == "GET"
    assert str(request.url) == f"{BASE_URL}/payments/pay_1"
    scheme, token = request.headers["authorization"].split(" ", 1)
    assert scheme == "Basic"
    assert base64.b64decode(token).decode() == f"{KEY_ID}:{KEY_SECRET}"

def test_error_status_raises_with_gateway_description(gateway, fake_razorpay):
    with pytest.raises(GatewayError) as info:
        gateway.fetch_payment("pay_missing")
    assert info.value.status_code == 400
    assert "The id provided does not exist" in str(info.value)

def test_server_error_raises(gateway, fake_razorpay):
    fake_razorpay.fail_status = 502
    with pytest.raises(GatewayError) as info:
        gateway.fetch_payment("pay_1")
    assert info.value.status_code == 502

def test_timeout_raises_gateway_timeout_and_is_not_retried(gateway, fake_razorpay):
    fake_razorpay.raise_exc = httpx.ReadTimeout("timed out")
    with pytest.raises(GatewayTimeout):
        gateway.fetch_payment("pay_1")
    assert fake_razorpay.calls == 1

def test_connection_error_raises_gateway_error(gateway, fake_razorpay):
    fake_razorpay.raise_exc = httpx.ConnectError("connection refused")
    with pytest.raises(GatewayError):
        gateway.fetch_payment("pay_1")

def _client_with(handler):
    return RazorpayClient(KEY_ID, KEY_SECRET, base_url=BASE_URL, transport=httpx.MockTransport(handler))

def test_non_json_body_is_a_hard_failure():
    client = _client_with(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(GatewayError):
        client.fetch_payment("pay_1")

def test_body_without_status_is_a_hard_failure():
    client = _client_with(lambda request: httpx.Response(200, json={"id": "pay_1"}))
    with pytest.raises(GatewayError):
        client.fetch_payment("pay_1")

def test_json_list_body_is_a_hard_failure():
    client = _client_with(lambda request: httpx.Response(200, json=[{"status": "captured"}]))
    with pytest.raises(GatewayError):
        client.fetch_payment("pay_1")

def test_payment_id_is_path_escaped(gateway, fake_razorpay):
    with pytest.raises(GatewayError):
        gateway.fetch_payment("../orders")
    assert fake_razorpay.requests[0].url.raw_path == b"/v1/payments/..%2Forders"

def test_create_order_sends_amount_in_paise(gateway, fake_razorpay):
    order = gateway.create_order(amount=50000, currency="INR", receipt="TXN_1", notes={"description": "top-up"})

    body = json.loads(fake_razorpay.requests[0].content)
    assert body == {"amount": 50000, "currency": "INR", "receipt": "TXN_1", "notes": {"description": "top-up"}}
    assert order.id == "order_1"
    assert order.amount == 50000
    assert order.receipt == "TXN_1"

def test_is_configured():
    assert RazorpayClient("k", "s").is_configured
    assert not RazorpayClient(None, "s").is_configured
    assert not RazorpayClient("k", "").is_configured
