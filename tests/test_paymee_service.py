import hashlib
import json
from decimal import Decimal

import httpx
import pytest

from app.models.order import Order
from app.services.errors import GatewayConfigMissing, GatewayResponseInvalid, GatewayUnavailable, OrderTotalInvalid
from app.services.paymee_service import (
    LIVE_BASE_URL,
    SANDBOX_BASE_URL,
    PaymeeGateway,
    PaymentOutcome,
    compute_checksum,
    is_loopback_url,
    normalize_payment_status,
    verify_checksum,
)


def _order(**overrides) -> Order:
    values = dict(
        id=17,
        name="Amira Ben Salah",
        email="amira@example.com",
        phone="+21620000000",
        total=Decimal("51.000"),
    )
    values.update(overrides)
    return Order(**values)


def test_compute_checksum_matches_md5_of_token_flag_and_key():
    expected = hashlib.md5(b"tok_abc1secret").hexdigest()
    assert compute_checksum("tok_abc", True, "secret") == expected
    assert compute_checksum("tok_abc", False, "secret") == hashlib.md5(b"tok_abc0secret").hexdigest()


@pytest.mark.parametrize("payment_status", [True, "true", "1", 1, "True"])
def test_verify_checksum_accepts_paid_encodings(payment_status):
    payload = {
        "token": "tok_abc",
        "payment_status": payment_status,
        "check_sum": compute_checksum("tok_abc", True, "secret"),
    }
    assert verify_checksum(payload, "secret") is True


def test_verify_checksum_rejects_wrong_key():
    payload = {
        "token": "tok_abc",
        "payment_status": True,
        "check_sum": compute_checksum("tok_abc", True, "other"),
    }
    assert verify_checksum(payload, "secret") is False


def test_verify_checksum_rejects_flipped_status():
    payload = {
        "token": "tok_abc",
        "payment_status": False,
        "check_sum": compute_checksum("tok_abc", True, "secret"),
    }
    assert verify_checksum(payload, "secret") is False


def test_verify_checksum_is_case_insensitive_on_hex():
    payload = {
        "token": "tok_abc",
        "payment_status": True,
        "check_sum": compute_checksum("tok_abc", True, "secret").upper(),
    }
    assert verify_checksum(payload, "secret") is True


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, PaymentOutcome.PAID),
        ("paid", PaymentOutcome.PAID),
        ("COMPLETED", PaymentOutcome.PAID),
        (1, PaymentOutcome.PAID),
        (False, PaymentOutcome.FAILED),
        ("cancelled", PaymentOutcome.FAILED),
        ("0", PaymentOutcome.FAILED),
        (None, PaymentOutcome.UNKNOWN),
        ("pending", PaymentOutcome.UNKNOWN),
    ],
)
def test_normalize_payment_status(value, expected):
    assert normalize_payment_status(value) is expected


def test_is_loopback_url():
    assert is_loopback_url("http://localhost:8000/webhooks/paymee")
    assert is_loopback_url("http://127.0.0.1/webhooks/paymee")
    assert not is_loopback_url("https://shop.example.com/webhooks/paymee")


def test_base_url_follows_environment():
    assert PaymeeGateway(api_key="k", environment="sandbox").base_url == SANDBOX_BASE_URL
    assert PaymeeGateway(api_key="k", environment="live").base_url == LIVE_BASE_URL


def test_init_payment_posts_order_to_paymee(paymee_gateway, paymee_stub):
    session = paymee_gateway.init_payment(_order())

    assert session.token == "paymee_tok_123"
    assert session.payment_url == "https://sandbox.paymee.tn/gateway/paymee_tok_123"

    assert len(paymee_stub.requests) == 1
    request = paymee_stub.requests[0]
    assert str(request.url) == f"{SANDBOX_BASE_URL}/payments/create"
    assert request.headers["Authorization"] == "Token paymee_test_key"
    body = json.loads(request.content)
    assert body["amount"] == 51.0
    assert body["note"] == "Order #17"
    assert body["first_name"] == "Amira"
    assert body["last_name"] == "Ben Salah"
    assert body["email"] == "amira@example.com"
    assert body["order_id"] == "17"
    assert body["webhook_url"] == "https://shop.example.com/webhooks/paymee"
    assert body["return_url"].endswith("orderId=17")
    assert body["cancel_url"].endswith("orderId=17")


def test_build_payment_request_defaults_name_and_skips_webhook_in_paylink_mode():
    gateway = PaymeeGateway(api_key="k", webhook_url="https://shop.example.com/webhooks/paymee", mode="paylink")
    body = gateway.build_payment_request(_order(name=None, email=None, phone=None))

    assert body["first_name"] == "Client"
    assert body["last_name"] == "Client"
    assert "webhook_url" not in body
    assert "email" not in body


def test_build_payment_request_replaces_existing_order_id_param():
    gateway = PaymeeGateway(api_key="k", return_url="https://shop.example.com/back?orderId=1&x=y")
    body = gateway.build_payment_request(_order())

    assert body["return_url"] == "https://shop.example.com/back?x=y&orderId=17"


def test_init_payment_accepts_flat_response(paymee_gateway, paymee_stub):
    paymee_stub.body = {"token": "flat_tok", "paymentUrl": "https://sandbox.paymee.tn/gateway/flat_tok"}

    session = paymee_gateway.init_payment(_order())

    assert session.token == "flat_tok"
    assert session.payment_url.endswith("flat_tok")


def test_init_payment_requires_api_key():
    gateway = PaymeeGateway(api_key="", webhook_url="https://shop.example.com/webhooks/paymee")
    with pytest.raises(GatewayConfigMissing, match="PAYMEE_API_KEY"):
        gateway.init_payment(_order())


def test_init_payment_requires_webhook_url_in_dynamic_mode():
    gateway = PaymeeGateway(api_key="k", webhook_url="", mode="dynamic")
    with pytest.raises(GatewayConfigMissing, match="PAYMEE_WEBHOOK_URL"):
        gateway.init_payment(_order())


def test_init_payment_rejects_loopback_webhook_outside_local_env():
    gateway = PaymeeGateway(
        api_key="k",
        webhook_url="http://localhost:8000/webhooks/paymee",
        mode="dynamic",
        app_env="staging",
    )
    with pytest.raises(GatewayConfigMissing, match="localhost"):
        gateway.init_payment(_order())


def test_init_payment_allows_loopback_webhook_in_development(paymee_stub):
    gateway = PaymeeGateway(
        api_key="k",
        webhook_url="http://localhost:8000/webhooks/paymee",
        mode="dynamic",
        app_env="development",
        http_client=httpx.Client(transport=httpx.MockTransport(paymee_stub.handler)),
    )
    assert gateway.init_payment(_order()).token == "paymee_tok_123"


def test_init_payment_rejects_non_positive_total(paymee_gateway, paymee_stub):
    with pytest.raises(OrderTotalInvalid, match="positive"):
        paymee_gateway.init_payment(_order(total=Decimal("0")))
    assert paymee_stub.requests == []


def test_init_payment_maps_http_error(paymee_gateway, paymee_stub):
    paymee_stub.status_code = 500
    paymee_stub.body = {"message": "boom"}

    with pytest.raises(GatewayUnavailable, match="HTTP 500"):
        paymee_gateway.init_payment(_order())


def test_init_payment_maps_transport_error(paymee_gateway, paymee_stub):
    paymee_stub.error = httpx.ConnectError("connection refused")

    with pytest.raises(GatewayUnavailable, match="unreachable"):
        paymee_gateway.init_payment(_order())


def test_init_payment_rejects_response_without_token(paymee_gateway, paymee_stub):
    paymee_stub.body = {"status": False, "message": "Invalid amount"}

    with pytest.raises(GatewayResponseInvalid, match="token or payment_url"):
        paymee_gateway.init_payment(_order())
