import hashlib
import hmac
import json
import time
from unittest.mock import patch

import pytest
import stripe

from bathhouse.core.errors import PaymentGatewayError
from bathhouse.services.stripe_client import StripeClient, StripeConfig, verify_webhook_signature

SECRET = "whsec_test"


def _client():
    return StripeClient(StripeConfig(secret_key="sk_test_123", timeout=5))


def test_create_checkout_session_sends_line_item_and_idempotency_key():
    with patch("stripe.checkout.Session.create") as create:
        create.return_value = {"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"}
        out = _client().create_checkout_session(
            client_ref="BH-ABC123",
            amount=4500,
            currency="GBP",
            product_name="Combined Session",
            description="50 minute session",
            customer_email="ada@example.com",
            success_url="https://studio.test/ok",
            cancel_url="https://studio.test/cancel",
            metadata={"type": "booking", "bookingId": "b-1"},
        )

    assert out == {"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"}
    kwargs = create.call_args.kwargs
    assert kwargs["api_key"] == "sk_test_123"
    assert kwargs["idempotency_key"] == "checkout-BH-ABC123-4500"
    assert kwargs["mode"] == "payment"
    assert kwargs["client_reference_id"] == "BH-ABC123"
    price = kwargs["line_items"][0]["price_data"]
    assert price["currency"] == "gbp"
    assert price["unit_amount"] == 4500
    assert kwargs["metadata"] == {"type": "booking", "bookingId": "b-1"}


def test_retrieve_checkout_session():
    with patch("stripe.checkout.Session.retrieve") as retrieve:
        retrieve.return_value = {"id": "cs_1", "payment_status": "paid"}
        out = _client().retrieve_checkout_session("cs_1")
    assert out["payment_status"] == "paid"
    assert retrieve.call_args.args == ("cs_1",)
    assert retrieve.call_args.kwargs["api_key"] == "sk_test_123"


def test_partial_refund_passes_amount_and_idempotency_key():
    with patch("stripe.Refund.create") as create:
        create.return_value = {"id": "re_1", "amount": 2250, "status": "succeeded"}
        out = _client().create_refund(payment_intent="pi_1", amount=2250, client_ref="BH-ABC123",
                                      idempotency_key="refund-b-1-partial")
    assert out["id"] == "re_1"
    kwargs = create.call_args.kwargs
    assert kwargs["idempotency_key"] == "refund-b-1-partial"
    assert kwargs["payment_intent"] == "pi_1"
    assert kwargs["amount"] == 2250


def test_full_refund_leaves_amount_to_stripe():
    with patch("stripe.Refund.create") as create:
        create.return_value = {"id": "re_2", "amount": 4500}
        _client().create_refund(payment_intent="pi_1", amount=None, client_ref="BH-ABC123")
    assert "amount" not in create.call_args.kwargs


def test_stripe_error_becomes_gateway_error():
    err = stripe.InvalidRequestError("No such payment_intent: 'pi_missing'", "payment_intent", code="resource_missing")
    with patch("stripe.Refund.create", side_effect=err):
        with pytest.raises(PaymentGatewayError) as exc:
            _client().create_refund(payment_intent="pi_missing", amount=None, client_ref="BH-ABC123")
    assert "No such payment_intent" in exc.value.message
    assert exc.value.context["stripeCode"] == "resource_missing"
    assert exc.value.context["operation"] == "refund.create"


def test_network_failure_becomes_gateway_error():
    with patch("stripe.checkout.Session.retrieve", side_effect=stripe.APIConnectionError("timed out")):
        with pytest.raises(PaymentGatewayError) as exc:
            _client().retrieve_checkout_session("cs_1")
    assert exc.value.status_code == 502


def _sign(payload: bytes, ts: int, secret: str = SECRET) -> str:
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def test_webhook_signature():
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "checkout.session.completed"}).encode()
    now = int(time.time())

    assert verify_webhook_signature(payload, _sign(payload, now), SECRET) is True
    assert verify_webhook_signature(payload + b" ", _sign(payload, now), SECRET) is False
    assert verify_webhook_signature(payload, _sign(payload, now, "whsec_other"), SECRET) is False
    assert verify_webhook_signature(payload, _sign(payload, now - 600), SECRET, tolerance=300) is False
    assert verify_webhook_signature(payload, "garbage", SECRET) is False
    assert verify_webhook_signature(payload, "", SECRET) is False
    assert verify_webhook_signature(payload, _sign(payload, now), "") is False
