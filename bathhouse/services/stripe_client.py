import logging
from dataclasses import dataclass

import stripe

from bathhouse.core.errors import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass
class StripeConfig:
    secret_key: str          # sk_test_... / sk_live_...
    timeout: int = 20


def _as_dict(obj) -> dict:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _gateway_error(e: "stripe.StripeError", operation: str) -> PaymentGatewayError:
    msg = getattr(e, "user_message", None) or str(e) or type(e).__name__
    return PaymentGatewayError(
        f"Stripe {operation} failed: {msg}",
        operation=operation,
        stripeCode=getattr(e, "code", None),
        httpStatus=getattr(e, "http_status", None),
    )


class StripeClient:
    """Thin wrapper over the Stripe SDK returning plain dicts."""

    def __init__(self, cfg: StripeConfig):
        self.cfg = cfg
        # One attempt per call; payment_reconciliation owns the retry.
        stripe.default_http_client = stripe.RequestsClient(timeout=cfg.timeout)
        stripe.max_network_retries = 0

    def create_checkout_session(self, *, client_ref: str, amount: int, currency: str, product_name: str,
                                description: str, customer_email: str, success_url: str, cancel_url: str,
                                metadata: dict) -> dict:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.cfg.secret_key,
                idempotency_key=f"checkout-{client_ref}-{amount}",
                mode="payment",
                customer_email=customer_email,
                client_reference_id=client_ref,
                success_url=success_url,
                cancel_url=cancel_url,
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": int(amount),
                        "product_data": {"name": product_name, "description": description},
                    },
                }],
                metadata=metadata,
            )
        except stripe.StripeError as e:
            raise _gateway_error(e, "checkout.create")
        return _as_dict(session)

    def retrieve_checkout_session(self, session_id: str) -> dict:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.cfg.secret_key)
        except stripe.StripeError as e:
            raise _gateway_error(e, "checkout.retrieve")
        return _as_dict(session)

    def create_refund(self, *, payment_intent: str, amount: int | None, client_ref: str,
                      idempotency_key: str | None = None) -> dict:
        params = {"payment_intent": payment_intent, "metadata": {"booking_ref": client_ref}}
        # no amount refunds whatever is left on the charge
        if amount is not None:
            params["amount"] = int(amount)
        try:
            refund = _as_dict(stripe.Refund.create(api_key=self.cfg.secret_key, idempotency_key=idempotency_key, **params))
        except stripe.StripeError as e:
            raise _gateway_error(e, "refund.create")
        logger.info("Stripe refund %s created for %s", refund.get("id"), client_ref)
        return refund


def verify_webhook_signature(payload: bytes, signature_header: str, secret: str, tolerance: int = 300) -> bool:
    """Check a ``Stripe-Signature`` header against the endpoint secret."""
    if not signature_header or not secret:
        return False
    try:
        stripe.Webhook.construct_event(payload, signature_header, secret, tolerance=tolerance)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning("Stripe webhook signature check failed: %s", e)
        return False
    return True
