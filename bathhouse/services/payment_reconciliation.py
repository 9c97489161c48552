"""Card payments: checkout, verification against Stripe, refunds, webhooks.

Nothing here changes slot occupancy. Seats are held from the moment a
booking is created, paid or not; releasing them is cancellation's job.
Gateway calls happen before any local write, so a failed call leaves the
booking exactly as it was.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from bathhouse.core.config import settings
from bathhouse.core.errors import InvalidTransition, PaymentGatewayError, ValidationError
from bathhouse.models.booking import Booking
from bathhouse.models.payment import Payment
from bathhouse.services import catalog
from bathhouse.services.alert_service import report_inconsistency
from bathhouse.services.audit_service import log_audit
from bathhouse.services.booking_lifecycle import load_booking, transaction
from bathhouse.services.stripe_client import StripeClient, StripeConfig

logger = logging.getLogger(__name__)

REFUND_KINDS = ("full", "partial")


@dataclass
class VerificationResult:
    status: str   # already_paid | no_payment_session | payment_confirmed | unpaid | expired | other
    message: str
    success: bool
    stripe_status: str | None = None


@dataclass
class RefundResult:
    refund_id: str
    amount: int
    payment_status: str
    status: str


class SandboxGateway:
    """Canned Stripe responses for local runs without a Stripe account."""

    def create_checkout_session(self, *, client_ref: str, amount: int, **kwargs) -> dict:
        return {"id": f"cs_sandbox_{client_ref}", "url": f"{settings.CLIENT_BASE_URL}/booking-success?session_id=cs_sandbox_{client_ref}",
                "amount_total": amount, "payment_status": "unpaid"}

    def retrieve_checkout_session(self, session_id: str) -> dict:
        return {"id": session_id, "payment_status": "paid", "status": "complete",
                "payment_intent": f"pi_sandbox_{session_id}"}

    def create_refund(self, *, payment_intent: str, amount: int | None, client_ref: str, **kwargs) -> dict:
        return {"id": f"re_sandbox_{client_ref}", "amount": amount or 0, "status": "succeeded"}


def get_gateway():
    if settings.PAYMENT_SANDBOX:
        return SandboxGateway()
    if not settings.STRIPE_SECRET_KEY:
        raise PaymentGatewayError("Stripe is not configured (missing STRIPE_SECRET_KEY)")
    return StripeClient(StripeConfig(
        secret_key=settings.STRIPE_SECRET_KEY,
        timeout=settings.STRIPE_TIMEOUT_SECONDS,
    ))


def _call_gateway(operation: str, fn, **kwargs):
    """One retry after a short backoff; the second failure goes to the caller."""
    try:
        return fn(**kwargs)
    except PaymentGatewayError as e:
        logger.warning("%s failed (%s); retrying once", operation, e.message)
        time.sleep(settings.PAYMENT_RETRY_BACKOFF_SECONDS)
        return fn(**kwargs)


def _payment_intent_id(session: dict) -> str | None:
    pi = session.get("payment_intent")
    if isinstance(pi, dict):
        return pi.get("id")
    return pi or None


def _mark_paid(db: Session, booking: Booking, session: dict, actor: str, action: str) -> None:
    booking.payment_status = "paid"
    booking.updated_at = datetime.now(timezone.utc)
    db.add(Payment(
        id=str(uuid.uuid4()),
        booking_id=booking.id,
        provider="stripe",
        kind="charge",
        amount=int(session.get("amount_total") or booking.final_amount or 0),
        currency=(session.get("currency") or booking.currency or settings.CURRENCY).upper(),
        status="paid",
        provider_ref=_payment_intent_id(session) or session.get("id") or "",
    ))
    log_audit(db, actor, action, "booking", booking.id, {
        "bookingRef": booking.booking_ref,
        "stripeSessionId": session.get("id"),
        "stripeStatus": session.get("payment_status"),
    })


def start_checkout(db: Session, booking_id: str, gateway, success_url: str | None = None,
                   cancel_url: str | None = None, actor: str = "public") -> dict:
    booking = load_booking(db, booking_id)
    # membership bookings pay for extra guests by card
    if booking.payment_method not in ("card", "membership"):
        raise InvalidTransition("Only card bookings are paid through checkout", bookingId=booking.id)
    if (booking.final_amount or 0) <= 0:
        raise InvalidTransition("Nothing left to pay on this booking", bookingId=booking.id)
    if booking.booking_status != "confirmed" or booking.payment_status != "pending":
        raise InvalidTransition(
            f"Booking is not awaiting payment (payment {booking.payment_status}, booking {booking.booking_status})",
            bookingId=booking.id,
        )

    base = settings.CLIENT_BASE_URL.rstrip("/")
    service = catalog.SERVICES[booking.service_type]
    session = _call_gateway(
        "checkout.create",
        gateway.create_checkout_session,
        client_ref=booking.booking_ref,
        amount=booking.final_amount,
        currency=booking.currency,
        product_name=service.name if booking.booking_type == "communal" else f"Private {service.name}",
        description=f"{booking.duration_minutes} minute session on {booking.slot_date} at {booking.slot_time} "
                    f"for {booking.guest_count} guest(s)",
        customer_email=booking.customer_email,
        success_url=success_url or f"{base}/booking-success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=cancel_url or f"{base}/booking",
        metadata={
            "type": "booking",
            "bookingId": booking.id,
            "bookingRef": booking.booking_ref,
            "timeSlotId": booking.time_slot_id,
        },
    )

    with transaction(db, "payment.checkout", booking.id):
        booking.stripe_session_id = session.get("id")
        booking.updated_at = datetime.now(timezone.utc)
        log_audit(db, actor, "payment.checkout_started", "booking", booking.id, {
            "bookingRef": booking.booking_ref, "stripeSessionId": booking.stripe_session_id,
        })
    return {"sessionId": session.get("id"), "url": session.get("url")}


def verify_external_payment(db: Session, booking_id: str, gateway, actor: str = "staff") -> VerificationResult:
    """Compare a booking's payment status with Stripe and repair a missed webhook."""
    booking = load_booking(db, booking_id)

    if booking.payment_status == "paid":
        return VerificationResult("already_paid", "Booking is already marked as paid", True)

    if not booking.stripe_session_id:
        return VerificationResult(
            "no_payment_session",
            "No Stripe session ID found for this booking. This booking may have been created manually.",
            False,
        )

    session = _call_gateway("checkout.retrieve", gateway.retrieve_checkout_session, session_id=booking.stripe_session_id)
    stripe_status = session.get("payment_status")
    logger.info("Stripe session status for booking %s: %s", booking.booking_ref, stripe_status)

    if stripe_status == "paid":
        if booking.payment_status != "pending":
            return VerificationResult(
                "other",
                f"Stripe shows a completed payment but the booking is {booking.payment_status}; not changed.",
                False,
                stripe_status,
            )
        with transaction(db, "payment.verify", booking.id):
            _mark_paid(db, booking, session, actor, "payment.reconciled")
        logger.warning("Booking %s was paid in Stripe but still pending locally; corrected", booking.booking_ref)
        return VerificationResult(
            "payment_confirmed",
            "Payment verified! Stripe recorded the charge but the confirmation never reached us "
            "(likely a missed webhook). Booking has been marked as paid.",
            True,
            stripe_status,
        )

    if session.get("status") == "expired":
        return VerificationResult(
            "expired",
            "The Stripe checkout session expired without payment. The booking stays pending and keeps its places.",
            False,
            stripe_status,
        )
    if stripe_status == "unpaid":
        return VerificationResult(
            "unpaid",
            "Stripe shows this payment as unpaid. The customer may have abandoned checkout.",
            False,
            stripe_status,
        )
    return VerificationResult("other", f"Stripe payment status is: {stripe_status}", False, stripe_status)


def refund_payment(db: Session, booking_id: str, kind: str, gateway, actor: str = "staff") -> RefundResult:
    """Refund a card payment in full or by half. Does not cancel the booking."""
    if kind not in REFUND_KINDS:
        raise ValidationError({"refundType": "Refund type must be full or partial"})
    booking = load_booking(db, booking_id)
    if booking.payment_status != "paid":
        raise InvalidTransition("Booking has not been paid", bookingId=booking.id, paymentStatus=booking.payment_status)
    if not booking.stripe_session_id:
        raise InvalidTransition("No Stripe session found for this booking", bookingId=booking.id)

    session = _call_gateway("checkout.retrieve", gateway.retrieve_checkout_session, session_id=booking.stripe_session_id)
    payment_intent = _payment_intent_id(session)
    if not payment_intent:
        raise InvalidTransition("No payment intent found for this session", bookingId=booking.id)

    paid = int(booking.final_amount or booking.price_amount or 0)
    amount = None if kind == "full" else (paid + 1) // 2
    refund = _call_gateway(
        "refund.create",
        gateway.create_refund,
        payment_intent=payment_intent,
        amount=amount,
        client_ref=booking.booking_ref,
        idempotency_key=f"refund-{booking.id}-{kind}",
    )
    refund_id = str(refund.get("id") or "")
    refunded = int(refund.get("amount") or (amount if amount is not None else paid))
    new_status = "refunded" if kind == "full" else "partial_refund"
    logger.info("Refund %s processed for booking %s: %s", refund_id, booking.booking_ref, refunded)

    # Money has moved; a failed local write here needs a human.
    try:
        booking.payment_status = new_status
        booking.updated_at = datetime.now(timezone.utc)
        db.add(Payment(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            provider="stripe",
            kind="refund",
            amount=refunded,
            currency=booking.currency or settings.CURRENCY,
            status="refunded",
            provider_ref=refund_id,
        ))
        log_audit(db, actor, "payment.refund", "booking", booking.id, {
            "bookingRef": booking.booking_ref, "refundId": refund_id, "amount": refunded, "kind": kind,
        })
        db.commit()
    except Exception as e:
        db.rollback()
        raise report_inconsistency(
            db, "payment.refund", booking.id,
            "Refund processed but failed to update booking status",
            {"refundId": refund_id, "amount": refunded, "kind": kind, "error": str(e)},
        ) from e

    return RefundResult(refund_id=refund_id, amount=refunded, payment_status=new_status, status=str(refund.get("status") or ""))


def handle_webhook_event(db: Session, event: dict) -> dict:
    """Apply a Stripe event. Repeated deliveries are no-ops."""
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}
    logger.info("Stripe webhook event received: %s", event_type)

    if event_type not in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
        return {"handled": False, "type": event_type}
    if metadata.get("type") != "booking":
        return {"handled": False, "type": event_type}

    booking = None
    if metadata.get("bookingId"):
        booking = db.get(Booking, metadata["bookingId"])
    if booking is None and obj.get("id"):
        booking = db.query(Booking).filter(Booking.stripe_session_id == obj["id"]).first()
    if booking is None:
        logger.warning("Webhook for unknown booking (session %s)", obj.get("id"))
        return {"handled": False, "type": event_type}

    if obj.get("payment_status") != "paid":
        return {"handled": False, "type": event_type, "bookingRef": booking.booking_ref}

    if booking.payment_status == "pending":
        with transaction(db, "payment.webhook", booking.id):
            if not booking.stripe_session_id:
                booking.stripe_session_id = obj.get("id")
            _mark_paid(db, booking, obj, "stripe", "payment.paid_webhook")
    return {"handled": True, "type": event_type, "bookingRef": booking.booking_ref,
            "paymentStatus": booking.payment_status}
