from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from bathhouse.api.deps import Actor, get_actor, get_payment_gateway, http_error
from bathhouse.core.errors import BookingError, ValidationError
from bathhouse.db.session import get_db
from bathhouse.schemas.booking import BookingCreate, BookingOut, SlotOut, booking_out, slot_out
from bathhouse.schemas.credits import CreditSummaryOut, GiftCardRedeem, credit_summary_out
from bathhouse.schemas.memberships import MembershipStatusOut, membership_status_out
from bathhouse.schemas.payments import CheckoutOut, CheckoutRequest
from bathhouse.schemas.tokens import TokenSummaryOut, token_summary_out
from bathhouse.services import (
    booking_lifecycle,
    credit_ledger,
    membership_service,
    payment_reconciliation,
    slot_store,
    token_ledger,
)
from bathhouse.services.audit_service import log_audit

router = APIRouter(tags=["public"])

# cash and comp are taken at the front desk
PUBLIC_PAYMENT_METHODS = ("card", "token", "gift_card", "membership")


@router.get("/public/slots", response_model=list[SlotOut])
def list_public_slots(date: str, serviceType: Optional[str] = None, db: Session = Depends(get_db)):
    """Slots for a day with remaining places. Dates without generated slots return an empty list."""
    items = slot_store.list_slots(db, date, serviceType)
    return [slot_out(s, slot_store.remaining_capacity(s)) for s in items]


@router.get("/public/tokens", response_model=TokenSummaryOut)
def public_tokens(email: str, db: Session = Depends(get_db)):
    email = token_ledger.normalize_email(email)
    if not email:
        raise HTTPException(status_code=422, detail={"error": "validation_error", "message": "email required"})
    return token_summary_out(email, token_ledger.available_tokens(db, email))


@router.get("/public/credits", response_model=CreditSummaryOut)
def public_credits(email: str, db: Session = Depends(get_db)):
    email = token_ledger.normalize_email(email)
    if not email:
        raise HTTPException(status_code=422, detail={"error": "validation_error", "message": "email required"})
    return credit_summary_out(email, credit_ledger.available_credit(db, email))


@router.post("/public/gift-cards/redeem", response_model=CreditSummaryOut)
def redeem_public_gift_card(body: GiftCardRedeem, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    """Add a gift card's value to the customer's credit without booking anything."""
    email = token_ledger.normalize_email(body.customerEmail)
    try:
        credit = credit_ledger.redeem_gift_card(db, body.giftCardCode, email)
        log_audit(db, actor.id, "gift_card.redeem", "customer_credit", credit.id, {
            "customerEmail": email, "amount": credit.credit_balance,
        })
        db.commit()
    except BookingError as e:
        db.rollback()
        raise http_error(e)
    return credit_summary_out(email, credit_ledger.available_credit(db, email))


@router.get("/public/memberships", response_model=MembershipStatusOut)
def public_membership(email: str, db: Session = Depends(get_db)):
    email = token_ledger.normalize_email(email)
    if not email:
        raise HTTPException(status_code=422, detail={"error": "validation_error", "message": "email required"})
    return membership_status_out(email, membership_service.membership_status(db, email))


@router.post("/public/bookings", response_model=BookingOut)
def create_public_booking(body: BookingCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    if body.paymentMethod not in PUBLIC_PAYMENT_METHODS:
        raise http_error(ValidationError({"paymentMethod": f"Payment method must be one of {', '.join(PUBLIC_PAYMENT_METHODS)}"}))
    # discounts are staff-only
    body = body.model_copy(update={"discountAmount": 0})
    try:
        b = booking_lifecycle.create_booking(db, body, actor=actor.id, created_by_role="customer")
    except BookingError as e:
        raise http_error(e)
    return booking_out(b)


@router.get("/public/bookings/{booking_ref}", response_model=BookingOut)
def get_public_booking(booking_ref: str, db: Session = Depends(get_db)):
    try:
        return booking_out(booking_lifecycle.get_booking_by_ref(db, booking_ref))
    except BookingError as e:
        raise http_error(e)


@router.post("/public/bookings/{booking_ref}/checkout", response_model=CheckoutOut)
def start_public_checkout(
    booking_ref: str,
    body: CheckoutRequest | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    gateway=Depends(get_payment_gateway),
):
    body = body or CheckoutRequest()
    try:
        b = booking_lifecycle.get_booking_by_ref(db, booking_ref)
        session = payment_reconciliation.start_checkout(
            db, b.id, gateway, success_url=body.successUrl, cancel_url=body.cancelUrl, actor=actor.id,
        )
    except BookingError as e:
        raise http_error(e)
    return CheckoutOut(bookingRef=booking_ref, sessionId=session["sessionId"], url=session.get("url"))
