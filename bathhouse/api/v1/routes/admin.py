from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from bathhouse.api.deps import STAFF_ROLES, Actor, get_payment_gateway, http_error, require_roles
from bathhouse.core.config import settings
from bathhouse.core.errors import BookingError, ValidationError
from bathhouse.db.session import get_db
from bathhouse.models.booking import Booking
from bathhouse.models.membership import Membership
from bathhouse.schemas.booking import (
    BookingCreate,
    BookingOut,
    BookingUpdate,
    CancelOut,
    SlotGenerateRequest,
    booking_out,
)
from bathhouse.schemas.credits import CreditSummaryOut, GiftCardIssue, GiftCardOut, credit_summary_out, gift_card_out
from bathhouse.schemas.memberships import MembershipCreate, MembershipOut, membership_out
from bathhouse.schemas.payments import RefundOut, RefundRequest, VerificationOut
from bathhouse.schemas.tokens import TokenEntryOut, TokenGrant, TokenSummaryOut, token_summary_out
from bathhouse.services import (
    alert_service,
    booking_lifecycle,
    catalog,
    credit_ledger,
    membership_service,
    payment_reconciliation,
    slot_store,
    token_ledger,
)
from bathhouse.services.audit_service import log_audit
from bathhouse.services.settings_service import set_int_setting

router = APIRouter(tags=["admin"])

staff_only = require_roles(*STAFF_ROLES)


@router.post("/admin/bookings", response_model=BookingOut)
def admin_create_booking(body: BookingCreate, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    try:
        b = booking_lifecycle.create_booking(db, body, actor=me.id, created_by_role=me.role)
    except BookingError as e:
        raise http_error(e)
    return booking_out(b)


@router.get("/admin/bookings")
def admin_list_bookings(date: Optional[str] = None, status: Optional[str] = None, q: Optional[str] = None,
                        limit: int = 50, offset: int = 0,
                        db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    query = db.query(Booking)
    if date:
        query = query.filter(Booking.slot_date == date)
    if status:
        query = query.filter(Booking.booking_status == status)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter((Booking.booking_ref.ilike(like)) | (Booking.customer_email.ilike(like))
                             | (Booking.customer_name.ilike(like)))
    total = query.count()
    items = (query.order_by(Booking.slot_date.desc(), Booking.slot_time.desc())
             .offset(max(0, offset)).limit(max(1, min(200, limit))).all())
    return {"total": total, "items": [booking_out(b) for b in items]}


@router.get("/admin/bookings/{booking_id}", response_model=BookingOut)
def admin_get_booking(booking_id: str, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    try:
        return booking_out(booking_lifecycle.load_booking(db, booking_id))
    except BookingError as e:
        raise http_error(e)


@router.patch("/admin/bookings/{booking_id}", response_model=BookingOut)
def admin_edit_booking(booking_id: str, body: BookingUpdate, db: Session = Depends(get_db),
                       me: Actor = Depends(staff_only)):
    try:
        b = booking_lifecycle.edit_booking(db, booking_id, body, actor=me.id)
    except BookingError as e:
        raise http_error(e)
    return booking_out(b)


@router.post("/admin/bookings/{booking_id}/cancel", response_model=CancelOut)
def admin_cancel_booking(booking_id: str, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    try:
        result = booking_lifecycle.cancel_booking(db, booking_id, actor=me.id)
    except BookingError as e:
        raise http_error(e)
    return CancelOut(
        bookingRef=result.booking.booking_ref,
        slotsFreed=result.slots_freed,
        tokenRefunded=result.token_refunded,
        tokensRefunded=result.tokens_refunded,
        creditRefunded=result.credit_refunded,
        sessionRestored=result.session_restored,
    )


@router.post("/admin/bookings/{booking_id}/complete", response_model=BookingOut)
def admin_complete_booking(booking_id: str, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    try:
        b = booking_lifecycle.complete_booking(db, booking_id, actor=me.id)
    except BookingError as e:
        raise http_error(e)
    return booking_out(b)


@router.post("/admin/bookings/{booking_id}/verify-payment", response_model=VerificationOut)
def admin_verify_payment(booking_id: str, db: Session = Depends(get_db), me: Actor = Depends(staff_only),
                         gateway=Depends(get_payment_gateway)):
    try:
        result = payment_reconciliation.verify_external_payment(db, booking_id, gateway, actor=me.id)
        b = booking_lifecycle.load_booking(db, booking_id)
    except BookingError as e:
        raise http_error(e)
    return VerificationOut(
        bookingRef=b.booking_ref,
        success=result.success,
        status=result.status,
        message=result.message,
        paymentStatus=b.payment_status,
        stripeStatus=result.stripe_status,
    )


@router.post("/admin/bookings/{booking_id}/refund", response_model=RefundOut)
def admin_refund_payment(booking_id: str, body: RefundRequest, db: Session = Depends(get_db),
                         me: Actor = Depends(require_roles("admin")), gateway=Depends(get_payment_gateway)):
    try:
        result = payment_reconciliation.refund_payment(db, booking_id, body.refundType, gateway, actor=me.id)
        b = booking_lifecycle.load_booking(db, booking_id)
    except BookingError as e:
        raise http_error(e)
    return RefundOut(
        bookingRef=b.booking_ref,
        refundId=result.refund_id,
        refundAmount=result.amount,
        paymentStatus=result.payment_status,
        status=result.status,
    )


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        expires_at = datetime.fromisoformat(value)
    except ValueError:
        raise http_error(ValidationError({"expiresAt": "expiresAt must be an ISO-8601 timestamp"}))
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at


@router.post("/admin/tokens", response_model=TokenEntryOut)
def admin_grant_tokens(body: TokenGrant, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    expires_at = _parse_expiry(body.expiresAt)
    try:
        entry = token_ledger.grant_tokens(db, body.customerEmail, body.tokens, expires_at=expires_at, notes=body.notes)
    except BookingError as e:
        raise http_error(e)
    return TokenEntryOut(
        id=entry.id,
        tokensRemaining=entry.tokens_remaining,
        expiresAt=entry.expires_at.isoformat() if entry.expires_at else None,
        notes=entry.notes,
    )


@router.get("/admin/tokens", response_model=TokenSummaryOut)
def admin_list_tokens(email: str, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    email = token_ledger.normalize_email(email)
    return token_summary_out(email, token_ledger.available_tokens(db, email))


@router.post("/admin/gift-cards", response_model=GiftCardOut)
def admin_issue_gift_card(body: GiftCardIssue, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    """Record a gift card sold at the desk."""
    expires_at = _parse_expiry(body.expiresAt)
    try:
        card = credit_ledger.issue_gift_card(
            db, body.amount, purchaser_email=body.purchaserEmail, recipient_name=body.recipientName,
            expires_at=expires_at,
        )
    except BookingError as e:
        raise http_error(e)
    log_audit(db, me.id, "gift_card.issue", "gift_card", card.id, {"giftCode": card.gift_code, "amount": card.amount})
    db.commit()
    return gift_card_out(card)


@router.get("/admin/credits", response_model=CreditSummaryOut)
def admin_list_credits(email: str, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    email = token_ledger.normalize_email(email)
    return credit_summary_out(email, credit_ledger.available_credit(db, email))


@router.post("/admin/memberships", response_model=MembershipOut)
def admin_create_membership(body: MembershipCreate, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    try:
        m = membership_service.create_membership(
            db, body.customerEmail, body.membershipType, body.startDate, body.endDate,
            sessions_per_week=body.sessionsPerWeek, customer_name=body.customerName,
        )
    except BookingError as e:
        raise http_error(e)
    log_audit(db, me.id, "membership.create", "membership", m.id, {
        "customerEmail": m.customer_email, "membershipType": m.membership_type,
    })
    db.commit()
    return membership_out(m)


@router.get("/admin/memberships", response_model=list[MembershipOut])
def admin_list_memberships(email: str, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    email = token_ledger.normalize_email(email)
    items = db.query(Membership).filter(Membership.customer_email == email).order_by(Membership.created_at.desc()).all()
    return [membership_out(m) for m in items]


@router.post("/admin/memberships/{membership_id}/cancel", response_model=MembershipOut)
def admin_cancel_membership(membership_id: str, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    m = membership_service.cancel_membership(db, membership_id)
    if m is None:
        raise HTTPException(status_code=404, detail={"error": "membership_not_found", "message": "Membership not found"})
    log_audit(db, me.id, "membership.cancel", "membership", m.id, {"customerEmail": m.customer_email})
    db.commit()
    return membership_out(m)


@router.post("/admin/slots/generate")
def admin_generate_slots(body: SlotGenerateRequest, db: Session = Depends(get_db),
                         me: Actor = Depends(require_roles("admin"))):
    try:
        start = date.fromisoformat(body.startDate)
        end = date.fromisoformat(body.endDate)
    except ValueError:
        raise http_error(ValidationError({"startDate": "startDate and endDate must be YYYY-MM-DD"}))
    if (end - start).days > 366:
        raise http_error(ValidationError({"endDate": "Range must not exceed one year"}))
    try:
        created = slot_store.generate_slots(db, start, end, body.times, body.serviceTypes)
    except BookingError as e:
        raise http_error(e)
    return {"created": created}


@router.get("/admin/slots/{slot_id}/audit")
def admin_slot_audit(slot_id: str, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    """Compare the stored occupancy with the sum of active bookings."""
    slot = slot_store.get_slot(db, slot_id)
    if slot is None:
        raise HTTPException(status_code=404, detail={"error": "slot_not_found", "message": "Time slot not found"})
    active = booking_lifecycle.active_guest_total(db, slot_id)
    return {"slotId": slot.id, "bookedCount": slot.booked_count, "activeGuests": active,
            "consistent": slot.booked_count == active}


@router.get("/admin/alerts")
def admin_list_alerts(limit: int = 50, db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    return [
        {
            "id": a.id,
            "operation": a.operation,
            "entityId": a.entity_id,
            "message": a.message,
            "details": a.details_json,
            "createdAt": a.created_at.isoformat() if a.created_at else None,
        }
        for a in alert_service.list_open_alerts(db, limit=max(1, min(200, limit)))
    ]


@router.post("/admin/alerts/{alert_id}/resolve")
def admin_resolve_alert(alert_id: str, db: Session = Depends(get_db), me: Actor = Depends(require_roles("admin"))):
    if not alert_service.resolve_alert(db, alert_id):
        raise HTTPException(status_code=404, detail={"error": "alert_not_found", "message": "Alert not found"})
    return {"ok": True}


@router.get("/admin/settings/prices")
def admin_get_prices(db: Session = Depends(get_db), me: Actor = Depends(staff_only)):
    prices = {key: catalog.unit_price(db, key) for key in catalog.SERVICES}
    prices["private"] = catalog.private_price(db)
    return {"currency": settings.CURRENCY, "prices": prices}


@router.post("/admin/settings/prices/{price_key}")
def admin_set_price(price_key: str, amount: int, db: Session = Depends(get_db),
                    me: Actor = Depends(require_roles("admin"))):
    if price_key != "private" and price_key not in catalog.SERVICES:
        raise HTTPException(status_code=404, detail={"error": "unknown_price", "message": f"Unknown price: {price_key}"})
    setting_key = f"PRICE_{price_key.upper()}"
    log_audit(db, me.id, "settings.price", "setting", setting_key, {"amount": amount})
    try:
        value = set_int_setting(db, setting_key, amount)
    except ValueError as e:
        db.rollback()
        raise http_error(ValidationError({"amount": str(e)}))
    return {"key": price_key, "amount": value}
