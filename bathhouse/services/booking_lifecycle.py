"""Create, edit, cancel and complete bookings.

Each operation runs as one database transaction over the booking row, its
time slot and whatever paid for it (session tokens, gift card credit, a
member's weekly allowance): either all of it commits or none of it does.
"""
import logging
import random
import re
import string
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from bathhouse.core.config import settings
from bathhouse.core.errors import (
    AlreadyCancelled,
    BookingError,
    BookingNotFound,
    CapacityExceeded,
    InconsistentStateError,
    InvalidTransition,
    SlotConflict,
    ValidationError,
)
from bathhouse.models.booking import (
    BOOKING_TYPES,
    PAID_ON_CREATE,
    PAYMENT_METHODS,
    Booking,
)
from bathhouse.models.time_slot import TimeSlot
from bathhouse.schemas.booking import BookingCreate, BookingUpdate
from bathhouse.services import catalog, credit_ledger, membership_service, slot_store, token_ledger
from bathhouse.services.alert_service import report_inconsistency
from bathhouse.services.audit_service import log_audit

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(:[0-5]\d)?$")

# payment statuses an edit may set directly; refunds go through payment_reconciliation
EDITABLE_PAYMENT_STATUSES = ("pending", "paid", "cancelled")
# refunds are final; only payment_reconciliation writes them
FINAL_PAYMENT_STATUSES = ("refunded", "partial_refund")
# the booking consumed something (tokens, credit) when it was made
PREPAID_METHODS = ("token", "gift_card", "comp")
SLOT_FIELDS = ("sessionDate", "sessionTime", "serviceType", "guestCount")


@dataclass
class CancelResult:
    booking: Booking
    slots_freed: int
    token_refunded: bool
    tokens_refunded: int = 0
    credit_refunded: int = 0
    session_restored: bool = False


def make_booking_ref() -> str:
    return "BH-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=6))


def _new_booking_ref(db: Session) -> str:
    # booking_ref must be unique
    for _ in range(10):
        ref = make_booking_ref()
        if not db.query(Booking).filter(Booking.booking_ref == ref).first():
            return ref
    raise InconsistentStateError("Could not allocate booking reference")


def _studio_today(now: datetime) -> date:
    return now.astimezone(ZoneInfo(settings.STUDIO_TIMEZONE)).date()


def _normalize_time(value: str) -> str:
    return value[:5]


def _check_date(issues: dict, value: str | None, now: datetime) -> None:
    if not value:
        issues["sessionDate"] = "Session date is required"
        return
    try:
        d = date.fromisoformat(value)
    except ValueError:
        issues["sessionDate"] = "Session date must be YYYY-MM-DD"
        return
    if d < _studio_today(now):
        issues["sessionDate"] = "Session date is in the past"


def _check_time(issues: dict, value: str | None) -> None:
    if not value:
        issues["sessionTime"] = "Session time is required"
    elif not TIME_RE.match(value):
        issues["sessionTime"] = "Session time must be HH:MM"


def _check_guests(issues: dict, value: int | None) -> None:
    if value is None or value < 1 or value > settings.MAX_GUESTS:
        issues["guestCount"] = f"Guest count must be between 1 and {settings.MAX_GUESTS}"


def _check_email(issues: dict, value: str | None) -> None:
    if not value or not EMAIL_RE.match(value.strip()):
        issues["customerEmail"] = "A valid email address is required"


def validate_create(data: BookingCreate, now: datetime) -> None:
    issues: dict[str, str] = {}
    if not (data.customerName or "").strip():
        issues["customerName"] = "Customer name is required"
    _check_email(issues, data.customerEmail)
    _check_date(issues, data.sessionDate, now)
    _check_time(issues, data.sessionTime)
    _check_guests(issues, data.guestCount)
    if catalog.get_service(data.serviceType) is None:
        issues["serviceType"] = f"Unknown service type: {data.serviceType}"
    if data.bookingType not in BOOKING_TYPES:
        issues["bookingType"] = "Booking type must be communal or private"
    if data.paymentMethod not in PAYMENT_METHODS:
        issues["paymentMethod"] = f"Payment method must be one of {', '.join(PAYMENT_METHODS)}"
    elif data.paymentMethod == "token" and data.bookingType == "private":
        issues["paymentMethod"] = "Session tokens can only be used for communal sessions"
    elif data.paymentMethod == "membership" and data.bookingType == "private":
        issues["paymentMethod"] = "Memberships cover communal sessions only"
    elif data.applyCredit and data.paymentMethod != "card":
        issues["applyCredit"] = "Credit can only be applied to card bookings"
    if data.discountAmount < 0:
        issues["discountAmount"] = "Discount must not be negative"
    if issues:
        raise ValidationError(issues)


def validate_update(changes: dict, now: datetime) -> None:
    issues: dict[str, str] = {}
    if "customerName" in changes and not (changes["customerName"] or "").strip():
        issues["customerName"] = "Customer name is required"
    if "customerEmail" in changes:
        _check_email(issues, changes["customerEmail"])
    if "sessionDate" in changes:
        _check_date(issues, changes["sessionDate"], now)
    if "sessionTime" in changes:
        _check_time(issues, changes["sessionTime"])
    if "guestCount" in changes:
        _check_guests(issues, changes["guestCount"])
    if "serviceType" in changes and catalog.get_service(changes["serviceType"] or "") is None:
        issues["serviceType"] = f"Unknown service type: {changes['serviceType']}"
    if "paymentStatus" in changes:
        status = changes["paymentStatus"]
        if status not in EDITABLE_PAYMENT_STATUSES:
            issues["paymentStatus"] = f"Payment status must be one of {', '.join(EDITABLE_PAYMENT_STATUSES)}"
        elif status == "cancelled" and any(f in changes for f in SLOT_FIELDS):
            issues["paymentStatus"] = "Cancel the booking without changing its session or guests"
    if issues:
        raise ValidationError(issues)


def check_payment_status_change(booking: Booking, new_status: str) -> None:
    current = booking.payment_status
    if new_status == current:
        return
    if current in FINAL_PAYMENT_STATUSES:
        raise InvalidTransition(
            f"Payment status {current} cannot be changed by an edit; cancel the booking instead",
            bookingId=booking.id, paymentStatus=current,
        )
    if new_status == "pending" and booking.stripe_session_id and current == "paid":
        raise InvalidTransition(
            "A payment captured by Stripe cannot be set back to pending; refund it instead",
            bookingId=booking.id, paymentStatus=current,
        )
    if new_status == "pending" and booking.payment_method in PREPAID_METHODS:
        raise InvalidTransition(
            f"A {booking.payment_method} booking is paid when it is made",
            bookingId=booking.id, paymentStatus=current,
        )


@contextmanager
def transaction(db: Session, operation: str, entity_id: str):
    try:
        yield
        db.commit()
    except InconsistentStateError as e:
        db.rollback()
        report_inconsistency(db, operation, entity_id, e.message, e.context)
        raise
    except BookingError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.exception("Unexpected failure in %s for %s", operation, entity_id)
        raise report_inconsistency(
            db, operation, entity_id, f"{type(e).__name__}: {e}", {"rolledBack": True}
        ) from e


def _precheck(slot: TimeSlot, booking_type: str, guests: int) -> None:
    """Fail early with a user-facing error; adjust_occupancy re-checks atomically."""
    if booking_type == "private":
        if slot.is_private or slot.booked_count > 0:
            raise SlotConflict(
                "Time slot not available for private booking",
                slotId=slot.id, bookedCount=slot.booked_count,
            )
        return
    if slot.is_private:
        raise SlotConflict("Time slot has been booked privately", slotId=slot.id)
    if slot.booked_count + guests > slot.capacity:
        raise CapacityExceeded(remaining=slot_store.remaining_capacity(slot), requested=guests, slot_id=slot.id)


def _check_one_per_day(db: Session, email: str, slot_date: str, method: str, message: str,
                       exclude_id: str | None = None) -> None:
    q = select(Booking).where(
        Booking.customer_email == email,
        Booking.slot_date == slot_date,
        Booking.payment_method == method,
        Booking.booking_status != "cancelled",
    )
    if exclude_id:
        q = q.where(Booking.id != exclude_id)
    existing = db.execute(q).scalars().first()
    if existing:
        raise ValidationError({"paymentMethod": message.format(time=existing.slot_time)})


def _amounts(db: Session, service_type: str, booking_type: str, guests: int, method: str,
             requested_discount: int) -> tuple[int, int, int]:
    """Price, discount and the amount still due before any credit."""
    price = catalog.quote(db, service_type, booking_type, guests)
    if method in ("token", "comp"):
        return price, price, 0
    discount = max(requested_discount, 0)
    if method == "membership":
        # the member's own place is covered; extra guests pay
        discount += catalog.unit_price(db, service_type)
    discount = min(discount, price)
    return price, discount, price - discount


def _payment_status_for(method: str, final: int) -> str:
    if method in PAID_ON_CREATE or final == 0:
        return "paid"
    return "pending"


def load_booking(db: Session, booking_id: str) -> Booking:
    booking = db.get(Booking, booking_id, populate_existing=True)
    if not booking:
        raise BookingNotFound("Booking not found", bookingId=booking_id)
    return booking


def get_booking_by_ref(db: Session, booking_ref: str) -> Booking:
    booking = db.query(Booking).filter(Booking.booking_ref == booking_ref).first()
    if not booking:
        raise BookingNotFound("Booking not found", bookingRef=booking_ref)
    return booking


def create_booking(db: Session, data: BookingCreate, actor: str = "public", created_by_role: str = "customer",
                   now: datetime | None = None) -> Booking:
    now = now or datetime.now(timezone.utc)
    validate_create(data, now)

    email = token_ledger.normalize_email(data.customerEmail)
    slot_time = _normalize_time(data.sessionTime)
    booking_id = str(uuid.uuid4())
    service = catalog.get_service(data.serviceType)
    private = data.bookingType == "private"
    method = data.paymentMethod

    with transaction(db, "booking.create", booking_id):
        plan = None
        if method == "token":
            if settings.TOKEN_ONE_PER_DAY:
                _check_one_per_day(
                    db, email, data.sessionDate, "token",
                    "A free session is already booked on this date at {time}. Only one token booking per day is allowed.",
                )
            plan = token_ledger.allocate(db, email, data.guestCount, now)

        slot = slot_store.find_or_create_slot(db, data.sessionDate, slot_time, data.serviceType)
        _precheck(slot, data.bookingType, data.guestCount)

        price, discount, due = _amounts(db, data.serviceType, data.bookingType, data.guestCount, method,
                                        data.discountAmount)

        credit, credit_plan = 0, None
        if method == "gift_card":
            if (data.giftCardCode or "").strip():
                credit_ledger.redeem_gift_card(db, data.giftCardCode, email, now)
            credit = due
        elif method == "card" and data.applyCredit and due > 0:
            credit = min(credit_ledger.available_credit(db, email, now).total, due)
        if credit > 0:
            credit_plan = credit_ledger.allocate(db, email, credit, now)

        membership = None
        if method == "membership":
            _check_one_per_day(
                db, email, data.sessionDate, "membership",
                "You already have a member booking on this date at {time}.",
            )
            membership = membership_service.consume_session(db, email, data.sessionDate, _studio_today(now))

        final = due - credit
        booking = Booking(
            id=booking_id,
            booking_ref=_new_booking_ref(db),
            user_id=data.userId,
            customer_name=data.customerName.strip(),
            customer_email=email,
            customer_phone=data.customerPhone or None,
            time_slot_id=slot.id,
            slot_date=data.sessionDate,
            slot_time=slot_time,
            service_type=data.serviceType,
            booking_type=data.bookingType,
            guest_count=data.guestCount,
            duration_minutes=service.duration_minutes,
            price_amount=price,
            discount_amount=discount,
            credit_amount=credit,
            final_amount=final,
            currency=settings.CURRENCY,
            payment_method=method,
            payment_status=_payment_status_for(method, final),
            booking_status="confirmed",
            special_requests=data.specialRequests or None,
            gift_card_code=(data.giftCardCode or "").strip().upper() or None,
            membership_id=membership.id if membership else None,
            created_by_role=created_by_role,
            created_at=now,
            updated_at=now,
        )
        db.add(booking)
        db.flush()

        slot_store.adjust_occupancy(db, slot.id, data.guestCount, becomes_private=private)
        if plan:
            token_ledger.commit(db, plan, booking_id=booking.id)
        if credit_plan:
            credit_ledger.commit(db, credit_plan, booking_id=booking.id)

        log_audit(db, actor, "booking.create", "booking", booking.id, {
            "bookingRef": booking.booking_ref,
            "slotId": slot.id,
            "guestCount": booking.guest_count,
            "bookingType": booking.booking_type,
            "paymentMethod": booking.payment_method,
            "creditAmount": credit,
        })

    db.refresh(booking)
    logger.info(
        "Booking %s created: %s %s %s x%s (%s, %s)",
        booking.booking_ref, booking.slot_date, booking.slot_time, booking.service_type,
        booking.guest_count, booking.booking_type, booking.payment_method,
    )
    return booking


def _move_or_resize(db: Session, booking: Booking, new_date: str, new_time: str, new_service: str,
                    new_guests: int) -> None:
    private = booking.booking_type == "private"
    old_guests = booking.guest_count
    moving = (new_date, new_time, new_service) != (booking.slot_date, booking.slot_time, booking.service_type)

    if moving:
        # Take the new seats before giving up the old ones; a refusal leaves the old slot untouched.
        new_slot = slot_store.find_or_create_slot(db, new_date, new_time, new_service)
        _precheck(new_slot, booking.booking_type, new_guests)
        slot_store.adjust_occupancy(db, new_slot.id, new_guests, becomes_private=private)
        slot_store.release(db, booking.time_slot_id, old_guests)
        booking.time_slot_id = new_slot.id
        booking.slot_date = new_date
        booking.slot_time = new_time
        booking.service_type = new_service
        booking.duration_minutes = catalog.SERVICES[new_service].duration_minutes
    elif new_guests != old_guests:
        if private:
            slot_store.release(db, booking.time_slot_id, old_guests)
            slot_store.adjust_occupancy(db, booking.time_slot_id, new_guests, becomes_private=True)
        else:
            diff = new_guests - old_guests
            if diff > 0:
                slot = slot_store.get_slot(db, booking.time_slot_id)
                _precheck(slot, "communal", diff)
            slot_store.adjust_occupancy(db, booking.time_slot_id, diff)
    booking.guest_count = new_guests


def _settled_externally(booking: Booking) -> bool:
    # money for a definite amount was taken outside the engine; keep the amounts as charged
    return (
        booking.payment_status != "pending"
        and booking.payment_method in ("card", "membership")
        and (booking.final_amount or 0) > 0
    )


def _reprice(db: Session, booking: Booking, now: datetime) -> None:
    method = booking.payment_method
    requested = booking.discount_amount if method in ("card", "cash", "gift_card") else 0
    price, discount, due = _amounts(
        db, booking.service_type, booking.booking_type, booking.guest_count, method, requested,
    )

    held = booking.credit_amount or 0
    target = due if method == "gift_card" else min(held, due)
    if target > held:
        plan = credit_ledger.allocate(db, booking.customer_email, target - held, now)
        credit_ledger.commit(db, plan, booking_id=booking.id)
    elif target < held:
        credit_ledger.refund(db, booking.customer_email, held - target, booking_id=booking.id, as_of=now)

    booking.price_amount, booking.discount_amount = price, discount
    booking.credit_amount, booking.final_amount = target, due - target
    if booking.payment_status in ("pending", "paid"):
        booking.payment_status = _payment_status_for(method, booking.final_amount)


def _claim_for_edit(db: Session, booking: Booking, now: datetime) -> None:
    """Re-check, inside the edit's transaction, that nothing changed the booking since it was loaded."""
    result = db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.booking_status == "confirmed",
            Booking.payment_status == booking.payment_status,
        )
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.refresh(booking)
    if result.rowcount == 1:
        return
    if booking.booking_status == "cancelled":
        raise AlreadyCancelled("Booking was cancelled while it was being edited", bookingId=booking.id)
    raise InvalidTransition(
        f"Booking changed while it was being edited (booking {booking.booking_status}, "
        f"payment {booking.payment_status}); reload and try again",
        bookingId=booking.id,
    )


def edit_booking(db: Session, booking_id: str, changes: BookingUpdate | dict, actor: str = "staff",
                 now: datetime | None = None) -> Booking:
    """Partial update. Only the keys present in ``changes`` are applied."""
    now = now or datetime.now(timezone.utc)
    if hasattr(changes, "model_dump"):
        changes = changes.model_dump(exclude_unset=True)
    changes = {k: v for k, v in changes.items() if not (v is None and k in SLOT_FIELDS + ("paymentStatus",))}

    booking = load_booking(db, booking_id)
    if booking.booking_status in ("cancelled", "completed"):
        raise InvalidTransition(
            f"A {booking.booking_status} booking cannot be edited", bookingId=booking.id,
        )
    validate_update(changes, now)
    if "paymentStatus" in changes:
        check_payment_status_change(booking, changes["paymentStatus"])

    if changes.get("paymentStatus") == "cancelled":
        with transaction(db, "booking.edit", booking.id):
            _apply_cancel(db, booking, actor, now)
            _apply_details(booking, changes)
            booking.payment_status = "cancelled"
        db.refresh(booking)
        return booking

    with transaction(db, "booking.edit", booking.id):
        _claim_for_edit(db, booking, now)
        old = {
            "slotId": booking.time_slot_id, "sessionDate": booking.slot_date, "sessionTime": booking.slot_time,
            "serviceType": booking.service_type, "guestCount": booking.guest_count,
            "paymentStatus": booking.payment_status, "customerEmail": booking.customer_email,
        }
        # New contact details first: any extra tokens or credit come from the new customer.
        _apply_details(booking, changes)

        new_date = changes.get("sessionDate", booking.slot_date)
        new_time = _normalize_time(changes.get("sessionTime", booking.slot_time))
        new_service = changes.get("serviceType", booking.service_type)
        new_guests = changes.get("guestCount", booking.guest_count)
        guest_diff = new_guests - booking.guest_count
        resized = guest_diff != 0 or new_service != booking.service_type

        if booking.payment_method == "token" and guest_diff != 0:
            if guest_diff > 0:
                plan = token_ledger.allocate(db, booking.customer_email, guest_diff, now)
                token_ledger.commit(db, plan, booking_id=booking.id)
            else:
                token_ledger.refund(db, booking.customer_email, -guest_diff, booking_id=booking.id, as_of=now)

        _move_or_resize(db, booking, new_date, new_time, new_service, new_guests)

        if resized and not _settled_externally(booking):
            _reprice(db, booking, now)

        if "paymentStatus" in changes:
            booking.payment_status = changes["paymentStatus"]
        booking.updated_at = now

        log_audit(db, actor, "booking.edit", "booking", booking.id, {
            "bookingRef": booking.booking_ref,
            "before": old,
            "changes": changes,
        })

    db.refresh(booking)
    logger.info("Booking %s edited: %s", booking.booking_ref, sorted(changes))
    return booking


def _apply_details(booking: Booking, changes: dict) -> None:
    if "customerName" in changes:
        booking.customer_name = changes["customerName"].strip()
    if "customerEmail" in changes:
        booking.customer_email = token_ledger.normalize_email(changes["customerEmail"])
    if "customerPhone" in changes:
        booking.customer_phone = changes["customerPhone"] or None
    if "specialRequests" in changes:
        booking.special_requests = changes["specialRequests"] or None


def _apply_cancel(db: Session, booking: Booking, actor: str, now: datetime) -> CancelResult:
    # Conditional flip of the status; the loser of a double-cancel race sees zero rows.
    result = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.booking_status != "cancelled")
        .values(booking_status="cancelled", cancelled_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AlreadyCancelled("Booking already cancelled", bookingId=booking.id)
    # Re-read under the row lock: an edit that committed since the load may have moved or resized it.
    db.refresh(booking)

    slot_store.release(db, booking.time_slot_id, booking.guest_count)

    tokens_refunded = 0
    if booking.payment_method == "token":
        tokens_refunded = token_ledger.refund(
            db, booking.customer_email, booking.guest_count, booking_id=booking.id, as_of=now
        )
    credit_refunded = 0
    if booking.credit_amount:
        credit_refunded = credit_ledger.refund(
            db, booking.customer_email, booking.credit_amount, booking_id=booking.id, as_of=now
        )
    session_restored = False
    if booking.membership_id:
        session_restored = membership_service.restore_session(db, booking.membership_id)

    log_audit(db, actor, "booking.cancel", "booking", booking.id, {
        "bookingRef": booking.booking_ref,
        "slotId": booking.time_slot_id,
        "slotsFreed": booking.guest_count,
        "tokensRefunded": tokens_refunded,
        "creditRefunded": credit_refunded,
        "sessionRestored": session_restored,
    })
    return CancelResult(
        booking=booking,
        slots_freed=booking.guest_count,
        token_refunded=tokens_refunded > 0,
        tokens_refunded=tokens_refunded,
        credit_refunded=credit_refunded,
        session_restored=session_restored,
    )


def cancel_booking(db: Session, booking_id: str, actor: str = "staff", now: datetime | None = None) -> CancelResult:
    now = now or datetime.now(timezone.utc)
    booking = load_booking(db, booking_id)
    if booking.booking_status == "cancelled":
        logger.info("Booking %s already cancelled; ignoring repeat cancel", booking.booking_ref)
        raise AlreadyCancelled("Booking already cancelled", bookingId=booking.id)
    if booking.booking_status == "completed":
        raise InvalidTransition("A completed booking cannot be cancelled", bookingId=booking.id)

    with transaction(db, "booking.cancel", booking.id):
        result = _apply_cancel(db, booking, actor, now)

    db.refresh(booking)
    logger.info(
        "Booking %s cancelled: freed %s place(s), refunded %s token(s), %s pence of credit",
        booking.booking_ref, result.slots_freed, result.tokens_refunded, result.credit_refunded,
    )
    return result


def complete_booking(db: Session, booking_id: str, actor: str = "staff", now: datetime | None = None) -> Booking:
    now = now or datetime.now(timezone.utc)
    booking = load_booking(db, booking_id)
    if booking.booking_status != "confirmed":
        raise InvalidTransition(
            f"Only confirmed bookings can be completed (booking is {booking.booking_status})",
            bookingId=booking.id,
        )
    with transaction(db, "booking.complete", booking.id):
        booking.booking_status = "completed"
        booking.updated_at = now
        log_audit(db, actor, "booking.complete", "booking", booking.id, {"bookingRef": booking.booking_ref})
    db.refresh(booking)
    return booking


def active_guest_total(db: Session, slot_id: str) -> int:
    """Guests of non-cancelled bookings on a slot, straight from the booking rows."""
    rows = db.execute(
        select(Booking.guest_count).where(
            and_(Booking.time_slot_id == slot_id, Booking.booking_status != "cancelled")
        )
    ).scalars()
    return sum(rows)
