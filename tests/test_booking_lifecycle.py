from datetime import date, datetime, timedelta, timezone

import pytest

from bathhouse.core.config import settings
from bathhouse.core.errors import (
    AlreadyCancelled,
    CapacityExceeded,
    InconsistentStateError,
    InsufficientCredit,
    InsufficientTokens,
    InvalidTransition,
    MembershipUnavailable,
    SlotConflict,
    ValidationError,
)
from bathhouse.db.session import SessionLocal
from bathhouse.models.audit_log import AuditLog
from bathhouse.models.booking import Booking
from bathhouse.models.operator_alert import OperatorAlert
from bathhouse.services import booking_lifecycle, credit_ledger, membership_service, slot_store, token_ledger


def _slot(db, booking):
    return slot_store.get_slot(db, booking.time_slot_id)


def _tokens(db, email="ada@example.com"):
    return token_ledger.available_tokens(db, email).total


def test_create_card_booking_holds_places_and_waits_for_payment(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2))

    assert b.booking_ref.startswith("BH-")
    assert b.booking_status == "confirmed"
    assert b.payment_status == "pending"
    assert b.price_amount == 9000
    assert b.final_amount == 9000
    assert b.duration_minutes == 50
    assert _slot(db, b).booked_count == 2
    assert db.query(AuditLog).filter(AuditLog.action == "booking.create").count() == 1


def test_capacity_example(db, booking_data):
    booking_lifecycle.create_booking(db, booking_data(guestCount=3))

    with pytest.raises(CapacityExceeded) as exc:
        booking_lifecycle.create_booking(db, booking_data(guestCount=3, customerEmail="bob@example.com"))
    assert exc.value.remaining == 2
    assert exc.value.message == "Not enough space - only 2 spaces remaining"

    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2, customerEmail="cy@example.com"))
    slot = _slot(db, b)
    assert slot.booked_count == 5
    assert slot.is_available is False
    assert db.query(Booking).count() == 2


def test_private_booking_conflicts(db, booking_data):
    booking_lifecycle.create_booking(db, booking_data(guestCount=1))
    with pytest.raises(SlotConflict):
        booking_lifecycle.create_booking(db, booking_data(bookingType="private", guestCount=2))

    private = booking_lifecycle.create_booking(
        db, booking_data(bookingType="private", guestCount=8, sessionTime="11:00")
    )
    slot = _slot(db, private)
    assert slot.is_private is True
    assert slot.booked_count == 8
    assert private.price_amount == 7000

    with pytest.raises(SlotConflict):
        booking_lifecycle.create_booking(db, booking_data(sessionTime="11:00", customerEmail="bob@example.com"))


def test_stale_precheck_cannot_overbook(db, booking_data, monkeypatch):
    # Both requests read the slot before either wrote; only the atomic update decides.
    booking_lifecycle.create_booking(db, booking_data(guestCount=4))
    monkeypatch.setattr(booking_lifecycle, "_precheck", lambda *a, **k: None)

    with pytest.raises(CapacityExceeded):
        booking_lifecycle.create_booking(db, booking_data(guestCount=2, customerEmail="bob@example.com"))

    slot = slot_store.find_slot(db, booking_data().sessionDate, "10:00", "combined")
    assert slot.booked_count == 4
    assert db.query(Booking).count() == 1


def test_token_booking_and_refund_on_cancel(db, booking_data):
    token_ledger.grant_tokens(db, "ada@example.com", 3)

    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2, paymentMethod="token"))
    assert b.payment_status == "paid"
    assert b.final_amount == 0
    assert b.discount_amount == b.price_amount
    assert _tokens(db) == 1

    result = booking_lifecycle.cancel_booking(db, b.id)
    assert result.slots_freed == 2
    assert result.token_refunded is True
    assert result.tokens_refunded == 2
    assert _tokens(db) == 3
    assert _slot(db, b).booked_count == 0
    assert b.booking_status == "cancelled"
    assert b.cancelled_at is not None


def test_token_booking_without_enough_tokens_writes_nothing(db, booking_data):
    token_ledger.grant_tokens(db, "ada@example.com", 1)

    with pytest.raises(InsufficientTokens):
        booking_lifecycle.create_booking(db, booking_data(guestCount=2, paymentMethod="token"))
    assert db.query(Booking).count() == 0
    assert _tokens(db) == 1


def test_token_count_follows_guest_edits(db, booking_data):
    token_ledger.grant_tokens(db, "ada@example.com", 5)
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2, paymentMethod="token"))

    booking_lifecycle.edit_booking(db, b.id, {"guestCount": 3})
    assert _tokens(db) == 2
    assert _slot(db, b).booked_count == 3

    booking_lifecycle.edit_booking(db, b.id, {"guestCount": 1})
    assert _tokens(db) == 4
    assert _slot(db, b).booked_count == 1
    assert b.final_amount == 0

    booking_lifecycle.cancel_booking(db, b.id)
    assert _tokens(db) == 5


def test_failed_reschedule_leaves_original_slot(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=3))
    booking_lifecycle.create_booking(db, booking_data(guestCount=5, sessionTime="11:00", customerEmail="bob@example.com"))

    with pytest.raises(CapacityExceeded):
        booking_lifecycle.edit_booking(db, b.id, {"sessionTime": "11:00"})

    assert b.slot_time == "10:00"
    assert _slot(db, b).booked_count == 3
    assert slot_store.find_slot(db, b.slot_date, "11:00", "combined").booked_count == 5


def test_reschedule_moves_places_between_slots(db, booking_data, session_date):
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2))
    old_slot_id = b.time_slot_id
    new_date = (date.fromisoformat(session_date) + timedelta(days=1)).isoformat()

    b = booking_lifecycle.edit_booking(db, b.id, {"sessionDate": new_date, "sessionTime": "12:00", "serviceType": "sauna"})

    assert slot_store.get_slot(db, old_slot_id).booked_count == 0
    new_slot = _slot(db, b)
    assert (new_slot.slot_date, new_slot.slot_time, new_slot.service_type) == (new_date, "12:00", "sauna")
    assert new_slot.booked_count == 2
    assert b.duration_minutes == 30
    assert b.price_amount == 5000


def test_guest_increase_beyond_capacity_is_refused(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2))
    booking_lifecycle.create_booking(db, booking_data(guestCount=2, customerEmail="bob@example.com"))

    with pytest.raises(CapacityExceeded) as exc:
        booking_lifecycle.edit_booking(db, b.id, {"guestCount": 4})
    assert exc.value.remaining == 1
    assert b.guest_count == 2
    assert _slot(db, b).booked_count == 4


def test_cancel_is_idempotent(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2))
    booking_lifecycle.cancel_booking(db, b.id)

    with pytest.raises(AlreadyCancelled):
        booking_lifecycle.cancel_booking(db, b.id)
    assert _slot(db, b).booked_count == 0


def test_cancel_through_payment_status(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2))

    b = booking_lifecycle.edit_booking(db, b.id, {"paymentStatus": "cancelled"})
    assert b.booking_status == "cancelled"
    assert b.payment_status == "cancelled"
    assert _slot(db, b).booked_count == 0

    with pytest.raises(InvalidTransition):
        booking_lifecycle.edit_booking(db, b.id, {"customerName": "Someone Else"})


def test_cancel_with_slot_change_is_rejected(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data())
    with pytest.raises(ValidationError) as exc:
        booking_lifecycle.edit_booking(db, b.id, {"paymentStatus": "cancelled", "guestCount": 2})
    assert "paymentStatus" in exc.value.issues


def test_complete_then_cancel_is_invalid(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data())
    b = booking_lifecycle.complete_booking(db, b.id)
    assert b.booking_status == "completed"

    with pytest.raises(InvalidTransition):
        booking_lifecycle.cancel_booking(db, b.id)
    with pytest.raises(InvalidTransition):
        booking_lifecycle.complete_booking(db, b.id)


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"sessionDate": "2000-01-01"}, "sessionDate"),
        ({"sessionTime": "25:00"}, "sessionTime"),
        ({"guestCount": 11}, "guestCount"),
        ({"guestCount": 0}, "guestCount"),
        ({"customerEmail": "nope"}, "customerEmail"),
        ({"serviceType": "steam"}, "serviceType"),
        ({"paymentMethod": "token", "bookingType": "private"}, "paymentMethod"),
        ({"paymentMethod": "membership", "bookingType": "private"}, "paymentMethod"),
        ({"paymentMethod": "cash", "applyCredit": True}, "applyCredit"),
    ],
)
def test_create_validation(db, booking_data, overrides, field):
    with pytest.raises(ValidationError) as exc:
        booking_lifecycle.create_booking(db, booking_data(**overrides))
    assert field in exc.value.issues
    assert db.query(Booking).count() == 0


def test_one_token_booking_per_day(db, booking_data, monkeypatch):
    monkeypatch.setattr(settings, "TOKEN_ONE_PER_DAY", True)
    token_ledger.grant_tokens(db, "ada@example.com", 5)
    booking_lifecycle.create_booking(db, booking_data(paymentMethod="token"))

    with pytest.raises(ValidationError) as exc:
        booking_lifecycle.create_booking(db, booking_data(paymentMethod="token", sessionTime="14:00"))
    assert "paymentMethod" in exc.value.issues
    assert _tokens(db) == 4


def test_discount_is_capped_at_price(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data(paymentMethod="cash", discountAmount=100000))
    assert b.payment_status == "paid"
    assert b.discount_amount == b.price_amount
    assert b.final_amount == 0


def test_unexpected_failure_rolls_back_and_alerts(db, booking_data, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("audit table unavailable")

    monkeypatch.setattr(booking_lifecycle, "log_audit", boom)

    with pytest.raises(InconsistentStateError):
        booking_lifecycle.create_booking(db, booking_data(guestCount=2))

    assert db.query(Booking).count() == 0
    assert slot_store.find_slot(db, booking_data().sessionDate, "10:00", "combined") is None
    alert = db.query(OperatorAlert).one()
    assert alert.operation == "booking.create"
    assert "RuntimeError" in alert.message


def test_active_guest_total_matches_stored_count(db, booking_data):
    a = booking_lifecycle.create_booking(db, booking_data(guestCount=2))
    booking_lifecycle.create_booking(db, booking_data(guestCount=1, customerEmail="bob@example.com"))
    c = booking_lifecycle.create_booking(db, booking_data(guestCount=2, customerEmail="cy@example.com"))
    booking_lifecycle.cancel_booking(db, c.id)

    assert booking_lifecycle.active_guest_total(db, a.time_slot_id) == 3
    assert _slot(db, a).booked_count == 3


def test_past_date_uses_studio_timezone(db, booking_data):
    # 23:30 UTC on 31 May is already 1 June in London
    now = datetime(2030, 5, 31, 23, 30, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        booking_lifecycle.create_booking(db, booking_data(sessionDate="2030-05-31"), now=now)
    b = booking_lifecycle.create_booking(db, booking_data(sessionDate="2030-06-01"), now=now)
    assert b.slot_date == "2030-06-01"


def test_edit_racing_a_cancel_leaves_slot_count_alone(db, booking_data, monkeypatch):
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=1))
    original = booking_lifecycle.validate_update

    def cancel_elsewhere_first(changes, now):
        # Another request cancels after this edit has loaded the booking.
        other = SessionLocal()
        try:
            booking_lifecycle.cancel_booking(other, b.id)
        finally:
            other.close()
        original(changes, now)

    monkeypatch.setattr(booking_lifecycle, "validate_update", cancel_elsewhere_first)

    with pytest.raises(AlreadyCancelled):
        booking_lifecycle.edit_booking(db, b.id, {"guestCount": 3})

    db.refresh(b)
    assert b.booking_status == "cancelled"
    assert b.guest_count == 1
    assert _slot(db, b).booked_count == 0
    assert booking_lifecycle.active_guest_total(db, b.time_slot_id) == 0


def test_reschedule_with_more_guests_moves_all_places(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2))
    old_slot_id = b.time_slot_id

    b = booking_lifecycle.edit_booking(db, b.id, {"sessionTime": "11:00", "guestCount": 3})

    assert slot_store.get_slot(db, old_slot_id).booked_count == 0
    assert _slot(db, b).slot_time == "11:00"
    assert _slot(db, b).booked_count == 3
    assert b.guest_count == 3
    assert b.final_amount == 13500


def test_failed_reschedule_with_more_guests_changes_nothing(db, booking_data):
    b = booking_lifecycle.create_booking(db, booking_data(guestCount=2))
    booking_lifecycle.create_booking(db, booking_data(guestCount=4, sessionTime="11:00", customerEmail="bob@example.com"))

    with pytest.raises(CapacityExceeded):
        booking_lifecycle.edit_booking(db, b.id, {"sessionTime": "11:00", "guestCount": 3})

    db.refresh(b)
    assert (b.slot_time, b.guest_count, b.final_amount) == ("10:00", 2, 9000)
    assert _slot(db, b).booked_count == 2
    assert slot_store.find_slot(db, b.slot_date, "11:00", "combined").booked_count == 4


def test_email_change_with_more_guests_charges_new_customer(db, booking_data):
    token_ledger.grant_tokens(db, "ada@example.com", 2)
    token_ledger.grant_tokens(db, "bob@example.com", 3)
    b = booking_lifecycle.create_booking(db, booking_data(paymentMethod="token"))
    assert _tokens(db) == 1

    b = booking_lifecycle.edit_booking(db, b.id, {"customerEmail": "Bob@Example.com", "guestCount": 2})

    assert b.customer_email == "bob@example.com"
    assert _tokens(db, "bob@example.com") == 2
    assert _tokens(db) == 1


def test_made_up_gift_card_code_is_refused(db, booking_data):
    with pytest.raises(ValidationError) as exc:
        booking_lifecycle.create_booking(db, booking_data(paymentMethod="gift_card", giftCardCode="GC-NOPE1234"))
    assert "giftCardCode" in exc.value.issues
    assert db.query(Booking).count() == 0


def test_gift_card_pays_from_credit_and_cancel_returns_it(db, booking_data):
    card = credit_ledger.issue_gift_card(db, 10000, purchaser_email="bob@example.com")

    b = booking_lifecycle.create_booking(
        db, booking_data(guestCount=2, paymentMethod="gift_card", giftCardCode=card.gift_code.lower())
    )
    assert b.payment_status == "paid"
    assert (b.price_amount, b.credit_amount, b.final_amount) == (9000, 9000, 0)
    assert credit_ledger.available_credit(db, "ada@example.com").total == 1000

    with pytest.raises(ValidationError) as exc:
        booking_lifecycle.create_booking(
            db, booking_data(paymentMethod="gift_card", giftCardCode=card.gift_code, sessionTime="12:00")
        )
    assert "already been redeemed" in exc.value.issues["giftCardCode"]

    result = booking_lifecycle.cancel_booking(db, b.id)
    assert result.credit_refunded == 9000
    assert credit_ledger.available_credit(db, "ada@example.com").total == 10000

    again = booking_lifecycle.create_booking(db, booking_data(paymentMethod="gift_card", sessionTime="12:00"))
    assert again.credit_amount == 4500
    assert credit_ledger.available_credit(db, "ada@example.com").total == 5500


def test_gift_card_short_of_price_redeems_nothing(db, booking_data):
    card = credit_ledger.issue_gift_card(db, 3000)

    with pytest.raises(InsufficientCredit) as exc:
        booking_lifecycle.create_booking(db, booking_data(paymentMethod="gift_card", giftCardCode=card.gift_code))
    assert exc.value.context["available"] == 3000

    db.refresh(card)
    assert card.is_redeemed is False
    assert credit_ledger.available_credit(db, "ada@example.com").total == 0
    assert db.query(Booking).count() == 0


def test_card_booking_can_apply_credit(db, booking_data):
    card = credit_ledger.issue_gift_card(db, 3000)
    credit_ledger.redeem_gift_card(db, card.gift_code, "ada@example.com")
    db.commit()

    b = booking_lifecycle.create_booking(db, booking_data(applyCredit=True))
    assert (b.credit_amount, b.final_amount, b.payment_status) == (3000, 1500, "pending")

    b = booking_lifecycle.edit_booking(db, b.id, {"serviceType": "sauna"})
    assert (b.price_amount, b.credit_amount, b.final_amount, b.payment_status) == (2500, 2500, 0, "paid")
    assert credit_ledger.available_credit(db, "ada@example.com").total == 500


def test_gift_card_booking_draws_more_credit_for_extra_guests(db, booking_data):
    card = credit_ledger.issue_gift_card(db, 10000)
    b = booking_lifecycle.create_booking(db, booking_data(paymentMethod="gift_card", giftCardCode=card.gift_code))

    b = booking_lifecycle.edit_booking(db, b.id, {"guestCount": 2})
    assert (b.credit_amount, b.final_amount) == (9000, 0)
    assert credit_ledger.available_credit(db, "ada@example.com").total == 1000

    with pytest.raises(InsufficientCredit):
        booking_lifecycle.edit_booking(db, b.id, {"guestCount": 3})
    assert _slot(db, b).booked_count == 2


def _member(db, membership_type="weekly", sessions_per_week=1, email="ada@example.com"):
    start = (date.today() - timedelta(days=1)).isoformat()
    end = (date.today() + timedelta(days=60)).isoformat()
    return membership_service.create_membership(
        db, email, membership_type, start, end, sessions_per_week=sessions_per_week,
    )


def _sessions_left(db, membership):
    db.refresh(membership)
    return membership.sessions_remaining


def test_membership_booking_uses_a_session_and_cancel_restores_it(db, booking_data):
    m = _member(db, sessions_per_week=2)

    b = booking_lifecycle.create_booking(db, booking_data(paymentMethod="membership"))
    assert b.membership_id == m.id
    assert (b.final_amount, b.payment_status) == (0, "paid")
    assert _sessions_left(db, m) == 1

    result = booking_lifecycle.cancel_booking(db, b.id)
    assert result.session_restored is True
    assert _sessions_left(db, m) == 2


def test_membership_booking_needs_a_membership(db, booking_data):
    with pytest.raises(MembershipUnavailable):
        booking_lifecycle.create_booking(db, booking_data(paymentMethod="membership"))
    assert db.query(Booking).count() == 0


def test_weekly_membership_allowance_runs_out(db, booking_data, session_date):
    _member(db, sessions_per_week=1)
    booking_lifecycle.create_booking(db, booking_data(paymentMethod="membership"))

    next_day = (date.fromisoformat(session_date) + timedelta(days=1)).isoformat()
    with pytest.raises(MembershipUnavailable):
        booking_lifecycle.create_booking(db, booking_data(paymentMethod="membership", sessionDate=next_day))

    with pytest.raises(ValidationError) as exc:
        booking_lifecycle.create_booking(db, booking_data(paymentMethod="membership", sessionTime="14:00"))
    assert "paymentMethod" in exc.value.issues


def test_unlimited_membership_never_runs_out(db, booking_data, session_date):
    m = _member(db, membership_type="unlimited")
    for offset in range(3):
        day = (date.fromisoformat(session_date) + timedelta(days=offset)).isoformat()
        booking_lifecycle.create_booking(db, booking_data(paymentMethod="membership", sessionDate=day))
    assert _sessions_left(db, m) == settings.UNLIMITED_SESSIONS_PER_WEEK


def test_membership_guests_pay_by_card(db, booking_data):
    _member(db)
    b = booking_lifecycle.create_booking(db, booking_data(paymentMethod="membership", guestCount=3))

    assert (b.price_amount, b.discount_amount, b.final_amount) == (13500, 4500, 9000)
    assert b.payment_status == "pending"
