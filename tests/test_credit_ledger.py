import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from bathhouse.core.errors import InsufficientCredit, ValidationError
from bathhouse.models.customer_credit import CreditAllocation, CustomerCredit
from bathhouse.models.gift_card import GiftCard
from bathhouse.services import credit_ledger

EMAIL = "ada@example.com"


def _now():
    return datetime.now(timezone.utc)


def _credit(db, amount, expires_at=None, email=EMAIL):
    entry = CustomerCredit(id=str(uuid.uuid4()), customer_email=email, credit_balance=amount, expires_at=expires_at)
    db.add(entry)
    db.commit()
    return entry


def test_issue_gift_card(db):
    card = credit_ledger.issue_gift_card(db, 5000, purchaser_email=" Bob@Example.com ", recipient_name="Ada")
    assert card.gift_code.startswith("GC-")
    assert len(card.gift_code) == 11
    assert (card.amount, card.payment_status, card.is_redeemed) == (5000, "paid", False)
    assert card.purchaser_email == "bob@example.com"

    with pytest.raises(ValidationError) as exc:
        credit_ledger.issue_gift_card(db, 0)
    assert "amount" in exc.value.issues


def test_redeem_turns_card_into_expiring_credit(db):
    card = credit_ledger.issue_gift_card(db, 5000)
    now = _now()

    credit = credit_ledger.redeem_gift_card(db, f"  {card.gift_code.lower()} ", "Ada@Example.com", now)
    db.commit()

    assert credit.customer_email == EMAIL
    assert credit.credit_balance == 5000
    assert credit.gift_card_id == card.id
    assert credit_ledger.available_credit(db, EMAIL).total == 5000
    db.refresh(card)
    assert card.is_redeemed is True
    assert card.redeemed_by == EMAIL

    with pytest.raises(ValidationError) as exc:
        credit_ledger.redeem_gift_card(db, card.gift_code, "bob@example.com")
    assert "already been redeemed" in exc.value.issues["giftCardCode"]


def test_redeem_refuses_unpaid_and_expired_cards(db):
    unpaid = credit_ledger.issue_gift_card(db, 5000)
    db.execute(update(GiftCard).where(GiftCard.id == unpaid.id).values(payment_status="pending"))
    db.commit()
    expired = credit_ledger.issue_gift_card(db, 5000, expires_at=_now() - timedelta(days=1))

    for code, text in [(unpaid.gift_code, "not been paid"), (expired.gift_code, "expired"), ("", "required")]:
        with pytest.raises(ValidationError) as exc:
            credit_ledger.redeem_gift_card(db, code, EMAIL)
        assert text in exc.value.issues["giftCardCode"]
    assert credit_ledger.available_credit(db, EMAIL).total == 0


def test_allocate_spends_soonest_expiry_first(db):
    later = _credit(db, 2000, expires_at=_now() + timedelta(days=10))
    forever = _credit(db, 2000)
    soon = _credit(db, 1000, expires_at=_now() + timedelta(days=5))
    _credit(db, 9000, expires_at=_now() - timedelta(days=1))

    plan = credit_ledger.allocate(db, EMAIL, 4500)
    assert plan.items == [(soon.id, 1000), (later.id, 2000), (forever.id, 1500)]

    credit_ledger.commit(db, plan, booking_id="booking-1")
    db.commit()

    assert credit_ledger.available_credit(db, EMAIL).total == 500
    allocations = db.query(CreditAllocation).filter(CreditAllocation.booking_id == "booking-1").all()
    assert sum(a.amount for a in allocations) == 4500


def test_allocate_reports_shortfall(db):
    _credit(db, 3000)
    with pytest.raises(InsufficientCredit) as exc:
        credit_ledger.allocate(db, EMAIL, 4500)
    assert (exc.value.available, exc.value.requested) == (3000, 4500)
    assert exc.value.message == "Insufficient credit: £30.00 available, £45.00 needed"


def test_commit_with_stale_plan_fails_instead_of_going_negative(db):
    entry = _credit(db, 4500)
    plan = credit_ledger.allocate(db, EMAIL, 4500)
    # someone else spends part of it between plan and commit
    db.execute(update(CustomerCredit).where(CustomerCredit.id == entry.id).values(credit_balance=1000))
    db.commit()

    with pytest.raises(InsufficientCredit):
        credit_ledger.commit(db, plan, booking_id="booking-1")
    db.rollback()
    db.refresh(entry)
    assert entry.credit_balance == 1000


def test_refund_returns_credit_to_its_source(db):
    entry = _credit(db, 5000, expires_at=_now() + timedelta(days=30))
    credit_ledger.commit(db, credit_ledger.allocate(db, EMAIL, 4500), booking_id="booking-1")
    db.commit()

    assert credit_ledger.refund(db, EMAIL, 4500, booking_id="booking-1") == 4500
    db.commit()

    db.refresh(entry)
    assert entry.credit_balance == 5000
    assert db.query(CreditAllocation).count() == 0


def test_refund_after_source_expired_goes_to_a_lasting_credit(db):
    entry = _credit(db, 4500, expires_at=_now() + timedelta(days=1))
    credit_ledger.commit(db, credit_ledger.allocate(db, EMAIL, 4500), booking_id="booking-1")
    db.commit()

    later = _now() + timedelta(days=2)
    credit_ledger.refund(db, EMAIL, 4500, booking_id="booking-1", as_of=later)
    db.commit()

    db.refresh(entry)
    assert entry.credit_balance == 0
    summary = credit_ledger.available_credit(db, EMAIL, later)
    assert summary.total == 4500
    assert summary.entries[0].notes == credit_ledger.REFUND_NOTE
    assert summary.entries[0].expires_at is None
