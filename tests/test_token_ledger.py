from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from bathhouse.core.errors import InsufficientTokens, ValidationError
from bathhouse.models.token_balance import TokenAllocation, TokenBalance
from bathhouse.services import token_ledger

EMAIL = "ada@example.com"


def _now():
    return datetime.now(timezone.utc)


def test_grant_normalizes_email_and_validates(db):
    entry = token_ledger.grant_tokens(db, "  Ada@Example.COM ", 3)
    assert entry.customer_email == EMAIL
    assert token_ledger.available_tokens(db, EMAIL).total == 3

    with pytest.raises(ValidationError) as exc:
        token_ledger.grant_tokens(db, "not-an-email", 0)
    assert set(exc.value.issues) == {"customerEmail", "tokens"}


def test_expired_balances_are_not_counted(db):
    token_ledger.grant_tokens(db, EMAIL, 4, expires_at=_now() - timedelta(days=1))
    token_ledger.grant_tokens(db, EMAIL, 1)

    summary = token_ledger.available_tokens(db, EMAIL)
    assert summary.total == 1
    assert len(summary.entries) == 1


def test_allocate_spends_soonest_expiry_first(db):
    later = token_ledger.grant_tokens(db, EMAIL, 2, expires_at=_now() + timedelta(days=10))
    forever = token_ledger.grant_tokens(db, EMAIL, 2)
    soon = token_ledger.grant_tokens(db, EMAIL, 1, expires_at=_now() + timedelta(days=5))

    plan = token_ledger.allocate(db, EMAIL, 4)
    assert plan.items == [(soon.id, 1), (later.id, 2), (forever.id, 1)]

    token_ledger.commit(db, plan, booking_id="booking-1")
    db.commit()

    assert token_ledger.available_tokens(db, EMAIL).total == 1
    allocations = db.query(TokenAllocation).filter(TokenAllocation.booking_id == "booking-1").all()
    assert sum(a.amount for a in allocations) == 4


def test_allocate_reports_shortfall(db):
    token_ledger.grant_tokens(db, EMAIL, 1)
    with pytest.raises(InsufficientTokens) as exc:
        token_ledger.allocate(db, EMAIL, 2)
    assert exc.value.available == 1
    assert exc.value.requested == 2


def test_commit_with_stale_plan_fails_instead_of_going_negative(db):
    token_ledger.grant_tokens(db, EMAIL, 2)
    plan = token_ledger.allocate(db, EMAIL, 2)

    # spent elsewhere between planning and committing
    db.execute(update(TokenBalance).values(tokens_remaining=0))

    with pytest.raises(InsufficientTokens) as exc:
        token_ledger.commit(db, plan, booking_id="booking-1")
    assert exc.value.available == 0
    db.rollback()


def test_refund_returns_tokens_to_their_source(db):
    soon = token_ledger.grant_tokens(db, EMAIL, 1, expires_at=_now() + timedelta(days=5))
    forever = token_ledger.grant_tokens(db, EMAIL, 2)
    plan = token_ledger.allocate(db, EMAIL, 3)
    token_ledger.commit(db, plan, booking_id="booking-1")
    db.commit()
    assert token_ledger.available_tokens(db, EMAIL).total == 0

    assert token_ledger.refund(db, EMAIL, 3, booking_id="booking-1") == 3
    db.commit()

    assert db.get(TokenBalance, soon.id, populate_existing=True).tokens_remaining == 1
    assert db.get(TokenBalance, forever.id, populate_existing=True).tokens_remaining == 2
    assert db.query(TokenAllocation).count() == 0


def test_refund_to_expired_source_lands_on_catch_all(db):
    now = _now()
    token_ledger.grant_tokens(db, EMAIL, 2, expires_at=now + timedelta(days=1))
    plan = token_ledger.allocate(db, EMAIL, 2, as_of=now)
    token_ledger.commit(db, plan, booking_id="booking-1")
    db.commit()

    later = now + timedelta(days=2)
    token_ledger.refund(db, EMAIL, 2, booking_id="booking-1", as_of=later)
    db.commit()

    summary = token_ledger.available_tokens(db, EMAIL, as_of=later)
    assert summary.total == 2
    assert [e.notes for e in summary.entries] == [token_ledger.REFUND_NOTE]
    assert summary.entries[0].expires_at is None


def test_refund_without_booking_reuses_one_catch_all(db):
    token_ledger.refund(db, EMAIL, 1)
    token_ledger.refund(db, EMAIL, 2)
    db.commit()

    summary = token_ledger.available_tokens(db, EMAIL)
    assert summary.total == 3
    assert len(summary.entries) == 1


def test_refund_of_nothing_is_a_no_op(db):
    assert token_ledger.refund(db, EMAIL, 0) == 0
    assert db.query(TokenBalance).count() == 0
