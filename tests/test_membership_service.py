from datetime import date

import pytest

from bathhouse.core.config import settings
from bathhouse.core.errors import MembershipUnavailable, ValidationError
from bathhouse.services import membership_service

EMAIL = "ada@example.com"


def _weekly(db, sessions_per_week=1):
    # 2030-01-07 is a Monday
    return membership_service.create_membership(
        db, "Ada@Example.com", "weekly", "2030-01-07", "2030-03-31", sessions_per_week=sessions_per_week,
    )


def test_week_start_is_monday():
    assert membership_service.week_start(date(2030, 1, 7)) == "2030-01-07"
    assert membership_service.week_start(date(2030, 1, 13)) == "2030-01-07"
    assert membership_service.week_start(date(2030, 1, 14)) == "2030-01-14"


def test_create_membership_validates(db):
    with pytest.raises(ValidationError) as exc:
        membership_service.create_membership(db, "nope", "monthly", "2030-02-01", "2030-01-01")
    assert set(exc.value.issues) == {"customerEmail", "membershipType", "endDate"}

    m = _weekly(db, sessions_per_week=2)
    assert (m.customer_email, m.sessions_remaining, m.last_session_reset) == (EMAIL, 2, "2030-01-07")

    unlimited = membership_service.create_membership(db, EMAIL, "unlimited", "2030-01-07", "2030-03-31")
    assert unlimited.sessions_per_week == settings.UNLIMITED_SESSIONS_PER_WEEK


def test_sessions_top_up_each_monday(db):
    m = _weekly(db)

    membership_service.consume_session(db, EMAIL, "2030-01-09", today=date(2030, 1, 8))
    db.commit()
    with pytest.raises(MembershipUnavailable):
        membership_service.consume_session(db, EMAIL, "2030-01-10", today=date(2030, 1, 9))
    db.rollback()

    status = membership_service.membership_status(db, EMAIL, today=date(2030, 1, 13))
    assert (status.has_membership, status.can_book, status.sessions_remaining) == (True, False, 0)

    status = membership_service.membership_status(db, EMAIL, today=date(2030, 1, 14))
    assert (status.can_book, status.sessions_remaining) == (True, 1)
    db.refresh(m)
    assert m.last_session_reset == "2030-01-14"


def test_membership_only_covers_its_dates(db):
    _weekly(db)
    with pytest.raises(MembershipUnavailable):
        membership_service.consume_session(db, EMAIL, "2030-04-01", today=date(2030, 3, 25))
    assert membership_service.membership_status(db, EMAIL, today=date(2029, 12, 31)).has_membership is False


def test_restore_never_exceeds_weekly_allowance(db):
    m = _weekly(db)
    assert membership_service.restore_session(db, m.id) is False

    membership_service.consume_session(db, EMAIL, "2030-01-09", today=date(2030, 1, 8))
    assert membership_service.restore_session(db, m.id) is True
    db.commit()
    db.refresh(m)
    assert m.sessions_remaining == 1


def test_cancelled_membership_cannot_book(db):
    m = _weekly(db)
    membership_service.cancel_membership(db, m.id)
    with pytest.raises(MembershipUnavailable):
        membership_service.consume_session(db, EMAIL, "2030-01-09", today=date(2030, 1, 8))
    assert membership_service.cancel_membership(db, "missing") is None
