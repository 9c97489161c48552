"""Member plans: a weekly session allowance, topped up every Monday.

The top-up is lazy. The first read in a new week resets ``sessions_remaining``
with a conditional UPDATE keyed on ``last_session_reset``, so two requests in
the same week cannot both reset it.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from bathhouse.core.config import settings
from bathhouse.core.errors import MembershipUnavailable, ValidationError
from bathhouse.models.membership import MEMBERSHIP_TYPES, Membership
from bathhouse.services.token_ledger import normalize_email

logger = logging.getLogger(__name__)


@dataclass
class MembershipStatus:
    has_membership: bool
    can_book: bool
    membership: Membership | None = None
    sessions_remaining: int = 0
    is_unlimited: bool = False


def is_unlimited(m: Membership) -> bool:
    return m.membership_type == "unlimited" or m.sessions_per_week >= settings.UNLIMITED_SESSIONS_PER_WEEK


def week_start(d: date) -> str:
    return (d - timedelta(days=d.weekday())).isoformat()


def current_membership(db: Session, customer_email: str, on_date: str) -> Membership | None:
    return db.execute(
        select(Membership)
        .where(
            Membership.customer_email == normalize_email(customer_email),
            Membership.status == "active",
            Membership.start_date <= on_date,
            Membership.end_date >= on_date,
        )
        .order_by(Membership.created_at.desc())
        .execution_options(populate_existing=True)
    ).scalars().first()


def _top_up_week(db: Session, m: Membership, today: date) -> None:
    monday = week_start(today)
    result = db.execute(
        update(Membership)
        .where(
            Membership.id == m.id,
            or_(Membership.last_session_reset.is_(None), Membership.last_session_reset < monday),
        )
        .values(sessions_remaining=Membership.sessions_per_week, last_session_reset=monday,
                updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info("Membership %s topped up for week of %s", m.id, monday)
    db.refresh(m)


def membership_status(db: Session, customer_email: str, today: date | None = None) -> MembershipStatus:
    today = today or datetime.now(ZoneInfo(settings.STUDIO_TIMEZONE)).date()
    m = current_membership(db, customer_email, today.isoformat())
    if m is None:
        return MembershipStatus(has_membership=False, can_book=False)
    if is_unlimited(m):
        return MembershipStatus(True, True, m, settings.UNLIMITED_SESSIONS_PER_WEEK, True)
    _top_up_week(db, m, today)
    db.commit()
    return MembershipStatus(True, m.sessions_remaining > 0, m, m.sessions_remaining, False)


def consume_session(db: Session, customer_email: str, session_date: str, today: date) -> Membership:
    """Take one session from the member's allowance inside the caller's transaction."""
    m = current_membership(db, customer_email, session_date)
    if m is None:
        raise MembershipUnavailable("No active membership found", customerEmail=normalize_email(customer_email))
    if is_unlimited(m):
        return m
    _top_up_week(db, m, today)
    result = db.execute(
        update(Membership)
        .where(Membership.id == m.id, Membership.sessions_remaining >= 1)
        .values(sessions_remaining=Membership.sessions_remaining - 1, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise MembershipUnavailable(
            "No sessions remaining this week. Your sessions reset every Monday.", membershipId=m.id,
        )
    db.refresh(m)
    return m


def restore_session(db: Session, membership_id: str) -> bool:
    m = db.get(Membership, membership_id, populate_existing=True)
    if m is None or is_unlimited(m):
        return False
    result = db.execute(
        update(Membership)
        .where(Membership.id == m.id, Membership.sessions_remaining < Membership.sessions_per_week)
        .values(sessions_remaining=Membership.sessions_remaining + 1, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def create_membership(db: Session, customer_email: str, membership_type: str, start_date: str, end_date: str,
                      sessions_per_week: int = 1, customer_name: str | None = None) -> Membership:
    """Staff-created plan (paid at the desk or by invoice). Commits."""
    email = normalize_email(customer_email)
    issues = {}
    if not email or "@" not in email:
        issues["customerEmail"] = "A valid email is required"
    if membership_type not in MEMBERSHIP_TYPES:
        issues["membershipType"] = f"Membership type must be one of {', '.join(MEMBERSHIP_TYPES)}"
    try:
        start, end = date.fromisoformat(start_date), date.fromisoformat(end_date)
        if end < start:
            issues["endDate"] = "endDate must not be before startDate"
    except ValueError:
        issues["startDate"] = "startDate and endDate must be YYYY-MM-DD"
    if membership_type == "unlimited":
        sessions_per_week = settings.UNLIMITED_SESSIONS_PER_WEEK
    elif sessions_per_week < 1:
        issues["sessionsPerWeek"] = "sessionsPerWeek must be >= 1"
    if issues:
        raise ValidationError(issues, message="Invalid membership details")

    m = Membership(
        id=str(uuid.uuid4()),
        customer_email=email,
        customer_name=customer_name,
        membership_type=membership_type,
        sessions_per_week=sessions_per_week,
        sessions_remaining=sessions_per_week,
        start_date=start_date,
        end_date=end_date,
        last_session_reset=week_start(start),
        status="active",
    )
    db.add(m)
    db.commit()
    db.refresh(m)
    return m


def cancel_membership(db: Session, membership_id: str) -> Membership | None:
    m = db.get(Membership, membership_id)
    if m is None:
        return None
    m.status = "cancelled"
    m.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(m)
    return m
