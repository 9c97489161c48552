"""Prepaid session tokens per customer.

Allocation is a read that produces a plan; ``commit`` applies it with
conditional decrements so a balance spent or expired in the meantime shows
up as ``InsufficientTokens`` instead of going negative.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from bathhouse.core.errors import InsufficientTokens, ValidationError
from bathhouse.models.token_balance import TokenAllocation, TokenBalance

logger = logging.getLogger(__name__)

REFUND_NOTE = "Refunded from cancelled booking"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class TokenSummary:
    total: int
    entries: list[TokenBalance]


@dataclass
class AllocationPlan:
    customer_email: str
    count: int
    as_of: datetime
    # (token_balance_id, amount) in consumption order
    items: list[tuple[str, int]] = field(default_factory=list)


def _usable(email: str, as_of: datetime):
    return (
        select(TokenBalance)
        .where(
            TokenBalance.customer_email == normalize_email(email),
            TokenBalance.tokens_remaining > 0,
            or_(TokenBalance.expires_at.is_(None), TokenBalance.expires_at > as_of),
        )
        .execution_options(populate_existing=True)
    )


def _consumption_order(entry: TokenBalance):
    expires = as_utc(entry.expires_at)
    # soonest expiry first, never-expiring last, oldest grant breaks ties
    return (expires is None, expires or datetime.max.replace(tzinfo=timezone.utc), as_utc(entry.created_at))


def available_tokens(db: Session, customer_email: str, as_of: datetime | None = None) -> TokenSummary:
    as_of = as_of or datetime.now(timezone.utc)
    entries = sorted(db.execute(_usable(customer_email, as_of)).scalars(), key=_consumption_order)
    return TokenSummary(total=sum(e.tokens_remaining for e in entries), entries=entries)


def allocate(db: Session, customer_email: str, count: int, as_of: datetime | None = None) -> AllocationPlan:
    """Plan which balances pay for ``count`` tokens. Does not write."""
    if count < 1:
        raise ValidationError({"guestCount": "token count must be >= 1"})
    as_of = as_of or datetime.now(timezone.utc)
    summary = available_tokens(db, customer_email, as_of)
    if summary.total < count:
        raise InsufficientTokens(available=summary.total, requested=count)

    plan = AllocationPlan(customer_email=normalize_email(customer_email), count=count, as_of=as_of)
    needed = count
    for entry in summary.entries:
        if needed <= 0:
            break
        take = min(needed, entry.tokens_remaining)
        plan.items.append((entry.id, take))
        needed -= take
    return plan


def commit(db: Session, plan: AllocationPlan, booking_id: str | None = None) -> None:
    """Apply a plan inside the caller's transaction."""
    now = datetime.now(timezone.utc)
    for balance_id, amount in plan.items:
        result = db.execute(
            update(TokenBalance)
            .where(
                TokenBalance.id == balance_id,
                TokenBalance.tokens_remaining >= amount,
                or_(TokenBalance.expires_at.is_(None), TokenBalance.expires_at > plan.as_of),
            )
            .values(tokens_remaining=TokenBalance.tokens_remaining - amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Spent or expired since the plan was drawn up.
            available = available_tokens(db, plan.customer_email, plan.as_of).total
            logger.warning("Token commit lost a race for %s (balance %s)", plan.customer_email, balance_id)
            raise InsufficientTokens(available=available, requested=plan.count)
        if booking_id:
            db.add(TokenAllocation(
                id=str(uuid.uuid4()),
                booking_id=booking_id,
                token_balance_id=balance_id,
                amount=amount,
            ))
    db.flush()


def _catch_all_entry(db: Session, email: str) -> TokenBalance:
    entry = db.execute(
        select(TokenBalance).where(
            TokenBalance.customer_email == email,
            TokenBalance.expires_at.is_(None),
            TokenBalance.notes == REFUND_NOTE,
        )
    ).scalars().first()
    if entry is None:
        entry = TokenBalance(
            id=str(uuid.uuid4()),
            customer_email=email,
            tokens_remaining=0,
            expires_at=None,
            notes=REFUND_NOTE,
        )
        db.add(entry)
        db.flush()
    return entry


def _credit(db: Session, balance_id: str, amount: int) -> None:
    db.execute(
        update(TokenBalance)
        .where(TokenBalance.id == balance_id)
        .values(tokens_remaining=TokenBalance.tokens_remaining + amount, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )


def refund(db: Session, customer_email: str, count: int, booking_id: str | None = None,
           as_of: datetime | None = None) -> int:
    """Give ``count`` tokens back. Returns the number refunded.

    With a ``booking_id`` the tokens go back to the balances recorded for that
    booking, most recent allocation first. Whatever cannot go back to its
    source (unknown source, or the source has expired meanwhile) lands on the
    customer's non-expiring catch-all balance.
    """
    if count <= 0:
        return 0
    email = normalize_email(customer_email)
    as_of = as_of or datetime.now(timezone.utc)
    remaining = count

    if booking_id:
        allocations = list(db.execute(
            select(TokenAllocation)
            .where(TokenAllocation.booking_id == booking_id)
            .order_by(TokenAllocation.created_at.desc(), TokenAllocation.id.desc())
        ).scalars())
        for alloc in allocations:
            if remaining <= 0:
                break
            give = min(remaining, alloc.amount)
            source = db.get(TokenBalance, alloc.token_balance_id, populate_existing=True)
            expires = as_utc(source.expires_at) if source else None
            if source is not None and (expires is None or expires > as_of):
                _credit(db, source.id, give)
            else:
                _credit(db, _catch_all_entry(db, email).id, give)
            if give == alloc.amount:
                db.delete(alloc)
            else:
                alloc.amount -= give
            remaining -= give

    if remaining > 0:
        _credit(db, _catch_all_entry(db, email).id, remaining)

    db.flush()
    logger.info("Refunded %s token(s) to %s", count, email)
    return count


def grant_tokens(db: Session, customer_email: str, count: int, expires_at: datetime | None = None,
                 notes: str | None = None) -> TokenBalance:
    """Add a new balance (purchase, intro offer, goodwill). Commits."""
    email = normalize_email(customer_email)
    issues = {}
    if not email or "@" not in email:
        issues["customerEmail"] = "A valid email is required"
    if count < 1:
        issues["tokens"] = "tokens must be >= 1"
    if issues:
        raise ValidationError(issues)
    entry = TokenBalance(
        id=str(uuid.uuid4()),
        customer_email=email,
        tokens_remaining=count,
        expires_at=expires_at,
        notes=notes,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry
