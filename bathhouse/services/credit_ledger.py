"""Gift cards and the customer credit they turn into.

A gift card is redeemed once into a ``customer_credits`` row worth its face
value. Bookings draw on credit in pence, soonest-expiring first, with the same
plan-then-conditional-decrement shape as session tokens.
"""
import logging
import random
import string
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import not_, or_, select, update
from sqlalchemy.orm import Session

from bathhouse.core.config import settings
from bathhouse.core.errors import InsufficientCredit, ValidationError
from bathhouse.models.customer_credit import CreditAllocation, CustomerCredit
from bathhouse.models.gift_card import GiftCard
from bathhouse.services.token_ledger import as_utc, normalize_email

logger = logging.getLogger(__name__)

REFUND_NOTE = "Refunded from cancelled booking"


@dataclass
class CreditSummary:
    total: int
    entries: list[CustomerCredit]


@dataclass
class CreditPlan:
    customer_email: str
    amount: int
    as_of: datetime
    # (customer_credit_id, pence) in consumption order
    items: list[tuple[str, int]] = field(default_factory=list)


def make_gift_code() -> str:
    return "GC-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=8))


def _usable(email: str, as_of: datetime):
    return (
        select(CustomerCredit)
        .where(
            CustomerCredit.customer_email == normalize_email(email),
            CustomerCredit.credit_balance > 0,
            or_(CustomerCredit.expires_at.is_(None), CustomerCredit.expires_at > as_of),
        )
        .execution_options(populate_existing=True)
    )


def _consumption_order(entry: CustomerCredit):
    expires = as_utc(entry.expires_at)
    return (expires is None, expires or datetime.max.replace(tzinfo=timezone.utc), as_utc(entry.created_at))


def available_credit(db: Session, customer_email: str, as_of: datetime | None = None) -> CreditSummary:
    as_of = as_of or datetime.now(timezone.utc)
    entries = sorted(db.execute(_usable(customer_email, as_of)).scalars(), key=_consumption_order)
    return CreditSummary(total=sum(e.credit_balance for e in entries), entries=entries)


def allocate(db: Session, customer_email: str, amount: int, as_of: datetime | None = None) -> CreditPlan:
    """Plan which credit rows pay ``amount`` pence. Does not write."""
    as_of = as_of or datetime.now(timezone.utc)
    summary = available_credit(db, customer_email, as_of)
    if summary.total < amount:
        raise InsufficientCredit(available=summary.total, requested=amount)

    plan = CreditPlan(customer_email=normalize_email(customer_email), amount=amount, as_of=as_of)
    needed = amount
    for entry in summary.entries:
        if needed <= 0:
            break
        take = min(needed, entry.credit_balance)
        plan.items.append((entry.id, take))
        needed -= take
    return plan


def commit(db: Session, plan: CreditPlan, booking_id: str) -> None:
    now = datetime.now(timezone.utc)
    for credit_id, amount in plan.items:
        result = db.execute(
            update(CustomerCredit)
            .where(
                CustomerCredit.id == credit_id,
                CustomerCredit.credit_balance >= amount,
                or_(CustomerCredit.expires_at.is_(None), CustomerCredit.expires_at > plan.as_of),
            )
            .values(credit_balance=CustomerCredit.credit_balance - amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = available_credit(db, plan.customer_email, plan.as_of).total
            logger.warning("Credit commit lost a race for %s (credit %s)", plan.customer_email, credit_id)
            raise InsufficientCredit(available=available, requested=plan.amount)
        db.add(CreditAllocation(id=str(uuid.uuid4()), booking_id=booking_id, credit_id=credit_id, amount=amount))
    db.flush()


def _catch_all_credit(db: Session, email: str) -> CustomerCredit:
    entry = db.execute(
        select(CustomerCredit).where(
            CustomerCredit.customer_email == email,
            CustomerCredit.expires_at.is_(None),
            CustomerCredit.notes == REFUND_NOTE,
        )
    ).scalars().first()
    if entry is None:
        entry = CustomerCredit(id=str(uuid.uuid4()), customer_email=email, credit_balance=0, notes=REFUND_NOTE)
        db.add(entry)
        db.flush()
    return entry


def _top_up(db: Session, credit_id: str, amount: int) -> None:
    db.execute(
        update(CustomerCredit)
        .where(CustomerCredit.id == credit_id)
        .values(credit_balance=CustomerCredit.credit_balance + amount, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )


def refund(db: Session, customer_email: str, amount: int, booking_id: str, as_of: datetime | None = None) -> int:
    """Put ``amount`` pence drawn by a booking back where it came from."""
    if amount <= 0:
        return 0
    email = normalize_email(customer_email)
    as_of = as_of or datetime.now(timezone.utc)
    remaining = amount

    allocations = list(db.execute(
        select(CreditAllocation)
        .where(CreditAllocation.booking_id == booking_id)
        .order_by(CreditAllocation.created_at.desc(), CreditAllocation.id.desc())
    ).scalars())
    for alloc in allocations:
        if remaining <= 0:
            break
        give = min(remaining, alloc.amount)
        source = db.get(CustomerCredit, alloc.credit_id, populate_existing=True)
        expires = as_utc(source.expires_at) if source else None
        if source is not None and (expires is None or expires > as_of):
            _top_up(db, source.id, give)
        else:
            _top_up(db, _catch_all_credit(db, email).id, give)
        if give == alloc.amount:
            db.delete(alloc)
        else:
            alloc.amount -= give
        remaining -= give

    if remaining > 0:
        _top_up(db, _catch_all_credit(db, email).id, remaining)

    db.flush()
    logger.info("Returned %s pence of credit to %s", amount, email)
    return amount


def issue_gift_card(db: Session, amount: int, purchaser_email: str | None = None, recipient_name: str | None = None,
                    expires_at: datetime | None = None) -> GiftCard:
    """Record a gift card sold at the desk (already paid). Commits."""
    if amount < 1:
        raise ValidationError({"amount": "Gift card amount must be at least 1 penny"})
    for _ in range(10):
        code = make_gift_code()
        if not db.query(GiftCard).filter(GiftCard.gift_code == code).first():
            break
    card = GiftCard(
        id=str(uuid.uuid4()),
        gift_code=code,
        amount=amount,
        purchaser_email=normalize_email(purchaser_email) if purchaser_email else None,
        recipient_name=recipient_name,
        payment_status="paid",
        expires_at=expires_at,
    )
    db.add(card)
    db.commit()
    db.refresh(card)
    logger.info("Issued gift card %s for %s pence", card.gift_code, amount)
    return card


def redeem_gift_card(db: Session, gift_code: str, customer_email: str, now: datetime | None = None) -> CustomerCredit:
    """Turn a paid, unredeemed, unexpired gift card into credit. Runs in the caller's transaction."""
    now = now or datetime.now(timezone.utc)
    email = normalize_email(customer_email)
    code = (gift_code or "").strip().upper()
    if not code:
        raise ValidationError({"giftCardCode": "Gift card code is required"})

    card = db.execute(
        select(GiftCard).where(GiftCard.gift_code == code).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if card is None:
        raise ValidationError({"giftCardCode": "Invalid gift card code. Please check and try again."})
    if card.payment_status != "paid":
        raise ValidationError({"giftCardCode": "This gift card has not been paid for yet."})
    if card.is_redeemed:
        raise ValidationError({"giftCardCode": "This gift card has already been redeemed."})
    expires = as_utc(card.expires_at)
    if expires is not None and expires < now:
        raise ValidationError({"giftCardCode": "This gift card has expired."})

    # Only one redeemer can flip the flag.
    result = db.execute(
        update(GiftCard)
        .where(GiftCard.id == card.id, not_(GiftCard.is_redeemed), GiftCard.payment_status == "paid")
        .values(is_redeemed=True, redeemed_by=email, redeemed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ValidationError({"giftCardCode": "This gift card has already been redeemed."})

    credit = CustomerCredit(
        id=str(uuid.uuid4()),
        customer_email=email,
        credit_balance=card.amount,
        gift_card_id=card.id,
        expires_at=now + timedelta(days=settings.CREDIT_EXPIRY_DAYS),
        notes=f"Gift card {card.gift_code}",
    )
    db.add(credit)
    db.flush()
    logger.info("Gift card %s redeemed by %s for %s pence", card.gift_code, email, card.amount)
    return credit
