from sqlalchemy import String, Integer, DateTime, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from bathhouse.db.session import Base

class CustomerCredit(Base):
    """Money-valued balance in pence, usually from a redeemed gift card."""
    __tablename__ = "customer_credits"
    __table_args__ = (CheckConstraint("credit_balance >= 0", name="ck_customer_credits_nonnegative"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_email: Mapped[str] = mapped_column(String(320), index=True)
    credit_balance: Mapped[int] = mapped_column(Integer, default=0)
    gift_card_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class CreditAllocation(Base):
    __tablename__ = "credit_allocations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    credit_id: Mapped[str] = mapped_column(String(36), index=True)
    amount: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
