from sqlalchemy import String, Integer, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from bathhouse.db.session import Base

class GiftCard(Base):
    __tablename__ = "gift_cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    gift_code: Mapped[str] = mapped_column(String(40), unique=True, index=True)  # upper-case
    amount: Mapped[int] = mapped_column(Integer)  # pence
    purchaser_email: Mapped[str] = mapped_column(String(320), nullable=True)
    recipient_name: Mapped[str] = mapped_column(String(200), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(20), default="paid")  # pending|paid

    is_redeemed: Mapped[bool] = mapped_column(Boolean, default=False)
    redeemed_by: Mapped[str] = mapped_column(String(320), nullable=True)
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
