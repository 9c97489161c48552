from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from bathhouse.db.session import Base

BOOKING_TYPES = ("communal", "private")
PAYMENT_METHODS = ("card", "cash", "gift_card", "token", "comp", "membership")
PAYMENT_STATUSES = ("pending", "paid", "cancelled", "refunded", "partial_refund")
BOOKING_STATUSES = ("confirmed", "completed", "cancelled")

# Settled at the desk whatever the amount; other methods are paid once nothing is left to charge.
PAID_ON_CREATE = ("cash", "token", "comp")

class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_ref: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)

    customer_name: Mapped[str] = mapped_column(String(200))
    customer_email: Mapped[str] = mapped_column(String(320), index=True)  # lower-case
    customer_phone: Mapped[str] = mapped_column(String(40), nullable=True)

    time_slot_id: Mapped[str] = mapped_column(String(36), index=True)
    slot_date: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD
    slot_time: Mapped[str] = mapped_column(String(5))               # HH:MM
    service_type: Mapped[str] = mapped_column(String(20))
    booking_type: Mapped[str] = mapped_column(String(12), default="communal")  # communal|private
    guest_count: Mapped[int] = mapped_column(Integer, default=1)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=50)

    # minor units (pence)
    price_amount: Mapped[int] = mapped_column(Integer, default=0)
    discount_amount: Mapped[int] = mapped_column(Integer, default=0)
    credit_amount: Mapped[int] = mapped_column(Integer, default=0)  # drawn from customer_credits
    final_amount: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="GBP")

    payment_method: Mapped[str] = mapped_column(String(12), default="card")       # card|cash|gift_card|token|comp|membership
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")    # pending|paid|cancelled|refunded|partial_refund
    booking_status: Mapped[str] = mapped_column(String(20), default="confirmed")  # confirmed|completed|cancelled

    special_requests: Mapped[str] = mapped_column(Text, nullable=True)
    gift_card_code: Mapped[str] = mapped_column(String(40), nullable=True)
    membership_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    stripe_session_id: Mapped[str] = mapped_column(String(255), nullable=True, index=True)
    created_by_role: Mapped[str] = mapped_column(String(12), default="customer")  # customer|staff

    cancelled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
