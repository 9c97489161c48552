from sqlalchemy import String, Integer, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from bathhouse.db.session import Base

MEMBERSHIP_TYPES = ("weekly", "unlimited")

class Membership(Base):
    __tablename__ = "memberships"
    __table_args__ = (CheckConstraint("sessions_remaining >= 0", name="ck_memberships_sessions_nonnegative"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_email: Mapped[str] = mapped_column(String(320), index=True)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=True)
    membership_type: Mapped[str] = mapped_column(String(20), default="weekly")  # weekly|unlimited
    sessions_per_week: Mapped[int] = mapped_column(Integer, default=1)
    sessions_remaining: Mapped[int] = mapped_column(Integer, default=1)
    start_date: Mapped[str] = mapped_column(String(10))  # YYYY-MM-DD
    end_date: Mapped[str] = mapped_column(String(10))
    # Monday of the week sessions_remaining was last topped up
    last_session_reset: Mapped[str] = mapped_column(String(10), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active")  # active|cancelled

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
