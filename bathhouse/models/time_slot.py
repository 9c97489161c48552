from sqlalchemy import String, Integer, Boolean, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from bathhouse.db.session import Base

class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint("slot_date", "slot_time", "service_type", name="uq_time_slot_date_time_service"),
        CheckConstraint("booked_count >= 0", name="ck_time_slot_booked_nonnegative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    slot_date: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD
    slot_time: Mapped[str] = mapped_column(String(5))               # HH:MM
    service_type: Mapped[str] = mapped_column(String(20))           # sauna|ice_bath|combined

    capacity: Mapped[int] = mapped_column(Integer, default=5)
    booked_count: Mapped[int] = mapped_column(Integer, default=0)
    # set while a private booking holds the slot; slot is unavailable whatever the count
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
