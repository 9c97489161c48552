"""Durable per-(date, time, service) capacity records.

Occupancy only moves through ``adjust_occupancy``: a single conditional UPDATE
that checks and writes ``booked_count`` in one statement, so two bookings
racing for the last seats cannot both pass the check.
"""
import logging
import uuid
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import and_, case, not_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from bathhouse.core.errors import CapacityExceeded, InconsistentStateError, SlotConflict, ValidationError
from bathhouse.models.time_slot import TimeSlot
from bathhouse.services.catalog import SERVICES, default_capacity

logger = logging.getLogger(__name__)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect for slot upsert: {dialect}")


def remaining_capacity(slot: TimeSlot) -> int:
    if slot.is_private:
        return 0
    return max(0, slot.capacity - slot.booked_count)


def get_slot(db: Session, slot_id: str) -> TimeSlot | None:
    return db.execute(
        select(TimeSlot).where(TimeSlot.id == slot_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()


def find_slot(db: Session, slot_date: str, slot_time: str, service_type: str) -> TimeSlot | None:
    return db.execute(
        select(TimeSlot)
        .where(
            TimeSlot.slot_date == slot_date,
            TimeSlot.slot_time == slot_time,
            TimeSlot.service_type == service_type,
        )
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def find_or_create_slot(db: Session, slot_date: str, slot_time: str, service_type: str) -> TimeSlot:
    """Return the slot for the key, inserting it on first use.

    Insert-on-conflict-do-nothing against the unique key, then read back: a
    concurrent creator can win the insert but both callers see one row.
    """
    if service_type not in SERVICES:
        raise ValidationError({"serviceType": f"Unknown service type: {service_type}"})

    slot = find_slot(db, slot_date, slot_time, service_type)
    if slot:
        return slot

    now = datetime.now(timezone.utc)
    capacity = default_capacity(service_type)
    insert = _insert_for(db)
    stmt = insert(TimeSlot).values(
        id=str(uuid.uuid4()),
        slot_date=slot_date,
        slot_time=slot_time,
        service_type=service_type,
        capacity=capacity,
        booked_count=0,
        is_private=False,
        is_available=capacity > 0,
        created_at=now,
        updated_at=now,
    ).on_conflict_do_nothing(index_elements=["slot_date", "slot_time", "service_type"])
    inserted = db.execute(stmt).rowcount == 1

    slot = find_slot(db, slot_date, slot_time, service_type)
    if slot is None:
        raise InconsistentStateError(
            "Time slot vanished after insert", slotDate=slot_date, slotTime=slot_time, serviceType=service_type
        )
    if inserted:
        logger.info(
            "Created time slot %s %s %s (capacity %s)", slot_date, slot_time, service_type, slot.capacity
        )
    return slot


def adjust_occupancy(db: Session, slot_id: str, delta: int, becomes_private: bool | None = None) -> TimeSlot:
    """Apply ``booked_count += delta`` and recompute availability atomically.

    - communal add: refused when the slot is private or would exceed capacity
    - private add (``becomes_private=True``): refused unless the slot is empty
    - release (negative delta): refused if the count would go below zero,
      which means the stored count is stale
    """
    if delta == 0 and becomes_private is None:
        slot = get_slot(db, slot_id)
        if slot is None:
            raise InconsistentStateError("Time slot not found", slotId=slot_id)
        return slot

    new_count = TimeSlot.booked_count + delta
    values = {"booked_count": new_count, "updated_at": datetime.now(timezone.utc)}

    if delta > 0 and becomes_private:
        conditions = [TimeSlot.booked_count == 0, not_(TimeSlot.is_private)]
        values["is_private"] = True
        values["is_available"] = False
    elif delta > 0:
        conditions = [not_(TimeSlot.is_private), new_count <= TimeSlot.capacity]
        values["is_available"] = case((new_count < TimeSlot.capacity, True), else_=False)
    else:
        conditions = [new_count >= 0]
        if becomes_private is None:
            values["is_available"] = case(
                (and_(new_count < TimeSlot.capacity, not_(TimeSlot.is_private)), True), else_=False
            )
        else:
            values["is_private"] = bool(becomes_private)
            values["is_available"] = False if becomes_private else case((new_count < TimeSlot.capacity, True), else_=False)

    result = db.execute(
        update(TimeSlot)
        .where(TimeSlot.id == slot_id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    slot = get_slot(db, slot_id)
    if slot is None:
        raise InconsistentStateError("Time slot not found", slotId=slot_id)

    if result.rowcount == 1:
        return slot

    if delta > 0 and becomes_private:
        raise SlotConflict(
            "Time slot not available for private booking",
            slotId=slot_id, bookedCount=slot.booked_count, isPrivate=slot.is_private,
        )
    if delta > 0:
        if slot.is_private:
            raise SlotConflict("Time slot has been booked privately", slotId=slot_id)
        raise CapacityExceeded(remaining=remaining_capacity(slot), requested=delta, slot_id=slot_id)
    raise InconsistentStateError(
        "Slot occupancy would drop below zero",
        slotId=slot_id, bookedCount=slot.booked_count, delta=delta,
    )


def release(db: Session, slot_id: str, guest_count: int) -> TimeSlot:
    return adjust_occupancy(db, slot_id, -guest_count, becomes_private=False)


def list_slots(db: Session, slot_date: str, service_type: str | None = None) -> list[TimeSlot]:
    q = select(TimeSlot).where(TimeSlot.slot_date == slot_date)
    if service_type:
        q = q.where(TimeSlot.service_type == service_type)
    return list(db.execute(q.order_by(TimeSlot.slot_time, TimeSlot.service_type)).scalars())


def generate_slots(db: Session, start_date: date, end_date: date, times: list[str], service_types: list[str]) -> int:
    """Make sure every (day, time, service) in the range has a slot. Returns the number created."""
    if end_date < start_date:
        raise ValidationError({"endDate": "endDate must not be before startDate"})
    created = 0
    d = start_date
    while d <= end_date:
        date_str = d.isoformat()
        for t in times:
            for service_type in service_types:
                if find_slot(db, date_str, t, service_type) is None:
                    find_or_create_slot(db, date_str, t, service_type)
                    created += 1
        d += timedelta(days=1)
    db.commit()
    return created
