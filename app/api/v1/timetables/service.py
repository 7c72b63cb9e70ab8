"""Template store: weekly timetables and their recurring slots.

Slot writes are followed by a time-gated sync into the template's current and future
weekly instances, so already-elapsed lessons of the running week are never rewritten.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DuplicateTemplateSlot, InvalidTimeRange, SlotNotFound, TemplateNotFound
from app.core.models import TemplateSlot, Timetable
from app.core.week_calendar import day_ordinal

from .schemas import TemplateSlotCreate, TemplateSlotUpdate, TimetableCreate

logger = logging.getLogger(__name__)


def _slot_sort_key(slot: TemplateSlot) -> Tuple[int, object, int]:
    return day_ordinal(slot.day_of_week), slot.start_time, slot.id


async def create_timetable(
    db: AsyncSession,
    owner_id: int,
    payload: TimetableCreate,
) -> Timetable:
    obj = Timetable(
        name=payload.name.strip(),
        is_weekly=payload.is_weekly,
        organization_id=payload.organization_id,
        owner_id=owner_id,
    )
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


async def get_template(db: AsyncSession, template_id: int) -> Timetable:
    obj = await db.get(Timetable, template_id)
    if obj is None:
        raise TemplateNotFound(template_id)
    return obj


async def list_timetables(
    db: AsyncSession,
    owner_id: Optional[int] = None,
) -> List[Timetable]:
    stmt = select(Timetable)
    if owner_id is not None:
        stmt = stmt.where(Timetable.owner_id == owner_id)
    result = await db.execute(stmt.order_by(Timetable.id))
    return list(result.scalars().all())


async def list_active_weekly_templates(db: AsyncSession) -> List[Timetable]:
    """Templates the batch generator materializes every week."""
    result = await db.execute(
        select(Timetable)
        .where(
            Timetable.is_weekly.is_(True),
            Timetable.is_active.is_(True),
            Timetable.is_archived.is_(False),
        )
        .order_by(Timetable.id)
    )
    return list(result.scalars().all())


async def list_slots(db: AsyncSession, template_id: int) -> List[TemplateSlot]:
    """Recurring slots of a template, Monday first, then by start time."""
    result = await db.execute(select(TemplateSlot).where(TemplateSlot.timetable_id == template_id))
    return sorted(result.scalars().all(), key=_slot_sort_key)


async def get_slot(db: AsyncSession, slot_id: int) -> Optional[TemplateSlot]:
    return await db.get(TemplateSlot, slot_id)


async def get_slots_by_ids(db: AsyncSession, slot_ids) -> dict:
    ids = {i for i in slot_ids if i is not None}
    if not ids:
        return {}
    result = await db.execute(select(TemplateSlot).where(TemplateSlot.id.in_(ids)))
    return {s.id: s for s in result.scalars().all()}


async def _ensure_key_free(
    db: AsyncSession,
    template_id: int,
    day_of_week: str,
    start_time,
    end_time,
    exclude_slot_id: Optional[int] = None,
) -> None:
    """Reject a second slot on the same (day, start, end): instance matching relies on that key."""
    stmt = select(TemplateSlot.id).where(
        TemplateSlot.timetable_id == template_id,
        TemplateSlot.day_of_week == day_of_week,
        TemplateSlot.start_time == start_time,
        TemplateSlot.end_time == end_time,
    )
    if exclude_slot_id is not None:
        stmt = stmt.where(TemplateSlot.id != exclude_slot_id)
    result = await db.execute(stmt.limit(1))
    if result.scalar_one_or_none() is not None:
        raise DuplicateTemplateSlot(day_of_week, start_time, end_time)


async def create_slot(
    db: AsyncSession,
    template_id: int,
    payload: TemplateSlotCreate,
    now: Optional[datetime] = None,
) -> TemplateSlot:
    await get_template(db, template_id)
    if payload.end_time <= payload.start_time:
        raise InvalidTimeRange()
    await _ensure_key_free(db, template_id, payload.day_of_week, payload.start_time, payload.end_time)

    slot = TemplateSlot(
        timetable_id=template_id,
        day_of_week=payload.day_of_week,
        start_time=payload.start_time,
        end_time=payload.end_time,
        student_name=payload.student_name.strip(),
        subject=payload.subject,
        note=payload.note,
    )
    db.add(slot)
    await db.commit()
    await db.refresh(slot)
    logger.info("Template %s: added slot %s (%s %s)", template_id, slot.id, slot.day_of_week, slot.start_time)

    await _sync_changed_slot(db, slot, now)
    return slot


async def update_slot(
    db: AsyncSession,
    slot_id: int,
    payload: TemplateSlotUpdate,
    now: Optional[datetime] = None,
) -> TemplateSlot:
    slot = await get_slot(db, slot_id)
    if slot is None:
        raise SlotNotFound(slot_id)

    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field in ("day_of_week", "start_time", "end_time", "student_name"):
            continue
        setattr(slot, field, value)
    if slot.end_time <= slot.start_time:
        await db.rollback()
        raise InvalidTimeRange()
    if {"day_of_week", "start_time", "end_time"} & changes.keys():
        try:
            await _ensure_key_free(
                db, slot.timetable_id, slot.day_of_week, slot.start_time, slot.end_time, exclude_slot_id=slot.id
            )
        except DuplicateTemplateSlot:
            await db.rollback()
            raise

    await db.commit()
    await db.refresh(slot)
    await _sync_changed_slot(db, slot, now)
    return slot


async def delete_slot(db: AsyncSession, slot_id: int) -> bool:
    """Delete a slot. Occurrences generated from it stay until a full override sync removes them."""
    slot = await get_slot(db, slot_id)
    if slot is None:
        return False
    await db.delete(slot)
    await db.commit()
    logger.info("Template %s: deleted slot %s", slot.timetable_id, slot_id)
    return True


async def _sync_changed_slot(db: AsyncSession, slot: TemplateSlot, now: Optional[datetime]) -> None:
    from app.api.v1.weekly_instances import sync as instance_sync

    await instance_sync.selective_future_sync(db, slot.timetable_id, [slot], now=now)
