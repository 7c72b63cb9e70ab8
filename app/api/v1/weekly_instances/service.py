"""Weekly instances: generation, current-week switching, and per-occurrence edits (manual add, update, leave, cancel, swap)."""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.timetables import service as template_store
from app.core.exceptions import (
    AlreadyOnLeave,
    DuplicateInstance,
    InstanceNotFound,
    InvalidTimeRange,
    NotWeeklyTemplate,
    OccurrenceNotFound,
    ScheduleDateMismatch,
    ServiceError,
)
from app.core.models import InstanceOccurrence, Timetable, WeeklyInstance
from app.core.week_calendar import local_now, local_today, resolve_date, utc_now, week_bounds, year_week_key

from . import drift, repair, sync
from .schemas import OccurrenceCreate, OccurrenceUpdate

logger = logging.getLogger(__name__)


# ----- Instance generation -----
async def _weekly_template(db: AsyncSession, template_id: int) -> Timetable:
    template = await template_store.get_template(db, template_id)
    if not template.is_weekly:
        raise NotWeeklyTemplate(template_id)
    return template


async def find_instance_for_week(
    db: AsyncSession,
    template_id: int,
    year_week: str,
) -> Optional[WeeklyInstance]:
    """The instance for (template, week), or None. Raises DuplicateInstance if several exist."""
    result = await db.execute(
        select(WeeklyInstance)
        .where(
            WeeklyInstance.template_id == template_id,
            WeeklyInstance.year_week == year_week,
        )
        .order_by(WeeklyInstance.id)
    )
    rows = list(result.scalars().all())
    if len(rows) > 1:
        raise DuplicateInstance(template_id, year_week, [r.id for r in rows])
    return rows[0] if rows else None


async def _healed_instance_for_week(db: AsyncSession, template_id: int, year_week: str) -> Optional[WeeklyInstance]:
    try:
        return await find_instance_for_week(db, template_id, year_week)
    except DuplicateInstance as e:
        logger.warning("%s; merging duplicates", e.message)
        return await repair.merge_duplicate_instances_for_week(db, template_id, year_week)


async def ensure_instance(db: AsyncSession, template_id: int, for_date: date) -> WeeklyInstance:
    """Idempotently create the instance for the week containing `for_date` and materialize it."""
    template = await _weekly_template(db, template_id)
    year_week = year_week_key(for_date)

    existing = await _healed_instance_for_week(db, template_id, year_week)
    if existing is not None:
        return existing

    week_start, week_end = week_bounds(for_date)
    instance = WeeklyInstance(
        template_id=template_id,
        organization_id=template.organization_id,
        owner_id=template.owner_id,
        week_start_date=week_start,
        week_end_date=week_end,
        year_week=year_week,
        is_current=False,
        generated_at=utc_now(),
    )
    try:
        db.add(instance)
        await db.flush()
        await sync.full_materialize(db, instance)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(instance)
    logger.info("Template %s: generated instance %s for week %s", template_id, instance.id, year_week)
    return instance


async def set_current_instance(db: AsyncSession, instance_id: int) -> WeeklyInstance:
    """Mark one instance current: clear the flag on the template's other instances, then set it."""
    instance = await get_instance(db, instance_id)
    await db.execute(
        update(WeeklyInstance)
        .where(
            WeeklyInstance.template_id == instance.template_id,
            WeeklyInstance.id != instance.id,
        )
        .values(is_current=False)
    )
    instance.is_current = True
    await db.commit()
    await db.refresh(instance)
    return instance


async def ensure_current_week_instance(
    db: AsyncSession,
    template_id: int,
    today: Optional[date] = None,
) -> WeeklyInstance:
    instance = await ensure_instance(db, template_id, today or local_today())
    current = await get_current_instance(db, template_id)
    if current is None or current.id != instance.id:
        instance = await set_current_instance(db, instance.id)
    return instance


async def ensure_next_week_instance(
    db: AsyncSession,
    template_id: int,
    today: Optional[date] = None,
) -> WeeklyInstance:
    """Pre-generate next week's instance. The current flag is left where it is."""
    return await ensure_instance(db, template_id, (today or local_today()) + timedelta(days=7))


async def delete_next_week_instance(
    db: AsyncSession,
    template_id: int,
    today: Optional[date] = None,
) -> bool:
    next_week = (today or local_today()) + timedelta(days=7)
    result = await db.execute(
        select(WeeklyInstance).where(
            WeeklyInstance.template_id == template_id,
            WeeklyInstance.year_week == year_week_key(next_week),
        )
    )
    instances = list(result.scalars().all())
    if not instances:
        return False
    for instance in instances:
        await db.delete(instance)
    await db.commit()
    logger.info("Template %s: deleted next-week instance(s) %s", template_id, [i.id for i in instances])
    return True


async def _generate_for_all(db: AsyncSession, generate, label: str) -> Dict[str, object]:
    processed: List[int] = []
    failed: Dict[int, str] = {}
    template_ids = [t.id for t in await template_store.list_active_weekly_templates(db)]
    for template_id in template_ids:
        try:
            await generate(db, template_id)
            processed.append(template_id)
        except (ServiceError, SQLAlchemyError) as e:
            await db.rollback()
            logger.exception("Failed to generate %s instance for template %s", label, template_id)
            failed[template_id] = getattr(e, "message", None) or str(e)
    logger.info("Generated %s instances: %d ok, %d failed", label, len(processed), len(failed))
    return {"processed": processed, "failed": failed}


async def generate_current_week_instances_for_all(
    db: AsyncSession,
    today: Optional[date] = None,
) -> Dict[str, object]:
    """Ensure every active weekly template has a current-week instance. One failure does not stop the run."""

    async def _generate(session: AsyncSession, template_id: int) -> WeeklyInstance:
        return await ensure_current_week_instance(session, template_id, today)

    return await _generate_for_all(db, _generate, "current-week")


async def generate_next_week_instances_for_all(
    db: AsyncSession,
    today: Optional[date] = None,
) -> Dict[str, object]:

    async def _generate(session: AsyncSession, template_id: int) -> WeeklyInstance:
        return await ensure_next_week_instance(session, template_id, today)

    return await _generate_for_all(db, _generate, "next-week")


# ----- Instance reads -----
async def get_instance(db: AsyncSession, instance_id: int) -> WeeklyInstance:
    instance = await db.get(WeeklyInstance, instance_id)
    if instance is None:
        raise InstanceNotFound(instance_id)
    return instance


async def get_current_instance(db: AsyncSession, template_id: int) -> Optional[WeeklyInstance]:
    result = await db.execute(
        select(WeeklyInstance)
        .where(
            WeeklyInstance.template_id == template_id,
            WeeklyInstance.is_current.is_(True),
        )
        .order_by(WeeklyInstance.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_instances(db: AsyncSession, template_id: int) -> List[Tuple[WeeklyInstance, int]]:
    """All instances of a template (newest week first) with their occurrence counts."""
    counts = (
        select(InstanceOccurrence.weekly_instance_id, func.count(InstanceOccurrence.id).label("n"))
        .group_by(InstanceOccurrence.weekly_instance_id)
        .subquery()
    )
    result = await db.execute(
        select(WeeklyInstance, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.weekly_instance_id == WeeklyInstance.id)
        .where(WeeklyInstance.template_id == template_id)
        .order_by(WeeklyInstance.week_start_date.desc(), WeeklyInstance.id)
    )
    return [(row[0], int(row[1])) for row in result.all()]


def _visible(occ: InstanceOccurrence, include_leaves: bool) -> bool:
    return include_leaves or occ.is_active


async def list_occurrences(
    db: AsyncSession,
    instance_id: int,
    include_leaves: bool = False,
    compare_note: Optional[bool] = None,
) -> List[InstanceOccurrence]:
    """Occurrences of an instance by date and time. Stale is_modified flags are repaired on the way."""
    await get_instance(db, instance_id)
    result = await db.execute(
        select(InstanceOccurrence)
        .where(InstanceOccurrence.weekly_instance_id == instance_id)
        .order_by(InstanceOccurrence.schedule_date, InstanceOccurrence.start_time, InstanceOccurrence.id)
    )
    occurrences = list(result.scalars().all())
    if await drift.repair_modified_flags(db, occurrences, compare_note):
        await db.commit()
    return [o for o in occurrences if _visible(o, include_leaves)]


async def list_occurrences_by_date(
    db: AsyncSession,
    template_id: int,
    on_date: date,
    include_leaves: bool = False,
) -> List[InstanceOccurrence]:
    instance = await _healed_instance_for_week(db, template_id, year_week_key(on_date))
    if instance is None:
        return []
    occurrences = await list_occurrences(db, instance.id, include_leaves=include_leaves)
    return [o for o in occurrences if o.schedule_date == on_date]


async def list_leave_records(
    db: AsyncSession,
    template_id: Optional[int] = None,
    owner_id: Optional[int] = None,
) -> List[InstanceOccurrence]:
    """Occurrences currently on leave, most recent request first."""
    stmt = (
        select(InstanceOccurrence)
        .join(WeeklyInstance, WeeklyInstance.id == InstanceOccurrence.weekly_instance_id)
        .where(InstanceOccurrence.is_on_leave.is_(True))
    )
    if template_id is not None:
        stmt = stmt.where(WeeklyInstance.template_id == template_id)
    if owner_id is not None:
        stmt = stmt.where(WeeklyInstance.owner_id == owner_id)
    result = await db.execute(stmt.order_by(InstanceOccurrence.leave_requested_at.desc(), InstanceOccurrence.id))
    return list(result.scalars().all())


# ----- Occurrence edits -----
async def get_occurrence(db: AsyncSession, occurrence_id: int) -> InstanceOccurrence:
    occ = await db.get(InstanceOccurrence, occurrence_id)
    if occ is None:
        raise OccurrenceNotFound(occurrence_id)
    return occ


def _checked_schedule_date(instance: WeeklyInstance, day_of_week: str, schedule_date: Optional[date]) -> date:
    """The date of `day_of_week` in the instance's week; a supplied date must agree with it."""
    expected = resolve_date(instance.week_start_date, day_of_week)
    if schedule_date is not None and schedule_date != expected:
        raise ScheduleDateMismatch(schedule_date, day_of_week, expected)
    return expected


def _manual_occurrence(instance: WeeklyInstance, payload: OccurrenceCreate) -> InstanceOccurrence:
    schedule_date = _checked_schedule_date(instance, payload.day_of_week, payload.schedule_date)
    return InstanceOccurrence(
        weekly_instance_id=instance.id,
        template_slot_id=None,
        student_name=payload.student_name.strip(),
        subject=payload.subject,
        day_of_week=payload.day_of_week,
        start_time=payload.start_time,
        end_time=payload.end_time,
        schedule_date=schedule_date,
        note=payload.note,
        is_manual_added=True,
        is_modified=False,
        is_on_leave=False,
        is_cancelled=False,
    )


async def add_manual_occurrence(
    db: AsyncSession,
    instance_id: int,
    payload: OccurrenceCreate,
) -> InstanceOccurrence:
    instance = await get_instance(db, instance_id)
    occ = _manual_occurrence(instance, payload)
    db.add(occ)
    await db.commit()
    await db.refresh(occ)
    return occ


async def add_manual_occurrences(
    db: AsyncSession,
    instance_id: int,
    payloads: Sequence[OccurrenceCreate],
) -> List[InstanceOccurrence]:
    instance = await get_instance(db, instance_id)
    created = [_manual_occurrence(instance, p) for p in payloads]
    db.add_all(created)
    await db.commit()
    for occ in created:
        await db.refresh(occ)
    logger.info("Instance %s: added %d manual occurrence(s)", instance_id, len(created))
    return created


async def update_occurrence(
    db: AsyncSession,
    occurrence_id: int,
    payload: OccurrenceUpdate,
    compare_note: Optional[bool] = None,
) -> InstanceOccurrence:
    """Apply only the supplied fields, then recheck drift for template-linked occurrences."""
    occ = await get_occurrence(db, occurrence_id)
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None or k in ("subject", "note")}

    start_time = changes.get("start_time", occ.start_time)
    end_time = changes.get("end_time", occ.end_time)
    if end_time <= start_time:
        raise InvalidTimeRange()
    if "day_of_week" in changes or "schedule_date" in changes:
        instance = await get_instance(db, occ.weekly_instance_id)
        changes["schedule_date"] = _checked_schedule_date(
            instance, changes.get("day_of_week", occ.day_of_week), changes.get("schedule_date")
        )

    for field, value in changes.items():
        setattr(occ, field, value)

    if occ.template_slot_id is not None and not occ.is_manual_added:
        await drift.refresh_modified_flag(db, occ, compare_note)
    await db.commit()
    await db.refresh(occ)
    return occ


async def delete_occurrence(db: AsyncSession, occurrence_id: int) -> None:
    occ = await get_occurrence(db, occurrence_id)
    await db.delete(occ)
    await db.commit()


async def delete_occurrences(db: AsyncSession, occurrence_ids: Sequence[int]) -> int:
    result = await db.execute(
        delete(InstanceOccurrence).where(InstanceOccurrence.id.in_(list(occurrence_ids)))
    )
    await db.commit()
    return result.rowcount or 0


async def clear_instance(db: AsyncSession, instance_id: int) -> int:
    """Delete every occurrence of an instance, manual ones included."""
    await get_instance(db, instance_id)
    result = await db.execute(
        delete(InstanceOccurrence).where(InstanceOccurrence.weekly_instance_id == instance_id)
    )
    await db.commit()
    logger.info("Instance %s: cleared %d occurrence(s)", instance_id, result.rowcount or 0)
    return result.rowcount or 0


async def request_leave(
    db: AsyncSession,
    occurrence_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> InstanceOccurrence:
    occ = await get_occurrence(db, occurrence_id)
    if occ.is_on_leave:
        raise AlreadyOnLeave(occurrence_id)
    occ.is_on_leave = True
    occ.leave_reason = reason.strip() if reason else None
    occ.leave_requested_at = now or local_now()
    await db.commit()
    await db.refresh(occ)
    return occ


async def cancel_leave(db: AsyncSession, occurrence_id: int) -> InstanceOccurrence:
    occ = await get_occurrence(db, occurrence_id)
    if not occ.is_on_leave:
        return occ
    occ.is_on_leave = False
    occ.leave_reason = None
    occ.leave_requested_at = None
    await db.commit()
    await db.refresh(occ)
    return occ


async def cancel_occurrence(
    db: AsyncSession,
    occurrence_id: int,
    now: Optional[datetime] = None,
) -> InstanceOccurrence:
    occ = await get_occurrence(db, occurrence_id)
    if occ.is_cancelled:
        return occ
    occ.is_cancelled = True
    occ.cancelled_at = now or local_now()
    await db.commit()
    await db.refresh(occ)
    return occ


async def restore_occurrence(db: AsyncSession, occurrence_id: int) -> InstanceOccurrence:
    occ = await get_occurrence(db, occurrence_id)
    if not occ.is_cancelled:
        return occ
    occ.is_cancelled = False
    occ.cancelled_at = None
    await db.commit()
    await db.refresh(occ)
    return occ


async def swap(
    db: AsyncSession,
    occurrence_id_a: int,
    occurrence_id_b: int,
    compare_note: Optional[bool] = None,
) -> Tuple[InstanceOccurrence, InstanceOccurrence]:
    """Exchange the students of two occurrences; times and dates stay where they are."""
    first = await get_occurrence(db, occurrence_id_a)
    second = await get_occurrence(db, occurrence_id_b)
    first.student_name, second.student_name = second.student_name, first.student_name
    for occ in (first, second):
        await drift.refresh_modified_flag(db, occ, compare_note)
    await db.commit()
    await db.refresh(first)
    await db.refresh(second)
    return first, second
