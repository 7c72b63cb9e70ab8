"""Template -> weekly instance reconciliation.

Every strategy is one call to `reconcile` with different options:

- FULL_MATERIALIZE: first creation. Drop every non-manual occurrence and rebuild from the slots.
- FULL_OVERRIDE: "restore to template". Match slots to occurrences by (day, start, end),
  overwrite matches and clear is_modified, create missing ones, delete non-manual leftovers.
- time-gated selective: incremental template edits. Same match-or-create, but only for slots
  whose concrete datetime in that week is still in the future; nothing is deleted and
  is_modified is not consulted.

Manual occurrences are never touched. Matching never looks at student_name. When two slots share
a key the one processed last wins. Callers that need strict serialization per instance must hold
an external lock keyed by instance id; rerunning a strategy on unchanged inputs is a no-op.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.timetables import service as template_store
from app.core.exceptions import InstanceNotFound
from app.core.models import InstanceOccurrence, TemplateSlot, WeeklyInstance
from app.core.week_calendar import local_now, local_today, resolve_date, utc_now

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, object, object]


@dataclass(frozen=True)
class ReconcileOptions:
    rebuild: bool = False
    delete_stale: bool = False
    time_gate: Optional[datetime] = None
    protect_modified: bool = False


@dataclass
class ReconcileResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0

    def __iadd__(self, other: "ReconcileResult") -> "ReconcileResult":
        self.created += other.created
        self.updated += other.updated
        self.deleted += other.deleted
        self.skipped += other.skipped
        return self


FULL_MATERIALIZE = ReconcileOptions(rebuild=True)
FULL_OVERRIDE = ReconcileOptions(delete_stale=True)


def selective(now: datetime) -> ReconcileOptions:
    return ReconcileOptions(time_gate=now)


def _apply_slot(occ: InstanceOccurrence, slot: TemplateSlot, schedule_date: date) -> bool:
    """Copy template fields onto an occurrence. Returns True if anything changed."""
    values = {
        "template_slot_id": slot.id,
        "student_name": slot.student_name,
        "subject": slot.subject,
        "day_of_week": slot.day_of_week,
        "start_time": slot.start_time,
        "end_time": slot.end_time,
        "schedule_date": schedule_date,
        "note": slot.note,
        "is_modified": False,
    }
    changed = False
    for field, value in values.items():
        if getattr(occ, field) != value:
            setattr(occ, field, value)
            changed = True
    return changed


def _new_occurrence(instance: WeeklyInstance, slot: TemplateSlot, schedule_date: date) -> InstanceOccurrence:
    return InstanceOccurrence(
        weekly_instance_id=instance.id,
        template_slot_id=slot.id,
        student_name=slot.student_name,
        subject=slot.subject,
        day_of_week=slot.day_of_week,
        start_time=slot.start_time,
        end_time=slot.end_time,
        schedule_date=schedule_date,
        note=slot.note,
        is_manual_added=False,
        is_modified=False,
        is_on_leave=False,
        is_cancelled=False,
    )


async def _template_occurrences(db: AsyncSession, instance_id: int) -> List[InstanceOccurrence]:
    result = await db.execute(
        select(InstanceOccurrence)
        .where(
            InstanceOccurrence.weekly_instance_id == instance_id,
            InstanceOccurrence.is_manual_added.is_(False),
        )
        .order_by(InstanceOccurrence.id)
    )
    return list(result.scalars().all())


async def reconcile(
    db: AsyncSession,
    instance: WeeklyInstance,
    slots: Sequence[TemplateSlot],
    options: ReconcileOptions,
) -> ReconcileResult:
    """Diff the instance's non-manual occurrences against `slots` and apply. Does not commit."""
    result = ReconcileResult()
    current = await _template_occurrences(db, instance.id)

    if options.rebuild:
        for occ in current:
            await db.delete(occ)
        result.deleted += len(current)
        current = []

    by_key: Dict[SlotKey, InstanceOccurrence] = {}
    for occ in current:
        # Lowest id wins when occurrences already collide; the others count as unmatched.
        by_key.setdefault(occ.slot_key, occ)

    kept_ids = set()
    for slot in slots:
        schedule_date = resolve_date(instance.week_start_date, slot.day_of_week)
        if options.time_gate is not None and datetime.combine(schedule_date, slot.start_time) <= options.time_gate:
            result.skipped += 1
            continue

        occ = by_key.get(slot.slot_key)
        if occ is None:
            occ = _new_occurrence(instance, slot, schedule_date)
            db.add(occ)
            by_key[slot.slot_key] = occ
            result.created += 1
            continue

        if occ.id is not None:
            kept_ids.add(occ.id)
        if options.protect_modified and occ.is_modified:
            result.skipped += 1
            continue
        if _apply_slot(occ, slot, schedule_date):
            result.updated += 1

    if options.delete_stale:
        for occ in current:
            if occ.id not in kept_ids:
                await db.delete(occ)
                result.deleted += 1

    instance.last_synced_at = utc_now()
    await db.flush()
    return result


async def full_materialize(db: AsyncSession, instance: WeeklyInstance) -> ReconcileResult:
    slots = await template_store.list_slots(db, instance.template_id)
    result = await reconcile(db, instance, slots, FULL_MATERIALIZE)
    logger.info("Instance %s materialized: %d occurrence(s) from template", instance.id, result.created)
    return result


async def full_override_sync(db: AsyncSession, instance_id: int) -> ReconcileResult:
    """Restore an instance to its template. Modified (non-manual) occurrences are reset."""
    instance = await db.get(WeeklyInstance, instance_id)
    if instance is None:
        raise InstanceNotFound(instance_id)
    slots = await template_store.list_slots(db, instance.template_id)
    try:
        result = await reconcile(db, instance, slots, FULL_OVERRIDE)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "Instance %s restored to template: created=%d updated=%d deleted=%d",
        instance.id, result.created, result.updated, result.deleted,
    )
    return result


async def _open_instances(db: AsyncSession, template_id: int, today: date) -> List[WeeklyInstance]:
    """Instances whose week has not finished yet (current and future weeks)."""
    result = await db.execute(
        select(WeeklyInstance)
        .where(
            WeeklyInstance.template_id == template_id,
            WeeklyInstance.week_end_date >= today,
        )
        .order_by(WeeklyInstance.week_start_date, WeeklyInstance.id)
    )
    return list(result.scalars().all())


async def selective_future_sync(
    db: AsyncSession,
    template_id: int,
    changed_slots: Sequence[TemplateSlot],
    now: Optional[datetime] = None,
) -> ReconcileResult:
    """Push changed slots into current and future instances, skipping lessons already started."""
    if now is None:
        now = local_now()
    total = ReconcileResult()
    if not changed_slots:
        return total
    options = selective(now)
    try:
        for instance in await _open_instances(db, template_id, now.date()):
            total += await reconcile(db, instance, changed_slots, options)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "Template %s: selective sync of %d slot(s): created=%d updated=%d skipped=%d",
        template_id, len(changed_slots), total.created, total.updated, total.skipped,
    )
    return total


async def propagate_template_change(
    db: AsyncSession,
    template_id: int,
    today: Optional[date] = None,
    options: ReconcileOptions = FULL_OVERRIDE,
) -> ReconcileResult:
    """Reconcile every current and future instance of a template against all of its slots."""
    await template_store.get_template(db, template_id)
    if today is None:
        today = local_today()
    slots = await template_store.list_slots(db, template_id)
    total = ReconcileResult()
    try:
        for instance in await _open_instances(db, template_id, today):
            total += await reconcile(db, instance, slots, options)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "Template %s propagated: created=%d updated=%d deleted=%d skipped=%d",
        template_id, total.created, total.updated, total.deleted, total.skipped,
    )
    return total
