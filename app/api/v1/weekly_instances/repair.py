"""Administrative cleanup: duplicate occurrences and duplicate weekly instances."""

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InstanceNotFound
from app.core.models import InstanceOccurrence, WeeklyInstance

logger = logging.getLogger(__name__)


def _dedupe_key(occ: InstanceOccurrence):
    return (occ.student_name, occ.start_time, occ.end_time, occ.schedule_date)


async def _dedupe_instance(db: AsyncSession, instance_id: int) -> int:
    result = await db.execute(
        select(InstanceOccurrence)
        .where(InstanceOccurrence.weekly_instance_id == instance_id)
        .order_by(InstanceOccurrence.id)
    )
    groups: Dict[tuple, List[InstanceOccurrence]] = defaultdict(list)
    for occ in result.scalars().all():
        groups[_dedupe_key(occ)].append(occ)

    removed = 0
    for members in groups.values():
        # Ordered by id: the first member is the one kept.
        for duplicate in members[1:]:
            await db.delete(duplicate)
            removed += 1
    return removed


async def dedupe(db: AsyncSession, instance_id: int) -> int:
    """Collapse occurrences sharing (student, start, end, date), keeping the lowest id. Returns the number removed."""
    instance = await db.get(WeeklyInstance, instance_id)
    if instance is None:
        raise InstanceNotFound(instance_id)
    removed = await _dedupe_instance(db, instance_id)
    await db.commit()
    if removed:
        logger.info("Instance %s: removed %d duplicate occurrence(s)", instance_id, removed)
    return removed


async def dedupe_template(db: AsyncSession, template_id: int) -> Dict[str, int]:
    """Run dedupe over every instance of a template."""
    result = await db.execute(
        select(WeeklyInstance.id).where(WeeklyInstance.template_id == template_id).order_by(WeeklyInstance.id)
    )
    instance_ids = list(result.scalars().all())
    total = 0
    for instance_id in instance_ids:
        removed = await _dedupe_instance(db, instance_id)
        if removed:
            logger.info("Template %s instance %s: removed %d duplicate occurrence(s)", template_id, instance_id, removed)
        total += removed
    await db.commit()
    return {"instances_processed": len(instance_ids), "occurrences_removed": total}


async def _merge_group(db: AsyncSession, instances: List[WeeklyInstance]) -> WeeklyInstance:
    """Keep the earliest-created instance; move manual occurrences of the others into it, then delete them."""
    retained, *duplicates = sorted(instances, key=lambda i: i.id)
    for duplicate in duplicates:
        manual = await db.execute(
            select(InstanceOccurrence).where(
                InstanceOccurrence.weekly_instance_id == duplicate.id,
                InstanceOccurrence.is_manual_added.is_(True),
            )
        )
        moved = 0
        for occ in manual.scalars().all():
            occ.weekly_instance_id = retained.id
            moved += 1
        if duplicate.is_current:
            retained.is_current = True
        await db.flush()
        await db.delete(duplicate)
        logger.warning(
            "Template %s week %s: merged duplicate instance %s into %s (%d manual occurrence(s) moved)",
            retained.template_id, retained.year_week, duplicate.id, retained.id, moved,
        )
    return retained


async def merge_duplicate_instances_for_week(
    db: AsyncSession,
    template_id: int,
    year_week: str,
) -> Optional[WeeklyInstance]:
    result = await db.execute(
        select(WeeklyInstance).where(
            WeeklyInstance.template_id == template_id,
            WeeklyInstance.year_week == year_week,
        )
    )
    instances = list(result.scalars().all())
    if not instances:
        return None
    retained = instances[0] if len(instances) == 1 else await _merge_group(db, instances)
    await db.commit()
    return retained


async def merge_duplicate_instances(db: AsyncSession, template_id: int) -> int:
    """Merge every (template, week) that has more than one instance. Returns the number of instances removed."""
    result = await db.execute(
        select(WeeklyInstance).where(WeeklyInstance.template_id == template_id).order_by(WeeklyInstance.id)
    )
    by_week: Dict[str, List[WeeklyInstance]] = defaultdict(list)
    for instance in result.scalars().all():
        by_week[instance.year_week].append(instance)

    removed = 0
    for instances in by_week.values():
        if len(instances) > 1:
            await _merge_group(db, instances)
            removed += len(instances) - 1
    await db.commit()
    return removed
