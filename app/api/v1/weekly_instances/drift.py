"""Drift detection: has an occurrence diverged from the template slot it was generated from?

The compared fields are student_name, subject, day_of_week, start_time and end_time.
`note` is compared only when `compare_note` is true; the default comes from
settings.drift_compare_note (off), so editing a note alone never marks a lesson as modified.
"""

import logging
from typing import Iterable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.timetables import service as template_store
from app.core.config import settings
from app.core.models import InstanceOccurrence, TemplateSlot

logger = logging.getLogger(__name__)

DRIFT_FIELDS: Tuple[str, ...] = ("student_name", "subject", "day_of_week", "start_time", "end_time")


def compared_fields(compare_note: Optional[bool] = None) -> Tuple[str, ...]:
    if compare_note is None:
        compare_note = settings.drift_compare_note
    return DRIFT_FIELDS + ("note",) if compare_note else DRIFT_FIELDS


def _normalize(value):
    # Treat "" and None as the same empty value for optional text fields.
    if isinstance(value, str):
        return value.strip() or None
    return value


def differs_from_slot(
    occurrence: InstanceOccurrence,
    slot: TemplateSlot,
    compare_note: Optional[bool] = None,
) -> bool:
    return any(
        _normalize(getattr(occurrence, field)) != _normalize(getattr(slot, field))
        for field in compared_fields(compare_note)
    )


def evaluate(
    occurrence: InstanceOccurrence,
    slot: Optional[TemplateSlot],
    compare_note: Optional[bool] = None,
) -> bool:
    """Drift verdict given the already-fetched slot (None when the link is empty or dangling)."""
    if occurrence.is_manual_added:
        return False
    if slot is None:
        # Template-generated occurrence without a live baseline.
        return True
    return differs_from_slot(occurrence, slot, compare_note)


async def is_drifted(
    db: AsyncSession,
    occurrence: InstanceOccurrence,
    compare_note: Optional[bool] = None,
) -> bool:
    slot = None
    if occurrence.template_slot_id is not None:
        slot = await template_store.get_slot(db, occurrence.template_slot_id)
    return evaluate(occurrence, slot, compare_note)


async def refresh_modified_flag(
    db: AsyncSession,
    occurrence: InstanceOccurrence,
    compare_note: Optional[bool] = None,
) -> bool:
    """Recompute is_modified in place. Returns True when the flag changed. Does not commit."""
    drifted = await is_drifted(db, occurrence, compare_note)
    if bool(occurrence.is_modified) == drifted:
        return False
    occurrence.is_modified = drifted
    return True


async def repair_modified_flags(
    db: AsyncSession,
    occurrences: Iterable[InstanceOccurrence],
    compare_note: Optional[bool] = None,
) -> int:
    """Lazy repair used by read paths: fix every stale is_modified flag. Does not commit."""
    candidates = [o for o in occurrences if o.template_slot_id is not None and not o.is_manual_added]
    if not candidates:
        return 0
    slots = await template_store.get_slots_by_ids(db, (o.template_slot_id for o in candidates))
    repaired = 0
    for occ in candidates:
        drifted = evaluate(occ, slots.get(occ.template_slot_id), compare_note)
        if bool(occ.is_modified) != drifted:
            occ.is_modified = drifted
            repaired += 1
    if repaired:
        logger.warning("Repaired is_modified on %d occurrence(s)", repaired)
    return repaired
