"""
Generate weekly instances for every active weekly timetable.

Meant to be called by an external scheduler (e.g. cron on Sunday evening for next week,
and daily for the current week as a safety net). Idempotent: existing instances are kept.
Usage: python -m app.scripts.generate_weekly_instances [--week current|next] [--date YYYY-MM-DD]
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import Optional

from app.api.v1.weekly_instances import service
from app.db.session import AsyncSessionLocal, create_tables

logger = logging.getLogger(__name__)


async def generate_weekly_instances(week: str, today: Optional[date] = None, create: bool = False) -> int:
    """Run one generation pass. Returns the number of templates that failed."""
    if create:
        await create_tables()
    async with AsyncSessionLocal() as session:
        if week == "next":
            summary = await service.generate_next_week_instances_for_all(session, today)
        else:
            summary = await service.generate_current_week_instances_for_all(session, today)

    print(f"Generated {week}-week instances for {len(summary['processed'])} timetable(s).")
    for template_id, message in summary["failed"].items():
        print(f"  FAILED: timetable {template_id}: {message}", file=sys.stderr)
    return len(summary["failed"])


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--week", choices=("current", "next"), default="current")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="Reference date (defaults to today)")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    failed = asyncio.run(generate_weekly_instances(args.week, args.date, args.create_tables))
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
