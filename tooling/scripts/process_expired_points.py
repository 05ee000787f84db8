#!/usr/bin/env python3
"""Expire overdue loyalty points.

Intended usage: schedule daily via system cron when the in-process job
scheduler is disabled.

Example:
    python tooling/scripts/process_expired_points.py

Use `--dry-run` to count the EARN rows that would expire without writing
anything.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire loyalty points past their expiry date")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only count eligible transactions; no ledger rows are written.",
    )
    return parser.parse_args()


async def _run(dry_run: bool) -> dict[str, object]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from sqlalchemy import func, select  # type: ignore import-position

    from yumrun_api.db.session import async_session  # type: ignore import-position
    from yumrun_api.jobs.loyalty import run_points_expiry  # type: ignore import-position
    from yumrun_api.models.loyalty import (  # type: ignore import-position
        LoyaltyTransaction,
        LoyaltyTransactionType,
    )

    now = datetime.now(timezone.utc)
    if not dry_run:
        return await run_points_expiry(session_factory=async_session, reference_time=now)

    async with async_session() as session:
        eligible = await session.scalar(
            select(func.count()).select_from(LoyaltyTransaction).where(
                LoyaltyTransaction.type == LoyaltyTransactionType.EARN,
                LoyaltyTransaction.processed_expiry.is_(False),
                LoyaltyTransaction.expiry_date.is_not(None),
                LoyaltyTransaction.expiry_date < now,
            )
        )
    return {"eligible": int(eligible or 0), "reference_time": now.isoformat()}


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.dry_run))
    logger.success("Loyalty points expiry run completed", dry_run=args.dry_run, **summary)
    return 1 if summary.get("failed") else 0


if __name__ == "__main__":
    sys.exit(main())
