"""
One-off migration: seed ``monthlyTotals`` for users created before the field
existed.

Every user without a ``monthlyTotals`` map gets ``{period: chips}`` so the
current balance counts toward the period's ranking. Users that already have
the map are left alone, which makes the migration safe to re-run.

Run with ``chipledger-migrate-monthly-totals [--period YYYY-MM]``.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from chipledger.core.logging.logger import get_logger
from chipledger.core.store.base import DocumentStore
from chipledger.core.time_utils import Clock, SystemClock, period_key, resolve_timezone
from chipledger.domain.models.base import PERIOD_PATTERN, coerce_int
from chipledger.domain.models.user import USERS_COLLECTION

logger = get_logger(__name__)


async def backfill_monthly_totals(
    store: DocumentStore,
    period: Optional[str] = None,
    *,
    clock: Optional[Clock] = None,
    timezone_name: Optional[str] = None,
) -> int:
    """
    Returns the number of users updated.

    Raises
    ------
    ValueError
        If ``period`` is not a ``YYYY-MM`` string.
    """
    if period is None:
        period = period_key((clock or SystemClock()).now(), resolve_timezone(timezone_name))
    elif not PERIOD_PATTERN.match(period):
        raise ValueError(f"period must look like YYYY-MM, got {period!r}")

    documents = await store.query_from_server(USERS_COLLECTION)
    if not documents:
        logger.info("No users found, nothing to migrate")
        return 0

    updated = 0
    for document in documents:
        if document.data.get("monthlyTotals"):
            logger.debug("User already has monthlyTotals", extra={"user_id": document.id})
            continue
        chips = max(0, coerce_int(document.data.get("chips")))
        await store.update(USERS_COLLECTION, document.id, {"monthlyTotals": {period: chips}})
        updated += 1
        logger.info(
            "Seeded monthlyTotals",
            extra={"user_id": document.id, "period": period, "chips": chips},
        )

    logger.info(
        "Monthly totals migration complete",
        extra={"updated_users": updated, "scanned_users": len(documents), "period": period},
    )
    return updated


async def _run(period: Optional[str]) -> int:
    # Deferred: the container imports this package through the user service
    from chipledger.core.infra.application_context import ApplicationContext

    context = ApplicationContext()
    await context.initialize()
    try:
        return await backfill_monthly_totals(
            context.container.store,
            period,
            timezone_name=context.container.config_manager.get("ledger.timezone", "UTC"),
        )
    finally:
        await context.shutdown()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="chipledger-migrate-monthly-totals",
        description="Seed monthlyTotals for users that do not have it yet.",
    )
    parser.add_argument(
        "--period",
        help="Target period as YYYY-MM (defaults to the current ledger period)",
    )
    args = parser.parse_args(argv)

    try:
        updated = asyncio.run(_run(args.period))
    except Exception:
        logger.critical("Monthly totals migration failed", exc_info=True)
        return 1

    print(f"Updated {updated} user(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
