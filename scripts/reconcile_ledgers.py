#!/usr/bin/env python3
"""
Ledger Reconciliation Report

Compares every stored balance with the sum of its credit transactions.
Exits non-zero when any balance has drifted, so it can run from cron or CI.

Usage:
    python3 scripts/reconcile_ledgers.py
    python3 scripts/reconcile_ledgers.py --all   # also list consistent balances
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from opsconsole.db.session import close_engines, get_write_session
from opsconsole.services.ledger import LedgerService

logger = structlog.get_logger()


async def reconcile(show_all: bool) -> int:
    """Print one line per balance. Returns the number of drifted balances."""
    try:
        async with get_write_session() as session:
            results = await LedgerService(session).reconcile_all()
    finally:
        await close_engines()

    drifted = 0
    for item in results:
        if not item.is_consistent:
            drifted += 1
            logger.warning(
                "ledger_drift_detected",
                user_id=str(item.user_id),
                stored_balance=item.stored_balance,
                ledger_sum=item.ledger_sum,
                drift=item.drift,
            )
        if show_all or not item.is_consistent:
            status = "OK   " if item.is_consistent else "DRIFT"
            print(
                f"{status} {item.user_id} stored={item.stored_balance} "
                f"ledger={item.ledger_sum} drift={item.drift} "
                f"transactions={item.transaction_count}"
            )

    logger.info("ledger_reconciliation_completed", balances=len(results), drifted=drifted)
    return drifted


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Report ledger drift for every balance")
    parser.add_argument("--all", action="store_true", help="List consistent balances too")
    args = parser.parse_args()

    drifted = asyncio.run(reconcile(args.all))
    sys.exit(1 if drifted else 0)


if __name__ == "__main__":
    main()
