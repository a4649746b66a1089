#!/usr/bin/env python3
"""
1Lab Tools - Unrecorded usage report

Lists usage debits whose generation was never saved and that were not
compensated by a refund. Each row is a user who was charged for output they
never received and needs a manual refund.

Usage:
    # Report the oldest 100 outstanding rows (default)
    python3 scripts/reconcile_usage.py

    # Larger batch, JSON lines for piping into other tooling
    python3 scripts/reconcile_usage.py --limit 1000 --json
"""

import argparse
import asyncio
import json
import sys

from app.observability import get_logger, setup_logging
from app.storage.factory import open_storage

logger = get_logger(__name__)


async def report(limit: int, as_json: bool) -> int:
    """Print outstanding rows and return how many were found."""
    async with open_storage() as storage:
        rows = await storage.find_unrecorded_usage(limit)

    for row in rows:
        if as_json:
            print(
                json.dumps(
                    {
                        "transaction_id": str(row.transaction_id),
                        "profile_id": str(row.profile_id),
                        "generation_id": str(row.generation_id),
                        "tool_type": row.tool_type.value if row.tool_type else None,
                        "amount": row.amount,
                        "created_at": row.created_at.isoformat(),
                    }
                )
            )
        else:
            print(
                f"{row.created_at.isoformat()}  profile={row.profile_id}  "
                f"generation={row.generation_id}  amount={row.amount}"
            )

    logger.info("unrecorded_usage_report", outstanding=len(rows), limit=limit)
    return len(rows)


def main() -> int:
    parser = argparse.ArgumentParser(description="Report usage debits without a saved generation")
    parser.add_argument("--limit", type=int, default=100, help="Maximum rows to report")
    parser.add_argument("--json", action="store_true", help="Emit one JSON object per line")
    args = parser.parse_args()

    setup_logging()
    outstanding = asyncio.run(report(args.limit, args.json))
    # Non-zero exit lets cron/alerting notice outstanding rows
    return 1 if outstanding else 0


if __name__ == "__main__":
    sys.exit(main())
