import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

"""
Finish transfers whose rollback did not complete.

A transfer header left in PENDING for longer than --minutes means the
request that created it failed half way and could not clean up. Each one is
resolved by deleting its ledger rows and marking it ROLLED_BACK.

Run:
  uv run python scripts/retry_pending_transfers.py --minutes 10
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from core.config import settings  # noqa: E402
from core.logging import configure_logging  # noqa: E402
from db.database import async_session_maker  # noqa: E402
from services.store import SqlStockStore  # noqa: E402
from services.transfers import retry_pending_transfers  # noqa: E402

logger = logging.getLogger("retry_pending_transfers")


async def run(minutes: int) -> int:
    settings.require()
    # created_at columns are naive server timestamps
    older_than = datetime.now() - timedelta(minutes=minutes)
    async with async_session_maker() as session:
        results = await retry_pending_transfers(SqlStockStore(session), older_than)
    for r in results:
        logger.info("transfer %s -> %s (%d rows removed)", r["transfer_id"], r["status"], r["removed_rows"])
    logger.info("resolved %d pending transfers", len(results))
    return len(results)


def main() -> None:
    p = argparse.ArgumentParser()
    p.add_argument("--minutes", type=int, default=10, help="Only touch transfers pending for at least this long")
    args = p.parse_args()

    configure_logging()
    asyncio.run(run(args.minutes))


if __name__ == "__main__":
    main()
