"""Delete processed-webhook-event records older than the retention window.

The provider stops redelivering long before the window ends, so pruned ids
can no longer arrive as duplicates. Run from cron:

    python -m scripts.prune_processed_events [--days N]
"""

import argparse
import asyncio

from paysync.core.config import get_settings
from paysync.core.logging import configure_structlog
from paysync.db import close_db, get_session_factory, init_db
from paysync.services.deduplicator import EventDeduplicator
from paysync.storage import SqlStateStore


async def main(retention_days: int | None = None) -> int:
    settings = get_settings()
    await init_db(settings.database_url, create_tables=False)
    try:
        deduplicator = EventDeduplicator(
            SqlStateStore(get_session_factory()),
            timeout=settings.storage_timeout_seconds,
            lease_seconds=settings.claim_lease_seconds,
            retention_days=retention_days or settings.processed_event_retention_days,
        )
        deleted = await deduplicator.prune()
    finally:
        await close_db()

    print(f"Pruned {deleted} processed webhook event(s).")
    return deleted


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--days", type=int, default=None, help="Retention window (default: from settings)")
    args = parser.parse_args()

    configure_structlog(log_level="INFO", json_logs=True)
    asyncio.run(main(args.days))
