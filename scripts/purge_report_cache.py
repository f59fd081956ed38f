'''
Deletes persisted monthly reports older than the retention window.

Meant to run from cron, e.g. hourly:
    python scripts/purge_report_cache.py
    python scripts/purge_report_cache.py --older-than-hours 48 --db-url postgresql+psycopg://...
'''
import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

# --- Path Setup ---
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

load_dotenv(PROJECT_ROOT / ".env")

from tutorbook_backend.common.config import settings
from tutorbook_backend.common.logger import log
from tutorbook_backend.database import engine as db_engine
from tutorbook_backend.services.report_cache import ReportCacheService


async def purge(db_url: str | None, older_than_hours: int) -> int:
    db_engine.create_db_engine_and_session_factory(db_url)
    try:
        async with db_engine.AsyncSessionLocal() as session:
            deleted = await ReportCacheService(db=session).purge_expired(timedelta(hours=older_than_hours))
            await session.commit()
    finally:
        await db_engine.dispose_db_engine()
    return deleted


async def main():
    parser = argparse.ArgumentParser(description="Purge expired monthly report cache rows.")
    parser.add_argument("--db-url", default=None, help="Database URL (defaults to the configured one)")
    parser.add_argument(
        "--older-than-hours",
        type=int,
        default=settings.REPORT_CACHE_RETENTION_HOURS,
        help="Rows computed before now minus this many hours are deleted"
    )
    args = parser.parse_args()

    deleted = await purge(args.db_url, args.older_than_hours)
    log.info(f"Report cache purge finished: {deleted} row(s) removed.")
    print("Done.")

if __name__ == "__main__":
    asyncio.run(main())
