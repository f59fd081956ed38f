'''
Creates every table from the ORM metadata. Existing tables are left alone.

    python scripts/init_db.py
    python scripts/init_db.py --db-url sqlite+aiosqlite:///./tutorbook.db
    python scripts/init_db.py --drop   # drop everything first (local databases only)
'''
import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

# --- Path Setup ---
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

load_dotenv(PROJECT_ROOT / ".env")

from tutorbook_backend.common.logger import log
from tutorbook_backend.database import engine as db_engine
from tutorbook_backend.database.models import Base


async def init_db(db_url: str | None, drop: bool) -> None:
    db_engine.create_db_engine_and_session_factory(db_url)
    try:
        async with db_engine.engine.begin() as conn:
            if drop:
                log.warning("Dropping all tables before creating them.")
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        log.info(f"Created {len(Base.metadata.tables)} table(s).")
    finally:
        await db_engine.dispose_db_engine()


async def main():
    parser = argparse.ArgumentParser(description="Create the TutorBook database schema.")
    parser.add_argument("--db-url", default=None, help="Database URL (defaults to the configured one)")
    parser.add_argument("--drop", action="store_true", help="Drop all tables first")
    args = parser.parse_args()

    await init_db(args.db_url, args.drop)
    print("Done.")

if __name__ == "__main__":
    asyncio.run(main())
