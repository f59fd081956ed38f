'''
Persistent store for generated monthly reports.

Freshness is enforced by the read query itself (computed_at inside the TTL
window); rows past the retention window are removed by `purge_expired`,
which runs from the maintenance script.
'''
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.config import settings
from ..common.logger import log
from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.utils import dialect_insert


def report_cache_id(teacher_id: UUID, class_id: Optional[UUID], year: int, month: int) -> str:
    return f"{teacher_id}-{class_id}-{year}-{month}"


class ReportCacheService:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def get_fresh(
        self,
        teacher_id: UUID,
        class_id: Optional[UUID],
        year: int,
        month: int,
        max_age: timedelta = timedelta(hours=settings.REPORT_CACHE_TTL_HOURS)
    ) -> Optional[str]:
        """Returns the cached payload if it was computed within `max_age`, else None."""
        cutoff = datetime.now(timezone.utc) - max_age
        stmt = select(db_models.ReportCache.payload).filter(
            db_models.ReportCache.id == report_cache_id(teacher_id, class_id, year, month),
            db_models.ReportCache.computed_at > cutoff
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def save(self, teacher_id: UUID, class_id: Optional[UUID], year: int, month: int, payload: str) -> None:
        """Writes the payload, replacing any previous entry for the same key."""
        now = datetime.now(timezone.utc)
        stmt = dialect_insert(self.db, db_models.ReportCache.__table__).values(
            id=report_cache_id(teacher_id, class_id, year, month),
            teacher_id=teacher_id,
            class_id=class_id,
            year=year,
            month=month,
            payload=payload,
            computed_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[db_models.ReportCache.id],
            set_={"payload": stmt.excluded.payload, "computed_at": stmt.excluded.computed_at}
        )
        await self.db.execute(stmt)
        await self.db.flush()

    async def invalidate(self, teacher_id: UUID, class_id: Optional[UUID]) -> None:
        """
        Drops every persisted month for the (teacher, class) pair.

        Runs in a savepoint and only logs on failure, so the write that
        triggered it still commits.
        """
        if class_id is None:
            return
        stmt = delete(db_models.ReportCache).filter(
            db_models.ReportCache.teacher_id == teacher_id,
            db_models.ReportCache.class_id == class_id
        )
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(stmt)
        except Exception as e:
            log.warning(f"Report cache delete failed for teacher {teacher_id}, class {class_id}: {e}", exc_info=True)
            return
        if result.rowcount:
            log.info(f"Dropped {result.rowcount} cached report(s) for teacher {teacher_id}, class {class_id}")

    async def purge_expired(
        self,
        older_than: timedelta = timedelta(hours=settings.REPORT_CACHE_RETENTION_HOURS)
    ) -> int:
        cutoff = datetime.now(timezone.utc) - older_than
        result = await self.db.execute(
            delete(db_models.ReportCache).filter(db_models.ReportCache.computed_at < cutoff)
        )
        log.info(f"Purged {result.rowcount} report cache row(s) computed before {cutoff.isoformat()}")
        return result.rowcount
