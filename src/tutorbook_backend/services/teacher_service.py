'''
Teacher lookups used by authentication and by "marked by" name resolution.
'''
from typing import Annotated, Iterable
from uuid import UUID

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..common.logger import log


class TeacherService:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def get_teacher_by_email(self, email: str) -> db_models.Teachers | None:
        log.info(f"Fetching teacher by email: {email}")
        try:
            stmt = select(db_models.Teachers).filter(db_models.Teachers.email == email)
            result = await self.db.execute(stmt)
            return result.scalars().first()
        except Exception as e:
            log.error(f"Database error fetching teacher by email {email}: {e}", exc_info=True)
            raise

    async def get_names(self, teacher_ids: Iterable[UUID | None]) -> dict[UUID, str]:
        """Resolves a set of teacher ids to names in one query."""
        wanted = {teacher_id for teacher_id in teacher_ids if teacher_id is not None}
        if not wanted:
            return {}
        stmt = select(db_models.Teachers.id, db_models.Teachers.name).filter(
            db_models.Teachers.id.in_(wanted)
        )
        result = await self.db.execute(stmt)
        return {row.id: row.name for row in result.all()}
