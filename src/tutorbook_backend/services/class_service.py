'''
Class management, scoped to the owning teacher.
'''
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException
from pydantic import TypeAdapter
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.utils import apply_patch
from ..models import classes as class_models
from ..common.exceptions import NotFoundError, ConflictError, InputValidationError, InternalError
from ..common.logger import log
from .cache_service import CacheService, get_cache_service, CLASS_FEATURE, LIST
from .report_cache import ReportCacheService

_class_list_adapter = TypeAdapter(list[class_models.ClassRead])


class ClassService:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        cache: Annotated[CacheService, Depends(get_cache_service)],
        report_cache: Annotated[ReportCacheService, Depends(ReportCacheService)]
    ):
        self.db = db
        self.cache = cache
        self.report_cache = report_cache

    # --- 1. Internal Helpers ---

    async def get_owned_class(self, class_id: UUID, teacher_id: UUID) -> db_models.Classes:
        """
        Fetches a class that belongs to the teacher.
        Missing and foreign classes are reported the same way.
        """
        stmt = select(db_models.Classes).filter(
            db_models.Classes.id == class_id,
            db_models.Classes.teacher_id == teacher_id
        )
        result = await self.db.execute(stmt)
        class_obj = result.scalars().first()
        if not class_obj:
            log.warning(f"Class {class_id} not found for teacher {teacher_id}.")
            raise NotFoundError("Class not found.", code="CLASS_NOT_FOUND")
        return class_obj

    async def _invalidate(self, teacher_id: UUID, class_id: UUID) -> None:
        await self.cache.invalidate_class_name_copies(teacher_id, class_id)
        await self.report_cache.invalidate(teacher_id, class_id)

    async def _count(self, model, *criteria) -> int:
        result = await self.db.execute(select(func.count()).select_from(model).filter(*criteria))
        return result.scalar_one()

    # --- 2. Reads ---

    async def list_by_teacher(
        self,
        teacher_id: UUID,
        is_active: Optional[bool] = None,
        limit: Optional[int] = None
    ) -> list[class_models.ClassRead]:
        log.info(f"Listing classes for teacher {teacher_id} (is_active={is_active}, limit={limit})")
        key = CacheService.build_key(
            CLASS_FEATURE, LIST, {"teacherId": teacher_id}, {"isActive": is_active, "limit": limit}
        )
        cached = await self.cache.get(key)
        if cached is not None:
            return _class_list_adapter.validate_python(cached)

        try:
            stmt = select(db_models.Classes).filter(db_models.Classes.teacher_id == teacher_id)
            if is_active is not None:
                stmt = stmt.filter(db_models.Classes.is_active == is_active)
            stmt = stmt.order_by(db_models.Classes.created_at.desc())
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await self.db.execute(stmt)
            classes = [class_models.ClassRead.model_validate(c) for c in result.scalars().all()]
        except Exception as e:
            log.error(f"Database error listing classes for teacher {teacher_id}: {e}", exc_info=True)
            raise

        await self.cache.set(key, _class_list_adapter.dump_python(classes, mode="json"))
        return classes

    async def get_by_id(self, class_id: UUID, teacher_id: UUID) -> class_models.ClassRead:
        class_obj = await self.get_owned_class(class_id, teacher_id)
        return class_models.ClassRead.model_validate(class_obj)

    # --- 3. Writes ---

    async def create(self, data: class_models.ClassCreate, teacher_id: UUID) -> class_models.ClassRead:
        log.info(f"Teacher {teacher_id} creating class '{data.name}'")
        try:
            new_class = db_models.Classes(teacher_id=teacher_id, **data.model_dump())
            self.db.add(new_class)
            await self.db.flush()
            await self.db.refresh(new_class)
        except Exception as e:
            log.error(f"Failed to create class for teacher {teacher_id}: {e}", exc_info=True)
            raise

        if new_class.id is None:
            raise InternalError("Class could not be read back after creation.")
        await self.cache.invalidate_class_lists(teacher_id)
        return class_models.ClassRead.model_validate(new_class)

    async def update(self, class_id: UUID, patch: class_models.ClassUpdate, teacher_id: UUID) -> class_models.ClassRead:
        """Applies only the fields that were present in the request."""
        log.info(f"Teacher {teacher_id} updating class {class_id}")
        class_obj = await self.get_owned_class(class_id, teacher_id)

        changes = patch.model_dump(exclude_unset=True)
        for required in ("name", "is_active"):
            if required in changes and changes[required] is None:
                raise InputValidationError(f"'{required}' cannot be null.", code="FIELD_NOT_NULLABLE")
        if not changes:
            return class_models.ClassRead.model_validate(class_obj)

        apply_patch(class_obj, changes)
        await self.db.flush()
        await self.db.refresh(class_obj)

        await self._invalidate(teacher_id, class_id)
        return class_models.ClassRead.model_validate(class_obj)

    async def delete(self, class_id: UUID, teacher_id: UUID) -> None:
        """
        Hard-deletes a class. Refused while any membership or session
        (current or historical) still points at it.
        """
        log.info(f"Teacher {teacher_id} deleting class {class_id}")
        try:
            class_obj = await self.get_owned_class(class_id, teacher_id)

            if await self._count(db_models.ClassStudents, db_models.ClassStudents.class_id == class_id):
                raise ConflictError("Cannot delete a class that has students.", code="CLASS_HAS_STUDENTS")
            if await self._count(db_models.Sessions, db_models.Sessions.class_id == class_id):
                raise ConflictError("Cannot delete a class that has sessions.", code="CLASS_HAS_SESSIONS")

            await self.db.delete(class_obj)
            await self.db.flush()
        except HTTPException as http_exc:
            raise http_exc
        except Exception as e:
            log.error(f"Failed to delete class {class_id}: {e}", exc_info=True)
            raise

        await self._invalidate(teacher_id, class_id)
