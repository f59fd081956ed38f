'''
Membership registry: which students belong to which class, over time.

Leaving a class never deletes the row, so fee and attendance history keep
pointing at a real membership. Re-adding a student who left reactivates the
same row.
'''
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException
from pydantic import TypeAdapter
from sqlalchemy import select, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..models import memberships as membership_models
from ..common.exceptions import NotFoundError, ConflictError, InternalError
from ..common.logger import log
from .cache_service import CacheService, get_cache_service, CLASS_STUDENT_FEATURE, LIST
from .class_service import ClassService
from .report_cache import ReportCacheService

_class_student_list_adapter = TypeAdapter(list[membership_models.ClassStudentRead])


class MembershipService:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        cache: Annotated[CacheService, Depends(get_cache_service)],
        class_service: Annotated[ClassService, Depends(ClassService)],
        report_cache: Annotated[ReportCacheService, Depends(ReportCacheService)]
    ):
        self.db = db
        self.cache = cache
        self.class_service = class_service
        self.report_cache = report_cache

    # --- 1. Read Helpers (used by sessions, attendance, students, reports) ---

    async def is_student_in_class(self, class_id: UUID, student_id: UUID) -> bool:
        """True when the student has an active (not left) membership in the class."""
        stmt = select(exists().where(
            db_models.ClassStudents.class_id == class_id,
            db_models.ClassStudents.student_id == student_id,
            db_models.ClassStudents.left_at.is_(None)
        ))
        return bool((await self.db.execute(stmt)).scalar())

    async def has_any_membership(self, student_id: UUID) -> bool:
        """True when the student has ever been a member of any class."""
        stmt = select(exists().where(db_models.ClassStudents.student_id == student_id))
        return bool((await self.db.execute(stmt)).scalar())

    async def list_active_student_ids(self, class_id: UUID) -> list[UUID]:
        stmt = select(db_models.ClassStudents.student_id).filter(
            db_models.ClassStudents.class_id == class_id,
            db_models.ClassStudents.left_at.is_(None)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def get_unit_price_override(self, class_id: UUID, student_id: UUID) -> Optional[Decimal]:
        stmt = select(db_models.ClassStudents.unit_price_override).filter(
            db_models.ClassStudents.class_id == class_id,
            db_models.ClassStudents.student_id == student_id
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def get_override_map(self, class_id: UUID, student_ids: Optional[list[UUID]] = None) -> dict[UUID, Optional[Decimal]]:
        """
        Unit-price overrides for active and historical members of a class,
        keyed by student id. One row per (class, student) is guaranteed.
        """
        stmt = select(
            db_models.ClassStudents.student_id,
            db_models.ClassStudents.unit_price_override
        ).filter(db_models.ClassStudents.class_id == class_id)
        if student_ids is not None:
            if not student_ids:
                return {}
            stmt = stmt.filter(db_models.ClassStudents.student_id.in_(student_ids))
        result = await self.db.execute(stmt)
        return {row.student_id: row.unit_price_override for row in result.all()}

    async def _get_student_owned(self, student_id: UUID, teacher_id: UUID) -> db_models.Students:
        stmt = select(db_models.Students).filter(
            db_models.Students.id == student_id,
            db_models.Students.created_by_teacher == teacher_id
        )
        student = (await self.db.execute(stmt)).scalars().first()
        if not student:
            raise NotFoundError("Student not found.", code="STUDENT_NOT_FOUND")
        return student

    async def _read_membership(self, membership_id: UUID) -> membership_models.ClassStudentRead:
        stmt = select(
            db_models.ClassStudents,
            db_models.Students.name,
            db_models.Students.phone,
            db_models.Students.email
        ).join(
            db_models.Students, db_models.Students.id == db_models.ClassStudents.student_id
        ).filter(db_models.ClassStudents.id == membership_id)
        row = (await self.db.execute(stmt)).first()
        if row is None:
            raise InternalError("Membership could not be read back after writing it.")
        return self._to_read(row)

    @staticmethod
    def _to_read(row) -> membership_models.ClassStudentRead:
        membership, name, phone, email = row
        return membership_models.ClassStudentRead(
            id=membership.id,
            class_id=membership.class_id,
            student_id=membership.student_id,
            unit_price_override=membership.unit_price_override,
            joined_at=membership.joined_at,
            left_at=membership.left_at,
            student_name=name,
            student_phone=phone,
            student_email=email
        )

    async def _invalidate(self, teacher_id: UUID, class_id: UUID) -> None:
        await self.cache.invalidate_membership_lists(teacher_id, class_id)
        await self.report_cache.invalidate(teacher_id, class_id)

    async def invalidate_for_student(self, teacher_id: UUID, student_id: UUID) -> None:
        """
        Member lists and persisted reports carry student names. Drops them for
        every class of the teacher the student has ever belonged to.
        """
        stmt = select(db_models.ClassStudents.class_id).join(
            db_models.Classes, db_models.Classes.id == db_models.ClassStudents.class_id
        ).filter(
            db_models.ClassStudents.student_id == student_id,
            db_models.Classes.teacher_id == teacher_id
        )
        for class_id in (await self.db.execute(stmt)).scalars().all():
            await self._invalidate(teacher_id, class_id)

    # --- 2. API-facing Operations ---

    async def list_by_class(
        self,
        teacher_id: UUID,
        class_id: UUID,
        include_left: bool = False
    ) -> list[membership_models.ClassStudentRead]:
        log.info(f"Listing members of class {class_id} for teacher {teacher_id} (include_left={include_left})")
        await self.class_service.get_owned_class(class_id, teacher_id)

        key = CacheService.build_key(
            CLASS_STUDENT_FEATURE, LIST, {"classId": class_id}, {"includeLeft": include_left}
        )
        cached = await self.cache.get(key)
        if cached is not None:
            return _class_student_list_adapter.validate_python(cached)

        stmt = select(
            db_models.ClassStudents,
            db_models.Students.name,
            db_models.Students.phone,
            db_models.Students.email
        ).join(
            db_models.Students, db_models.Students.id == db_models.ClassStudents.student_id
        ).filter(db_models.ClassStudents.class_id == class_id)
        if not include_left:
            stmt = stmt.filter(db_models.ClassStudents.left_at.is_(None))
        stmt = stmt.order_by(db_models.Students.name)

        members = [self._to_read(row) for row in (await self.db.execute(stmt)).all()]
        await self.cache.set(key, _class_student_list_adapter.dump_python(members, mode="json"))
        return members

    async def add(
        self,
        teacher_id: UUID,
        class_id: UUID,
        data: membership_models.MembershipAdd
    ) -> membership_models.ClassStudentRead:
        """
        Adds a student to a class.
        - Active membership already present: CONFLICT (ALREADY_MEMBER).
        - Historical membership present: reactivated in place, same id.
        - Otherwise a new row is inserted.
        """
        log.info(f"Teacher {teacher_id} adding student {data.student_id} to class {class_id}")
        try:
            await self.class_service.get_owned_class(class_id, teacher_id)
            await self._get_student_owned(data.student_id, teacher_id)

            stmt = select(db_models.ClassStudents).filter(
                db_models.ClassStudents.class_id == class_id,
                db_models.ClassStudents.student_id == data.student_id
            )
            existing = (await self.db.execute(stmt)).scalars().first()

            if existing is not None and existing.left_at is None:
                raise ConflictError("Student is already a member of this class.", code="ALREADY_MEMBER")

            if existing is not None:
                log.info(f"Reactivating membership {existing.id} for student {data.student_id}")
                existing.left_at = None
                existing.joined_at = datetime.now(timezone.utc)
                if "unit_price_override" in data.model_fields_set:
                    existing.unit_price_override = data.unit_price_override
                membership_id = existing.id
            else:
                membership_id = uuid.uuid4()
                membership = db_models.ClassStudents(
                    id=membership_id,
                    class_id=class_id,
                    student_id=data.student_id,
                    unit_price_override=data.unit_price_override
                )
                self.db.add(membership)

            try:
                await self.db.flush()
            except IntegrityError:
                # A concurrent add won the race; the unique constraint caught it.
                log.warning(f"Unique violation adding student {data.student_id} to class {class_id}")
                raise ConflictError("Student is already a member of this class.", code="ALREADY_MEMBER")
            read = await self._read_membership(membership_id)
        except HTTPException as http_exc:
            raise http_exc
        except Exception as e:
            log.error(f"Failed to add student {data.student_id} to class {class_id}: {e}", exc_info=True)
            raise

        await self._invalidate(teacher_id, class_id)
        return read

    async def leave(
        self,
        teacher_id: UUID,
        class_id: UUID,
        class_student_id: UUID,
        data: membership_models.MembershipLeave
    ) -> membership_models.ClassStudentRead:
        """Marks the membership as left. The row is kept."""
        log.info(f"Teacher {teacher_id} removing membership {class_student_id} from class {class_id}")
        await self.class_service.get_owned_class(class_id, teacher_id)

        stmt = select(db_models.ClassStudents).filter(
            db_models.ClassStudents.id == class_student_id,
            db_models.ClassStudents.class_id == class_id
        )
        membership = (await self.db.execute(stmt)).scalars().first()
        if membership is None:
            raise NotFoundError("Membership not found.", code="MEMBERSHIP_NOT_FOUND")

        membership.left_at = data.left_at or datetime.now(timezone.utc)
        await self.db.flush()

        await self._invalidate(teacher_id, class_id)
        return await self._read_membership(membership.id)
