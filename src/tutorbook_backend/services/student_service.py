'''
Student management. Students are owned by the teacher who created them.
'''
from collections import defaultdict
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException
from pydantic import TypeAdapter
from sqlalchemy import select, delete, exists, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.utils import apply_patch
from ..models import students as student_models
from ..models import memberships as membership_models
from ..common.exceptions import NotFoundError, ConflictError, InputValidationError
from ..common.logger import log
from .cache_service import CacheService, get_cache_service, STUDENT_FEATURE, LIST
from .membership_service import MembershipService

_student_list_adapter = TypeAdapter(list[student_models.StudentRead])

_DEFAULT_PARENT_NAMES = {
    "father": "Father",
    "mother": "Mother",
    "grandfather": "Grandfather",
    "grandmother": "Grandmother",
}


class StudentService:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        cache: Annotated[CacheService, Depends(get_cache_service)],
        membership_service: Annotated[MembershipService, Depends(MembershipService)]
    ):
        self.db = db
        self.cache = cache
        self.membership_service = membership_service

    # --- 1. Internal Helpers ---

    async def get_owned_student(self, student_id: UUID, teacher_id: UUID) -> db_models.Students:
        stmt = select(db_models.Students).filter(
            db_models.Students.id == student_id,
            db_models.Students.created_by_teacher == teacher_id
        )
        student = (await self.db.execute(stmt)).scalars().first()
        if not student:
            log.warning(f"Student {student_id} not found for teacher {teacher_id}.")
            raise NotFoundError("Student not found.", code="STUDENT_NOT_FOUND")
        return student

    async def get_owned_student_ids(self, student_ids: list[UUID], teacher_id: UUID) -> set[UUID]:
        """Returns the subset of `student_ids` owned by the teacher, in one query."""
        if not student_ids:
            return set()
        stmt = select(db_models.Students.id).filter(
            db_models.Students.id.in_(student_ids),
            db_models.Students.created_by_teacher == teacher_id
        )
        return set((await self.db.execute(stmt)).scalars().all())

    async def _find_duplicate(
        self,
        teacher_id: UUID,
        name: str,
        phone: Optional[str],
        email: Optional[str],
        exclude_id: Optional[UUID] = None
    ) -> bool:
        """
        A student is a duplicate when the same teacher already has one with
        the same name and the same phone or email.
        """
        contact_matches = []
        if phone:
            contact_matches.append(db_models.Students.phone == phone)
        if email:
            contact_matches.append(db_models.Students.email == email)
        if not contact_matches:
            return False

        criteria = [
            db_models.Students.created_by_teacher == teacher_id,
            db_models.Students.name == name,
            or_(*contact_matches),
        ]
        if exclude_id is not None:
            criteria.append(db_models.Students.id != exclude_id)
        return bool((await self.db.execute(select(exists().where(and_(*criteria))))).scalar())

    def _build_parents(self, student_id: UUID, parents: list[student_models.ParentInput]) -> list[db_models.StudentParents]:
        rows = []
        for parent in parents:
            relationship = parent.relationship.value if parent.relationship else None
            name = parent.name or _DEFAULT_PARENT_NAMES.get(relationship or "")
            if not name:
                raise InputValidationError("Parent name is required when no relationship is given.", code="PARENT_NAME_REQUIRED")
            rows.append(db_models.StudentParents(
                student_id=student_id,
                name=name,
                phone=parent.phone,
                email=parent.email,
                note=parent.note,
                relationship=relationship
            ))
        return rows

    async def _class_names_by_student(self, teacher_id: UUID, student_ids: list[UUID]) -> dict[UUID, list[str]]:
        if not student_ids:
            return {}
        stmt = select(db_models.ClassStudents.student_id, db_models.Classes.name).join(
            db_models.Classes, db_models.Classes.id == db_models.ClassStudents.class_id
        ).filter(
            db_models.Classes.teacher_id == teacher_id,
            db_models.ClassStudents.student_id.in_(student_ids),
            db_models.ClassStudents.left_at.is_(None)
        ).order_by(db_models.Classes.name)
        names = defaultdict(list)
        for row in (await self.db.execute(stmt)).all():
            names[row.student_id].append(row.name)
        return names

    # --- 2. Reads ---

    async def list_by_teacher(self, teacher_id: UUID, class_id: Optional[UUID] = None) -> list[student_models.StudentRead]:
        """Lists the teacher's students, optionally only the active members of one class."""
        log.info(f"Listing students for teacher {teacher_id} (class_id={class_id})")
        key = CacheService.build_key(STUDENT_FEATURE, LIST, {"teacherId": teacher_id}, {"classId": class_id})
        cached = await self.cache.get(key)
        if cached is not None:
            return _student_list_adapter.validate_python(cached)

        try:
            stmt = select(db_models.Students).filter(db_models.Students.created_by_teacher == teacher_id)
            if class_id is not None:
                stmt = stmt.join(
                    db_models.ClassStudents, db_models.ClassStudents.student_id == db_models.Students.id
                ).filter(
                    db_models.ClassStudents.class_id == class_id,
                    db_models.ClassStudents.left_at.is_(None)
                )
            stmt = stmt.order_by(db_models.Students.name)
            students = list((await self.db.execute(stmt)).scalars().all())
            class_names = await self._class_names_by_student(teacher_id, [s.id for s in students])
        except Exception as e:
            log.error(f"Database error listing students for teacher {teacher_id}: {e}", exc_info=True)
            raise

        reads = [
            student_models.StudentRead.model_validate(s).model_copy(update={"class_names": class_names.get(s.id, [])})
            for s in students
        ]
        await self.cache.set(key, _student_list_adapter.dump_python(reads, mode="json"))
        return reads

    async def get_detail(self, student_id: UUID, teacher_id: UUID) -> student_models.StudentDetail:
        student = await self.get_owned_student(student_id, teacher_id)

        parents = (await self.db.execute(
            select(db_models.StudentParents)
            .filter(db_models.StudentParents.student_id == student_id)
            .order_by(db_models.StudentParents.created_at)
        )).scalars().all()

        memberships = (await self.db.execute(
            select(db_models.ClassStudents).join(
                db_models.Classes, db_models.Classes.id == db_models.ClassStudents.class_id
            ).filter(
                db_models.ClassStudents.student_id == student_id,
                db_models.Classes.teacher_id == teacher_id
            ).order_by(db_models.ClassStudents.joined_at)
        )).scalars().all()

        class_names = await self._class_names_by_student(teacher_id, [student_id])
        return student_models.StudentDetail(
            **student_models.StudentRead.model_validate(student).model_dump(exclude={"class_names"}),
            class_names=class_names.get(student_id, []),
            parents=[student_models.ParentRead.model_validate(p) for p in parents],
            memberships=[membership_models.MembershipRead.model_validate(m) for m in memberships]
        )

    # --- 3. Writes ---

    async def create(self, data: student_models.StudentCreate, teacher_id: UUID) -> student_models.StudentDetail:
        log.info(f"Teacher {teacher_id} creating student '{data.name}'")
        try:
            if await self._find_duplicate(teacher_id, data.name, data.phone, data.email):
                raise ConflictError("A student with the same name and contact already exists.", code="DUPLICATE_STUDENT")

            student = db_models.Students(
                name=data.name,
                phone=data.phone,
                email=data.email,
                note=data.note,
                created_by_teacher=teacher_id
            )
            self.db.add(student)
            await self.db.flush()
            self.db.add_all(self._build_parents(student.id, data.parents))
            await self.db.flush()
        except HTTPException as http_exc:
            raise http_exc
        except Exception as e:
            log.error(f"Failed to create student for teacher {teacher_id}: {e}", exc_info=True)
            raise

        await self.cache.delete_by_prefix(CacheService.prefix(STUDENT_FEATURE, LIST, teacherId=teacher_id))
        return await self.get_detail(student.id, teacher_id)

    async def update(self, student_id: UUID, patch: student_models.StudentUpdate, teacher_id: UUID) -> student_models.StudentDetail:
        """Applies only the fields present in the request; `parents` replaces the list."""
        log.info(f"Teacher {teacher_id} updating student {student_id}")
        student = await self.get_owned_student(student_id, teacher_id)

        changes = patch.model_dump(exclude_unset=True, exclude={"parents"})
        if "name" in changes and changes["name"] is None:
            raise InputValidationError("'name' cannot be null.", code="FIELD_NOT_NULLABLE")

        if changes:
            name = changes.get("name", student.name)
            phone = changes.get("phone", student.phone)
            email = changes.get("email", student.email)
            if await self._find_duplicate(teacher_id, name, phone, email, exclude_id=student_id):
                raise ConflictError("A student with the same name and contact already exists.", code="DUPLICATE_STUDENT")
            apply_patch(student, changes)

        if "parents" in patch.model_fields_set:
            await self.db.execute(
                delete(db_models.StudentParents).filter(db_models.StudentParents.student_id == student_id)
            )
            self.db.add_all(self._build_parents(student_id, patch.parents or []))

        await self.db.flush()
        await self.cache.delete_by_prefix(CacheService.prefix(STUDENT_FEATURE, LIST, teacherId=teacher_id))
        if "name" in changes or "phone" in changes or "email" in changes:
            await self.membership_service.invalidate_for_student(teacher_id, student_id)
        return await self.get_detail(student_id, teacher_id)

    async def delete(self, student_id: UUID, teacher_id: UUID) -> None:
        """
        Hard-deletes a student. Refused once the student has ever been in a
        class or has any attendance row.
        """
        log.info(f"Teacher {teacher_id} deleting student {student_id}")
        try:
            student = await self.get_owned_student(student_id, teacher_id)

            if await self.membership_service.has_any_membership(student_id):
                raise ConflictError("Student has class membership history and cannot be deleted.", code="STUDENT_HAS_MEMBERSHIP_HISTORY")

            has_attendance = (await self.db.execute(
                select(exists().where(db_models.Attendance.student_id == student_id))
            )).scalar()
            if has_attendance:
                raise ConflictError("Student has attendance records and cannot be deleted.", code="STUDENT_HAS_ATTENDANCE")

            await self.db.execute(
                delete(db_models.StudentParents).filter(db_models.StudentParents.student_id == student_id)
            )
            await self.db.delete(student)
            await self.db.flush()
        except HTTPException as http_exc:
            raise http_exc
        except Exception as e:
            log.error(f"Failed to delete student {student_id}: {e}", exc_info=True)
            raise

        await self.cache.delete_by_prefix(CacheService.prefix(STUDENT_FEATURE, LIST, teacherId=teacher_id))
