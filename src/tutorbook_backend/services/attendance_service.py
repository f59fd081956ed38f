'''
Attendance manager.

Attendance rows can only change while their session is not completed.
Bulk marking reports per-student outcomes instead of raising, so one bad
student id never blocks the rest of the batch.
'''
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.exceptions import NotFoundError, ConflictError, InternalError
from ..common.logger import log
from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import SessionStatusEnum, AttendanceStatusEnum, BILLABLE_ATTENDANCE_STATUSES
from ..database.utils import dialect_insert
from ..models import attendance as attendance_models
from .cache_service import CacheService, get_cache_service
from .fee_resolver import resolve_fee
from .membership_service import MembershipService
from .student_service import StudentService
from .teacher_service import TeacherService
from .report_cache import ReportCacheService


class AttendanceService:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        cache: Annotated[CacheService, Depends(get_cache_service)],
        membership_service: Annotated[MembershipService, Depends(MembershipService)],
        student_service: Annotated[StudentService, Depends(StudentService)],
        teacher_service: Annotated[TeacherService, Depends(TeacherService)],
        report_cache: Annotated[ReportCacheService, Depends(ReportCacheService)]
    ):
        self.db = db
        self.cache = cache
        self.membership_service = membership_service
        self.student_service = student_service
        self.teacher_service = teacher_service
        self.report_cache = report_cache

    # --- 1. Internal Helpers ---

    async def _get_owned_session(self, session_id: UUID, teacher_id: UUID) -> db_models.Sessions:
        stmt = select(db_models.Sessions).filter(
            db_models.Sessions.id == session_id,
            db_models.Sessions.teacher_id == teacher_id
        )
        session = (await self.db.execute(stmt)).scalars().first()
        if not session:
            log.warning(f"Session {session_id} not found for teacher {teacher_id}.")
            raise NotFoundError("Session not found.", code="SESSION_NOT_FOUND")
        return session

    @staticmethod
    def _ensure_editable(session: db_models.Sessions) -> None:
        if session.status == SessionStatusEnum.COMPLETED.value:
            raise ConflictError(
                "Attendance of a completed session cannot be changed. Unlock the session first.",
                code="SESSION_COMPLETED"
            )

    async def _get_owned_attendance(
        self,
        attendance_id: UUID,
        teacher_id: UUID
    ) -> tuple[db_models.Attendance, db_models.Sessions]:
        stmt = select(db_models.Attendance, db_models.Sessions).join(
            db_models.Sessions, db_models.Sessions.id == db_models.Attendance.session_id
        ).filter(
            db_models.Attendance.id == attendance_id,
            db_models.Sessions.teacher_id == teacher_id
        ).execution_options(populate_existing=True)
        row = (await self.db.execute(stmt)).first()
        if row is None:
            raise NotFoundError("Attendance record not found.", code="ATTENDANCE_NOT_FOUND")
        return row[0], row[1]

    async def _invalidate(self, teacher_id: UUID, class_id: Optional[UUID]) -> None:
        await self.cache.invalidate_session_lists(teacher_id, class_id)
        await self.report_cache.invalidate(teacher_id, class_id)

    async def _overrides_for(self, session: db_models.Sessions, student_ids: list[UUID]) -> dict[UUID, Optional[Decimal]]:
        if session.class_id is None:
            return {}
        return await self.membership_service.get_override_map(session.class_id, student_ids)

    async def _load_session_rows(self, session_id: UUID):
        stmt = select(
            db_models.Attendance,
            db_models.Students.name,
            db_models.Students.phone
        ).join(
            db_models.Students, db_models.Students.id == db_models.Attendance.student_id
        ).filter(
            db_models.Attendance.session_id == session_id
        ).order_by(db_models.Students.name).execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).all()

    # --- 2. Bulk Marking ---

    async def mark_attendance(
        self,
        session_id: UUID,
        records: list[attendance_models.AttendanceRecordInput],
        teacher_id: UUID
    ) -> attendance_models.BulkAttendanceResult:
        """
        Marks attendance for many students at once.

        Whole-batch rejections (raised): session missing or not owned,
        session completed, or, for class sessions, a referenced student of
        this teacher who is not an active member of the class.
        Per-record failures (returned): a student id that does not exist or
        belongs to another teacher.
        Re-marking a student replaces that student's row for the session.
        """
        log.info(f"Teacher {teacher_id} marking attendance for {len(records)} record(s) in session {session_id}")
        session = await self._get_owned_session(session_id, teacher_id)
        self._ensure_editable(session)

        latest: dict[UUID, attendance_models.AttendanceRecordInput] = {}
        for record in records:
            latest[record.student_id] = record

        owned = await self.student_service.get_owned_student_ids(list(latest), teacher_id)

        if session.class_id is not None:
            active = set(await self.membership_service.list_active_student_ids(session.class_id))
            outsiders = [student_id for student_id in latest if student_id in owned and student_id not in active]
            if outsiders:
                log.warning(f"Attendance batch for session {session_id} references non-members: {outsiders}")
                raise ConflictError(
                    f"Students not in this class: {', '.join(str(s) for s in outsiders)}.",
                    code="STUDENT_NOT_IN_CLASS"
                )

        outcomes: dict[UUID, attendance_models.BulkRecordResult] = {}
        rows: list[dict] = []
        now = datetime.now(timezone.utc)
        for student_id, record in latest.items():
            if student_id not in owned:
                outcomes[student_id] = attendance_models.BulkRecordResult(
                    student_id=student_id, success=False, error="Student not found"
                )
                continue
            attendance_id = uuid.uuid4()
            rows.append({
                "id": attendance_id,
                "session_id": session_id,
                "student_id": student_id,
                "status": record.status.value,
                "note": record.note,
                "marked_by": teacher_id,
                "marked_at": now,
                "fee_override": record.fee_override,
            })
            outcomes[student_id] = attendance_models.BulkRecordResult(
                student_id=student_id, success=True, attendance_id=attendance_id
            )

        if rows:
            table = db_models.Attendance.__table__
            stmt = dialect_insert(self.db, table).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.session_id, table.c.student_id],
                set_={
                    "id": stmt.excluded.id,
                    "status": stmt.excluded.status,
                    "note": stmt.excluded.note,
                    "marked_by": stmt.excluded.marked_by,
                    "marked_at": stmt.excluded.marked_at,
                    "fee_override": stmt.excluded.fee_override,
                }
            )
            try:
                await self.db.execute(stmt)
            except Exception as e:
                log.error(f"Bulk attendance upsert failed for session {session_id}: {e}", exc_info=True)
                raise
            await self._invalidate(teacher_id, session.class_id)

        # One result per submitted record; repeats of a student share its final outcome.
        results = [outcomes[record.student_id] for record in records]
        failure_count = sum(1 for r in results if not r.success)
        return attendance_models.BulkAttendanceResult(
            success=failure_count == 0,
            total_records=len(results),
            success_count=len(results) - failure_count,
            failure_count=failure_count,
            results=results
        )

    # --- 3. Single-record Edits ---

    async def update_attendance(
        self,
        attendance_id: UUID,
        patch: attendance_models.AttendanceUpdate,
        teacher_id: UUID
    ) -> attendance_models.AttendanceRead:
        log.info(f"Teacher {teacher_id} updating attendance {attendance_id}")
        attendance, session = await self._get_owned_attendance(attendance_id, teacher_id)
        self._ensure_editable(session)

        changes = patch.model_dump(exclude_unset=True)
        if "status" in changes:
            if changes["status"] is None:
                changes.pop("status")
            else:
                changes["status"] = changes["status"].value
        for field, value in changes.items():
            setattr(attendance, field, value)
        attendance.marked_by = teacher_id
        attendance.marked_at = datetime.now(timezone.utc)
        await self.db.flush()

        await self._invalidate(teacher_id, session.class_id)
        return await self._read_one(attendance.id, session)

    async def delete_attendance(self, attendance_id: UUID, teacher_id: UUID) -> None:
        log.info(f"Teacher {teacher_id} deleting attendance {attendance_id}")
        try:
            attendance, session = await self._get_owned_attendance(attendance_id, teacher_id)
            self._ensure_editable(session)
            await self.db.delete(attendance)
            await self.db.flush()
        except HTTPException as http_exc:
            raise http_exc
        except Exception as e:
            log.error(f"Failed to delete attendance {attendance_id}: {e}", exc_info=True)
            raise

        await self._invalidate(teacher_id, session.class_id)

    async def _read_one(self, attendance_id: UUID, session: db_models.Sessions) -> attendance_models.AttendanceRead:
        for read in await self._build_reads(session):
            if read.id == attendance_id:
                return read
        raise InternalError("Attendance record could not be read back after writing it.")

    # --- 4. Reads ---

    async def _build_reads(self, session: db_models.Sessions) -> list[attendance_models.AttendanceRead]:
        rows = await self._load_session_rows(session.id)
        overrides = await self._overrides_for(session, [row[0].student_id for row in rows])
        marker_names = await self.teacher_service.get_names(row[0].marked_by for row in rows)

        reads = []
        for attendance, student_name, student_phone in rows:
            fee = resolve_fee(
                attendance.fee_override,
                overrides.get(attendance.student_id),
                session.fee_per_session
            )
            reads.append(attendance_models.AttendanceRead(
                id=attendance.id,
                session_id=attendance.session_id,
                student_id=attendance.student_id,
                student_name=student_name,
                student_phone=student_phone,
                status=attendance.status,
                note=attendance.note,
                marked_by=attendance.marked_by,
                marked_by_name=marker_names.get(attendance.marked_by),
                marked_at=attendance.marked_at,
                fee_override=attendance.fee_override,
                calculated_fee=fee.amount,
                fee_source=fee.source
            ))
        return reads

    async def get_session_attendance(self, session_id: UUID, teacher_id: UUID) -> list[attendance_models.AttendanceRead]:
        """Every attendance row of the session with its resolved fee and marker name."""
        log.info(f"Fetching attendance of session {session_id} for teacher {teacher_id}")
        session = await self._get_owned_session(session_id, teacher_id)
        return await self._build_reads(session)

    async def calculate_session_fees(self, session_id: UUID, teacher_id: UUID) -> attendance_models.SessionFeeSummary:
        """
        Fee breakdown of a completed session, present and late students only.
        Sessions that are not completed yield an empty summary.
        """
        session = await self._get_owned_session(session_id, teacher_id)
        summary = attendance_models.SessionFeeSummary(session_id=session.id, session_status=session.status)
        if session.status != SessionStatusEnum.COMPLETED.value:
            return summary

        rows = [row for row in await self._load_session_rows(session.id) if row[0].status in BILLABLE_ATTENDANCE_STATUSES]
        overrides = await self._overrides_for(session, [row[0].student_id for row in rows])

        total = Decimal("0")
        for attendance, student_name, _ in rows:
            fee = resolve_fee(attendance.fee_override, overrides.get(attendance.student_id), session.fee_per_session)
            summary.lines.append(attendance_models.FeeLine(
                attendance_id=attendance.id,
                student_id=attendance.student_id,
                student_name=student_name,
                status=attendance.status,
                amount=fee.amount,
                source=fee.source
            ))
            total += fee.amount or Decimal("0")

        summary.billable_count = len(summary.lines)
        summary.total_fees = total
        return summary

    async def get_student_attendance_history(
        self,
        student_id: UUID,
        teacher_id: UUID,
        class_id: Optional[UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> attendance_models.StudentAttendanceHistory:
        """
        Attendance of one student across the teacher's sessions, newest first,
        with counts, attendance rate and the fees of completed present/late sessions.
        """
        log.info(f"Fetching attendance history of student {student_id} for teacher {teacher_id}")
        await self.student_service.get_owned_student(student_id, teacher_id)

        stmt = select(
            db_models.Attendance,
            db_models.Sessions,
            db_models.Classes.name,
            db_models.Classes.subject,
            db_models.ClassStudents.unit_price_override
        ).join(
            db_models.Sessions, db_models.Sessions.id == db_models.Attendance.session_id
        ).outerjoin(
            db_models.Classes, db_models.Classes.id == db_models.Sessions.class_id
        ).outerjoin(
            db_models.ClassStudents,
            (db_models.ClassStudents.class_id == db_models.Sessions.class_id)
            & (db_models.ClassStudents.student_id == db_models.Attendance.student_id)
        ).filter(
            db_models.Attendance.student_id == student_id,
            db_models.Sessions.teacher_id == teacher_id
        )
        if class_id is not None:
            stmt = stmt.filter(db_models.Sessions.class_id == class_id)
        if from_date is not None:
            stmt = stmt.filter(db_models.Sessions.start_time >= datetime.combine(from_date, time.min, tzinfo=timezone.utc))
        if to_date is not None:
            stmt = stmt.filter(db_models.Sessions.start_time < datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=timezone.utc))
        stmt = stmt.order_by(db_models.Sessions.start_time.desc()).execution_options(populate_existing=True)
        rows = (await self.db.execute(stmt)).all()

        marker_names = await self.teacher_service.get_names(row[0].marked_by for row in rows)

        records = []
        counts = {status.value: 0 for status in AttendanceStatusEnum}
        total_fees = Decimal("0")
        for attendance, session, class_name, class_subject, unit_price_override in rows:
            fee = resolve_fee(attendance.fee_override, unit_price_override, session.fee_per_session)
            counts[attendance.status] += 1
            if session.status == SessionStatusEnum.COMPLETED.value and attendance.status in BILLABLE_ATTENDANCE_STATUSES:
                total_fees += fee.amount or Decimal("0")
            records.append(attendance_models.AttendanceHistoryRecord(
                id=attendance.id,
                session_id=session.id,
                session_start_time=session.start_time,
                session_status=session.status,
                class_id=session.class_id,
                class_name=class_name,
                class_subject=class_subject,
                status=attendance.status,
                note=attendance.note,
                marked_by_name=marker_names.get(attendance.marked_by),
                marked_at=attendance.marked_at,
                calculated_fee=fee.amount,
                fee_source=fee.source
            ))

        total = len(records)
        attended = counts[AttendanceStatusEnum.PRESENT.value] + counts[AttendanceStatusEnum.LATE.value]
        stats = attendance_models.AttendanceStats(
            total_sessions=total,
            present_count=counts[AttendanceStatusEnum.PRESENT.value],
            absent_count=counts[AttendanceStatusEnum.ABSENT.value],
            late_count=counts[AttendanceStatusEnum.LATE.value],
            attendance_rate=round(attended / total * 100, 2) if total else 0.0,
            total_fees=total_fees
        )
        return attendance_models.StudentAttendanceHistory(student_id=student_id, records=records, stats=stats)
