'''
Session lifecycle: scheduling with conflict detection, weekly series,
private ad-hoc sessions, and the scheduled/completed/canceled state machine.

    scheduled --complete--> completed --unlock(reason)--> scheduled
    scheduled --cancel----> canceled  --delete--> (row removed)
'''
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Annotated, Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import Depends, HTTPException
from pydantic import TypeAdapter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.config import settings
from ..common.exceptions import NotFoundError, ConflictError, InputValidationError, InternalError
from ..common.logger import log
from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import (
    SessionStatusEnum,
    SessionTypeEnum,
    AttendanceStatusEnum,
    BLOCKING_SESSION_STATUSES
)
from ..database.utils import apply_patch
from ..models import sessions as session_models
from .cache_service import CacheService, get_cache_service, SESSION_FEATURE, LIST_BY_CLASS, LIST_BY_TEACHER
from .class_service import ClassService
from .membership_service import MembershipService
from .student_service import StudentService
from .report_cache import ReportCacheService

_session_list_adapter = TypeAdapter(list[session_models.SessionRead])


# --- Recurrence expansion ---

def js_weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7

def expand_recurrence(
    rule: session_models.RecurrenceRule,
    scan_days: int = settings.SERIES_SCAN_DAYS,
    default_max_occurrences: int = settings.SERIES_DEFAULT_MAX_OCCURRENCES
) -> list[datetime]:
    """
    Walks day by day from `rule.start_date` and returns the UTC start of every
    matching occurrence. Stops at the end date, the occurrence cap, or the
    scan horizon, whichever comes first.
    """
    try:
        zone = ZoneInfo(rule.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise InputValidationError(f"Unknown timezone '{rule.timezone}'.", code="INVALID_TIMEZONE")

    hours, minutes = (int(part) for part in rule.time.split(":"))
    wall_time = time(hours, minutes)
    max_occurrences = rule.max_occurrences or default_max_occurrences
    excluded = set(rule.exclusion_dates)
    days = set(rule.days_of_week)

    starts: list[datetime] = []
    for offset in range(scan_days):
        if len(starts) >= max_occurrences:
            break
        day = rule.start_date + timedelta(days=offset)
        if rule.end_date is not None and day > rule.end_date:
            break
        if js_weekday(day) not in days or day in excluded:
            continue
        starts.append(datetime.combine(day, wall_time, tzinfo=zone).astimezone(timezone.utc))
    return starts

def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval overlap: touching endpoints do not overlap."""
    return start_a < end_b and start_b < end_a


class SessionService:
    """
    Owns session rows. Every mutation drops the cached session listings for
    the class and the teacher, and the persisted monthly reports of the class.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        cache: Annotated[CacheService, Depends(get_cache_service)],
        class_service: Annotated[ClassService, Depends(ClassService)],
        membership_service: Annotated[MembershipService, Depends(MembershipService)],
        student_service: Annotated[StudentService, Depends(StudentService)],
        report_cache: Annotated[ReportCacheService, Depends(ReportCacheService)]
    ):
        self.db = db
        self.cache = cache
        self.class_service = class_service
        self.membership_service = membership_service
        self.student_service = student_service
        self.report_cache = report_cache

    # --- 1. Internal Helpers ---

    async def get_owned_session(self, session_id: UUID, teacher_id: UUID) -> db_models.Sessions:
        stmt = select(db_models.Sessions).filter(
            db_models.Sessions.id == session_id,
            db_models.Sessions.teacher_id == teacher_id
        )
        session = (await self.db.execute(stmt)).scalars().first()
        if not session:
            log.warning(f"Session {session_id} not found for teacher {teacher_id}.")
            raise NotFoundError("Session not found.", code="SESSION_NOT_FOUND")
        return session

    async def _blocking_sessions(
        self,
        teacher_id: UUID,
        window_start: datetime,
        window_end: datetime,
        class_id: Optional[UUID] = None,
        exclude_id: Optional[UUID] = None
    ) -> list[db_models.Sessions]:
        """
        Scheduled/completed sessions that could overlap [window_start, window_end).
        The lower bound is widened by the longest allowed duration; callers do
        the exact overlap test.
        """
        stmt = select(db_models.Sessions).filter(
            db_models.Sessions.teacher_id == teacher_id,
            db_models.Sessions.status.in_(BLOCKING_SESSION_STATUSES),
            db_models.Sessions.start_time < window_end,
            db_models.Sessions.start_time > window_start - timedelta(minutes=session_models.MAX_DURATION_MIN)
        )
        if class_id is not None:
            stmt = stmt.filter(db_models.Sessions.class_id == class_id)
        if exclude_id is not None:
            stmt = stmt.filter(db_models.Sessions.id != exclude_id)
        return list((await self.db.execute(stmt)).scalars().all())

    async def find_conflicts(
        self,
        teacher_id: UUID,
        start_time: datetime,
        duration_min: int,
        class_id: Optional[UUID] = None,
        exclude_id: Optional[UUID] = None
    ) -> list[db_models.Sessions]:
        end_time = start_time + timedelta(minutes=duration_min)
        candidates = await self._blocking_sessions(teacher_id, start_time, end_time, class_id, exclude_id)
        return [s for s in candidates if overlaps(s.start_time, s.end_time, start_time, end_time)]

    @staticmethod
    def _audit_line(text: str) -> str:
        now = datetime.now(ZoneInfo(settings.LOCAL_TIMEZONE))
        return f"{text} {now.strftime('%H:%M:%S %d/%m/%Y')}"

    @staticmethod
    def _prepend_note(existing: Optional[str], line: str) -> str:
        return f"{line}\n{existing}" if existing else line

    @staticmethod
    def _to_read(session: db_models.Sessions, class_name: Optional[str] = None) -> session_models.SessionRead:
        read = session_models.SessionRead.model_validate(session)
        if class_name is not None:
            read = read.model_copy(update={"class_name": class_name})
        return read

    async def _invalidate(self, teacher_id: UUID, class_id: Optional[UUID]) -> None:
        await self.cache.invalidate_session_lists(teacher_id, class_id)
        await self.report_cache.invalidate(teacher_id, class_id)

    async def _seed_attendance_hook(
        self,
        session_ids: list[UUID],
        student_ids: list[UUID],
        teacher_id: UUID
    ) -> None:
        """
        Post-create hook: one "present" attendance row per (session, student).

        Runs in its own savepoint after the sessions are written. A failure
        here is logged and ignored; the sessions stay created and attendance
        can still be marked by hand.
        """
        if not session_ids or not student_ids:
            return
        try:
            async with self.db.begin_nested():
                self.db.add_all([
                    db_models.Attendance(
                        session_id=session_id,
                        student_id=student_id,
                        status=AttendanceStatusEnum.PRESENT.value,
                        marked_by=teacher_id,
                        marked_at=datetime.now(timezone.utc)
                    )
                    for session_id in session_ids
                    for student_id in student_ids
                ])
            log.info(f"Seeded attendance for {len(student_ids)} student(s) across {len(session_ids)} session(s).")
        except Exception as e:
            log.error(f"Attendance seeding failed for sessions {session_ids}: {e}", exc_info=True)

    async def _class_name(self, class_id: Optional[UUID]) -> Optional[str]:
        if class_id is None:
            return None
        stmt = select(db_models.Classes.name).filter(db_models.Classes.id == class_id)
        return (await self.db.execute(stmt)).scalars().first()

    # --- 2. Creation ---

    async def create(self, data: session_models.SessionCreate, teacher_id: UUID) -> session_models.SessionRead:
        """
        Creates one session. Class sessions inherit the class default fee when
        none is given and get attendance seeded for every active member.
        """
        log.info(f"Teacher {teacher_id} creating session at {data.start_time.isoformat()} (class={data.class_id})")
        try:
            class_obj = None
            if data.class_id is not None:
                class_obj = await self.class_service.get_owned_class(data.class_id, teacher_id)

            conflicts = await self.find_conflicts(teacher_id, data.start_time, data.duration_min, class_id=data.class_id)
            if conflicts:
                raise ConflictError(
                    f"Time conflict with an existing session starting at {conflicts[0].start_time.isoformat()}.",
                    code="SESSION_CONFLICT"
                )

            fee = data.fee_per_session
            if fee is None and class_obj is not None:
                fee = class_obj.default_fee_per_session

            session = db_models.Sessions(
                id=uuid.uuid4(),
                class_id=data.class_id,
                teacher_id=teacher_id,
                start_time=data.start_time,
                duration_min=data.duration_min,
                status=SessionStatusEnum.SCHEDULED.value,
                notes=data.notes,
                fee_per_session=fee,
                type=SessionTypeEnum.CLASS.value if data.class_id else SessionTypeEnum.AD_HOC.value
            )
            self.db.add(session)
            await self.db.flush()
        except HTTPException as http_exc:
            raise http_exc
        except Exception as e:
            log.error(f"Failed to create session for teacher {teacher_id}: {e}", exc_info=True)
            raise

        if class_obj is not None:
            members = await self.membership_service.list_active_student_ids(class_obj.id)
            await self._seed_attendance_hook([session.id], members, teacher_id)

        await self._invalidate(teacher_id, data.class_id)
        return self._to_read(session, class_obj.name if class_obj else None)

    async def create_series(self, data: session_models.SessionSeriesCreate, teacher_id: UUID) -> session_models.SessionSeriesRead:
        """
        Expands a weekly recurrence into sessions sharing one series id.
        The whole series is refused if it is empty, too large, or if any
        occurrence conflicts; nothing is written in that case.
        """
        log.info(f"Teacher {teacher_id} creating session series (class={data.class_id})")
        class_obj = None
        if data.class_id is not None:
            class_obj = await self.class_service.get_owned_class(data.class_id, teacher_id)

        starts = expand_recurrence(data.recurrence)
        if len(starts) > settings.SERIES_MAX_SESSIONS:
            raise InputValidationError(
                f"Cannot create more than {settings.SERIES_MAX_SESSIONS} sessions at once.",
                code="SERIES_TOO_LARGE"
            )
        if not starts:
            raise InputValidationError("The recurrence rule produces no sessions.", code="SERIES_EMPTY")

        duration = timedelta(minutes=data.duration_min)
        existing = await self._blocking_sessions(teacher_id, starts[0], starts[-1] + duration, class_id=data.class_id)
        previous_end: Optional[datetime] = None
        for start in starts:
            end = start + duration
            clash = previous_end is not None and start < previous_end
            clash = clash or any(overlaps(s.start_time, s.end_time, start, end) for s in existing)
            if clash:
                local_date = start.astimezone(ZoneInfo(data.recurrence.timezone)).date()
                raise ConflictError(f"Time conflict on {local_date.isoformat()}.", code="SESSION_CONFLICT")
            previous_end = end

        fee = data.fee_per_session
        if fee is None and class_obj is not None:
            fee = class_obj.default_fee_per_session

        series_id = uuid.uuid4()
        session_type = SessionTypeEnum.CLASS.value if data.class_id else SessionTypeEnum.AD_HOC.value
        sessions = [
            db_models.Sessions(
                id=uuid.uuid4(),
                class_id=data.class_id,
                teacher_id=teacher_id,
                start_time=start,
                duration_min=data.duration_min,
                status=SessionStatusEnum.SCHEDULED.value,
                notes=data.notes,
                fee_per_session=fee,
                type=session_type,
                series_id=series_id
            )
            for start in starts
        ]
        try:
            self.db.add_all(sessions)
            await self.db.flush()
        except Exception as e:
            log.error(f"Failed to insert series {series_id}: {e}", exc_info=True)
            raise

        if class_obj is not None:
            members = await self.membership_service.list_active_student_ids(class_obj.id)
            await self._seed_attendance_hook([s.id for s in sessions], members, teacher_id)

        await self._invalidate(teacher_id, data.class_id)
        class_name = class_obj.name if class_obj else None
        return session_models.SessionSeriesRead(
            series_id=series_id,
            total_sessions=len(sessions),
            sessions=[self._to_read(s, class_name) for s in sessions]
        )

    async def create_private_session(self, data: session_models.PrivateSessionCreate, teacher_id: UUID) -> session_models.SessionRead:
        """
        Ad-hoc session for an explicit list of the teacher's students.
        No class or membership is involved; attendance is seeded for exactly
        the listed students.
        """
        log.info(f"Teacher {teacher_id} creating private session for {len(data.student_ids)} student(s)")
        owned = await self.student_service.get_owned_student_ids(data.student_ids, teacher_id)
        if len(owned) != len(data.student_ids):
            raise NotFoundError("Student not found.", code="STUDENT_NOT_FOUND")

        conflicts = await self.find_conflicts(teacher_id, data.start_time, data.duration_min)
        if conflicts:
            raise ConflictError(
                f"Time conflict with an existing session starting at {conflicts[0].start_time.isoformat()}.",
                code="SESSION_CONFLICT"
            )

        session = db_models.Sessions(
            id=uuid.uuid4(),
            class_id=None,
            teacher_id=teacher_id,
            start_time=data.start_time,
            duration_min=data.duration_min,
            status=SessionStatusEnum.SCHEDULED.value,
            notes=data.notes,
            fee_per_session=data.fee_per_session,
            type=SessionTypeEnum.AD_HOC.value
        )
        self.db.add(session)
        await self.db.flush()

        await self._seed_attendance_hook([session.id], data.student_ids, teacher_id)
        await self._invalidate(teacher_id, None)
        return self._to_read(session)

    # --- 3. Reads ---

    async def get_by_id(self, session_id: UUID, teacher_id: UUID) -> session_models.SessionRead:
        session = await self.get_owned_session(session_id, teacher_id)
        return self._to_read(session, await self._class_name(session.class_id))

    async def list_by_class(
        self,
        class_id: UUID,
        teacher_id: UUID,
        start_time_begin: Optional[datetime] = None,
        start_time_end: Optional[datetime] = None
    ) -> list[session_models.SessionRead]:
        """Sessions of one class. Canceled ones are hidden when a full time window is given."""
        class_obj = await self.class_service.get_owned_class(class_id, teacher_id)
        exclude_canceled = start_time_begin is not None and start_time_end is not None

        key = CacheService.build_key(
            SESSION_FEATURE, LIST_BY_CLASS, {"classId": class_id},
            {
                "teacherId": teacher_id,
                "startTimeBegin": start_time_begin.isoformat() if start_time_begin else None,
                "startTimeEnd": start_time_end.isoformat() if start_time_end else None,
                "excludeCanceled": exclude_canceled,
            }
        )
        cached = await self.cache.get(key)
        if cached is not None:
            return _session_list_adapter.validate_python(cached)

        stmt = select(db_models.Sessions).filter(
            db_models.Sessions.class_id == class_id,
            db_models.Sessions.teacher_id == teacher_id
        )
        if start_time_begin is not None:
            stmt = stmt.filter(db_models.Sessions.start_time >= start_time_begin)
        if start_time_end is not None:
            stmt = stmt.filter(db_models.Sessions.start_time <= start_time_end)
        if exclude_canceled:
            stmt = stmt.filter(db_models.Sessions.status != SessionStatusEnum.CANCELED.value)
        stmt = stmt.order_by(db_models.Sessions.start_time)

        sessions = [self._to_read(s, class_obj.name) for s in (await self.db.execute(stmt)).scalars().all()]
        await self.cache.set(key, _session_list_adapter.dump_python(sessions, mode="json"))
        return sessions

    async def list_by_teacher(
        self,
        teacher_id: UUID,
        start_time_begin: Optional[datetime] = None,
        start_time_end: Optional[datetime] = None,
        exclude_canceled: bool = False
    ) -> list[session_models.SessionRead]:
        if start_time_begin is not None and start_time_end is not None:
            exclude_canceled = True

        key = CacheService.build_key(
            SESSION_FEATURE, LIST_BY_TEACHER, {"teacherId": teacher_id},
            {
                "startTimeBegin": start_time_begin.isoformat() if start_time_begin else None,
                "startTimeEnd": start_time_end.isoformat() if start_time_end else None,
                "excludeCanceled": exclude_canceled,
            }
        )
        cached = await self.cache.get(key)
        if cached is not None:
            return _session_list_adapter.validate_python(cached)

        stmt = select(db_models.Sessions, db_models.Classes.name).outerjoin(
            db_models.Classes, db_models.Classes.id == db_models.Sessions.class_id
        ).filter(db_models.Sessions.teacher_id == teacher_id)
        if start_time_begin is not None:
            stmt = stmt.filter(db_models.Sessions.start_time >= start_time_begin)
        if start_time_end is not None:
            stmt = stmt.filter(db_models.Sessions.start_time <= start_time_end)
        if exclude_canceled:
            stmt = stmt.filter(db_models.Sessions.status != SessionStatusEnum.CANCELED.value)
        stmt = stmt.order_by(db_models.Sessions.start_time)

        sessions = [self._to_read(s, name) for s, name in (await self.db.execute(stmt)).all()]
        await self.cache.set(key, _session_list_adapter.dump_python(sessions, mode="json"))
        return sessions

    async def list_upcoming(
        self,
        teacher_id: UUID,
        limit: int = 50,
        from_time: Optional[datetime] = None
    ) -> list[session_models.SessionRead]:
        from_time = from_time or datetime.now(timezone.utc)
        stmt = select(db_models.Sessions, db_models.Classes.name).outerjoin(
            db_models.Classes, db_models.Classes.id == db_models.Sessions.class_id
        ).filter(
            db_models.Sessions.teacher_id == teacher_id,
            db_models.Sessions.status == SessionStatusEnum.SCHEDULED.value,
            db_models.Sessions.start_time >= from_time
        ).order_by(db_models.Sessions.start_time).limit(limit)
        return [self._to_read(s, name) for s, name in (await self.db.execute(stmt)).all()]

    # --- 4. Updates & State Transitions ---

    async def update(self, session_id: UUID, patch: session_models.SessionUpdate, teacher_id: UUID) -> session_models.SessionRead:
        """
        Applies only the fields present in the patch. Time changes re-run
        conflict detection against everything but this session. A class
        session without a fee picks up the class default.
        """
        log.info(f"Teacher {teacher_id} updating session {session_id}")
        session = await self.get_owned_session(session_id, teacher_id)
        if session.status == SessionStatusEnum.COMPLETED.value:
            raise ConflictError("Completed sessions cannot be edited. Unlock the session first.", code="SESSION_COMPLETED")

        changes = patch.model_dump(exclude_unset=True)
        for required in ("start_time", "duration_min"):
            if required in changes and changes[required] is None:
                raise InputValidationError(f"'{required}' cannot be null.", code="FIELD_NOT_NULLABLE")

        if "start_time" in changes or "duration_min" in changes:
            new_start = changes.get("start_time", session.start_time)
            new_duration = changes.get("duration_min", session.duration_min)
            conflicts = await self.find_conflicts(
                teacher_id, new_start, new_duration, class_id=session.class_id, exclude_id=session.id
            )
            if conflicts:
                raise ConflictError("Time conflict with an existing session.", code="SESSION_CONFLICT")

        if session.class_id is not None and session.fee_per_session is None and changes.get("fee_per_session") is None:
            class_obj = await self.class_service.get_owned_class(session.class_id, teacher_id)
            if class_obj.default_fee_per_session is not None:
                changes["fee_per_session"] = class_obj.default_fee_per_session

        apply_patch(session, changes)
        await self.db.flush()

        await self._invalidate(teacher_id, session.class_id)
        return self._to_read(session, await self._class_name(session.class_id))

    async def complete(self, session_id: UUID, teacher_id: UUID) -> session_models.SessionRead:
        """Locks attendance. Completing an already completed session changes nothing."""
        log.info(f"Teacher {teacher_id} completing session {session_id}")
        session = await self.get_owned_session(session_id, teacher_id)

        if session.status == SessionStatusEnum.CANCELED.value:
            raise ConflictError("Cannot complete a canceled session.", code="INVALID_SESSION_STATE")
        if session.status == SessionStatusEnum.COMPLETED.value:
            return self._to_read(session, await self._class_name(session.class_id))

        session.status = SessionStatusEnum.COMPLETED.value
        session.notes = self._prepend_note(session.notes, self._audit_line("Completed at"))
        await self.db.flush()

        await self._invalidate(teacher_id, session.class_id)
        return self._to_read(session, await self._class_name(session.class_id))

    async def unlock(self, session_id: UUID, teacher_id: UUID, reason: str) -> session_models.SessionRead:
        """Moves a completed session back to scheduled, recording why."""
        log.info(f"Teacher {teacher_id} unlocking session {session_id}")
        reason = (reason or "").strip()
        if len(reason) < 3:
            raise InputValidationError("An unlock reason of at least 3 characters is required.", code="UNLOCK_REASON_REQUIRED")

        session = await self.get_owned_session(session_id, teacher_id)
        if session.status == SessionStatusEnum.CANCELED.value:
            raise ConflictError("Cannot unlock a canceled session.", code="INVALID_SESSION_STATE")
        if session.status == SessionStatusEnum.SCHEDULED.value:
            return self._to_read(session, await self._class_name(session.class_id))

        session.status = SessionStatusEnum.SCHEDULED.value
        session.notes = self._prepend_note(
            session.notes, f"{self._audit_line('Attendance unlocked at')}: {reason}"
        )
        await self.db.flush()

        await self._invalidate(teacher_id, session.class_id)
        return self._to_read(session, await self._class_name(session.class_id))

    async def cancel(self, session_id: UUID, teacher_id: UUID) -> session_models.SessionRead:
        log.info(f"Teacher {teacher_id} canceling session {session_id}")
        session = await self.get_owned_session(session_id, teacher_id)
        if session.status != SessionStatusEnum.SCHEDULED.value:
            raise ConflictError("Only scheduled sessions can be canceled.", code="INVALID_SESSION_STATE")

        session.status = SessionStatusEnum.CANCELED.value
        await self.db.flush()

        await self._invalidate(teacher_id, session.class_id)
        return self._to_read(session, await self._class_name(session.class_id))

    async def delete(self, session_id: UUID, teacher_id: UUID) -> None:
        """Hard delete, allowed only for canceled sessions. Its attendance rows go with it."""
        log.info(f"Teacher {teacher_id} deleting session {session_id}")
        try:
            session = await self.get_owned_session(session_id, teacher_id)
            if session.status != SessionStatusEnum.CANCELED.value:
                raise ConflictError("Only canceled sessions can be deleted.", code="INVALID_SESSION_STATE")

            class_id = session.class_id
            await self.db.execute(
                db_models.Attendance.__table__.delete().where(db_models.Attendance.session_id == session_id)
            )
            await self.db.delete(session)
            await self.db.flush()
        except HTTPException as http_exc:
            raise http_exc
        except Exception as e:
            log.error(f"Failed to delete session {session_id}: {e}", exc_info=True)
            raise

        await self._invalidate(teacher_id, class_id)
