'''
Monthly report aggregation for one class.

Pipeline: class -> sessions of the month -> billable attendance of completed
sessions -> membership overrides -> students -> per-record fee resolution ->
per-student totals -> summary. Results are persisted in the report cache and
served from it for a few hours unless a refresh is forced.
'''
import re
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from fastapi import Depends
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.exceptions import NotFoundError, InputValidationError
from ..common.logger import log
from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import SessionStatusEnum, BILLABLE_ATTENDANCE_STATUSES
from ..models import reports as report_models
from .class_service import ClassService
from .fee_resolver import resolve_fee
from .membership_service import MembershipService
from .report_cache import ReportCacheService

_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


def parse_month(month: str) -> tuple[int, int]:
    """'2024-03' -> (2024, 3). Anything else is a validation error."""
    match = _MONTH_PATTERN.match(month or "")
    if not match:
        raise InputValidationError("Month must be in YYYY-MM format.", code="INVALID_MONTH")
    year, month_num = int(match.group(1)), int(match.group(2))
    if not 1 <= month_num <= 12:
        raise InputValidationError("Month must be between 01 and 12.", code="INVALID_MONTH")
    return year, month_num

def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """UTC [first instant of the month, first instant of the next month)."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


class ReportService:
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        class_service: Annotated[ClassService, Depends(ClassService)],
        membership_service: Annotated[MembershipService, Depends(MembershipService)],
        report_cache: Annotated[ReportCacheService, Depends(ReportCacheService)]
    ):
        self.db = db
        self.class_service = class_service
        self.membership_service = membership_service
        self.report_cache = report_cache

    # --- 1. Cache access (never fails the request) ---

    async def _read_cached(self, teacher_id: UUID, class_id: UUID, year: int, month: int) -> report_models.MonthlyReport | None:
        try:
            async with self.db.begin_nested():
                payload = await self.report_cache.get_fresh(teacher_id, class_id, year, month)
        except Exception as e:
            log.warning(f"Report cache read failed for class {class_id} {year}-{month:02d}: {e}", exc_info=True)
            return None
        if payload is None:
            return None
        try:
            return report_models.MonthlyReport.model_validate_json(payload)
        except ValidationError as e:
            log.warning(f"Discarding unreadable cached report for class {class_id} {year}-{month:02d}: {e}")
            return None

    async def _write_cached(self, teacher_id: UUID, class_id: UUID, year: int, month: int, report: report_models.MonthlyReport) -> None:
        try:
            async with self.db.begin_nested():
                await self.report_cache.save(teacher_id, class_id, year, month, report.model_dump_json(by_alias=True))
        except Exception as e:
            log.warning(f"Report cache write failed for class {class_id} {year}-{month:02d}: {e}", exc_info=True)

    @staticmethod
    def _without_details(report: report_models.MonthlyReport) -> report_models.MonthlyReport:
        return report.model_copy(update={
            "students": [s.model_copy(update={"attendance_details": None}) for s in report.students]
        })

    # --- 2. Public API ---

    async def get_monthly_report(
        self,
        class_id: UUID,
        teacher_id: UUID,
        month: str,
        include_student_details: bool = False,
        force_refresh: bool = False
    ) -> report_models.MonthlyReport:
        """
        Returns the report for one class and month.

        A cached report is used only when it is fresh and, if details were
        requested, was itself generated with details. A detailed cached report
        also serves summary-only requests.
        """
        year, month_num = parse_month(month)
        log.info(
            f"Monthly report for class {class_id}, {year}-{month_num:02d}, teacher {teacher_id} "
            f"(details={include_student_details}, force_refresh={force_refresh})"
        )

        if not force_refresh:
            cached = await self._read_cached(teacher_id, class_id, year, month_num)
            if cached is not None:
                if not include_student_details:
                    return self._without_details(cached)
                if cached.has_student_details:
                    return cached
                log.info("Cached report lacks student details; regenerating.")

        report = await self._generate(class_id, teacher_id, year, month_num, include_student_details)
        await self._write_cached(teacher_id, class_id, year, month_num, report)
        return report

    async def cleanup_cache(self) -> int:
        """Removes persisted reports past the retention window."""
        return await self.report_cache.purge_expired()

    # --- 3. Generation ---

    async def _generate(
        self,
        class_id: UUID,
        teacher_id: UUID,
        year: int,
        month: int,
        include_details: bool
    ) -> report_models.MonthlyReport:
        # 1. Class
        class_obj = await self.class_service.get_owned_class(class_id, teacher_id)

        # 2. Sessions of the month
        period_start, period_end = month_bounds(year, month)
        session_stmt = select(db_models.Sessions).filter(
            db_models.Sessions.class_id == class_id,
            db_models.Sessions.teacher_id == teacher_id,
            db_models.Sessions.start_time >= period_start,
            db_models.Sessions.start_time < period_end,
            db_models.Sessions.status != SessionStatusEnum.CANCELED.value
        ).order_by(db_models.Sessions.start_time).execution_options(populate_existing=True)
        sessions = list((await self.db.execute(session_stmt)).scalars().all())
        if not sessions:
            raise NotFoundError("No data for this class in the requested month.", code="REPORT_NO_DATA")
        sessions_by_id = {s.id: s for s in sessions}

        # 3. Billable attendance of completed sessions only
        completed_ids = [s.id for s in sessions if s.status == SessionStatusEnum.COMPLETED.value]
        attendance: list[db_models.Attendance] = []
        if completed_ids:
            attendance_stmt = select(db_models.Attendance).filter(
                db_models.Attendance.session_id.in_(completed_ids),
                db_models.Attendance.status.in_(BILLABLE_ATTENDANCE_STATUSES)
            ).execution_options(populate_existing=True)
            attendance = list((await self.db.execute(attendance_stmt)).scalars().all())

        # 4. Memberships (active and historical) for override lookup
        overrides = await self.membership_service.get_override_map(class_id)

        # 5. Students involved
        student_ids = list({a.student_id for a in attendance})
        names: dict[UUID, str] = {}
        if student_ids:
            student_stmt = select(db_models.Students.id, db_models.Students.name).filter(
                db_models.Students.id.in_(student_ids)
            )
            names = {row.id: row.name for row in (await self.db.execute(student_stmt)).all()}

        # 6. Per-student aggregation
        by_student: dict[UUID, list[db_models.Attendance]] = defaultdict(list)
        for record in attendance:
            by_student[record.student_id].append(record)

        lines: list[report_models.StudentReportLine] = []
        grand_total = Decimal("0")
        for student_id, records in by_student.items():
            records.sort(key=lambda r: sessions_by_id[r.session_id].start_time)
            student_total = Decimal("0")
            details = []
            for record in records:
                session = sessions_by_id[record.session_id]
                class_override = overrides.get(student_id)
                fee = resolve_fee(record.fee_override, class_override, session.fee_per_session)
                student_total += fee.amount or Decimal("0")
                if include_details:
                    details.append(report_models.AttendanceDetail(
                        session_id=session.id,
                        date=session.start_time.date(),
                        status=record.status,
                        calculated_fee=fee.amount,
                        fee_breakdown=report_models.FeeBreakdown(
                            base_fee=session.fee_per_session,
                            class_override=class_override,
                            attendance_override=record.fee_override
                        )
                    ))
            grand_total += student_total
            lines.append(report_models.StudentReportLine(
                student_id=student_id,
                student_name=names.get(student_id, ""),
                total_sessions_attended=len(records),
                total_fees=student_total,
                attendance_details=details if include_details else None
            ))

        # 7 + 8. Summary, students by name
        lines.sort(key=lambda line: (line.student_name.casefold(), str(line.student_id)))
        return report_models.MonthlyReport(
            class_info=report_models.ClassInfo(id=class_obj.id, name=class_obj.name, subject=class_obj.subject),
            month=f"{year:04d}-{month:02d}",
            summary=report_models.ReportSummary(
                total_sessions=len(sessions),
                total_participating_students=len(lines),
                total_fees=grand_total
            ),
            students=lines
        )
