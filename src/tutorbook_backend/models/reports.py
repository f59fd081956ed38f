'''
Monthly report models.

`classOverride`, `attendanceOverride` and `attendanceDetails` are left out of
the serialized output when they have no value, rather than emitted as null.
'''
import datetime as dt
from typing import Optional
from uuid import UUID

from pydantic import Field, model_serializer
from pydantic.alias_generators import to_camel

from ..database.db_enums import AttendanceStatusEnum
from .common import CamelModel, Money


def _drop_when_none(model, data: dict, fields: tuple[str, ...]) -> dict:
    for field in fields:
        if getattr(model, field) is None:
            data.pop(field, None)
            data.pop(to_camel(field), None)
    return data


class FeeBreakdown(CamelModel):
    base_fee: Optional[Money] = None
    class_override: Optional[Money] = None
    attendance_override: Optional[Money] = None

    @model_serializer(mode="wrap")
    def _serialize(self, handler):
        return _drop_when_none(self, handler(self), ("class_override", "attendance_override"))

class AttendanceDetail(CamelModel):
    session_id: UUID
    date: dt.date
    status: AttendanceStatusEnum
    calculated_fee: Optional[Money] = None
    fee_breakdown: FeeBreakdown

class StudentReportLine(CamelModel):
    student_id: UUID
    student_name: str
    total_sessions_attended: int
    total_fees: Money
    attendance_details: Optional[list[AttendanceDetail]] = None

    @model_serializer(mode="wrap")
    def _serialize(self, handler):
        return _drop_when_none(self, handler(self), ("attendance_details",))

class ClassInfo(CamelModel):
    id: UUID
    name: str
    subject: Optional[str] = None

class ReportSummary(CamelModel):
    total_sessions: int
    total_participating_students: int
    total_fees: Money

class MonthlyReport(CamelModel):
    class_info: ClassInfo
    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    summary: ReportSummary
    students: list[StudentReportLine] = Field(default_factory=list)

    @property
    def has_student_details(self) -> bool:
        return all(student.attendance_details is not None for student in self.students)
