'''
Attendance models: bulk marking input/result, per-session listings,
fee summaries and per-student history.
'''
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from ..database.db_enums import AttendanceStatusEnum, SessionStatusEnum
from .common import CamelModel, Money
from .fees import FeeSource

# --- 1. API Input Models ---

class AttendanceRecordInput(CamelModel):
    student_id: UUID
    status: AttendanceStatusEnum
    note: Optional[str] = Field(None, max_length=1000)
    fee_override: Optional[Decimal] = Field(None, ge=0)

class BulkAttendanceInput(CamelModel):
    session_id: Optional[UUID] = None
    attendance_records: list[AttendanceRecordInput] = Field(..., min_length=1)

class AttendanceUpdate(CamelModel):
    status: Optional[AttendanceStatusEnum] = None
    note: Optional[str] = Field(None, max_length=1000)
    fee_override: Optional[Decimal] = Field(None, ge=0)

# --- 2. Bulk result ---

class BulkRecordResult(CamelModel):
    student_id: UUID
    success: bool
    attendance_id: Optional[UUID] = None
    error: Optional[str] = None

class BulkAttendanceResult(CamelModel):
    """One entry in `results` per submitted record, in submission order."""
    success: bool
    total_records: int
    success_count: int
    failure_count: int
    results: list[BulkRecordResult]

# --- 3. API Output Models ---

class AttendanceRead(CamelModel):
    id: UUID
    session_id: UUID
    student_id: UUID
    student_name: str
    student_phone: Optional[str] = None
    status: AttendanceStatusEnum
    note: Optional[str] = None
    marked_by: Optional[UUID] = None
    marked_by_name: Optional[str] = None
    marked_at: datetime
    fee_override: Optional[Money] = None
    calculated_fee: Optional[Money] = None
    fee_source: FeeSource

class FeeLine(CamelModel):
    attendance_id: UUID
    student_id: UUID
    student_name: str
    status: AttendanceStatusEnum
    amount: Optional[Money] = None
    source: FeeSource

class SessionFeeSummary(CamelModel):
    session_id: UUID
    session_status: SessionStatusEnum
    billable_count: int = 0
    total_fees: Money = Decimal("0")
    lines: list[FeeLine] = Field(default_factory=list)

class AttendanceHistoryRecord(CamelModel):
    id: UUID
    session_id: UUID
    session_start_time: datetime
    session_status: SessionStatusEnum
    class_id: Optional[UUID] = None
    class_name: Optional[str] = None
    class_subject: Optional[str] = None
    status: AttendanceStatusEnum
    note: Optional[str] = None
    marked_by_name: Optional[str] = None
    marked_at: datetime
    calculated_fee: Optional[Money] = None
    fee_source: FeeSource

class AttendanceStats(CamelModel):
    total_sessions: int
    present_count: int
    absent_count: int
    late_count: int
    attendance_rate: float
    total_fees: Money

class StudentAttendanceHistory(CamelModel):
    student_id: UUID
    records: list[AttendanceHistoryRecord]
    stats: AttendanceStats
