'''
ORM models.

Relationships are deliberately not declared: every service query spells out
its joins and ownership filters, and nothing is ever lazy-loaded.
'''
from typing import Optional
import datetime
import decimal
import uuid

from sqlalchemy import (
    Boolean, Enum, ForeignKey, Index, Integer, Numeric, String, Text,
    UniqueConstraint, Uuid, CheckConstraint
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .types import UTCDateTime
from .db_enums import (
    SessionStatusEnum,
    SessionTypeEnum,
    AttendanceStatusEnum,
    ParentRelationshipEnum
)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    pass


class Teachers(Base):
    __tablename__ = 'teachers'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    name: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=utcnow)


class Classes(Base):
    __tablename__ = 'classes'
    __table_args__ = (
        CheckConstraint('default_fee_per_session >= 0', name='class_fee_non_negative'),
        Index('ix_classes_teacher_id', 'teacher_id'),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    teacher_id: Mapped[uuid.UUID] = mapped_column(ForeignKey('teachers.id', ondelete='CASCADE'))
    name: Mapped[str] = mapped_column(String(255))
    subject: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    default_fee_per_session: Mapped[Optional[decimal.Decimal]] = mapped_column(Numeric(12, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=utcnow)


class Students(Base):
    __tablename__ = 'students'
    __table_args__ = (
        Index('ix_students_created_by_teacher', 'created_by_teacher'),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    note: Mapped[Optional[str]] = mapped_column(Text)
    created_by_teacher: Mapped[uuid.UUID] = mapped_column(ForeignKey('teachers.id', ondelete='CASCADE'))
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=utcnow)


class StudentParents(Base):
    __tablename__ = 'student_parents'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(ForeignKey('students.id', ondelete='CASCADE'), index=True)
    name: Mapped[str] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    note: Mapped[Optional[str]] = mapped_column(Text)
    relationship: Mapped[Optional[str]] = mapped_column(
        Enum(*ParentRelationshipEnum.get_all_names(), name='parent_relationship_enum')
    )
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=utcnow)


class ClassStudents(Base):
    """
    Membership of a student in a class. Leaving sets left_at; the row is kept
    and re-adding the student reactivates it.
    """
    __tablename__ = 'class_students'
    __table_args__ = (
        UniqueConstraint('class_id', 'student_id', name='uq_class_students_class_student'),
        CheckConstraint('unit_price_override >= 0', name='unit_price_override_non_negative'),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id: Mapped[uuid.UUID] = mapped_column(ForeignKey('classes.id'), index=True)
    student_id: Mapped[uuid.UUID] = mapped_column(ForeignKey('students.id'), index=True)
    unit_price_override: Mapped[Optional[decimal.Decimal]] = mapped_column(Numeric(12, 2))
    joined_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=utcnow)
    left_at: Mapped[Optional[datetime.datetime]] = mapped_column(UTCDateTime)


class Sessions(Base):
    __tablename__ = 'sessions'
    __table_args__ = (
        CheckConstraint('duration_min > 0', name='session_duration_positive'),
        CheckConstraint('fee_per_session >= 0', name='session_fee_non_negative'),
        Index('ix_sessions_teacher_start', 'teacher_id', 'start_time'),
        Index('ix_sessions_class_start', 'class_id', 'start_time'),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey('classes.id'))
    teacher_id: Mapped[uuid.UUID] = mapped_column(ForeignKey('teachers.id', ondelete='CASCADE'))
    start_time: Mapped[datetime.datetime] = mapped_column(UTCDateTime)
    duration_min: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(
        Enum(*SessionStatusEnum.get_all_names(), name='session_status_enum'),
        default=SessionStatusEnum.SCHEDULED.value
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    fee_per_session: Mapped[Optional[decimal.Decimal]] = mapped_column(Numeric(12, 2))
    type: Mapped[str] = mapped_column(
        Enum(*SessionTypeEnum.get_all_names(), name='session_type_enum'),
        default=SessionTypeEnum.CLASS.value
    )
    series_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=utcnow)

    @property
    def end_time(self) -> datetime.datetime:
        return self.start_time + datetime.timedelta(minutes=self.duration_min)


class Attendance(Base):
    """One row per (session, student)."""
    __tablename__ = 'attendance'
    __table_args__ = (
        UniqueConstraint('session_id', 'student_id', name='uq_attendance_session_student'),
        CheckConstraint('fee_override >= 0', name='attendance_fee_override_non_negative'),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(ForeignKey('sessions.id', ondelete='CASCADE'), index=True)
    student_id: Mapped[uuid.UUID] = mapped_column(ForeignKey('students.id'), index=True)
    status: Mapped[str] = mapped_column(
        Enum(*AttendanceStatusEnum.get_all_names(), name='attendance_status_enum'),
        default=AttendanceStatusEnum.PRESENT.value
    )
    note: Mapped[Optional[str]] = mapped_column(Text)
    marked_by: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey('teachers.id', ondelete='SET NULL'))
    marked_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=utcnow)
    fee_override: Mapped[Optional[decimal.Decimal]] = mapped_column(Numeric(12, 2))


class ReportCache(Base):
    """
    Persisted monthly report payloads. The id is derived from
    (teacher, class, year, month) so a save overwrites the previous entry.
    """
    __tablename__ = 'report_cache'
    __table_args__ = (
        Index('ix_report_cache_lookup', 'teacher_id', 'class_id', 'year', 'month'),
        Index('ix_report_cache_computed_at', 'computed_at'),
    )

    id: Mapped[str] = mapped_column(String(160), primary_key=True)
    teacher_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    class_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    payload: Mapped[str] = mapped_column(Text)
    computed_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=utcnow)
