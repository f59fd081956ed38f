'''
Class membership (class <-> student) models.
'''
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from .common import CamelModel, Money

class MembershipAdd(CamelModel):
    student_id: UUID
    unit_price_override: Optional[Decimal] = Field(None, ge=0)

class MembershipLeave(CamelModel):
    left_at: Optional[datetime] = None

class MembershipRead(CamelModel):
    id: UUID
    class_id: UUID
    student_id: UUID
    unit_price_override: Optional[Money] = None
    joined_at: datetime
    left_at: Optional[datetime] = None

class ClassStudentRead(MembershipRead):
    """A membership row joined with the student's contact details."""
    student_name: str
    student_phone: Optional[str] = None
    student_email: Optional[str] = None
