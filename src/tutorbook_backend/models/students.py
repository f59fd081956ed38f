'''
Student and parent models.
'''
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import Field

from ..database.db_enums import ParentRelationshipEnum
from .common import CamelModel
from .memberships import MembershipRead

# --- 1. API Input Models ---

class ParentInput(CamelModel):
    name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = Field(None, max_length=255)
    note: Optional[str] = Field(None, max_length=1000)
    relationship: Optional[ParentRelationshipEnum] = None

class StudentCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = Field(None, max_length=255)
    note: Optional[str] = Field(None, max_length=2000)
    parents: list[ParentInput] = Field(default_factory=list)

class StudentUpdate(CamelModel):
    """Partial update. `parents`, when sent, replaces the whole parent list."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)
    email: Optional[str] = Field(None, max_length=255)
    note: Optional[str] = Field(None, max_length=2000)
    parents: Optional[list[ParentInput]] = None

# --- 2. API Output Models ---

class ParentRead(CamelModel):
    id: UUID
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    note: Optional[str] = None
    relationship: Optional[ParentRelationshipEnum] = None

class StudentRead(CamelModel):
    id: UUID
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    note: Optional[str] = None
    created_by_teacher: UUID
    created_at: datetime
    class_names: list[str] = Field(default_factory=list)

class StudentDetail(StudentRead):
    parents: list[ParentRead] = Field(default_factory=list)
    memberships: list[MembershipRead] = Field(default_factory=list)
