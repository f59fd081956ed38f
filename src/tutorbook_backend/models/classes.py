'''
Class models.
'''
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from .common import CamelModel, Money

# --- 1. API Input Models ---

class ClassCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    subject: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    default_fee_per_session: Optional[Decimal] = Field(None, ge=0)
    is_active: bool = True

class ClassUpdate(CamelModel):
    """
    Partial update. Only fields present in the request body are applied;
    sending an explicit null clears the value.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    subject: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    default_fee_per_session: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None

# --- 2. API Output Models ---

class ClassRead(CamelModel):
    id: UUID
    teacher_id: UUID
    name: str
    subject: Optional[str] = None
    description: Optional[str] = None
    default_fee_per_session: Optional[Money] = None
    is_active: bool
    created_at: datetime
