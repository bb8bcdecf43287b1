'''
Models for arrears classification and reminder dispatch.
'''
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .enums import SeverityLevel


class ArrearsStudent(BaseModel):
    student_id: UUID
    student_name: str
    class_name: str
    stream_name: Optional[str] = None
    guardian_name: str
    guardian_phone: str
    total_fees: int
    amount_paid: int
    balance: int
    days_overdue: int
    severity: SeverityLevel
    last_payment_date: Optional[datetime] = None

class ArrearsStats(BaseModel):
    total_in_arrears: int = 0
    total_arrears_amount: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0

class BulkReminderRequest(BaseModel):
    student_ids: list[UUID]
    batch_size: Optional[int] = Field(default=None, ge=1)
    delay_seconds: Optional[float] = Field(default=None, ge=0)

class BulkReminderResult(BaseModel):
    sent: int = 0
    failed: int = 0
