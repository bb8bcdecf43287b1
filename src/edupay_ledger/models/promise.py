'''
Models for guardian payment promises.
'''
from datetime import date, datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    FollowUpAction,
    PromisePriority,
    PromiseStatus,
    ReminderChannel,
    UrgencyLevel,
)


class PromiseFollowUp(BaseModel):
    action_type: FollowUpAction
    action_date: datetime
    performed_by: str
    notes: Optional[str] = None
    new_due_date: Optional[date] = None

class PaymentPromise(BaseModel):
    """
    A guardian's commitment to pay `promised_amount` by `due_date`.
    The stored `status` is only authoritative when it is `cancelled`; every
    other status is recomputed from the amounts and dates on read.
    """
    id: UUID = Field(default_factory=uuid4)
    school_id: UUID
    student_id: UUID
    student_name: str
    class_name: str
    guardian_name: str = ""
    guardian_phone: str = ""

    promised_amount: int = Field(gt=0)
    promise_date: datetime
    due_date: date
    grace_period_days: int = Field(default=7, ge=0)

    status: PromiseStatus = PromiseStatus.PENDING
    priority: PromisePriority = PromisePriority.MEDIUM

    amount_paid: int = Field(default=0, ge=0)
    payment_ids: list[str] = []
    last_payment_date: Optional[datetime] = None

    notes: Optional[str] = None
    reason: Optional[str] = None

    reminder_count: int = 0
    last_reminder_date: Optional[datetime] = None
    last_reminder_channel: Optional[ReminderChannel] = None
    next_reminder_date: Optional[date] = None
    follow_ups: list[PromiseFollowUp] = []

    created_at: datetime
    created_by: str
    updated_at: datetime
    fulfilled_at: Optional[datetime] = None
    broken_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class PromiseWithStatus(PaymentPromise):
    days_until_due: int
    days_overdue: int
    is_in_grace_period: bool
    percentage_paid: int
    remaining_amount: int
    urgency_level: UrgencyLevel


# --- API Input Models ---

class PromiseCreate(BaseModel):
    """
    Validates the request body for creating a payment promise.
    """
    student_id: UUID
    promised_amount: int = Field(gt=0)
    due_date: date
    grace_period_days: Optional[int] = Field(default=None, ge=0)
    priority: Optional[PromisePriority] = None
    notes: Optional[str] = None
    reason: Optional[str] = None
    schedule_reminder: bool = False
    reminder_days_before: Optional[int] = Field(default=None, ge=0)
    created_by: str

class PromisePaymentInput(BaseModel):
    payment_id: str
    amount: int = Field(gt=0)

class PromiseCancelInput(BaseModel):
    reason: str
    cancelled_by: str

class PromiseExtendInput(BaseModel):
    new_due_date: date
    reason: str
    extended_by: str

class PromiseReminderInput(BaseModel):
    channel: ReminderChannel
    sent_by: str

class PromiseFilters(BaseModel):
    status: list[PromiseStatus] = []
    priority: list[PromisePriority] = []
    class_name: Optional[str] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None


# --- Summary Models ---

class PromiseStatusTally(BaseModel):
    count: int = 0
    amount: int = 0

class PromiseClassBreakdown(BaseModel):
    class_name: str
    count: int
    amount: int
    overdue_count: int

class PromisePriorityBreakdown(BaseModel):
    priority: PromisePriority
    count: int
    amount: int

class PromiseSummary(BaseModel):
    total_promises: int = 0
    total_promised_amount: int = 0
    by_status: dict[PromiseStatus, PromiseStatusTally] = {}
    partial_collected: int = 0
    fulfillment_rate: int = 0
    average_days_to_fulfill: int = 0
    average_delay_days: int = 0
    by_class: list[PromiseClassBreakdown] = []
    by_priority: list[PromisePriorityBreakdown] = []
