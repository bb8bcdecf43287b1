'''
Pydantic models for fee structures, installment progress and student ledgers.
All money fields are integer minor currency units.
'''
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from .enums import (
    InstallmentStatus,
    PaymentStatus,
    PaymentRecordStatus,
    EnrollmentStatus,
)

# --- 1. Fee Structure Models ---

class InstallmentRule(BaseModel):
    """
    A scheduled slice of a fee structure. Either `amount` (absolute) or
    `percentage` (of the structure's total) is set, never both.
    """
    id: UUID = Field(default_factory=uuid4)
    order: int = Field(ge=1)
    name: str
    amount: Optional[int] = Field(default=None, ge=0)
    percentage: Optional[Decimal] = Field(default=None, gt=0, le=100)
    deadline: date
    grace_period_days: int = Field(default=0, ge=0)

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode='after')
    def _one_amount_kind(self) -> 'InstallmentRule':
        if (self.amount is None) == (self.percentage is None):
            raise ValueError("An installment rule needs exactly one of 'amount' or 'percentage'.")
        return self

class FeeStructure(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    school_id: UUID
    class_id: UUID
    term_id: str
    name: str
    total_amount: int = Field(ge=0)
    installment_rules: list[InstallmentRule] = []

    model_config = ConfigDict(from_attributes=True)


# --- 2. Student Ledger Models ---

# Debt carried in from earlier terms sorts ahead of the term's own installments
BROUGHT_FORWARD_ORDER = 0
BROUGHT_FORWARD_NAME = "Balance brought forward"

class InstallmentProgress(BaseModel):
    """
    Per-student state of one installment, snapshotted from the plan when the
    term starts and only mutated by payment allocation.
    """
    installment_id: UUID
    order: int = Field(ge=BROUGHT_FORWARD_ORDER)
    name: str
    amount_due: int = Field(ge=0)
    amount_paid: int = Field(default=0, ge=0)
    status: InstallmentStatus = InstallmentStatus.NOT_STARTED
    is_unlocked: bool = False
    deadline: date
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def outstanding(self) -> int:
        return max(0, self.amount_due - self.amount_paid)

    @property
    def is_completed(self) -> bool:
        return self.status == InstallmentStatus.COMPLETED

    @property
    def is_brought_forward(self) -> bool:
        return self.order == BROUGHT_FORWARD_ORDER

class StudentLedgerState(BaseModel):
    """
    The financial state of one student for the current term.

    `carryover_balance` is signed: positive is owed from earlier terms,
    negative is credit. It holds carryovers applied before the next term
    started and is emptied into the installments when that term starts, so
    it never adds to `balance` itself.
    """
    student_id: UUID
    school_id: UUID
    class_id: UUID
    class_name: str
    stream_name: Optional[str] = None
    student_name: str
    guardian_name: str = ""
    guardian_phone: str = ""
    enrollment_status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    term_id: Optional[str] = None

    total_fees: int = Field(ge=0)
    amount_paid: int = Field(default=0, ge=0)
    installment_progress: list[InstallmentProgress] = []
    carryover_balance: int = 0
    last_payment_date: Optional[datetime] = None
    version: int = 1

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode='after')
    def _sort_progress(self) -> 'StudentLedgerState':
        self.installment_progress.sort(key=lambda ip: ip.order)
        return self

    @property
    def raw_balance(self) -> int:
        """Signed balance; negative means the student overpaid."""
        return self.total_fees - self.amount_paid

    @computed_field
    @property
    def balance(self) -> int:
        return max(0, self.raw_balance)

    @computed_field
    @property
    def credit(self) -> int:
        return max(0, -self.raw_balance)

    @computed_field
    @property
    def payment_status(self) -> PaymentStatus:
        if self.raw_balance <= 0:
            return PaymentStatus.FULLY_PAID
        if self.amount_paid == 0:
            return PaymentStatus.NO_PAYMENT
        return PaymentStatus.PARTIAL

    @property
    def brought_forward_outstanding(self) -> int:
        return sum(ip.outstanding for ip in self.installment_progress if ip.is_brought_forward)

    @computed_field
    @property
    def current_installment_order(self) -> Optional[int]:
        for installment in self.installment_progress:
            if not installment.is_completed:
                return installment.order
        return None


# --- 3. Allocation Models ---

class PaymentValidation(BaseModel):
    """
    Outcome of validating a payment. Rejections are reported here and never
    raised as exceptions.
    """
    is_valid: bool
    can_pay: bool
    message: str
    current_installment: Optional[InstallmentProgress] = None
    next_installment: Optional[InstallmentProgress] = None
    spills_into_next: bool = False

class PaymentBreakdownItem(BaseModel):
    installment_id: UUID
    installment_name: str
    amount_applied: int
    previously_paid: int
    now_paid: int
    will_complete: bool


# --- 4. Payment Record Models ---

class PaymentRecord(BaseModel):
    """Append-only record of a payment that was allocated to a ledger."""
    id: UUID = Field(default_factory=uuid4)
    student_id: UUID
    school_id: UUID
    amount: int = Field(gt=0)
    reference: Optional[str] = None
    recorded_by: str
    recorded_at: datetime
    status: PaymentRecordStatus = PaymentRecordStatus.CLEARED
    allocations: list[PaymentBreakdownItem] = []

    model_config = ConfigDict(from_attributes=True)

class PaymentCreate(BaseModel):
    """
    Validates the request body for recording a payment.
    """
    student_id: UUID
    amount: int
    reference: Optional[str] = None
    recorded_by: str

class PaymentAmountInput(BaseModel):
    student_id: UUID
    amount: int

class StartTermInput(BaseModel):
    term_id: str

class PaymentRecordResult(BaseModel):
    success: bool
    validation: PaymentValidation
    payment: Optional[PaymentRecord] = None
    ledger: Optional[StudentLedgerState] = None
