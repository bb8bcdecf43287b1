'''
Models for term-to-term balance carryover and arrears reporting.
'''
from datetime import datetime
from functools import total_ordering
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from .enums import AcademicTerm, AdjustmentType, CarryoverStatus, CarryoverType

_TERM_ORDER = {AcademicTerm.TERM_1: 1, AcademicTerm.TERM_2: 2, AcademicTerm.TERM_3: 3}
_TERM_LABELS = {AcademicTerm.TERM_1: 'Term I', AcademicTerm.TERM_2: 'Term II', AcademicTerm.TERM_3: 'Term III'}


@total_ordering
class AcademicPeriod(BaseModel):
    """A (year, term) pair. Three terms per year, ordered chronologically."""
    year: int
    term: AcademicTerm

    model_config = ConfigDict(frozen=True)

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.year, _TERM_ORDER[self.term])

    @property
    def term_id(self) -> str:
        """The key fee structures and ledgers use for this period, e.g. '2024-term_2'."""
        return f"{self.year}-{self.term.value}"

    def __lt__(self, other: 'AcademicPeriod') -> bool:
        return self.sort_key < other.sort_key

    def __str__(self) -> str:
        return f"{_TERM_LABELS[self.term]} {self.year}"

    def next(self) -> 'AcademicPeriod':
        if self.term == AcademicTerm.TERM_3:
            return AcademicPeriod(year=self.year + 1, term=AcademicTerm.TERM_1)
        following = AcademicTerm.TERM_2 if self.term == AcademicTerm.TERM_1 else AcademicTerm.TERM_3
        return AcademicPeriod(year=self.year, term=following)

    def previous(self) -> 'AcademicPeriod':
        if self.term == AcademicTerm.TERM_1:
            return AcademicPeriod(year=self.year - 1, term=AcademicTerm.TERM_3)
        preceding = AcademicTerm.TERM_1 if self.term == AcademicTerm.TERM_2 else AcademicTerm.TERM_2
        return AcademicPeriod(year=self.year, term=preceding)

    def terms_until(self, later: 'AcademicPeriod') -> int:
        """Number of whole terms from this period up to (not including) `later`."""
        return max(0, (later.year - self.year) * 3 + _TERM_ORDER[later.term] - _TERM_ORDER[self.term])


# --- 1. Carryover Records ---

class BalanceAdjustment(BaseModel):
    """
    Audit record of a change to a carryover amount. Positive amounts reduce
    what is carried, negative amounts add to it.
    """
    id: UUID = Field(default_factory=uuid4)
    type: AdjustmentType
    amount: int
    reason: str
    approved_by: str
    approved_at: datetime
    notes: Optional[str] = None

class BalanceAdjustmentCreate(BaseModel):
    type: AdjustmentType
    amount: int
    reason: str
    approved_by: str
    notes: Optional[str] = None

class TermBalanceCarryover(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    school_id: UUID
    student_id: UUID
    student_name: str
    class_name: str
    stream_name: Optional[str] = None

    from_period: AcademicPeriod
    to_period: AcademicPeriod
    from_term_fees: int
    from_term_paid: int
    from_term_balance: int

    carryover_type: CarryoverType
    original_amount: int = Field(ge=0)
    adjustments: list[BalanceAdjustment] = []
    adjusted_amount: int = Field(ge=0)

    status: CarryoverStatus = CarryoverStatus.PENDING
    applied_at: Optional[datetime] = None
    applied_by: Optional[str] = None

    created_at: datetime
    created_by: str
    updated_at: datetime
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def signed_amount(self) -> int:
        """Adjusted amount as it lands on a ledger's carryover balance."""
        if self.carryover_type == CarryoverType.DEBIT:
            return self.adjusted_amount
        return -self.adjusted_amount


# --- 2. Processing Options and Results ---

class CarryoverOptions(BaseModel):
    school_id: UUID
    from_period: AcademicPeriod
    to_period: AcademicPeriod
    include_credits: bool = True
    auto_apply: bool = False
    class_filter: list[str] = []
    stream_filter: list[str] = []
    min_balance: int = Field(default=0, ge=0)

class ClassCarryoverSummary(BaseModel):
    class_name: str
    stream_name: Optional[str] = None
    total_students: int = 0
    students_with_debits: int = 0
    students_with_credits: int = 0
    total_debit: int = 0
    total_credit: int = 0
    net_balance: int = 0

class CarryoverError(BaseModel):
    student_id: UUID
    student_name: str
    error: str
    details: Optional[str] = None

class CarryoverProcessingResult(BaseModel):
    school_id: UUID
    from_period: AcademicPeriod
    to_period: AcademicPeriod
    processed_at: datetime
    processed_by: str

    total_students_processed: int = 0
    students_with_debits: int = 0
    students_with_credits: int = 0
    students_cleared: int = 0

    total_debit_carryover: int = 0
    total_credit_carryover: int = 0
    net_carryover: int = 0

    class_breakdown: list[ClassCarryoverSummary] = []
    carryovers: list[TermBalanceCarryover] = []
    errors: list[CarryoverError] = []


# --- 3. Cumulative Balance and Arrears Report ---

class StudentCumulativeBalance(BaseModel):
    student_id: UUID
    student_name: str
    class_name: str
    stream_name: Optional[str] = None
    current_period: AcademicPeriod
    current_term_fees: int
    current_term_paid: int
    current_term_balance: int
    carryover_balance: int
    carryover_credits: int
    total_outstanding: int
    carryover_history: list[TermBalanceCarryover] = []
    has_arrears: bool
    arrears_count: int
    oldest_arrears: Optional[AcademicPeriod] = None

class ArrearsAgingBucket(BaseModel):
    label: str
    term_count: int
    student_count: int
    total_amount: int
    percentage: float

class ClassArrearsSummary(BaseModel):
    class_name: str
    stream_name: Optional[str] = None
    students_with_arrears: int = 0
    total_arrears_amount: int = 0
    average_arrears: int = 0

class PreviousTermArrears(BaseModel):
    period: AcademicPeriod
    original_balance: int
    adjustments: int
    current_balance: int

class StudentArrearsDetail(BaseModel):
    student_id: UUID
    student_name: str
    class_name: str
    stream_name: Optional[str] = None
    guardian_name: str
    guardian_phone: str
    current_term_balance: int
    previous_terms_arrears: list[PreviousTermArrears] = []
    total_previous_arrears: int
    total_outstanding: int
    arrears_age: int
    last_payment_date: Optional[datetime] = None

class ArrearsReport(BaseModel):
    school_id: UUID
    generated_at: datetime
    generated_by: str
    as_of_period: AcademicPeriod
    total_students_with_arrears: int = 0
    total_arrears_amount: int = 0
    average_arrears_per_student: int = 0
    arrears_aging: list[ArrearsAgingBucket] = []
    arrears_by_class: list[ClassArrearsSummary] = []
    student_arrears: list[StudentArrearsDetail] = []

class CarryoverWaiveInput(BaseModel):
    reason: str
    waived_by: str

class CarryoverApplyInput(BaseModel):
    applied_by: str

class CarryoverProcessInput(CarryoverOptions):
    processed_by: str
