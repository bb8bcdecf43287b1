'''
Storage and delivery interfaces the services depend on.

The SQLAlchemy implementations live in repositories.py; tests use in-memory
versions of the same shapes.
'''
from contextlib import AbstractAsyncContextManager
from typing import Optional, Protocol
from uuid import UUID

from ..models.carryover import AcademicPeriod, TermBalanceCarryover
from ..models.ledger import FeeStructure, PaymentRecord, StudentLedgerState
from ..models.promise import PaymentPromise


class StudentRepository(Protocol):
    async def get(self, student_id: UUID) -> StudentLedgerState:
        """Raises StudentNotFoundError when the student does not exist."""
        ...

    async def list_by_school(self, school_id: UUID) -> list[StudentLedgerState]:
        ...

    async def save(self, ledger: StudentLedgerState, expected_version: int) -> StudentLedgerState:
        """
        Writes the ledger if the stored version still equals `expected_version`
        and returns it with the bumped version. Raises ConcurrencyConflictError
        otherwise.
        """
        ...


class PaymentRepository(Protocol):
    async def append(self, payment: PaymentRecord) -> PaymentRecord:
        ...

    async def list_for_student(self, student_id: UUID) -> list[PaymentRecord]:
        ...


class FeeStructureRepository(Protocol):
    async def get(self, school_id: UUID, class_id: UUID, term_id: str) -> FeeStructure:
        """Raises FeeStructureNotFoundError when no structure matches."""
        ...


class CarryoverRepository(Protocol):
    async def get(self, carryover_id: UUID) -> TermBalanceCarryover:
        """Raises CarryoverNotFoundError when the carryover does not exist."""
        ...

    async def find(
        self,
        student_id: UUID,
        from_period: AcademicPeriod,
        to_period: AcademicPeriod,
    ) -> Optional[TermBalanceCarryover]:
        ...

    async def save(self, carryover: TermBalanceCarryover) -> TermBalanceCarryover:
        ...

    async def list_for_school(
        self,
        school_id: UUID,
        to_period: Optional[AcademicPeriod] = None,
    ) -> list[TermBalanceCarryover]:
        ...

    async def list_for_student(self, student_id: UUID) -> list[TermBalanceCarryover]:
        ...


class PromiseRepository(Protocol):
    async def get(self, promise_id: UUID) -> PaymentPromise:
        """Raises PromiseNotFoundError when the promise does not exist."""
        ...

    async def save(self, promise: PaymentPromise) -> PaymentPromise:
        ...

    async def list_for_school(self, school_id: UUID) -> list[PaymentPromise]:
        ...

    async def list_for_student(self, student_id: UUID) -> list[PaymentPromise]:
        ...


class TransactionScope(Protocol):
    def savepoint(self) -> AbstractAsyncContextManager[None]:
        """
        Writes made through the repositories inside the block are undone
        together if the block raises. The exception still propagates.
        """
        ...


class NotificationSender(Protocol):
    async def send(self, recipient: str, message: str) -> bool:
        """True when the message was accepted for delivery."""
        ...
