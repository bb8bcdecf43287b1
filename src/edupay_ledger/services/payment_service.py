'''
Recording payments against student ledgers and starting new terms.
'''
from datetime import datetime, timezone
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends

from ..common.exceptions import ConcurrencyConflictError, LedgerError
from ..common.logger import log
from ..core.allocation import apply_breakdown, bring_forward, calculate_payment_breakdown, validate_payment
from ..core.installments import InstallmentPlan
from ..database.interfaces import FeeStructureRepository, PaymentRepository, StudentRepository
from ..database.repositories import SqlFeeStructureRepository, SqlPaymentRepository, SqlStudentRepository
from ..models.ledger import (
    PaymentBreakdownItem,
    PaymentRecord,
    PaymentRecordResult,
    PaymentValidation,
    StudentLedgerState,
)


class PaymentService:
    """
    Service for validating, splitting and recording fee payments.
    """
    def __init__(
        self,
        students: Annotated[StudentRepository, Depends(SqlStudentRepository)],
        payments: Annotated[PaymentRepository, Depends(SqlPaymentRepository)],
        fee_structures: Annotated[FeeStructureRepository, Depends(SqlFeeStructureRepository)],
    ):
        self.students = students
        self.payments = payments
        self.fee_structures = fee_structures

    async def validate_installment_payment(self, student_id: UUID, amount: int) -> PaymentValidation:
        """
        Loads the student's ledger and validates `amount` against it.
        A missing student raises StudentNotFoundError.
        """
        log.info(f"Validating payment of {amount} for student {student_id}.")
        ledger = await self.students.get(student_id)
        return validate_payment(ledger, amount)

    async def calculate_breakdown(self, student_id: UUID, amount: int) -> list[PaymentBreakdownItem]:
        log.info(f"Calculating breakdown of {amount} for student {student_id}.")
        ledger = await self.students.get(student_id)
        return calculate_payment_breakdown(ledger, amount)

    async def record_payment(
        self,
        student_id: UUID,
        amount: int,
        recorded_by: str,
        reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PaymentRecordResult:
        """
        Validates, splits and persists a payment.

        A rejected payment is returned with success=False and nothing is
        written. The ledger is saved against the version it was loaded at, so
        a concurrent writer makes this raise ConcurrencyConflictError instead
        of losing an update.
        """
        now = now or datetime.now(timezone.utc)
        log.info(f"User {recorded_by} recording payment of {amount} for student {student_id}.")

        ledger = await self.students.get(student_id)
        validation = validate_payment(ledger, amount)
        if not validation.is_valid:
            log.warning(f"Payment of {amount} for student {student_id} rejected: {validation.message}")
            return PaymentRecordResult(success=False, validation=validation, ledger=ledger)

        breakdown = calculate_payment_breakdown(ledger, amount)
        updated = apply_breakdown(ledger, breakdown, now)

        try:
            saved = await self.students.save(updated, expected_version=ledger.version)
            payment = await self.payments.append(PaymentRecord(
                student_id=ledger.student_id,
                school_id=ledger.school_id,
                amount=amount,
                reference=reference,
                recorded_by=recorded_by,
                recorded_at=now,
                allocations=breakdown,
            ))
        except ConcurrencyConflictError:
            log.warning(f"Payment for student {student_id} lost a race with another writer.")
            raise
        except LedgerError:
            raise
        except Exception as e:
            log.error(f"Error persisting payment for student {student_id}: {e}", exc_info=True)
            raise

        log.info(f"Payment {payment.id} recorded across {len(breakdown)} installment(s) for student {student_id}.")
        return PaymentRecordResult(success=True, validation=validation, payment=payment, ledger=saved)

    async def start_term(
        self,
        student_id: UUID,
        term_id: str,
        now: Optional[datetime] = None,
    ) -> StudentLedgerState:
        """
        Snapshots the installment progress for a new term from the student's
        fee structure. Term fees and payments reset. A carried debt becomes a
        "Balance brought forward" installment ahead of the term's own, and a
        carried credit is spent on the new installments.
        """
        now = now or datetime.now(timezone.utc)
        log.info(f"Starting term {term_id} for student {student_id}.")

        ledger = await self.students.get(student_id)
        fee_structure = await self.fee_structures.get(ledger.school_id, ledger.class_id, term_id)
        plan = InstallmentPlan.from_fee_structure(fee_structure, default_deadline=now.date())

        updated = ledger.model_copy(update={
            'term_id': term_id,
            'total_fees': fee_structure.total_amount,
            'amount_paid': 0,
            'installment_progress': plan.snapshot_progress(),
            'last_payment_date': None,
        })
        if ledger.carryover_balance:
            log.info(f"Bringing {ledger.carryover_balance} forward into term {term_id} for student {student_id}.")
            updated = bring_forward(updated, ledger.carryover_balance, now)
        return await self.students.save(updated, expected_version=ledger.version)
