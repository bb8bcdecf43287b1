'''
Term-end balance carryover: moving what each student owes (or overpaid) into
the next academic term, and reporting on arrears that span terms.
'''
from datetime import datetime, timezone
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends

from ..common.exceptions import CarryoverStateError
from ..common.logger import log
from ..core.allocation import bring_forward
from ..database.interfaces import CarryoverRepository, StudentRepository, TransactionScope
from ..database.repositories import SqlCarryoverRepository, SqlStudentRepository, SqlTransactionScope
from ..models.carryover import (
    AcademicPeriod,
    ArrearsAgingBucket,
    ArrearsReport,
    BalanceAdjustment,
    BalanceAdjustmentCreate,
    CarryoverError,
    CarryoverOptions,
    CarryoverProcessingResult,
    ClassArrearsSummary,
    ClassCarryoverSummary,
    PreviousTermArrears,
    StudentArrearsDetail,
    StudentCumulativeBalance,
    TermBalanceCarryover,
)
from ..models.enums import AdjustmentType, CarryoverStatus, CarryoverType, EnrollmentStatus
from ..models.ledger import StudentLedgerState

AGING_LABELS = ['Current Term', '1 Term Old', '2 Terms Old', '3+ Terms Old']


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _adjusted_amount(original_amount: int, adjustments: list[BalanceAdjustment]) -> int:
    return max(0, original_amount - sum(adj.amount for adj in adjustments))


def _outstanding_debits(
    ledger: StudentLedgerState,
    carryovers: list[TermBalanceCarryover],
) -> list[tuple[TermBalanceCarryover, int]]:
    """
    Debit carryovers still owed on top of the ledger's own term fees, oldest
    first, each paired with what remains of it.

    A pending record counts once the ledger has left the record's source
    term; before that the ledger's own balance is the same debt. An applied
    record counts while the ledger is in the term it was brought into. The
    unpaid part of the brought-forward installment is spread newest first,
    since payments clear it oldest first.
    """
    pending: list[tuple[TermBalanceCarryover, int]] = []
    brought: list[TermBalanceCarryover] = []
    for carryover in carryovers:
        if carryover.carryover_type != CarryoverType.DEBIT or carryover.adjusted_amount <= 0:
            continue
        if carryover.status == CarryoverStatus.PENDING and ledger.term_id != carryover.from_period.term_id:
            pending.append((carryover, carryover.adjusted_amount))
        elif carryover.status == CarryoverStatus.APPLIED and ledger.term_id == carryover.to_period.term_id:
            brought.append(carryover)

    remaining = ledger.brought_forward_outstanding
    unpaid: list[tuple[TermBalanceCarryover, int]] = []
    for carryover in sorted(brought, key=lambda c: c.from_period, reverse=True):
        share = min(remaining, carryover.adjusted_amount)
        remaining -= share
        if share:
            unpaid.append((carryover, share))

    return sorted(pending + unpaid, key=lambda item: item[0].from_period)


def _pending_credits(ledger: StudentLedgerState, carryovers: list[TermBalanceCarryover]) -> int:
    return sum(
        c.adjusted_amount for c in carryovers
        if c.carryover_type == CarryoverType.CREDIT
        and c.status == CarryoverStatus.PENDING
        and ledger.term_id != c.from_period.term_id
    )


class CarryoverService:
    """
    Service for the term carryover sweep and the follow-up actions on
    individual carryover records.
    """
    def __init__(
        self,
        students: Annotated[StudentRepository, Depends(SqlStudentRepository)],
        carryovers: Annotated[CarryoverRepository, Depends(SqlCarryoverRepository)],
        transactions: Annotated[TransactionScope, Depends(SqlTransactionScope)],
    ):
        self.students = students
        self.carryovers = carryovers
        self.transactions = transactions

    # --- Internal Helpers ---

    @staticmethod
    def _matches_filters(ledger: StudentLedgerState, options: CarryoverOptions) -> bool:
        if ledger.enrollment_status != EnrollmentStatus.ACTIVE:
            return False
        if options.class_filter and ledger.class_name not in options.class_filter:
            return False
        if options.stream_filter and ledger.stream_name not in options.stream_filter:
            return False
        return True

    @staticmethod
    def _classify(ledger: StudentLedgerState, options: CarryoverOptions) -> Optional[tuple[CarryoverType, int]]:
        """The carryover a ledger calls for, or None when the student is cleared."""
        raw_balance = ledger.raw_balance
        if abs(raw_balance) < options.min_balance:
            return None
        if raw_balance > 0:
            return CarryoverType.DEBIT, raw_balance
        if raw_balance < 0 and options.include_credits:
            return CarryoverType.CREDIT, -raw_balance
        return None

    async def _seed_ledger(self, carryover: TermBalanceCarryover, actor_id: str, now: datetime) -> TermBalanceCarryover:
        """
        Marks a pending carryover applied and moves its amount onto the
        student's ledger. Callers run this inside a savepoint so the record
        and the ledger change together.

        If the ledger is already in the destination term the amount goes
        straight into its installments; otherwise it waits in
        `carryover_balance` until that term is started.
        """
        applied = await self.carryovers.save(carryover.model_copy(update={
            'status': CarryoverStatus.APPLIED,
            'applied_at': now,
            'applied_by': actor_id,
            'updated_at': now,
        }))

        ledger = await self.students.get(carryover.student_id)
        if ledger.term_id == carryover.to_period.term_id:
            seeded = bring_forward(ledger, carryover.signed_amount, now)
        else:
            seeded = ledger.model_copy(update={
                'carryover_balance': ledger.carryover_balance + carryover.signed_amount,
            })
        await self.students.save(seeded, expected_version=ledger.version)
        return applied

    async def _process_student(
        self,
        ledger: StudentLedgerState,
        options: CarryoverOptions,
        actor_id: str,
        now: datetime,
    ) -> Optional[TermBalanceCarryover]:
        existing = await self.carryovers.find(ledger.student_id, options.from_period, options.to_period)
        if existing is not None and existing.status.is_terminal:
            log.info(f"Carryover {existing.id} for student {ledger.student_id} is {existing.status.value}; left as is.")
            return existing

        snapshot = {
            'student_name': ledger.student_name,
            'class_name': ledger.class_name,
            'stream_name': ledger.stream_name,
            'from_term_fees': ledger.total_fees,
            'from_term_paid': ledger.amount_paid,
            'from_term_balance': ledger.raw_balance,
            'updated_at': now,
        }

        outcome = self._classify(ledger, options)
        if outcome is None:
            if existing is not None:
                # Cleared since the last run: nothing is carried any more
                log.info(f"Student {ledger.student_id} cleared; zeroing pending carryover {existing.id}.")
                await self.carryovers.save(existing.model_copy(update={
                    **snapshot,
                    'original_amount': 0,
                    'adjusted_amount': 0,
                }))
            return None
        carryover_type, amount = outcome
        snapshot.update(carryover_type=carryover_type, original_amount=amount)

        if existing is not None:
            # Re-run: refresh the pending record in place, keeping its adjustments
            carryover = existing.model_copy(update={
                **snapshot,
                'adjusted_amount': _adjusted_amount(amount, existing.adjustments),
            })
        else:
            carryover = TermBalanceCarryover(
                school_id=options.school_id,
                student_id=ledger.student_id,
                from_period=options.from_period,
                to_period=options.to_period,
                adjusted_amount=amount,
                created_at=now,
                created_by=actor_id,
                **snapshot,
            )

        if options.auto_apply:
            return await self._seed_ledger(carryover, actor_id, now)
        return await self.carryovers.save(carryover)

    async def _get_pending(self, carryover_id: UUID, action: str) -> TermBalanceCarryover:
        carryover = await self.carryovers.get(carryover_id)
        if carryover.status.is_terminal:
            log.warning(f"Cannot {action} carryover {carryover_id}: it is already {carryover.status.value}.")
            raise CarryoverStateError(
                f"Cannot {action} carryover {carryover_id}: it is already {carryover.status.value}."
            )
        return carryover

    # --- Term Sweep ---

    async def process_term_carryovers(
        self,
        options: CarryoverOptions,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> CarryoverProcessingResult:
        """
        Creates or refreshes one carryover per active student with a balance.

        Safe to re-run for the same periods: records are looked up by
        (student, from_period, to_period) and updated rather than duplicated.
        Each student is handled in its own savepoint: a failure rolls back
        that student's writes, is reported in `errors`, and the sweep carries
        on with the rest.
        """
        now = _now(now)
        log.info(
            f"User {actor_id} processing carryovers for school {options.school_id}: "
            f"{options.from_period} -> {options.to_period}."
        )
        result = CarryoverProcessingResult(
            school_id=options.school_id,
            from_period=options.from_period,
            to_period=options.to_period,
            processed_at=now,
            processed_by=actor_id,
        )

        ledgers = await self.students.list_by_school(options.school_id)
        class_map: dict[tuple[str, str], ClassCarryoverSummary] = {}

        for ledger in ledgers:
            if not self._matches_filters(ledger, options):
                continue
            result.total_students_processed += 1

            try:
                async with self.transactions.savepoint():
                    carryover = await self._process_student(ledger, options, actor_id, now)
            except Exception as e:
                log.error(f"Carryover failed for student {ledger.student_id}: {e}", exc_info=True)
                result.errors.append(CarryoverError(
                    student_id=ledger.student_id,
                    student_name=ledger.student_name,
                    error="Processing failed",
                    details=str(e),
                ))
                continue

            if carryover is None:
                result.students_cleared += 1
                continue

            result.carryovers.append(carryover)
            key = (carryover.class_name, carryover.stream_name or "")
            summary = class_map.setdefault(key, ClassCarryoverSummary(
                class_name=carryover.class_name,
                stream_name=carryover.stream_name,
            ))
            summary.total_students += 1

            if carryover.carryover_type == CarryoverType.DEBIT:
                result.students_with_debits += 1
                result.total_debit_carryover += carryover.adjusted_amount
                summary.students_with_debits += 1
                summary.total_debit += carryover.adjusted_amount
            else:
                result.students_with_credits += 1
                result.total_credit_carryover += carryover.adjusted_amount
                summary.students_with_credits += 1
                summary.total_credit += carryover.adjusted_amount
            summary.net_balance = summary.total_debit - summary.total_credit

        result.net_carryover = result.total_debit_carryover - result.total_credit_carryover
        result.class_breakdown = [class_map[key] for key in sorted(class_map)]

        log.info(
            f"Carryover sweep done: {result.total_students_processed} processed, "
            f"{result.students_with_debits} debits, {result.students_with_credits} credits, "
            f"{len(result.errors)} error(s)."
        )
        return result

    # --- Record Actions ---

    async def list_carryovers(self, school_id: UUID, to_period: Optional[AcademicPeriod] = None) -> list[TermBalanceCarryover]:
        return await self.carryovers.list_for_school(school_id, to_period)

    async def apply_carryover(self, carryover_id: UUID, actor_id: str, now: Optional[datetime] = None) -> TermBalanceCarryover:
        """Moves a pending record's amount onto the student's ledger."""
        log.info(f"User {actor_id} applying carryover {carryover_id}.")
        carryover = await self._get_pending(carryover_id, "apply")
        async with self.transactions.savepoint():
            return await self._seed_ledger(carryover, actor_id, _now(now))

    async def apply_adjustment(
        self,
        carryover_id: UUID,
        adjustment: BalanceAdjustmentCreate,
        now: Optional[datetime] = None,
    ) -> TermBalanceCarryover:
        now = _now(now)
        log.info(f"User {adjustment.approved_by} adding {adjustment.type.value} of {adjustment.amount} to carryover {carryover_id}.")
        carryover = await self._get_pending(carryover_id, "adjust")

        adjustments = [*carryover.adjustments, BalanceAdjustment(**adjustment.model_dump(), approved_at=now)]
        updated = carryover.model_copy(update={
            'adjustments': adjustments,
            'adjusted_amount': _adjusted_amount(carryover.original_amount, adjustments),
            'updated_at': now,
        })
        return await self.carryovers.save(updated)

    async def waive_carryover(
        self,
        carryover_id: UUID,
        reason: str,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> TermBalanceCarryover:
        """Writes off whatever is left of a pending carryover."""
        now = _now(now)
        log.info(f"User {actor_id} waiving carryover {carryover_id}.")
        carryover = await self._get_pending(carryover_id, "waive")

        waiver = BalanceAdjustment(
            type=AdjustmentType.WAIVER,
            amount=carryover.adjusted_amount,
            reason=reason,
            approved_by=actor_id,
            approved_at=now,
        )
        waived = carryover.model_copy(update={
            'status': CarryoverStatus.WAIVED,
            'adjustments': [*carryover.adjustments, waiver],
            'adjusted_amount': 0,
            'updated_at': now,
        })
        return await self.carryovers.save(waived)

    # --- Balances and Reports ---

    async def get_student_cumulative_balance(
        self,
        student_id: UUID,
        current_period: AcademicPeriod,
    ) -> StudentCumulativeBalance:
        """
        The current term's own balance plus what is still owed on debit
        carryovers, less pending credits. A carryover already brought into
        the ledger is counted once, through its unpaid remainder.
        """
        log.info(f"Computing cumulative balance for student {student_id} as of {current_period}.")
        ledger = await self.students.get(student_id)
        history = sorted(
            await self.carryovers.list_for_student(student_id),
            key=lambda c: c.to_period,
            reverse=True,
        )

        owed = _outstanding_debits(ledger, history)
        debits = sum(remaining for _, remaining in owed)
        credits = _pending_credits(ledger, history)
        current_term_balance = max(0, ledger.balance - ledger.brought_forward_outstanding)

        total_outstanding = current_term_balance + debits - credits
        return StudentCumulativeBalance(
            student_id=ledger.student_id,
            student_name=ledger.student_name,
            class_name=ledger.class_name,
            stream_name=ledger.stream_name,
            current_period=current_period,
            current_term_fees=ledger.total_fees,
            current_term_paid=ledger.amount_paid,
            current_term_balance=current_term_balance,
            carryover_balance=debits,
            carryover_credits=credits,
            total_outstanding=total_outstanding,
            carryover_history=history,
            has_arrears=total_outstanding > 0,
            arrears_count=len(owed),
            oldest_arrears=owed[0][0].from_period if owed else None,
        )

    async def generate_arrears_report(
        self,
        school_id: UUID,
        as_of_period: AcademicPeriod,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> ArrearsReport:
        """
        Outstanding amounts per student across terms, bucketed by how many
        terms old the oldest unpaid debit is.
        """
        now = _now(now)
        log.info(f"User {actor_id} generating arrears report for school {school_id} as of {as_of_period}.")

        ledgers = await self.students.list_by_school(school_id)
        by_student: dict[UUID, list[TermBalanceCarryover]] = {}
        for carryover in await self.carryovers.list_for_school(school_id):
            if carryover.status != CarryoverStatus.WAIVED:
                by_student.setdefault(carryover.student_id, []).append(carryover)

        report = ArrearsReport(
            school_id=school_id,
            generated_at=now,
            generated_by=actor_id,
            as_of_period=as_of_period,
        )
        aging = {age: [0, 0] for age in range(len(AGING_LABELS))}
        class_map: dict[tuple[str, str], ClassArrearsSummary] = {}

        for ledger in ledgers:
            owed = _outstanding_debits(ledger, by_student.get(ledger.student_id, []))
            previous = [
                PreviousTermArrears(
                    period=c.from_period,
                    original_balance=c.original_amount,
                    adjustments=sum(adj.amount for adj in c.adjustments),
                    current_balance=remaining,
                )
                for c, remaining in owed
            ]
            total_previous = sum(remaining for _, remaining in owed)
            arrears_age = max((c.from_period.terms_until(as_of_period) for c, _ in owed), default=0)

            current_term_balance = max(0, ledger.balance - ledger.brought_forward_outstanding)
            total_outstanding = current_term_balance + total_previous
            if total_outstanding <= 0:
                continue

            report.total_students_with_arrears += 1
            report.total_arrears_amount += total_outstanding

            bucket = aging[min(arrears_age, 3)]
            bucket[0] += 1
            bucket[1] += total_outstanding

            key = (ledger.class_name, ledger.stream_name or "")
            summary = class_map.setdefault(key, ClassArrearsSummary(
                class_name=ledger.class_name,
                stream_name=ledger.stream_name,
            ))
            summary.students_with_arrears += 1
            summary.total_arrears_amount += total_outstanding

            report.student_arrears.append(StudentArrearsDetail(
                student_id=ledger.student_id,
                student_name=ledger.student_name,
                class_name=ledger.class_name,
                stream_name=ledger.stream_name,
                guardian_name=ledger.guardian_name,
                guardian_phone=ledger.guardian_phone,
                current_term_balance=current_term_balance,
                previous_terms_arrears=previous,
                total_previous_arrears=total_previous,
                total_outstanding=total_outstanding,
                arrears_age=arrears_age,
                last_payment_date=ledger.last_payment_date,
            ))

        if report.total_students_with_arrears:
            report.average_arrears_per_student = report.total_arrears_amount // report.total_students_with_arrears

        for age, label in enumerate(AGING_LABELS):
            count, amount = aging[age]
            share = amount * 100 / report.total_arrears_amount if report.total_arrears_amount else 0.0
            report.arrears_aging.append(ArrearsAgingBucket(
                label=label,
                term_count=age,
                student_count=count,
                total_amount=amount,
                percentage=round(share, 2),
            ))

        for summary in class_map.values():
            summary.average_arrears = summary.total_arrears_amount // summary.students_with_arrears
        report.arrears_by_class = sorted(class_map.values(), key=lambda s: s.total_arrears_amount, reverse=True)
        report.student_arrears.sort(key=lambda s: s.total_outstanding, reverse=True)

        log.info(f"Arrears report: {report.total_students_with_arrears} student(s), {report.total_arrears_amount} outstanding.")
        return report
