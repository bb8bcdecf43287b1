'''
SQLAlchemy implementations of the repository interfaces.

Rows never leave this module untyped: every read goes through `_decode`,
which validates the row into its pydantic model and raises
RecordDecodeError when the stored data does not fit.
'''
from typing import Annotated, Any, Optional, Type, TypeVar
from uuid import UUID

from fastapi import Depends
from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from ..common.exceptions import (
    CarryoverNotFoundError,
    ConcurrencyConflictError,
    FeeStructureNotFoundError,
    PromiseNotFoundError,
    RecordDecodeError,
    StudentNotFoundError,
)
from ..common.logger import log
from ..models.carryover import AcademicPeriod, TermBalanceCarryover
from ..models.ledger import FeeStructure, PaymentRecord, StudentLedgerState
from ..models.promise import PaymentPromise
from . import models as db_models
from .engine import get_db_session, savepoint

ModelT = TypeVar('ModelT', bound=BaseModel)


def _columns(row: Any) -> dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


def _decode(model: Type[ModelT], data: Any, label: str) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        log.error(f"Stored {label} could not be decoded: {e}")
        raise RecordDecodeError(f"Stored {label} is malformed: {e.error_count()} validation error(s).") from e


# --- Row <-> model mapping ---

def student_from_row(row: db_models.Students) -> StudentLedgerState:
    data = _columns(row)
    data['student_id'] = data.pop('id')
    data['enrollment_status'] = data.pop('status')
    data['student_name'] = f"{data.pop('first_name')} {data.pop('last_name')}".strip()
    data['guardian_name'] = data['guardian_name'] or ""
    data['guardian_phone'] = data['guardian_phone'] or ""
    return _decode(StudentLedgerState, data, f"student {row.id}")


def payment_from_row(row: db_models.Payments) -> PaymentRecord:
    return _decode(PaymentRecord, _columns(row), f"payment {row.id}")


def fee_structure_from_row(row: db_models.FeeStructures) -> FeeStructure:
    data = _columns(row)
    data['installment_rules'] = [_columns(rule) for rule in row.installment_rules]
    return _decode(FeeStructure, data, f"fee structure {row.id}")


def carryover_from_row(row: db_models.TermCarryovers) -> TermBalanceCarryover:
    data = _columns(row)
    data['from_period'] = {'year': data.pop('from_year'), 'term': data.pop('from_term')}
    data['to_period'] = {'year': data.pop('to_year'), 'term': data.pop('to_term')}
    return _decode(TermBalanceCarryover, data, f"carryover {row.id}")


def promise_from_row(row: db_models.PaymentPromises) -> PaymentPromise:
    data = _columns(row)
    data['guardian_name'] = data['guardian_name'] or ""
    data['guardian_phone'] = data['guardian_phone'] or ""
    return _decode(PaymentPromise, data, f"promise {row.id}")


def _carryover_values(carryover: TermBalanceCarryover) -> dict[str, Any]:
    values = carryover.model_dump(exclude={'from_period', 'to_period', 'adjustments'})
    values.update(
        from_year=carryover.from_period.year,
        from_term=carryover.from_period.term.value,
        to_year=carryover.to_period.year,
        to_term=carryover.to_period.term.value,
        adjustments=[adj.model_dump(mode='json') for adj in carryover.adjustments],
    )
    return values


def _promise_values(promise: PaymentPromise) -> dict[str, Any]:
    values = promise.model_dump(exclude={'follow_ups'})
    values['follow_ups'] = [follow_up.model_dump(mode='json') for follow_up in promise.follow_ups]
    return values


def _assign(row: Any, values: dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(row, key, value)


# --- Repositories ---

class SqlStudentRepository:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def _get_row(self, student_id: UUID) -> db_models.Students:
        row = await self.db.get(db_models.Students, student_id)
        if row is None:
            log.warning(f"Tried to fetch non-existing student: {student_id}")
            raise StudentNotFoundError(f"Student {student_id} not found.")
        return row

    async def get(self, student_id: UUID) -> StudentLedgerState:
        return student_from_row(await self._get_row(student_id))

    async def list_by_school(self, school_id: UUID) -> list[StudentLedgerState]:
        stmt = select(db_models.Students).filter(
            db_models.Students.school_id == school_id
        ).order_by(db_models.Students.class_name, db_models.Students.last_name)
        result = await self.db.execute(stmt)
        return [student_from_row(row) for row in result.scalars().all()]

    async def save(self, ledger: StudentLedgerState, expected_version: int) -> StudentLedgerState:
        row = await self._get_row(ledger.student_id)
        if row.version != expected_version:
            log.warning(f"Ledger {ledger.student_id} is at version {row.version}, expected {expected_version}.")
            raise ConcurrencyConflictError(
                f"Ledger for student {ledger.student_id} was modified by another writer."
            )

        _assign(row, {
            'term_id': ledger.term_id,
            'total_fees': ledger.total_fees,
            'amount_paid': ledger.amount_paid,
            'carryover_balance': ledger.carryover_balance,
            'installment_progress': [ip.model_dump(mode='json') for ip in ledger.installment_progress],
            'last_payment_date': ledger.last_payment_date,
        })
        try:
            await self.db.flush()
        except StaleDataError as e:
            log.warning(f"Stale write rejected for ledger {ledger.student_id}: {e}")
            raise ConcurrencyConflictError(
                f"Ledger for student {ledger.student_id} was modified by another writer."
            ) from e

        return student_from_row(row)


class SqlPaymentRepository:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def append(self, payment: PaymentRecord) -> PaymentRecord:
        values = payment.model_dump(exclude={'allocations'})
        values['allocations'] = [item.model_dump(mode='json') for item in payment.allocations]
        row = db_models.Payments(**values)
        self.db.add(row)
        await self.db.flush()
        log.info(f"Appended payment {payment.id} for student {payment.student_id}.")
        return payment_from_row(row)

    async def list_for_student(self, student_id: UUID) -> list[PaymentRecord]:
        stmt = select(db_models.Payments).filter(
            db_models.Payments.student_id == student_id
        ).order_by(db_models.Payments.recorded_at)
        result = await self.db.execute(stmt)
        return [payment_from_row(row) for row in result.scalars().all()]


class SqlFeeStructureRepository:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def get(self, school_id: UUID, class_id: UUID, term_id: str) -> FeeStructure:
        stmt = select(db_models.FeeStructures).options(
            selectinload(db_models.FeeStructures.installment_rules)
        ).filter(
            db_models.FeeStructures.school_id == school_id,
            db_models.FeeStructures.class_id == class_id,
            db_models.FeeStructures.term_id == term_id,
        )
        result = await self.db.execute(stmt)
        row = result.scalars().first()
        if row is None:
            log.warning(f"No fee structure for school {school_id}, class {class_id}, term {term_id}.")
            raise FeeStructureNotFoundError(f"No fee structure for class {class_id} in term {term_id}.")
        return fee_structure_from_row(row)


class SqlCarryoverRepository:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def get(self, carryover_id: UUID) -> TermBalanceCarryover:
        row = await self.db.get(db_models.TermCarryovers, carryover_id)
        if row is None:
            log.warning(f"Tried to fetch non-existing carryover: {carryover_id}")
            raise CarryoverNotFoundError(f"Carryover {carryover_id} not found.")
        return carryover_from_row(row)

    async def find(
        self,
        student_id: UUID,
        from_period: AcademicPeriod,
        to_period: AcademicPeriod,
    ) -> Optional[TermBalanceCarryover]:
        stmt = select(db_models.TermCarryovers).filter(
            db_models.TermCarryovers.student_id == student_id,
            db_models.TermCarryovers.from_year == from_period.year,
            db_models.TermCarryovers.from_term == from_period.term.value,
            db_models.TermCarryovers.to_year == to_period.year,
            db_models.TermCarryovers.to_term == to_period.term.value,
        )
        result = await self.db.execute(stmt)
        row = result.scalars().first()
        return carryover_from_row(row) if row else None

    async def save(self, carryover: TermBalanceCarryover) -> TermBalanceCarryover:
        row = await self.db.get(db_models.TermCarryovers, carryover.id)
        if row is None:
            row = db_models.TermCarryovers()
            self.db.add(row)
        _assign(row, _carryover_values(carryover))
        await self.db.flush()
        return carryover_from_row(row)

    async def list_for_school(
        self,
        school_id: UUID,
        to_period: Optional[AcademicPeriod] = None,
    ) -> list[TermBalanceCarryover]:
        stmt = select(db_models.TermCarryovers).filter(db_models.TermCarryovers.school_id == school_id)
        if to_period is not None:
            stmt = stmt.filter(
                db_models.TermCarryovers.to_year == to_period.year,
                db_models.TermCarryovers.to_term == to_period.term.value,
            )
        result = await self.db.execute(stmt.order_by(db_models.TermCarryovers.created_at))
        return [carryover_from_row(row) for row in result.scalars().all()]

    async def list_for_student(self, student_id: UUID) -> list[TermBalanceCarryover]:
        stmt = select(db_models.TermCarryovers).filter(
            db_models.TermCarryovers.student_id == student_id
        ).order_by(db_models.TermCarryovers.from_year, db_models.TermCarryovers.from_term)
        result = await self.db.execute(stmt)
        return [carryover_from_row(row) for row in result.scalars().all()]


class SqlPromiseRepository:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def get(self, promise_id: UUID) -> PaymentPromise:
        row = await self.db.get(db_models.PaymentPromises, promise_id)
        if row is None:
            log.warning(f"Tried to fetch non-existing promise: {promise_id}")
            raise PromiseNotFoundError(f"Promise {promise_id} not found.")
        return promise_from_row(row)

    async def save(self, promise: PaymentPromise) -> PaymentPromise:
        row = await self.db.get(db_models.PaymentPromises, promise.id)
        if row is None:
            row = db_models.PaymentPromises()
            self.db.add(row)
        _assign(row, _promise_values(promise))
        await self.db.flush()
        return promise_from_row(row)

    async def list_for_school(self, school_id: UUID) -> list[PaymentPromise]:
        stmt = select(db_models.PaymentPromises).filter(
            db_models.PaymentPromises.school_id == school_id
        ).order_by(db_models.PaymentPromises.due_date)
        result = await self.db.execute(stmt)
        return [promise_from_row(row) for row in result.scalars().all()]

    async def list_for_student(self, student_id: UUID) -> list[PaymentPromise]:
        stmt = select(db_models.PaymentPromises).filter(
            db_models.PaymentPromises.student_id == student_id
        ).order_by(db_models.PaymentPromises.due_date)
        result = await self.db.execute(stmt)
        return [promise_from_row(row) for row in result.scalars().all()]


class SqlTransactionScope:
    """
    Savepoints on the request's session. FastAPI hands the repositories and
    this scope the same cached session, so a savepoint covers their writes.
    """
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    def savepoint(self):
        return savepoint(self.db)
