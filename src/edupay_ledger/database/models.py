from typing import Optional

from sqlalchemy import BigInteger, Date, DateTime, Enum, ForeignKeyConstraint, Index, Integer, Numeric, PrimaryKeyConstraint, SmallInteger, Text, UniqueConstraint, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import datetime
import decimal
import uuid

class Base(DeclarativeBase):
    pass



class FeeStructures(Base):
    __tablename__ = 'fee_structures'
    __table_args__ = (
        PrimaryKeyConstraint('id', name='fee_structures_pkey'),
        UniqueConstraint('school_id', 'class_id', 'term_id', name='fee_structures_school_class_term_key')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, server_default=text('gen_random_uuid()'))
    school_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    class_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    term_id: Mapped[str] = mapped_column(Text)
    name: Mapped[str] = mapped_column(Text)
    total_amount: Mapped[int] = mapped_column(BigInteger)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True), server_default=text('now()'))

    installment_rules: Mapped[list['InstallmentRules']] = relationship('InstallmentRules', back_populates='fee_structure', order_by='InstallmentRules.order')


class InstallmentRules(Base):
    __tablename__ = 'installment_rules'
    __table_args__ = (
        ForeignKeyConstraint(['fee_structure_id'], ['fee_structures.id'], ondelete='CASCADE', name='installment_rules_fee_structure_id_fkey'),
        PrimaryKeyConstraint('id', name='installment_rules_pkey'),
        UniqueConstraint('fee_structure_id', 'order', name='installment_rules_structure_order_key')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, server_default=text('gen_random_uuid()'))
    fee_structure_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    order: Mapped[int] = mapped_column(SmallInteger)
    name: Mapped[str] = mapped_column(Text)
    deadline: Mapped[datetime.date] = mapped_column(Date)
    grace_period_days: Mapped[int] = mapped_column(SmallInteger, server_default=text('0'))
    amount: Mapped[Optional[int]] = mapped_column(BigInteger)
    percentage: Mapped[Optional[decimal.Decimal]] = mapped_column(Numeric(5, 2))

    fee_structure: Mapped['FeeStructures'] = relationship('FeeStructures', back_populates='installment_rules')


class Students(Base):
    __tablename__ = 'students'
    __table_args__ = (
        PrimaryKeyConstraint('id', name='students_pkey'),
        Index('idx_students_school_status', 'school_id', 'status')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, server_default=text('gen_random_uuid()'))
    school_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    class_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    class_name: Mapped[str] = mapped_column(Text)
    first_name: Mapped[str] = mapped_column(Text)
    last_name: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Enum('active', 'inactive', 'graduated', 'transferred', name='enrollment_status_enum'), server_default=text("'active'::enrollment_status_enum"))
    total_fees: Mapped[int] = mapped_column(BigInteger, server_default=text('0'))
    amount_paid: Mapped[int] = mapped_column(BigInteger, server_default=text('0'))
    carryover_balance: Mapped[int] = mapped_column(BigInteger, server_default=text('0'))
    installment_progress: Mapped[list] = mapped_column(JSONB, server_default=text("'[]'::jsonb"))
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    stream_name: Mapped[Optional[str]] = mapped_column(Text)
    guardian_name: Mapped[Optional[str]] = mapped_column(Text)
    guardian_phone: Mapped[Optional[str]] = mapped_column(Text)
    term_id: Mapped[Optional[str]] = mapped_column(Text)
    last_payment_date: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))

    # Every UPDATE checks and bumps the version, so a stale write raises StaleDataError
    __mapper_args__ = {'version_id_col': version}

    payments: Mapped[list['Payments']] = relationship('Payments', back_populates='student')


class Payments(Base):
    __tablename__ = 'payments'
    __table_args__ = (
        ForeignKeyConstraint(['student_id'], ['students.id'], name='payments_student_id_fkey'),
        PrimaryKeyConstraint('id', name='payments_pkey'),
        Index('idx_payments_student', 'student_id')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    school_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    amount: Mapped[int] = mapped_column(BigInteger)
    recorded_by: Mapped[str] = mapped_column(Text)
    recorded_at: Mapped[datetime.datetime] = mapped_column(DateTime(True))
    status: Mapped[str] = mapped_column(Enum('cleared', 'reversed', name='payment_record_status_enum'), server_default=text("'cleared'::payment_record_status_enum"))
    allocations: Mapped[list] = mapped_column(JSONB, server_default=text("'[]'::jsonb"))
    reference: Mapped[Optional[str]] = mapped_column(Text)

    student: Mapped['Students'] = relationship('Students', back_populates='payments')


class TermCarryovers(Base):
    __tablename__ = 'term_carryovers'
    __table_args__ = (
        ForeignKeyConstraint(['student_id'], ['students.id'], name='term_carryovers_student_id_fkey'),
        PrimaryKeyConstraint('id', name='term_carryovers_pkey'),
        UniqueConstraint('student_id', 'from_year', 'from_term', 'to_year', 'to_term', name='term_carryovers_student_periods_key'),
        Index('idx_carryovers_school_to_period', 'school_id', 'to_year', 'to_term')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    school_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_name: Mapped[str] = mapped_column(Text)
    class_name: Mapped[str] = mapped_column(Text)
    from_year: Mapped[int] = mapped_column(SmallInteger)
    from_term: Mapped[str] = mapped_column(Enum('term_1', 'term_2', 'term_3', name='academic_term_enum'))
    to_year: Mapped[int] = mapped_column(SmallInteger)
    to_term: Mapped[str] = mapped_column(Enum('term_1', 'term_2', 'term_3', name='academic_term_enum'))
    from_term_fees: Mapped[int] = mapped_column(BigInteger)
    from_term_paid: Mapped[int] = mapped_column(BigInteger)
    from_term_balance: Mapped[int] = mapped_column(BigInteger)
    carryover_type: Mapped[str] = mapped_column(Enum('debit', 'credit', name='carryover_type_enum'))
    original_amount: Mapped[int] = mapped_column(BigInteger)
    adjusted_amount: Mapped[int] = mapped_column(BigInteger)
    adjustments: Mapped[list] = mapped_column(JSONB, server_default=text("'[]'::jsonb"))
    status: Mapped[str] = mapped_column(Enum('pending', 'applied', 'waived', name='carryover_status_enum'), server_default=text("'pending'::carryover_status_enum"))
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True))
    created_by: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(True))
    stream_name: Mapped[Optional[str]] = mapped_column(Text)
    applied_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    applied_by: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)


class PaymentPromises(Base):
    __tablename__ = 'payment_promises'
    __table_args__ = (
        ForeignKeyConstraint(['student_id'], ['students.id'], name='payment_promises_student_id_fkey'),
        PrimaryKeyConstraint('id', name='payment_promises_pkey'),
        Index('idx_promises_school_due', 'school_id', 'due_date')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    school_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_name: Mapped[str] = mapped_column(Text)
    class_name: Mapped[str] = mapped_column(Text)
    promised_amount: Mapped[int] = mapped_column(BigInteger)
    promise_date: Mapped[datetime.datetime] = mapped_column(DateTime(True))
    due_date: Mapped[datetime.date] = mapped_column(Date)
    grace_period_days: Mapped[int] = mapped_column(SmallInteger, server_default=text('7'))
    status: Mapped[str] = mapped_column(Enum('pending', 'due', 'overdue', 'partial', 'fulfilled', 'broken', 'cancelled', name='promise_status_enum'))
    priority: Mapped[str] = mapped_column(Enum('low', 'medium', 'high', 'critical', name='promise_priority_enum'))
    amount_paid: Mapped[int] = mapped_column(BigInteger, server_default=text('0'))
    payment_ids: Mapped[list] = mapped_column(JSONB, server_default=text("'[]'::jsonb"))
    follow_ups: Mapped[list] = mapped_column(JSONB, server_default=text("'[]'::jsonb"))
    reminder_count: Mapped[int] = mapped_column(Integer, server_default=text('0'))
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True))
    created_by: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(True))
    guardian_name: Mapped[Optional[str]] = mapped_column(Text)
    guardian_phone: Mapped[Optional[str]] = mapped_column(Text)
    last_payment_date: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    last_reminder_date: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    last_reminder_channel: Mapped[Optional[str]] = mapped_column(Text)
    next_reminder_date: Mapped[Optional[datetime.date]] = mapped_column(Date)
    fulfilled_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    broken_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
