'''
Arrears severity tiers used to rank collections outreach.
'''
from datetime import datetime

from ..models.arrears import ArrearsStats, ArrearsStudent
from ..models.enums import EnrollmentStatus, SeverityLevel
from ..models.ledger import StudentLedgerState

ARREARS_NOTICE_TEMPLATE = (
    "Dear {guardian_name}, {student_name} has an outstanding balance of "
    "{currency} {balance:,}, overdue by {days_overdue} days. "
    "Please clear to avoid clearance issues."
)


def calculate_severity(days_overdue: int) -> SeverityLevel:
    if days_overdue >= 30:
        return SeverityLevel.CRITICAL
    if days_overdue >= 15:
        return SeverityLevel.HIGH
    if days_overdue >= 7:
        return SeverityLevel.MEDIUM
    return SeverityLevel.LOW


def calculate_days_overdue(ledger: StudentLedgerState, now: datetime) -> int:
    """Days since the earliest passed deadline of an unfinished installment."""
    today = now.date()
    passed = [
        ip.deadline for ip in ledger.installment_progress
        if not ip.is_completed and ip.deadline < today
    ]
    if not passed:
        return 0
    return (today - min(passed)).days


def classify_arrears(ledgers: list[StudentLedgerState], now: datetime) -> list[ArrearsStudent]:
    """
    Active students who owe money, most severe first; ties broken by days
    overdue and then by balance, both descending.
    """
    arrears = []
    for ledger in ledgers:
        if ledger.enrollment_status != EnrollmentStatus.ACTIVE or ledger.balance <= 0:
            continue
        days_overdue = calculate_days_overdue(ledger, now)
        arrears.append(ArrearsStudent(
            student_id=ledger.student_id,
            student_name=ledger.student_name,
            class_name=ledger.class_name,
            stream_name=ledger.stream_name,
            guardian_name=ledger.guardian_name,
            guardian_phone=ledger.guardian_phone,
            total_fees=ledger.total_fees,
            amount_paid=ledger.amount_paid,
            balance=ledger.balance,
            days_overdue=days_overdue,
            severity=calculate_severity(days_overdue),
            last_payment_date=ledger.last_payment_date,
        ))

    arrears.sort(key=lambda a: (a.severity.rank, -a.days_overdue, -a.balance))
    return arrears


def summarize_arrears(arrears: list[ArrearsStudent]) -> ArrearsStats:
    stats = ArrearsStats(
        total_in_arrears=len(arrears),
        total_arrears_amount=sum(a.balance for a in arrears),
    )
    for student in arrears:
        field = f"{student.severity.value}_count"
        setattr(stats, field, getattr(stats, field) + 1)
    return stats


def render_arrears_notice(student: ArrearsStudent, currency: str) -> str:
    return ARREARS_NOTICE_TEMPLATE.format(
        guardian_name=student.guardian_name or "Parent",
        student_name=student.student_name,
        currency=currency,
        balance=student.balance,
        days_overdue=student.days_overdue,
    )
