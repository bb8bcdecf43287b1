'''
Arrears listing and rate-limited reminder dispatch to guardians.
'''
import asyncio
from datetime import datetime, timezone
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends

from ..common.config import settings
from ..common.exceptions import StudentNotFoundError
from ..common.logger import log
from ..core.arrears import calculate_days_overdue, calculate_severity, classify_arrears, render_arrears_notice, summarize_arrears
from ..database.interfaces import NotificationSender, StudentRepository
from ..database.repositories import SqlStudentRepository
from ..models.arrears import ArrearsStats, ArrearsStudent, BulkReminderResult
from ..models.enums import SeverityLevel
from ..models.ledger import StudentLedgerState
from ..notifications.senders import get_notification_sender


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


class ReminderService:
    """
    Service for the arrears queue and bulk reminders.
    """
    def __init__(
        self,
        students: Annotated[StudentRepository, Depends(SqlStudentRepository)],
        sender: Annotated[NotificationSender, Depends(get_notification_sender)],
    ):
        self.students = students
        self.sender = sender

    async def list_arrears(
        self,
        school_id: UUID,
        severity: Optional[SeverityLevel] = None,
        now: Optional[datetime] = None,
    ) -> list[ArrearsStudent]:
        log.info(f"Listing arrears for school {school_id} (severity={severity.value if severity else 'all'}).")
        arrears = classify_arrears(await self.students.list_by_school(school_id), _now(now))
        if severity is not None:
            arrears = [a for a in arrears if a.severity == severity]
        return arrears

    async def arrears_stats(self, school_id: UUID, now: Optional[datetime] = None) -> ArrearsStats:
        return summarize_arrears(await self.list_arrears(school_id, now=now))

    def _notice_for(self, ledger: StudentLedgerState, now: datetime) -> str:
        days_overdue = calculate_days_overdue(ledger, now)
        return render_arrears_notice(ArrearsStudent(
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
        ), settings.CURRENCY)

    async def _load_recipient(self, student_id: UUID) -> Optional[StudentLedgerState]:
        """The student's ledger if they should get a notice, else None."""
        try:
            ledger = await self.students.get(student_id)
        except StudentNotFoundError:
            log.warning(f"Reminder skipped: student {student_id} not found.")
            return None
        except Exception as e:
            log.error(f"Reminder skipped: could not load student {student_id}: {e}")
            return None

        if ledger.balance <= 0:
            log.warning(f"Reminder skipped: student {student_id} has no outstanding balance.")
            return None
        return ledger

    async def send_bulk_reminders(
        self,
        student_ids: list[UUID],
        batch_size: Optional[int] = None,
        delay: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> BulkReminderResult:
        """
        Sends arrears notices in batches of `batch_size`, pausing `delay`
        seconds between batches.

        Within a batch the ledgers are loaded one after another, since the
        repository's session cannot serve concurrent queries; only the sends
        run concurrently.

        Best effort: a missing student, a rejected send or an exception counts
        as one failure and never stops the run, so sent + failed always equals
        the number of ids given.
        """
        now = _now(now)
        batch_size = batch_size or settings.REMINDER_BATCH_SIZE
        delay = settings.REMINDER_BATCH_DELAY_SECONDS if delay is None else delay
        result = BulkReminderResult()

        log.info(f"Sending reminders to {len(student_ids)} student(s) in batches of {batch_size}.")
        for start in range(0, len(student_ids), batch_size):
            batch = student_ids[start:start + batch_size]

            recipients = []
            for student_id in batch:
                ledger = await self._load_recipient(student_id)
                if ledger is None:
                    result.failed += 1
                else:
                    recipients.append(ledger)

            outcomes = await asyncio.gather(
                *(self.sender.send(ledger.guardian_phone, self._notice_for(ledger, now)) for ledger in recipients),
                return_exceptions=True,
            )
            for ledger, outcome in zip(recipients, outcomes):
                if outcome is True:
                    result.sent += 1
                else:
                    if isinstance(outcome, BaseException):
                        log.error(f"Reminder to student {ledger.student_id} failed: {outcome}")
                    result.failed += 1

            if start + batch_size < len(student_ids):
                await asyncio.sleep(delay)

        log.info(f"Reminders done: {result.sent} sent, {result.failed} failed.")
        return result
