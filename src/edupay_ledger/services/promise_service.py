'''
Guardian payment promises: creation, payments against them, follow-up
actions and the collections summary.
'''
import math
from datetime import date, datetime, timedelta, timezone
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends

from ..common.config import settings
from ..common.exceptions import PromiseStateError
from ..common.logger import log
from ..core.promises import calculate_promise_status, enrich_promise
from ..database.interfaces import PromiseRepository, StudentRepository
from ..database.repositories import SqlPromiseRepository, SqlStudentRepository
from ..models.enums import (
    PRIORITY_RANK,
    FollowUpAction,
    PromisePriority,
    PromiseStatus,
    ReminderChannel,
)
from ..models.promise import (
    PaymentPromise,
    PromiseClassBreakdown,
    PromiseCreate,
    PromiseFilters,
    PromiseFollowUp,
    PromisePriorityBreakdown,
    PromiseStatusTally,
    PromiseSummary,
    PromiseWithStatus,
)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


class PromiseService:
    """
    Service for everything that changes or reads a payment promise.

    Every write stores the freshly recomputed status so list queries see a
    recent value, but reads always recompute it again from the amounts and
    dates.
    """
    def __init__(
        self,
        promises: Annotated[PromiseRepository, Depends(SqlPromiseRepository)],
        students: Annotated[StudentRepository, Depends(SqlStudentRepository)],
    ):
        self.promises = promises
        self.students = students

    # --- Internal Helpers ---

    async def _persist(self, promise: PaymentPromise, now: datetime) -> PromiseWithStatus:
        status = calculate_promise_status(promise, now)
        updates = {'status': status, 'updated_at': now}
        if status == PromiseStatus.FULFILLED and promise.fulfilled_at is None:
            updates['fulfilled_at'] = now
        if status == PromiseStatus.BROKEN and promise.broken_at is None:
            updates['broken_at'] = now

        saved = await self.promises.save(promise.model_copy(update=updates))
        return enrich_promise(saved, now)

    @staticmethod
    def _follow_up(promise: PaymentPromise, follow_up: PromiseFollowUp) -> list[PromiseFollowUp]:
        return [*promise.follow_ups, follow_up]

    @staticmethod
    def _matches(promise: PromiseWithStatus, filters: PromiseFilters) -> bool:
        if filters.status and promise.status not in filters.status:
            return False
        if filters.priority and promise.priority not in filters.priority:
            return False
        if filters.class_name and promise.class_name != filters.class_name:
            return False
        if filters.from_date and promise.due_date < filters.from_date:
            return False
        if filters.to_date and promise.due_date > filters.to_date:
            return False
        return True

    # --- Public Read Methods ---

    async def get_promise(self, promise_id: UUID, now: Optional[datetime] = None) -> PromiseWithStatus:
        promise = await self.promises.get(promise_id)
        return enrich_promise(promise, _now(now))

    async def list_school_promises(
        self,
        school_id: UUID,
        filters: Optional[PromiseFilters] = None,
        now: Optional[datetime] = None,
    ) -> list[PromiseWithStatus]:
        now = _now(now)
        filters = filters or PromiseFilters()
        log.info(f"Listing promises for school {school_id} with filters {filters.model_dump(exclude_defaults=True)}.")

        enriched = [enrich_promise(p, now) for p in await self.promises.list_for_school(school_id)]
        matching = [p for p in enriched if self._matches(p, filters)]
        return sorted(matching, key=lambda p: p.due_date)

    async def list_student_promises(self, student_id: UUID, now: Optional[datetime] = None) -> list[PromiseWithStatus]:
        now = _now(now)
        promises = await self.promises.list_for_student(student_id)
        return sorted((enrich_promise(p, now) for p in promises), key=lambda p: p.due_date, reverse=True)

    # --- Public Write Methods ---

    async def create_promise(self, request: PromiseCreate, now: Optional[datetime] = None) -> PromiseWithStatus:
        """
        Records a guardian's promise for a student. The student's name, class
        and guardian are copied from the ledger so the promise reads on its
        own later.
        """
        now = _now(now)
        log.info(f"User {request.created_by} creating promise of {request.promised_amount} for student {request.student_id}.")
        ledger = await self.students.get(request.student_id)

        next_reminder: Optional[date] = None
        if request.schedule_reminder and request.reminder_days_before:
            next_reminder = request.due_date - timedelta(days=request.reminder_days_before)

        grace_period_days = request.grace_period_days
        if grace_period_days is None:
            grace_period_days = settings.DEFAULT_PROMISE_GRACE_DAYS

        promise = PaymentPromise(
            school_id=ledger.school_id,
            student_id=ledger.student_id,
            student_name=ledger.student_name,
            class_name=ledger.class_name,
            guardian_name=ledger.guardian_name,
            guardian_phone=ledger.guardian_phone,
            promised_amount=request.promised_amount,
            promise_date=now,
            due_date=request.due_date,
            grace_period_days=grace_period_days,
            priority=request.priority or PromisePriority.MEDIUM,
            notes=request.notes,
            reason=request.reason,
            next_reminder_date=next_reminder,
            created_at=now,
            created_by=request.created_by,
            updated_at=now,
        )
        return await self._persist(promise, now)

    async def record_payment(
        self,
        promise_id: UUID,
        payment_id: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> PromiseWithStatus:
        """
        Counts a payment towards the promise. Recording the same payment id
        twice leaves the promise unchanged.
        """
        now = _now(now)
        promise = await self.promises.get(promise_id)

        if payment_id in promise.payment_ids:
            log.info(f"Payment {payment_id} already counted on promise {promise_id}; ignoring.")
            return enrich_promise(promise, now)
        if promise.status == PromiseStatus.CANCELLED:
            log.warning(f"Payment {payment_id} recorded against cancelled promise {promise_id}.")
            raise PromiseStateError(f"Promise {promise_id} is cancelled.")

        log.info(f"Recording payment {payment_id} of {amount} on promise {promise_id}.")
        updated = promise.model_copy(update={
            'amount_paid': promise.amount_paid + amount,
            'payment_ids': [*promise.payment_ids, payment_id],
            'last_payment_date': now,
            'follow_ups': self._follow_up(promise, PromiseFollowUp(
                action_type=FollowUpAction.PAYMENT_RECEIVED,
                action_date=now,
                performed_by="system",
                notes=f"Payment {payment_id} of {amount:,}",
            )),
        })
        return await self._persist(updated, now)

    async def cancel_promise(
        self,
        promise_id: UUID,
        reason: str,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> PromiseWithStatus:
        now = _now(now)
        promise = await self.promises.get(promise_id)
        current = calculate_promise_status(promise, now)
        if current in (PromiseStatus.CANCELLED, PromiseStatus.FULFILLED):
            log.warning(f"User {actor_id} tried to cancel promise {promise_id} which is {current.value}.")
            raise PromiseStateError(f"Promise {promise_id} is {current.value} and cannot be cancelled.")

        log.info(f"User {actor_id} cancelling promise {promise_id}.")
        cancelled = promise.model_copy(update={
            'status': PromiseStatus.CANCELLED,
            'notes': reason,
            'next_reminder_date': None,
            'follow_ups': self._follow_up(promise, PromiseFollowUp(
                action_type=FollowUpAction.CANCELLED,
                action_date=now,
                performed_by=actor_id,
                notes=reason,
            )),
        })
        return await self._persist(cancelled, now)

    async def extend_due_date(
        self,
        promise_id: UUID,
        new_due_date: date,
        reason: str,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> PromiseWithStatus:
        """Moves the due date; the status follows from the new date."""
        now = _now(now)
        promise = await self.promises.get(promise_id)
        if promise.status == PromiseStatus.CANCELLED:
            log.warning(f"User {actor_id} tried to extend cancelled promise {promise_id}.")
            raise PromiseStateError(f"Promise {promise_id} is cancelled and cannot be extended.")

        log.info(f"User {actor_id} extending promise {promise_id} from {promise.due_date} to {new_due_date}.")
        extended = promise.model_copy(update={
            'due_date': new_due_date,
            'broken_at': None,
            'follow_ups': self._follow_up(promise, PromiseFollowUp(
                action_type=FollowUpAction.EXTENSION_GRANTED,
                action_date=now,
                performed_by=actor_id,
                notes=reason,
                new_due_date=new_due_date,
            )),
        })
        return await self._persist(extended, now)

    async def record_reminder_sent(
        self,
        promise_id: UUID,
        channel: ReminderChannel,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> PromiseWithStatus:
        now = _now(now)
        promise = await self.promises.get(promise_id)
        log.info(f"User {actor_id} logged a {channel.value} reminder on promise {promise_id}.")

        reminded = promise.model_copy(update={
            'reminder_count': promise.reminder_count + 1,
            'last_reminder_date': now,
            'last_reminder_channel': channel,
            'follow_ups': self._follow_up(promise, PromiseFollowUp(
                action_type=FollowUpAction.REMINDER_SENT,
                action_date=now,
                performed_by=actor_id,
                notes=f"{channel.value} reminder sent to {promise.guardian_phone or promise.guardian_name}",
            )),
        })
        return await self._persist(reminded, now)

    # --- Summary ---

    async def generate_promise_summary(self, school_id: UUID, now: Optional[datetime] = None) -> PromiseSummary:
        """
        Counts and amounts per recomputed status, the fulfilment rate over
        settled promises (fulfilled or broken) and per-class and per-priority
        breakdowns.
        """
        now = _now(now)
        log.info(f"Generating promise summary for school {school_id}.")
        promises = [enrich_promise(p, now) for p in await self.promises.list_for_school(school_id)]

        summary = PromiseSummary(
            total_promises=len(promises),
            by_status={status: PromiseStatusTally() for status in PromiseStatus},
        )
        classes: dict[str, list[int]] = {}
        priorities: dict[PromisePriority, list[int]] = {}
        fulfil_days = 0
        delay_days = 0

        for promise in promises:
            summary.total_promised_amount += promise.promised_amount
            tally = summary.by_status[promise.status]
            tally.count += 1
            tally.amount += promise.promised_amount

            if promise.status == PromiseStatus.OVERDUE:
                delay_days += promise.days_overdue
            elif promise.status == PromiseStatus.PARTIAL:
                summary.partial_collected += promise.amount_paid
            elif promise.status == PromiseStatus.FULFILLED and promise.fulfilled_at:
                elapsed = promise.fulfilled_at - promise.promise_date
                fulfil_days += math.ceil(elapsed.total_seconds() / 86400)

            class_row = classes.setdefault(promise.class_name, [0, 0, 0])
            class_row[0] += 1
            class_row[1] += promise.promised_amount
            if promise.status in (PromiseStatus.OVERDUE, PromiseStatus.BROKEN):
                class_row[2] += 1

            priority_row = priorities.setdefault(promise.priority, [0, 0])
            priority_row[0] += 1
            priority_row[1] += promise.promised_amount

        fulfilled = summary.by_status[PromiseStatus.FULFILLED].count
        settled = fulfilled + summary.by_status[PromiseStatus.BROKEN].count
        overdue = summary.by_status[PromiseStatus.OVERDUE].count
        if settled:
            summary.fulfillment_rate = round(fulfilled * 100 / settled)
        if fulfilled:
            summary.average_days_to_fulfill = round(fulfil_days / fulfilled)
        if overdue:
            summary.average_delay_days = round(delay_days / overdue)

        summary.by_class = sorted(
            (PromiseClassBreakdown(class_name=name, count=row[0], amount=row[1], overdue_count=row[2])
             for name, row in classes.items()),
            key=lambda c: c.overdue_count,
            reverse=True,
        )
        summary.by_priority = sorted(
            (PromisePriorityBreakdown(priority=priority, count=row[0], amount=row[1])
             for priority, row in priorities.items()),
            key=lambda p: PRIORITY_RANK[p.priority],
        )
        return summary
