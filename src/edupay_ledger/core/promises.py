'''
Derived status of payment promises.

Status is never advanced step by step; it is recomputed from the recorded
amounts and dates every time a promise is read. Only `cancelled` is stored
as an authoritative value.
'''
from datetime import date, datetime, timedelta

from ..models.enums import PromisePriority, PromiseStatus, UrgencyLevel
from ..models.promise import PaymentPromise, PromiseWithStatus


def _today(now: datetime) -> date:
    return now.date()


def grace_period_end(promise: PaymentPromise) -> date:
    return promise.due_date + timedelta(days=promise.grace_period_days)


def calculate_promise_status(promise: PaymentPromise, now: datetime) -> PromiseStatus:
    """
    Pure function of (due_date, grace_period_days, promised_amount,
    amount_paid, now), plus the sticky cancelled flag.
    """
    if promise.status == PromiseStatus.CANCELLED:
        return PromiseStatus.CANCELLED

    if promise.amount_paid >= promise.promised_amount:
        return PromiseStatus.FULFILLED

    today = _today(now)
    past_grace = today > grace_period_end(promise)

    if promise.amount_paid > 0:
        return PromiseStatus.BROKEN if past_grace else PromiseStatus.PARTIAL

    if past_grace:
        return PromiseStatus.BROKEN
    if today > promise.due_date:
        return PromiseStatus.OVERDUE
    if today == promise.due_date:
        return PromiseStatus.DUE
    return PromiseStatus.PENDING


def days_until_due(promise: PaymentPromise, now: datetime) -> int:
    return (promise.due_date - _today(now)).days


def calculate_urgency_level(promise: PaymentPromise, now: datetime) -> UrgencyLevel:
    """
    Combines the recomputed status, the priority and the days left before the
    due date. The first matching row wins.
    """
    status = calculate_promise_status(promise, now)
    if status in (PromiseStatus.FULFILLED, PromiseStatus.CANCELLED):
        return UrgencyLevel.NONE
    if status == PromiseStatus.BROKEN:
        return UrgencyLevel.CRITICAL

    days_left = days_until_due(promise, now)
    priority = promise.priority

    if status == PromiseStatus.OVERDUE or days_left < 0:
        return UrgencyLevel.CRITICAL if priority == PromisePriority.CRITICAL else UrgencyLevel.HIGH
    if days_left <= 1:
        return UrgencyLevel.MEDIUM if priority == PromisePriority.LOW else UrgencyLevel.HIGH
    if days_left <= 7:
        return UrgencyLevel.HIGH if priority == PromisePriority.CRITICAL else UrgencyLevel.MEDIUM
    if days_left <= 14:
        return UrgencyLevel.LOW
    return UrgencyLevel.NONE


def enrich_promise(promise: PaymentPromise, now: datetime) -> PromiseWithStatus:
    """Adds the recomputed status and the figures the collections screens show."""
    days_left = days_until_due(promise, now)
    days_overdue = -days_left if days_left < 0 else 0
    in_grace = days_overdue > 0 and _today(now) <= grace_period_end(promise)
    percentage_paid = (promise.amount_paid * 100 + promise.promised_amount // 2) // promise.promised_amount

    status = calculate_promise_status(promise, now)
    current = promise.model_copy(update={'status': status})

    return PromiseWithStatus(
        **current.model_dump(),
        days_until_due=days_left,
        days_overdue=days_overdue,
        is_in_grace_period=in_grace,
        percentage_paid=percentage_paid,
        remaining_amount=max(0, promise.promised_amount - promise.amount_paid),
        urgency_level=calculate_urgency_level(current, now),
    )
