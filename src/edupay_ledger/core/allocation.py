'''
Payment allocation across a student's ordered installments.

Every function here is pure: it reads a ledger and returns new values.
Persisting the result is the caller's job (see services/payment_service.py).
'''
from datetime import datetime
from typing import Optional
from uuid import uuid4

from ..models.enums import InstallmentStatus
from ..models.ledger import (
    BROUGHT_FORWARD_NAME,
    BROUGHT_FORWARD_ORDER,
    InstallmentProgress,
    PaymentBreakdownItem,
    PaymentValidation,
    StudentLedgerState,
)


def _current_and_next(ledger: StudentLedgerState) -> tuple[Optional[InstallmentProgress], Optional[InstallmentProgress]]:
    """First non-completed installment by order, and the one after it."""
    ordered = sorted(ledger.installment_progress, key=lambda ip: ip.order)
    for index, installment in enumerate(ordered):
        if not installment.is_completed:
            following = ordered[index + 1] if index + 1 < len(ordered) else None
            return installment, following
    return None, None


def validate_payment(ledger: StudentLedgerState, amount: int) -> PaymentValidation:
    """
    Checks a payment amount against the ledger's balance and installment
    sequencing. Rejections are returned, never raised.
    """
    current, following = _current_and_next(ledger)
    balance = ledger.balance
    can_pay = balance > 0 and current is not None and current.is_unlocked

    def reject(message: str) -> PaymentValidation:
        return PaymentValidation(
            is_valid=False,
            can_pay=can_pay,
            message=message,
            current_installment=current,
            next_installment=following,
        )

    if amount <= 0:
        return reject("Payment amount must be greater than zero")
    if balance <= 0:
        return reject("Student has no outstanding balance")
    if amount > balance:
        return reject(f"Amount ({amount:,}) exceeds outstanding balance ({balance:,})")
    if current is None:
        return reject("No open installment to allocate the payment against")

    open_amount = sum(ip.outstanding for ip in ledger.installment_progress if not ip.is_completed)
    if amount > open_amount:
        return reject(f"Amount ({amount:,}) exceeds the open installment total ({open_amount:,})")

    # Settling the whole balance is always allowed, whatever the sequencing
    if not current.is_unlocked and amount != balance:
        return reject(
            f"{current.name} is not yet unlocked. Previous installments must be completed first."
        )

    spills = amount > current.outstanding
    if spills and following is not None:
        message = (
            f"Payment completes {current.name} and carries "
            f"{amount - current.outstanding:,} into {following.name}"
        )
    elif amount == current.outstanding:
        message = f"Payment completes {current.name}"
    else:
        message = f"Payment stays within {current.name}"

    return PaymentValidation(
        is_valid=True,
        can_pay=True,
        message=message,
        current_installment=current,
        next_installment=following,
        spills_into_next=spills,
    )


def calculate_payment_breakdown(ledger: StudentLedgerState, amount: int) -> list[PaymentBreakdownItem]:
    """
    Splits `amount` across installments in ascending order, skipping completed
    ones and filling each before moving to the next. This is the only place a
    payment split is decided.
    """
    breakdown: list[PaymentBreakdownItem] = []
    remaining = amount

    for installment in sorted(ledger.installment_progress, key=lambda ip: ip.order):
        if remaining <= 0:
            break
        if installment.is_completed:
            continue

        outstanding = installment.outstanding
        to_apply = min(remaining, outstanding)
        if to_apply <= 0:
            continue

        breakdown.append(PaymentBreakdownItem(
            installment_id=installment.installment_id,
            installment_name=installment.name,
            amount_applied=to_apply,
            previously_paid=installment.amount_paid,
            now_paid=installment.amount_paid + to_apply,
            will_complete=to_apply == outstanding,
        ))
        remaining -= to_apply

    return breakdown


def apply_breakdown(
    ledger: StudentLedgerState,
    breakdown: list[PaymentBreakdownItem],
    now: datetime,
) -> StudentLedgerState:
    """
    Returns a new ledger with the breakdown applied. An installment is
    unlocked once the installment before it is completed, which lets an
    overflow reach the next installment within the same payment.
    """
    applied = {item.installment_id: item.amount_applied for item in breakdown}

    updated: list[InstallmentProgress] = []
    for installment in sorted(ledger.installment_progress, key=lambda ip: ip.order):
        amount = applied.get(installment.installment_id, 0)
        if amount:
            now_paid = installment.amount_paid + amount
            completed = now_paid >= installment.amount_due
            installment = installment.model_copy(update={
                'amount_paid': now_paid,
                'status': InstallmentStatus.COMPLETED if completed else InstallmentStatus.PARTIAL,
                'completed_at': now if completed else None,
            })
        else:
            installment = installment.model_copy()
        updated.append(installment)

    for index, installment in enumerate(updated):
        if index == 0 or updated[index - 1].is_completed:
            if not installment.is_unlocked:
                updated[index] = installment.model_copy(update={'is_unlocked': True})

    total_applied = sum(applied.values())
    return ledger.model_copy(update={
        'installment_progress': updated,
        'amount_paid': ledger.amount_paid + total_applied,
        'last_payment_date': now if total_applied else ledger.last_payment_date,
    })


def bring_forward(ledger: StudentLedgerState, amount: int, now: datetime) -> StudentLedgerState:
    """
    Moves a signed amount carried from earlier terms into the ledger's
    current term and empties `carryover_balance`.

    A debt goes on the "Balance brought forward" installment, which sorts
    ahead of the term's own installments and is therefore paid first. A
    credit is allocated like a payment; whatever the term cannot absorb stays
    on the ledger as an overpayment.
    """
    if amount > 0:
        progress = [ip.model_copy() for ip in ledger.installment_progress]
        existing = next((ip for ip in progress if ip.is_brought_forward), None)
        if existing is not None:
            progress[progress.index(existing)] = existing.model_copy(update={
                'amount_due': existing.amount_due + amount,
                'status': InstallmentStatus.PARTIAL if existing.amount_paid else InstallmentStatus.NOT_STARTED,
                'is_unlocked': True,
                'completed_at': None,
            })
        else:
            deadline = min((ip.deadline for ip in progress), default=now.date())
            progress.append(InstallmentProgress(
                installment_id=uuid4(),
                order=BROUGHT_FORWARD_ORDER,
                name=BROUGHT_FORWARD_NAME,
                amount_due=amount,
                is_unlocked=True,
                deadline=deadline,
            ))
        return ledger.model_copy(update={
            'installment_progress': sorted(progress, key=lambda ip: ip.order),
            'total_fees': ledger.total_fees + amount,
            'carryover_balance': 0,
        })

    if amount < 0:
        credit = -amount
        breakdown = calculate_payment_breakdown(ledger, min(credit, ledger.balance))
        absorbed = sum(item.amount_applied for item in breakdown)
        updated = apply_breakdown(ledger, breakdown, now)
        return updated.model_copy(update={
            'amount_paid': updated.amount_paid + credit - absorbed,
            'carryover_balance': 0,
            'last_payment_date': ledger.last_payment_date,
        })

    return ledger.model_copy(update={'carryover_balance': 0})
