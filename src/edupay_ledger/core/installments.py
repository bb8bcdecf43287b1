'''
Installment plans: resolving a fee structure's rules into ordered amounts and
snapshotting them into a student's installment progress.
'''
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP

from ..common.exceptions import InvalidInstallmentPlanError
from ..common.logger import log
from ..models.enums import AcademicTerm, InstallmentStatus
from ..models.ledger import FeeStructure, InstallmentProgress, InstallmentRule

# Approximate term windows (month, day) for the default schedule
_TERM_WINDOWS = {
    AcademicTerm.TERM_1: ((2, 1), (4, 30)),
    AcademicTerm.TERM_2: ((5, 15), (8, 15)),
    AcademicTerm.TERM_3: ((9, 1), (12, 15)),
}


class InstallmentPlan:
    """
    The ordered installment rules of one fee structure, with every rule's
    amount resolved against the structure's total.

    A structure without rules is a single installment covering the whole fee.
    """
    def __init__(self, total_fees: int, rules: list[InstallmentRule], default_deadline: date | None = None):
        self.total_fees = total_fees
        self._rules = self._resolve(total_fees, rules, default_deadline)

    @classmethod
    def from_fee_structure(cls, fee_structure: FeeStructure, default_deadline: date | None = None) -> 'InstallmentPlan':
        return cls(fee_structure.total_amount, fee_structure.installment_rules, default_deadline)

    @property
    def rules(self) -> list[InstallmentRule]:
        return list(self._rules)

    @staticmethod
    def _resolve(total_fees: int, rules: list[InstallmentRule], default_deadline: date | None) -> list[InstallmentRule]:
        if not rules:
            if default_deadline is None:
                raise InvalidInstallmentPlanError("A fee structure without installment rules needs a default deadline.")
            return [InstallmentRule(
                order=1,
                name="Full Fees",
                amount=total_fees,
                deadline=default_deadline,
            )]

        ordered = sorted(rules, key=lambda r: r.order)
        orders = [r.order for r in ordered]
        if len(set(orders)) != len(orders):
            raise InvalidInstallmentPlanError(f"Installment orders must be unique, got {orders}.")

        all_percentage = all(r.percentage is not None for r in ordered)
        if all_percentage:
            total_pct = sum(r.percentage for r in ordered)
            if total_pct != Decimal(100):
                raise InvalidInstallmentPlanError(
                    f"Installment percentages must total 100% (currently {total_pct}%)."
                )

        resolved = []
        for rule in ordered:
            if rule.amount is not None:
                amount = rule.amount
            else:
                amount = int((Decimal(total_fees) * rule.percentage / 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
            resolved.append(rule.model_copy(update={'amount': amount, 'percentage': None}))

        # The last rule absorbs rounding so the plan sums to the fee total
        if all_percentage:
            drift = total_fees - sum(r.amount for r in resolved)
            if drift:
                last = resolved[-1]
                if last.amount + drift < 0:
                    raise InvalidInstallmentPlanError("Installment amounts exceed the fee total.")
                resolved[-1] = last.model_copy(update={'amount': last.amount + drift})

        planned = sum(r.amount for r in resolved)
        if planned != total_fees:
            raise InvalidInstallmentPlanError(
                f"Installment amounts total {planned:,} but the fee total is {total_fees:,}."
            )

        return resolved

    def snapshot_progress(self) -> list[InstallmentProgress]:
        """
        Fresh progress for a term: nothing paid, only the first installment unlocked.
        Later changes to the plan do not reach a snapshot already taken.
        """
        progress = [
            InstallmentProgress(
                installment_id=rule.id,
                order=rule.order,
                name=rule.name,
                amount_due=rule.amount,
                amount_paid=0,
                status=InstallmentStatus.NOT_STARTED,
                is_unlocked=index == 0,
                deadline=rule.deadline,
            )
            for index, rule in enumerate(self._rules)
        ]
        log.info(f"Snapshotted {len(progress)} installment(s) totalling {sum(p.amount_due for p in progress)}.")
        return progress


def default_installment_rules(term: AcademicTerm, year: int) -> list[InstallmentRule]:
    """
    The standard three-installment schedule (50% deposit, 30%, 20%) spread
    across a term's calendar window.
    """
    (start_month, start_day), (end_month, end_day) = _TERM_WINDOWS[term]
    start = date(year, start_month, start_day)
    end = date(year, end_month, end_day)
    span = (end - start).days

    return [
        InstallmentRule(order=1, name="First Installment (Deposit)", percentage=Decimal(50), deadline=start),
        InstallmentRule(order=2, name="Second Installment", percentage=Decimal(30), deadline=start + timedelta(days=int(span * 0.4))),
        InstallmentRule(order=3, name="Final Installment", percentage=Decimal(20), deadline=start + timedelta(days=int(span * 0.7))),
    ]
