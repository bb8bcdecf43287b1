"""
Tests for the CarryoverService.
"""

import pytest

from edupay_ledger.common.exceptions import CarryoverStateError
from edupay_ledger.core.allocation import apply_breakdown, bring_forward, calculate_payment_breakdown
from edupay_ledger.models.carryover import BalanceAdjustmentCreate, CarryoverOptions
from edupay_ledger.models.enums import AdjustmentType, CarryoverStatus, CarryoverType, EnrollmentStatus
from edupay_ledger.models.ledger import BROUGHT_FORWARD_NAME
from edupay_ledger.services.carryover_service import CarryoverService
from edupay_ledger.services.payment_service import PaymentService

from tests.constants import (
    NOW,
    TEST_ACTOR,
    TEST_SCHOOL_ID,
    TEST_STUDENT_B_ID,
    TEST_STUDENT_C_ID,
    TEST_STUDENT_D_ID,
    TEST_STUDENT_ID,
    TEST_TERM_ID,
)
from tests.factories import TERM_1_2024, TERM_2_2024, TERM_3_2023, make_carryover, make_ledger


def options(**overrides) -> CarryoverOptions:
    return CarryoverOptions(school_id=TEST_SCHOOL_ID, from_period=TERM_1_2024, to_period=TERM_2_2024, **overrides)


@pytest.mark.anyio
class TestProcessTermCarryovers:
    """Test suite for the term-end carryover sweep."""

    async def test_debits_and_credits(self, carryover_service: CarryoverService):
        print("\n--- Testing a sweep over one unpaid, one partial and one overpaid student ---")
        result = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)

        assert result.total_students_processed == 3
        assert result.students_with_debits == 2
        assert result.students_with_credits == 1
        assert result.students_cleared == 0
        assert result.total_debit_carryover == 1_500_000 + 800_000
        assert result.total_credit_carryover == 100_000
        assert result.net_carryover == 2_200_000
        assert result.errors == []

        credit = next(c for c in result.carryovers if c.student_id == TEST_STUDENT_C_ID)
        assert credit.carryover_type == CarryoverType.CREDIT
        assert credit.from_term_balance == -100_000
        assert credit.status == CarryoverStatus.PENDING
        print(f"--- Class breakdown: {[s.model_dump() for s in result.class_breakdown]} ---")

    async def test_class_breakdown_sorted_by_class_and_stream(self, carryover_service: CarryoverService):
        result = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)
        keys = [(s.class_name, s.stream_name) for s in result.class_breakdown]
        assert keys == [("S.2", "East"), ("S.2", "West")]
        east = result.class_breakdown[0]
        assert (east.total_students, east.students_with_debits, east.net_balance) == (2, 2, 2_300_000)

    async def test_excluding_credits_clears_overpaid_students(self, carryover_service: CarryoverService):
        result = await carryover_service.process_term_carryovers(options(include_credits=False), TEST_ACTOR, now=NOW)
        assert result.students_with_credits == 0
        assert result.students_cleared == 1

    async def test_min_balance_and_filters(self, carryover_service: CarryoverService):
        result = await carryover_service.process_term_carryovers(
            options(min_balance=1_000_000, stream_filter=["East"]), TEST_ACTOR, now=NOW,
        )
        assert result.total_students_processed == 2
        assert result.students_with_debits == 1
        assert result.students_cleared == 1

    async def test_inactive_students_are_skipped(self, carryover_service: CarryoverService, student_repo):
        student_repo.rows[TEST_STUDENT_D_ID] = make_ledger(TEST_STUDENT_D_ID, enrollment_status=EnrollmentStatus.GRADUATED)
        result = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)
        assert result.total_students_processed == 3
        assert TEST_STUDENT_D_ID not in {c.student_id for c in result.carryovers}

    async def test_rerun_does_not_duplicate(self, carryover_service: CarryoverService, carryover_repo):
        print("\n--- Testing the sweep is idempotent ---")
        first = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)
        second = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)

        assert len(carryover_repo.rows) == 3
        assert {c.id for c in first.carryovers} == {c.id for c in second.carryovers}

    async def test_rerun_refreshes_pending_and_keeps_adjustments(self, carryover_service: CarryoverService, carryover_repo, student_repo):
        first = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)
        record = next(c for c in first.carryovers if c.student_id == TEST_STUDENT_ID)
        await carryover_service.apply_adjustment(record.id, BalanceAdjustmentCreate(
            type=AdjustmentType.DISCOUNT, amount=100_000, reason="Sibling discount", approved_by=TEST_ACTOR,
        ), now=NOW)

        ledger = await student_repo.get(TEST_STUDENT_ID)
        await student_repo.save(ledger.model_copy(update={'amount_paid': 500_000}), expected_version=ledger.version)

        await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)
        refreshed = carryover_repo.rows[record.id]
        assert refreshed.original_amount == 1_000_000
        assert len(refreshed.adjustments) == 1
        assert refreshed.adjusted_amount == 900_000

    async def test_terminal_records_are_left_untouched(self, carryover_service: CarryoverService, carryover_repo):
        applied = make_carryover(TEST_STUDENT_ID, amount=42_000, status=CarryoverStatus.APPLIED)
        carryover_repo.rows[applied.id] = applied

        result = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)

        assert carryover_repo.rows[applied.id] == applied
        reported = next(c for c in result.carryovers if c.student_id == TEST_STUDENT_ID)
        assert reported.adjusted_amount == 42_000

    async def test_auto_apply_seeds_ledger_once(self, carryover_service: CarryoverService, student_repo):
        await carryover_service.process_term_carryovers(options(auto_apply=True), TEST_ACTOR, now=NOW)
        await carryover_service.process_term_carryovers(options(auto_apply=True), TEST_ACTOR, now=NOW)

        assert (await student_repo.get(TEST_STUDENT_ID)).carryover_balance == 1_500_000
        assert (await student_repo.get(TEST_STUDENT_B_ID)).carryover_balance == 800_000
        assert (await student_repo.get(TEST_STUDENT_C_ID)).carryover_balance == -100_000

    async def test_failed_record_save_leaves_ledger_untouched(self, carryover_service: CarryoverService, carryover_repo, student_repo, mocker):
        print("\n--- Testing an auto-apply sweep that fails for one student and is re-run ---")
        original_save = carryover_repo.save
        failures = []

        async def save_failing_once(carryover):
            if carryover.student_id == TEST_STUDENT_B_ID and not failures:
                failures.append(carryover.id)
                raise RuntimeError("write timed out")
            return await original_save(carryover)

        mocker.patch.object(carryover_repo, 'save', side_effect=save_failing_once)

        first = await carryover_service.process_term_carryovers(options(auto_apply=True), TEST_ACTOR, now=NOW)
        assert [e.details for e in first.errors] == ["write timed out"]
        assert (await student_repo.get(TEST_STUDENT_B_ID)).carryover_balance == 0

        second = await carryover_service.process_term_carryovers(options(auto_apply=True), TEST_ACTOR, now=NOW)
        assert second.errors == []
        assert (await student_repo.get(TEST_STUDENT_B_ID)).carryover_balance == 800_000

        records = [c for c in carryover_repo.rows.values() if c.student_id == TEST_STUDENT_B_ID]
        assert [(c.status, c.adjusted_amount) for c in records] == [(CarryoverStatus.APPLIED, 800_000)]

    async def test_failed_ledger_save_rolls_back_the_record(
        self, carryover_service: CarryoverService, carryover_repo, student_repo, transaction_scope, mocker,
    ):
        original_save = student_repo.save
        failures = []

        async def save_failing_once(ledger, expected_version):
            if ledger.student_id == TEST_STUDENT_B_ID and not failures:
                failures.append(ledger.student_id)
                raise RuntimeError("connection reset")
            return await original_save(ledger, expected_version)

        mocker.patch.object(student_repo, 'save', side_effect=save_failing_once)

        first = await carryover_service.process_term_carryovers(options(auto_apply=True), TEST_ACTOR, now=NOW)
        assert len(first.errors) == 1
        assert transaction_scope.rollbacks == 1
        assert TEST_STUDENT_B_ID not in {c.student_id for c in carryover_repo.rows.values()}
        assert (await student_repo.get(TEST_STUDENT_ID)).carryover_balance == 1_500_000

        await carryover_service.process_term_carryovers(options(auto_apply=True), TEST_ACTOR, now=NOW)
        assert (await student_repo.get(TEST_STUDENT_B_ID)).carryover_balance == 800_000
        assert len(carryover_repo.rows) == 3

    async def test_rerun_zeroes_pending_record_of_cleared_student(self, carryover_service: CarryoverService, carryover_repo, student_repo):
        first = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)
        record = next(c for c in first.carryovers if c.student_id == TEST_STUDENT_B_ID)

        ledger = await student_repo.get(TEST_STUDENT_B_ID)
        await student_repo.save(ledger.model_copy(update={'amount_paid': 1_500_000}), expected_version=ledger.version)

        second = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)
        assert second.students_cleared == 1
        assert TEST_STUDENT_B_ID not in {c.student_id for c in second.carryovers}

        cleared = carryover_repo.rows[record.id]
        assert cleared.status == CarryoverStatus.PENDING
        assert (cleared.original_amount, cleared.adjusted_amount) == (0, 0)
        assert cleared.from_term_balance == 0

        balance = await carryover_service.get_student_cumulative_balance(TEST_STUDENT_B_ID, TERM_2_2024)
        assert balance.arrears_count == 0

    async def test_one_failing_student_does_not_abort_the_batch(self, carryover_service: CarryoverService, carryover_repo, mocker):
        original_save = carryover_repo.save

        async def flaky_save(carryover):
            if carryover.student_id == TEST_STUDENT_B_ID:
                raise RuntimeError("write timed out")
            return await original_save(carryover)

        mocker.patch.object(carryover_repo, 'save', side_effect=flaky_save)

        result = await carryover_service.process_term_carryovers(options(), TEST_ACTOR, now=NOW)

        assert result.total_students_processed == 3
        assert len(result.errors) == 1
        assert result.errors[0].student_id == TEST_STUDENT_B_ID
        assert result.errors[0].details == "write timed out"
        assert len(result.carryovers) == 2


@pytest.mark.anyio
class TestCarryoverActions:
    """Test suite for apply, adjust and waive."""

    async def test_apply_seeds_carryover_balance(self, carryover_service: CarryoverService, carryover_repo, student_repo):
        pending = make_carryover(TEST_STUDENT_ID, amount=300_000)
        carryover_repo.rows[pending.id] = pending

        applied = await carryover_service.apply_carryover(pending.id, TEST_ACTOR, now=NOW)

        assert applied.status == CarryoverStatus.APPLIED
        assert applied.applied_by == TEST_ACTOR
        assert (await student_repo.get(TEST_STUDENT_ID)).carryover_balance == 300_000

    async def test_adjustments_reduce_and_floor_at_zero(self, carryover_service: CarryoverService, carryover_repo):
        pending = make_carryover(TEST_STUDENT_ID, amount=300_000)
        carryover_repo.rows[pending.id] = pending

        penalty = BalanceAdjustmentCreate(type=AdjustmentType.PENALTY, amount=-50_000, reason="Late", approved_by=TEST_ACTOR)
        adjusted = await carryover_service.apply_adjustment(pending.id, penalty, now=NOW)
        assert adjusted.adjusted_amount == 350_000

        write_off = BalanceAdjustmentCreate(type=AdjustmentType.WRITE_OFF, amount=1_000_000, reason="Bursary", approved_by=TEST_ACTOR)
        adjusted = await carryover_service.apply_adjustment(pending.id, write_off, now=NOW)
        assert adjusted.adjusted_amount == 0
        assert adjusted.original_amount == 300_000

    async def test_waive_then_apply_is_refused(self, carryover_service: CarryoverService, carryover_repo):
        print("\n--- Testing a waived carryover cannot be applied ---")
        pending = make_carryover(TEST_STUDENT_ID, amount=300_000)
        carryover_repo.rows[pending.id] = pending

        waived = await carryover_service.waive_carryover(pending.id, "Hardship", TEST_ACTOR, now=NOW)
        assert waived.status == CarryoverStatus.WAIVED
        assert waived.adjusted_amount == 0
        assert waived.adjustments[-1].type == AdjustmentType.WAIVER
        assert waived.adjustments[-1].amount == 300_000

        with pytest.raises(CarryoverStateError):
            await carryover_service.apply_carryover(pending.id, TEST_ACTOR, now=NOW)
        with pytest.raises(CarryoverStateError):
            await carryover_service.waive_carryover(pending.id, "Again", TEST_ACTOR, now=NOW)


@pytest.mark.anyio
class TestCarriedBalanceInNewTerm:
    """Test suite for carried balances reaching the next term's installments."""

    async def test_carried_debt_is_payable_after_term_start(
        self, carryover_service: CarryoverService, payment_service: PaymentService, student_repo,
    ):
        print("\n--- Testing a term-one debt is paid together with term-two fees ---")
        await carryover_service.process_term_carryovers(options(auto_apply=True), TEST_ACTOR, now=NOW)
        ledger = await payment_service.start_term(TEST_STUDENT_B_ID, TEST_TERM_ID, now=NOW)

        assert ledger.carryover_balance == 0
        assert ledger.total_fees == 1_500_000 + 800_000
        assert ledger.installment_progress[0].name == BROUGHT_FORWARD_NAME

        validation = await payment_service.validate_installment_payment(TEST_STUDENT_B_ID, 2_300_000)
        assert validation.is_valid is True, validation.message

        result = await payment_service.record_payment(TEST_STUDENT_B_ID, 2_300_000, recorded_by=TEST_ACTOR, now=NOW)
        assert result.success is True
        assert [a.amount_applied for a in result.payment.allocations] == [800_000, 750_000, 450_000, 300_000]
        assert result.ledger.balance == 0

    async def test_carried_credit_reduces_the_new_term(
        self, carryover_service: CarryoverService, payment_service: PaymentService,
    ):
        await carryover_service.process_term_carryovers(options(auto_apply=True), TEST_ACTOR, now=NOW)
        ledger = await payment_service.start_term(TEST_STUDENT_C_ID, TEST_TERM_ID, now=NOW)

        assert ledger.amount_paid == 100_000
        assert ledger.balance == 1_400_000
        assert ledger.installment_progress[0].amount_paid == 100_000

    async def test_applying_after_term_start_adds_to_installments(
        self, carryover_service: CarryoverService, payment_service: PaymentService, carryover_repo,
    ):
        await payment_service.start_term(TEST_STUDENT_ID, TEST_TERM_ID, now=NOW)
        pending = make_carryover(TEST_STUDENT_ID, amount=300_000)
        carryover_repo.rows[pending.id] = pending

        await carryover_service.apply_carryover(pending.id, TEST_ACTOR, now=NOW)
        validation = await payment_service.validate_installment_payment(TEST_STUDENT_ID, 1_800_000)
        assert validation.is_valid is True
        assert validation.current_installment.name == BROUGHT_FORWARD_NAME

        balance = await carryover_service.get_student_cumulative_balance(TEST_STUDENT_ID, TERM_2_2024)
        assert balance.current_term_balance == 1_500_000
        assert balance.total_outstanding == 1_800_000
        assert balance.arrears_count == 1


@pytest.mark.anyio
class TestBalancesAndReports:

    async def test_cumulative_balance(self, carryover_service: CarryoverService, carryover_repo, student_repo):
        # Term two started with last term's 300,000 brought forward
        student_repo.rows[TEST_STUDENT_ID] = bring_forward(make_ledger(TEST_STUDENT_ID, term_id=TEST_TERM_ID), 300_000, NOW)
        for carryover in (
            make_carryover(TEST_STUDENT_ID, amount=300_000, status=CarryoverStatus.APPLIED),
            make_carryover(TEST_STUDENT_ID, amount=200_000, from_period=TERM_3_2023, to_period=TERM_1_2024),
            make_carryover(TEST_STUDENT_ID, amount=50_000, carryover_type=CarryoverType.CREDIT,
                           from_period=TERM_3_2023, to_period=TERM_1_2024, status=CarryoverStatus.APPLIED),
            make_carryover(TEST_STUDENT_ID, amount=999_000, status=CarryoverStatus.WAIVED,
                           from_period=TERM_3_2023, to_period=TERM_1_2024),
        ):
            carryover_repo.rows[carryover.id] = carryover

        balance = await carryover_service.get_student_cumulative_balance(TEST_STUDENT_ID, TERM_2_2024)

        # The applied debit is counted once, through the brought-forward installment
        assert balance.current_term_fees == 1_800_000
        assert balance.current_term_balance == 1_500_000
        assert balance.carryover_balance == 500_000
        assert balance.carryover_credits == 0
        assert balance.total_outstanding == 2_000_000
        assert balance.arrears_count == 2
        assert balance.oldest_arrears == TERM_3_2023
        assert balance.has_arrears is True
        assert len(balance.carryover_history) == 4

    async def test_pending_records_are_not_counted_while_the_source_term_is_open(
        self, carryover_service: CarryoverService, carryover_repo, student_repo,
    ):
        student_repo.rows[TEST_STUDENT_ID] = make_ledger(TEST_STUDENT_ID, term_id=TERM_1_2024.term_id)
        pending = make_carryover(TEST_STUDENT_ID, amount=1_500_000)
        carryover_repo.rows[pending.id] = pending

        balance = await carryover_service.get_student_cumulative_balance(TEST_STUDENT_ID, TERM_1_2024)
        assert balance.total_outstanding == 1_500_000
        assert balance.arrears_count == 0

    async def test_arrears_report_aging_and_sorting(self, carryover_service: CarryoverService, carryover_repo, student_repo):
        print("\n--- Testing the cross-term arrears report ---")
        old_debt = make_carryover(TEST_STUDENT_C_ID, amount=400_000, from_period=TERM_3_2023, to_period=TERM_1_2024)
        carryover_repo.rows[old_debt.id] = old_debt

        report = await carryover_service.generate_arrears_report(TEST_SCHOOL_ID, TERM_2_2024, TEST_ACTOR, now=NOW)

        # Student C overpaid this term, so only the old debt is outstanding
        assert report.total_students_with_arrears == 3
        assert report.total_arrears_amount == 1_500_000 + 800_000 + 400_000
        assert report.average_arrears_per_student == 900_000
        assert [s.total_outstanding for s in report.student_arrears] == [1_500_000, 800_000, 400_000]

        student_c = report.student_arrears[-1]
        assert student_c.arrears_age == 2
        assert student_c.previous_terms_arrears[0].period == TERM_3_2023

        buckets = {b.label: b for b in report.arrears_aging}
        assert buckets["Current Term"].student_count == 2
        assert buckets["2 Terms Old"].student_count == 1
        assert buckets["2 Terms Old"].total_amount == 400_000
        assert sum(b.percentage for b in report.arrears_aging) == pytest.approx(100.0, abs=0.05)
        assert [c.stream_name for c in report.arrears_by_class] == ["East", "West"]

    async def test_arrears_report_reads_brought_forward_remainder(self, carryover_service: CarryoverService, carryover_repo, student_repo):
        ledger = bring_forward(make_ledger(TEST_STUDENT_ID, term_id=TEST_TERM_ID), 300_000, NOW)
        student_repo.rows[TEST_STUDENT_ID] = apply_breakdown(ledger, calculate_payment_breakdown(ledger, 100_000), NOW)
        applied = make_carryover(TEST_STUDENT_ID, amount=300_000, status=CarryoverStatus.APPLIED)
        carryover_repo.rows[applied.id] = applied

        report = await carryover_service.generate_arrears_report(TEST_SCHOOL_ID, TERM_2_2024, TEST_ACTOR, now=NOW)

        student_a = next(s for s in report.student_arrears if s.student_id == TEST_STUDENT_ID)
        assert student_a.current_term_balance == 1_500_000
        assert [(p.period, p.current_balance) for p in student_a.previous_terms_arrears] == [(TERM_1_2024, 200_000)]
        assert student_a.total_outstanding == 1_700_000
        assert student_a.arrears_age == 1
