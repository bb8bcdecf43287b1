import pytest
from fastapi.testclient import TestClient

from edupay_ledger.models import carryover as carryover_models
from edupay_ledger.models.enums import CarryoverStatus

from tests.constants import TEST_ACTOR, TEST_CARRYOVER_ID, TEST_SCHOOL_ID, TEST_STUDENT_ID
from tests.factories import make_carryover

PROCESS_BODY = {
    "school_id": str(TEST_SCHOOL_ID),
    "from_period": {"year": 2024, "term": "term_1"},
    "to_period": {"year": 2024, "term": "term_2"},
    "processed_by": TEST_ACTOR,
}


@pytest.fixture
def pending_carryover(carryover_repo):
    carryover = make_carryover(TEST_STUDENT_ID, amount=300_000, id=TEST_CARRYOVER_ID)
    carryover_repo.rows[carryover.id] = carryover
    return carryover


@pytest.mark.anyio
class TestCarryoversAPI:
    """Test class for the carryover endpoints."""

    async def test_process_and_list(self, client: TestClient):
        print("\n--- Testing POST /carryovers/process ---")
        response = client.post("/carryovers/process", json=PROCESS_BODY)

        assert response.status_code == 200, response.json()
        result = carryover_models.CarryoverProcessingResult(**response.json())
        assert result.total_students_processed == 3
        assert result.net_carryover == 2_200_000

        listed = client.get("/carryovers", params={"school_id": str(TEST_SCHOOL_ID), "to_year": 2024, "to_term": "term_2"})
        assert listed.status_code == 200
        assert len(listed.json()) == 3

        elsewhere = client.get("/carryovers", params={"school_id": str(TEST_SCHOOL_ID), "to_year": 2024, "to_term": "term_3"})
        assert elsewhere.json() == []

    async def test_process_twice_keeps_one_record_per_student(self, client: TestClient, carryover_repo):
        client.post("/carryovers/process", json=PROCESS_BODY)
        client.post("/carryovers/process", json=PROCESS_BODY)
        assert len(carryover_repo.rows) == 3

    async def test_adjust_then_apply(self, client: TestClient, pending_carryover, student_repo):
        response = client.post(f"/carryovers/{TEST_CARRYOVER_ID}/adjustments", json={
            "type": "discount",
            "amount": 100_000,
            "reason": "Sibling discount",
            "approved_by": TEST_ACTOR,
        })
        assert response.status_code == 201, response.json()
        assert response.json()["adjusted_amount"] == 200_000

        response = client.post(f"/carryovers/{TEST_CARRYOVER_ID}/apply", json={"applied_by": TEST_ACTOR})
        assert response.status_code == 200, response.json()
        assert response.json()["status"] == CarryoverStatus.APPLIED.value
        assert student_repo.rows[TEST_STUDENT_ID].carryover_balance == 200_000

    async def test_waived_carryover_cannot_be_applied(self, client: TestClient, pending_carryover):
        response = client.post(f"/carryovers/{TEST_CARRYOVER_ID}/waive", json={"reason": "Hardship", "waived_by": TEST_ACTOR})
        assert response.status_code == 200, response.json()
        assert response.json()["adjusted_amount"] == 0

        response = client.post(f"/carryovers/{TEST_CARRYOVER_ID}/apply", json={"applied_by": TEST_ACTOR})
        assert response.status_code == 409
        assert "waived" in response.json()["detail"]

    async def test_unknown_carryover_is_404(self, client: TestClient):
        response = client.post(f"/carryovers/{TEST_CARRYOVER_ID}/apply", json={"applied_by": TEST_ACTOR})
        assert response.status_code == 404

    async def test_cumulative_balance(self, client: TestClient, pending_carryover):
        response = client.get(f"/students/{TEST_STUDENT_ID}/cumulative-balance", params={"year": 2024, "term": "term_2"})

        assert response.status_code == 200, response.json()
        balance = carryover_models.StudentCumulativeBalance(**response.json())
        assert balance.total_outstanding == 1_800_000
        assert balance.arrears_count == 1

    async def test_arrears_report(self, client: TestClient, pending_carryover):
        response = client.get("/carryovers/arrears-report", params={
            "school_id": str(TEST_SCHOOL_ID), "year": 2024, "term": "term_2", "generated_by": TEST_ACTOR,
        })

        assert response.status_code == 200, response.json()
        report = carryover_models.ArrearsReport(**response.json())
        assert report.total_students_with_arrears == 2
        assert report.total_arrears_amount == 1_800_000 + 800_000
        assert [b.label for b in report.arrears_aging][0] == "Current Term"
