'''
Pytest configuration for the ledger engine.

This file sets up fixtures for:
1. Forcing the application into TEST_MODE before any app code is imported.
2. In-memory repositories seeded with a small school.
3. Instances of all service classes, pre-injected with those repositories.
4. A FastAPI TestClient whose repository dependencies point at the same fakes.
'''

import os

# Must be set before the settings object is created
os.environ["TEST_MODE"] = "True"

import pytest
from unittest.mock import AsyncMock

# --- FastAPI & Testing Imports ---
from fastapi.testclient import TestClient

# --- Constant Imports ----
from tests.constants import (
    TEST_CLASS_S2_ID,
    TEST_SCHOOL_ID,
    TEST_STUDENT_B_ID,
    TEST_STUDENT_C_ID,
    TEST_STUDENT_ID,
    TEST_TERM_ID,
)
from tests.factories import make_ledger
from tests.fakes import (
    FakeCarryoverRepository,
    FakeFeeStructureRepository,
    FakePaymentRepository,
    FakePromiseRepository,
    FakeStudentRepository,
    FakeTransactionScope,
)

# --- Application Imports ---
from edupay_ledger.main import app
from edupay_ledger.common.config import settings
from edupay_ledger.database.repositories import (
    SqlCarryoverRepository,
    SqlFeeStructureRepository,
    SqlPaymentRepository,
    SqlPromiseRepository,
    SqlStudentRepository,
    SqlTransactionScope,
)
from edupay_ledger.models.enums import AcademicTerm
from edupay_ledger.core.installments import default_installment_rules
from edupay_ledger.models.ledger import FeeStructure
from edupay_ledger.notifications.senders import get_notification_sender
from edupay_ledger.services.carryover_service import CarryoverService
from edupay_ledger.services.payment_service import PaymentService
from edupay_ledger.services.promise_service import PromiseService
from edupay_ledger.services.reminder_service import ReminderService


@pytest.fixture(scope="session")
def anyio_backend():
    """
    Override the default 'anyio_backend' fixture.
    1. Forces the backend to 'asyncio' (solves 'trio' error).
    2. Promotes the scope to 'session' (solves 'ScopeMismatch').
    """
    return "asyncio"


# --- 1. REPOSITORY FIXTURES ---

@pytest.fixture(scope="function")
def student_repo() -> FakeStudentRepository:
    """
    Three S.2 students: one with nothing paid, one partly paid and one who
    overpaid by 100,000.
    """
    return FakeStudentRepository([
        make_ledger(TEST_STUDENT_ID),
        make_ledger(TEST_STUDENT_B_ID, paid=700_000, student_name="Ochieng Peter", guardian_phone="+256700000002"),
        make_ledger(
            TEST_STUDENT_C_ID,
            paid=1_500_000,
            student_name="Auma Grace",
            guardian_phone="+256700000003",
            stream_name="West",
        ).model_copy(update={'amount_paid': 1_600_000}),
    ])

@pytest.fixture(scope="function")
def payment_repo() -> FakePaymentRepository:
    return FakePaymentRepository()

@pytest.fixture(scope="function")
def fee_structure_repo() -> FakeFeeStructureRepository:
    return FakeFeeStructureRepository([
        FeeStructure(
            school_id=TEST_SCHOOL_ID,
            class_id=TEST_CLASS_S2_ID,
            term_id=TEST_TERM_ID,
            name="S.2 Term II 2024",
            total_amount=1_500_000,
            installment_rules=default_installment_rules(AcademicTerm.TERM_2, 2024),
        ),
    ])

@pytest.fixture(scope="function")
def carryover_repo() -> FakeCarryoverRepository:
    return FakeCarryoverRepository()

@pytest.fixture(scope="function")
def promise_repo() -> FakePromiseRepository:
    return FakePromiseRepository()

@pytest.fixture(scope="function")
def transaction_scope(student_repo, carryover_repo) -> FakeTransactionScope:
    return FakeTransactionScope(student_repo, carryover_repo)

@pytest.fixture(scope="function")
def mock_sender() -> AsyncMock:
    """A notification sender that accepts every message."""
    sender = AsyncMock()
    sender.send = AsyncMock(return_value=True)
    return sender


# --- 2. SERVICE FIXTURES ---

@pytest.fixture(scope="function")
def payment_service(student_repo, payment_repo, fee_structure_repo) -> PaymentService:
    return PaymentService(students=student_repo, payments=payment_repo, fee_structures=fee_structure_repo)

@pytest.fixture(scope="function")
def carryover_service(student_repo, carryover_repo, transaction_scope) -> CarryoverService:
    return CarryoverService(students=student_repo, carryovers=carryover_repo, transactions=transaction_scope)

@pytest.fixture(scope="function")
def promise_service(promise_repo, student_repo) -> PromiseService:
    return PromiseService(promises=promise_repo, students=student_repo)

@pytest.fixture(scope="function")
def reminder_service(student_repo, mock_sender) -> ReminderService:
    return ReminderService(students=student_repo, sender=mock_sender)


# --- 3. API CLIENT ---

@pytest.fixture(scope="function")
def client(
    student_repo,
    payment_repo,
    fee_structure_repo,
    carryover_repo,
    promise_repo,
    transaction_scope,
    mock_sender,
) -> TestClient:
    """
    A TestClient whose repositories are the in-memory fakes above, so
    endpoint tests and service tests see the same data.

    The app's lifespan still runs; creating the async engine does not open
    a connection, so no database is needed.
    """
    assert settings.TEST_MODE is True, \
        "TEST_MODE was not set to True! Check your .env file or environment."

    app.dependency_overrides[SqlStudentRepository] = lambda: student_repo
    app.dependency_overrides[SqlPaymentRepository] = lambda: payment_repo
    app.dependency_overrides[SqlFeeStructureRepository] = lambda: fee_structure_repo
    app.dependency_overrides[SqlCarryoverRepository] = lambda: carryover_repo
    app.dependency_overrides[SqlPromiseRepository] = lambda: promise_repo
    app.dependency_overrides[SqlTransactionScope] = lambda: transaction_scope
    app.dependency_overrides[get_notification_sender] = lambda: mock_sender

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
