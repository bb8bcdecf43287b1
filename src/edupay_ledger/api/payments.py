'''
API endpoints for validating and recording fee payments.
'''
from typing import Annotated, Any
from uuid import UUID
from fastapi import APIRouter, Depends, Response, status

from ..models import ledger as ledger_models
from ..services.payment_service import PaymentService

class PaymentsAPI:
    """
    A class to encapsulate endpoints for payments and term starts.
    """
    def __init__(self):
        self.router = APIRouter(tags=["Payments"])
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/payments/validate",
                self.validate_payment,
                methods=["POST"],
                response_model=ledger_models.PaymentValidation)
        self.router.add_api_route(
                "/payments/breakdown",
                self.payment_breakdown,
                methods=["POST"],
                response_model=list[ledger_models.PaymentBreakdownItem])
        self.router.add_api_route(
                "/payments",
                self.record_payment,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=ledger_models.PaymentRecordResult)
        self.router.add_api_route(
                "/students/{student_id}/start-term",
                self.start_term,
                methods=["POST"],
                response_model=ledger_models.StudentLedgerState)

    async def validate_payment(
        self,
        data: ledger_models.PaymentAmountInput,
        payment_service: Annotated[PaymentService, Depends(PaymentService)]
    ) -> Any:
        """
        Checks whether an amount can be paid now. Never records anything.
        """
        return await payment_service.validate_installment_payment(data.student_id, data.amount)

    async def payment_breakdown(
        self,
        data: ledger_models.PaymentAmountInput,
        payment_service: Annotated[PaymentService, Depends(PaymentService)]
    ) -> list[Any]:
        """
        Previews how an amount would be split across installments.
        """
        return await payment_service.calculate_breakdown(data.student_id, data.amount)

    async def record_payment(
        self,
        data: ledger_models.PaymentCreate,
        response: Response,
        payment_service: Annotated[PaymentService, Depends(PaymentService)]
    ) -> Any:
        """
        Records a payment. A rejected payment comes back with success=false
        and a 422 status; nothing is stored.
        """
        result = await payment_service.record_payment(
            data.student_id,
            data.amount,
            recorded_by=data.recorded_by,
            reference=data.reference,
        )
        if not result.success:
            response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        return result

    async def start_term(
        self,
        student_id: UUID,
        data: ledger_models.StartTermInput,
        payment_service: Annotated[PaymentService, Depends(PaymentService)]
    ) -> Any:
        """
        Snapshots the student's installments for a new term.
        """
        return await payment_service.start_term(student_id, data.term_id)

# Instantiate the class and export its router
payments_api = PaymentsAPI()
router = payments_api.router
