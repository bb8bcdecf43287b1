'''
API endpoints for guardian payment promises.
'''
from datetime import date
from typing import Annotated, Any
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status

from ..models import promise as promise_models
from ..models.enums import PromisePriority, PromiseStatus
from ..services.promise_service import PromiseService

class PromisesAPI:
    """
    A class to encapsulate endpoints for payment promises.
    """
    def __init__(self):
        self.router = APIRouter(tags=["Promises"])
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/promises",
                self.create_promise,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=promise_models.PromiseWithStatus)
        self.router.add_api_route(
                "/promises",
                self.list_promises,
                methods=["GET"],
                response_model=list[promise_models.PromiseWithStatus])
        # Registered before /promises/{promise_id} so "summary" is not read as an id
        self.router.add_api_route(
                "/promises/summary",
                self.promise_summary,
                methods=["GET"],
                response_model=promise_models.PromiseSummary)
        self.router.add_api_route(
                "/promises/{promise_id}",
                self.get_promise,
                methods=["GET"],
                response_model=promise_models.PromiseWithStatus)
        self.router.add_api_route(
                "/promises/{promise_id}/payments",
                self.record_payment,
                methods=["POST"],
                response_model=promise_models.PromiseWithStatus)
        self.router.add_api_route(
                "/promises/{promise_id}/cancel",
                self.cancel_promise,
                methods=["POST"],
                response_model=promise_models.PromiseWithStatus)
        self.router.add_api_route(
                "/promises/{promise_id}/extend",
                self.extend_promise,
                methods=["POST"],
                response_model=promise_models.PromiseWithStatus)
        self.router.add_api_route(
                "/promises/{promise_id}/reminders",
                self.record_reminder,
                methods=["POST"],
                response_model=promise_models.PromiseWithStatus)
        self.router.add_api_route(
                "/students/{student_id}/promises",
                self.list_student_promises,
                methods=["GET"],
                response_model=list[promise_models.PromiseWithStatus])

    async def create_promise(
        self,
        data: promise_models.PromiseCreate,
        promise_service: Annotated[PromiseService, Depends(PromiseService)]
    ) -> Any:
        return await promise_service.create_promise(data)

    async def list_promises(
        self,
        school_id: UUID,
        promise_service: Annotated[PromiseService, Depends(PromiseService)],
        status: Annotated[list[PromiseStatus] | None, Query(description="Filter by recomputed status")] = None,
        priority: Annotated[list[PromisePriority] | None, Query(description="Filter by priority")] = None,
        class_name: Annotated[str | None, Query(description="Filter by class name")] = None,
        from_date: Annotated[date | None, Query(description="Earliest due date")] = None,
        to_date: Annotated[date | None, Query(description="Latest due date")] = None
    ) -> list[Any]:
        """
        Lists a school's promises, soonest due first.
        """
        filters = promise_models.PromiseFilters(
            status=status or [],
            priority=priority or [],
            class_name=class_name,
            from_date=from_date,
            to_date=to_date,
        )
        return await promise_service.list_school_promises(school_id, filters)

    async def promise_summary(
        self,
        school_id: UUID,
        promise_service: Annotated[PromiseService, Depends(PromiseService)]
    ) -> Any:
        return await promise_service.generate_promise_summary(school_id)

    async def get_promise(
        self,
        promise_id: UUID,
        promise_service: Annotated[PromiseService, Depends(PromiseService)]
    ) -> Any:
        return await promise_service.get_promise(promise_id)

    async def record_payment(
        self,
        promise_id: UUID,
        data: promise_models.PromisePaymentInput,
        promise_service: Annotated[PromiseService, Depends(PromiseService)]
    ) -> Any:
        """
        Counts a payment towards the promise. Repeating a payment id is a no-op.
        """
        return await promise_service.record_payment(promise_id, data.payment_id, data.amount)

    async def cancel_promise(
        self,
        promise_id: UUID,
        data: promise_models.PromiseCancelInput,
        promise_service: Annotated[PromiseService, Depends(PromiseService)]
    ) -> Any:
        return await promise_service.cancel_promise(promise_id, data.reason, data.cancelled_by)

    async def extend_promise(
        self,
        promise_id: UUID,
        data: promise_models.PromiseExtendInput,
        promise_service: Annotated[PromiseService, Depends(PromiseService)]
    ) -> Any:
        return await promise_service.extend_due_date(promise_id, data.new_due_date, data.reason, data.extended_by)

    async def record_reminder(
        self,
        promise_id: UUID,
        data: promise_models.PromiseReminderInput,
        promise_service: Annotated[PromiseService, Depends(PromiseService)]
    ) -> Any:
        return await promise_service.record_reminder_sent(promise_id, data.channel, data.sent_by)

    async def list_student_promises(
        self,
        student_id: UUID,
        promise_service: Annotated[PromiseService, Depends(PromiseService)]
    ) -> list[Any]:
        return await promise_service.list_student_promises(student_id)

# Instantiate the class and export its router
promises_api = PromisesAPI()
router = promises_api.router
