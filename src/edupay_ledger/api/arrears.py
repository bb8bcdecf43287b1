'''
API endpoints for the arrears queue and bulk reminders.
'''
from typing import Annotated, Any
from uuid import UUID
from fastapi import APIRouter, Depends, Query

from ..models import arrears as arrears_models
from ..models.enums import SeverityLevel
from ..services.reminder_service import ReminderService

class ArrearsAPI:
    """
    A class to encapsulate endpoints for arrears and reminders.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/arrears",
            tags=["Arrears"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "",
                self.list_arrears,
                methods=["GET"],
                response_model=list[arrears_models.ArrearsStudent])
        self.router.add_api_route(
                "/stats",
                self.arrears_stats,
                methods=["GET"],
                response_model=arrears_models.ArrearsStats)
        self.router.add_api_route(
                "/reminders",
                self.send_reminders,
                methods=["POST"],
                response_model=arrears_models.BulkReminderResult)

    async def list_arrears(
        self,
        school_id: UUID,
        reminder_service: Annotated[ReminderService, Depends(ReminderService)],
        severity: Annotated[SeverityLevel | None, Query(description="Optional severity filter")] = None
    ) -> list[Any]:
        """
        Active students who owe money, most severe first.
        """
        return await reminder_service.list_arrears(school_id, severity)

    async def arrears_stats(
        self,
        school_id: UUID,
        reminder_service: Annotated[ReminderService, Depends(ReminderService)]
    ) -> Any:
        return await reminder_service.arrears_stats(school_id)

    async def send_reminders(
        self,
        data: arrears_models.BulkReminderRequest,
        reminder_service: Annotated[ReminderService, Depends(ReminderService)]
    ) -> Any:
        """
        Sends arrears notices to the guardians of the given students.
        """
        return await reminder_service.send_bulk_reminders(
            data.student_ids,
            batch_size=data.batch_size,
            delay=data.delay_seconds,
        )

# Instantiate the class and export its router
arrears_api = ArrearsAPI()
router = arrears_api.router
