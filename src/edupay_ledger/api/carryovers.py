'''
API endpoints for term carryovers and cross-term arrears.
'''
from typing import Annotated, Any
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status

from ..models import carryover as carryover_models
from ..models.enums import AcademicTerm
from ..services.carryover_service import CarryoverService

class CarryoversAPI:
    """
    A class to encapsulate endpoints for term balance carryovers.
    """
    def __init__(self):
        self.router = APIRouter(tags=["Carryovers"])
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/carryovers/process",
                self.process_carryovers,
                methods=["POST"],
                response_model=carryover_models.CarryoverProcessingResult)
        self.router.add_api_route(
                "/carryovers",
                self.list_carryovers,
                methods=["GET"],
                response_model=list[carryover_models.TermBalanceCarryover])
        self.router.add_api_route(
                "/carryovers/arrears-report",
                self.arrears_report,
                methods=["GET"],
                response_model=carryover_models.ArrearsReport)
        self.router.add_api_route(
                "/carryovers/{carryover_id}/apply",
                self.apply_carryover,
                methods=["POST"],
                response_model=carryover_models.TermBalanceCarryover)
        self.router.add_api_route(
                "/carryovers/{carryover_id}/adjustments",
                self.add_adjustment,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=carryover_models.TermBalanceCarryover)
        self.router.add_api_route(
                "/carryovers/{carryover_id}/waive",
                self.waive_carryover,
                methods=["POST"],
                response_model=carryover_models.TermBalanceCarryover)
        self.router.add_api_route(
                "/students/{student_id}/cumulative-balance",
                self.cumulative_balance,
                methods=["GET"],
                response_model=carryover_models.StudentCumulativeBalance)

    async def process_carryovers(
        self,
        data: carryover_models.CarryoverProcessInput,
        carryover_service: Annotated[CarryoverService, Depends(CarryoverService)]
    ) -> Any:
        """
        Runs the term-end sweep. Safe to repeat for the same periods.
        """
        options = carryover_models.CarryoverOptions(**data.model_dump(exclude={'processed_by'}))
        return await carryover_service.process_term_carryovers(options, data.processed_by)

    async def list_carryovers(
        self,
        school_id: UUID,
        carryover_service: Annotated[CarryoverService, Depends(CarryoverService)],
        to_year: Annotated[int | None, Query(description="Optional target year filter")] = None,
        to_term: Annotated[AcademicTerm | None, Query(description="Optional target term filter")] = None
    ) -> list[Any]:
        """
        Lists a school's carryovers, optionally only those into one period.
        """
        to_period = None
        if to_year is not None and to_term is not None:
            to_period = carryover_models.AcademicPeriod(year=to_year, term=to_term)
        return await carryover_service.list_carryovers(school_id, to_period)

    async def arrears_report(
        self,
        school_id: UUID,
        year: int,
        term: AcademicTerm,
        generated_by: str,
        carryover_service: Annotated[CarryoverService, Depends(CarryoverService)]
    ) -> Any:
        """
        Builds the cross-term arrears report as of a period.
        """
        period = carryover_models.AcademicPeriod(year=year, term=term)
        return await carryover_service.generate_arrears_report(school_id, period, generated_by)

    async def apply_carryover(
        self,
        carryover_id: UUID,
        data: carryover_models.CarryoverApplyInput,
        carryover_service: Annotated[CarryoverService, Depends(CarryoverService)]
    ) -> Any:
        return await carryover_service.apply_carryover(carryover_id, data.applied_by)

    async def add_adjustment(
        self,
        carryover_id: UUID,
        data: carryover_models.BalanceAdjustmentCreate,
        carryover_service: Annotated[CarryoverService, Depends(CarryoverService)]
    ) -> Any:
        return await carryover_service.apply_adjustment(carryover_id, data)

    async def waive_carryover(
        self,
        carryover_id: UUID,
        data: carryover_models.CarryoverWaiveInput,
        carryover_service: Annotated[CarryoverService, Depends(CarryoverService)]
    ) -> Any:
        return await carryover_service.waive_carryover(carryover_id, data.reason, data.waived_by)

    async def cumulative_balance(
        self,
        student_id: UUID,
        year: int,
        term: AcademicTerm,
        carryover_service: Annotated[CarryoverService, Depends(CarryoverService)]
    ) -> Any:
        """
        The student's balance across the current term and earlier carryovers.
        """
        period = carryover_models.AcademicPeriod(year=year, term=term)
        return await carryover_service.get_student_cumulative_balance(student_id, period)

# Instantiate the class and export its router
carryovers_api = CarryoversAPI()
router = carryovers_api.router
