'''
API endpoints for monthly reports.
'''
from typing import Annotated
from uuid import UUID
from fastapi import APIRouter, Depends, Query

from ..database import models as db_models
from ..models import reports as report_models
from ..services.security import verify_token_and_get_teacher
from ..services.report_service import ReportService

class ReportsAPI:
    def __init__(self):
        self.router = APIRouter(
            prefix="/reports",
            tags=["Reports"]
        )
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route(
            "/monthly",
            self.get_monthly_report,
            methods=["GET"],
            response_model=report_models.MonthlyReport)

    async def get_monthly_report(
        self,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        report_service: Annotated[ReportService, Depends(ReportService)],
        class_id: Annotated[UUID, Query(alias="classId")],
        month: Annotated[str, Query(description="YYYY-MM")],
        include_student_details: Annotated[bool, Query(alias="includeStudentDetails")] = False,
        force_refresh: Annotated[bool, Query(alias="forceRefresh")] = False
    ):
        """
        Fee report of one class for one month. Served from the report cache
        when a fresh enough entry exists, unless forceRefresh is set.
        """
        return await report_service.get_monthly_report(
            class_id,
            current_teacher.id,
            month,
            include_student_details=include_student_details,
            force_refresh=force_refresh
        )


reports_api = ReportsAPI()
router = reports_api.router
