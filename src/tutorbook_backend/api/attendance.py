'''
API endpoints for single attendance records.
'''
from typing import Annotated
from uuid import UUID
from fastapi import APIRouter, Depends, status

from ..database import models as db_models
from ..models import attendance as attendance_models
from ..services.security import verify_token_and_get_teacher
from ..services.attendance_service import AttendanceService

class AttendanceAPI:
    def __init__(self):
        self.router = APIRouter(
            prefix="/attendance",
            tags=["Attendance"]
        )
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route(
            "/{attendance_id}",
            self.update_attendance,
            methods=["PUT"],
            response_model=attendance_models.AttendanceRead)
        self.router.add_api_route(
            "/{attendance_id}",
            self.delete_attendance,
            methods=["DELETE"],
            status_code=status.HTTP_204_NO_CONTENT)

    async def update_attendance(
        self,
        attendance_id: UUID,
        patch: attendance_models.AttendanceUpdate,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        attendance_service: Annotated[AttendanceService, Depends(AttendanceService)]
    ):
        """Edits one record. Refused once the session is completed."""
        return await attendance_service.update_attendance(attendance_id, patch, current_teacher.id)

    async def delete_attendance(
        self,
        attendance_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        attendance_service: Annotated[AttendanceService, Depends(AttendanceService)]
    ) -> None:
        await attendance_service.delete_attendance(attendance_id, current_teacher.id)


attendance_api = AttendanceAPI()
router = attendance_api.router
