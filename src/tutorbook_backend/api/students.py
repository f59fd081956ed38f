'''
API endpoints for students.
'''
from datetime import date
from typing import Annotated, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status, Query

from ..database import models as db_models
from ..models import students as student_models
from ..models import attendance as attendance_models
from ..services.security import verify_token_and_get_teacher
from ..services.student_service import StudentService
from ..services.attendance_service import AttendanceService

class StudentsAPI:
    def __init__(self):
        self.router = APIRouter(
            prefix="/students",
            tags=["Students"]
        )
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route(
            "/",
            self.list_students,
            methods=["GET"],
            response_model=list[student_models.StudentRead])
        self.router.add_api_route(
            "/",
            self.create_student,
            methods=["POST"],
            status_code=status.HTTP_201_CREATED,
            response_model=student_models.StudentDetail)
        self.router.add_api_route(
            "/{student_id}",
            self.get_student,
            methods=["GET"],
            response_model=student_models.StudentDetail)
        self.router.add_api_route(
            "/{student_id}",
            self.update_student,
            methods=["PATCH"],
            response_model=student_models.StudentDetail)
        self.router.add_api_route(
            "/{student_id}",
            self.delete_student,
            methods=["DELETE"],
            status_code=status.HTTP_204_NO_CONTENT)
        self.router.add_api_route(
            "/{student_id}/attendance",
            self.get_attendance_history,
            methods=["GET"],
            response_model=attendance_models.StudentAttendanceHistory)

    async def list_students(
        self,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        student_service: Annotated[StudentService, Depends(StudentService)],
        class_id: Annotated[Optional[UUID], Query(alias="classId", description="Only active members of this class")] = None
    ):
        return await student_service.list_by_teacher(current_teacher.id, class_id=class_id)

    async def create_student(
        self,
        student_data: student_models.StudentCreate,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        student_service: Annotated[StudentService, Depends(StudentService)]
    ):
        return await student_service.create(student_data, current_teacher.id)

    async def get_student(
        self,
        student_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        student_service: Annotated[StudentService, Depends(StudentService)]
    ):
        return await student_service.get_detail(student_id, current_teacher.id)

    async def update_student(
        self,
        student_id: UUID,
        patch: student_models.StudentUpdate,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        student_service: Annotated[StudentService, Depends(StudentService)]
    ):
        return await student_service.update(student_id, patch, current_teacher.id)

    async def delete_student(
        self,
        student_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        student_service: Annotated[StudentService, Depends(StudentService)]
    ) -> None:
        await student_service.delete(student_id, current_teacher.id)

    async def get_attendance_history(
        self,
        student_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        attendance_service: Annotated[AttendanceService, Depends(AttendanceService)],
        class_id: Annotated[Optional[UUID], Query(alias="classId")] = None,
        from_date: Annotated[Optional[date], Query(alias="fromDate")] = None,
        to_date: Annotated[Optional[date], Query(alias="toDate")] = None
    ):
        return await attendance_service.get_student_attendance_history(
            student_id, current_teacher.id, class_id=class_id, from_date=from_date, to_date=to_date
        )


students_api = StudentsAPI()
router = students_api.router
