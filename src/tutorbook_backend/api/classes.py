'''
API endpoints for classes, their members and their sessions.
'''
from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, status, Query

from ..database import models as db_models
from ..models import classes as class_models
from ..models import memberships as membership_models
from ..models import sessions as session_models
from ..services.security import verify_token_and_get_teacher
from ..services.class_service import ClassService
from ..services.membership_service import MembershipService
from ..services.session_service import SessionService

class ClassesAPI:
    """
    Endpoints for classes. Membership and per-class session listings are
    nested under the class.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/classes",
            tags=["Classes"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
            "/",
            self.list_classes,
            methods=["GET"],
            response_model=list[class_models.ClassRead])
        self.router.add_api_route(
            "/",
            self.create_class,
            methods=["POST"],
            status_code=status.HTTP_201_CREATED,
            response_model=class_models.ClassRead)
        self.router.add_api_route(
            "/{class_id}",
            self.get_class,
            methods=["GET"],
            response_model=class_models.ClassRead)
        self.router.add_api_route(
            "/{class_id}",
            self.update_class,
            methods=["PATCH"],
            response_model=class_models.ClassRead)
        self.router.add_api_route(
            "/{class_id}",
            self.delete_class,
            methods=["DELETE"],
            status_code=status.HTTP_204_NO_CONTENT)

        self.router.add_api_route(
            "/{class_id}/students",
            self.list_members,
            methods=["GET"],
            response_model=list[membership_models.ClassStudentRead])
        self.router.add_api_route(
            "/{class_id}/students",
            self.add_member,
            methods=["POST"],
            status_code=status.HTTP_201_CREATED,
            response_model=membership_models.ClassStudentRead)
        self.router.add_api_route(
            "/{class_id}/students/{class_student_id}/leave",
            self.leave_class,
            methods=["PATCH"],
            response_model=membership_models.ClassStudentRead)

        self.router.add_api_route(
            "/{class_id}/sessions",
            self.list_class_sessions,
            methods=["GET"],
            response_model=list[session_models.SessionRead])

    async def list_classes(
        self,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        class_service: Annotated[ClassService, Depends(ClassService)],
        is_active: Annotated[Optional[bool], Query(alias="isActive")] = None,
        limit: Annotated[Optional[int], Query(ge=1, le=500)] = None
    ):
        return await class_service.list_by_teacher(current_teacher.id, is_active=is_active, limit=limit)

    async def create_class(
        self,
        class_data: class_models.ClassCreate,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        class_service: Annotated[ClassService, Depends(ClassService)]
    ):
        return await class_service.create(class_data, current_teacher.id)

    async def get_class(
        self,
        class_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        class_service: Annotated[ClassService, Depends(ClassService)]
    ):
        return await class_service.get_by_id(class_id, current_teacher.id)

    async def update_class(
        self,
        class_id: UUID,
        patch: class_models.ClassUpdate,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        class_service: Annotated[ClassService, Depends(ClassService)]
    ):
        return await class_service.update(class_id, patch, current_teacher.id)

    async def delete_class(
        self,
        class_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        class_service: Annotated[ClassService, Depends(ClassService)]
    ) -> None:
        await class_service.delete(class_id, current_teacher.id)

    async def list_members(
        self,
        class_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        membership_service: Annotated[MembershipService, Depends(MembershipService)],
        include_left: Annotated[bool, Query(alias="includeLeft")] = False
    ):
        return await membership_service.list_by_class(current_teacher.id, class_id, include_left=include_left)

    async def add_member(
        self,
        class_id: UUID,
        member_data: membership_models.MembershipAdd,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        membership_service: Annotated[MembershipService, Depends(MembershipService)]
    ):
        """Adds a student, or reactivates a previous membership of the same student."""
        return await membership_service.add(current_teacher.id, class_id, member_data)

    async def leave_class(
        self,
        class_id: UUID,
        class_student_id: UUID,
        leave_data: membership_models.MembershipLeave,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        membership_service: Annotated[MembershipService, Depends(MembershipService)]
    ):
        return await membership_service.leave(current_teacher.id, class_id, class_student_id, leave_data)

    async def list_class_sessions(
        self,
        class_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)],
        start_time_begin: Annotated[Optional[datetime], Query(alias="startTimeBegin")] = None,
        start_time_end: Annotated[Optional[datetime], Query(alias="startTimeEnd")] = None
    ):
        return await session_service.list_by_class(
            class_id, current_teacher.id, start_time_begin=start_time_begin, start_time_end=start_time_end
        )


# Instantiate the class and export its router
classes_api = ClassesAPI()
router = classes_api.router
