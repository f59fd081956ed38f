'''
API endpoints for sessions and their attendance.
'''
from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Response, status, Query

from ..common.exceptions import InputValidationError
from ..database import models as db_models
from ..models import sessions as session_models
from ..models import attendance as attendance_models
from ..services.security import verify_token_and_get_teacher
from ..services.session_service import SessionService
from ..services.attendance_service import AttendanceService

class SessionsAPI:
    """
    Session scheduling, state transitions and per-session attendance.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/sessions",
            tags=["Sessions"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        # Static paths first so they are not captured by /{session_id}
        self.router.add_api_route(
            "/",
            self.list_sessions,
            methods=["GET"],
            response_model=list[session_models.SessionRead])
        self.router.add_api_route(
            "/",
            self.create_session,
            methods=["POST"],
            status_code=status.HTTP_201_CREATED,
            response_model=session_models.SessionRead)
        self.router.add_api_route(
            "/series",
            self.create_series,
            methods=["POST"],
            status_code=status.HTTP_201_CREATED,
            response_model=session_models.SessionSeriesRead)
        self.router.add_api_route(
            "/private",
            self.create_private_session,
            methods=["POST"],
            status_code=status.HTTP_201_CREATED,
            response_model=session_models.SessionRead)
        self.router.add_api_route(
            "/upcoming",
            self.list_upcoming,
            methods=["GET"],
            response_model=list[session_models.SessionRead])

        self.router.add_api_route(
            "/{session_id}",
            self.get_session,
            methods=["GET"],
            response_model=session_models.SessionRead)
        self.router.add_api_route(
            "/{session_id}",
            self.update_session,
            methods=["PATCH"],
            response_model=session_models.SessionRead)
        self.router.add_api_route(
            "/{session_id}",
            self.delete_session,
            methods=["DELETE"],
            status_code=status.HTTP_204_NO_CONTENT)
        self.router.add_api_route(
            "/{session_id}/complete",
            self.complete_session,
            methods=["POST"],
            response_model=session_models.SessionRead)
        self.router.add_api_route(
            "/{session_id}/unlock",
            self.unlock_session,
            methods=["POST"],
            response_model=session_models.SessionRead)
        self.router.add_api_route(
            "/{session_id}/cancel",
            self.cancel_session,
            methods=["POST"],
            response_model=session_models.SessionRead)

        self.router.add_api_route(
            "/{session_id}/attendance",
            self.get_attendance,
            methods=["GET"],
            response_model=list[attendance_models.AttendanceRead])
        self.router.add_api_route(
            "/{session_id}/attendance",
            self.mark_attendance,
            methods=["POST"],
            response_model=attendance_models.BulkAttendanceResult,
            responses={207: {"model": attendance_models.BulkAttendanceResult, "description": "Some records failed"}})
        self.router.add_api_route(
            "/{session_id}/fees",
            self.get_session_fees,
            methods=["GET"],
            response_model=attendance_models.SessionFeeSummary)

    # --- Scheduling ---

    async def list_sessions(
        self,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)],
        start_time_begin: Annotated[Optional[datetime], Query(alias="startTimeBegin")] = None,
        start_time_end: Annotated[Optional[datetime], Query(alias="startTimeEnd")] = None,
        exclude_canceled: Annotated[bool, Query(alias="excludeCanceled")] = False
    ):
        return await session_service.list_by_teacher(
            current_teacher.id,
            start_time_begin=start_time_begin,
            start_time_end=start_time_end,
            exclude_canceled=exclude_canceled
        )

    async def create_session(
        self,
        session_data: session_models.SessionCreate,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)]
    ):
        return await session_service.create(session_data, current_teacher.id)

    async def create_series(
        self,
        series_data: session_models.SessionSeriesCreate,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)]
    ):
        return await session_service.create_series(series_data, current_teacher.id)

    async def create_private_session(
        self,
        session_data: session_models.PrivateSessionCreate,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)]
    ):
        return await session_service.create_private_session(session_data, current_teacher.id)

    async def list_upcoming(
        self,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)],
        limit: Annotated[int, Query(ge=1, le=200)] = 50
    ):
        return await session_service.list_upcoming(current_teacher.id, limit=limit)

    async def get_session(
        self,
        session_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)]
    ):
        return await session_service.get_by_id(session_id, current_teacher.id)

    async def update_session(
        self,
        session_id: UUID,
        patch: session_models.SessionUpdate,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)]
    ):
        return await session_service.update(session_id, patch, current_teacher.id)

    async def delete_session(
        self,
        session_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)]
    ) -> None:
        await session_service.delete(session_id, current_teacher.id)

    # --- State transitions ---

    async def complete_session(
        self,
        session_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)]
    ):
        return await session_service.complete(session_id, current_teacher.id)

    async def unlock_session(
        self,
        session_id: UUID,
        unlock_data: session_models.SessionUnlock,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)]
    ):
        return await session_service.unlock(session_id, current_teacher.id, unlock_data.reason)

    async def cancel_session(
        self,
        session_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        session_service: Annotated[SessionService, Depends(SessionService)]
    ):
        return await session_service.cancel(session_id, current_teacher.id)

    # --- Attendance ---

    async def get_attendance(
        self,
        session_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        attendance_service: Annotated[AttendanceService, Depends(AttendanceService)]
    ):
        return await attendance_service.get_session_attendance(session_id, current_teacher.id)

    async def mark_attendance(
        self,
        session_id: UUID,
        bulk_data: attendance_models.BulkAttendanceInput,
        response: Response,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        attendance_service: Annotated[AttendanceService, Depends(AttendanceService)]
    ):
        """
        Bulk-marks attendance. Responds 200 when every record succeeded and
        207 when some failed; the body lists each record's outcome.
        """
        if bulk_data.session_id is not None and bulk_data.session_id != session_id:
            raise InputValidationError("sessionId in the body does not match the URL.", code="SESSION_ID_MISMATCH")
        result = await attendance_service.mark_attendance(session_id, bulk_data.attendance_records, current_teacher.id)
        if not result.success:
            response.status_code = status.HTTP_207_MULTI_STATUS
        return result

    async def get_session_fees(
        self,
        session_id: UUID,
        current_teacher: Annotated[db_models.Teachers, Depends(verify_token_and_get_teacher)],
        attendance_service: Annotated[AttendanceService, Depends(AttendanceService)]
    ):
        return await attendance_service.calculate_session_fees(session_id, current_teacher.id)


sessions_api = SessionsAPI()
router = sessions_api.router
