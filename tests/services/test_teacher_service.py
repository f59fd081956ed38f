import pytest

from tutorbook_backend.database import models as db_models
from tutorbook_backend.services.teacher_service import TeacherService

from tests.constants import TEST_TEACHER_EMAIL, TEST_UNRELATED_TEACHER_ID, TEST_MISSING_ID


@pytest.mark.anyio
class TestTeacherService:

    async def test_get_teacher_by_email(
        self,
        teacher_service: TeacherService,
        test_teacher_orm: db_models.Teachers
    ):
        teacher = await teacher_service.get_teacher_by_email(TEST_TEACHER_EMAIL)
        assert teacher is not None
        assert teacher.id == test_teacher_orm.id

    async def test_unknown_email_returns_none(self, teacher_service: TeacherService, seeded):
        assert await teacher_service.get_teacher_by_email("nobody@tutorbook.io") is None

    async def test_get_names_skips_missing_and_none(
        self,
        teacher_service: TeacherService,
        test_teacher_orm: db_models.Teachers
    ):
        names = await teacher_service.get_names([test_teacher_orm.id, TEST_UNRELATED_TEACHER_ID, None, TEST_MISSING_ID])
        assert names == {test_teacher_orm.id: "Main Teacher", TEST_UNRELATED_TEACHER_ID: "Unrelated Teacher"}
