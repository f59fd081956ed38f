import pytest
from fastapi import HTTPException

from tutorbook_backend.database import models as db_models
from tutorbook_backend.models import students as student_models
from tutorbook_backend.services.membership_service import MembershipService
from tutorbook_backend.services.student_service import StudentService

from tests.constants import (
    TEST_CLASS_ID, TEST_STUDENT_ID, TEST_STUDENT_2_ID, TEST_OUTSIDER_STUDENT_ID, TEST_UNRELATED_STUDENT_ID
)


@pytest.mark.anyio
class TestStudentService:

    async def test_list_includes_current_class_names(
        self,
        student_service: StudentService,
        test_teacher_orm: db_models.Teachers
    ):
        students = await student_service.list_by_teacher(test_teacher_orm.id)
        assert [s.name for s in students] == ["Alice Nguyen", "Bao Tran", "Chi Le"]
        assert students[0].class_names == ["Math A"]
        assert students[2].class_names == []

    async def test_list_filtered_by_class(
        self,
        student_service: StudentService,
        test_teacher_orm: db_models.Teachers
    ):
        students = await student_service.list_by_teacher(test_teacher_orm.id, class_id=TEST_CLASS_ID)
        assert {s.id for s in students} == {TEST_STUDENT_ID, TEST_STUDENT_2_ID}

    async def test_create_with_parents(
        self,
        student_service: StudentService,
        test_teacher_orm: db_models.Teachers
    ):
        print("\n--- Testing student create with parents ---")
        detail = await student_service.create(
            student_models.StudentCreate(
                name="Em Vo",
                phone="0900000009",
                parents=[
                    student_models.ParentInput(relationship="mother", phone="0911111111"),
                    student_models.ParentInput(name="Uncle Hai", relationship="other"),
                ]
            ),
            test_teacher_orm.id
        )
        assert detail.created_by_teacher == test_teacher_orm.id
        assert {p.name for p in detail.parents} == {"Mother", "Uncle Hai"}
        assert detail.memberships == []

        students = await student_service.list_by_teacher(test_teacher_orm.id)
        assert detail.id in {s.id for s in students}

    async def test_parent_without_name_or_relationship_is_rejected(
        self,
        student_service: StudentService,
        test_teacher_orm: db_models.Teachers
    ):
        with pytest.raises(HTTPException) as e:
            await student_service.create(
                student_models.StudentCreate(name="Em Vo", parents=[student_models.ParentInput(phone="0911")]),
                test_teacher_orm.id
            )
        assert e.value.status_code == 400

    async def test_duplicate_student_is_rejected(
        self,
        student_service: StudentService,
        test_teacher_orm: db_models.Teachers
    ):
        with pytest.raises(HTTPException) as e:
            await student_service.create(
                student_models.StudentCreate(name="Alice Nguyen", phone="0900000001"),
                test_teacher_orm.id
            )
        assert e.value.status_code == 409
        assert e.value.code == "DUPLICATE_STUDENT"

    async def test_update_replaces_parents_only_when_sent(
        self,
        student_service: StudentService,
        test_teacher_orm: db_models.Teachers
    ):
        await student_service.update(
            TEST_OUTSIDER_STUDENT_ID,
            student_models.StudentUpdate(parents=[student_models.ParentInput(relationship="father")]),
            test_teacher_orm.id
        )
        detail = await student_service.update(
            TEST_OUTSIDER_STUDENT_ID, student_models.StudentUpdate(note="prefers mornings"), test_teacher_orm.id
        )
        assert detail.note == "prefers mornings"
        assert [p.name for p in detail.parents] == ["Father"]

    async def test_delete_is_refused_with_membership_history(
        self,
        student_service: StudentService,
        test_teacher_orm: db_models.Teachers
    ):
        with pytest.raises(HTTPException) as e:
            await student_service.delete(TEST_STUDENT_ID, test_teacher_orm.id)
        assert e.value.status_code == 409
        assert e.value.code == "STUDENT_HAS_MEMBERSHIP_HISTORY"

    async def test_delete_student_without_history(
        self,
        student_service: StudentService,
        test_teacher_orm: db_models.Teachers
    ):
        await student_service.delete(TEST_OUTSIDER_STUDENT_ID, test_teacher_orm.id)
        with pytest.raises(HTTPException) as e:
            await student_service.get_detail(TEST_OUTSIDER_STUDENT_ID, test_teacher_orm.id)
        assert e.value.status_code == 404

    async def test_foreign_student_is_not_found(
        self,
        student_service: StudentService,
        test_teacher_orm: db_models.Teachers
    ):
        with pytest.raises(HTTPException) as e:
            await student_service.delete(TEST_UNRELATED_STUDENT_ID, test_teacher_orm.id)
        assert e.value.status_code == 404

    async def test_rename_refreshes_cached_class_member_lists(
        self,
        student_service: StudentService,
        membership_service: MembershipService,
        test_teacher_orm: db_models.Teachers
    ):
        members = await membership_service.list_by_class(test_teacher_orm.id, TEST_CLASS_ID)
        assert [m.student_name for m in members] == ["Alice Nguyen", "Bao Tran"]

        await student_service.update(
            TEST_STUDENT_ID, student_models.StudentUpdate(name="Zed Nguyen"), test_teacher_orm.id
        )

        members = await membership_service.list_by_class(test_teacher_orm.id, TEST_CLASS_ID)
        assert [m.student_name for m in members] == ["Bao Tran", "Zed Nguyen"]
