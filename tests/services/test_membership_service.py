import pytest
from decimal import Decimal
from fastapi import HTTPException

from tutorbook_backend.database import models as db_models
from tutorbook_backend.models import memberships as membership_models
from tutorbook_backend.services.membership_service import MembershipService

from tests.constants import (
    TEST_CLASS_ID, TEST_UNRELATED_CLASS_ID, TEST_STUDENT_ID, TEST_STUDENT_2_ID,
    TEST_OUTSIDER_STUDENT_ID, TEST_UNRELATED_STUDENT_ID
)


@pytest.mark.anyio
class TestMembershipService:

    async def test_list_by_class_returns_active_members_by_name(
        self,
        membership_service: MembershipService,
        test_teacher_orm: db_models.Teachers
    ):
        members = await membership_service.list_by_class(test_teacher_orm.id, TEST_CLASS_ID)
        assert [m.student_id for m in members] == [TEST_STUDENT_ID, TEST_STUDENT_2_ID]
        assert members[1].unit_price_override == Decimal("80")
        assert members[0].student_name == "Alice Nguyen"

    async def test_add_new_member(
        self,
        membership_service: MembershipService,
        test_teacher_orm: db_models.Teachers
    ):
        print("\n--- Testing add of a new member ---")
        added = await membership_service.add(
            test_teacher_orm.id,
            TEST_CLASS_ID,
            membership_models.MembershipAdd(student_id=TEST_OUTSIDER_STUDENT_ID, unit_price_override=Decimal("60"))
        )
        assert added.left_at is None
        assert added.unit_price_override == Decimal("60")
        assert await membership_service.is_student_in_class(TEST_CLASS_ID, TEST_OUTSIDER_STUDENT_ID)

        members = await membership_service.list_by_class(test_teacher_orm.id, TEST_CLASS_ID)
        assert len(members) == 3

    async def test_adding_an_active_member_conflicts(
        self,
        membership_service: MembershipService,
        test_teacher_orm: db_models.Teachers
    ):
        with pytest.raises(HTTPException) as e:
            await membership_service.add(
                test_teacher_orm.id, TEST_CLASS_ID, membership_models.MembershipAdd(student_id=TEST_STUDENT_ID)
            )
        assert e.value.status_code == 409
        assert e.value.code == "ALREADY_MEMBER"

    async def test_leave_then_rejoin_reactivates_the_same_row(
        self,
        membership_service: MembershipService,
        test_teacher_orm: db_models.Teachers
    ):
        members = await membership_service.list_by_class(test_teacher_orm.id, TEST_CLASS_ID)
        bao = next(m for m in members if m.student_id == TEST_STUDENT_2_ID)

        left = await membership_service.leave(
            test_teacher_orm.id, TEST_CLASS_ID, bao.id, membership_models.MembershipLeave()
        )
        assert left.left_at is not None
        assert not await membership_service.is_student_in_class(TEST_CLASS_ID, TEST_STUDENT_2_ID)

        active = await membership_service.list_by_class(test_teacher_orm.id, TEST_CLASS_ID)
        assert [m.student_id for m in active] == [TEST_STUDENT_ID]
        everyone = await membership_service.list_by_class(test_teacher_orm.id, TEST_CLASS_ID, include_left=True)
        assert len(everyone) == 2

        rejoined = await membership_service.add(
            test_teacher_orm.id, TEST_CLASS_ID, membership_models.MembershipAdd(student_id=TEST_STUDENT_2_ID)
        )
        assert rejoined.id == bao.id
        assert rejoined.left_at is None
        # override untouched because none was sent
        assert rejoined.unit_price_override == Decimal("80")

    async def test_rejoin_with_explicit_override_replaces_it(
        self,
        membership_service: MembershipService,
        test_teacher_orm: db_models.Teachers
    ):
        members = await membership_service.list_by_class(test_teacher_orm.id, TEST_CLASS_ID)
        bao = next(m for m in members if m.student_id == TEST_STUDENT_2_ID)
        await membership_service.leave(test_teacher_orm.id, TEST_CLASS_ID, bao.id, membership_models.MembershipLeave())

        rejoined = await membership_service.add(
            test_teacher_orm.id,
            TEST_CLASS_ID,
            membership_models.MembershipAdd(student_id=TEST_STUDENT_2_ID, unit_price_override=None)
        )
        assert rejoined.unit_price_override is None

    async def test_foreign_student_or_class_is_not_found(
        self,
        membership_service: MembershipService,
        test_teacher_orm: db_models.Teachers
    ):
        with pytest.raises(HTTPException) as e:
            await membership_service.add(
                test_teacher_orm.id, TEST_CLASS_ID, membership_models.MembershipAdd(student_id=TEST_UNRELATED_STUDENT_ID)
            )
        assert e.value.status_code == 404

        with pytest.raises(HTTPException) as e:
            await membership_service.list_by_class(test_teacher_orm.id, TEST_UNRELATED_CLASS_ID)
        assert e.value.status_code == 404

    async def test_override_map_includes_historical_members(
        self,
        membership_service: MembershipService,
        test_teacher_orm: db_models.Teachers
    ):
        members = await membership_service.list_by_class(test_teacher_orm.id, TEST_CLASS_ID)
        bao = next(m for m in members if m.student_id == TEST_STUDENT_2_ID)
        await membership_service.leave(test_teacher_orm.id, TEST_CLASS_ID, bao.id, membership_models.MembershipLeave())

        overrides = await membership_service.get_override_map(TEST_CLASS_ID)
        assert overrides == {TEST_STUDENT_ID: None, TEST_STUDENT_2_ID: Decimal("80")}
        assert await membership_service.get_override_map(TEST_CLASS_ID, []) == {}
