import pytest
import httpx

from tutorbook_backend.main import app
from tutorbook_backend.services.security import JWTHandler, verify_token_and_get_teacher

from tests.constants import (
    TEST_CLASS_ID, TEST_STUDENT_ID, TEST_STUDENT_2_ID, TEST_OUTSIDER_STUDENT_ID, TEST_MISSING_ID,
    TEST_TEACHER_EMAIL
)


async def _create_session(client: httpx.AsyncClient, start: str = "2030-01-15T10:00:00Z", **extra) -> dict:
    body = {"classId": str(TEST_CLASS_ID), "startTime": start, "durationMin": 60, **extra}
    response = await client.post("/sessions/", json=body)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.anyio
class TestSessionsAPI:

    async def test_create_and_get(self, client: httpx.AsyncClient):
        print("\n--- Testing POST /sessions/ ---")
        created = await _create_session(client)
        assert created["status"] == "scheduled"
        assert created["type"] == "class"
        assert created["className"] == "Math A"
        assert created["feePerSession"] == 100

        response = await client.get(f"/sessions/{created['id']}")
        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    async def test_conflict_returns_409_with_code(self, client: httpx.AsyncClient):
        await _create_session(client)
        response = await client.post(
            "/sessions/",
            json={"classId": str(TEST_CLASS_ID), "startTime": "2030-01-15T10:30:00Z", "durationMin": 60}
        )
        assert response.status_code == 409
        assert response.json()["code"] == "SESSION_CONFLICT"
        print(f"Conflict body: {response.json()}")

    async def test_invalid_body_is_422(self, client: httpx.AsyncClient):
        response = await client.post("/sessions/", json={"startTime": "2030-01-15T10:00:00Z", "durationMin": 0})
        assert response.status_code == 422

    async def test_series_and_upcoming(self, client: httpx.AsyncClient):
        response = await client.post("/sessions/series", json={
            "classId": str(TEST_CLASS_ID),
            "durationMin": 90,
            "recurrence": {
                "daysOfWeek": [1, 3],
                "time": "18:00",
                "startDate": "2030-01-07",
                "endDate": "2030-01-20",
                "timezone": "Asia/Ho_Chi_Minh"
            }
        })
        assert response.status_code == 201, response.text
        series = response.json()
        assert series["totalSessions"] == 4

        upcoming = await client.get("/sessions/upcoming")
        assert upcoming.status_code == 200
        assert len(upcoming.json()) == 4

    async def test_private_session(self, client: httpx.AsyncClient):
        response = await client.post("/sessions/private", json={
            "studentIds": [str(TEST_OUTSIDER_STUDENT_ID)],
            "startTime": "2030-01-16T08:00:00Z",
            "durationMin": 45
        })
        assert response.status_code == 201, response.text
        assert response.json()["type"] == "ad_hoc"

    async def test_lifecycle(self, client: httpx.AsyncClient):
        session = await _create_session(client)
        session_id = session["id"]

        completed = await client.post(f"/sessions/{session_id}/complete")
        assert completed.json()["status"] == "completed"

        patch = await client.patch(f"/sessions/{session_id}", json={"notes": "x"})
        assert patch.status_code == 409

        short = await client.post(f"/sessions/{session_id}/unlock", json={"reason": "no"})
        assert short.status_code == 422

        unlocked = await client.post(f"/sessions/{session_id}/unlock", json={"reason": "fix attendance"})
        assert unlocked.status_code == 200
        assert unlocked.json()["status"] == "scheduled"

        assert (await client.delete(f"/sessions/{session_id}")).status_code == 409
        assert (await client.post(f"/sessions/{session_id}/cancel")).status_code == 200
        assert (await client.delete(f"/sessions/{session_id}")).status_code == 204
        assert (await client.get(f"/sessions/{session_id}")).status_code == 404

    async def test_list_by_class_and_teacher(self, client: httpx.AsyncClient):
        await _create_session(client, "2030-01-15T10:00:00Z")
        await _create_session(client, "2030-01-16T10:00:00Z")

        by_class = await client.get(f"/classes/{TEST_CLASS_ID}/sessions")
        assert by_class.status_code == 200
        assert len(by_class.json()) == 2

        windowed = await client.get("/sessions/", params={
            "startTimeBegin": "2030-01-16T00:00:00Z", "startTimeEnd": "2030-01-17T00:00:00Z"
        })
        assert len(windowed.json()) == 1


@pytest.mark.anyio
class TestSessionAttendanceAPI:

    async def test_bulk_mark_all_succeed_is_200(self, client: httpx.AsyncClient):
        session = await _create_session(client)
        response = await client.post(f"/sessions/{session['id']}/attendance", json={
            "attendanceRecords": [
                {"studentId": str(TEST_STUDENT_ID), "status": "late"},
                {"studentId": str(TEST_STUDENT_2_ID), "status": "present", "feeOverride": "50"},
            ]
        })
        assert response.status_code == 200
        assert response.json()["successCount"] == 2

        listing = (await client.get(f"/sessions/{session['id']}/attendance")).json()
        bao = next(r for r in listing if r["studentId"] == str(TEST_STUDENT_2_ID))
        assert bao["calculatedFee"] == 50
        assert bao["feeSource"] == "attendance"

    async def test_bulk_mark_partial_failure_is_207(self, client: httpx.AsyncClient):
        print("\n--- Testing 207 on partial failure ---")
        session = await _create_session(client)
        response = await client.post(f"/sessions/{session['id']}/attendance", json={
            "sessionId": session["id"],
            "attendanceRecords": [
                {"studentId": str(TEST_STUDENT_ID), "status": "present"},
                {"studentId": str(TEST_STUDENT_2_ID), "status": "absent"},
                {"studentId": str(TEST_MISSING_ID), "status": "present"},
            ]
        })
        assert response.status_code == 207
        body = response.json()
        assert body["success"] is False
        assert (body["totalRecords"], body["successCount"], body["failureCount"]) == (3, 2, 1)

    async def test_bulk_mark_non_member_is_409(self, client: httpx.AsyncClient):
        session = await _create_session(client)
        response = await client.post(f"/sessions/{session['id']}/attendance", json={
            "attendanceRecords": [{"studentId": str(TEST_OUTSIDER_STUDENT_ID), "status": "present"}]
        })
        assert response.status_code == 409
        assert response.json()["code"] == "STUDENT_NOT_IN_CLASS"

    async def test_session_id_mismatch_is_400(self, client: httpx.AsyncClient):
        session = await _create_session(client)
        response = await client.post(f"/sessions/{session['id']}/attendance", json={
            "sessionId": str(TEST_MISSING_ID),
            "attendanceRecords": [{"studentId": str(TEST_STUDENT_ID), "status": "present"}]
        })
        assert response.status_code == 400

    async def test_fees_and_single_record_edits(self, client: httpx.AsyncClient):
        session = await _create_session(client)
        listing = (await client.get(f"/sessions/{session['id']}/attendance")).json()
        alice = next(r for r in listing if r["studentId"] == str(TEST_STUDENT_ID))

        edited = await client.put(f"/attendance/{alice['id']}", json={"status": "absent"})
        assert edited.status_code == 200
        assert edited.json()["status"] == "absent"

        await client.post(f"/sessions/{session['id']}/complete")
        fees = (await client.get(f"/sessions/{session['id']}/fees")).json()
        assert fees["billableCount"] == 1
        assert fees["totalFees"] == 80

        locked = await client.delete(f"/attendance/{alice['id']}")
        assert locked.status_code == 409


@pytest.mark.anyio
class TestAuth:

    async def test_missing_token_is_401(self, client: httpx.AsyncClient):
        app.dependency_overrides.pop(verify_token_and_get_teacher)
        response = await client.get("/sessions/upcoming")
        assert response.status_code == 401

    async def test_valid_token_resolves_the_teacher(self, client: httpx.AsyncClient):
        app.dependency_overrides.pop(verify_token_and_get_teacher)
        token = JWTHandler.create_access_token(TEST_TEACHER_EMAIL)
        response = await client.get("/classes/", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert len(response.json()) == 2

    async def test_garbage_token_is_401(self, client: httpx.AsyncClient):
        app.dependency_overrides.pop(verify_token_and_get_teacher)
        response = await client.get("/classes/", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
