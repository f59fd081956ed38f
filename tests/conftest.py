'''
Pytest configuration for the TutorBook backend.

This file sets up fixtures for:
1. Forcing the application into TEST_MODE before any application code is imported.
2. A fresh in-memory SQLite database per test, built from the ORM metadata.
3. Instances of every service class, wired by hand with the test session and
   an in-memory cache.
4. Seeded teachers, classes, students and memberships.
5. An httpx AsyncClient talking to the app, with the DB session, cache and
   current teacher dependencies overridden.
'''
import os

# Settings are read at import time; these must be set first.
os.environ["TEST_MODE"] = "True"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL_PROD", "sqlite+aiosqlite://")
os.environ.setdefault("DATABASE_URL_TEST", "sqlite+aiosqlite://")
os.environ["CACHE_BACKEND"] = "memory"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from tests.constants import (
    TEST_TEACHER_ID, TEST_TEACHER_EMAIL,
    TEST_UNRELATED_TEACHER_ID, TEST_UNRELATED_TEACHER_EMAIL,
    TEST_CLASS_ID, TEST_EMPTY_CLASS_ID, TEST_UNRELATED_CLASS_ID,
    TEST_STUDENT_ID, TEST_STUDENT_2_ID, TEST_OUTSIDER_STUDENT_ID, TEST_UNRELATED_STUDENT_ID,
    TEST_CLASS_DEFAULT_FEE
)

# --- Application Imports ---
from tutorbook_backend.main import app
from tutorbook_backend.common.config import settings
from tutorbook_backend.database.engine import get_db_session
from tutorbook_backend.database import models as db_models
from tutorbook_backend.services.cache_service import CacheService, InMemoryCacheStore, get_cache_service
from tutorbook_backend.services.security import verify_token_and_get_teacher
from tutorbook_backend.services.report_cache import ReportCacheService
from tutorbook_backend.services.teacher_service import TeacherService
from tutorbook_backend.services.class_service import ClassService
from tutorbook_backend.services.membership_service import MembershipService
from tutorbook_backend.services.student_service import StudentService
from tutorbook_backend.services.session_service import SessionService
from tutorbook_backend.services.attendance_service import AttendanceService
from tutorbook_backend.services.report_service import ReportService


@pytest.fixture(scope="session")
def anyio_backend():
    """
    Override the default 'anyio_backend' fixture.
    1. Forces the backend to 'asyncio'.
    2. Promotes the scope to 'session'.
    """
    return "asyncio"


# --- 1. Database ---

@pytest.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    One in-memory SQLite database per test. StaticPool keeps a single
    connection so every session sees the same database.
    """
    assert settings.TEST_MODE is True, "TEST_MODE was not set to True!"

    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite/aiosqlite transaction handling breaks SAVEPOINT unless
    # BEGIN is emitted by SQLAlchemy itself.
    @event.listens_for(test_engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(db_models.Base.metadata.create_all)

    yield test_engine
    await test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """The session every service fixture is built with."""
    session = session_factory()
    try:
        yield session
    finally:
        await session.rollback()
        await session.close()


# --- 2. Cache ---

@pytest.fixture(scope="function")
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture(scope="function")
def cache_service(cache_store: InMemoryCacheStore) -> CacheService:
    return CacheService(cache_store, default_ttl=60)


# --- 3. SERVICE FIXTURES ---

@pytest.fixture(scope="function")
def report_cache_service(db_session: AsyncSession) -> ReportCacheService:
    return ReportCacheService(db=db_session)

@pytest.fixture(scope="function")
def teacher_service(db_session: AsyncSession) -> TeacherService:
    return TeacherService(db=db_session)

@pytest.fixture(scope="function")
def class_service(db_session, cache_service, report_cache_service) -> ClassService:
    return ClassService(db=db_session, cache=cache_service, report_cache=report_cache_service)

@pytest.fixture(scope="function")
def membership_service(db_session, cache_service, class_service, report_cache_service) -> MembershipService:
    return MembershipService(
        db=db_session,
        cache=cache_service,
        class_service=class_service,
        report_cache=report_cache_service
    )

@pytest.fixture(scope="function")
def student_service(db_session, cache_service, membership_service) -> StudentService:
    return StudentService(db=db_session, cache=cache_service, membership_service=membership_service)

@pytest.fixture(scope="function")
def session_service(
    db_session, cache_service, class_service, membership_service, student_service, report_cache_service
) -> SessionService:
    return SessionService(
        db=db_session,
        cache=cache_service,
        class_service=class_service,
        membership_service=membership_service,
        student_service=student_service,
        report_cache=report_cache_service
    )

@pytest.fixture(scope="function")
def attendance_service(
    db_session, cache_service, membership_service, student_service, teacher_service, report_cache_service
) -> AttendanceService:
    return AttendanceService(
        db=db_session,
        cache=cache_service,
        membership_service=membership_service,
        student_service=student_service,
        teacher_service=teacher_service,
        report_cache=report_cache_service
    )

@pytest.fixture(scope="function")
def report_service(db_session, class_service, membership_service, report_cache_service) -> ReportService:
    return ReportService(
        db=db_session,
        class_service=class_service,
        membership_service=membership_service,
        report_cache=report_cache_service
    )


# --- 4. DATA FIXTURES ---

@pytest.fixture(scope="function")
async def seeded(db_session: AsyncSession) -> dict:
    """
    Two teachers. The main teacher owns:
    - TEST_CLASS (default fee 100) with two active members, STUDENT and STUDENT_2,
      STUDENT_2 paying a unit-price override of 80;
    - TEST_EMPTY_CLASS with no members and no default fee;
    - OUTSIDER_STUDENT, a student who belongs to no class.
    The unrelated teacher owns one class and one student.
    """
    teacher = db_models.Teachers(id=TEST_TEACHER_ID, email=TEST_TEACHER_EMAIL, name="Main Teacher")
    other_teacher = db_models.Teachers(
        id=TEST_UNRELATED_TEACHER_ID, email=TEST_UNRELATED_TEACHER_EMAIL, name="Unrelated Teacher"
    )
    db_session.add_all([teacher, other_teacher])
    await db_session.flush()

    db_session.add_all([
        db_models.Classes(
            id=TEST_CLASS_ID, teacher_id=TEST_TEACHER_ID, name="Math A", subject="Math",
            default_fee_per_session=Decimal(TEST_CLASS_DEFAULT_FEE)
        ),
        db_models.Classes(id=TEST_EMPTY_CLASS_ID, teacher_id=TEST_TEACHER_ID, name="Physics B", subject="Physics"),
        db_models.Classes(
            id=TEST_UNRELATED_CLASS_ID, teacher_id=TEST_UNRELATED_TEACHER_ID, name="Chemistry",
            default_fee_per_session=Decimal("50.00")
        ),
        db_models.Students(id=TEST_STUDENT_ID, name="Alice Nguyen", phone="0900000001", created_by_teacher=TEST_TEACHER_ID),
        db_models.Students(id=TEST_STUDENT_2_ID, name="Bao Tran", phone="0900000002", created_by_teacher=TEST_TEACHER_ID),
        db_models.Students(id=TEST_OUTSIDER_STUDENT_ID, name="Chi Le", created_by_teacher=TEST_TEACHER_ID),
        db_models.Students(id=TEST_UNRELATED_STUDENT_ID, name="Dung Pham", created_by_teacher=TEST_UNRELATED_TEACHER_ID),
    ])
    await db_session.flush()

    joined = datetime.now(timezone.utc) - timedelta(days=90)
    db_session.add_all([
        db_models.ClassStudents(class_id=TEST_CLASS_ID, student_id=TEST_STUDENT_ID, joined_at=joined),
        db_models.ClassStudents(
            class_id=TEST_CLASS_ID, student_id=TEST_STUDENT_2_ID,
            unit_price_override=Decimal("80.00"), joined_at=joined
        ),
    ])
    await db_session.commit()
    return {"teacher": teacher, "other_teacher": other_teacher}


@pytest.fixture(scope="function")
def test_teacher_orm(seeded: dict) -> db_models.Teachers:
    return seeded["teacher"]


@pytest.fixture(scope="function")
def test_unrelated_teacher_orm(seeded: dict) -> db_models.Teachers:
    return seeded["other_teacher"]


# --- 5. API CLIENT ---

@pytest.fixture(scope="function")
async def client(session_factory, seeded: dict) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    AsyncClient over ASGITransport. The lifespan does not run; the DB session,
    cache and current teacher are provided through dependency overrides.
    Every request gets its own session, committed on success.
    """
    request_cache = CacheService(InMemoryCacheStore(), default_ttl=60)

    async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_cache_service] = lambda: request_cache
    app.dependency_overrides[verify_token_and_get_teacher] = lambda: seeded["teacher"]

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
