import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from datetime import date, datetime
from types import SimpleNamespace
from typing import AsyncGenerator, Dict, List
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.main import app
from app.api.v1.leaves import service as leave_service
from app.api.v1.leaves.schemas import LeaveApply
from app.auth.models import User
from app.auth.security import create_access_token
from app.core.clock import FrozenClock, get_clock
from app.core.enums import UserRole
from app.core.models import Course, LeaveRequest, Section
from app.core.notifications import NotificationPort, get_notifier
from app.db.session import Base, get_db


TEST_DATABASE_URL = "sqlite+aiosqlite://"


class RecordingNotifier(NotificationPort):
    """Keeps every delivered message in memory; set ``fail`` to simulate an SMTP outage."""

    def __init__(self) -> None:
        self.sent: List[Dict] = []
        self.fail = False

    async def _deliver(self, recipients, subject, body, is_html, bcc) -> None:
        if self.fail:
            raise ConnectionError("SMTP server unavailable")
        self.sent.append({"to": list(recipients), "subject": subject, "body": body, "bcc": bcc})

    def sent_to(self, address: str) -> List[Dict]:
        return [m for m in self.sent if address in m["to"]]


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite database per test; StaticPool keeps the single connection alive."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest.fixture()
def clock() -> FrozenClock:
    # 09:30 in Asia/Kolkata on 2024-01-10
    return FrozenClock(datetime(2024, 1, 10, 4, 0))


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
async def client(db_session: AsyncSession, clock: FrozenClock, notifier: RecordingNotifier) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app with db, clock and notifier overridden."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _snapshot(user: User) -> SimpleNamespace:
    return SimpleNamespace(
        id=user.id,
        external_uid=user.external_uid,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        roll_number=user.roll_number,
        department=user.department,
        mentor_id=user.mentor_id,
    )


@pytest.fixture()
async def campus(db_session: AsyncSession) -> SimpleNamespace:
    """Mentors, their students, a security officer, an HOD, an admin and sections across two courses."""
    mentor = User(external_uid="mentor-1", email="meera.rao@campus.edu", full_name="Meera Rao", role=UserRole.MENTOR.value, department="CSE")
    other_mentor = User(external_uid="mentor-2", email="vikram.s@campus.edu", full_name="Vikram S", role=UserRole.MENTOR.value, department="CSE")
    guard = User(external_uid="guard-1", email="gate@campus.edu", full_name="Main Gate", role=UserRole.SECURITY.value)
    hod = User(external_uid="hod-1", email="hod.cse@campus.edu", full_name="HOD CSE", role=UserRole.HOD.value, department="CSE")
    admin = User(external_uid="admin-1", email="admin@campus.edu", full_name="Admin", role=UserRole.ADMIN.value)
    faculty_a = User(external_uid="faculty-a", email="anita@campus.edu", full_name="Anita K", role=UserRole.FACULTY.value)
    faculty_b = User(external_uid="faculty-b", email="ravi@campus.edu", full_name="Ravi P", role=UserRole.FACULTY.value)
    db_session.add_all([mentor, other_mentor, guard, hod, admin, faculty_a, faculty_b])
    await db_session.flush()

    student = User(
        external_uid="student-1",
        email="arjun.das@campus.edu",
        full_name="Arjun Das",
        role=UserRole.STUDENT.value,
        roll_number="21CS001",
        department="CSE",
        mentor_id=mentor.id,
    )
    classmate = User(
        external_uid="student-2",
        email="priya.n@campus.edu",
        full_name="Priya N",
        role=UserRole.STUDENT.value,
        roll_number="21CS002",
        department="CSE",
        mentor_id=other_mentor.id,
    )
    db_session.add_all([student, classmate])

    course = Course(code="CS301", name="Operating Systems", department="CSE")
    other_course = Course(code="CS302", name="Computer Networks", department="CSE")
    db_session.add_all([course, other_course])
    await db_session.flush()
    section_a = Section(course_id=course.id, faculty_id=faculty_a.id, semester="ODD", year=2024)
    section_b = Section(course_id=course.id, faculty_id=faculty_b.id, semester="ODD", year=2024)
    section_c = Section(course_id=course.id, faculty_id=faculty_a.id, semester="ODD", year=2024)
    networks = Section(course_id=other_course.id, faculty_id=faculty_b.id, semester="ODD", year=2024)
    db_session.add_all([section_a, section_b, section_c, networks])
    await db_session.commit()

    # Plain snapshots; a service-side rollback would expire the ORM instances
    return SimpleNamespace(
        mentor=_snapshot(mentor),
        other_mentor=_snapshot(other_mentor),
        student=_snapshot(student),
        classmate=_snapshot(classmate),
        guard=_snapshot(guard),
        hod=_snapshot(hod),
        admin=_snapshot(admin),
        section_a=SimpleNamespace(id=section_a.id, course_id=course.id),
        section_b=SimpleNamespace(id=section_b.id, course_id=course.id),
        section_c=SimpleNamespace(id=section_c.id, course_id=course.id),
        networks=SimpleNamespace(id=networks.id, course_id=other_course.id),
    )


def auth_headers(user) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject=user.external_uid)}"}


@pytest.fixture()
def headers():
    return auth_headers


async def _parent_token(db: AsyncSession, leave_id) -> str:
    leave_id = UUID(str(leave_id))
    return (
        await db.execute(select(LeaveRequest.parent_action_token).where(LeaveRequest.id == leave_id))
    ).scalar_one()


@pytest.fixture()
def parent_token(db_session: AsyncSession):
    async def _get(leave_id) -> str:
        return await _parent_token(db_session, leave_id)

    return _get


@pytest.fixture()
def leave_factory(db_session: AsyncSession, campus: SimpleNamespace, notifier: RecordingNotifier, clock: FrozenClock):
    """Apply for a leave and optionally drive it through the parent and mentor steps."""

    async def _make(
        from_date: date = date(2024, 1, 10),
        to_date: date = date(2024, 1, 12),
        parent=None,
        mentor=None,
        student=None,
        parent_email: str = "p@x.com",
    ):
        student = student or campus.student
        resp = await leave_service.apply_leave(
            db_session,
            student.external_uid,
            LeaveApply(
                leave_type="Personal",
                from_date=from_date,
                to_date=to_date,
                reason="Family function",
                parent_email=parent_email,
            ),
            notifier=notifier,
            clock=clock,
        )
        if parent is not None:
            token = await _parent_token(db_session, resp.id)
            resp = await leave_service.parent_action(db_session, token, parent, notifier=notifier, clock=clock)
        if mentor is not None:
            mentor_user = campus.mentor if student.mentor_id == campus.mentor.id else campus.other_mentor
            resp = await leave_service.mentor_action(
                db_session,
                resp.id,
                mentor_user.external_uid,
                mentor,
                "Approved",
                notifier=notifier,
                clock=clock,
            )
        return resp

    return _make
