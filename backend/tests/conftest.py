"""
Shared fixtures: a fresh in-memory database per test, an ASGI client wired to
it, and a small seeded tenant (two hospitals, their staff, one patient).
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["RATE_LIMIT_MAX_REQUESTS"] = "100000"
os.environ["GEMINI_API_KEY"] = "test-gemini-key"

from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from carepass.api.middleware import rate_limit
from carepass.api.middleware.auth import create_session_token
from carepass.db.postgres import Base, get_db
from carepass.main import app
from carepass.models import (
    User,
    UserRole,
    PatientProfile,
    Hospital,
    HospitalStatus,
)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    rate_limit._memory_store.clear()
    yield
    rate_limit._memory_store.clear()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    """Bearer headers carrying a session token for *user*."""
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_session_token(user)}"}
    return _headers


def _user(uid, email, role, hospital_id=None, **profile):
    return User(
        id=uid,
        email=email,
        role=role,
        hospital_id=hospital_id,
        profile=profile,
        is_active=True,
        setup_complete=True,
    )


@pytest.fixture
async def seeded(session_factory):
    """Hospitals h1/h2, their desk staff, a doctor, admins and patient p1."""
    h1 = Hospital(id="h1", name="Lagos General", email="info@lagosgeneral.ng",
                  phone="+2341000", address={"city": "Lagos"}, status=HospitalStatus.ACTIVE,
                  admin_user_id="admin1", setup_completed=True)
    h2 = Hospital(id="h2", name="Abuja Central", email="info@abujacentral.ng",
                  status=HospitalStatus.ACTIVE, setup_completed=True)

    staff = _user("staff1", "desk@lagosgeneral.ng", UserRole.RECEPTIONIST, "h1",
                  firstName="Bola", lastName="Desk")
    staff2 = _user("staff2", "desk@abujacentral.ng", UserRole.RECEPTIONIST, "h2",
                   firstName="Chidi", lastName="Desk")
    admin = _user("admin1", "admin@lagosgeneral.ng", UserRole.HOSPITAL_ADMIN, "h1",
                  firstName="Ngozi", lastName="Admin")
    doctor = _user("doctor1", "doctor@lagosgeneral.ng", UserRole.DOCTOR, "h1",
                   firstName="Emeka", lastName="Okafor")
    nurse = _user("nurse1", "nurse@lagosgeneral.ng", UserRole.NURSE, "h1",
                  firstName="Amaka", lastName="Nurse")
    super_admin = _user("sa1", "root@carepass.ng", UserRole.SUPER_ADMIN,
                        firstName="Root", lastName="Admin")
    patient = _user("p1", "p1@example.com", UserRole.PATIENT,
                    firstName="Ada", lastName="Obi", gender="female")
    profile = PatientProfile(
        user_id="p1",
        first_name="Ada",
        last_name="Obi",
        phone="+2348012345678",
        date_of_birth="1990-04-12",
        blood_type="O+",
        address={"street": "12 Marina", "city": "Lagos", "state": "Lagos"},
        emergency_contacts=[{"name": "Ike Obi", "phone": "+2348098765432", "relationship": "brother"}],
    )

    async with session_factory() as session:
        session.add_all([h1, h2, staff, staff2, admin, doctor, nurse, super_admin, patient, profile])
        await session.commit()

    return SimpleNamespace(
        h1=h1, h2=h2, staff=staff, staff2=staff2, admin=admin, doctor=doctor,
        nurse=nurse, super_admin=super_admin, patient=patient,
    )


@pytest.fixture
def checkin_payload():
    return {"patientEmail": "p1@example.com", "purpose": "fever", "department": "General"}
