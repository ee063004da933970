"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (attendance, regularization, leave, etc.).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hr_ledger.auth.schemas import Actor
from hr_ledger.common.constants import UserRole
from hr_ledger.config import settings
from hr_ledger.database import Base, get_db, get_session_factory
from hr_ledger.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
# (e.g. Employee → LeaveBalance, Shift, etc.)
import hr_ledger.attendance.models  # noqa: F401
import hr_ledger.common.audit  # noqa: F401
import hr_ledger.core.models  # noqa: F401
import hr_ledger.leave.models  # noqa: F401
import hr_ledger.notifications.models  # noqa: F401
import hr_ledger.regularization.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite file in a temp dir) ───────────────────────
# A file rather than ":memory:" so sessions opened beside ``db`` see the same tables.

_DB_DIR = Path(tempfile.mkdtemp(prefix="hr_ledger_tests_"))
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{_DB_DIR / 'ledger.db'}"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f"),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_DB_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from hr_ledger.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def _override_get_session_factory() -> async_sessionmaker:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

async def make_company(
    db: AsyncSession,
    *,
    name: str = "Acme Labs",
    timezone_name: str = "UTC",
):
    from hr_ledger.core.models import Company

    company = Company(
        id=uuid.uuid4(),
        name=name,
        timezone=timezone_name,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(company)
    await db.flush()
    return company


async def make_shift(
    db: AsyncSession,
    company_id: uuid.UUID,
    *,
    code: str = "GEN",
    start: time = time(9, 0),
    end: time = time(18, 0),
    break_minutes: int = 60,
    grace_minutes: int = 15,
    half_day_minutes: int = 240,
    full_day_minutes: int = 480,
    working_days: Optional[list[int]] = None,
    is_default: bool = True,
):
    from hr_ledger.attendance.models import Shift

    now = datetime.now(timezone.utc)
    shift = Shift(
        id=uuid.uuid4(),
        company_id=company_id,
        name=f"{code} shift",
        code=code,
        start_time=start,
        end_time=end,
        break_minutes=break_minutes,
        grace_minutes=grace_minutes,
        half_day_minutes=half_day_minutes,
        full_day_minutes=full_day_minutes,
        working_days=working_days if working_days is not None else [0, 1, 2, 3, 4],
        is_default=is_default,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(shift)
    await db.flush()
    return shift


async def make_employee(
    db: AsyncSession,
    company_id: uuid.UUID,
    *,
    first_name: str = "Test",
    last_name: str = "User",
    email: Optional[str] = None,
    shift_id: Optional[uuid.UUID] = None,
    is_active: bool = True,
):
    from hr_ledger.core.models import Employee

    now = datetime.now(timezone.utc)
    employee = Employee(
        id=uuid.uuid4(),
        company_id=company_id,
        employee_code=f"AC-{uuid.uuid4().hex[:6].upper()}",
        first_name=first_name,
        last_name=last_name,
        email=email or f"{first_name.lower()}.{uuid.uuid4().hex[:4]}@acme.io",
        shift_id=shift_id,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    db.add(employee)
    await db.flush()
    return employee


async def make_leave_type(
    db: AsyncSession,
    company_id: uuid.UUID,
    *,
    code: str = "CL",
    name: str = "Casual Leave",
    default_days: Decimal = Decimal("12"),
    requires_approval: bool = True,
    requires_document: bool = False,
    enforce_non_negative: bool = True,
    allow_backdated: bool = True,
    max_days: Optional[Decimal] = None,
    is_active: bool = True,
):
    from hr_ledger.leave.models import LeaveType

    leave_type = LeaveType(
        id=uuid.uuid4(),
        company_id=company_id,
        code=code,
        name=name,
        default_days=default_days,
        is_paid=True,
        requires_document=requires_document,
        requires_approval=requires_approval,
        max_days=max_days,
        enforce_non_negative=enforce_non_negative,
        allow_backdated=allow_backdated,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )
    db.add(leave_type)
    await db.flush()
    return leave_type


def actor_for(employee, role: UserRole = UserRole.employee) -> Actor:
    return Actor(employee_id=employee.id, company_id=employee.company_id, role=role)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """Aware UTC datetime on *day*."""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def next_weekday(start: date, weekday: int = 0) -> date:
    """First date on or after *start* falling on *weekday* (Monday=0)."""
    return start + timedelta(days=(weekday - start.weekday()) % 7)


@pytest.fixture
async def company(db):
    company = await make_company(db)
    await make_shift(db, company.id)
    return company


@pytest.fixture
async def employee(db, company):
    return await make_employee(db, company.id, first_name="Asha")


@pytest.fixture
async def manager(db, company):
    return await make_employee(db, company.id, first_name="Mira")


@pytest.fixture
async def hr_admin(db, company):
    return await make_employee(db, company.id, first_name="Hari")


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_header(employee_id: uuid.UUID, role: UserRole = UserRole.employee) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(employee_id, role)}"}
