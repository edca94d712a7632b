"""
PayCore - Test Configuration

Pytest fixtures and configuration.
"""

from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import paycore.models  # noqa: F401
from paycore.database import Base, get_async_session
from paycore.models.payroll import Employee, PayFrequency, PayType
from paycore.services.deduction_service import seed_deduction_types
from paycore.services.tax_law_service import seed_nigerian_tax_tables
from main import app


# In-memory database shared by every connection of the test engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def actor_id():
    return uuid4()


@pytest.fixture
def headers(tenant_id, actor_id) -> dict:
    """Identity headers forwarded by the gateway."""
    return {"X-Tenant-ID": str(tenant_id), "X-Actor-ID": str(actor_id)}


@pytest_asyncio.fixture
async def tax_tables(db_session: AsyncSession):
    """PITA 2011 and NTA 2025 tables for NG."""
    return await seed_nigerian_tax_tables(db_session)


@pytest_asyncio.fixture
async def deduction_catalog(db_session: AsyncSession, tenant_id):
    """Default deduction types for the test tenant."""
    created = await seed_deduction_types(db_session, tenant_id)
    await db_session.commit()
    return {deduction_type.code: deduction_type for deduction_type in created}


def make_employee(tenant_id, code: str = "EMP-001", **overrides) -> Employee:
    values = dict(
        id=uuid4(),
        tenant_id=tenant_id,
        employee_code=code,
        first_name="Adaeze",
        last_name="Okafor",
        email=f"{code.lower()}@example.com",
        is_active=True,
        pay_type=PayType.SALARY,
        pay_amount=Decimal("300000.00"),
        pay_frequency=PayFrequency.MONTHLY,
        pension_enabled=False,
        nhf_enabled=False,
        nhis_enabled=False,
        claimed_reliefs=[],
        relief_proofs=[],
    )
    values.update(overrides)
    return Employee(**values)


@pytest_asyncio.fixture
async def employee(db_session: AsyncSession, tenant_id, tax_tables, deduction_catalog) -> Employee:
    """Monthly salaried employee on 300,000 with no statutory enrolment."""
    employee = make_employee(tenant_id)
    db_session.add(employee)
    await db_session.commit()
    return employee


@pytest.fixture
def employee_factory(db_session: AsyncSession, tenant_id):
    """Persist extra employees, for the test tenant unless another is given."""

    async def create(code: str, tenant=None, **overrides) -> Employee:
        employee = make_employee(tenant or tenant_id, code, **overrides)
        db_session.add(employee)
        await db_session.commit()
        return employee

    return create
