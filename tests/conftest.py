"""Pytest fixtures for nomina engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from nomina_engine.config import Settings
from nomina_engine.models import Adjustment, Base, Company, Employee, PayrollPeriod
from nomina_engine.services.closure_service import ClosureCoordinator
from nomina_engine.services.period_service import PeriodService
from nomina_engine.services.retry import RetryPolicy

# Use in-memory SQLite for tests (with async support)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    """Create a fresh in-memory database per test.

    pysqlite's implicit transaction handling breaks SAVEPOINT, so BEGIN is
    emitted explicitly.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    """Settings with no rollback backoff so failure paths run fast."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="DEBUG",
        closure_timeout_seconds=5.0,
        rollback_max_attempts=3,
        rollback_backoff_seconds=0.0,
        ghost_period_staleness_days=7,
        disability_policy="standard_2d_100_rest_66",
    )


@pytest.fixture
def period_service(session: AsyncSession, settings: Settings) -> PeriodService:
    return PeriodService(session, settings=settings)


@pytest.fixture
def coordinator(
    session: AsyncSession, settings: Settings, period_service: PeriodService
) -> ClosureCoordinator:
    return ClosureCoordinator(
        session,
        period_service=period_service,
        retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=0),
        settings=settings,
    )


@pytest.fixture
async def test_company(session: AsyncSession) -> Company:
    """Create a test company."""
    company = Company(
        company_id=uuid4(),
        name="Comercializadora Andina SAS",
        tax_id=f"900{uuid4().int % 1_000_000:06d}",
        default_period_type="monthly",
    )
    session.add(company)
    await session.flush()
    return company


@pytest.fixture
def employee_factory(session: AsyncSession, test_company: Company):
    """Persist an affiliated, active employee of the test company."""

    async def make_employee(base_salary: Decimal, first_name: str = "Ana", **overrides) -> Employee:
        fields = dict(
            employee_id=uuid4(),
            company_id=test_company.company_id,
            document_number=str(uuid4().int % 10_000_000_000),
            first_name=first_name,
            last_name="Restrepo",
            base_salary=base_salary,
            hire_date=date(2022, 3, 1),
            health_insurer="EPS Sura",
            pension_fund="Porvenir",
            risk_insurer="ARL Sura",
        )
        fields.update(overrides)
        employee = Employee(**fields)
        session.add(employee)
        await session.flush()
        return employee

    return make_employee


@pytest.fixture
async def minimum_wage_employee(employee_factory) -> Employee:
    """Earns exactly the 2024 minimum wage."""
    return await employee_factory(Decimal("1300000"), first_name="Ana")


@pytest.fixture
async def second_employee(employee_factory) -> Employee:
    return await employee_factory(Decimal("2000000"), first_name="Carlos")


@pytest.fixture
async def august_period(period_service: PeriodService, test_company: Company) -> PayrollPeriod:
    """Monthly draft period for August 2024 (46-hour workweek in force)."""
    return await period_service.create_period(
        test_company.company_id,
        date(2024, 8, 1),
        date(2024, 8, 31),
        "monthly",
        actor_id="analyst-1",
    )


@pytest.fixture
def adjustment_factory(session: AsyncSession):
    """Persist a novedad for an employee in a period."""

    async def add_adjustment(
        period: PayrollPeriod, employee: Employee, adjustment_type: str, **fields
    ) -> Adjustment:
        adjustment = Adjustment(
            period_id=period.period_id,
            employee_id=employee.employee_id,
            adjustment_type=adjustment_type,
            **fields,
        )
        session.add(adjustment)
        await session.flush()
        return adjustment

    return add_adjustment


@pytest.fixture
async def closed_period(
    period_service: PeriodService,
    coordinator: ClosureCoordinator,
    august_period: PayrollPeriod,
    minimum_wage_employee: Employee,
    second_employee: Employee,
) -> PayrollPeriod:
    """August period calculated and closed for both employees."""
    employee_ids = [minimum_wage_employee.employee_id, second_employee.employee_id]
    await period_service.calculate_period(august_period.period_id, employee_ids)
    await coordinator.close(august_period.period_id, employee_ids, actor_id="analyst-1")
    return await period_service.get_period(august_period.period_id)
