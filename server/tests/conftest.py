"""Test configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("WORKERS_ENABLED", "false")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from lending.core.database import Base, get_db  # noqa: E402
from lending.models import *  # noqa: E402,F403 - Import all models
from lending.models.equipment import EquipmentCategory  # noqa: E402
from lending.schemas.equipment import CreateEquipmentRequest, ReconcileSummary  # noqa: E402
from lending.services.consistency_service import ConsistencyGate  # noqa: E402
from lending.services.equipment_service import EquipmentService  # noqa: E402

from factories import ADMIN, OTHER_STUDENT, STAFF, STUDENT  # noqa: E402

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def equipment_factory(test_session):
    """Create catalogue entries through the service."""

    async def create(name: str = "Basketball", quantity: int = 10,
                     category: EquipmentCategory = EquipmentCategory.SPORTS):
        return await EquipmentService(test_session).create_equipment(
            CreateEquipmentRequest(name=name, category=category, quantity=quantity)
        )

    return create


@pytest_asyncio.fixture(scope="function")
async def basketball(equipment_factory):
    """Basketball with 10 units, all available."""
    return await equipment_factory("Basketball", 10)


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session):
    """Create a test FastAPI application."""
    from fastapi import FastAPI
    from fastapi.exceptions import RequestValidationError
    from starlette.exceptions import HTTPException as StarletteHTTPException

    from lending.core.exceptions import (
        ProblemDetailsException,
        generic_exception_handler,
        http_exception_handler,
        problem_details_handler,
        request_validation_handler,
    )
    from lending.routers import equipment, health, metrics, requests

    # Create a simplified test app without lifespan
    app = FastAPI(
        title="Equipment Lending API (Test)",
        description="Test version of the API",
        version="1.0.0-test",
    )

    # Register exception handlers
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Register API routers
    app.include_router(health.router)
    app.include_router(equipment.router)
    app.include_router(requests.router)
    app.include_router(metrics.router)

    # Override database dependency
    async def override_get_db():
        yield test_session

    async def skip_reconcile() -> ReconcileSummary:
        return ReconcileSummary(checked=0, fixed=0)

    gate = ConsistencyGate(runner=skip_reconcile)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[equipment.get_consistency_gate] = lambda: gate

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    from httpx import ASGITransport
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def student():
    return dict(STUDENT)


@pytest.fixture
def other_student():
    return dict(OTHER_STUDENT)


@pytest.fixture
def staff():
    return dict(STAFF)


@pytest.fixture
def admin():
    return dict(ADMIN)
