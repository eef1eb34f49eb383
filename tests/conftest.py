"""
Fixtures compartidas para Pytest.
Configura base de datos de test y clientes HTTP.
"""

from collections.abc import AsyncGenerator
from uuid import uuid4

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.auth.dependencies import get_current_user
from app.database import Base, get_db
from app.main import app
from app.models.patient import Patient
from app.models.user import User, UserRole

# ── Engine de test (SQLite async) ────────────────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Crea y destruye las tablas para cada test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    async with test_session_factory() as session:
        yield session


async def _make_user(db: AsyncSession, email: str, role: UserRole) -> User:
    user = User(
        id=uuid4(),
        email=email,
        role=role,
        first_name=role.value.capitalize(),
        last_name="Test",
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Crea un usuario admin de test."""
    return await _make_user(db_session, "admin@test.com", UserRole.ADMIN)


@pytest_asyncio.fixture
async def test_employee(db_session: AsyncSession) -> User:
    """Crea un usuario empleado de test."""
    return await _make_user(db_session, "empleado@test.com", UserRole.EMPLOYEE)


@pytest_asyncio.fixture
async def test_patient(db_session: AsyncSession) -> Patient:
    """Crea un paciente con plan de 10 sesiones."""
    patient = Patient(
        id=uuid4(),
        dni="30111222",
        first_name="Ana",
        last_name="Gómez",
        phone="1155550000",
        insurance_name="OSDE",
        planned_sessions=10,
    )
    db_session.add(patient)
    await db_session.commit()
    await db_session.refresh(patient)
    return patient


def _client_for(db_session: AsyncSession, user: User):
    async def _get_test_db():
        yield db_session

    async def _get_test_user():
        return user

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_current_user] = _get_test_user

    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, test_user: User) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP autenticado como admin que usa la DB de test."""
    async with _client_for(db_session, test_user) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def employee_client(
    db_session: AsyncSession, test_employee: User
) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP autenticado como empleado."""
    async with _client_for(db_session, test_employee) as ac:
        yield ac
    app.dependency_overrides.clear()
