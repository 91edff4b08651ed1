"""Shared test fixtures for async database, sessions, users, and auth tokens."""

from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

import clinic_security.models  # noqa: F401
from clinic_security.core.config import Settings
from clinic_security.core.security import create_access_token, create_searchable_hash, hash_password
from clinic_security.models.base import Base
from clinic_security.models.user import User

TEST_SEARCH_HASH_KEY = "0123456789abcdef" * 4


@pytest.fixture
def settings() -> Settings:
    """Test application settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret_key="test-secret-key-not-for-production-use",
        jwt_algorithm="HS256",
        jwt_access_token_expire_minutes=30,
        jwt_refresh_token_expire_days=7,
        search_hash_key=TEST_SEARCH_HASH_KEY,
        geolocation_enabled=False,
        baseline_recalc_enabled=False,
        audit_immutability_on_startup=False,
        environment="test",
    )


@pytest.fixture
async def async_engine(settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Create a per-test async session."""
    async with session_factory() as session:
        yield session


async def make_user(
    session: AsyncSession,
    email: str,
    *,
    role: str = "staff",
    password: str = "testpassword123",
    is_active: bool = True,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """Insert a user with a searchable email hash."""
    user = User(
        email=email,
        email_hash=create_searchable_hash(email, TEST_SEARCH_HASH_KEY),
        first_name=first_name,
        last_name=last_name,
        hashed_password=hash_password(password),
        role=role,
        is_active=is_active,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture
async def admin_user(async_session: AsyncSession) -> User:
    """Create an admin user in the test database."""
    return await make_user(async_session, "admin@clinic.test", role="admin", first_name="Ada", last_name="Admin")


@pytest.fixture
async def staff_user(async_session: AsyncSession) -> User:
    """Create a staff user in the test database."""
    return await make_user(async_session, "nurse@clinic.test", role="staff", first_name="Nora", last_name="Nurse")


@pytest.fixture
def admin_token(settings: Settings, admin_user: User) -> str:
    """Generate a JWT access token for the admin user."""
    return create_access_token(
        subject=str(admin_user.id),
        role="admin",
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


@pytest.fixture
def staff_token(settings: Settings, staff_user: User) -> str:
    """Generate a JWT access token for the staff user."""
    return create_access_token(
        subject=str(staff_user.id),
        role="staff",
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


@pytest.fixture
def user_factory(async_session: AsyncSession):  # type: ignore[no-untyped-def]
    """Return a coroutine function that inserts additional users."""

    async def _create(email: str, **kwargs) -> User:  # type: ignore[no-untyped-def]
        return await make_user(async_session, email, **kwargs)

    return _create
