"""Fixtures for API integration tests against an in-memory SQLite database."""

from collections.abc import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_security.api.errors import register_exception_handlers
from clinic_security.api.router import create_router
from clinic_security.core.config import Settings, get_settings
from clinic_security.core.dependencies import get_async_session, get_geolocator, get_sessionmaker


@pytest.fixture
def app(settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    """Create a FastAPI app with the full v1 router wired to the test database."""
    app = FastAPI()
    app.include_router(create_router(settings))
    register_exception_handlers(app, settings)

    async def _session() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = _session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_sessionmaker] = lambda: session_factory
    app.dependency_overrides[get_geolocator] = lambda: None
    return app


@pytest.fixture
def client(app: FastAPI) -> AsyncClient:
    """Create an async test client."""
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
