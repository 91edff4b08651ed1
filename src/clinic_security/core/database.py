"""Process-wide async engine and session factory.

The API lifespan and each CLI command own exactly one engine at a time;
``engine_lifespan`` pairs initialization with disposal for the latter.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

_POOL_DEFAULTS: dict[str, Any] = {"pool_size": 10, "max_overflow": 5, "pool_pre_ping": True}

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Return the active engine.

    Raises:
        RuntimeError: If ``init_engine`` has not been called.
    """
    if _engine is None:
        msg = "Database engine not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to the active engine.

    Raises:
        RuntimeError: If ``init_engine`` has not been called.
    """
    if _session_factory is None:
        msg = "Session factory not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _session_factory


def _engine_options(database_url: str, schema: str | None, options: dict[str, Any]) -> dict[str, Any]:
    if schema is not None:
        connect_args = options.pop("connect_args", {})
        if not isinstance(connect_args, dict):
            msg = "connect_args must be a dict"
            raise TypeError(msg)
        options["connect_args"] = {**connect_args, "server_settings": {"search_path": f"{schema},public"}}

    # SQLite engines do not accept queue pool sizing
    pooled = options.get("poolclass") is not StaticPool and make_url(database_url).get_backend_name() != "sqlite"
    if pooled:
        options = {**_POOL_DEFAULTS, **options}
    return options


def init_engine(database_url: str, *, schema: str | None = None, **kwargs: Any) -> AsyncEngine:
    """Create the engine and session factory, replacing any previous pair.

    Args:
        database_url: Async connection string.
        schema: PostgreSQL schema placed first on the search path.
        **kwargs: Passed through to ``create_async_engine``.
    """
    global _engine, _session_factory  # noqa: PLW0603
    _engine = create_async_engine(database_url, **_engine_options(database_url, schema, kwargs))
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def engine_lifespan(database_url: str, *, schema: str | None = None) -> AsyncIterator[AsyncEngine]:
    """Initialize the engine for the duration of a block, then dispose it."""
    engine = init_engine(database_url, schema=schema)
    try:
        yield engine
    finally:
        await dispose_engine()


def dialect_name(session: AsyncSession) -> str:
    """Return the dialect ("postgresql", "sqlite", ...) a session is bound to."""
    return session.get_bind().dialect.name
