"""Async engine, session factory and dialect helpers.

Production runs on PostgreSQL through asyncpg; local runs and the test
suite use SQLite through aiosqlite. Aggregate writes rely on
``INSERT ... ON CONFLICT DO UPDATE``, which both dialects provide through
their own ``insert`` constructs.
"""

from sqlalchemy import event
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

_SQLITE_BUSY_TIMEOUT_MS = 5000


def get_engine() -> AsyncEngine:
    """The process-wide engine created by :func:`init_engine`.

    Raises:
        RuntimeError: If called before ``init_engine``.
    """
    if _engine is None:
        msg = "Database engine not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process-wide engine.

    Raises:
        RuntimeError: If called before ``init_engine``.
    """
    if _session_factory is None:
        msg = "Session factory not initialized. Call init_engine() first."
        raise RuntimeError(msg)
    return _session_factory


def _set_sqlite_pragmas(dbapi_connection, _record) -> None:  # noqa: ANN001
    # Scheduler and request sessions share one local file
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout = {_SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def init_engine(database_url: str, *, schema: str | None = None, **kwargs: object) -> AsyncEngine:
    """Create the engine and session factory used by the API, scheduler and CLI.

    Args:
        database_url: Async connection string (``postgresql+asyncpg://`` or
            ``sqlite+aiosqlite://``).
        schema: PostgreSQL schema put first on the ``search_path``, for
            isolated preview environments.
        **kwargs: Passed through to ``create_async_engine``.

    Returns:
        The new engine.
    """
    global _engine, _session_factory  # noqa: PLW0603
    if schema is not None:
        connect_args = kwargs.pop("connect_args", {})
        if not isinstance(connect_args, dict):
            msg = "connect_args must be a dict"
            raise TypeError(msg)
        connect_args["server_settings"] = {"search_path": f"{schema},public"}
        kwargs["connect_args"] = connect_args

    is_sqlite = database_url.startswith("sqlite")
    if not is_sqlite and kwargs.get("poolclass") is not StaticPool:
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 5)

    _engine = create_async_engine(database_url, **kwargs)
    if is_sqlite:
        event.listen(_engine.sync_engine, "connect", _set_sqlite_pragmas)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Close every pooled connection and forget the engine."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None


def dialect_name(session: AsyncSession) -> str:
    """Name of the SQL dialect a session is bound to (``postgresql``, ``sqlite``)."""
    return session.get_bind().dialect.name


def upsert_for(session: AsyncSession):  # noqa: ANN201
    """Dialect-specific ``insert`` construct supporting ``on_conflict_do_update``."""
    if dialect_name(session) == "postgresql":
        return pg_insert
    return sqlite_insert
