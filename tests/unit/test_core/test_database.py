"""Tests for the database engine and session management module."""

from unittest.mock import MagicMock, patch

import pytest

import poll_geo_api.core.database as db_module
from poll_geo_api.core.database import dialect_name, dispose_engine, get_engine, get_session_factory, init_engine


@pytest.fixture(autouse=True)
def _restore_engine_state():
    engine, factory = db_module._engine, db_module._session_factory
    yield
    db_module._engine, db_module._session_factory = engine, factory


class TestGetEngine:
    """Tests for get_engine."""

    def test_raises_when_not_initialized(self) -> None:
        original_engine = db_module._engine
        db_module._engine = None
        try:
            with pytest.raises(RuntimeError, match="Database engine not initialized"):
                get_engine()
        finally:
            db_module._engine = original_engine

    @pytest.mark.asyncio
    async def test_returns_engine_when_initialized(self) -> None:
        engine = init_engine("sqlite+aiosqlite:///:memory:")
        try:
            assert get_engine() is engine
        finally:
            await dispose_engine()


class TestGetSessionFactory:
    """Tests for get_session_factory."""

    def test_raises_when_not_initialized(self) -> None:
        original_factory = db_module._session_factory
        db_module._session_factory = None
        try:
            with pytest.raises(RuntimeError, match="Session factory not initialized"):
                get_session_factory()
        finally:
            db_module._session_factory = original_factory


class TestInitEngine:
    """Tests for init_engine."""

    def test_postgres_pool_defaults(self) -> None:
        with patch("poll_geo_api.core.database.create_async_engine", return_value=MagicMock()) as mock_create:
            init_engine("postgresql+asyncpg://localhost/db", echo=False)
            mock_create.assert_called_once_with(
                "postgresql+asyncpg://localhost/db", echo=False, pool_size=10, max_overflow=5
            )

    def test_sqlite_skips_pool_sizing(self) -> None:
        engine = MagicMock()
        with (
            patch("poll_geo_api.core.database.create_async_engine", return_value=engine) as mock_create,
            patch("poll_geo_api.core.database.event.listen") as mock_listen,
        ):
            init_engine("sqlite+aiosqlite:///:memory:")
            mock_create.assert_called_once_with("sqlite+aiosqlite:///:memory:")
            mock_listen.assert_called_once_with(engine.sync_engine, "connect", db_module._set_sqlite_pragmas)

    @pytest.mark.asyncio
    async def test_sqlite_busy_timeout_applied(self) -> None:
        engine = init_engine("sqlite+aiosqlite:///:memory:")
        try:
            async with engine.connect() as conn:
                result = await conn.exec_driver_sql("PRAGMA busy_timeout")
                assert result.scalar() == 5000
        finally:
            await dispose_engine()

    def test_init_engine_with_schema(self) -> None:
        """init_engine with schema sets the asyncpg search_path."""
        with patch("poll_geo_api.core.database.create_async_engine", return_value=MagicMock()) as mock_create:
            init_engine("postgresql+asyncpg://localhost/db", schema="pr_42")
            _, kwargs = mock_create.call_args
            assert kwargs["connect_args"] == {"server_settings": {"search_path": "pr_42,public"}}

    def test_connect_args_must_be_dict(self) -> None:
        with pytest.raises(TypeError):
            init_engine("postgresql+asyncpg://localhost/db", schema="pr_42", connect_args="bad")


class TestDisposeEngine:
    """Tests for dispose_engine."""

    @pytest.mark.asyncio
    async def test_disposes_engine(self) -> None:
        init_engine("sqlite+aiosqlite:///:memory:")
        await dispose_engine()
        assert db_module._engine is None
        assert db_module._session_factory is None

    @pytest.mark.asyncio
    async def test_dispose_when_no_engine(self) -> None:
        original = db_module._engine
        db_module._engine = None
        try:
            await dispose_engine()
        finally:
            db_module._engine = original


class TestDialectName:
    """Tests for dialect_name."""

    @pytest.mark.asyncio
    async def test_sqlite(self, async_session) -> None:
        assert dialect_name(async_session) == "sqlite"
