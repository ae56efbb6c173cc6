"""Unit tests for DB connection parameters, provisioning and SSL fallback."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from caretrack.db import Database, db_params_from_env, should_retry_with_ssl_disable

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _clear_pg_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "DATABASE_URL",
        "POSTGRES_HOST",
        "POSTGRES_PORT",
        "POSTGRES_USER",
        "POSTGRES_PASSWORD",
        "POSTGRES_DB",
        "POSTGRES_SSLMODE",
    ):
        monkeypatch.delenv(var, raising=False)


def _conn(exists: int | None = 1) -> AsyncMock:
    conn = AsyncMock()
    conn.fetchval = AsyncMock(return_value=exists)
    conn.execute = AsyncMock()
    conn.close = AsyncMock()
    return conn


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def test_defaults_without_env() -> None:
    assert db_params_from_env() == {
        "host": "localhost",
        "port": 5432,
        "user": "caretrack",
        "password": "caretrack",
        "database": None,
        "ssl": None,
    }


def test_database_url_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POSTGRES_HOST", "ignored")
    monkeypatch.setenv("DATABASE_URL", "postgres://ct:pw@db.internal:6543/clinic?sslmode=require")

    db = Database.from_env()

    assert (db.host, db.port, db.user, db.password) == ("db.internal", 6543, "ct", "pw")
    assert db.db_name == "clinic"
    assert db.ssl == "require"


def test_explicit_name_wins_over_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgres://ct:pw@db.internal/clinic")
    assert Database.from_env("other").db_name == "other"


def test_postgres_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POSTGRES_HOST", "pg")
    monkeypatch.setenv("POSTGRES_PORT", "5433")
    monkeypatch.setenv("POSTGRES_DB", "care")
    monkeypatch.setenv("POSTGRES_SSLMODE", " Verify-Full ")

    db = Database.from_env()

    assert (db.host, db.port, db.db_name, db.ssl) == ("pg", 5433, "care", "verify-full")


def test_invalid_sslmode_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POSTGRES_SSLMODE", "sometimes")
    assert Database.from_env().ssl is None


@pytest.mark.parametrize(
    ("exc", "configured", "expected"),
    [
        (ConnectionError("unexpected connection_lost() call"), None, True),
        (ConnectionError("unexpected connection_lost() call"), "require", False),
        (ConnectionError("refused"), None, False),
        (OSError("unexpected connection_lost() call"), None, False),
    ],
)
def test_should_retry_with_ssl_disable(exc, configured, expected) -> None:
    assert should_retry_with_ssl_disable(exc, configured) is expected


# ---------------------------------------------------------------------------
# Provisioning and pool
# ---------------------------------------------------------------------------


@patch("caretrack.db.asyncpg.connect", new_callable=AsyncMock)
async def test_provision_creates_missing_database(mock_connect: AsyncMock) -> None:
    conn = _conn(exists=None)
    mock_connect.return_value = conn

    await Database(db_name='we"ird').provision()

    assert mock_connect.await_args.kwargs["database"] == "postgres"
    conn.execute.assert_awaited_once_with('CREATE DATABASE "we""ird" TEMPLATE template0')
    conn.close.assert_awaited_once()


@patch("caretrack.db.asyncpg.connect", new_callable=AsyncMock)
async def test_provision_skips_existing_database(mock_connect: AsyncMock) -> None:
    conn = _conn(exists=1)
    mock_connect.return_value = conn

    await Database(db_name="caretrack", ssl="disable").provision()

    conn.execute.assert_not_awaited()
    assert mock_connect.await_args.kwargs["ssl"] == "disable"


@patch("caretrack.db.asyncpg.connect", new_callable=AsyncMock)
async def test_provision_retries_with_ssl_disable(mock_connect: AsyncMock) -> None:
    mock_connect.side_effect = [ConnectionError("unexpected connection_lost() call"), _conn()]

    await Database(db_name="caretrack").provision()

    assert mock_connect.await_count == 2
    assert mock_connect.await_args_list[0].kwargs.get("ssl") is None
    assert mock_connect.await_args_list[1].kwargs["ssl"] == "disable"


@patch("caretrack.db.asyncpg.connect", new_callable=AsyncMock)
async def test_provision_does_not_retry_other_errors(mock_connect: AsyncMock) -> None:
    mock_connect.side_effect = ConnectionRefusedError("nope")

    with pytest.raises(ConnectionRefusedError):
        await Database(db_name="caretrack").provision()
    assert mock_connect.await_count == 1


@patch("caretrack.db.asyncpg.create_pool", new_callable=AsyncMock)
async def test_connect_and_close(mock_create_pool: AsyncMock) -> None:
    pool = AsyncMock()
    mock_create_pool.return_value = pool
    db = Database(db_name="caretrack", ssl="require", max_pool_size=3)

    assert await db.connect() is pool
    kwargs = mock_create_pool.await_args.kwargs
    assert kwargs["ssl"] == "require"
    assert kwargs["max_size"] == 3
    assert db.require_pool() is pool

    await db.close()
    pool.close.assert_awaited_once()
    assert db.pool is None


@patch("caretrack.db.asyncpg.create_pool", new_callable=AsyncMock)
async def test_connect_retries_with_ssl_disable(mock_create_pool: AsyncMock) -> None:
    pool = AsyncMock()
    mock_create_pool.side_effect = [ConnectionError("unexpected connection_lost() call"), pool]

    assert await Database(db_name="caretrack").connect() is pool
    assert mock_create_pool.await_args_list[1].kwargs["ssl"] == "disable"


def test_require_pool_without_connect() -> None:
    with pytest.raises(RuntimeError, match="no active connection pool"):
        Database(db_name="caretrack").require_pool()
