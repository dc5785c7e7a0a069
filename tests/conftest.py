"""Shared pytest fixtures and test configuration."""

from __future__ import annotations

import os
import sys
from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Ensure src is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))


class MockCursor:
    """Mock Oracle cursor supporting context manager and common operations.

    ``fetchone`` first drains ``_fetchone_queue`` (one entry per call) so a
    multi-statement transaction can be scripted; afterwards it falls back
    to the first row of ``_rows``.
    """

    def __init__(self) -> None:
        self.description: list[tuple[str, ...]] | None = None
        self._rows: list[tuple[Any, ...]] = []
        self._fetchone_queue: list[tuple[Any, ...] | None] = []
        self._execute_log: list[tuple[str, dict[str, Any] | None]] = []
        self._executemany_log: list[tuple[str, list[dict[str, Any]]]] = []
        self.rowcount: int = 0

    def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        self._execute_log.append((sql, params))

    def executemany(self, sql: str, rows: list[dict[str, Any]]) -> None:
        self._executemany_log.append((sql, rows))
        self.rowcount = len(rows)

    def fetchall(self) -> list[tuple[Any, ...]]:
        return self._rows

    def fetchone(self) -> tuple[Any, ...] | None:
        if self._fetchone_queue:
            return self._fetchone_queue.pop(0)
        return self._rows[0] if self._rows else None

    def __enter__(self) -> MockCursor:
        return self

    def __exit__(self, *args: Any) -> None:
        pass


class MockConnection:
    """Mock Oracle connection supporting context manager."""

    def __init__(self) -> None:
        self._cursor = MockCursor()
        self._committed = False
        self._rolled_back = False
        self._closed = False

    def cursor(self) -> MockCursor:
        return self._cursor

    def commit(self) -> None:
        self._committed = True

    def rollback(self) -> None:
        self._rolled_back = True

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> MockConnection:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class MockPool:
    """Mock Oracle connection pool."""

    def __init__(self) -> None:
        self._connection = MockConnection()

    def acquire(self) -> MockConnection:
        return self._connection

    def close(self, force: bool = False) -> None:
        pass


@pytest.fixture
def mock_pool() -> MockPool:
    """Provide a mock Oracle connection pool."""
    return MockPool()


@pytest.fixture
def mock_connection(mock_pool: MockPool) -> MockConnection:
    return mock_pool._connection


@pytest.fixture
def mock_cursor(mock_connection: MockConnection) -> MockCursor:
    return mock_connection._cursor


@pytest.fixture
def patch_db_pool(mock_pool: MockPool) -> Generator[MockPool, None, None]:
    """Patch the database module to use mock pool."""
    with (
        patch("rafflio.core.database._pool", mock_pool),
        patch("rafflio.core.database.get_pool", return_value=mock_pool),
    ):
        yield mock_pool


@pytest.fixture
def app(patch_db_pool: MockPool):  # type: ignore[no-untyped-def]
    """Create a FastAPI test app with mocked database."""
    from rafflio.core.config import Settings
    from rafflio.main import create_app

    settings = Settings(app_env="testing", mercadopago_access_token="")
    return create_app(settings=settings)


@pytest.fixture
def client(app):  # type: ignore[no-untyped-def]
    return TestClient(app)


# ── Helpers for setting up mock query results ────────────────────────

def set_mock_query_result(
    cursor: MockCursor,
    columns: list[str],
    rows: list[tuple[Any, ...]],
) -> None:
    """Configure mock cursor to return specific query results."""
    cursor.description = [(col.upper(),) for col in columns]
    cursor._rows = rows
    cursor.rowcount = len(rows)


def queue_fetchone(cursor: MockCursor, *rows: tuple[Any, ...] | None) -> None:
    """Script the results of successive ``fetchone`` calls."""
    cursor._fetchone_queue.extend(rows)


# ── Auth helpers for protected route tests ───────────────────────────


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Return Authorization headers with a valid admin JWT."""
    from rafflio.core.security import create_access_token

    token = create_access_token(subject="test-admin", role="admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def operator_headers() -> dict[str, str]:
    from rafflio.core.security import create_access_token

    token = create_access_token(subject="test-operator", role="operator")
    return {"Authorization": f"Bearer {token}"}
