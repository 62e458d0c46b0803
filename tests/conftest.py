"""
Pytest configuration for pgrefetch.

Provides:
- A fake pool and a transaction manager on top of it
- Users model and rows shared by the orchestrator tests
- Settings and DSN fixtures for the PostgreSQL integration tests
"""

from __future__ import annotations

import os
from typing import Any, Dict, Generator, List

import psycopg
import pytest

from pgrefetch.config import Settings
from pgrefetch.domain.models import ModelDescriptor
from pgrefetch.errors import QueryError
from pgrefetch.infrastructure.db_factory import build_dsn
from pgrefetch.infrastructure.transactions import TransactionManager
from tests.fakes import FakePool


@pytest.fixture
def users_model() -> ModelDescriptor:
    return ModelDescriptor(
        primary_key="id",
        db_schema={"id": "number", "name": "string", "active": "boolean"},
    )


@pytest.fixture
def users_rows() -> List[Dict[str, Any]]:
    return [
        {"id": 1, "name": "Alice", "active": True},
        {"id": 2, "name": "Carol", "active": True},
        {"id": 3, "name": "Dave", "active": False},
    ]


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


@pytest.fixture
def manager(fake_pool: FakePool) -> TransactionManager:
    return TransactionManager(fake_pool)


@pytest.fixture
def query_error() -> QueryError:
    return QueryError("boom")


@pytest.fixture
def driver_error() -> psycopg.Error:
    return psycopg.OperationalError("server closed the connection unexpectedly")


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "pgrefetch"),
        db_acquire_attempts=1,
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return build_dsn(test_settings)


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def users_table(db_connection: psycopg.Connection) -> Generator[str, None, None]:
    """
    Create and seed a fresh `refetch_users` table for one test, then drop it.
    """
    table = "refetch_users"
    with db_connection.cursor() as cur:
        cur.execute(f"DROP TABLE IF EXISTS public.{table};")
        cur.execute(
            f"""
            CREATE TABLE public.{table} (
                id BIGSERIAL PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT UNIQUE,
                active BOOLEAN NOT NULL DEFAULT TRUE,
                prefs JSONB
            );
            """
        )
        cur.execute(
            f"""
            INSERT INTO public.{table} (name, email, active) VALUES
                ('Alice', 'alice@example.com', TRUE),
                ('Carol', 'carol@example.com', TRUE),
                ('Dave', 'dave@example.com', FALSE);
            """
        )
    yield table
    with db_connection.cursor() as cur:
        cur.execute(f"DROP TABLE IF EXISTS public.{table};")
