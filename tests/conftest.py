"""
Pytest configuration for the betting query toolkit.

Provides fixtures for:
- Database connection management
- Schema bootstrap and test data seeding
- Settings override for integration tests
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Generator

import psycopg
import pytest

from dbre_bench.config import Settings, get_settings
from dbre_bench.infrastructure.schema import init_schema

SMALL_USERS = 50
SMALL_EVENTS = 40
SMALL_BETS = 2_000
# Users given enough bets yesterday to appear in the user-activity report.
HEAVY_BETTORS = 3
HEAVY_BETTOR_DAILY_BETS = 6


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    """Settings are cached; tests that patch the environment need a fresh read."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


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
        db_name=os.getenv("DB_NAME", "betting"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


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
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def autocommit_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """Autocommit connection for CONCURRENTLY / VACUUM statements."""
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection) -> bool:
    """
    Ensure the users/events/bets tables exist.
    """
    init_schema(db_connection)
    return True


@pytest.fixture(scope="function")
def clean_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty the betting tables before and after each test function.
    """
    truncate = "TRUNCATE TABLE public.bets, public.events, public.users RESTART IDENTITY CASCADE;"
    with db_connection.cursor() as cur:
        cur.execute(truncate)
    db_connection.commit()
    yield
    with db_connection.cursor() as cur:
        cur.execute(truncate)
    db_connection.commit()


@pytest.fixture(scope="function")
def seeded_db_small(
    db_connection: psycopg.Connection,
    clean_tables,
    test_dsn: str,
) -> int:
    """
    Seed a small dataset through the generator, plus a few heavy bettors
    placing several bets each yesterday.

    Returns the number of bets seeded.
    """
    from scripts.generate_data import generate_csvs, load_dataset

    with tempfile.TemporaryDirectory() as tmpdir:
        paths = generate_csvs(
            Path(tmpdir),
            users=SMALL_USERS,
            events=SMALL_EVENTS,
            bets=SMALL_BETS,
            batch_size=500,
            seed=42,
        )
        load_dataset(test_dsn, paths)

    with db_connection.cursor() as cur:
        cur.execute(
            """
            INSERT INTO public.bets (user_id, event_id, status, amount, placed_at)
            SELECT u, 1, 'SETTLED', 10 * u + g,
                   CURRENT_DATE - INTERVAL '1 day' + g * INTERVAL '1 hour'
            FROM generate_series(1, %s) AS u, generate_series(1, %s) AS g
            """,
            (HEAVY_BETTORS, HEAVY_BETTOR_DAILY_BETS),
        )
        cur.execute("SELECT COUNT(*) FROM public.bets;")
        count = cur.fetchone()[0]
    db_connection.commit()

    return count


@pytest.fixture(scope="session")
def heavy_bettors() -> tuple[list[int], int]:
    """User ids seeded by `seeded_db_small` as heavy bettors, and their bets each."""
    return list(range(1, HEAVY_BETTORS + 1)), HEAVY_BETTOR_DAILY_BETS
