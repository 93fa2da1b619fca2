"""Shared fixtures for PostgreSQL integration tests"""
import os
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio

from goaltracker.db.connection import Database
from goaltracker.db.queries.gamification import PostgresGamificationStore

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


def pytest_collection_modifyitems(config, items):
    """Skip integration tests when no test database is configured"""
    if TEST_DATABASE_URL:
        return
    skip = pytest.mark.skip(reason="TEST_DATABASE_URL not set")
    for item in items:
        if "tests/integration/" in item.nodeid:
            item.add_marker(pytest.mark.integration)
            item.add_marker(skip)


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Connection pool against the test database with the schema applied"""
    database = Database(TEST_DATABASE_URL, min_size=1, max_size=20)
    await database.init_pool()
    await database.apply_schema()
    try:
        yield database
    finally:
        await database.close_pool()


@pytest_asyncio.fixture
async def pg_store(database, seed_catalog) -> PostgresGamificationStore:
    """Store with the bundled catalog seeded"""
    store = PostgresGamificationStore(database)
    await store.seed_achievements(seed_catalog)
    return store


@pytest_asyncio.fixture
async def pg_user_id(database) -> AsyncGenerator[str, None]:
    """Fresh user row, removed afterwards"""
    user_id = f"it-{uuid4()}"
    async with database.connection() as conn:
        await conn.execute("INSERT INTO users (id, name) VALUES (%s, %s)", (user_id, "Integration User"))
        await conn.commit()
    yield user_id
    async with database.connection() as conn:
        await conn.execute("DELETE FROM users WHERE id = %s", (user_id,))
        await conn.commit()
