"""Fixtures backed by a throwaway SQLite database."""

import pytest_asyncio

from commhub.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    init_database(f"sqlite+aiosqlite:///{tmp_path}/commhub.db")
    await create_tables()
    yield get_session_maker()
    await close_database()
