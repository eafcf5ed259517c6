import asyncio
import os

# Settings are read once at import time; keep tests off any real database and network
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["FASTFOREX_API_KEY"] = ""

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fundledger import models  # noqa: F401  registers the tables on Base.metadata
from fundledger.database import Base


async def _with_database(scenario):
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    sessions = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        return await scenario(sessions)
    finally:
        await engine.dispose()


@pytest.fixture
def run_db():
    """
    Run ``async def scenario(sessions)`` against a fresh in-memory database.

    The whole scenario runs inside one event loop, so the engine never
    crosses loops.
    """
    def run(scenario):
        return asyncio.run(_with_database(scenario))
    return run
