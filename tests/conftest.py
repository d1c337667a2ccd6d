import asyncio
import os
import shutil
import tempfile
from pathlib import Path


# Point the application at a throwaway SQLite database before importing
# soulscore modules (settings and the engine are created at import time).
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="soulscore_pytest_"))

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_SESSION_DIR / 'test.db'}"

# Keep external integrations quiet during tests
os.environ["OPENAI_API_KEY"] = ""
os.environ.setdefault("DEBUG", "false")

import pytest  # noqa: E402

from soulscore.services.database_service import database_service  # noqa: E402


def pytest_sessionfinish(session, exitstatus):
    """Cleanup the temporary database after the test session."""
    shutil.rmtree(_SESSION_DIR, ignore_errors=True)


async def _reset_db() -> None:
    await database_service.drop_db()
    await database_service.init_db()


@pytest.fixture
async def db():
    """Fresh schema per test; pooled connections are dropped afterwards."""
    await _reset_db()
    yield database_service
    await database_service.close()


@pytest.fixture
async def session(db):
    async with db.get_session() as s:
        yield s


@pytest.fixture
def seed():
    """
    For synchronous (TestClient) tests: reset the schema, then run
    ``await func(session)`` in a committed session and return its result.

    Seed before opening the TestClient; the client runs its own event loop.
    """
    asyncio.run(_reset_and_close())

    def run(func):
        async def runner():
            try:
                async with database_service.get_session() as s:
                    return await func(s)
            finally:
                await database_service.close()

        return asyncio.run(runner())

    return run


async def _reset_and_close() -> None:
    try:
        await _reset_db()
    finally:
        await database_service.close()
