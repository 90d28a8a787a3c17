"""pytest fixtures for studio backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- studio_env: Autouse fixture pointing the studio root at a temporary directory
- settings / paths: Test settings and studio layout below tmp_path
- engine: Function-scoped SQLite database with schema and FTS index
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- png_base64: Factory for real, decodable PNG payloads
"""

import base64
import io
import os
from pathlib import Path
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from benana.core.config import Settings
from benana.core.database import create_engine, init_db, setup_db_session
from benana.core.paths import StudioPaths, ensure_studio_directories
from benana.uow import create_uow_factory


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests.

    Autouse fixture ensures TZ=UTC is set before any test runs.
    """
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture(autouse=True)
def studio_env(tmp_path: Path, monkeypatch):
    """Point every Settings() instance at a throwaway studio root."""
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("BENANA_HOME", str(tmp_path))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    yield tmp_path


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(  # type: ignore[call-arg]
        BENANA_HOME=tmp_path,
        APP_ENV="test",
        GEMINI_RETRY_BASE_DELAY_SECONDS=0.0,
    )


@pytest.fixture
def paths(tmp_path: Path) -> StudioPaths:
    studio_paths = StudioPaths(tmp_path)
    ensure_studio_directories(studio_paths)
    return studio_paths


@pytest_asyncio.fixture(scope="function")
async def engine(paths: StudioPaths) -> AsyncGenerator[AsyncEngine, None]:
    """Provide a fresh studio database per test."""
    db_engine = create_engine(f"sqlite+aiosqlite:///{paths.database}")
    await init_db(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session.

    Commit before handing control to a UnitOfWork; SQLite allows one writer at a time.
    """
    session_factory = setup_db_session(engine)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(engine: AsyncEngine):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(setup_db_session(engine))


@pytest.fixture
def png_base64() -> Callable[..., str]:
    """Return a factory producing base64 PNG payloads of the requested size."""

    def _make(width: int = 64, height: int = 32, color: str = "orange") -> str:
        buffer = io.BytesIO()
        Image.new("RGB", (width, height), color).save(buffer, format="PNG")
        return base64.b64encode(buffer.getvalue()).decode("ascii")

    return _make
