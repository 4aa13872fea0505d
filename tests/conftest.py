"""Shared fixtures: an in-memory database and the bundled wrapper renderer."""

from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from allyfilter.config import Settings
from allyfilter.models.db import Base
from allyfilter.services.wrapper import JinjaWrapperRenderer


@pytest.fixture
def bundled_templates() -> Path:
    """Path of the templates shipped with the package."""
    return Path(Settings(_env_file=None).bundled_templates_path)


@pytest.fixture
def renderer(bundled_templates) -> JinjaWrapperRenderer:
    """Wrapper renderer using only the bundled templates."""
    return JinjaWrapperRenderer(bundled_templates)


@pytest_asyncio.fixture
async def db_session():
    """An async session on a fresh in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()
