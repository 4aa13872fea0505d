"""Tables for contexts, stored files and capability grants, plus session helpers."""

from datetime import datetime
from typing import AsyncGenerator

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from allyfilter.config import get_settings


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class Context(Base):
    """A permission scope: system, course or course module."""

    __tablename__ = "contexts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    level: Mapped[str] = mapped_column(String(20), nullable=False, default="module")
    instance_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("contexts.id"), nullable=True)


class StoredFile(Base):
    """A file kept by the storage layer, addressed by its area and path."""

    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    context_id: Mapped[int] = mapped_column(ForeignKey("contexts.id"), nullable=False)
    component: Mapped[str] = mapped_column(String(100), nullable=False)
    file_area: Mapped[str] = mapped_column(String(50), nullable=False)
    item_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    filepath: Mapped[str] = mapped_column(String(255), nullable=False, default="/")
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    pathnamehash: Mapped[str] = mapped_column(String(40), nullable=False, unique=True, index=True)
    mimetype: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=func.now())


class CapabilityGrant(Base):
    """A capability granted to a user in a context (and its children)."""

    __tablename__ = "capability_grants"
    __table_args__ = (UniqueConstraint("username", "context_id", "capability"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    context_id: Mapped[int] = mapped_column(ForeignKey("contexts.id"), nullable=False)
    capability: Mapped[str] = mapped_column(String(100), nullable=False)


class CourseModule(Base):
    """An activity or resource placed in a course."""

    __tablename__ = "course_modules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    module_name: Mapped[str] = mapped_column(String(50), nullable=False)  # e.g. "resource", "assign"
    context_id: Mapped[int] = mapped_column(ForeignKey("contexts.id"), nullable=False)


_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory, creating the engine on first use."""
    global _engine, _sessions

    if _sessions is None:
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, echo=settings.debug)
        _sessions = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    return _sessions


async def init_db() -> None:
    """Create any missing tables."""
    get_session_factory()
    assert _engine is not None
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine; the next session request builds a new one."""
    global _engine, _sessions

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessions = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session committed when the request succeeds, rolled back when it fails."""
    if _sessions is None:
        await init_db()

    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        else:
            await session.commit()
