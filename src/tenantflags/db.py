"""
SQLAlchemy 2.0 Database Configuration

Declarative base, engine and session helpers for the SQL flag store. Engines
are created by the host (or ``factory``) and passed in explicitly.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import String
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ==========================================
# Database URLs
# ==========================================


def get_async_database_url(url: str) -> str:
    """Convert a sync database URL to its async driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


# ==========================================
# SQLAlchemy 2.0 Declarative Base
# ==========================================


class Base(DeclarativeBase):
    """Base class for all database models using SQLAlchemy 2.0 declarative mapping."""

    pass


class AuditMixin:
    """Adds the actor of the last change."""

    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)


# ==========================================
# Engine and Session Management
# ==========================================


def create_engine_from_settings(database_settings: Any) -> AsyncEngine:
    """Create an async engine from ``Settings.database``."""
    url = get_async_database_url(str(database_settings.url))
    options: dict[str, Any] = {"echo": database_settings.echo}
    if not url.startswith("sqlite"):
        options["pool_pre_ping"] = database_settings.pool_pre_ping
    return create_async_engine(url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        autoflush=False,
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_schema(engine: AsyncEngine) -> None:
    """Create every table known to ``Base``."""
    # Register the store tables on the metadata
    from tenantflags.store import entities  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Get an asynchronous database session committed on success."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
