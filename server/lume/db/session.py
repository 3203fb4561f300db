from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lume.config import get_settings

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[sessionmaker] = None


def _enable_sqlite_foreign_keys(dbapi_conn: Any, _record: Any) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def configure_engine(url: Optional[str] = None) -> AsyncEngine:
    """(Re)bind the module engine. Called lazily with DATABASE_URL, or by tests."""
    global _engine, _session_factory
    url = url or get_settings().database_url
    kwargs: dict = {"echo": False, "future": True}
    if url.startswith("sqlite+") and ":memory:" in url:
        # One shared connection, otherwise every session sees an empty database
        kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    _engine = create_async_engine(url, **kwargs)
    if url.startswith("sqlite+"):
        event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    _session_factory = sessionmaker(
        bind=_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False, autocommit=False
    )
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure_engine()
    assert _engine is not None
    return _engine


async def init_db() -> None:
    async with get_engine().begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    get_engine()
    assert _session_factory is not None
    session: AsyncSession = _session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
