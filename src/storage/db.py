"""Async database engine and session management."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config import get_settings
from src.storage.models import Base

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """Make SQLite take the write lock when a transaction begins.

    The driver's deferred BEGIN lets two connections hold read locks and then
    deadlock when both try to write; BEGIN IMMEDIATE queues them instead.
    The lock is held until commit, payload processing included, so a queued
    writer fails with "database is locked" once it has waited longer than
    the connection timeout (`general.sqlite_timeout`).
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine(db_url: Optional[str] = None) -> AsyncEngine:
    """Create the global engine and session factory.

    Called lazily by get_session(); tests call it directly to point the
    store at a temporary database.
    """
    global _engine, _session_factory

    settings = get_settings()
    url = make_url(db_url or settings.general.db_url)
    is_sqlite = url.get_backend_name() == "sqlite"
    if is_sqlite and url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    if is_sqlite:
        _engine = create_async_engine(url, connect_args={"timeout": settings.general.sqlite_timeout})
        _use_immediate_transactions(_engine)
    else:
        _engine = create_async_engine(url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    logger.debug("Database engine created for %s", url.render_as_string(hide_password=True))
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        init_engine()
    return _engine


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""
    if _session_factory is None:
        init_engine()

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables if they do not exist."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


async def close_db() -> None:
    """Dispose of the engine and its connection pool."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
