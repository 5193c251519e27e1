"""
Database Service - SQL backend for the document store
=====================================================

Purpose
-------
Own the single SQLAlchemy `AsyncEngine` behind `SqlDocumentStore` and hand
out sessions.

Responsibilities
----------------
- `initialize(url)` / `shutdown()`, idempotent and serialized by a lock
- `get_session()` for reads, `get_transaction()` for writes: commit on
  success, rollback and re-raise on any exception
- `create_schema()` for the documents table
- `health_check()` (``SELECT 1``)

Row locks
---------
Chip counters are incremented inside `get_transaction()` after loading the
row with ``with_for_update=True``. PostgreSQL takes a row lock. SQLite
ignores the clause, so SQLite engines open every transaction with
``BEGIN IMMEDIATE`` and the read-modify-write holds the write lock from the
first read.

>>> async with DatabaseService.get_transaction() as session:
...     row = await session.get(DocumentRow, ("users", user_id), with_for_update=True)
...     row.data = {**row.data, "chips": 10}
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from chipledger.core.config.config import Config
from chipledger.core.database.models import Base
from chipledger.core.logging.logger import get_logger

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    """The engine could not be created from the configured URL."""


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before `DatabaseService.initialize()`."""


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": bool(Config.DATABASE_ECHO)}
    if url.startswith("sqlite") or Config.is_testing():
        options["poolclass"] = NullPool
    else:
        options.update(
            pool_size=int(Config.DATABASE_POOL_SIZE),
            max_overflow=int(Config.DATABASE_MAX_OVERFLOW),
            pool_recycle=int(Config.DATABASE_POOL_RECYCLE),
            pool_pre_ping=True,
        )
    return options


def _lock_sqlite_on_begin(engine: AsyncEngine) -> None:
    """Take the SQLite write lock at BEGIN instead of at the first write."""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _scheme(url: str) -> str:
    return url.split(":", 1)[0]


class DatabaseService:
    _engine: Optional[AsyncEngine] = None
    _sessions: Optional[async_sessionmaker[AsyncSession]] = None
    _lock: asyncio.Lock = asyncio.Lock()

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Raises:
            DatabaseInitializationError: Missing URL or unusable dialect
        """
        async with cls._lock:
            if cls._engine is not None:
                return

            database_url = url or Config.DATABASE_URL
            if not isinstance(database_url, str) or not database_url:
                raise DatabaseInitializationError("DATABASE_URL is not configured")

            try:
                engine = create_async_engine(database_url, **_engine_options(database_url))
            except Exception as exc:
                logger.error(
                    "Database engine creation failed",
                    extra={"url_scheme": _scheme(database_url), "error": str(exc)},
                    exc_info=True,
                )
                raise DatabaseInitializationError(
                    f"Cannot create engine for {_scheme(database_url)!r}: {exc}"
                ) from exc

            if engine.dialect.name == "sqlite":
                _lock_sqlite_on_begin(engine)

            cls._engine = engine
            cls._sessions = async_sessionmaker(engine, expire_on_commit=False)
            logger.info("Database initialized", extra={"url_scheme": _scheme(database_url)})

    @classmethod
    async def create_schema(cls) -> None:
        engine = cls._require_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured")

    @classmethod
    async def shutdown(cls) -> None:
        async with cls._lock:
            engine, cls._engine, cls._sessions = cls._engine, None, None
            if engine is not None:
                await engine.dispose()
                logger.info("Database engine disposed")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    @classmethod
    async def health_check(cls) -> bool:
        if cls._engine is None:
            return False
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Database health check failed", extra={"error": str(exc)})
            return False
        return True

    # ========================================================================
    # SESSIONS
    # ========================================================================

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None:
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must run before the SQL store is used"
            )
        return cls._engine

    @classmethod
    def _session_factory(cls) -> async_sessionmaker[AsyncSession]:
        if cls._sessions is None:
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must run before a session is opened"
            )
        return cls._sessions

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncIterator[AsyncSession]:
        """Read session; nothing is committed."""
        async with cls._session_factory()() as session:
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncIterator[AsyncSession]:
        """Write session committed on exit, rolled back if the block raises."""
        started = time.perf_counter()
        async with cls._session_factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception as exc:
                await session.rollback()
                logger.warning(
                    "Database transaction rolled back",
                    extra={
                        "error_type": type(exc).__name__,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    },
                )
                raise
