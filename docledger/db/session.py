"""
DocLedger Database Session Management.

Database wraps one SQLAlchemy engine plus its connection pool and is the
only shared mutable resource in the service. It is built once from config,
opened at process start, handed to the lifecycle manager, and closed at
shutdown:

    database = Database.from_config(config.database)
    database.open()
    with database.session_scope() as session:
        ...
    database.close()
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docledger.db import models  # noqa: F401  (registers tables on Base.metadata)
from docledger.db.base import Base
from docledger.engine.errors import MetadataStoreError

if TYPE_CHECKING:
    from docledger.engine.config import DatabaseConfig

logger = logging.getLogger("docledger.db.session")


class Database:
    """
    Engine + session factory with an explicit open/close lifecycle.

    Thread-safe: every session_scope() call gets its own Session from the
    pool, so concurrent requests never share a Session.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
        pool_pre_ping: bool = True,
        create_tables: bool = True,
    ):
        self.url = url
        self._pool_options: Dict[str, Any] = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
            "pool_pre_ping": pool_pre_ping,
        }
        self._create_tables = create_tables
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @classmethod
    def from_config(cls, config: "DatabaseConfig") -> "Database":
        return cls(
            url=config.url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=config.pool_pre_ping,
            create_tables=config.create_tables,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def _build_engine(self) -> Engine:
        if self.is_sqlite:
            # SQLite pools do not take QueuePool sizing options
            kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            engine = create_engine(self.url, **kwargs)

            @event.listens_for(engine, "connect")
            def _sqlite_pragmas(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            return engine
        return create_engine(self.url, **self._pool_options)

    def open(self) -> "Database":
        """Create the engine (and tables, when configured). Idempotent."""
        if self._engine is not None:
            return self
        try:
            self._engine = self._build_engine()
            if self._create_tables:
                Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            self._engine = None
            raise MetadataStoreError(f"Could not open database: {e}", operation="open") from e
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info(f"Database opened ({self._engine.dialect.name})")
        return self

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not opened. Call open() first.")
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Session with auto-commit/rollback.

        Usage:
            with database.session_scope() as session:
                session.execute(...)
        """
        if self._session_factory is None:
            raise RuntimeError("Database not opened. Call open() first.")
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        """SELECT 1; used by health checks."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    def close(self) -> None:
        """Dispose the engine and its connection pool."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database closed")
        self._engine = None
        self._session_factory = None

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self._engine is not None else "closed"
        return f"<Database url='{self.url.split('@')[-1]}' {state}>"
