"""
DocLedger Service — wires configuration to the stores and the lifecycle manager.

Ties together:
- Database (SQLAlchemy engine + session factory)
- LocalBlobStore (filesystem bytes)
- DocumentLifecycleManager / QueryEngine
- AsyncLogQueue (structured JSON-lines logs)
- HealthCheckService (database + blob store checks)

Usage:
    with DocLedgerService(load_config()) as service:
        result = service.documents.ingest(stream, file_name="a.pdf")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from docledger.db.session import Database
from docledger.documents.blob_store import LocalBlobStore
from docledger.documents.lifecycle import DocumentLifecycleManager
from docledger.documents.query import QueryEngine
from docledger.engine.config import ServiceConfig, get_config
from docledger.engine.health import HealthCheckService
from docledger.engine.logging import (
    AsyncLogQueue,
    configure_logging,
    init_logging,
    log,
    log_system_event,
    shutdown_logging,
)

logger = logging.getLogger("docledger.service")


class DocLedgerService:

    def __init__(self, config: Optional[ServiceConfig] = None, *, structured_logs: bool = True):
        self.config = config or get_config()
        self._structured_logs = structured_logs

        self.database = Database.from_config(self.config.database)
        self.blob_store = LocalBlobStore(self.config.storage.root)
        self.query = QueryEngine(
            self.database,
            default_page_size=self.config.query.default_page_size,
            max_page_size=self.config.query.max_page_size,
        )
        self.documents = DocumentLifecycleManager(
            self.database,
            self.blob_store,
            query_engine=self.query,
            chunk_size=self.config.storage.chunk_size,
            spool_memory_bytes=self.config.storage.spool_memory_bytes,
            max_file_size_bytes=self.config.storage.max_file_size_bytes,
            default_source_type=self.config.ingestion.default_source_type,
            deduplication_default=self.config.ingestion.deduplication_enabled,
        )
        self.health = HealthCheckService()
        self.health.register_database_check("database", self.database)
        self.health.register_blob_store_check("blob_store", self.blob_store)

        self.log_queue: Optional[AsyncLogQueue] = None
        self._started = False

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def startup(self) -> None:
        if self._started:
            logger.warning("Service already started")
            return

        configure_logging(self.config.logging.level)
        logger.info(f"Starting {self.config.name} {self.config.version} ({self.config.environment})...")

        if self._structured_logs:
            self.log_queue = init_logging(
                log_dir=self.config.logging.directory,
                flush_interval_ms=self.config.logging.flush_interval_ms,
                flush_batch_size=self.config.logging.flush_batch_size,
                max_queue_size=self.config.logging.max_queue_size,
            )

        self.database.open()

        self._started = True
        log(log_system_event("service_started", details={
            "environment": self.config.environment,
            "database": self.database.dialect_name,
            "storage_root": str(self.blob_store.root),
        }))
        logger.info(f"{self.config.name} started")

    def shutdown(self) -> None:
        """Close the pool and flush the structured log queue."""
        if not self._started:
            return

        logger.info(f"Shutting down {self.config.name}...")
        self.database.close()

        log(log_system_event("service_shutdown"))
        if self.log_queue is not None:
            shutdown_logging()
            self.log_queue = None

        self._started = False
        logger.info(f"{self.config.name} shut down")

    @property
    def started(self) -> bool:
        return self._started

    def __enter__(self) -> "DocLedgerService":
        self.startup()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # -----------------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------------

    async def check_health(self) -> Dict[str, Any]:
        await self.health.check_all()
        summary = self.health.summary()
        summary["service"] = self.config.name
        summary["version"] = self.config.version
        return summary

    def health_report(self) -> Dict[str, Any]:
        """Blocking wrapper around check_health() for sync callers."""
        return asyncio.run(self.check_health())
