"""
DocLedger Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v

Unit tests use an in-memory SQLite database (StaticPool, one shared
connection) and a blob store under tmp_path; nothing touches PostgreSQL.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Callable

import pytest

from docledger.db.session import Database
from docledger.documents.blob_store import LocalBlobStore
from docledger.documents.lifecycle import DocumentLifecycleManager
from docledger.documents.models import IngestResult


# ---------------------------------------------------------------------------
# Global state — config cache and the structured log queue
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch):
    """Reset module-level singletons between tests."""
    import docledger.engine.config as cfg_mod
    import docledger.engine.logging as log_mod

    for var in list(cfg_mod.ENV_OVERRIDES):
        monkeypatch.delenv(var, raising=False)
    cfg_mod._config = None
    yield
    log_mod.shutdown_logging()
    cfg_mod._config = None


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@pytest.fixture
def database():
    """Opened in-memory SQLite database with tables created."""
    db = Database("sqlite://").open()
    yield db
    db.close()


@pytest.fixture
def blob_root(tmp_path) -> Path:
    return tmp_path / "blobs"


@pytest.fixture
def blob_store(blob_root) -> LocalBlobStore:
    return LocalBlobStore(str(blob_root))


@pytest.fixture
def manager(database, blob_store) -> DocumentLifecycleManager:
    return DocumentLifecycleManager(database, blob_store)


@pytest.fixture
def ingest(manager) -> Callable[..., IngestResult]:
    """
    Shortcut: ingest(b"bytes", file_name="a.txt", **kwargs).
    """
    def _ingest(content: bytes = b"hello world", file_name: str = "a.txt", **kwargs: Any) -> IngestResult:
        return manager.ingest(io.BytesIO(content), file_name=file_name, **kwargs)

    return _ingest


# ---------------------------------------------------------------------------
# Config on disk
# ---------------------------------------------------------------------------

@pytest.fixture
def config_file(tmp_path) -> Path:
    """
    docledger.yaml pointing at a file-backed SQLite DB and tmp blob/log dirs.
    """
    path = tmp_path / "docledger.yaml"
    path.write_text(
        "service:\n"
        "  name: TestLedger\n"
        "  version: '0.1.0'\n"
        "  environment: dev\n"
        "database:\n"
        f"  url: sqlite:///{(tmp_path / 'ledger.db').as_posix()}\n"
        "storage:\n"
        f"  root: {(tmp_path / 'blobs').as_posix()}\n"
        "  max_file_size_mb: 1\n"
        "query:\n"
        "  default_page_size: 2\n"
        "  max_page_size: 5\n"
        "logging:\n"
        "  level: debug\n"
        f"  directory: {(tmp_path / 'logs').as_posix()}\n"
        "  flush_interval_ms: 10\n",
        encoding="utf-8",
    )
    return path
