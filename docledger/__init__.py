"""
DocLedger — Document ingestion, deduplication and metadata engine.
Version: 1.0

Content-addressed dedup (SHA-256), a filesystem blob store, a SQLAlchemy
metadata store with atomic upserts, and an append-only audit trail.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "documents", "service", "cli"]
