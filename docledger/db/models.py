"""
DocLedger Tables — SQLAlchemy models for the metadata database.

Tables:
1. documents        — One row per logical file, keyed by file_id
2. document_events  — Append-only audit trail, many rows per document

JSON-shaped columns (metadata, tags, event_data) are TEXT holding JSON.
They are encoded/decoded only at the store boundary so a corrupted value
can still be read back raw.
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from docledger.db.base import Base, TimestampMixin, utcnow


class DocumentRow(Base, TimestampMixin):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(String(255), unique=True, nullable=False)
    file_name = Column(String(500), nullable=False)
    source_type = Column(String(50), nullable=False, default="other-sources", index=True)
    source_location = Column(Text, nullable=False, default="")
    mime_type = Column(String(255), nullable=False, default="application/octet-stream")
    file_size = Column(BigInteger, nullable=False, default=0)
    # not unique: uniqueness is a per-ingest dedup policy
    content_hash = Column(String(64), nullable=False, index=True)
    raw_storage_path = Column(Text, nullable=False)
    metadata_ = Column("metadata", Text, nullable=False, default="{}")
    tags = Column(Text, nullable=False, default="[]")
    processing_status = Column(String(50), nullable=False, default="raw")
    ingested_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    parent_id = Column(Integer, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        Index("idx_documents_ingested", "ingested_at", "id"),
    )

    def __repr__(self) -> str:
        return f"<DocumentRow(id={self.id}, file_id='{self.file_id}', hash='{(self.content_hash or '')[:12]}')>"


class DocumentEventRow(Base):
    __tablename__ = "document_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False)
    event_type = Column(String(50), nullable=False)
    event_timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    event_data = Column(Text, nullable=False, default="{}")

    __table_args__ = (
        Index("idx_events_document_ts", "document_id", "event_timestamp"),
    )

    def __repr__(self) -> str:
        return f"<DocumentEventRow(id={self.id}, document_id={self.document_id}, type='{self.event_type}')>"
