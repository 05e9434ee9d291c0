"""
DocLedger Metadata Store — Document records on top of a SQLAlchemy Session.

A MetadataStore is bound to one Session, i.e. one transaction; the
lifecycle manager opens a session per operation and builds the store on it.

JSON columns are encoded on write and decoded on read here and nowhere
else. A value that fails to decode is returned raw, listed in
Document.corrupted_fields, and logged as a warning.

SQLAlchemy exceptions propagate unchanged; the lifecycle manager wraps
them into MetadataStoreError.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from docledger.db.base import utcnow
from docledger.db.models import DocumentEventRow, DocumentRow
from docledger.documents.models import Document, ListFilters
from docledger.engine.errors import DocumentNotFoundError

logger = logging.getLogger("docledger.documents.metadata_store")

# Columns refreshed when an ingest hits an existing file_id. ingested_at,
# created_at, source_type, source_location, tags, status and parent survive.
UPSERT_UPDATE_COLUMNS = (
    "file_name",
    "mime_type",
    "file_size",
    "modified_at",
    "content_hash",
    "raw_storage_path",
    "metadata",
)


def encode_json(value: Any) -> str:
    return json.dumps(value, default=str)


def decode_json(raw: Optional[str], default: Any, *, field: str, owner: str) -> Tuple[Any, bool]:
    """
    Parse a stored JSON column. Returns (value, ok).

    On failure the raw string comes back with ok=False.
    """
    if raw is None or raw == "":
        return default, True
    try:
        return json.loads(raw), True
    except (TypeError, ValueError) as e:
        logger.warning(f"Error parsing {field} for {owner}: {e}")
        return raw, False


def row_to_document(row: DocumentRow) -> Document:
    owner = f"file {row.file_id}"
    metadata, metadata_ok = decode_json(row.metadata_, {}, field="metadata", owner=owner)
    tags, tags_ok = decode_json(row.tags, [], field="tags", owner=owner)
    corrupted = []
    if not metadata_ok or not isinstance(metadata, dict):
        corrupted.append("metadata")
        metadata = row.metadata_
    if not tags_ok or not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        corrupted.append("tags")
        tags = row.tags
    return Document(
        id=row.id,
        file_id=row.file_id,
        file_name=row.file_name,
        mime_type=row.mime_type,
        size_bytes=row.file_size,
        source_type=row.source_type,
        source_location=row.source_location or "",
        content_hash=row.content_hash,
        storage_path=row.raw_storage_path,
        metadata=metadata,
        tags=tags,
        processing_status=row.processing_status,
        created_at=row.created_at,
        modified_at=row.modified_at,
        ingested_at=row.ingested_at,
        parent_id=row.parent_id,
        corrupted_fields=corrupted,
    )


class MetadataStore:
    """Document table operations within one Session."""

    def __init__(self, session: Session):
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------

    def _row_by_key(self, file_id: str, for_update: bool = False) -> Optional[DocumentRow]:
        stmt = select(DocumentRow).where(DocumentRow.file_id == file_id)
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _dialect_name(self) -> str:
        return self._session.get_bind().dialect.name

    def get_by_key(self, file_id: str) -> Optional[Document]:
        row = self._row_by_key(file_id)
        return row_to_document(row) if row is not None else None

    def get_by_content_hash(self, content_hash: str) -> Optional[Document]:
        """Oldest record with this digest, if any."""
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.content_hash == content_hash)
            .order_by(DocumentRow.id.asc())
            .limit(1)
        )
        row = self._session.execute(stmt).scalar_one_or_none()
        return row_to_document(row) if row is not None else None

    def get_internal_id(self, file_id: str) -> Optional[int]:
        stmt = select(DocumentRow.id).where(DocumentRow.file_id == file_id)
        return self._session.execute(stmt).scalar_one_or_none()

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def upsert_by_key(self, file_id: str, fields: Dict[str, Any]) -> Document:
        """
        Insert-or-update by file_id as one atomic statement.

        `fields` uses column names: file_name, mime_type, file_size,
        content_hash, raw_storage_path, metadata (dict), source_type,
        source_location, parent_id.
        """
        now = utcnow()
        values: Dict[str, Any] = {
            "file_id": file_id,
            "file_name": fields["file_name"],
            "mime_type": fields["mime_type"],
            "file_size": fields["file_size"],
            "content_hash": fields["content_hash"],
            "raw_storage_path": fields["raw_storage_path"],
            "metadata": encode_json(fields.get("metadata") or {}),
            "source_type": fields["source_type"],
            "source_location": fields.get("source_location") or "",
            "parent_id": fields.get("parent_id"),
            "tags": encode_json([]),
            "processing_status": "raw",
            "created_at": now,
            "modified_at": now,
            "ingested_at": now,
        }
        table = DocumentRow.__table__
        dialect = self._dialect_name()

        if dialect in ("sqlite", "postgresql"):
            dialect_insert = sqlite_insert if dialect == "sqlite" else pg_insert
            stmt = dialect_insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.file_id],
                set_={col: stmt.excluded[col] for col in UPSERT_UPDATE_COLUMNS},
            )
            self._session.execute(stmt)
        else:
            # Generic path: lock the row, then update or insert
            existing = self._row_by_key(file_id, for_update=True)
            if existing is None:
                self._session.execute(insert(table).values(**values))
            else:
                self._session.execute(
                    update(table)
                    .where(table.c.file_id == file_id)
                    .values({col: values[col] for col in UPSERT_UPDATE_COLUMNS})
                )

        row = self._row_by_key(file_id)
        return row_to_document(row)

    def update_by_key(
        self,
        file_id: str,
        *,
        tags: Optional[List[str]] = None,
        metadata_patch: Optional[Dict[str, Any]] = None,
        processing_status: Optional[str] = None,
    ) -> Document:
        """
        Apply a metadata edit under a row lock.

        metadata_patch is shallow-merged into the stored map; tags replace
        the stored list; processing_status replaces the stored value.
        """
        row = self._row_by_key(file_id, for_update=True)
        if row is None:
            raise DocumentNotFoundError(f"File not found: {file_id}", file_id=file_id, operation="update")

        if tags is not None:
            row.tags = encode_json(list(tags))

        if metadata_patch is not None:
            existing, ok = decode_json(row.metadata_, {}, field="metadata", owner=f"file {file_id}")
            if not ok or not isinstance(existing, dict):
                logger.warning(f"Discarding unreadable metadata for file {file_id} during merge")
                existing = {}
            row.metadata_ = encode_json({**existing, **metadata_patch})

        if processing_status is not None:
            row.processing_status = processing_status

        row.modified_at = utcnow()
        self._session.flush()
        return row_to_document(row)

    def delete_by_key(self, file_id: str) -> bool:
        row = self._row_by_key(file_id)
        if row is None:
            return False
        self._session.delete(row)
        self._session.flush()
        return True

    # -------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------

    @staticmethod
    def _conditions(filters: ListFilters) -> list:
        active = filters.active()
        conditions = []
        if "source_type" in active:
            conditions.append(DocumentRow.source_type == active["source_type"])
        if "mime_type" in active:
            conditions.append(
                func.lower(DocumentRow.mime_type).contains(active["mime_type"].lower(), autoescape=True)
            )
        if "name" in active:
            conditions.append(
                func.lower(DocumentRow.file_name).contains(active["name"].lower(), autoescape=True)
            )
        return conditions

    def query(self, filters: ListFilters, offset: int, limit: int) -> Tuple[List[Document], int]:
        """Filtered page ordered by ingested_at DESC, id DESC, plus the total match count."""
        conditions = self._conditions(filters)

        count_stmt = select(func.count()).select_from(DocumentRow).where(*conditions)
        total = self._session.execute(count_stmt).scalar_one()

        stmt = (
            select(DocumentRow)
            .where(*conditions)
            .order_by(DocumentRow.ingested_at.desc(), DocumentRow.id.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = self._session.execute(stmt).scalars().all()
        return [row_to_document(r) for r in rows], total

    def count_references(self, storage_path: str, exclude_file_id: Optional[str] = None) -> int:
        """How many records point at this blob, optionally ignoring one file_id."""
        stmt = select(func.count()).select_from(DocumentRow).where(
            DocumentRow.raw_storage_path == storage_path
        )
        if exclude_file_id is not None:
            stmt = stmt.where(DocumentRow.file_id != exclude_file_id)
        return self._session.execute(stmt).scalar_one()

    def count_events(self, document_id: int) -> int:
        stmt = select(func.count()).select_from(DocumentEventRow).where(
            DocumentEventRow.document_id == document_id
        )
        return self._session.execute(stmt).scalar_one()
