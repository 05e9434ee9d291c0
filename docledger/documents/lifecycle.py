"""
DocLedger Document Lifecycle — ingest, retrieve, update, delete, audit.

The lifecycle manager is the only component that sequences multi-step
operations, so every consistency rule lives here:

- ingest:   spool+hash -> dedup -> blob put -> upsert + "uploaded" event
- retrieve: lookup -> open blob -> "downloaded" event (best-effort)
- update:   locked read-merge-write + "updated" event, one transaction
- delete:   blob -> events -> record

Write-path events share the transaction of the write they describe, so a
failed event append rolls the write back with it. Read-path events never
fail the read; a failure is logged instead.

Each operation opens its own session from the injected Database; nothing
here is shared between concurrent callers except the pool itself.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, BinaryIO, Dict, Generator, List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docledger.db.session import Database
from docledger.documents.blob_store import BlobStore
from docledger.documents.dedup import DeduplicationEngine
from docledger.documents.events import EventStore
from docledger.documents.hashing import DEFAULT_CHUNK_SIZE, SpooledContent, spool_stream
from docledger.documents.metadata_store import MetadataStore
from docledger.documents.models import (
    DeleteResult,
    Document,
    DocumentEvent,
    DocumentInfo,
    DocumentPage,
    EventType,
    IngestResult,
    ListFilters,
    MetadataUpdate,
    RetrievedDocument,
    SourceType,
)
from docledger.documents.query import QueryEngine
from docledger.documents.saga import Saga
from docledger.engine.errors import (
    BlobNotFoundError,
    DocumentNotFoundError,
    InvalidInputError,
    MetadataStoreError,
    StorageError,
)
from docledger.engine.logging import (
    log,
    log_audit_failure,
    log_document_event,
    log_storage_event,
)

logger = logging.getLogger("docledger.documents.lifecycle")

SOURCE_TYPE_VALUES = tuple(s.value for s in SourceType)


class DocumentLifecycleManager:
    """
    Entry point for every document operation.

    Usage:
        manager = DocumentLifecycleManager(database, LocalBlobStore(root))
        result = manager.ingest(stream, file_name="report.pdf")
        if result.duplicate_detected:
            ...
    """

    def __init__(
        self,
        database: Database,
        blob_store: BlobStore,
        *,
        dedup: Optional[DeduplicationEngine] = None,
        query_engine: Optional[QueryEngine] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        spool_memory_bytes: int = 8 * 1024 * 1024,
        max_file_size_bytes: Optional[int] = None,
        default_source_type: str = SourceType.OTHER.value,
        deduplication_default: bool = True,
    ):
        self._db = database
        self._blobs = blob_store
        self._dedup = dedup or DeduplicationEngine()
        self._query = query_engine or QueryEngine(database)
        self._chunk_size = chunk_size
        self._spool_memory_bytes = spool_memory_bytes
        self._max_file_size_bytes = max_file_size_bytes
        self._default_source_type = default_source_type
        self._deduplication_default = deduplication_default

    @property
    def blob_store(self) -> BlobStore:
        return self._blobs

    @contextmanager
    def _transaction(self, operation: str, file_id: Optional[str] = None) -> Generator[Session, None, None]:
        """session_scope() that reports store failures as MetadataStoreError."""
        try:
            with self._db.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Metadata store error during {operation} (file_id={file_id}): {e}")
            raise MetadataStoreError(
                f"Metadata store failure during {operation}: {e}",
                file_id=file_id,
                operation=operation,
            ) from e

    # -------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------

    def ingest(
        self,
        stream: BinaryIO,
        *,
        file_name: str,
        mime_type: Optional[str] = None,
        file_id: Optional[str] = None,
        source_type: Optional[str] = None,
        source_location: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        deduplication_enabled: Optional[bool] = None,
        parent_file_id: Optional[str] = None,
    ) -> IngestResult:
        """
        Store a new document (or a new revision under an existing file_id).

        Returns IngestResult; duplicate_detected=True means the content was
        already on record and nothing was written.

        Raises:
            InvalidInputError: bad name/source type/metadata/parent, or too large.
            StorageError: blob write failed, or the blob path belongs to
                another record (no metadata was touched).
            MetadataStoreError: metadata write failed and the blob was removed.
            PartialFailureError: metadata write failed and the blob could not
                be rolled back.
        """
        if not file_name or not file_name.strip():
            raise InvalidInputError("file_name is required", operation="ingest", file_id=file_id)
        if file_id is not None and not file_id.strip():
            raise InvalidInputError("file_id must not be blank", operation="ingest")
        source_type = source_type or self._default_source_type
        if source_type not in SOURCE_TYPE_VALUES:
            raise InvalidInputError(
                f"Unknown source type '{source_type}'. Expected one of {SOURCE_TYPE_VALUES}",
                operation="ingest",
                file_id=file_id,
            )
        if metadata is not None and not isinstance(metadata, dict):
            raise InvalidInputError("metadata must be a mapping", operation="ingest", file_id=file_id)
        if deduplication_enabled is None:
            deduplication_enabled = self._deduplication_default
        mime_type = mime_type or self.detect_mime_type(file_name)

        start = time.monotonic()
        with spool_stream(
            stream,
            chunk_size=self._chunk_size,
            max_memory_bytes=self._spool_memory_bytes,
            max_size_bytes=self._max_file_size_bytes,
        ) as content:
            resolved_id = file_id or self._generate_file_id(file_name)
            prior = None
            parent_id = None
            with self._transaction("ingest", file_id) as session:
                store = MetadataStore(session)
                decision = self._dedup.decide(store, content.content_hash, deduplication_enabled)
                if not decision.is_duplicate:
                    prior = store.get_by_key(resolved_id)
                    if parent_file_id is not None:
                        parent_id = store.get_internal_id(parent_file_id)
                        if parent_id is None:
                            raise InvalidInputError(
                                f"Parent document not found: {parent_file_id}",
                                operation="ingest",
                                file_id=file_id,
                            )
                    # re-ingest keeps the record's source type, so the blob stays under it
                    blob_source = prior.source_type if prior is not None else source_type
                    target_path = self._blobs.storage_path_for(blob_source, resolved_id)
                    if store.count_references(target_path, exclude_file_id=resolved_id):
                        raise StorageError(
                            f"Storage path {target_path} already belongs to another record",
                            storage_path=target_path,
                            file_id=resolved_id,
                            operation="ingest",
                        )

            if decision.is_duplicate:
                existing = decision.existing
                logger.info(f"Duplicate file detected: {file_name} matches existing file {existing.file_id}")
                log(log_document_event(
                    "duplicate_detected",
                    existing.file_id,
                    existing.id,
                    duration_ms=(time.monotonic() - start) * 1000,
                    original_name=file_name,
                    content_hash=content.content_hash,
                ))
                return IngestResult(
                    duplicate_detected=True,
                    document_id=existing.id,
                    document=existing,
                    content_hash=content.content_hash,
                    size_bytes=content.size_bytes,
                )

            document = self._store_new_content(
                content,
                file_id=resolved_id,
                file_name=file_name,
                mime_type=mime_type,
                source_type=source_type,
                blob_source=blob_source,
                source_location=source_location,
                metadata=metadata or {},
                parent_id=parent_id,
                prior=prior,
            )

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"Ingested {resolved_id} ({content.size_bytes} bytes, "
            f"sha256={content.content_hash[:12]}) in {duration_ms:.1f}ms"
        )
        log(log_document_event(
            "document_ingested",
            resolved_id,
            document.id,
            duration_ms=duration_ms,
            storage_path=document.storage_path,
            content_hash=content.content_hash,
            replaced_existing=prior is not None,
        ))
        return IngestResult(
            duplicate_detected=False,
            document_id=document.id,
            document=document,
            content_hash=content.content_hash,
            size_bytes=content.size_bytes,
        )

    def _store_new_content(
        self,
        content: SpooledContent,
        *,
        file_id: str,
        file_name: str,
        mime_type: str,
        source_type: str,
        blob_source: str,
        source_location: Optional[str],
        metadata: Dict[str, Any],
        parent_id: Optional[int],
        prior: Optional[Document],
    ) -> Document:
        saga = Saga("ingest", file_id=file_id)

        def remove_blob(storage_path: str) -> None:
            if prior is not None and prior.storage_path == storage_path:
                # the write replaced bytes the existing record still points at
                raise StorageError(
                    f"Blob {storage_path} overwrote content of existing record {file_id}; cannot restore",
                    storage_path=storage_path,
                    file_id=file_id,
                )
            self._blobs.delete(storage_path)
            log(log_storage_event("blob_rolled_back", storage_path, file_id=file_id))

        storage_path = saga.run_step(
            "persist_blob",
            lambda: self._blobs.put(blob_source, file_id, content.file),
            compensate=remove_blob,
            compensation_name="delete_blob",
        )

        stored_metadata = {**metadata, "uploadedAt": datetime.now(timezone.utc).isoformat()}

        def record_upload() -> Document:
            with self._transaction("ingest", file_id) as session:
                document = MetadataStore(session).upsert_by_key(file_id, {
                    "file_name": file_name,
                    "mime_type": mime_type,
                    "file_size": content.size_bytes,
                    "content_hash": content.content_hash,
                    "raw_storage_path": storage_path,
                    "metadata": stored_metadata,
                    "source_type": source_type,
                    "source_location": source_location,
                    "parent_id": parent_id,
                })
                EventStore(session).append(document.id, EventType.UPLOADED, {
                    "id": file_id,
                    "originalName": file_name,
                    "storagePath": storage_path,
                    "mimeType": mime_type,
                    "size": content.size_bytes,
                    "hash": content.content_hash,
                    "sourceType": source_type,
                    "sourceLocation": source_location,
                    "metadata": stored_metadata,
                })
                return document

        document = saga.run_step("upsert_document_and_event", record_upload)
        if prior is not None and prior.storage_path != storage_path:
            self._release_blob(prior.storage_path, file_id)
        return document

    def _release_blob(self, storage_path: str, file_id: str) -> None:
        """Remove a blob the record no longer points at, unless another record still does."""
        try:
            with self._transaction("ingest", file_id) as session:
                if MetadataStore(session).count_references(storage_path):
                    return
            self._blobs.delete(storage_path)
        except (MetadataStoreError, StorageError) as e:
            logger.error(f"Could not remove replaced blob {storage_path} for {file_id}: {e}")
            log(log_storage_event("blob_orphaned", storage_path, level="ERROR", file_id=file_id, error=str(e)))
            return
        log(log_storage_event("blob_replaced", storage_path, file_id=file_id))

    # -------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------

    def get_document(self, file_id: str) -> Document:
        with self._transaction("get", file_id) as session:
            document = MetadataStore(session).get_by_key(file_id)
        if document is None:
            raise DocumentNotFoundError(f"File not found: {file_id}", file_id=file_id, operation="get")
        return document

    def get_info(self, file_id: str) -> DocumentInfo:
        """Record plus its event count. Does not append an event."""
        with self._transaction("info", file_id) as session:
            store = MetadataStore(session)
            document = store.get_by_key(file_id)
            if document is None:
                raise DocumentNotFoundError(f"File not found: {file_id}", file_id=file_id, operation="info")
            event_count = store.count_events(document.id)
        return DocumentInfo(document=document, event_count=event_count)

    def retrieve(self, file_id: str, *, actor: str = "anonymous") -> RetrievedDocument:
        """
        Open a document's bytes.

        Raises DocumentNotFoundError (no record) or BlobNotFoundError
        (record present, bytes missing). The "downloaded" event is
        best-effort and never fails the retrieval.
        """
        document = self.get_document(file_id)
        try:
            stream = self._blobs.get(document.storage_path)
        except BlobNotFoundError as e:
            logger.warning(f"File content not found in storage for {file_id}: {document.storage_path}")
            raise BlobNotFoundError(
                f"File content not found in storage: {file_id}",
                file_id=file_id,
                storage_path=document.storage_path,
                operation="retrieve",
            ) from e

        try:
            with self._transaction("retrieve", file_id) as session:
                EventStore(session).append(document.id, EventType.DOWNLOADED, {"downloadedBy": actor})
        except MetadataStoreError as e:
            logger.error(f"Could not record download event for {file_id}: {e}")
            log(log_audit_failure(file_id, EventType.DOWNLOADED.value, str(e)))

        return RetrievedDocument(document=document, stream=stream)

    def list_events(self, file_id: str) -> List[DocumentEvent]:
        """All events for a document, most recent first."""
        with self._transaction("list_events", file_id) as session:
            document_id = MetadataStore(session).get_internal_id(file_id)
            if document_id is None:
                raise DocumentNotFoundError(f"File not found: {file_id}", file_id=file_id, operation="list_events")
            return EventStore(session).list_by_document(document_id)

    def list_documents(
        self,
        filters: Optional[ListFilters] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> DocumentPage:
        return self._query.list(filters, page=page, page_size=page_size)

    # -------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------

    def update_metadata(
        self,
        file_id: str,
        *,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        processing_status: Optional[str] = None,
        updated_by: str = "system",
    ) -> Document:
        """
        Merge metadata, replace tags and/or set processing status.

        Raises InvalidInputError when nothing recognizable was supplied and
        DocumentNotFoundError when the record does not exist.
        """
        try:
            update = MetadataUpdate(
                tags=tags,
                metadata=metadata,
                processing_status=processing_status,
                updated_by=updated_by,
            )
        except ValidationError as e:
            raise InvalidInputError(
                f"Invalid update for {file_id}",
                file_id=file_id,
                operation="update",
                validation_errors=e.errors(),
            ) from e

        fields = update.supplied_fields()
        if not fields:
            raise InvalidInputError("No valid update fields provided", file_id=file_id, operation="update")

        start = time.monotonic()
        with self._transaction("update", file_id) as session:
            document = MetadataStore(session).update_by_key(
                file_id,
                tags=update.tags,
                metadata_patch=update.metadata,
                processing_status=update.processing_status,
            )
            EventStore(session).append(document.id, EventType.UPDATED, {
                "updatedFields": fields,
                "updatedBy": update.updated_by,
            })

        log(log_document_event(
            "document_updated",
            file_id,
            document.id,
            duration_ms=(time.monotonic() - start) * 1000,
            updated_fields=fields,
            updated_by=update.updated_by,
        ))
        return document

    # -------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------

    def delete(self, file_id: str) -> DeleteResult:
        """
        Permanently remove a document: its blob, its events, its record.

        A missing blob is not an error. A blob still referenced by another
        record is left in place.
        """
        with self._transaction("delete", file_id) as session:
            store = MetadataStore(session)
            document = store.get_by_key(file_id)
            if document is None:
                raise DocumentNotFoundError(f"File not found: {file_id}", file_id=file_id, operation="delete")
            shared = store.count_references(document.storage_path) > 1

        saga = Saga("delete", file_id=file_id)

        def remove_blob() -> bool:
            if shared:
                logger.warning(f"Blob {document.storage_path} shared with another record; keeping it")
                return False
            return self._blobs.delete(document.storage_path)

        blob_deleted = saga.run_step("delete_blob", remove_blob)

        def remove_metadata() -> int:
            with self._transaction("delete", file_id) as session:
                removed_events = EventStore(session).delete_by_document(document.id)
                if not MetadataStore(session).delete_by_key(file_id):
                    raise DocumentNotFoundError(
                        f"File disappeared during delete: {file_id}", file_id=file_id, operation="delete"
                    )
                return removed_events

        events_deleted = saga.run_step("delete_events_and_record", remove_metadata)

        logger.info(f"Deleted {file_id} (events={events_deleted}, blob_deleted={blob_deleted})")
        log(log_document_event(
            "document_deleted",
            file_id,
            document.id,
            events_deleted=events_deleted,
            blob_deleted=blob_deleted,
        ))
        return DeleteResult(
            file_id=file_id,
            document_id=document.id,
            events_deleted=events_deleted,
            blob_deleted=blob_deleted,
        )

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    @staticmethod
    def _generate_file_id(file_name: str) -> str:
        base_name = os.path.basename(file_name.replace("\\", "/")) or "upload"
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{base_name}"

    @staticmethod
    def detect_mime_type(file_name: str) -> str:
        mime, _ = mimetypes.guess_type(file_name)
        return mime or "application/octet-stream"
