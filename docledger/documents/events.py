"""
DocLedger Event Store — Append-only audit trail per document.

Events are written once and never updated. They are removed only by
delete_by_document(), which the lifecycle manager calls right before
deleting the owning document.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from docledger.db.base import utcnow
from docledger.db.models import DocumentEventRow
from docledger.documents.metadata_store import decode_json, encode_json
from docledger.documents.models import DocumentEvent, EventType

logger = logging.getLogger("docledger.documents.events")


def row_to_event(row: DocumentEventRow) -> DocumentEvent:
    data, ok = decode_json(row.event_data, {}, field="event data", owner=f"event {row.id}")
    return DocumentEvent(
        id=row.id,
        document_id=row.document_id,
        event_type=row.event_type,
        event_timestamp=row.event_timestamp,
        event_data=data if ok and isinstance(data, dict) else row.event_data,
        corrupted=not (ok and isinstance(data, dict)),
    )


class EventStore:
    """document_events operations within one Session."""

    def __init__(self, session: Session):
        self._session = session

    def append(
        self,
        document_id: int,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> DocumentEvent:
        if isinstance(event_type, EventType):
            event_type = event_type.value
        row = DocumentEventRow(
            document_id=document_id,
            event_type=event_type,
            event_timestamp=utcnow(),
            event_data=encode_json(payload or {}),
        )
        self._session.add(row)
        self._session.flush()
        logger.debug(f"Appended '{event_type}' event {row.id} for document {document_id}")
        return row_to_event(row)

    def list_by_document(self, document_id: int) -> List[DocumentEvent]:
        """Most recent first; same-timestamp events by id, newest first."""
        stmt = (
            select(DocumentEventRow)
            .where(DocumentEventRow.document_id == document_id)
            .order_by(DocumentEventRow.event_timestamp.desc(), DocumentEventRow.id.desc())
        )
        return [row_to_event(r) for r in self._session.execute(stmt).scalars().all()]

    def delete_by_document(self, document_id: int) -> int:
        result = self._session.execute(
            delete(DocumentEventRow).where(DocumentEventRow.document_id == document_id)
        )
        return result.rowcount or 0
