"""
DocLedger Document Models — Pydantic definitions passed across the core.

Document: The canonical description of one logical file.
DocumentEvent: One immutable audit entry.
IngestResult / DocumentInfo / DocumentPage / DeleteResult: operation outcomes.
ListFilters / MetadataUpdate: operation inputs.

metadata / tags / event_data are typed open values here. When a stored
value could not be parsed they hold the raw string instead, and
`corrupted_fields` names them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, BinaryIO, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


class SourceType(str, Enum):
    """Where a document came from. Also the top-level blob directory."""
    GOOGLE_DRIVE = "google-drive"
    LOCAL_UPLOAD = "local-uploads"
    OTHER = "other-sources"


class ProcessingStatus(str, Enum):
    """Known processing states. Any string is accepted on update."""
    RAW = "raw"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class EventType(str, Enum):
    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
    UPDATED = "updated"
    DELETED = "deleted"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class Document(BaseModel):
    """Document record as read from the metadata store."""

    id: int = Field(description="Internal identity, referenced by events")
    file_id: str = Field(description="Caller-assigned or generated lookup key")
    file_name: str
    mime_type: str
    size_bytes: int = Field(ge=0)
    source_type: str
    source_location: str = ""
    content_hash: str = Field(min_length=64, max_length=64)
    storage_path: str
    metadata: Union[Dict[str, Any], str] = Field(default_factory=dict)
    tags: Union[List[str], str] = Field(default_factory=list)
    processing_status: str = ProcessingStatus.RAW.value
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    ingested_at: Optional[datetime] = None
    parent_id: Optional[int] = None
    corrupted_fields: List[str] = Field(default_factory=list)

    @field_validator("created_at", "modified_at", "ingested_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class DocumentEvent(BaseModel):
    id: int
    document_id: int
    event_type: str
    event_timestamp: Optional[datetime] = None
    event_data: Union[Dict[str, Any], str] = Field(default_factory=dict)
    corrupted: bool = False

    @field_validator("event_timestamp")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class ListFilters(BaseModel):
    """
    Conjunctive listing filters. None or "" means "match all" for that field.
    """
    source_type: Optional[str] = None
    mime_type: Optional[str] = None
    name: Optional[str] = None

    def active(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v not in (None, "")}


class MetadataUpdate(BaseModel):
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    processing_status: Optional[str] = None
    updated_by: str = "system"

    def supplied_fields(self) -> List[str]:
        return [
            name for name in ("tags", "metadata", "processing_status")
            if getattr(self, name) is not None
        ]


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

class IngestResult(BaseModel):
    """
    Outcome of an ingest. duplicate_detected=True is a successful outcome:
    `document` is then the pre-existing record and nothing was written.
    """
    duplicate_detected: bool = False
    document_id: int
    document: Document
    content_hash: str
    size_bytes: int

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class DocumentInfo(BaseModel):
    document: Document
    event_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {**self.document.to_dict(), "event_count": self.event_count}


class DocumentPage(BaseModel):
    records: List[Document] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pagination": {
                "total": self.total,
                "page": self.page,
                "limit": self.page_size,
                "totalPages": self.total_pages,
            },
            "files": [r.to_dict() for r in self.records],
        }


class DeleteResult(BaseModel):
    file_id: str
    document_id: int
    events_deleted: int = 0
    blob_deleted: bool = False


@dataclass
class RetrievedDocument:
    """A document plus an open stream over its bytes. Caller closes the stream."""

    document: Document
    stream: BinaryIO

    def read(self) -> bytes:
        try:
            return self.stream.read()
        finally:
            self.stream.close()
