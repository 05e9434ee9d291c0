"""
DocLedger Error Hierarchy — Typed failures for the ingestion core.

Every error carries a message plus free-form keyword context that serializes
to JSON, so failures can be written to the structured log as-is and mapped
to transport-level responses by whoever sits above the core.

Hierarchy:
    DocLedgerError
    ├── NotFoundError
    │   ├── DocumentNotFoundError  — No record for the file_id
    │   └── BlobNotFoundError      — Record exists, bytes are gone
    ├── InvalidInputError          — Missing/unrecognized input
    ├── StorageError               — Blob store I/O failed
    ├── MetadataStoreError         — Transactional store failed
    ├── PartialFailureError        — Multi-step operation stopped half-way
    └── ConfigError                — Invalid docledger.yaml / environment

A suppressed duplicate upload is NOT an error; see IngestResult.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class DocLedgerError(Exception):
    """
    Base error for all DocLedger failures.
    All context is kept as keyword arguments and serialized by to_dict().
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.file_id: Optional[str] = context.get("file_id")
        self.operation: Optional[str] = context.get("operation")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "file_id": self.file_id,
            "operation": self.operation,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("file_id", "operation")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.file_id:
            parts.append(f"file_id={self.file_id}")
        if self.operation:
            parts.append(f"operation={self.operation}")
        return " | ".join(parts)


class NotFoundError(DocLedgerError):
    """Referenced document or blob is absent."""
    pass


class DocumentNotFoundError(NotFoundError):
    """No document record exists for the given file_id."""
    pass


class BlobNotFoundError(NotFoundError):
    """The blob store has nothing at the given storage path."""

    def __init__(self, message: str, **context: Any):
        self.storage_path: Optional[str] = context.get("storage_path")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["storage_path"] = self.storage_path
        return d


class InvalidInputError(DocLedgerError):
    """
    Input rejected before any mutation (no update fields, bad pagination,
    oversized upload). Includes field-level details when available.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[list] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class StorageError(DocLedgerError):
    """Blob store read/write/delete failed."""

    def __init__(self, message: str, **context: Any):
        self.storage_path: Optional[str] = context.get("storage_path")
        super().__init__(message, **context)


class MetadataStoreError(DocLedgerError):
    """Metadata store failure, including lost connectivity."""
    pass


class PartialFailureError(DocLedgerError):
    """
    A multi-step operation failed after some steps had already taken effect.

    completed_steps / failed_step / compensated describe exactly where it
    stopped so an operator can reconcile by hand.
    """

    def __init__(self, message: str, **context: Any):
        self.completed_steps: List[str] = list(context.get("completed_steps", []))
        self.failed_step: Optional[str] = context.get("failed_step")
        self.compensated: List[str] = list(context.get("compensated", []))
        self.compensation_failures: List[str] = list(context.get("compensation_failures", []))
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["completed_steps"] = self.completed_steps
        d["failed_step"] = self.failed_step
        d["compensated"] = self.compensated
        d["compensation_failures"] = self.compensation_failures
        return d


class ConfigError(DocLedgerError):
    """Configuration error — invalid docledger.yaml or environment override."""
    pass
