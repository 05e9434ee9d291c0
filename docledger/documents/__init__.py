"""
DocLedger Document Management.

Ingest, deduplicate, retrieve, update, delete and list documents.
Bytes live in a BlobStore; records and their audit events live in the
metadata database.
"""

from docledger.documents.blob_store import BlobStore, LocalBlobStore
from docledger.documents.lifecycle import DocumentLifecycleManager
from docledger.documents.models import Document, DocumentEvent, IngestResult, ListFilters
from docledger.documents.query import QueryEngine

__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "DocumentLifecycleManager",
    "Document",
    "DocumentEvent",
    "IngestResult",
    "ListFilters",
    "QueryEngine",
]
