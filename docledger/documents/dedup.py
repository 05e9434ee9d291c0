"""
Deduplication — decide whether incoming content is already on record.

Matching is exact on the full SHA-256 digest. Two concurrent uploads of the
same new bytes can both be judged "new" before either commits; that yields
two records with one digest and is accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from docledger.documents.metadata_store import MetadataStore
from docledger.documents.models import Document

logger = logging.getLogger("docledger.documents.dedup")


@dataclass(frozen=True)
class DedupDecision:
    is_duplicate: bool
    existing: Optional[Document] = None


class DeduplicationEngine:

    def lookup(self, store: MetadataStore, content_hash: str) -> Optional[Document]:
        return store.get_by_content_hash(content_hash)

    def decide(self, store: MetadataStore, content_hash: str, enabled: bool = True) -> DedupDecision:
        """Disabled dedup always means "new", even when the digest is known."""
        if not enabled:
            return DedupDecision(is_duplicate=False)
        existing = self.lookup(store, content_hash)
        if existing is None:
            return DedupDecision(is_duplicate=False)
        logger.info(f"Duplicate content {content_hash[:12]} matches existing file {existing.file_id}")
        return DedupDecision(is_duplicate=True, existing=existing)
