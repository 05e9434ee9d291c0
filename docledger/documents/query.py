"""
Listing — filtered, paginated views over the document table.

Filters are ANDed; a filter whose value is None or "" matches everything.
Rows come back newest-ingested first with id as the tie-breaker, so walking
pages 1..total_pages visits every match exactly once while nothing is being
written concurrently.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from docledger.db.session import Database
from docledger.documents.metadata_store import MetadataStore
from docledger.documents.models import DocumentPage, ListFilters
from docledger.engine.errors import InvalidInputError, MetadataStoreError

logger = logging.getLogger("docledger.documents.query")


class QueryEngine:

    def __init__(self, database: Database, default_page_size: int = 20, max_page_size: int = 500):
        self._db = database
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def list(
        self,
        filters: Optional[ListFilters] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> DocumentPage:
        filters = filters or ListFilters()
        page_size = self.default_page_size if page_size is None else page_size

        if page < 1:
            raise InvalidInputError(f"page must be >= 1, got {page}", operation="list")
        if page_size < 1:
            raise InvalidInputError(f"page_size must be >= 1, got {page_size}", operation="list")
        page_size = min(page_size, self.max_page_size)

        offset = (page - 1) * page_size
        try:
            with self._db.session_scope() as session:
                records, total = MetadataStore(session).query(filters, offset, page_size)
        except SQLAlchemyError as e:
            raise MetadataStoreError(f"Listing failed: {e}", operation="list") from e

        logger.debug(f"Listed page {page} ({len(records)}/{total}) filters={filters.active()}")
        return DocumentPage(records=records, total=total, page=page, page_size=page_size)
