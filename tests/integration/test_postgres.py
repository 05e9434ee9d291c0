"""
Integration tests — atomic upsert and locked updates on PostgreSQL.
"""

import io
from concurrent.futures import ThreadPoolExecutor

import pytest

from docledger.db.models import DocumentRow


@pytest.mark.integration
class TestConcurrentWrites:

    def test_concurrent_ingest_same_file_id_single_record(self, pg_manager, pg_database):
        def ingest(n):
            return pg_manager.ingest(io.BytesIO(f"rev {n}".encode()), file_name="a.txt", file_id="doc-1")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(ingest, range(16)))

        assert len({r.document_id for r in results}) == 1
        with pg_database.session_scope() as session:
            assert session.query(DocumentRow).count() == 1
        assert len(pg_manager.list_events("doc-1")) == 16

    def test_concurrent_metadata_merges_all_land(self, pg_manager):
        pg_manager.ingest(io.BytesIO(b"x"), file_name="a.txt", file_id="doc-1")

        def update(n):
            return pg_manager.update_metadata("doc-1", metadata={f"key{n}": n})

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(update, range(20)))

        metadata = pg_manager.get_document("doc-1").metadata
        assert all(metadata[f"key{n}"] == n for n in range(20))

    def test_delete_cascades(self, pg_manager):
        pg_manager.ingest(io.BytesIO(b"x"), file_name="a.txt", file_id="doc-1")
        pg_manager.retrieve("doc-1").read()
        result = pg_manager.delete("doc-1")
        assert result.events_deleted == 2
        assert pg_manager.list_documents().total == 0
