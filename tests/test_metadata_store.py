"""Unit tests for docledger.documents.metadata_store and events — the transactional stores."""

from unittest.mock import patch

import pytest
from sqlalchemy import update

from docledger.db.models import DocumentEventRow, DocumentRow
from docledger.documents.dedup import DeduplicationEngine
from docledger.documents.events import EventStore
from docledger.documents.metadata_store import MetadataStore, decode_json
from docledger.documents.models import EventType, ListFilters
from docledger.engine.errors import DocumentNotFoundError

HASH_A = "a" * 64
HASH_B = "b" * 64


def _fields(**overrides):
    fields = {
        "file_name": "report.pdf",
        "mime_type": "application/pdf",
        "file_size": 10,
        "content_hash": HASH_A,
        "raw_storage_path": "google-drive/doc-1",
        "metadata": {"owner": "ana"},
        "source_type": "google-drive",
        "source_location": "drive://folder",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def seeded(database):
    with database.session_scope() as session:
        doc = MetadataStore(session).upsert_by_key("doc-1", _fields())
    return doc


class TestDecodeJson:

    def test_valid(self):
        assert decode_json('{"a": 1}', {}, field="metadata", owner="x") == ({"a": 1}, True)

    def test_empty_uses_default(self):
        assert decode_json("", [], field="tags", owner="x") == ([], True)

    def test_invalid_returns_raw(self):
        assert decode_json("{oops", {}, field="metadata", owner="x") == ("{oops", False)


class TestUpsert:

    def test_insert(self, seeded):
        assert seeded.id is not None
        assert seeded.file_id == "doc-1"
        assert seeded.metadata == {"owner": "ana"}
        assert seeded.tags == []
        assert seeded.processing_status == "raw"
        assert seeded.source_location == "drive://folder"

    def test_conflict_updates_content_fields_only(self, database, seeded):
        with database.session_scope() as session:
            MetadataStore(session).update_by_key("doc-1", tags=["q3"], processing_status="processed")
        with database.session_scope() as session:
            doc = MetadataStore(session).upsert_by_key("doc-1", _fields(
                file_name="report-v2.pdf",
                content_hash=HASH_B,
                file_size=20,
                metadata={"owner": "bo"},
                source_type="local-uploads",
                source_location="elsewhere",
            ))
        assert doc.id == seeded.id
        assert doc.file_name == "report-v2.pdf"
        assert doc.content_hash == HASH_B
        assert doc.size_bytes == 20
        assert doc.metadata == {"owner": "bo"}
        # preserved
        assert doc.source_type == "google-drive"
        assert doc.source_location == "drive://folder"
        assert doc.tags == ["q3"]
        assert doc.processing_status == "processed"
        assert doc.ingested_at == seeded.ingested_at
        assert doc.created_at == seeded.created_at
        assert doc.modified_at >= seeded.modified_at

        with database.session_scope() as session:
            assert session.query(DocumentRow).count() == 1

    def test_generic_dialect_path(self, database, seeded):
        with patch.object(MetadataStore, "_dialect_name", return_value="generic"):
            with database.session_scope() as session:
                store = MetadataStore(session)
                doc = store.upsert_by_key("doc-1", _fields(content_hash=HASH_B))
                new = store.upsert_by_key("doc-2", _fields(raw_storage_path="google-drive/doc-2"))
        assert doc.id == seeded.id
        assert doc.content_hash == HASH_B
        assert doc.ingested_at == seeded.ingested_at
        assert new.id != seeded.id


class TestLookups:

    def test_get_by_key_missing(self, database):
        with database.session_scope() as session:
            assert MetadataStore(session).get_by_key("nope") is None

    def test_get_by_content_hash_returns_oldest(self, database, seeded):
        with database.session_scope() as session:
            MetadataStore(session).upsert_by_key("doc-2", _fields(raw_storage_path="x/doc-2"))
        with database.session_scope() as session:
            assert MetadataStore(session).get_by_content_hash(HASH_A).file_id == "doc-1"
            assert MetadataStore(session).get_by_content_hash(HASH_B) is None

    def test_get_internal_id(self, database, seeded):
        with database.session_scope() as session:
            assert MetadataStore(session).get_internal_id("doc-1") == seeded.id
            assert MetadataStore(session).get_internal_id("nope") is None

    def test_count_references(self, database, seeded):
        with database.session_scope() as session:
            assert MetadataStore(session).count_references("google-drive/doc-1") == 1
            assert MetadataStore(session).count_references("google-drive/other") == 0
            assert MetadataStore(session).count_references("google-drive/doc-1", exclude_file_id="doc-1") == 0
            assert MetadataStore(session).count_references("google-drive/doc-1", exclude_file_id="doc-9") == 1


class TestUpdateByKey:

    def test_shallow_merge(self, database, seeded):
        with database.session_scope() as session:
            doc = MetadataStore(session).update_by_key(
                "doc-1", metadata_patch={"owner": "cy", "pages": 3}
            )
        assert doc.metadata == {"owner": "cy", "pages": 3}
        assert doc.modified_at >= seeded.modified_at

    def test_tags_replace(self, database, seeded):
        with database.session_scope() as session:
            MetadataStore(session).update_by_key("doc-1", tags=["a", "b"])
        with database.session_scope() as session:
            doc = MetadataStore(session).update_by_key("doc-1", tags=["c"])
        assert doc.tags == ["c"]

    def test_missing_raises(self, database):
        with pytest.raises(DocumentNotFoundError):
            with database.session_scope() as session:
                MetadataStore(session).update_by_key("nope", tags=["x"])

    def test_corrupted_metadata_replaced_on_merge(self, database, seeded):
        with database.session_scope() as session:
            session.execute(update(DocumentRow).where(DocumentRow.id == seeded.id).values(metadata_="{bad"))
        with database.session_scope() as session:
            doc = MetadataStore(session).update_by_key("doc-1", metadata_patch={"k": "v"})
        assert doc.metadata == {"k": "v"}
        assert doc.corrupted_fields == []


class TestCorruptedJson:

    def test_degrades_to_raw(self, database, seeded):
        with database.session_scope() as session:
            session.execute(
                update(DocumentRow).where(DocumentRow.id == seeded.id).values(metadata_="{bad", tags='"notalist"')
            )
        with database.session_scope() as session:
            doc = MetadataStore(session).get_by_key("doc-1")
        assert doc.metadata == "{bad"
        assert doc.tags == '"notalist"'
        assert sorted(doc.corrupted_fields) == ["metadata", "tags"]

    def test_degrades_in_listing(self, database, seeded):
        with database.session_scope() as session:
            session.execute(update(DocumentRow).where(DocumentRow.id == seeded.id).values(tags="[1, 2]"))
        with database.session_scope() as session:
            docs, total = MetadataStore(session).query(ListFilters(), 0, 10)
        assert total == 1
        assert docs[0].tags == "[1, 2]"
        assert docs[0].corrupted_fields == ["tags"]


class TestEventStore:

    def test_append_and_list_newest_first(self, database, seeded):
        with database.session_scope() as session:
            events = EventStore(session)
            events.append(seeded.id, EventType.UPLOADED, {"size": 10})
            events.append(seeded.id, "downloaded", {"downloadedBy": "ana"})
        with database.session_scope() as session:
            listed = EventStore(session).list_by_document(seeded.id)
        assert [e.event_type for e in listed] == ["downloaded", "uploaded"]
        assert listed[0].event_data == {"downloadedBy": "ana"}

    def test_corrupted_event_data(self, database, seeded):
        with database.session_scope() as session:
            event = EventStore(session).append(seeded.id, EventType.UPLOADED, {})
        with database.session_scope() as session:
            session.execute(update(DocumentEventRow).where(DocumentEventRow.id == event.id).values(event_data="{x"))
        with database.session_scope() as session:
            listed = EventStore(session).list_by_document(seeded.id)
        assert listed[0].event_data == "{x"
        assert listed[0].corrupted is True

    def test_delete_by_document(self, database, seeded):
        with database.session_scope() as session:
            for _ in range(3):
                EventStore(session).append(seeded.id, EventType.DOWNLOADED)
        with database.session_scope() as session:
            assert EventStore(session).delete_by_document(seeded.id) == 3
            assert MetadataStore(session).count_events(seeded.id) == 0


class TestDeduplicationEngine:

    def test_new_content(self, database):
        with database.session_scope() as session:
            decision = DeduplicationEngine().decide(MetadataStore(session), HASH_A)
        assert decision.is_duplicate is False
        assert decision.existing is None

    def test_duplicate(self, database, seeded):
        with database.session_scope() as session:
            decision = DeduplicationEngine().decide(MetadataStore(session), HASH_A)
        assert decision.is_duplicate is True
        assert decision.existing.file_id == "doc-1"

    def test_disabled_always_new(self, database, seeded):
        with database.session_scope() as session:
            decision = DeduplicationEngine().decide(MetadataStore(session), HASH_A, enabled=False)
        assert decision.is_duplicate is False
