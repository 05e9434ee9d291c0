"""Unit tests for docledger.documents.saga — compensation of multi-step operations."""

from unittest.mock import MagicMock

import pytest

from docledger.documents.saga import Saga
from docledger.engine.errors import MetadataStoreError, PartialFailureError, StorageError
from docledger.engine.logging import FileLogger, init_logging, shutdown_logging


def _fail(exc):
    def action():
        raise exc
    return action


class TestSaga:

    def test_successful_steps_return_results(self):
        saga = Saga("ingest", file_id="doc-1")
        assert saga.run_step("one", lambda: 1) == 1
        assert saga.run_step("two", lambda: 2) == 2
        assert saga.completed_steps == ["one", "two"]

    def test_first_step_failure_reraised_as_is(self):
        saga = Saga("ingest", file_id="doc-1")
        with pytest.raises(StorageError):
            saga.run_step("persist_blob", _fail(StorageError("disk full")))

    def test_compensated_failure_reraises_original(self):
        undo = MagicMock()
        saga = Saga("ingest", file_id="doc-1")
        saga.run_step("persist_blob", lambda: "other-sources/doc-1", compensate=undo, compensation_name="delete_blob")
        with pytest.raises(MetadataStoreError):
            saga.run_step("upsert_document_and_event", _fail(MetadataStoreError("db down")))
        undo.assert_called_once_with("other-sources/doc-1")

    def test_compensations_run_in_reverse(self):
        calls = []
        saga = Saga("ingest")
        saga.run_step("a", lambda: "a", compensate=calls.append)
        saga.run_step("b", lambda: "b", compensate=calls.append)
        with pytest.raises(ValueError):
            saga.run_step("c", _fail(ValueError("x")))
        assert calls == ["b", "a"]

    def test_failed_compensation_is_partial_failure(self):
        def refuse(_):
            raise StorageError("cannot restore")

        saga = Saga("ingest", file_id="doc-1")
        saga.run_step("persist_blob", lambda: "p", compensate=refuse, compensation_name="delete_blob")
        with pytest.raises(PartialFailureError) as exc_info:
            saga.run_step("upsert_document_and_event", _fail(MetadataStoreError("db down")))

        err = exc_info.value
        assert err.file_id == "doc-1"
        assert err.completed_steps == ["persist_blob"]
        assert err.failed_step == "upsert_document_and_event"
        assert err.compensated == []
        assert "delete_blob" in err.compensation_failures[0]
        assert isinstance(err.__cause__, MetadataStoreError)

    def test_step_without_compensation_is_partial_failure(self):
        saga = Saga("delete", file_id="doc-1")
        saga.run_step("delete_blob", lambda: True)
        with pytest.raises(PartialFailureError) as exc_info:
            saga.run_step("delete_events_and_record", _fail(MetadataStoreError("db down")))
        assert exc_info.value.compensation_failures == ["delete_blob: no compensation"]

    def test_partial_failure_written_to_error_log(self, tmp_path):
        init_logging(str(tmp_path), flush_interval_ms=10)
        saga = Saga("delete", file_id="doc-9")
        saga.run_step("delete_blob", lambda: True)
        with pytest.raises(PartialFailureError):
            saga.run_step("delete_events_and_record", _fail(MetadataStoreError("db down")))
        shutdown_logging()

        entries = FileLogger(str(tmp_path)).query("documents", "errors")
        assert entries[0]["event"] == "partial_failure"
        assert entries[0]["file_id"] == "doc-9"
        assert entries[0]["completed_steps"] == ["delete_blob"]
        assert entries[0]["failed_step"] == "delete_events_and_record"
