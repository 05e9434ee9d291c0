"""
DocLedger CLI — document store management commands.

Commands:
- docledger init      — Create tables and the blob store root
- docledger ingest    — Ingest a local file
- docledger get       — Download a document's bytes
- docledger info      — Show a document record and its event count
- docledger list      — Paginated, filtered listing
- docledger update    — Merge metadata / replace tags / set status
- docledger delete    — Permanently remove a document
- docledger events    — Audit trail for a document
- docledger health    — Database and blob store checks

Output is JSON on stdout. Exit codes: 0 ok, 1 failure, 2 invalid input,
4 not found.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shutil
import sys
from typing import Any, Dict, List, Optional

from docledger.engine.errors import DocLedgerError, InvalidInputError, NotFoundError

logger = logging.getLogger("docledger.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID_INPUT = 2
EXIT_NOT_FOUND = 4


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to docledger.yaml (default: auto-discover)")

    parser = argparse.ArgumentParser(
        prog="docledger",
        description="DocLedger — document ingestion, deduplication and metadata",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # docledger init
    subparsers.add_parser("init", parents=[common], help="Create tables and storage root")

    # docledger ingest
    ingest_parser = subparsers.add_parser("ingest", parents=[common], help="Ingest a local file")
    ingest_parser.add_argument("path", help="File to ingest")
    ingest_parser.add_argument("--file-id", help="Stable key (re-ingesting it replaces the content)")
    ingest_parser.add_argument("--name", help="Original file name (default: basename of path)")
    ingest_parser.add_argument("--source-type", help="google-drive | local-uploads | other-sources")
    ingest_parser.add_argument("--source-location", help="Where the file came from")
    ingest_parser.add_argument("--mime-type", help="Content type (default: guessed from name)")
    ingest_parser.add_argument("--parent", help="file_id of the parent document")
    ingest_parser.add_argument("--meta", action="append", default=[], metavar="KEY=VALUE",
                               help="Metadata entry (repeatable)")
    ingest_parser.add_argument("--no-dedup", action="store_true", help="Store even if the content is known")

    # docledger get
    get_parser = subparsers.add_parser("get", parents=[common], help="Download document bytes")
    get_parser.add_argument("file_id")
    get_parser.add_argument("--output", "-o", help="Write to this path (default: stdout)")
    get_parser.add_argument("--user", default="anonymous", help="Recorded as downloadedBy")

    # docledger info
    info_parser = subparsers.add_parser("info", parents=[common], help="Show a document record")
    info_parser.add_argument("file_id")

    # docledger list
    list_parser = subparsers.add_parser("list", parents=[common], help="List documents")
    list_parser.add_argument("--source-type")
    list_parser.add_argument("--mime-type", help="Case-insensitive substring")
    list_parser.add_argument("--search", help="Case-insensitive substring of the file name")
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--limit", type=int, help="Page size (default from config)")

    # docledger update
    update_parser = subparsers.add_parser("update", parents=[common], help="Update document metadata")
    update_parser.add_argument("file_id")
    update_parser.add_argument("--tag", action="append", dest="tags", help="Tag (repeatable; replaces all tags)")
    update_parser.add_argument("--meta", action="append", default=[], metavar="KEY=VALUE",
                               help="Metadata entry to merge (repeatable)")
    update_parser.add_argument("--status", help="Processing status")
    update_parser.add_argument("--updated-by", default="system")

    # docledger delete
    delete_parser = subparsers.add_parser("delete", parents=[common], help="Delete a document")
    delete_parser.add_argument("file_id")

    # docledger events
    events_parser = subparsers.add_parser("events", parents=[common], help="Show a document's events")
    events_parser.add_argument("file_id")

    # docledger health
    subparsers.add_parser("health", parents=[common], help="Check database and blob store")

    args = parser.parse_args(argv)

    commands = {
        "init": cmd_init,
        "ingest": cmd_ingest,
        "get": cmd_get,
        "info": cmd_info,
        "list": cmd_list,
        "update": cmd_update,
        "delete": cmd_delete,
        "events": cmd_events,
        "health": cmd_health,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_OK

    try:
        return handler(args)
    except NotFoundError as e:
        _print_error(e)
        return EXIT_NOT_FOUND
    except InvalidInputError as e:
        _print_error(e)
        return EXIT_INVALID_INPUT
    except DocLedgerError as e:
        _print_error(e)
        return EXIT_FAILURE


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_service(args: argparse.Namespace):
    from docledger.engine.config import load_config
    from docledger.service import DocLedgerService

    return DocLedgerService(load_config(args.config))


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _print_error(error: DocLedgerError) -> None:
    print(error.to_json(), file=sys.stderr)


def _parse_meta(pairs: List[str]) -> Dict[str, Any]:
    """KEY=VALUE pairs; VALUE is read as JSON when it parses, else kept as text."""
    result: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise InvalidInputError(f"Expected KEY=VALUE, got '{pair}'", operation="cli")
        try:
            result[key] = json.loads(value)
        except ValueError:
            result[key] = value
    return result


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_init(args: argparse.Namespace) -> int:
    """Create the schema and make sure the blob root is writable."""
    print("=" * 60)
    print("  DocLedger Initialization")
    print("=" * 60)

    service = _build_service(args)
    with service:
        print(f"[OK] Database ready ({service.database.dialect_name})")
        if not service.blob_store.is_available():
            print(f"[ERROR] Blob store root not writable: {service.blob_store.root}")
            return EXIT_FAILURE
        print(f"[OK] Blob store root: {service.blob_store.root}")
    print("[OK] Done")
    return EXIT_OK


def cmd_ingest(args: argparse.Namespace) -> int:
    metadata = _parse_meta(args.meta)
    file_name = args.name or os.path.basename(args.path)
    try:
        stream = open(args.path, "rb")
    except OSError as e:
        raise InvalidInputError(f"Cannot read {args.path}: {e}", operation="ingest") from e

    with stream, _build_service(args) as service:
        result = service.documents.ingest(
            stream,
            file_name=file_name,
            mime_type=args.mime_type,
            file_id=args.file_id,
            source_type=args.source_type,
            source_location=args.source_location,
            metadata=metadata,
            deduplication_enabled=False if args.no_dedup else None,
            parent_file_id=args.parent,
        )
    _emit(result.to_dict())
    return EXIT_OK


def cmd_get(args: argparse.Namespace) -> int:
    with _build_service(args) as service:
        retrieved = service.documents.retrieve(args.file_id, actor=args.user)
        with retrieved.stream:
            if args.output:
                with open(args.output, "wb") as out:
                    shutil.copyfileobj(retrieved.stream, out)
                _emit(retrieved.document.to_dict())
            else:
                shutil.copyfileobj(retrieved.stream, sys.stdout.buffer)
                sys.stdout.buffer.flush()
    return EXIT_OK


def cmd_info(args: argparse.Namespace) -> int:
    with _build_service(args) as service:
        info = service.documents.get_info(args.file_id)
    _emit(info.to_dict())
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    from docledger.documents.models import ListFilters

    filters = ListFilters(source_type=args.source_type, mime_type=args.mime_type, name=args.search)
    with _build_service(args) as service:
        page = service.documents.list_documents(filters, page=args.page, page_size=args.limit)
    _emit(page.to_dict())
    return EXIT_OK


def cmd_update(args: argparse.Namespace) -> int:
    metadata = _parse_meta(args.meta) or None
    with _build_service(args) as service:
        document = service.documents.update_metadata(
            args.file_id,
            tags=args.tags,
            metadata=metadata,
            processing_status=args.status,
            updated_by=args.updated_by,
        )
    _emit(document.to_dict())
    return EXIT_OK


def cmd_delete(args: argparse.Namespace) -> int:
    with _build_service(args) as service:
        result = service.documents.delete(args.file_id)
    _emit(result.model_dump(mode="json"))
    return EXIT_OK


def cmd_events(args: argparse.Namespace) -> int:
    with _build_service(args) as service:
        events = service.documents.list_events(args.file_id)
    _emit([e.to_dict() for e in events])
    return EXIT_OK


def cmd_health(args: argparse.Namespace) -> int:
    with _build_service(args) as service:
        report = service.health_report()
    _emit(report)
    return EXIT_OK if report["status"] == "healthy" else EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
