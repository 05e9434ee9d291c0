"""
DocLedger Blob Store — Raw byte persistence by storage path.

The core only depends on the BlobStore contract:
    storage_path_for(source_type, desired_name) -> storage_path
    put(source_type, desired_name, stream) -> storage_path
    exists(storage_path) -> bool
    get(storage_path) -> BinaryIO             (BlobNotFoundError if absent)
    delete(storage_path) -> bool              (idempotent)

LocalBlobStore keeps files under a root directory:
    {root}/{source_type}/{blob_name}

blob_name is desired_name when that is already a safe file name. Otherwise
it is the sanitized name plus a short SHA-256 of desired_name, so distinct
names never share a blob.

Storage paths are root-relative POSIX strings. Writes go to a temp file in
the target directory and are moved into place with os.replace(), so a
reader sees either the old or the new bytes. Concurrent writers to the same
path are last-writer-wins.
"""

from __future__ import annotations

import abc
import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from docledger.engine.errors import BlobNotFoundError, StorageError

logger = logging.getLogger("docledger.documents.blob_store")

COPY_CHUNK_SIZE = 1024 * 1024
MAX_NAME_LENGTH = 200
NAME_DIGEST_LENGTH = 12


class BlobStore(abc.ABC):
    """Narrow contract the lifecycle manager needs from byte storage."""

    @abc.abstractmethod
    def storage_path_for(self, source_type: str, desired_name: str) -> str:
        """The path put() would write to. Distinct names map to distinct paths."""

    @abc.abstractmethod
    def put(self, source_type: str, desired_name: str, stream: BinaryIO) -> str:
        """Persist the stream; return the storage path."""

    @abc.abstractmethod
    def exists(self, storage_path: str) -> bool:
        ...

    @abc.abstractmethod
    def get(self, storage_path: str) -> BinaryIO:
        """Open the blob for reading. Raises BlobNotFoundError."""

    @abc.abstractmethod
    def delete(self, storage_path: str) -> bool:
        """Remove the blob. Returns False if nothing was there."""

    def is_available(self) -> bool:
        return True


class LocalBlobStore(BlobStore):
    """Filesystem-backed blob store rooted at a single directory."""

    def __init__(self, root: str):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    # -------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------

    def storage_path_for(self, source_type: str, desired_name: str) -> str:
        return str(PurePosixPath(self._safe_filename(source_type), self._blob_name(desired_name)))

    def put(self, source_type: str, desired_name: str, stream: BinaryIO) -> str:
        storage_path = self.storage_path_for(source_type, desired_name)
        target = self._resolve(storage_path)
        tmp_name = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".upload-", dir=str(target.parent))
            with os.fdopen(fd, "wb") as out:
                shutil.copyfileobj(stream, out, COPY_CHUNK_SIZE)
            os.replace(tmp_name, target)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning(f"Could not remove temp upload file {tmp_name}")
            raise StorageError(
                f"Failed to write blob '{storage_path}': {e}",
                storage_path=storage_path,
                operation="put",
            ) from e
        logger.info(f"Stored blob: {storage_path}")
        return storage_path

    def exists(self, storage_path: str) -> bool:
        return self._resolve(storage_path).is_file()

    def get(self, storage_path: str) -> BinaryIO:
        path = self._resolve(storage_path)
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise BlobNotFoundError(
                f"Blob not found: {storage_path}",
                storage_path=storage_path,
                operation="get",
            ) from e
        except OSError as e:
            raise StorageError(
                f"Failed to read blob '{storage_path}': {e}",
                storage_path=storage_path,
                operation="get",
            ) from e

    def delete(self, storage_path: str) -> bool:
        path = self._resolve(storage_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(
                f"Failed to delete blob '{storage_path}': {e}",
                storage_path=storage_path,
                operation="delete",
            ) from e
        logger.info(f"Deleted blob: {storage_path}")
        return True

    def is_available(self) -> bool:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Blob store root unavailable: {e}")
            return False
        return os.access(self._root, os.W_OK)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _resolve(self, storage_path: str) -> Path:
        """Map a storage path to a file under root, refusing escapes."""
        root = self._root.resolve()
        candidate = (root / storage_path).resolve()
        if candidate != root and root not in candidate.parents:
            raise StorageError(
                f"Storage path escapes blob root: {storage_path}",
                storage_path=storage_path,
            )
        return candidate

    @classmethod
    def _blob_name(cls, desired_name: str) -> str:
        name = cls._safe_filename(desired_name)
        if name == desired_name:
            return name
        digest = hashlib.sha256(desired_name.encode("utf-8")).hexdigest()[:NAME_DIGEST_LENGTH]
        base, ext = os.path.splitext(name)
        if len(ext) > 16:
            base, ext = name, ""
        base = base[:MAX_NAME_LENGTH - len(ext) - len(digest) - 1]
        return f"{base}-{digest}{ext}"

    @staticmethod
    def _safe_filename(filename: str) -> str:
        """
        Sanitize one path component.

        Removes path separators, control chars and leading dots; caps length
        at 200 while keeping the extension.
        """
        name = os.path.basename(filename.replace("\\", "/"))
        name = "".join(c for c in name if c.isprintable() and c not in '<>:"/\\|?*')
        name = name.lstrip(".")
        if not name:
            name = "unnamed_document"
        if len(name) > MAX_NAME_LENGTH:
            base, ext = os.path.splitext(name)
            name = base[:MAX_NAME_LENGTH - len(ext)] + ext
        return name

    def __repr__(self) -> str:
        return f"<LocalBlobStore root='{self._root}'>"
