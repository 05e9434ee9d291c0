"""
Content addressing — SHA-256 fingerprints of byte streams.

Streams are consumed in fixed-size chunks so memory stays bounded no
matter how large the upload is. spool_stream() hashes while copying into
a SpooledTemporaryFile, which lets the dedup decision happen before any
byte reaches the blob store.
"""

from __future__ import annotations

import hashlib
import tempfile
from dataclasses import dataclass
from typing import BinaryIO, Optional

from docledger.engine.errors import InvalidInputError

DEFAULT_CHUNK_SIZE = 8192
DIGEST_LENGTH = 64


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_stream(stream: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Hex digest of everything left in `stream`. Does not rewind."""
    digest = hashlib.sha256()
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        digest.update(chunk)
    return digest.hexdigest()


@dataclass
class SpooledContent:
    """Upload bytes held in a spool file, rewound and ready to read."""
    file: BinaryIO
    content_hash: str
    size_bytes: int

    def close(self) -> None:
        self.file.close()

    def __enter__(self) -> "SpooledContent":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def spool_stream(
    stream: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_memory_bytes: int = 8 * 1024 * 1024,
    max_size_bytes: Optional[int] = None,
) -> SpooledContent:
    """
    Copy `stream` into a spool file, hashing as it goes.

    Spills to disk past max_memory_bytes. Raises InvalidInputError once
    more than max_size_bytes have been read; the spool is discarded.
    """
    spool = tempfile.SpooledTemporaryFile(max_size=max_memory_bytes, mode="w+b")
    digest = hashlib.sha256()
    size = 0
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            size += len(chunk)
            if max_size_bytes is not None and size > max_size_bytes:
                raise InvalidInputError(
                    f"Upload exceeds maximum size of {max_size_bytes} bytes",
                    operation="ingest",
                    max_size_bytes=max_size_bytes,
                )
            digest.update(chunk)
            spool.write(chunk)
    except BaseException:
        spool.close()
        raise
    spool.seek(0)
    return SpooledContent(file=spool, content_hash=digest.hexdigest(), size_bytes=size)
