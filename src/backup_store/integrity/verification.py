"""
Integrity verification for stored blobs.

A stored blob is intact when its content hashes to its name.
"""

from pathlib import Path

from ..errors import CorruptionError, StorageError
from .hashing import compute_stream_hash


def verify_blob_file(path: Path, expected_digest: str) -> None:
    """
    Verify that a stored file's content matches its digest.

    Raises CorruptionError on mismatch, StorageError if the file
    cannot be read.
    """
    try:
        with open(path, 'rb') as f:
            actual = compute_stream_hash(f)
    except OSError as e:
        raise StorageError("verify", str(path), e) from e

    if actual != expected_digest:
        raise CorruptionError(
            str(path),
            f"content hashes to {actual}, expected {expected_digest}",
        )

