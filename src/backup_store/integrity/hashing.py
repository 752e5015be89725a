"""
Content-addressed hashing using BLAKE3.

Digests are truncated to 160 bits and hex-encoded, giving 40 lowercase
characters. The same digest function keys file content and entry trees.
"""

import re
from typing import BinaryIO

import blake3

DIGEST_SIZE = 20
DIGEST_LENGTH = DIGEST_SIZE * 2

_CHUNK_SIZE = 1 << 20
_DIGEST_RE = re.compile(rf"^[a-f0-9]{{{DIGEST_LENGTH}}}\Z")


def compute_hash(data: bytes) -> str:
    """
    Compute the digest of raw bytes.

    Returns hex-encoded hash string.
    """
    return blake3.blake3(data).hexdigest(length=DIGEST_SIZE)


def compute_stream_hash(stream: BinaryIO) -> str:
    """Compute the digest of a binary stream, reading it in chunks."""
    hasher = blake3.blake3()
    while True:
        chunk = stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        hasher.update(chunk)
    return hasher.hexdigest(length=DIGEST_SIZE)


def is_valid_digest(digest: str) -> bool:
    """Check that a string is a well-formed digest."""
    return isinstance(digest, str) and _DIGEST_RE.match(digest) is not None


def hex_pattern(length: int) -> re.Pattern:
    """Regex matching exactly ``length`` lowercase hex characters."""
    return re.compile(rf"^[a-f0-9]{{{length}}}\Z")


def get_hash_prefix(hash_str: str, prefix_length: int) -> str:
    """
    Get prefix of hash for directory sharding.

    A prefix length of 3 creates 4096 subdirectories.
    """
    if len(hash_str) < prefix_length:
        raise ValueError(f"Hash too short for prefix length {prefix_length}")
    return hash_str[:prefix_length]
