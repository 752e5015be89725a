"""
Filesystem layout for the backup store.

Implements content-addressed storage with directory sharding.
"""

from pathlib import Path

from ..errors import InvalidKeyError, StorageError
from ..integrity.hashing import DIGEST_LENGTH, get_hash_prefix, is_valid_digest

CAS_NAME = "cas"
NODES_NAME = "nodes"
TRASH_NAME = "trash"
NEED_FSCK_NAME = "need_fsck"
TMP_NAME = ".tmp"


def prefix_space(prefix_length: int) -> int:
    """Number of shard directories for a prefix length (16 ** length)."""
    if prefix_length <= 0:
        return 0
    return 1 << (prefix_length * 4)


def shard_names(prefix_length: int) -> list[str]:
    """All shard directory names, zero-padded lowercase hex."""
    return [f"{i:0{prefix_length}x}" for i in range(prefix_space(prefix_length))]


class StorageLayout:
    """
    Manages filesystem layout for a store root.

    Layout:
        store_root/
            cas/
                <prefix>/
                    <rest of digest>   # blob file
                trash/                 # quarantined entries
                need_fsck              # consistency marker
            nodes/
                <YYYY-MM>/
                    <name>_<timestamp> # node record
                tags/
                    <name>             # latest node per name
                .tmp/                  # staging for atomic tag writes
                trash/
                need_fsck
    """

    def __init__(self, store_root: Path, split_at: int = 3):
        """Initialize storage layout at given root."""
        if not 1 <= split_at < DIGEST_LENGTH:
            raise ValueError(f"Invalid shard prefix length: {split_at}")
        self.store_root = Path(store_root).resolve()
        self.split_at = split_at
        self.cas_dir = self.store_root / CAS_NAME
        self.nodes_dir = self.store_root / NODES_NAME

    def initialize(self) -> None:
        """
        Initialize storage directory structure.

        All shard directories are created together with the cas directory
        so writes never need to check for them. Idempotent.
        """
        try:
            self.store_root.mkdir(parents=True, exist_ok=True)
            self.nodes_dir.mkdir(exist_ok=True)
        except OSError as e:
            raise StorageError("initialize", str(self.store_root), e) from e
        self.initialize_cas()

    def initialize_cas(self) -> None:
        try:
            self.cas_dir.mkdir()
        except FileExistsError:
            return
        except OSError as e:
            raise StorageError("initialize", str(self.cas_dir), e) from e

        for prefix in shard_names(self.split_at):
            shard = self.cas_dir / prefix
            try:
                shard.mkdir(exist_ok=True)
            except OSError as e:
                raise StorageError("mkdir", str(shard), e) from e

    def split(self, digest: str) -> tuple[str, str]:
        """
        Split a digest into (shard, file name).

        Raises InvalidKeyError for malformed digests.
        """
        if not is_valid_digest(digest):
            raise InvalidKeyError(digest)
        prefix = get_hash_prefix(digest, self.split_at)
        return prefix, digest[self.split_at:]

    def get_blob_path(self, digest: str) -> Path:
        """Get filesystem path for a blob by its digest."""
        prefix, rest = self.split(digest)
        return self.cas_dir / prefix / rest

    def get_blob_relpath(self, digest: str) -> str:
        """Path of a blob relative to the cas directory."""
        prefix, rest = self.split(digest)
        return f"{prefix}/{rest}"
