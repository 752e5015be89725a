"""
Entry tree model.

An entry is a node of a snapshot tree: a file leaf carrying the digest of
its content, or a directory mapping child names to entries. A whole tree
is serialized as one canonical JSON document and stored as a blob.
"""

from typing import Mapping, Optional

from ..errors import InvalidObjectError, StorageError
from ..integrity.canonical import canonical_json, decode_json
from ..integrity.hashing import compute_hash, is_valid_digest


class Entry:
    """
    Immutable snapshot tree node.

    Serialized field names:
        s: content digest (files)
        f: child name -> entry (directories)
        z: size in bytes
        t: modification time, seconds since epoch
    """

    def __init__(
        self,
        digest: Optional[str] = None,
        files: Optional[Mapping[str, 'Entry']] = None,
        size: int = 0,
        timestamp: int = 0,
    ):
        """
        Create an entry.

        Args:
            digest: content digest, for files
            files: children by name, for directories
            size: file size in bytes
            timestamp: modification time
        """
        self.digest = digest
        self.files = dict(files) if files else {}
        self.size = size
        self.timestamp = timestamp

    @property
    def is_file(self) -> bool:
        return bool(self.digest)

    @property
    def is_directory(self) -> bool:
        return bool(self.files)

    def to_dict(self) -> dict:
        """
        Convert entry to storable dictionary representation.

        Empty fields are omitted.
        """
        obj = {}
        if self.digest:
            obj['s'] = self.digest
        if self.files:
            obj['f'] = {name: child.to_dict() for name, child in self.files.items()}
        if self.size:
            obj['z'] = self.size
        if self.timestamp:
            obj['t'] = self.timestamp
        return obj

    @classmethod
    def from_dict(cls, data: dict) -> 'Entry':
        """
        Reconstruct entry tree from stored dictionary.

        Raises ValueError if data is invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("Entry must be a dictionary")

        digest = data.get('s')
        if digest is not None and not is_valid_digest(digest):
            raise ValueError(f"Invalid entry digest: {digest!r}")

        files = data.get('f', {})
        if not isinstance(files, dict):
            raise ValueError("Entry files must be a dictionary")
        if digest is not None and files:
            raise ValueError("Entry cannot be both a file and a directory")
        children = {}
        for name, child in files.items():
            if not name or '/' in name or name in ('.', '..'):
                raise ValueError(f"Invalid entry name: {name!r}")
            children[name] = cls.from_dict(child)

        size = data.get('z', 0)
        timestamp = data.get('t', 0)
        for field, value in (('z', size), ('t', timestamp)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"Entry field {field} must be an integer")

        return cls(digest, children, size, timestamp)

    def to_bytes(self) -> bytes:
        return canonical_json(self.to_dict())

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Entry':
        return cls.from_dict(decode_json(data))

    def compute_hash(self) -> str:
        """Compute the digest under which this tree is stored."""
        return compute_hash(self.to_bytes())

    @classmethod
    def from_mapping(cls, cas, files: Mapping[str, bytes]) -> 'Entry':
        """
        Store file contents and build the tree describing them.

        ``files`` maps slash-separated relative paths to content. Every
        content blob is added to ``cas``; the tree itself is not.

        Raises ValueError if a path is unusable or names both a file and
        a directory.
        """
        root = cls()
        for relpath, content in files.items():
            parts = [p for p in relpath.split('/') if p]
            if not parts or any(p in ('.', '..') for p in parts):
                raise ValueError(f"Invalid path: {relpath!r}")
            node = root
            for part in parts[:-1]:
                node = node.files.setdefault(part, cls())
                if node.is_file:
                    raise ValueError(
                        f"Path is both a file and a directory: {relpath!r}"
                    )
            if parts[-1] in node.files:
                raise ValueError(f"Conflicting path: {relpath!r}")
            node.files[parts[-1]] = cls(
                digest=cas.add_bytes(content),
                size=len(content),
            )
        return root

    def __eq__(self, other) -> bool:
        if not isinstance(other, Entry):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        if self.digest:
            return f"Entry(digest={self.digest[:8]}..., size={self.size})"
        return f"Entry(files={len(self.files)})"


def save_entry(cas, entry: Entry) -> str:
    """Store an entry tree as a blob and return its digest."""
    return cas.add_bytes(entry.to_bytes())


def load_entry(cas, digest: str) -> Entry:
    """
    Load and decode an entry tree.

    Raises NotFoundError if the blob is missing and InvalidObjectError if
    it does not decode to an entry.
    """
    try:
        data = cas.read_bytes(digest)
    except OSError as e:
        raise StorageError("read_entry", digest, e) from e

    try:
        return Entry.from_bytes(data)
    except (ValueError, RecursionError) as e:
        raise InvalidObjectError(str(e), digest) from e
