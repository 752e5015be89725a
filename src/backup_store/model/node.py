"""
Node object model.

A node names one archive: it points at the root entry tree of a snapshot.
"""

from typing import Optional

from ..integrity.canonical import canonical_json, decode_json
from ..integrity.hashing import is_valid_digest


class Node:
    """
    Immutable record pointing at a snapshot's root entry.

    Serialized as ``{"entry": <digest>, "comment": <text>}``; the comment
    is archive metadata and is ignored by gc and fsck.
    """

    def __init__(self, entry: str, comment: Optional[str] = None):
        if not is_valid_digest(entry):
            raise ValueError(f"Invalid node entry digest: {entry!r}")
        self.entry = entry
        self.comment = comment or ''

    def to_dict(self) -> dict:
        obj = {'entry': self.entry}
        if self.comment:
            obj['comment'] = self.comment
        return obj

    @classmethod
    def from_dict(cls, data: dict) -> 'Node':
        """
        Reconstruct node from stored dictionary.

        Raises ValueError if data is invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("Node must be a dictionary")
        if 'entry' not in data:
            raise ValueError("Node missing entry field")
        comment = data.get('comment')
        if comment is not None and not isinstance(comment, str):
            raise ValueError("Node comment must be a string")
        return cls(data['entry'], comment)

    def to_bytes(self) -> bytes:
        return canonical_json(self.to_dict())

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Node':
        return cls.from_dict(decode_json(data))

    def __eq__(self, other) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self.entry == other.entry and self.comment == other.comment

    def __repr__(self) -> str:
        return f"Node(entry={self.entry[:8]}..., comment={self.comment!r})"
