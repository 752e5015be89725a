"""
Error types for backup store operations.

All errors are explicit and never silent.
"""


class BackupStoreError(Exception):
    """Base exception for all backup store errors."""
    pass


class AlreadyExistsError(BackupStoreError):
    """
    Raised when an entry is written to a digest that is already stored.

    This is the deduplication signal: the stored content is identical
    by construction, so callers treat it as success.
    """

    def __init__(self, digest: str):
        self.digest = digest
        super().__init__(f"Entry already exists: {digest}")


class NotFoundError(BackupStoreError):
    """Raised when a requested entry does not exist."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Entry not found: {key}")


class InvalidKeyError(BackupStoreError):
    """Raised when a digest or record name fails syntax validation."""

    def __init__(self, key: str, reason: str = "invalid syntax"):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid key {key!r}: {reason}")


class StorageError(BackupStoreError):
    """Raised when filesystem operations fail."""

    def __init__(self, operation: str, path: str, cause: Exception = None):
        self.operation = operation
        self.path = path
        self.cause = cause
        msg = f"Storage error during {operation}: {path}"
        if cause:
            msg += f"\nCause: {cause}"
        super().__init__(msg)


class CorruptionError(BackupStoreError):
    """Raised when a structural anomaly is found in a table."""

    def __init__(self, path: str, details: str):
        self.path = path
        self.details = details
        super().__init__(f"Corruption detected at {path}: {details}")


class InvalidObjectError(BackupStoreError):
    """Raised when a stored record is malformed."""

    def __init__(self, reason: str, key: str = None):
        self.reason = reason
        self.key = key
        msg = f"Invalid object: {reason}"
        if key:
            msg += f" (key: {key})"
        super().__init__(msg)


class GarbageCollectionError(BackupStoreError):
    """Raised when garbage collection has to abort."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Garbage collection error: {reason}")


class UnreachableTreeError(GarbageCollectionError):
    """Raised when a node's entry tree cannot be loaded during marking."""

    def __init__(self, node_item: str, digest: str, cause: Exception = None):
        self.node_item = node_item
        self.digest = digest
        self.cause = cause
        reason = f"node {node_item} references unreadable tree {digest}"
        if cause:
            reason += f": {cause}"
        super().__init__(reason)


class FsckNeededError(BackupStoreError):
    """Raised when a mutation is attempted while the fsck bit is set."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"Can't run if fsck is needed for {path}. Please run fsck first."
        )
