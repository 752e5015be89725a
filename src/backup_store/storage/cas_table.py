"""
Content-addressed blob table.

Blobs are written once into ``cas/<digest[:split_at]>/<digest[split_at:]>``
and never modified. Listing the table doubles as its consistency check:
anything that does not look like a blob is quarantined on the way.
"""

import logging
import os
from contextlib import closing
from pathlib import Path
from typing import BinaryIO, Iterator, Union

from ..errors import (
    AlreadyExistsError,
    BackupStoreError,
    CorruptionError,
    InvalidKeyError,
    NotFoundError,
    StorageError,
)
from ..integrity.hashing import (
    DIGEST_LENGTH,
    compute_hash,
    compute_stream_hash,
    hex_pattern,
    is_valid_digest,
)
from ..integrity.verification import verify_blob_file
from ..interrupt import is_cancelled
from .enumeration import CasEntry, read_dir_names, stream
from .layout import NEED_FSCK_NAME, TRASH_NAME, StorageLayout
from .trash import Trash

logger = logging.getLogger(__name__)

_COPY_CHUNK = 1 << 20


class CasTable:
    """
    Sharded, write-once blob table with an integrated fsck bit.

    Writes rely on exclusive file creation only: two writers adding the
    same digest end with one success and one AlreadyExistsError.
    """

    def __init__(self, layout: StorageLayout, queue_size: int = 128):
        """Open the blob table of ``layout``; the layout must be initialized."""
        self.layout = layout
        self.cas_dir = layout.cas_dir
        self.prefix_length = layout.split_at
        self.queue_size = queue_size
        self.trash = Trash(self.cas_dir)
        self._re_prefix = hex_pattern(self.prefix_length)
        self._re_rest = hex_pattern(DIGEST_LENGTH - self.prefix_length)

    # ========== Writing ==========

    def add_entry(self, source: Union[bytes, BinaryIO], digest: str) -> None:
        """
        Store content under an already computed digest.

        Raises AlreadyExistsError if the digest is present; the content is
        then identical and nothing is written. Raises StorageError for any
        other failure, after removing a partially written file.
        """
        path = self.layout.get_blob_path(digest)
        try:
            f = open(path, 'xb')
        except FileExistsError:
            raise AlreadyExistsError(digest)
        except OSError as e:
            raise StorageError("create", str(path), e) from e

        try:
            with f:
                if isinstance(source, (bytes, bytearray, memoryview)):
                    f.write(source)
                else:
                    while True:
                        chunk = source.read(_COPY_CHUNK)
                        if not chunk:
                            break
                        f.write(chunk)
        except OSError as e:
            self._discard_partial(path)
            raise StorageError("write", str(path), e) from e

    def add_bytes(self, data: bytes) -> str:
        """
        Store in-memory content and return its digest.

        Content that is already stored is not written again.
        """
        digest = compute_hash(data)
        try:
            self.add_entry(data, digest)
        except AlreadyExistsError:
            logger.debug("Already stored: %s", digest)
        return digest

    def add_file(self, file_path: Union[str, Path]) -> str:
        """Store a file's content and return its digest."""
        file_path = Path(file_path)
        try:
            with open(file_path, 'rb') as f:
                digest = compute_stream_hash(f)
                f.seek(0)
                try:
                    self.add_entry(f, digest)
                except AlreadyExistsError:
                    logger.debug("Already stored: %s", digest)
        except OSError as e:
            raise StorageError("read", str(file_path), e) from e
        return digest

    # ========== Reading ==========

    def open(self, digest: str) -> BinaryIO:
        """
        Open a blob for reading. The handle is seekable.

        Raises NotFoundError for malformed or missing digests.
        """
        try:
            path = self.layout.get_blob_path(digest)
        except InvalidKeyError:
            raise NotFoundError(digest)
        try:
            return open(path, 'rb')
        except FileNotFoundError:
            raise NotFoundError(digest)
        except OSError as e:
            raise StorageError("open", str(path), e) from e

    def read_bytes(self, digest: str) -> bytes:
        with self.open(digest) as f:
            return f.read()

    def http_path(self, url_path: str) -> Path:
        """
        Resolve a read request of the form ``/<digest>`` to a file path.

        ``/<digest>/`` and any other nesting is refused with
        InvalidKeyError; a missing blob raises NotFoundError.
        """
        if not url_path.startswith('/'):
            raise BackupStoreError(f"Invalid url received: {url_path!r}")
        digest = url_path[1:]
        if not is_valid_digest(digest):
            raise InvalidKeyError(url_path, "invalid CAS url")
        path = self.layout.get_blob_path(digest)
        if not path.is_file():
            raise NotFoundError(digest)
        return path

    # ========== Removal ==========

    def remove(self, digest: str) -> None:
        """
        Move a blob to the trash.

        Raises InvalidKeyError for malformed digests and NotFoundError if the
        blob is absent.
        """
        relpath = self.layout.get_blob_relpath(digest)
        self.trash.move(relpath)

    # ========== Enumeration ==========

    def enumerate(self, cancel=None, verify: bool = False) -> Iterator[CasEntry]:
        """
        Enumerate all blob digests.

        Shard directories or files whose names do not match the digest
        format are moved to the trash and the fsck bit is set; the scan
        goes on. A shard that cannot be listed yields an error entry and is
        skipped. With ``verify``, content is re-hashed and mismatching
        blobs are quarantined the same way.
        """
        def scan(send):
            try:
                prefixes = read_dir_names(self.cas_dir)
            except StorageError as e:
                self.need_fsck()
                send(CasEntry(error=e))
                return

            for prefix in prefixes:
                if is_cancelled(cancel):
                    return
                if prefix in (TRASH_NAME, NEED_FSCK_NAME):
                    continue
                if not self._re_prefix.match(prefix) or not (self.cas_dir / prefix).is_dir():
                    self._quarantine(prefix, "invalid shard")
                    continue

                try:
                    items = read_dir_names(self.cas_dir / prefix)
                except StorageError as e:
                    self.need_fsck()
                    if not send(CasEntry(error=e)):
                        return
                    continue

                for item in items:
                    if is_cancelled(cancel):
                        return
                    relpath = f"{prefix}/{item}"
                    if not self._re_rest.match(item) or not (self.cas_dir / relpath).is_file():
                        self._quarantine(relpath, "invalid entry")
                        continue
                    digest = prefix + item
                    if verify and not self._verify(relpath, digest):
                        continue
                    if not send(CasEntry(item=digest)):
                        return

        return stream(
            scan,
            lambda e: CasEntry(error=e),
            maxsize=self.queue_size,
            name=f"enumerate-{self.cas_dir}",
        )

    def enumerate_as_list(self, cancel=None) -> list[str]:
        """
        Collect every digest.

        Raises the first error entry encountered.
        """
        items = []
        with closing(self.enumerate(cancel=cancel)) as entries:
            for entry in entries:
                if entry.error is not None:
                    raise entry.error
                items.append(entry.item)
        return sorted(items)

    def _verify(self, relpath: str, digest: str) -> bool:
        try:
            verify_blob_file(self.cas_dir / relpath, digest)
        except CorruptionError as e:
            self._quarantine(relpath, e.details)
            return False
        return True

    def _quarantine(self, relpath: str, reason: str) -> None:
        logger.warning("Corruption in %s: %s (%s)", self.cas_dir, relpath, reason)
        self.trash.move(relpath)
        self.need_fsck()

    # ========== Consistency bit ==========

    @property
    def _need_fsck_path(self) -> Path:
        return self.cas_dir / NEED_FSCK_NAME

    def need_fsck(self) -> None:
        """Persistently mark the table as needing a consistency check."""
        logger.warning("Marking %s for fsck", self.cas_dir)
        try:
            self._need_fsck_path.touch()
        except OSError as e:
            raise StorageError("need_fsck", str(self._need_fsck_path), e) from e

    set_fsck_bit = need_fsck

    def get_fsck_bit(self) -> bool:
        return self._need_fsck_path.exists()

    def clear_fsck_bit(self) -> None:
        try:
            self._need_fsck_path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError("clear_fsck", str(self._need_fsck_path), e) from e

    def warn_if_fsck_is_needed(self) -> bool:
        """Log a warning and return True if the fsck bit is set."""
        if not self.get_fsck_bit():
            return False
        logger.warning("fsck is needed for %s", self.cas_dir)
        return True

    # ========== Debug ==========

    def corrupt(self) -> str:
        """
        Inject a blob whose name is a valid digest but whose content is not.

        Listing the table still reports it; only a verifying pass finds it.
        Returns the injected digest.
        """
        digest = compute_hash(b"corrupted digest")
        self.trash.inject(self.layout.get_blob_relpath(digest), b"corrupted content")
        return digest

    def _discard_partial(self, path: Path) -> None:
        try:
            os.unlink(path)
        except OSError:
            self.need_fsck()

    def __repr__(self) -> str:
        return f"CasTable(path={self.cas_dir}, split_at={self.prefix_length})"
