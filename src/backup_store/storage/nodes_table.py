"""
Node table.

Each archive is recorded as an immutable node file
``nodes/<YYYY-MM>/<name>_<YYYY-MM-DD_HH-MM-SS>`` and the latest node per
name is mirrored in ``nodes/tags/<name>``. Enumeration follows the same
self-healing rules as the blob table, but node records are also decoded:
a record that does not decode is quarantined, since this table is the
only source of truth for which snapshots exist.
"""

import logging
import os
import re
import tempfile
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Iterator, NamedTuple, Optional

from ..errors import (
    AlreadyExistsError,
    InvalidKeyError,
    InvalidObjectError,
    NotFoundError,
    StorageError,
)
from ..interrupt import is_cancelled
from ..model.node import Node
from .enumeration import read_dir_names, stream
from .layout import NEED_FSCK_NAME, TMP_NAME, TRASH_NAME, StorageLayout
from .trash import Trash

logger = logging.getLogger(__name__)

TAGS_NAME = "tags"

_RE_MONTH = re.compile(r"^\d{4}-(0[1-9]|1[0-2])\Z")
_RE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*\Z")


class NodeEntry(NamedTuple):
    """One enumerated node record, or an error that occurred while scanning."""
    item: str = ""
    node: Optional[Node] = None
    error: Optional[Exception] = None


class NodesTable:
    """Table of archive nodes with the same fsck discipline as CasTable."""

    def __init__(self, layout: StorageLayout, queue_size: int = 128):
        self.layout = layout
        self.nodes_dir = layout.nodes_dir
        self.queue_size = queue_size
        self.trash = Trash(self.nodes_dir)

    # ========== Writing ==========

    def add_entry(self, node: Node, name: str, when: Optional[datetime] = None) -> str:
        """
        Record a completed archive.

        Writes the immutable record for ``when`` (default: now) and points
        ``tags/<name>`` at the same node. Returns the record's item key.

        Raises InvalidKeyError for unusable names and AlreadyExistsError if
        a record for the same name and second exists.
        """
        if not _RE_NAME.match(name):
            raise InvalidKeyError(name, "invalid node name")
        when = when or datetime.now()
        month = when.strftime("%Y-%m")
        item = f"{month}/{name}_{when.strftime('%Y-%m-%d_%H-%M-%S')}"
        path = self.nodes_dir / item
        data = node.to_bytes()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'xb') as f:
                f.write(data)
        except FileExistsError:
            raise AlreadyExistsError(item)
        except OSError as e:
            self.need_fsck()
            raise StorageError("write_node", str(path), e) from e

        self._write_atomic(self.nodes_dir / TAGS_NAME / name, data)
        logger.info("Recorded node %s -> %s", item, node.entry)
        return item

    # ========== Reading ==========

    def open(self, item: str) -> Node:
        """
        Load the node stored at ``item`` (``<shard>/<name>``).

        Raises NotFoundError if missing and InvalidObjectError if malformed.
        """
        path = self._item_path(item)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(item)
        except OSError as e:
            raise StorageError("read_node", str(path), e) from e
        try:
            return Node.from_bytes(data)
        except ValueError as e:
            raise InvalidObjectError(str(e), item) from e

    def remove(self, item: str) -> None:
        """Move a node record to the trash."""
        self._item_path(item)
        self.trash.move(item)

    # ========== Enumeration ==========

    def enumerate(self, cancel=None) -> Iterator[NodeEntry]:
        """
        Enumerate all node records.

        Directories or records with unexpected names, and records that do
        not decode to a node, are moved to the trash and the fsck bit is
        set; the scan goes on.
        """
        def scan(send):
            try:
                shards = read_dir_names(self.nodes_dir)
            except StorageError as e:
                self.need_fsck()
                send(NodeEntry(error=e))
                return

            for shard in shards:
                if is_cancelled(cancel):
                    return
                if shard in (TRASH_NAME, NEED_FSCK_NAME, TMP_NAME):
                    continue
                shard_path = self.nodes_dir / shard
                if not self._valid_shard(shard) or not shard_path.is_dir():
                    self._quarantine(shard, "invalid shard")
                    continue

                try:
                    records = read_dir_names(shard_path)
                except StorageError as e:
                    self.need_fsck()
                    if not send(NodeEntry(error=e)):
                        return
                    continue

                for record in records:
                    if is_cancelled(cancel):
                        return
                    item = f"{shard}/{record}"
                    node = self._load_record(item)
                    if node is None:
                        continue
                    if not send(NodeEntry(item=item, node=node)):
                        return

        return stream(
            scan,
            lambda e: NodeEntry(error=e),
            maxsize=self.queue_size,
            name=f"enumerate-{self.nodes_dir}",
        )

    def enumerate_as_list(self, cancel=None) -> list[str]:
        """
        Collect every node item key.

        Raises the first error entry encountered.
        """
        items = []
        with closing(self.enumerate(cancel=cancel)) as entries:
            for entry in entries:
                if entry.error is not None:
                    raise entry.error
                items.append(entry.item)
        return sorted(items)

    def _load_record(self, item: str) -> Optional[Node]:
        path = self.nodes_dir / item
        if not _RE_NAME.match(path.name) or not path.is_file():
            self._quarantine(item, "invalid record name")
            return None
        try:
            data = path.read_bytes()
        except OSError as e:
            raise StorageError("read_node", str(path), e) from e
        try:
            return Node.from_bytes(data)
        except ValueError as e:
            self._quarantine(item, f"undecodable record: {e}")
            return None

    def _quarantine(self, relpath: str, reason: str) -> None:
        logger.warning("Corruption in %s: %s (%s)", self.nodes_dir, relpath, reason)
        self.trash.move(relpath)
        self.need_fsck()

    @staticmethod
    def _valid_shard(shard: str) -> bool:
        return shard == TAGS_NAME or _RE_MONTH.match(shard) is not None

    def _item_path(self, item: str) -> Path:
        shard, sep, record = item.partition('/')
        if not sep or not self._valid_shard(shard) or not _RE_NAME.match(record):
            raise InvalidKeyError(item, "invalid node item")
        return self.nodes_dir / shard / record

    def _write_atomic(self, path: Path, data: bytes) -> None:
        """
        Replace a file atomically.

        The temp file is staged in ``nodes/.tmp``, which enumeration skips,
        so a concurrent scan never sees a half written tag.
        """
        fd = None
        temp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            staging = self.nodes_dir / TMP_NAME
            staging.mkdir(exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=str(staging), prefix=path.name + '.')
            os.write(fd, data)
            os.close(fd)
            fd = None
            os.replace(temp_path, path)
            temp_path = None
        except OSError as e:
            if fd is not None:
                os.close(fd)
            if temp_path is not None and os.path.exists(temp_path):
                os.unlink(temp_path)
            self.need_fsck()
            raise StorageError("write_tag", str(path), e) from e

    # ========== Consistency bit ==========

    @property
    def _need_fsck_path(self) -> Path:
        return self.nodes_dir / NEED_FSCK_NAME

    def need_fsck(self) -> None:
        """Persistently mark the table as needing a consistency check."""
        logger.warning("Marking %s for fsck", self.nodes_dir)
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
        logger.warning("fsck is needed for %s", self.nodes_dir)
        return True

    # ========== Debug ==========

    def corrupt(self) -> str:
        """
        Overwrite one existing node record with garbage.

        If the table is empty a garbage record is injected instead.
        Returns the item key of the corrupted record.
        """
        for shard in read_dir_names(self.nodes_dir):
            if shard == TAGS_NAME or not _RE_MONTH.match(shard):
                continue
            records = read_dir_names(self.nodes_dir / shard)
            if records:
                item = f"{shard}/{records[0]}"
                self.trash.inject(item, b"corrupted node")
                return item
        item = f"{datetime.now().strftime('%Y-%m')}/corrupted"
        self.trash.inject(item, b"corrupted node")
        return item

    def __repr__(self) -> str:
        return f"NodesTable(path={self.nodes_dir})"
