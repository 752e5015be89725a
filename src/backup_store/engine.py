"""
Backup Store Engine.

Main entry point coordinating all components.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, List, Mapping, Optional, Union

from .config import StoreSettings
from .errors import FsckNeededError
from .model.entry import Entry, load_entry, save_entry
from .model.node import Node
from .storage.cas_table import CasTable
from .storage.fsck import Fsck
from .storage.gc import GarbageCollector
from .storage.layout import StorageLayout
from .storage.nodes_table import NodesTable

logger = logging.getLogger(__name__)


class BackupStoreEngine:
    """
    Main engine for backup store operations.

    This is the primary interface for:
    - Storing file content and snapshot trees
    - Recording archives as nodes
    - Running garbage collection
    - Running consistency checks

    Mutating operations refuse to run while a table's fsck bit is set,
    unless the engine was opened with ``bypass_fsck``.
    """

    def __init__(
        self,
        store_path: Union[str, Path, None] = None,
        settings: Optional[StoreSettings] = None,
        bypass_fsck: bool = False,
    ):
        """
        Open a backup store.

        Args:
            store_path: store root; defaults to ``settings.root``
                (``$DUMBCAS_ROOT``)
            settings: optional StoreSettings
            bypass_fsck: allow mutations while an fsck is pending
        """
        self.settings = settings or StoreSettings()
        logging.getLogger("backup_store").setLevel(self.settings.log_level)
        store_path = store_path or self.settings.root
        if not store_path:
            raise ValueError("Must provide a store root")
        self.store_path = Path(store_path).resolve()
        self.bypass_fsck = bypass_fsck
        self.layout = StorageLayout(self.store_path, self.settings.split_at)
        self.cas = CasTable(self.layout, self.settings.queue_size)
        self.nodes = NodesTable(self.layout, self.settings.queue_size)
        self.gc = GarbageCollector(self.cas, self.nodes)
        self.checker = Fsck(self.cas, self.nodes)

    def initialize(self) -> None:
        """
        Initialize the store.

        Creates the directory structure, including every shard directory.
        Safe to call multiple times (idempotent).
        """
        self.layout.initialize()

    # ========== Consistency gate ==========

    def needs_fsck(self) -> bool:
        """True if either table has its fsck bit set. Logs a warning."""
        cas_bit = self.cas.warn_if_fsck_is_needed()
        nodes_bit = self.nodes.warn_if_fsck_is_needed()
        return cas_bit or nodes_bit

    def _check_mutable(self) -> None:
        if self.bypass_fsck:
            return
        if self.needs_fsck():
            raise FsckNeededError(str(self.store_path))

    # ========== Content ==========

    def add_bytes(self, data: bytes) -> str:
        """Store content and return its digest."""
        self._check_mutable()
        return self.cas.add_bytes(data)

    def add_file(self, file_path: Union[str, Path]) -> str:
        """Store a file's content and return its digest."""
        self._check_mutable()
        return self.cas.add_file(file_path)

    def open_blob(self, digest: str) -> BinaryIO:
        return self.cas.open(digest)

    def list_blobs(self) -> List[str]:
        """List every blob digest, healing the table on the way."""
        return self.cas.enumerate_as_list()

    # ========== Archives ==========

    def archive(
        self,
        entry: Entry,
        name: str,
        comment: Optional[str] = None,
        when: Optional[datetime] = None,
    ) -> str:
        """
        Store an entry tree and record it as a node.

        Content blobs referenced by ``entry`` must already be stored.
        Returns the node item key.
        """
        self._check_mutable()
        digest = save_entry(self.cas, entry)
        return self.nodes.add_entry(Node(digest, comment), name, when)

    def archive_files(
        self,
        files: Mapping[str, bytes],
        name: str,
        comment: Optional[str] = None,
        when: Optional[datetime] = None,
    ) -> str:
        """
        Store in-memory files and record them as one archive.

        ``files`` maps slash-separated relative paths to content.
        Returns the node item key.
        """
        self._check_mutable()
        entry = Entry.from_mapping(self.cas, files)
        return self.archive(entry, name, comment, when)

    def load_entry(self, digest: str) -> Entry:
        return load_entry(self.cas, digest)

    def get_node(self, item: str) -> Node:
        return self.nodes.open(item)

    def list_nodes(self) -> List[str]:
        """List every node item key, healing the table on the way."""
        return self.nodes.enumerate_as_list()

    def remove_node(self, item: str) -> None:
        """Move a node to the trash; its blobs go on the next gc."""
        self._check_mutable()
        self.nodes.remove(item)

    # ========== Maintenance ==========

    def garbage_collect(self, dry_run: bool = False, cancel=None) -> dict:
        """
        Move every blob not referenced by a node to the trash.

        Returns dict with GC results.
        """
        self._check_mutable()
        result = self.gc.collect(dry_run=dry_run, cancel=cancel)
        logger.info(
            "gc: %d reachable, %d orphans, %d removed",
            len(result['reachable']),
            len(result['unreachable']),
            len(result['deleted']),
        )
        return result

    def fsck(self, cancel=None) -> dict:
        """Check both tables and clear the fsck bits if they are clean."""
        return self.checker.run(cancel=cancel)

    def __repr__(self) -> str:
        return f"BackupStoreEngine(path={self.store_path})"
