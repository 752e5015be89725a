"""
Garbage collection for unreferenced blobs.

Implements mark-and-sweep algorithm with safety guarantees.
"""

import logging
from contextlib import closing
from typing import Dict

from ..errors import BackupStoreError, GarbageCollectionError, UnreachableTreeError
from ..interrupt import is_cancelled
from ..model.entry import Entry, load_entry

logger = logging.getLogger(__name__)


def tag_recurse(entries: Dict[str, bool], entry: Entry) -> int:
    """
    Mark every content digest of an entry tree as reachable.

    Digests missing from ``entries`` are inserted as reachable. Returns how
    many such dangling references were found.
    """
    dangling = 0
    stack = [entry]
    while stack:
        current = stack.pop()
        if current.digest:
            if current.digest not in entries:
                logger.debug("Dangling reference to %s", current.digest)
                dangling += 1
            entries[current.digest] = True
        stack.extend(current.files.values())
    return dangling


class GarbageCollector:
    """
    Garbage collector for the blob table.

    Uses mark-and-sweep algorithm:
    1. List every blob currently stored, all unmarked
    2. Mark: for every node, its root tree and every digest in it
    3. Sweep: move unmarked blobs to the trash

    Safety guarantees:
    - Only blobs found in step 1 are ever removed
    - Any failure while marking aborts before the sweep
    - A failed removal sets the fsck bit and aborts
    """

    def __init__(self, cas, nodes):
        """
        Initialize garbage collector.

        cas: CasTable holding blobs and entry trees
        nodes: NodesTable holding the roots
        """
        self.cas = cas
        self.nodes = nodes

    def collect(self, dry_run: bool = False, cancel=None) -> dict:
        """
        Run garbage collection.

        Args:
            dry_run: if True, only report what would be removed
            cancel: optional CancellationToken

        Returns dict with:
            - reachable: set of marked digests
            - unreachable: set of orphan digests
            - deleted: list of removed digests (empty if dry_run)
            - dangling: number of references to blobs that are not stored

        Raises GarbageCollectionError (UnreachableTreeError when a node's
        tree cannot be loaded) without removing anything if marking fails.
        """
        entries = self._list_blobs(cancel)
        logger.info("Found %d entries", len(entries))

        dangling = self._mark(entries, cancel)

        # Marking must be complete before anything is removed.
        if is_cancelled(cancel):
            raise GarbageCollectionError("cancelled before sweep")

        orphans = sorted(digest for digest, tagged in entries.items() if not tagged)
        logger.info("Found %d orphans", len(orphans))

        result = {
            'reachable': {digest for digest, tagged in entries.items() if tagged},
            'unreachable': set(orphans),
            'deleted': [],
            'dangling': dangling,
        }
        if dry_run:
            return result

        for orphan in orphans:
            try:
                self.cas.remove(orphan)
            except BackupStoreError as e:
                self.cas.need_fsck()
                raise GarbageCollectionError(
                    f"Internal error while removing {orphan}: {e}"
                ) from e
            result['deleted'].append(orphan)

        return result

    def _list_blobs(self, cancel) -> Dict[str, bool]:
        entries = {}
        with closing(self.cas.enumerate(cancel=cancel)) as items:
            for item in items:
                if item.error is not None:
                    self.cas.need_fsck()
                    raise GarbageCollectionError(
                        f"Failed enumerating the CAS table: {item.error}"
                    )
                entries[item.item] = False
        if is_cancelled(cancel):
            raise GarbageCollectionError("cancelled while listing blobs")
        return entries

    def _mark(self, entries: Dict[str, bool], cancel) -> int:
        dangling = 0
        with closing(self.nodes.enumerate(cancel=cancel)) as items:
            for item in items:
                if item.error is not None:
                    raise GarbageCollectionError(
                        f"Failed enumerating the nodes table: {item.error}"
                    )
                root = item.node.entry
                if root not in entries:
                    logger.debug("Node %s references missing tree %s", item.item, root)
                    dangling += 1
                entries[root] = True
                try:
                    entry = load_entry(self.cas, root)
                except BackupStoreError as e:
                    raise UnreachableTreeError(item.item, root, e) from e
                dangling += tag_recurse(entries, entry)
        return dangling
