"""
Consistency check.

There is no separate checking algorithm: a check is one full listing of
each table, which quarantines whatever does not belong there. The blob
table listing also re-hashes content.

A node that references a quarantined blob is kept: the blob may still
exist in another copy of the store.
"""

import logging

from ..interrupt import is_cancelled

logger = logging.getLogger(__name__)


class Fsck:
    """Runs the self-healing listing over both tables."""

    def __init__(self, cas, nodes):
        self.cas = cas
        self.nodes = nodes

    def run(self, cancel=None) -> dict:
        """
        Check both tables.

        Returns dict with:
            - blobs: number of valid blobs
            - nodes: number of valid node records
            - quarantined: paths moved to the trash during this run
            - errors: error messages of unreadable parts
            - cancelled: whether the run stopped early

        The fsck bits are cleared only after a complete run without errors.
        """
        cas_trash_before = set(self.cas.trash.list())
        nodes_trash_before = set(self.nodes.trash.list())
        report = {
            'blobs': 0,
            'nodes': 0,
            'quarantined': [],
            'errors': [],
            'cancelled': False,
        }

        for entry in self.cas.enumerate(cancel=cancel, verify=True):
            if entry.error is not None:
                report['errors'].append(str(entry.error))
            else:
                report['blobs'] += 1

        for entry in self.nodes.enumerate(cancel=cancel):
            if entry.error is not None:
                report['errors'].append(str(entry.error))
            else:
                report['nodes'] += 1

        report['quarantined'] = sorted(
            [f"cas/{p}" for p in set(self.cas.trash.list()) - cas_trash_before]
            + [f"nodes/{p}" for p in set(self.nodes.trash.list()) - nodes_trash_before]
        )
        report['cancelled'] = is_cancelled(cancel)

        if report['errors'] or report['cancelled']:
            logger.warning(
                "fsck incomplete: %d errors, cancelled=%s",
                len(report['errors']),
                report['cancelled'],
            )
        else:
            self.cas.clear_fsck_bit()
            self.nodes.clear_fsck_bit()

        logger.info(
            "fsck: %d blobs, %d nodes, %d quarantined",
            report['blobs'],
            report['nodes'],
            len(report['quarantined']),
        )
        return report
