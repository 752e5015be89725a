"""
Test consistency checking.

Verifies that corruption is quarantined by fsck and that the fsck bit
gates mutations.
"""

import pytest
import tempfile

from backup_store import BackupStoreEngine, CancellationToken, FsckNeededError
from backup_store.errors import CorruptionError
from backup_store.integrity.hashing import compute_hash
from backup_store.integrity.verification import verify_blob_file

TREE1 = {
    'file1': b'content1',
    'dir1/dir2/file2': b'content2',
}


class TestFsck:
    """Test fsck over both tables."""

    @pytest.fixture
    def store(self):
        """Create a temporary store for testing."""
        with tempfile.TemporaryDirectory() as tmpdir:
            engine = BackupStoreEngine(tmpdir)
            engine.initialize()
            yield engine

    def test_fsck_empty(self, store):
        report = store.fsck()

        assert report['blobs'] == 0
        assert report['nodes'] == 0
        assert report['errors'] == []
        assert store.list_blobs() == []
        assert store.list_nodes() == []

    def test_fsck_clean_store(self, store):
        store.archive_files(TREE1, 'backup')

        report = store.fsck()

        assert report['blobs'] == 3
        assert report['nodes'] == 2
        assert report['quarantined'] == []
        assert not store.needs_fsck()

    def test_fsck_corrupt_cas_file(self, store):
        store.archive_files(TREE1, 'backup')
        assert len(store.list_blobs()) == 3

        # Corrupt an item in the blob table.
        corrupted = store.cas.corrupt()
        assert len(store.list_blobs()) == 4
        with pytest.raises(CorruptionError):
            verify_blob_file(store.layout.get_blob_path(corrupted), corrupted)

        report = store.fsck()

        # One entry disappeared.
        assert len(store.list_blobs()) == 3
        assert corrupted not in store.list_blobs()
        assert report['quarantined'] == [f"cas/{corrupted[:3]}/{corrupted[3:]}"]
        # The node is kept: the data may exist in another copy of the store.
        assert len(store.list_nodes()) == 2

    def test_fsck_corrupt_node_entry(self, store):
        store.archive_files(TREE1, 'backup')

        # Corrupt an item in the nodes table.
        store.nodes.corrupt()
        store.fsck()

        assert len(store.list_blobs()) == 3
        assert len(store.list_nodes()) == 1

    def test_fsck_keeps_node_with_missing_tree(self, store):
        item = store.archive_files(TREE1, 'backup')
        tree = store.get_node(item).entry
        store.cas.remove(tree)

        store.fsck()

        assert len(store.list_nodes()) == 2
        assert len(store.list_blobs()) == 2

    def test_fsck_reports_quarantined_directory(self, store):
        digest = compute_hash(b'content1')
        store.layout.get_blob_path(digest).mkdir()

        report = store.fsck()

        assert report['quarantined'] == [f"cas/{digest[:3]}/{digest[3:]}"]
        assert store.list_blobs() == []

    def test_fsck_clears_bit(self, store):
        store.cas.trash.inject('abc/bad', b'junk')
        store.list_blobs()
        assert store.needs_fsck()

        store.fsck()

        assert not store.needs_fsck()

    def test_cancelled_fsck_keeps_bit(self, store):
        store.nodes.need_fsck()
        token = CancellationToken()
        token.cancel()

        report = store.fsck(cancel=token)

        assert report['cancelled']
        assert store.needs_fsck()


class TestFsckGate:
    """Test that a pending fsck blocks mutations."""

    @pytest.fixture
    def root(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            BackupStoreEngine(tmpdir).initialize()
            yield tmpdir

    def test_mutations_refused(self, root):
        store = BackupStoreEngine(root)
        store.cas.need_fsck()

        with pytest.raises(FsckNeededError):
            store.add_bytes(b'content1')
        with pytest.raises(FsckNeededError):
            store.archive_files(TREE1, 'backup')
        with pytest.raises(FsckNeededError):
            store.garbage_collect()

    def test_node_bit_also_refuses(self, root):
        store = BackupStoreEngine(root)
        store.nodes.need_fsck()

        with pytest.raises(FsckNeededError):
            store.add_bytes(b'content1')

    def test_reads_allowed(self, root):
        store = BackupStoreEngine(root)
        digest = store.add_bytes(b'content1')
        store.cas.need_fsck()

        assert store.list_blobs() == [digest]
        with store.open_blob(digest) as f:
            assert f.read() == b'content1'

    def test_bit_persists_across_opens(self, root):
        BackupStoreEngine(root).cas.need_fsck()

        with pytest.raises(FsckNeededError):
            BackupStoreEngine(root).add_bytes(b'content1')

    def test_bypass(self, root):
        BackupStoreEngine(root).cas.need_fsck()
        store = BackupStoreEngine(root, bypass_fsck=True)

        digest = store.add_bytes(b'content1')

        assert store.list_blobs() == [digest]

    def test_fsck_unblocks(self, root):
        store = BackupStoreEngine(root)
        store.cas.need_fsck()

        store.fsck()

        store.add_bytes(b'content1')
