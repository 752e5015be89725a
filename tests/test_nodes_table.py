"""
Test the node table and the entry tree model.
"""

from datetime import datetime
from pathlib import Path

import pytest

from backup_store import (
    AlreadyExistsError,
    Entry,
    InvalidKeyError,
    InvalidObjectError,
    Node,
    NotFoundError,
    StorageError,
    load_entry,
    save_entry,
)
from backup_store.integrity.hashing import compute_hash
from backup_store.storage import enumeration, nodes_table
from backup_store.storage.cas_table import CasTable
from backup_store.storage.layout import StorageLayout
from backup_store.storage.nodes_table import NodesTable

WHEN = datetime(2012, 10, 5, 13, 14, 15)


@pytest.fixture
def layout(tmp_path):
    layout = StorageLayout(tmp_path / "root", split_at=2)
    layout.initialize()
    return layout


@pytest.fixture
def cas(layout):
    return CasTable(layout)


@pytest.fixture
def nodes(layout):
    return NodesTable(layout)


class TestEntry:
    """Test entry serialization and loading."""

    def test_from_mapping_builds_tree(self, cas):
        entry = Entry.from_mapping(cas, {
            'file1': b'content1',
            'dir1/dir2/file2': b'content2',
        })

        assert set(entry.files) == {'file1', 'dir1'}
        assert entry.files['file1'].digest == compute_hash(b'content1')
        assert entry.files['file1'].size == 8
        file2 = entry.files['dir1'].files['dir2'].files['file2']
        assert file2.digest == compute_hash(b'content2')
        assert file2.is_file and not file2.is_directory
        assert len(cas.enumerate_as_list()) == 2

    def test_save_and_load(self, cas):
        entry = Entry.from_mapping(cas, {'a/b': b'x', 'c': b'y'})
        digest = save_entry(cas, entry)

        assert digest == entry.compute_hash()
        assert load_entry(cas, digest) == entry

    @pytest.mark.parametrize("files", [
        {'a/b': b'x', 'a': b'y'},
        {'a': b'y', 'a/b': b'x'},
        {'a/b': b'x', 'a//b': b'y'},
        {'../a': b'x'},
        {'/': b'x'},
    ])
    def test_from_mapping_rejects_conflicts(self, cas, files):
        with pytest.raises(ValueError):
            Entry.from_mapping(cas, files)

    def test_serialized_field_names(self):
        digest = compute_hash(b'x')
        entry = Entry(files={'f': Entry(digest=digest, size=1, timestamp=7)})

        assert entry.to_dict() == {'f': {'f': {'s': digest, 'z': 1, 't': 7}}}

    def test_load_missing(self, cas):
        with pytest.raises(NotFoundError):
            load_entry(cas, compute_hash(b'missing'))

    def test_load_malformed(self, cas):
        digest = cas.add_bytes(b'not json')

        with pytest.raises(InvalidObjectError):
            load_entry(cas, digest)

    @pytest.mark.parametrize("data", [
        [],
        {'s': 'nothex'},
        {'f': []},
        {'f': {'a/b': {}}},
        {'z': 'big'},
        {'s': '0' * 40, 'f': {'b': {'s': '1' * 40}}},
    ])
    def test_from_dict_rejects(self, data):
        with pytest.raises(ValueError):
            Entry.from_dict(data)


class TestNode:
    def test_round_trip_fields(self):
        digest = compute_hash(b'tree')
        node = Node(digest, 'nightly')

        assert node.to_dict() == {'entry': digest, 'comment': 'nightly'}
        assert Node.from_bytes(node.to_bytes()) == node

    def test_rejects_invalid_digest(self):
        with pytest.raises(ValueError):
            Node('xyz')

    def test_rejects_missing_entry(self):
        with pytest.raises(ValueError):
            Node.from_dict({'comment': 'x'})


class TestNodesTable:
    """Test node records and tags."""

    def test_empty(self, nodes):
        assert list(nodes.enumerate()) == []

    def test_add_creates_record_and_tag(self, nodes):
        node = Node(compute_hash(b'tree'))

        item = nodes.add_entry(node, 'backup', when=WHEN)

        assert item == '2012-10/backup_2012-10-05_13-14-15'
        assert nodes.enumerate_as_list() == [item, 'tags/backup']
        assert nodes.open(item) == node
        assert nodes.open('tags/backup') == node

    def test_tag_follows_latest(self, nodes):
        first = Node(compute_hash(b'tree1'))
        second = Node(compute_hash(b'tree2'))

        nodes.add_entry(first, 'backup', when=WHEN)
        nodes.add_entry(second, 'backup', when=datetime(2012, 11, 1))

        assert nodes.open('tags/backup') == second
        assert len(nodes.enumerate_as_list()) == 3

    def test_same_second_is_rejected(self, nodes):
        node = Node(compute_hash(b'tree'))
        nodes.add_entry(node, 'backup', when=WHEN)

        with pytest.raises(AlreadyExistsError):
            nodes.add_entry(node, 'backup', when=WHEN)

    @pytest.mark.parametrize("name", ['', '.hidden', 'a/b', 'sp ace'])
    def test_invalid_names(self, nodes, name):
        with pytest.raises(InvalidKeyError):
            nodes.add_entry(Node(compute_hash(b'tree')), name)

    def test_enumerated_entries_carry_nodes(self, nodes):
        node = Node(compute_hash(b'tree'), 'comment')
        nodes.add_entry(node, 'backup', when=WHEN)

        decoded = [e.node for e in nodes.enumerate()]

        assert decoded == [node, node]

    def test_remove(self, nodes):
        item = nodes.add_entry(Node(compute_hash(b'tree')), 'backup', when=WHEN)

        nodes.remove(item)

        assert nodes.enumerate_as_list() == ['tags/backup']
        with pytest.raises(NotFoundError):
            nodes.open(item)
        with pytest.raises(NotFoundError):
            nodes.remove(item)

    def test_open_invalid_item(self, nodes):
        with pytest.raises(InvalidKeyError):
            nodes.open('../escape')

    def test_fsck_bit(self, nodes):
        assert not nodes.get_fsck_bit()
        nodes.need_fsck()
        assert nodes.warn_if_fsck_is_needed()
        nodes.clear_fsck_bit()
        assert not nodes.get_fsck_bit()


class TestNodesSelfHealing:
    """Test that node enumeration quarantines invalid records."""

    def test_undecodable_record_quarantined(self, nodes):
        nodes.add_entry(Node(compute_hash(b'tree')), 'backup', when=WHEN)

        corrupted = nodes.corrupt()

        assert corrupted == '2012-10/backup_2012-10-05_13-14-15'
        assert nodes.enumerate_as_list() == ['tags/backup']
        assert nodes.trash.list() == [corrupted]
        assert nodes.get_fsck_bit()

    def test_invalid_shard_quarantined(self, nodes):
        nodes.trash.inject('not-a-month/record', b'{}')

        assert nodes.enumerate_as_list() == []
        assert nodes.trash.list() == ['not-a-month/record']
        assert nodes.get_fsck_bit()

    def test_leftover_temp_file_quarantined(self, nodes):
        node = Node(compute_hash(b'tree'))
        nodes.add_entry(node, 'backup', when=WHEN)
        nodes.trash.inject('tags/.tmp_abc', node.to_bytes())

        assert nodes.enumerate_as_list() == [
            '2012-10/backup_2012-10-05_13-14-15',
            'tags/backup',
        ]
        assert nodes.trash.list() == ['tags/.tmp_abc']

    def test_record_with_invalid_digest_quarantined(self, nodes):
        nodes.trash.inject('2012-10/bad_record', b'{"entry":"xyz"}')

        assert nodes.enumerate_as_list() == []
        assert nodes.get_fsck_bit()

    def test_unreadable_shard_reported_and_skipped(self, nodes, monkeypatch):
        nodes.add_entry(Node(compute_hash(b'tree')), 'backup', when=WHEN)

        def read_dir_names(dir_path):
            if Path(dir_path).name == 'tags':
                raise StorageError('listdir', str(dir_path), PermissionError('denied'))
            return enumeration.read_dir_names(dir_path)

        monkeypatch.setattr(nodes_table, 'read_dir_names', read_dir_names)

        entries = list(nodes.enumerate())

        errors = [e.error for e in entries if e.error is not None]
        assert len(errors) == 1
        assert [e.item for e in entries if e.error is None] == [
            '2012-10/backup_2012-10-05_13-14-15',
        ]
        assert nodes.get_fsck_bit()
        assert nodes.trash.list() == []

    def test_tag_staging_area_not_scanned(self, nodes):
        node = Node(compute_hash(b'tree'))
        nodes.add_entry(node, 'backup', when=WHEN)
        nodes.trash.inject('.tmp/backup.abc123', node.to_bytes())

        assert nodes.enumerate_as_list() == [
            '2012-10/backup_2012-10-05_13-14-15',
            'tags/backup',
        ]
        assert nodes.trash.list() == []
        assert not nodes.get_fsck_bit()
        assert nodes.open('tags/backup') == node
