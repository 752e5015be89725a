from .engine import BackupStoreEngine
from .config import StoreSettings
from .interrupt import CancellationToken
from .model.entry import Entry, load_entry, save_entry
from .model.node import Node
from .storage.cas_table import CasTable
from .storage.nodes_table import NodesTable
from .errors import (
    BackupStoreError,
    AlreadyExistsError,
    NotFoundError,
    InvalidKeyError,
    StorageError,
    CorruptionError,
    InvalidObjectError,
    GarbageCollectionError,
    UnreachableTreeError,
    FsckNeededError,
)

__all__ = [
    'BackupStoreEngine',
    'StoreSettings',
    'CancellationToken',
    'Entry',
    'Node',
    'CasTable',
    'NodesTable',
    'load_entry',
    'save_entry',
    'BackupStoreError',
    'AlreadyExistsError',
    'NotFoundError',
    'InvalidKeyError',
    'StorageError',
    'CorruptionError',
    'InvalidObjectError',
    'GarbageCollectionError',
    'UnreachableTreeError',
    'FsckNeededError',
]
