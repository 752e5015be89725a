"""
Quarantine area for a table.

Nothing is ever deleted: removed or corrupted entries are moved under
``<table root>/trash`` keeping their relative path, so an operator can
inspect them and restore by hand.
"""

import logging
import os
from pathlib import Path

from ..errors import NotFoundError, StorageError
from .layout import TRASH_NAME

logger = logging.getLogger(__name__)


class Trash:
    """Moves paths of a table into its trash directory."""

    def __init__(self, table_root: Path):
        self.table_root = Path(table_root)
        self.trash_dir = self.table_root / TRASH_NAME

    def move(self, relative_path: str) -> Path:
        """
        Move ``relative_path`` (relative to the table root) into the trash.

        Returns the destination path. If something with the same name was
        already quarantined, a numeric suffix is added rather than
        replacing it.

        Raises NotFoundError if the source does not exist.
        """
        src = self._resolve(relative_path)
        if not os.path.lexists(src):
            raise NotFoundError(relative_path)

        dst = self.trash_dir / relative_path
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            dst = self._free_name(dst)
            os.rename(src, dst)
        except OSError as e:
            raise StorageError("trash", str(src), e) from e

        logger.warning("Moved %s to %s", src, dst)
        return dst

    def inject(self, relative_path: str, data: bytes = b"corrupted") -> Path:
        """
        Write raw bytes straight into the live area of the table.

        Debug and test hook used to simulate on-disk corruption without
        going through the table API.
        """
        path = self._resolve(relative_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError("inject", str(path), e) from e
        return path

    def list(self) -> list[str]:
        """
        Relative paths of every quarantined item.

        Empty directories are listed as items of their own.
        """
        if not self.trash_dir.is_dir():
            return []
        items = []
        for dirpath, dirnames, filenames in os.walk(self.trash_dir):
            base = Path(dirpath).relative_to(self.trash_dir)
            if not dirnames and not filenames and base != Path("."):
                items.append(base.as_posix())
            for name in filenames:
                items.append((base / name).as_posix())
        return sorted(items)

    def _resolve(self, relative_path: str) -> Path:
        # normpath, not resolve(): a quarantined symlink is moved, not followed
        root = Path(os.path.normpath(self.table_root))
        path = Path(os.path.normpath(root / relative_path))
        trash_dir = root / TRASH_NAME
        if path == root or root not in path.parents:
            raise StorageError("trash", relative_path, ValueError("escapes table root"))
        if path == trash_dir or trash_dir in path.parents:
            raise StorageError("trash", relative_path, ValueError("already in trash"))
        return path

    @staticmethod
    def _free_name(dst: Path) -> Path:
        if not os.path.lexists(dst):
            return dst
        i = 1
        while os.path.lexists(dst.with_name(f"{dst.name}.{i}")):
            i += 1
        return dst.with_name(f"{dst.name}.{i}")
