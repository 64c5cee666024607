"""Named registry of index handles with bulk save and load over a directory."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from indexvault.errors import InvalidInputError
from indexvault.models import IOFlag
from indexvault.vectordb.io import read_index, write_index

if TYPE_CHECKING:
    from collections.abc import Iterator

    from indexvault.settings import Settings
    from indexvault.vectordb.handle import IndexHandle

logger = structlog.get_logger()

DEFAULT_EXTENSION = ".faiss"


class BatchIndexManager:
    """Registry mapping unique names to index handles.

    Each entry is stored as ``<base_path>/<name><extension>``. The manager owns
    the registered handles: :meth:`load_all` and :meth:`close_all` release the
    handles they drop.
    """

    def __init__(self, base_path: str | Path, extension: str = DEFAULT_EXTENSION) -> None:
        """Manage index files under ``base_path`` named with ``extension``."""
        if not extension.startswith("."):
            extension = f".{extension}"
        self.base_path = Path(base_path)
        self.extension = extension
        self._registry: dict[str, IndexHandle] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> BatchIndexManager:
        """Build a manager rooted at the configured index directory."""
        return cls(settings.index_root, settings.index_extension)

    def __len__(self) -> int:
        return len(self._registry)

    def __contains__(self, name: object) -> bool:
        return name in self._registry

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._registry))

    def names(self) -> list[str]:
        """Return the registered names in sorted order."""
        return sorted(self._registry)

    def path_for(self, name: str) -> Path:
        """Return the file an entry is saved to."""
        return self.base_path / f"{_validate_name(name)}{self.extension}"

    def register(self, name: str, handle: IndexHandle) -> None:
        """Add ``handle`` under ``name``, closing any handle it replaces."""
        _validate_name(name)
        previous = self._registry.get(name)
        self._registry[name] = handle
        if previous is not None and previous is not handle:
            previous.close()

    def get(self, name: str) -> IndexHandle:
        """Return the handle registered under ``name``."""
        return self._registry[name]

    def remove(self, name: str) -> IndexHandle:
        """Unregister ``name`` and hand its handle back to the caller."""
        return self._registry.pop(name)

    def save_all(self) -> list[Path]:
        """Write every registered handle to its file and return the paths written."""
        written: list[Path] = []
        for name in sorted(self._registry):
            path = self.path_for(name)
            write_index(self._registry[name], path)
            written.append(path)
        logger.info("indexes_saved", base_path=str(self.base_path), count=len(written))
        return written

    def load_all(self, flags: IOFlag = IOFlag.NONE) -> list[str]:
        """Replace the registry with every index file found under :attr:`base_path`.

        The previous entries are closed first, so this is a full replace rather
        than a merge. Returns the loaded names.
        """
        self.close_all()
        if not self.base_path.is_dir():
            logger.info("indexes_loaded", base_path=str(self.base_path), count=0)
            return []
        for path in sorted(self.base_path.glob(f"*{self.extension}")):
            if not path.is_file():
                continue
            self._registry[path.stem] = read_index(path, flags)
        logger.info("indexes_loaded", base_path=str(self.base_path), count=len(self._registry))
        return self.names()

    def close_all(self) -> None:
        """Close and unregister every handle."""
        handles = list(self._registry.values())
        self._registry.clear()
        for handle in handles:
            handle.close()


def _validate_name(name: str) -> str:
    if not name:
        message = "index name must be a non-empty string"
        raise InvalidInputError(message)
    if any(sep in name for sep in ("/", "\\")) or name in {".", ".."}:
        message = f"index name must not contain path separators: {name!r}"
        raise InvalidInputError(message)
    return name
