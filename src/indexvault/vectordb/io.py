"""Reading, writing, and backing up persisted indexes."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import faiss
import structlog

from indexvault.errors import IndexFileNotFoundError, IndexIOError, InvalidInputError
from indexvault.models import IndexFileInfo, IOFlag
from indexvault.vectordb.flat import FlatIndexHandle
from indexvault.vectordb.handle import IndexHandle
from indexvault.vectordb.ivf import IVFFlatIndexHandle

logger = structlog.get_logger()

COPY_BUFFER_SIZE = 64 * 1024
BACKUP_SUFFIX = ".bak"


def write_index(handle: IndexHandle, path: str | Path) -> None:
    """Serialise ``handle`` to ``path``, creating parent directories first."""
    target = _require_path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise IndexIOError("could not create directory", exc) from exc
    index = handle.engine_index
    try:
        faiss.write_index(index, str(target))
    except RuntimeError as exc:
        raise IndexIOError("write index operation", exc) from exc
    logger.debug("index_written", path=str(target), ntotal=int(index.ntotal))


def read_index(path: str | Path, flags: IOFlag = IOFlag.NONE) -> IndexHandle:
    """Deserialise the index stored at ``path`` into a new owned handle."""
    source = _require_path(path)
    if not source.exists():
        raise IndexFileNotFoundError(str(source))
    try:
        index = faiss.read_index(str(source), _engine_io_flags(flags))
    except RuntimeError as exc:
        raise IndexIOError("read index operation", exc) from exc
    logger.debug("index_read", path=str(source), ntotal=int(index.ntotal), flags=int(flags))
    return _wrap_loaded(index)


def index_exists(path: str | Path) -> bool:
    """Return ``True`` if a regular file exists at ``path``."""
    return Path(path).is_file()


def index_file_info(path: str | Path) -> IndexFileInfo:
    """Return size and modification time of the index file at ``path``."""
    source = _require_path(path)
    if not source.is_file():
        raise IndexFileNotFoundError(str(source))
    stat = source.stat()
    return IndexFileInfo(
        path=source,
        size_bytes=stat.st_size,
        modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )


def backup_index(
    path: str | Path,
    backup_path: str | Path | None = None,
    *,
    suffix: str = BACKUP_SUFFIX,
    buffer_size: int = COPY_BUFFER_SIZE,
) -> Path:
    """Copy the index file at ``path`` to ``backup_path`` and return the copy's path.

    Without ``backup_path`` the copy is written next to the original with
    ``suffix`` appended.
    """
    source = _require_path(path)
    target = Path(backup_path) if backup_path is not None else source.with_name(source.name + suffix)
    _copy_file(source, target, buffer_size)
    logger.info("index_backed_up", path=str(source), backup=str(target))
    return target


def restore_index(
    backup_path: str | Path,
    path: str | Path,
    *,
    buffer_size: int = COPY_BUFFER_SIZE,
) -> Path:
    """Copy ``backup_path`` over the index file at ``path`` and return ``path``."""
    source = _require_path(backup_path)
    target = _require_path(path)
    _copy_file(source, target, buffer_size)
    logger.info("index_restored", path=str(target), backup=str(source))
    return target


def _copy_file(source: Path, target: Path, buffer_size: int) -> None:
    """Copy ``source`` to ``target`` chunk by chunk and fsync the result."""
    if not source.is_file():
        raise IndexFileNotFoundError(str(source))
    if target.exists() and source.samefile(target):
        message = f"source and target are the same file: {source}"
        raise InvalidInputError(message)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with source.open("rb") as reader, target.open("wb") as writer:
            while chunk := reader.read(buffer_size):
                writer.write(chunk)
            writer.flush()
            os.fsync(writer.fileno())
    except OSError as exc:
        raise IndexIOError(f"copy {source} -> {target}", exc) from exc


def _require_path(path: str | Path | None) -> Path:
    if path is None or str(path) == "":
        message = "filename is empty"
        raise InvalidInputError(message)
    return Path(path)


def _engine_io_flags(flags: IOFlag) -> int:
    engine_flags = 0
    if flags & IOFlag.MMAP:
        engine_flags |= faiss.IO_FLAG_MMAP
    if flags & IOFlag.READ_ONLY:
        engine_flags |= faiss.IO_FLAG_READ_ONLY
    return engine_flags


def _wrap_loaded(index: faiss.Index) -> IndexHandle:
    """Pick the handle class matching the concrete engine index."""
    if isinstance(index, faiss.IndexFlat):
        return FlatIndexHandle(index, description="Flat")
    if isinstance(index, faiss.IndexIVFFlat):
        return IVFFlatIndexHandle(index, description=f"IVF{index.nlist},Flat")
    return IndexHandle(index)
