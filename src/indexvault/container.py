"""Service container wiring settings, logging, and index services together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

from indexvault.logger import configure
from indexvault.models import MetricType
from indexvault.settings import Settings
from indexvault.vectordb.batch import BatchOrchestrator
from indexvault.vectordb.factory import index_factory
from indexvault.vectordb.io import backup_index, restore_index
from indexvault.vectordb.manager import BatchIndexManager
from indexvault.vectordb.persistent import PersistentIndex

if TYPE_CHECKING:  # pragma: no cover - typing only
    from pathlib import Path

    from structlog.stdlib import BoundLogger

    from indexvault.vectordb.protocols import VectorIndex
else:  # pragma: no cover - runtime placeholder
    BoundLogger = object


@dataclass
class Container:
    """Aggregates configured index services."""

    settings: Settings
    logger: BoundLogger
    manager: BatchIndexManager

    def orchestrator(self, handle: VectorIndex) -> BatchOrchestrator:
        """Return a batch orchestrator for ``handle`` using the configured batch sizes."""
        return BatchOrchestrator.from_settings(handle, self.settings)

    def open_persistent(self, name: str, d: int, description: str | None = None) -> PersistentIndex:
        """Open or create the persistent index stored for ``name`` in the manager directory."""
        metric = MetricType.parse(self.settings.default_metric)
        factory = index_factory(d, description or self.settings.default_description, metric)
        return PersistentIndex.open(self.manager.path_for(name), factory, settings=self.settings)

    def backup(self, name: str) -> Path:
        """Copy the file stored for ``name`` next to itself with the configured backup suffix."""
        return backup_index(
            self.manager.path_for(name),
            suffix=self.settings.backup_suffix,
            buffer_size=self.settings.copy_buffer_size,
        )

    def restore(self, name: str) -> Path:
        """Overwrite the file stored for ``name`` with its backup copy."""
        path = self.manager.path_for(name)
        backup = path.with_name(path.name + self.settings.backup_suffix)
        return restore_index(backup, path, buffer_size=self.settings.copy_buffer_size)


def build_container(settings: Settings | None = None) -> Container:
    """Build the service container using default settings."""
    resolved_settings = settings or Settings()
    logger = cast("BoundLogger", configure(resolved_settings.log_level, resolved_settings.log_json))
    manager = BatchIndexManager.from_settings(resolved_settings)
    logger.info(
        "boot",
        index_root=str(resolved_settings.index_root),
        add_batch_size=resolved_settings.add_batch_size,
        search_batch_size=resolved_settings.search_batch_size,
    )
    return Container(settings=resolved_settings, logger=logger, manager=manager)
