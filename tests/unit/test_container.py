"""Unit tests for the dependency injection container."""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest
import structlog

from indexvault.container import Container, build_container
from indexvault.models import MetricType
from indexvault.settings import Settings
from indexvault.vectordb.flat import FlatIndexHandle


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:
    """Keep the container's logging configuration from leaking into other tests."""
    yield
    structlog.reset_defaults()


def _base_settings(tmp_path: Any, **overrides: Any) -> Settings:
    """Create settings pointing storage paths to a temporary directory."""
    defaults: dict[str, Any] = {
        "index_root": tmp_path / "indexes",
        "log_json": False,
    }
    defaults.update(overrides)
    return Settings(**defaults)


def test_build_container_wires_manager_from_settings(tmp_path: Any) -> None:
    """The manager is rooted at the configured index directory."""
    settings = _base_settings(tmp_path, index_extension=".idx")

    container = build_container(settings=settings)

    assert isinstance(container, Container)
    assert container.settings is settings
    assert container.manager.path_for("docs") == tmp_path / "indexes" / "docs.idx"


def test_orchestrator_uses_configured_batch_sizes(tmp_path: Any) -> None:
    """Orchestrators inherit the configured batch sizes."""
    container = build_container(settings=_base_settings(tmp_path, add_batch_size=7, search_batch_size=3))
    handle = FlatIndexHandle.create(2)

    orchestrator = container.orchestrator(handle)

    assert orchestrator.add_batch_size == 7
    assert orchestrator.search_batch_size == 3
    handle.close()


def test_open_persistent_uses_default_description_and_metric(tmp_path: Any) -> None:
    """New persistent indexes follow the configured description and metric."""
    container = build_container(settings=_base_settings(tmp_path, default_metric="inner_product"))

    with container.open_persistent("docs", d=3) as index:
        index.add(np.ones((2, 3), dtype="float32"))
        assert index.metric_type is MetricType.INNER_PRODUCT
        assert index.path == tmp_path / "indexes" / "docs.faiss"

    with container.open_persistent("docs", d=3) as reopened:
        assert reopened.ntotal == 2


def test_backup_and_restore_by_name(tmp_path: Any) -> None:
    """Backups live next to the index file and can be restored."""
    container = build_container(settings=_base_settings(tmp_path, backup_suffix=".snap"))
    with container.open_persistent("docs", d=3) as index:
        index.add(np.ones((4, 3), dtype="float32"))

    backup = container.backup("docs")
    assert backup == tmp_path / "indexes" / "docs.faiss.snap"

    with container.open_persistent("docs", d=3) as index:
        index.reset()

    container.restore("docs")
    with container.open_persistent("docs", d=3) as index:
        assert index.ntotal == 4
