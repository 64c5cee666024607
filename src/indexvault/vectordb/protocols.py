"""Protocols for index handles consumed by the orchestration layer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import numpy as np

    from indexvault.models import MetricType
    from indexvault.vectordb.selectors import Selector


class VectorIndex(Protocol):
    """Protocol describing the engine capabilities an index handle exposes."""

    @property
    def d(self) -> int:
        """Dimension of the indexed vectors."""
        ...

    @property
    def ntotal(self) -> int:
        """Number of indexed vectors."""
        ...

    @property
    def is_trained(self) -> bool:
        """Whether the index accepts vectors and queries."""
        ...

    @property
    def metric_type(self) -> MetricType:
        """Distance metric of the index."""
        ...

    def train(self, vectors: Any) -> None:
        """Train the index on representative vectors."""
        ...

    def add(self, vectors: Any) -> None:
        """Append vectors with sequential IDs."""
        ...

    def add_with_ids(self, vectors: Any, ids: Any) -> None:
        """Append vectors under explicit IDs."""
        ...

    def search(self, queries: Any, k: int) -> tuple[np.ndarray, np.ndarray]:
        """Return distances and labels of the ``k`` nearest neighbours per query."""
        ...

    def remove_ids(self, selector: Selector) -> int:
        """Remove the vectors matched by ``selector``."""
        ...

    def reset(self) -> None:
        """Remove every vector."""
        ...

    def close(self) -> None:
        """Release engine resources."""
        ...
