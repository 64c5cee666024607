"""Inverted-file index handle with flat storage."""

from __future__ import annotations

import faiss
import numpy as np

from indexvault.errors import IndexNotTrainedError, InvalidDimensionError, InvalidInputError
from indexvault.models import MetricType
from indexvault.vectordb.handle import IndexHandle, engine_errors


class IVFFlatIndexHandle(IndexHandle):
    """Handle over an ``IVF{nlist},Flat`` index.

    Vectors are clustered into ``nlist`` inverted lists; a search visits the
    ``nprobe`` lists closest to the query. The index must be trained before
    vectors are added.
    """

    @classmethod
    def create(cls, d: int, nlist: int, metric: MetricType | int | str = MetricType.L2) -> IVFFlatIndexHandle:
        """Create an untrained IVF index with ``nlist`` clusters."""
        if d <= 0:
            message = f"dimension must be positive, got {d}"
            raise InvalidDimensionError(message)
        if nlist <= 0:
            message = f"nlist must be positive, got {nlist}"
            raise InvalidInputError(message)
        description = f"IVF{nlist},Flat"
        with engine_errors("IndexIVFFlat creation"):
            index = faiss.index_factory(d, description, int(MetricType.parse(metric)))
        return cls(index, description=description)

    @property
    def nlist(self) -> int:
        """Number of inverted lists."""
        return int(self._ivf().nlist)

    @property
    def nprobe(self) -> int:
        """Number of inverted lists visited per query."""
        return int(self._ivf().nprobe)

    @nprobe.setter
    def nprobe(self, value: int) -> None:
        nlist = self.nlist
        if value <= 0:
            message = f"nprobe must be positive, got {value}"
            raise InvalidInputError(message)
        if value > nlist:
            message = f"nprobe ({value}) cannot be greater than nlist ({nlist})"
            raise InvalidInputError(message)
        self._ivf().nprobe = int(value)

    def centroids(self) -> np.ndarray:
        """Return the ``(nlist, d)`` cluster centroids learned during training."""
        if not self.is_trained:
            message = "centroids: index not trained"
            raise IndexNotTrainedError(message)
        ivf = self._ivf()
        with engine_errors("centroids"):
            return np.asarray(ivf.quantizer.reconstruct_n(0, ivf.nlist), dtype="float32")

    def _ivf(self) -> faiss.IndexIVF:
        return faiss.extract_index_ivf(self.engine_index)
