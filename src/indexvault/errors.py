"""Error taxonomy shared by every indexvault component.

Validation errors derive from :class:`ValueError` and are raised before the
engine is touched. Engine failures are wrapped in :class:`EngineError` with the
operation that produced them, and the original exception chained as
``__cause__``.
"""

from __future__ import annotations


class IndexVaultError(Exception):
    """Base class for all errors raised by indexvault."""


class InvalidInputError(IndexVaultError, ValueError):
    """Input rejected before any engine call."""


class EmptyVectorsError(InvalidInputError):
    """The vector buffer holds no values."""


class InvalidDimensionError(InvalidInputError):
    """The vector dimension is not a positive integer."""


class InvalidVectorsError(InvalidInputError):
    """The vector buffer does not line up with the index dimension."""


class InvalidKError(InvalidInputError):
    """The number of neighbours requested is not a positive integer."""


class InvalidRadiusError(InvalidInputError):
    """A range search radius is negative."""


class InvalidSelectorError(InvalidInputError):
    """An ID selector was built from a malformed range or ID set."""


class IndexNotTrainedError(IndexVaultError):
    """The index requires training before it accepts vectors or queries."""


class EmptyIndexError(IndexVaultError):
    """The operation needs at least one indexed vector."""


class IndexClosedError(IndexVaultError):
    """The handle has already released its engine resources."""


class EngineError(IndexVaultError, RuntimeError):
    """Failure surfaced by the engine, annotated with the failing operation."""

    def __init__(self, operation: str, detail: str | BaseException) -> None:
        """Record the operation context alongside the engine message."""
        self.operation = operation
        self.detail = str(detail)
        super().__init__(f"{operation}: {self.detail}")


class BatchOperationError(EngineError):
    """A chunk of a batched call failed; earlier chunks stay committed."""

    def __init__(self, operation: str, start: int, stop: int, detail: str | BaseException) -> None:
        """Record the failing half-open row range ``[start, stop)``."""
        self.start = start
        self.stop = stop
        super().__init__(f"{operation} {start}-{stop - 1}", detail)

    @property
    def committed(self) -> int:
        """Number of leading rows committed before the failing chunk."""
        return self.start


class IndexIOError(EngineError):
    """Serialising or deserialising an index failed."""


class IndexFileNotFoundError(IndexIOError):
    """The index file to read does not exist."""

    def __init__(self, path: str) -> None:
        """Remember the missing path."""
        self.path = path
        super().__init__("read index", f"index file does not exist: {path}")


class PersistenceDivergenceError(IndexIOError):
    """A mutation succeeded in memory but could not be written to disk.

    The in-memory index already reflects the mutation while the file at
    :attr:`path` still holds the previous state. Callers may retry with
    ``PersistentIndex.save()``, discard the change with ``reload()``, or treat
    the instance as compromised.
    """

    def __init__(
        self,
        operation: str,
        path: str,
        detail: str | BaseException,
        removed: int | None = None,
    ) -> None:
        """Record where persistence failed and, for removals, how many IDs went."""
        self.path = path
        self.removed = removed
        super().__init__(f"persist after {operation}", detail)
