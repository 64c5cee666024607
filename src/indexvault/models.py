"""Enumerations and data models shared across the index layer."""

from __future__ import annotations

import enum
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class MetricType(enum.IntEnum):
    """Distance metrics, numbered as the engine numbers them."""

    INNER_PRODUCT = 0
    L2 = 1
    L1 = 2
    LINF = 3
    LP = 4
    CANBERRA = 20
    BRAY_CURTIS = 21
    JENSEN_SHANNON = 22

    @classmethod
    def parse(cls, value: MetricType | int | str) -> MetricType:
        """Resolve a metric from its enum member, numeric id, or name."""
        if isinstance(value, str):
            key = value.strip().upper().replace("-", "_")
            try:
                return cls[key]
            except KeyError as exc:
                message = f"unknown metric type: {value}"
                raise ValueError(message) from exc
        return cls(int(value))


class IOFlag(enum.IntFlag):
    """Options for opening a persisted index."""

    NONE = 0
    MMAP = 1
    READ_ONLY = 2


class IndexKind(str, enum.Enum):
    """Index families understood by the description helpers."""

    FLAT = "Flat"
    IVF = "IVF"
    IVF_FLAT = "IVFFlat"
    IVF_PQ = "IVFPQ"
    HNSW = "HNSW"
    LSH = "LSH"
    PQ = "PQ"


class IndexStats(BaseModel):
    """Snapshot of the observable attributes of an index handle."""

    model_config = ConfigDict(frozen=True)

    d: int = Field(gt=0)
    ntotal: int = Field(ge=0)
    is_trained: bool
    metric_type: MetricType
    description: str = ""


class IndexFileInfo(BaseModel):
    """Metadata about a persisted index file."""

    model_config = ConfigDict(frozen=True)

    path: Path
    size_bytes: int = Field(ge=0)
    modified_at: datetime
