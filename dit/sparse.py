"""Fixed-dimension sparse vectors used between the vectorizers and the models."""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

import numpy as np

__all__ = ["SparseVector", "concat_sparse"]


@dataclass
class SparseVector:
    """
    A sparse float vector stored as parallel index/value lists.

    Indices are unique and every index is below `dim`. Vectors are produced
    by a vectorizer and are only modified through `set`.

    Attributes:
        dim: The dimension of the dense vector this represents.
        indices: Column indices of the stored entries.
        values: Values parallel to `indices`.
    """
    dim: int
    indices: List[int] = field(default_factory=list)
    values: List[float] = field(default_factory=list)

    def set(self, idx: int, val: float) -> None:
        """Overwrites the entry at `idx`, appending it when absent."""
        for i, existing in enumerate(self.indices):
            if existing == idx:
                self.values[i] = val
                return
        self.indices.append(idx)
        self.values.append(val)

    def dot(self, dense: Sequence[float]) -> float:
        """Dot product with a dense vector; indices past its end are skipped."""
        limit = len(dense)
        total = 0.0
        for idx, val in zip(self.indices, self.values):
            if idx < limit:
                total += val * dense[idx]
        return total

    def to_dense(self) -> np.ndarray:
        dense = np.zeros(self.dim, dtype=np.float64)
        for idx, val in zip(self.indices, self.values):
            if idx < self.dim:
                dense[idx] = val
        return dense

    @property
    def nnz(self) -> int:
        return len(self.indices)

    def l2_norm(self) -> float:
        return math.sqrt(sum(v * v for v in self.values))


def concat_sparse(vectors: Iterable[SparseVector]) -> SparseVector:
    """
    Concatenates sparse vectors into one, shifting each block's indices.

    The result has dimension equal to the sum of the input dimensions and
    holds the entries of each input offset by the dimensions before it.
    """
    result = SparseVector(dim=0)
    offset = 0
    for vec in vectors:
        result.indices.extend(idx + offset for idx in vec.indices)
        result.values.extend(vec.values)
        offset += vec.dim
    result.dim = offset
    return result
