"""Limited-memory quasi-Newton helpers shared by both trainers.

`LBFGS` keeps the last few `(s, y)` curvature pairs and turns a gradient (or,
for OWL-QN, a pseudo-gradient) into a search direction with the standard
two-loop recursion. Line searches live with the trainers because the
logistic-regression and CRF objectives accept steps differently.
"""
from __future__ import annotations
from collections import deque
from typing import Deque, List, Tuple

import numpy as np

__all__ = ["ConvergenceError", "LBFGS", "max_abs"]

DEFAULT_MEMORY_SIZE = 10


class ConvergenceError(RuntimeError):
    """Raised when an optimizer hits a non-finite objective or a non-descent direction."""


class LBFGS:
    """
    L-BFGS inverse-Hessian approximation.

    Attributes:
        memory_size: Number of curvature pairs kept; older pairs are dropped.
    """

    def __init__(self, memory_size: int = DEFAULT_MEMORY_SIZE) -> None:
        self.memory_size = max(1, int(memory_size))
        self._history: Deque[Tuple[np.ndarray, np.ndarray, float]] = deque(maxlen=self.memory_size)

    def __len__(self) -> int:
        return len(self._history)

    def update(self, s: np.ndarray, y: np.ndarray) -> bool:
        """
        Records a curvature pair.

        Pairs with ``s.y <= 0`` would break positive definiteness and are
        ignored.

        Args:
            s: Parameter difference between two iterates.
            y: Gradient difference between the same iterates.

        Returns:
            True when the pair was stored.
        """
        sy = float(np.dot(s, y))
        if sy <= 0:
            return False
        self._history.append((np.array(s, dtype=np.float64), np.array(y, dtype=np.float64), 1.0 / sy))
        return True

    def direction(self, grad: np.ndarray) -> np.ndarray:
        """Returns the quasi-Newton descent direction ``-H * grad``."""
        q = np.array(grad, dtype=np.float64)
        if not self._history:
            return -q

        alphas: List[float] = []
        for s, y, rho in reversed(self._history):
            a = rho * float(np.dot(s, q))
            q -= a * y
            alphas.append(a)

        s_last, y_last, _ = self._history[-1]
        yy = float(np.dot(y_last, y_last))
        if yy > 0:
            q *= float(np.dot(s_last, y_last)) / yy

        for (s, y, rho), a in zip(self._history, reversed(alphas)):
            b = rho * float(np.dot(y, q))
            q += (a - b) * s

        return -q


def max_abs(values: np.ndarray) -> float:
    """Largest absolute component, 0.0 for an empty array."""
    if values.size == 0:
        return 0.0
    return float(np.max(np.abs(values)))
