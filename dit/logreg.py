"""Multinomial logistic regression over sparse feature vectors.

The model scores every class with ``W x + b`` and normalizes with softmax.
Training minimizes the summed cross-entropy plus ``0.5/C * ||W||^2`` (the
intercepts are not regularized) with L-BFGS and a backtracking line search
that halves the step until the loss strictly decreases.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .config import LogRegConfig
from .optimize import LBFGS, ConvergenceError, max_abs
from .sparse import SparseVector

__all__ = ["LogisticRegressionModel", "train_logistic_regression"]


def _softmax(scores: np.ndarray) -> np.ndarray:
    shifted = scores - np.max(scores, axis=-1, keepdims=True)
    e = np.exp(shifted)
    return e / e.sum(axis=-1, keepdims=True)


@dataclass
class LogisticRegressionModel:
    """
    A trained multinomial logistic regression model.

    Attributes:
        classes: Class labels in first-seen training order.
        coef: ``[K, D]`` weight matrix.
        intercept: ``[K]`` bias vector.
    """
    classes: List[str] = field(default_factory=list)
    coef: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    intercept: np.ndarray = field(default_factory=lambda: np.zeros(0))

    @property
    def num_features(self) -> int:
        return int(self.coef.shape[1]) if self.coef.ndim == 2 else 0

    def decision_function(self, x: SparseVector) -> np.ndarray:
        """Raw class scores; indices beyond the trained dimension are ignored."""
        scores = np.array(self.intercept, dtype=np.float64)
        dim = self.num_features
        for idx, val in zip(x.indices, x.values):
            if 0 <= idx < dim:
                scores += self.coef[:, idx] * val
        return scores

    def predict(self, x: SparseVector) -> str:
        """Returns the highest-scoring class (the first one on ties)."""
        if not self.classes:
            raise ValueError("Model has no classes.")
        return self.classes[int(np.argmax(self.decision_function(x)))]

    def predict_proba(self, x: SparseVector) -> Dict[str, float]:
        """Returns the softmax distribution over classes."""
        if not self.classes:
            return {}
        probs = _softmax(self.decision_function(x))
        return {c: float(p) for c, p in zip(self.classes, probs)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classes": list(self.classes),
            "coef": [[float(v) for v in row] for row in self.coef],
            "intercept": [float(v) for v in self.intercept],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LogisticRegressionModel":
        classes = [str(c) for c in data.get("classes") or []]
        coef = np.asarray(data.get("coef") or [], dtype=np.float64)
        if coef.size == 0:
            coef = np.zeros((len(classes), 0))
        intercept = np.asarray(data.get("intercept") or np.zeros(len(classes)), dtype=np.float64)
        return cls(classes=classes, coef=coef, intercept=intercept)


class _SparseDesign:
    """Row-major triplets of a batch of sparse vectors."""

    def __init__(self, vectors: Sequence[SparseVector]) -> None:
        rows, cols, vals = [], [], []
        dim = 0
        for i, v in enumerate(vectors):
            dim = max(dim, v.dim)
            rows.extend([i] * len(v.indices))
            cols.extend(v.indices)
            vals.extend(v.values)
        self.n_rows = len(vectors)
        self.dim = dim
        self.rows = np.asarray(rows, dtype=np.int64)
        self.cols = np.asarray(cols, dtype=np.int64)
        self.vals = np.asarray(vals, dtype=np.float64)

    def scores(self, w_t: np.ndarray, b: np.ndarray) -> np.ndarray:
        """``X W^T + b`` for a ``[D, K]`` weight matrix ``w_t``."""
        out = np.tile(b, (self.n_rows, 1))
        np.add.at(out, self.rows, w_t[self.cols] * self.vals[:, None])
        return out

    def grad_weights(self, residual: np.ndarray) -> np.ndarray:
        """``X^T residual`` as a ``[D, K]`` matrix."""
        out = np.zeros((self.dim, residual.shape[1]))
        np.add.at(out, self.cols, residual[self.rows] * self.vals[:, None])
        return out


class _Objective:
    def __init__(self, design: _SparseDesign, y: np.ndarray, n_classes: int, C: float) -> None:
        self.design = design
        self.y = y
        self.n_classes = n_classes
        self.l2 = 0.5 / C
        self.onehot = np.zeros((design.n_rows, n_classes))
        self.onehot[np.arange(design.n_rows), y] = 1.0

    def unpack(self, params: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        k = self.n_classes
        w_t = params[:-k].reshape(self.design.dim, k)
        return w_t, params[-k:]

    def loss(self, params: np.ndarray) -> float:
        w_t, b = self.unpack(params)
        scores = self.design.scores(w_t, b)
        m = np.max(scores, axis=1, keepdims=True)
        log_norm = m[:, 0] + np.log(np.exp(scores - m).sum(axis=1))
        nll = float((log_norm - scores[np.arange(len(self.y)), self.y]).sum())
        return nll + self.l2 * float(np.sum(w_t * w_t))

    def loss_and_gradient(self, params: np.ndarray) -> Tuple[float, np.ndarray]:
        w_t, b = self.unpack(params)
        scores = self.design.scores(w_t, b)
        m = np.max(scores, axis=1, keepdims=True)
        e = np.exp(scores - m)
        z = e.sum(axis=1)
        log_norm = m[:, 0] + np.log(z)
        nll = float((log_norm - scores[np.arange(len(self.y)), self.y]).sum())
        loss = nll + self.l2 * float(np.sum(w_t * w_t))

        residual = e / z[:, None] - self.onehot
        grad_w = self.design.grad_weights(residual) + 2.0 * self.l2 * w_t
        grad_b = residual.sum(axis=0)
        return loss, np.concatenate([grad_w.ravel(), grad_b])


def _line_search(
    objective: _Objective, params: np.ndarray, direction: np.ndarray, loss: float, max_trials: int
) -> Tuple[float, np.ndarray]:
    step = 1.0
    for _ in range(max_trials):
        candidate = params + step * direction
        if objective.loss(candidate) < loss:
            return step, candidate
        step *= 0.5
    return 0.0, params


def train_logistic_regression(
    vectors: Sequence[SparseVector],
    labels: Sequence[str],
    config: Optional[LogRegConfig] = None,
) -> LogisticRegressionModel:
    """
    Trains a multinomial logistic regression model.

    Args:
        vectors: One sparse feature vector per example.
        labels: The class label of each example.
        config: Trainer settings; defaults to `LogRegConfig()`.

    Returns:
        The trained `LogisticRegressionModel`, with classes in first-seen order.

    Raises:
        ValueError: If there are no examples or the inputs differ in length.
        ConvergenceError: If the loss becomes non-finite or the L-BFGS
            direction is not a descent direction.
    """
    cfg = config or LogRegConfig()
    if not vectors:
        raise ValueError("Cannot train logistic regression without examples.")
    if len(vectors) != len(labels):
        raise ValueError(f"Got {len(vectors)} vectors but {len(labels)} labels.")
    if cfg.C <= 0:
        raise ValueError(f"C must be positive, got {cfg.C}.")

    classes: List[str] = []
    class_index: Dict[str, int] = {}
    for label in labels:
        if label not in class_index:
            class_index[label] = len(classes)
            classes.append(label)
    y = np.asarray([class_index[label] for label in labels], dtype=np.int64)

    design = _SparseDesign(vectors)
    objective = _Objective(design, y, len(classes), cfg.C)
    params = np.zeros(design.dim * len(classes) + len(classes))
    lbfgs = LBFGS(cfg.memory_size)

    loss, grad = objective.loss_and_gradient(params)
    if not np.isfinite(loss):
        raise ConvergenceError("Logistic regression loss is not finite at the initial weights.")

    progress = tqdm(range(cfg.max_iter), desc="Training form model", disable=not cfg.verbose)
    for _ in progress:
        if max_abs(grad) < cfg.tol:
            break
        direction = lbfgs.direction(grad)
        dir_deriv = float(np.dot(direction, grad))
        if dir_deriv >= 0:
            raise ConvergenceError(
                f"L-BFGS direction is not a descent direction (directional derivative {dir_deriv:.6g})."
            )
        step, new_params = _line_search(objective, params, direction, loss, cfg.max_linesearch)
        if step == 0.0:
            break
        new_loss, new_grad = objective.loss_and_gradient(new_params)
        if not np.isfinite(new_loss):
            raise ConvergenceError("Logistic regression loss became non-finite.")
        lbfgs.update(new_params - params, new_grad - grad)
        params, loss, grad = new_params, new_loss, new_grad
        progress.set_postfix(loss=f"{loss:.4f}")

    if cfg.verbose:
        print(f"Form model trained: {len(classes)} classes, {design.dim} features, loss {loss:.4f}")

    w_t, b = objective.unpack(params)
    return LogisticRegressionModel(classes=classes, coef=w_t.T.copy(), intercept=b.copy())
