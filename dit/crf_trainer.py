"""OWL-QN training for the linear-chain CRF.

The trainer minimizes the L1/L2-regularized negative conditional
log-likelihood

    F(w) = sum_seq (logZ(x) - score(x, y_gold)) + 0.5 * c2 * ||w||^2 + c1 * |w|_1

with Orthant-Wise Limited-memory Quasi-Newton. Each iteration moves through
the same states:

1.  **IterateObjective**: the smooth part (likelihood + L2) and its gradient
    are known at the current weights; the L1 term is folded in through the
    pseudo-gradient.
2.  **LineSearch**: the L-BFGS direction computed from the pseudo-gradient is
    restricted to the current orthant, then a backtracking Armijo search
    halves the step until the full objective decreases enough.
3.  **UpdateWeights**: weights that crossed zero are projected back to zero.
4.  **UpdateHistory**: the curvature pair uses the pseudo-gradient
    difference. Training stops when the largest pseudo-gradient component
    falls below `epsilon` or after `max_iterations`.

A line search that runs out of trials ends training early with the last
accepted weights. A non-descent direction or a non-finite objective raises
`ConvergenceError`. The per-sequence reduction runs sequentially in sequence
order, so training is deterministic.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .config import CRFTrainerConfig
from .crf import (
    CRFModel,
    build_attribute_alphabet,
    build_label_alphabet,
    forward_backward,
    transition_marginals,
)
from .optimize import LBFGS, ConvergenceError, max_abs
from .types import TrainingSequence

__all__ = ["CRFTrainer", "train_crf"]


@dataclass
class _EncodedSequence:
    """A training sequence with attributes and labels replaced by ids."""
    n_pos: int
    positions: np.ndarray
    attr_ids: np.ndarray
    values: np.ndarray
    labels: np.ndarray


class CRFTrainer:
    """
    Trains a `CRFModel` from labeled sequences with OWL-QN.

    Attributes:
        config: Training hyperparameters.
        model: The model being trained; alphabets are fixed by `prepare`.
        iterations: Number of completed optimizer iterations.
        stop_reason: Why the last `train` call stopped (``"converged"``,
            ``"max_iterations"`` or ``"line_search_failed"``).
        loss_history: Full objective value after every accepted step.
    """

    def __init__(self, config: Optional[CRFTrainerConfig] = None) -> None:
        self.config = config or CRFTrainerConfig()
        self.model = CRFModel()
        self.iterations = 0
        self.stop_reason = ""
        self.loss_history: List[float] = []
        self._data: List[_EncodedSequence] = []

    def prepare(self, sequences: Sequence[TrainingSequence]) -> None:
        """
        Builds the alphabets and encodes the training data.

        Raises:
            ValueError: If there are no sequences, a sequence is empty, or a
                sequence has a different number of labels than positions.
        """
        if not sequences:
            raise ValueError("Cannot train a CRF without training sequences.")
        for i, seq in enumerate(sequences):
            if not seq.features:
                raise ValueError(f"Training sequence {i} has no positions.")
            if len(seq.features) != len(seq.labels):
                raise ValueError(
                    f"Training sequence {i} has {len(seq.features)} positions but {len(seq.labels)} labels."
                )

        model = CRFModel(
            labels=build_label_alphabet(sequences),
            attributes=build_attribute_alphabet(sequences),
        )
        model.num_labels = len(model.labels)
        model.weights = np.zeros(model.num_weights)
        self.model = model

        self._data = []
        for seq in sequences:
            positions, attr_ids, values = [], [], []
            for t, feats in enumerate(seq.features):
                for attr, value in feats.items():
                    positions.append(t)
                    attr_ids.append(model.attributes.get(attr))
                    values.append(float(value))
            self._data.append(
                _EncodedSequence(
                    n_pos=len(seq.features),
                    positions=np.asarray(positions, dtype=np.int64),
                    attr_ids=np.asarray(attr_ids, dtype=np.int64),
                    values=np.asarray(values, dtype=np.float64),
                    labels=np.asarray([model.labels.get(y) for y in seq.labels], dtype=np.int64),
                )
            )

    def _split(self, w: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        n_labels = self.model.num_labels
        offset = self.model.trans_offset
        state_w = w[:offset].reshape(-1, n_labels)
        trans_w = w[offset:].reshape(n_labels, n_labels)
        return state_w, trans_w

    def _state_scores(self, seq: _EncodedSequence, state_w: np.ndarray) -> np.ndarray:
        scores = np.zeros((seq.n_pos, self.model.num_labels))
        np.add.at(scores, seq.positions, state_w[seq.attr_ids] * seq.values[:, None])
        return scores

    @staticmethod
    def _gold_score(seq: _EncodedSequence, state: np.ndarray, trans: np.ndarray) -> float:
        y = seq.labels
        score = float(state[np.arange(seq.n_pos), y].sum())
        if seq.n_pos > 1:
            score += float(trans[y[:-1], y[1:]].sum())
        return score

    def negative_log_likelihood(self, w: np.ndarray) -> float:
        """Unregularized negative log-likelihood of the training data."""
        state_w, trans_w = self._split(w)
        nll = 0.0
        for seq in self._data:
            state = self._state_scores(seq, state_w)
            fb = forward_backward(state, trans_w)
            nll += fb.log_z - self._gold_score(seq, state, trans_w)
        return nll

    def loss_and_gradient(self, w: np.ndarray) -> Tuple[float, np.ndarray]:
        """
        Smooth part of the objective (likelihood + L2) and its gradient.

        The gradient is the model expectation of every feature minus its
        empirical count, plus ``c2 * w``.
        """
        state_w, trans_w = self._split(w)
        grad = np.zeros_like(w)
        grad_state, grad_trans = self._split(grad)
        nll = 0.0

        for seq in self._data:
            state = self._state_scores(seq, state_w)
            fb = forward_backward(state, trans_w)
            nll += fb.log_z - self._gold_score(seq, state, trans_w)

            expected = fb.marginals.copy()
            expected[np.arange(seq.n_pos), seq.labels] -= 1.0
            np.add.at(grad_state, seq.attr_ids, expected[seq.positions] * seq.values[:, None])

            if seq.n_pos > 1:
                grad_trans += transition_marginals(fb).sum(axis=0)
                np.add.at(grad_trans, (seq.labels[:-1], seq.labels[1:]), -1.0)

        c2 = self.config.c2
        if c2 > 0:
            nll += 0.5 * c2 * float(np.dot(w, w))
            grad += c2 * w
        return nll, grad

    def objective(self, w: np.ndarray) -> float:
        """Full regularized objective, including the L1 term."""
        value = self.negative_log_likelihood(w)
        if self.config.c2 > 0:
            value += 0.5 * self.config.c2 * float(np.dot(w, w))
        if self.config.c1 > 0:
            value += self.config.c1 * float(np.abs(w).sum())
        return value

    def pseudo_gradient(self, w: np.ndarray, grad: np.ndarray) -> np.ndarray:
        """
        Pseudo-gradient of the L1-regularized objective.

        Away from zero the L1 term is differentiable. At zero the component is
        the one-sided derivative pointing downhill, or 0 when the
        subgradient interval ``[g - c1, g + c1]`` contains zero.
        """
        c1 = self.config.c1
        if c1 <= 0:
            return grad.copy()
        pg = np.where(w > 0, grad + c1, np.where(w < 0, grad - c1, 0.0))
        at_zero = w == 0
        pg = np.where(at_zero & (grad + c1 < 0), grad + c1, pg)
        pg = np.where(at_zero & (grad - c1 > 0), grad - c1, pg)
        return pg

    def _project(self, w_new: np.ndarray, w: np.ndarray, pg: np.ndarray) -> np.ndarray:
        """Zeroes the components of `w_new` that left the orthant of `w`."""
        if self.config.c1 <= 0:
            return w_new
        # weights at zero may only move against the pseudo-gradient
        orthant = np.where(w != 0, np.sign(w), -np.sign(pg))
        return np.where(w_new * orthant <= 0, 0.0, w_new)

    def _line_search(
        self, w: np.ndarray, direction: np.ndarray, value: float, pg: np.ndarray
    ) -> Tuple[float, np.ndarray, float]:
        dir_deriv = float(np.dot(direction, pg))
        if dir_deriv >= 0:
            raise ConvergenceError(
                f"OWL-QN search direction is not a descent direction (directional derivative {dir_deriv:.6g})."
            )

        step = 1.0
        for _ in range(self.config.max_linesearch):
            w_new = self._project(w + step * direction, w, pg)
            new_value = self.objective(w_new)
            if np.isfinite(new_value) and new_value <= value + self.config.armijo * step * dir_deriv:
                return step, w_new, new_value
            step *= 0.5
        return 0.0, w, value

    def train(self, sequences: Sequence[TrainingSequence]) -> CRFModel:
        """
        Trains a CRF model on the given sequences.

        Args:
            sequences: Labeled training sequences.

        Returns:
            The trained `CRFModel`.

        Raises:
            ValueError: If the training data is empty or malformed.
            ConvergenceError: If the objective becomes non-finite or the search
                direction is not a descent direction.
        """
        self.prepare(sequences)
        cfg = self.config
        w = self.model.weights.copy()
        lbfgs = LBFGS(cfg.memory_size)

        smooth, grad = self.loss_and_gradient(w)
        value = smooth + cfg.c1 * float(np.abs(w).sum())
        if not np.isfinite(value):
            raise ConvergenceError("CRF objective is not finite at the initial weights.")
        pg = self.pseudo_gradient(w, grad)

        self.iterations = 0
        self.loss_history = []
        self.stop_reason = "max_iterations"

        progress = tqdm(range(cfg.max_iterations), desc="Training CRF", disable=not cfg.verbose)
        for _ in progress:
            if max_abs(pg) < cfg.epsilon:
                self.stop_reason = "converged"
                break

            direction = lbfgs.direction(pg)
            # keep the direction in the orthant chosen by the pseudo-gradient
            direction[direction * pg >= 0] = 0.0

            step, w_new, value = self._line_search(w, direction, value, pg)
            if step == 0.0:
                print("Warning: CRF line search failed to decrease the objective, stopping.")
                self.stop_reason = "line_search_failed"
                break

            smooth, grad = self.loss_and_gradient(w_new)
            value = smooth + cfg.c1 * float(np.abs(w_new).sum())
            if not np.isfinite(value):
                raise ConvergenceError(f"CRF objective became non-finite at iteration {self.iterations + 1}.")
            pg_new = self.pseudo_gradient(w_new, grad)

            lbfgs.update(w_new - w, pg_new - pg)
            w, pg = w_new, pg_new
            self.iterations += 1
            self.loss_history.append(value)
            progress.set_postfix(loss=f"{value:.4f}")
        else:
            if max_abs(pg) < cfg.epsilon:
                self.stop_reason = "converged"

        if cfg.verbose:
            print(f"CRF training stopped after {self.iterations} iterations ({self.stop_reason}), objective {value:.4f}")

        self.model.weights = w
        return self.model


def train_crf(sequences: Sequence[TrainingSequence], config: Optional[CRFTrainerConfig] = None) -> CRFModel:
    """Trains a linear-chain CRF with OWL-QN; see `CRFTrainer`."""
    return CRFTrainer(config).train(sequences)
