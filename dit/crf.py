"""Linear-chain Conditional Random Field: model, inference and decoding.

The model scores a label sequence as the sum of per-position *state* weights
(attribute x label) and *transition* weights (label x label). Both live in a
single flat weight vector:

    [ state block: n_attributes * n_labels | transition block: n_labels^2 ]

with state index ``attr_id * n_labels + label_id`` and transition index
``trans_offset + from_id * n_labels + to_id``. This layout is also the
serialized layout.

Inference uses a scaled forward-backward pass: each forward vector is
normalized to sum to one and its scale factor recorded, so the inner loops
stay plain products and long sequences never underflow. Weights extreme
enough to underflow the shifted products fall back to a log-domain pass.
Decoding is a log-domain Viterbi pass.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .types import AttributeMap, TrainingSequence

__all__ = [
    "Alphabet",
    "CRFModel",
    "ForwardBackwardResult",
    "forward_backward",
    "transition_marginals",
    "viterbi",
    "path_score",
    "features_to_attributes",
    "build_label_alphabet",
    "build_attribute_alphabet",
]


@dataclass
class Alphabet:
    """
    Bidirectional mapping between strings and dense integer ids.

    Ids are handed out in first-seen order. The alphabet grows while training
    and is treated as frozen afterwards.
    """
    to_id: Dict[str, int] = field(default_factory=dict)
    to_str: List[str] = field(default_factory=list)

    def add(self, s: str) -> int:
        """Returns the id of `s`, assigning the next free id when it is new."""
        idx = self.to_id.get(s)
        if idx is not None:
            return idx
        idx = len(self.to_str)
        self.to_id[s] = idx
        self.to_str.append(s)
        return idx

    def get(self, s: str) -> int:
        """Returns the id of `s`, or -1 when unknown."""
        return self.to_id.get(s, -1)

    def __len__(self) -> int:
        return len(self.to_str)

    def __contains__(self, s: object) -> bool:
        return s in self.to_id

    def to_dict(self) -> Dict[str, Any]:
        return {"to_id": dict(self.to_id), "to_str": list(self.to_str)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Alphabet":
        to_str = [str(s) for s in (data.get("to_str") or [])]
        to_id = data.get("to_id") or {s: i for i, s in enumerate(to_str)}
        return cls(to_id={str(k): int(v) for k, v in to_id.items()}, to_str=to_str)


# smallest normal double; forward totals below it have lost precision
_TINY = np.finfo(np.float64).tiny


@dataclass
class ForwardBackwardResult:
    """
    Output of `forward_backward`.

    Attributes:
        log_z: Log partition function.
        marginals: ``[T, L]`` array of ``P(y_t = j | x)``.
        alpha: ``[T, L]`` scaled forward variables.
        beta: ``[T, L]`` scaled backward variables.
        scale: ``[T]`` per-position scale factors.
        exp_state: ``[T, L]`` exponentiated (max-shifted) state scores.
        exp_trans: ``[L, L]`` exponentiated (max-shifted) transition scores.
        log_alpha: ``[T, L]`` log-domain forward messages, set only when the
            scaled pass underflowed and the log-domain pass was used instead.
        log_beta: ``[T, L]`` log-domain backward messages, as `log_alpha`.
        state_scores: Raw ``[T, L]`` state scores, kept with `log_alpha`.
        trans_scores: Raw ``[L, L]`` transition scores, kept with `log_alpha`.
    """
    log_z: float
    marginals: np.ndarray
    alpha: np.ndarray
    beta: np.ndarray
    scale: np.ndarray
    exp_state: np.ndarray
    exp_trans: np.ndarray
    log_alpha: Optional[np.ndarray] = None
    log_beta: Optional[np.ndarray] = None
    state_scores: Optional[np.ndarray] = None
    trans_scores: Optional[np.ndarray] = None


def _logsumexp(a: np.ndarray, axis: int) -> np.ndarray:
    m = np.max(a, axis=axis, keepdims=True)
    m = np.where(np.isfinite(m), m, 0.0)
    with np.errstate(divide="ignore"):
        out = np.log(np.exp(a - m).sum(axis=axis, keepdims=True)) + m
    return np.squeeze(out, axis=axis)


def _normalize_rows(log_v: np.ndarray) -> np.ndarray:
    return np.exp(log_v - _logsumexp(log_v, axis=1)[:, None])


def _log_forward_backward(
    state_scores: np.ndarray,
    trans_scores: np.ndarray,
    exp_state: np.ndarray,
    exp_trans: np.ndarray,
) -> ForwardBackwardResult:
    n_pos, n_labels = state_scores.shape
    log_alpha = np.empty((n_pos, n_labels))
    log_beta = np.zeros((n_pos, n_labels))

    log_alpha[0] = state_scores[0]
    for t in range(1, n_pos):
        log_alpha[t] = _logsumexp(log_alpha[t - 1][:, None] + trans_scores, axis=0) + state_scores[t]
    for t in range(n_pos - 2, -1, -1):
        log_beta[t] = _logsumexp(trans_scores + (state_scores[t + 1] + log_beta[t + 1])[None, :], axis=1)

    log_z = float(_logsumexp(log_alpha[-1], axis=0))
    marginals = np.exp(log_alpha + log_beta - log_z)

    # scale[t] is the growth of the forward mass from t-1 to t
    log_mass = _logsumexp(log_alpha, axis=1)
    with np.errstate(over="ignore", under="ignore"):
        scale = np.exp(-np.diff(log_mass, prepend=0.0))

    return ForwardBackwardResult(
        log_z=log_z,
        marginals=marginals,
        alpha=_normalize_rows(log_alpha),
        beta=_normalize_rows(log_beta),
        scale=scale,
        exp_state=exp_state,
        exp_trans=exp_trans,
        log_alpha=log_alpha,
        log_beta=log_beta,
        state_scores=state_scores,
        trans_scores=trans_scores,
    )


def forward_backward(state_scores: np.ndarray, trans_scores: np.ndarray) -> ForwardBackwardResult:
    """
    Runs the scaled forward-backward algorithm.

    Per-position maxima are removed from the state scores (and the overall
    maximum from the transition scores) before exponentiating. The removed
    constants shift every path score equally, so marginals are unchanged and
    they are added back into `log_z`.

    With extreme weights a label can carry negligible forward mass at one
    position and dominate later, so the shifted products underflow to zero.
    When a forward vector vanishes or the marginals stop summing to one, the
    pass is redone in the log domain and the log messages are kept on the
    result.

    Args:
        state_scores: ``[T, L]`` state scores.
        trans_scores: ``[L, L]`` transition scores, ``[from, to]``.

    Returns:
        A `ForwardBackwardResult`. For an empty sequence all arrays are empty
        and `log_z` is 0.0.
    """
    state_scores = np.asarray(state_scores, dtype=np.float64)
    trans_scores = np.asarray(trans_scores, dtype=np.float64)
    n_pos = state_scores.shape[0]
    n_labels = state_scores.shape[1] if state_scores.ndim == 2 else 0
    if n_pos == 0 or n_labels == 0:
        empty = np.zeros((n_pos, n_labels))
        return ForwardBackwardResult(0.0, empty, empty, empty, np.ones(n_pos), empty, np.exp(trans_scores))

    state_shift = state_scores.max(axis=1)
    trans_shift = float(trans_scores.max()) if trans_scores.size else 0.0
    exp_state = np.exp(state_scores - state_shift[:, None])
    exp_trans = np.exp(trans_scores - trans_shift)

    alpha = np.zeros((n_pos, n_labels))
    scale = np.ones(n_pos)

    for t in range(n_pos):
        if t == 0:
            alpha[0] = exp_state[0]
        else:
            alpha[t] = (alpha[t - 1] @ exp_trans) * exp_state[t]
        total = alpha[t].sum()
        if not (np.isfinite(total) and total >= _TINY):
            return _log_forward_backward(state_scores, trans_scores, exp_state, exp_trans)
        scale[t] = 1.0 / total
        alpha[t] *= scale[t]

    beta = np.zeros((n_pos, n_labels))
    beta[-1] = scale[-1]
    with np.errstate(over="ignore", invalid="ignore"):
        for t in range(n_pos - 2, -1, -1):
            beta[t] = (exp_trans @ (exp_state[t + 1] * beta[t + 1])) * scale[t]
        marginals = alpha * beta / scale[:, None]

    if not np.allclose(marginals.sum(axis=1), 1.0, rtol=0.0, atol=1e-9):
        return _log_forward_backward(state_scores, trans_scores, exp_state, exp_trans)

    log_z = -float(np.log(scale).sum()) + float(state_shift.sum()) + trans_shift * (n_pos - 1)

    return ForwardBackwardResult(
        log_z=log_z,
        marginals=marginals,
        alpha=alpha,
        beta=beta,
        scale=scale,
        exp_state=exp_state,
        exp_trans=exp_trans,
    )


def transition_marginals(fb: ForwardBackwardResult) -> np.ndarray:
    """
    Pairwise marginals ``P(y_{t-1} = i, y_t = j | x)``.

    Returns:
        A ``[T-1, L, L]`` array; empty when the sequence has fewer than two
        positions.
    """
    n_pos, n_labels = fb.alpha.shape
    if n_pos < 2:
        return np.zeros((0, n_labels, n_labels))
    if fb.log_alpha is not None:
        right = fb.state_scores[1:] + fb.log_beta[1:]
        return np.exp(fb.log_alpha[:-1, :, None] + fb.trans_scores[None, :, :] + right[:, None, :] - fb.log_z)
    right = fb.exp_state[1:] * fb.beta[1:]
    return fb.alpha[:-1, :, None] * fb.exp_trans[None, :, :] * right[:, None, :]


def viterbi(state_scores: np.ndarray, trans_scores: np.ndarray) -> Tuple[List[int], float]:
    """
    Finds the highest-scoring label path.

    Ties are broken in favour of the lowest label index, both for the
    predecessor choice and for the final label.

    Args:
        state_scores: ``[T, L]`` state scores.
        trans_scores: ``[L, L]`` transition scores.

    Returns:
        The best path as label ids and its score. An empty sequence yields
        ``([], -inf)``.
    """
    state_scores = np.asarray(state_scores, dtype=np.float64)
    trans_scores = np.asarray(trans_scores, dtype=np.float64)
    n_pos = state_scores.shape[0]
    if n_pos == 0:
        return [], float("-inf")

    n_labels = state_scores.shape[1]
    delta = np.zeros((n_pos, n_labels))
    psi = np.zeros((n_pos, n_labels), dtype=np.int64)
    delta[0] = state_scores[0]

    for t in range(1, n_pos):
        # candidates[prev, cur]; argmax returns the first maximum
        candidates = delta[t - 1][:, None] + trans_scores
        psi[t] = np.argmax(candidates, axis=0)
        delta[t] = candidates[psi[t], np.arange(n_labels)] + state_scores[t]

    best = int(np.argmax(delta[-1]))
    score = float(delta[-1, best])
    path = [0] * n_pos
    path[-1] = best
    for t in range(n_pos - 1, 0, -1):
        path[t - 1] = int(psi[t, path[t]])
    return path, score


def path_score(state_scores: np.ndarray, trans_scores: np.ndarray, path: Sequence[int]) -> float:
    """Unnormalized score of a single label path."""
    score = 0.0
    for t, y in enumerate(path):
        score += float(state_scores[t][y])
        if t > 0:
            score += float(trans_scores[path[t - 1]][y])
    return score


@dataclass
class CRFModel:
    """
    A trained linear-chain CRF.

    Attributes:
        labels: Label alphabet.
        attributes: Attribute alphabet.
        weights: Flat weight vector (state block, then transition block).
        num_labels: Number of labels.
    """
    labels: Alphabet = field(default_factory=Alphabet)
    attributes: Alphabet = field(default_factory=Alphabet)
    weights: np.ndarray = field(default_factory=lambda: np.zeros(0))
    num_labels: int = 0

    @property
    def trans_offset(self) -> int:
        return len(self.attributes) * self.num_labels

    @property
    def num_weights(self) -> int:
        return self.trans_offset + self.num_labels * self.num_labels

    def state_feature_index(self, attr_id: int, label_id: int) -> int:
        return attr_id * self.num_labels + label_id

    def trans_feature_index(self, from_id: int, to_id: int) -> int:
        return self.trans_offset + from_id * self.num_labels + to_id

    def _full_weights(self) -> np.ndarray:
        w = np.asarray(self.weights, dtype=np.float64)
        if w.shape[0] < self.num_weights:
            # tolerate truncated weight vectors from older files
            w = np.concatenate([w, np.zeros(self.num_weights - w.shape[0])])
        return w

    def state_weights(self) -> np.ndarray:
        """``[n_attributes, n_labels]`` view of the state block."""
        return self._full_weights()[:self.trans_offset].reshape(len(self.attributes), self.num_labels)

    def compute_state_scores(self, features: Sequence[Mapping[str, float]]) -> np.ndarray:
        """
        Computes ``[T, L]`` state scores for a feature sequence.

        Attributes that are not in the alphabet contribute nothing.
        """
        state_w = self.state_weights()
        scores = np.zeros((len(features), self.num_labels))
        for t, feats in enumerate(features):
            for attr, value in feats.items():
                attr_id = self.attributes.get(attr)
                if attr_id < 0:
                    continue
                scores[t] += state_w[attr_id] * float(value)
        return scores

    def compute_trans_scores(self) -> np.ndarray:
        """Returns the ``[L, L]`` transition score matrix."""
        w = self._full_weights()
        return w[self.trans_offset:self.num_weights].reshape(self.num_labels, self.num_labels).copy()

    def predict(self, features: Sequence[Mapping[str, float]]) -> List[str]:
        """Returns the Viterbi label sequence."""
        path, _ = viterbi(self.compute_state_scores(features), self.compute_trans_scores())
        return [self.labels.to_str[y] for y in path]

    def predict_marginals(self, features: Sequence[Mapping[str, float]]) -> List[Dict[str, float]]:
        """Returns a label -> probability map for every position."""
        fb = forward_backward(self.compute_state_scores(features), self.compute_trans_scores())
        return [
            {self.labels.to_str[y]: float(fb.marginals[t, y]) for y in range(self.num_labels)}
            for t in range(len(features))
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "labels": self.labels.to_dict(),
            "attributes": self.attributes.to_dict(),
            "weights": [float(w) for w in self.weights],
            "num_labels": self.num_labels,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CRFModel":
        labels = Alphabet.from_dict(data.get("labels") or {})
        return cls(
            labels=labels,
            attributes=Alphabet.from_dict(data.get("attributes") or {}),
            weights=np.asarray(data.get("weights") or [], dtype=np.float64),
            num_labels=int(data.get("num_labels", len(labels))),
        )


def features_to_attributes(features: Mapping[str, Any]) -> AttributeMap:
    """
    Converts a mixed-type feature dict into CRF attributes.

    Conversion rules:
    -   string value: ``"key=value"`` -> 1.0
    -   list of strings: ``"key:item"`` -> 1.0 for each item
    -   bool value: ``"key"`` -> 1.0 when True, omitted when False
    -   int/float value: ``"key"`` -> the value
    -   anything else: ``"key"`` -> 1.0
    """
    attrs: AttributeMap = {}
    for key, value in features.items():
        if isinstance(value, str):
            attrs[f"{key}={value}"] = 1.0
        elif isinstance(value, (list, tuple)):
            for item in value:
                attrs[f"{key}:{item}"] = 1.0
        elif isinstance(value, bool):
            if value:
                attrs[key] = 1.0
        elif isinstance(value, (int, float)):
            attrs[key] = float(value)
        else:
            attrs[key] = 1.0
    return attrs


def build_label_alphabet(sequences: Iterable[TrainingSequence]) -> Alphabet:
    alphabet = Alphabet()
    for seq in sequences:
        for label in seq.labels:
            alphabet.add(label)
    return alphabet


def build_attribute_alphabet(sequences: Iterable[TrainingSequence]) -> Alphabet:
    alphabet = Alphabet()
    for seq in sequences:
        for feats in seq.features:
            for attr in feats:
                alphabet.add(attr)
    return alphabet
