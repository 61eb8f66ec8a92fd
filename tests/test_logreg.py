import json

import numpy as np
import pytest

from dit.config import LogRegConfig
from dit.logreg import LogisticRegressionModel, train_logistic_regression
from dit.optimize import LBFGS, ConvergenceError
from dit.sparse import SparseVector


def _vec(dim, **entries):
    v = SparseVector(dim=dim)
    for idx, val in entries.items():
        v.set(int(idx[1:]), val)
    return v


def _toy_data():
    vectors = [
        _vec(3, f0=1.0),
        _vec(3, f0=1.0, f2=0.5),
        _vec(3, f1=1.0),
        _vec(3, f1=1.0, f2=0.5),
        _vec(3, f2=1.0),
    ]
    labels = ["login", "login", "search", "search", "other"]
    return vectors, labels


def test_fits_separable_data():
    vectors, labels = _toy_data()
    model = train_logistic_regression(vectors, labels)

    assert model.classes == ["login", "search", "other"]
    assert model.coef.shape == (3, 3)
    assert [model.predict(v) for v in vectors] == labels


def test_predict_proba_is_a_distribution():
    vectors, labels = _toy_data()
    model = train_logistic_regression(vectors, labels)
    probs = model.predict_proba(vectors[0])

    assert set(probs) == {"login", "search", "other"}
    assert sum(probs.values()) == pytest.approx(1.0)
    assert max(probs, key=probs.get) == "login"


def test_intercept_only_model_predicts_majority():
    vectors = [SparseVector(dim=0)] * 3
    model = train_logistic_regression(vectors, ["a", "b", "b"])
    assert model.predict(SparseVector(dim=0)) == "b"
    assert model.predict_proba(SparseVector(dim=0))["b"] == pytest.approx(2 / 3, abs=1e-3)


def test_ties_go_to_first_class():
    model = LogisticRegressionModel(classes=["x", "y"], coef=np.zeros((2, 1)), intercept=np.zeros(2))
    assert model.predict(_vec(1, f0=1.0)) == "x"


def test_unknown_indices_are_ignored():
    model = LogisticRegressionModel(classes=["x", "y"], coef=np.array([[0.0], [1.0]]), intercept=np.zeros(2))
    assert model.predict(SparseVector(dim=5, indices=[0, 4], values=[1.0, 100.0])) == "y"


def test_json_round_trip():
    vectors, labels = _toy_data()
    model = train_logistic_regression(vectors, labels, LogRegConfig(C=1.0, max_iter=20))
    restored = LogisticRegressionModel.from_dict(json.loads(json.dumps(model.to_dict())))

    for v in vectors:
        assert restored.predict_proba(v) == pytest.approx(model.predict_proba(v))


def test_invalid_input_raises():
    with pytest.raises(ValueError):
        train_logistic_regression([], [])
    with pytest.raises(ValueError):
        train_logistic_regression([SparseVector(dim=1)], ["a", "b"])


def test_ascent_direction_is_fatal(monkeypatch):
    vectors, labels = _toy_data()
    monkeypatch.setattr(LBFGS, "direction", lambda self, grad: np.array(grad, dtype=np.float64))
    with pytest.raises(ConvergenceError, match="not a descent direction"):
        train_logistic_regression(vectors, labels)
