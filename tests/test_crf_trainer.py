import numpy as np
import pytest

from dit.config import CRFTrainerConfig
from dit.crf_trainer import CRFTrainer, train_crf
from dit.types import TrainingSequence


def _mirrored_sequences():
    return [
        TrainingSequence(features=[{"w=hello": 1.0}, {"w=world": 1.0}], labels=["A", "B"]),
        TrainingSequence(features=[{"w=world": 1.0}, {"w=hello": 1.0}], labels=["B", "A"]),
    ]


def _field_sequences():
    return [
        TrainingSequence(
            features=[{"name=user": 1.0, "bias": 1.0}, {"type=password": 1.0, "bias": 1.0}, {"len": 0.5}],
            labels=["username", "password", "submit"],
        ),
        TrainingSequence(
            features=[{"name=q": 1.0, "bias": 1.0}, {"len": 2.0}],
            labels=["query", "submit"],
        ),
    ]


def test_toy_crf_learns_mirrored_sequences():
    seqs = _mirrored_sequences()
    model = train_crf(seqs, CRFTrainerConfig(c1=0.01, c2=0.01, max_iterations=50))

    correct = [model.predict(s.features) == s.labels for s in seqs]
    assert any(correct)
    assert model.labels.to_str == ["A", "B"]
    assert len(model.weights) == model.num_weights


def test_gradient_matches_finite_differences():
    trainer = CRFTrainer(CRFTrainerConfig(c1=0.0, c2=0.1))
    trainer.prepare(_field_sequences())
    rng = np.random.default_rng(0)
    w = rng.normal(scale=0.5, size=trainer.model.num_weights)

    _, grad = trainer.loss_and_gradient(w)
    eps = 1e-6
    numeric = np.zeros_like(w)
    for i in range(len(w)):
        step = np.zeros_like(w)
        step[i] = eps
        plus, _ = trainer.loss_and_gradient(w + step)
        minus, _ = trainer.loss_and_gradient(w - step)
        numeric[i] = (plus - minus) / (2 * eps)

    np.testing.assert_allclose(grad, numeric, atol=1e-5)


def test_pseudo_gradient():
    trainer = CRFTrainer(CRFTrainerConfig(c1=0.1))
    w = np.array([0.0, 0.0, 1.0, -1.0])
    grad = np.array([0.05, -0.5, 0.2, 0.2])
    np.testing.assert_allclose(trainer.pseudo_gradient(w, grad), [0.0, -0.4, 0.3, 0.1])


def test_objective_never_increases():
    trainer = CRFTrainer(CRFTrainerConfig(max_iterations=30))
    trainer.train(_field_sequences())
    history = trainer.loss_history
    assert history
    assert all(b <= a + 1e-9 for a, b in zip(history, history[1:]))


def test_strong_l1_keeps_all_weights_at_zero():
    trainer = CRFTrainer(CRFTrainerConfig(c1=100.0, c2=0.0))
    model = trainer.train(_mirrored_sequences())
    assert trainer.stop_reason == "converged"
    assert trainer.iterations == 0
    assert not np.any(model.weights)


def test_training_is_deterministic():
    a = train_crf(_field_sequences(), CRFTrainerConfig(max_iterations=20))
    b = train_crf(_field_sequences(), CRFTrainerConfig(max_iterations=20))
    np.testing.assert_array_equal(a.weights, b.weights)


def test_invalid_training_data_raises():
    with pytest.raises(ValueError):
        train_crf([])
    with pytest.raises(ValueError):
        train_crf([TrainingSequence(features=[], labels=[])])
    with pytest.raises(ValueError):
        train_crf([TrainingSequence(features=[{"a": 1.0}], labels=["x", "y"])])
