import pytest

from dit.config import Config, CRFTrainerConfig
from dit.evaluate import domain_groups, evaluate, get_domain, group_k_fold
from dit.types import EvalResult, FormAnnotation, PipelineSpec


def test_get_domain():
    assert get_domain("https://www.example.co.uk/x") == "example"
    assert get_domain("http://login.github.com:8080/session") == "github"
    assert get_domain("example.org/path") == "example"
    assert get_domain("http://localhost:8000/") == "localhost"
    assert get_domain("http://127.0.0.1/") == "127.0.0.1"


def test_domain_groups_first_seen_ids():
    urls = ["https://b.com/1", "https://www.a.com/", "http://b.com/2", "https://c.org"]
    assert domain_groups(urls) == [0, 1, 0, 2]


def test_group_k_fold_round_robin():
    groups = [3, 1, 2, 1, 3, 0]
    folds = group_k_fold(groups, 2)
    # sorted groups 0, 1, 2, 3 -> folds 0, 1, 0, 1
    assert folds == [[2, 5], [0, 1, 3, 4]]


def test_group_k_fold_never_splits_a_group():
    groups = [i % 7 for i in range(40)]
    folds = group_k_fold(groups, 3)
    assert sorted(i for fold in folds for i in fold) == list(range(40))
    for g in set(groups):
        containing = [k for k, fold in enumerate(folds) if any(groups[i] == g for i in fold)]
        assert len(containing) == 1


def test_group_k_fold_caps_folds_at_group_count():
    assert len(group_k_fold([0, 0, 1], 10)) == 2
    assert group_k_fold([], 5) == []


def _annotations():
    anns = []
    for i in range(4):
        anns.append(FormAnnotation(
            url=f"https://login{i}.com/",
            form_type="login",
            form_features={"submit text": "log in now"},
            field_names=["user", "pass"],
            field_features=[{"type": "text"}, {"type": "password"}],
            field_labels=["username", "password"],
        ))
        anns.append(FormAnnotation(
            url=f"https://search{i}.com/",
            form_type="search",
            form_features={"submit text": "search"},
            field_names=["q"],
            field_features=[{"type": "search"}],
            field_labels=["search query"],
        ))
    anns.append(FormAnnotation(url="https://x.com/", form_type=None))
    return anns


def test_evaluate_cross_validation():
    cfg = Config(
        field_type=CRFTrainerConfig(c1=0.01, c2=0.01, max_iterations=50),
        folds=4,
        pipelines=(PipelineSpec("submit text", "SubmitText", "count"),),
    )
    result, form_df, field_df = evaluate(_annotations(), cfg, return_predictions=True)

    assert isinstance(result, EvalResult)
    assert result.form_total == 8
    assert result.form_accuracy == pytest.approx(1.0)
    assert result.field_total == 12
    assert result.sequence_total == 8
    assert result.field_accuracy == pytest.approx(1.0)
    assert result.sequence_accuracy == pytest.approx(1.0)
    assert len(form_df) == 8
    assert set(form_df["fold"]) == {0, 1, 2, 3}
    assert int(field_df["n_fields"].sum()) == 12


def test_evaluate_without_annotations_raises():
    with pytest.raises(ValueError):
        evaluate([])


def test_evaluate_rejects_label_count_mismatch():
    anns = _annotations()
    anns[0].field_labels = ["username"]
    with pytest.raises(ValueError, match="field_labels"):
        evaluate(anns, Config(folds=2))
