from pathlib import Path

import pytest

from dit.classifier import FormFieldClassifier, train_classifier
from dit.config import Config, CRFTrainerConfig
from dit.types import FormAnnotation, PipelineSpec

PIPELINES = (
    PipelineSpec("form elements", "FormElements", "dict"),
    PipelineSpec("submit text", "SubmitText", "count", ngram_range=(1, 2)),
)


def _login(url, user="user"):
    return FormAnnotation(
        url=url,
        form_type="login",
        form_features={"form elements": {"input-password": 1}, "submit text": "Log in"},
        field_names=[user, "pass"],
        field_features=[{"type": "text", "name": user}, {"type": "password", "name": "pass"}],
        field_labels=["username", "password"],
    )


def _search(url):
    return FormAnnotation(
        url=url,
        form_type="search",
        form_features={"form elements": {"input-text": 1}, "submit text": "Search"},
        field_names=["q"],
        field_features=[{"type": "text", "name": "q"}],
        field_labels=["search query"],
    )


def _config():
    return Config(field_type=CRFTrainerConfig(c1=0.01, c2=0.01), pipelines=PIPELINES)


def test_classify_form_and_fields():
    anns = [_login("https://a.com/"), _search("https://b.com/"), _login("https://c.com/", "email")]
    clf = train_classifier(anns, _config())

    result = clf.classify(anns[0])
    assert result.type == "login"
    assert result.fields == {"user": "username", "pass": "password"}
    assert clf.classify(anns[1]).fields == {"q": "search query"}


def test_classify_proba_applies_threshold():
    anns = [_login("https://a.com/"), _search("https://b.com/")]
    clf = train_classifier(anns, _config())

    everything = clf.classify_proba(anns[0], threshold=0.0)
    assert set(everything.type) == {"login", "search"}
    assert sum(everything.type.values()) == pytest.approx(1.0)

    strict = clf.classify_proba(anns[0], threshold=0.5)
    assert list(strict.type) == ["login"]
    assert all(p >= 0.5 for probs in strict.fields.values() for p in probs.values())
    assert max(strict.fields["pass"], key=strict.fields["pass"].get) == "password"


def test_form_only_annotations_skip_field_model():
    anns = [
        FormAnnotation(url="https://a.com/", form_type="login", form_features={"submit text": "log in"}),
        FormAnnotation(url="https://b.com/", form_type="search", form_features={"submit text": "search"}),
        FormAnnotation(url="https://c.com/", form_type=None),
    ]
    clf = train_classifier(anns, _config())
    assert clf.field_model is None
    assert clf.classify(_login("https://d.com/")).fields == {}


def test_save_and_load_round_trip(tmp_path: Path):
    anns = [_login("https://a.com/"), _search("https://b.com/")]
    clf = train_classifier(anns, _config())
    path = tmp_path / "models" / "model.json"
    clf.save(path)

    restored = FormFieldClassifier.load(path)
    for ann in anns:
        assert restored.classify(ann) == clf.classify(ann)


def test_no_annotations_raises():
    with pytest.raises(ValueError):
        train_classifier([])
    with pytest.raises(ValueError):
        train_classifier([FormAnnotation(url="https://a.com/")])


def test_load_rejects_model_without_form_model():
    with pytest.raises(ValueError):
        FormFieldClassifier.from_dict({"field_model": None})


def test_label_count_mismatch_raises():
    short = _login("https://a.com/")
    short.field_labels = ["username"]
    with pytest.raises(ValueError, match="field_labels"):
        train_classifier([short, _search("https://b.com/")], _config())


def test_classify_uses_text_around_fields():
    def form(url, texts, labels):
        return FormAnnotation(
            url=url,
            form_type="register",
            form_features={"submit text": "Sign up"},
            field_names=["a", "b"],
            field_features=[{"type": "text"}, {"type": "text"}],
            field_labels=labels,
            field_text_before=texts,
        )

    anns = [
        form("https://a.com/", ["First name", "Last name"], ["first name", "last name"]),
        form("https://b.com/", ["Last name", "First name"], ["last name", "first name"]),
        _search("https://c.com/"),
    ]
    clf = train_classifier(anns, _config())

    assert clf.classify(anns[0]).fields == {"a": "first name", "b": "last name"}
    assert clf.classify(anns[1]).fields == {"a": "last name", "b": "first name"}

    mismatched = form("https://d.com/", ["First name"], [])
    with pytest.raises(ValueError):
        clf.classify(mismatched)
