"""Form-type classification: feature pipelines plus logistic regression.

A form is described by one raw input per pipeline (a feature dict for
``dict`` pipelines, a string for ``count`` and ``tfidf`` pipelines). Each
pipeline owns one fitted vectorizer; the vectors of all pipelines are
concatenated in pipeline order and scored by a multinomial logistic
regression model.
"""
from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .config import LogRegConfig
from .logreg import LogisticRegressionModel, train_logistic_regression
from .sparse import SparseVector, concat_sparse
from .types import PipelineSpec
from .vectorizers import CountVectorizer, DictVectorizer, TfidfVectorizer, english_stop_words

__all__ = ["default_pipelines", "make_vectorizer", "FormTypeModel", "train_form_type"]

Vectorizer = Union[DictVectorizer, CountVectorizer, TfidfVectorizer]

_VEC_KEYS = {"dict": "dict_vec", "count": "count_vec", "tfidf": "tfidf_vec"}
_VEC_CLASSES = {"dict": DictVectorizer, "count": CountVectorizer, "tfidf": TfidfVectorizer}


def default_pipelines() -> Tuple[PipelineSpec, ...]:
    """The nine feature pipelines used by the form-type model."""
    return (
        PipelineSpec("form elements", "FormElements", "dict"),
        PipelineSpec("submit text", "SubmitText", "count", ngram_range=(1, 2), min_df=1),
        PipelineSpec(
            "links text", "FormLinksText", "tfidf",
            ngram_range=(1, 2), min_df=4, stop_words=("and", "or", "of"),
        ),
        PipelineSpec("label text", "FormLabelText", "tfidf", ngram_range=(1, 2), min_df=3, use_english_stop=True),
        PipelineSpec("form url", "FormURL", "tfidf", ngram_range=(5, 6), min_df=4, analyzer="char_wb"),
        PipelineSpec("form css", "FormCSS", "tfidf", ngram_range=(4, 5), min_df=3, analyzer="char_wb"),
        PipelineSpec("input css", "FormInputCSS", "tfidf", ngram_range=(4, 5), min_df=5, analyzer="char_wb"),
        PipelineSpec("input names", "FormInputNames", "tfidf", ngram_range=(5, 6), min_df=3, analyzer="char_wb"),
        PipelineSpec("input title", "FormInputTitle", "tfidf", ngram_range=(5, 6), min_df=3, analyzer="char_wb"),
    )


def make_vectorizer(spec: PipelineSpec) -> Vectorizer:
    """Creates an unfitted vectorizer for a pipeline spec."""
    if spec.vec_type == "dict":
        return DictVectorizer()
    if spec.vec_type == "count":
        return CountVectorizer(
            ngram_range=spec.ngram_range,
            binary=spec.binary,
            analyzer=spec.analyzer,
            min_df=spec.min_df,
        )
    if spec.vec_type == "tfidf":
        stop_words = english_stop_words() if spec.use_english_stop else spec.stop_words
        return TfidfVectorizer(
            ngram_range=spec.ngram_range,
            min_df=spec.min_df,
            binary=spec.binary,
            analyzer=spec.analyzer,
            stop_words=stop_words,
        )
    raise ValueError(f"Unknown vectorizer type '{spec.vec_type}' for pipeline '{spec.name}'.")


def _pipeline_input(spec: PipelineSpec, features: Mapping[str, Any]) -> Any:
    """Raw input for one pipeline; a missing or malformed input counts as empty."""
    value = features.get(spec.name)
    if spec.vec_type == "dict":
        return value if isinstance(value, Mapping) else {}
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value)


class FormTypeModel:
    """
    A trained form-type classifier.

    Attributes:
        classifier: The logistic regression model over concatenated vectors.
        pipelines: Serialized pipeline entries, one per feature pipeline, in
            the order their vectors are concatenated.
    """

    def __init__(self, classifier: LogisticRegressionModel, pipelines: List[Dict[str, Any]]) -> None:
        self.classifier = classifier
        self.pipelines = pipelines
        self._runtime: Optional[List[Tuple[PipelineSpec, Vectorizer]]] = None

    @property
    def classes(self) -> List[str]:
        return self.classifier.classes

    def init_runtime(self) -> None:
        """Rebuilds the vectorizer objects from the serialized pipelines."""
        runtime = []
        for entry in self.pipelines:
            vec_type = entry.get("vec_type")
            if vec_type not in _VEC_CLASSES:
                raise ValueError(f"Unknown vectorizer type '{vec_type}' in pipeline '{entry.get('name')}'.")
            spec = PipelineSpec(
                name=entry.get("name", ""),
                extractor_type=entry.get("extractor_type", ""),
                vec_type=vec_type,
            )
            vec = _VEC_CLASSES[vec_type].from_dict(entry.get(_VEC_KEYS[vec_type]) or {})
            runtime.append((spec, vec))
        self._runtime = runtime

    def _vectorizers(self) -> List[Tuple[PipelineSpec, Vectorizer]]:
        if self._runtime is None:
            self.init_runtime()
        return self._runtime

    def transform(self, features: Mapping[str, Any]) -> SparseVector:
        """Runs every pipeline on a form's raw inputs and concatenates the vectors."""
        return concat_sparse(vec.transform(_pipeline_input(spec, features)) for spec, vec in self._vectorizers())

    def classify(self, features: Mapping[str, Any]) -> str:
        return self.classifier.predict(self.transform(features))

    def classify_proba(self, features: Mapping[str, Any]) -> Dict[str, float]:
        return self.classifier.predict_proba(self.transform(features))

    def to_dict(self) -> Dict[str, Any]:
        data = self.classifier.to_dict()
        data["pipelines"] = list(self.pipelines)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormTypeModel":
        return cls(
            classifier=LogisticRegressionModel.from_dict(data),
            pipelines=[dict(p) for p in data.get("pipelines") or []],
        )


def train_form_type(
    form_features: Sequence[Mapping[str, Any]],
    labels: Sequence[str],
    config: Optional[LogRegConfig] = None,
    pipelines: Optional[Sequence[PipelineSpec]] = None,
) -> FormTypeModel:
    """
    Trains a form-type model.

    Args:
        form_features: Raw pipeline inputs for each form, keyed by pipeline name.
        labels: Gold form type of each form.
        config: Logistic regression settings.
        pipelines: Feature pipelines; defaults to `default_pipelines()`.

    Returns:
        The trained `FormTypeModel`.

    Raises:
        ValueError: If there are no forms or the inputs differ in length.
    """
    if not form_features:
        raise ValueError("Cannot train a form-type model without forms.")
    if len(form_features) != len(labels):
        raise ValueError(f"Got {len(form_features)} forms but {len(labels)} labels.")
    if pipelines is None:
        pipelines = default_pipelines()

    serialized: List[Dict[str, Any]] = []
    columns: List[List[SparseVector]] = []
    for spec in pipelines:
        vec = make_vectorizer(spec)
        columns.append(vec.fit_transform([_pipeline_input(spec, f) for f in form_features]))
        serialized.append({
            "name": spec.name,
            "extractor_type": spec.extractor_type,
            "vec_type": spec.vec_type,
            _VEC_KEYS[spec.vec_type]: vec.to_dict(),
        })

    vectors = [concat_sparse(col[j] for col in columns) for j in range(len(form_features))]
    classifier = train_logistic_regression(vectors, labels, config)
    model = FormTypeModel(classifier, serialized)
    model.init_runtime()
    return model
