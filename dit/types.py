from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

__all__ = [
    "AttributeMap",
    "VecType",
    "PipelineSpec",
    "TrainingSequence",
    "FormAnnotation",
    "FormResult",
    "FormResultProba",
    "EvalResult",
]

AttributeMap = Dict[str, float]
VecType = Literal["dict", "count", "tfidf"]


@dataclass(frozen=True)
class PipelineSpec:
    """
    Describes one (feature extractor, vectorizer) pair of the form model.

    The extractor itself runs outside this package; `extractor_type` names it
    so that callers know which raw input to supply under `name`.

    Attributes:
        name: Key under which the raw input appears in a form's features.
        extractor_type: Name of the external extractor producing the input.
        vec_type: ``"dict"``, ``"count"`` or ``"tfidf"``.
        ngram_range: Inclusive n-gram lengths for text vectorizers.
        min_df: Minimum document frequency for text vectorizers.
        binary: Presence instead of counts for text vectorizers.
        analyzer: ``"word"`` or ``"char_wb"``.
        stop_words: Explicit stop words for TF-IDF pipelines.
        use_english_stop: Use the built-in English stop words instead.
    """
    name: str
    extractor_type: str
    vec_type: VecType
    ngram_range: Tuple[int, int] = (1, 1)
    min_df: int = 1
    binary: bool = True
    analyzer: str = "word"
    stop_words: Tuple[str, ...] = ()
    use_english_stop: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineSpec":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "ngram_range" in kwargs:
            lo, hi = kwargs["ngram_range"]
            kwargs["ngram_range"] = (int(lo), int(hi))
        if "stop_words" in kwargs:
            kwargs["stop_words"] = tuple(kwargs["stop_words"] or ())
        for key in ("binary", "use_english_stop"):
            if key in kwargs and not isinstance(kwargs[key], bool):
                raise TypeError(f"Pipeline '{kwargs.get('name')}': '{key}' must be true or false.")
        return cls(**kwargs)


@dataclass
class TrainingSequence:
    """
    One labeled CRF training sequence (the fields of a single form).

    Attributes:
        features: Per-position attribute maps (attribute name -> value).
        labels: Gold labels, one per position.
        group: Grouping key for grouped cross-validation (e.g. a domain id).
    """
    features: List[AttributeMap]
    labels: List[str]
    group: int = 0


@dataclass
class FormAnnotation:
    """
    An annotated form with its pre-extracted features.

    Attributes:
        url: Page URL the form was collected from.
        form_type: Gold form type, or None when the form type is unannotated.
        form_features: Raw pipeline inputs keyed by pipeline name.
        field_names: Names of the annotated fields, in document order.
        field_features: Raw per-field feature dicts parallel to `field_names`.
        field_labels: Gold field types parallel to `field_names`.
        field_text_before: Text preceding each field, parallel to
            `field_features`; empty when the extractor supplied none.
        field_text_after: Text following each field, as `field_text_before`.
    """
    url: str = ""
    form_type: Optional[str] = None
    form_features: Dict[str, Any] = field(default_factory=dict)
    field_names: List[str] = field(default_factory=list)
    field_features: List[Dict[str, Any]] = field(default_factory=list)
    field_labels: List[str] = field(default_factory=list)
    field_text_before: List[str] = field(default_factory=list)
    field_text_after: List[str] = field(default_factory=list)

    @property
    def form_annotated(self) -> bool:
        return bool(self.form_type)

    @property
    def fields_annotated(self) -> bool:
        return self.form_annotated and bool(self.field_features) and bool(self.field_labels)

    def validate(self) -> None:
        """
        Checks that the per-field lists line up with `field_features`.

        Optional lists may be empty; when present they need one entry per
        field.

        Raises:
            ValueError: If `field_names`, `field_labels`, `field_text_before`
                or `field_text_after` is non-empty and has a different length
                than `field_features`.
        """
        n = len(self.field_features)
        for name in ("field_names", "field_labels", "field_text_before", "field_text_after"):
            values = getattr(self, name)
            if values and len(values) != n:
                raise ValueError(f"Form {self.url!r} has {len(values)} {name} but {n} field feature dicts.")

    @classmethod
    def get_field_names(cls) -> set[str]:
        """Returns the set of dataclass field names, used to filter loaded JSON."""
        return {f.name for f in fields(cls)}


@dataclass
class FormResult:
    """Classification result for a single form."""
    type: str
    fields: Dict[str, str] = field(default_factory=dict)


@dataclass
class FormResultProba:
    """Probability-based classification result for a single form."""
    type: Dict[str, float]
    fields: Dict[str, Dict[str, float]] = field(default_factory=dict)


@dataclass
class EvalResult:
    """Cross-validation accuracies and the counts they are computed from."""
    form_accuracy: float = 0.0
    field_accuracy: float = 0.0
    sequence_accuracy: float = 0.0
    form_correct: int = 0
    form_total: int = 0
    field_correct: int = 0
    field_total: int = 0
    sequence_correct: int = 0
    sequence_total: int = 0
