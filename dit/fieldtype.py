"""Field-type classification with a linear-chain CRF.

The fields of a form are labeled jointly as one sequence. Per-field feature
dicts come from the caller's element feature extraction; `sequence_features`
adds the position, form-type and surrounding-text features the CRF relies on,
and `crf.features_to_attributes` turns the mixed-type dicts into numeric CRF
attributes.
"""
from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .config import CRFTrainerConfig
from .crf import CRFModel, features_to_attributes
from .crf_trainer import train_crf
from .textutil import normalize, token_ngrams, tokenize
from .types import AttributeMap, FormAnnotation, TrainingSequence

__all__ = ["sequence_features", "sequence_attributes", "FieldTypeModel", "train_field_type", "annotation_sequence"]

TEXT_BEFORE_TOKENS = 6
TEXT_AFTER_TOKENS = 5


def _text_tokens(texts: Optional[Sequence[Optional[str]]], idx: int) -> List[str]:
    if texts is None or idx >= len(texts):
        return []
    return tokenize(normalize(texts[idx] or ""))


def sequence_features(
    elem_features: Sequence[Mapping[str, Any]],
    form_type: str,
    text_before: Optional[Sequence[Optional[str]]] = None,
    text_after: Optional[Sequence[Optional[str]]] = None,
) -> List[Dict[str, Any]]:
    """
    Decorates per-element feature dicts with sequence-level features.

    Args:
        elem_features: One feature dict per field, in document order.
        form_type: The (predicted or gold) type of the enclosing form.
        text_before: Text preceding each field; the last six tokens become
            ``text-before`` unigrams and bigrams. Missing text gives an empty
            list.
        text_after: Text following each field; the first five tokens become
            ``text-after`` unigrams and bigrams.

    Returns:
        New feature dicts; the inputs are not modified.
    """
    n = len(elem_features)
    res: List[Dict[str, Any]] = []
    for idx, elem in enumerate(elem_features):
        feat = dict(elem)
        if idx == 0:
            feat["is-first"] = True
        if idx == n - 1:
            feat["is-last"] = True
        feat["form-type"] = form_type

        before = _text_tokens(text_before, idx)[-TEXT_BEFORE_TOKENS:]
        feat["text-before"] = token_ngrams(before, 1, 2)
        after = _text_tokens(text_after, idx)[:TEXT_AFTER_TOKENS]
        feat["text-after"] = token_ngrams(after, 1, 2)

        feat["bias"] = 1
        res.append(feat)
    return res


def sequence_attributes(
    elem_features: Sequence[Mapping[str, Any]],
    form_type: str,
    text_before: Optional[Sequence[Optional[str]]] = None,
    text_after: Optional[Sequence[Optional[str]]] = None,
) -> List[AttributeMap]:
    """`sequence_features` followed by conversion to CRF attributes."""
    feats = sequence_features(elem_features, form_type, text_before, text_after)
    return [features_to_attributes(f) for f in feats]


def annotation_sequence(annotation: FormAnnotation, group: int = 0) -> TrainingSequence:
    """Builds a CRF training sequence from a field-annotated form."""
    return TrainingSequence(
        features=sequence_attributes(
            annotation.field_features,
            annotation.form_type or "",
            annotation.field_text_before,
            annotation.field_text_after,
        ),
        labels=list(annotation.field_labels),
        group=group,
    )


class FieldTypeModel:
    """
    Labels the fields of a form with a trained CRF.

    Attributes:
        crf: The underlying CRF model.
    """

    def __init__(self, crf: CRFModel) -> None:
        self.crf = crf

    @property
    def labels(self) -> List[str]:
        return list(self.crf.labels.to_str)

    def classify(
        self,
        elem_features: Sequence[Mapping[str, Any]],
        field_names: Sequence[str],
        form_type: str,
        text_before: Optional[Sequence[Optional[str]]] = None,
        text_after: Optional[Sequence[Optional[str]]] = None,
    ) -> Dict[str, str]:
        """Returns the most likely field type for every named field."""
        if not elem_features:
            return {}
        labels = self.crf.predict(sequence_attributes(elem_features, form_type, text_before, text_after))
        return {name: label for name, label in zip(field_names, labels)}

    def classify_proba(
        self,
        elem_features: Sequence[Mapping[str, Any]],
        field_names: Sequence[str],
        form_type: str,
        text_before: Optional[Sequence[Optional[str]]] = None,
        text_after: Optional[Sequence[Optional[str]]] = None,
    ) -> Dict[str, Dict[str, float]]:
        """Returns a field type distribution for every named field."""
        if not elem_features:
            return {}
        attrs = sequence_attributes(elem_features, form_type, text_before, text_after)
        marginals = self.crf.predict_marginals(attrs)
        return {name: probs for name, probs in zip(field_names, marginals)}

    def to_dict(self) -> Dict[str, Any]:
        return self.crf.to_dict()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldTypeModel":
        return cls(CRFModel.from_dict(data))


def train_field_type(
    sequences: Sequence[TrainingSequence], config: Optional[CRFTrainerConfig] = None
) -> FieldTypeModel:
    """Trains a field-type model on labeled field sequences."""
    return FieldTypeModel(train_crf(sequences, config))
