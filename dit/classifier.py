"""Combined form and field classifier.

`FormFieldClassifier` first predicts the form type, then feeds that type into
the field-type CRF, which labels the form's fields jointly. The pair is
trained from annotations with `train_classifier` and persisted as one JSON
document.
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import Config
from .fieldtype import FieldTypeModel, annotation_sequence, train_field_type
from .formtype import FormTypeModel, train_form_type
from .io_utils import load_model, save_model
from .types import FormAnnotation, FormResult, FormResultProba

__all__ = ["FormFieldClassifier", "train_classifier"]


def _threshold(probs: Dict[str, float], threshold: float) -> Dict[str, float]:
    return {label: p for label, p in probs.items() if p >= threshold}


class FormFieldClassifier:
    """
    Predicts form types and field types.

    Attributes:
        form_model: The form-type model.
        field_model: The field-type model, or None when it was trained without
            any field annotations. Field results are then empty.
    """

    def __init__(self, form_model: FormTypeModel, field_model: Optional[FieldTypeModel] = None) -> None:
        self.form_model = form_model
        self.field_model = field_model

    def classify(self, form: FormAnnotation) -> FormResult:
        """
        Classifies a form and its fields.

        Args:
            form: The form's features. Gold form and field labels are ignored.

        Returns:
            The predicted form type and a field name -> field type map.

        Raises:
            ValueError: If the per-field lists of `form` differ in length.
        """
        form.validate()
        form_type = self.form_model.classify(form.form_features)
        fields: Dict[str, str] = {}
        if self.field_model is not None and form.field_features:
            fields = self.field_model.classify(
                form.field_features, form.field_names, form_type, form.field_text_before, form.field_text_after
            )
        return FormResult(type=form_type, fields=fields)

    def classify_proba(self, form: FormAnnotation, threshold: float = 0.0) -> FormResultProba:
        """
        Returns form-type and field-type probabilities.

        The fields are labeled under the most probable form type. Probabilities
        below `threshold` are left out of the result.
        """
        form.validate()
        form_probs = self.form_model.classify_proba(form.form_features)
        fields: Dict[str, Dict[str, float]] = {}
        if self.field_model is not None and form.field_features and form_probs:
            # first class wins ties, matching classify()
            best = max(self.form_model.classes, key=lambda c: form_probs[c])
            field_probs = self.field_model.classify_proba(
                form.field_features, form.field_names, best, form.field_text_before, form.field_text_after
            )
            fields = {name: _threshold(probs, threshold) for name, probs in field_probs.items()}
        return FormResultProba(type=_threshold(form_probs, threshold), fields=fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "form_model": self.form_model.to_dict(),
            "field_model": self.field_model.to_dict() if self.field_model is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormFieldClassifier":
        if not data.get("form_model"):
            raise ValueError("Model data has no 'form_model'.")
        field_data = data.get("field_model")
        return cls(
            form_model=FormTypeModel.from_dict(data["form_model"]),
            field_model=FieldTypeModel.from_dict(field_data) if field_data else None,
        )

    def save(self, path: str | Path) -> None:
        save_model(self.to_dict(), path)

    @classmethod
    def load(cls, path: str | Path) -> "FormFieldClassifier":
        return cls.from_dict(load_model(path))


def train_classifier(
    annotations: Sequence[FormAnnotation], config: Optional[Config] = None
) -> FormFieldClassifier:
    """
    Trains both models from annotated forms.

    The form model is trained on every form with a form type; the field model
    on every form whose fields are annotated too. Without field annotations
    the field model is omitted.

    Raises:
        ValueError: If there are no annotations, none has a form type, or an
            annotation's per-field lists differ in length.
    """
    cfg = config or Config()
    if not annotations:
        raise ValueError("No annotations to train on.")
    for ann in annotations:
        ann.validate()

    form_annotated = [a for a in annotations if a.form_annotated]
    if not form_annotated:
        raise ValueError("None of the annotations has a form type.")

    if cfg.verbose:
        print(f"Training form-type model on {len(form_annotated)} forms...")
    form_model = train_form_type(
        [a.form_features for a in form_annotated],
        [a.form_type for a in form_annotated],
        cfg.form_type,
        cfg.pipelines,
    )

    field_model: Optional[FieldTypeModel] = None
    field_annotated: List[FormAnnotation] = [a for a in annotations if a.fields_annotated]
    if field_annotated:
        if cfg.verbose:
            print(f"Training field-type model on {len(field_annotated)} forms...")
        field_model = train_field_type([annotation_sequence(a) for a in field_annotated], cfg.field_type)
    else:
        print("Warning: No field annotations found, training the form-type model only.")

    return FormFieldClassifier(form_model, field_model)
