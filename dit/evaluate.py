"""Grouped k-fold cross-validation of the form and field models.

Forms from the same website tend to share markup, so folds are built per
registrable domain: every form of a domain lands in the same fold and a model
is never tested on a site it was trained on. Predictions of all folds are
collected in pandas DataFrames (one row per form for the form model, one row
per field sequence for the field model) and the accuracies are computed from
them.
"""
from __future__ import annotations
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

import pandas as pd
import tldextract
from tqdm import tqdm

from .config import Config
from .fieldtype import annotation_sequence, train_field_type
from .formtype import train_form_type
from .types import EvalResult, FormAnnotation

__all__ = [
    "get_domain",
    "domain_groups",
    "group_k_fold",
    "evaluate_form_type",
    "evaluate_field_type",
    "summarize",
    "evaluate",
]

# bundled public suffix snapshot only, never fetch it over the network
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())


def get_domain(url: str) -> str:
    """
    Returns the registrable domain label of a URL.

    ``https://www.example.co.uk/login`` gives ``example``. Hosts without a
    public suffix (``localhost``, IP addresses) are returned unchanged.
    """
    host = urlsplit(url if "://" in url else f"//{url}").hostname or ""
    ext = _EXTRACT(host)
    if not ext.suffix or not ext.domain:
        return host
    return ext.domain


def domain_groups(urls: Sequence[str]) -> List[int]:
    """Maps each URL to an integer group id, assigned in first-seen domain order."""
    ids: Dict[str, int] = {}
    groups = []
    for url in urls:
        groups.append(ids.setdefault(get_domain(url), len(ids)))
    return groups


def group_k_fold(groups: Sequence[int], n_folds: int) -> List[List[int]]:
    """
    Splits item indices into folds without splitting any group.

    The sorted distinct groups are dealt round-robin into
    ``min(n_folds, number of groups)`` folds.

    Returns:
        For every fold, the indices of its items in ascending order.
    """
    unique = sorted(set(groups))
    n_folds = min(n_folds, len(unique))
    if n_folds <= 0:
        return []
    fold_of = {g: i % n_folds for i, g in enumerate(unique)}
    folds: List[List[int]] = [[] for _ in range(n_folds)]
    for idx, g in enumerate(groups):
        folds[fold_of[g]].append(idx)
    return folds


def _split(n: int, test_idx: Sequence[int]) -> List[int]:
    test = set(test_idx)
    return [i for i in range(n) if i not in test]


def evaluate_form_type(annotations: Sequence[FormAnnotation], cfg: Config) -> pd.DataFrame:
    """
    Cross-validates the form-type model.

    Returns:
        One row per form with columns ``fold``, ``index``, ``url``, ``gold``,
        ``pred`` and ``correct``.
    """
    forms = [a for a in annotations if a.form_annotated]
    groups = domain_groups([a.url for a in forms])
    folds = group_k_fold(groups, cfg.folds)

    rows = []
    for fold, test_idx in enumerate(tqdm(folds, desc="Form folds", disable=not cfg.verbose)):
        train_idx = _split(len(forms), test_idx)
        if not train_idx:
            print(f"Warning: Fold {fold} leaves no forms to train on, skipping it.")
            continue
        model = train_form_type(
            [forms[i].form_features for i in train_idx],
            [forms[i].form_type for i in train_idx],
            cfg.form_type,
            cfg.pipelines,
        )
        for i in test_idx:
            pred = model.classify(forms[i].form_features)
            rows.append({
                "fold": fold,
                "index": i,
                "url": forms[i].url,
                "gold": forms[i].form_type,
                "pred": pred,
                "correct": pred == forms[i].form_type,
            })
    return pd.DataFrame(rows, columns=["fold", "index", "url", "gold", "pred", "correct"])


def evaluate_field_type(annotations: Sequence[FormAnnotation], cfg: Config) -> pd.DataFrame:
    """
    Cross-validates the field-type model, using gold form types as input.

    Returns:
        One row per form with columns ``fold``, ``index``, ``url``,
        ``n_fields``, ``n_correct`` and ``all_correct``.
    """
    forms = [a for a in annotations if a.fields_annotated]
    sequences = [annotation_sequence(a) for a in forms]
    groups = domain_groups([a.url for a in forms])
    folds = group_k_fold(groups, cfg.folds)

    rows = []
    for fold, test_idx in enumerate(tqdm(folds, desc="Field folds", disable=not cfg.verbose)):
        train_idx = _split(len(sequences), test_idx)
        if not train_idx:
            print(f"Warning: Fold {fold} leaves no field sequences to train on, skipping it.")
            continue
        model = train_field_type([sequences[i] for i in train_idx], cfg.field_type)
        for i in test_idx:
            seq = sequences[i]
            pred = model.crf.predict(seq.features)
            n_correct = sum(1 for p, g in zip(pred, seq.labels) if p == g)
            rows.append({
                "fold": fold,
                "index": i,
                "url": forms[i].url,
                "n_fields": len(seq.labels),
                "n_correct": n_correct,
                "all_correct": n_correct == len(seq.labels),
            })
    return pd.DataFrame(rows, columns=["fold", "index", "url", "n_fields", "n_correct", "all_correct"])


def summarize(form_df: pd.DataFrame, field_df: pd.DataFrame) -> EvalResult:
    """Computes accuracies and counts from the prediction tables."""
    result = EvalResult()
    if not form_df.empty:
        result.form_correct = int(form_df["correct"].sum())
        result.form_total = len(form_df)
        result.form_accuracy = float(form_df["correct"].mean())
    if not field_df.empty:
        result.field_correct = int(field_df["n_correct"].sum())
        result.field_total = int(field_df["n_fields"].sum())
        if result.field_total > 0:
            result.field_accuracy = result.field_correct / result.field_total
        result.sequence_correct = int(field_df["all_correct"].sum())
        result.sequence_total = len(field_df)
        result.sequence_accuracy = float(field_df["all_correct"].mean())
    return result


def evaluate(
    annotations: Sequence[FormAnnotation],
    config: Optional[Config] = None,
    return_predictions: bool = False,
) -> EvalResult | Tuple[EvalResult, pd.DataFrame, pd.DataFrame]:
    """
    Runs grouped k-fold cross-validation for both models.

    Args:
        annotations: Annotated forms. Forms without a form type are skipped;
            the field model only sees forms whose fields are annotated.
        config: Settings for both trainers and the number of folds.
        return_predictions: Also return the form and field prediction tables.

    Returns:
        An `EvalResult`, or ``(result, form_predictions, field_predictions)``
        when `return_predictions` is set.

    Raises:
        ValueError: If there are no annotations or an annotation's per-field
            lists differ in length.
    """
    cfg = config or Config()
    if not annotations:
        raise ValueError("No annotations to evaluate on.")
    for ann in annotations:
        ann.validate()

    form_df = evaluate_form_type(annotations, cfg)
    field_df = evaluate_field_type(annotations, cfg)
    result = summarize(form_df, field_df)
    if return_predictions:
        return result, form_df, field_df
    return result
