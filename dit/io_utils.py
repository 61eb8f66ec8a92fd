"""Provides utility functions for loading and saving annotations and models.

Annotations are stored as a JSON document with the annotated forms under a
"forms" key. `load_annotations` ignores unknown fields in each form entry so
that annotation files exported with extra metadata still load. Trained models
are plain JSON documents written by `save_model` and read back by
`load_model`.
"""
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Union

from .types import FormAnnotation

PathLike = Union[str, Path]


def load_annotations(path: PathLike) -> List[FormAnnotation]:
    """
    Loads a list of FormAnnotation objects from a JSON file.

    Args:
        path: The path to the annotation JSON file.

    Returns:
        A list of `FormAnnotation` dataclass instances, in file order.

    Raises:
        FileNotFoundError: If the file at the specified path does not exist.
        ValueError: If the file is not valid JSON, or a form has per-field
                    lists (names, labels, surrounding text) whose length
                    differs from its field feature dicts.
        TypeError: If the JSON structure is incorrect (e.g., "forms" key is
                   missing or not a list, or an item in the list is not a
                   dictionary).
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Annotation file not found at: {path}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Error decoding JSON from {path}: {e}")

    items = data.get("forms") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise TypeError(f"Expected a 'forms' key with a list of objects in {path}")

    out = []
    form_fields = FormAnnotation.get_field_names()
    for i, f_dict in enumerate(items):
        if not isinstance(f_dict, dict):
            raise TypeError(f"Form item at index {i} in {path} is not a dictionary.")

        filtered_dict = {k: v for k, v in f_dict.items() if k in form_fields}
        try:
            ann = FormAnnotation(**filtered_dict)
        except TypeError as e:
            raise TypeError(f"Mismatch between JSON object and FormAnnotation at index {i} in {path}: {e}")

        try:
            ann.validate()
        except ValueError as e:
            raise ValueError(f"Form at index {i} in {path} is inconsistent: {e}")
        if not ann.field_names and ann.field_features:
            ann.field_names = [f"field{j}" for j in range(len(ann.field_features))]
        out.append(ann)

    return out


def save_annotations(path: PathLike, annotations: List[FormAnnotation]) -> None:
    """Saves annotations in the format read by `load_annotations`."""
    data = {"forms": [asdict(a) for a in annotations]}
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def save_model(data: Dict[str, Any], path: PathLike) -> None:
    """
    Writes a serialized model to a JSON file, creating parent directories.

    Args:
        data: The model as returned by a `to_dict` method.
        path: The destination path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False)


def load_model(path: PathLike) -> Dict[str, Any]:
    """
    Reads a serialized model from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not valid JSON.
        TypeError: If the root of the file is not a JSON object.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Model file not found at: {path}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Error decoding JSON from {path}: {e}")

    if not isinstance(data, dict):
        raise TypeError(f"Model file {path} must contain a JSON object.")
    return data
