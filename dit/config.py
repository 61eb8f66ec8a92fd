"""Manages the loading of training and evaluation configuration.

This module defines the typed configuration dataclasses passed into the two
trainers (`LogRegConfig` for the form-type classifier, `CRFTrainerConfig` for
the field-type CRF) and the top-level `Config` that bundles them with the
evaluation settings and the form feature pipelines. `load_config` reads all
of it from a `config.yaml` file; any value missing from the file falls back to
the dataclass default.
"""
from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Tuple
import yaml

from .types import PipelineSpec


@dataclass
class LogRegConfig:
    """
    Hyperparameters for the multinomial logistic regression trainer.

    Attributes:
        C: Inverse L2 regularization strength (the penalty is ``0.5/C*||W||^2``).
        max_iter: Maximum number of L-BFGS iterations.
        tol: Convergence threshold on the largest absolute gradient component.
        memory_size: Number of L-BFGS curvature pairs.
        max_linesearch: Step halvings tried before the line search gives up.
        verbose: Show a progress bar and the final loss.
    """
    C: float = 5.0
    max_iter: int = 100
    tol: float = 1e-5
    memory_size: int = 10
    max_linesearch: int = 20
    verbose: bool = False


@dataclass
class CRFTrainerConfig:
    """
    Hyperparameters for the OWL-QN CRF trainer.

    The default regularization constants are tuned for field-type labeling.

    Attributes:
        c1: L1 regularization coefficient.
        c2: L2 regularization coefficient.
        max_iterations: Maximum number of OWL-QN iterations.
        epsilon: Convergence threshold on the largest pseudo-gradient component.
        memory_size: Number of L-BFGS curvature pairs.
        armijo: Sufficient-decrease constant of the backtracking line search.
        max_linesearch: Step halvings tried before the line search gives up.
        verbose: Show a progress bar and per-iteration objective values.
    """
    c1: float = 0.1655
    c2: float = 0.0236
    max_iterations: int = 100
    epsilon: float = 1e-5
    memory_size: int = 10
    armijo: float = 1e-4
    max_linesearch: int = 20
    verbose: bool = False


@dataclass
class Config:
    """
    Top-level configuration for training, evaluation and classification.

    Attributes:
        form_type: Logistic regression settings for the form-type model.
        field_type: CRF settings for the field-type model.
        folds: Number of cross-validation folds used by evaluation.
        pipelines: Form feature pipelines; None selects the built-in defaults.
        paths: Named file locations (e.g. ``model``, ``data``).
        verbose: Print progress while training and evaluating.
    """
    form_type: LogRegConfig = field(default_factory=LogRegConfig)
    field_type: CRFTrainerConfig = field(default_factory=CRFTrainerConfig)
    folds: int = 10
    pipelines: Optional[Tuple[PipelineSpec, ...]] = None
    paths: Dict[str, str] = field(default_factory=dict)
    verbose: bool = False


def _as_bool(value: Any, key: str, path: str) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"'{key}' in {path} must be true or false, got {value!r}.")
    return value


def _build(cls, section: Any, path: str, verbose: bool):
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise TypeError(f"Section '{cls.__name__}' in {path} must be a dictionary.")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        print(f"Warning: Ignoring unknown {cls.__name__} keys in {path}: {', '.join(unknown)}")
    defaults = cls()
    values = {}
    for key, value in section.items():
        if key not in known:
            continue
        # PyYAML reads "1e-5" as a string, so cast to the default's type
        default = getattr(defaults, key)
        if isinstance(default, bool):
            values[key] = _as_bool(value, key, path)
        elif isinstance(default, int):
            values[key] = int(value)
        else:
            values[key] = float(value)
    values.setdefault("verbose", verbose)
    return cls(**values)


def config_from_dict(y: Mapping[str, Any], path: str = "<dict>") -> Config:
    """Builds a `Config` from an already-parsed mapping."""
    verbose = _as_bool(y.get("verbose", False), "verbose", path)
    pipelines = y.get("pipelines")
    if pipelines is not None:
        if not isinstance(pipelines, list):
            raise TypeError(f"'pipelines' in {path} must be a list of mappings.")
        pipelines = tuple(PipelineSpec.from_dict(p) for p in pipelines)

    return Config(
        form_type=_build(LogRegConfig, y.get("form_type"), path, verbose),
        field_type=_build(CRFTrainerConfig, y.get("field_type"), path, verbose),
        folds=int((y.get("evaluation") or {}).get("folds", 10)),
        pipelines=pipelines,
        paths=dict(y.get("paths") or {}),
        verbose=verbose,
    )


def load_config(path: str = "config.yaml") -> Config:
    """
    Loads the YAML configuration file into a `Config` object.

    Args:
        path: The path to the configuration YAML file.

    Returns:
        A fully populated `Config` object.

    Raises:
        FileNotFoundError: If the specified file cannot be found.
        ValueError: If the file is not valid YAML.
        TypeError: If the root of the file, or one of its sections, is not a
                   dictionary, or a boolean setting is not true/false.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            y = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found at: {path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML file at {path}: {e}")

    if y is None:
        y = {}
    if not isinstance(y, dict):
        raise TypeError(f"Configuration file {path} must be a dictionary.")

    return config_from_dict(y, path)
