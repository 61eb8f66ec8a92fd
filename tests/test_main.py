"""Smoke tests for the command-line entrypoints.

Train a model from a small annotation file, classify with it through
``main.py`` and run the cross-validation script, all on temporary files.
"""
from __future__ import annotations

import importlib
import json
import sys
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def restore_argv():
    original = sys.argv[:]
    try:
        yield
    finally:
        sys.argv = original


def _write_workspace(tmp_path: Path) -> Path:
    forms = []
    for i in range(3):
        forms.append({
            "url": f"https://site{i}.com/login",
            "form_type": "login",
            "form_features": {"form elements": {"input-password": 1}, "submit text": "Log in"},
            "field_names": ["user", "pass"],
            "field_features": [{"type": "text"}, {"type": "password"}],
            "field_labels": ["username", "password"],
        })
        forms.append({
            "url": f"https://other{i}.com/",
            "form_type": "search",
            "form_features": {"form elements": {"input-text": 1}, "submit text": "Search"},
            "field_names": ["q"],
            "field_features": [{"type": "search"}],
            "field_labels": ["search query"],
        })
    (tmp_path / "annotations.json").write_text(json.dumps({"forms": forms}), encoding="utf-8")

    config = tmp_path / "config.yaml"
    config.write_text(
        """
field_type:
  c1: 0.01
  c2: 0.01
  max_iterations: 50
evaluation:
  folds: 3
paths:
  data: annotations.json
  model: models/model.json
""".strip(),
        encoding="utf-8",
    )
    return config


def test_main_requires_input_arguments():
    sys.argv = ["main"]
    with pytest.raises(SystemExit):
        main_module = importlib.import_module("main")
        main_module.main()


def test_main_reports_missing_model(tmp_path: Path, capsys):
    config = _write_workspace(tmp_path)
    sys.argv = ["main", "--input", str(tmp_path / "annotations.json"), "--config", str(config)]

    main_module = importlib.import_module("main")
    with pytest.raises(SystemExit) as exc:
        main_module.main()
    assert exc.value.code == 1
    assert "Model file not found" in capsys.readouterr().err


def test_train_then_classify(tmp_path: Path):
    config = _write_workspace(tmp_path)

    sys.argv = ["train_model", "--config", str(config)]
    importlib.import_module("scripts.train_model").main()
    assert (tmp_path / "models" / "model.json").exists()

    output = tmp_path / "results.json"
    sys.argv = [
        "main",
        "--input", str(tmp_path / "annotations.json"),
        "--output", str(output),
        "--config", str(config),
    ]
    importlib.import_module("main").main()

    results = json.loads(output.read_text(encoding="utf-8"))
    assert len(results) == 6
    assert results[0] == {"type": "login", "fields": {"user": "username", "pass": "password"}}
    assert results[1]["type"] == "search"

    sys.argv = sys.argv + ["--proba", "--threshold", "0.2"]
    importlib.import_module("main").main()
    proba = json.loads(output.read_text(encoding="utf-8"))
    assert proba[0]["type"]["login"] > 0.5
    assert all(p >= 0.2 for p in proba[0]["type"].values())


def test_evaluate_script_writes_reports(tmp_path: Path, capsys):
    config = _write_workspace(tmp_path)
    disagreements = tmp_path / "reports" / "disagreements.csv"
    fields = tmp_path / "reports" / "fields.csv"
    sys.argv = [
        "evaluate_model",
        "--data", str(tmp_path / "annotations.json"),
        "--config", str(config),
        "--disagreements-out", str(disagreements),
        "--fields-out", str(fields),
    ]
    importlib.import_module("scripts.evaluate_model").main()

    out = capsys.readouterr().out
    assert "Form accuracy:" in out
    assert "Sequence accuracy:" in out
    assert disagreements.exists()
    assert fields.read_text(encoding="utf-8").startswith("fold,index,url,n_fields,n_correct,all_correct")
