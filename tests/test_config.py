from pathlib import Path

import pytest

from dit.config import Config, CRFTrainerConfig, LogRegConfig, config_from_dict, load_config


def test_load_config_overrides_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
form_type:
  C: 2.5
  max_iter: 50
field_type:
  c1: 0.2
  epsilon: 1e-4
evaluation:
  folds: 5
pipelines:
  - name: submit text
    extractor_type: SubmitText
    vec_type: count
    ngram_range: [1, 2]
paths:
  model: models/model.json
verbose: true
""".strip(),
        encoding="utf-8",
    )

    cfg = load_config(str(config_path))

    assert cfg.form_type.C == 2.5
    assert cfg.form_type.max_iter == 50
    assert cfg.form_type.tol == LogRegConfig().tol
    assert cfg.field_type.c1 == 0.2
    assert cfg.field_type.epsilon == pytest.approx(1e-4)
    assert cfg.field_type.c2 == CRFTrainerConfig().c2
    assert cfg.folds == 5
    assert cfg.pipelines[0].ngram_range == (1, 2)
    assert cfg.pipelines[0].vec_type == "count"
    assert cfg.paths["model"] == "models/model.json"
    assert cfg.verbose and cfg.form_type.verbose and cfg.field_type.verbose


def test_empty_config_uses_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("", encoding="utf-8")
    cfg = load_config(str(config_path))
    assert cfg == Config()


def test_unknown_keys_are_ignored_with_warning(capsys) -> None:
    cfg = config_from_dict({"form_type": {"C": 1, "learning_rate": 0.1}})
    assert cfg.form_type.C == 1.0
    assert "learning_rate" in capsys.readouterr().out


def test_load_config_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))


def test_load_config_rejects_non_dict_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- not a mapping", encoding="utf-8")
    with pytest.raises(TypeError):
        load_config(str(config_path))


def test_load_config_rejects_invalid_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("form_type: [unclosed", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(config_path))


def test_repository_config_loads() -> None:
    cfg = load_config(str(Path(__file__).resolve().parents[1] / "config.yaml"))
    assert cfg.field_type.c1 == pytest.approx(0.1655)
    assert cfg.form_type.tol == pytest.approx(1e-5)
    assert cfg.pipelines is None


@pytest.mark.parametrize(
    "data",
    [
        {"verbose": "false"},
        {"field_type": {"verbose": "no"}},
        {"pipelines": [{"name": "x", "extractor_type": "X", "vec_type": "count", "binary": "false"}]},
    ],
)
def test_non_boolean_flags_are_rejected(data) -> None:
    with pytest.raises(TypeError):
        config_from_dict(data)


def test_quoted_boolean_in_yaml_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text('verbose: "false"\n', encoding="utf-8")
    with pytest.raises(TypeError, match="verbose"):
        load_config(str(config_path))
