import json

import pytest

from heart_lime_ml.explain.config import DEFAULT_NUM_PERTURBATIONS, ExplainerConfig, load_config


def test_defaults() -> None:
    cfg = ExplainerConfig()
    assert cfg.num_perturbations == DEFAULT_NUM_PERTURBATIONS
    assert cfg.num_features_to_select == 5
    assert cfg.kernel_bandwidth is None
    assert cfg.labels_to_explain == (1,)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"num_perturbations": 1},
        {"num_features_to_select": 0},
        {"num_bins": 1},
        {"kernel_bandwidth": 0.0},
        {"blackbox_retries": -1},
        {"labels_to_explain": ()},
    ],
)
def test_invalid_values_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        ExplainerConfig(**kwargs)


def test_from_mapping_rejects_unknown_keys() -> None:
    with pytest.raises(ValueError, match="Unknown explainer option"):
        ExplainerConfig.from_mapping({"num_samples": 10})


def test_load_config_applies_overrides(tmp_path) -> None:
    path = tmp_path / "explainer.json"
    path.write_text(json.dumps({"num_perturbations": 800, "labels_to_explain": [0, 1]}), encoding="utf-8")

    cfg = load_config(path, random_seed=7, kernel_bandwidth=None)

    assert cfg.num_perturbations == 800
    assert cfg.labels_to_explain == (0, 1)
    assert cfg.random_seed == 7
    assert cfg.to_dict()["labels_to_explain"] == [0, 1]


def test_load_config_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.json")

    path = tmp_path / "list.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)
