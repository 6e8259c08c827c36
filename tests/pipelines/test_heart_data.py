from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from heart_lime_ml.explain.contracts import Instance
from heart_lime_ml.pipelines.heart_data import (
    CATEGORICAL_COLS,
    FEATURE_COLS,
    TARGET_COL,
    clean_columns,
    load_heart_dataset,
    rename_heart_columns,
    sample_cases,
    split_dataset,
)


def _raw_heart(n: int = 100, seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    oldpeak = rng.uniform(0.0, 4.0, size=n)
    thalach = rng.normal(150, 20, size=n)
    return pd.DataFrame(
        {
            "age": rng.integers(30, 77, size=n),
            "sex": rng.integers(0, 2, size=n),
            "cp": rng.integers(0, 4, size=n),
            "trestbps": rng.normal(130, 15, size=n).round(),
            "chol": rng.normal(245, 45, size=n).round(),
            "fbs": rng.integers(0, 2, size=n),
            "restecg": rng.integers(0, 3, size=n),
            "thalach": thalach.round(),
            "exang": rng.integers(0, 2, size=n),
            "oldpeak": oldpeak.round(1),
            "slope": rng.integers(0, 3, size=n),
            "ca": rng.integers(0, 4, size=n),
            "thal": rng.integers(1, 4, size=n),
            "target": (oldpeak + (150 - thalach) / 20 + rng.normal(0, 0.5, size=n) > 2.0).astype(int),
        }
    )


def test_clean_columns_normalizes_whitespace() -> None:
    assert clean_columns(["  age ", "max\thr", "x"]) == ["age", "max hr", "x"]


def test_rename_heart_columns_maps_readable_names_and_types() -> None:
    out = rename_heart_columns(_raw_heart(20))

    assert list(out.columns) == FEATURE_COLS + [TARGET_COL]
    for col in CATEGORICAL_COLS:
        assert out[col].map(type).eq(str).all()
    assert pd.api.types.is_numeric_dtype(out["Oldpeak"])
    assert out[TARGET_COL].dtype.kind == "i"


def test_rename_heart_columns_drops_unparseable_rows() -> None:
    raw = _raw_heart(10)
    raw["chol"] = raw["chol"].astype(object)
    raw.loc[3, "chol"] = "?"

    out = rename_heart_columns(raw)
    assert len(out) == 9


def test_rename_heart_columns_requires_all_fields() -> None:
    with pytest.raises(ValueError, match="Missing required column"):
        rename_heart_columns(_raw_heart(10).drop(columns=["thal"]))


def test_load_heart_dataset_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_heart_dataset(tmp_path / "heart.csv")


def test_split_is_stratified_and_reproducible() -> None:
    df = rename_heart_columns(_raw_heart(100))

    first = split_dataset(df, test_size=0.3, seed=123)
    second = split_dataset(df, test_size=0.3, seed=123)

    assert len(first.x_test) == 30
    assert len(first.x_train) == 70
    assert TARGET_COL not in first.x_train.columns
    assert first.x_test.index.equals(second.x_test.index)
    assert abs(first.y_train.mean() - first.y_test.mean()) < 0.1


def test_sample_cases_returns_instances_with_row_ids() -> None:
    split = split_dataset(rename_heart_columns(_raw_heart(100)))

    cases = sample_cases(split.x_test, n_cases=5, seed=123)

    assert len(cases) == 5
    assert all(isinstance(c, Instance) for c in cases)
    assert all(c.instance_id.startswith("row_") for c in cases)
    assert cases[0].feature_names == tuple(FEATURE_COLS)
    assert [c.instance_id for c in sample_cases(split.x_test, n_cases=5, seed=123)] == [c.instance_id for c in cases]


def test_sample_cases_caps_at_available_rows() -> None:
    split = split_dataset(rename_heart_columns(_raw_heart(20)))
    assert len(sample_cases(split.x_test, n_cases=50)) == len(split.x_test)
