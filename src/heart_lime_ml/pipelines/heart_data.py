"""Heart disease dataset loading, renaming and train/test split."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import pandas as pd
from sklearn.model_selection import train_test_split

from heart_lime_ml.explain.contracts import Instance

TARGET_COL = "HeartDisease"
POSITIVE_LABEL = 1

RAW_TO_READABLE = {
    "age": "Age",
    "sex": "Sex",
    "cp": "ChestPainType",
    "trestbps": "RestingBP",
    "chol": "Cholesterol",
    "fbs": "FastingBS",
    "restecg": "RestingECG",
    "thalach": "MaxHR",
    "exang": "ExerciseAngina",
    "oldpeak": "Oldpeak",
    "slope": "Slope",
    "ca": "NumMajorVessels",
    "thal": "Thalassemia",
    "target": TARGET_COL,
}
CATEGORICAL_COLS = ["Sex", "ChestPainType", "RestingECG", "ExerciseAngina", "Thalassemia"]
FEATURE_COLS = [c for c in RAW_TO_READABLE.values() if c != TARGET_COL]

DEFAULT_SPLIT_SEED = 123
DEFAULT_TEST_SIZE = 0.3
DEFAULT_N_CASES = 5


@dataclass
class HeartSplit:
    x_train: pd.DataFrame
    x_test: pd.DataFrame
    y_train: pd.Series
    y_test: pd.Series


def clean_columns(cols: Sequence[object]) -> list[str]:
    return [" ".join(str(col).strip().split()) for col in cols]


def rename_heart_columns(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out.columns = clean_columns(list(out.columns))
    out = out.rename(columns=RAW_TO_READABLE)

    missing = [c for c in FEATURE_COLS + [TARGET_COL] if c not in out.columns]
    if missing:
        raise ValueError(f"Missing required column(s): {missing}")

    out = out[FEATURE_COLS + [TARGET_COL]].copy()
    for col in CATEGORICAL_COLS:
        out[col] = out[col].astype(str).str.strip()
    for col in [c for c in FEATURE_COLS if c not in CATEGORICAL_COLS]:
        out[col] = pd.to_numeric(out[col], errors="coerce")
    out[TARGET_COL] = pd.to_numeric(out[TARGET_COL], errors="coerce")
    out = out.dropna().reset_index(drop=True)
    out[TARGET_COL] = out[TARGET_COL].astype(int)
    return out


def load_heart_dataset(data_path: Path) -> pd.DataFrame:
    if not data_path.exists():
        raise FileNotFoundError(f"Missing dataset: {data_path}")
    return rename_heart_columns(pd.read_csv(data_path))


def split_dataset(
    df: pd.DataFrame,
    *,
    test_size: float = DEFAULT_TEST_SIZE,
    seed: int = DEFAULT_SPLIT_SEED,
) -> HeartSplit:
    if TARGET_COL not in df.columns:
        raise ValueError(f"Target column not found: {TARGET_COL}")
    x = df.drop(columns=[TARGET_COL])
    y = df[TARGET_COL]
    x_train, x_test, y_train, y_test = train_test_split(
        x,
        y,
        test_size=test_size,
        random_state=seed,
        stratify=y,
    )
    return HeartSplit(x_train=x_train, x_test=x_test, y_train=y_train, y_test=y_test)


def sample_cases(x_test: pd.DataFrame, n_cases: int = DEFAULT_N_CASES, seed: int = DEFAULT_SPLIT_SEED) -> list[Instance]:
    """Pick the test rows to explain; ids are the original row indices."""
    if x_test.empty:
        raise ValueError("No test rows available to sample cases from.")
    picked = x_test.sample(n=min(n_cases, len(x_test)), random_state=seed)
    return [Instance.from_series(row, instance_id=f"row_{idx}") for idx, row in picked.iterrows()]
