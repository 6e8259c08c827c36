"""
Train the five heart disease classifiers explained by the LIME stage.

Run:
  python src/heart_lime_ml/pipelines/train_models.py

Outputs (under ./outputs/models):
  - <model_key>.joblib
  - metrics.json
  - global_importance.csv
"""

from __future__ import annotations

import argparse
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import joblib
import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.ensemble import RandomForestClassifier
from sklearn.feature_selection import VarianceThreshold
from sklearn.inspection import permutation_importance
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import accuracy_score, log_loss, roc_auc_score
from sklearn.neural_network import MLPClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler
from sklearn.svm import SVC
from sklearn.tree import DecisionTreeClassifier

from heart_lime_ml.explain.models import native_global_importance
from heart_lime_ml.pipelines.heart_data import (
    CATEGORICAL_COLS,
    DEFAULT_SPLIT_SEED,
    DEFAULT_TEST_SIZE,
    POSITIVE_LABEL,
    HeartSplit,
    load_heart_dataset,
    split_dataset,
)
from heart_lime_ml.pipelines.paths import project_root, resolve_data_path

LOGGER = logging.getLogger(__name__)

MODEL_KEYS = ["decision_tree", "random_forest", "svm", "neural_network", "logistic"]
IMPORTANCE_METHODS = {"native", "permutation"}


@dataclass(frozen=True)
class ModelSpec:
    name: str
    key: str
    scale_numeric: bool
    build: Callable[[], object]


@dataclass
class TrainedModel:
    spec: ModelSpec
    pipeline: Pipeline
    metrics: dict[str, float]
    global_importance: dict[str, float]


def parse_model_list(raw: str) -> list[str]:
    models: list[str] = []
    for m in raw.split(","):
        key = m.strip().lower()
        if key and key not in models:
            models.append(key)
    if not models:
        raise ValueError("At least one model must be provided.")
    return models


def build_model_specs(model_names: list[str], random_state: int) -> list[ModelSpec]:
    """Tree, forest, RBF SVM, MLP network and logistic families, in that order."""
    unknown = [m for m in model_names if m not in MODEL_KEYS]
    if unknown:
        raise ValueError(f"Unsupported model names: {unknown}. Supported: {MODEL_KEYS}")

    catalog = {
        "decision_tree": ModelSpec(
            name="DecisionTree",
            key="decision_tree",
            scale_numeric=False,
            build=lambda rs=random_state: DecisionTreeClassifier(max_depth=5, min_samples_leaf=5, random_state=rs),
        ),
        "random_forest": ModelSpec(
            name="RandomForest",
            key="random_forest",
            scale_numeric=False,
            build=lambda rs=random_state: RandomForestClassifier(
                n_estimators=500,
                min_samples_leaf=2,
                random_state=rs,
                n_jobs=-1,
            ),
        ),
        "svm": ModelSpec(
            name="SVM",
            key="svm",
            scale_numeric=True,
            build=lambda rs=random_state: SVC(kernel="rbf", C=1.0, probability=True, random_state=rs),
        ),
        "neural_network": ModelSpec(
            name="NeuralNetwork",
            key="neural_network",
            scale_numeric=True,
            build=lambda rs=random_state: MLPClassifier(
                hidden_layer_sizes=(16,),
                alpha=1e-3,
                max_iter=2000,
                random_state=rs,
            ),
        ),
        "logistic": ModelSpec(
            name="Logistic",
            key="logistic",
            scale_numeric=True,
            build=lambda: LogisticRegression(max_iter=1000),
        ),
    }
    return [catalog[m] for m in model_names]


def build_preprocessor(x: pd.DataFrame, scale_numeric: bool) -> ColumnTransformer:
    categorical_cols = [c for c in x.columns if c in CATEGORICAL_COLS or not pd.api.types.is_numeric_dtype(x[c])]
    numeric_cols = [c for c in x.columns if c not in categorical_cols]

    return ColumnTransformer(
        transformers=[
            ("cat", OneHotEncoder(handle_unknown="ignore", sparse_output=False), categorical_cols),
            ("num", StandardScaler() if scale_numeric else "passthrough", numeric_cols),
        ],
        remainder="drop",
    )


def build_pipeline(spec: ModelSpec, x_train: pd.DataFrame) -> Pipeline:
    return Pipeline(
        steps=[
            ("preprocess", build_preprocessor(x_train, spec.scale_numeric)),
            ("zero_variance", VarianceThreshold(threshold=0.0)),
            ("model", spec.build()),
        ]
    )


def _metrics(y_true: pd.Series, proba: np.ndarray, classes: list[Any]) -> dict[str, float]:
    pos_idx = classes.index(POSITIVE_LABEL) if POSITIVE_LABEL in classes else proba.shape[1] - 1
    y_pred = np.asarray(classes)[np.argmax(proba, axis=1)]
    out = {
        "accuracy": float(accuracy_score(y_true, y_pred)),
        "log_loss": float(log_loss(y_true, proba, labels=classes)),
    }
    if pd.Series(y_true).nunique() > 1:
        out["roc_auc"] = float(roc_auc_score((np.asarray(y_true) == classes[pos_idx]).astype(int), proba[:, pos_idx]))
    else:
        out["roc_auc"] = float("nan")
    return out


def permutation_global_importance(
    pipeline: Pipeline,
    x: pd.DataFrame,
    y: pd.Series,
    seed: int,
    n_repeats: int = 8,
) -> dict[str, float]:
    perm = permutation_importance(
        pipeline,
        x,
        y,
        n_repeats=n_repeats,
        random_state=seed,
        scoring="roc_auc",
        n_jobs=-1,
    )
    return {str(f): max(0.0, float(v)) for f, v in zip(x.columns, perm.importances_mean, strict=True)}


def global_importance_for(
    pipeline: Pipeline,
    split: HeartSplit,
    method: str,
    seed: int,
) -> dict[str, float]:
    if method not in IMPORTANCE_METHODS:
        raise ValueError(f"Unsupported importance method: {method}. Supported: {sorted(IMPORTANCE_METHODS)}")
    if method == "permutation":
        return permutation_global_importance(pipeline, split.x_test, split.y_test, seed)
    return native_global_importance(pipeline, list(split.x_train.columns))


def train_models(
    split: HeartSplit,
    model_names: list[str],
    *,
    seed: int = DEFAULT_SPLIT_SEED,
    importance_method: str = "native",
) -> dict[str, TrainedModel]:
    trained: dict[str, TrainedModel] = {}
    for spec in build_model_specs(model_names, seed):
        LOGGER.info("Training %s", spec.name)
        pipeline = build_pipeline(spec, split.x_train)
        pipeline.fit(split.x_train, split.y_train)

        classes = [c.item() if isinstance(c, np.generic) else c for c in pipeline.classes_]
        metrics = _metrics(split.y_test, pipeline.predict_proba(split.x_test), classes)
        importance = global_importance_for(pipeline, split, importance_method, seed)
        LOGGER.info(
            "%s holdout | accuracy=%.4f roc_auc=%.4f | %d global importances",
            spec.name,
            metrics["accuracy"],
            metrics["roc_auc"],
            len(importance),
        )
        trained[spec.key] = TrainedModel(spec=spec, pipeline=pipeline, metrics=metrics, global_importance=importance)
    return trained


def importance_frame(trained: dict[str, TrainedModel]) -> pd.DataFrame:
    rows = []
    for key, tm in trained.items():
        for feature, value in sorted(tm.global_importance.items(), key=lambda kv: -kv[1]):
            rows.append({"model_key": key, "model": tm.spec.name, "feature": feature, "importance": value})
    return pd.DataFrame(rows, columns=["model_key", "model", "feature", "importance"])


def save_artifacts(out_dir: Path, trained: dict[str, TrainedModel], config: dict[str, Any]) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    for key, tm in trained.items():
        joblib.dump(tm.pipeline, out_dir / f"{key}.joblib")

    payload = {
        "config": config,
        "metrics": {key: tm.metrics for key, tm in trained.items()},
    }
    with (out_dir / "metrics.json").open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, allow_nan=True)

    importance_frame(trained).to_csv(out_dir / "global_importance.csv", index=False)


def load_trained_models(
    models_dir: Path,
    split: HeartSplit,
    model_names: list[str],
    *,
    seed: int = DEFAULT_SPLIT_SEED,
    importance_method: str = "native",
) -> dict[str, TrainedModel] | None:
    """Reload persisted pipelines; ``None`` when any requested model file is missing."""
    paths = {key: models_dir / f"{key}.joblib" for key in model_names}
    if not all(p.exists() for p in paths.values()):
        return None

    trained: dict[str, TrainedModel] = {}
    for spec in build_model_specs(model_names, seed):
        pipeline = joblib.load(paths[spec.key])
        classes = [c.item() if isinstance(c, np.generic) else c for c in pipeline.classes_]
        metrics = _metrics(split.y_test, pipeline.predict_proba(split.x_test), classes)
        importance = global_importance_for(pipeline, split, importance_method, seed)
        trained[spec.key] = TrainedModel(spec=spec, pipeline=pipeline, metrics=metrics, global_importance=importance)
    LOGGER.info("Loaded %d persisted models from %s", len(trained), models_dir)
    return trained


def parse_args() -> argparse.Namespace:
    root = project_root()
    parser = argparse.ArgumentParser(description="Train the five heart disease classifiers")
    parser.add_argument("--data-path", type=Path, default=None)
    parser.add_argument("--out-dir", type=Path, default=root / "outputs" / "models")
    parser.add_argument("--models", type=str, default=",".join(MODEL_KEYS))
    parser.add_argument("--seed", type=int, default=DEFAULT_SPLIT_SEED)
    parser.add_argument("--test-size", type=float, default=DEFAULT_TEST_SIZE)
    parser.add_argument("--importance-method", type=str, default="native", choices=sorted(IMPORTANCE_METHODS))
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    args = parse_args()
    data_path = resolve_data_path(args.data_path)
    model_names = parse_model_list(args.models)

    LOGGER.info("Loading dataset from %s", data_path)
    split = split_dataset(load_heart_dataset(data_path), test_size=args.test_size, seed=args.seed)
    trained = train_models(split, model_names, seed=args.seed, importance_method=args.importance_method)

    LOGGER.info("Saving artifacts to %s", args.out_dir)
    save_artifacts(
        args.out_dir,
        trained,
        config={
            "data_path": str(data_path),
            "models": model_names,
            "seed": args.seed,
            "test_size": args.test_size,
            "importance_method": args.importance_method,
        },
    )


if __name__ == "__main__":
    main()
