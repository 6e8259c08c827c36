"""Black-box capability and the scikit-learn adapter behind it."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import numpy as np
import pandas as pd
from sklearn.pipeline import Pipeline

from heart_lime_ml.explain.contracts import Instance, instances_to_frame

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class BlackBoxModel(Protocol):
    """Anything that maps a batch of instances to per-class probabilities.

    ``predict`` receives a DataFrame whose rows are instances in feature order
    and must return an array of shape ``(n_rows, len(classes))``. Implementations
    must tolerate concurrent calls.
    """

    name: str

    @property
    def classes(self) -> Sequence[Any]: ...

    def predict(self, batch: pd.DataFrame) -> np.ndarray: ...


class SklearnClassifierModel:
    """Adapter for any fitted sklearn classifier or pipeline exposing ``predict_proba``."""

    def __init__(self, estimator: Any, feature_names: Sequence[str], name: str | None = None) -> None:
        if not hasattr(estimator, "predict_proba"):
            raise TypeError(f"{type(estimator).__name__} does not expose predict_proba.")
        self.estimator = estimator
        self.feature_names = list(feature_names)
        self.name = name or type(estimator).__name__

    @property
    def classes(self) -> Sequence[Any]:
        return [c.item() if isinstance(c, np.generic) else c for c in self.estimator.classes_]

    def _as_frame(self, batch: pd.DataFrame | Sequence[Instance]) -> pd.DataFrame:
        if isinstance(batch, pd.DataFrame):
            missing = [c for c in self.feature_names if c not in batch.columns]
            if missing:
                raise ValueError(f"Batch missing feature column(s): {missing}")
            return batch[self.feature_names]
        return instances_to_frame(list(batch), self.feature_names)

    def predict(self, batch: pd.DataFrame | Sequence[Instance]) -> np.ndarray:
        frame = self._as_frame(batch)
        return np.asarray(self.estimator.predict_proba(frame), dtype=float)


def _final_step_and_names(estimator: Any, fallback: Sequence[str]) -> tuple[Any, list[str]]:
    if isinstance(estimator, Pipeline):
        final = estimator.steps[-1][1]
        try:
            names = [str(n) for n in estimator[:-1].get_feature_names_out()]
        except (AttributeError, ValueError):
            names = list(fallback)
        return final, names
    return estimator, list(fallback)


def _source_feature(transformed: str, feature_names: Sequence[str]) -> str | None:
    name = transformed.split("__", maxsplit=1)[-1]
    if name in feature_names:
        return name
    matches = [f for f in feature_names if name.startswith(f"{f}_")]
    if not matches:
        return None
    return max(matches, key=len)


def native_global_importance(estimator: Any, feature_names: Sequence[str]) -> dict[str, float]:
    """Model-native importances collapsed back onto source features.

    Impurity importances or absolute coefficients are summed over the one-hot
    columns of each source feature. Models with neither, or whose transformed
    column names cannot be recovered one-to-one, yield an empty map.
    """
    model, transformed_names = _final_step_and_names(estimator, feature_names)

    raw = getattr(model, "feature_importances_", None)
    if raw is None:
        coef = getattr(model, "coef_", None)
        if coef is None:
            return {}
        raw = np.abs(np.atleast_2d(np.asarray(coef, dtype=float))).mean(axis=0)
    raw = np.asarray(raw, dtype=float)

    if len(transformed_names) != len(raw):
        LOGGER.warning(
            "Cannot map %d importances onto %d transformed columns; returning no native importance",
            len(raw),
            len(transformed_names),
        )
        return {}

    out: dict[str, float] = {}
    for col_name, value in zip(transformed_names, raw, strict=True):
        source = _source_feature(col_name, feature_names)
        if source is None:
            continue
        out[source] = out.get(source, 0.0) + abs(float(value))
    return out
