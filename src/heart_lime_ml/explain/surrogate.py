"""Sparse weighted linear surrogate over the binary indicator space."""

from __future__ import annotations

import logging

import numpy as np
from sklearn.linear_model import LinearRegression
from sklearn.metrics import r2_score

from heart_lime_ml.explain.contracts import LocalSurrogateModel
from heart_lime_ml.explain.errors import DegenerateFeatureError, SingularFitError

LOGGER = logging.getLogger(__name__)

VARIANCE_TOL = 1e-12


def weighted_correlations(x: np.ndarray, y: np.ndarray, weights: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Weighted Pearson correlation of every column of ``x`` with ``y``, plus column variances."""
    w = weights / weights.sum()
    xc = x - w @ x
    yc = y - w @ y
    cov = w @ (xc * yc[:, None])
    var_x = w @ (xc**2)
    var_y = float(w @ (yc**2))
    with np.errstate(divide="ignore", invalid="ignore"):
        corr = cov / np.sqrt(var_x * var_y)
    return np.nan_to_num(corr, nan=0.0, posinf=0.0, neginf=0.0), var_x


def _check_candidate(
    x: np.ndarray,
    weights: np.ndarray,
    var_x: np.ndarray,
    selected: list[int],
    column: int,
) -> None:
    if var_x[column] <= VARIANCE_TOL:
        raise DegenerateFeatureError(column, "zero variance across the weighted samples")
    cols = selected + [column]
    w = weights / weights.sum()
    block = x[:, cols]
    design = np.sqrt(w)[:, None] * (block - w @ block)
    if np.linalg.matrix_rank(design) < len(cols):
        raise DegenerateFeatureError(column, "collinear with already selected columns")


def select_features(
    indicators: np.ndarray,
    target: np.ndarray,
    weights: np.ndarray,
    num_features: int,
) -> list[int]:
    x = np.asarray(indicators, dtype=float)
    corr, var_x = weighted_correlations(x, target, weights)
    ranked = np.argsort(-np.abs(corr), kind="stable")

    selected: list[int] = []
    for column in ranked.tolist():
        if len(selected) >= num_features:
            break
        try:
            _check_candidate(x, weights, var_x, selected, column)
        except DegenerateFeatureError as exc:
            LOGGER.debug("Skipping indicator column: %s", exc)
            continue
        selected.append(column)
    return selected


def fit_surrogate(
    indicators: np.ndarray,
    target: np.ndarray,
    weights: np.ndarray,
    num_features: int,
) -> LocalSurrogateModel:
    """Rank, select up to ``num_features`` indicator columns, then refit by weighted least squares.

    Degenerate columns are replaced by the next-ranked candidate. Raises
    ``SingularFitError`` when nothing viable remains.
    """
    x = np.asarray(indicators, dtype=float)
    y = np.asarray(target, dtype=float)
    w = np.asarray(weights, dtype=float)
    if x.ndim != 2 or y.shape != (x.shape[0],) or w.shape != (x.shape[0],):
        raise ValueError("Indicators, target and weights must describe the same samples.")
    if num_features < 1:
        raise ValueError("num_features must be at least 1.")
    if not np.all(np.isfinite(y)):
        raise SingularFitError("Black-box output contains non-finite values.")
    if not np.all(w >= 0) or float(w.sum()) <= 0:
        raise SingularFitError("Sample weights must be non-negative with a positive sum.")

    selected = select_features(x, y, w, num_features)
    if not selected:
        raise SingularFitError("No indicator column varies across the weighted sample set.")
    if x.shape[0] <= len(selected):
        raise SingularFitError(f"{x.shape[0]} samples cannot identify {len(selected)} coefficients plus intercept.")

    design = x[:, selected]
    model = LinearRegression(fit_intercept=True)
    model.fit(design, y, sample_weight=w)
    coef = np.asarray(model.coef_, dtype=float)
    if not np.all(np.isfinite(coef)) or not np.isfinite(model.intercept_):
        raise SingularFitError("Weighted least squares produced non-finite coefficients.")

    fitted = model.predict(design)
    score = float(r2_score(y, fitted, sample_weight=w))
    local_prediction = float(model.predict(np.ones((1, len(selected))))[0])

    return LocalSurrogateModel(
        intercept=float(model.intercept_),
        selected=tuple(int(c) for c in selected),
        coefficients=tuple(float(c) for c in coef),
        score=score,
        local_prediction=local_prediction,
    )
