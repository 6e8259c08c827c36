"""Proximity weighting of perturbed samples."""

from __future__ import annotations

import numpy as np

from heart_lime_ml.explain.config import BANDWIDTH_FACTOR


def default_bandwidth() -> float:
    return BANDWIDTH_FACTOR


def indicator_distances(indicators: np.ndarray) -> np.ndarray:
    """Distance of each indicator row to the all-ones anchor, normalized by feature count.

    With ``k`` of ``d`` features replaced the distance is ``sqrt(k / d)``, so it
    stays in ``[0, 1]`` whatever the width of the instance.
    """
    arr = np.asarray(indicators, dtype=float)
    if arr.ndim != 2:
        raise ValueError("Indicator matrix must be two-dimensional.")
    if arr.shape[1] == 0:
        return np.zeros(arr.shape[0])
    return np.sqrt(np.mean((1.0 - arr) ** 2, axis=1))


def exponential_kernel(distances: np.ndarray, bandwidth: float) -> np.ndarray:
    if not bandwidth > 0:
        raise ValueError("Kernel bandwidth must be positive.")
    d = np.asarray(distances, dtype=float)
    return np.exp(-(d**2) / bandwidth**2)


def kernel_weights(indicators: np.ndarray, bandwidth: float | None = None) -> np.ndarray:
    bw = default_bandwidth() if bandwidth is None else float(bandwidth)
    return exponential_kernel(indicator_distances(indicators), bw)
