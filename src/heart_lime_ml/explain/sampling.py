"""Neighborhood generation around one discretized instance."""

from __future__ import annotations

import zlib
from typing import Any

import numpy as np
import pandas as pd

from heart_lime_ml.explain.contracts import FeatureKind, Instance, PerturbationBatch
from heart_lime_ml.explain.discretize import DiscretizationScheme
from heart_lime_ml.explain.kernel import kernel_weights


def _stable_key(value: Any) -> int:
    return zlib.crc32(str(value).encode("utf-8"))


def derive_rng(seed: int, instance_id: str, label: Any) -> np.random.Generator:
    """Per-call generator keyed by (seed, instance, label); no shared global stream."""
    sequence = np.random.SeedSequence([int(seed) & 0xFFFFFFFF, _stable_key(instance_id), _stable_key(label)])
    return np.random.default_rng(sequence)


def sample_perturbations(
    scheme: DiscretizationScheme,
    instance: Instance,
    num_samples: int,
    rng: np.random.Generator,
    instance_codes: tuple[int, ...] | None = None,
    bandwidth: float | None = None,
) -> PerturbationBatch:
    """Draw ``num_samples`` neighbors; feature values come from the corpus marginals.

    Indicator 1 means the drawn corpus value fell in the instance's own bin, so the
    original value is kept. Indicator 0 means the feature was replaced by the drawn
    value from another bin. Row 0 is always the all-ones anchor. Each row carries its
    proximity weight from ``kernel_weights``; the anchor's is 1.0.
    """
    if num_samples < 1:
        raise ValueError("num_samples must be at least 1.")
    codes = instance_codes if instance_codes is not None else scheme.transform(instance)

    n_features = len(scheme.rules)
    indicators = np.ones((num_samples, n_features), dtype=np.int8)
    columns: dict[str, np.ndarray] = {}

    for j, rule in enumerate(scheme.rules):
        original = instance[rule.name]
        drawn_idx = rng.integers(0, len(rule.corpus_values), size=num_samples)
        keep = rule.corpus_codes[drawn_idx] == codes[j]
        keep[0] = True
        indicators[:, j] = keep.astype(np.int8)

        if rule.kind is FeatureKind.CONTINUOUS:
            column = rule.corpus_values[drawn_idx].astype(float)
            column[keep] = float(original)
        else:
            column = rule.corpus_values[drawn_idx].copy()
            column[keep] = original
        columns[rule.name] = column

    frame = pd.DataFrame(columns, columns=list(scheme.feature_names)).infer_objects()
    return PerturbationBatch(
        feature_names=scheme.feature_names,
        indicators=indicators,
        frame=frame,
        weights=kernel_weights(indicators, bandwidth),
    )
