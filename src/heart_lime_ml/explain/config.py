"""Explainer configuration."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

DEFAULT_NUM_PERTURBATIONS = 5000
DEFAULT_NUM_FEATURES = 5
DEFAULT_NUM_BINS = 4
DEFAULT_SEED = 42
BANDWIDTH_FACTOR = 0.75


@dataclass(frozen=True)
class ExplainerConfig:
    num_perturbations: int = DEFAULT_NUM_PERTURBATIONS
    num_features_to_select: int = DEFAULT_NUM_FEATURES
    num_bins: int = DEFAULT_NUM_BINS
    kernel_bandwidth: float | None = None
    random_seed: int = DEFAULT_SEED
    labels_to_explain: tuple[Any, ...] = (1,)
    low_fidelity_r2: float = 0.25
    blackbox_retries: int = 1
    n_jobs: int = 1

    def __post_init__(self) -> None:
        if self.num_perturbations < 2:
            raise ValueError("num_perturbations must be at least 2.")
        if self.num_features_to_select < 1:
            raise ValueError("num_features_to_select must be at least 1.")
        if self.num_bins < 2:
            raise ValueError("num_bins must be at least 2.")
        if self.kernel_bandwidth is not None and not self.kernel_bandwidth > 0:
            raise ValueError("kernel_bandwidth must be positive when provided.")
        if self.blackbox_retries < 0:
            raise ValueError("blackbox_retries cannot be negative.")
        if not self.labels_to_explain:
            raise ValueError("labels_to_explain must name at least one label.")
        # Lists from JSON are normalized so the config stays hashable.
        object.__setattr__(self, "labels_to_explain", tuple(self.labels_to_explain))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ExplainerConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"Unknown explainer option(s): {unknown}. Supported: {sorted(known)}")
        return cls(**dict(raw))

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["labels_to_explain"] = list(self.labels_to_explain)
        return out


def load_config(path: Path, **overrides: Any) -> ExplainerConfig:
    if not path.exists():
        raise FileNotFoundError(f"Missing explainer config file: {path}")
    with path.open("r", encoding="utf-8") as f:
        parsed = json.load(f)
    if not isinstance(parsed, dict):
        raise ValueError("Explainer config must decode to a JSON object.")
    parsed.update({k: v for k, v in overrides.items() if v is not None})
    return ExplainerConfig.from_mapping(parsed)
