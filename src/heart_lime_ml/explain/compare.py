"""Reconcile aggregated local explanations with a model's global importances."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np
import pandas as pd

from heart_lime_ml.explain.aggregate import ExplanationSet
from heart_lime_ml.explain.contracts import GlobalImportance


class Placement(str, Enum):
    IN_BOTH = "in_both"
    GLOBAL_ONLY = "global_only"
    LOCAL_ONLY = "local_only"


@dataclass(frozen=True)
class ComparisonResult:
    in_both: tuple[str, ...]
    global_only: tuple[str, ...]
    local_only: tuple[str, ...]
    global_top: tuple[str, ...]
    local_top: tuple[str, ...]

    def placement(self, feature: str) -> Placement:
        if feature in self.in_both:
            return Placement.IN_BOTH
        if feature in self.global_only:
            return Placement.GLOBAL_ONLY
        if feature in self.local_only:
            return Placement.LOCAL_ONLY
        raise KeyError(f"Feature not in either top-k view: {feature}")

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for placement, features in (
            (Placement.IN_BOTH, self.in_both),
            (Placement.GLOBAL_ONLY, self.global_only),
            (Placement.LOCAL_ONLY, self.local_only),
        ):
            for feature in features:
                rows.append(
                    {
                        "feature": feature,
                        "placement": placement.value,
                        "global_rank": self.global_top.index(feature) + 1 if feature in self.global_top else np.nan,
                        "local_rank": self.local_top.index(feature) + 1 if feature in self.local_top else np.nan,
                    }
                )
        return pd.DataFrame(rows, columns=["feature", "placement", "global_rank", "local_rank"])


def top_global_features(importance: GlobalImportance, k: int) -> tuple[str, ...]:
    negative = sorted(f for f, v in importance.items() if float(v) < 0)
    if negative:
        raise ValueError(f"Global importances must be non-negative: {negative}")
    ranked = sorted(
        ((str(f), float(v)) for f, v in importance.items() if float(v) > 0),
        key=lambda item: (-item[1], item[0]),
    )
    return tuple(f for f, _ in ranked[: max(0, k)])


def top_local_features(explanation_set: ExplanationSet, k: int) -> tuple[str, ...]:
    out: list[str] = []
    for row in explanation_set.summary:
        if len(out) >= k:
            break
        if row.feature not in out:
            out.append(row.feature)
    return tuple(out)


def compare_global_local(
    global_importance: GlobalImportance,
    explanation_set: ExplanationSet,
    top_k: int = 5,
    local_top_k: int | None = None,
) -> ComparisonResult:
    """Place every feature of either top-k view into exactly one of three classes."""
    global_top = top_global_features(global_importance, top_k)
    local_top = top_local_features(explanation_set, top_k if local_top_k is None else local_top_k)

    global_set = set(global_top)
    local_set = set(local_top)
    return ComparisonResult(
        in_both=tuple(f for f in local_top if f in global_set),
        global_only=tuple(f for f in global_top if f not in local_set),
        local_only=tuple(f for f in local_top if f not in global_set),
        global_top=global_top,
        local_top=local_top,
    )
