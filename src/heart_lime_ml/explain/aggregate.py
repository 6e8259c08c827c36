"""Cross-case aggregation of local explanations."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from heart_lime_ml.explain.contracts import Explanation


@dataclass(frozen=True)
class FeatureSummary:
    description: str
    feature: str
    mean_weight: float
    std_weight: float
    n_cases: int
    label: Any = None


class ExplanationSet:
    """Ordered collection of explanations with a per-description weight summary.

    The summary is ordered by descending absolute mean weight. With
    ``by_label=True`` descriptions are grouped separately per explained label.
    """

    def __init__(self, explanations: Iterable[Explanation], by_label: bool = False) -> None:
        self._explanations = tuple(explanations)
        self._by_label = by_label
        self._summary = self._summarize()

    @property
    def explanations(self) -> tuple[Explanation, ...]:
        return self._explanations

    @property
    def summary(self) -> tuple[FeatureSummary, ...]:
        return self._summary

    def __len__(self) -> int:
        return len(self._explanations)

    def __iter__(self) -> Iterator[Explanation]:
        return iter(self._explanations)

    def __getitem__(self, idx: int) -> Explanation:
        return self._explanations[idx]

    def group_by_description(self) -> dict[Any, list[float]]:
        groups: dict[Any, list[float]] = {}
        for exp in self._explanations:
            for entry in exp.entries:
                key = (exp.label, entry.description) if self._by_label else entry.description
                groups.setdefault(key, []).append(entry.weight)
        return groups

    def _summarize(self) -> tuple[FeatureSummary, ...]:
        feature_of: dict[str, str] = {}
        for exp in self._explanations:
            for entry in exp.entries:
                feature_of.setdefault(entry.description, entry.feature)

        rows: list[FeatureSummary] = []
        for key, weights in self.group_by_description().items():
            label, description = key if self._by_label else (None, key)
            arr = np.asarray(weights, dtype=float)
            rows.append(
                FeatureSummary(
                    description=description,
                    feature=feature_of[description],
                    mean_weight=float(np.mean(arr)),
                    std_weight=float(np.std(arr)),
                    n_cases=int(arr.size),
                    label=label,
                )
            )
        rows.sort(key=lambda r: (-abs(r.mean_weight), r.description, str(r.label)))
        return tuple(rows)

    def top(self, k: int) -> tuple[FeatureSummary, ...]:
        return self._summary[: max(0, k)]

    def for_label(self, label: Any) -> ExplanationSet:
        return ExplanationSet([e for e in self._explanations if e.label == label], by_label=self._by_label)

    def to_frame(self) -> pd.DataFrame:
        columns = ["description", "feature", "mean_weight", "std_weight", "n_cases", "label"]
        return pd.DataFrame(
            [
                {
                    "description": r.description,
                    "feature": r.feature,
                    "mean_weight": r.mean_weight,
                    "std_weight": r.std_weight,
                    "n_cases": r.n_cases,
                    "label": r.label,
                }
                for r in self._summary
            ],
            columns=columns,
        )


def aggregate_explanations(explanations: Iterable[Explanation], by_label: bool = False) -> ExplanationSet:
    return ExplanationSet(explanations, by_label=by_label)


def explanations_to_frame(explanations: Iterable[Explanation]) -> pd.DataFrame:
    """Long format: one row per (explanation, entry)."""
    rows: list[dict[str, Any]] = []
    for exp in explanations:
        for rank, entry in enumerate(exp.entries, start=1):
            rows.append(
                {
                    "model": exp.model_name,
                    "instance_id": exp.instance_id,
                    "label": exp.label,
                    "rank": rank,
                    "feature": entry.feature,
                    "description": entry.description,
                    "weight": entry.weight,
                    "intercept": exp.intercept,
                    "local_r2": exp.score,
                    "model_prediction": exp.model_prediction,
                    "local_prediction": exp.local_prediction,
                    "low_fidelity": exp.low_fidelity,
                }
            )
    return pd.DataFrame(rows)
