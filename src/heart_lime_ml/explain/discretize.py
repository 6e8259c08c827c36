"""Quantile/level discretization learned once from a training corpus."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from heart_lime_ml.explain.config import DEFAULT_NUM_BINS
from heart_lime_ml.explain.contracts import FeatureKind, Instance, plain_value
from heart_lime_ml.explain.errors import UnknownCategoryError

LOGGER = logging.getLogger(__name__)


def _fmt(value: float) -> str:
    return f"{value:.4g}"


def _readonly(values: np.ndarray) -> np.ndarray:
    out = np.array(values, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True, eq=False)
class FeatureRule:
    name: str
    kind: FeatureKind
    edges: tuple[float, ...] = ()
    levels: tuple[object, ...] = ()
    corpus_values: np.ndarray = field(default_factory=lambda: _readonly(np.empty(0)), repr=False)
    corpus_codes: np.ndarray = field(default_factory=lambda: _readonly(np.empty(0, dtype=np.int64)), repr=False)

    @property
    def n_bins(self) -> int:
        if self.kind is FeatureKind.CATEGORICAL:
            return len(self.levels)
        return len(self.edges) + 1

    def code(self, value: object) -> int:
        if self.kind is FeatureKind.CATEGORICAL:
            try:
                return self.levels.index(plain_value(value))
            except ValueError:
                raise UnknownCategoryError(self.name, value, self.levels) from None
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Continuous feature '{self.name}' got non-numeric value {value!r}") from exc
        if np.isnan(number):
            raise ValueError(f"Continuous feature '{self.name}' got a missing value.")
        return int(np.searchsorted(np.asarray(self.edges), number, side="left"))

    def describe(self, code: int) -> str:
        if self.kind is FeatureKind.CATEGORICAL:
            return f"{self.name} = {self.levels[code]}"
        if code <= 0:
            return f"{self.name} <= {_fmt(self.edges[0])}"
        if code >= len(self.edges):
            return f"{self.name} > {_fmt(self.edges[-1])}"
        return f"{_fmt(self.edges[code - 1])} < {self.name} <= {_fmt(self.edges[code])}"


@dataclass(frozen=True, eq=False)
class DiscretizationScheme:
    """Read-only per-feature binning rules plus the corpus marginals used for sampling."""

    rules: tuple[FeatureRule, ...]
    num_bins: int = DEFAULT_NUM_BINS
    n_corpus_rows: int = 0

    @property
    def feature_names(self) -> tuple[str, ...]:
        return tuple(r.name for r in self.rules)

    def rule(self, feature: str) -> FeatureRule:
        for r in self.rules:
            if r.name == feature:
                return r
        raise KeyError(f"Feature not in discretization scheme: {feature}")

    def transform(self, instance: Instance) -> tuple[int, ...]:
        missing = [r.name for r in self.rules if r.name not in instance]
        if missing:
            raise ValueError(f"Instance missing feature(s): {missing}")
        return tuple(r.code(instance[r.name]) for r in self.rules)

    def transform_frame(self, frame: pd.DataFrame) -> np.ndarray:
        codes = np.empty((len(frame), len(self.rules)), dtype=np.int64)
        for j, r in enumerate(self.rules):
            codes[:, j] = [r.code(v) for v in frame[r.name].tolist()]
        return codes

    def describe(self, feature_index: int, code: int) -> str:
        return self.rules[feature_index].describe(code)

    def summary_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "feature": r.name,
                    "kind": r.kind.value,
                    "n_bins": r.n_bins,
                    "edges": list(r.edges),
                    "levels": list(r.levels),
                }
                for r in self.rules
            ]
        )


def _as_frame(corpus: pd.DataFrame | Sequence[Instance]) -> pd.DataFrame:
    if isinstance(corpus, pd.DataFrame):
        return corpus
    rows = list(corpus)
    if not rows:
        return pd.DataFrame()
    columns = list(rows[0].feature_names)
    return pd.DataFrame([[inst[c] for c in columns] for inst in rows], columns=columns)


def infer_feature_kinds(
    frame: pd.DataFrame,
    categorical_features: Iterable[str] | None = None,
) -> dict[str, FeatureKind]:
    declared = set(categorical_features or [])
    unknown = sorted(declared - set(frame.columns))
    if unknown:
        raise ValueError(f"Declared categorical feature(s) not in corpus: {unknown}")

    kinds: dict[str, FeatureKind] = {}
    for col in frame.columns:
        if col in declared or not pd.api.types.is_numeric_dtype(frame[col]) or pd.api.types.is_bool_dtype(frame[col]):
            kinds[str(col)] = FeatureKind.CATEGORICAL
        else:
            kinds[str(col)] = FeatureKind.CONTINUOUS
    return kinds


def _fit_continuous(name: str, column: pd.Series, num_bins: int) -> FeatureRule:
    values = pd.to_numeric(column, errors="coerce").dropna().to_numpy(dtype=float)
    if values.size == 0:
        raise ValueError(f"Continuous feature '{name}' has no numeric values in the corpus.")
    percentiles = np.linspace(0, 100, num_bins + 1)[1:-1]
    edges = np.unique(np.percentile(values, percentiles))
    codes = np.searchsorted(edges, values, side="left").astype(np.int64)
    if len(edges) < num_bins - 1:
        LOGGER.debug("Feature %s collapsed to %d bins (tied quantiles)", name, len(edges) + 1)
    return FeatureRule(
        name=name,
        kind=FeatureKind.CONTINUOUS,
        edges=tuple(float(e) for e in edges),
        corpus_values=_readonly(values),
        corpus_codes=_readonly(codes),
    )


def _fit_categorical(name: str, column: pd.Series) -> FeatureRule:
    observed = column.dropna()
    if observed.empty:
        raise ValueError(f"Categorical feature '{name}' has no observed levels in the corpus.")
    levels = tuple(sorted({plain_value(v) for v in observed.tolist()}, key=lambda v: (type(v).__name__, str(v))))
    lookup = {level: i for i, level in enumerate(levels)}
    values = np.array([plain_value(v) for v in observed.tolist()], dtype=object)
    codes = np.array([lookup[v] for v in values], dtype=np.int64)
    return FeatureRule(
        name=name,
        kind=FeatureKind.CATEGORICAL,
        levels=levels,
        corpus_values=_readonly(values),
        corpus_codes=_readonly(codes),
    )


def fit_discretizer(
    corpus: pd.DataFrame | Sequence[Instance],
    categorical_features: Iterable[str] | None = None,
    num_bins: int = DEFAULT_NUM_BINS,
) -> DiscretizationScheme:
    """Learn quantile edges (continuous) and level sets (categorical) from ``corpus``.

    A single sequential pass; the returned scheme is immutable and safe to share
    across concurrent explain calls.
    """
    if num_bins < 2:
        raise ValueError("num_bins must be at least 2.")
    frame = _as_frame(corpus)
    if frame.empty or frame.shape[1] == 0:
        raise ValueError("Training corpus is empty.")

    kinds = infer_feature_kinds(frame, categorical_features)
    rules: list[FeatureRule] = []
    for col in frame.columns:
        name = str(col)
        if kinds[name] is FeatureKind.CATEGORICAL:
            rules.append(_fit_categorical(name, frame[col]))
        else:
            rules.append(_fit_continuous(name, frame[col], num_bins))

    LOGGER.debug(
        "Fitted discretization on %d rows: %d continuous, %d categorical",
        len(frame),
        sum(r.kind is FeatureKind.CONTINUOUS for r in rules),
        sum(r.kind is FeatureKind.CATEGORICAL for r in rules),
    )
    return DiscretizationScheme(rules=tuple(rules), num_bins=num_bins, n_corpus_rows=len(frame))
