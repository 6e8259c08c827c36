"""Value types shared by the explanation engine stages."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd

GlobalImportance = Mapping[str, float]


class FeatureKind(str, Enum):
    CONTINUOUS = "continuous"
    CATEGORICAL = "categorical"


def plain_value(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    return value


class Instance(Mapping[str, Any]):
    """Immutable ordered mapping from feature name to raw value."""

    __slots__ = ("_items", "_index", "_instance_id")

    def __init__(self, values: Mapping[str, Any], instance_id: str | None = None) -> None:
        self._items = tuple((str(k), plain_value(v)) for k, v in values.items())
        self._index = {k: i for i, (k, _) in enumerate(self._items)}
        if len(self._index) != len(self._items):
            raise ValueError("Instance feature names must be unique.")
        self._instance_id = str(instance_id) if instance_id is not None else None

    @classmethod
    def from_series(cls, row: pd.Series, instance_id: str | None = None) -> Instance:
        if instance_id is None and row.name is not None:
            instance_id = str(row.name)
        return cls(row.to_dict(), instance_id=instance_id)

    @property
    def instance_id(self) -> str:
        if self._instance_id is not None:
            return self._instance_id
        payload = json.dumps([[k, v] for k, v in self._items], default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    @property
    def feature_names(self) -> tuple[str, ...]:
        return tuple(k for k, _ in self._items)

    def __getitem__(self, key: str) -> Any:
        return self._items[self._index[key]][1]

    def __iter__(self) -> Iterator[str]:
        return (k for k, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __hash__(self) -> int:
        return hash(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Instance):
            return self._items == other._items
        return super().__eq__(other)

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v!r}" for k, v in self._items)
        return f"Instance(id={self.instance_id}, {body})"


def instances_to_frame(instances: list[Instance] | tuple[Instance, ...], columns: list[str]) -> pd.DataFrame:
    return pd.DataFrame([[inst[c] for c in columns] for inst in instances], columns=columns)


@dataclass(frozen=True)
class PerturbedSample:
    indicators: tuple[int, ...]
    instance: Instance
    weight: float


@dataclass(frozen=True)
class PerturbationBatch:
    """Array view of one neighborhood; row 0 is the anchor (unmodified instance)."""

    feature_names: tuple[str, ...]
    indicators: np.ndarray
    frame: pd.DataFrame
    weights: np.ndarray

    def __len__(self) -> int:
        return int(self.indicators.shape[0])

    def samples(self) -> Iterator[PerturbedSample]:
        for i, row in enumerate(self.frame.itertuples(index=False, name=None)):
            yield PerturbedSample(
                indicators=tuple(int(v) for v in self.indicators[i]),
                instance=Instance(dict(zip(self.feature_names, row, strict=True))),
                weight=float(self.weights[i]),
            )


@dataclass(frozen=True)
class LocalSurrogateModel:
    intercept: float
    selected: tuple[int, ...]
    coefficients: tuple[float, ...]
    score: float
    local_prediction: float


@dataclass(frozen=True)
class ExplanationEntry:
    feature: str
    description: str
    weight: float


@dataclass(frozen=True)
class Explanation:
    """Signed feature-condition weights for one (instance, label) pair."""

    instance_id: str
    label: Any
    entries: tuple[ExplanationEntry, ...]
    intercept: float
    score: float
    model_prediction: float
    local_prediction: float
    model_name: str = "model"
    low_fidelity: bool = False

    def as_map(self) -> dict[str, float]:
        return {e.description: e.weight for e in self.entries}

    @property
    def features(self) -> tuple[str, ...]:
        return tuple(e.feature for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)
