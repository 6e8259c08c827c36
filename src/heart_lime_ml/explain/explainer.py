"""Explain operation: sample -> batched black-box inference -> weight -> sparse surrogate."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from typing import Any

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from heart_lime_ml.explain.aggregate import ExplanationSet
from heart_lime_ml.explain.config import ExplainerConfig
from heart_lime_ml.explain.contracts import Explanation, ExplanationEntry, Instance
from heart_lime_ml.explain.discretize import DiscretizationScheme, fit_discretizer
from heart_lime_ml.explain.errors import (
    BlackBoxInvocationError,
    ExplainCancelledError,
    ExplanationError,
    UnfitExplainerError,
)
from heart_lime_ml.explain.models import BlackBoxModel
from heart_lime_ml.explain.sampling import derive_rng, sample_perturbations
from heart_lime_ml.explain.surrogate import fit_surrogate

LOGGER = logging.getLogger(__name__)


def _check_cancel(cancel_event: threading.Event | None, instance_id: str, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ExplainCancelledError(f"Explain call for instance {instance_id} cancelled before {stage}.")


def _label_index(model: BlackBoxModel, label: Any) -> int:
    raw = getattr(model, "classes", None)
    classes = [] if raw is None else [c.item() if isinstance(c, np.generic) else c for c in raw]
    if not classes:
        if isinstance(label, (int, np.integer)) and label >= 0:
            return int(label)
        raise ValueError(f"Model exposes no classes; cannot resolve label {label!r}.")
    if label not in classes:
        raise ValueError(f"Label {label!r} not among model classes {classes}.")
    return classes.index(label)


def predict_with_retry(model: BlackBoxModel, frame: pd.DataFrame, retries: int = 1) -> np.ndarray:
    """One batched inference call, retried ``retries`` times before surfacing the failure."""
    attempts = retries + 1
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            proba = np.asarray(model.predict(frame), dtype=float)
            break
        except Exception as exc:
            last_exc = exc
            LOGGER.warning("Black-box predict failed (attempt %d/%d): %s", attempt, attempts, exc)
    else:
        raise BlackBoxInvocationError(f"Black-box model failed after {attempts} attempt(s): {last_exc}") from last_exc

    if proba.ndim != 2 or proba.shape[0] != len(frame):
        raise BlackBoxInvocationError(f"Black-box returned shape {proba.shape}; expected ({len(frame)}, n_classes).")
    if not np.all(np.isfinite(proba)):
        raise BlackBoxInvocationError("Black-box returned non-finite probabilities.")
    return proba


def explain_instance(
    scheme: DiscretizationScheme,
    model: BlackBoxModel,
    instance: Instance,
    label: Any,
    config: ExplainerConfig,
    cancel_event: threading.Event | None = None,
) -> Explanation:
    """Explain ``model``'s probability for ``label`` at ``instance``.

    All intermediate state is local to the call, so concurrent calls sharing
    ``scheme`` and ``model`` are independent. A set ``cancel_event`` aborts the
    call with ``ExplainCancelledError`` and nothing is returned.
    """
    instance_id = instance.instance_id
    codes = scheme.transform(instance)
    label_idx = _label_index(model, label)

    rng = derive_rng(config.random_seed, instance_id, label)
    batch = sample_perturbations(
        scheme,
        instance,
        config.num_perturbations,
        rng,
        instance_codes=codes,
        bandwidth=config.kernel_bandwidth,
    )
    _check_cancel(cancel_event, instance_id, "inference")

    proba = predict_with_retry(model, batch.frame, retries=config.blackbox_retries)
    if label_idx >= proba.shape[1]:
        raise BlackBoxInvocationError(f"Black-box returned {proba.shape[1]} classes; label index {label_idx}.")
    target = proba[:, label_idx]
    _check_cancel(cancel_event, instance_id, "surrogate fit")

    surrogate = fit_surrogate(batch.indicators, target, batch.weights, config.num_features_to_select)
    _check_cancel(cancel_event, instance_id, "result assembly")

    pairs = sorted(
        zip(surrogate.selected, surrogate.coefficients, strict=True),
        key=lambda item: -abs(item[1]),
    )
    entries = tuple(
        ExplanationEntry(
            feature=scheme.rules[col].name,
            description=scheme.describe(col, codes[col]),
            weight=coef,
        )
        for col, coef in pairs
    )

    low_fidelity = surrogate.score < config.low_fidelity_r2
    model_name = str(getattr(model, "name", type(model).__name__))
    if low_fidelity:
        LOGGER.warning(
            "Low local fidelity for %s | instance=%s label=%s R2=%.3f",
            model_name,
            instance_id,
            label,
            surrogate.score,
        )
    LOGGER.debug("Explained %s | instance=%s label=%s R2=%.3f", model_name, instance_id, label, surrogate.score)

    return Explanation(
        instance_id=instance_id,
        label=label,
        entries=entries,
        intercept=surrogate.intercept,
        score=surrogate.score,
        model_prediction=float(target[0]),
        local_prediction=surrogate.local_prediction,
        model_name=model_name,
        low_fidelity=low_fidelity,
    )


class TabularExplainer:
    """Local surrogate explainer. Unfit until ``fit``; explain calls never mutate it."""

    def __init__(self, config: ExplainerConfig | None = None) -> None:
        self.config = config or ExplainerConfig()
        self._scheme: DiscretizationScheme | None = None

    @property
    def is_fitted(self) -> bool:
        return self._scheme is not None

    @property
    def scheme(self) -> DiscretizationScheme:
        if self._scheme is None:
            raise UnfitExplainerError("Explainer is not fit; call fit(corpus) first.")
        return self._scheme

    def fit(
        self,
        corpus: pd.DataFrame | Sequence[Instance],
        categorical_features: Iterable[str] | None = None,
    ) -> TabularExplainer:
        self._scheme = fit_discretizer(corpus, categorical_features, num_bins=self.config.num_bins)
        LOGGER.info(
            "Explainer fit on %d corpus rows and %d features",
            self._scheme.n_corpus_rows,
            len(self._scheme.rules),
        )
        return self

    def explain(
        self,
        model: BlackBoxModel,
        instance: Instance,
        label: Any = None,
        cancel_event: threading.Event | None = None,
    ) -> Explanation:
        scheme = self.scheme
        target_label = self.config.labels_to_explain[0] if label is None else label
        return explain_instance(scheme, model, instance, target_label, self.config, cancel_event)

    def explain_labels(
        self,
        model: BlackBoxModel,
        instance: Instance,
        cancel_event: threading.Event | None = None,
    ) -> list[Explanation]:
        return [self.explain(model, instance, label, cancel_event) for label in self.config.labels_to_explain]

    def _explain_or_skip(
        self,
        model: BlackBoxModel,
        instance: Instance,
        label: Any,
        on_error: str,
        cancel_event: threading.Event | None,
    ) -> Explanation | None:
        try:
            return self.explain(model, instance, label, cancel_event)
        except ExplanationError as exc:
            if on_error == "raise" or isinstance(exc, UnfitExplainerError):
                raise
            LOGGER.warning("Skipping explain call | instance=%s label=%s: %s", instance.instance_id, label, exc)
            return None

    def explain_many(
        self,
        model: BlackBoxModel,
        instances: Iterable[Instance],
        labels: Iterable[Any] | None = None,
        n_jobs: int | None = None,
        on_error: str = "raise",
        cancel_event: threading.Event | None = None,
    ) -> ExplanationSet:
        """Explain every (instance, label) pair, in parallel threads when ``n_jobs`` != 1."""
        if on_error not in {"raise", "skip"}:
            raise ValueError("on_error must be 'raise' or 'skip'.")
        if not self.is_fitted:
            raise UnfitExplainerError("Explainer is not fit; call fit(corpus) first.")
        targets = list(labels) if labels is not None else list(self.config.labels_to_explain)
        jobs = [(inst, label) for inst in instances for label in targets]
        workers = self.config.n_jobs if n_jobs is None else n_jobs

        results = Parallel(n_jobs=workers, prefer="threads")(
            delayed(self._explain_or_skip)(model, inst, label, on_error, cancel_event) for inst, label in jobs
        )
        explanations = [r for r in results if r is not None]
        LOGGER.info("Explained %d of %d (instance, label) pairs", len(explanations), len(jobs))
        return ExplanationSet(explanations)
