import threading

import numpy as np
import pandas as pd
import pytest

from heart_lime_ml.explain.aggregate import aggregate_explanations
from heart_lime_ml.explain.config import ExplainerConfig
from heart_lime_ml.explain.contracts import Explanation, ExplanationEntry, Instance
from heart_lime_ml.explain.errors import (
    BlackBoxInvocationError,
    ExplainCancelledError,
    UnfitExplainerError,
    UnknownCategoryError,
)
from heart_lime_ml.explain.explainer import TabularExplainer


class OldpeakModel:
    """Positive-class probability increases monotonically with Oldpeak."""

    name = "monotone_oldpeak"
    classes = [0, 1]

    def __init__(self) -> None:
        self.calls = 0

    def predict(self, batch: pd.DataFrame) -> np.ndarray:
        self.calls += 1
        z = 3.0 * (batch["Oldpeak"].to_numpy(dtype=float) - 1.0) + 0.01 * (batch["Age"].to_numpy(dtype=float) - 55)
        p = 1.0 / (1.0 + np.exp(-z))
        return np.column_stack([1.0 - p, p])


class FlakyModel(OldpeakModel):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    def predict(self, batch: pd.DataFrame) -> np.ndarray:
        if self.failures > 0:
            self.failures -= 1
            self.calls += 1
            raise RuntimeError("inference backend unavailable")
        return super().predict(batch)


def _corpus(n: int = 1000) -> pd.DataFrame:
    rng = np.random.default_rng(2024)
    return pd.DataFrame(
        {
            "Age": rng.normal(55, 9, size=n),
            "Oldpeak": rng.uniform(0.0, 2.0, size=n),
            "Sex": rng.choice(["0", "1"], size=n),
            "FastingBS": np.zeros(n),
        }
    )


def _instance(instance_id: str = "case-1") -> Instance:
    return Instance({"Age": 60.0, "Oldpeak": 1.8, "Sex": "1", "FastingBS": 0.0}, instance_id=instance_id)


def _explainer(seed: int = 42, **kwargs) -> TabularExplainer:
    config = ExplainerConfig(num_perturbations=600, num_features_to_select=3, random_seed=seed, **kwargs)
    return TabularExplainer(config).fit(_corpus(), categorical_features=["Sex"])


def test_explain_before_fit_raises() -> None:
    explainer = TabularExplainer(ExplainerConfig(num_perturbations=50))
    assert not explainer.is_fitted
    with pytest.raises(UnfitExplainerError):
        explainer.explain(OldpeakModel(), _instance())
    with pytest.raises(UnfitExplainerError):
        explainer.explain_many(OldpeakModel(), [_instance()])


def test_explanation_has_at_most_k_real_valued_entries() -> None:
    exp = _explainer().explain(OldpeakModel(), _instance(), label=1)

    assert isinstance(exp, Explanation)
    assert 1 <= len(exp.entries) <= 3
    assert all(isinstance(e, ExplanationEntry) and isinstance(e.weight, float) for e in exp.entries)
    assert exp.label == 1
    assert exp.instance_id == "case-1"
    assert exp.model_name == "monotone_oldpeak"


def test_single_batched_inference_per_explain_call() -> None:
    model = OldpeakModel()
    _explainer().explain(model, _instance(), label=1)
    assert model.calls == 1


def test_same_seed_gives_identical_explanations() -> None:
    first = _explainer(seed=5).explain(OldpeakModel(), _instance(), label=1)
    second = _explainer(seed=5).explain(OldpeakModel(), _instance(), label=1)

    assert first == second
    assert first.features == second.features


def test_constant_feature_is_silently_excluded() -> None:
    exp = _explainer().explain(OldpeakModel(), _instance(), label=1)
    assert "FastingBS" not in exp.features
    assert len(exp.entries) == 3


def test_oldpeak_weight_is_positive_across_seeds() -> None:
    explanations = [_explainer(seed=s).explain(OldpeakModel(), _instance(), label=1) for s in range(5)]

    positives = 0
    for exp in explanations:
        weights = [e.weight for e in exp.entries if e.feature == "Oldpeak"]
        if weights and weights[0] > 0:
            positives += 1
    assert positives >= 3

    summary = aggregate_explanations(explanations).to_frame()
    oldpeak = summary[summary["feature"] == "Oldpeak"]
    assert oldpeak["description"].str.startswith("Oldpeak >").all()
    assert float(oldpeak["mean_weight"].iloc[0]) > 0


def test_default_label_comes_from_config() -> None:
    explainer = _explainer(labels_to_explain=(0,))
    exp = explainer.explain(OldpeakModel(), _instance())
    assert exp.label == 0
    assert len(explainer.explain_labels(OldpeakModel(), _instance())) == 1


def test_unknown_label_rejected() -> None:
    with pytest.raises(ValueError):
        _explainer().explain(OldpeakModel(), _instance(), label=7)


def test_blackbox_failure_is_retried_once() -> None:
    model = FlakyModel(failures=1)
    exp = _explainer().explain(model, _instance(), label=1)
    assert model.calls == 2
    assert len(exp.entries) > 0


def test_blackbox_failure_surfaces_after_retry() -> None:
    model = FlakyModel(failures=5)
    with pytest.raises(BlackBoxInvocationError):
        _explainer().explain(model, _instance(), label=1)
    assert model.calls == 2


def test_cancelled_call_returns_nothing() -> None:
    event = threading.Event()
    event.set()
    model = OldpeakModel()
    with pytest.raises(ExplainCancelledError):
        _explainer().explain(model, _instance(), label=1, cancel_event=event)
    assert model.calls == 0


def test_unknown_category_fails_only_that_call() -> None:
    explainer = _explainer()
    bad = Instance({"Age": 60.0, "Oldpeak": 1.8, "Sex": "9", "FastingBS": 0.0}, instance_id="bad")

    with pytest.raises(UnknownCategoryError):
        explainer.explain(OldpeakModel(), bad, label=1)
    assert explainer.explain(OldpeakModel(), _instance(), label=1).entries


def test_explain_many_parallel_matches_sequential() -> None:
    explainer = _explainer()
    cases = [_instance(f"case-{i}") for i in range(4)]

    sequential = explainer.explain_many(OldpeakModel(), cases, labels=[1], n_jobs=1)
    parallel = explainer.explain_many(OldpeakModel(), cases, labels=[1], n_jobs=2)

    assert len(sequential) == 4
    assert list(sequential.explanations) == list(parallel.explanations)


def test_explain_many_skip_drops_failed_calls() -> None:
    explainer = _explainer()
    bad = Instance({"Age": 60.0, "Oldpeak": 1.8, "Sex": "9", "FastingBS": 0.0}, instance_id="bad")

    out = explainer.explain_many(OldpeakModel(), [_instance(), bad], labels=[1], on_error="skip")
    assert [e.instance_id for e in out] == ["case-1"]
    with pytest.raises(UnknownCategoryError):
        explainer.explain_many(OldpeakModel(), [_instance(), bad], labels=[1], on_error="raise")


def test_low_fidelity_flag_follows_threshold() -> None:
    exp = _explainer(low_fidelity_r2=1.01).explain(OldpeakModel(), _instance(), label=1)
    assert exp.low_fidelity
    assert exp.score <= 1.0


class ArrayClassesModel(OldpeakModel):
    classes = np.array([0, 1])


class NanModel(OldpeakModel):
    def predict(self, batch: pd.DataFrame) -> np.ndarray:
        proba = super().predict(batch)
        proba[1, :] = np.nan
        return proba


def test_numpy_array_classes_are_accepted() -> None:
    exp = _explainer().explain(ArrayClassesModel(), _instance(), label=1)
    assert exp.label == 1
    assert exp.entries

    with pytest.raises(ValueError):
        _explainer().explain(ArrayClassesModel(), _instance(), label=3)


def test_non_finite_probabilities_are_a_blackbox_failure() -> None:
    explainer = _explainer()
    with pytest.raises(BlackBoxInvocationError):
        explainer.explain(NanModel(), _instance(), label=1)

    out = explainer.explain_many(NanModel(), [_instance()], labels=[1], on_error="skip")
    assert len(out) == 0
