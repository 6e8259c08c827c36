import numpy as np
import pandas as pd

from heart_lime_ml.explain.contracts import Instance
from heart_lime_ml.explain.discretize import fit_discretizer
from heart_lime_ml.explain.kernel import kernel_weights
from heart_lime_ml.explain.sampling import derive_rng, sample_perturbations


def _scheme_and_instance():
    rng = np.random.default_rng(0)
    corpus = pd.DataFrame(
        {
            "Age": rng.normal(55, 9, size=300),
            "Oldpeak": rng.uniform(0, 2, size=300),
            "Sex": rng.choice(["0", "1"], size=300),
        }
    )
    scheme = fit_discretizer(corpus, categorical_features=["Sex"])
    instance = Instance({"Age": 61.0, "Oldpeak": 1.8, "Sex": "1"}, instance_id="case-1")
    return scheme, instance


def test_anchor_row_is_all_ones_and_reconstructs_instance() -> None:
    scheme, instance = _scheme_and_instance()
    batch = sample_perturbations(scheme, instance, 200, derive_rng(7, instance.instance_id, 1))

    assert batch.indicators.shape == (200, 3)
    assert batch.indicators[0].tolist() == [1, 1, 1]
    anchor = next(batch.samples()).instance
    assert dict(anchor) == {"Age": 61.0, "Oldpeak": 1.8, "Sex": "1"}


def test_indicators_match_bin_agreement_with_instance() -> None:
    scheme, instance = _scheme_and_instance()
    batch = sample_perturbations(scheme, instance, 300, derive_rng(7, instance.instance_id, 1))

    codes = scheme.transform_frame(batch.frame)
    same_bin = codes == np.asarray(scheme.transform(instance))
    assert np.array_equal(same_bin, batch.indicators.astype(bool))

    kept = batch.indicators[:, 1] == 1
    assert np.all(batch.frame.loc[kept, "Oldpeak"].to_numpy() == 1.8)


def test_replacement_values_come_from_corpus() -> None:
    scheme, instance = _scheme_and_instance()
    batch = sample_perturbations(scheme, instance, 300, derive_rng(3, instance.instance_id, 1))

    corpus_ages = set(scheme.rule("Age").corpus_values.tolist())
    replaced = batch.indicators[:, 0] == 0
    assert replaced.any()
    assert set(batch.frame.loc[replaced, "Age"].tolist()).issubset(corpus_ages)


def test_derive_rng_is_reproducible_per_instance_and_label() -> None:
    scheme, instance = _scheme_and_instance()
    a = sample_perturbations(scheme, instance, 100, derive_rng(11, "case-1", 1))
    b = sample_perturbations(scheme, instance, 100, derive_rng(11, "case-1", 1))
    c = sample_perturbations(scheme, instance, 100, derive_rng(11, "case-1", 0))

    assert np.array_equal(a.indicators, b.indicators)
    pd.testing.assert_frame_equal(a.frame, b.frame)
    assert not np.array_equal(a.indicators, c.indicators)


def test_anchor_gets_maximum_kernel_weight() -> None:
    scheme, instance = _scheme_and_instance()
    batch = sample_perturbations(scheme, instance, 200, derive_rng(5, instance.instance_id, 1))
    weights = kernel_weights(batch.indicators)

    assert weights[0] == 1.0
    assert weights.max() == 1.0


def test_every_sample_carries_its_proximity_weight() -> None:
    scheme, instance = _scheme_and_instance()
    batch = sample_perturbations(scheme, instance, 200, derive_rng(5, instance.instance_id, 1))

    samples = list(batch.samples())
    assert len(samples) == 200
    assert samples[0].weight == 1.0
    assert all(np.isfinite(s.weight) and 0.0 < s.weight <= 1.0 for s in samples)
    assert np.allclose([s.weight for s in samples], kernel_weights(batch.indicators))


def test_sample_weights_follow_configured_bandwidth() -> None:
    scheme, instance = _scheme_and_instance()
    narrow = sample_perturbations(scheme, instance, 200, derive_rng(5, "case-1", 1), bandwidth=0.25)
    wide = sample_perturbations(scheme, instance, 200, derive_rng(5, "case-1", 1), bandwidth=2.0)

    assert narrow.weights[0] == wide.weights[0] == 1.0
    replaced = narrow.indicators.min(axis=1) == 0
    assert replaced.any()
    assert np.all(narrow.weights[replaced] < wide.weights[replaced])
