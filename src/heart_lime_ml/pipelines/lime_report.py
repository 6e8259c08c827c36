"""
LIME explanation report across the five heart disease classifiers.

Run:
  python src/heart_lime_ml/pipelines/lime_report.py --run-tag latest

Outputs (under ./outputs/lime_report/<run-tag>/):
  - discretization_scheme.csv
  - local_explanations.csv
  - aggregated_local_weights.csv
  - global_local_comparison.csv
  - lime_case_weights_<model_key>.png
  - lime_aggregated_weights_<model_key>.png
  - lime_top_features.md
  - lime_summary.json
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

from heart_lime_ml.explain.aggregate import ExplanationSet, explanations_to_frame
from heart_lime_ml.explain.compare import ComparisonResult, compare_global_local
from heart_lime_ml.explain.config import ExplainerConfig, load_config
from heart_lime_ml.explain.contracts import Instance
from heart_lime_ml.explain.explainer import TabularExplainer
from heart_lime_ml.explain.models import SklearnClassifierModel
from heart_lime_ml.pipelines import train_models as tm
from heart_lime_ml.pipelines.heart_data import (
    CATEGORICAL_COLS,
    DEFAULT_N_CASES,
    DEFAULT_SPLIT_SEED,
    DEFAULT_TEST_SIZE,
    POSITIVE_LABEL,
    load_heart_dataset,
    sample_cases,
    split_dataset,
)
from heart_lime_ml.pipelines.paths import project_root, resolve_data_path

LOGGER = logging.getLogger(__name__)

OUT_ROOT = project_root() / "outputs" / "lime_report"
DEFAULT_MODELS_DIR = project_root() / "outputs" / "models"


def explain_model(
    explainer: TabularExplainer,
    trained: tm.TrainedModel,
    cases: list[Instance],
    feature_names: list[str],
) -> ExplanationSet:
    model = SklearnClassifierModel(trained.pipeline, feature_names, name=trained.spec.name)
    return explainer.explain_many(model, cases, on_error="skip")


def comparison_rows(model_key: str, model_name: str, comparison: ComparisonResult) -> pd.DataFrame:
    frame = comparison.to_frame()
    frame.insert(0, "model", model_name)
    frame.insert(0, "model_key", model_key)
    return frame


def plot_case_weights(explanation_set: ExplanationSet, title: str, out_path: Path) -> None:
    """One horizontal bar panel per explained case, green supports / red contradicts."""
    cases = list(explanation_set)
    if not cases:
        return
    fig, axes = plt.subplots(len(cases), 1, figsize=(9, 2.4 * len(cases)), squeeze=False)
    for ax, exp in zip(axes[:, 0], cases, strict=True):
        entries = list(exp.entries)[::-1]
        colors = ["#1b9e77" if e.weight >= 0 else "#d95f02" for e in entries]
        ax.barh([e.description for e in entries], [e.weight for e in entries], color=colors)
        ax.axvline(0.0, color="#444444", linewidth=0.8)
        ax.set_title(
            f"Case {exp.instance_id} | label={exp.label} | prob={exp.model_prediction:.2f} | R2={exp.score:.2f}",
            fontsize=9,
        )
        ax.tick_params(axis="y", labelsize=8)
    fig.suptitle(title)
    fig.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)


def plot_aggregated_weights(summary: pd.DataFrame, title: str, out_path: Path, top_n: int = 10) -> None:
    if summary.empty:
        return
    top = summary.head(top_n).iloc[::-1]
    colors = ["#1b9e77" if w >= 0 else "#d95f02" for w in top["mean_weight"]]
    plt.figure(figsize=(10, 6))
    plt.barh(top["description"], top["mean_weight"], xerr=top["std_weight"], color=colors)
    plt.axvline(0.0, color="#444444", linewidth=0.8)
    plt.xlabel("Mean local weight (error bar = std across cases)")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_path, dpi=180)
    plt.close()


def build_markdown(
    per_model: dict[str, dict[str, Any]],
    config: ExplainerConfig,
    n_cases: int,
) -> str:
    lines = [
        "# LIME Local Explanations",
        "",
        f"- Cases explained per model: `{n_cases}`",
        f"- Perturbations per case: `{config.num_perturbations}`",
        f"- Features per explanation (K): `{config.num_features_to_select}`",
        f"- Quantile bins: `{config.num_bins}`",
        f"- Labels explained: `{list(config.labels_to_explain)}`",
        "",
    ]
    for key, info in per_model.items():
        lines.append(f"## {info['model']} (`{key}`)")
        lines.append(f"- Holdout accuracy: `{info['metrics']['accuracy']:.4f}` | ROC AUC: `{info['metrics']['roc_auc']:.4f}`")
        lines.append(f"- Low-fidelity explanations: `{info['n_low_fidelity']}` of `{info['n_explanations']}`")
        lines.append("")
        lines.append("Top aggregated conditions:")
        for i, row in enumerate(info["top_conditions"], start=1):
            lines.append(
                f"{i}. `{row['description']}` | mean=`{row['mean_weight']:+.4f}` "
                f"| std=`{row['std_weight']:.4f}` | cases=`{row['n_cases']}`"
            )
        lines.append("")
        lines.append(f"- In both top-K: `{info['comparison']['in_both']}`")
        lines.append(f"- Only global top-K: `{info['comparison']['global_only']}`")
        lines.append(f"- Only local top-K: `{info['comparison']['local_only']}`")
        lines.append("")
    return "\n".join(lines)


def run_lime_report(
    data_path: Path,
    out_dir: Path,
    config: ExplainerConfig,
    *,
    model_names: list[str],
    models_dir: Path | None = None,
    n_cases: int = DEFAULT_N_CASES,
    split_seed: int = DEFAULT_SPLIT_SEED,
    test_size: float = DEFAULT_TEST_SIZE,
    importance_method: str = "native",
    top_k: int = 5,
) -> dict[str, Any]:
    frame = load_heart_dataset(data_path)
    split = split_dataset(frame, test_size=test_size, seed=split_seed)
    feature_names = list(split.x_train.columns)

    trained = None
    if models_dir is not None:
        trained = tm.load_trained_models(
            models_dir, split, model_names, seed=split_seed, importance_method=importance_method
        )
    if trained is None:
        trained = tm.train_models(split, model_names, seed=split_seed, importance_method=importance_method)

    explainer = TabularExplainer(config).fit(split.x_train, categorical_features=CATEGORICAL_COLS)
    cases = sample_cases(split.x_test, n_cases=n_cases, seed=split_seed)

    out_dir.mkdir(parents=True, exist_ok=True)
    explainer.scheme.summary_frame().to_csv(out_dir / "discretization_scheme.csv", index=False)

    local_frames: list[pd.DataFrame] = []
    summary_frames: list[pd.DataFrame] = []
    comparison_frames: list[pd.DataFrame] = []
    per_model: dict[str, dict[str, Any]] = {}

    for key, trained_model in trained.items():
        LOGGER.info("Explaining %d cases for %s", len(cases), trained_model.spec.name)
        explanation_set = explain_model(explainer, trained_model, cases, feature_names)
        comparison = compare_global_local(trained_model.global_importance, explanation_set, top_k=top_k)

        local = explanations_to_frame(explanation_set)
        local.insert(0, "model_key", key)
        local_frames.append(local)

        summary = explanation_set.to_frame()
        summary.insert(0, "model", trained_model.spec.name)
        summary.insert(0, "model_key", key)
        summary_frames.append(summary)
        comparison_frames.append(comparison_rows(key, trained_model.spec.name, comparison))

        plot_case_weights(
            explanation_set,
            f"{trained_model.spec.name}: local explanations",
            out_dir / f"lime_case_weights_{key}.png",
        )
        plot_aggregated_weights(
            summary,
            f"{trained_model.spec.name}: aggregated local weights",
            out_dir / f"lime_aggregated_weights_{key}.png",
        )

        per_model[key] = {
            "model": trained_model.spec.name,
            "metrics": trained_model.metrics,
            "n_explanations": len(explanation_set),
            "n_low_fidelity": sum(1 for e in explanation_set if e.low_fidelity),
            "top_conditions": summary.head(top_k)[["description", "mean_weight", "std_weight", "n_cases"]].to_dict(
                orient="records"
            ),
            "comparison": {
                "in_both": list(comparison.in_both),
                "global_only": list(comparison.global_only),
                "local_only": list(comparison.local_only),
            },
        }

    pd.concat(local_frames, ignore_index=True).to_csv(out_dir / "local_explanations.csv", index=False)
    pd.concat(summary_frames, ignore_index=True).to_csv(out_dir / "aggregated_local_weights.csv", index=False)
    pd.concat(comparison_frames, ignore_index=True).to_csv(out_dir / "global_local_comparison.csv", index=False)

    (out_dir / "lime_top_features.md").write_text(build_markdown(per_model, config, len(cases)), encoding="utf-8")

    summary_payload = {
        "data_path": str(data_path),
        "explainer_config": config.to_dict(),
        "cases": [c.instance_id for c in cases],
        "models": per_model,
    }
    with (out_dir / "lime_summary.json").open("w", encoding="utf-8") as f:
        json.dump(summary_payload, f, indent=2, allow_nan=True, default=str)

    return summary_payload


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="LIME local explanation report for the heart disease classifiers")
    parser.add_argument("--data-path", type=Path, default=None)
    parser.add_argument("--run-tag", type=str, default="latest")
    parser.add_argument("--models", type=str, default=",".join(tm.MODEL_KEYS))
    parser.add_argument("--models-dir", type=Path, default=DEFAULT_MODELS_DIR)
    parser.add_argument("--config", type=Path, default=None, help="JSON file with explainer options.")
    parser.add_argument("--num-perturbations", type=int, default=None)
    parser.add_argument("--num-features", type=int, default=None)
    parser.add_argument("--num-bins", type=int, default=None)
    parser.add_argument("--kernel-bandwidth", type=float, default=None)
    parser.add_argument("--random-seed", type=int, default=None)
    parser.add_argument("--n-jobs", type=int, default=None)
    parser.add_argument("--n-cases", type=int, default=DEFAULT_N_CASES)
    parser.add_argument("--split-seed", type=int, default=DEFAULT_SPLIT_SEED)
    parser.add_argument("--test-size", type=float, default=DEFAULT_TEST_SIZE)
    parser.add_argument("--importance-method", type=str, default="native", choices=sorted(tm.IMPORTANCE_METHODS))
    parser.add_argument("--top-k", type=int, default=5)
    return parser.parse_args()


def config_from_args(args: argparse.Namespace) -> ExplainerConfig:
    overrides = {
        "num_perturbations": args.num_perturbations,
        "num_features_to_select": args.num_features,
        "num_bins": args.num_bins,
        "kernel_bandwidth": args.kernel_bandwidth,
        "random_seed": args.random_seed,
        "n_jobs": args.n_jobs,
    }
    if args.config is not None:
        return load_config(args.config, **overrides)
    return ExplainerConfig.from_mapping(
        {"labels_to_explain": (POSITIVE_LABEL,), **{k: v for k, v in overrides.items() if v is not None}}
    )


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    args = parse_args()
    data_path = resolve_data_path(args.data_path)
    out_dir = OUT_ROOT / str(args.run_tag)
    config = config_from_args(args)

    payload = run_lime_report(
        data_path,
        out_dir,
        config,
        model_names=tm.parse_model_list(args.models),
        models_dir=args.models_dir,
        n_cases=args.n_cases,
        split_seed=args.split_seed,
        test_size=args.test_size,
        importance_method=args.importance_method,
        top_k=args.top_k,
    )
    LOGGER.info("Saved LIME report outputs to %s", out_dir)
    for key, info in payload["models"].items():
        top = info["top_conditions"][0]["description"] if info["top_conditions"] else "n/a"
        LOGGER.info("%s | top aggregated condition: %s", key, top)


if __name__ == "__main__":
    main()
