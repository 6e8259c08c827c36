"""Run model training and the LIME report stage and write a run manifest."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from heart_lime_ml.explain.config import ExplainerConfig, load_config
from heart_lime_ml.pipelines import train_models as tm
from heart_lime_ml.pipelines.heart_data import (
    DEFAULT_SPLIT_SEED,
    DEFAULT_TEST_SIZE,
    POSITIVE_LABEL,
    load_heart_dataset,
    split_dataset,
)
from heart_lime_ml.pipelines.lime_report import run_lime_report
from heart_lime_ml.pipelines.paths import project_root, resolve_data_path

LOGGER = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    root = project_root()
    parser = argparse.ArgumentParser(description="Run all heart disease explanation pipeline stages")
    parser.add_argument("--data-path", type=Path, default=None)
    parser.add_argument("--outputs-root", type=Path, default=root / "outputs")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--seed", type=int, default=DEFAULT_SPLIT_SEED)
    parser.add_argument("--test-size", type=float, default=DEFAULT_TEST_SIZE)
    parser.add_argument("--importance-method", type=str, default="native", choices=sorted(tm.IMPORTANCE_METHODS))
    return parser.parse_args()


def _run_training(data_path: Path, out_dir: Path, seed: int, test_size: float, importance_method: str) -> None:
    split = split_dataset(load_heart_dataset(data_path), test_size=test_size, seed=seed)
    trained = tm.train_models(split, tm.MODEL_KEYS, seed=seed, importance_method=importance_method)
    tm.save_artifacts(
        out_dir,
        trained,
        config={
            "data_path": str(data_path),
            "models": tm.MODEL_KEYS,
            "seed": seed,
            "test_size": test_size,
            "importance_method": importance_method,
        },
    )


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    args = parse_args()
    data_path = resolve_data_path(args.data_path)
    outputs_root = args.outputs_root
    config = load_config(args.config) if args.config is not None else ExplainerConfig(labels_to_explain=(POSITIVE_LABEL,))

    targets = {
        "models": outputs_root / "models",
        "lime_report": outputs_root / "lime_report" / "latest",
    }

    LOGGER.info("Stage 1/2: training models")
    _run_training(data_path, targets["models"], args.seed, args.test_size, args.importance_method)

    LOGGER.info("Stage 2/2: LIME report")
    run_lime_report(
        data_path,
        targets["lime_report"],
        config,
        model_names=tm.MODEL_KEYS,
        models_dir=targets["models"],
        split_seed=args.seed,
        test_size=args.test_size,
        importance_method=args.importance_method,
    )

    with (outputs_root / "run_all_manifest.json").open("w", encoding="utf-8") as f:
        json.dump(
            {
                "data_path": str(data_path),
                "explainer_config": config.to_dict(),
                "outputs": {name: str(path) for name, path in targets.items()},
            },
            f,
            indent=2,
        )


if __name__ == "__main__":
    main()
