"""
Main Experiment Pipeline

Load -> describe -> split -> fit recipe on Train -> tune and refit both model
families -> evaluate on Test -> explain -> compare.
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..config import load_config
from ..exceptions import PipelineError
from ..utils import descriptive, plotting
from ..utils.experiment_tracking import setup_experiment_tracking
from ..utils.explainability import ModelExplainer
from ..utils.model_utils import EvaluationResult, ModelComparator, ModelEvaluator
from .data_loading import Dataset, DatasetSchema, load_dataset
from .model_specs import HyperparameterGrid, MODEL_FAMILIES, describe_grid
from .preprocessing import PreprocessingRecipe, RecipeParams
from .splitting import DataSplit, StratifiedSplitter
from .training import SKLEARN_SCORERS, FittedModel, ModelTrainer, TrainingResult

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ModelReport:
    """Everything produced for one model family."""

    name: str
    training: TrainingResult
    evaluation: EvaluationResult
    importance: Optional[pd.DataFrame] = None
    partial_dependence: Dict[str, pd.DataFrame] = field(default_factory=dict)

    @property
    def accuracy(self) -> float:
        return self.evaluation.accuracy


@dataclass(frozen=True, eq=False)
class ExperimentReport:
    summary: pd.DataFrame
    class_balance: pd.DataFrame
    recipe_params: RecipeParams
    models: Dict[str, ModelReport]
    comparison: pd.DataFrame
    best_model: Optional[str]
    charts: Tuple[Path, ...] = ()

    def accuracies(self) -> Dict[str, float]:
        return {name: report.accuracy for name, report in self.models.items()}


class HeartFailureExperiment:
    """Heart failure outcome classification experiment driven by a config dict."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.random_seed = config.get('random_seed', 42)
        self.scoring = config.get('training', {}).get('scoring', 'roc_auc')
        self.schema = DatasetSchema.from_config(config)
        self.experiment_tracker = setup_experiment_tracking(config)

    # ---------- Data ----------
    def load_data(self, data_path: str) -> Dataset:
        data_cfg = self.config.get('data', {})
        return load_dataset(
            data_path,
            schema=self.schema,
            use_dask=data_cfg.get('use_dask', False),
            validation_rules=data_cfg.get('validation_rules'),
        )

    def describe_data(self, dataset: Dataset) -> Dict[str, pd.DataFrame]:
        descriptive.log_overview(dataset)
        return {
            'summary': descriptive.summarize(dataset),
            'correlation': descriptive.correlation_matrix(dataset),
            'class_balance': descriptive.class_balance(dataset),
            'outcome_rates': descriptive.outcome_rates(dataset),
        }

    def split_data(self, dataset: Dataset) -> DataSplit:
        return StratifiedSplitter.from_config(self.config).split(dataset)

    # ---------- Modelling ----------
    def build_recipe(self) -> PreprocessingRecipe:
        return PreprocessingRecipe.from_config(
            self.config,
            numeric_features=self.schema.numeric_features,
            categorical_features=self.schema.binary_features,
        )

    def build_grids(self) -> Dict[str, HyperparameterGrid]:
        """Grids of all enabled families, in the fixed family order."""
        models_cfg = self.config.get('models', {})
        grids = {}
        for family in MODEL_FAMILIES:
            model_cfg = models_cfg.get(family, {})
            if not model_cfg.get('enabled', True):
                logger.info(f"Skipping disabled model family: {family}")
                continue
            grids[family] = HyperparameterGrid.from_config(family, model_cfg)
            logger.info(f"[{family}] grid ({len(grids[family])} combinations): {describe_grid(grids[family])}")
        if not grids:
            logger.warning("No model family enabled")
        return grids

    def train_model(self, grid: HyperparameterGrid, split: DataSplit) -> TrainingResult:
        train_cfg = self.config.get('training', {})
        trainer = ModelTrainer(
            grid=grid,
            recipe=self.build_recipe(),
            scoring=self.scoring,
            random_state=self.random_seed,
            scheduler=train_cfg.get('scheduler', 'synchronous'),
            imbalance=self.config.get('imbalance'),
            show_progress=train_cfg.get('show_progress', False),
        )
        return trainer.fit(split.train, split.folds)

    def evaluate_model(self, model: FittedModel, test: Dataset) -> EvaluationResult:
        return ModelEvaluator().evaluate(model, test)

    def explain_model(self, model: FittedModel, train: Dataset) -> Tuple[pd.DataFrame, Dict[str, pd.DataFrame]]:
        explain_cfg = self.config.get('explain', {})
        explainer = ModelExplainer(
            model,
            background=train.X,
            target=train.y,
            n_repeats=explain_cfg.get('n_repeats', 10),
            random_state=self.random_seed,
            scoring=SKLEARN_SCORERS[self.scoring],
        )
        importance = explainer.feature_importance()
        logger.info(f"[{model.name}] Top features: "
                    f"{', '.join(importance['feature'].head(3))}")

        curves = {
            feature: explainer.partial_dependence(
                feature,
                grid_resolution=explain_cfg.get('grid_resolution', 20),
                smoothing_window=explain_cfg.get('smoothing_window', 3),
            )
            for feature in explain_cfg.get('features', [])
        }
        return importance, curves

    # ---------- Reporting ----------
    def write_charts(self, output_dir: Path, dataset: Dataset, tables: Dict[str, pd.DataFrame],
                     reports: Dict[str, ModelReport], comparison: pd.DataFrame) -> List[Path]:
        dpi = self.config.get('reporting', {}).get('dpi', 150)
        out = Path(output_dir)
        charts = [
            plotting.plot_correlation_matrix(tables['correlation'], out / "correlation_matrix.png", dpi=dpi),
            plotting.plot_response_distribution(dataset, out / "response_distribution.png", dpi=dpi),
            plotting.plot_category_distributions(dataset, out / "category_distributions.png", dpi=dpi),
            plotting.plot_numeric_boxplots(dataset, out / "numeric_boxplots.png", dpi=dpi),
        ]
        for name, report in reports.items():
            charts.append(plotting.plot_cv_roc_curves(
                report.training.fold_predictions, out / f"{name}_cv_roc.png",
                title=f"{name}: cross-validation ROC", dpi=dpi))
            charts.append(plotting.plot_confusion_matrix(
                report.evaluation.confusion_matrix, out / f"{name}_confusion_matrix.png",
                title=f"{name}: confusion matrix", dpi=dpi))
            if report.importance is not None:
                charts.append(plotting.plot_feature_importance(
                    report.importance, out / f"{name}_feature_importance.png",
                    title=f"{name}: permutation importance", dpi=dpi))
            if report.partial_dependence:
                charts.append(plotting.plot_partial_dependence(
                    report.partial_dependence, out / f"{name}_partial_dependence.png",
                    title=f"{name}: partial dependence", dpi=dpi))
        if not comparison.empty:
            charts.append(plotting.plot_accuracy_comparison(comparison, out / "accuracy_comparison.png", dpi=dpi))
        logger.info(f"Wrote {len(charts)} charts to {out}")
        return charts

    # ---------- Orchestration ----------
    def run(self, data_path: str, output_dir: Optional[str] = None) -> ExperimentReport:
        logger.info("Starting heart failure classification experiment...")
        start_time = time.time()
        tracker = self.experiment_tracker
        run_context = tracker.start_run("heart_failure_experiment") if tracker else contextlib.nullcontext()

        with run_context:
            if tracker:
                tracker.log_params(self.config)

            dataset = self.load_data(data_path)
            tables = self.describe_data(dataset)
            split = self.split_data(dataset)

            # Fit once on Train for reporting; the trainers refit inside every fold
            recipe_params = self.build_recipe().fit(split.train.X)
            logger.info(f"Recipe fitted on {len(split.train)} Train rows "
                        f"(fingerprint {recipe_params.fingerprint()[:12]}):\n{recipe_params.to_yaml()}")
            if tracker:
                tracker.log_dict(recipe_params.to_dict(), "recipe_params.yaml")

            comparator = ModelComparator()
            reports: Dict[str, ModelReport] = {}
            for family, grid in self.build_grids().items():
                training = self.train_model(grid, split)
                evaluation = self.evaluate_model(training.model, split.test)
                importance, curves = self.explain_model(training.model, split.train)
                reports[family] = ModelReport(
                    name=family,
                    training=training,
                    evaluation=evaluation,
                    importance=importance,
                    partial_dependence=curves,
                )
                comparator.add_result(family, evaluation)
                if tracker:
                    tracker.log_params(training.best_params, prefix=f"{family}.best")
                    tracker.log_metrics({f"cv_{self.scoring}": training.best_score}, prefix=family)
                    tracker.log_metrics(evaluation.metrics, prefix=family)

            comparison = comparator.compare_models()
            best_model = comparator.get_best_model('accuracy')
            for name, report in reports.items():
                logger.info(f"{name}: test accuracy {report.accuracy:.4f}\n{report.evaluation.confusion_matrix}\n"
                            f"{report.evaluation.classification_report}")
            if best_model:
                logger.info(f"Best model by test accuracy: {best_model}")

            charts: List[Path] = []
            if output_dir and self.config.get('reporting', {}).get('enabled', True):
                charts = self.write_charts(Path(output_dir), dataset, tables, reports, comparison)
                if tracker:
                    tracker.log_artifacts(str(output_dir))

        logger.info(f"Experiment completed in {time.time() - start_time:.2f} seconds")
        return ExperimentReport(
            summary=tables['summary'],
            class_balance=tables['class_balance'],
            recipe_params=recipe_params,
            models=reports,
            comparison=comparison,
            best_model=best_model,
            charts=tuple(charts),
        )


# =====================
# CLI entrypoint
# =====================

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Heart failure outcome classification experiment")
    parser.add_argument("--data", type=str, required=True, help="Path to the heart failure clinical records CSV")
    parser.add_argument("--config", type=str, default=None, help="Optional YAML configuration merged over the defaults")
    parser.add_argument("--output", type=str, default=None, help="Directory for charts (no charts when omitted)")
    parser.add_argument("--no-plots", action="store_true", help="Skip chart rendering even when --output is set")
    args = parser.parse_args(argv)

    try:
        overrides = {'reporting': {'enabled': False}} if args.no_plots else None
        config = load_config(args.config, overrides=overrides)

        np.random.seed(config.get("random_seed", 42))

        report = HeartFailureExperiment(config).run(args.data, args.output)
    except PipelineError as e:
        logger.error(f"Experiment failed: {e}")
        return 1

    if not report.comparison.empty:
        print(report.comparison[['accuracy', 'roc_auc']].to_string())
    if args.output and report.charts:
        print("Charts written to:", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
