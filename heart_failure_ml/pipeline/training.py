"""
Cross-validated grid search and final refit for one model family.
"""

from __future__ import annotations

import warnings
from sklearn.exceptions import ConvergenceWarning
# Non-convergence is detected from the fitted solver state instead
warnings.filterwarnings("ignore", category=ConvergenceWarning)

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import dask
import numpy as np
import pandas as pd
from dask.diagnostics import ProgressBar
from imblearn.over_sampling import SMOTE
from imblearn.pipeline import Pipeline as ImbPipeline
from sklearn.metrics import accuracy_score, average_precision_score, f1_score, roc_auc_score

from ..exceptions import ConfigurationError, ConvergenceError, SchemaError, UnseenCategoryError
from .data_loading import Dataset
from .model_specs import HyperparameterGrid, ModelSpec
from .preprocessing import PreprocessingRecipe, RecipeParams, RecipeTransformer
from .splitting import Fold

logger = logging.getLogger(__name__)

SCORING_METRICS = ('roc_auc', 'pr_auc', 'accuracy', 'f1')
# Scorer names understood by sklearn.inspection
SKLEARN_SCORERS = {'roc_auc': 'roc_auc', 'pr_auc': 'average_precision', 'accuracy': 'accuracy', 'f1': 'f1'}
SCHEDULERS = ('synchronous', 'threads', 'processes')


def score_predictions(metric: str, y_true: np.ndarray, y_score: np.ndarray) -> float:
    if metric == 'roc_auc':
        return float(roc_auc_score(y_true, y_score))
    if metric == 'pr_auc':
        return float(average_precision_score(y_true, y_score))
    y_pred = (y_score >= 0.5).astype(int)
    if metric == 'accuracy':
        return float(accuracy_score(y_true, y_pred))
    if metric == 'f1':
        return float(f1_score(y_true, y_pred, zero_division=0))
    raise ConfigurationError(f"Unknown scoring metric: {metric}")


@dataclass(frozen=True)
class TrialResult:
    """Validation score of one (combination, fold) pair. NaN score means the fit failed."""

    combination: int
    fold: int
    params: Dict[str, Any]
    score: float
    error: Optional[str] = None
    y_true: Optional[np.ndarray] = field(default=None, repr=False, compare=False)
    y_score: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True, eq=False)
class FittedModel:
    """Recipe + classifier refitted on the full Train set for one combination."""

    spec: ModelSpec
    pipeline: ImbPipeline
    input_columns: Tuple[str, ...]

    @property
    def name(self) -> str:
        return self.spec.family

    @property
    def recipe_params(self) -> RecipeParams:
        return self.pipeline.named_steps['recipe'].params_

    def _check_schema(self, X: pd.DataFrame) -> pd.DataFrame:
        missing = [col for col in self.input_columns if col not in X.columns]
        extra = [col for col in X.columns if col not in self.input_columns]
        if missing or extra:
            raise SchemaError(f"Predictor columns do not match the model: missing={missing}, unexpected={extra}")
        return X[list(self.input_columns)]

    def predict_proba(self, X: pd.DataFrame) -> np.ndarray:
        """Probability of the positive outcome for each row."""
        return self.pipeline.predict_proba(self._check_schema(X))[:, 1]

    def predict(self, X: pd.DataFrame, threshold: float = 0.5) -> np.ndarray:
        return (self.predict_proba(X) >= threshold).astype(int)


@dataclass(frozen=True, eq=False)
class TrainingResult:
    model: FittedModel
    trials: pd.DataFrame
    summary: pd.DataFrame
    best_combination: int
    best_params: Dict[str, Any]
    best_score: float
    fold_predictions: Tuple[Tuple[np.ndarray, np.ndarray], ...] = ()


class ModelTrainer:
    """Grid search with k-fold cross-validation, then refit of the winner on all of Train."""

    def __init__(self,
                 grid: HyperparameterGrid,
                 recipe: PreprocessingRecipe,
                 scoring: str = 'roc_auc',
                 random_state: int = 42,
                 scheduler: str = 'synchronous',
                 imbalance: Optional[Dict[str, Any]] = None,
                 show_progress: bool = False):
        """
        Initialize trainer.

        Args:
            grid: Hyperparameter combinations to search
            recipe: Unfitted preprocessing recipe, re-fitted inside every fold
            scoring: Fold metric ('roc_auc', 'pr_auc', 'accuracy', 'f1')
            random_state: Seed passed to every estimator
            scheduler: Dask scheduler used for the trials
            imbalance: Optional imbalance config, e.g. ``{'method': 'smote', 'smote': {...}}``
            show_progress: Show a Dask progress bar while trials run
        """
        if scoring not in SCORING_METRICS:
            raise ConfigurationError(f"Unknown scoring metric '{scoring}', expected one of {SCORING_METRICS}")
        if scheduler not in SCHEDULERS:
            raise ConfigurationError(f"Unknown scheduler '{scheduler}', expected one of {SCHEDULERS}")
        self.grid = grid
        self.recipe = recipe
        self.scoring = scoring
        self.random_state = random_state
        self.scheduler = scheduler
        self.imbalance = imbalance or {}
        self.show_progress = show_progress

    # ---------- Pipeline construction ----------
    def build_pipeline(self, spec: ModelSpec, X_fit: pd.DataFrame) -> ImbPipeline:
        """Recipe -> [SMOTE] -> model, with the model sized to the recipe output."""
        n_features = len(self.recipe.fit(X_fit).output_columns)
        steps: List[Tuple[str, Any]] = [('recipe', RecipeTransformer(**self.recipe.get_params()))]

        if self.imbalance.get('method') == 'smote':
            sp = self.imbalance.get('smote', {})
            steps.append((
                'smote',
                SMOTE(
                    sampling_strategy=sp.get('sampling_strategy', 'auto'),
                    k_neighbors=sp.get('k_neighbors', 5),
                    random_state=self.random_state,
                ),
            ))

        steps.append(('model', spec.build(random_state=self.random_state, n_features=n_features)))
        return ImbPipeline(steps)

    def _fit_pipeline(self, spec: ModelSpec, X: pd.DataFrame, y: pd.Series) -> ImbPipeline:
        pipe = self.build_pipeline(spec, X)
        pipe.fit(X, y)
        spec.check_convergence(pipe.named_steps['model'])
        return pipe

    # ---------- Trials ----------
    def run_trial(self, combination: int, spec: ModelSpec, fold: Fold,
                  X: pd.DataFrame, y: pd.Series) -> TrialResult:
        X_tr, X_va = X.iloc[fold.train_positions], X.iloc[fold.validation_positions]
        y_tr, y_va = y.iloc[fold.train_positions], y.iloc[fold.validation_positions]

        try:
            pipe = self._fit_pipeline(spec, X_tr, y_tr)
        except (ConfigurationError, SchemaError, UnseenCategoryError):
            raise
        except (ConvergenceError, ValueError) as e:
            # Sampler or estimator failures on one fold, e.g. too few minority rows for SMOTE
            logger.warning(f"[{spec.family}] combination {combination} fold {fold.index}: {e}")
            return TrialResult(combination=combination, fold=fold.index, params=spec.params(),
                               score=float('nan'), error=str(e))

        p_va = pipe.predict_proba(X_va)[:, 1]
        y_true = y_va.to_numpy()
        return TrialResult(
            combination=combination,
            fold=fold.index,
            params=spec.params(),
            score=score_predictions(self.scoring, y_true, p_va),
            y_true=y_true,
            y_score=p_va,
        )

    def evaluate_grid(self, train: Dataset, folds: Sequence[Fold]) -> List[TrialResult]:
        """Score every (combination, fold) pair. Each trial only reads the shared inputs."""
        X, y = train.X, train.y
        tasks = [
            dask.delayed(self.run_trial)(combination, spec, fold, X, y)
            for combination, spec in enumerate(self.grid)
            for fold in folds
        ]
        logger.info(f"[{self.grid.family}] Evaluating {len(self.grid)} combinations x {len(folds)} folds "
                    f"({len(tasks)} trials, scheduler={self.scheduler})")

        if self.show_progress:
            with ProgressBar():
                results = dask.compute(*tasks, scheduler=self.scheduler)
        else:
            results = dask.compute(*tasks, scheduler=self.scheduler)
        return sorted(results, key=lambda r: (r.combination, r.fold))

    # ---------- Selection ----------
    def summarize_trials(self, trials: List[TrialResult]) -> Tuple[pd.DataFrame, pd.DataFrame]:
        table = pd.DataFrame([
            {'combination': t.combination, 'fold': t.fold, **t.params, 'score': t.score, 'error': t.error}
            for t in trials
        ])
        summary = table.groupby('combination', sort=True).agg(
            mean_score=('score', 'mean'),
            std_score=('score', 'std'),
            n_failed=('error', lambda s: int(s.notna().sum())),
        )
        params = table.drop_duplicates('combination').set_index('combination')[list(self.grid.names)]
        summary = params.join(summary)
        return table, summary

    @staticmethod
    def select_best(summary: pd.DataFrame) -> int:
        """Highest mean score among fully converged combinations; first enumerated wins ties."""
        eligible = summary[(summary['n_failed'] == 0) & summary['mean_score'].notna()]
        if eligible.empty:
            raise ConvergenceError("No hyperparameter combination fitted successfully on every fold")
        best_score = eligible['mean_score'].max()
        return int(eligible.index[eligible['mean_score'] == best_score][0])

    # ---------- Orchestration ----------
    def fit(self, train: Dataset, folds: Sequence[Fold]) -> TrainingResult:
        if not folds:
            raise ConfigurationError("At least one fold is required for grid search")

        start_time = time.time()
        trials = self.evaluate_grid(train, folds)
        table, summary = self.summarize_trials(trials)

        n_failed = int(table['error'].notna().sum())
        if n_failed:
            logger.warning(f"[{self.grid.family}] {n_failed}/{len(table)} trials failed and were excluded")

        best = self.select_best(summary)
        specs = list(self.grid)
        best_spec = specs[best]
        best_score = float(summary.loc[best, 'mean_score'])
        logger.info(f"[{self.grid.family}] Best params: {best_spec.params()} "
                    f"(mean {self.scoring}={best_score:.4f})")

        # Final fit on all of Train
        X, y = train.X, train.y
        pipe = self.build_pipeline(best_spec, X)
        try:
            pipe.fit(X, y)
        except ValueError as e:
            raise ConfigurationError(f"[{self.grid.family}] Final refit failed: {e}") from e
        try:
            best_spec.check_convergence(pipe.named_steps['model'])
        except ConvergenceError as e:
            logger.warning(f"[{self.grid.family}] Final refit: {e}")

        fold_predictions = tuple(
            (t.y_true, t.y_score) for t in trials if t.combination == best and not t.failed
        )
        logger.info(f"[{self.grid.family}] Grid search and refit finished in {time.time() - start_time:.2f} seconds")

        return TrainingResult(
            model=FittedModel(spec=best_spec, pipeline=pipe, input_columns=tuple(X.columns)),
            trials=table,
            summary=summary,
            best_combination=best,
            best_params=best_spec.params(),
            best_score=best_score,
            fold_predictions=fold_predictions,
        )
