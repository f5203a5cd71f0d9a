"""
Model utilities for held-out evaluation and model comparison.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Dict, Optional
from sklearn.metrics import (
    roc_auc_score, average_precision_score, f1_score,
    precision_score, recall_score, accuracy_score,
    confusion_matrix, classification_report
)
import logging

from ..pipeline.data_loading import Dataset
from ..pipeline.training import FittedModel

logger = logging.getLogger(__name__)

LABELS = [0, 1]


@dataclass(frozen=True, eq=False)
class EvaluationResult:
    """Held-out predictions and metrics for one fitted model."""

    model_name: str
    predictions: np.ndarray
    probabilities: np.ndarray
    accuracy: float
    confusion_matrix: pd.DataFrame
    metrics: Dict[str, float]
    classification_report: str = ""

    @property
    def n_rows(self) -> int:
        return int(self.confusion_matrix.to_numpy().sum())


class ModelEvaluator:
    """Comprehensive model evaluation."""

    def calculate_metrics(self,
                          y_true: np.ndarray,
                          y_pred: np.ndarray,
                          y_proba: np.ndarray) -> Dict[str, float]:
        """
        Calculate comprehensive evaluation metrics.

        Args:
            y_true: True binary labels
            y_pred: Predicted binary labels
            y_proba: Predicted probabilities

        Returns:
            Dictionary of metrics
        """
        metrics = {}

        # Basic classification metrics
        metrics['accuracy'] = float(accuracy_score(y_true, y_pred))
        metrics['precision'] = float(precision_score(y_true, y_pred, zero_division=0))
        metrics['recall'] = float(recall_score(y_true, y_pred, zero_division=0))
        metrics['f1_score'] = float(f1_score(y_true, y_pred, zero_division=0))

        # Probability-based metrics need both classes present
        if len(np.unique(y_true)) == 2:
            metrics['roc_auc'] = float(roc_auc_score(y_true, y_proba))
            metrics['pr_auc'] = float(average_precision_score(y_true, y_proba))
        else:
            metrics['roc_auc'] = float('nan')
            metrics['pr_auc'] = float('nan')

        # Confusion matrix components
        tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=LABELS).ravel()
        metrics['true_negatives'] = int(tn)
        metrics['false_positives'] = int(fp)
        metrics['false_negatives'] = int(fn)
        metrics['true_positives'] = int(tp)

        # Additional metrics
        metrics['specificity'] = tn / (tn + fp) if (tn + fp) > 0 else 0.0
        metrics['sensitivity'] = tp / (tp + fn) if (tp + fn) > 0 else 0.0
        metrics['npv'] = tn / (tn + fn) if (tn + fn) > 0 else 0.0  # Negative Predictive Value
        metrics['ppv'] = tp / (tp + fp) if (tp + fp) > 0 else 0.0  # Positive Predictive Value

        return metrics

    def evaluate(self, model: FittedModel, test: Dataset, threshold: float = 0.5) -> EvaluationResult:
        """
        Score a fitted model on raw held-out rows.

        The model's own recipe parameters transform ``test``; a column
        mismatch raises SchemaError.
        """
        logger.info(f"Evaluating {model.name} on {len(test)} held-out rows...")
        y_true = test.y.to_numpy()
        y_proba = model.predict_proba(test.X)
        y_pred = (y_proba >= threshold).astype(int)

        cm = confusion_matrix(y_true, y_pred, labels=LABELS)
        cm_df = pd.DataFrame(
            cm,
            index=pd.Index(LABELS, name='true'),
            columns=pd.Index(LABELS, name='predicted'),
        )
        accuracy = float(np.trace(cm) / cm.sum()) if cm.sum() else float('nan')

        metrics = self.calculate_metrics(y_true, y_pred, y_proba)
        logger.info(f"{model.name}: accuracy={accuracy:.4f}, roc_auc={metrics['roc_auc']:.4f}")

        return EvaluationResult(
            model_name=model.name,
            predictions=y_pred,
            probabilities=y_proba,
            accuracy=accuracy,
            confusion_matrix=cm_df,
            metrics=metrics,
            classification_report=self.generate_classification_report(y_true, y_pred),
        )

    def generate_classification_report(self,
                                       y_true: np.ndarray,
                                       y_pred: np.ndarray) -> str:
        """Generate detailed classification report."""
        return classification_report(y_true, y_pred, labels=LABELS, zero_division=0)


class ModelComparator:
    """Compare multiple models."""

    def __init__(self):
        """Initialize comparator."""
        self.results: Dict[str, EvaluationResult] = {}

    def add_result(self, name: str, evaluation: EvaluationResult):
        """Add a model's held-out evaluation for comparison."""
        self.results[name] = evaluation

    def compare_models(self) -> pd.DataFrame:
        """Create comparison table."""
        if not self.results:
            return pd.DataFrame()

        comparison_df = pd.DataFrame({
            name: {'accuracy': result.accuracy, **{k: v for k, v in result.metrics.items() if k != 'accuracy'}}
            for name, result in self.results.items()
        }).T
        comparison_df.index.name = 'model'

        return comparison_df.sort_values('accuracy', ascending=False, kind='stable')

    def get_best_model(self, metric: str = 'accuracy') -> Optional[str]:
        """Get name of best performing model."""
        if not self.results:
            return None

        best_score = -np.inf
        best_model = None

        for model_name, result in self.results.items():
            score = result.accuracy if metric == 'accuracy' else result.metrics.get(metric)
            if score is not None and not np.isnan(score) and score > best_score:
                best_score = score
                best_model = model_name

        return best_model
