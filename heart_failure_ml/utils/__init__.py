"""Evaluation, explanation, tracking and reporting utilities."""

from .experiment_tracking import ExperimentTracker, setup_experiment_tracking
from .model_utils import (
    EvaluationResult,
    ModelEvaluator,
    ModelComparator
)
from .explainability import ModelExplainer

__all__ = [
    'ExperimentTracker',
    'setup_experiment_tracking',
    'EvaluationResult',
    'ModelEvaluator',
    'ModelComparator',
    'ModelExplainer'
]
