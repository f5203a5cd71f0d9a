"""
Experiment tracking utilities using MLflow.

Tracking is optional: with ``experiment_tracking.backend: none`` (the default)
``setup_experiment_tracking`` returns None and nothing leaves the process.
"""

import logging
import time
from typing import Any, Dict, Optional

import mlflow
import pandas as pd
from mlflow.exceptions import MlflowException

logger = logging.getLogger(__name__)

# Tracking server errors and unwritable file stores
TRACKING_ERRORS = (MlflowException, OSError)


class ExperimentTracker:
    """MLflow run logging for one heart failure experiment."""

    def __init__(self, mlflow_config: Dict[str, Any]):
        """
        Initialize experiment tracker.

        Args:
            mlflow_config: ``experiment_tracking.mlflow`` section (tracking_uri, experiment_name)
        """
        self.tracking_uri = mlflow_config.get('tracking_uri', 'file:./mlruns')
        self.experiment_name = mlflow_config.get('experiment_name', 'heart_failure')

        mlflow.set_tracking_uri(self.tracking_uri)
        self.experiment_id = self._resolve_experiment()
        mlflow.set_experiment(experiment_id=self.experiment_id)
        logger.info(f"MLflow tracking to {self.tracking_uri} (experiment '{self.experiment_name}')")

    def _resolve_experiment(self) -> str:
        experiment = mlflow.get_experiment_by_name(self.experiment_name)
        if experiment is not None and experiment.lifecycle_stage != "deleted":
            return experiment.experiment_id
        if experiment is not None:
            # A deleted experiment still owns the name
            self.experiment_name = f"{self.experiment_name}_{int(time.time())}"
        return mlflow.create_experiment(self.experiment_name)

    def start_run(self, run_name: Optional[str] = None):
        """Start MLflow run; use as a context manager."""
        return mlflow.start_run(run_name=run_name)

    def log_params(self, params: Dict[str, Any], prefix: str = ""):
        """Log (nested) parameters to MLflow."""
        flat_params = self._flatten_dict(params, prefix)
        for key, value in flat_params.items():
            try:
                mlflow.log_param(key, value)
            except TRACKING_ERRORS as e:
                logger.warning(f"Failed to log param {key}: {e}")

    def log_metrics(self, metrics: Dict[str, float], prefix: str = "", step: Optional[int] = None):
        """Log numeric metrics to MLflow; NaN values are skipped."""
        for key, value in metrics.items():
            if value is None or pd.isna(value):
                continue
            name = f"{prefix}.{key}" if prefix else key
            try:
                mlflow.log_metric(name, float(value), step=step)
            except TRACKING_ERRORS as e:
                logger.warning(f"Failed to log metric {name}: {e}")

    def log_artifacts(self, artifact_path: str):
        """Log a directory of artifacts (charts, tables) to MLflow."""
        try:
            mlflow.log_artifacts(artifact_path)
        except TRACKING_ERRORS as e:
            logger.warning(f"Failed to log artifacts: {e}")

    def log_dict(self, dictionary: Dict[str, Any], artifact_file: str):
        """Log dictionary as a YAML/JSON artifact to MLflow."""
        try:
            mlflow.log_dict(dictionary, artifact_file)
            logger.info(f"Dictionary logged as {artifact_file}")
        except TRACKING_ERRORS as e:
            logger.warning(f"Failed to log dictionary to MLflow: {e}")

    def _flatten_dict(self, d: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
        """Flatten nested dictionary for parameter logging."""
        items = []

        for key, value in d.items():
            new_key = f"{prefix}.{key}" if prefix else key

            if isinstance(value, dict):
                items.extend(self._flatten_dict(value, new_key).items())
            else:
                # MLflow params are strings
                items.append((new_key, str(value)))

        return dict(items)


def setup_experiment_tracking(config: Dict[str, Any]) -> Optional[ExperimentTracker]:
    """Setup experiment tracking based on configuration."""
    tracking_config = config.get('experiment_tracking', {})
    backend = tracking_config.get('backend', 'none')

    if backend == 'mlflow':
        try:
            return ExperimentTracker(tracking_config.get('mlflow', {}))
        except TRACKING_ERRORS as e:
            logger.warning(f"Failed to set up MLflow tracking, tracking disabled: {e}")
            return None
    if backend not in ('none', None):
        logger.warning(f"Unknown experiment tracking backend '{backend}', tracking disabled")
    return None
