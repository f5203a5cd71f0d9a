"""
Global explanations for a fitted model: permutation importance and
one-dimensional partial dependence.
"""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.inspection import partial_dependence, permutation_importance

from ..exceptions import ConfigurationError, UnknownFeatureError
from ..pipeline.training import FittedModel

logger = logging.getLogger(__name__)


class ModelExplainer:
    """Explain a FittedModel against a background sample of raw predictors."""

    def __init__(self,
                 model: FittedModel,
                 background: pd.DataFrame,
                 target: Optional[pd.Series] = None,
                 n_repeats: int = 10,
                 random_state: int = 42,
                 scoring: str = 'roc_auc'):
        """
        Initialize explainer.

        Args:
            model: Fitted model to explain
            background: Raw predictor rows (usually Train), never modified
            target: Labels for ``background``; needed for permutation importance
            n_repeats: Shuffles per feature for permutation importance
            random_state: Seed for the shuffles
            scoring: scikit-learn scorer name used to measure the drop
        """
        self.model = model
        self.background = background.copy()
        self.target = target.copy() if target is not None else None
        self.n_repeats = n_repeats
        self.random_state = random_state
        self.scoring = scoring

    @property
    def features(self) -> Sequence[str]:
        return list(self.model.input_columns)

    def _check_feature(self, feature: str):
        if feature not in self.model.input_columns:
            raise UnknownFeatureError(f"Unknown feature '{feature}', expected one of {self.features}")

    def feature_importance(self) -> pd.DataFrame:
        """Mean/std drop in score when each raw predictor is shuffled, highest first."""
        if self.target is None:
            raise ConfigurationError("Permutation importance needs the background labels (target)")

        logger.info(f"Computing permutation importance for {self.model.name} "
                    f"({len(self.features)} features x {self.n_repeats} repeats)")
        X = self.background[self.features].copy()
        result = permutation_importance(
            self.model.pipeline, X, self.target,
            scoring=self.scoring,
            n_repeats=self.n_repeats,
            random_state=self.random_state,
        )
        importance = pd.DataFrame({
            'feature': self.features,
            'importance_mean': result.importances_mean,
            'importance_std': result.importances_std,
        })
        return importance.sort_values('importance_mean', ascending=False, kind='stable').reset_index(drop=True)

    def grid_for(self, feature: str, grid_resolution: int = 20,
                 percentiles: Sequence[float] = (0.05, 0.95)) -> np.ndarray:
        """Binary flags use their observed levels; numeric features an even grid between percentiles."""
        self._check_feature(feature)
        values = self.background[feature]
        if feature in self.model.recipe_params.categorical_features:
            return np.sort(values.unique())
        low, high = values.quantile(percentiles[0]), values.quantile(percentiles[1])
        if low == high:
            low, high = values.min(), values.max()
        return np.linspace(low, high, grid_resolution)

    def partial_dependence(self,
                           feature: str,
                           grid_resolution: int = 20,
                           grid_values: Optional[Sequence[float]] = None,
                           smoothing_window: int = 3) -> pd.DataFrame:
        """
        Average predicted probability as ``feature`` is swept over a grid.

        Uses scikit-learn's brute-force partial dependence on the whole fitted
        pipeline, so the curve is expressed in raw predictor units.

        Returns:
            DataFrame with grid_value, mean_probability and smoothed_probability
        """
        self._check_feature(feature)
        is_categorical = feature in self.model.recipe_params.categorical_features
        if grid_values is not None:
            grid = np.asarray(grid_values) if is_categorical else np.asarray(grid_values, dtype=float)
        else:
            grid = self.grid_for(feature, grid_resolution)

        X = self.background[self.features].copy()
        if not is_categorical:
            X[feature] = X[feature].astype(float)

        result = partial_dependence(
            self.model.pipeline, X, [feature],
            categorical_features=[feature] if is_categorical else None,
            custom_values={feature: grid},
            grid_resolution=max(2, len(grid)),
            kind='average',
            method='brute',
        )

        curve = pd.DataFrame({
            'grid_value': result['grid_values'][0],
            'mean_probability': result['average'][0],
        })
        curve['smoothed_probability'] = (
            curve['mean_probability']
            .rolling(window=max(1, smoothing_window), center=True, min_periods=1)
            .mean()
            .clip(0.0, 1.0)
        )
        return curve
