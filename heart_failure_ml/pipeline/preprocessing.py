"""
Data validation and the fit-once/apply-many preprocessing recipe.

The recipe is split into two phases so that transformation parameters can
only ever come from the rows they were fitted on:

    params = PreprocessingRecipe(...).fit(X_train)
    X_any = apply_recipe(params, X_any)

``RecipeTransformer`` wraps the same two phases as a scikit-learn transformer
so that cross-validation re-fits the recipe inside every fold.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import yaml
from scipy import stats
from sklearn.base import BaseEstimator, TransformerMixin

from ..exceptions import ConfigurationError, SchemaError, UnseenCategoryError

logger = logging.getLogger(__name__)

UNSEEN_POLICIES = ('other', 'error')
# Transformed numeric columns never share a name with their raw input
NUMERIC_SUFFIX = 'norm'


class DataValidator:
    """Validate data quality and consistency."""

    def __init__(self):
        self.validation_rules = {}

    def add_rule(self, feature: str, rule_type: str, **kwargs):
        """Add validation rule for a feature."""
        if feature not in self.validation_rules:
            self.validation_rules[feature] = []

        self.validation_rules[feature].append({
            'type': rule_type,
            'params': kwargs
        })

    def validate(self, df: pd.DataFrame) -> Dict[str, List[str]]:
        """Validate dataframe against rules."""
        violations = {}

        for feature, rules in self.validation_rules.items():
            if feature not in df.columns:
                continue

            feature_violations = []

            for rule in rules:
                if rule['type'] == 'range':
                    min_val = rule['params'].get('min')
                    max_val = rule['params'].get('max')

                    if min_val is not None:
                        violation_count = int((df[feature] < min_val).sum())
                        if violation_count > 0:
                            feature_violations.append(f"{violation_count} values below minimum {min_val}")

                    if max_val is not None:
                        violation_count = int((df[feature] > max_val).sum())
                        if violation_count > 0:
                            feature_violations.append(f"{violation_count} values above maximum {max_val}")

                elif rule['type'] == 'categorical':
                    allowed_values = rule['params'].get('allowed_values', [])
                    present = df[feature].dropna()
                    violation_count = int((~present.isin(allowed_values)).sum())

                    if violation_count > 0:
                        feature_violations.append(f"{violation_count} values outside {allowed_values}")

                elif rule['type'] == 'missing_rate':
                    max_missing_rate = rule['params'].get('max_rate', 0.0)
                    missing_rate = df[feature].isnull().mean()

                    if missing_rate > max_missing_rate:
                        feature_violations.append(f"Missing rate {missing_rate:.2%} exceeds {max_missing_rate:.2%}")

            if feature_violations:
                violations[feature] = feature_violations

        return violations

    def setup_clinical_rules(self,
                             binary_features: Sequence[str] = (),
                             target: Optional[str] = None,
                             ranges: Optional[Dict[str, Tuple[float, float]]] = None):
        """Setup plausibility rules for heart failure clinical records."""
        default_ranges = {
            'age': (0, 120),
            'creatinine_phosphokinase': (0, 100000),
            'ejection_fraction': (0, 100),
            'platelets': (0, 2000000),
            'serum_creatinine': (0, 30),
            'serum_sodium': (90, 200),
            'time': (0, 10000),
        }
        default_ranges.update(ranges or {})

        for feature, (min_val, max_val) in default_ranges.items():
            self.add_rule(feature, 'range', min=min_val, max=max_val)

        # Indicator flags and the outcome are literal 0/1 codes
        for feature in list(binary_features) + ([target] if target else []):
            self.add_rule(feature, 'categorical', allowed_values=[0, 1])

        # No imputation is defined, so any missing value is a violation
        for feature in list(default_ranges) + list(binary_features) + ([target] if target else []):
            self.add_rule(feature, 'missing_rate', max_rate=0.0)


def _as_levels(series: pd.Series) -> pd.Series:
    """Render categorical values as string levels ("0"/"1" for integral codes)."""
    if pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series):
        values = series.dropna()
        if len(values) == 0 or np.all(np.mod(values.to_numpy(dtype=float), 1) == 0):
            return series.astype('Int64').astype(str)
    return series.astype(str)


@dataclass(frozen=True)
class RecipeParams:
    """Fitted, immutable recipe parameters. Everything is a tuple aligned with the feature tuples."""

    numeric_features: Tuple[str, ...]
    categorical_features: Tuple[str, ...]
    means: Tuple[float, ...]
    scales: Tuple[float, ...]
    lambdas: Tuple[float, ...]
    vocabularies: Tuple[Tuple[str, ...], ...]
    collapsed_levels: Tuple[Tuple[str, ...], ...]
    other_label: str = 'other'
    unseen_policy: str = 'other'

    @property
    def input_columns(self) -> Tuple[str, ...]:
        return self.numeric_features + self.categorical_features

    @property
    def output_columns(self) -> Tuple[str, ...]:
        columns = [f"{feature}_{NUMERIC_SUFFIX}" for feature in self.numeric_features]
        for feature, vocabulary in zip(self.categorical_features, self.vocabularies):
            columns.extend(f"{feature}_{level}" for level in vocabulary)
            columns.append(f"{feature}_{self.other_label}")
        return tuple(columns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'numeric': {
                feature: {'mean': mean, 'scale': scale, 'lambda': lam}
                for feature, mean, scale, lam in zip(self.numeric_features, self.means, self.scales, self.lambdas)
            },
            'categorical': {
                feature: {'vocabulary': list(vocabulary), 'collapsed': list(collapsed)}
                for feature, vocabulary, collapsed in zip(
                    self.categorical_features, self.vocabularies, self.collapsed_levels
                )
            },
            'other_label': self.other_label,
            'unseen_policy': self.unseen_policy,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecipeParams':
        numeric = data.get('numeric', {})
        categorical = data.get('categorical', {})
        return cls(
            numeric_features=tuple(numeric),
            categorical_features=tuple(categorical),
            means=tuple(float(v['mean']) for v in numeric.values()),
            scales=tuple(float(v['scale']) for v in numeric.values()),
            lambdas=tuple(float(v['lambda']) for v in numeric.values()),
            vocabularies=tuple(tuple(v['vocabulary']) for v in categorical.values()),
            collapsed_levels=tuple(tuple(v.get('collapsed', [])) for v in categorical.values()),
            other_label=data.get('other_label', 'other'),
            unseen_policy=data.get('unseen_policy', 'other'),
        )

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    def fingerprint(self) -> str:
        return hashlib.sha256(self.to_yaml().encode('utf-8')).hexdigest()


class PreprocessingRecipe:
    """Center/scale, Yeo-Johnson, rare-level collapsing and one-hot encoding."""

    def __init__(self,
                 numeric_features: Sequence[str],
                 categorical_features: Sequence[str] = (),
                 scale: bool = True,
                 power_transform: bool = True,
                 other_threshold: float = 0.05,
                 other_label: str = 'other',
                 unseen_policy: str = 'other'):
        """
        Initialize the recipe.

        Args:
            numeric_features: Columns that are standardised and power transformed
            categorical_features: Columns that are collapsed and one-hot encoded
            scale: Whether to center/scale numeric columns
            power_transform: Whether to apply the Yeo-Johnson transform
            other_threshold: Levels rarer than this Train frequency fall into ``other_label``
            other_label: Name of the catch-all level
            unseen_policy: 'other' routes unseen levels to the catch-all, 'error' raises
        """
        if not 0.0 <= other_threshold < 1.0:
            raise ConfigurationError(f"other_threshold must be in [0, 1), got {other_threshold}")
        if unseen_policy not in UNSEEN_POLICIES:
            raise ConfigurationError(f"Unknown unseen_policy '{unseen_policy}', expected one of {UNSEEN_POLICIES}")
        overlap = set(numeric_features) & set(categorical_features)
        if overlap:
            raise ConfigurationError(f"Features listed as both numeric and categorical: {sorted(overlap)}")

        self.numeric_features = tuple(numeric_features)
        self.categorical_features = tuple(categorical_features)
        self.scale = scale
        self.power_transform = power_transform
        self.other_threshold = other_threshold
        self.other_label = other_label
        self.unseen_policy = unseen_policy

    @classmethod
    def from_config(cls, config: Dict[str, Any], numeric_features: Sequence[str],
                    categorical_features: Sequence[str]) -> 'PreprocessingRecipe':
        pre_cfg = config.get('preprocessing', {})
        return cls(
            numeric_features=numeric_features,
            categorical_features=categorical_features,
            scale=pre_cfg.get('scale', True),
            power_transform=pre_cfg.get('power_transform', True),
            other_threshold=pre_cfg.get('other_threshold', 0.05),
            unseen_policy=pre_cfg.get('unseen_policy', 'other'),
        )

    def get_params(self) -> Dict[str, Any]:
        return {
            'numeric_features': self.numeric_features,
            'categorical_features': self.categorical_features,
            'scale': self.scale,
            'power_transform': self.power_transform,
            'other_threshold': self.other_threshold,
            'other_label': self.other_label,
            'unseen_policy': self.unseen_policy,
        }

    def fit(self, X: pd.DataFrame) -> RecipeParams:
        """Estimate all transformation parameters from ``X`` only."""
        _require_columns(X, self.numeric_features + self.categorical_features)

        means, scales, lambdas = [], [], []
        for feature in self.numeric_features:
            values = X[feature].to_numpy(dtype=float)
            mean, scale = 0.0, 1.0
            if self.scale:
                mean = float(np.mean(values))
                std = float(np.std(values, ddof=1)) if len(values) > 1 else 0.0
                scale = std if std > 0 else 1.0
            lam = 1.0
            standardized = (values - mean) / scale
            if self.power_transform and np.ptp(standardized) > 0:
                _, lam = stats.yeojohnson(standardized)
                lam = float(lam)
            means.append(mean)
            scales.append(scale)
            lambdas.append(lam)

        vocabularies, collapsed = [], []
        for feature in self.categorical_features:
            frequencies = _as_levels(X[feature]).value_counts(normalize=True)
            kept = sorted(str(level) for level, freq in frequencies.items() if freq >= self.other_threshold)
            rare = sorted(str(level) for level, freq in frequencies.items() if freq < self.other_threshold)
            if rare:
                logger.debug(f"Collapsing rare levels of {feature} into '{self.other_label}': {rare}")
            vocabularies.append(tuple(kept))
            collapsed.append(tuple(rare))

        return RecipeParams(
            numeric_features=self.numeric_features,
            categorical_features=self.categorical_features,
            means=tuple(means),
            scales=tuple(scales),
            lambdas=tuple(lambdas),
            vocabularies=tuple(vocabularies),
            collapsed_levels=tuple(collapsed),
            other_label=self.other_label,
            unseen_policy=self.unseen_policy,
        )

    @staticmethod
    def apply(params: RecipeParams, X: pd.DataFrame) -> pd.DataFrame:
        return apply_recipe(params, X)


def _require_columns(X: pd.DataFrame, columns: Sequence[str]):
    missing = [col for col in columns if col not in X.columns]
    if missing:
        raise SchemaError(f"Input is missing expected columns: {missing}")


def _already_applied(params: RecipeParams, X: pd.DataFrame) -> bool:
    """True when ``X`` already has this recipe's output schema and none of its raw inputs."""
    return (set(params.output_columns).issubset(X.columns)
            and not any(feature in X.columns for feature in params.input_columns))


def apply_recipe(params: RecipeParams, X: pd.DataFrame) -> pd.DataFrame:
    """
    Transform ``X`` with previously fitted parameters.

    Pure and idempotent: ``X`` is never modified and a frame that already
    carries the recipe's output schema is returned as a copy.
    """
    if _already_applied(params, X):
        return X[list(params.output_columns)].copy()

    _require_columns(X, params.input_columns)

    columns: Dict[str, np.ndarray] = {}
    for feature, mean, scale, lam in zip(params.numeric_features, params.means, params.scales, params.lambdas):
        standardized = (X[feature].to_numpy(dtype=float) - mean) / scale
        columns[f"{feature}_{NUMERIC_SUFFIX}"] = stats.yeojohnson(standardized, lmbda=lam) if lam != 1.0 else standardized

    for feature, vocabulary, collapsed in zip(
        params.categorical_features, params.vocabularies, params.collapsed_levels
    ):
        levels = _as_levels(X[feature])
        known = levels.isin(vocabulary)
        unseen = ~known & ~levels.isin(collapsed)
        if unseen.any():
            unseen_levels = sorted(levels[unseen].unique())
            if params.unseen_policy == 'error':
                raise UnseenCategoryError(f"Unseen levels for {feature}: {unseen_levels}")
            logger.debug(f"Routing unseen levels of {feature} to '{params.other_label}': {unseen_levels}")
        for level in vocabulary:
            columns[f"{feature}_{level}"] = (levels == level).to_numpy(dtype=float)
        columns[f"{feature}_{params.other_label}"] = (~known).to_numpy(dtype=float)

    return pd.DataFrame(columns, index=X.index)[list(params.output_columns)]


class RecipeTransformer(BaseEstimator, TransformerMixin):
    """scikit-learn adapter around ``PreprocessingRecipe`` / ``apply_recipe``."""

    def __init__(self,
                 numeric_features: Sequence[str] = (),
                 categorical_features: Sequence[str] = (),
                 scale: bool = True,
                 power_transform: bool = True,
                 other_threshold: float = 0.05,
                 other_label: str = 'other',
                 unseen_policy: str = 'other'):
        self.numeric_features = numeric_features
        self.categorical_features = categorical_features
        self.scale = scale
        self.power_transform = power_transform
        self.other_threshold = other_threshold
        self.other_label = other_label
        self.unseen_policy = unseen_policy

    def fit(self, X: pd.DataFrame, y=None):
        """Fit recipe parameters on X."""
        start_time = time.time()
        recipe = PreprocessingRecipe(
            numeric_features=self.numeric_features,
            categorical_features=self.categorical_features,
            scale=self.scale,
            power_transform=self.power_transform,
            other_threshold=self.other_threshold,
            other_label=self.other_label,
            unseen_policy=self.unseen_policy,
        )
        self.params_ = recipe.fit(X)
        self.feature_names_in_ = np.asarray(self.params_.input_columns, dtype=object)
        self.n_features_in_ = len(self.params_.input_columns)
        logger.debug(f"Fitted recipe on {len(X)} rows in {time.time() - start_time:.3f} seconds")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        return apply_recipe(self.params_, X)

    def get_feature_names_out(self, input_features=None):
        return np.asarray(self.params_.output_columns, dtype=object)
