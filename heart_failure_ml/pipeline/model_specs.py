"""
Model specifications for the two supported families and their search grids.

A spec is a small frozen value describing one hyperparameter combination;
``build`` turns it into an unfitted scikit-learn estimator.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterator, Optional, Sequence, Tuple, Union

import numpy as np
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression

from ..exceptions import ConfigurationError, ConvergenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogisticRegressionSpec:
    """Elastic-net logistic regression.

    ``penalty`` is the regularization strength (``C = 1 / penalty``) and
    ``mixture`` the L1 share: 0 is pure ridge, 1 is pure lasso.
    """
    penalty: float = 1.0
    mixture: float = 0.0
    max_iter: int = 5000

    family: ClassVar[str] = 'logistic_regression'

    def __post_init__(self):
        if not self.penalty > 0:
            raise ConfigurationError(f"penalty must be positive, got {self.penalty}")
        if not 0.0 <= self.mixture <= 1.0:
            raise ConfigurationError(f"mixture must be in [0, 1], got {self.mixture}")

    def params(self) -> Dict[str, Any]:
        return {'penalty': self.penalty, 'mixture': self.mixture}

    def build(self, random_state: int = 42, n_features: Optional[int] = None) -> LogisticRegression:
        return LogisticRegression(
            penalty='elasticnet',
            solver='saga',
            C=1.0 / self.penalty,
            l1_ratio=self.mixture,
            max_iter=self.max_iter,
            random_state=random_state,
        )

    def check_convergence(self, estimator: LogisticRegression):
        """saga stops at max_iter without converging; treat that as a failed fit."""
        if np.any(np.asarray(estimator.n_iter_) >= self.max_iter):
            raise ConvergenceError(
                f"saga did not converge within {self.max_iter} iterations "
                f"(penalty={self.penalty:g}, mixture={self.mixture:g})"
            )


@dataclass(frozen=True)
class RandomForestSpec:
    """Random forest with a fixed ensemble size.

    ``mtry`` is the number of predictors sampled per split and
    ``min_node_size`` the smallest node that may still be split.
    """
    mtry: int = 3
    min_node_size: int = 5
    tree_count: int = 500

    family: ClassVar[str] = 'random_forest'

    def __post_init__(self):
        if self.mtry < 1:
            raise ConfigurationError(f"mtry must be >= 1, got {self.mtry}")
        if self.min_node_size < 1:
            raise ConfigurationError(f"min_node_size must be >= 1, got {self.min_node_size}")
        if self.tree_count < 1:
            raise ConfigurationError(f"tree_count must be >= 1, got {self.tree_count}")

    def params(self) -> Dict[str, Any]:
        return {'mtry': self.mtry, 'min_node_size': self.min_node_size}

    def build(self, random_state: int = 42, n_features: Optional[int] = None) -> RandomForestClassifier:
        max_features = min(self.mtry, n_features) if n_features else self.mtry
        return RandomForestClassifier(
            n_estimators=self.tree_count,
            max_features=int(max_features),
            min_samples_split=max(2, int(self.min_node_size)),
            random_state=random_state,
            n_jobs=1,
        )

    def check_convergence(self, estimator: RandomForestClassifier):
        return None


ModelSpec = Union[LogisticRegressionSpec, RandomForestSpec]

MODEL_FAMILIES = {
    LogisticRegressionSpec.family: LogisticRegressionSpec,
    RandomForestSpec.family: RandomForestSpec,
}

# Config key -> spec field for settings that are fixed across the grid
FIXED_SETTINGS = {
    'logistic_regression': ('max_iter',),
    'random_forest': ('tree_count',),
}


def _axis_values(name: str, values: Any) -> Tuple[Any, ...]:
    """Expand an axis given as a list or as ``{log_start, log_stop, levels}``."""
    if isinstance(values, dict):
        try:
            return tuple(float(v) for v in np.logspace(values['log_start'], values['log_stop'], int(values['levels'])))
        except KeyError as e:
            raise ConfigurationError(f"Log-scale axis '{name}' needs log_start, log_stop and levels") from e
    if isinstance(values, (list, tuple)) and len(values) > 0:
        return tuple(values)
    raise ConfigurationError(f"Grid axis '{name}' must be a non-empty list or a log-scale mapping")


@dataclass(frozen=True)
class HyperparameterGrid:
    """Ordered grid of hyperparameter combinations for one model family.

    Combinations are enumerated like ``itertools.product``: the first axis
    varies slowest. The enumeration order is what breaks score ties.
    """
    family: str
    axes: Tuple[Tuple[str, Tuple[Any, ...]], ...]
    fixed: Tuple[Tuple[str, Any], ...] = ()

    def __post_init__(self):
        if self.family not in MODEL_FAMILIES:
            raise ConfigurationError(f"Unknown model family: {self.family}")
        # Building every spec validates every value up front
        list(self)

    @classmethod
    def from_config(cls, family: str, model_cfg: Dict[str, Any]) -> 'HyperparameterGrid':
        if family not in MODEL_FAMILIES:
            raise ConfigurationError(f"Unknown model family: {family}")
        grid_cfg = model_cfg.get('grid', {})
        if not grid_cfg:
            raise ConfigurationError(f"No hyperparameter grid configured for {family}")
        axes = tuple((name, _axis_values(name, values)) for name, values in grid_cfg.items())
        fixed = tuple((key, model_cfg[key]) for key in FIXED_SETTINGS[family] if key in model_cfg)
        return cls(family=family, axes=axes, fixed=fixed)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.axes)

    def __len__(self) -> int:
        return int(np.prod([len(values) for _, values in self.axes]))

    def __iter__(self) -> Iterator[ModelSpec]:
        spec_cls = MODEL_FAMILIES[self.family]
        for combination in itertools.product(*(values for _, values in self.axes)):
            kwargs = dict(zip(self.names, combination))
            kwargs.update(dict(self.fixed))
            try:
                yield spec_cls(**kwargs)
            except TypeError as e:
                raise ConfigurationError(f"Invalid hyperparameters for {self.family}: {kwargs}") from e


def describe_grid(grid: HyperparameterGrid) -> Dict[str, Sequence[Any]]:
    return {name: list(values) for name, values in grid.axes}
