"""
Experiment configuration: defaults plus YAML overrides.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

NUMERIC_FEATURES = [
    'age',
    'creatinine_phosphokinase',
    'ejection_fraction',
    'platelets',
    'serum_creatinine',
    'serum_sodium',
    'time',
]

BINARY_FEATURES = ['anaemia', 'diabetes', 'high_blood_pressure', 'sex', 'smoking']

TARGET_COLUMN = 'DEATH_EVENT'

# Column order of the published heart failure clinical records CSV
CSV_COLUMNS = [
    'age', 'anaemia', 'creatinine_phosphokinase', 'diabetes', 'ejection_fraction',
    'high_blood_pressure', 'platelets', 'serum_creatinine', 'serum_sodium',
    'sex', 'smoking', 'time', TARGET_COLUMN,
]

DEFAULT_CONFIG: Dict[str, Any] = {
    'random_seed': 42,
    'data': {
        'target': TARGET_COLUMN,
        'numeric_features': NUMERIC_FEATURES,
        'binary_features': BINARY_FEATURES,
        'use_dask': False,
    },
    'split': {
        'train_fraction': 0.75,
        'n_folds': 5,
    },
    'preprocessing': {
        'scale': True,
        'power_transform': True,
        'other_threshold': 0.05,
        'unseen_policy': 'other',
    },
    'imbalance': {
        'method': 'none',
        'smote': {
            'sampling_strategy': 'auto',
            'k_neighbors': 5,
        },
    },
    'training': {
        'scoring': 'roc_auc',
        'scheduler': 'threads',
        'show_progress': False,
    },
    'models': {
        'logistic_regression': {
            'enabled': True,
            'max_iter': 5000,
            'grid': {
                'penalty': {'log_start': -4, 'log_stop': 0, 'levels': 5},
                'mixture': [0.0, 0.25, 0.5, 0.75, 1.0],
            },
        },
        'random_forest': {
            'enabled': True,
            'tree_count': 500,
            'grid': {
                'mtry': [2, 4, 6],
                'min_node_size': [2, 5, 10],
            },
        },
    },
    'explain': {
        'n_repeats': 10,
        'grid_resolution': 20,
        'smoothing_window': 3,
        'features': ['ejection_fraction', 'serum_creatinine', 'age'],
    },
    'reporting': {
        'enabled': True,
        'dpi': 150,
    },
    'experiment_tracking': {
        'backend': 'none',
        'mlflow': {
            'tracking_uri': 'file:./mlruns',
            'experiment_name': 'heart_failure',
        },
    },
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``base`` with ``override`` merged in recursively."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Optional[Union[str, Path]] = None,
                overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build the experiment configuration.

    Args:
        path: Optional YAML file merged over the defaults
        overrides: Optional dict merged last (used by tests and notebooks)

    Returns:
        Fully populated configuration dict
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = yaml.safe_load(f) or {}
        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")
        logger.info(f"Loaded configuration from {config_path}")
        config = deep_merge(config, user_config)

    if overrides:
        config = deep_merge(config, overrides)

    unknown = set(config.get('models', {})) - {'logistic_regression', 'random_forest'}
    if unknown:
        raise ConfigurationError(f"Unknown model families in config: {sorted(unknown)}")

    return config
