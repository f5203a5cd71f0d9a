"""Test configuration and fixtures."""

import pytest
import pandas as pd
import numpy as np
import tempfile
from pathlib import Path

from heart_failure_ml.config import load_config
from heart_failure_ml.data_generation import HeartFailureDataGenerator
from heart_failure_ml.pipeline import Dataset, PreprocessingRecipe, StratifiedSplitter


@pytest.fixture
def heart_failure_frame():
    """Create realistic heart failure records for testing."""
    return HeartFailureDataGenerator(seed=42).generate_dataset(n_records=299, event_rate=0.32)


@pytest.fixture
def heart_failure_dataset(heart_failure_frame):
    return Dataset.from_frame(heart_failure_frame)


@pytest.fixture
def data_split(heart_failure_dataset):
    """Default 75/25 split with 3 folds."""
    return StratifiedSplitter(train_fraction=0.75, n_folds=3, random_state=42).split(heart_failure_dataset)


@pytest.fixture
def recipe(heart_failure_dataset):
    schema = heart_failure_dataset.schema
    return PreprocessingRecipe(numeric_features=schema.numeric_features,
                               categorical_features=schema.binary_features)


@pytest.fixture
def separable_frame():
    """100 rows where ejection_fraction > 50 implies DEATH_EVENT = 1."""
    return HeartFailureDataGenerator(seed=7).generate_separable_dataset(n_records=100)


@pytest.fixture
def temp_directory():
    """Create temporary directory for testing."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def csv_path(heart_failure_frame, temp_directory):
    path = temp_directory / "heart_failure.csv"
    heart_failure_frame.to_csv(path, index=False)
    return path


@pytest.fixture
def fast_config():
    """Small grids and a synchronous scheduler so the experiment runs in seconds."""
    return load_config(overrides={
        'split': {'n_folds': 3},
        'training': {'scheduler': 'synchronous'},
        'models': {
            'logistic_regression': {
                'grid': {'penalty': [0.1, 1.0], 'mixture': [0.0, 0.5]},
            },
            'random_forest': {
                'tree_count': 50,
                'grid': {'mtry': [2, 4], 'min_node_size': [5]},
            },
        },
        'explain': {'n_repeats': 3, 'grid_resolution': 10, 'features': ['ejection_fraction', 'sex']},
        'experiment_tracking': {'backend': 'none'},
    })
