"""
Heart Failure ML - outcome classification on clinical records

Loads the heart failure clinical records table, tunes penalized logistic
regression and a random forest with stratified cross-validation, and
compares their held-out accuracy with permutation importance and partial
dependence explanations.
"""

__version__ = "1.0.0"

from .config import DEFAULT_CONFIG, load_config
from .exceptions import (
    PipelineError,
    ConfigurationError,
    SchemaError,
    ConvergenceError,
    UnknownFeatureError,
    UnseenCategoryError
)
from .pipeline import (
    Dataset,
    load_dataset,
    StratifiedSplitter,
    PreprocessingRecipe,
    HyperparameterGrid,
    ModelTrainer
)
from .utils import (
    ModelEvaluator,
    ModelExplainer,
    ModelComparator
)

__all__ = [
    'DEFAULT_CONFIG',
    'load_config',
    'PipelineError',
    'ConfigurationError',
    'SchemaError',
    'ConvergenceError',
    'UnknownFeatureError',
    'UnseenCategoryError',
    'Dataset',
    'load_dataset',
    'StratifiedSplitter',
    'PreprocessingRecipe',
    'HyperparameterGrid',
    'ModelTrainer',
    'ModelEvaluator',
    'ModelExplainer',
    'ModelComparator'
]
