"""Pipeline stages: loading, splitting, preprocessing and model training."""

from .data_loading import (
    DatasetSchema,
    Dataset,
    load_dataset
)

from .splitting import (
    StratifiedSplitter,
    DataSplit,
    Fold,
)

from .preprocessing import (
    DataValidator,
    PreprocessingRecipe,
    RecipeParams,
    RecipeTransformer,
    apply_recipe,
)

from .model_specs import (
    LogisticRegressionSpec,
    RandomForestSpec,
    HyperparameterGrid,
)

from .training import (
    ModelTrainer,
    TrialResult,
    TrainingResult,
    FittedModel,
)

__all__ = [
    'DatasetSchema',
    'Dataset',
    'load_dataset',
    'StratifiedSplitter',
    'DataSplit',
    'Fold',
    'DataValidator',
    'PreprocessingRecipe',
    'RecipeParams',
    'RecipeTransformer',
    'apply_recipe',
    'LogisticRegressionSpec',
    'RandomForestSpec',
    'HyperparameterGrid',
    'ModelTrainer',
    'TrialResult',
    'TrainingResult',
    'FittedModel',
]
