"""
Error taxonomy for the heart failure classification pipeline.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(PipelineError, ValueError):
    """Invalid split/fold parameters, config values or out-of-range input data."""


class SchemaError(PipelineError, ValueError):
    """Supplied columns do not match what a recipe or model expects."""


class ConvergenceError(PipelineError, RuntimeError):
    """An optimizer failed to converge for a hyperparameter combination."""


class UnknownFeatureError(PipelineError, KeyError):
    """A feature name outside the dataset schema was requested."""

    def __str__(self):
        return str(self.args[0]) if self.args else ""


class UnseenCategoryError(PipelineError, ValueError):
    """A categorical level never seen during recipe fitting (only raised with unseen_policy='error')."""
