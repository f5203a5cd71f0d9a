"""
Fixed-schema dataset loading for heart failure clinical records.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import dask.dataframe as dd
import numpy as np
import pandas as pd

from ..config import BINARY_FEATURES, NUMERIC_FEATURES, TARGET_COLUMN
from ..exceptions import ConfigurationError, SchemaError
from .preprocessing import DataValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatasetSchema:
    """Column layout: numeric predictors, binary indicator flags and the outcome label."""

    numeric_features: Tuple[str, ...] = tuple(NUMERIC_FEATURES)
    binary_features: Tuple[str, ...] = tuple(BINARY_FEATURES)
    target: str = TARGET_COLUMN

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'DatasetSchema':
        data_cfg = config.get('data', {})
        return cls(
            numeric_features=tuple(data_cfg.get('numeric_features', NUMERIC_FEATURES)),
            binary_features=tuple(data_cfg.get('binary_features', BINARY_FEATURES)),
            target=data_cfg.get('target', TARGET_COLUMN),
        )

    @property
    def predictors(self) -> Tuple[str, ...]:
        return self.numeric_features + self.binary_features

    @property
    def columns(self) -> Tuple[str, ...]:
        return self.predictors + (self.target,)


@dataclass(frozen=True, eq=False)
class Dataset:
    """
    Ordered, validated collection of records sharing one schema.

    Treat as immutable: ``X``, ``y`` and ``subset`` always hand out copies.
    """

    frame: pd.DataFrame
    schema: DatasetSchema = DatasetSchema()

    @classmethod
    def from_frame(cls, df: pd.DataFrame, schema: Optional[DatasetSchema] = None,
                   validation_rules: Optional[Dict[str, Tuple[float, float]]] = None) -> 'Dataset':
        """Check columns and values, cast types and wrap ``df`` as a Dataset."""
        schema = schema or DatasetSchema()

        missing = [col for col in schema.columns if col not in df.columns]
        if missing:
            raise SchemaError(f"Dataset is missing columns: {missing}")
        extra = [col for col in df.columns if col not in schema.columns]
        if extra:
            raise SchemaError(f"Dataset has unexpected columns: {extra}")

        frame = df[list(schema.columns)].copy()

        non_numeric = [col for col in frame.columns if not pd.api.types.is_numeric_dtype(frame[col])]
        if non_numeric:
            raise ConfigurationError(f"Columns must be numeric/binary, found non-numeric values in: {non_numeric}")

        validator = DataValidator()
        validator.setup_clinical_rules(
            binary_features=schema.binary_features,
            target=schema.target,
            ranges=validation_rules,
        )
        # Numeric features outside the default rule set still must not be missing
        for col in schema.numeric_features:
            if col not in validator.validation_rules:
                validator.add_rule(col, 'missing_rate', max_rate=0.0)

        violations = validator.validate(frame)
        if violations:
            details = "; ".join(f"{feature}: {', '.join(msgs)}" for feature, msgs in violations.items())
            raise ConfigurationError(f"Data validation failed ({len(violations)} columns): {details}")

        for col in schema.binary_features + (schema.target,):
            frame[col] = frame[col].astype(np.int64)
        for col in schema.numeric_features:
            frame[col] = frame[col].astype(np.float64)

        return cls(frame=frame, schema=schema)

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def X(self) -> pd.DataFrame:
        return self.frame[list(self.schema.predictors)].copy()

    @property
    def y(self) -> pd.Series:
        return self.frame[self.schema.target].copy()

    @property
    def index(self) -> pd.Index:
        return self.frame.index

    @property
    def prevalence(self) -> float:
        return float(self.frame[self.schema.target].mean()) if len(self.frame) else float('nan')

    def subset(self, positions: Sequence[int]) -> 'Dataset':
        """Rows at the given positions, keeping their original row labels."""
        return Dataset(frame=self.frame.iloc[np.asarray(positions, dtype=int)].copy(), schema=self.schema)


def _read_csv(path: Path, use_dask: bool) -> pd.DataFrame:
    if use_dask:
        logger.info("Using Dask for data loading...")
        ddf = dd.read_csv(path, assume_missing=True)
        logger.info(f"Dask DataFrame partitions: {ddf.npartitions}")
        return ddf.compute().reset_index(drop=True)
    return pd.read_csv(path)


def load_dataset(path: Union[str, Path],
                 schema: Optional[DatasetSchema] = None,
                 use_dask: bool = False,
                 validation_rules: Optional[Dict[str, Tuple[float, float]]] = None) -> Dataset:
    """
    Load a heart failure clinical records CSV.

    Args:
        path: CSV file with the fixed 13-column header
        schema: Column layout (defaults to the standard heart failure schema)
        use_dask: Read through ``dask.dataframe`` instead of pandas
        validation_rules: Optional ``{column: (min, max)}`` overrides for plausibility ranges

    Returns:
        Validated Dataset

    Raises:
        SchemaError: header does not match the schema
        ConfigurationError: missing, non-numeric or out-of-range values
    """
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"Data file not found: {p}")

    logger.info(f"Loading data from {p}")
    df = _read_csv(p, use_dask)
    dataset = Dataset.from_frame(df, schema=schema, validation_rules=validation_rules)

    logger.info(f"Loaded data shape: {dataset.frame.shape}")
    logger.info(f"Target prevalence: {dataset.prevalence:.3f}")
    return dataset
