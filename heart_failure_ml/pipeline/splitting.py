"""
Stratified train/test splitting and k-fold partitioning.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import numpy as np
from sklearn.model_selection import StratifiedKFold, train_test_split

from ..exceptions import ConfigurationError
from .data_loading import Dataset

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Fold:
    """One cross-validation fold; positions index into the Train subset."""

    index: int
    train_positions: np.ndarray
    validation_positions: np.ndarray


@dataclass(frozen=True, eq=False)
class DataSplit:
    train: Dataset
    test: Dataset
    folds: Tuple[Fold, ...]

    @property
    def n_folds(self) -> int:
        return len(self.folds)


@dataclass
class StratifiedSplitter:
    """Outcome-stratified holdout split followed by stratified k folds over Train.

    The same ``random_state`` always reproduces the same partition.
    """
    train_fraction: float = 0.75
    n_folds: int = 5
    random_state: int = 42

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'StratifiedSplitter':
        split_cfg = config.get('split', {})
        return cls(
            train_fraction=split_cfg.get('train_fraction', 0.75),
            n_folds=split_cfg.get('n_folds', 5),
            random_state=config.get('random_seed', 42),
        )

    def _check_parameters(self):
        if not 0.0 < self.train_fraction < 1.0:
            raise ConfigurationError(f"train_fraction must be in (0, 1), got {self.train_fraction}")
        if int(self.n_folds) != self.n_folds or self.n_folds < 2:
            raise ConfigurationError(f"n_folds must be an integer >= 2, got {self.n_folds}")

    def split(self, dataset: Dataset) -> DataSplit:
        self._check_parameters()

        y = dataset.y.to_numpy()
        classes = np.unique(y)
        if len(classes) < 2:
            raise ConfigurationError("Stratified split needs both outcome classes in the dataset")

        positions = np.arange(len(dataset))
        try:
            train_pos, test_pos = train_test_split(
                positions,
                train_size=self.train_fraction,
                stratify=y,
                random_state=self.random_state,
            )
        except ValueError as e:
            raise ConfigurationError(f"Cannot split {len(dataset)} rows with train_fraction={self.train_fraction}: {e}") from e

        # keep original row order within each subset
        train = dataset.subset(np.sort(train_pos))
        test = dataset.subset(np.sort(test_pos))

        y_train = train.y.to_numpy()
        train_classes, train_counts = np.unique(y_train, return_counts=True)
        minority = int(train_counts.min()) if len(train_classes) == 2 else 0
        if self.n_folds > minority:
            raise ConfigurationError(
                f"n_folds={self.n_folds} exceeds the {minority} minority-class rows in Train"
            )

        skf = StratifiedKFold(n_splits=int(self.n_folds), shuffle=True, random_state=self.random_state)
        folds: List[Fold] = [
            Fold(index=i, train_positions=tr, validation_positions=va)
            for i, (tr, va) in enumerate(skf.split(np.zeros(len(y_train)), y_train), 1)
        ]

        logger.info(
            f"Split {len(dataset)} rows into train={len(train)} (prevalence {train.prevalence:.3f}) "
            f"and test={len(test)} (prevalence {test.prevalence:.3f}) with {len(folds)} folds"
        )
        return DataSplit(train=train, test=test, folds=tuple(folds))
