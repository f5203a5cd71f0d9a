"""
Descriptive statistics for a loaded dataset. Informational only: nothing
downstream consumes these tables.
"""

import logging

import pandas as pd

from ..pipeline.data_loading import Dataset

logger = logging.getLogger(__name__)


def summarize(dataset: Dataset) -> pd.DataFrame:
    """Per-column count/mean/std/min/quartiles/max plus skewness."""
    summary = dataset.frame.describe().T
    summary['skew'] = dataset.frame.skew()
    return summary


def correlation_matrix(dataset: Dataset, method: str = 'pearson') -> pd.DataFrame:
    """Pairwise correlation of all predictors and the outcome label."""
    return dataset.frame.corr(method=method)


def class_balance(dataset: Dataset) -> pd.DataFrame:
    target = dataset.frame[dataset.schema.target]
    counts = target.value_counts().sort_index()
    balance = pd.DataFrame({'count': counts, 'proportion': counts / len(target)})
    balance.index.name = dataset.schema.target
    return balance


def outcome_rates(dataset: Dataset) -> pd.DataFrame:
    """Row count and event rate for every level of every binary flag."""
    target = dataset.schema.target
    rows = []
    for feature in dataset.schema.binary_features:
        grouped = dataset.frame.groupby(feature)[target].agg(['count', 'mean'])
        for level, row in grouped.iterrows():
            rows.append({
                'feature': feature,
                'level': int(level),
                'count': int(row['count']),
                'event_rate': float(row['mean']),
            })
    return pd.DataFrame(rows, columns=['feature', 'level', 'count', 'event_rate'])


def log_overview(dataset: Dataset):
    balance = class_balance(dataset)
    logger.info(f"Dataset: {len(dataset)} rows, {len(dataset.schema.predictors)} predictors")
    for level, row in balance.iterrows():
        logger.info(f"  {dataset.schema.target}={level}: {int(row['count'])} ({row['proportion']:.1%})")
    corr = correlation_matrix(dataset)[dataset.schema.target].drop(dataset.schema.target)
    top = corr.abs().sort_values(ascending=False).head(3)
    logger.info(f"Strongest outcome correlations: "
                f"{', '.join(f'{name}={corr[name]:+.2f}' for name in top.index)}")
