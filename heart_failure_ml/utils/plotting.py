"""
PNG charts for the experiment report. Every function writes one file and
returns its path; nothing reads the charts back.
"""

import logging
from pathlib import Path
from typing import Dict, Sequence, Tuple, Union

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from sklearn.metrics import auc, roc_curve

from ..pipeline.data_loading import Dataset

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _save(path: PathLike, dpi: int) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    plt.tight_layout(); plt.savefig(out, dpi=dpi); plt.close()
    logger.debug(f"Saved chart {out}")
    return out


# ---------- Descriptive ----------
def plot_correlation_matrix(corr: pd.DataFrame, path: PathLike, dpi: int = 150) -> Path:
    fig, ax = plt.subplots(figsize=(10, 8))
    im = ax.imshow(corr.to_numpy(), cmap='RdBu_r', vmin=-1, vmax=1)
    ax.set_xticks(range(len(corr.columns)))
    ax.set_xticklabels(corr.columns, rotation=45, ha='right')
    ax.set_yticks(range(len(corr.index)))
    ax.set_yticklabels(corr.index)
    for i in range(len(corr.index)):
        for j in range(len(corr.columns)):
            ax.text(j, i, f"{corr.iat[i, j]:.2f}", ha='center', va='center', fontsize=7)
    fig.colorbar(im, ax=ax, shrink=0.8)
    ax.set_title('Feature Correlation Matrix')
    return _save(path, dpi)


def plot_response_distribution(dataset: Dataset, path: PathLike, dpi: int = 150) -> Path:
    target = dataset.schema.target
    counts = dataset.frame[target].value_counts().sort_index()
    plt.figure(figsize=(6, 5))
    bars = plt.bar([str(level) for level in counts.index], counts.values, color=['tab:blue', 'tab:red'][:len(counts)])
    for bar, count in zip(bars, counts.values):
        plt.text(bar.get_x() + bar.get_width() / 2, bar.get_height(), str(count), ha='center', va='bottom')
    plt.xlabel(target); plt.ylabel('Patients')
    plt.title('Outcome Distribution')
    return _save(path, dpi)


def plot_category_distributions(dataset: Dataset, path: PathLike, dpi: int = 150) -> Path:
    """One panel per binary flag: counts of each level split by outcome."""
    target = dataset.schema.target
    features = dataset.schema.binary_features
    fig, axes = plt.subplots(1, len(features), figsize=(4 * len(features), 4), squeeze=False)
    for ax, feature in zip(axes[0], features):
        table = pd.crosstab(dataset.frame[feature], dataset.frame[target])
        table.plot(kind='bar', ax=ax, rot=0)
        ax.set_title(feature); ax.set_xlabel('level'); ax.set_ylabel('count')
        ax.legend(title=target)
    return _save(path, dpi)


def plot_numeric_boxplots(dataset: Dataset, path: PathLike, dpi: int = 150) -> Path:
    target = dataset.schema.target
    features = dataset.schema.numeric_features
    n_cols = 4
    n_rows = int(np.ceil(len(features) / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(4 * n_cols, 4 * n_rows), squeeze=False)
    levels = sorted(dataset.frame[target].unique())
    for ax, feature in zip(axes.ravel(), features):
        groups = [dataset.frame.loc[dataset.frame[target] == level, feature] for level in levels]
        ax.boxplot(groups)
        ax.set_xticks(range(1, len(levels) + 1))
        ax.set_xticklabels([f"{target}={level}" for level in levels])
        ax.set_title(feature)
    for ax in axes.ravel()[len(features):]:
        ax.axis('off')
    return _save(path, dpi)


# ---------- Model diagnostics ----------
def plot_cv_roc_curves(fold_predictions: Sequence[Tuple[np.ndarray, np.ndarray]],
                       path: PathLike, title: str = 'Cross-validation ROC', dpi: int = 150) -> Path:
    """ROC curve of the selected combination on each validation fold."""
    plt.figure(figsize=(7, 6))
    for i, (y_true, y_score) in enumerate(fold_predictions, 1):
        fpr, tpr, _ = roc_curve(y_true, y_score)
        plt.plot(fpr, tpr, lw=1.5, label=f"Fold {i} (AUC = {auc(fpr, tpr):.3f})")
    plt.plot([0, 1], [0, 1], 'k--', lw=1, label='Chance')
    plt.xlabel('False Positive Rate'); plt.ylabel('True Positive Rate')
    plt.title(title)
    plt.legend(loc='lower right')
    plt.grid(alpha=0.3)
    return _save(path, dpi)


def plot_confusion_matrix(cm: pd.DataFrame, path: PathLike, title: str = 'Confusion Matrix', dpi: int = 150) -> Path:
    fig, ax = plt.subplots(figsize=(5, 4))
    ax.imshow(cm.to_numpy(), cmap='Blues')
    for i in range(cm.shape[0]):
        for j in range(cm.shape[1]):
            ax.text(j, i, str(cm.iat[i, j]), ha='center', va='center', fontsize=12)
    ax.set_xticks(range(cm.shape[1])); ax.set_xticklabels(cm.columns)
    ax.set_yticks(range(cm.shape[0])); ax.set_yticklabels(cm.index)
    ax.set_xlabel('Predicted'); ax.set_ylabel('True')
    ax.set_title(title)
    return _save(path, dpi)


def plot_feature_importance(importance: pd.DataFrame, path: PathLike,
                            title: str = 'Permutation Importance', dpi: int = 150) -> Path:
    ordered = importance.sort_values('importance_mean')
    plt.figure(figsize=(8, 6))
    plt.barh(ordered['feature'], ordered['importance_mean'], xerr=ordered['importance_std'], color='tab:blue')
    plt.axvline(0, color='k', lw=0.8)
    plt.xlabel('Mean score drop when shuffled')
    plt.title(title)
    return _save(path, dpi)


def plot_partial_dependence(curves: Dict[str, pd.DataFrame], path: PathLike,
                            title: str = 'Partial Dependence', dpi: int = 150) -> Path:
    """One panel per feature: raw mean probability and the smoothed curve."""
    fig, axes = plt.subplots(1, len(curves), figsize=(5 * len(curves), 4), squeeze=False)
    for ax, (feature, curve) in zip(axes[0], curves.items()):
        ax.plot(curve['grid_value'], curve['mean_probability'], 'o', alpha=0.4, label='mean')
        ax.plot(curve['grid_value'], curve['smoothed_probability'], '-', lw=2, label='smoothed')
        ax.set_ylim(0, 1)
        ax.set_xlabel(feature); ax.set_ylabel('Predicted probability')
        ax.legend()
    fig.suptitle(title)
    return _save(path, dpi)


def plot_accuracy_comparison(comparison: pd.DataFrame, path: PathLike, dpi: int = 150) -> Path:
    """Bar chart of held-out accuracy per model (``compare_models`` output)."""
    plt.figure(figsize=(6, 5))
    bars = plt.bar(comparison.index.astype(str), comparison['accuracy'].astype(float), color='tab:green')
    for bar, value in zip(bars, comparison['accuracy'].astype(float)):
        plt.text(bar.get_x() + bar.get_width() / 2, bar.get_height(), f"{value:.3f}", ha='center', va='bottom')
    plt.ylim(0, 1.05)
    plt.ylabel('Test accuracy')
    plt.title('Model Accuracy Comparison')
    return _save(path, dpi)
