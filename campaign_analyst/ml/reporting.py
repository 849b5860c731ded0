"""
Comparison reporting.

Lays out the confusion matrices of all compared models side by side and
writes the figures of a comparison run. Nothing here computes model results;
every function only arranges or draws what the evaluator produced.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import matplotlib

matplotlib.use("Agg")  # figures are only written to disk
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from campaign_analyst.exceptions import InvalidArgument
from campaign_analyst.ml.evaluation import RocCurve

logger = logging.getLogger(__name__)


def build_comparison(
    matrices: Sequence[np.ndarray],
    labels: Sequence[str],
    class_names: Sequence[str] = ("no", "yes"),
) -> pd.DataFrame:
    """
    Concatenate N 2x2 confusion matrices into one 2 x 2N table.

    Rows are the true classes; columns are (model label, predicted class).

    Raises:
        InvalidArgument: if the counts of matrices and labels differ, no
            matrix is given, or a matrix is not 2x2
    """
    if len(matrices) != len(labels):
        raise InvalidArgument(f"Got {len(matrices)} confusion matrices for {len(labels)} labels")
    if not matrices:
        raise InvalidArgument("Nothing to compare")
    if len(set(labels)) != len(labels):
        raise InvalidArgument(f"Model labels must be unique, got {list(labels)}")

    blocks = []
    for label, matrix in zip(labels, matrices):
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (2, 2):
            raise InvalidArgument(f"Confusion matrix of '{label}' has shape {matrix.shape}, expected (2, 2)")
        blocks.append(matrix)

    columns = pd.MultiIndex.from_product([list(labels), list(class_names)], names=["model", "predicted"])
    # from_product orders columns model-major, matching the hstack below
    table = pd.DataFrame(
        np.hstack(blocks),
        index=pd.Index(list(class_names), name="true"),
        columns=columns,
    )
    return table


def render_comparison(table: pd.DataFrame, decimals: int = 1) -> str:
    """Plain-text rendering of a comparison table (percent, NaN for absent classes)."""
    return table.to_string(float_format=lambda value: f"{value:.{decimals}f}", na_rep="NaN")


def _save(fig, path: Union[str, Path], dpi: int) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, bbox_inches="tight", dpi=dpi)
    plt.close(fig)
    logger.info(f"Saved figure {path}")
    return path


def plot_comparison(table: pd.DataFrame, path: Union[str, Path], dpi: int = 150, title: Optional[str] = None) -> Path:
    """One annotated confusion-matrix heatmap per model, side by side."""
    models = list(dict.fromkeys(table.columns.get_level_values("model")))
    fig, axes = plt.subplots(1, len(models), figsize=(2.6 * len(models), 2.8), squeeze=False)

    for ax, model in zip(axes[0], models):
        block = table[model]
        sns.heatmap(
            block,
            ax=ax,
            annot=True,
            fmt=".1f",
            vmin=0,
            vmax=100,
            cmap="Blues",
            cbar=False,
            square=True,
        )
        ax.set_title(model, fontsize=9)
        ax.set_xlabel("predicted")
        ax.set_ylabel("true" if ax is axes[0][0] else "")

    fig.suptitle(title or "Confusion matrices (% of true class)")
    return _save(fig, path, dpi)


def plot_roc(curves: Dict[str, RocCurve], path: Union[str, Path], dpi: int = 150, title: str = "ROC Curve") -> Path:
    """ROC curves of one or more models on shared axes."""
    fig, ax = plt.subplots(figsize=(7, 5))
    for label, curve in curves.items():
        ax.plot(curve.fpr, curve.tpr, linewidth=1.5, label=f"{label} (AUC={curve.auc:.3f})")
    ax.plot([0, 1], [0, 1], color="gray", linewidth=1, linestyle=":")
    ax.set_title(title)
    ax.set_xlabel("False Positive Rate")
    ax.set_ylabel("True Positive Rate")
    ax.legend(loc="lower right", fontsize=8)
    ax.grid(True, alpha=0.3)
    return _save(fig, path, dpi)


def plot_oob_error(curve: np.ndarray, path: Union[str, Path], dpi: int = 150, title: str = "Out-of-bag error") -> Path:
    """Out-of-bag misclassification rate against the number of grown trees."""
    curve = np.asarray(curve, dtype=np.float64)
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(np.arange(1, len(curve) + 1), curve, linewidth=1.5)
    ax.set_title(title)
    ax.set_xlabel("Number of grown trees")
    ax.set_ylabel("Out-of-bag classification error")
    ax.grid(True, alpha=0.3)
    return _save(fig, path, dpi)


def plot_feature_importance(
    importance: np.ndarray,
    feature_names: List[str],
    path: Union[str, Path],
    dpi: int = 150,
    title: str = "Out-of-bag permuted predictor importance",
) -> Path:
    """Horizontal bars of the permutation importance, largest first."""
    if len(importance) != len(feature_names):
        raise InvalidArgument(f"Got {len(importance)} importances for {len(feature_names)} features")

    frame = (
        pd.DataFrame({"feature": feature_names, "importance": np.asarray(importance, dtype=np.float64)})
        .sort_values("importance", ascending=False)
    )
    fig, ax = plt.subplots(figsize=(7, 0.35 * len(frame) + 1.5))
    sns.barplot(data=frame, x="importance", y="feature", ax=ax, color="steelblue")
    ax.set_title(title)
    ax.set_xlabel("Importance (mean / std over trees)")
    ax.set_ylabel("")
    return _save(fig, path, dpi)


def plot_scatter_by_label(
    frame: pd.DataFrame,
    x: str,
    y: str,
    label: str,
    path: Union[str, Path],
    dpi: int = 150,
    title: Optional[str] = None,
) -> Path:
    """Scatter of two numeric columns, one colour per value of the label column."""
    missing = [column for column in (x, y, label) if column not in frame.columns]
    if missing:
        raise InvalidArgument(f"Columns not in the data: {missing}")

    fig, ax = plt.subplots(figsize=(7, 5))
    sns.scatterplot(data=frame, x=x, y=y, hue=label, ax=ax, s=10, alpha=0.6, edgecolor=None)
    ax.set_title(title or f"{y} against {x} by {label}")
    ax.grid(True, alpha=0.3)
    return _save(fig, path, dpi)


__all__ = [
    "build_comparison", "render_comparison",
    "plot_comparison", "plot_roc", "plot_oob_error", "plot_feature_importance",
    "plot_scatter_by_label",
]
