"""
Model Evaluation Module for Campaign Analyst

Holdout evaluation of a binary classifier:
- Row-normalised confusion matrix (percent of each true class)
- ROC curve of the positive-class score and its area
- Summary metrics (accuracy, precision, recall, F1, ROC-AUC)

Labels are the 0/1 codes produced by the feature encoder; rows and columns of
every matrix are ordered negative class first.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    auc,
    confusion_matrix,
    f1_score,
    precision_score,
    recall_score,
    roc_auc_score,
)
from sklearn.metrics import roc_curve as sklearn_roc_curve

from campaign_analyst.exceptions import InvalidArgument

logger = logging.getLogger(__name__)

CLASS_CODES = [0, 1]


@dataclass
class MetricResult:
    """Single evaluation metric."""
    name: str
    value: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RocCurve:
    """Equal-length fpr/tpr/threshold arrays, thresholds descending, plus the area."""
    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray
    auc: float

    def __len__(self) -> int:
        return len(self.fpr)


def _as_labels(values: np.ndarray, name: str) -> np.ndarray:
    labels = np.asarray(values).astype(int).ravel()
    unexpected = np.setdiff1d(np.unique(labels), CLASS_CODES)
    if unexpected.size:
        raise InvalidArgument(f"{name} must contain 0/1 codes, found {unexpected.tolist()}")
    return labels


def confusion_matrix_percent(y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
    """
    2x2 confusion matrix in percent of each true class.

    Entry (i, j) is the share of true class i predicted as class j. A class
    absent from ``y_true`` yields a row of NaN.

    Raises:
        InvalidArgument: on length mismatch, empty input or labels outside 0/1
    """
    y_true = _as_labels(y_true, "y_true")
    y_pred = _as_labels(y_pred, "y_pred")
    if len(y_true) != len(y_pred):
        raise InvalidArgument(f"y_true has {len(y_true)} labels but y_pred has {len(y_pred)}")
    if len(y_true) == 0:
        raise InvalidArgument("Cannot build a confusion matrix from zero labels")

    counts = confusion_matrix(y_true, y_pred, labels=CLASS_CODES).astype(np.float64)
    totals = counts.sum(axis=1, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        percent = np.where(totals > 0, counts / totals * 100.0, np.nan)
    return percent


def roc_curve(y_true: np.ndarray, score_positive: np.ndarray) -> RocCurve:
    """
    ROC curve for the positive class.

    Thresholds run from +inf (the (0, 0) point) down to the smallest score,
    with every distinct score kept. The area is the trapezoidal integral of
    the polyline sorted by ascending fpr, ties by ascending tpr.

    Raises:
        InvalidArgument: if lengths differ, scores are not finite, or either
            class is absent
    """
    y_true = _as_labels(y_true, "y_true")
    scores = np.asarray(score_positive, dtype=np.float64).ravel()
    if len(y_true) != len(scores):
        raise InvalidArgument(f"y_true has {len(y_true)} labels but {len(scores)} scores were given")
    if not np.all(np.isfinite(scores)):
        raise InvalidArgument("Scores must be finite")
    present = np.unique(y_true)
    if len(present) < 2:
        raise InvalidArgument(f"ROC needs both classes in y_true, found only {present.tolist()}")

    fpr, tpr, thresholds = sklearn_roc_curve(y_true, scores, pos_label=1, drop_intermediate=False)

    order = np.lexsort((tpr, fpr))
    area = float(auc(fpr[order], tpr[order]))
    return RocCurve(fpr=fpr, tpr=tpr, thresholds=thresholds, auc=area)


def classification_summary(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    score_positive: Optional[np.ndarray] = None,
) -> Dict[str, MetricResult]:
    """Accuracy, precision, recall and F1 of the positive class, plus ROC-AUC when scores are given."""
    y_true = _as_labels(y_true, "y_true")
    y_pred = _as_labels(y_pred, "y_pred")

    metrics = {
        "accuracy": MetricResult("Accuracy", float(accuracy_score(y_true, y_pred))),
        "precision": MetricResult(
            "Precision", float(precision_score(y_true, y_pred, zero_division=0)), {"average": "binary"}
        ),
        "recall": MetricResult(
            "Recall", float(recall_score(y_true, y_pred, zero_division=0)), {"average": "binary"}
        ),
        "f1_score": MetricResult(
            "F1-Score", float(f1_score(y_true, y_pred, zero_division=0)), {"average": "binary"}
        ),
    }

    if score_positive is not None and len(np.unique(y_true)) == 2:
        metrics["roc_auc"] = MetricResult("ROC-AUC", float(roc_auc_score(y_true, score_positive)))

    return metrics


__all__ = [
    "MetricResult", "RocCurve", "CLASS_CODES",
    "confusion_matrix_percent", "roc_curve", "classification_summary",
]
