"""
Sequential forward feature selection.

Starting from a forced-include subset, each round retrains the designated
adapter once per remaining candidate feature on stratified folds of the
training data and adds the candidate with the lowest cross-validated
misclassification rate. The search stops when the best candidate does not
improve the criterion by more than the tolerance, when every feature is
included, or after ``max_steps`` additions.

Candidate evaluations are independent tasks that each receive their own
column subset, so a round can fan out over a WorkerPool; the round's results
are joined before the next round starts.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from campaign_analyst.config import SelectionConfig
from campaign_analyst.exceptions import InvalidArgument
from campaign_analyst.ml.model_selection import stratified_folds
from campaign_analyst.ml.tabular_models import ModelAdapter
from campaign_analyst.utils.parallel import WorkerPool, parallel_map
from campaign_analyst.utils.validation import validate_feature_matrix, validate_feature_subset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionStep:
    """State after one round: the feature added (None for the start) and the criterion."""
    step: int
    added: Optional[int]
    added_name: Optional[str]
    criterion: float
    mask: np.ndarray


@dataclass
class SelectionResult:
    """Final inclusion mask and the per-step criterion history."""
    mask: np.ndarray
    history: List[SelectionStep] = field(default_factory=list)
    feature_names: List[str] = field(default_factory=list)
    stop_reason: str = ""

    @property
    def selected_features(self) -> List[str]:
        return [name for name, keep in zip(self.feature_names, self.mask) if keep]

    @property
    def criterion(self) -> float:
        return self.history[-1].criterion if self.history else float("nan")


def _cv_misclassification(task: Tuple[Any, Any, np.ndarray, np.ndarray, np.ndarray, list]) -> float:
    """Misclassified validation rows summed over all folds, divided by the row count."""
    adapter, adapter_config, X, y, categorical_mask, folds = task
    errors = 0
    for train_idx, valid_idx in folds:
        model = adapter.train(X[train_idx], y[train_idx], adapter_config, categorical_mask)
        errors += int(np.sum(adapter.predict(model, X[valid_idx]).labels != y[valid_idx]))
    return errors / len(y)


class SequentialFeatureSelector:
    """Greedy forward selection driven by a model adapter's cross-validated error."""

    def __init__(
        self,
        adapter: ModelAdapter,
        config: Optional[SelectionConfig] = None,
        pool: Optional[WorkerPool] = None,
        adapter_config: Any = None,
        seed: int = 0,
    ):
        self.adapter = adapter
        self.config = config or SelectionConfig()
        self.pool = pool
        self.adapter_config = adapter_config
        self.seed = seed

    def select(
        self,
        X: np.ndarray,
        y: np.ndarray,
        keep_in: Optional[Sequence[int]] = None,
        categorical_mask: Optional[np.ndarray] = None,
        feature_names: Optional[List[str]] = None,
    ) -> SelectionResult:
        """
        Run the forward search.

        Args:
            X: Training features
            y: Training labels (0/1)
            keep_in: Indices of features that are always included
            categorical_mask: Categorical flag of every column of X
            feature_names: Names used in the history and the log

        Raises:
            InvalidArgument: on bad keep-in indices or mismatched inputs
        """
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y).astype(int)
        validate_feature_matrix(X, y)
        n_features = X.shape[1]

        if categorical_mask is None:
            categorical_mask = np.zeros(n_features, dtype=bool)
        categorical_mask = np.asarray(categorical_mask, dtype=bool)
        if feature_names is None:
            feature_names = [f"x{i}" for i in range(n_features)]

        mask = np.zeros(n_features, dtype=bool)
        for index in ([] if keep_in is None else keep_in):
            index = int(index)
            if not 0 <= index < n_features:
                raise InvalidArgument(f"Keep-in index {index} is outside 0..{n_features - 1}")
            mask[index] = True

        folds = list(stratified_folds(y, self.config.cv_folds, self.seed))

        history: List[SelectionStep] = []
        current = float("inf")
        if mask.any():
            current = self._evaluate([mask], X, y, categorical_mask, folds)[0]
            history.append(SelectionStep(0, None, None, current, mask.copy()))
            logger.info(f"Start: {int(mask.sum())} forced feature(s), criterion {current:.5f}")

        stop_reason = "all features included"
        steps = 0
        while not mask.all():
            if self.config.max_steps is not None and steps >= self.config.max_steps:
                stop_reason = "step budget reached"
                break

            candidates = np.flatnonzero(~mask)
            trial_masks = []
            for index in candidates:
                trial = mask.copy()
                trial[index] = True
                trial_masks.append(trial)

            scores = self._evaluate(trial_masks, X, y, categorical_mask, folds)
            best = int(np.argmin(scores))
            if current - scores[best] <= self.config.tolerance:
                stop_reason = "no candidate improves the criterion"
                break

            added = int(candidates[best])
            mask[added] = True
            current = scores[best]
            steps += 1
            history.append(SelectionStep(steps, added, feature_names[added], current, mask.copy()))
            logger.info(f"Step {steps}: added '{feature_names[added]}', criterion {current:.5f}")

        validate_feature_subset(mask, n_features)
        logger.info(
            f"Selected {int(mask.sum())} of {n_features} features ({stop_reason}): "
            f"{[name for name, keep in zip(feature_names, mask) if keep]}"
        )
        return SelectionResult(mask=mask, history=history, feature_names=list(feature_names), stop_reason=stop_reason)

    def _evaluate(
        self,
        masks: List[np.ndarray],
        X: np.ndarray,
        y: np.ndarray,
        categorical_mask: np.ndarray,
        folds: list,
    ) -> List[float]:
        tasks = [
            (self.adapter, self.adapter_config, X[:, subset].copy(), y, categorical_mask[subset], folds)
            for subset in masks
        ]
        return parallel_map(self.pool, _cv_misclassification, tasks)


__all__ = ["SequentialFeatureSelector", "SelectionResult", "SelectionStep"]
