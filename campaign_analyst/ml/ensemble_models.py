"""
Ensemble Models Module for Campaign Analyst

Bagged classification trees with a misclassification cost matrix and the two
out-of-bag diagnostics used by the comparison:

- Out-of-bag error curve: error of the cumulative ensemble of the first k trees
- Permutation importance: per-tree increase in out-of-bag error when a
  predictor is shuffled, averaged over trees and divided by its standard
  deviation over trees

Both diagnostics are computed once during training. The per-tree importance
work fans out over a WorkerPool when the adapter holds an open one.
"""

import logging
from typing import Any, List, Literal, Optional, Tuple, Union

import numpy as np
from pydantic import Field, field_validator
from sklearn.ensemble import BaggingClassifier
from sklearn.tree import DecisionTreeClassifier

from campaign_analyst.exceptions import InvalidArgument
from campaign_analyst.ml.tabular_models import (
    Prediction,
    TrainedModel,
    AdapterConfig,
    check_prediction_input,
    fit_estimator,
    prepare_training,
    resolve_config,
)
from campaign_analyst.utils.parallel import WorkerPool, parallel_map
from campaign_analyst.utils.preprocessing import Encoding

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

class TreeBaggerConfig(AdapterConfig):
    """Bagged tree ensemble; cost[i][j] is the cost of predicting j for true class i."""
    n_trees: int = Field(default=150, ge=1, le=5000)
    cost: List[List[float]] = Field(default_factory=lambda: [[0.0, 1.0], [5.0, 0.0]])
    max_features: Union[Literal["sqrt", "log2"], int, float, None] = "sqrt"
    min_leaf: int = Field(default=1, ge=1)
    compute_oob_error: bool = True
    compute_importance: bool = True
    random_state: Optional[int] = 0

    @field_validator("cost")
    @classmethod
    def binary_cost_matrix(cls, v: List[List[float]]) -> List[List[float]]:
        """A 2x2 non-negative matrix with a zero diagonal."""
        if len(v) != 2 or any(len(row) != 2 for row in v):
            raise ValueError("cost must be a 2x2 matrix")
        if any(value < 0 for row in v for value in row):
            raise ValueError("cost entries must be non-negative")
        if v[0][0] != 0 or v[1][1] != 0:
            raise ValueError("correct classifications must cost 0")
        return v


# =============================================================================
# PER-TREE HELPERS
# =============================================================================

def _tree_proba(tree: DecisionTreeClassifier, X: np.ndarray, features: np.ndarray) -> np.ndarray:
    """Class probabilities of one tree over both classes, even if its bootstrap saw one."""
    proba = np.zeros((X.shape[0], 2))
    proba[:, tree.classes_.astype(int)] = tree.predict_proba(X[:, features])
    return proba


def min_cost_labels(proba: np.ndarray, cost: np.ndarray) -> np.ndarray:
    """Class with the lowest expected misclassification cost; ties go to class 0."""
    return np.argmin(proba @ cost, axis=1).astype(int)


def _permutation_deltas(task: Tuple[Any, np.ndarray, np.ndarray, np.ndarray, np.ndarray, int]) -> np.ndarray:
    """
    Increase in one tree's out-of-bag error when each predictor is shuffled.

    The task holds its own copy of the out-of-bag rows, so it can run on any
    worker without touching shared state.
    """
    tree, features, X_oob, y_oob, cost, seed = task
    n_features = X_oob.shape[1]
    if len(y_oob) == 0:
        return np.zeros(n_features)

    rng = np.random.default_rng(seed)
    base_error = np.mean(min_cost_labels(_tree_proba(tree, X_oob, features), cost) != y_oob)

    deltas = np.zeros(n_features)
    for j in range(n_features):
        permuted = X_oob.copy()
        permuted[:, j] = rng.permutation(permuted[:, j])
        error = np.mean(min_cost_labels(_tree_proba(tree, permuted, features), cost) != y_oob)
        deltas[j] = error - base_error
    return deltas


# =============================================================================
# ADAPTER
# =============================================================================

class TreeBaggerAdapter:
    """
    Bootstrap-aggregated classification trees.

    Each tree is grown on a bootstrap sample of the training rows and samples
    a random subset of predictors at every split. Predictions minimise the
    expected misclassification cost under the tree-averaged class
    probabilities, which with the default cost predicts the positive class
    once its probability exceeds 1/6.
    """

    name = "tree_bagger"
    encoding = Encoding.ORDINAL_CODES

    def __init__(self, pool: Optional[WorkerPool] = None, label: str = "TreeBagger"):
        self.pool = pool
        self.label = label

    def __getstate__(self):
        # the pool belongs to the process that opened it
        state = self.__dict__.copy()
        state["pool"] = None
        return state

    def train(self, X, y, config=None, categorical_mask=None, feature_names=None) -> TrainedModel:
        cfg = resolve_config(TreeBaggerConfig, config, self.name)
        X, y, categorical_mask, feature_names, classes = prepare_training(
            X, y, self.name, categorical_mask, feature_names
        )
        cost = np.asarray(cfg.cost, dtype=np.float64)

        estimator = BaggingClassifier(
            estimator=DecisionTreeClassifier(max_features=cfg.max_features, min_samples_leaf=cfg.min_leaf),
            n_estimators=cfg.n_trees,
            bootstrap=True,
            random_state=cfg.random_state,
        )
        fit_estimator(estimator, X, y, self.name)
        logger.info(f"[{self.label}] Grew {cfg.n_trees} trees on {X.shape[0]} rows x {X.shape[1]} predictors")

        model = TrainedModel(
            adapter=self.name,
            estimator=estimator,
            config=cfg,
            feature_names=feature_names,
            categorical_mask=categorical_mask,
            classes=classes,
            diagnostics={"cost": cost},
        )

        oob_masks = self._oob_masks(estimator, X.shape[0])
        if cfg.compute_oob_error:
            model.diagnostics["oob_error"] = self._oob_error_curve(estimator, X, y, oob_masks, cost)
            logger.info(f"[{self.label}] Out-of-bag error with all trees: {model.diagnostics['oob_error'][-1]:.4f}")
        if cfg.compute_importance:
            model.diagnostics["feature_importance"] = self._permutation_importance(
                estimator, X, y, oob_masks, cost, cfg.random_state
            )
        return model

    def predict(self, model: TrainedModel, X) -> Prediction:
        X = check_prediction_input(model, X)
        scores = self._average_proba(model.estimator, X)
        return Prediction(labels=min_cost_labels(scores, model.diagnostics["cost"]), scores=scores)

    def oob_error(self, model: TrainedModel) -> np.ndarray:
        """Out-of-bag misclassification rate after each tree."""
        if "oob_error" not in model.diagnostics:
            raise InvalidArgument(f"Model '{model.adapter}' was trained without the out-of-bag error curve")
        return model.diagnostics["oob_error"]

    def feature_importance(self, model: TrainedModel) -> np.ndarray:
        """Normalised permutation importance of every predictor."""
        if "feature_importance" not in model.diagnostics:
            raise InvalidArgument(f"Model '{model.adapter}' was trained without permutation importance")
        return model.diagnostics["feature_importance"]

    # -------------------------------------------------------------------------

    @staticmethod
    def _average_proba(estimator: BaggingClassifier, X: np.ndarray) -> np.ndarray:
        total = np.zeros((X.shape[0], 2))
        for tree, features in zip(estimator.estimators_, estimator.estimators_features_):
            total += _tree_proba(tree, X, features)
        return total / len(estimator.estimators_)

    @staticmethod
    def _oob_masks(estimator: BaggingClassifier, n_rows: int) -> List[np.ndarray]:
        masks = []
        for samples in estimator.estimators_samples_:
            in_bag = np.zeros(n_rows, dtype=bool)
            in_bag[samples] = True
            masks.append(~in_bag)
        return masks

    @staticmethod
    def _oob_error_curve(
        estimator: BaggingClassifier,
        X: np.ndarray,
        y: np.ndarray,
        oob_masks: List[np.ndarray],
        cost: np.ndarray,
    ) -> np.ndarray:
        """Element k: error of the first k+1 trees over rows out-of-bag for at least one of them."""
        proba_sum = np.zeros((X.shape[0], 2))
        votes = np.zeros(X.shape[0])
        curve = np.full(len(oob_masks), np.nan)

        for k, (tree, features, oob) in enumerate(zip(estimator.estimators_, estimator.estimators_features_, oob_masks)):
            if oob.any():
                proba_sum[oob] += _tree_proba(tree, X[oob], features)
                votes[oob] += 1
            covered = votes > 0
            if covered.any():
                labels = min_cost_labels(proba_sum[covered] / votes[covered, None], cost)
                curve[k] = np.mean(labels != y[covered])
        return curve

    def _permutation_importance(
        self,
        estimator: BaggingClassifier,
        X: np.ndarray,
        y: np.ndarray,
        oob_masks: List[np.ndarray],
        cost: np.ndarray,
        seed: Optional[int],
    ) -> np.ndarray:
        base_seed = 0 if seed is None else seed
        tasks = [
            (tree, features, X[oob].copy(), y[oob].copy(), cost, base_seed * 100003 + t)
            for t, (tree, features, oob) in enumerate(
                zip(estimator.estimators_, estimator.estimators_features_, oob_masks)
            )
        ]
        deltas = np.vstack(parallel_map(self.pool, _permutation_deltas, tasks))

        mean = deltas.mean(axis=0)
        spread = deltas.std(axis=0, ddof=1) if len(deltas) > 1 else np.zeros(deltas.shape[1])
        importance = np.zeros_like(mean)
        nonzero = spread > 0
        importance[nonzero] = mean[nonzero] / spread[nonzero]
        return importance


__all__ = ["TreeBaggerConfig", "TreeBaggerAdapter", "min_cost_labels"]
