"""
Partitioning for the classifier comparison.

- holdout_partition: one seeded train/test split shared by every model
- stratified_folds: class-balanced folds for the feature selection criterion
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import numpy as np
from sklearn.model_selection import StratifiedKFold

from campaign_analyst.exceptions import InvalidArgument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Partition:
    """Complementary boolean masks over the rows of a dataset."""
    train_mask: np.ndarray
    test_mask: np.ndarray
    seed: Optional[int] = None

    @property
    def n_train(self) -> int:
        return int(self.train_mask.sum())

    @property
    def n_test(self) -> int:
        return int(self.test_mask.sum())

    @property
    def train_indices(self) -> np.ndarray:
        return np.flatnonzero(self.train_mask)

    @property
    def test_indices(self) -> np.ndarray:
        return np.flatnonzero(self.test_mask)


def holdout_partition(n_rows: int, holdout: float = 0.40, seed: int = 0) -> Partition:
    """
    Draw a random holdout split.

    The test set has exactly ceil(n_rows * holdout) rows chosen uniformly at
    random; every other row is training data. The same seed always yields
    the same masks. A holdout close to 1 on very few rows can leave the
    training mask empty; the adapters reject an empty training set.

    Args:
        n_rows: Number of observations
        holdout: Fraction of rows held out for testing, strictly in (0, 1)
        seed: Seed of the random generator

    Raises:
        InvalidArgument: if holdout is outside (0, 1) or n_rows < 2
    """
    if not 0.0 < holdout < 1.0:
        raise InvalidArgument(f"Holdout fraction must be in (0, 1), got {holdout}")
    if n_rows < 2:
        raise InvalidArgument(f"Need at least 2 rows to partition, got {n_rows}")

    n_test = math.ceil(n_rows * holdout)

    rng = np.random.default_rng(seed)
    test_mask = np.zeros(n_rows, dtype=bool)
    test_mask[rng.permutation(n_rows)[:n_test]] = True

    logger.info(f"Holdout partition: {n_rows - n_test} train / {n_test} test rows (seed {seed})")
    return Partition(train_mask=~test_mask, test_mask=test_mask, seed=seed)


def stratified_folds(
    y: np.ndarray,
    n_folds: int = 10,
    seed: int = 0,
) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
    """
    Yield (train_indices, validation_indices) pairs of stratified folds.

    Every class must have at least ``n_folds`` members so that each fold
    sees every class.

    Raises:
        InvalidArgument: if n_folds < 2, exceeds the number of observations
            or exceeds the size of the smallest class
    """
    y = np.asarray(y)
    if n_folds < 2:
        raise InvalidArgument(f"Need at least 2 folds, got {n_folds}")
    if n_folds > len(y):
        raise InvalidArgument(f"Cannot split {len(y)} observations into {n_folds} folds")
    _, counts = np.unique(y, return_counts=True)
    if n_folds > counts.min():
        raise InvalidArgument(
            f"Cannot split into {n_folds} stratified folds: smallest class has {int(counts.min())} members"
        )

    splitter = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed)
    try:
        folds = list(splitter.split(np.zeros((len(y), 1)), y))
    except ValueError as exc:
        raise InvalidArgument(f"Cannot build {n_folds} stratified folds: {exc}") from exc
    yield from folds


__all__ = ["Partition", "holdout_partition", "stratified_folds"]
