"""
CAMPAIGN ANALYST - INPUT VALIDATION UTILITIES
=============================================

Checks shared by the data loader, the partitioner, the feature selector and
the model adapters. Every check raises a member of the package error taxonomy
instead of returning a flag, so callers cannot silently continue on bad input.

Components:
- Header and row-shape validation for delimited input
- Binary label validation
- Feature matrix / label vector consistency
- Feature subset validation
- Training label validation for the model adapters
"""

import logging
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from campaign_analyst.exceptions import FormatError, InvalidArgument, InvalidConfig

logger = logging.getLogger(__name__)


def validate_header(columns: Sequence[str], expected: Optional[Sequence[str]]) -> None:
    """
    Check the header of a delimited file against an expected schema.

    Args:
        columns: Column names read from the file (quotes already stripped)
        expected: Required names in order, or None to accept any header

    Raises:
        FormatError: if the header differs from the expected schema
    """
    if len(columns) < 2:
        raise FormatError(f"Expected at least one feature and a label column, got {len(columns)} column(s)")

    duplicated = sorted({name for name in columns if list(columns).count(name) > 1})
    if duplicated:
        raise FormatError(f"Duplicate column name(s): {', '.join(duplicated)}")

    if expected is None:
        return

    if len(columns) != len(expected):
        raise FormatError(
            f"Expected {len(expected)} columns, found {len(columns)}: {list(columns)}"
        )

    mismatched = [
        f"{position}: '{found}' != '{wanted}'"
        for position, (found, wanted) in enumerate(zip(columns, expected))
        if found != wanted
    ]
    if mismatched:
        raise FormatError(f"Header does not match the expected schema ({'; '.join(mismatched)})")


def validate_row_shape(frame: pd.DataFrame) -> None:
    """
    Detect rows with fewer fields than the header.

    The loader reads every field as text with NA detection disabled, so a
    missing value can only appear when a row ran out of fields.
    """
    short_rows = frame.isna().any(axis=1)
    if short_rows.any():
        # +2: one for the header line, one for 1-based numbering
        line_numbers = (np.flatnonzero(short_rows.to_numpy()) + 2)[:5].tolist()
        raise FormatError(
            f"{int(short_rows.sum())} row(s) have fewer fields than the header "
            f"(first at line(s) {line_numbers})"
        )


def validate_binary_labels(
    values: Iterable[str],
    positive_label: str,
    negative_label: str,
    column: str = "label",
) -> None:
    """
    Check that the label column only holds the two expected tokens.

    Raises:
        FormatError: on any other token, or if the column is empty
    """
    observed = pd.unique(pd.Series(list(values), dtype=object))
    if len(observed) == 0:
        raise FormatError(f"Label column '{column}' is empty")

    allowed = {positive_label, negative_label}
    unexpected = [value for value in observed if value not in allowed]
    if unexpected:
        shown = ", ".join(repr(value) for value in unexpected[:5])
        raise FormatError(
            f"Label column '{column}' must be binary "
            f"('{negative_label}'/'{positive_label}'), found {shown}"
        )


def validate_feature_matrix(X: np.ndarray, y: Optional[np.ndarray] = None) -> None:
    """Check that X is a non-empty 2-D matrix aligned with y."""
    if X.ndim != 2:
        raise InvalidArgument(f"Feature matrix must be 2-D, got shape {X.shape}")
    if X.shape[0] == 0:
        raise InvalidArgument("Feature matrix has no rows")
    if X.shape[1] == 0:
        raise InvalidArgument("Feature matrix has no columns (empty feature subset)")
    if y is not None and len(y) != X.shape[0]:
        raise InvalidArgument(
            f"Label vector length {len(y)} does not match {X.shape[0]} feature rows"
        )


def validate_feature_subset(mask: Sequence[bool], n_features: int) -> np.ndarray:
    """
    Validate a boolean feature subset and return it as a numpy array.

    Raises:
        InvalidArgument: on a length mismatch or an empty subset
    """
    subset = np.asarray(mask, dtype=bool)
    if subset.ndim != 1 or subset.shape[0] != n_features:
        raise InvalidArgument(
            f"Feature subset must be a boolean vector of length {n_features}, got shape {subset.shape}"
        )
    if not subset.any():
        raise InvalidArgument("Feature subset is empty")
    return subset


def check_training_labels(y: np.ndarray, model: str) -> List[int]:
    """
    Validate training labels for a binary adapter.

    Returns:
        The sorted distinct labels

    Raises:
        InvalidConfig: if the labels are not 0/1 or only one class is present
    """
    classes = sorted(int(label) for label in np.unique(y))
    if any(label not in (0, 1) for label in classes):
        raise InvalidConfig(f"Training labels must be 0/1 codes, got {classes}", model=model, stage="train")
    if len(classes) < 2:
        raise InvalidConfig(
            f"Training labels contain a single class ({classes[0] if classes else 'none'}); "
            "a binary classifier needs both classes",
            model=model,
            stage="train",
        )
    return classes


__all__ = [
    "validate_header",
    "validate_row_shape",
    "validate_binary_labels",
    "validate_feature_matrix",
    "validate_feature_subset",
    "check_training_labels",
]
