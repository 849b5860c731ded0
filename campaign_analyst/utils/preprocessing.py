"""
CAMPAIGN ANALYST - DATA LOADING AND ENCODING
============================================

Turns a delimited text file into the numeric matrices the model adapters
consume.

Components:
- load_dataset / load_bank_marketing: delimited text -> Dataset, with every
  column tagged numeric or categorical exactly once, at load time
- FeatureEncoder: Dataset -> EncodedFeatures using either ordinal codes
  (one integer column per categorical predictor) or full one-hot indicators
- decode_one_hot: inverse of the one-hot encoding for a single column
- describe_dataset: class counts and percentages, as logged for each split

Category codes are assigned in lexicographic order of the category values,
so the same file always produces the same codes.
"""

import csv
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.preprocessing import OneHotEncoder, OrdinalEncoder

from campaign_analyst.config import BANK_COLUMNS
from campaign_analyst.exceptions import FormatError, InvalidArgument
from campaign_analyst.utils.validation import (
    validate_binary_labels,
    validate_feature_subset,
    validate_header,
    validate_row_shape,
)

logger = logging.getLogger(__name__)

_CANDIDATE_DELIMITERS = ",;\t|"
_ENCLOSING_QUOTES = r'^(["\'])(.*)\1$'


# =============================================================================
# ENUMS & DATA MODEL
# =============================================================================

class ColumnKind(str, Enum):
    """Semantic type of a column, decided once when the file is loaded."""
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"


class Encoding(str, Enum):
    """Encodings required by the model adapters."""
    ORDINAL_CODES = "ordinal-codes"
    ONE_HOT = "one-hot"


@dataclass
class Dataset:
    """
    Loaded table: numeric columns as float64, categorical columns as str.

    The last column of ``frame`` is the label column.
    """
    frame: pd.DataFrame
    kinds: Dict[str, ColumnKind]
    positive_label: str = "yes"
    negative_label: str = "no"

    def __post_init__(self):
        missing = [name for name in self.frame.columns if name not in self.kinds]
        if missing:
            raise FormatError(f"No column kind recorded for: {', '.join(missing)}")

    @property
    def n_rows(self) -> int:
        return len(self.frame)

    @property
    def label_column(self) -> str:
        return self.frame.columns[-1]

    @property
    def feature_columns(self) -> List[str]:
        return list(self.frame.columns[:-1])

    @property
    def categorical_mask(self) -> np.ndarray:
        """Boolean mask over the feature columns marking categorical predictors."""
        return np.array(
            [self.kinds[name] == ColumnKind.CATEGORICAL for name in self.feature_columns],
            dtype=bool,
        )

    @property
    def labels(self) -> np.ndarray:
        return self.frame[self.label_column].to_numpy(dtype=object)

    def label_codes(self) -> np.ndarray:
        """Label vector in canonical order: negative -> 0, positive -> 1."""
        return (self.labels == self.positive_label).astype(int)


@dataclass(frozen=True)
class EncodedFeatures:
    """Fixed-width numeric view of a Dataset, rows in Dataset order."""
    X: np.ndarray
    y: np.ndarray
    feature_names: List[str]
    categorical_mask: np.ndarray
    encoding: Encoding
    categories: Dict[str, List[str]] = field(default_factory=dict)
    source_columns: List[str] = field(default_factory=list)
    label_names: Tuple[str, str] = ("no", "yes")

    @property
    def n_features(self) -> int:
        return self.X.shape[1]

    def indicator_columns(self, column: str) -> List[int]:
        """Indices of the encoded columns derived from one source column."""
        return [i for i, source in enumerate(self.source_columns) if source == column]

    def rows(self, mask: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Features and labels of the rows selected by a boolean mask."""
        return self.X[mask], self.y[mask]

    def subset(self, features: Sequence[bool]) -> "EncodedFeatures":
        """Keep only the columns selected by a boolean feature mask."""
        keep = validate_feature_subset(features, self.n_features)
        kept_sources = [src for src, flag in zip(self.source_columns, keep) if flag]
        return EncodedFeatures(
            X=self.X[:, keep],
            y=self.y,
            feature_names=[name for name, flag in zip(self.feature_names, keep) if flag],
            categorical_mask=self.categorical_mask[keep],
            encoding=self.encoding,
            categories={col: cats for col, cats in self.categories.items() if col in kept_sources},
            source_columns=kept_sources,
            label_names=self.label_names,
        )


# =============================================================================
# DATA LOADER
# =============================================================================

def _sniff_delimiter(path: Path) -> str:
    """Guess the field delimiter from the header line."""
    with open(path, "r", encoding="utf-8", newline="") as handle:
        header = handle.readline()
    if not header.strip():
        raise FormatError(f"{path} has no header row")
    try:
        return csv.Sniffer().sniff(header, delimiters=_CANDIDATE_DELIMITERS).delimiter
    except csv.Error as exc:
        raise FormatError(f"Could not determine the delimiter of {path}") from exc


def _strip_quotes(series: pd.Series) -> pd.Series:
    """Trim whitespace and remove one pair of enclosing quote characters."""
    return series.str.strip().str.replace(_ENCLOSING_QUOTES, r"\2", regex=True)


def _classify_column(name: str, tokens: pd.Series, unknown_token: str) -> Tuple[ColumnKind, pd.Series]:
    """Decide numeric vs categorical and convert the tokens accordingly."""
    present = tokens[tokens != ""]
    numeric = pd.to_numeric(present, errors="coerce")

    if len(present) > 0 and numeric.notna().all():
        if len(present) < len(tokens):
            raise FormatError(
                f"Numeric column '{name}' has {len(tokens) - len(present)} missing value(s)"
            )
        return ColumnKind.NUMERIC, pd.to_numeric(tokens).astype(np.float64)

    return ColumnKind.CATEGORICAL, tokens.where(tokens != "", unknown_token).astype(str)


def load_dataset(
    path: Union[str, Path],
    delimiter: Optional[str] = None,
    expected_columns: Optional[Sequence[str]] = None,
    positive_label: str = "yes",
    negative_label: str = "no",
    unknown_token: str = "unknown",
) -> Dataset:
    """
    Read a delimited text file with a header row into a Dataset.

    Args:
        path: Input file (UTF-8)
        delimiter: Field delimiter; sniffed from the header when None
        expected_columns: Header the file must carry, or None for any header
        positive_label: Label token of the positive class
        negative_label: Label token of the negative class
        unknown_token: Category assigned to empty categorical fields

    Returns:
        Dataset whose last column is the binary label

    Raises:
        FormatError: ragged rows, header mismatch, missing numeric values,
            missing or non-binary label column
    """
    path = Path(path)
    if not path.is_file():
        raise FormatError(f"Input file not found: {path}")

    sep = delimiter or _sniff_delimiter(path)
    logger.info(f"Loading {path} (delimiter {sep!r})")

    try:
        # header=None: the first line sets the field count, so longer rows fail to parse
        raw = pd.read_csv(
            path,
            sep=sep,
            header=None,
            dtype=str,
            keep_default_na=False,
            quotechar='"',
            skip_blank_lines=True,
            encoding="utf-8",
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise FormatError(f"Could not parse {path}: {exc}") from exc

    if len(raw) < 2:
        raise FormatError(f"{path} has no data rows")

    header = _strip_quotes(raw.iloc[0].astype(str)).tolist()
    validate_header(header, expected_columns)

    frame = raw.iloc[1:].reset_index(drop=True)
    frame.columns = header
    validate_row_shape(frame)

    frame = frame.apply(_strip_quotes)

    label_column = header[-1]
    validate_binary_labels(frame[label_column], positive_label, negative_label, column=label_column)

    kinds: Dict[str, ColumnKind] = {label_column: ColumnKind.CATEGORICAL}
    converted = {}
    for name in header[:-1]:
        kinds[name], converted[name] = _classify_column(name, frame[name], unknown_token)
    converted[label_column] = frame[label_column].astype(str)

    dataset = Dataset(
        frame=pd.DataFrame(converted, columns=header),
        kinds=kinds,
        positive_label=positive_label,
        negative_label=negative_label,
    )

    n_categorical = int(dataset.categorical_mask.sum())
    logger.info(
        f"Loaded {dataset.n_rows} rows, {len(dataset.feature_columns)} predictors "
        f"({n_categorical} categorical, {len(dataset.feature_columns) - n_categorical} numeric)"
    )
    return dataset


def load_bank_marketing(path: Union[str, Path], delimiter: Optional[str] = None) -> Dataset:
    """Load bank-full.csv and check it against the 17-column bank schema."""
    return load_dataset(path, delimiter=delimiter, expected_columns=BANK_COLUMNS)


def describe_dataset(y: np.ndarray, label_names: Tuple[str, str] = ("no", "yes")) -> pd.DataFrame:
    """Counts and percentages per class, negative class first."""
    y = np.asarray(y)
    counts = [int(np.sum(y == code)) for code in (0, 1)]
    total = max(len(y), 1)
    return pd.DataFrame(
        {
            "Value": list(label_names),
            "Count": counts,
            "Percent": [100.0 * count / total for count in counts],
        }
    )


# =============================================================================
# FEATURE ENCODER
# =============================================================================

class FeatureEncoder:
    """
    Encodes the predictors of a Dataset for a particular model family.

    Categories come from the whole Dataset, so train and test rows share one
    code book regardless of how the rows are later partitioned.
    """

    def __init__(self):
        self._fitted_transformers: Dict[str, Union[OrdinalEncoder, OneHotEncoder]] = {}

    def encode(self, dataset: Dataset, encoding: Union[Encoding, str]) -> EncodedFeatures:
        """Encode all predictors of ``dataset`` and the aligned label vector."""
        encoding = Encoding(encoding)
        blocks: List[np.ndarray] = []
        feature_names: List[str] = []
        categorical_flags: List[bool] = []
        source_columns: List[str] = []
        categories: Dict[str, List[str]] = {}

        for name in dataset.feature_columns:
            values = dataset.frame[name].to_numpy()

            if dataset.kinds[name] == ColumnKind.NUMERIC:
                blocks.append(values.astype(np.float64).reshape(-1, 1))
                feature_names.append(name)
                categorical_flags.append(False)
                source_columns.append(name)
                continue

            levels = sorted(pd.unique(values).tolist())
            categories[name] = levels
            column = values.astype(object).reshape(-1, 1)

            if encoding == Encoding.ORDINAL_CODES:
                encoder = OrdinalEncoder(categories=[levels], dtype=np.float64)
                blocks.append(encoder.fit_transform(column))
                feature_names.append(name)
                categorical_flags.append(True)
                source_columns.append(name)
            else:
                encoder = OneHotEncoder(categories=[levels], drop=None, sparse_output=False, dtype=np.float64)
                blocks.append(encoder.fit_transform(column))
                feature_names.extend(f"{name}_{level}" for level in levels)
                categorical_flags.extend([True] * len(levels))
                source_columns.extend([name] * len(levels))

            self._fitted_transformers[f"{encoding.value}_{name}"] = encoder

        X = np.hstack(blocks) if blocks else np.empty((dataset.n_rows, 0))
        logger.debug(f"Encoded {len(dataset.feature_columns)} predictors into {X.shape[1]} {encoding.value} columns")

        return EncodedFeatures(
            X=X,
            y=dataset.label_codes(),
            feature_names=feature_names,
            categorical_mask=np.array(categorical_flags, dtype=bool),
            encoding=encoding,
            categories=categories,
            source_columns=source_columns,
            label_names=(dataset.negative_label, dataset.positive_label),
        )


def encode_features(dataset: Dataset, encoding: Union[Encoding, str]) -> EncodedFeatures:
    """Encode a Dataset with a fresh FeatureEncoder."""
    return FeatureEncoder().encode(dataset, encoding)


def decode_one_hot(encoded: EncodedFeatures, column: str) -> np.ndarray:
    """
    Recover the original values of one categorical column from its indicators.

    Raises:
        InvalidArgument: if the features are not one-hot encoded or the column
            is not a categorical predictor
    """
    if encoded.encoding != Encoding.ONE_HOT:
        raise InvalidArgument(f"Cannot decode {encoded.encoding.value} features as one-hot")
    if column not in encoded.categories:
        raise InvalidArgument(f"'{column}' is not a one-hot encoded categorical column")

    indices = encoded.indicator_columns(column)
    levels = np.asarray(encoded.categories[column], dtype=object)
    return levels[np.argmax(encoded.X[:, indices], axis=1)]


__all__ = [
    "ColumnKind", "Encoding", "Dataset", "EncodedFeatures", "FeatureEncoder",
    "load_dataset", "load_bank_marketing", "describe_dataset",
    "encode_features", "decode_one_hot",
]
