"""
Utility Functions Package for Campaign Analyst

Data loading, encoding, validation and worker-pool utilities shared by the
model adapters and the comparison pipeline.

The utils package contains three modules:
- preprocessing.py: Delimited-text loading and feature encoding
- validation.py: Schema, label and feature-subset checks
- parallel.py: Lifetime-scoped joblib worker pool

Usage:
    from campaign_analyst.utils import load_bank_marketing, encode_features, Encoding

    dataset = load_bank_marketing("bank-full.csv")
    encoded = encode_features(dataset, Encoding.ORDINAL_CODES)
"""

import logging

from .parallel import WorkerPool, parallel_map
from .preprocessing import (
    ColumnKind,
    Dataset,
    EncodedFeatures,
    Encoding,
    FeatureEncoder,
    decode_one_hot,
    describe_dataset,
    encode_features,
    load_bank_marketing,
    load_dataset,
)
from .validation import (
    check_training_labels,
    validate_binary_labels,
    validate_feature_matrix,
    validate_feature_subset,
    validate_header,
    validate_row_shape,
)

logger = logging.getLogger(__name__)

__all__ = [
    # Preprocessing
    "ColumnKind", "Dataset", "EncodedFeatures", "Encoding", "FeatureEncoder",
    "decode_one_hot", "describe_dataset", "encode_features",
    "load_bank_marketing", "load_dataset",
    # Validation
    "check_training_labels", "validate_binary_labels", "validate_feature_matrix",
    "validate_feature_subset", "validate_header", "validate_row_shape",
    # Parallel
    "WorkerPool", "parallel_map",
]
