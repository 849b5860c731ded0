"""
Campaign Analyst ML Package

Model adapters, evaluation, feature selection, reporting and the comparison
pipeline for the bank marketing classifier study.

Usage:
    from campaign_analyst.ml import ComparisonPipeline, get_adapter

    result = ComparisonPipeline(settings).run()
    print(render_comparison(result.comparison))

    adapter = get_adapter("knn")
    model = adapter.train(X_train, y_train, categorical_mask=mask)
    prediction = adapter.predict(model, X_test)
"""

import logging

from .auto_pipeline import ComparisonPipeline, ComparisonResult, ModelOutcome, OutcomeStatus, PipelineStage
from .ensemble_models import TreeBaggerAdapter, TreeBaggerConfig
from .evaluation import MetricResult, RocCurve, classification_summary, confusion_matrix_percent, roc_curve
from .feature_selection import SelectionResult, SelectionStep, SequentialFeatureSelector
from .model_selection import Partition, holdout_partition, stratified_folds
from .reporting import (
    build_comparison,
    plot_comparison,
    plot_feature_importance,
    plot_oob_error,
    plot_roc,
    render_comparison,
)
from .tabular_models import (
    ModelAdapter,
    Prediction,
    TrainedModel,
    available_adapters,
    default_adapters,
    get_adapter,
)

logger = logging.getLogger(__name__)

__all__ = [
    # Pipeline
    "ComparisonPipeline", "ComparisonResult", "ModelOutcome", "OutcomeStatus", "PipelineStage",
    # Adapters
    "ModelAdapter", "Prediction", "TrainedModel", "TreeBaggerAdapter", "TreeBaggerConfig",
    "available_adapters", "default_adapters", "get_adapter",
    # Evaluation
    "MetricResult", "RocCurve", "classification_summary", "confusion_matrix_percent", "roc_curve",
    # Feature selection
    "SelectionResult", "SelectionStep", "SequentialFeatureSelector",
    # Partitioning
    "Partition", "holdout_partition", "stratified_folds",
    # Reporting
    "build_comparison", "render_comparison", "plot_comparison", "plot_roc",
    "plot_oob_error", "plot_feature_importance",
]
