"""
Comparison Pipeline for Campaign Analyst

Runs the complete classifier comparison on the bank marketing data:

    load -> describe -> encode -> partition -> open worker pool
    -> train / predict / evaluate every enabled adapter
    -> ROC and out-of-bag diagnostics of the tree ensemble
    -> sequential feature selection -> reduced tree ensemble
    -> second comparison -> reports -> close worker pool

Loading and partitioning errors abort the run. A failing model adapter only
fails its own ModelOutcome (with the stage and the original exception) and
the remaining adapters carry on. The worker pool is always closed, also when
the run fails.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from campaign_analyst.config import Settings, get_settings
from campaign_analyst.exceptions import InvalidArgument, ModelError
from campaign_analyst.ml.ensemble_models import TreeBaggerAdapter, TreeBaggerConfig
from campaign_analyst.ml.evaluation import (
    MetricResult,
    RocCurve,
    classification_summary,
    confusion_matrix_percent,
    roc_curve,
)
from campaign_analyst.ml.feature_selection import SelectionResult, SequentialFeatureSelector
from campaign_analyst.ml.model_selection import Partition, holdout_partition
from campaign_analyst.ml.reporting import (
    build_comparison,
    plot_comparison,
    plot_feature_importance,
    plot_oob_error,
    plot_roc,
    plot_scatter_by_label,
    render_comparison,
)
from campaign_analyst.ml.tabular_models import ModelAdapter, TrainedModel, get_adapter
from campaign_analyst.utils.parallel import WorkerPool
from campaign_analyst.utils.preprocessing import (
    Dataset,
    EncodedFeatures,
    Encoding,
    describe_dataset,
    encode_features,
    load_dataset,
)

logger = logging.getLogger(__name__)

REDUCED_LABEL = "Reduced TB"
# numeric columns of the exploration scatter, drawn when the data has both
EXPLORATION_COLUMNS = ("balance", "duration")


# =============================================================================
# ENUMS & RESULT TYPES
# =============================================================================

class PipelineStage(Enum):
    """Stages of the comparison pipeline."""
    INITIALIZATION = "initialization"
    LOADING = "loading"
    DESCRIPTION = "description"
    ENCODING = "encoding"
    PARTITIONING = "partitioning"
    MODEL_COMPARISON = "model_comparison"
    DIAGNOSTICS = "diagnostics"
    FEATURE_SELECTION = "feature_selection"
    REDUCED_ENSEMBLE = "reduced_ensemble"
    REPORTING = "reporting"
    COMPLETED = "completed"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ModelOutcome:
    """Result of one adapter in a comparison run."""
    name: str
    label: str
    status: OutcomeStatus
    stage: Optional[str] = None
    error: Optional[ModelError] = None
    confusion: Optional[np.ndarray] = None
    roc: Optional[RocCurve] = None
    metrics: Dict[str, MetricResult] = field(default_factory=dict)
    train_seconds: float = 0.0
    model: Optional[TrainedModel] = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED


@dataclass
class ComparisonResult:
    """Everything a comparison run produced."""
    pipeline_id: str
    partition: Partition
    outcomes: List[ModelOutcome]
    comparison: Optional[pd.DataFrame] = None
    ensemble_roc: Optional[RocCurve] = None
    oob_error: Optional[np.ndarray] = None
    feature_importance: Optional[np.ndarray] = None
    feature_names: List[str] = field(default_factory=list)
    selection: Optional[SelectionResult] = None
    reduced_outcome: Optional[ModelOutcome] = None
    reduced_comparison: Optional[pd.DataFrame] = None
    artifacts: List[Path] = field(default_factory=list)
    execution_log: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def failed_models(self) -> List[ModelOutcome]:
        outcomes = self.outcomes + ([self.reduced_outcome] if self.reduced_outcome else [])
        return [outcome for outcome in outcomes if not outcome.succeeded]

    def outcome(self, name: str) -> ModelOutcome:
        for candidate in self.outcomes:
            if candidate.name == name:
                return candidate
        raise KeyError(name)


# =============================================================================
# PIPELINE
# =============================================================================

class ComparisonPipeline:
    """
    Orchestrates one classifier comparison run.

    Args:
        settings: Application settings; defaults to the cached environment settings
        adapter_configs: Optional hyperparameters per adapter name, overriding
            the adapter defaults (the tree ensemble defaults come from settings)
    """

    def __init__(self, settings: Optional[Settings] = None, adapter_configs: Optional[Dict[str, Any]] = None):
        self.settings = settings or get_settings()
        self.adapter_configs = dict(adapter_configs or {})
        self.pipeline_id = str(uuid.uuid4())
        self.current_stage = PipelineStage.INITIALIZATION
        self.execution_log: List[Dict[str, Any]] = []
        logger.info(f"Pipeline {self.pipeline_id} initialized")

    def run(self, dataset: Optional[Dataset] = None) -> ComparisonResult:
        """
        Run the comparison.

        Args:
            dataset: Already loaded data; when omitted the file configured in
                ``settings.data.path`` is loaded

        Raises:
            FormatError: if the input file is malformed
            InvalidArgument: if no input is configured or the partition is invalid
        """
        started_at = datetime.now()
        settings = self.settings

        try:
            if dataset is None:
                self._enter(PipelineStage.LOADING)
                dataset = self._load()
                self._complete(PipelineStage.LOADING, {"rows": dataset.n_rows})

            self._enter(PipelineStage.DESCRIPTION)
            label_names = (dataset.negative_label, dataset.positive_label)
            self._log_distribution("Full data set", dataset.label_codes(), label_names)
            self._complete(PipelineStage.DESCRIPTION)

            self._enter(PipelineStage.ENCODING)
            encodings = self._encode(dataset)
            self._complete(PipelineStage.ENCODING, {enc.value: feats.n_features for enc, feats in encodings.items()})

            self._enter(PipelineStage.PARTITIONING)
            partition = holdout_partition(dataset.n_rows, settings.partition.holdout, settings.partition.seed)
            y = dataset.label_codes()
            self._log_distribution("Training set", y[partition.train_mask], label_names)
            self._log_distribution("Test set", y[partition.test_mask], label_names)
            self._complete(PipelineStage.PARTITIONING, {"train": partition.n_train, "test": partition.n_test})

            result = ComparisonResult(
                pipeline_id=self.pipeline_id,
                partition=partition,
                outcomes=[],
                execution_log=self.execution_log,
                started_at=started_at,
            )

            pool = WorkerPool(settings.parallel.n_jobs, settings.parallel.backend)
            try:
                pool.open()
                self._compare_models(result, encodings, partition, pool)
                self._collect_diagnostics(result, encodings[Encoding.ORDINAL_CODES])
                self._run_feature_selection(result, encodings[Encoding.ORDINAL_CODES], partition, pool)
                self._run_reduced_ensemble(result, encodings[Encoding.ORDINAL_CODES], partition, pool)
            finally:
                pool.close()

            self._enter(PipelineStage.REPORTING)
            self._write_reports(result, dataset)
            self._complete(PipelineStage.REPORTING, {"artifacts": len(result.artifacts)})

        except Exception as exc:
            self._fail(exc)
            raise

        self.current_stage = PipelineStage.COMPLETED
        result.finished_at = datetime.now()
        elapsed = (result.finished_at - started_at).total_seconds()
        logger.info(
            f"Pipeline {self.pipeline_id} completed in {elapsed:.1f}s "
            f"({len(result.failed_models)} model failure(s))"
        )
        return result

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _load(self) -> Dataset:
        data = self.settings.data
        if data.path is None:
            raise InvalidArgument("No input file configured (settings.data.path)")
        return load_dataset(
            data.path,
            delimiter=data.delimiter,
            expected_columns=data.expected_columns,
            positive_label=data.positive_label,
            negative_label=data.negative_label,
            unknown_token=data.unknown_token,
        )

    def _encode(self, dataset: Dataset) -> Dict[Encoding, EncodedFeatures]:
        # ordinal codes are always needed: the tree ensemble diagnostics and the selection use them
        encodings = {Encoding.ORDINAL_CODES: encode_features(dataset, Encoding.ORDINAL_CODES)}
        if any(get_adapter(name).encoding == Encoding.ONE_HOT for name in self.settings.models.enabled):
            encodings[Encoding.ONE_HOT] = encode_features(dataset, Encoding.ONE_HOT)
        return encodings

    def _compare_models(
        self,
        result: ComparisonResult,
        encodings: Dict[Encoding, EncodedFeatures],
        partition: Partition,
        pool: WorkerPool,
    ) -> None:
        self._enter(PipelineStage.MODEL_COMPARISON)
        for name in self.settings.models.enabled:
            adapter = self._create_adapter(name, pool)
            outcome = self._run_model(adapter, encodings[adapter.encoding], partition, self._adapter_config(name))
            result.outcomes.append(outcome)

        succeeded = [outcome for outcome in result.outcomes if outcome.succeeded]
        if succeeded:
            result.comparison = build_comparison(
                [outcome.confusion for outcome in succeeded],
                [outcome.label for outcome in succeeded],
                encodings[Encoding.ORDINAL_CODES].label_names,
            )
            logger.info(f"Model comparison (% of true class):\n{render_comparison(result.comparison)}")
        else:
            logger.error("Every model failed; no comparison table")

        self._complete(
            PipelineStage.MODEL_COMPARISON,
            {"succeeded": len(succeeded), "failed": len(result.outcomes) - len(succeeded)},
        )

    def _collect_diagnostics(self, result: ComparisonResult, encoded: EncodedFeatures) -> None:
        self._enter(PipelineStage.DIAGNOSTICS)
        result.feature_names = list(encoded.feature_names)
        ensemble = next(
            (outcome for outcome in result.outcomes if outcome.name == TreeBaggerAdapter.name and outcome.succeeded),
            None,
        )
        if ensemble is None:
            logger.warning("Tree ensemble unavailable; skipping out-of-bag diagnostics")
            self._complete(PipelineStage.DIAGNOSTICS, {"skipped": True})
            return

        result.ensemble_roc = ensemble.roc
        if ensemble.roc is not None:
            logger.info(f"{ensemble.label} ROC AUC: {ensemble.roc.auc:.4f}")

        diagnostics = ensemble.model.diagnostics
        result.oob_error = diagnostics.get("oob_error")
        result.feature_importance = diagnostics.get("feature_importance")
        if result.feature_importance is not None:
            ranking = np.argsort(-result.feature_importance, kind="stable")
            logger.info(
                "Permutation importance: "
                + ", ".join(f"{encoded.feature_names[i]}={result.feature_importance[i]:.3f}" for i in ranking)
            )
        self._complete(PipelineStage.DIAGNOSTICS)

    def _run_feature_selection(
        self,
        result: ComparisonResult,
        encoded: EncodedFeatures,
        partition: Partition,
        pool: WorkerPool,
    ) -> None:
        selection_settings = self.settings.selection
        if not selection_settings.enabled:
            logger.info("Feature selection disabled")
            return

        self._enter(PipelineStage.FEATURE_SELECTION)
        keep_in: List[int] = []
        if result.feature_importance is not None and selection_settings.keep_in_top_k > 0:
            top_k = min(selection_settings.keep_in_top_k, encoded.n_features)
            keep_in = np.argsort(-result.feature_importance, kind="stable")[:top_k].tolist()
            logger.info(f"Forcing in the {top_k} most important features: {[encoded.feature_names[i] for i in keep_in]}")

        criterion_config = TreeBaggerConfig(
            n_trees=selection_settings.n_trees,
            cost=self.settings.cost_matrix(),
            compute_oob_error=False,
            compute_importance=False,
            random_state=self.settings.partition.seed,
        )
        # the criterion adapter runs inside pool tasks, so it gets no pool of its own
        selector = SequentialFeatureSelector(
            TreeBaggerAdapter(),
            config=selection_settings,
            pool=pool,
            adapter_config=criterion_config,
            seed=self.settings.partition.seed,
        )
        X_train, y_train = encoded.rows(partition.train_mask)
        try:
            result.selection = selector.select(
                X_train,
                y_train,
                keep_in=keep_in,
                categorical_mask=encoded.categorical_mask,
                feature_names=encoded.feature_names,
            )
        except (ModelError, InvalidArgument) as exc:
            logger.error(f"Feature selection failed: {exc}")
            self._log_stage_failure(PipelineStage.FEATURE_SELECTION, exc)
            return

        self._complete(
            PipelineStage.FEATURE_SELECTION,
            {"selected": result.selection.selected_features, "stop_reason": result.selection.stop_reason},
        )

    def _run_reduced_ensemble(
        self,
        result: ComparisonResult,
        encoded: EncodedFeatures,
        partition: Partition,
        pool: WorkerPool,
    ) -> None:
        if result.selection is None:
            return

        self._enter(PipelineStage.REDUCED_ENSEMBLE)
        reduced = encoded.subset(result.selection.mask)
        config = self._ensemble_config(self.settings.ensemble.reduced_n_trees, compute_importance=False)
        outcome = self._run_model(TreeBaggerAdapter(pool=pool, label=REDUCED_LABEL), reduced, partition, config)
        result.reduced_outcome = outcome

        rows = [item for item in result.outcomes if item.succeeded] + ([outcome] if outcome.succeeded else [])
        if rows:
            result.reduced_comparison = build_comparison(
                [item.confusion for item in rows],
                [item.label for item in rows],
                encoded.label_names,
            )
            logger.info(f"Comparison with the reduced ensemble:\n{render_comparison(result.reduced_comparison)}")
        if outcome.roc is not None:
            logger.info(f"{REDUCED_LABEL} ROC AUC: {outcome.roc.auc:.4f}")
        self._complete(PipelineStage.REDUCED_ENSEMBLE, {"status": outcome.status.value})

    def _write_reports(self, result: ComparisonResult, dataset: Dataset) -> None:
        report = self.settings.report
        if not (report.save_tables or report.save_figures):
            return
        self.settings.create_directories()
        out = report.output_dir

        if report.save_tables:
            for name, table in (("comparison.csv", result.comparison), ("comparison_reduced.csv", result.reduced_comparison)):
                if table is not None:
                    table.to_csv(out / name)
                    result.artifacts.append(out / name)

        if report.save_figures:
            dpi = report.figure_dpi
            if set(EXPLORATION_COLUMNS) <= set(dataset.feature_columns):
                result.artifacts.append(
                    plot_scatter_by_label(dataset.frame, *EXPLORATION_COLUMNS, dataset.label_column, out / "scatter.png", dpi)
                )
            if result.comparison is not None:
                result.artifacts.append(plot_comparison(result.comparison, out / "comparison.png", dpi))
            if result.reduced_comparison is not None:
                result.artifacts.append(
                    plot_comparison(result.reduced_comparison, out / "comparison_reduced.png", dpi,
                                    title="Confusion matrices with the reduced ensemble")
                )
            curves = {
                outcome.label: outcome.roc
                for outcome in result.outcomes + ([result.reduced_outcome] if result.reduced_outcome else [])
                if outcome.succeeded and outcome.roc is not None and outcome.name == TreeBaggerAdapter.name
            }
            if curves:
                result.artifacts.append(plot_roc(curves, out / "roc.png", dpi))
            if result.oob_error is not None:
                result.artifacts.append(plot_oob_error(result.oob_error, out / "oob_error.png", dpi))
            if result.feature_importance is not None:
                result.artifacts.append(
                    plot_feature_importance(result.feature_importance, result.feature_names, out / "importance.png", dpi)
                )

    # -------------------------------------------------------------------------
    # Models
    # -------------------------------------------------------------------------

    def _create_adapter(self, name: str, pool: WorkerPool) -> ModelAdapter:
        if name == TreeBaggerAdapter.name:
            return TreeBaggerAdapter(pool=pool)
        return get_adapter(name)

    def _ensemble_config(self, n_trees: int, compute_importance: bool) -> TreeBaggerConfig:
        override = self.adapter_configs.get(TreeBaggerAdapter.name, {})
        if isinstance(override, TreeBaggerConfig):
            override = override.model_dump()
        return TreeBaggerConfig(**{
            "n_trees": n_trees,
            "cost": self.settings.cost_matrix(),
            "compute_importance": compute_importance,
            "random_state": self.settings.partition.seed,
            **{key: value for key, value in override.items() if key != "n_trees"},
        })

    def _adapter_config(self, name: str) -> Any:
        if name == TreeBaggerAdapter.name:
            return self._ensemble_config(self.settings.ensemble.n_trees, self.settings.ensemble.compute_importance)
        return self.adapter_configs.get(name)

    def _run_model(
        self,
        adapter: ModelAdapter,
        encoded: EncodedFeatures,
        partition: Partition,
        config: Any = None,
    ) -> ModelOutcome:
        """Train, predict and evaluate one adapter; a ModelError fails only this outcome."""
        X_train, y_train = encoded.rows(partition.train_mask)
        X_test, y_test = encoded.rows(partition.test_mask)
        stage = "train"
        started = time.perf_counter()
        logger.info(f"[{adapter.label}] Training on {X_train.shape[0]} rows x {X_train.shape[1]} features")

        try:
            model = adapter.train(
                X_train,
                y_train,
                config,
                categorical_mask=encoded.categorical_mask,
                feature_names=encoded.feature_names,
            )
            train_seconds = time.perf_counter() - started

            stage = "predict"
            prediction = adapter.predict(model, X_test)
        except ModelError as exc:
            exc.model = exc.model or adapter.name
            exc.stage = exc.stage or stage
            logger.error(f"[{adapter.label}] failed during {exc.stage}: {exc}")
            return ModelOutcome(
                name=adapter.name,
                label=adapter.label,
                status=OutcomeStatus.FAILED,
                stage=exc.stage,
                error=exc,
                train_seconds=time.perf_counter() - started,
            )

        confusion = confusion_matrix_percent(y_test, prediction.labels)
        scores = prediction.positive_scores if prediction.scores is not None else None
        roc = None
        if scores is not None and len(np.unique(y_test)) == 2:
            roc = roc_curve(y_test, scores)

        outcome = ModelOutcome(
            name=adapter.name,
            label=adapter.label,
            status=OutcomeStatus.SUCCEEDED,
            confusion=confusion,
            roc=roc,
            metrics=classification_summary(y_test, prediction.labels, scores),
            train_seconds=train_seconds,
            model=model,
        )
        logger.info(
            f"[{adapter.label}] accuracy {outcome.metrics['accuracy'].value:.4f}, "
            f"recall {outcome.metrics['recall'].value:.4f} ({train_seconds:.2f}s training)"
        )
        return outcome

    # -------------------------------------------------------------------------
    # Execution log
    # -------------------------------------------------------------------------

    def _log_distribution(self, title: str, y: np.ndarray, label_names) -> None:
        table = describe_dataset(y, label_names)
        logger.info(f"{title} class distribution:\n{table.to_string(index=False, float_format=lambda v: f'{v:.2f}')}")

    def _enter(self, stage: PipelineStage) -> None:
        self.current_stage = stage
        self._log_stage_start(stage)

    def _complete(self, stage: PipelineStage, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log_stage_completion(stage, metadata)

    def _fail(self, exc: BaseException) -> None:
        failed_stage = self.current_stage
        self.current_stage = PipelineStage.FAILED
        self._log_stage_failure(failed_stage, exc)
        logger.error(f"Pipeline {self.pipeline_id} failed during {failed_stage.value}: {exc}")

    def _log_stage_start(self, stage: PipelineStage) -> None:
        """Log the start of a pipeline stage."""
        self.execution_log.append({
            "stage": stage.value,
            "status": "started",
            "timestamp": datetime.now().isoformat(),
        })
        logger.info(f"Stage '{stage.value}' started")

    def _log_stage_completion(self, stage: PipelineStage, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Log the completion of a pipeline stage."""
        entry = {
            "stage": stage.value,
            "status": "completed",
            "timestamp": datetime.now().isoformat(),
        }
        if metadata:
            entry["metadata"] = metadata
        self.execution_log.append(entry)
        logger.info(f"Stage '{stage.value}' completed")

    def _log_stage_failure(self, stage: PipelineStage, exc: BaseException) -> None:
        """Log the failure of a pipeline stage."""
        self.execution_log.append({
            "stage": stage.value,
            "status": "failed",
            "timestamp": datetime.now().isoformat(),
            "error": f"{type(exc).__name__}: {exc}",
        })


__all__ = [
    "PipelineStage", "OutcomeStatus", "ModelOutcome", "ComparisonResult",
    "ComparisonPipeline", "REDUCED_LABEL",
]
