"""End-to-end tests for the comparison pipeline."""

from unittest.mock import patch

import numpy as np
import pytest

from campaign_analyst.config import DataConfig, ModelsConfig, SelectionConfig
from campaign_analyst.exceptions import FormatError, InvalidArgument, InvalidConfig
from campaign_analyst.ml.auto_pipeline import (
    REDUCED_LABEL,
    ComparisonPipeline,
    OutcomeStatus,
    PipelineStage,
)
from campaign_analyst.utils.parallel import WorkerPool


@pytest.fixture
def comparison_result(fast_settings, bank_dataset):
    return ComparisonPipeline(fast_settings).run(bank_dataset)


@pytest.mark.integration
@pytest.mark.slow
class TestComparisonRun:
    """Full run on the synthetic bank data."""

    def test_every_adapter_reports(self, comparison_result, fast_settings):
        assert [outcome.name for outcome in comparison_result.outcomes] == fast_settings.models.enabled
        assert comparison_result.outcome("tree_bagger").succeeded

    def test_partition_is_shared(self, comparison_result, bank_dataset):
        partition = comparison_result.partition
        assert partition.n_test == 120
        assert partition.n_train + partition.n_test == bank_dataset.n_rows

    def test_comparison_table_covers_succeeded_models(self, comparison_result):
        succeeded = [outcome for outcome in comparison_result.outcomes if outcome.succeeded]
        table = comparison_result.comparison
        assert table.shape == (2, 2 * len(succeeded))
        assert list(dict.fromkeys(table.columns.get_level_values("model"))) == [o.label for o in succeeded]

    def test_confusion_rows_sum_to_100(self, comparison_result):
        for outcome in comparison_result.outcomes:
            if outcome.succeeded:
                np.testing.assert_allclose(outcome.confusion.sum(axis=1), 100.0)

    def test_ensemble_diagnostics(self, comparison_result, fast_settings):
        assert comparison_result.oob_error.shape == (fast_settings.ensemble.n_trees,)
        assert comparison_result.feature_importance.shape == (16,)
        assert len(comparison_result.feature_names) == 16
        assert 0.0 <= comparison_result.ensemble_roc.auc <= 1.0

    def test_selection_keeps_the_most_important_features(self, comparison_result, fast_settings):
        selection = comparison_result.selection
        top = np.argsort(-comparison_result.feature_importance, kind="stable")[:fast_settings.selection.keep_in_top_k]
        assert selection.mask[top].all()
        assert selection.history[0].added is None
        assert len(selection.history) <= 1 + fast_settings.selection.max_steps

    def test_reduced_ensemble_added_to_second_table(self, comparison_result):
        reduced = comparison_result.reduced_outcome
        assert reduced.label == REDUCED_LABEL
        assert reduced.succeeded
        assert reduced.model.n_features == int(comparison_result.selection.mask.sum())
        labels = list(dict.fromkeys(comparison_result.reduced_comparison.columns.get_level_values("model")))
        assert labels[-1] == REDUCED_LABEL

    def test_artifacts_written(self, comparison_result, fast_settings):
        names = {path.name for path in comparison_result.artifacts}
        assert names == {
            "comparison.csv", "comparison_reduced.csv", "comparison.png", "comparison_reduced.png",
            "roc.png", "oob_error.png", "importance.png", "scatter.png",
        }
        assert all(path.exists() for path in comparison_result.artifacts)
        assert all(path.parent == fast_settings.report.output_dir for path in comparison_result.artifacts)

    def test_execution_log(self, comparison_result):
        completed = [entry["stage"] for entry in comparison_result.execution_log if entry["status"] == "completed"]
        assert completed == [
            "description", "encoding", "partitioning", "model_comparison", "diagnostics",
            "feature_selection", "reduced_ensemble", "reporting",
        ]
        assert comparison_result.finished_at >= comparison_result.started_at


@pytest.mark.integration
class TestModelFailures:
    """A failing adapter fails only its own outcome."""

    def test_bad_hyperparameter_fails_one_model(self, fast_settings, bank_dataset):
        fast_settings.models = ModelsConfig(enabled=["knn", "decision_tree", "tree_bagger"])
        fast_settings.selection = SelectionConfig(enabled=False)
        pipeline = ComparisonPipeline(fast_settings, adapter_configs={"knn": {"metric": "bogus"}})
        result = pipeline.run(bank_dataset)

        knn = result.outcome("knn")
        assert knn.status == OutcomeStatus.FAILED
        assert knn.stage == "configure"
        assert isinstance(knn.error, InvalidConfig)
        assert result.failed_models == [knn]
        assert result.outcome("decision_tree").succeeded
        assert result.comparison.shape == (2, 4)
        assert pipeline.current_stage == PipelineStage.COMPLETED

    def test_selection_disabled(self, fast_settings, bank_dataset):
        fast_settings.models = ModelsConfig(enabled=["decision_tree", "tree_bagger"])
        fast_settings.selection = SelectionConfig(enabled=False)
        result = ComparisonPipeline(fast_settings).run(bank_dataset)

        assert result.selection is None
        assert result.reduced_outcome is None
        assert result.reduced_comparison is None
        assert "comparison_reduced.csv" not in {path.name for path in result.artifacts}

    def test_selection_folds_exceed_minority_class(self, fast_settings, small_bank_dataset):
        """More folds than minority-class rows fails the selection stage, not the run."""
        fast_settings.models = ModelsConfig(enabled=["decision_tree", "tree_bagger"])
        fast_settings.selection = SelectionConfig(keep_in_top_k=3, cv_folds=10, max_steps=2, n_trees=5)
        pipeline = ComparisonPipeline(fast_settings)
        result = pipeline.run(small_bank_dataset)

        assert pipeline.current_stage == PipelineStage.COMPLETED
        assert result.outcome("decision_tree").succeeded
        assert result.comparison is not None
        assert result.selection is None
        assert result.reduced_outcome is None
        failures = [entry for entry in pipeline.execution_log if entry["status"] == "failed"]
        assert [entry["stage"] for entry in failures] == ["feature_selection"]
        assert failures[0]["error"].startswith("InvalidArgument")
        assert "reduced_ensemble" not in {entry["stage"] for entry in pipeline.execution_log}

    def test_without_ensemble_no_diagnostics(self, fast_settings, bank_dataset):
        fast_settings.models = ModelsConfig(enabled=["decision_tree"])
        fast_settings.selection = SelectionConfig(enabled=False)
        result = ComparisonPipeline(fast_settings).run(bank_dataset)

        assert result.oob_error is None
        assert result.feature_importance is None
        assert {path.name for path in result.artifacts} == {"comparison.csv", "comparison.png", "scatter.png"}


@pytest.mark.integration
class TestFatalErrors:
    """Load and partition errors abort the run."""

    def test_malformed_file(self, fast_settings, tmp_path):
        path = tmp_path / "ragged.csv"
        path.write_text("a,b,y\n1,x,yes\n2,no\n", encoding="utf-8")
        fast_settings.data = DataConfig(path=path, delimiter=",", expected_columns=None)
        pipeline = ComparisonPipeline(fast_settings)

        with pytest.raises(FormatError):
            pipeline.run()
        assert pipeline.current_stage == PipelineStage.FAILED
        failure = pipeline.execution_log[-1]
        assert failure["stage"] == "loading"
        assert failure["status"] == "failed"
        assert failure["error"].startswith("FormatError")

    def test_missing_input_path(self, fast_settings):
        with pytest.raises(InvalidArgument, match="No input file"):
            ComparisonPipeline(fast_settings).run()

    def test_loads_configured_file(self, fast_settings, bank_csv):
        fast_settings.data = DataConfig(path=bank_csv)
        fast_settings.models = ModelsConfig(enabled=["decision_tree"])
        fast_settings.selection = SelectionConfig(enabled=False)
        pipeline = ComparisonPipeline(fast_settings)
        result = pipeline.run()
        assert pipeline.execution_log[0]["stage"] == "loading"
        assert result.outcome("decision_tree").succeeded

    def test_pool_closed_when_run_fails(self, fast_settings, bank_dataset):
        fast_settings.models = ModelsConfig(enabled=["decision_tree"])
        unpatched_close = WorkerPool.close

        with patch.object(WorkerPool, "close", autospec=True, side_effect=unpatched_close) as close, \
                patch.object(ComparisonPipeline, "_collect_diagnostics", side_effect=RuntimeError("boom")):
            pipeline = ComparisonPipeline(fast_settings)
            with pytest.raises(RuntimeError, match="boom"):
                pipeline.run(bank_dataset)

        close.assert_called_once()
        assert not close.call_args.args[0].is_open
        assert pipeline.execution_log[-1]["stage"] == "model_comparison"
