"""Tests for the confusion matrix, ROC and summary metrics."""

import numpy as np
import pytest
from sklearn.metrics import roc_auc_score

from campaign_analyst.exceptions import InvalidArgument
from campaign_analyst.ml.evaluation import classification_summary, confusion_matrix_percent, roc_curve


class TestConfusionMatrix:
    """Row-normalised percentages, negative class first."""

    def test_known_values(self):
        matrix = confusion_matrix_percent(np.array([0, 0, 0, 1, 1]), np.array([0, 1, 0, 1, 0]))
        np.testing.assert_allclose(matrix, [[200 / 3, 100 / 3], [50.0, 50.0]])

    @pytest.mark.parametrize("seed", range(5))
    def test_rows_sum_to_100(self, seed):
        rng = np.random.default_rng(seed)
        y_true = rng.integers(0, 2, 200)
        y_pred = rng.integers(0, 2, 200)
        np.testing.assert_allclose(confusion_matrix_percent(y_true, y_pred).sum(axis=1), 100.0)

    def test_absent_class_row_is_nan(self):
        matrix = confusion_matrix_percent(np.array([0, 0, 0]), np.array([0, 1, 1]))
        np.testing.assert_allclose(matrix[0], [100 / 3, 200 / 3])
        assert np.all(np.isnan(matrix[1]))

    def test_length_mismatch(self):
        with pytest.raises(InvalidArgument):
            confusion_matrix_percent(np.array([0, 1]), np.array([0]))

    def test_labels_outside_binary_codes(self):
        with pytest.raises(InvalidArgument):
            confusion_matrix_percent(np.array([0, 2]), np.array([0, 1]))


class TestRocCurve:
    """Threshold sweep and trapezoidal AUC."""

    def test_perfect_ranking(self):
        curve = roc_curve(np.array([0, 0, 1, 1]), np.array([0.1, 0.2, 0.8, 0.9]))
        assert curve.auc == pytest.approx(1.0)

    def test_reversed_ranking(self):
        curve = roc_curve(np.array([0, 0, 1, 1]), np.array([0.9, 0.8, 0.2, 0.1]))
        assert curve.auc == pytest.approx(0.0)

    @pytest.mark.parametrize("seed", range(5))
    def test_monotone_and_bounded(self, seed):
        """fpr and tpr never decrease as the threshold falls; AUC in [0, 1]."""
        rng = np.random.default_rng(seed)
        y = rng.integers(0, 2, 150)
        y[:2] = [0, 1]
        scores = rng.random(150) + 0.3 * y
        curve = roc_curve(y, scores)

        assert len(curve.fpr) == len(curve.tpr) == len(curve.thresholds)
        assert np.all(np.diff(curve.thresholds) < 0)
        assert np.all(np.diff(curve.fpr) >= 0)
        assert np.all(np.diff(curve.tpr) >= 0)
        assert 0.0 <= curve.auc <= 1.0
        assert curve.auc == pytest.approx(roc_auc_score(y, scores))

    def test_curve_spans_unit_square(self):
        curve = roc_curve(np.array([0, 1, 0, 1, 1]), np.array([0.3, 0.3, 0.1, 0.7, 0.5]))
        assert (curve.fpr[0], curve.tpr[0]) == (0.0, 0.0)
        assert (curve.fpr[-1], curve.tpr[-1]) == (1.0, 1.0)

    def test_ties_keep_every_distinct_score(self):
        curve = roc_curve(np.array([0, 1, 0, 1]), np.array([0.5, 0.5, 0.2, 0.9]))
        # +inf start plus the three distinct scores
        assert len(curve) == 4

    def test_single_class(self):
        with pytest.raises(InvalidArgument, match="both classes"):
            roc_curve(np.array([1, 1, 1]), np.array([0.1, 0.5, 0.9]))

    def test_length_mismatch(self):
        with pytest.raises(InvalidArgument):
            roc_curve(np.array([0, 1]), np.array([0.5]))

    def test_non_finite_scores(self):
        with pytest.raises(InvalidArgument):
            roc_curve(np.array([0, 1]), np.array([0.5, np.nan]))


class TestClassificationSummary:

    def test_metrics(self):
        metrics = classification_summary(np.array([0, 0, 1, 1]), np.array([0, 1, 1, 1]), np.array([0.1, 0.6, 0.7, 0.9]))
        assert metrics["accuracy"].value == pytest.approx(0.75)
        assert metrics["precision"].value == pytest.approx(2 / 3)
        assert metrics["recall"].value == pytest.approx(1.0)
        assert metrics["f1_score"].value == pytest.approx(0.8)
        assert metrics["roc_auc"].value == pytest.approx(1.0)

    def test_no_scores_no_auc(self):
        metrics = classification_summary(np.array([0, 1]), np.array([0, 1]))
        assert "roc_auc" not in metrics

    def test_no_positive_predictions(self):
        metrics = classification_summary(np.array([0, 1]), np.array([0, 0]))
        assert metrics["precision"].value == 0.0
