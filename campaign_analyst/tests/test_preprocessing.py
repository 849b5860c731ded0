"""Tests for the data loader and the feature encoder."""

import numpy as np
import pytest

from campaign_analyst.config import BANK_COLUMNS
from campaign_analyst.exceptions import FormatError, InvalidArgument
from campaign_analyst.utils.preprocessing import (
    ColumnKind,
    Encoding,
    FeatureEncoder,
    decode_one_hot,
    describe_dataset,
    encode_features,
    load_bank_marketing,
    load_dataset,
)

NUMERIC_BANK_COLUMNS = ["age", "balance", "day", "duration", "campaign", "pdays", "previous"]


def _write(tmp_path, text, name="data.csv"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


class TestDataLoader:
    """Delimited text -> Dataset."""

    def test_loads_bank_schema(self, bank_dataset, bank_frame):
        """The synthetic bank file loads with all rows and the 16 predictors."""
        assert bank_dataset.n_rows == len(bank_frame)
        assert list(bank_dataset.frame.columns) == BANK_COLUMNS
        assert bank_dataset.label_column == "y"
        assert len(bank_dataset.feature_columns) == 16

    def test_column_kinds_decided_at_load(self, bank_dataset):
        """Numeric bank columns are numeric, everything else categorical."""
        for name in bank_dataset.feature_columns:
            expected = ColumnKind.NUMERIC if name in NUMERIC_BANK_COLUMNS else ColumnKind.CATEGORICAL
            assert bank_dataset.kinds[name] == expected
        assert bank_dataset.categorical_mask.sum() == 9

    def test_quotes_are_stripped(self, bank_dataset, bank_frame):
        """Quoted categorical tokens lose their enclosing quotes."""
        assert set(bank_dataset.frame["job"]) == set(bank_frame["job"])
        assert not any(value.startswith('"') for value in bank_dataset.frame["marital"])

    def test_numeric_values_are_floats(self, bank_dataset, bank_frame):
        np.testing.assert_array_equal(bank_dataset.frame["duration"].to_numpy(), bank_frame["duration"].to_numpy())
        assert bank_dataset.frame["duration"].dtype == np.float64

    def test_delimiter_can_be_given(self, tmp_path):
        path = _write(tmp_path, "a|b|label\n1|x|yes\n2|y|no\n")
        dataset = load_dataset(path, delimiter="|")
        assert dataset.feature_columns == ["a", "b"]
        assert dataset.kinds["a"] == ColumnKind.NUMERIC

    def test_empty_categorical_becomes_unknown(self, tmp_path):
        """An empty categorical field is its own category, never dropped."""
        path = _write(tmp_path, "a,b,label\n1,x,yes\n2,,no\n3,y,yes\n")
        dataset = load_dataset(path, delimiter=",")
        assert dataset.frame["b"].tolist() == ["x", "unknown", "y"]

    def test_missing_numeric_value(self, tmp_path):
        path = _write(tmp_path, "a,b,label\n1,x,yes\n,y,no\n")
        with pytest.raises(FormatError, match="missing"):
            load_dataset(path, delimiter=",")

    def test_short_row(self, tmp_path):
        path = _write(tmp_path, "a,b,label\n1,x,yes\n2,y\n")
        with pytest.raises(FormatError, match="fewer fields"):
            load_dataset(path, delimiter=",")

    def test_long_row(self, tmp_path):
        path = _write(tmp_path, "a,b,label\n1,x,yes\n2,y,no,extra\n")
        with pytest.raises(FormatError):
            load_dataset(path, delimiter=",")

    def test_header_mismatch(self, bank_csv):
        with pytest.raises(FormatError, match="expected schema"):
            load_dataset(bank_csv, expected_columns=BANK_COLUMNS[:-1] + ["target"])

    def test_wrong_column_count(self, tmp_path):
        path = _write(tmp_path, "a;b;y\n1;x;yes\n")
        with pytest.raises(FormatError, match="Expected 17 columns"):
            load_bank_marketing(path, delimiter=";")

    def test_non_binary_label(self, tmp_path):
        path = _write(tmp_path, "a,label\n1,yes\n2,maybe\n")
        with pytest.raises(FormatError, match="binary"):
            load_dataset(path, delimiter=",")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FormatError, match="not found"):
            load_dataset(tmp_path / "absent.csv")

    def test_label_codes_are_canonical(self, bank_dataset):
        """'no' -> 0 and 'yes' -> 1."""
        codes = bank_dataset.label_codes()
        np.testing.assert_array_equal(codes == 1, bank_dataset.labels == "yes")


class TestFeatureEncoder:
    """Dataset -> EncodedFeatures."""

    def test_ordinal_codes_are_lexicographic(self, bank_dataset, ordinal_features):
        column = bank_dataset.feature_columns.index("job")
        levels = sorted(set(bank_dataset.frame["job"]))
        expected = [levels.index(value) for value in bank_dataset.frame["job"]]
        np.testing.assert_array_equal(ordinal_features.X[:, column], expected)
        assert ordinal_features.categories["job"] == levels

    def test_ordinal_shape(self, bank_dataset, ordinal_features):
        assert ordinal_features.X.shape == (bank_dataset.n_rows, 16)
        assert ordinal_features.feature_names == bank_dataset.feature_columns
        np.testing.assert_array_equal(ordinal_features.categorical_mask, bank_dataset.categorical_mask)

    def test_one_hot_width_and_names(self, bank_dataset, one_hot_features):
        """k indicator columns per categorical column, no baseline dropped."""
        n_levels = sum(bank_dataset.frame[name].nunique() for name in bank_dataset.feature_columns
                       if bank_dataset.kinds[name] == ColumnKind.CATEGORICAL)
        assert one_hot_features.n_features == len(NUMERIC_BANK_COLUMNS) + n_levels
        assert "job_admin." in one_hot_features.feature_names
        assert "marital_single" in one_hot_features.feature_names

    def test_one_hot_rows_have_one_indicator_per_column(self, one_hot_features):
        block = one_hot_features.X[:, one_hot_features.indicator_columns("month")]
        np.testing.assert_array_equal(block.sum(axis=1), 1.0)

    def test_numeric_columns_pass_through(self, bank_dataset, one_hot_features):
        column = one_hot_features.feature_names.index("balance")
        np.testing.assert_array_equal(one_hot_features.X[:, column], bank_dataset.frame["balance"].to_numpy())

    @pytest.mark.parametrize("column", ["job", "education", "contact", "poutcome"])
    def test_one_hot_round_trip(self, bank_dataset, one_hot_features, column):
        """Decoding the indicators recovers every value, 'unknown' included."""
        decoded = decode_one_hot(one_hot_features, column)
        np.testing.assert_array_equal(decoded, bank_dataset.frame[column].to_numpy())

    def test_round_trip_with_empty_tokens(self, tmp_path):
        path = _write(tmp_path, "a,b,label\n1,x,yes\n2,,no\n3,y,yes\n4,,no\n")
        dataset = load_dataset(path, delimiter=",")
        encoded = encode_features(dataset, Encoding.ONE_HOT)
        assert decode_one_hot(encoded, "b").tolist() == ["x", "unknown", "y", "unknown"]

    def test_decode_requires_one_hot(self, ordinal_features):
        with pytest.raises(InvalidArgument):
            decode_one_hot(ordinal_features, "job")

    def test_decode_rejects_numeric_column(self, one_hot_features):
        with pytest.raises(InvalidArgument):
            decode_one_hot(one_hot_features, "age")

    def test_encoding_is_reproducible(self, bank_dataset):
        first = FeatureEncoder().encode(bank_dataset, "ordinal-codes")
        second = FeatureEncoder().encode(bank_dataset, "ordinal-codes")
        np.testing.assert_array_equal(first.X, second.X)

    def test_subset_keeps_selected_columns(self, ordinal_features):
        mask = np.zeros(ordinal_features.n_features, dtype=bool)
        mask[[0, 1, 11]] = True
        subset = ordinal_features.subset(mask)
        assert subset.feature_names == ["age", "job", "duration"]
        np.testing.assert_array_equal(subset.categorical_mask, [False, True, False])
        assert set(subset.categories) == {"job"}

    def test_empty_subset(self, ordinal_features):
        with pytest.raises(InvalidArgument, match="empty"):
            ordinal_features.subset(np.zeros(ordinal_features.n_features, dtype=bool))


class TestDescribeDataset:
    """Class distribution tables."""

    def test_counts_and_percentages(self):
        table = describe_dataset(np.array([0, 0, 0, 1]))
        assert table["Value"].tolist() == ["no", "yes"]
        assert table["Count"].tolist() == [3, 1]
        assert table["Percent"].tolist() == pytest.approx([75.0, 25.0])
