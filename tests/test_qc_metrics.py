"""Tests for calculate_qc_metrics()."""

import warnings

import numpy as np
import pandas as pd
import pytest

from cellqc.core.errors import MissingCountsError
from cellqc.core.expression_set import ExpressionSet
from cellqc.qc.metrics import calculate_qc_metrics


class TestHandCheckedValues:
    """Small matrices whose metrics can be worked out by hand."""

    def test_depth_and_coverage(self, tiny_eset):
        qc = calculate_qc_metrics(tiny_eset)
        cells = qc.cell_metadata

        np.testing.assert_array_equal(cells["depth"], [8, 2])
        np.testing.assert_array_equal(cells["coverage"], [2, 1])
        np.testing.assert_array_equal(cells["reads_from_controls"], [0, 0])
        np.testing.assert_array_equal(cells["reads_from_biological"], cells["depth"])
        np.testing.assert_array_equal(cells["pct_reads_from_controls"], [0, 0])
        np.testing.assert_array_equal(cells["pct_reads_from_biological"], [100, 100])
        np.testing.assert_allclose(cells["log10_depth"], np.log10([8, 2]))
        np.testing.assert_allclose(cells["pct_dropout"], [0, 50])

    def test_feature_metrics(self, tiny_eset):
        qc = calculate_qc_metrics(tiny_eset)
        features = qc.feature_metadata

        np.testing.assert_array_equal(features["total_reads"], [5, 5])
        np.testing.assert_allclose(features["pct_total_reads"], [50, 50])
        np.testing.assert_array_equal(features["n_cells_exprs"], [1, 2])
        np.testing.assert_allclose(features["pct_dropout"], [50, 0])
        np.testing.assert_allclose(features["mean_exprs"], tiny_eset.exprs.mean(axis=1))
        assert not features["is_feature_control"].any()

    def test_exprs_rank(self):
        eset = ExpressionSet.create(exprs=np.array([[3.0, 3.0], [1.0, 1.0], [3.0, 3.0], [2.0, 2.0]]))
        qc = calculate_qc_metrics(eset)
        # Ties broken by order of occurrence
        assert qc.feature_metadata["exprs_rank"].tolist() == [3, 1, 4, 2]

    def test_detection_limit_changes_coverage(self, tiny_eset):
        qc = calculate_qc_metrics(tiny_eset.with_lower_detection_limit(3.0))
        np.testing.assert_array_equal(qc.cell_metadata["coverage"], [1, 0])
        np.testing.assert_array_equal(qc.feature_metadata["n_cells_exprs"], [1, 0])

    def test_zero_depth_cell(self):
        eset = ExpressionSet.create(counts=np.array([[4.0, 0.0], [6.0, 0.0]]))
        qc = calculate_qc_metrics(eset)
        cells = qc.cell_metadata
        assert cells["log10_depth"].iloc[1] == -np.inf
        assert cells["pct_reads_from_biological"].iloc[1] == 0
        assert cells["coverage"].iloc[1] == 0

    def test_mad_scenario_end_to_end(self):
        log_depth = np.array([0.9, 0.9, 1.0, 1.0, 1.0, 1.1, 1.1, 1.3, 2.0])
        eset = ExpressionSet.create(counts=(10 ** log_depth)[None, :])
        qc = calculate_qc_metrics(eset, mad_multiplier=5)
        assert qc.cell_metadata["filter_on_depth"].tolist() == [False] * 8 + [True]
        # Coverage is identical for every cell, so nothing is flagged on it
        assert not qc.cell_metadata["filter_on_coverage"].any()


class TestControls:
    """Control feature and control cell handling."""

    def test_single_control_set(self, tiny_eset):
        qc = calculate_qc_metrics(tiny_eset, feature_controls=["GENE_B"])
        cells = qc.cell_metadata
        np.testing.assert_array_equal(cells["reads_from_controls"], [3, 2])
        np.testing.assert_array_equal(cells["reads_from_biological"], [5, 0])
        np.testing.assert_allclose(cells["pct_reads_from_controls"], [37.5, 100])
        assert qc.feature_metadata["is_feature_control"].tolist() == [False, True]
        assert qc.provenance["qc_metrics"]["controls"] == ["controls"]

    def test_named_control_sets(self, synthetic_eset, spike_ids):
        mito = ["GENE_0000", "GENE_0001"]
        qc = calculate_qc_metrics(synthetic_eset, feature_controls={"ERCC": spike_ids, "MT": mito})
        cells = qc.cell_metadata
        counts = synthetic_eset.counts
        spike_rows = synthetic_eset.positions(spike_ids, axis="features")
        mito_rows = synthetic_eset.positions(mito, axis="features")

        np.testing.assert_allclose(cells["reads_from_ERCC"], counts[spike_rows].sum(axis=0))
        np.testing.assert_allclose(cells["reads_from_MT"], counts[mito_rows].sum(axis=0))
        np.testing.assert_allclose(
            cells["reads_from_controls"], cells["reads_from_ERCC"] + cells["reads_from_MT"]
        )
        assert qc.feature_metadata["is_feature_control_ERCC"].sum() == len(spike_ids)
        assert qc.feature_metadata["is_feature_control"].sum() == len(spike_ids) + 2

    def test_no_controls_recorded_as_empty(self, tiny_eset):
        qc = calculate_qc_metrics(tiny_eset)
        record = qc.provenance["qc_metrics"]
        assert record["controls"] == []
        assert record["feature_controls"] == {}
        assert not qc.cell_metadata["filter_on_pct_reads_from_controls"].any()

    def test_control_fraction_outliers_are_damaged_cells(self, synthetic_eset, spike_ids):
        qc = calculate_qc_metrics(synthetic_eset, feature_controls={"ERCC": spike_ids})
        damaged = qc.cell_metadata["is_damaged"].to_numpy()
        flagged = qc.cell_metadata["filter_on_pct_reads_from_controls"].to_numpy()
        assert flagged[damaged].all()

    def test_cell_controls(self, tiny_eset):
        qc = calculate_qc_metrics(tiny_eset, cell_controls=["cell2"])
        assert qc.cell_metadata["is_cell_control"].tolist() == [False, True]
        assert qc.provenance["qc_metrics"]["cell_controls"] == ["cell2"]

    def test_reserved_set_name(self, tiny_eset):
        with pytest.raises(ValueError, match="biological"):
            calculate_qc_metrics(tiny_eset, feature_controls={"biological": ["GENE_A"]})

    def test_unknown_control_id(self, tiny_eset):
        with pytest.raises(KeyError):
            calculate_qc_metrics(tiny_eset, feature_controls=["NOT_A_GENE"])


class TestOutlierFlags:
    """MAD flags on the synthetic data set."""

    def test_damaged_cells_flagged(self, synthetic_eset):
        qc = calculate_qc_metrics(synthetic_eset)
        cells = qc.cell_metadata
        damaged = cells["is_damaged"].to_numpy()

        assert cells["filter_on_depth"].to_numpy()[damaged].all()
        assert cells["filter_on_coverage"].to_numpy()[damaged].all()
        # Healthy cells are (almost) never flagged at 5 MADs
        assert cells["filter_on_depth"].to_numpy()[~damaged].sum() <= 1

    def test_pct_counts_top(self, synthetic_eset):
        qc = calculate_qc_metrics(synthetic_eset, top_sizes=(50, 100, 500))
        cells = qc.cell_metadata
        assert "pct_counts_top_50_features" in cells.columns
        assert "pct_counts_top_100_features" in cells.columns
        # 500 >= n_features: not computed
        assert "pct_counts_top_500_features" not in cells.columns
        assert (cells["pct_counts_top_100_features"] >= cells["pct_counts_top_50_features"]).all()
        assert (cells["pct_counts_top_100_features"] <= 100 + 1e-9).all()

    def test_invalid_multiplier(self, tiny_eset):
        with pytest.raises(ValueError):
            calculate_qc_metrics(tiny_eset, mad_multiplier=0)


class TestContainerBehaviour:
    """Immutability, idempotence, depth source."""

    def test_input_unchanged(self, tiny_eset):
        calculate_qc_metrics(tiny_eset)
        assert list(tiny_eset.cell_metadata.columns) == []
        assert "qc_metrics" not in tiny_eset.provenance

    def test_idempotent(self, synthetic_eset, spike_ids):
        once = calculate_qc_metrics(synthetic_eset, feature_controls={"ERCC": spike_ids})
        twice = calculate_qc_metrics(once, feature_controls={"ERCC": spike_ids})
        pd.testing.assert_frame_equal(once.cell_metadata, twice.cell_metadata)
        pd.testing.assert_frame_equal(once.feature_metadata, twice.feature_metadata)

    def test_rerun_drops_renamed_control_columns(self, synthetic_eset, spike_ids):
        first = calculate_qc_metrics(synthetic_eset, feature_controls={"ERCC": spike_ids})
        second = calculate_qc_metrics(first, feature_controls={"SPIKE": spike_ids})
        assert "reads_from_ERCC" not in second.cell_metadata.columns
        assert "reads_from_SPIKE" in second.cell_metadata.columns
        # Non-QC columns survive
        assert "plate" in second.cell_metadata.columns

    def test_metadata_row_counts_hold(self, synthetic_eset):
        qc = calculate_qc_metrics(synthetic_eset)
        assert len(qc.cell_metadata) == qc.n_cells
        assert len(qc.feature_metadata) == qc.n_features

    def test_exprs_used_as_proxy_without_counts(self):
        eset = ExpressionSet.create(exprs=np.array([[5.0, 0.0], [3.0, 2.0]]))
        with pytest.warns(UserWarning, match="No counts"):
            qc = calculate_qc_metrics(eset)
        np.testing.assert_array_equal(qc.cell_metadata["depth"], [8, 2])
        assert qc.provenance["qc_metrics"]["depth_source"] == "exprs"

    def test_log_scale_exprs_without_counts(self):
        eset = ExpressionSet.create(exprs=np.array([[-1.0, 2.0], [0.5, 1.0]]))
        with pytest.raises(MissingCountsError):
            calculate_qc_metrics(eset)

    def test_proxy_can_be_disabled(self):
        eset = ExpressionSet.create(exprs=np.ones((2, 2)))
        with pytest.raises(MissingCountsError):
            calculate_qc_metrics(eset, use_counts_proxy=False)

    def test_nan_counts_are_ignored(self):
        eset = ExpressionSet.create(counts=np.array([[5.0, np.nan], [3.0, 2.0]]))
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            qc = calculate_qc_metrics(eset)
        np.testing.assert_array_equal(qc.cell_metadata["depth"], [8, 2])
        np.testing.assert_array_equal(qc.cell_metadata["coverage"], [2, 1])

    def test_nan_exprs_proxy_ignores_unknown_entries(self):
        eset = ExpressionSet.create(exprs=np.array([[5.0, np.nan], [3.0, 2.0]]))
        with pytest.warns(UserWarning, match="No counts"):
            qc = calculate_qc_metrics(eset)
        np.testing.assert_array_equal(qc.cell_metadata["depth"], [8, 2])

    def test_infinite_exprs_without_counts(self):
        eset = ExpressionSet.create(exprs=np.array([[np.inf, 1.0], [3.0, 2.0]]))
        with pytest.raises(MissingCountsError, match="infinite"):
            calculate_qc_metrics(eset)


class TestColumnClashes:
    """User metadata that shares a name with a QC column."""

    @pytest.fixture
    def annotated_eset(self):
        cell_metadata = pd.DataFrame(
            {"coverage": ["plate-seq", "plate-seq"]}, index=["cell1", "cell2"]
        )
        return ExpressionSet.create(
            counts=np.array([[5.0, 0.0], [3.0, 2.0]]), cell_metadata=cell_metadata
        )

    def test_user_column_not_overwritten(self, annotated_eset):
        with pytest.raises(ValueError, match="coverage"):
            calculate_qc_metrics(annotated_eset)
        assert annotated_eset.cell_metadata["coverage"].tolist() == ["plate-seq", "plate-seq"]

    def test_user_feature_column_not_overwritten(self, tiny_eset):
        eset = tiny_eset.add_feature_columns({"total_reads": ["n/a", "n/a"]})
        with pytest.raises(ValueError, match="total_reads"):
            calculate_qc_metrics(eset)

    def test_replace_overwrites(self, annotated_eset):
        qc = calculate_qc_metrics(annotated_eset, replace=True)
        np.testing.assert_array_equal(qc.cell_metadata["coverage"], [2, 1])

    def test_own_columns_are_not_clashes(self, annotated_eset):
        once = calculate_qc_metrics(annotated_eset, replace=True)
        twice = calculate_qc_metrics(once)
        pd.testing.assert_frame_equal(once.cell_metadata, twice.cell_metadata)
