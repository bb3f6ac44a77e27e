"""Tests for CSV loaders and the bundle writer/reader."""

import json

import numpy as np
import pandas as pd
import pytest

from cellqc.core.distances import set_cell_distances
from cellqc.core.errors import IdentifierMismatch, StaleDistanceError
from cellqc.io.loaders import load_counts_csv, load_expression_set, load_metadata_csv
from cellqc.io.writers import MANIFEST_NAME, read_bundle, write_bundle
from cellqc.qc.metrics import calculate_qc_metrics

from conftest import write_counts_csv


@pytest.fixture
def counts_csv(tmp_path):
    path = tmp_path / "counts.csv"
    path.write_text(
        ",cell_1,cell_2,cell_3\n"
        "00123,5,0,1\n"
        "GENE_B,3,2,0\n"
        "ERCC-00002,10,12,9\n"
    )
    return path


class TestLoadCounts:

    def test_ids_read_as_strings(self, counts_csv):
        df = load_counts_csv(counts_csv)
        assert list(df.index) == ["00123", "GENE_B", "ERCC-00002"]
        assert list(df.columns) == ["cell_1", "cell_2", "cell_3"]
        assert df.to_numpy().dtype == float
        assert df.loc["GENE_B", "cell_2"] == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_counts_csv(tmp_path / "nope.csv")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        with pytest.raises(ValueError, match="empty"):
            load_counts_csv(path)

    def test_non_numeric_values(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text(",c1,c2\ng1,1,abc\ng2,2,3\n")
        with pytest.raises(ValueError, match="non-numeric"):
            load_counts_csv(path)

    def test_duplicate_features_keep_first(self, tmp_path):
        path = tmp_path / "dup.csv"
        path.write_text(",c1\ng1,1\ng1,7\ng2,2\n")
        with pytest.warns(UserWarning, match="duplicate feature"):
            df = load_counts_csv(path)
        assert list(df.index) == ["g1", "g2"]
        assert df.loc["g1", "c1"] == 1

    def test_nan_and_negative_warn(self, tmp_path):
        path = tmp_path / "odd.csv"
        path.write_text(",c1,c2\ng1,,1\ng2,-2,3\n")
        with pytest.warns(UserWarning) as record:
            load_counts_csv(path)
        messages = " ".join(str(w.message) for w in record)
        assert "NaN" in messages
        assert "negative" in messages


class TestLoadExpressionSet:

    def test_counts_only(self, counts_csv):
        eset = load_expression_set(counts_csv, lower_detection_limit=1.0)
        assert eset.shape == (3, 3)
        assert eset.has_counts
        assert eset.lower_detection_limit == 1.0

    def test_metadata_aligned_to_matrix(self, counts_csv, tmp_path):
        cells = tmp_path / "cells.csv"
        cells.write_text("cell_id,plate\ncell_3,P2\ncell_1,P1\ncell_2,P1\n")
        eset = load_expression_set(counts_csv, cell_metadata_path=cells)
        assert eset.cell_metadata["plate"].tolist() == ["P1", "P1", "P2"]
        assert list(eset.cell_metadata.index) == ["cell_1", "cell_2", "cell_3"]

    def test_metadata_missing_rows(self, counts_csv, tmp_path):
        cells = tmp_path / "cells.csv"
        cells.write_text("cell_id,plate\ncell_1,P1\n")
        with pytest.raises(IdentifierMismatch, match="missing 2"):
            load_expression_set(counts_csv, cell_metadata_path=cells)

    def test_metadata_extra_rows_dropped(self, counts_csv, tmp_path):
        features = tmp_path / "features.csv"
        features.write_text(
            "feature_id,symbol\n00123,A\nGENE_B,B\nERCC-00002,E\nGENE_X,X\n"
        )
        with pytest.warns(UserWarning, match="not present"):
            eset = load_expression_set(counts_csv, feature_metadata_path=features)
        assert eset.feature_metadata["symbol"].tolist() == ["A", "B", "E"]

    def test_round_trip_from_written_counts(self, synthetic_eset, tmp_path):
        path = write_counts_csv(synthetic_eset, tmp_path / "synthetic.csv")
        eset = load_expression_set(path)
        np.testing.assert_array_equal(eset.counts, synthetic_eset.counts)
        assert eset.feature_ids.equals(synthetic_eset.feature_ids)


class TestMetadataCsv:

    def test_load_metadata(self, tmp_path):
        path = tmp_path / "meta.csv"
        path.write_text("id,batch,depth\na,b1,10\nb,b2,20\n")
        df = load_metadata_csv(path)
        assert df.loc["b", "batch"] == "b2"
        assert df["depth"].tolist() == [10, 20]


class TestBundle:

    def test_round_trip_after_qc(self, synthetic_eset, spike_ids, tmp_path):
        qc = calculate_qc_metrics(synthetic_eset, feature_controls={"ERCC": spike_ids})
        manifest_path = write_bundle(qc, tmp_path / "bundle")
        assert manifest_path.name == MANIFEST_NAME

        restored = read_bundle(tmp_path / "bundle")
        assert restored.shape == qc.shape
        assert restored.feature_ids.equals(qc.feature_ids)
        assert restored.cell_ids.equals(qc.cell_ids)
        np.testing.assert_allclose(restored.exprs, qc.exprs)
        np.testing.assert_array_equal(restored.counts, qc.counts)
        pd.testing.assert_frame_equal(
            restored.cell_metadata, qc.cell_metadata, check_dtype=False
        )
        pd.testing.assert_frame_equal(
            restored.feature_metadata, qc.feature_metadata, check_dtype=False
        )
        assert restored.provenance["qc_metrics"]["controls"] == ["ERCC"]

    def test_manifest_contents(self, tiny_eset, tmp_path):
        write_bundle(tiny_eset, tmp_path)
        manifest = json.loads((tmp_path / MANIFEST_NAME).read_text())
        assert manifest["n_features"] == 2
        assert manifest["n_cells"] == 2
        assert manifest["has_counts"] is True
        assert manifest["files"]["counts"] == "counts.csv"
        assert manifest["distances"] == {}

    def test_exprs_only_bundle(self, tmp_path):
        from cellqc.core.expression_set import ExpressionSet

        eset = ExpressionSet.create(exprs=np.array([[0.0, 100.0], [50.0, 50.0]]))
        write_bundle(eset, tmp_path)
        assert not (tmp_path / "counts.csv").exists()
        restored = read_bundle(tmp_path)
        assert not restored.has_counts
        np.testing.assert_array_equal(restored.exprs, eset.exprs)

    def test_distances_round_trip(self, tiny_eset, tmp_path):
        eset = set_cell_distances(tiny_eset, metric="canberra")
        write_bundle(eset, tmp_path)
        restored = read_bundle(tmp_path)
        assert restored.cell_distances.metric == "canberra"
        np.testing.assert_allclose(restored.cell_distances.values, eset.cell_distances.values)
        assert restored.feature_distances is None

    def test_stale_distances_not_written(self, synthetic_eset, tmp_path):
        eset = set_cell_distances(synthetic_eset).select_cells([0, 1])
        with pytest.raises(StaleDistanceError):
            write_bundle(eset, tmp_path)

    def test_not_a_bundle(self, tmp_path):
        with pytest.raises(FileNotFoundError, match=MANIFEST_NAME):
            read_bundle(tmp_path)

    def test_unsupported_version(self, tiny_eset, tmp_path):
        write_bundle(tiny_eset, tmp_path)
        manifest_path = tmp_path / MANIFEST_NAME
        manifest = json.loads(manifest_path.read_text())
        manifest["format_version"] = 99
        manifest_path.write_text(json.dumps(manifest))
        with pytest.raises(ValueError, match="format_version"):
            read_bundle(tmp_path)

    def test_write_rejects_other_types(self, tmp_path):
        with pytest.raises(TypeError):
            write_bundle(pd.DataFrame(), tmp_path)
