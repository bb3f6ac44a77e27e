"""Tests for distance matrix computation and storage."""

import numpy as np
import pandas as pd
import pytest
from scipy.spatial.distance import pdist, squareform

from cellqc.core.distances import (
    DistanceMatrix,
    compute_distance_matrix,
    set_cell_distances,
    set_feature_distances,
)
from cellqc.core.errors import MissingCountsError, StaleDistanceError
from cellqc.core.expression_set import ExpressionSet


class TestComputeDistanceMatrix:

    def test_matches_scipy(self):
        rng = np.random.RandomState(0)
        data = rng.rand(12, 5)
        expected = squareform(pdist(data, metric="canberra"))
        result = compute_distance_matrix(data, metric="canberra", chunk_size=5)
        np.testing.assert_allclose(result, expected)

    def test_symmetric_zero_diagonal(self):
        data = np.random.RandomState(1).rand(7, 3)
        result = compute_distance_matrix(data, metric="correlation", chunk_size=2)
        np.testing.assert_array_equal(result, result.T)
        np.testing.assert_array_equal(np.diag(result), 0)

    def test_callable_metric(self):
        data = np.array([[0.0, 0.0], [3.0, 4.0]])

        def manhattan(u, v):
            return float(np.abs(u - v).sum())

        np.testing.assert_allclose(compute_distance_matrix(data, manhattan), [[0, 7], [7, 0]])
        np.testing.assert_allclose(
            compute_distance_matrix(data, metric="euclidean", distance_fn=manhattan),
            [[0, 7], [7, 0]],
        )

    def test_asymmetric_callable_rejected(self):
        data = np.array([[0.0], [1.0], [3.0]])
        with pytest.raises(ValueError, match="symmetric"):
            compute_distance_matrix(data, lambda u, v: max(u[0] - v[0], 0.0))

    def test_negative_callable_rejected(self):
        data = np.array([[0.0], [1.0]])
        with pytest.raises(ValueError, match="negative"):
            compute_distance_matrix(data, lambda u, v: -1.0)

    def test_nonzero_self_distance_callable_rejected(self):
        data = np.array([[0.0], [1.0]])
        with pytest.raises(ValueError, match="self-distances"):
            compute_distance_matrix(data, lambda u, v: 1.0)

    def test_nan_warns(self):
        with pytest.warns(UserWarning, match="NaN"):
            compute_distance_matrix(np.array([[np.nan, 1.0], [0.0, 1.0]]))

    def test_bad_chunk_size(self):
        with pytest.raises(ValueError):
            compute_distance_matrix(np.ones((2, 2)), chunk_size=0)


class TestDistanceMatrix:

    def test_rejects_non_square(self):
        with pytest.raises(ValueError, match="square"):
            DistanceMatrix(np.zeros((2, 3)), pd.Index(["a", "b"]), "euclidean")

    def test_rejects_asymmetric(self):
        with pytest.raises(ValueError, match="symmetric"):
            DistanceMatrix(np.array([[0.0, 1.0], [2.0, 0.0]]), pd.Index(["a", "b"]), "x")

    def test_rejects_nonzero_diagonal(self):
        with pytest.raises(ValueError, match="diagonal"):
            DistanceMatrix(np.array([[1.0, 0.0], [0.0, 0.0]]), pd.Index(["a", "b"]), "x")

    def test_nan_diagonal_allowed(self):
        values = np.array([[np.nan, np.nan], [np.nan, 0.0]])
        assert len(DistanceMatrix(values, pd.Index(["a", "b"]), "x")) == 2

    def test_to_frame_labels(self):
        dm = DistanceMatrix(np.array([[0.0, 1.0], [1.0, 0.0]]), pd.Index(["a", "b"]), "x")
        assert dm.to_frame().loc["a", "b"] == 1.0
        assert len(dm) == 2


class TestAttachedDistances:

    def test_cell_distances_keyed_by_cell_ids(self, tiny_eset):
        eset = set_cell_distances(tiny_eset, metric="euclidean")
        dm = eset.cell_distances
        assert list(dm.ids) == ["cell1", "cell2"]
        expected = np.linalg.norm(tiny_eset.exprs[:, 0] - tiny_eset.exprs[:, 1])
        np.testing.assert_allclose(dm.values[0, 1], expected)
        assert tiny_eset.cell_distances is None

    def test_feature_distances_on_counts(self, tiny_eset):
        eset = set_feature_distances(tiny_eset, metric="cityblock", use_counts=True)
        np.testing.assert_allclose(eset.feature_distances.values, [[0, 4], [4, 0]])
        assert eset.feature_distances.metric == "cityblock"

    def test_callable_name_recorded(self, tiny_eset):
        def my_metric(u, v):
            return float(np.abs(u - v).max())

        eset = set_cell_distances(tiny_eset, distance_fn=my_metric)
        assert eset.cell_distances.metric == "my_metric"

    def test_stale_after_cell_subset(self, synthetic_eset):
        eset = set_cell_distances(synthetic_eset)
        subset = eset.select_cells([0, 1, 2])
        with pytest.raises(StaleDistanceError):
            subset.cell_distances

    def test_feature_subset_keeps_cell_distances(self, synthetic_eset):
        eset = set_cell_distances(synthetic_eset)
        subset = eset.select_features(list(range(50)))
        assert subset.cell_distances is eset.cell_distances

    def test_use_counts_without_counts(self):
        eset = ExpressionSet.create(exprs=np.ones((3, 2)))
        with pytest.raises(MissingCountsError):
            set_cell_distances(eset, use_counts=True)
