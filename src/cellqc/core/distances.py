"""
Pairwise distance matrices for cells or features.

Exploratory single-cell analysis (clustering, MDS, nearest-neighbour checks)
starts from an all-pairs distance matrix between cells, or between features.
This module computes those matrices and attaches them to an ExpressionSet,
keyed by the axis identifiers they were computed for.

Staleness:
    A DistanceMatrix records the identifiers it was computed for. After the
    container is subset or reordered on that axis, reading the distances
    raises StaleDistanceError instead of silently returning a matrix whose
    rows no longer line up with the cells/features.

Metrics:
    Any metric name understood by scipy.spatial.distance.cdist
    ("euclidean", "canberra", "cityblock", "cosine", "correlation", ...), or a
    callable ``f(u, v) -> float``. Callables must be symmetric and
    non-negative; this is checked on the computed matrix.

Examples:
    >>> from cellqc.core.distances import set_cell_distances
    >>> eset = set_cell_distances(eset, metric="canberra")
    >>> eset.cell_distances.to_frame().shape
    (n_cells, n_cells)
"""

from __future__ import annotations

import logging
import warnings
from typing import Callable, Optional, Union, TYPE_CHECKING

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist
from tqdm import tqdm

from cellqc.core.errors import MissingCountsError

if TYPE_CHECKING:
    from cellqc.core.expression_set import ExpressionSet

logger = logging.getLogger(__name__)

__all__ = [
    'DistanceMatrix',
    'DistanceFn',
    'compute_distance_matrix',
    'set_cell_distances',
    'set_feature_distances',
]

DistanceFn = Callable[[np.ndarray, np.ndarray], float]

# Tolerance for the symmetry check on caller-supplied metrics
_SYMMETRY_ATOL = 1e-8


class DistanceMatrix:
    """
    Symmetric, non-negative all-pairs distance matrix with a zero diagonal,
    keyed by identifiers.

    Attributes:
        values: Square distance matrix (n x n)
        ids: Identifiers for rows/columns, in the order they were computed
        metric: Metric name (or callable __name__) used
    """

    def __init__(self, values: np.ndarray, ids: pd.Index, metric: str):
        if not isinstance(values, np.ndarray):
            raise TypeError(f"values must be np.ndarray, got {type(values)}")
        if not isinstance(ids, pd.Index):
            raise TypeError(f"ids must be pd.Index, got {type(ids)}")
        if values.ndim != 2 or values.shape[0] != values.shape[1]:
            raise ValueError(f"distance matrix must be square, got shape {values.shape}")
        if values.shape[0] != len(ids):
            raise ValueError(
                f"ids length ({len(ids)}) must match distance matrix size ({values.shape[0]})"
            )

        finite = values[np.isfinite(values)]
        if finite.size and finite.min() < 0:
            raise ValueError("distance matrix contains negative values")
        if not np.allclose(values, values.T, atol=_SYMMETRY_ATOL, equal_nan=True):
            raise ValueError("distance matrix is not symmetric")
        diagonal = np.diag(values)
        if np.any(np.abs(diagonal[np.isfinite(diagonal)]) > _SYMMETRY_ATOL):
            raise ValueError("distance matrix diagonal must be zero")

        self._values = values
        self._ids = ids
        self._metric = metric

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def ids(self) -> pd.Index:
        return self._ids

    @property
    def metric(self) -> str:
        return self._metric

    def to_frame(self) -> pd.DataFrame:
        """Labelled DataFrame view."""
        return pd.DataFrame(self._values, index=self._ids, columns=self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"DistanceMatrix({len(self)} x {len(self)}, metric='{self.metric}')"


def compute_distance_matrix(
    data: np.ndarray,
    metric: Union[str, DistanceFn] = "euclidean",
    distance_fn: Optional[DistanceFn] = None,
    chunk_size: int = 500,
    verbose: bool = False,
) -> np.ndarray:
    """
    Compute an all-pairs distance matrix between the ROWS of ``data``.

    Rows are processed in chunks against the full matrix to bound peak
    memory at chunk_size x n_rows.

    Args:
        data: Observations x variables (rows are the items being compared)
        metric: scipy metric name or callable f(u, v) -> float
        distance_fn: Callable overriding metric
        chunk_size: Rows per chunk
        verbose: Show a tqdm progress bar

    Returns:
        Distance matrix (n_rows x n_rows, float64)

    Raises:
        ValueError: If a callable metric returns negative, asymmetric or
            non-zero self-distances,
            or chunk_size is not positive
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if distance_fn is not None:
        metric = distance_fn

    data = np.asarray(data, dtype=float)
    n_rows = data.shape[0]
    distances = np.zeros((n_rows, n_rows), dtype=float)

    if np.isnan(data).any():
        warnings.warn(
            "Input contains NaN values; affected distances will be NaN",
            UserWarning,
        )

    n_chunks = (n_rows + chunk_size - 1) // chunk_size
    chunk_iter = range(n_chunks)
    if verbose:
        chunk_iter = tqdm(chunk_iter, desc="Computing distances", unit="chunk")

    for chunk_idx in chunk_iter:
        start_idx = chunk_idx * chunk_size
        end_idx = min(start_idx + chunk_size, n_rows)
        distances[start_idx:end_idx, :] = cdist(data[start_idx:end_idx, :], data, metric=metric)

    if callable(metric):
        finite = distances[np.isfinite(distances)]
        if finite.size and finite.min() < 0:
            raise ValueError("distance function returned negative values")
        if not np.allclose(distances, distances.T, atol=_SYMMETRY_ATOL, equal_nan=True):
            raise ValueError("distance function is not symmetric")
        self_distances = np.diag(distances)
        if np.any(np.abs(self_distances[np.isfinite(self_distances)]) > _SYMMETRY_ATOL):
            raise ValueError("distance function returned non-zero self-distances")
    else:
        # Remove floating-point asymmetry from the chunked computation
        distances = (distances + distances.T) / 2
        np.fill_diagonal(distances, 0.0)

    return distances


def _metric_name(metric: Union[str, DistanceFn]) -> str:
    if callable(metric):
        return getattr(metric, "__name__", "custom")
    return metric


def set_cell_distances(
    eset: ExpressionSet,
    metric: Union[str, DistanceFn] = "euclidean",
    distance_fn: Optional[DistanceFn] = None,
    use_counts: bool = False,
    chunk_size: int = 500,
    verbose: bool = False,
) -> ExpressionSet:
    """
    Compute cell x cell distances and attach them to a new ExpressionSet.

    Args:
        eset: Source container (unchanged)
        metric: scipy metric name or callable f(u, v) -> float
        distance_fn: Callable overriding metric
        use_counts: Compute on counts instead of exprs

    Raises:
        MissingCountsError: If use_counts=True and counts are absent
    """
    matrix = _select_matrix(eset, use_counts)
    if distance_fn is not None:
        metric = distance_fn
    logger.info(f"Computing {eset.n_cells}x{eset.n_cells} cell distances (metric={_metric_name(metric)})")
    values = compute_distance_matrix(matrix.T, metric=metric, chunk_size=chunk_size, verbose=verbose)
    dm = DistanceMatrix(values, eset.cell_ids, _metric_name(metric))
    return eset.with_distances("cells", dm)


def set_feature_distances(
    eset: ExpressionSet,
    metric: Union[str, DistanceFn] = "euclidean",
    distance_fn: Optional[DistanceFn] = None,
    use_counts: bool = False,
    chunk_size: int = 500,
    verbose: bool = False,
) -> ExpressionSet:
    """Compute feature x feature distances (see set_cell_distances)."""
    matrix = _select_matrix(eset, use_counts)
    if distance_fn is not None:
        metric = distance_fn
    logger.info(
        f"Computing {eset.n_features}x{eset.n_features} feature distances "
        f"(metric={_metric_name(metric)})"
    )
    values = compute_distance_matrix(matrix, metric=metric, chunk_size=chunk_size, verbose=verbose)
    dm = DistanceMatrix(values, eset.feature_ids, _metric_name(metric))
    return eset.with_distances("features", dm)


def _select_matrix(eset: ExpressionSet, use_counts: bool) -> np.ndarray:
    if not use_counts:
        return eset.exprs
    if eset.counts is None:
        raise MissingCountsError("use_counts=True but this ExpressionSet has no counts")
    return eset.counts
