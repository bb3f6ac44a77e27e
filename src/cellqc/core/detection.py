"""
Detection-threshold classification of expression values.

A feature is "expressed" in a cell when its value is strictly greater than the
lower detection limit. Values exactly at the limit are NOT expressed, and
unknown (NaN) values are never expressed.

Examples:
    >>> import numpy as np
    >>> from cellqc.core.detection import is_expressed
    >>> is_expressed(np.array([[0, 100], [50, 50]]), threshold=100)
    array([[False, False],
           [False, False]])
"""

from __future__ import annotations

import numpy as np
import pandas as pd

__all__ = ['is_expressed', 'count_expressed']


def is_expressed(
    matrix: np.ndarray | pd.DataFrame,
    threshold: float = 0.0,
) -> np.ndarray | pd.DataFrame:
    """
    Classify each value as expressed (``value > threshold``).

    Pure function: the input is never modified. The threshold is taken from the
    call, so callers can reclassify with a different limit than the one stored
    on an ExpressionSet without touching the container.

    Args:
        matrix: Numeric matrix (features x cells). DataFrames keep their labels.
        threshold: Lower detection limit. Comparison is strict.

    Returns:
        Boolean matrix of the same shape (DataFrame if a DataFrame was given).

    Raises:
        ValueError: If threshold is NaN
    """
    if np.isnan(threshold):
        raise ValueError("threshold must be a number, got NaN")

    if isinstance(matrix, pd.DataFrame):
        values = matrix.to_numpy(dtype=float)
    else:
        values = np.asarray(matrix, dtype=float)

    # NaN > t evaluates False, which is the "unknown is not expressed" rule
    with np.errstate(invalid='ignore'):
        expressed = values > threshold

    if isinstance(matrix, pd.DataFrame):
        return pd.DataFrame(expressed, index=matrix.index, columns=matrix.columns)
    return expressed


def count_expressed(
    matrix: np.ndarray,
    threshold: float = 0.0,
    axis: int = 0,
) -> np.ndarray:
    """
    Count expressed values along an axis.

    ``axis=0`` gives per-cell coverage (features detected in each column);
    ``axis=1`` gives per-feature counts of cells expressing the feature.
    """
    return np.asarray(is_expressed(np.asarray(matrix), threshold)).sum(axis=axis)
