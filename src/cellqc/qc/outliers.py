"""
Robust outlier flags for per-cell QC statistics.

Cells with unusually low library size or few detected features are usually
damaged, empty droplets or failed libraries. Rather than fixed cut-offs, each
statistic is compared to its own distribution across the dataset: a cell is
flagged when it lies more than ``nmads`` median absolute deviations from the
median.

    flagged  <=>  |x - median(x)| > nmads * scale * median(|x - median(x)|)

The default scale of 1.4826 makes the MAD a consistent estimator of the
standard deviation for normally distributed data.

Non-finite values:
    Median and MAD are computed over finite values only. -inf / +inf values
    (e.g. log10 of a zero-depth cell) are flagged when they lie on a tail that
    is being tested. NaN values are never flagged.

References:
    - Leys et al. (2013) "Detecting outliers: Do not use standard deviation
      around the mean, use absolute deviation around the median"
"""

from __future__ import annotations

from typing import Literal

import numpy as np

__all__ = ['MAD_NORMAL_SCALE', 'mad', 'is_outlier', 'outlier_thresholds']

MAD_NORMAL_SCALE = 1.4826


def mad(values: np.ndarray, scale: float = MAD_NORMAL_SCALE) -> float:
    """
    Scaled median absolute deviation over finite values.

    Returns NaN when there are no finite values.
    """
    values = np.asarray(values, dtype=float)
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return float("nan")
    median = np.median(finite)
    return float(scale * np.median(np.abs(finite - median)))


def outlier_thresholds(
    values: np.ndarray,
    nmads: float = 5.0,
    scale: float = MAD_NORMAL_SCALE,
) -> tuple[float, float]:
    """
    Lower and upper bounds outside which values are outliers.

    Returns:
        (median - nmads * MAD, median + nmads * MAD)
    """
    values = np.asarray(values, dtype=float)
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return float("nan"), float("nan")
    center = float(np.median(finite))
    spread = nmads * mad(finite, scale=scale)
    return center - spread, center + spread


def is_outlier(
    values: np.ndarray,
    nmads: float = 5.0,
    type: Literal["both", "lower", "higher"] = "both",
    scale: float = MAD_NORMAL_SCALE,
) -> np.ndarray:
    """
    Flag values deviating from the median by more than nmads scaled MADs.

    Args:
        values: 1D statistic across cells (e.g. log10 depth, coverage)
        nmads: MAD multiplier
        type: Which tail(s) to test
        scale: MAD consistency constant (1.4826 for normal data)

    Returns:
        Boolean array, True = outlier

    Raises:
        ValueError: If nmads is not positive or type is unknown

    Examples:
        >>> import numpy as np
        >>> log_depth = np.array([1.0, 0.9, 1.1, 1.0, 2.0])
        >>> is_outlier(log_depth, nmads=5).tolist()
        [False, False, False, False, True]
    """
    if nmads <= 0:
        raise ValueError(f"nmads must be positive, got {nmads}")
    if type not in ("both", "lower", "higher"):
        raise ValueError(f"type must be 'both', 'lower' or 'higher', got '{type}'")

    values = np.asarray(values, dtype=float)
    lower, upper = outlier_thresholds(values, nmads=nmads, scale=scale)
    flagged = np.zeros(values.shape, dtype=bool)
    if np.isnan(lower):
        return flagged

    # Strict comparisons: a value exactly at a bound is not an outlier
    with np.errstate(invalid="ignore"):
        if type in ("both", "lower"):
            flagged |= values < lower
        if type in ("both", "higher"):
            flagged |= values > upper
    return flagged
