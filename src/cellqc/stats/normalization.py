"""
Library-size normalization for single-cell count matrices.

Implements the library-size approaches used before QC plots and distance
computation:
- CPM (counts per million): scale each cell to a total of one million
- log2-CPM with a prior count: log2(CPM + prior_count), the default analytic
  matrix derived when an ExpressionSet is built from counts alone
- Size factors: library sizes centred to unit mean, for count-scale
  normalized values

The underlying assumption is that differences in total counts between cells
are technical (capture efficiency, sequencing depth) rather than biological.

Unknown counts (NaN) are ignored when computing library sizes and stay NaN in
the normalized output. Cells with zero library size normalize to zero rather
than NaN.

References:
    - Robinson & Oshlack (2010) Genome Biology 11:R25 (library-size scaling)
    - Law et al. (2014) Genome Biology 15:R29 (log-CPM with prior count)
"""

from __future__ import annotations

import logging
from typing import Literal, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from cellqc.core.errors import MissingCountsError
from cellqc.core.transform import Transform

if TYPE_CHECKING:
    from cellqc.core.expression_set import ExpressionSet

logger = logging.getLogger(__name__)

__all__ = [
    'library_sizes',
    'cpm',
    'log_cpm',
    'size_factors',
    'normalize',
    'LogCPMNormalizer',
]


def library_sizes(counts: NDArray[np.float64]) -> NDArray[np.float64]:
    """Total counts per cell (column sums, NaN ignored)."""
    counts = np.asarray(counts, dtype=float)
    return np.nansum(counts, axis=0)


def cpm(counts: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Counts per million.

    Args:
        counts: Raw counts (features x cells)

    Returns:
        CPM matrix of the same shape. Zero-library cells are all zero.
    """
    counts = np.asarray(counts, dtype=float)
    lib = library_sizes(counts)

    # Avoid division by zero: empty cells stay at zero
    safe_lib = np.where(lib > 0, lib, 1.0)
    return counts / safe_lib[None, :] * 1e6


def log_cpm(counts: NDArray[np.float64], prior_count: float = 1.0) -> NDArray[np.float64]:
    """
    log2(CPM + prior_count).

    Args:
        counts: Raw counts (features x cells)
        prior_count: Added before the log so zero counts map to log2(prior_count)

    Raises:
        ValueError: If prior_count is not positive or counts are negative
    """
    if prior_count <= 0:
        raise ValueError(f"prior_count must be positive, got {prior_count}")
    counts = np.asarray(counts, dtype=float)
    if np.nanmin(counts, initial=0.0) < 0:
        raise ValueError("counts must be non-negative for log-CPM")
    return np.log2(cpm(counts) + prior_count)


def size_factors(counts: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Library-size factors centred to unit mean.

    Zero-library cells get a size factor of 1 so they divide cleanly.
    """
    lib = library_sizes(counts)
    positive = lib > 0
    if not positive.any():
        return np.ones_like(lib)
    factors = np.ones_like(lib)
    factors[positive] = lib[positive] / lib[positive].mean()
    return factors


def normalize(
    eset: ExpressionSet,
    method: Literal["log_cpm", "size_factor"] = "log_cpm",
    prior_count: float = 1.0,
) -> ExpressionSet:
    """
    Recompute exprs from counts.

    Methods:
        log_cpm: exprs = log2(CPM + prior_count)
        size_factor: exprs = log2(counts / size_factor + prior_count)

    The size factors are stored in cell_metadata as ``size_factor`` when that
    method is used. The method and parameters are recorded in provenance.

    Raises:
        MissingCountsError: If the container has no counts
        ValueError: If method is unknown
    """
    if eset.counts is None:
        raise MissingCountsError("Normalization requires counts; this ExpressionSet has none")

    if method == "log_cpm":
        exprs = log_cpm(eset.counts, prior_count=prior_count)
        result = eset.replace_exprs(exprs)
    elif method == "size_factor":
        if prior_count <= 0:
            raise ValueError(f"prior_count must be positive, got {prior_count}")
        factors = size_factors(eset.counts)
        exprs = np.log2(eset.counts / factors[None, :] + prior_count)
        result = eset.replace_exprs(exprs).add_cell_columns({"size_factor": factors}, replace=True)
    else:
        raise ValueError(f"method must be 'log_cpm' or 'size_factor', got '{method}'")

    logger.info(f"Normalized {eset.n_cells} cells with method={method}, prior_count={prior_count}")
    return result.with_provenance("exprs", {"method": method, "prior_count": float(prior_count)})


class LogCPMNormalizer(Transform):
    """
    Transform form of normalize() for pipeline composition.

    Examples:
        >>> normalizer = LogCPMNormalizer(prior_count=1.0)
        >>> normalized = normalizer.apply(eset)
    """

    def __init__(self, method: Literal["log_cpm", "size_factor"] = "log_cpm", prior_count: float = 1.0):
        super().__init__(
            name="LogCPMNormalizer",
            params={"method": method, "prior_count": prior_count},
        )
        self.method = method
        self.prior_count = prior_count

    def apply(self, eset: ExpressionSet) -> ExpressionSet:
        errors = self.validate(eset)
        if errors:
            raise ValueError("Validation failed:\n" + "\n".join(f"  - {e}" for e in errors))
        return normalize(eset, method=self.method, prior_count=self.prior_count)

    def validate(self, eset: ExpressionSet) -> list[str]:
        errors = super().validate(eset)
        if eset.counts is None:
            errors.append("ExpressionSet has no counts to normalize")
        elif np.nanmin(eset.counts, initial=0.0) < 0:
            errors.append("Counts contain negative values")
        return errors
