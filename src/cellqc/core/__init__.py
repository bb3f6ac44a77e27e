"""
Core data structures for single-cell QC.

1. ExpressionSet: features x cells matrices with metadata, detection limit,
   provenance and attached distance matrices
2. Detection: classify values as expressed above a lower detection limit
3. DistanceMatrix: all-pairs cell or feature distances keyed by identifiers
4. Transform: Abstract base class for immutable container transformations

Design Philosophy:
    - Immutability: All operations return new instances
    - Validation at construction: a container that exists is consistent
    - Composability: Small operations chain into QC pipelines

Examples:
    >>> from cellqc.core import ExpressionSet
    >>> eset = ExpressionSet.create(counts=counts_df)
    >>> eset.is_exprs(use_counts=True).sum(axis=0)   # coverage per cell
"""

from cellqc.core.errors import (
    CellQCError,
    ValidationError,
    DimensionMismatch,
    DuplicateIdentifier,
    IdentifierMismatch,
    MissingCountsError,
    StaleDistanceError,
)
from cellqc.core.detection import is_expressed, count_expressed
from cellqc.core.distances import (
    DistanceMatrix,
    compute_distance_matrix,
    set_cell_distances,
    set_feature_distances,
)
from cellqc.core.transform import Transform
from cellqc.core.expression_set import ExpressionSet, AxisSelector

__all__ = [
    'ExpressionSet',
    'AxisSelector',
    'Transform',
    'is_expressed',
    'count_expressed',
    'DistanceMatrix',
    'compute_distance_matrix',
    'set_cell_distances',
    'set_feature_distances',
    'CellQCError',
    'ValidationError',
    'DimensionMismatch',
    'DuplicateIdentifier',
    'IdentifierMismatch',
    'MissingCountsError',
    'StaleDistanceError',
]
