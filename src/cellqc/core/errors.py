"""
Exception hierarchy for expression-set validation and QC computation.

All errors are raised synchronously at the point of validation (construction,
replacement, metric computation, distance retrieval). None are retried: the
caller must supply corrected inputs. Validation failures never leave a
partially built container behind.

Validation errors also subclass ValueError so that callers catching the
generic exception (as the CLI does) keep working.
"""

from __future__ import annotations

__all__ = [
    'CellQCError',
    'ValidationError',
    'DimensionMismatch',
    'DuplicateIdentifier',
    'IdentifierMismatch',
    'MissingCountsError',
    'StaleDistanceError',
]


class CellQCError(Exception):
    """Base class for all cellqc errors."""
    pass


class ValidationError(CellQCError, ValueError):
    """Raised when an ExpressionSet invariant is violated."""
    pass


class DimensionMismatch(ValidationError):
    """Matrix and metadata row/column counts disagree."""
    pass


class DuplicateIdentifier(ValidationError):
    """Feature or cell identifiers are not unique within their axis."""
    pass


class IdentifierMismatch(ValidationError):
    """Metadata row labels do not exactly match the matrix axis labels."""
    pass


class MissingCountsError(CellQCError, ValueError):
    """Depth-dependent computation requested without counts or a usable proxy."""
    pass


class StaleDistanceError(CellQCError, LookupError):
    """Distance matrix identifiers no longer match the container's axis."""
    pass
