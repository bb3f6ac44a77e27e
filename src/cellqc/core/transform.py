"""
Base transformation framework for immutable ExpressionSet operations.

Single-cell preprocessing is a chain of container -> container steps:
1. Quality control (QC metrics, outlier flags)
2. Filtering (drop flagged cells, undetected features)
3. Normalization (library-size scaling, log transform)

Each step returns a new ExpressionSet; the input is never modified. Parameters
are kept on the instance so a pipeline can be logged and reproduced.

Examples:
    >>> from cellqc.core.transform import Transform
    >>>
    >>> class DropEmptyCells(Transform):
    ...     def __init__(self):
    ...         super().__init__(name="DropEmptyCells", params={})
    ...
    ...     def apply(self, eset):
    ...         return eset.select_cells(eset.counts.sum(axis=0) > 0)
    >>>
    >>> kept = DropEmptyCells().apply(eset)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING
from datetime import datetime

if TYPE_CHECKING:
    from cellqc.core.expression_set import ExpressionSet

__all__ = ['Transform']


class Transform(ABC):
    """
    Abstract base class for ExpressionSet transformations.

    Attributes:
        name: Human-readable transformation name (e.g., "CellFilter")
        params: Parameters used for this transformation (JSON-serializable)
        timestamp: When this transform instance was created
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, eset: ExpressionSet) -> ExpressionSet:
        """
        Execute transformation and return a new ExpressionSet.

        Must never modify the input.

        Raises:
            ValueError: If transformation cannot be applied (check validate() first)
        """
        pass

    def validate(self, eset: ExpressionSet) -> list[str]:
        """
        Check preconditions before applying transformation.

        Subclasses should override and call super().validate() first.

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []

        if eset.exprs.size == 0:
            errors.append("Cannot process empty ExpressionSet")

        return errors

    def __repr__(self) -> str:
        """String like "CellFilter(min_depth=1000, min_coverage=None)"."""
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
