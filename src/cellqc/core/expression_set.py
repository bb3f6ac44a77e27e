"""
Core data structure for single-cell expression data.

ExpressionSet unifies an expression matrix (features x cells) with feature and
cell metadata tables, an optional raw-counts matrix, a lower detection limit,
and optional pairwise distance matrices.

Biological Context:
    Single-cell RNA-seq data is a features x cells matrix:
    - Rows = features (genes, transcripts, spike-ins)
    - Columns = cells
    - Values = read/UMI counts, or derived log-scale expression

    QC metrics, filtering and normalization all need the matrix and both
    metadata tables to stay in lockstep. A cell dropped from the matrix must
    also disappear from cell_metadata, in the same order.

Engineering Design:
    - Immutable: every operation returns a new instance
    - NumPy arrays for matrices, Pandas for metadata and identifiers
    - Validated eagerly: construction and every replace_* re-check all invariants
    - Typed errors: DimensionMismatch, DuplicateIdentifier, IdentifierMismatch

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from cellqc.core.expression_set import ExpressionSet
    >>>
    >>> counts = pd.DataFrame(
    ...     [[5, 0], [3, 2]],
    ...     index=["GeneA", "GeneB"],
    ...     columns=["cell_1", "cell_2"],
    ... )
    >>> eset = ExpressionSet.create(counts=counts)
    >>> eset.shape
    (2, 2)
    >>>
    >>> # Subset cells; metadata follows
    >>> first = eset.select_cells(np.array([True, False]))
    >>> list(first.cell_metadata.index)
    ['cell_1']
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Sequence, Union
import numpy as np
import pandas as pd

from cellqc.core.detection import is_expressed
from cellqc.core.distances import DistanceMatrix
from cellqc.core.errors import (
    DimensionMismatch,
    DuplicateIdentifier,
    IdentifierMismatch,
    MissingCountsError,
    StaleDistanceError,
)
from cellqc.stats.normalization import log_cpm

__all__ = ['ExpressionSet', 'AxisSelector']

# Boolean mask, integer positions, identifier labels, or a callable taking the
# axis metadata table and returning one of those.
AxisSelector = Union[
    np.ndarray,
    pd.Series,
    Sequence[Any],
    Callable[[pd.DataFrame], Any],
]

_UNSET = object()


def _check_unique(ids: pd.Index, axis_name: str) -> None:
    if ids.has_duplicates:
        dupes = ids[ids.duplicated()].unique().tolist()
        raise DuplicateIdentifier(
            f"{axis_name} identifiers must be unique; duplicated: {dupes[:5]}"
            + (" ..." if len(dupes) > 5 else "")
        )


def _check_metadata_index(metadata: pd.DataFrame, ids: pd.Index, name: str) -> None:
    if len(metadata) != len(ids):
        raise DimensionMismatch(
            f"{name} has {len(metadata)} rows but the matrix has {len(ids)} "
            f"entries on that axis"
        )
    if metadata.index.has_duplicates:
        raise DuplicateIdentifier(f"{name} index contains duplicated identifiers")
    if not metadata.index.equals(ids):
        if set(metadata.index) == set(ids):
            detail = "same identifiers in a different order"
        else:
            missing = ids.difference(metadata.index)[:5].tolist()
            detail = f"identifiers not found in metadata: {missing}"
        raise IdentifierMismatch(f"{name} index must match matrix labels exactly ({detail})")


def _labels_from_matrix(matrix: Any) -> tuple[Optional[pd.Index], Optional[pd.Index]]:
    if isinstance(matrix, pd.DataFrame):
        return pd.Index(matrix.index).astype(str), pd.Index(matrix.columns).astype(str)
    return None, None


def _as_2d_array(matrix: Any, name: str) -> np.ndarray:
    if isinstance(matrix, pd.DataFrame):
        values = matrix.to_numpy(dtype=float)
    else:
        try:
            values = np.asarray(matrix, dtype=float)
        except (TypeError, ValueError) as e:
            raise TypeError(f"{name} must be numeric, got {type(matrix)}") from e
    if values.ndim != 2:
        raise DimensionMismatch(f"{name} must be 2D (features x cells), got shape {values.shape}")
    return values


def _str_index(metadata: pd.DataFrame) -> pd.DataFrame:
    result = metadata.copy()
    result.index = pd.Index(result.index).astype(str)
    return result


class ExpressionSet:
    """
    Immutable container for expression matrix + feature/cell metadata.

    Attributes:
        exprs: Analytic expression matrix (features x cells), e.g. log2-CPM
        counts: Raw counts (features x cells) or None; unknown entries are NaN
        feature_ids: Row identifiers (genes, spike-ins)
        cell_ids: Column identifiers (cell barcodes)
        feature_metadata: One row per feature, index == feature_ids
        cell_metadata: One row per cell, index == cell_ids
        lower_detection_limit: Expression values strictly above this are "expressed"
        provenance: Records of the operations that produced this instance

    Shape Invariants:
        - exprs.shape == (len(feature_ids), len(cell_ids))
        - counts.shape == exprs.shape (when counts are present)
        - feature_metadata.index equals feature_ids
        - cell_metadata.index equals cell_ids
        - identifiers are unique on each axis
    """

    def __init__(
        self,
        exprs: np.ndarray,
        feature_ids: pd.Index,
        cell_ids: pd.Index,
        feature_metadata: Optional[pd.DataFrame] = None,
        cell_metadata: Optional[pd.DataFrame] = None,
        counts: Optional[np.ndarray] = None,
        lower_detection_limit: float = 0.0,
        provenance: Optional[dict[str, Any]] = None,
        cell_distances: Optional[DistanceMatrix] = None,
        feature_distances: Optional[DistanceMatrix] = None,
    ):
        """
        Initialize ExpressionSet with validation.

        Most callers want ExpressionSet.create(), which accepts DataFrames,
        derives identifiers and computes exprs from counts.

        Raises:
            TypeError: If argument types are wrong
            DimensionMismatch: If matrix/metadata shapes disagree
            DuplicateIdentifier: If identifiers repeat within an axis
            IdentifierMismatch: If metadata index differs from axis identifiers
        """
        # Type validation
        if not isinstance(exprs, np.ndarray):
            raise TypeError(f"exprs must be np.ndarray, got {type(exprs)}")
        if counts is not None and not isinstance(counts, np.ndarray):
            raise TypeError(f"counts must be np.ndarray or None, got {type(counts)}")
        if not isinstance(feature_ids, pd.Index):
            raise TypeError(f"feature_ids must be pd.Index, got {type(feature_ids)}")
        if not isinstance(cell_ids, pd.Index):
            raise TypeError(f"cell_ids must be pd.Index, got {type(cell_ids)}")
        if feature_metadata is None:
            feature_metadata = pd.DataFrame(index=feature_ids)
        if cell_metadata is None:
            cell_metadata = pd.DataFrame(index=cell_ids)
        if not isinstance(feature_metadata, pd.DataFrame):
            raise TypeError(f"feature_metadata must be pd.DataFrame, got {type(feature_metadata)}")
        if not isinstance(cell_metadata, pd.DataFrame):
            raise TypeError(f"cell_metadata must be pd.DataFrame, got {type(cell_metadata)}")
        for name, dm in (("cell_distances", cell_distances), ("feature_distances", feature_distances)):
            if dm is not None and not isinstance(dm, DistanceMatrix):
                raise TypeError(f"{name} must be DistanceMatrix or None, got {type(dm)}")

        # Shape validation
        if exprs.ndim != 2:
            raise DimensionMismatch(f"exprs must be 2D, got shape {exprs.shape}")

        n_features, n_cells = exprs.shape

        if len(feature_ids) != n_features:
            raise DimensionMismatch(
                f"feature_ids length ({len(feature_ids)}) must match exprs rows ({n_features})"
            )
        if len(cell_ids) != n_cells:
            raise DimensionMismatch(
                f"cell_ids length ({len(cell_ids)}) must match exprs columns ({n_cells})"
            )
        if counts is not None and counts.shape != exprs.shape:
            raise DimensionMismatch(
                f"counts shape {counts.shape} must match exprs shape {exprs.shape}"
            )

        # Identifier validation
        _check_unique(feature_ids, "feature")
        _check_unique(cell_ids, "cell")
        _check_metadata_index(feature_metadata, feature_ids, "feature_metadata")
        _check_metadata_index(cell_metadata, cell_ids, "cell_metadata")

        lower_detection_limit = float(lower_detection_limit)
        if not np.isfinite(lower_detection_limit):
            raise ValueError(f"lower_detection_limit must be finite, got {lower_detection_limit}")

        # Store as private attributes (immutability by convention)
        self._exprs = exprs
        self._counts = counts
        self._feature_ids = feature_ids
        self._cell_ids = cell_ids
        self._feature_metadata = feature_metadata
        self._cell_metadata = cell_metadata
        self._lower_detection_limit = lower_detection_limit
        self._provenance = dict(provenance or {})
        self._cell_distances = cell_distances
        self._feature_distances = feature_distances

    @classmethod
    def create(
        cls,
        counts: Any = None,
        exprs: Any = None,
        feature_metadata: Optional[pd.DataFrame] = None,
        cell_metadata: Optional[pd.DataFrame] = None,
        lower_detection_limit: float = 0.0,
        prior_count: float = 1.0,
    ) -> ExpressionSet:
        """
        Build a validated ExpressionSet from counts and/or an expression matrix.

        Matrices may be DataFrames (identifiers taken from index/columns) or
        2D array-likes (identifiers taken from the metadata indexes, or
        generated as ``feature_1...`` / ``cell_1...``). Identifiers are
        converted to strings.

        If only counts are given, exprs is derived as log2(CPM + prior_count).

        Args:
            counts: Raw counts (features x cells); NaN marks unknown entries
            exprs: Expression matrix (features x cells)
            feature_metadata: Feature annotations, one row per feature
            cell_metadata: Cell annotations, one row per cell
            lower_detection_limit: Detection threshold (strict >)
            prior_count: Prior added to CPM before log2 when deriving exprs

        Returns:
            Validated ExpressionSet

        Raises:
            ValueError: If neither counts nor exprs is given
            DimensionMismatch, DuplicateIdentifier, IdentifierMismatch

        Examples:
            >>> eset = ExpressionSet.create(counts=np.array([[5, 0], [3, 2]]))
            >>> list(eset.cell_ids)
            ['cell_1', 'cell_2']
        """
        if counts is None and exprs is None:
            raise ValueError("At least one of counts or exprs must be provided")

        counts_rows, counts_cols = _labels_from_matrix(counts)
        exprs_rows, exprs_cols = _labels_from_matrix(exprs)

        # Labelled matrices must agree with each other
        if counts_rows is not None and exprs_rows is not None:
            if not counts_rows.equals(exprs_rows) or not counts_cols.equals(exprs_cols):
                raise IdentifierMismatch("counts and exprs DataFrames carry different labels")

        counts_values = _as_2d_array(counts, "counts") if counts is not None else None
        exprs_values = _as_2d_array(exprs, "exprs") if exprs is not None else None
        shape = (counts_values if counts_values is not None else exprs_values).shape

        feature_ids = counts_rows if counts_rows is not None else exprs_rows
        cell_ids = counts_cols if counts_cols is not None else exprs_cols

        if feature_metadata is not None:
            feature_metadata = _str_index(feature_metadata)
            if feature_ids is None:
                feature_ids = feature_metadata.index
        if cell_metadata is not None:
            cell_metadata = _str_index(cell_metadata)
            if cell_ids is None:
                cell_ids = cell_metadata.index

        if feature_ids is None:
            feature_ids = pd.Index([f"feature_{i + 1}" for i in range(shape[0])])
        if cell_ids is None:
            cell_ids = pd.Index([f"cell_{j + 1}" for j in range(shape[1])])

        provenance: dict[str, Any] = {}
        if exprs_values is None:
            exprs_values = log_cpm(counts_values, prior_count=prior_count)
            provenance["exprs"] = {"method": "log_cpm", "prior_count": float(prior_count)}

        return cls(
            exprs=exprs_values,
            feature_ids=feature_ids,
            cell_ids=cell_ids,
            feature_metadata=feature_metadata,
            cell_metadata=cell_metadata,
            counts=counts_values,
            lower_detection_limit=lower_detection_limit,
            provenance=provenance,
        )

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def exprs(self) -> np.ndarray:
        """Expression matrix (features x cells)."""
        return self._exprs

    @property
    def counts(self) -> Optional[np.ndarray]:
        """Raw counts (features x cells), or None if absent."""
        return self._counts

    @property
    def has_counts(self) -> bool:
        return self._counts is not None

    @property
    def feature_ids(self) -> pd.Index:
        """Row identifiers."""
        return self._feature_ids

    @property
    def cell_ids(self) -> pd.Index:
        """Column identifiers."""
        return self._cell_ids

    @property
    def feature_metadata(self) -> pd.DataFrame:
        """Feature annotations (index == feature_ids)."""
        return self._feature_metadata

    @property
    def cell_metadata(self) -> pd.DataFrame:
        """Cell annotations (index == cell_ids)."""
        return self._cell_metadata

    @property
    def lower_detection_limit(self) -> float:
        return self._lower_detection_limit

    @property
    def provenance(self) -> dict[str, Any]:
        """Copy of the provenance records."""
        return dict(self._provenance)

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_features, n_cells)."""
        return self._exprs.shape

    @property
    def n_features(self) -> int:
        return self._exprs.shape[0]

    @property
    def n_cells(self) -> int:
        return self._exprs.shape[1]

    @property
    def cell_distances(self) -> Optional[DistanceMatrix]:
        """
        Cell x cell distance matrix, or None if never computed.

        Raises:
            StaleDistanceError: If cells were subset or reordered after the
                distances were computed
        """
        return self._checked_distances(self._cell_distances, self._cell_ids, "cell")

    @property
    def feature_distances(self) -> Optional[DistanceMatrix]:
        """
        Feature x feature distance matrix, or None if never computed.

        Raises:
            StaleDistanceError: If features were subset or reordered after the
                distances were computed
        """
        return self._checked_distances(self._feature_distances, self._feature_ids, "feature")

    @staticmethod
    def _checked_distances(
        distances: Optional[DistanceMatrix],
        ids: pd.Index,
        axis_name: str,
    ) -> Optional[DistanceMatrix]:
        if distances is None:
            return None
        if not distances.ids.equals(ids):
            raise StaleDistanceError(
                f"{axis_name} distances were computed for {len(distances.ids)} {axis_name}s "
                f"that no longer match the current {len(ids)} {axis_name}s; recompute with "
                f"set_{axis_name}_distances()"
            )
        return distances

    def is_exprs(self, use_counts: bool = False, threshold: Optional[float] = None) -> np.ndarray:
        """
        Boolean "is expressed" matrix: ``value > threshold`` elementwise.

        Args:
            use_counts: Classify counts instead of exprs
            threshold: Override the stored lower_detection_limit for this call
                (the container is not modified)

        Raises:
            MissingCountsError: If use_counts=True and counts are absent
        """
        if use_counts:
            if self._counts is None:
                raise MissingCountsError("use_counts=True but this ExpressionSet has no counts")
            matrix = self._counts
        else:
            matrix = self._exprs
        limit = self._lower_detection_limit if threshold is None else threshold
        return is_expressed(matrix, limit)

    def to_frame(self, use_counts: bool = False) -> pd.DataFrame:
        """Labelled DataFrame view of exprs (or counts)."""
        matrix = self._counts if use_counts else self._exprs
        if matrix is None:
            raise ValueError("This ExpressionSet has no counts")
        return pd.DataFrame(matrix, index=self._feature_ids, columns=self._cell_ids)

    # ------------------------------------------------------------------
    # Subsetting
    # ------------------------------------------------------------------

    def positions(self, selector: AxisSelector, axis: str = "cells") -> np.ndarray:
        """
        Resolve a selector to integer positions along one axis.

        Args:
            selector: Boolean mask, integer positions, identifier labels, or a
                callable taking the axis metadata table
            axis: "cells" or "features"

        Raises:
            ValueError: If a mask has the wrong length or axis is unknown
            IndexError: If a position is out of range
            KeyError: If an identifier is unknown
        """
        if axis not in ("cells", "features"):
            raise ValueError(f"axis must be 'cells' or 'features', got '{axis}'")
        ids = self._feature_ids if axis == "features" else self._cell_ids
        metadata = self._feature_metadata if axis == "features" else self._cell_metadata
        if callable(selector):
            selector = selector(metadata)

        if isinstance(selector, (pd.Series, pd.Index)):
            selector = selector.to_numpy()
        selector = np.atleast_1d(np.asarray(selector))

        if selector.dtype == bool:
            if selector.ndim != 1 or len(selector) != len(ids):
                raise ValueError(
                    f"mask length ({len(selector)}) must match n_{axis} ({len(ids)})"
                )
            return np.flatnonzero(selector)

        if selector.size == 0:
            return np.array([], dtype=int)

        if np.issubdtype(selector.dtype, np.integer):
            positions = selector.astype(int)
            if positions.min() < -len(ids) or positions.max() >= len(ids):
                raise IndexError(f"position out of range for {len(ids)} {axis}")
            return positions

        positions = ids.get_indexer(selector.astype(str))
        if (positions < 0).any():
            missing = selector[positions < 0][:5].tolist()
            raise KeyError(f"Unknown {axis[:-1]} identifiers: {missing}")
        return positions

    def subset(
        self,
        features: Optional[AxisSelector] = None,
        cells: Optional[AxisSelector] = None,
    ) -> ExpressionSet:
        """
        Subset features and/or cells, keeping matrices and metadata in lockstep.

        Selectors may be boolean masks, integer positions, identifier labels, or
        callables receiving the axis metadata table (e.g. ``lambda m: m.coverage > 4``).
        The source container is never modified.

        Distance matrices are carried along unchanged; retrieving one whose
        axis was altered raises StaleDistanceError.

        Examples:
            >>> kept = eset.subset(cells=lambda meta: meta["coverage"] > 4)
            >>> bool((kept.cell_metadata["coverage"] > 4).all())
            True
        """
        rows = slice(None) if features is None else self.positions(features, "features")
        cols = slice(None) if cells is None else self.positions(cells, "cells")

        exprs = self._exprs[rows, :][:, cols]
        counts = None if self._counts is None else self._counts[rows, :][:, cols]

        return ExpressionSet(
            exprs=exprs,
            feature_ids=self._feature_ids[rows],
            cell_ids=self._cell_ids[cols],
            feature_metadata=self._feature_metadata.iloc[rows],
            cell_metadata=self._cell_metadata.iloc[cols],
            counts=counts,
            lower_detection_limit=self._lower_detection_limit,
            provenance=self._provenance,
            cell_distances=self._cell_distances,
            feature_distances=self._feature_distances,
        )

    def select_cells(self, mask: AxisSelector) -> ExpressionSet:
        """Subset cells (columns); see subset()."""
        return self.subset(cells=mask)

    def select_features(self, mask: AxisSelector) -> ExpressionSet:
        """Subset features (rows); see subset()."""
        return self.subset(features=mask)

    # ------------------------------------------------------------------
    # Copy-producing replacement
    # ------------------------------------------------------------------

    def _evolve(
        self,
        exprs: Any = _UNSET,
        counts: Any = _UNSET,
        feature_metadata: Any = _UNSET,
        cell_metadata: Any = _UNSET,
        lower_detection_limit: Any = _UNSET,
        provenance: Any = _UNSET,
        cell_distances: Any = _UNSET,
        feature_distances: Any = _UNSET,
    ) -> ExpressionSet:
        """New validated instance with the given slots replaced."""
        def pick(value, current):
            return current if value is _UNSET else value

        return ExpressionSet(
            exprs=pick(exprs, self._exprs),
            feature_ids=self._feature_ids,
            cell_ids=self._cell_ids,
            feature_metadata=pick(feature_metadata, self._feature_metadata),
            cell_metadata=pick(cell_metadata, self._cell_metadata),
            counts=pick(counts, self._counts),
            lower_detection_limit=pick(lower_detection_limit, self._lower_detection_limit),
            provenance=pick(provenance, self._provenance),
            cell_distances=pick(cell_distances, self._cell_distances),
            feature_distances=pick(feature_distances, self._feature_distances),
        )

    def _coerce_replacement(self, matrix: Any, name: str) -> np.ndarray:
        rows, cols = _labels_from_matrix(matrix)
        if rows is not None and (not rows.equals(self._feature_ids) or not cols.equals(self._cell_ids)):
            raise IdentifierMismatch(f"{name} DataFrame labels must match the container's identifiers")
        return _as_2d_array(matrix, name)

    def replace_exprs(self, matrix: Any) -> ExpressionSet:
        """
        Return a new ExpressionSet with exprs replaced.

        Raises:
            DimensionMismatch: If the shape differs
            IdentifierMismatch: If a DataFrame's labels differ from the container's
        """
        return self._evolve(exprs=self._coerce_replacement(matrix, "exprs"))

    def replace_counts(self, matrix: Any) -> ExpressionSet:
        """Return a new ExpressionSet with counts replaced (None removes them)."""
        counts = None if matrix is None else self._coerce_replacement(matrix, "counts")
        return self._evolve(counts=counts)

    def replace_feature_metadata(self, table: pd.DataFrame) -> ExpressionSet:
        """Return a new ExpressionSet with feature_metadata replaced."""
        return self._evolve(feature_metadata=table)

    def replace_cell_metadata(self, table: pd.DataFrame) -> ExpressionSet:
        """Return a new ExpressionSet with cell_metadata replaced."""
        return self._evolve(cell_metadata=table)

    def with_lower_detection_limit(self, limit: float) -> ExpressionSet:
        return self._evolve(lower_detection_limit=limit)

    def with_provenance(self, key: str, record: Any) -> ExpressionSet:
        """Return a new ExpressionSet with one provenance record set."""
        provenance = dict(self._provenance)
        provenance[key] = record
        return self._evolve(provenance=provenance)

    def with_distances(self, axis: str, distances: Optional[DistanceMatrix]) -> ExpressionSet:
        """Attach (or clear, with None) the cell or feature distance matrix."""
        if axis == "cells":
            return self._evolve(cell_distances=distances)
        if axis == "features":
            return self._evolve(feature_distances=distances)
        raise ValueError(f"axis must be 'cells' or 'features', got '{axis}'")

    def add_cell_columns(self, columns: pd.DataFrame | dict, replace: bool = False) -> ExpressionSet:
        """
        Append columns to cell_metadata.

        Raises:
            ValueError: If a column already exists and replace=False
        """
        return self._evolve(cell_metadata=self._merge_columns(self._cell_metadata, columns, replace))

    def add_feature_columns(self, columns: pd.DataFrame | dict, replace: bool = False) -> ExpressionSet:
        """Append columns to feature_metadata (see add_cell_columns)."""
        return self._evolve(feature_metadata=self._merge_columns(self._feature_metadata, columns, replace))

    @staticmethod
    def _merge_columns(metadata: pd.DataFrame, columns: pd.DataFrame | dict, replace: bool) -> pd.DataFrame:
        if isinstance(columns, dict):
            columns = pd.DataFrame(columns, index=metadata.index)
        if len(columns) != len(metadata):
            raise DimensionMismatch(
                f"new columns have {len(columns)} rows, metadata has {len(metadata)}"
            )
        if not columns.index.equals(metadata.index):
            raise IdentifierMismatch("new columns must be indexed by the metadata identifiers")

        clashes = [c for c in columns.columns if c in metadata.columns]
        if clashes and not replace:
            raise ValueError(
                f"Columns already present: {clashes}. Pass replace=True to overwrite."
            )

        merged = metadata.drop(columns=clashes)
        return pd.concat([merged, columns], axis=1)

    def copy(self, deep: bool = True) -> ExpressionSet:
        """
        Create a copy of this container.

        Args:
            deep: If True, copy all arrays and tables. If False, share them.
        """
        if not deep:
            return self._evolve()
        return ExpressionSet(
            exprs=self._exprs.copy(),
            feature_ids=self._feature_ids.copy(),
            cell_ids=self._cell_ids.copy(),
            feature_metadata=self._feature_metadata.copy(),
            cell_metadata=self._cell_metadata.copy(),
            counts=None if self._counts is None else self._counts.copy(),
            lower_detection_limit=self._lower_detection_limit,
            provenance=dict(self._provenance),
            cell_distances=self._cell_distances,
            feature_distances=self._feature_distances,
        )

    def __repr__(self) -> str:
        """String representation for debugging."""
        def span(ids: pd.Index) -> str:
            if len(ids) == 0:
                return "(none)"
            return f"{ids[0]}...{ids[-1]}"

        return (
            f"ExpressionSet({self.n_features} features × {self.n_cells} cells)\n"
            f"  Features: {span(self.feature_ids)}\n"
            f"  Cells: {span(self.cell_ids)}\n"
            f"  Counts: {'yes' if self.has_counts else 'no'}, "
            f"lower_detection_limit={self.lower_detection_limit}\n"
            f"  Cell metadata columns: {list(self.cell_metadata.columns)}\n"
            f"  Feature metadata columns: {list(self.feature_metadata.columns)}"
        )

    def __str__(self) -> str:
        return self.__repr__()
