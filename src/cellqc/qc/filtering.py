"""
Cell and feature filtering based on QC metrics.

Both filters implement the Transform interface. CellFilter consumes the
columns written by calculate_qc_metrics(); FeatureFilter recomputes detection
from the matrices it is given, so it can follow CellFilter directly.

    CellFilter: drops cells flagged by MAD outlier columns and/or failing
        fixed thresholds (minimum depth, minimum coverage, maximum % controls)
    FeatureFilter: drops features detected in too few cells, with too low
        mean expression, or (optionally) control features

Examples:
    >>> from cellqc.qc import calculate_qc_metrics, CellFilter, FeatureFilter
    >>> qc = calculate_qc_metrics(eset, feature_controls=ercc_ids)
    >>> kept = FeatureFilter(min_cells=3).apply(CellFilter().apply(qc))
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

from cellqc.core.detection import count_expressed
from cellqc.core.expression_set import ExpressionSet
from cellqc.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = ['CellFilter', 'FeatureFilter', 'FilterResult']

DEFAULT_EXCLUDE_COLUMNS = ("filter_on_depth", "filter_on_coverage")


@dataclass
class FilterResult:
    """Which identifiers passed a filter, and why the others failed."""
    passed: list[str]
    failed: list[str]
    reasons: dict[str, int] = field(default_factory=dict)
    # reasons format: {"filter_on_depth": 12, "min_coverage": 3}
    parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def n_passed(self) -> int:
        return len(self.passed)

    @property
    def n_failed(self) -> int:
        return len(self.failed)

    @property
    def pass_rate(self) -> float:
        total = self.n_passed + self.n_failed
        return self.n_passed / total if total > 0 else 0.0


def _require_columns(metadata: pd.DataFrame, columns: Sequence[str], table: str) -> list[str]:
    missing = [c for c in columns if c not in metadata.columns]
    if missing:
        return [f"{table} is missing QC columns {missing}; run calculate_qc_metrics() first"]
    return []


class CellFilter(Transform):
    """
    Remove low-quality cells.

    A cell is removed if ANY of the following holds:
        - any boolean column in ``exclude_columns`` is True
        - depth < min_depth
        - coverage < min_coverage
        - pct_reads_from_controls > max_pct_controls

    Params:
        exclude_columns: Boolean cell_metadata columns marking cells to drop
            (default: the depth and coverage MAD outlier flags)
        min_depth: Minimum total counts per cell
        min_coverage: Minimum detected features per cell
        max_pct_controls: Maximum % of reads from control features
        keep_cell_controls: Never drop cells marked is_cell_control
    """

    def __init__(
        self,
        exclude_columns: Sequence[str] = DEFAULT_EXCLUDE_COLUMNS,
        min_depth: Optional[float] = None,
        min_coverage: Optional[int] = None,
        max_pct_controls: Optional[float] = None,
        keep_cell_controls: bool = False,
    ):
        super().__init__(
            name="CellFilter",
            params={
                "exclude_columns": list(exclude_columns),
                "min_depth": min_depth,
                "min_coverage": min_coverage,
                "max_pct_controls": max_pct_controls,
                "keep_cell_controls": keep_cell_controls,
            },
        )
        self.exclude_columns = list(exclude_columns)
        self.min_depth = min_depth
        self.min_coverage = min_coverage
        self.max_pct_controls = max_pct_controls
        self.keep_cell_controls = keep_cell_controls

    def _required_columns(self) -> list[str]:
        required = list(self.exclude_columns)
        if self.min_depth is not None:
            required.append("depth")
        if self.min_coverage is not None:
            required.append("coverage")
        if self.max_pct_controls is not None:
            required.append("pct_reads_from_controls")
        if self.keep_cell_controls:
            required.append("is_cell_control")
        return required

    def _compute_keep_mask(self, eset: ExpressionSet) -> tuple[np.ndarray, dict[str, int]]:
        """
        Core filtering logic.

        Returns:
            keep_mask: Boolean array over cells
            reasons: Number of cells failing each criterion (criteria may overlap)
        """
        meta = eset.cell_metadata
        drop = np.zeros(eset.n_cells, dtype=bool)
        reasons: dict[str, int] = {}

        def register(name: str, failing: np.ndarray) -> None:
            nonlocal drop
            reasons[name] = int(failing.sum())
            drop |= failing

        for column in self.exclude_columns:
            register(column, meta[column].fillna(False).to_numpy(dtype=bool))
        if self.min_depth is not None:
            register("min_depth", meta["depth"].to_numpy(dtype=float) < self.min_depth)
        if self.min_coverage is not None:
            register("min_coverage", meta["coverage"].to_numpy(dtype=float) < self.min_coverage)
        if self.max_pct_controls is not None:
            pct = meta["pct_reads_from_controls"].to_numpy(dtype=float)
            register("max_pct_controls", pct > self.max_pct_controls)

        if self.keep_cell_controls:
            drop &= ~meta["is_cell_control"].to_numpy(dtype=bool)

        return ~drop, reasons

    def apply(self, eset: ExpressionSet) -> ExpressionSet:
        """Apply the cell filter."""
        errors = self.validate(eset)
        if errors:
            raise ValueError("Validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

        logger.info(f"Applying {self!r}")
        keep_mask, reasons = self._compute_keep_mask(eset)

        n_kept = int(keep_mask.sum())
        logger.info(
            f"Cell filtering complete: kept {n_kept}/{eset.n_cells} cells, "
            f"removed {eset.n_cells - n_kept} ({reasons})"
        )
        return eset.select_cells(keep_mask)

    def get_result(self, eset: ExpressionSet) -> FilterResult:
        """Report passing/failing cells without subsetting."""
        errors = self.validate(eset)
        if errors:
            raise ValueError("Validation failed:\n" + "\n".join(f"  - {e}" for e in errors))
        keep_mask, reasons = self._compute_keep_mask(eset)
        return FilterResult(
            passed=eset.cell_ids[keep_mask].tolist(),
            failed=eset.cell_ids[~keep_mask].tolist(),
            reasons=reasons,
            parameters=dict(self.params),
        )

    def validate(self, eset: ExpressionSet) -> list[str]:
        errors = super().validate(eset)
        errors.extend(_require_columns(eset.cell_metadata, self._required_columns(), "cell_metadata"))
        return errors


class FeatureFilter(Transform):
    """
    Remove uninformative features.

    A feature is removed if ANY of the following holds:
        - detected in fewer than min_cells of the CURRENT cells
        - mean exprs over the current cells < min_mean_exprs
        - is_feature_control is True and drop_controls=True

    Detection and mean expression are recomputed from the matrices, so the
    filter stays correct after CellFilter has removed cells; the
    n_cells_exprs / mean_exprs metadata columns may predate that subset.
    Detection uses counts when present (as calculate_qc_metrics does).

    Params:
        min_cells: Minimum number of cells in which the feature is detected
        min_mean_exprs: Minimum mean expression
        drop_controls: Also remove control features (spike-ins)
    """

    def __init__(
        self,
        min_cells: int = 1,
        min_mean_exprs: Optional[float] = None,
        drop_controls: bool = False,
    ):
        if min_cells < 0:
            raise ValueError(f"min_cells must be non-negative, got {min_cells}")
        super().__init__(
            name="FeatureFilter",
            params={
                "min_cells": min_cells,
                "min_mean_exprs": min_mean_exprs,
                "drop_controls": drop_controls,
            },
        )
        self.min_cells = min_cells
        self.min_mean_exprs = min_mean_exprs
        self.drop_controls = drop_controls

    def _compute_keep_mask(self, eset: ExpressionSet) -> tuple[np.ndarray, dict[str, int]]:
        matrix = eset.counts if eset.counts is not None else eset.exprs
        n_cells_exprs = count_expressed(matrix, eset.lower_detection_limit, axis=1)
        keep = n_cells_exprs >= self.min_cells
        reasons = {"min_cells": int((~keep).sum())}

        if self.min_mean_exprs is not None:
            with warnings.catch_warnings():
                # All-NaN rows give NaN means, which fail the threshold
                warnings.simplefilter("ignore", category=RuntimeWarning)
                mean_exprs = np.nanmean(eset.exprs, axis=1)
            low = ~(mean_exprs >= self.min_mean_exprs)
            reasons["min_mean_exprs"] = int(low.sum())
            keep &= ~low
        if self.drop_controls:
            control = eset.feature_metadata["is_feature_control"].to_numpy(dtype=bool)
            reasons["drop_controls"] = int(control.sum())
            keep &= ~control

        return keep, reasons

    def apply(self, eset: ExpressionSet) -> ExpressionSet:
        """Apply the feature filter."""
        errors = self.validate(eset)
        if errors:
            raise ValueError("Validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

        logger.info(f"Applying {self!r}")
        keep_mask, reasons = self._compute_keep_mask(eset)

        n_kept = int(keep_mask.sum())
        logger.info(
            f"Feature filtering complete: kept {n_kept}/{eset.n_features} features "
            f"({100 * n_kept / max(eset.n_features, 1):.1f}%), removed {eset.n_features - n_kept} ({reasons})"
        )
        return eset.select_features(keep_mask)

    def get_result(self, eset: ExpressionSet) -> FilterResult:
        """Report passing/failing features without subsetting."""
        errors = self.validate(eset)
        if errors:
            raise ValueError("Validation failed:\n" + "\n".join(f"  - {e}" for e in errors))
        keep_mask, reasons = self._compute_keep_mask(eset)
        return FilterResult(
            passed=eset.feature_ids[keep_mask].tolist(),
            failed=eset.feature_ids[~keep_mask].tolist(),
            reasons=reasons,
            parameters=dict(self.params),
        )

    def validate(self, eset: ExpressionSet) -> list[str]:
        errors = super().validate(eset)
        if self.drop_controls:
            errors.extend(_require_columns(eset.feature_metadata, ["is_feature_control"], "feature_metadata"))
        return errors
