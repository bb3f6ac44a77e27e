"""
Per-cell and per-feature quality-control metrics.

calculate_qc_metrics() derives summary statistics from an ExpressionSet and
returns a NEW container with the statistics appended as metadata columns. The
input is never modified.

Per-cell columns (cell_metadata):
    depth                         total counts per cell (library size)
    log10_depth                   log10(depth); -inf for empty cells
    coverage                      features detected above lower_detection_limit
    pct_dropout                   % of features not detected
    filter_on_depth               MAD outlier on log10_depth
    filter_on_coverage            MAD outlier on coverage
    pct_counts_top_N_features     % of depth in the N highest-count features
    reads_from_controls           counts from control features (0 without controls)
    log10_reads_from_controls     log10(reads_from_controls + 1)
    pct_reads_from_controls       reads_from_controls / depth * 100
    reads_from_biological         depth - reads_from_controls
    log10_reads_from_biological   log10(reads_from_biological + 1)
    pct_reads_from_biological     reads_from_biological / depth * 100
    filter_on_pct_reads_from_controls   upper-tail MAD outlier on the control %
    reads_from_<set>, log10_reads_from_<set>, pct_reads_from_<set>
                                  per named control set
    is_cell_control               when cell controls are designated

Per-feature columns (feature_metadata):
    mean_exprs          row mean of exprs
    exprs_rank          ordinal rank of mean_exprs (1 = lowest; ties by position)
    total_reads         row sums of counts
    log10_total_reads   log10(total_reads + 1)
    pct_total_reads     total_reads / grand total * 100
    is_feature_control  member of any control set
    is_feature_control_<set>   member of a named control set
    n_cells_exprs       cells in which the feature is detected
    pct_dropout         % of cells in which the feature is not detected

Depth source:
    Depth-dependent metrics use counts. Without counts, exprs is used as a
    proxy if it holds no negative or infinite values (NaN stays unknown);
    otherwise MissingCountsError is raised. The matrix used is recorded in
    provenance["qc_metrics"]["depth_source"].

Examples:
    >>> from cellqc.qc.metrics import calculate_qc_metrics
    >>> qc = calculate_qc_metrics(eset, feature_controls={"ERCC": ercc_ids})
    >>> qc.cell_metadata[["depth", "coverage", "pct_reads_from_ERCC"]].head()
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.stats import rankdata

from cellqc.core.detection import count_expressed
from cellqc.core.errors import MissingCountsError
from cellqc.core.expression_set import AxisSelector, ExpressionSet
from cellqc.qc.outliers import MAD_NORMAL_SCALE, is_outlier

logger = logging.getLogger(__name__)

__all__ = ['calculate_qc_metrics', 'DEFAULT_TOP_SIZES', 'CONTROL_SET_NAME']

DEFAULT_TOP_SIZES = (50, 100, 200, 500)

# Name given to a control set passed as a plain sequence
CONTROL_SET_NAME = "controls"

_RESERVED_SET_NAMES = {"biological"}

# Warn when more than this fraction of cells is flagged
HIGH_OUTLIER_FRACTION = 0.5

FeatureControls = Union[AxisSelector, Mapping[str, AxisSelector]]


def _depth_matrix(eset: ExpressionSet, use_counts_proxy: bool) -> tuple[np.ndarray, str]:
    """Pick the matrix that depth-dependent metrics are computed from."""
    if eset.counts is not None:
        return eset.counts, "counts"

    if not use_counts_proxy:
        raise MissingCountsError(
            "QC metrics need counts; this ExpressionSet has none and use_counts_proxy=False"
        )

    exprs = eset.exprs
    # NaN is unknown, as in counts; only infinite or negative values disqualify
    if np.isinf(exprs).any() or np.nanmin(exprs, initial=0.0) < 0:
        raise MissingCountsError(
            "QC metrics need counts; exprs cannot stand in for them because it "
            "contains negative or infinite values (log-scale data?)"
        )

    warnings.warn(
        "No counts available; computing depth-based QC metrics from exprs",
        UserWarning,
    )
    return exprs, "exprs"


def _resolve_feature_controls(
    eset: ExpressionSet,
    feature_controls: Optional[FeatureControls],
) -> dict[str, np.ndarray]:
    """Normalize control selectors to {set name: boolean row mask}."""
    if feature_controls is None:
        return {}

    if isinstance(feature_controls, Mapping):
        sets = dict(feature_controls)
    else:
        sets = {CONTROL_SET_NAME: feature_controls}

    masks: dict[str, np.ndarray] = {}
    for name, selector in sets.items():
        name = str(name)
        if name in _RESERVED_SET_NAMES:
            raise ValueError(f"'{name}' cannot be used as a control set name")
        mask = np.zeros(eset.n_features, dtype=bool)
        mask[eset.positions(selector, axis="features")] = True
        masks[name] = mask
    return masks


def _log10_plus_one(values: np.ndarray) -> np.ndarray:
    return np.log10(values + 1.0)


def _percent(part: np.ndarray, total: np.ndarray) -> np.ndarray:
    """part / total * 100, with 0 where total is 0."""
    safe_total = np.where(total > 0, total, 1.0)
    return np.where(total > 0, part / safe_total * 100.0, 0.0)


def _pct_counts_top(matrix: np.ndarray, depth: np.ndarray, sizes: Sequence[int]) -> dict[str, np.ndarray]:
    """% of each cell's depth taken by its N highest-count features."""
    columns: dict[str, np.ndarray] = {}
    sizes = sorted(int(n) for n in sizes if 0 < int(n) < matrix.shape[0])
    if not sizes:
        return columns

    # Descending per-cell sort, then cumulative totals
    ordered = -np.sort(-np.nan_to_num(matrix, nan=0.0), axis=0)
    cumulative = np.cumsum(ordered, axis=0)
    for n in sizes:
        columns[f"pct_counts_top_{n}_features"] = _percent(cumulative[n - 1, :], depth)
    return columns


def calculate_qc_metrics(
    eset: ExpressionSet,
    feature_controls: Optional[FeatureControls] = None,
    cell_controls: Optional[AxisSelector] = None,
    mad_multiplier: float = 5.0,
    mad_scale: float = MAD_NORMAL_SCALE,
    top_sizes: Sequence[int] = DEFAULT_TOP_SIZES,
    use_counts_proxy: bool = True,
    replace: bool = False,
) -> ExpressionSet:
    """
    Compute QC metrics and append them to copies of the metadata tables.

    Args:
        eset: Source container (unchanged)
        feature_controls: Control features (e.g. ERCC spike-ins, mitochondrial
            genes). A mask / positions / identifiers / callable for a single set
            named "controls", or a mapping of set name to such a selector.
        cell_controls: Control cells (e.g. empty wells, bulk samples)
        mad_multiplier: Cells deviating more than this many scaled MADs are flagged
        mad_scale: MAD consistency constant
        top_sizes: N values for pct_counts_top_N_features
        use_counts_proxy: Allow exprs to stand in for absent counts
        replace: Overwrite metadata columns that share a QC column name but
            were not written by an earlier calculate_qc_metrics() call

    Returns:
        New ExpressionSet with QC columns in cell_metadata and feature_metadata.
        Columns from an earlier QC run on the same container are replaced;
        other columns are never overwritten unless replace=True.

    Raises:
        MissingCountsError: If counts are absent and exprs is not a usable proxy
        ValueError: If mad_multiplier is not positive, a control set name is
            reserved, or a QC column would overwrite a user column (replace=False)
        KeyError / IndexError: If control selectors reference unknown features/cells
    """
    if mad_multiplier <= 0:
        raise ValueError(f"mad_multiplier must be positive, got {mad_multiplier}")

    matrix, depth_source = _depth_matrix(eset, use_counts_proxy)
    limit = eset.lower_detection_limit
    control_masks = _resolve_feature_controls(eset, feature_controls)

    # === Per-cell metrics ===
    depth = np.nansum(matrix, axis=0)
    with np.errstate(divide="ignore"):
        log10_depth = np.log10(depth)
    coverage = count_expressed(matrix, limit, axis=0)

    cell_cols: dict[str, Any] = {
        "depth": depth,
        "log10_depth": log10_depth,
        "coverage": coverage,
        "pct_dropout": 100.0 * (1.0 - coverage / max(eset.n_features, 1)),
        "filter_on_depth": is_outlier(log10_depth, nmads=mad_multiplier, scale=mad_scale),
        "filter_on_coverage": is_outlier(coverage, nmads=mad_multiplier, scale=mad_scale),
    }
    cell_cols.update(_pct_counts_top(matrix, depth, top_sizes))

    any_control = np.zeros(eset.n_features, dtype=bool)
    for mask in control_masks.values():
        any_control |= mask

    reads_from_controls = np.nansum(matrix[any_control, :], axis=0)
    reads_from_biological = depth - reads_from_controls
    pct_controls = _percent(reads_from_controls, depth)

    cell_cols["reads_from_controls"] = reads_from_controls
    cell_cols["log10_reads_from_controls"] = _log10_plus_one(reads_from_controls)
    cell_cols["pct_reads_from_controls"] = pct_controls
    cell_cols["reads_from_biological"] = reads_from_biological
    cell_cols["log10_reads_from_biological"] = _log10_plus_one(reads_from_biological)
    cell_cols["pct_reads_from_biological"] = _percent(reads_from_biological, depth)
    if control_masks:
        cell_cols["filter_on_pct_reads_from_controls"] = is_outlier(
            pct_controls, nmads=mad_multiplier, type="higher", scale=mad_scale
        )
    else:
        cell_cols["filter_on_pct_reads_from_controls"] = np.zeros(eset.n_cells, dtype=bool)

    for name, mask in control_masks.items():
        if name == CONTROL_SET_NAME:
            continue
        reads = np.nansum(matrix[mask, :], axis=0)
        cell_cols[f"reads_from_{name}"] = reads
        cell_cols[f"log10_reads_from_{name}"] = _log10_plus_one(reads)
        cell_cols[f"pct_reads_from_{name}"] = _percent(reads, depth)

    cell_control_ids: list[str] = []
    if cell_controls is not None:
        is_cell_control = np.zeros(eset.n_cells, dtype=bool)
        is_cell_control[eset.positions(cell_controls, axis="cells")] = True
        cell_cols["is_cell_control"] = is_cell_control
        cell_control_ids = eset.cell_ids[is_cell_control].tolist()

    # === Per-feature metrics ===
    with warnings.catch_warnings():
        # All-NaN rows give NaN means without a RuntimeWarning
        warnings.simplefilter("ignore", category=RuntimeWarning)
        mean_exprs = np.nanmean(eset.exprs, axis=1) if eset.n_cells else np.full(eset.n_features, np.nan)

    total_reads = np.nansum(matrix, axis=1)
    grand_total = total_reads.sum()
    n_cells_exprs = count_expressed(matrix, limit, axis=1)

    feature_cols: dict[str, Any] = {
        "mean_exprs": mean_exprs,
        # NaN means rank lowest; "ordinal" breaks ties by order of occurrence
        "exprs_rank": rankdata(np.nan_to_num(mean_exprs, nan=-np.inf), method="ordinal").astype(int),
        "total_reads": total_reads,
        "log10_total_reads": _log10_plus_one(total_reads),
        "pct_total_reads": _percent(total_reads, np.full_like(total_reads, grand_total)),
        "is_feature_control": any_control,
    }
    for name, mask in control_masks.items():
        if name != CONTROL_SET_NAME:
            feature_cols[f"is_feature_control_{name}"] = mask
    feature_cols["n_cells_exprs"] = n_cells_exprs
    feature_cols["pct_dropout"] = 100.0 * (1.0 - n_cells_exprs / max(eset.n_cells, 1))

    cell_df = pd.DataFrame(cell_cols, index=eset.cell_ids)
    feature_df = pd.DataFrame(feature_cols, index=eset.feature_ids)

    # Drop columns from an earlier run so renamed control sets don't linger
    previous = eset.provenance.get("qc_metrics", {})
    stale_cells = [c for c in previous.get("cell_columns", []) if c in eset.cell_metadata.columns]
    stale_features = [c for c in previous.get("feature_columns", []) if c in eset.feature_metadata.columns]

    clashes = sorted(
        (set(cell_df.columns) & set(eset.cell_metadata.columns)) - set(stale_cells)
    ) + sorted(
        (set(feature_df.columns) & set(eset.feature_metadata.columns)) - set(stale_features)
    )
    if clashes and not replace:
        raise ValueError(
            f"Metadata already has columns named like QC metrics: {clashes}. "
            f"Rename them or pass replace=True to overwrite."
        )

    record = {
        "depth_source": depth_source,
        "lower_detection_limit": limit,
        "mad_multiplier": float(mad_multiplier),
        "mad_scale": float(mad_scale),
        "controls": list(control_masks),
        "feature_controls": {
            name: eset.feature_ids[mask].tolist() for name, mask in control_masks.items()
        },
        "cell_controls": cell_control_ids,
        "cell_columns": list(cell_df.columns),
        "feature_columns": list(feature_df.columns),
    }

    result = (
        eset.replace_cell_metadata(eset.cell_metadata.drop(columns=stale_cells))
        .replace_feature_metadata(eset.feature_metadata.drop(columns=stale_features))
        .add_cell_columns(cell_df, replace=replace)
        .add_feature_columns(feature_df, replace=replace)
        .with_provenance("qc_metrics", record)
    )

    n_depth = int(cell_cols["filter_on_depth"].sum())
    n_coverage = int(cell_cols["filter_on_coverage"].sum())
    flagged = int((cell_cols["filter_on_depth"] | cell_cols["filter_on_coverage"]).sum())
    if eset.n_cells and flagged / eset.n_cells > HIGH_OUTLIER_FRACTION:
        warnings.warn(
            f"{flagged}/{eset.n_cells} cells flagged as depth or coverage outliers; "
            f"check mad_multiplier or the detection limit",
            UserWarning,
        )
    logger.info(
        f"QC metrics computed from {depth_source} for {eset.n_cells} cells x "
        f"{eset.n_features} features: {n_depth} depth outliers, "
        f"{n_coverage} coverage outliers (nmads={mad_multiplier})"
    )
    return result
