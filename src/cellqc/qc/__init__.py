"""
Quality control for single-cell expression data.

Key Functions:
    - calculate_qc_metrics: per-cell and per-feature QC columns
    - is_outlier: MAD-based outlier flags
    - CellFilter / FeatureFilter: Transforms that drop flagged cells/features

Typical workflow:
    >>> from cellqc.qc import calculate_qc_metrics, CellFilter, FeatureFilter
    >>> qc = calculate_qc_metrics(eset, feature_controls={"ERCC": ercc_ids})
    >>> clean = FeatureFilter(min_cells=3).apply(CellFilter().apply(qc))
"""

from cellqc.qc.outliers import MAD_NORMAL_SCALE, mad, is_outlier, outlier_thresholds
from cellqc.qc.metrics import calculate_qc_metrics, DEFAULT_TOP_SIZES, CONTROL_SET_NAME
from cellqc.qc.filtering import CellFilter, FeatureFilter, FilterResult

__all__ = [
    'calculate_qc_metrics',
    'DEFAULT_TOP_SIZES',
    'CONTROL_SET_NAME',
    'MAD_NORMAL_SCALE',
    'mad',
    'is_outlier',
    'outlier_thresholds',
    'CellFilter',
    'FeatureFilter',
    'FilterResult',
]
