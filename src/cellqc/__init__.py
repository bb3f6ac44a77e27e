"""
cellqc - Quality Control for Single-Cell Expression Data

A toolkit for computing per-cell and per-feature QC metrics on single-cell
RNA-seq count matrices, flagging low-quality cells with robust MAD outlier
rules, and filtering, normalizing and visualizing the result.
"""

__version__ = "0.1.0"

from cellqc.core.expression_set import ExpressionSet
from cellqc.core.transform import Transform
from cellqc.core.errors import CellQCError
from cellqc.qc.metrics import calculate_qc_metrics

__all__ = [
    "ExpressionSet",
    "Transform",
    "CellQCError",
    "calculate_qc_metrics",
]
