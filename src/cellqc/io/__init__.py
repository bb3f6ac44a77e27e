"""
I/O for single-cell count data.

Key Functions:
    - load_counts_csv: Load a features x cells count matrix from CSV
    - load_metadata_csv: Load a cell or feature annotation table
    - load_expression_set: Build an ExpressionSet from CSV files
    - write_bundle / read_bundle: Persist an ExpressionSet as CSV + manifest

Examples:
    >>> from cellqc.io import load_expression_set, write_bundle
    >>> eset = load_expression_set("counts.csv", cell_metadata_path="cells.csv")
    >>> write_bundle(eset, "results/raw")
"""

from cellqc.io.loaders import load_counts_csv, load_metadata_csv, load_expression_set
from cellqc.io.writers import write_bundle, read_bundle

__all__ = [
    'load_counts_csv',
    'load_metadata_csv',
    'load_expression_set',
    'write_bundle',
    'read_bundle',
]
