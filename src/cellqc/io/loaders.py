"""
CSV loaders for count matrices and annotation tables.

Single-cell Context:
    Count matrices are usually exported as CSV:
    - Rows = features (Ensembl IDs, gene symbols, ERCC spike-ins)
    - Columns = cells (barcodes or well IDs)
    - Values = integer read/UMI counts, mostly zeros

    Cell annotations (plate, batch, well type) and feature annotations (gene
    symbol, chromosome, spike-in flag) live in separate tables keyed by the
    same identifiers.

Engineering Design:
    - Identifiers are always read as strings (leading zeros survive)
    - Duplicate identifiers: warn and keep the first occurrence
    - Non-numeric cells in the matrix: ValueError listing the first offenders
    - NaN / negative counts: warn, because QC metrics treat NaN as unknown
    - Metadata rows are aligned to the matrix order; missing rows raise

Examples:
    >>> from cellqc.io.loaders import load_expression_set
    >>> eset = load_expression_set("counts.csv", cell_metadata_path="cells.csv")
    >>> eset.shape
    (20000, 384)
"""

from __future__ import annotations

import logging
from pathlib import Path
import warnings
from typing import Optional, Union

import numpy as np
import pandas as pd

from cellqc.core.errors import IdentifierMismatch
from cellqc.core.expression_set import ExpressionSet

logger = logging.getLogger(__name__)

__all__ = ['load_counts_csv', 'load_metadata_csv', 'load_expression_set', 'read_table']

PathLike = Union[str, Path]

# Maximum number of offending entries quoted in error messages
_MAX_EXAMPLES = 5


def _check_path(path: PathLike) -> Path:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")
    return path


def read_table(path: PathLike, sep: str = ",") -> pd.DataFrame:
    """
    Read a CSV whose first column holds identifiers.

    The identifier column and the header are kept as strings.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file is empty or unparseable
    """
    path = _check_path(path)
    try:
        df = pd.read_csv(path, sep=sep, index_col=0, converters={0: str})
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"CSV file is empty: {path}") from e
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ValueError(f"Failed to read CSV file {path}: {e}") from e

    df.index = pd.Index(df.index, dtype=object).astype(str)
    df.columns = pd.Index(df.columns, dtype=object).astype(str)
    return df


def _drop_duplicates(df: pd.DataFrame, label: str) -> pd.DataFrame:
    if df.index.duplicated().any():
        n_duplicates = int(df.index.duplicated().sum())
        warnings.warn(
            f"Found {n_duplicates} duplicate {label} IDs. Using first occurrence of each.",
            UserWarning,
        )
        df = df[~df.index.duplicated(keep='first')]
    return df


def _non_numeric_examples(df: pd.DataFrame) -> list[str]:
    examples = []
    for i, row in enumerate(df.values):
        for j, val in enumerate(row):
            try:
                float(val)
            except (ValueError, TypeError):
                examples.append(f"row {i} ('{df.index[i]}'), col {j} ('{df.columns[j]}'): {val}")
                if len(examples) >= _MAX_EXAMPLES:
                    return examples
    return examples


def load_counts_csv(path: PathLike, sep: str = ",") -> pd.DataFrame:
    """
    Load a features x cells count matrix from CSV.

    Expected format:
    ```
    "",cell_A1,cell_A2
    ENSG00000000003,12,0
    ERCC-00002,340,298
    ```

    Args:
        path: CSV path; first column = feature IDs, header = cell IDs
        sep: Field delimiter

    Returns:
        DataFrame of floats (features x cells) with string labels

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the CSV is empty, has no cells, or holds non-numeric values
    """
    df = read_table(path, sep=sep)

    if df.shape[0] == 0:
        raise ValueError(f"CSV contains no features (rows): {path}")
    if df.shape[1] == 0:
        raise ValueError(f"CSV contains no cells (columns): {path}")

    df = _drop_duplicates(df, "feature")
    if df.columns.duplicated().any():
        n_duplicates = int(df.columns.duplicated().sum())
        warnings.warn(
            f"Found {n_duplicates} duplicate cell IDs. Using first occurrence of each.",
            UserWarning,
        )
        df = df.loc[:, ~df.columns.duplicated(keep='first')]

    try:
        data = df.to_numpy(dtype=float)
    except (ValueError, TypeError) as e:
        examples = _non_numeric_examples(df)
        raise ValueError(
            "CSV contains non-numeric values:\n"
            + "\n".join(f"  - {x}" for x in examples)
            + ("\n  ..." if len(examples) >= _MAX_EXAMPLES else "")
        ) from e

    n_nan = int(np.isnan(data).sum())
    if n_nan:
        warnings.warn(
            f"Found {n_nan:,} NaN values ({100 * n_nan / data.size:.2f}% of data). "
            "They are treated as unknown by QC metrics.",
            UserWarning,
        )
    with np.errstate(invalid="ignore"):
        n_negative = int((data < 0).sum())
    if n_negative:
        warnings.warn(
            f"Found {n_negative:,} negative values; is this a count matrix?",
            UserWarning,
        )

    logger.info(f"Loaded {df.shape[0]} features x {df.shape[1]} cells from {path}")
    return pd.DataFrame(data, index=df.index, columns=df.columns)


def load_metadata_csv(path: PathLike, sep: str = ",") -> pd.DataFrame:
    """
    Load an annotation table (first column = feature or cell IDs).

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file cannot be parsed
    """
    df = _drop_duplicates(read_table(path, sep=sep), "metadata row")
    logger.info(f"Loaded metadata for {len(df)} identifiers ({df.shape[1]} columns) from {path}")
    return df


def _align_metadata(metadata: pd.DataFrame, ids: pd.Index, name: str) -> pd.DataFrame:
    """Reorder metadata rows to ids; extra rows are dropped with a warning."""
    missing = ids.difference(metadata.index)
    if len(missing) > 0:
        raise IdentifierMismatch(
            f"{name} is missing {len(missing)} identifiers present in the matrix: "
            f"{missing[:_MAX_EXAMPLES].tolist()}"
        )
    extra = metadata.index.difference(ids)
    if len(extra) > 0:
        warnings.warn(
            f"{name} has {len(extra)} rows not present in the matrix; ignoring them",
            UserWarning,
        )
    return metadata.loc[ids]


def load_expression_set(
    counts_path: PathLike,
    cell_metadata_path: Optional[PathLike] = None,
    feature_metadata_path: Optional[PathLike] = None,
    exprs_path: Optional[PathLike] = None,
    lower_detection_limit: float = 0.0,
    prior_count: float = 1.0,
    sep: str = ",",
) -> ExpressionSet:
    """
    Build an ExpressionSet from CSV files.

    Args:
        counts_path: Count matrix (features x cells)
        cell_metadata_path: Optional cell annotations
        feature_metadata_path: Optional feature annotations
        exprs_path: Optional precomputed expression matrix; derived as
            log2(CPM + prior_count) when omitted
        lower_detection_limit: Detection threshold stored on the container
        prior_count: Prior for the derived exprs
        sep: Field delimiter for all files

    Raises:
        FileNotFoundError, ValueError: On unreadable/malformed files
        IdentifierMismatch: If metadata lacks identifiers present in the matrix
    """
    counts = load_counts_csv(counts_path, sep=sep)

    exprs = None
    if exprs_path is not None:
        exprs = load_counts_csv(exprs_path, sep=sep)
        if set(exprs.index) != set(counts.index) or set(exprs.columns) != set(counts.columns):
            raise IdentifierMismatch(
                f"exprs matrix {exprs_path} does not carry the same identifiers as {counts_path}"
            )
        exprs = exprs.loc[counts.index, counts.columns]

    cell_metadata = None
    if cell_metadata_path is not None:
        cell_metadata = _align_metadata(
            load_metadata_csv(cell_metadata_path, sep=sep), counts.columns, "cell metadata"
        )
    feature_metadata = None
    if feature_metadata_path is not None:
        feature_metadata = _align_metadata(
            load_metadata_csv(feature_metadata_path, sep=sep), counts.index, "feature metadata"
        )

    return ExpressionSet.create(
        counts=counts,
        exprs=exprs,
        feature_metadata=feature_metadata,
        cell_metadata=cell_metadata,
        lower_detection_limit=lower_detection_limit,
        prior_count=prior_count,
    )
