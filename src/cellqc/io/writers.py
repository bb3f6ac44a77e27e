"""
Bundle writer/reader for ExpressionSet objects.

A bundle is a directory of plain CSV files plus a JSON manifest, readable from
R, Excel or pandas without cellqc:

    exprs.csv               expression matrix (features x cells)
    counts.csv              raw counts (only when present)
    cell_metadata.csv       one row per cell, incl. QC columns
    feature_metadata.csv    one row per feature, incl. QC columns
    cell_distances.csv      cell x cell distances (only when attached)
    feature_distances.csv   feature x feature distances (only when attached)
    manifest.json           shape, detection limit, provenance, file list

Every file is written atomically and the manifest is written last, so a
directory with a manifest is a complete bundle.

Examples:
    >>> from cellqc.io.writers import write_bundle, read_bundle
    >>> write_bundle(qc_eset, Path("results/qc"))
    >>> restored = read_bundle(Path("results/qc"))
    >>> restored.cell_metadata["filter_on_depth"].sum()
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd

from cellqc import __version__
from cellqc.core.distances import DistanceMatrix
from cellqc.core.expression_set import ExpressionSet
from cellqc.io.loaders import read_table
from cellqc.utils.fileio import atomic_write_csv, atomic_write_json

logger = logging.getLogger(__name__)

__all__ = ['write_bundle', 'read_bundle', 'MANIFEST_NAME', 'BUNDLE_FORMAT_VERSION']

MANIFEST_NAME = "manifest.json"
BUNDLE_FORMAT_VERSION = 1

_FEATURE_INDEX_LABEL = "feature_id"
_CELL_INDEX_LABEL = "cell_id"


def _write_csv(frame: pd.DataFrame, path: Path, index_label: str) -> None:
    try:
        atomic_write_csv(path, frame, index_label=index_label)
    except OSError as e:
        raise OSError(f"Failed to write {path}: {e}") from e


def write_bundle(eset: ExpressionSet, directory: Union[str, Path]) -> Path:
    """
    Write an ExpressionSet to a bundle directory.

    Args:
        eset: Container to write
        directory: Target directory (created if needed; existing bundle files
            are overwritten)

    Returns:
        Path to the written manifest

    Raises:
        TypeError: If eset is not an ExpressionSet
        OSError: If the directory is not writable
    """
    if not isinstance(eset, ExpressionSet):
        raise TypeError(f"eset must be ExpressionSet, got {type(eset)}")

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    files: dict[str, str] = {}

    _write_csv(eset.to_frame(), directory / "exprs.csv", _FEATURE_INDEX_LABEL)
    files["exprs"] = "exprs.csv"

    if eset.has_counts:
        _write_csv(eset.to_frame(use_counts=True), directory / "counts.csv", _FEATURE_INDEX_LABEL)
        files["counts"] = "counts.csv"

    _write_csv(eset.cell_metadata, directory / "cell_metadata.csv", _CELL_INDEX_LABEL)
    files["cell_metadata"] = "cell_metadata.csv"
    _write_csv(eset.feature_metadata, directory / "feature_metadata.csv", _FEATURE_INDEX_LABEL)
    files["feature_metadata"] = "feature_metadata.csv"

    distances: dict[str, dict[str, str]] = {}
    # Stale matrices raise here rather than being written out of order
    for axis, dm, label in (
        ("cells", eset.cell_distances, _CELL_INDEX_LABEL),
        ("features", eset.feature_distances, _FEATURE_INDEX_LABEL),
    ):
        if dm is None:
            continue
        filename = f"{axis[:-1]}_distances.csv"
        _write_csv(dm.to_frame(), directory / filename, label)
        distances[axis] = {"file": filename, "metric": dm.metric}

    manifest: dict[str, Any] = {
        "format_version": BUNDLE_FORMAT_VERSION,
        "cellqc_version": __version__,
        "n_features": eset.n_features,
        "n_cells": eset.n_cells,
        "lower_detection_limit": eset.lower_detection_limit,
        "has_counts": eset.has_counts,
        "files": files,
        "distances": distances,
        "provenance": eset.provenance,
    }
    manifest_path = directory / MANIFEST_NAME
    try:
        atomic_write_json(manifest_path, manifest)
    except OSError as e:
        raise OSError(f"Failed to write {manifest_path}: {e}") from e

    logger.info(f"Wrote bundle ({eset.n_features} features x {eset.n_cells} cells) to {directory}")
    return manifest_path


def _read_matrix(path: Path, feature_ids: Optional[pd.Index], cell_ids: Optional[pd.Index]) -> pd.DataFrame:
    frame = read_table(path).rename_axis(None)
    if feature_ids is not None and (not frame.index.equals(feature_ids) or not frame.columns.equals(cell_ids)):
        raise ValueError(f"{path} labels do not match exprs.csv")
    return frame


def read_bundle(directory: Union[str, Path]) -> ExpressionSet:
    """
    Restore an ExpressionSet written by write_bundle().

    Raises:
        FileNotFoundError: If the manifest or a listed file is missing
        ValueError: If the manifest is malformed, from a newer format, or the
            files disagree with it
    """
    directory = Path(directory)
    manifest_path = directory / MANIFEST_NAME
    if not manifest_path.exists():
        raise FileNotFoundError(f"No {MANIFEST_NAME} in {directory}; not a cellqc bundle")

    try:
        manifest = json.loads(manifest_path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed manifest {manifest_path}: {e}") from e

    version = manifest.get("format_version")
    if version != BUNDLE_FORMAT_VERSION:
        raise ValueError(
            f"Unsupported bundle format_version {version} (expected {BUNDLE_FORMAT_VERSION})"
        )

    files = manifest["files"]
    exprs = _read_matrix(directory / files["exprs"], None, None)
    feature_ids, cell_ids = exprs.index, exprs.columns
    if exprs.shape != (manifest["n_features"], manifest["n_cells"]):
        raise ValueError(
            f"exprs.csv has shape {exprs.shape}, manifest says "
            f"({manifest['n_features']}, {manifest['n_cells']})"
        )

    counts = None
    if "counts" in files:
        counts = _read_matrix(directory / files["counts"], feature_ids, cell_ids).to_numpy(dtype=float)

    cell_metadata = read_table(directory / files["cell_metadata"]).rename_axis(None)
    feature_metadata = read_table(directory / files["feature_metadata"]).rename_axis(None)

    eset = ExpressionSet(
        exprs=exprs.to_numpy(dtype=float),
        feature_ids=feature_ids,
        cell_ids=cell_ids,
        feature_metadata=feature_metadata,
        cell_metadata=cell_metadata,
        counts=counts,
        lower_detection_limit=manifest["lower_detection_limit"],
        provenance=manifest.get("provenance", {}),
    )

    for axis, entry in manifest.get("distances", {}).items():
        ids = cell_ids if axis == "cells" else feature_ids
        frame = _read_matrix(directory / entry["file"], ids, ids)
        dm = DistanceMatrix(frame.to_numpy(dtype=float), ids, entry["metric"])
        eset = eset.with_distances(axis, dm)

    logger.info(f"Read bundle ({eset.n_features} features x {eset.n_cells} cells) from {directory}")
    return eset
