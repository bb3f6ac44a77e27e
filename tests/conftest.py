"""
Pytest configuration and shared fixtures.

Provides a synthetic single-cell count generator with ERCC-like spike-ins and
a handful of damaged cells, plus small hand-checkable containers.
"""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from cellqc.core.expression_set import ExpressionSet


def generate_synthetic_counts(
    n_genes: int = 200,
    n_cells: int = 60,
    n_spikes: int = 10,
    n_damaged: int = 3,
    seed: int = 42,
) -> ExpressionSet:
    """
    Generate a synthetic single-cell count matrix with realistic properties.

    Args:
        n_genes: Number of endogenous genes
        n_cells: Number of cells
        n_spikes: Number of spike-in control features (IDs "ERCC-000NN")
        n_damaged: Number of damaged cells (the LAST n_damaged cells)
        seed: Random seed for reproducibility

    Returns:
        ExpressionSet with counts, derived log-CPM exprs and cell metadata
        (plate, is_damaged)

    Design:
        - Gene means are log-normal; counts are negative binomial (size 5)
        - Per-cell capture efficiency varies log-normally (sigma 0.15)
        - Spike-ins are added at a constant amount per cell, independent of
          capture efficiency
        - Damaged cells keep 0.1% of their endogenous mRNA, so their depth is
          low and spike-ins dominate their library
    """
    rng = np.random.RandomState(seed)

    gene_means = rng.lognormal(mean=1.5, sigma=1.0, size=n_genes)
    efficiency = rng.lognormal(mean=0.0, sigma=0.15, size=n_cells)
    damaged = np.zeros(n_cells, dtype=bool)
    if n_damaged:
        damaged[-n_damaged:] = True
    efficiency[damaged] *= 0.001

    size = 5.0
    mu = np.outer(gene_means, efficiency)
    genes = rng.negative_binomial(size, size / (size + mu))

    spikes = rng.poisson(20.0, size=(n_spikes, n_cells))

    counts = np.vstack([genes, spikes]).astype(float)
    feature_ids = [f"GENE_{i:04d}" for i in range(n_genes)] + [f"ERCC-{i + 1:05d}" for i in range(n_spikes)]
    cell_ids = [f"CELL_{j:03d}" for j in range(n_cells)]

    cell_metadata = pd.DataFrame({
        "plate": [f"P{j % 2 + 1}" for j in range(n_cells)],
        "is_damaged": damaged,
    }, index=cell_ids)

    return ExpressionSet.create(
        counts=pd.DataFrame(counts, index=feature_ids, columns=cell_ids),
        cell_metadata=cell_metadata,
    )


@pytest.fixture
def synthetic_eset():
    """200 genes + 10 spike-ins x 60 cells, last 3 cells damaged."""
    return generate_synthetic_counts()


@pytest.fixture
def spike_ids(synthetic_eset):
    return [fid for fid in synthetic_eset.feature_ids if fid.startswith("ERCC-")]


@pytest.fixture
def tiny_eset():
    """The 2 x 2 hand-checkable container: counts [[5, 0], [3, 2]]."""
    return ExpressionSet.create(
        counts=pd.DataFrame(
            [[5, 0], [3, 2]],
            index=["GENE_A", "GENE_B"],
            columns=["cell1", "cell2"],
        ),
    )


def write_counts_csv(eset: ExpressionSet, path):
    """Save the counts of an ExpressionSet as a features x cells CSV."""
    eset.to_frame(use_counts=True).to_csv(path)
    return path
