"""
Quality control visualizations for single-cell expression data.

Design Philosophy:
    With hundreds to thousands of cells, per-cell views are noise. These plots
    show DISTRIBUTIONS of the QC metrics with the MAD thresholds that drove
    filtering drawn on top, so the reader can judge whether the cut-offs sit
    in a sensible place:

    - Are the depth/coverage outliers a distinct low tail, or an arbitrary slice?
    - Do spike-in reads dominate some cells (dying cells, failed lysis)?
    - Which features soak up most of the library (mitochondrial, ribosomal)?

All plotting methods read the columns written by calculate_qc_metrics() and
raise ValueError when they are missing.

Examples:
    >>> from cellqc.viz import QCVisualizer
    >>> viz = QCVisualizer(style="notebook")
    >>> report = viz.create_qc_report(qc_eset)
    >>> report.to_html_report("qc_report.html")
"""

from __future__ import annotations

from typing import Literal, Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy.cluster.hierarchy import leaves_list, linkage
from scipy.spatial.distance import squareform

from cellqc.core.expression_set import ExpressionSet
from cellqc.qc.outliers import MAD_NORMAL_SCALE, outlier_thresholds
from cellqc.viz.core import Figure, FigureCollection
from cellqc.viz.styles import Palette, configure_style, get_palette

__all__ = ['QCVisualizer', 'fmt_num']


def fmt_num(n: float) -> str:
    """Format number with scientific notation for large values."""
    if abs(n) >= 1e6:
        return f'{n:.2e}'
    elif abs(n) >= 1000:
        return f'{n:,.0f}'
    else:
        return f'{n:.1f}'


def _require(table: pd.DataFrame, columns: Sequence[str], name: str) -> None:
    missing = [c for c in columns if c not in table.columns]
    if missing:
        raise ValueError(f"{name} is missing QC columns {missing}; run calculate_qc_metrics() first")


def _mad_params(eset: ExpressionSet) -> tuple[float, float]:
    record = eset.provenance.get("qc_metrics", {})
    return record.get("mad_multiplier", 5.0), record.get("mad_scale", MAD_NORMAL_SCALE)


class QCVisualizer:
    """
    Aggregate visualizations of per-cell and per-feature QC metrics.

    Every method returns a Figure; nothing is shown or saved implicitly.
    """

    def __init__(
        self,
        palette: str | Palette = "default",
        style: Literal["paper", "presentation", "notebook"] = "paper"
    ):
        self.palette = get_palette(palette)
        self.style = style
        configure_style(style=style, palette=self.palette)

    # =========================================================================
    # PER-CELL METRICS
    # =========================================================================

    def _metric_histogram(
        self,
        eset: ExpressionSet,
        column: str,
        flag_column: str,
        xlabel: str,
        title: str,
        figsize: tuple[float, float],
        tail: Literal["both", "higher"] = "both",
    ) -> tuple[plt.Figure, int, tuple[float, float]]:
        meta = eset.cell_metadata
        _require(meta, [column, flag_column], "cell_metadata")

        values = meta[column].to_numpy(dtype=float)
        finite = values[np.isfinite(values)]
        flagged = meta[flag_column].to_numpy(dtype=bool)
        nmads, scale = _mad_params(eset)
        lower, upper = outlier_thresholds(finite, nmads=nmads, scale=scale)

        fig, ax = plt.subplots(figsize=figsize)
        if finite.size:
            bins = min(50, max(10, finite.size // 5))
            ax.hist(finite[~flagged[np.isfinite(values)]], bins=bins, color=self.palette.kept,
                    alpha=0.8, edgecolor='white', label=f'Kept (n={int((~flagged).sum()):,})')
            if flagged.any():
                ax.hist(finite[flagged[np.isfinite(values)]], bins=bins, color=self.palette.filtered,
                        alpha=0.8, edgecolor='white', label=f'Flagged (n={int(flagged.sum()):,})')

        if np.isfinite(lower) and tail == "both":
            ax.axvline(lower, color=self.palette.threshold, linestyle='--', linewidth=1.5,
                       label=f'{nmads:g} MADs: {fmt_num(lower)} / {fmt_num(upper)}')
        if np.isfinite(upper):
            ax.axvline(upper, color=self.palette.threshold, linestyle='--', linewidth=1.5,
                       label=None if tail == "both" else f'{nmads:g} MADs: {fmt_num(upper)}')

        n_nonfinite = values.size - finite.size
        if n_nonfinite:
            ax.text(0.02, 0.98, f"{n_nonfinite:,} cells with non-finite values not shown",
                    transform=ax.transAxes, va='top', fontsize=8,
                    bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

        ax.set_xlabel(xlabel)
        ax.set_ylabel("Cells")
        ax.set_title(title)
        ax.legend(loc='upper right', fontsize=8)
        fig.tight_layout()
        return fig, int(flagged.sum()), (lower, upper)

    def plot_depth_distribution(
        self,
        eset: ExpressionSet,
        figsize: tuple[float, float] = (8, 5)
    ) -> Figure:
        """Histogram of log10 library size with the MAD outlier thresholds."""
        fig, n_flagged, (lower, upper) = self._metric_histogram(
            eset, "log10_depth", "filter_on_depth",
            xlabel="log10(total counts)", title="Library Size", figsize=figsize,
        )
        return Figure(
            fig=fig,
            title="Library Size Distribution",
            description=f"{n_flagged:,} of {eset.n_cells:,} cells outside the MAD thresholds on log10 depth",
            metadata={"lower": lower, "upper": upper, "n_flagged": n_flagged},
        )

    def plot_coverage_distribution(
        self,
        eset: ExpressionSet,
        figsize: tuple[float, float] = (8, 5)
    ) -> Figure:
        """Histogram of detected features per cell with the MAD outlier thresholds."""
        fig, n_flagged, (lower, upper) = self._metric_histogram(
            eset, "coverage", "filter_on_coverage",
            xlabel=f"Features detected (> {eset.lower_detection_limit:g})",
            title="Coverage", figsize=figsize,
        )
        return Figure(
            fig=fig,
            title="Coverage Distribution",
            description=f"{n_flagged:,} of {eset.n_cells:,} cells outside the MAD thresholds on coverage",
            metadata={"lower": lower, "upper": upper, "n_flagged": n_flagged},
        )

    def plot_control_fraction(
        self,
        eset: ExpressionSet,
        figsize: tuple[float, float] = (8, 5)
    ) -> Figure:
        """Histogram of % reads from control features with the upper MAD threshold."""
        fig, n_flagged, (_, upper) = self._metric_histogram(
            eset, "pct_reads_from_controls", "filter_on_pct_reads_from_controls",
            xlabel="% reads from control features", title="Control Reads",
            figsize=figsize, tail="higher",
        )
        return Figure(
            fig=fig,
            title="Control Read Fraction",
            description=f"{n_flagged:,} cells above the upper MAD threshold on % control reads",
            metadata={"upper": upper, "n_flagged": n_flagged},
        )

    def plot_depth_vs_coverage(
        self,
        eset: ExpressionSet,
        flag_columns: Sequence[str] = ("filter_on_depth", "filter_on_coverage"),
        figsize: tuple[float, float] = (7, 6)
    ) -> Figure:
        """
        Scatter of library size against coverage, colored by QC status.

        Healthy cells follow a tight saturating curve; damaged cells fall
        below it (few features for their depth).
        """
        meta = eset.cell_metadata
        _require(meta, ["depth", "coverage", *flag_columns], "cell_metadata")

        flagged = np.zeros(eset.n_cells, dtype=bool)
        for column in flag_columns:
            flagged |= meta[column].to_numpy(dtype=bool)

        depth = meta["depth"].to_numpy(dtype=float)
        coverage = meta["coverage"].to_numpy(dtype=float)

        fig, ax = plt.subplots(figsize=figsize)
        for is_flagged, label in ((False, "Kept"), (True, "Flagged")):
            mask = flagged == is_flagged
            if mask.any():
                ax.scatter(depth[mask], coverage[mask], s=12, alpha=0.6, edgecolors='none',
                           c=self.palette.status[is_flagged], label=f'{label} (n={int(mask.sum()):,})')

        if (depth > 0).any():
            ax.set_xscale('log')
        ax.set_xlabel("Total counts")
        ax.set_ylabel("Features detected")
        ax.set_title("Depth vs Coverage")
        ax.legend(loc='lower right', fontsize=8)
        fig.tight_layout()

        return Figure(
            fig=fig,
            title="Depth vs Coverage",
            description=f"{int(flagged.sum()):,} cells flagged by {', '.join(flag_columns)}",
            metadata={"flag_columns": list(flag_columns)},
        )

    # =========================================================================
    # PER-FEATURE METRICS
    # =========================================================================

    def plot_highest_expression(
        self,
        eset: ExpressionSet,
        n: int = 30,
        figsize: tuple[float, float] = (8, 9)
    ) -> Figure:
        """
        Per-cell % of counts taken by the n features with the most total reads.

        One box per feature; features are ordered by total reads, controls
        colored separately.
        """
        meta = eset.feature_metadata
        _require(meta, ["total_reads", "is_feature_control"], "feature_metadata")
        if n <= 0:
            raise ValueError(f"n must be positive, got {n}")

        matrix = eset.counts if eset.counts is not None else eset.exprs
        depth = np.nansum(matrix, axis=0)
        safe_depth = np.where(depth > 0, depth, 1.0)

        order = np.argsort(-meta["total_reads"].to_numpy(dtype=float), kind="stable")[:n]
        top_ids = eset.feature_ids[order]
        pct = matrix[order, :] / safe_depth * 100.0

        long = pd.DataFrame(pct.T, columns=top_ids).melt(var_name="feature", value_name="pct")
        is_control = meta["is_feature_control"].to_numpy(dtype=bool)[order]
        colors = {fid: (self.palette.control if ctrl else self.palette.biological)
                  for fid, ctrl in zip(top_ids, is_control)}

        fig, ax = plt.subplots(figsize=figsize)
        sns.boxplot(data=long, x="pct", y="feature", hue="feature", palette=colors,
                    order=list(top_ids), orient="h", fliersize=1, linewidth=0.8,
                    legend=False, ax=ax)
        ax.set_xlabel("% of total counts in cell")
        ax.set_ylabel("")
        ax.set_title(f"Top {len(top_ids)} Features by Total Reads")
        fig.tight_layout()

        share = 100.0 * meta["total_reads"].to_numpy(dtype=float)[order].sum() / max(float(np.nansum(matrix)), 1.0)
        return Figure(
            fig=fig,
            title="Highest Expressed Features",
            description=f"Top {len(top_ids)} features account for {share:.1f}% of all counts",
            metadata={"features": top_ids.tolist()},
        )

    def plot_expression_frequency(
        self,
        eset: ExpressionSet,
        figsize: tuple[float, float] = (7, 6)
    ) -> Figure:
        """Mean expression against % of cells in which each feature is detected."""
        meta = eset.feature_metadata
        _require(meta, ["mean_exprs", "n_cells_exprs", "is_feature_control"], "feature_metadata")

        mean_exprs = meta["mean_exprs"].to_numpy(dtype=float)
        pct_cells = 100.0 * meta["n_cells_exprs"].to_numpy(dtype=float) / max(eset.n_cells, 1)
        is_control = meta["is_feature_control"].to_numpy(dtype=bool)

        fig, ax = plt.subplots(figsize=figsize)
        ax.scatter(mean_exprs[~is_control], pct_cells[~is_control], s=6, alpha=0.4,
                   c=self.palette.biological, edgecolors='none',
                   label=f'Biological (n={int((~is_control).sum()):,})')
        if is_control.any():
            ax.scatter(mean_exprs[is_control], pct_cells[is_control], s=14, alpha=0.9,
                       c=self.palette.control, edgecolors='none',
                       label=f'Control (n={int(is_control.sum()):,})')
        ax.set_xlabel("Mean expression")
        ax.set_ylabel("% cells expressing")
        ax.set_ylim(-2, 102)
        ax.set_title("Expression Frequency")
        ax.legend(loc='lower right', fontsize=8)
        fig.tight_layout()

        n_undetected = int((pct_cells == 0).sum())
        return Figure(
            fig=fig,
            title="Expression Frequency vs Mean",
            description=f"{n_undetected:,} of {eset.n_features:,} features not detected in any cell",
        )

    # =========================================================================
    # DISTANCES
    # =========================================================================

    def plot_distance_heatmap(
        self,
        eset: ExpressionSet,
        axis: Literal["cells", "features"] = "cells",
        cluster: bool = True,
        figsize: tuple[float, float] = (8, 7)
    ) -> Figure:
        """
        Heatmap of the attached distance matrix.

        With cluster=True rows/columns are ordered by average-linkage
        hierarchical clustering so that groups show up as blocks.

        Raises:
            ValueError: If no distance matrix is attached on that axis
            StaleDistanceError: If the attached matrix is stale
        """
        if axis not in ("cells", "features"):
            raise ValueError(f"axis must be 'cells' or 'features', got '{axis}'")
        dm = eset.cell_distances if axis == "cells" else eset.feature_distances
        if dm is None:
            raise ValueError(f"No {axis[:-1]} distances attached; run set_{axis[:-1]}_distances() first")

        values = dm.values
        order = np.arange(len(dm))
        if cluster and len(dm) > 2 and np.isfinite(values).all():
            order = leaves_list(linkage(squareform(values, checks=False), method="average"))
        ordered = values[np.ix_(order, order)]

        fig, ax = plt.subplots(figsize=figsize)
        image = ax.imshow(ordered, cmap=self.palette.sequential, aspect='auto', interpolation='nearest')
        fig.colorbar(image, ax=ax, label=f"{dm.metric} distance")
        if len(dm) <= 40:
            labels = dm.ids[order]
            ax.set_xticks(range(len(labels)), labels, rotation=90, fontsize=6)
            ax.set_yticks(range(len(labels)), labels, fontsize=6)
        else:
            ax.set_xticks([])
            ax.set_yticks([])
        ax.set_title(f"{axis.capitalize()} Distances ({dm.metric})")
        fig.tight_layout()

        return Figure(
            fig=fig,
            title=f"{axis.capitalize()} Distance Heatmap",
            description=f"{len(dm):,} x {len(dm):,} {dm.metric} distances"
                        + (", hierarchically ordered" if cluster else ""),
            metadata={"metric": dm.metric, "order": dm.ids[order].tolist()},
        )

    # =========================================================================
    # REPORT
    # =========================================================================

    def create_qc_report(
        self,
        eset: ExpressionSet,
        n_top_features: int = 30,
    ) -> FigureCollection:
        """
        All applicable QC figures for a container, in reading order.

        Control-read and distance figures are included only when controls /
        distance matrices are present.
        """
        collection = FigureCollection()
        collection.add("depth", self.plot_depth_distribution(eset))
        collection.add("coverage", self.plot_coverage_distribution(eset))
        collection.add("depth_vs_coverage", self.plot_depth_vs_coverage(eset))

        controls = eset.provenance.get("qc_metrics", {}).get("controls", [])
        if controls:
            collection.add("control_fraction", self.plot_control_fraction(eset))

        collection.add("highest_expression", self.plot_highest_expression(eset, n=n_top_features))
        collection.add("expression_frequency", self.plot_expression_frequency(eset))

        if eset.cell_distances is not None:
            collection.add("cell_distances", self.plot_distance_heatmap(eset, axis="cells"))
        if eset.feature_distances is not None:
            collection.add("feature_distances", self.plot_distance_heatmap(eset, axis="features"))
        return collection
