"""
Visualization of single-cell QC metrics.

Static matplotlib/seaborn figures for:
- Library size and coverage distributions with MAD thresholds
- Depth vs coverage, colored by QC status
- Control (spike-in) read fractions
- Highest-expressed features and expression frequency
- Cell or feature distance heatmaps

Examples
--------
>>> from cellqc.viz import QCVisualizer
>>> viz = QCVisualizer()
>>> fig = viz.plot_depth_distribution(qc_eset)
>>> fig.save("figures/depth.pdf")
"""

from cellqc.viz.core import Figure, FigureCollection
from cellqc.viz.styles import Palette, PALETTES, configure_style
from cellqc.viz.qc import QCVisualizer

__all__ = [
    "Figure",
    "FigureCollection",
    "Palette",
    "PALETTES",
    "configure_style",
    "QCVisualizer",
]
