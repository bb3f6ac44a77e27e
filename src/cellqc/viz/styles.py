"""
Consistent visual styles for single-cell QC figures.

Domain Conventions
------------------
- Kept cells = Blue (#2563eb), Filtered cells = Red (#ef4444)
- Control features (spike-ins) = Orange (#f97316), biological = Teal (#0d9488)
- MAD thresholds = dashed gray lines
- Distances = sequential colormap (viridis)
- All colorblind-safe palettes

Perceptual Principles
---------------------
- Semantic color usage (red = removed, blue = kept)
- Same colors for the same concept across every QC figure
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import matplotlib.pyplot as plt
import seaborn as sns

__all__ = ['Palette', 'PALETTES', 'configure_style', 'get_palette']


@dataclass(frozen=True)
class Palette:
    """
    Color palette for QC visualizations.

    Attributes
    ----------
    kept : str
        Cells/features passing QC
    filtered : str
        Cells/features flagged for removal
    control : str
        Control features (ERCC spike-ins, mitochondrial genes)
    biological : str
        Non-control (endogenous) features
    threshold : str
        Outlier threshold lines
    neutral : str
        Non-differentiated elements
    diverging : str
        Colormap name for signed data
    sequential : str
        Colormap name for magnitudes (distances, densities)
    """
    kept: str = "#2563eb"        # Blue-600
    filtered: str = "#ef4444"    # Red-500
    control: str = "#f97316"     # Orange-500
    biological: str = "#0d9488"  # Teal-600
    threshold: str = "#6b7280"   # Gray-500
    neutral: str = "#9ca3af"     # Gray-400
    diverging: str = "RdBu_r"
    sequential: str = "viridis"

    @property
    def status(self) -> dict[bool, str]:
        """Color mapping for a boolean 'flagged for removal' column."""
        return {False: self.kept, True: self.filtered}

    def for_groups(self, groups: list[str]) -> list[str]:
        """Categorical colors for arbitrary groups (plates, batches)."""
        colors = sns.color_palette("Set2", max(len(groups), 1)).as_hex()
        return [colors[i % len(colors)] for i in range(len(groups))]


# Predefined palettes
PALETTES = {
    "default": Palette(),
    "colorblind": Palette(
        kept="#0077bb",
        filtered="#cc3311",
        control="#ee7733",
        biological="#009988",
        threshold="#555555",
        neutral="#bbbbbb",
    ),
    "print": Palette(
        kept="#1a1a1a",
        filtered="#999999",
        control="#4d4d4d",
        biological="#333333",
        threshold="#000000",
        neutral="#cccccc",
        diverging="RdGy",
        sequential="Greys",
    ),
}

# font size, title size, tick size, dpi, line width, seaborn context
_STYLE_PARAMS = {
    "paper": (10, 11, 9, 300, 1.0, "paper"),
    "presentation": (14, 18, 12, 150, 2.0, "talk"),
    "notebook": (11, 12, 10, 100, 1.5, "notebook"),
}


def get_palette(palette: str | Palette = "default") -> Palette:
    """Resolve a palette name (unknown names fall back to "default")."""
    if isinstance(palette, Palette):
        return palette
    return PALETTES.get(palette, PALETTES["default"])


def configure_style(
    style: Literal["paper", "presentation", "notebook"] = "paper",
    palette: str | Palette = "default",
    font_scale: float = 1.0
) -> Palette:
    """
    Configure matplotlib and seaborn for consistent figure style.

    Parameters
    ----------
    style : {"paper", "presentation", "notebook"}
        Target medium.
    palette : str or Palette
        Color palette name or Palette instance.
    font_scale : float
        Multiplier for all font sizes.

    Returns
    -------
    Palette
        The configured color palette.

    Raises
    ------
    ValueError
        If style is unknown.
    """
    if style not in _STYLE_PARAMS:
        raise ValueError(f"style must be one of {sorted(_STYLE_PARAMS)}, got '{style}'")

    font, title, tick, dpi, line_width, context = _STYLE_PARAMS[style]

    sns.set_theme(style="whitegrid", context=context, font_scale=font_scale)
    plt.rcParams.update({
        "figure.facecolor": "white",
        "axes.facecolor": "white",
        "axes.edgecolor": "#333333",
        "axes.labelcolor": "#333333",
        "text.color": "#333333",
        "xtick.color": "#333333",
        "ytick.color": "#333333",
        "axes.spines.top": False,
        "axes.spines.right": False,
        "legend.frameon": False,
        "font.size": font * font_scale,
        "axes.titlesize": title * font_scale,
        "axes.labelsize": font * font_scale,
        "xtick.labelsize": tick * font_scale,
        "ytick.labelsize": tick * font_scale,
        "legend.fontsize": tick * font_scale,
        "figure.dpi": dpi,
        "savefig.dpi": dpi,
        "lines.linewidth": line_width,
    })

    return get_palette(palette)
