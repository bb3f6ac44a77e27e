"""
Core visualization primitives: Figure wrapper and FigureCollection.

Figure bundles a matplotlib figure with the title/description used when it is
saved or embedded in a report; FigureCollection saves a named set of figures
in one go and renders a self-contained HTML QC report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from html import escape
from pathlib import Path
from typing import Iterator, Literal, Optional
import base64
import io
import logging

import matplotlib.figure
import matplotlib.pyplot as plt

from cellqc.utils.fileio import atomic_write_text

logger = logging.getLogger(__name__)

__all__ = ['Figure', 'FigureCollection', 'OutputFormat']

OutputFormat = Literal["png", "pdf", "svg", "html"]
_FORMATS = ("png", "pdf", "svg", "html")


@dataclass
class Figure:
    """
    A matplotlib figure with a title, description and metadata.

    Attributes
    ----------
    fig : matplotlib.figure.Figure
        The underlying figure object
    title : str
        Human-readable title for the figure
    description : str
        What the figure shows (used as the caption in reports)
    metadata : dict
        Additional metadata (creation time, parameters used, etc.)

    Examples
    --------
    >>> fig = viz.plot_depth_distribution(qc_eset)
    >>> fig.save("qc/depth.pdf")
    >>> fig.close()
    """
    fig: matplotlib.figure.Figure
    title: str
    description: str
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if "created_at" not in self.metadata:
            self.metadata["created_at"] = datetime.now().isoformat()

    def save(
        self,
        path: Path | str,
        format: Optional[OutputFormat] = None,
        dpi: int = 300,
        **kwargs
    ) -> Path:
        """
        Save figure to file.

        Parameters
        ----------
        path : Path or str
            Output file path. Format inferred from extension if not specified
            (unknown extensions fall back to png).
        format : str, optional
            Output format.
        dpi : int, default 300
            DPI for raster output.
        **kwargs
            Passed to ``Figure.savefig``.

        Returns
        -------
        Path
            The path where the figure was saved.
        """
        path = Path(path)
        if format is None:
            format = path.suffix.lstrip(".").lower()
            if format not in _FORMATS:
                format = "png"

        path.parent.mkdir(parents=True, exist_ok=True)
        save_kwargs = {"dpi": dpi, "bbox_inches": "tight", "facecolor": "white", **kwargs}

        if format == "html":
            img_b64 = self.to_base64(dpi=dpi)
            title = escape(self.title)
            atomic_write_text(path, f"""<!DOCTYPE html>
<html><head><title>{title}</title></head>
<body style="margin:0;display:flex;justify-content:center;align-items:center;min-height:100vh;background:#f5f5f5;">
<img src="data:image/png;base64,{img_b64}" alt="{title}">
</body></html>""")
        else:
            self.fig.savefig(path, format=format, **save_kwargs)

        logger.debug(f"Saved figure '{self.title}' to {path}")
        return path

    def to_base64(self, format: str = "png", dpi: int = 150) -> str:
        """Base64-encoded image data, for embedding in HTML."""
        buf = io.BytesIO()
        self.fig.savefig(buf, format=format, dpi=dpi, bbox_inches="tight", facecolor="white")
        return base64.b64encode(buf.getvalue()).decode()

    def close(self):
        """Close the figure to free memory."""
        plt.close(self.fig)


class FigureCollection:
    """
    Named, ordered collection of figures.

    Examples
    --------
    >>> collection = FigureCollection()
    >>> collection.add("depth", viz.plot_depth_distribution(qc))
    >>> collection.add("coverage", viz.plot_coverage_distribution(qc))
    >>> collection.save_all(Path("figures/"), format="pdf")
    >>> collection.to_html_report(Path("qc_report.html"), title="QC Report")
    """

    def __init__(self):
        self.figures: dict[str, Figure] = {}
        self._creation_order: list[str] = []

    def add(self, key: str, fig: Figure) -> "FigureCollection":
        """Add (or replace) a named figure; returns self for chaining."""
        self.figures[key] = fig
        if key not in self._creation_order:
            self._creation_order.append(key)
        return self

    def get(self, key: str) -> Optional[Figure]:
        return self.figures.get(key)

    def __getitem__(self, key: str) -> Figure:
        return self.figures[key]

    def __len__(self) -> int:
        return len(self.figures)

    def __iter__(self) -> Iterator[tuple[str, Figure]]:
        """Iterate in creation order."""
        for key in self._creation_order:
            yield key, self.figures[key]

    def save_all(
        self,
        output_dir: Path | str,
        format: OutputFormat = "png",
        dpi: int = 300
    ) -> list[Path]:
        """Save every figure as ``<output_dir>/<key>.<format>``."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        return [fig.save(output_dir / f"{key}.{format}", format=format, dpi=dpi) for key, fig in self]

    def to_html_report(
        self,
        output_path: Path | str,
        title: str = "QC Report",
        description: str = "",
    ) -> Path:
        """
        Write a self-contained HTML report with every figure embedded.

        Parameters
        ----------
        output_path : Path or str
            Output HTML file path.
        title : str
            Report title.
        description : str
            Text shown under the title.

        Returns
        -------
        Path
            Path to the generated report.
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        sections = []
        nav_links = []
        for key, fig in self:
            img_b64 = fig.to_base64(format="png", dpi=150)
            fig_title = escape(fig.title)
            nav_links.append(f'<a href="#{escape(key)}">{fig_title}</a>')
            sections.append(f"""
            <section class="figure-section" id="{escape(key)}">
                <h2>{fig_title}</h2>
                <p class="description">{escape(fig.description)}</p>
                <div class="figure-content"><img src="data:image/png;base64,{img_b64}" alt="{fig_title}"></div>
            </section>""")

        html = _REPORT_TEMPLATE
        html = html.replace("{{title}}", escape(title))
        html = html.replace("{{description}}", escape(description))
        html = html.replace("{{timestamp}}", datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
        html = html.replace("{{nav}}", "\n".join(nav_links))
        html = html.replace("{{figures}}", "\n".join(sections))

        atomic_write_text(output_path, html)
        logger.info(f"Wrote HTML report with {len(self)} figures to {output_path}")
        return output_path

    def close_all(self):
        """Close all figures and empty the collection."""
        for _, fig in self:
            fig.close()
        self.figures.clear()
        self._creation_order.clear()


_REPORT_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{{title}}</title>
    <style>
        :root { --bg: #fafafa; --fg: #1a1a1a; --accent: #2563eb; --border: #e5e7eb; }
        * { box-sizing: border-box; }
        body {
            font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
            line-height: 1.6; color: var(--fg); background: var(--bg); margin: 0; padding: 2rem;
        }
        .container { max-width: 1200px; margin: 0 auto; }
        header { margin-bottom: 2rem; padding-bottom: 1rem; border-bottom: 2px solid var(--border); }
        h1 { font-size: 2rem; font-weight: 600; margin: 0 0 0.5rem 0; }
        .timestamp { color: #6b7280; font-size: 0.875rem; }
        nav { background: #fff; padding: 1rem; border-radius: 8px; margin-bottom: 1.5rem; }
        nav a { display: block; color: var(--accent); text-decoration: none; font-size: 0.875rem; }
        .figure-section {
            background: #fff; border-radius: 8px; padding: 1.5rem; margin-bottom: 1.5rem;
            box-shadow: 0 1px 3px rgba(0,0,0,0.1);
        }
        .figure-section h2 { font-size: 1.25rem; font-weight: 600; margin: 0 0 0.5rem 0; }
        .description { color: #6b7280; font-size: 0.875rem; margin: 0 0 1rem 0; }
        .figure-content { display: flex; justify-content: center; overflow-x: auto; }
        .figure-content img { max-width: 100%; height: auto; }
    </style>
</head>
<body>
    <div class="container">
        <header>
            <h1>{{title}}</h1>
            <p class="timestamp">Generated: {{timestamp}}</p>
            <p>{{description}}</p>
        </header>
        <nav>{{nav}}</nav>
        <main>
            {{figures}}
        </main>
    </div>
</body>
</html>"""
