"""
Visualization CLI subcommand.

Usage:
    cellqc viz --input results/qc --output figures/qc
    cellqc viz --input results/qc --output figures/qc --format pdf --report
"""

import argparse
from pathlib import Path

from cellqc.io.writers import read_bundle


def register_parser(subparsers) -> None:
    """Register the viz subcommand."""
    parser = subparsers.add_parser(
        "viz",
        help="Generate QC figures and an HTML report from a bundle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="""
Render QC figures (library size, coverage, control fraction, highest-expressed
features, expression frequency, distance heatmaps) from a bundle written by
'cellqc qc'.

Examples:
  cellqc viz --input results/qc --output figures/qc
  cellqc viz --input results/qc --output figures/qc --format pdf --style presentation
        """
    )
    parser.add_argument("--input", "-i", type=Path, required=True, help="Bundle directory")
    parser.add_argument("--output", "-o", type=Path, required=True, help="Output directory for figures")
    parser.add_argument("--format", "-f", choices=["png", "pdf", "svg"], default="png",
                        help="Figure format (default: png)")
    parser.add_argument("--dpi", type=int, default=300, help="DPI for raster formats (default: 300)")
    parser.add_argument("--style", choices=["paper", "presentation", "notebook"], default="paper",
                        help="Visual style (default: paper)")
    parser.add_argument("--palette", choices=["default", "colorblind", "print"], default="default",
                        help="Color palette (default: default)")
    parser.add_argument("--top-features", type=int, default=30,
                        help="Features shown in the highest-expression plot (default: 30)")
    parser.add_argument("--report", action="store_true", default=False,
                        help="Also write report.html with all figures embedded")
    parser.set_defaults(func=run_viz)


def run_viz(args: argparse.Namespace) -> int:
    """Execute the viz command."""
    import matplotlib
    matplotlib.use("Agg")

    from cellqc.viz.qc import QCVisualizer

    print(f"Loading bundle: {args.input}")
    eset = read_bundle(args.input)

    viz = QCVisualizer(palette=args.palette, style=args.style)
    collection = viz.create_qc_report(eset, n_top_features=args.top_features)

    saved = collection.save_all(args.output, format=args.format, dpi=args.dpi)
    for path in saved:
        print(f"  {path}")
    if args.report:
        report_path = collection.to_html_report(
            args.output / "report.html",
            title="Single-cell QC Report",
            description=f"{eset.n_features:,} features x {eset.n_cells:,} cells from {args.input}",
        )
        print(f"  {report_path}")
    collection.close_all()

    print(f"Wrote {len(saved)} figures to {args.output}")
    return 0
