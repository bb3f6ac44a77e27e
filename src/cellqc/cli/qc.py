"""
cellqc qc command - QC metrics, outlier flags, filtering and normalization.

Usage:
    cellqc qc --counts counts.csv --output results/qc
    cellqc qc --config qc.yaml --filter --min-cells 3

qc_summary.json reports the flags on the loaded data. With --filter or
--normalize the QC columns in the bundle are recomputed on what remains, so
they describe the written cells, features and exprs.
"""

import argparse
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from cellqc.cli.config import (
    VALID_NORMALIZATION_METHODS,
    load_config,
    merge_config_with_args,
    validate_config,
)
from cellqc.core.expression_set import ExpressionSet
from cellqc.io.loaders import load_expression_set
from cellqc.io.writers import write_bundle
from cellqc.qc.filtering import CellFilter, FeatureFilter
from cellqc.qc.metrics import calculate_qc_metrics
from cellqc.stats.normalization import normalize
from cellqc.utils.fileio import atomic_write_json


def parse_control_prefix(value: str) -> tuple:
    """Parse NAME=PREFIX (or a bare PREFIX, named after itself)."""
    name, sep, prefix = value.partition("=")
    if not sep:
        prefix = name
        name = name.rstrip("-_") or name
    if not name or not prefix:
        raise argparse.ArgumentTypeError(f"expected NAME=PREFIX, got '{value}'")
    return name, prefix


def register_parser(subparsers) -> None:
    """Register the qc subcommand."""
    parser = subparsers.add_parser(
        "qc",
        help="Compute QC metrics, flag and optionally filter cells",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="""
Compute per-cell and per-feature QC metrics, flag outlier cells by MAD rules,
and write the annotated container as a bundle directory.

Examples:
  cellqc qc --counts counts.csv --output results/qc --control-prefix ERCC=ERCC-
  cellqc qc --counts counts.csv --output results/qc --filter --min-cells 3 --normalize log_cpm
  cellqc qc --config qc.yaml --mad-multiplier 3
        """
    )
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (CLI args override config values)")
    parser.add_argument("--counts", type=Path, default=None,
                        help="Count matrix CSV (features x cells)")
    parser.add_argument("--cell-metadata", type=Path, default=None,
                        help="Cell annotation CSV (first column = cell IDs)")
    parser.add_argument("--feature-metadata", type=Path, default=None,
                        help="Feature annotation CSV (first column = feature IDs)")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output bundle directory")
    parser.add_argument("--lower-detection-limit", type=float, default=0.0,
                        help="Values strictly above this count as detected (default: 0)")
    parser.add_argument("--mad-multiplier", type=float, default=5.0,
                        help="Flag cells more than this many MADs from the median (default: 5)")
    parser.add_argument("--control-prefix", type=parse_control_prefix, action="append", default=None,
                        metavar="NAME=PREFIX",
                        help="Control feature set: features whose ID starts with PREFIX (repeatable)")

    filtering = parser.add_argument_group("filtering")
    filtering.add_argument("--filter", dest="filter", action="store_true", default=False,
                           help="Remove flagged cells and undetected features")
    filtering.add_argument("--no-filter", dest="filter", action="store_false",
                           help="Only annotate (default)")
    filtering.add_argument("--exclude-columns", nargs="+",
                           default=["filter_on_depth", "filter_on_coverage"],
                           help="Boolean cell columns marking cells to drop")
    filtering.add_argument("--min-depth", type=float, default=None, help="Minimum total counts per cell")
    filtering.add_argument("--min-coverage", type=int, default=None, help="Minimum detected features per cell")
    filtering.add_argument("--max-pct-controls", type=float, default=None,
                           help="Maximum %% of reads from control features")
    filtering.add_argument("--min-cells", type=int, default=1,
                           help="Minimum cells in which a feature is detected (default: 1)")
    filtering.add_argument("--min-mean-exprs", type=float, default=None, help="Minimum mean expression")
    filtering.add_argument("--drop-controls", action="store_true", default=False,
                           help="Also remove control features")

    parser.add_argument("--normalize", choices=VALID_NORMALIZATION_METHODS, default=None,
                        help="Recompute exprs from counts after filtering")
    parser.add_argument("--prior-count", type=float, default=1.0,
                        help="Prior count for log-CPM (default: 1.0)")
    parser.add_argument("--report", action="store_true", default=False,
                        help="Also write QC figures and an HTML report to <output>/figures")
    parser.set_defaults(func=run_qc)


def _control_sets(eset: ExpressionSet, prefixes: Dict[str, str]) -> Optional[Dict[str, list]]:
    if not prefixes:
        return None
    sets = {}
    for name, prefix in prefixes.items():
        members = [fid for fid in eset.feature_ids if fid.startswith(prefix)]
        print(f"  Control set '{name}' (prefix '{prefix}'): {len(members)} features")
        if not members:
            print(f"  WARNING: no features start with '{prefix}'")
        sets[name] = members
    return sets


def _remaining_controls(controls: Optional[Dict[str, list]], eset: ExpressionSet) -> Optional[Dict[str, list]]:
    """Control sets restricted to features still present; empty sets are dropped."""
    if not controls:
        return None
    present = set(eset.feature_ids)
    remaining = {name: [fid for fid in members if fid in present] for name, members in controls.items()}
    return {name: members for name, members in remaining.items() if members} or None


def run_qc(args: argparse.Namespace) -> int:
    """Execute the qc command."""
    if args.config:
        print(f"Loading configuration from: {args.config}")
        config = load_config(args.config)
        validate_config(config)
        args = merge_config_with_args(config, args, getattr(args, "raw_args", None))

    if not args.counts:
        print("ERROR: --counts is required (via CLI or config file)")
        return 1
    if not args.output:
        print("ERROR: --output is required (via CLI or config file)")
        return 1

    start_time = datetime.now()
    print(f"\n{'=' * 70}")
    print("  Single-cell QC")
    print(f"{'=' * 70}")
    print(f"Started: {start_time.strftime('%Y-%m-%d %H:%M:%S')}\n")

    print(f"Loading: {args.counts}")
    eset = load_expression_set(
        args.counts,
        cell_metadata_path=args.cell_metadata,
        feature_metadata_path=args.feature_metadata,
        lower_detection_limit=args.lower_detection_limit,
        prior_count=args.prior_count,
    )
    print(f"  {eset.n_features:,} features x {eset.n_cells:,} cells")

    controls = _control_sets(eset, dict(args.control_prefix or []))
    qc = calculate_qc_metrics(eset, feature_controls=controls, mad_multiplier=args.mad_multiplier)

    cells = qc.cell_metadata
    summary = {
        "n_features": qc.n_features,
        "n_cells": qc.n_cells,
        "mad_multiplier": args.mad_multiplier,
        "lower_detection_limit": args.lower_detection_limit,
        "filter_on_depth": int(cells["filter_on_depth"].sum()),
        "filter_on_coverage": int(cells["filter_on_coverage"].sum()),
        "filter_on_pct_reads_from_controls": int(cells["filter_on_pct_reads_from_controls"].sum()),
        "median_depth": float(cells["depth"].median()),
        "median_coverage": float(cells["coverage"].median()),
    }
    print("\nQC metrics:")
    print(f"  Median depth: {summary['median_depth']:,.0f}")
    print(f"  Median coverage: {summary['median_coverage']:,.0f}")
    print(f"  Depth outliers: {summary['filter_on_depth']}")
    print(f"  Coverage outliers: {summary['filter_on_coverage']}")
    if controls:
        print(f"  Control-fraction outliers: {summary['filter_on_pct_reads_from_controls']}")

    args.output.mkdir(parents=True, exist_ok=True)
    if args.report:
        import matplotlib
        matplotlib.use("Agg")

        from cellqc.viz.qc import QCVisualizer

        figures_dir = args.output / "figures"
        report = QCVisualizer().create_qc_report(qc)
        report.save_all(figures_dir)
        report.to_html_report(figures_dir / "report.html", title="Single-cell QC Report",
                              description=f"{qc.n_features:,} features x {qc.n_cells:,} cells")
        report.close_all()
        print(f"\nFigures written to {figures_dir}")

    result = qc
    if args.filter:
        cell_filter = CellFilter(
            exclude_columns=args.exclude_columns,
            min_depth=args.min_depth,
            min_coverage=args.min_coverage,
            max_pct_controls=args.max_pct_controls,
        )
        feature_filter = FeatureFilter(
            min_cells=args.min_cells,
            min_mean_exprs=args.min_mean_exprs,
            drop_controls=args.drop_controls,
        )
        result = feature_filter.apply(cell_filter.apply(qc))
        summary["n_cells_kept"] = result.n_cells
        summary["n_features_kept"] = result.n_features
        print("\nFiltering:")
        print(f"  Cells kept: {result.n_cells:,}/{qc.n_cells:,}")
        print(f"  Features kept: {result.n_features:,}/{qc.n_features:,}")

    if args.normalize:
        result = normalize(result, method=args.normalize, prior_count=args.prior_count)
        summary["normalization"] = args.normalize
        print(f"\nNormalized exprs with {args.normalize}")

    if result is not qc:
        # Written metrics describe the cells, features and exprs that remain
        result = calculate_qc_metrics(
            result,
            feature_controls=_remaining_controls(controls, result),
            mad_multiplier=args.mad_multiplier,
        )

    write_bundle(result, args.output)
    atomic_write_json(args.output / "qc_summary.json", summary)

    elapsed = datetime.now() - start_time
    print(f"\nWrote bundle to {args.output}")
    print(f"Completed in {elapsed.total_seconds():.1f}s")
    return 0
