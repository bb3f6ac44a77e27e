"""
cellqc CLI - Command-line interface for single-cell quality control.

Commands:
    cellqc qc         - QC metrics, outlier flags, filtering, normalization
    cellqc distances  - Attach a cell/feature distance matrix to a bundle
    cellqc viz        - Generate QC figures and an HTML report
"""

import argparse
import logging
import sys
from typing import List, Optional

from cellqc import __version__
from cellqc.core.errors import CellQCError


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s - %(levelname)s - %(message)s')


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for cellqc."""
    parser = argparse.ArgumentParser(
        prog="cellqc",
        description="Quality control for single-cell expression data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  qc         Compute QC metrics, flag and optionally filter cells
  distances  Compute cell or feature distances for a bundle
  viz        Generate QC figures and an HTML report

Examples:
  cellqc qc --counts counts.csv --output results/qc --control-prefix ERCC=ERCC-
  cellqc distances --input results/qc --metric canberra
  cellqc viz --input results/qc --output figures --report
        """
    )
    parser.add_argument("--version", "-V", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only log warnings and errors")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from cellqc.cli import qc, distances, viz
    qc.register_parser(subparsers)
    distances.register_parser(subparsers)
    viz.register_parser(subparsers)

    raw_args = list(sys.argv[1:] if args is None else args)
    parsed_args = parser.parse_args(raw_args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    _configure_logging(parsed_args.verbose, parsed_args.quiet)
    # Subcommands use this to tell explicit CLI options from defaults
    parsed_args.raw_args = raw_args

    try:
        return parsed_args.func(parsed_args)
    except (CellQCError, ValueError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
