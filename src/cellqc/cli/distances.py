"""
cellqc distances command - attach a cell or feature distance matrix to a bundle.

Usage:
    cellqc distances --input results/qc --output results/qc_dist --metric canberra
"""

import argparse
from pathlib import Path

from cellqc.core.distances import set_cell_distances, set_feature_distances
from cellqc.io.writers import read_bundle, write_bundle

# scipy.spatial.distance.cdist metrics offered on the command line
METRICS = [
    "euclidean", "canberra", "cityblock", "cosine", "correlation",
    "chebyshev", "braycurtis", "sqeuclidean",
]


def register_parser(subparsers) -> None:
    """Register the distances subcommand."""
    parser = subparsers.add_parser(
        "distances",
        help="Compute cell or feature distances for a bundle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="""
Compute an all-pairs distance matrix between cells (or features) and write a
bundle with the matrix attached.

Examples:
  cellqc distances --input results/qc --metric canberra
  cellqc distances --input results/qc --output results/qc_feat --axis features --use-counts
        """
    )
    parser.add_argument("--input", "-i", type=Path, required=True, help="Input bundle directory")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output bundle directory (default: overwrite input)")
    parser.add_argument("--axis", choices=["cells", "features"], default="cells",
                        help="Which axis to compare (default: cells)")
    parser.add_argument("--metric", choices=METRICS, default="euclidean",
                        help="Distance metric (default: euclidean)")
    parser.add_argument("--use-counts", action="store_true", default=False,
                        help="Compute on counts instead of exprs")
    parser.add_argument("--chunk-size", type=int, default=500,
                        help="Rows per computation chunk (default: 500)")
    parser.set_defaults(func=run_distances)


def run_distances(args: argparse.Namespace) -> int:
    """Execute the distances command."""
    print(f"Loading bundle: {args.input}")
    eset = read_bundle(args.input)
    print(f"  {eset.n_features:,} features x {eset.n_cells:,} cells")

    compute = set_cell_distances if args.axis == "cells" else set_feature_distances
    eset = compute(
        eset,
        metric=args.metric,
        use_counts=args.use_counts,
        chunk_size=args.chunk_size,
        verbose=True,
    )
    n = eset.n_cells if args.axis == "cells" else eset.n_features
    print(f"Computed {n:,} x {n:,} {args.metric} distances between {args.axis}")

    output = args.output or args.input
    write_bundle(eset, output)
    print(f"Wrote bundle to {output}")
    return 0
