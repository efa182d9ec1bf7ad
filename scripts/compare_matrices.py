#!/usr/bin/env python
"""
Differential expression between two genes x cells tables.
"""
import argparse
import sys
from pathlib import Path

import pandas as pd

from scbiomarker.analysis import compare_groups, plot_volcano
from scbiomarker.analysis.differential import CORRECTIONS
from scbiomarker.export import write_workbook
from scbiomarker.utils import setup_logger


def read_matrix(path: Path) -> pd.DataFrame:
    """Genes x cells table, gene ids in the first column."""
    sep = ',' if '.csv' in path.suffixes else '\t'
    return pd.read_csv(path, sep=sep, index_col=0)


def main():
    parser = argparse.ArgumentParser(
        description="Compare two expression matrices gene by gene",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Welch t-test, Bonferroni correction
  python scripts/compare_matrices.py --a responders.tsv --b non_responders.tsv --out de.xlsx

  # Paired signed-rank test with Benjamini-Hochberg correction
  python scripts/compare_matrices.py --a pre.tsv --b post.tsv --out de.xlsx \\
    --test wilcoxon --paired --correction fdr_bh
        """
    )

    parser.add_argument('--a', type=str, required=True, help='Group A matrix (genes x cells)')
    parser.add_argument('--b', type=str, required=True, help='Group B matrix (genes x cells)')
    parser.add_argument('--out', type=str, required=True, help='Output .xlsx path')
    parser.add_argument(
        '--test',
        type=str,
        default='welch',
        choices=['welch', 'student', 'wilcoxon'],
        help='Per-gene test (default: welch)'
    )
    parser.add_argument(
        '--alternative',
        type=str,
        default='two-sided',
        choices=['two-sided', 'less', 'greater'],
        help='Alternative hypothesis (default: two-sided)'
    )
    parser.add_argument(
        '--correction',
        type=str,
        default='bonferroni',
        choices=list(CORRECTIONS),
        help='Multiple testing correction (default: bonferroni)'
    )
    parser.add_argument('--q-threshold', type=float, default=0.05, help='Significance threshold on q-values')
    parser.add_argument('--paired', action='store_true', help='Pair cells column by column')
    parser.add_argument('--log1p', action='store_true', help='Inputs are log1p-transformed')
    parser.add_argument('--volcano', action='store_true', help='Also save a volcano plot next to the workbook')

    args = parser.parse_args()

    path_a, path_b = Path(args.a), Path(args.b)
    for path in (path_a, path_b):
        if not path.exists():
            print(f"Error: Matrix not found: {path}")
            sys.exit(1)

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    logger = setup_logger('compare_matrices', out_path.parent)

    result = compare_groups(
        read_matrix(path_a),
        read_matrix(path_b),
        test=args.test,
        alternative=args.alternative,
        paired=args.paired,
        correction=args.correction,
        q_threshold=args.q_threshold,
        log1p_input=args.log1p,
        logger=logger,
    )

    write_workbook({f"{path_a.stem}_vs_{path_b.stem}": result}, out_path)
    logger.info(f"Results saved to {out_path}")

    if args.volcano:
        plot_path = plot_volcano(result, out_path.with_suffix('.png'), title=f"{path_a.stem} vs {path_b.stem}")
        logger.info(f"Volcano plot saved to {plot_path}")

    print(f"\nComparison complete! Results saved to: {out_path}")


if __name__ == "__main__":
    main()
