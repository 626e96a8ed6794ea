#!/usr/bin/env python3
"""
Show the most frequent subcategories of a finished job.

Sorting and trimming are kept out of the job itself; this reads a committed
output directory and ranks it, optionally saving a bar chart.
"""

import argparse
import sys
from typing import Dict, List, Tuple

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import numpy as np

from category_mr.common.errors import InfrastructureError
from category_mr.common.sink import read_results


def top_n(totals: Dict[str, int], n: int) -> List[Tuple[str, int]]:
    """Highest totals first; ties broken by key so the ranking is stable"""
    return sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))[:n]


def plot_top_n(ranked: List[Tuple[str, int]], output_file: str, title: str = 'Top subcategories'):
    """Save a horizontal bar chart of the ranking"""
    labels = [key for key, _ in ranked]
    counts = [count for _, count in ranked]
    positions = np.arange(len(ranked))

    fig, ax = plt.subplots(figsize=(10, max(3, 0.3 * len(ranked) + 1)))
    ax.barh(positions, counts, color='#4ECDC4')
    ax.set_yticks(positions)
    ax.set_yticklabels(labels, fontsize=8)
    ax.invert_yaxis()
    ax.set_xlabel('Products')
    ax.set_title(title)
    ax.grid(axis='x', alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_file, dpi=150)
    plt.close(fig)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog='category-top', description='Rank a category count output')
    parser.add_argument('output_dir', help='Committed output directory of a category count job')
    parser.add_argument('-n', '--top', type=int, default=100, help='Number of rows to show (default: 100)')
    parser.add_argument('--plot', help='Save a bar chart to this image file')
    args = parser.parse_args(argv)

    try:
        totals = read_results(args.output_dir)
    except InfrastructureError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    ranked = top_n(totals, args.top)
    for key, count in ranked:
        print(f"{key}\t{count}")

    if args.plot and ranked:
        plot_top_n(ranked, args.plot)
        print(f"Saved plot to {args.plot}", file=sys.stderr)
    return 0


def run():
    sys.exit(main())


if __name__ == '__main__':
    run()
