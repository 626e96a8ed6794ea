#!/usr/bin/env python3
"""
Generate a synthetic product table export for benchmarks and demos.

Rows are written as ``row_key<TAB>json``. A configurable share of rows is
deliberately broken (bad JSON, missing or empty category) so the error
paths get exercised at scale.
"""

import json
import argparse
from typing import Dict, List

import numpy as np

TAXONOMY: Dict[str, List[List[str]]] = {
    "Clothing, Shoes & Jewelry": [
        ["Men", "Shirts"],
        ["Men", "Shoes", "Boots"],
        ["Women", "Shirts"],
        ["Women", "Jewelry", "Necklaces"],
        ["Girls", "Dresses"],
        ["Boys", "Shoes"],
        ["Novelty & More", "Clothing", "T-Shirts"],
    ],
    "Books": [["Fiction"], ["History", "Europe"]],
    "Electronics": [["Computers & Accessories", "Laptops"], ["Camera & Photo"]],
    "Home & Kitchen": [["Kitchen & Dining", "Cookware"]],
}

BROKEN_ROWS = [
    b'{"title": "no category"}',
    b'{"category": []}',
    b'not-json',
    b'{"category": "Books"}',
]


def generate_table(path: str, num_rows: int, error_rate: float = 0.01, seed: int = 42) -> int:
    """
    Write num_rows product rows to path

    Returns:
        Number of rows written that will fail extraction
    """
    rng = np.random.default_rng(seed)
    top_levels = list(TAXONOMY)
    broken = 0

    with open(path, 'wb') as f:
        for i in range(num_rows):
            row_key = f"product-{i:09d}".encode('utf-8')
            if rng.random() < error_rate:
                payload = BROKEN_ROWS[int(rng.integers(len(BROKEN_ROWS)))]
                broken += 1
            else:
                top = top_levels[int(rng.integers(len(top_levels)))]
                branch = TAXONOMY[top][int(rng.integers(len(TAXONOMY[top])))]
                document = {
                    "asin": f"B{i:09d}",
                    "title": f"Product {i}",
                    "category": [top] + branch,
                    "price": round(float(rng.uniform(1, 200)), 2),
                }
                payload = json.dumps(document).encode('utf-8')
            f.write(row_key + b'\t' + payload + b'\n')
    return broken


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog='category-generate', description='Generate a synthetic product table')
    parser.add_argument('output', help='File to write')
    parser.add_argument('--rows', type=int, default=10000, help='Number of rows (default: 10000)')
    parser.add_argument('--error-rate', type=float, default=0.01, help='Share of broken rows (default: 0.01)')
    parser.add_argument('--seed', type=int, default=42, help='Random seed (default: 42)')
    args = parser.parse_args(argv)

    broken = generate_table(args.output, args.rows, args.error_rate, args.seed)
    print(f"✓ Wrote {args.rows} rows to {args.output} ({broken} broken)")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
