#!/usr/bin/env python3
"""
Category count CLI
Counts subcategory frequencies for one top-level product category
"""

import argparse
import logging
import sys

from category_mr.common.config import JobConfig
from category_mr.common.errors import InfrastructureError, UsageError
from category_mr.coordinator.job_manager import JobStatus
from category_mr.coordinator.job_runner import JobRunner

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

logger = logging.getLogger(__name__)


def output_location(value: str) -> str:
    """argparse type for the output directory"""
    if not value or not value.strip():
        raise argparse.ArgumentTypeError("output path must not be empty")
    if '\0' in value:
        raise argparse.ArgumentTypeError("output path must not contain NUL bytes")
    return value


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {number}")
    return number


def build_parser(defaults: JobConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='category-count',
        description='Count subcategory frequencies for one top-level category of a product table',
        epilog='Example: %(prog)s /data/out/clothing --input products.tsv --filter "Clothing, Shoes & Jewelry"'
    )
    parser.add_argument('output', type=output_location, help='Output directory (must not exist or be empty)')
    parser.add_argument('--input', default=defaults.input_path,
                        help=f'Product table export, row_key<TAB>json per line (default: {defaults.input_path})')
    parser.add_argument('--filter', dest='filter_value', default=defaults.filter_value,
                        help=f'Top-level category to count (default: {defaults.filter_value!r})')
    parser.add_argument('--counter-group', default=defaults.counter_group,
                        help=f'Counter group name (default: {defaults.counter_group})')
    parser.add_argument('--map-tasks', type=positive_int, default=defaults.num_map_tasks,
                        help=f'Number of map tasks (default: {defaults.num_map_tasks})')
    parser.add_argument('--reduce-tasks', type=positive_int, default=defaults.num_reduce_tasks,
                        help=f'Number of reduce tasks (default: {defaults.num_reduce_tasks})')
    parser.add_argument('--workers', type=positive_int, default=defaults.max_workers,
                        help=f'Concurrent tasks (default: {defaults.max_workers})')
    parser.add_argument('--max-attempts', type=positive_int, default=defaults.max_task_attempts,
                        help=f'Attempts per task before the job fails (default: {defaults.max_task_attempts})')
    parser.add_argument('--caching', type=positive_int, default=defaults.scan_caching,
                        help=f'Rows fetched per scanner batch (default: {defaults.scan_caching})')
    parser.add_argument('--column', dest='payload_column', default=defaults.payload_column,
                        help=f'Column holding the product JSON (default: {defaults.payload_column})')
    parser.add_argument('--cache-blocks', action='store_true', default=defaults.cache_blocks,
                        help='Keep scanned blocks in memory')
    parser.add_argument('--use-combiner', action='store_true', default=defaults.use_combiner,
                        help='Pre-aggregate counts in each map task')
    parser.add_argument('--shared-dir', default=defaults.shared_dir,
                        help=f'Directory for intermediate files (default: {defaults.shared_dir})')
    parser.add_argument('--shuffle-port', type=int, default=defaults.shuffle_port,
                        help='Serve intermediate files over gRPC on this port (0 picks a free port)')
    parser.add_argument('--metrics-file', help='Write job metrics as JSON to this file')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level')
    return parser


def config_from_args(args: argparse.Namespace) -> JobConfig:
    return JobConfig(
        input_path=args.input,
        filter_value=args.filter_value,
        counter_group=args.counter_group,
        num_map_tasks=args.map_tasks,
        num_reduce_tasks=args.reduce_tasks,
        max_workers=args.workers,
        max_task_attempts=args.max_attempts,
        scan_caching=args.caching,
        cache_blocks=args.cache_blocks,
        payload_column=args.payload_column,
        use_combiner=args.use_combiner,
        shared_dir=args.shared_dir,
        shuffle_port=args.shuffle_port,
    )


def main(argv=None) -> int:
    """Main CLI entry point"""
    try:
        defaults = JobConfig()
    except UsageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    parser = build_parser(defaults)
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_OK if e.code == 0 else EXIT_USAGE

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = config_from_args(args)
    runner = JobRunner(config)
    try:
        report = runner.run(args.output)
    except UsageError as e:
        parser.print_usage(sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except InfrastructureError as e:
        print(f"Job failed: {e}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("Job cancelled", file=sys.stderr)
        return EXIT_FAILED

    if args.metrics_file and report.metrics:
        report.metrics.save_to_file(args.metrics_file)

    print(report.counters.format())
    if report.status != JobStatus.COMPLETED:
        print(f"Job {report.job_id} {report.status.value}: {report.error_message}", file=sys.stderr)
        return EXIT_FAILED

    print(f"✓ Job {report.job_id} completed: {report.rows_processed} rows processed")
    print(f"  Output: {report.output_path}")
    return EXIT_OK


def run():
    sys.exit(main())


if __name__ == '__main__':
    run()
