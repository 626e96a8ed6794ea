"""
Reduce Task Executor
Collects one partition's intermediate pairs, groups them by key,
sums the counts and writes the totals through the sink
"""

import json
import time
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

import psutil

from category_mr.common.counters import Counters, REDUCE_INPUT_GROUPS, REDUCE_OUTPUT_RECORDS
from category_mr.common.errors import InfrastructureError
from category_mr.common.records import AggregateResult, ShuffleLocation
from category_mr.common.shuffle_client import ShuffleClient
from category_mr.common.sink import TextSink

logger = logging.getLogger(__name__)


def sum_counts(key: str, counts: Iterable[int]) -> AggregateResult:
    """
    Sum every count observed for one key.

    Counts are usually all 1 but may be pre-aggregated by a combiner.

    Raises:
        ValueError: If the group is empty
    """
    total = 0
    seen = False
    for count in counts:
        total += int(count)
        seen = True
    if not seen:
        raise ValueError(f"No counts for key {key!r}")
    return AggregateResult(key, total)


class ReduceExecutor:
    """Executes a single reduce task"""

    def __init__(self, task_id: int, partition_id: int, job_id: str,
                 shuffle_locations: List[ShuffleLocation], sink: TextSink,
                 counter_group: str, shuffle_client: Optional[ShuffleClient] = None):
        """
        Initialize the reduce executor

        Args:
            task_id: Unique ID for this reduce task
            partition_id: Partition this task is responsible for
            job_id: Unique job identifier
            shuffle_locations: Intermediate files holding this partition's pairs
            sink: Output sink the totals are written to
            counter_group: Group reduce counters are reported under
            shuffle_client: Client for locations served by remote workers
        """
        self.task_id = task_id
        self.partition_id = partition_id
        self.job_id = job_id
        self.shuffle_locations = shuffle_locations
        self.sink = sink
        self.counter_group = counter_group
        self.shuffle_client = shuffle_client
        self.counters = Counters()

    def execute(self) -> dict:
        """
        Execute the reduce task

        Returns:
            Dictionary with 'success', 'execution_time_ms', 'error_message',
            'output_file', 'counters' and 'peak_memory_bytes'
        """
        start_time = time.time()
        self.counters = Counters()

        try:
            key_groups = self._read_and_group_intermediate()
            logger.info(f"Reduce task {self.task_id}: Grouped {len(key_groups)} unique keys")
            self.counters.increment(self.counter_group, REDUCE_INPUT_GROUPS, len(key_groups))

            # Sorted by key for deterministic part files
            results = [sum_counts(key, key_groups[key]) for key in sorted(key_groups)]
            output_file = self.sink.write_partition(self.partition_id, results)
            self.counters.increment(self.counter_group, REDUCE_OUTPUT_RECORDS, len(results))

            execution_time = int((time.time() - start_time) * 1000)
            logger.info(f"Reduce task {self.task_id}: Wrote {len(results)} totals in {execution_time}ms")
            return self._result(True, execution_time, output_file=output_file)

        except Exception as e:
            execution_time = int((time.time() - start_time) * 1000)
            logger.error(f"Reduce task {self.task_id} failed: {e}")
            return self._result(False, execution_time, error_message=str(e))

    def _result(self, success: bool, execution_time: int, error_message: str = '',
                output_file: str = '') -> dict:
        return {
            'success': success,
            'execution_time_ms': execution_time,
            'error_message': error_message,
            'output_file': output_file,
            'counters': self.counters,
            'peak_memory_bytes': psutil.Process().memory_info().rss,
        }

    def _fetch(self, location: ShuffleLocation) -> str:
        if location.is_remote:
            if self.shuffle_client is None:
                raise InfrastructureError(f"No shuffle client for remote location {location.worker_address}")
            return self.shuffle_client.fetch(location.worker_address, location.file_name).decode('utf-8')
        try:
            with open(location.file_name, 'r', encoding='utf-8') as f:
                return f.read()
        except OSError as e:
            raise InfrastructureError(f"Cannot read intermediate file {location.file_name}: {e}") from e

    def _read_and_group_intermediate(self) -> Dict[str, List[int]]:
        """
        Read every intermediate file for this partition and group by key

        Raises:
            InfrastructureError: If a file is missing or holds a malformed line
        """
        key_groups = defaultdict(list)
        lines_processed = 0

        for location in self.shuffle_locations:
            data = self._fetch(location)
            for line_num, line in enumerate(data.splitlines(), 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    key_groups[record['key']].append(int(record['value']))
                except (ValueError, KeyError, TypeError) as e:
                    raise InfrastructureError(
                        f"Malformed intermediate line {line_num} in {location.file_name}: {e}") from e
                lines_processed += 1

        logger.info(f"Reduce task {self.task_id}: Read {len(self.shuffle_locations)} files, "
                    f"{lines_processed} pairs")
        return key_groups
