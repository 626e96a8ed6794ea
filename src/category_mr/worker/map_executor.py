"""
Map Task Executor
Scans one partition of the product table, extracts subcategory keys,
partitions (key, 1) pairs by reduce task and writes intermediate files
"""

import os
import json
import time
import uuid
import zlib
import logging
import threading
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import psutil

from category_mr.common import counters as names
from category_mr.common.config import JobConfig
from category_mr.common.counters import Counters
from category_mr.common.errors import TaskCancelled
from category_mr.common.records import ScanRange
from category_mr.source.record_source import RecordSource
from category_mr.worker.extractor import extract

logger = logging.getLogger(__name__)


def partition_for(key: str, num_reduce_tasks: int) -> int:
    """Reduce partition for a key; stable across processes and runs"""
    return zlib.crc32(key.encode('utf-8')) % num_reduce_tasks


def intermediate_file_name(task_id: int, partition: int) -> str:
    return f"map-{task_id}-reduce-{partition}.txt"


class MapExecutor:
    """Executes a single map task over one scan range"""

    def __init__(self, task_id: int, job_id: str, source: RecordSource, scan_range: ScanRange,
                 config: JobConfig, intermediate_dir: str,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize the map executor

        Args:
            task_id: Unique ID for this map task
            job_id: Unique job identifier
            source: Table to scan
            scan_range: Partition of the table this task owns
            config: Job configuration (filter value, reduce count, scan options)
            intermediate_dir: Directory intermediate files are written to
            cancel_event: Set by the runner when the job is cancelled
        """
        self.task_id = task_id
        self.job_id = job_id
        self.source = source
        self.scan_range = scan_range
        self.config = config
        self.intermediate_dir = intermediate_dir
        self.cancel_event = cancel_event
        self.counters = Counters()

    def execute(self) -> dict:
        """
        Execute the map task

        Returns:
            Dictionary with 'success', 'cancelled', 'execution_time_ms',
            'error_message', 'intermediate_files' (partition -> path),
            'counters' and 'peak_memory_bytes'
        """
        start_time = time.time()
        # Counters from a failed attempt must not leak into the job totals
        self.counters = Counters()

        try:
            logger.info(f"Map task {self.task_id}: Scanning range "
                        f"[{self.scan_range.start}, {self.scan_range.end}) of {self.source.describe()} "
                        f"(column {self.config.payload_column})")
            intermediate = self._map_partition()
            pairs = sum(len(v) for v in intermediate.values())
            logger.info(f"Map task {self.task_id}: Generated {pairs} intermediate pairs")

            if self.config.use_combiner:
                intermediate = self._apply_combiner(intermediate)
                logger.info(f"Map task {self.task_id}: After combiner: "
                            f"{sum(len(v) for v in intermediate.values())} pairs")

            files = self._write_intermediate_files(intermediate)

            execution_time = int((time.time() - start_time) * 1000)
            logger.info(f"Map task {self.task_id}: Completed in {execution_time}ms")
            return self._result(True, execution_time, intermediate_files=files)

        except TaskCancelled as e:
            execution_time = int((time.time() - start_time) * 1000)
            logger.warning(f"Map task {self.task_id} cancelled: {e}")
            return self._result(False, execution_time, error_message=str(e), cancelled=True)

        except Exception as e:
            execution_time = int((time.time() - start_time) * 1000)
            logger.error(f"Map task {self.task_id} failed: {e}")
            return self._result(False, execution_time, error_message=str(e))

    def _result(self, success: bool, execution_time: int, error_message: str = '',
                intermediate_files: Optional[Dict[int, str]] = None, cancelled: bool = False) -> dict:
        return {
            'success': success,
            'cancelled': cancelled,
            'execution_time_ms': execution_time,
            'error_message': error_message,
            'intermediate_files': intermediate_files or {},
            'counters': self.counters,
            'peak_memory_bytes': psutil.Process().memory_info().rss,
        }

    def _map_partition(self) -> Dict[int, List[Tuple[str, int]]]:
        """Run the extractor over every record in the range"""
        group = self.config.counter_group
        filter_value = self.config.filter_value
        num_reduce_tasks = self.config.num_reduce_tasks
        intermediate = defaultdict(list)

        for record in self.source.open_partition_scan(self.scan_range, self.config.scan_options):
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise TaskCancelled(f"job {self.job_id} cancelled")

            self.counters.increment(group, names.ROWS_PROCESSED)
            try:
                result = extract(record.payload, filter_value)
            except Exception:
                self.counters.increment(group, names.UNEXPECTED_ERRORS)
                logger.exception(f"Map task {self.task_id}: Unexpected error on row {record.row_key!r}")
                continue

            if not result.ok:
                self.counters.increment(group, result.error.kind.value)
                logger.error(f"Map task {self.task_id}: Skipping row {record.row_key!r}: "
                             f"{result.error.kind.name}: {result.error.message}")
                continue

            if not result.matched:
                self.counters.increment(group, names.RECORDS_FILTERED)
                continue

            self.counters.increment(group, names.RECORDS_MATCHED)
            for key in result.keys:
                if not key.strip():
                    self.counters.increment(group, names.BLANK_SUBCATEGORIES)
                    continue
                intermediate[partition_for(key, num_reduce_tasks)].append((key, 1))
                self.counters.increment(group, names.PAIRS_EMITTED)

        return intermediate

    def _apply_combiner(self, intermediate: dict) -> dict:
        """
        Sum counts per key within each partition before the shuffle

        Args:
            intermediate: Dictionary mapping partition_id to list of (key, count) pairs

        Returns:
            Dictionary with same structure, one pair per key
        """
        combined = {}
        for partition, kv_pairs in intermediate.items():
            totals = defaultdict(int)
            for key, count in kv_pairs:
                totals[key] += count
            combined[partition] = list(totals.items())
        return combined

    def _write_intermediate_files(self, intermediate: dict) -> Dict[int, str]:
        """
        Write intermediate pairs to disk as JSON lines

        Each file is written under a temporary name and renamed into place so
        a retried attempt replaces the earlier one instead of appending to it.

        Returns:
            Dictionary mapping partition_id to the written file path
        """
        os.makedirs(self.intermediate_dir, exist_ok=True)
        written = {}
        for partition, kv_pairs in sorted(intermediate.items()):
            if not kv_pairs:
                continue
            filename = os.path.join(self.intermediate_dir, intermediate_file_name(self.task_id, partition))
            tmp_name = f"{filename}.{uuid.uuid4().hex[:8]}.tmp"
            with open(tmp_name, 'w', encoding='utf-8') as f:
                for key, value in kv_pairs:
                    f.write(json.dumps({'key': key, 'value': value}) + '\n')
            os.replace(tmp_name, filename)
            written[partition] = filename
        return written
