"""
Record sources: partitioned, read-only scans over a product table.

A source is split into disjoint ScanRanges, one per map task, and each
range is scanned independently. Every row belongs to exactly one range.
"""

import os
import logging
import threading
from typing import Dict, Iterator, List, Sequence, Tuple

from category_mr.common.errors import InfrastructureError
from category_mr.common.records import Record, ScanOptions, ScanRange

logger = logging.getLogger(__name__)


def split_evenly(total: int, num_partitions: int) -> List[ScanRange]:
    """Cut [0, total) into num_partitions contiguous ranges, last one takes the remainder"""
    if num_partitions < 1:
        raise ValueError(f"num_partitions must be positive, got {num_partitions}")
    chunk_size = total // num_partitions
    ranges = []
    for i in range(num_partitions):
        start = i * chunk_size
        end = total if i == num_partitions - 1 else (i + 1) * chunk_size
        ranges.append(ScanRange(start, end))
    return ranges


class RecordSource:
    """Base class for partitioned record sources"""

    def split(self, num_partitions: int) -> List[ScanRange]:
        raise NotImplementedError

    def open_partition_scan(self, scan_range: ScanRange,
                            options: ScanOptions = ScanOptions()) -> Iterator[Record]:
        raise NotImplementedError

    def size_bytes(self) -> int:
        return 0

    def describe(self) -> str:
        return self.__class__.__name__


class TableFileSource(RecordSource):
    """
    A table export stored as one row per line: ``row_key<TAB>payload``.

    Lines without a tab are treated as a bare payload and keyed by
    ``<file name>:<byte offset>``. Ranges are byte offsets; a line belongs
    to the range that contains its first byte, so ranges need not be
    aligned to line boundaries.
    """

    def __init__(self, path: str):
        self.path = path
        self._block_cache: Dict[Tuple[int, int], List[Record]] = {}
        self._cache_lock = threading.Lock()

    def describe(self) -> str:
        return self.path

    def size_bytes(self) -> int:
        try:
            return os.path.getsize(self.path)
        except OSError as e:
            raise InfrastructureError(f"Cannot stat table {self.path}: {e}") from e

    def split(self, num_partitions: int) -> List[ScanRange]:
        return split_evenly(self.size_bytes(), num_partitions)

    def open_partition_scan(self, scan_range: ScanRange,
                            options: ScanOptions = ScanOptions()) -> Iterator[Record]:
        cache_key = (scan_range.start, scan_range.end)
        if options.cache_blocks:
            with self._cache_lock:
                cached = self._block_cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Serving range {cache_key} of {self.path} from block cache")
                yield from cached
                return

        scanned = [] if options.cache_blocks else None
        for batch in self._scan_batches(scan_range, options.caching):
            if scanned is not None:
                scanned.extend(batch)
            yield from batch

        if scanned is not None:
            with self._cache_lock:
                self._block_cache[cache_key] = scanned

    def _scan_batches(self, scan_range: ScanRange, batch_size: int) -> Iterator[List[Record]]:
        """Read the range in batches of batch_size records"""
        try:
            f = open(self.path, 'rb')
        except OSError as e:
            raise InfrastructureError(f"Cannot open table {self.path}: {e}") from e

        name = os.path.basename(self.path)
        with f:
            try:
                if scan_range.start > 0:
                    # A line that starts before our range belongs to the previous one
                    f.seek(scan_range.start - 1)
                    if f.read(1) != b'\n':
                        f.readline()

                batch = []
                while True:
                    offset = f.tell()
                    if offset >= scan_range.end:
                        break
                    line = f.readline()
                    if not line:
                        break
                    record = self._parse_line(line, name, offset)
                    if record is None:
                        continue
                    batch.append(record)
                    if len(batch) >= batch_size:
                        yield batch
                        batch = []
                if batch:
                    yield batch
            except OSError as e:
                raise InfrastructureError(f"Error reading table {self.path}: {e}") from e

    @staticmethod
    def _parse_line(line: bytes, name: str, offset: int):
        line = line.rstrip(b'\r\n')
        if not line.strip():
            return None
        row_key, sep, payload = line.partition(b'\t')
        if not sep:
            return Record(row_key=f"{name}:{offset}", payload=line)
        return Record(row_key=row_key.decode('utf-8', errors='replace'), payload=payload)


class InMemorySource(RecordSource):
    """List-backed source; ranges are record indices"""

    def __init__(self, records: Sequence[Record]):
        self.records = list(records)

    def describe(self) -> str:
        return f"<memory: {len(self.records)} records>"

    def size_bytes(self) -> int:
        return sum(len(r.payload) for r in self.records)

    def split(self, num_partitions: int) -> List[ScanRange]:
        return split_evenly(len(self.records), num_partitions)

    def open_partition_scan(self, scan_range: ScanRange,
                            options: ScanOptions = ScanOptions()) -> Iterator[Record]:
        return iter(self.records[scan_range.start:scan_range.end])
