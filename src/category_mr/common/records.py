"""
Value types shared by every stage of the pipeline.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Record:
    """One table row: an opaque row key and its raw payload"""
    row_key: str
    payload: bytes


@dataclass(frozen=True)
class ScanRange:
    """Half-open [start, end) slice of a source assigned to one map task"""
    start: int
    end: int

    def __len__(self):
        return max(0, self.end - self.start)


@dataclass(frozen=True)
class ScanOptions:
    """Scanner tuning knobs

    caching: records fetched per batch (read-ahead)
    cache_blocks: keep scanned batches in memory for repeated scans
    column: family:qualifier holding the payload
    """
    caching: int = 500
    cache_blocks: bool = False
    column: str = "cf:product_data"


@dataclass(frozen=True)
class AggregateResult:
    """Final (key, total) row written to the sink"""
    key: str
    total: int


@dataclass(frozen=True)
class ShuffleLocation:
    """Where a reducer finds one intermediate file

    A location without a worker address is a path on the local filesystem.
    """
    file_name: str
    worker_address: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.worker_address is not None
