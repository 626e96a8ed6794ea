"""
Job configuration.

Defaults come from the environment so a deployment can set them once;
command-line flags override them per run.
"""

import os
import tempfile
from dataclasses import dataclass, field
from typing import Optional

from category_mr.common.errors import UsageError
from category_mr.common.records import ScanOptions

DEFAULT_FILTER_VALUE = "Clothing, Shoes & Jewelry"
DEFAULT_COUNTER_GROUP = "CategoryCount"
DEFAULT_PAYLOAD_COLUMN = "cf:product_data"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise UsageError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return _env_int(name, 0)


@dataclass
class JobConfig:
    """Everything a category count run needs besides its output path"""
    input_path: str = field(default_factory=lambda: os.getenv('CATEGORY_MR_INPUT', 'products.tsv'))
    filter_value: str = field(default_factory=lambda: os.getenv('CATEGORY_MR_FILTER', DEFAULT_FILTER_VALUE))
    counter_group: str = field(default_factory=lambda: os.getenv('CATEGORY_MR_COUNTER_GROUP', DEFAULT_COUNTER_GROUP))
    num_map_tasks: int = field(default_factory=lambda: _env_int('CATEGORY_MR_MAP_TASKS', 4))
    num_reduce_tasks: int = field(default_factory=lambda: _env_int('CATEGORY_MR_REDUCE_TASKS', 2))
    max_workers: int = field(default_factory=lambda: _env_int('CATEGORY_MR_MAX_WORKERS', 4))
    max_task_attempts: int = field(default_factory=lambda: _env_int('CATEGORY_MR_MAX_ATTEMPTS', 2))
    scan_caching: int = field(default_factory=lambda: _env_int('CATEGORY_MR_SCAN_CACHING', 500))
    cache_blocks: bool = field(default_factory=lambda: _env_bool('CATEGORY_MR_CACHE_BLOCKS', False))
    payload_column: str = field(default_factory=lambda: os.getenv('CATEGORY_MR_COLUMN', DEFAULT_PAYLOAD_COLUMN))
    use_combiner: bool = field(default_factory=lambda: _env_bool('CATEGORY_MR_USE_COMBINER', False))
    shared_dir: str = field(default_factory=lambda: os.getenv(
        'CATEGORY_MR_SHARED_DIR', os.path.join(tempfile.gettempdir(), 'category-mr')))
    shuffle_port: Optional[int] = field(default_factory=lambda: _env_optional_int('CATEGORY_MR_SHUFFLE_PORT'))

    @property
    def scan_options(self) -> ScanOptions:
        return ScanOptions(caching=self.scan_caching, cache_blocks=self.cache_blocks,
                           column=self.payload_column)

    @property
    def intermediate_root(self) -> str:
        return os.path.join(self.shared_dir, 'intermediate')

    def validate(self):
        """Raise UsageError if the configuration cannot run"""
        if not self.filter_value or not self.filter_value.strip():
            raise UsageError("filter value must not be blank")
        if not self.counter_group or not self.counter_group.strip():
            raise UsageError("counter group must not be blank")
        if self.payload_column.count(":") != 1:
            raise UsageError(f"payload column must be family:qualifier, got {self.payload_column!r}")
        for name in ('num_map_tasks', 'num_reduce_tasks', 'max_workers',
                     'max_task_attempts', 'scan_caching'):
            value = getattr(self, name)
            if value < 1:
                raise UsageError(f"{name} must be at least 1, got {value}")
        if self.shuffle_port is not None and not 0 <= self.shuffle_port <= 65535:
            raise UsageError(f"shuffle_port out of range: {self.shuffle_port}")
