"""
Text output sink with commit-on-completion semantics.

Reduce tasks write into a per-job temporary directory. Nothing appears in
the output directory until commit_job() runs, which moves every part file
into place and drops a _SUCCESS marker. A failed or cancelled job is
aborted and leaves no part files behind.
"""

import os
import glob
import uuid
import shutil
import logging
from typing import Dict, Iterable

from category_mr.common.errors import InfrastructureError, UsageError
from category_mr.common.records import AggregateResult

logger = logging.getLogger(__name__)

SUCCESS_MARKER = "_SUCCESS"
TEMPORARY_DIR = "_temporary"


def part_file_name(partition_id: int) -> str:
    return f"part-r-{partition_id:05d}"


_ESCAPES = {"\\": "\\\\", "\t": "\\t", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"\\": "\\", "t": "\t", "n": "\n", "r": "\r"}


def escape_key(key: str) -> str:
    """Escape the characters that would break a key<TAB>total line"""
    return "".join(_ESCAPES.get(c, c) for c in key)


def unescape_key(text: str) -> str:
    chars = []
    i = 0
    while i < len(text):
        c = text[i]
        if c == "\\" and i + 1 < len(text) and text[i + 1] in _UNESCAPES:
            chars.append(_UNESCAPES[text[i + 1]])
            i += 2
        else:
            chars.append(c)
            i += 1
    return "".join(chars)


class TextSink:
    """Writes ``key<TAB>total`` lines, one part file per reduce partition

    Tabs, newlines, carriage returns and backslashes in a key are written
    as backslash escapes; read_results() reverses them.
    """

    def __init__(self, output_path: str, job_id: str):
        self.output_path = output_path
        self.job_id = job_id
        self.temp_dir = os.path.join(output_path, TEMPORARY_DIR, job_id)

    def setup_job(self):
        """Refuse to overwrite an existing output, then create the job's temp dir"""
        if os.path.isfile(self.output_path):
            raise UsageError(f"Output path {self.output_path} is a file")
        if os.path.isdir(self.output_path) and os.listdir(self.output_path):
            raise UsageError(f"Output directory {self.output_path} already exists and is not empty")
        try:
            os.makedirs(self.temp_dir, exist_ok=True)
        except OSError as e:
            raise InfrastructureError(f"Cannot create output directory {self.output_path}: {e}") from e

    def write_partition(self, partition_id: int, results: Iterable[AggregateResult]) -> str:
        """
        Write and commit one reduce task's output.

        The attempt writes to a unique file and renames it over the task's
        committed name, so a retried task replaces an earlier attempt.

        Returns:
            Path of the committed task file
        """
        committed = os.path.join(self.temp_dir, part_file_name(partition_id))
        attempt = f"{committed}.attempt-{uuid.uuid4().hex[:8]}"
        try:
            with open(attempt, 'w', encoding='utf-8') as f:
                for result in results:
                    f.write(f"{escape_key(result.key)}\t{result.total}\n")
            os.replace(attempt, committed)
        except OSError as e:
            if os.path.exists(attempt):
                os.remove(attempt)
            raise InfrastructureError(f"Cannot write partition {partition_id} to {self.temp_dir}: {e}") from e
        return committed

    def commit_job(self):
        """Publish every committed part file and mark the output complete"""
        try:
            for path in sorted(glob.glob(os.path.join(self.temp_dir, "part-r-*"))):
                if '.attempt-' in path:
                    continue
                os.replace(path, os.path.join(self.output_path, os.path.basename(path)))
            with open(os.path.join(self.output_path, SUCCESS_MARKER), 'w'):
                pass
            shutil.rmtree(os.path.join(self.output_path, TEMPORARY_DIR), ignore_errors=True)
        except OSError as e:
            raise InfrastructureError(f"Cannot commit output {self.output_path}: {e}") from e
        logger.info(f"Committed output for job {self.job_id} to {self.output_path}")

    def abort_job(self):
        """Discard everything written for this job"""
        shutil.rmtree(os.path.join(self.output_path, TEMPORARY_DIR), ignore_errors=True)
        logger.warning(f"Aborted output for job {self.job_id} in {self.output_path}")

    def output_size_bytes(self) -> int:
        return sum(os.path.getsize(f) for f in glob.glob(os.path.join(self.output_path, "part-r-*")))


def read_results(output_path: str) -> Dict[str, int]:
    """Read a committed output directory back into a key -> total dict"""
    if not os.path.exists(os.path.join(output_path, SUCCESS_MARKER)):
        raise InfrastructureError(f"{output_path} has no {SUCCESS_MARKER} marker; output is not complete")

    totals: Dict[str, int] = {}
    for path in sorted(glob.glob(os.path.join(output_path, "part-r-*"))):
        with open(path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.rstrip('\n')
                if not line:
                    continue
                key, _, value = line.rpartition('\t')
                totals[unescape_key(key)] = int(value)
    return totals
