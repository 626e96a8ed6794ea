"""
Job counters, grouped the way Hadoop reports them (group -> name -> value).
"""

import threading
from collections import defaultdict
from typing import Dict

ROWS_PROCESSED = "Rows Processed"
RECORDS_MATCHED = "Records Matched"
RECORDS_FILTERED = "Records Filtered"
PAIRS_EMITTED = "Subcategory Pairs Emitted"
BLANK_SUBCATEGORIES = "Blank Subcategories"
UNEXPECTED_ERRORS = "Unexpected Errors"
REDUCE_INPUT_GROUPS = "Reduce Input Groups"
REDUCE_OUTPUT_RECORDS = "Reduce Output Records"


class Counters:
    """Thread-safe set of named integer counters"""

    def __init__(self):
        self._values: Dict[str, Dict[str, int]] = defaultdict(dict)
        self._lock = threading.Lock()

    def increment(self, group: str, name: str, amount: int = 1):
        with self._lock:
            self._values[group][name] = self._values[group].get(name, 0) + amount

    def get(self, group: str, name: str) -> int:
        with self._lock:
            return self._values.get(group, {}).get(name, 0)

    def merge(self, other: "Counters"):
        """Add every counter of another set into this one"""
        for group, names in other.as_dict().items():
            for name, value in names.items():
                self.increment(group, name, value)

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {group: dict(names) for group, names in self._values.items()}

    def format(self) -> str:
        """Render counters as an indented listing"""
        lines = [f"Counters: {sum(len(n) for n in self.as_dict().values())}"]
        for group, names in sorted(self.as_dict().items()):
            lines.append(f"\t{group}")
            for name, value in sorted(names.items()):
                lines.append(f"\t\t{name}={value}")
        return "\n".join(lines)
