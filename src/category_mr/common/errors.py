"""
Error taxonomy for category count jobs.

Extraction errors are values returned per record and never raised.
Infrastructure and usage errors are raised and end the job.
"""

from dataclasses import dataclass
from enum import Enum


class ExtractionErrorKind(Enum):
    """Why a single record could not be turned into group keys"""
    MALFORMED_PAYLOAD = "Malformed Payload"
    MISSING_FIELD = "Missing Field"
    EMPTY_CATEGORY = "Empty Category"


@dataclass(frozen=True)
class ExtractionError:
    """A per-record failure, logged and skipped by the map stage"""
    kind: ExtractionErrorKind
    message: str

    def __str__(self):
        return f"{self.kind.name}: {self.message}"


class InfrastructureError(Exception):
    """Source unreadable, sink unwritable or a task out of retries"""


class UsageError(Exception):
    """Bad job submission, detected before any work starts"""


class TaskCancelled(Exception):
    """Raised inside a task when its job has been cancelled"""
