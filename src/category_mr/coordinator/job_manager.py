"""
Job Manager
Handles job state transitions, task generation and progress tracking
"""

import time
import logging
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from category_mr.common.errors import TaskCancelled
from category_mr.common.records import ScanRange, ShuffleLocation

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Status of a category count job"""
    SUBMITTED = "submitted"
    MAPPING = "mapping"
    SHUFFLING = "shuffling"
    REDUCING = "reducing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


# Forward transitions; FAILED and CANCELLED are reachable from any non-terminal state
_NEXT_STATUS = {
    JobStatus.SUBMITTED: JobStatus.MAPPING,
    JobStatus.MAPPING: JobStatus.SHUFFLING,
    JobStatus.SHUFFLING: JobStatus.REDUCING,
    JobStatus.REDUCING: JobStatus.COMPLETED,
}


class TaskStatus(Enum):
    """Status of individual map or reduce tasks"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MapTask:
    """One partition of the source table"""
    task_id: int
    scan_range: ScanRange
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    intermediate_files: Dict[int, str] = field(default_factory=dict)


@dataclass
class ReduceTask:
    """One reduce partition and the intermediate files feeding it"""
    task_id: int
    partition_id: int
    shuffle_locations: List[ShuffleLocation] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    output_file: str = ''


@dataclass
class Job:
    """A complete category count job"""
    job_id: str
    input_path: str
    output_path: str
    num_map_tasks: int
    num_reduce_tasks: int
    status: JobStatus = JobStatus.SUBMITTED
    map_tasks: List[MapTask] = field(default_factory=list)
    reduce_tasks: List[ReduceTask] = field(default_factory=list)
    error_message: str = ''
    start_time: float = 0.0
    end_time: float = 0.0
    # Set when the job is cancelled; running map tasks poll it between records
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)


class JobManager:
    """Tracks every job and its lifecycle"""

    def __init__(self):
        self.jobs: Dict[str, Job] = {}
        self.lock = threading.Lock()

    def create_job(self, job_id: str, input_path: str, output_path: str,
                   num_map_tasks: int, num_reduce_tasks: int) -> Job:
        with self.lock:
            if job_id in self.jobs:
                raise ValueError(f"Job {job_id} already exists")
            job = Job(
                job_id=job_id,
                input_path=input_path,
                output_path=output_path,
                num_map_tasks=num_map_tasks,
                num_reduce_tasks=num_reduce_tasks,
                start_time=time.time()
            )
            self.jobs[job_id] = job
            logger.info(f"Job {job_id} submitted")
            return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.lock:
            return self.jobs.get(job_id)

    def generate_map_tasks(self, job: Job, scan_ranges: List[ScanRange]) -> List[MapTask]:
        """One map task per scan range"""
        with self.lock:
            job.map_tasks = [MapTask(task_id=i, scan_range=r) for i, r in enumerate(scan_ranges)]
            return job.map_tasks

    def generate_reduce_tasks(self, job: Job) -> List[ReduceTask]:
        """
        Group the completed map tasks' files by partition, one reduce task each

        Every reduce partition gets a task even if no map task produced
        pairs for it, so the output always has num_reduce_tasks parts.
        """
        with self.lock:
            locations: Dict[int, List[ShuffleLocation]] = {p: [] for p in range(job.num_reduce_tasks)}
            for task in job.map_tasks:
                for partition, path in sorted(task.intermediate_files.items()):
                    locations[partition].append(ShuffleLocation(path))
            job.reduce_tasks = [
                ReduceTask(task_id=p, partition_id=p, shuffle_locations=locations[p])
                for p in range(job.num_reduce_tasks)
            ]
            return job.reduce_tasks

    def transition(self, job_id: str, new_status: JobStatus, error_message: str = ''):
        """
        Move a job to its next status

        Raises:
            ValueError: If the job is unknown or the transition is not allowed
        """
        with self.lock:
            job = self.jobs.get(job_id)
            if not job:
                raise ValueError(f"Unknown job {job_id}")
            if job.status.is_terminal:
                raise ValueError(f"Job {job_id} is already {job.status.value}")
            if new_status not in (JobStatus.FAILED, JobStatus.CANCELLED) and \
                    _NEXT_STATUS.get(job.status) != new_status:
                raise ValueError(f"Cannot move job {job_id} from {job.status.value} to {new_status.value}")

            job.status = new_status
            if new_status == JobStatus.CANCELLED:
                job.cancel_event.set()
            if error_message:
                job.error_message = error_message
            if new_status.is_terminal:
                job.end_time = time.time()

        if new_status == JobStatus.FAILED:
            logger.error(f"Job {job_id} failed: {error_message}")
        else:
            logger.info(f"Job {job_id} is now {new_status.value}")

    def mark_task_running(self, task):
        with self.lock:
            task.status = TaskStatus.RUNNING
            task.attempts += 1

    def mark_task_completed(self, task):
        with self.lock:
            task.status = TaskStatus.COMPLETED

    def mark_task_failed(self, task):
        with self.lock:
            task.status = TaskStatus.FAILED

    def complete_job(self, job_id: str, commit: Callable[[], None]):
        """
        Run commit and mark the job COMPLETED, with no cancel in between

        Raises:
            TaskCancelled: If the job was cancelled before the commit
            ValueError: If the job is unknown or not REDUCING
        """
        with self.lock:
            job = self.jobs.get(job_id)
            if not job:
                raise ValueError(f"Unknown job {job_id}")
            if job.status == JobStatus.CANCELLED:
                raise TaskCancelled(f"job {job_id} cancelled")
            if job.status != JobStatus.REDUCING:
                raise ValueError(f"Cannot complete job {job_id} from {job.status.value}")
            commit()
            job.status = JobStatus.COMPLETED
            job.end_time = time.time()
        logger.info(f"Job {job_id} is now completed")

    def finish_job(self, job_id: str, status: JobStatus, error_message: str = '') -> bool:
        """
        Move a job to FAILED or CANCELLED unless it has already finished

        Returns:
            False if the job is unknown or already terminal
        """
        if status not in (JobStatus.FAILED, JobStatus.CANCELLED):
            raise ValueError(f"finish_job only accepts FAILED or CANCELLED, got {status.value}")
        with self.lock:
            job = self.jobs.get(job_id)
            if not job or job.status.is_terminal:
                return False
            if status == JobStatus.CANCELLED:
                job.cancel_event.set()
            job.status = status
            if error_message:
                job.error_message = error_message
            job.end_time = time.time()

        if status == JobStatus.FAILED:
            logger.error(f"Job {job_id} failed: {error_message}")
        else:
            logger.info(f"Job {job_id} is now cancelled")
        return True

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a job unless it has already finished; its runner stops at the next record"""
        return self.finish_job(job_id, JobStatus.CANCELLED, "cancelled by request")

    def get_job_status(self, job_id: str) -> Optional[Dict]:
        """Get current job status with progress"""
        with self.lock:
            job = self.jobs.get(job_id)
            if not job:
                return None

            map_completed = sum(1 for t in job.map_tasks if t.status == TaskStatus.COMPLETED)
            reduce_completed = sum(1 for t in job.reduce_tasks if t.status == TaskStatus.COMPLETED)
            # Reduce tasks are created after mapping, count them as planned
            total_tasks = len(job.map_tasks) + job.num_reduce_tasks
            completed_tasks = map_completed + reduce_completed
            progress = int((completed_tasks / total_tasks * 100)) if total_tasks > 0 else 0

            return {
                'status': job.status.value,
                'progress': progress,
                'map_completed': map_completed,
                'map_total': len(job.map_tasks),
                'reduce_completed': reduce_completed,
                'reduce_total': job.num_reduce_tasks,
                'error_message': job.error_message,
            }
