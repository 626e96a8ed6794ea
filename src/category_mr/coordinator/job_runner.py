"""
Job runner: drives one category count job through map, shuffle and reduce
on a local thread pool.

Tasks are retried wholesale. A task that exhausts its attempts fails the
job, the sink is aborted, and no output is published. Per-record problems
never reach this level; they are handled inside the map tasks.
"""

import os
import uuid
import shutil
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, List, Optional

from category_mr.common.config import JobConfig
from category_mr.common.counters import Counters, ROWS_PROCESSED
from category_mr.common.errors import InfrastructureError, TaskCancelled, UsageError
from category_mr.common.records import ShuffleLocation
from category_mr.common.shuffle_client import ShuffleClient
from category_mr.common.sink import TextSink
from category_mr.coordinator.job_manager import JobManager, JobStatus, Job
from category_mr.coordinator.metrics import JobMetrics, MetricsCollector
from category_mr.source.record_source import RecordSource, TableFileSource
from category_mr.worker.map_executor import MapExecutor
from category_mr.worker.reduce_executor import ReduceExecutor
from category_mr.worker.shuffle_server import ShuffleServer

logger = logging.getLogger(__name__)


@dataclass
class JobReport:
    """Outcome of a finished job"""
    job_id: str
    status: JobStatus
    output_path: str
    counters: Counters
    metrics: Optional[JobMetrics]
    counter_group: str
    error_message: str = ''

    @property
    def rows_processed(self) -> int:
        return self.counters.get(self.counter_group, ROWS_PROCESSED)


class JobRunner:
    """Runs category count jobs against one record source"""

    def __init__(self, config: JobConfig, source: Optional[RecordSource] = None,
                 job_manager: Optional[JobManager] = None):
        self.config = config
        self.source = source if source is not None else TableFileSource(config.input_path)
        self.job_manager = job_manager or JobManager()
        self.metrics = MetricsCollector()
        self._active_job: Optional[Job] = None

    def cancel(self) -> bool:
        """
        Cancel the running job; its output is never committed

        Returns:
            False if no job is running
        """
        job = self._active_job
        if job is None:
            return False
        return self.job_manager.cancel_job(job.job_id)

    def run(self, output_path: str, job_id: Optional[str] = None) -> JobReport:
        """
        Run a job to completion

        Returns:
            JobReport with status COMPLETED or CANCELLED

        Raises:
            UsageError: Bad configuration, existing output or a reused job id,
                before any work
            InfrastructureError: Unreadable source, unwritable sink or a task
                out of retries; the job is marked FAILED first
        """
        self.config.validate()
        job_id = job_id or f"job_{uuid.uuid4().hex[:12]}"
        sink = TextSink(output_path, job_id)
        sink.setup_job()

        try:
            job = self.job_manager.create_job(job_id, self.source.describe(), output_path,
                                              self.config.num_map_tasks, self.config.num_reduce_tasks)
        except ValueError as e:
            sink.abort_job()
            raise UsageError(str(e)) from e

        self._active_job = job
        intermediate_dir = os.path.join(self.config.intermediate_root, job_id)
        counters = Counters()
        shuffle_server = None
        shuffle_client = None

        try:
            scan_ranges = self.source.split(self.config.num_map_tasks)
            self.metrics.start_job(job_id, len(scan_ranges), self.config.num_reduce_tasks,
                                   self.config.use_combiner, self.source.size_bytes())
            self.job_manager.generate_map_tasks(job, scan_ranges)

            self._advance(job, JobStatus.MAPPING)
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                self._run_phase(pool, job, job.map_tasks, "Map",
                                lambda task: MapExecutor(
                                    task.task_id, job_id, self.source, task.scan_range,
                                    self.config, intermediate_dir, job.cancel_event).execute(),
                                lambda task, result: self._on_map_success(task, result, counters))
            self.metrics.end_map_phase(job_id)

            self._advance(job, JobStatus.SHUFFLING)
            reduce_tasks = self.job_manager.generate_reduce_tasks(job)
            if self.config.shuffle_port is not None:
                shuffle_server = ShuffleServer(self.config.intermediate_root)
                shuffle_server.start(self.config.shuffle_port)
                shuffle_client = ShuffleClient()
                self._serve_remotely(reduce_tasks, shuffle_server.address)
            self.metrics.start_reduce_phase(job_id, intermediate_dir)

            self._advance(job, JobStatus.REDUCING)
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                self._run_phase(pool, job, reduce_tasks, "Reduce",
                                lambda task: ReduceExecutor(
                                    task.task_id, task.partition_id, job_id, task.shuffle_locations,
                                    sink, self.config.counter_group, shuffle_client).execute(),
                                lambda task, result: self._on_reduce_success(task, result, counters))

            self.job_manager.complete_job(job_id, sink.commit_job)
            self.metrics.end_job(job_id, sink.output_size_bytes())
            logger.info(f"Job {job_id} counters:\n{counters.format()}")
            return self._report(job, counters)

        except TaskCancelled as e:
            sink.abort_job()
            self.metrics.end_job(job_id)
            self.job_manager.finish_job(job_id, JobStatus.CANCELLED, str(e))
            return self._report(job, counters)

        except KeyboardInterrupt:
            sink.abort_job()
            self.job_manager.finish_job(job_id, JobStatus.CANCELLED, "interrupted")
            raise

        except Exception as e:
            sink.abort_job()
            self.metrics.end_job(job_id)
            self.job_manager.finish_job(job_id, JobStatus.FAILED, str(e))
            raise

        finally:
            self._active_job = None
            if shuffle_client is not None:
                shuffle_client.close()
            if shuffle_server is not None:
                shuffle_server.stop(0)
            shutil.rmtree(intermediate_dir, ignore_errors=True)

    def _advance(self, job: Job, status: JobStatus):
        """Move the job forward, or stop if it was cancelled from outside"""
        try:
            self.job_manager.transition(job.job_id, status)
        except ValueError:
            if job.cancel_event.is_set():
                raise TaskCancelled(f"job {job.job_id} cancelled")
            raise

    def _report(self, job: Job, counters: Counters) -> JobReport:
        return JobReport(
            job_id=job.job_id,
            status=job.status,
            output_path=job.output_path,
            counters=counters,
            metrics=self.metrics.get_metrics(job.job_id),
            counter_group=self.config.counter_group,
            error_message=job.error_message,
        )

    def _run_phase(self, pool: ThreadPoolExecutor, job: Job, tasks: List, phase: str,
                   execute: Callable, on_success: Callable):
        """
        Run every task of a phase, retrying failed tasks wholesale

        Raises:
            TaskCancelled: If the job was cancelled
            InfrastructureError: If a task fails max_task_attempts times
        """
        pending = list(tasks)
        while pending:
            if job.cancel_event.is_set():
                raise TaskCancelled(f"job {job.job_id} cancelled")

            running = {}
            for task in pending:
                self.job_manager.mark_task_running(task)
                running[pool.submit(execute, task)] = task

            retry = []
            for future in as_completed(running):
                task = running[future]
                result = future.result()
                self.metrics.record_task(job.job_id, result)

                if result['success']:
                    on_success(task, result)
                    self.job_manager.mark_task_completed(task)
                    continue

                self.job_manager.mark_task_failed(task)
                if result.get('cancelled'):
                    raise TaskCancelled(f"job {job.job_id} cancelled")
                if task.attempts >= self.config.max_task_attempts:
                    raise InfrastructureError(
                        f"{phase} task {task.task_id} failed after {task.attempts} attempts: "
                        f"{result['error_message']}")
                logger.warning(f"{phase} task {task.task_id} attempt {task.attempts} failed, "
                               f"retrying: {result['error_message']}")
                retry.append(task)
            pending = retry

    @staticmethod
    def _on_map_success(task, result: dict, counters: Counters):
        task.intermediate_files = result['intermediate_files']
        counters.merge(result['counters'])

    @staticmethod
    def _on_reduce_success(task, result: dict, counters: Counters):
        task.output_file = result['output_file']
        counters.merge(result['counters'])

    def _serve_remotely(self, reduce_tasks: List, address: str):
        """Point reducers at the shuffle server instead of local paths"""
        root = self.config.intermediate_root
        for task in reduce_tasks:
            task.shuffle_locations = [
                ShuffleLocation(os.path.relpath(location.file_name, root), address)
                for location in task.shuffle_locations
            ]
