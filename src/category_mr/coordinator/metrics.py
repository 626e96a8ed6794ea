"""
Performance metrics collection for category count jobs.
"""

import os
import glob
import time
import json
from dataclasses import dataclass, asdict
from typing import Dict, Optional


@dataclass
class JobMetrics:
    """Metrics for a single job execution."""

    job_id: str
    start_time: float
    end_time: float = 0.0
    map_phase_start: float = 0.0
    map_phase_end: float = 0.0
    reduce_phase_start: float = 0.0
    reduce_phase_end: float = 0.0
    num_map_tasks: int = 0
    num_reduce_tasks: int = 0
    use_combiner: bool = False
    input_size_bytes: int = 0
    intermediate_size_bytes: int = 0
    output_size_bytes: int = 0
    task_attempts: int = 0
    peak_memory_bytes: int = 0

    @property
    def total_time_seconds(self) -> float:
        """Total job execution time in seconds."""
        return self.end_time - self.start_time

    @property
    def map_phase_time_seconds(self) -> float:
        return self.map_phase_end - self.map_phase_start

    @property
    def reduce_phase_time_seconds(self) -> float:
        return self.reduce_phase_end - self.reduce_phase_start

    def to_dict(self) -> dict:
        """Convert metrics to dictionary, timings included."""
        data = asdict(self)
        data['total_time_seconds'] = self.total_time_seconds
        data['map_phase_time_seconds'] = self.map_phase_time_seconds
        data['reduce_phase_time_seconds'] = self.reduce_phase_time_seconds
        return data

    def save_to_file(self, filepath: str):
        """Save metrics to JSON file."""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


class MetricsCollector:
    """Collects and manages metrics for jobs."""

    def __init__(self):
        self.job_metrics: Dict[str, JobMetrics] = {}

    def start_job(self, job_id: str, num_map_tasks: int, num_reduce_tasks: int,
                  use_combiner: bool, input_size_bytes: int):
        """Initialize metrics tracking for a new job."""
        now = time.time()
        self.job_metrics[job_id] = JobMetrics(
            job_id=job_id,
            start_time=now,
            map_phase_start=now,
            num_map_tasks=num_map_tasks,
            num_reduce_tasks=num_reduce_tasks,
            use_combiner=use_combiner,
            input_size_bytes=input_size_bytes,
        )

    def record_task(self, job_id: str, result: dict):
        """Count an attempt and track the highest memory it reported."""
        metrics = self.job_metrics.get(job_id)
        if metrics:
            metrics.task_attempts += 1
            metrics.peak_memory_bytes = max(metrics.peak_memory_bytes, result.get('peak_memory_bytes', 0))

    def end_map_phase(self, job_id: str):
        if job_id in self.job_metrics:
            self.job_metrics[job_id].map_phase_end = time.time()

    def start_reduce_phase(self, job_id: str, intermediate_dir: str):
        """Mark the start of the reduce phase and measure intermediate data."""
        metrics = self.job_metrics.get(job_id)
        if metrics:
            metrics.reduce_phase_start = time.time()
            files = glob.glob(os.path.join(intermediate_dir, "map-*-reduce-*.txt"))
            metrics.intermediate_size_bytes = sum(os.path.getsize(f) for f in files if os.path.exists(f))

    def end_job(self, job_id: str, output_size_bytes: int = 0):
        """Mark job completion."""
        metrics = self.job_metrics.get(job_id)
        if metrics:
            now = time.time()
            if metrics.reduce_phase_start and not metrics.reduce_phase_end:
                metrics.reduce_phase_end = now
            metrics.end_time = now
            metrics.output_size_bytes = output_size_bytes

    def get_metrics(self, job_id: str) -> Optional[JobMetrics]:
        """Retrieve metrics for a specific job."""
        return self.job_metrics.get(job_id)
