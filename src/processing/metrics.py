from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from core.entities import ProcessingJob

JOB_STATUSES = ("pending", "processing", "completed", "failed")


def calculate_metrics(jobs: Iterable[ProcessingJob]) -> Dict[str, Any]:
    """
    Queue summary: counts per status, mean processing time (ms) of
    completed jobs that report one, and the creation time of the oldest
    pending job.
    """
    counts = {status: 0 for status in JOB_STATUSES}
    durations = []
    oldest_pending: Optional[datetime] = None
    total = 0

    for job in jobs:
        total += 1
        if job.status in counts:
            counts[job.status] += 1
        if job.status == "completed" and job.processing_time_ms is not None:
            durations.append(job.processing_time_ms)
        if job.status == "pending" and (oldest_pending is None or job.created_at < oldest_pending):
            oldest_pending = job.created_at

    return {
        "total": total,
        **counts,
        "avg_processing_time": sum(durations) / len(durations) if durations else 0,
        "oldest_pending": oldest_pending,
    }
