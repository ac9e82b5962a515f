"""Worker system - background job processing."""

from trackforge.application.workers.job_queue import Job, JobQueue, JobState, JobType

__all__ = [
    "Job",
    "JobQueue",
    "JobState",
    "JobType",
]
