"""Background task runner abstraction.

On-demand rollups are submitted here so the triggering request can return
immediately with a job id that callers poll for completion.
"""

import asyncio
import enum
import uuid
from collections import deque
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, Protocol


class JobStatus(enum.StrEnum):
    """Status of a background job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobRecord:
    """Tracked state of one submitted job."""

    job_id: str
    name: str
    status: JobStatus = JobStatus.PENDING
    error: str | None = None


class BackgroundTaskRunner(Protocol):
    """Protocol for background task execution."""

    def submit_task(self, coro: Coroutine[Any, Any, Any], *, name: str = "") -> str:
        """Submit an async task and return a job id for tracking."""
        ...

    def get_job(self, job_id: str) -> JobRecord:
        """Return the tracked record for a job id."""
        ...

    def get_status(self, job_id: str) -> JobStatus:
        """Return the current status of a job."""
        ...


class InProcessTaskRunner:
    """In-process background task runner using asyncio.

    Tasks run in the same event loop as the API server. Job records live in
    memory; only the most recent ``max_finished_jobs`` finished ones are kept.
    """

    def __init__(self, max_finished_jobs: int = 1000) -> None:
        self._jobs: dict[str, JobRecord] = {}
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._finished: deque[str] = deque()
        self._max_finished_jobs = max_finished_jobs

    def submit_task(self, coro: Coroutine[Any, Any, Any], *, name: str = "") -> str:
        """Submit an async task for background execution.

        Args:
            coro: The coroutine to execute.
            name: Label stored with the job record.

        Returns:
            A job ID string for tracking.
        """
        job_id = str(uuid.uuid4())
        record = JobRecord(job_id=job_id, name=name)
        self._jobs[job_id] = record

        async def _run() -> None:
            record.status = JobStatus.RUNNING
            try:
                await coro
                record.status = JobStatus.COMPLETED
            except Exception as exc:
                record.status = JobStatus.FAILED
                record.error = str(exc) or type(exc).__name__
                raise
            finally:
                self._retire(job_id)

        task = asyncio.create_task(_run())
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(job_id, None))
        return job_id

    def _retire(self, job_id: str) -> None:
        self._finished.append(job_id)
        while len(self._finished) > self._max_finished_jobs:
            self._jobs.pop(self._finished.popleft(), None)

    def get_job(self, job_id: str) -> JobRecord:
        """Get the tracked record of a background job.

        Raises:
            KeyError: If the job ID is not found.
        """
        return self._jobs[job_id]

    def get_status(self, job_id: str) -> JobStatus:
        """Get the current status of a background job.

        Raises:
            KeyError: If the job ID is not found.
        """
        return self._jobs[job_id].status


# Singleton instance for the application
task_runner: BackgroundTaskRunner = InProcessTaskRunner()
