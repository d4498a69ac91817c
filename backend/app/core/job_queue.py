"""
In-process job queue for development and testing

Keeps jobs in memory and polls them from a daemon thread. Intended as a
local stand-in only: jobs are lost on restart and every worker process has
its own queue. Production deployments should move these job types to a
cron trigger or a Redis/SQS backed queue.

Usage:
    from app.core.job_queue import job_queue

    job_queue.register_handler("export-orders", lambda payload: process_export(payload["job_id"]))
    job_queue.enqueue("export-orders", {"job_id": 12})
    job_queue.start()  # auto-started in development
"""
import logging
import random
import string
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

JobHandler = Callable[[Any], None]


@dataclass
class JobQueueConfig:
    poll_interval: float = 5.0      # seconds
    max_concurrency: int = 3
    max_attempts: int = 3
    retry_delay: float = 10.0       # seconds
    auto_start: bool = False

    @classmethod
    def from_settings(cls) -> "JobQueueConfig":
        return cls(
            poll_interval=settings.JOB_QUEUE_POLL_INTERVAL,
            max_concurrency=settings.JOB_QUEUE_MAX_CONCURRENCY,
            max_attempts=settings.JOB_QUEUE_MAX_ATTEMPTS,
            retry_delay=settings.JOB_QUEUE_RETRY_DELAY,
            auto_start=settings.job_queue_auto_start(),
        )


@dataclass
class Job:
    id: str
    type: str
    payload: Any
    attempts: int = 0
    max_attempts: int = 3
    created_at: datetime = field(default_factory=datetime.now)
    scheduled_for: Optional[datetime] = None
    error: Optional[str] = None

    def is_due(self, now: datetime) -> bool:
        return self.scheduled_for is None or self.scheduled_for <= now


def _job_id(job_type: str) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{job_type}_{int(time.time() * 1000)}_{suffix}"


class JobQueue:
    """In-memory job map with a polling worker and a concurrency cap"""

    def __init__(self, config: Optional[JobQueueConfig] = None):
        self.config = config or JobQueueConfig()
        self._jobs: Dict[str, Job] = {}
        self._handlers: Dict[str, JobHandler] = {}
        self._processing: set = set()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def enqueue(self, job_type: str, payload: Any, delay: float = 0,
                max_attempts: Optional[int] = None, run_inline: bool = True) -> str:
        """
        Add a job and return its id.

        When the worker is not running the next due job is processed
        inline, so tests and scripts see the effect immediately. Callers
        that must not wait on the handler (request paths) pass
        run_inline=False to get a one-off thread instead.
        """
        job = Job(
            id=_job_id(job_type),
            type=job_type,
            payload=payload,
            max_attempts=max_attempts or self.config.max_attempts,
            scheduled_for=datetime.now() + timedelta(seconds=delay) if delay else None,
        )

        with self._lock:
            self._jobs[job.id] = job

        logger.info(f"[JobQueue] Enqueued job {job.id} (type: {job_type})")

        if not self.is_running:
            if run_inline:
                self.process_next_job()
            elif job.is_due(datetime.now()):
                threading.Thread(
                    target=self._process_job, args=(job,), name=f"job-{job.id}", daemon=True
                ).start()

        return job.id

    def register_handler(self, job_type: str, handler: JobHandler):
        self._handlers[job_type] = handler
        logger.info(f"[JobQueue] Registered handler for job type: {job_type}")

    def start(self):
        if self.is_running:
            logger.info("[JobQueue] Worker already running")
            return

        self._stop_event.clear()
        self._worker = threading.Thread(target=self._run, name="job-queue-worker", daemon=True)
        self._worker.start()
        logger.info(f"[JobQueue] Starting worker (poll interval: {self.config.poll_interval}s)")

    def stop(self, timeout: Optional[float] = None):
        if not self.is_running:
            return

        self._stop_event.set()
        self._worker.join(timeout)
        self._worker = None
        logger.info("[JobQueue] Worker stopped")

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def get_pending_jobs(self) -> List[Job]:
        """Due jobs that are not currently being processed, oldest first"""
        now = datetime.now()
        with self._lock:
            pending = [
                job for job in self._jobs.values()
                if job.id not in self._processing and job.is_due(now)
            ]
        return sorted(pending, key=lambda job: job.created_at)

    def clear(self):
        with self._lock:
            self._jobs.clear()
            self._processing.clear()
        logger.info("[JobQueue] Cleared all jobs")

    def stats(self) -> dict:
        with self._lock:
            return {
                "queued": len(self._jobs),
                "processing": len(self._processing),
                "running": self.is_running,
                "handlers": sorted(self._handlers.keys()),
            }

    def process_next_job(self) -> bool:
        """Process the oldest due job synchronously. Returns False if none."""
        pending = self.get_pending_jobs()
        if not pending:
            return False

        self._process_job(pending[0])
        return True

    def process_jobs(self) -> int:
        """Start up to the free concurrency slots worth of jobs; returns how many"""
        pending = self.get_pending_jobs()
        with self._lock:
            available_slots = self.config.max_concurrency - len(self._processing)

        if not pending or available_slots <= 0:
            return 0

        batch = pending[:available_slots]
        for job in batch:
            threading.Thread(
                target=self._process_job, args=(job,), name=f"job-{job.id}", daemon=True
            ).start()
        return len(batch)

    def _run(self):
        while not self._stop_event.wait(self.config.poll_interval):
            try:
                self.process_jobs()
            except Exception as e:
                logger.error(f"[JobQueue] Poll failed: {e}")

    def _process_job(self, job: Job):
        with self._lock:
            if job.id in self._processing:
                return
            self._processing.add(job.id)

        logger.info(
            f"[JobQueue] Processing job {job.id} "
            f"(type: {job.type}, attempt: {job.attempts + 1}/{job.max_attempts})"
        )

        try:
            handler = self._handlers.get(job.type)
            if handler is None:
                raise LookupError(f"No handler registered for job type: {job.type}")

            handler(job.payload)

            with self._lock:
                self._jobs.pop(job.id, None)
            logger.info(f"[JobQueue] Job {job.id} completed successfully")

        except Exception as e:
            job.attempts += 1
            job.error = str(e)
            logger.error(f"[JobQueue] Job {job.id} failed (attempt {job.attempts}/{job.max_attempts}): {e}")

            if job.attempts >= job.max_attempts:
                with self._lock:
                    self._jobs.pop(job.id, None)
                logger.error(f"[JobQueue] Job {job.id} failed permanently after {job.attempts} attempts")
            else:
                job.scheduled_for = datetime.now() + timedelta(seconds=self.config.retry_delay)
                logger.info(f"[JobQueue] Job {job.id} will retry in {self.config.retry_delay}s")

        finally:
            with self._lock:
                self._processing.discard(job.id)


# Singleton; main.py starts it when auto_start is enabled
job_queue = JobQueue(JobQueueConfig.from_settings())
