"""
Unit tests for the in-process job queue: retries, scheduling and the
concurrency cap
"""
import threading
import time
from datetime import datetime, timedelta

from app.core.job_queue import JobQueue, JobQueueConfig


def make_queue(**overrides) -> JobQueue:
    config = JobQueueConfig(poll_interval=0.05, max_concurrency=2, max_attempts=3,
                            retry_delay=0, auto_start=False)
    for key, value in overrides.items():
        setattr(config, key, value)
    return JobQueue(config)


class TestJobQueue:

    def test_enqueue_runs_inline_when_worker_stopped(self):
        queue = make_queue()
        received = []
        queue.register_handler("export-orders", received.append)

        job_id = queue.enqueue("export-orders", {"job_id": 7})

        assert received == [{"job_id": 7}]
        assert queue.get_job(job_id) is None

    def test_failed_job_is_rescheduled(self):
        queue = make_queue(retry_delay=60)

        def failing(payload):
            raise RuntimeError("boom")

        queue.register_handler("flaky", failing)

        job_id = queue.enqueue("flaky", {})

        job = queue.get_job(job_id)
        assert job is not None
        assert job.attempts == 1
        assert job.error == "boom"
        assert job.scheduled_for > datetime.now()
        assert queue.get_pending_jobs() == []

    def test_job_dropped_after_max_attempts(self):
        queue = make_queue(max_attempts=3)
        calls = []

        def failing(payload):
            calls.append(payload)
            raise RuntimeError("still failing")

        queue.register_handler("flaky", failing)
        job_id = queue.enqueue("flaky", {"n": 1})

        while queue.process_next_job():
            pass

        assert len(calls) == 3
        assert queue.get_job(job_id) is None

    def test_retry_succeeds_on_second_attempt(self):
        queue = make_queue()
        attempts = []

        def flaky(payload):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("transient")

        queue.register_handler("flaky", flaky)
        job_id = queue.enqueue("flaky", {})

        assert queue.process_next_job() is True
        assert len(attempts) == 2
        assert queue.get_job(job_id) is None

    def test_unknown_job_type_counts_as_failure(self):
        queue = make_queue(max_attempts=1)

        job_id = queue.enqueue("missing-handler", {})

        assert queue.get_job(job_id) is None

    def test_delayed_job_is_not_due(self):
        queue = make_queue()
        queue.register_handler("later", lambda payload: None)

        job_id = queue.enqueue("later", {}, delay=60)

        assert queue.get_job(job_id) is not None
        assert queue.process_next_job() is False

    def test_process_jobs_respects_concurrency_cap(self):
        queue = make_queue(max_concurrency=2)
        release = threading.Event()
        running = []
        peak = []
        lock = threading.Lock()

        def slow(payload):
            with lock:
                running.append(payload)
                peak.append(len(running))
            release.wait(2)
            with lock:
                running.remove(payload)

        queue.register_handler("slow", slow)
        # Delay so enqueue does not run them inline
        for n in range(5):
            queue.enqueue("slow", n, delay=0.01)
        time.sleep(0.05)

        started = queue.process_jobs()
        time.sleep(0.1)

        assert started == 2
        assert queue.process_jobs() == 0
        assert max(peak) <= 2

        release.set()
        deadline = datetime.now() + timedelta(seconds=2)
        while queue.stats()["processing"] and datetime.now() < deadline:
            time.sleep(0.02)
        assert len(queue.get_pending_jobs()) == 3

    def test_start_and_stop(self):
        queue = make_queue()

        queue.start()
        assert queue.is_running is True

        queue.stop(timeout=1)
        assert queue.is_running is False

    def test_enqueue_without_inline_returns_before_handler_finishes(self):
        queue = make_queue()
        started = threading.Event()
        release = threading.Event()
        finished = []

        def slow(payload):
            started.set()
            release.wait(2)
            finished.append(payload)

        queue.register_handler("export-orders", slow)

        job_id = queue.enqueue("export-orders", {"job_id": 7}, run_inline=False)

        assert started.wait(1) is True
        assert finished == []
        assert queue.get_job(job_id) is not None

        release.set()
        deadline = datetime.now() + timedelta(seconds=2)
        while queue.get_job(job_id) is not None and datetime.now() < deadline:
            time.sleep(0.02)
        assert finished == [{"job_id": 7}]
        assert queue.get_job(job_id) is None
