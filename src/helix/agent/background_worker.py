"""
Background Task Worker for agent work.

Agent turns, sequencer steps and sweep items all run here rather than in
the request or scheduler that produced them. The worker implements the
ITaskQueue port on top of a bounded asyncio queue.

Key Features:
- Bounded queue; submissions beyond it are dropped and counted
- Delayed submission, used for initiation jitter and retry backoff
- Retry decisions taken from the job's RetryPolicy per exception class
- Metrics for monitoring queue health
- Graceful shutdown that lets queued jobs finish within a timeout
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID, uuid4

from .domain.ports import ITaskQueue
from .resilience import RetryPolicy, backoff_delay

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """Lifecycle of a queued job."""

    DELAYED = "delayed"  # Waiting for its delay or retry backoff
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class Job:
    """One unit of agent work and its attempt history."""

    func: Callable[..., Awaitable[Any]]
    name: str
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    policy: Optional[RetryPolicy] = None
    max_attempts: int = 3
    id: UUID = field(default_factory=uuid4)
    state: JobState = JobState.QUEUED
    attempts: int = 0
    last_error: Optional[BaseException] = None
    submitted_at: float = field(default_factory=time.monotonic)

    @property
    def label(self) -> str:
        return f"{self.name} [{str(self.id)[:8]}]"


@dataclass
class WorkerMetrics:
    """Counters for monitoring the background worker."""

    tasks_submitted: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_dropped: int = 0  # Queue was full
    total_retries: int = 0
    current_queue_size: int = 0
    peak_queue_size: int = 0
    scheduled_tasks: int = 0  # Delayed jobs not yet queued


class BackgroundWorker(ITaskQueue):
    """Bounded job queue drained by a fixed number of consumers.

    Usage:
        worker = BackgroundWorker(max_queue_size=100, max_concurrent=5)
        await worker.start()

        await worker.submit(
            orchestrator.run_turn,
            chat_id,
            agent_id,
            name=f"turn:{chat_id}",
            retry_policy=TURN_RETRY_POLICY,
        )
        await worker.submit(engine.decide_for_agent, agent_id, delay=90)

        await worker.stop(timeout=30)

    A job with a retry policy is retried only for exceptions the policy has
    a rule for. Jobs without one get ``max_attempts`` tries with plain
    exponential backoff.
    """

    def __init__(
        self,
        max_queue_size: int = 100,
        max_concurrent: int = 5,
        retry_base_delay: float = 1.0,
        max_retry_delay: float = 60.0,
    ):
        """Initialize the worker.

        Args:
            max_queue_size: Jobs that may wait in the queue at once
            max_concurrent: Number of consumer tasks
            retry_base_delay: First backoff for jobs without a policy (seconds)
            max_retry_delay: Backoff ceiling for jobs without a policy (seconds)
        """
        self.max_queue_size = max_queue_size
        self.max_concurrent = max_concurrent
        self.retry_base_delay = retry_base_delay
        self.max_retry_delay = max_retry_delay

        self._queue: asyncio.Queue[Job] = asyncio.Queue(maxsize=max_queue_size)
        self._consumers: list[asyncio.Task] = []
        self._pending_delays: set[asyncio.Task] = set()
        self._running = False
        self._metrics = WorkerMetrics()

    @property
    def metrics(self) -> WorkerMetrics:
        self._metrics.current_queue_size = self._queue.qsize()
        self._metrics.scheduled_tasks = len(self._pending_delays)
        return self._metrics

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._consumers = [
            asyncio.create_task(self._consume(slot), name=f"helix-worker-{slot}")
            for slot in range(self.max_concurrent)
        ]
        logger.info(f"Background worker started with {self.max_concurrent} consumers")

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop accepting work and wind down.

        Jobs still waiting on a delay are abandoned. Queued jobs get up to
        ``timeout`` seconds to finish before the consumers are cancelled.
        """
        if not self._running:
            return
        self._running = False

        if self._pending_delays:
            logger.info(f"Abandoning {len(self._pending_delays)} delayed jobs")
            for waiter in self._pending_delays:
                waiter.cancel()
            await asyncio.gather(*self._pending_delays, return_exceptions=True)
            self._pending_delays.clear()

        if self._queue.qsize():
            logger.info(f"Letting {self._queue.qsize()} queued jobs finish")
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Shutdown timeout with {self._queue.qsize()} jobs unfinished")

        for consumer in self._consumers:
            consumer.cancel()
        await asyncio.gather(*self._consumers, return_exceptions=True)
        self._consumers = []

        logger.info("Background worker stopped")

    async def submit(
        self,
        coro_func: Callable[..., Awaitable[Any]],
        *args: Any,
        name: str = "",
        delay: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_attempts: int = 3,
        **kwargs: Any,
    ) -> Optional[UUID]:
        """Queue ``coro_func(*args, **kwargs)``.

        Returns:
            The job id, or None when the worker is stopped or the queue is full
        """
        if not self._running:
            logger.warning(f"Worker not running, rejected job {name or coro_func.__name__}")
            return None

        job = Job(
            func=coro_func,
            name=name or coro_func.__name__,
            args=args,
            kwargs=kwargs,
            policy=retry_policy,
            max_attempts=max_attempts,
        )
        self._metrics.tasks_submitted += 1

        if delay and delay > 0:
            self._delay(job, delay)
            logger.debug(f"Job {job.label} delayed {delay:.1f}s")
            return job.id

        return job.id if self._put(job) else None

    def _put(self, job: Job) -> bool:
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._metrics.tasks_dropped += 1
            logger.warning(f"Queue full ({self.max_queue_size}), dropped job {job.label}")
            return False

        job.state = JobState.QUEUED
        self._metrics.peak_queue_size = max(self._metrics.peak_queue_size, self._queue.qsize())
        return True

    def _delay(self, job: Job, seconds: float) -> None:
        job.state = JobState.DELAYED
        waiter = asyncio.create_task(self._put_after(job, seconds))
        self._pending_delays.add(waiter)
        waiter.add_done_callback(self._pending_delays.discard)

    async def _put_after(self, job: Job, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if self._running and not self._put(job) and job.attempts:
            job.state = JobState.FAILED
            self._metrics.tasks_failed += 1
            logger.error(f"Job {job.label} could not be requeued for retry")

    async def _consume(self, slot: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run(job, slot)
            except Exception:
                logger.exception(f"Consumer {slot} crashed on job {job.label}")
            finally:
                self._queue.task_done()

    def _next_delay(self, job: Job) -> Optional[float]:
        if job.policy is not None:
            return job.policy.delay_for(job.last_error, job.attempts)
        if job.attempts >= job.max_attempts:
            return None
        return backoff_delay(
            job.attempts, self.retry_base_delay, 2.0, self.max_retry_delay, jitter=False
        )

    async def _run(self, job: Job, slot: int) -> None:
        job.state = JobState.RUNNING
        job.attempts += 1

        try:
            await job.func(*job.args, **job.kwargs)
        except Exception as e:
            job.last_error = e
        else:
            job.state = JobState.DONE
            self._metrics.tasks_completed += 1
            waited = time.monotonic() - job.submitted_at
            logger.debug(f"Job {job.label} done on consumer {slot} after {waited:.2f}s")
            return

        delay = self._next_delay(job)
        if delay is None or not self._running:
            job.state = JobState.FAILED
            self._metrics.tasks_failed += 1
            logger.error(f"Job {job.label} failed after {job.attempts} attempts: {job.last_error}")
            return

        self._metrics.total_retries += 1
        logger.warning(
            f"Job {job.label} attempt {job.attempts} failed, retrying in {delay:.1f}s: "
            f"{job.last_error}"
        )
        self._delay(job, delay)
