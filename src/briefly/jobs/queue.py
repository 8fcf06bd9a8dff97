"""At-least-once job queue with one bounded worker pool per logical queue."""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol

from briefly.errors import NonRetryableError
from briefly.utils.logging import bind_job_context, clear_job_context, get_logger

logger = get_logger(__name__)


class JobKind(StrEnum):
    """Job kinds, named ``<queue>:<job>``."""

    FETCH_ARTICLES = "ingestion:fetchArticles"
    SUMMARIZE_ARTICLES = "enrichment:summarizeArticles"
    COMPILE_BRIEFINGS = "compilation:compileBriefings"
    CLEANUP = "maintenance:cleanup"
    SEND_BRIEFING = "delivery:sendBriefing"
    POST_TO_CHAT = "delivery:postToChat"

    @property
    def queue(self) -> str:
        return self.value.split(":", 1)[0]


QUEUE_NAMES = ("ingestion", "enrichment", "compilation", "maintenance", "delivery")


class JobState(StrEnum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class UnknownJobKindError(Exception):
    """Raised when enqueuing a kind no handler is registered for."""


@dataclass
class Job:
    """A queued unit of work. Payloads carry identifiers only."""

    kind: JobKind
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts: int = 0
    state: JobState = JobState.WAITING
    error: str | None = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def queue(self) -> str:
        return self.kind.queue


Handler = Callable[[Job], Awaitable[None]]


class JobQueue(Protocol):
    async def enqueue(self, kind: JobKind | str, payload: dict[str, Any] | None = None) -> Job:
        """Queue a job for at-least-once execution."""
        ...


def _validate_payload(payload: dict[str, Any]) -> None:
    for key, value in payload.items():
        if not isinstance(value, (int, str)) or isinstance(value, bool):
            raise ValueError(f"job payload field {key!r} must be an identifier, got {value!r}")


class InMemoryJobQueue:
    """In-process job queue.

    Each logical queue gets its own ``asyncio.Queue`` and ``concurrency``
    worker tasks. A job is acknowledged only once its handler returns; a
    handler that raises marks the job failed and, while attempts remain, the
    job goes back on its queue. A ``NonRetryableError`` fails it for good. Handlers must therefore be safe to re-run.
    Durability across restarts belongs to whichever backend replaces this one.
    """

    def __init__(
        self,
        handlers: dict[JobKind, Handler] | None = None,
        concurrency: int = 1,
        max_attempts: int = 1,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._handlers: dict[JobKind, Handler] = dict(handlers or {})
        self._concurrency = concurrency
        self._max_attempts = max_attempts
        self._queues: dict[str, asyncio.Queue[Job]] = {
            name: asyncio.Queue() for name in QUEUE_NAMES
        }
        self._workers: list[asyncio.Task[None]] = []
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def register(self, kind: JobKind, handler: Handler) -> None:
        self._handlers[kind] = handler

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def pending(self, queue: str) -> int:
        return self._queues[queue].qsize()

    async def enqueue(self, kind: JobKind | str, payload: dict[str, Any] | None = None) -> Job:
        """Queue a job.

        Raises:
            UnknownJobKindError: If the kind is unknown or has no handler.
            ValueError: If the payload carries anything but identifiers.
        """
        try:
            job_kind = JobKind(kind)
        except ValueError as e:
            raise UnknownJobKindError(f"unknown job kind: {kind}") from e
        if job_kind not in self._handlers:
            raise UnknownJobKindError(f"no handler registered for {job_kind.value}")

        payload = dict(payload or {})
        _validate_payload(payload)

        job = Job(kind=job_kind, payload=payload)
        await self._put(job)
        logger.info("Job enqueued", job_id=job.id, kind=job.kind.value)
        return job

    async def start(self) -> None:
        """Start the worker pools."""
        if self._workers:
            return
        for name, queue in self._queues.items():
            for index in range(self._concurrency):
                self._workers.append(
                    asyncio.create_task(self._work(queue), name=f"worker-{name}-{index}")
                )
        logger.info("Job workers started", queues=list(self._queues), concurrency=self._concurrency)

    async def stop(self) -> None:
        """Stop the worker pools. Jobs still running are abandoned mid-flight."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Job workers stopped")

    async def join(self) -> None:
        """Wait until every queued job, including chained ones, has been handled."""
        await self._idle.wait()

    async def _put(self, job: Job) -> None:
        self._outstanding += 1
        self._idle.clear()
        await self._queues[job.queue].put(job)

    async def _work(self, queue: asyncio.Queue[Job]) -> None:
        while True:
            job = await queue.get()
            try:
                await self.run_job(job)
            finally:
                queue.task_done()
                self._outstanding -= 1
                if self._outstanding == 0:
                    self._idle.set()

    async def run_job(self, job: Job) -> None:
        """Execute one job and record its outcome."""
        handler = self._handlers[job.kind]
        job.attempts += 1
        job.state = JobState.ACTIVE
        bind_job_context(job_id=job.id, queue=job.queue, kind=job.kind.value)
        try:
            await handler(job)
        except Exception as e:
            job.state = JobState.FAILED
            job.error = str(e)
            retryable = not isinstance(e, NonRetryableError)
            logger.error(
                "Job failed",
                attempt=job.attempts,
                max_attempts=self._max_attempts,
                retryable=retryable,
                error=str(e),
                exc_info=True,
            )
            if retryable and job.attempts < self._max_attempts:
                job.state = JobState.WAITING
                await self._put(job)
                logger.info("Job requeued", attempt=job.attempts)
        else:
            job.state = JobState.COMPLETED
            job.error = None
            logger.info("Job completed", attempt=job.attempts)
        finally:
            clear_job_context()
