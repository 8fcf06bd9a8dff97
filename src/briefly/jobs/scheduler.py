"""Cron-driven producers for the recurring queues."""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime

from croniter import croniter

from briefly.config import Settings
from briefly.jobs.queue import JobKind, JobQueue
from briefly.utils.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Schedule:
    """A recurring job: enqueue ``kind`` whenever ``cron`` fires (UTC)."""

    kind: JobKind
    cron: str

    def next_run(self, after: datetime) -> datetime:
        return croniter(self.cron, after).get_next(datetime)


def default_schedules(settings: Settings) -> list[Schedule]:
    """The recurring jobs. Delivery has no schedule; it is fed by compilation."""
    return [
        Schedule(JobKind.FETCH_ARTICLES, settings.ingestion_cron),
        Schedule(JobKind.COMPILE_BRIEFINGS, settings.compilation_cron),
        Schedule(JobKind.CLEANUP, settings.maintenance_cron),
    ]


class CronScheduler:
    """Enqueues an empty-payload job each time a schedule fires."""

    def __init__(self, queue: JobQueue, schedules: list[Schedule]) -> None:
        self._queue = queue
        self._schedules = schedules
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def schedules(self) -> list[Schedule]:
        return list(self._schedules)

    def start(self) -> None:
        if self._tasks:
            return
        for schedule in self._schedules:
            self._tasks.append(
                asyncio.create_task(self._run(schedule), name=f"cron-{schedule.kind.value}")
            )
            logger.info("Scheduled job", kind=schedule.kind.value, cron=schedule.cron)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def _run(self, schedule: Schedule) -> None:
        last_fire: datetime | None = None
        while True:
            now = _utcnow()
            # A sleep that wakes early must not produce the same tick twice
            fire_at = schedule.next_run(max(now, last_fire) if last_fire else now)
            await asyncio.sleep(max((fire_at - now).total_seconds(), 0))
            last_fire = fire_at
            await self.fire(schedule)

    async def fire(self, schedule: Schedule) -> None:
        """Enqueue one run of a schedule. An enqueue failure waits for the next tick."""
        try:
            await self._queue.enqueue(schedule.kind, {})
        except Exception as e:
            logger.error(
                "Failed to enqueue scheduled job",
                kind=schedule.kind.value,
                error=str(e),
                exc_info=True,
            )
