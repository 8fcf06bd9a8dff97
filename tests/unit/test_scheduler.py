"""Unit tests for the cron scheduler."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from briefly.config import Settings
from briefly.jobs.queue import InMemoryJobQueue, JobKind, UnknownJobKindError
from briefly.jobs.scheduler import CronScheduler, Schedule, default_schedules

MONDAY_7AM = datetime(2026, 10, 19, 7, 0, tzinfo=UTC)


class TestSchedule:
    """Tests for Schedule.next_run."""

    def test_every_two_hours(self) -> None:
        schedule = Schedule(JobKind.FETCH_ARTICLES, "0 */2 * * *")

        assert schedule.next_run(MONDAY_7AM) == datetime(2026, 10, 19, 8, 0, tzinfo=UTC)

    def test_daily_at_six(self) -> None:
        schedule = Schedule(JobKind.COMPILE_BRIEFINGS, "0 6 * * *")

        assert schedule.next_run(MONDAY_7AM) == datetime(2026, 10, 20, 6, 0, tzinfo=UTC)

    def test_weekly_on_sunday(self) -> None:
        schedule = Schedule(JobKind.CLEANUP, "0 3 * * 0")

        assert schedule.next_run(MONDAY_7AM) == datetime(2026, 10, 25, 3, 0, tzinfo=UTC)


def test_default_schedules_have_no_delivery_producer() -> None:
    schedules = default_schedules(Settings())

    assert {s.kind for s in schedules} == {
        JobKind.FETCH_ARTICLES,
        JobKind.COMPILE_BRIEFINGS,
        JobKind.CLEANUP,
    }
    assert all(s.kind.queue != "delivery" for s in schedules)


class TestCronScheduler:
    """Tests for CronScheduler."""

    @pytest.fixture
    def queue(self) -> MagicMock:
        queue = MagicMock(spec=InMemoryJobQueue)
        queue.enqueue = AsyncMock()
        return queue

    async def test_fire_enqueues_empty_payload(self, queue: MagicMock) -> None:
        schedule = Schedule(JobKind.FETCH_ARTICLES, "0 */2 * * *")

        await CronScheduler(queue, [schedule]).fire(schedule)

        queue.enqueue.assert_awaited_once_with(JobKind.FETCH_ARTICLES, {})

    async def test_enqueue_failure_does_not_raise(self, queue: MagicMock) -> None:
        """A failed tick is logged and the schedule keeps going."""
        queue.enqueue.side_effect = UnknownJobKindError("no handler")
        schedule = Schedule(JobKind.CLEANUP, "0 3 * * 0")

        await CronScheduler(queue, [schedule]).fire(schedule)

        queue.enqueue.assert_awaited_once()

    async def test_start_and_stop(self, queue: MagicMock) -> None:
        scheduler = CronScheduler(queue, default_schedules(Settings()))

        scheduler.start()
        assert len(scheduler._tasks) == 3
        await scheduler.stop()

        assert scheduler._tasks == []
        queue.enqueue.assert_not_awaited()

    async def test_early_wake_does_not_fire_the_same_tick_twice(self, queue: MagicMock) -> None:
        """Waking a millisecond before the tick that just fired schedules the following one."""
        schedule = Schedule(JobKind.FETCH_ARTICLES, "0 */2 * * *")
        noon = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
        early = timedelta(milliseconds=1)
        clock = [
            datetime(2026, 10, 19, 10, 0, tzinfo=UTC),
            noon - early,
            noon + timedelta(hours=2) - early,
        ]
        sleep = AsyncMock(side_effect=[None, None, asyncio.CancelledError()])

        with (
            patch("briefly.jobs.scheduler._utcnow", side_effect=clock),
            patch("briefly.jobs.scheduler.asyncio.sleep", sleep),
        ):
            with pytest.raises(asyncio.CancelledError):
                await CronScheduler(queue, [schedule])._run(schedule)

        assert sleep.await_args_list[0].args[0] == 7200.0
        assert sleep.await_args_list[1].args[0] == pytest.approx(7200.001)
        assert queue.enqueue.await_count == 2
