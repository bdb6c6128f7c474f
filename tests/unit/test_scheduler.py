"""Unit tests for the settlement scheduler"""

import asyncio
from datetime import datetime, timedelta
from canteen_ledger.domain.exceptions import JobExecutionError
from canteen_ledger.domain.models import JobStatus
from canteen_ledger.services.scheduler import DailySettlementScheduler


def test_waits_for_trigger_hour(session_factory, clock):
    scheduler = DailySettlementScheduler(session_factory, clock, trigger_hour=10)

    assert asyncio.run(scheduler.tick()) is None
    assert scheduler.last_fired is None


def test_fires_once_per_day(session_factory, clock):
    scheduler = DailySettlementScheduler(session_factory, clock, trigger_hour=6)

    result = asyncio.run(scheduler.tick())

    assert result is not None
    assert result.status == JobStatus.COMPLETED
    assert result.skipped is False
    assert scheduler.last_fired == clock.today()

    clock.advance(hours=1)
    assert asyncio.run(scheduler.tick()) is None

    clock.advance(days=1)
    assert asyncio.run(scheduler.tick()).execution_date == clock.today()


def test_catch_up_after_restart_is_a_no_op(session_factory, clock):
    asyncio.run(DailySettlementScheduler(session_factory, clock).tick())

    restarted = DailySettlementScheduler(session_factory, clock)
    result = asyncio.run(restarted.tick())

    assert result.skipped is True


def test_failed_run_is_not_retried_in_a_loop(session_factory, clock, monkeypatch):
    scheduler = DailySettlementScheduler(session_factory, clock)
    calls = []

    def failing_job():
        calls.append(clock.now())
        raise JobExecutionError("database went away")

    monkeypatch.setattr(scheduler, "run_job", failing_job)

    assert asyncio.run(scheduler.tick()) is None
    clock.advance(minutes=1)
    assert asyncio.run(scheduler.tick()) is None
    assert len(calls) == 1


def test_is_due():
    scheduler = DailySettlementScheduler(None, None, trigger_hour=6)
    start = datetime(2025, 3, 3, 9, 0)

    early = start.replace(hour=5, minute=59)
    assert scheduler.is_due(early) is False
    assert scheduler.is_due(early + timedelta(minutes=1)) is True
    scheduler.last_fired = start.date()
    assert scheduler.is_due(start) is False
    assert scheduler.is_due(start + timedelta(days=1)) is True


def test_start_and_stop(session_factory, clock):
    scheduler = DailySettlementScheduler(session_factory, clock, trigger_hour=24, tick_seconds=3600)

    async def lifecycle():
        scheduler.start()
        scheduler.start()
        await asyncio.sleep(0)
        assert scheduler._task is not None
        await scheduler.stop()

    asyncio.run(lifecycle())

    assert scheduler._task is None


def test_unexpected_crash_is_logged_and_retried_next_day(session_factory, clock, monkeypatch):
    scheduler = DailySettlementScheduler(session_factory, clock)
    calls = []

    def crashing_job():
        calls.append(clock.now())
        raise RuntimeError("connection reset")

    monkeypatch.setattr(scheduler, "run_job", crashing_job)

    assert asyncio.run(scheduler.tick()) is None
    assert scheduler.last_fired == clock.today()

    clock.advance(days=1)
    assert asyncio.run(scheduler.tick()) is None
    assert len(calls) == 2


def test_loop_survives_a_crashing_job(session_factory, clock, monkeypatch):
    scheduler = DailySettlementScheduler(session_factory, clock, tick_seconds=0.01)
    calls = []

    def crashing_job():
        calls.append(clock.now())
        clock.advance(days=1)
        raise RuntimeError("connection reset")

    monkeypatch.setattr(scheduler, "run_job", crashing_job)

    async def lifecycle():
        scheduler.start()
        for _ in range(200):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        assert not scheduler._task.done()
        await scheduler.stop()

    asyncio.run(lifecycle())

    assert len(calls) >= 2
    assert scheduler._task is None
