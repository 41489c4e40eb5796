"""Tests for recurring job registration."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from models import RecurrenceSpec
from scheduling import (
    APSchedulerEngine,
    NonOverlappingJob,
    engine_offset_hours,
    log_next_invocations,
    schedule_job_utc,
)
from scheduling.utc import UtcRule

NEXT = datetime(2024, 6, 15, 4, 30, tzinfo=timezone.utc)


class FakeEngine:
    def __init__(self, tz=timezone.utc):
        self.timezone = tz
        self.registered: list[tuple[str, UtcRule, object]] = []

    def register_job(self, name, rule, callback):
        self.registered.append((name, rule, callback))
        return name

    def list_scheduled_jobs(self):
        return [name for name, _, _ in self.registered]

    def next_run_time(self, handle):
        return NEXT


def test_schedule_job_utc_registers_translated_rule() -> None:
    engine = FakeEngine()
    calls = []

    job = schedule_job_utc(
        "nightly",
        RecurrenceSpec(hour=23, minute=30, day_of_week=[4, 5]),
        5,
        lambda: calls.append("ran"),
        engine=engine,
        now=datetime(2024, 6, 12, 8, 0),
    )

    name, rule, callback = engine.registered[0]
    assert name == "nightly"
    assert rule.fields == {"hour": (4,), "minute": (30,), "second": (0,), "day_of_week": (5, 6)}
    assert job.rule == rule
    assert job.next_run_time == NEXT
    assert callback == job.guard.run
    assert log_next_invocations(engine) == [("nightly", NEXT)]


def test_schedule_job_utc_uses_engine_offset() -> None:
    engine = FakeEngine(tz=timezone(timedelta(hours=2)))

    job = schedule_job_utc(
        "noon",
        RecurrenceSpec(hour=12, minute=0),
        -2,
        lambda: None,
        engine=engine,
        now=datetime(2024, 6, 12, 8, 0),
    )

    assert job.rule.get("hour") == (12,)


def test_engine_offset_hours() -> None:
    assert engine_offset_hours(timezone.utc) == 0.0
    assert engine_offset_hours(timezone(timedelta(hours=5, minutes=30))) == 5.5


@pytest.mark.asyncio
async def test_overlapping_fire_is_skipped() -> None:
    release = asyncio.Event()
    runs = []

    async def slow_backup():
        runs.append("start")
        await release.wait()
        return "done"

    guard = NonOverlappingJob("nightly", slow_backup)
    first = asyncio.create_task(guard.run())
    await asyncio.sleep(0)

    assert guard.running
    assert await guard.run() is None
    assert guard.skipped == 1

    release.set()
    assert await first == "done"
    assert runs == ["start"]
    assert not guard.running


@pytest.mark.asyncio
async def test_guard_runs_sync_callbacks_and_releases_after_failure() -> None:
    guard = NonOverlappingJob("sync", lambda: 7)
    assert await guard.run() == 7

    def boom():
        raise RuntimeError("disk full")

    failing = NonOverlappingJob("failing", boom)
    with pytest.raises(RuntimeError):
        await failing.run()
    assert not failing.running


@pytest.mark.asyncio
async def test_apscheduler_engine_registers_cron_job() -> None:
    engine = APSchedulerEngine()
    rule = UtcRule(fields={"hour": (4,), "minute": (30,), "second": (0,), "day_of_week": (5, 6)})

    async def callback():
        return None

    handle = engine.register_job("nightly", rule, callback)

    assert [job.id for job in engine.list_scheduled_jobs()] == ["nightly"]
    assert handle.max_instances == 1
    assert handle.coalesce is True
    when = engine.next_run_time(handle)
    assert when.tzinfo is not None
    assert when.weekday() in (5, 6)
    assert (when.hour, when.minute, when.second) == (4, 30, 0)
