"""Recurring jobs registered against APScheduler in engine (UTC) time."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Protocol

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from models import RecurrenceSpec

from .utc import UtcRule, to_utc_rule

logger = structlog.get_logger(__name__)

JobCallback = Callable[[], Any]


class RecurringJobEngine(Protocol):
    """Cron-style engine evaluating :class:`UtcRule` fields against its clock."""

    timezone: tzinfo

    def register_job(self, name: str, rule: UtcRule, callback: JobCallback) -> Any: ...

    def list_scheduled_jobs(self) -> list[Any]: ...

    def next_run_time(self, handle: Any) -> datetime | None: ...


@dataclass(slots=True)
class ScheduledJob:
    """A registered recurrence and its next invocation."""

    name: str
    rule: UtcRule
    callback: JobCallback
    next_run_time: datetime | None
    handle: Any = None
    guard: NonOverlappingJob | None = None


class NonOverlappingJob:
    """Runs ``func`` unless a previous run of the same job is still in flight.

    A fire that arrives while the previous one is running is skipped and
    logged, not queued.
    """

    def __init__(self, name: str, func: JobCallback) -> None:
        self.name = name
        self.func = func
        self.skipped = 0
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> Any:
        if self._lock.locked():
            self.skipped += 1
            logger.warning("scheduled_job_skipped", job=self.name, reason="previous_run_in_progress")
            return None
        async with self._lock:
            logger.info("scheduled_job_started", job=self.name)
            try:
                result = self.func()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:
                logger.error("scheduled_job_failed", job=self.name, error=str(exc))
                raise
            logger.info("scheduled_job_finished", job=self.name)
            return result


class APSchedulerEngine:
    """:class:`RecurringJobEngine` backed by :class:`AsyncIOScheduler`."""

    def __init__(
        self,
        scheduler: AsyncIOScheduler | None = None,
        *,
        tz: tzinfo = timezone.utc,
        misfire_grace_time: int = 60,
    ) -> None:
        self.timezone = tz
        self.scheduler = scheduler or AsyncIOScheduler(timezone=tz)
        self.misfire_grace_time = misfire_grace_time

    def trigger_for(self, rule: UtcRule) -> CronTrigger:
        return CronTrigger(timezone=self.timezone, **rule.cron_fields())

    def register_job(self, name: str, rule: UtcRule, callback: JobCallback) -> Job:
        return self.scheduler.add_job(
            callback,
            self.trigger_for(rule),
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.misfire_grace_time,
        )

    def list_scheduled_jobs(self) -> list[Job]:
        return self.scheduler.get_jobs()

    def next_run_time(self, handle: Job) -> datetime | None:
        return handle.trigger.get_next_fire_time(None, datetime.now(self.timezone))

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)


def engine_offset_hours(tz: tzinfo, at: datetime | None = None) -> float:
    """Return the UTC offset of ``tz`` in hours at ``at`` (default: now)."""

    moment = at or datetime.now(timezone.utc)
    offset = moment.astimezone(tz).utcoffset()
    return offset.total_seconds() / 3600 if offset is not None else 0.0


def schedule_job_utc(
    name: str,
    spec: RecurrenceSpec,
    utc_offset: float,
    callback: JobCallback,
    *,
    engine: RecurringJobEngine,
    now: datetime | None = None,
    machine_offset: float | None = None,
) -> ScheduledJob:
    """Register ``callback`` to run when local time matches ``spec``.

    ``utc_offset`` is the number of hours added to the local wall time to
    obtain UTC. The rule is translated to the engine clock with
    :func:`scheduling.utc.to_utc_rule` and guarded by
    :class:`NonOverlappingJob`.
    """

    offset = engine_offset_hours(engine.timezone) if machine_offset is None else machine_offset
    current = now or datetime.now(engine.timezone).replace(tzinfo=None)
    rule = to_utc_rule(spec, utc_offset, now=current, machine_offset=offset)
    guard = NonOverlappingJob(name, callback)
    handle = engine.register_job(name, rule, guard.run)
    job = ScheduledJob(
        name=name,
        rule=rule,
        callback=callback,
        next_run_time=engine.next_run_time(handle),
        handle=handle,
        guard=guard,
    )
    logger.info(
        "scheduled_job_registered",
        job=name,
        rule=rule.cron_fields(),
        utc_offset=utc_offset,
        next_run_time=job.next_run_time.isoformat() if job.next_run_time else None,
    )
    return job


def log_next_invocations(engine: RecurringJobEngine) -> list[tuple[str, datetime | None]]:
    """Log and return the next invocation of every registered job."""

    upcoming: list[tuple[str, datetime | None]] = []
    for handle in engine.list_scheduled_jobs():
        name = getattr(handle, "name", None) or getattr(handle, "id", str(handle))
        when = engine.next_run_time(handle)
        upcoming.append((name, when))
        logger.info(
            "scheduled_job_next_invocation",
            job=name,
            next_run_time=when.isoformat() if when else None,
        )
    return upcoming
