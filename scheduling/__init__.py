"""Timezone-aware recurring jobs."""

from .jobs import (
    APSchedulerEngine,
    NonOverlappingJob,
    RecurringJobEngine,
    ScheduledJob,
    engine_offset_hours,
    log_next_invocations,
    schedule_job_utc,
)
from .utc import ScheduleError, UtcRule, to_utc_rule

__all__ = [
    "APSchedulerEngine",
    "NonOverlappingJob",
    "RecurringJobEngine",
    "ScheduleError",
    "ScheduledJob",
    "UtcRule",
    "engine_offset_hours",
    "log_next_invocations",
    "schedule_job_utc",
    "to_utc_rule",
]
