"""Translate a recurrence written in local time into engine (UTC) fields.

Cron-style engines match every field independently against the engine clock.
A rule such as "23:30 on Fridays" written for another timezone therefore
cannot simply be copied: shifting 23:30 by a few hours may cross midnight,
which moves the day, the weekday and possibly the month and year as well.

The translation works on a reference instant built from the first value of
every specified field:

1. ``t0`` is "now" with those first values substituted;
2. ``t1`` is ``t0`` shifted by ``machine_offset + utc_offset`` hours;
3. for every field, the difference between ``t0`` and ``t1`` truncated at
   that field's granularity tells how much the shift moved the field,
   carries included;
4. that difference is added to every value of the field, wrapping the way a
   calendar does.

Sets whose values straddle a boundary differently from their first value
(e.g. hours ``[22, 2]`` shifted by +3) are translated with the carry of the
first value.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Mapping

from models import RecurrenceDef, RecurrenceSpec, TimeRange

FIELDS: tuple[str, ...] = ("year", "month", "day", "hour", "minute", "second", "day_of_week")

FIELD_BOUNDS: dict[str, tuple[int, int]] = {
    "year": (1970, 9999),
    "month": (1, 12),
    "day": (1, 31),
    "hour": (0, 23),
    "minute": (0, 59),
    "second": (0, 59),
    "day_of_week": (0, 6),
}

# Leap years repeat every four years, so eight covers Feb 29 across a
# skipped century year.
_REFERENCE_YEAR_SEARCH = 8


class ScheduleError(ValueError):
    """Raised when a recurrence spec cannot be translated."""


@dataclass(slots=True, frozen=True)
class UtcRule:
    """Recurrence fields normalized to the engine clock.

    Only fields present in the source spec appear in ``fields``.
    """

    fields: Mapping[str, tuple[int, ...]]

    def get(self, name: str) -> tuple[int, ...] | None:
        return self.fields.get(name)

    def cron_fields(self) -> dict[str, str]:
        """Return the fields as comma separated lists, keyed like ``CronTrigger``."""

        return {
            name: ",".join(str(value) for value in values)
            for name, values in self.fields.items()
        }


def expand_field(name: str, definition: RecurrenceDef | None) -> list[int]:
    """Return the explicit values of one field definition.

    A single value becomes a singleton, a list is kept as is and a
    :class:`TimeRange` yields ``start, start + step, ...`` while below ``end``.
    """

    if definition is None:
        return []
    if isinstance(definition, TimeRange):
        values = list(range(definition.start, definition.end, definition.step))
    elif isinstance(definition, bool):
        raise ScheduleError(f"{name}: boolean is not a valid value")
    elif isinstance(definition, int):
        values = [definition]
    else:
        values = [int(value) for value in definition]
    if not values:
        raise ScheduleError(f"{name}: definition yields no values")
    low, high = FIELD_BOUNDS[name]
    for value in values:
        if not low <= value <= high:
            raise ScheduleError(f"{name}: {value} outside {low}-{high}")
    return values


def expand_spec(spec: RecurrenceSpec) -> dict[str, list[int]]:
    """Return explicit values for every specified field.

    ``second`` defaults to ``0`` so a rule never fires every second of the
    matching minute.
    """

    specified = spec.specified()
    specified.setdefault("second", 0)
    return {name: expand_field(name, specified[name]) for name in FIELDS if name in specified}


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _reference_date(values: Mapping[str, list[int]], base: datetime) -> date:
    if "year" in values:
        years: tuple[int, ...] = (values["year"][0],)
    else:
        years = tuple(range(base.year, base.year + _REFERENCE_YEAR_SEARCH))

    if "day" not in values:
        # The current day is only a filler: clamp it to the month's length.
        year = years[0]
        month = values["month"][0] if "month" in values else base.month
        return date(year, month, min(base.day, _days_in_month(year, month)))

    day = values["day"][0]
    candidates: Iterable[tuple[int, int]]
    if "month" in values:
        candidates = ((year, values["month"][0]) for year in years)
    elif "year" in values:
        candidates = ((years[0], (base.month - 1 + step) % 12 + 1) for step in range(12))
    else:
        start = base.year * 12 + base.month - 1
        candidates = (
            (year, index + 1)
            for year, index in (divmod(start + step, 12) for step in range(12))
        )

    for year, month in candidates:
        if day <= _days_in_month(year, month):
            return date(year, month, day)
    raise ScheduleError(f"no valid reference date for month={values.get('month')} day={day}")


def reference_instant(values: Mapping[str, list[int]], now: datetime) -> datetime:
    """Return ``now`` with the first value of every specified field substituted.

    Unspecified date fields fall back to ``now`` and must still form a real
    date: an unspecified day is clamped to the month's length, an unspecified
    month moves forward to the next month that has the requested day and an
    unspecified year moves forward to the next year that has it (Feb 29).
    """

    base = now.replace(microsecond=0, tzinfo=None)
    reference = _reference_date(values, base)

    return base.replace(
        year=reference.year,
        month=reference.month,
        day=reference.day,
        hour=values["hour"][0] if "hour" in values else base.hour,
        minute=values["minute"][0] if "minute" in values else base.minute,
        second=values["second"][0] if "second" in values else base.second,
    )


def _truncate_hour(moment: datetime) -> datetime:
    return moment.replace(minute=0, second=0)


def field_shifts(t0: datetime, t1: datetime) -> dict[str, int]:
    """Return, per field, how far ``t1`` moved that field relative to ``t0``.

    Each difference is taken after truncating both instants to the field's
    granularity, so it captures carries (23:30 + 1h moves the day by one)
    without counting the finer fields twice.
    """

    days = (t1.date() - t0.date()).days
    hours = int((_truncate_hour(t1) - _truncate_hour(t0)) // timedelta(hours=1))
    return {
        "year": t1.year - t0.year,
        "month": (t1.year * 12 + t1.month) - (t0.year * 12 + t0.month),
        "day": days,
        "hour": hours,
        "minute": t1.minute - t0.minute,
        "second": t1.second - t0.second,
        "day_of_week": days,
    }


def _shift_value(name: str, value: int, shift: int, t0: datetime) -> int:
    if name == "year":
        return value + shift
    if name == "month":
        return (value - 1 + shift) % 12 + 1
    if name == "day":
        if shift == 0:
            return value
        # Days overflow into the neighbouring months of the reference month;
        # a value past the reference month's end keeps its own length.
        shifted = value + shift
        length = max(_days_in_month(t0.year, t0.month), value)
        if shifted > length:
            return shifted - length
        if shifted < 1:
            previous = date(t0.year, t0.month, 1) - timedelta(days=1)
            return previous.day + shifted
        return shifted
    if name == "hour":
        return (value + shift) % 24
    if name in {"minute", "second"}:
        return (value + shift) % 60
    return (value + shift) % 7


def to_utc_rule(
    spec: RecurrenceSpec,
    utc_offset: float,
    *,
    now: datetime | None = None,
    machine_offset: float = 0.0,
) -> UtcRule:
    """Return the engine-clock rule equivalent to ``spec``.

    Parameters
    ----------
    spec:
        Recurrence in the local time reference.
    utc_offset:
        Hours added to the local wall time to obtain UTC (``-3`` for UTC+3).
    now:
        Current engine time; unspecified date fields are taken from it.
    machine_offset:
        UTC offset, in hours, of the clock the engine evaluates rules against
        (``0`` for an engine running on UTC).
    """

    values = expand_spec(spec)
    current = now or datetime.now(timezone.utc)
    t0 = reference_instant(values, current)
    t1 = t0 + timedelta(hours=machine_offset + utc_offset)
    shifts = field_shifts(t0, t1)

    fields: dict[str, tuple[int, ...]] = {}
    for name in FIELDS:
        if name not in values:
            continue
        shifted = [_shift_value(name, value, shifts[name], t0) for value in values[name]]
        fields[name] = tuple(sorted(set(shifted)))
    return UtcRule(fields=fields)
