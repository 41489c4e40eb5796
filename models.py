"""Pydantic models used throughout the application.

Adds a compatibility shim for ``enum.StrEnum`` on Python < 3.11.
"""

from __future__ import annotations

from enum import Enum
try:  # Python 3.11+
    from enum import StrEnum as _StrEnum
except ImportError:  # Python 3.10 fallback
    class _StrEnum(str, Enum):
        pass
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FilterOperator(_StrEnum):
    """Comparison operators accepted in backup filters."""

    eq = "eq"
    ne = "ne"
    gt = "gt"
    gte = "gte"
    lt = "lt"
    lte = "lte"
    in_ = "in"
    nin = "nin"
    exists = "exists"


class FilterCondition(BaseModel):
    """Single ``field``/``operator``/``value`` predicate of a backup filter.

    Conditions are interpreted, never evaluated: the field is a dotted path
    into the document and the operator comes from a closed set.
    """

    field: str
    operator: FilterOperator = FilterOperator.eq
    value: Any = None

    model_config = ConfigDict(frozen=True)

    @field_validator("field")
    @classmethod
    def _check_field(cls, value: str) -> str:
        candidate = (value or "").strip()
        if not candidate:
            raise ValueError("filter field must not be empty")
        if "\x00" in candidate:
            raise ValueError("filter field must not contain NUL characters")
        if any(part == "" or part.startswith("$") for part in candidate.split(".")):
            raise ValueError(f"invalid filter field path: {candidate!r}")
        return candidate

    @model_validator(mode="after")
    def _check_value(self) -> "FilterCondition":
        if self.operator in {FilterOperator.in_, FilterOperator.nin}:
            if not isinstance(self.value, (list, tuple)):
                raise ValueError(f"operator {self.operator.value!r} expects a list value")
        if self.operator is FilterOperator.exists and not isinstance(self.value, bool):
            raise ValueError("operator 'exists' expects a boolean value")
        return self


class TimeRange(BaseModel):
    """Recurrence range: ``start``, ``start + step``, ... while below ``end``."""

    start: int
    end: int
    step: int = 1

    @field_validator("step")
    @classmethod
    def _positive_step(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("range step must be positive")
        return value


RecurrenceDef = Union[int, list[int], TimeRange]


class RecurrenceSpec(BaseModel):
    """When a job should fire, expressed in a local time reference.

    Every field is optional and accepts an exact value, an explicit list or a
    :class:`TimeRange`. ``month`` is 1-12, ``day`` is the day of the month and
    ``day_of_week`` counts from Monday (0) to Sunday (6), as APScheduler does.
    """

    year: RecurrenceDef | None = None
    month: RecurrenceDef | None = None
    day: RecurrenceDef | None = Field(default=None, alias="date")
    hour: RecurrenceDef | None = None
    minute: RecurrenceDef | None = None
    second: RecurrenceDef | None = None
    day_of_week: RecurrenceDef | None = Field(default=None, alias="dayOfWeek")

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def specified(self) -> dict[str, RecurrenceDef]:
        """Return the fields that carry a definition, keyed by field name."""

        return {
            name: value
            for name, value in (
                (name, getattr(self, name)) for name in type(self).model_fields
            )
            if value is not None
        }
