"""Structured document filters for selective backups.

A filter is a list of :class:`models.FilterCondition` triples combined with
logical AND. Conditions are translated to a MongoDB query document; nothing
supplied by the caller is ever executed.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from pydantic import ValidationError

from models import FilterCondition, FilterOperator

from .errors import ConfigurationError

_MONGO_OPERATORS: dict[FilterOperator, str] = {
    FilterOperator.eq: "$eq",
    FilterOperator.ne: "$ne",
    FilterOperator.gt: "$gt",
    FilterOperator.gte: "$gte",
    FilterOperator.lt: "$lt",
    FilterOperator.lte: "$lte",
    FilterOperator.in_: "$in",
    FilterOperator.nin: "$nin",
    FilterOperator.exists: "$exists",
}


def build_query(conditions: Iterable[FilterCondition] | None) -> dict[str, Any]:
    """Return the MongoDB query matching every condition (``{}`` matches all)."""

    clauses: list[dict[str, Any]] = []
    for condition in conditions or ():
        value = condition.value
        if isinstance(value, tuple):
            value = list(value)
        clauses.append({condition.field: {_MONGO_OPERATORS[condition.operator]: value}})
    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def parse_condition(expression: str) -> FilterCondition:
    """Parse ``field:operator:value`` (or ``field:value`` for equality).

    ``value`` is read as JSON when possible (numbers, booleans, lists), and as
    a plain string otherwise.
    """

    parts = (expression or "").split(":", 2)
    try:
        if len(parts) == 2:
            field, raw = parts
            return FilterCondition(field=field, operator=FilterOperator.eq, value=_parse_value(raw))
        if len(parts) == 3:
            field, operator, raw = parts
            return FilterCondition(field=field, operator=operator.strip().lower(), value=_parse_value(raw))
    except ValidationError as exc:
        raise ConfigurationError(f"backup_filter_invalid: {expression!r}: {exc.errors()[0]['msg']}") from exc
    raise ConfigurationError(f"backup_filter_invalid: {expression!r}")
