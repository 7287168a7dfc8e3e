"""
Request-time context normalization.

The context is validated once, here, at the boundary.  Everything below the
orchestrator receives a ``Context`` instance and never re-validates it.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from ..errors import InvalidContext
from .models import Context

_SEASONS_BY_MONTH = {
    12: "winter", 1: "winter", 2: "winter",
    3: "spring", 4: "spring", 5: "spring",
    6: "summer", 7: "summer", 8: "summer",
    9: "autumn", 10: "autumn", 11: "autumn",
}


def field_errors(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(p) for p in err["loc"]),
            "message": err["msg"],
            "value": err.get("input"),
        }
        for err in exc.errors(include_url=False)
    ]


def normalize(raw: Context | Mapping[str, Any] | str | bytes | None) -> Context:
    """Return a validated ``Context`` from a structured or serialized form."""
    if isinstance(raw, Context):
        return raw
    if raw is None:
        return Context()
    if isinstance(raw, (str, bytes)):
        if not raw.strip():
            return Context()
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise InvalidContext(
                "Invalid context JSON format",
                details=[{"field": "context", "message": str(exc)}],
            ) from exc
    if not isinstance(raw, Mapping):
        raise InvalidContext(
            "Context must be a JSON object",
            details=[{"field": "context", "message": f"got {type(raw).__name__}"}],
        )
    try:
        return Context.model_validate(dict(raw))
    except PydanticValidationError as exc:
        raise InvalidContext(details=field_errors(exc)) from exc


def meal_period_for_hour(hour: int) -> str:
    if 6 <= hour < 11:
        return "breakfast"
    if 11 <= hour < 16:
        return "lunch"
    if 18 <= hour < 23:
        return "dinner"
    return "snack"


def effective_meal_period(context: Context) -> str | None:
    if context.meal_period:
        return context.meal_period
    if context.time_of_day is not None:
        return meal_period_for_hour(context.time_of_day)
    return None


def season_for_month(month: int) -> str:
    return _SEASONS_BY_MONTH[month]


def effective_season(context: Context | None = None, now: datetime | None = None) -> str:
    if context is not None and context.weather and context.weather.season:
        return context.weather.season
    now = now or datetime.now(timezone.utc)
    return season_for_month(now.month)
