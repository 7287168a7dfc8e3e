from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field, field_validator

from ..recommendations.models import ALGORITHMS, CamelModel, _OpenModel
from .config import DEFAULT_EXPERIMENT_DEFAULTS as DEFAULTS

TargetMetric = Literal["ctr", "conversion_rate", "user_engagement", "revenue_per_user"]


class SegmentFilters(_OpenModel):
    min_interactions: int | None = Field(default=None, ge=0)
    preferred_categories: list[str] | None = None
    registration_days_ago: int | None = Field(default=None, ge=0)


class ExperimentConfig(CamelModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    control_algorithm: str
    treatment_algorithm: str
    traffic_split: float = Field(default=DEFAULTS.traffic_split, ge=0, le=1)
    target_metrics: list[TargetMetric] = Field(
        default_factory=lambda: list(DEFAULTS.target_metrics), min_length=1,
    )
    segment_filters: SegmentFilters = Field(default_factory=SegmentFilters)
    duration_days: int = Field(
        default=DEFAULTS.duration_days,
        ge=1,
        le=DEFAULTS.max_duration_days,
        validation_alias=AliasChoices("durationDays", "duration_days", "duration"),
    )

    @field_validator("control_algorithm", "treatment_algorithm")
    @classmethod
    def _known_algorithm(cls, value: str) -> str:
        if value not in ALGORITHMS:
            raise ValueError(f"must be one of: {', '.join(ALGORITHMS)}")
        return value

    @field_validator("target_metrics")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))
