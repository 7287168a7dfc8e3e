from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

ALGORITHMS = (
    "collaborative",
    "content_based",
    "hybrid",
    "neural",
    "trending",
    "adaptive_hybrid",
    "weighted_hybrid",
)

MealPeriod = Literal["breakfast", "lunch", "dinner", "snack"]
Season = Literal["spring", "summer", "autumn", "winter"]
TimePeriod = Literal["day", "week", "month"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _OpenModel(CamelModel):
    # Unknown keys are kept so newer clients are not rejected.
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow",
    )


# ── Request context ──────────────────────────────────────────────────────


class Location(_OpenModel):
    lat: float | None = Field(
        default=None, ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"),
    )
    lon: float | None = Field(
        default=None, ge=-180, le=180, validation_alias=AliasChoices("lon", "longitude"),
    )


class Weather(_OpenModel):
    temperature: float | None = None
    condition: str | None = None
    season: Season | None = None


class BudgetRange(_OpenModel):
    min: float | None = Field(default=None, ge=0)
    max: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _min_not_above_max(self) -> "BudgetRange":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("budgetRange.min must not exceed budgetRange.max")
        return self

    def contains(self, price: float) -> bool:
        lower = self.min if self.min is not None else 0.0
        upper = self.max if self.max is not None else float("inf")
        return lower <= price <= upper


class Context(_OpenModel):
    time_of_day: int | None = Field(default=None, ge=0, le=23)
    location: Location | None = None
    weather: Weather | None = None
    budget_range: BudgetRange | None = None
    meal_period: MealPeriod | None = None
    category: str | None = None
    is_first_visit: bool = False
    is_exploring: bool = False
    promotional_items: set[str] = Field(default_factory=set)

    @field_validator("promotional_items", mode="before")
    @classmethod
    def _item_ids_as_strings(cls, value: Any) -> Any:
        if value is None:
            return set()
        if isinstance(value, (list, tuple, set, frozenset)):
            return {str(v) for v in value}
        return value


# ── Interactions ─────────────────────────────────────────────────────────


class InteractionMetadata(_OpenModel):
    source: Literal["web", "mobile", "api"] = "api"
    session_id: str | None = None
    recommendation_id: str | None = None
    position: int | None = Field(default=None, ge=0)


class InteractionRequest(CamelModel):
    interaction_type: str = Field(..., min_length=1)
    interaction_value: float | None = None
    metadata: InteractionMetadata = Field(default_factory=InteractionMetadata)


class InteractionResponse(CamelModel):
    status: str
    user_id: str
    item_id: str
    interaction_type: str
    recorded_at: datetime


# ── Recommendations ──────────────────────────────────────────────────────


class RecommendationItem(CamelModel):
    item_id: str
    score: float
    algorithm: str
    explanation: str | None = None
    category: str | None = None
    name: str | None = None
    is_promotional: bool = False


class ExperimentInfo(CamelModel):
    experiment_id: str
    variant: Literal["control", "treatment"]


class RecommendationResponse(CamelModel):
    items: list[RecommendationItem]
    algorithm: str
    total_generated: int
    experiment_info: ExperimentInfo | None = None
    user_id: str | None = None
    generated_at: datetime | None = None


class TrendingItem(CamelModel):
    item_id: str
    score: float
    algorithm: str
    explanation: str | None = None
    category: str | None = None
    name: str | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    is_emerging: bool = False


class TrendingResponse(CamelModel):
    items: list[TrendingItem]
    algorithm: str
    time_period: str | None = None
    meal_period: str | None = None
    season: str | None = None
