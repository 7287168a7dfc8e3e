from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import numpy as np
import pandas as pd

from ..errors import AnalysisInProgress, InvalidLimit, ValidationError
from ..interactions.store import InteractionStore
from ..jobs import SingleFlightJob, utcnow
from ..recommendations.catalog import Catalog
from ..recommendations.context import (
    effective_meal_period,
    effective_season,
    meal_period_for_hour,
    season_for_month,
)
from ..recommendations.models import Context, TrendingItem, TrendingResponse
from .config import DEFAULT_TRENDING_CONFIG, TrendingConfig

logger = logging.getLogger(__name__)

MAX_LIMIT = 50

_AGGREGATE_COLUMNS = [
    "total_interactions",
    "unique_users",
    "purchases",
    "avg_rating",
    "active_days",
    "momentum",
    "trending_score",
    "trend_score",
    "growth_rate",
    "trend_strength",
]


def _rate_values(df: pd.DataFrame) -> pd.Series:
    values = pd.to_numeric(df["value"], errors="coerce")
    return values.where(df["interaction_type"] == "rate")


class TrendAnalyzer(SingleFlightJob):
    """Precomputes trending and seasonal aggregates in the background.

    Reads never wait on a run: they see the aggregates of the last completed
    analysis, which are replaced as a whole when a new run finishes.
    """

    job_name = "trend analysis"
    idle_state = "idle"
    running_state = "analyzing"
    success_state = "completed"
    failed_state = "failed"
    conflict_error = AnalysisInProgress

    def __init__(
        self,
        store: InteractionStore,
        catalog: Catalog,
        config: TrendingConfig = DEFAULT_TRENDING_CONFIG,
    ) -> None:
        super().__init__(interval_seconds=config.update_interval_seconds)
        self.store = store
        self.catalog = catalog
        self.config = config
        self._aggregates: dict[str, pd.DataFrame] = {}
        self._seasonal: dict[tuple[str, str], pd.DataFrame] = {}
        self._emerging: dict[str, dict[str, Any]] = {}
        self._emerging_until: datetime | None = None
        self.last_update: datetime | None = None

    # ── Analysis ─────────────────────────────────────────────────────────

    def run(self) -> None:
        cutoff = utcnow()
        df = self.store.to_frame(until=cutoff)
        aggregates = {
            name: self._window_aggregate(df, cutoff, days)
            for name, days in self.config.windows.items()
        }
        seasonal = self._seasonal_patterns(df, cutoff)
        emerging = self._emerging_trends(df, cutoff)
        with self._lock:
            self._aggregates = aggregates
            self._seasonal = seasonal
            self._emerging = emerging
            self._emerging_until = cutoff + timedelta(seconds=self.config.emerging_ttl_seconds)
            self.last_update = cutoff
        logger.info(
            "Trend analysis at %s: %s",
            cutoff.isoformat(),
            {name: len(agg) for name, agg in aggregates.items()},
        )
        if emerging:
            logger.info("Emerging trends: %s", ", ".join(emerging))

    def analyze_trends(self) -> dict[str, Any]:
        ack = self.trigger()
        ack["message"] = "Trend analysis started"
        return ack

    def _available(self, item_ids) -> np.ndarray:
        return np.array([self.catalog.is_available(str(i)) for i in item_ids], dtype=bool)

    def _window_aggregate(self, df: pd.DataFrame, cutoff: datetime, days: int) -> pd.DataFrame:
        cutoff_ts = pd.Timestamp(cutoff)
        start = cutoff_ts - pd.Timedelta(days=days)
        window = df[(df["timestamp"] > start) & (df["timestamp"] <= cutoff_ts)]
        if window.empty:
            return pd.DataFrame(columns=_AGGREGATE_COLUMNS)

        age_days = ((cutoff_ts - window["timestamp"]).dt.total_seconds() // 86400).astype(int)
        window = window.assign(
            recency=days - age_days,
            day=window["timestamp"].dt.floor("D"),
            is_purchase=(window["interaction_type"] == "purchase").astype(int),
            rate_value=_rate_values(window),
        )
        agg = window.groupby("item_id").agg(
            total_interactions=("user_id", "size"),
            unique_users=("user_id", "nunique"),
            purchases=("is_purchase", "sum"),
            avg_rating=("rate_value", "mean"),
            active_days=("day", "nunique"),
            momentum=("recency", "mean"),
        )
        agg = agg[agg["total_interactions"] >= self.config.min_interactions_for_trending]
        agg = agg[self._available(agg.index)].copy()
        if agg.empty:
            return pd.DataFrame(columns=_AGGREGATE_COLUMNS)

        agg["avg_rating"] = agg["avg_rating"].fillna(0.0)
        agg["trending_score"] = (
            agg["total_interactions"] * 0.3
            + agg["unique_users"] * 0.25
            + agg["momentum"] * 0.2
            + agg["purchases"] * 0.15
            + agg["avg_rating"] * 0.1
        )
        agg["trend_score"] = agg["trending_score"] / agg["trending_score"].max()
        agg["growth_rate"] = (agg["momentum"] - 1) * 100
        agg["trend_strength"] = (
            (agg["active_days"] / days) * 0.4
            + (agg["unique_users"] / agg["total_interactions"].clip(lower=1)) * 0.3
            + (agg["momentum"] / 5).clip(upper=1) * 0.3
        )
        agg = agg.sort_values("trending_score", ascending=False, kind="stable")
        return agg.head(self.config.max_items_per_window)

    def _seasonal_patterns(
        self, df: pd.DataFrame, cutoff: datetime,
    ) -> dict[tuple[str, str], pd.DataFrame]:
        since = pd.Timestamp(cutoff) - pd.Timedelta(days=self.config.seasonal_history_days)
        history = df[df["timestamp"] > since]
        if history.empty:
            return {}

        history = history.assign(
            season=history["timestamp"].dt.month.map(season_for_month),
            meal_period=history["timestamp"].dt.hour.map(meal_period_for_hour),
            rate_value=_rate_values(history),
        )
        agg = (
            history.groupby(["season", "meal_period", "item_id"])
            .agg(interactions=("user_id", "size"), avg_rating=("rate_value", "mean"))
            .reset_index()
        )
        agg = agg[agg["interactions"] >= self.config.min_seasonal_interactions]
        agg = agg[self._available(agg["item_id"])].copy()
        if agg.empty:
            return {}

        agg["seasonal_score"] = agg["interactions"] * (agg["avg_rating"] / 5.0).fillna(0.5)
        patterns: dict[tuple[str, str], pd.DataFrame] = {}
        for (season, meal_period), group in agg.groupby(["season", "meal_period"]):
            group = group.sort_values("seasonal_score", ascending=False, kind="stable")
            group = group.set_index("item_id")
            group["score"] = group["seasonal_score"] / group["seasonal_score"].max()
            patterns[(season, meal_period)] = group
        return patterns

    def _emerging_trends(self, df: pd.DataFrame, cutoff: datetime) -> dict[str, dict[str, Any]]:
        """Items whose recent activity spiked above their usual hourly rate."""
        if df.empty:
            return {}
        cutoff_ts = pd.Timestamp(cutoff)
        recent_start = cutoff_ts - pd.Timedelta(hours=self.config.spike_window_hours)
        baseline_start = cutoff_ts - pd.Timedelta(days=self.config.spike_baseline_days)

        recent = df[(df["timestamp"] > recent_start) & (df["timestamp"] <= cutoff_ts)]
        counts = recent.groupby("item_id").agg(
            recent_interactions=("user_id", "size"),
            recent_users=("user_id", "nunique"),
        )
        counts = counts[counts["recent_interactions"] >= self.config.spike_min_interactions]
        counts = counts[self._available(counts.index)]
        if counts.empty:
            return {}
        counts = counts.sort_values("recent_interactions", ascending=False, kind="stable")
        counts = counts.head(self.config.max_emerging_items).copy()

        baseline = df[(df["timestamp"] > baseline_start) & (df["timestamp"] <= recent_start)]
        hourly = (
            baseline.assign(hour=baseline["timestamp"].dt.floor("h"))
            .groupby(["item_id", "hour"])
            .size()
            .groupby(level="item_id")
            .mean()
        )
        # Items with no baseline activity count as one interaction per hour.
        counts["avg_hourly"] = hourly.reindex(counts.index).fillna(1.0)
        spikes = counts[
            counts["recent_interactions"] > counts["avg_hourly"] * self.config.spike_multiplier
        ]
        return {
            str(item_id): {
                "recentInteractions": int(row["recent_interactions"]),
                "recentUsers": int(row["recent_users"]),
                "avgHourly": round(float(row["avg_hourly"]), 2),
            }
            for item_id, row in spikes.iterrows()
        }

    # ── Reads ────────────────────────────────────────────────────────────

    def _matches(self, item_id: str, category: str | None, meal_period: str | None) -> bool:
        row = self.catalog.get(item_id)
        if row is None:
            return False
        if category and row["category_lower"] != category.lower():
            return False
        periods = row["meal_periods_list"]
        if meal_period and periods and meal_period not in periods:
            return False
        return True

    def emerging_items(self) -> dict[str, dict[str, Any]]:
        """Emerging trends from the last run, empty once they have expired."""
        with self._lock:
            if self._emerging_until is None or utcnow() > self._emerging_until:
                return {}
            return dict(self._emerging)

    def trending_scores(
        self,
        time_period: str = "week",
        category: str | None = None,
        meal_period: str | None = None,
    ) -> dict[str, float]:
        with self._lock:
            agg = self._aggregates.get(time_period)
        if agg is None or agg.empty:
            return {}
        return {
            str(item_id): float(score)
            for item_id, score in agg["trend_score"].items()
            if self._matches(str(item_id), category, meal_period)
        }

    def _check_limit(self, limit: int) -> None:
        if limit > MAX_LIMIT:
            raise InvalidLimit()
        if limit < 1:
            raise ValidationError("Limit must be at least 1", code="INVALID_LIMIT")

    def get_trending_recommendations(
        self,
        limit: int = 10,
        time_period: str = "week",
        category: str | None = None,
        meal_period: str | None = None,
    ) -> TrendingResponse:
        self._check_limit(limit)
        if time_period not in self.config.windows:
            raise ValidationError(
                "Invalid time period",
                code="INVALID_TIME_PERIOD",
                details=[{
                    "field": "timePeriod",
                    "value": time_period,
                    "allowed": list(self.config.windows),
                }],
            )

        with self._lock:
            agg = self._aggregates.get(time_period)
        items: list[TrendingItem] = []
        emerging = self.emerging_items()
        if agg is not None and not agg.empty:
            for item_id, row in agg.iterrows():
                item_id = str(item_id)
                if not self._matches(item_id, category, meal_period):
                    continue
                info = self.catalog.get(item_id)
                growing = "growing" if row["growth_rate"] > 0 else "stable"
                items.append(TrendingItem(
                    item_id=item_id,
                    score=round(float(row["trend_score"]), 4),
                    algorithm="trending",
                    explanation=f"Trending {info['category']} with {growing} popularity",
                    category=info["category"],
                    name=info["name"],
                    metrics={
                        "totalInteractions": int(row["total_interactions"]),
                        "uniqueUsers": int(row["unique_users"]),
                        "purchases": int(row["purchases"]),
                        "growthRate": round(float(row["growth_rate"]), 2),
                        "trendStrength": round(float(row["trend_strength"]), 4),
                    },
                    is_emerging=item_id in emerging,
                ))
                if len(items) >= limit:
                    break

        return TrendingResponse(
            items=items,
            algorithm="trending",
            time_period=time_period,
            meal_period=meal_period,
        )

    def get_seasonal_recommendations(
        self,
        limit: int = 10,
        meal_period: str | None = None,
        context: Context | None = None,
    ) -> TrendingResponse:
        self._check_limit(limit)
        now = utcnow()
        season = effective_season(context, now)
        if not meal_period:
            meal_period = (
                effective_meal_period(context) if context is not None else None
            ) or meal_period_for_hour(now.hour)

        with self._lock:
            pattern = self._seasonal.get((season, meal_period))
        items: list[TrendingItem] = []
        if pattern is not None:
            for item_id, row in pattern.head(limit).iterrows():
                info = self.catalog.get(str(item_id))
                items.append(TrendingItem(
                    item_id=str(item_id),
                    score=round(float(row["score"]), 4),
                    algorithm="seasonal",
                    explanation=f"A {season} favourite for {meal_period}",
                    category=info["category"],
                    name=info["name"],
                    metrics={
                        "seasonalInteractions": int(row["interactions"]),
                        "seasonalRating": (
                            None if pd.isna(row["avg_rating"]) else round(float(row["avg_rating"]), 2)
                        ),
                        "seasonalScore": round(float(row["seasonal_score"]), 4),
                    },
                ))

        return TrendingResponse(
            items=items,
            algorithm="seasonal",
            meal_period=meal_period,
            season=season,
        )

    def get_analysis_status(self) -> dict[str, Any]:
        emerging = self.emerging_items()
        with self._lock:
            next_run = self.next_run_at()
            return {
                "status": self.state,
                "isAnalyzing": self.is_running,
                "lastUpdate": self.last_update.isoformat() if self.last_update else None,
                "nextUpdate": next_run.isoformat() if next_run else None,
                "lastError": self.last_error,
                "itemsAnalyzed": {name: len(agg) for name, agg in self._aggregates.items()},
                "emerging": sorted(emerging),
            }
