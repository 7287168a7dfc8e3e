from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class TrendingConfig:
    windows: dict[str, int] = field(
        default_factory=lambda: {"day": 1, "week": 7, "month": 30},
    )
    min_interactions_for_trending: int = int(os.getenv("MENUREC_MIN_TRENDING_INTERACTIONS", "10"))
    seasonal_history_days: int = 365
    min_seasonal_interactions: int = 10
    update_interval_seconds: float = 3600.0
    max_items_per_window: int = 100
    # An item is emerging when its recent count is at least spike_min_interactions
    # and above spike_multiplier times its hourly average over the baseline.
    spike_window_hours: int = 2
    spike_baseline_days: int = 7
    spike_min_interactions: int = 5
    spike_multiplier: float = 3.0
    max_emerging_items: int = 20
    emerging_ttl_seconds: float = 3600.0


DEFAULT_TRENDING_CONFIG = TrendingConfig()
