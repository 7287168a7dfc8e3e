from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _default_hybrid_weights() -> dict[str, float]:
    return {
        "collaborative": 0.45,
        "content_based": 0.30,
        "neural": 0.15,
        "trending": 0.10,
    }


@dataclass(frozen=True)
class EngineConfig:
    default_algorithm: str = "hybrid"
    max_recommendations: int = 50

    enable_ab_testing: bool = True
    enable_neural: bool = True
    enable_trending: bool = True
    enable_scheduling: bool = False

    hybrid_weights: dict[str, float] = field(default_factory=_default_hybrid_weights)
    weighted_hybrid_weights: dict[str, float] = field(
        default_factory=lambda: {"collaborative": 0.6, "content_based": 0.4},
    )

    exclusion_window_days: int = 30
    exclusion_types: tuple[str, ...] = ("purchase", "favorite")

    # Collaborative filtering
    history_days: int = 90
    min_user_interactions: int = 3
    min_common_items: int = 2
    min_similarity: float = 0.1
    max_neighbors: int = 50
    neighbor_cache_ttl: int = 300

    cold_start_threshold: int = 5
    trending_window: str = "week"

    # Context multipliers
    meal_period_boost: float = 1.2
    weather_boost: float = 1.15
    budget_boost: float = 1.1
    promotion_boost: float = 1.2

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            default_algorithm=os.getenv("MENUREC_DEFAULT_ALGORITHM", "hybrid"),
            enable_ab_testing=_env_flag("MENUREC_ENABLE_AB_TESTING", True),
            enable_neural=_env_flag("MENUREC_ENABLE_NEURAL", True),
            enable_trending=_env_flag("MENUREC_ENABLE_TRENDING", True),
            enable_scheduling=_env_flag("MENUREC_ENABLE_SCHEDULING", False),
        )


DEFAULT_ENGINE_CONFIG = EngineConfig()
