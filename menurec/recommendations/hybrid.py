"""
Blend policies over the base strategies.

``hybrid`` mixes with the configured weights, ``weighted_hybrid`` with a
fixed collaborative/content split and ``adaptive_hybrid`` picks weights from
a profile of the user.  Each base strategy's scores are min-max normalized
before mixing, so no strategy dominates because of its scale.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

from ..errors import UnavailableError
from ..interactions.store import InteractionStore
from ..jobs import utcnow
from .catalog import Catalog
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .models import Context
from .strategies import ScoredItem, Strategy

logger = logging.getLogger(__name__)

# "popularity" in the user-type tables is served by the trending strategy.
ADAPTIVE_WEIGHTS: dict[str, dict[str, float]] = {
    "cold_start": {"content_based": 0.7, "trending": 0.3},
    "first_visit": {"trending": 0.5, "content_based": 0.4, "collaborative": 0.1},
    "explorer": {"content_based": 0.6, "collaborative": 0.3, "trending": 0.1},
    "focused": {"collaborative": 0.7, "content_based": 0.2, "trending": 0.1},
    "active": {"collaborative": 0.5, "content_based": 0.4, "trending": 0.1},
    "casual": {"trending": 0.4, "content_based": 0.4, "collaborative": 0.2},
}


def min_max(items: list[ScoredItem]) -> dict[str, float]:
    if not items:
        return {}
    scores = [i.score for i in items]
    lo, hi = min(scores), max(scores)
    if hi == lo:
        return {i.item_id: 1.0 for i in items}
    return {i.item_id: (i.score - lo) / (hi - lo) for i in items}


class BlendStrategy(Strategy):
    """Weighted sum of normalized base-strategy scores."""

    def __init__(self, strategies: Mapping[str, Strategy]) -> None:
        self.strategies = strategies

    def weights_for(self, user_id: str, context: Context) -> dict[str, float]:
        raise NotImplementedError

    def _active_weights(self, user_id: str, context: Context) -> dict[str, float]:
        weights = dict(self.weights_for(user_id, context))
        neural = self.strategies.get("neural")
        if "neural" in weights and (neural is None or not getattr(neural, "available", False)):
            weights["neural"] = 0.0
        return {name: w for name, w in weights.items() if w > 0 and name in self.strategies}

    def score(self, user_id, candidate_ids, context, options=None):
        weights = self._active_weights(user_id, context)
        position = {item_id: i for i, item_id in enumerate(candidate_ids)}
        combined: dict[str, float] = {}
        sources: dict[str, dict[str, float]] = {}
        explanations: dict[str, tuple[float, str]] = {}

        for name, weight in weights.items():
            try:
                scored = self.strategies[name].score(user_id, candidate_ids, context, options)
            except UnavailableError:
                logger.warning("%s unavailable, excluded from %s blend", name, self.name)
                continue
            normalized = min_max(scored)
            for item in scored:
                contribution = weight * normalized[item.item_id]
                combined[item.item_id] = combined.get(item.item_id, 0.0) + contribution
                sources.setdefault(item.item_id, {})[name] = round(normalized[item.item_id], 4)
                best = explanations.get(item.item_id)
                if item.explanation and (best is None or contribution > best[0]):
                    explanations[item.item_id] = (contribution, item.explanation)

        ranked = sorted(combined, key=lambda i: (-combined[i], position.get(i, len(position))))
        return [
            ScoredItem(
                item_id=item_id,
                score=combined[item_id],
                explanation=explanations.get(item_id, (0.0, None))[1],
                sources=sources.get(item_id, {}),
            )
            for item_id in ranked
        ]


class HybridStrategy(BlendStrategy):
    name = "hybrid"

    def __init__(
        self, strategies: Mapping[str, Strategy], config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    ) -> None:
        super().__init__(strategies)
        self.config = config

    def weights_for(self, user_id, context):
        return self.config.hybrid_weights


class WeightedHybridStrategy(BlendStrategy):
    name = "weighted_hybrid"

    def __init__(
        self, strategies: Mapping[str, Strategy], config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    ) -> None:
        super().__init__(strategies)
        self.config = config

    def weights_for(self, user_id, context):
        return self.config.weighted_hybrid_weights


@dataclass
class UserProfile:
    interaction_count: int
    unique_items: int
    unique_categories: int
    exploration_score: float
    engagement_score: float
    user_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "interactionCount": self.interaction_count,
            "uniqueItems": self.unique_items,
            "uniqueCategories": self.unique_categories,
            "explorationScore": round(self.exploration_score, 3),
            "engagementScore": round(self.engagement_score, 3),
            "userType": self.user_type,
        }


def build_user_profile(
    store: InteractionStore,
    catalog: Catalog,
    user_id: str,
    config: EngineConfig = DEFAULT_ENGINE_CONFIG,
) -> UserProfile:
    history = store.for_user(user_id)
    count = len(history)
    items = {i.item_id for i in history}
    categories = {catalog.category_of(i) for i in items} - {None}
    recent_since = utcnow() - timedelta(days=7)
    recent = sum(1 for i in history if i.timestamp >= recent_since)

    exploration = len(categories) / max(1, len(items))
    engagement = recent / max(1, count)

    user_type = "new_user"
    if count >= config.cold_start_threshold:
        if exploration > 0.7:
            user_type = "explorer"
        elif exploration < 0.3:
            user_type = "focused"
        elif engagement > 0.3:
            user_type = "active"
        else:
            user_type = "casual"

    return UserProfile(
        interaction_count=count,
        unique_items=len(items),
        unique_categories=len(categories),
        exploration_score=exploration,
        engagement_score=engagement,
        user_type=user_type,
    )


class AdaptiveHybridStrategy(BlendStrategy):
    name = "adaptive_hybrid"

    def __init__(
        self,
        strategies: Mapping[str, Strategy],
        store: InteractionStore,
        catalog: Catalog,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    ) -> None:
        super().__init__(strategies)
        self.store = store
        self.catalog = catalog
        self.config = config

    def weight_table(self, profile: UserProfile, context: Context) -> str:
        if profile.user_type == "new_user":
            return "cold_start"
        if context.is_first_visit:
            return "first_visit"
        return profile.user_type

    def weights_for(self, user_id, context):
        profile = build_user_profile(self.store, self.catalog, user_id, self.config)
        return ADAPTIVE_WEIGHTS[self.weight_table(profile, context)]
