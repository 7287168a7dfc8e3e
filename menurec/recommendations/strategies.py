"""
Scoring strategies.

Every strategy answers the same question: given a user, a list of candidate
item ids and a validated ``Context``, how good is each candidate?  Scores are
"higher is better" and comparable only within one strategy's output; the
blend policies in ``hybrid.py`` normalize before mixing.  A strategy may
leave candidates out of its answer when it has nothing to say about them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Mapping

import numpy as np
import pandas as pd
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from ..errors import InvalidAlgorithm, ModelUnavailable
from ..interactions.store import InteractionStore
from ..jobs import utcnow
from .cache import cache_get, cache_set
from .catalog import Catalog, price_band, price_band_distance
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .context import effective_meal_period
from .models import ALGORITHMS, Context

if TYPE_CHECKING:
    from ..neural.trainer import TrainingController
    from ..trending.analyzer import TrendAnalyzer

logger = logging.getLogger(__name__)


@dataclass
class ScoredItem:
    item_id: str
    score: float
    explanation: str | None = None
    sources: dict[str, float] = field(default_factory=dict)


class Strategy:
    """Common scoring interface, resolved by ``name`` through the registry."""

    name = ""

    def score(
        self,
        user_id: str,
        candidate_ids: list[str],
        context: Context,
        options: Mapping[str, Any] | None = None,
    ) -> list[ScoredItem]:
        raise NotImplementedError


# ── Collaborative filtering ──────────────────────────────────────────────


class CollaborativeStrategy(Strategy):
    name = "collaborative"

    def __init__(
        self, store: InteractionStore, config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    ) -> None:
        self.store = store
        self.config = config

    def _ratings(self) -> pd.DataFrame:
        since = utcnow() - timedelta(days=self.config.history_days)
        df = self.store.to_frame(since=since)
        if df.empty:
            return pd.DataFrame()
        # Strongest signal per (user, item) pair.
        return df.groupby(["user_id", "item_id"])["rating"].max().unstack(fill_value=0.0)

    def neighbors(self, user_id: str, matrix: pd.DataFrame) -> list[tuple[str, float]]:
        key = {"kind": "neighbors", "user": user_id}
        version = len(self.store)
        cached = cache_get(key, ttl=self.config.neighbor_cache_ttl, version=version)
        if cached is not None:
            return cached

        target = matrix.loc[[user_id]].to_numpy()
        others = matrix.drop(index=user_id)
        if others.empty:
            cache_set(key, [], version=version)
            return []

        sims = cosine_similarity(target, others.to_numpy()).flatten()
        common = ((others.to_numpy() > 0) & (target > 0)).sum(axis=1)

        result = [
            (str(other), float(sim))
            for other, sim, shared in zip(others.index, sims, common)
            if shared >= self.config.min_common_items and sim >= self.config.min_similarity
        ]
        result.sort(key=lambda pair: -pair[1])
        result = result[: self.config.max_neighbors]
        cache_set(key, result, version=version)
        return result

    def score(self, user_id, candidate_ids, context, options=None):
        matrix = self._ratings()
        if matrix.empty or user_id not in matrix.index:
            return []
        if int((matrix.loc[user_id] > 0).sum()) < self.config.min_user_interactions:
            return []

        neighbors = self.neighbors(user_id, matrix)
        if not neighbors:
            return []

        neighbor_ids = [n for n, _ in neighbors]
        weights = np.array([s for _, s in neighbors])
        neighbor_ratings = matrix.loc[neighbor_ids]

        items: list[ScoredItem] = []
        for item_id in candidate_ids:
            if item_id not in neighbor_ratings.columns:
                continue
            ratings = neighbor_ratings[item_id].to_numpy()
            rated = ratings > 0
            if not rated.any():
                continue
            predicted = float(np.dot(weights[rated], ratings[rated]) / weights[rated].sum())
            items.append(ScoredItem(
                item_id=item_id,
                score=predicted / 5.0,
                explanation="Popular with diners who share your taste",
                sources={self.name: predicted / 5.0},
            ))
        return items


# ── Content-based filtering ──────────────────────────────────────────────


def _item_text(row: pd.Series) -> str:
    parts = [
        str(row.get("name") or ""),
        str(row.get("category") or ""),
        str(row.get("cuisine_type") or ""),
        str(row.get("description") or ""),
        " ".join(row.get("dietary_tags_list") or []),
    ]
    return " ".join(p for p in parts if p)


class ContentBasedStrategy(Strategy):
    name = "content_based"

    def __init__(
        self,
        store: InteractionStore,
        catalog: Catalog,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.config = config
        texts = catalog.df.apply(_item_text, axis=1) if len(catalog) else pd.Series(dtype=str)
        self._vectorizer = TfidfVectorizer(stop_words="english")
        self._tfidf = self._vectorizer.fit_transform(texts.tolist()) if len(texts) else None
        self._row_of = {item_id: i for i, item_id in enumerate(catalog.df.index)}

    def profile(self, user_id: str) -> dict[str, Any] | None:
        """Weighted preference profile built from the user's history."""
        since = utcnow() - timedelta(days=self.config.history_days)
        history = [
            i for i in self.store.for_user(user_id, since=since) if i.item_id in self.catalog
        ]
        if not history:
            return None

        ratings: dict[str, float] = {}
        for interaction in history:
            ratings[interaction.item_id] = max(
                ratings.get(interaction.item_id, 0.0), interaction.implicit_rating,
            )
        rows = self.catalog.rows(ratings.keys())
        weights = rows["item_id"].map(ratings)
        total = float(weights.sum()) or 1.0

        category_weights = (weights.groupby(rows["category_lower"]).sum() / total).to_dict()
        cuisine_weights = (
            weights.groupby(rows["cuisine_type"].fillna("").str.lower()).sum() / total
        ).to_dict()
        avg_price = float((rows["price"] * weights).sum() / total)

        text_profile = None
        if self._tfidf is not None:
            idx = [self._row_of[i] for i in rows.index]
            vectors = self._tfidf[idx].toarray()
            text_profile = np.average(vectors, axis=0, weights=weights.to_numpy()).reshape(1, -1)

        return {
            "categories": category_weights,
            "cuisines": cuisine_weights,
            "price_band": price_band(avg_price),
            "text": text_profile,
        }

    def _prior(self, candidate_ids: list[str]) -> list[ScoredItem]:
        available = self.catalog.rows(self.catalog.available_ids())
        category_popularity = available.groupby("category_lower")["popularity_score"].mean()
        rows = self.catalog.rows(candidate_ids)
        items = []
        for item_id, row in rows.iterrows():
            cat_pop = float(category_popularity.get(row["category_lower"], 0.0))
            score = (
                0.5 * cat_pop
                + 0.3 * float(row["popularity_score"])
                + 0.2 * float(row["rating_average"]) / 5.0
            )
            items.append(ScoredItem(
                item_id=str(item_id),
                score=score,
                explanation=f"A popular {row['category'] or 'menu'} pick",
                sources={self.name: score},
            ))
        return items

    def score(self, user_id, candidate_ids, context, options=None):
        profile = self.profile(user_id)
        if profile is None:
            return self._prior(candidate_ids)

        rows = self.catalog.rows(candidate_ids)
        if rows.empty:
            return []

        text_sims = np.zeros(len(rows))
        if profile["text"] is not None:
            idx = [self._row_of[i] for i in rows.index]
            text_sims = cosine_similarity(profile["text"], self._tfidf[idx]).flatten()

        top_category = max(profile["categories"], key=profile["categories"].get, default=None)
        items = []
        for (item_id, row), text_sim in zip(rows.iterrows(), text_sims):
            cat_w = profile["categories"].get(row["category_lower"], 0.0)
            cuisine_w = profile["cuisines"].get(str(row["cuisine_type"] or "").lower(), 0.0)
            if profile["price_band"] and row["price_band"]:
                distance = price_band_distance(row["price_band"], profile["price_band"])
                price_affinity = max(0.0, 1.0 - distance * 0.5)
            else:
                price_affinity = 1.0
            base = (
                3.0 * cat_w
                + 3.0 * cuisine_w
                + price_affinity
                + 0.5 * float(row["popularity_score"])
                + 0.5 * float(row["rating_average"]) / 5.0
            ) / 8.0
            score = 0.7 * base + 0.3 * float(text_sim)

            if cat_w > 0 and row["category_lower"] == top_category:
                explanation = f"Matches your taste for {row['category']}"
            elif text_sim > 0.2:
                explanation = "Similar to dishes you enjoyed"
            else:
                explanation = "Fits your usual price range"
            items.append(ScoredItem(
                item_id=str(item_id),
                score=score,
                explanation=explanation,
                sources={self.name: score},
            ))
        return items


# ── Neural ───────────────────────────────────────────────────────────────


class NeuralStrategy(Strategy):
    name = "neural"

    def __init__(self, trainer: "TrainingController") -> None:
        self.trainer = trainer

    @property
    def available(self) -> bool:
        return self.trainer.is_trained

    def score(self, user_id, candidate_ids, context, options=None):
        model = self.trainer.model
        if not self.trainer.is_trained or model is None:
            raise ModelUnavailable()
        predictions = model.predict(user_id, candidate_ids)
        return [
            ScoredItem(
                item_id=item_id,
                score=score,
                explanation="Predicted to suit you by our learning model",
                sources={self.name: score},
            )
            for item_id, score in predictions.items()
        ]


# ── Trending ─────────────────────────────────────────────────────────────


class TrendingStrategy(Strategy):
    name = "trending"

    def __init__(
        self, analyzer: "TrendAnalyzer", config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    ) -> None:
        self.analyzer = analyzer
        self.config = config

    def score(self, user_id, candidate_ids, context, options=None):
        options = options or {}
        window = options.get("time_period") or self.config.trending_window
        scores = self.analyzer.trending_scores(
            window,
            category=context.category,
            meal_period=effective_meal_period(context),
        )
        return [
            ScoredItem(
                item_id=item_id,
                score=scores[item_id],
                explanation="Trending right now",
                sources={self.name: scores[item_id]},
            )
            for item_id in candidate_ids
            if item_id in scores
        ]


# ── Registry ─────────────────────────────────────────────────────────────


class StrategyRegistry:
    """Closed lookup from algorithm name to strategy instance."""

    def __init__(self, strategies: Mapping[str, Strategy]) -> None:
        unknown = set(strategies) - set(ALGORITHMS)
        if unknown:
            raise ValueError(f"Unknown strategies: {sorted(unknown)}")
        self._strategies = dict(strategies)

    def get(self, name: str) -> Strategy:
        strategy = self._strategies.get(name)
        if strategy is None:
            raise InvalidAlgorithm(
                f"Unknown recommendation algorithm: {name}",
                details=[{"field": "algorithm", "value": name, "allowed": list(ALGORITHMS)}],
            )
        return strategy

    def names(self) -> list[str]:
        return [n for n in ALGORITHMS if n in self._strategies]

    def __contains__(self, name: object) -> bool:
        return name in self._strategies
