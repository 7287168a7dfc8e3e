from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from ..analytics.store import record_event
from ..errors import (
    AnalysisInProgress,
    InvalidLimit,
    MissingUser,
    ValidationError,
)
from ..interactions.store import InteractionStore
from ..jobs import utcnow
from ..llm.config import DEFAULT_LLM_CONFIG, LLMConfig
from ..llm.groq_client import explain_recommendations
from .cache import get_cache_stats
from .catalog import Catalog
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .context import effective_meal_period, effective_season, normalize
from .diversity import diversify
from .hybrid import AdaptiveHybridStrategy, HybridStrategy, WeightedHybridStrategy
from .models import Context, ExperimentInfo, RecommendationItem, RecommendationResponse
from .strategies import (
    CollaborativeStrategy,
    ContentBasedStrategy,
    NeuralStrategy,
    ScoredItem,
    StrategyRegistry,
    TrendingStrategy,
)

if TYPE_CHECKING:
    from ..ab_testing.experiments import Assignment, ExperimentFramework
    from ..neural.trainer import TrainingController
    from ..trending.analyzer import TrendAnalyzer

logger = logging.getLogger(__name__)

_FALLBACK_EXPLANATIONS = {
    "collaborative": "Popular with diners who share your taste",
    "content_based": "Similar to dishes you enjoyed",
    "neural": "Predicted to suit you by our learning model",
    "trending": "Trending right now",
}


@dataclass
class RecommendationOptions:
    limit: int = 10
    algorithm: str | None = None
    context: Any = None
    include_explanations: bool = True
    diversity_factor: float = 0.3
    exclude_interacted: bool = True


class RecommendationEngine:
    """Orchestrates one recommendation request end to end.

    Validation happens first and in a fixed order (user, limit, diversity,
    context) so a bad request is rejected before any scoring work.  The
    algorithm comes from the request, else from the user's experiment
    variant, else from ``EngineConfig.default_algorithm``.
    """

    def __init__(
        self,
        catalog: Catalog,
        store: InteractionStore,
        trainer: "TrainingController",
        analyzer: "TrendAnalyzer",
        experiments: "ExperimentFramework | None" = None,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        llm_config: LLMConfig = DEFAULT_LLM_CONFIG,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.trainer = trainer
        self.analyzer = analyzer
        self.experiments = experiments
        self.config = config
        self.llm_config = llm_config
        self.started_at = utcnow()
        self.is_initialized = False

        base = {
            "collaborative": CollaborativeStrategy(store, config),
            "content_based": ContentBasedStrategy(store, catalog, config),
            "neural": NeuralStrategy(trainer),
            "trending": TrendingStrategy(analyzer, config),
        }
        # Blends only see the components that are switched on.
        blendable = {
            name: strategy for name, strategy in base.items()
            if self._enabled(name)
        }
        self.registry = StrategyRegistry({
            **base,
            "hybrid": HybridStrategy(blendable, config),
            "weighted_hybrid": WeightedHybridStrategy(blendable, config),
            "adaptive_hybrid": AdaptiveHybridStrategy(blendable, store, catalog, config),
        })

    # ── Lifecycle ────────────────────────────────────────────────────────

    def initialize(self) -> None:
        if self.is_initialized:
            return
        if self.config.enable_scheduling:
            if self.config.enable_trending:
                try:
                    self.analyzer.analyze_trends()
                except AnalysisInProgress:
                    pass
                self.analyzer.start_schedule()
            if self.config.enable_neural:
                self.trainer.start_schedule()
        self.is_initialized = True
        logger.info(
            "Recommendation engine ready: %d catalog items, algorithms %s",
            len(self.catalog), ", ".join(self.enabled_algorithms()),
        )

    def shutdown(self) -> None:
        self.analyzer.stop_schedule()
        self.trainer.stop_schedule()

    def _enabled(self, algorithm: str) -> bool:
        if algorithm == "neural":
            return self.config.enable_neural
        if algorithm == "trending":
            return self.config.enable_trending
        return True

    def enabled_algorithms(self) -> list[str]:
        return [name for name in self.registry.names() if self._enabled(name)]

    def require_neural(self) -> None:
        if not self.config.enable_neural:
            raise ValidationError("Neural network is disabled", code="NEURAL_NETWORK_DISABLED")

    def require_trending(self) -> None:
        if not self.config.enable_trending:
            raise ValidationError("Trending analysis is disabled", code="TRENDING_DISABLED")

    # ── Validation and resolution ────────────────────────────────────────

    def _validate(self, user_id: str, options: RecommendationOptions) -> Context:
        if not user_id or not str(user_id).strip():
            raise MissingUser()
        if options.limit > self.config.max_recommendations:
            raise InvalidLimit(
                f"Limit cannot exceed {self.config.max_recommendations} recommendations",
                details=[{"field": "limit", "value": options.limit}],
            )
        if options.limit < 1:
            raise ValidationError(
                "Limit must be at least 1",
                code="INVALID_LIMIT",
                details=[{"field": "limit", "value": options.limit}],
            )
        if not 0 <= options.diversity_factor <= 1:
            raise ValidationError(
                "Diversity factor must be between 0 and 1",
                code="INVALID_DIVERSITY_FACTOR",
                details=[{"field": "diversityFactor", "value": options.diversity_factor}],
            )
        return normalize(options.context)

    def resolve_algorithm(
        self, user_id: str, requested: str | None,
    ) -> tuple[str, "Assignment | None"]:
        if requested:
            self.registry.get(requested)
            if requested == "neural":
                self.require_neural()
            elif requested == "trending":
                self.require_trending()
            return requested, None

        if self.config.enable_ab_testing and self.experiments is not None:
            assignment = self.experiments.get_user_assignment(
                user_id, self.config.default_algorithm,
            )
            if assignment.in_experiment:
                algorithm = assignment.algorithm
                if algorithm == "neural" and not (
                    self.config.enable_neural and self.trainer.is_trained
                ):
                    logger.warning(
                        "Experiment %s assigned neural but the model is not trained; "
                        "serving hybrid", assignment.experiment_id,
                    )
                    algorithm = "hybrid"
                elif not self._enabled(algorithm):
                    logger.warning(
                        "Experiment %s assigned disabled algorithm %s; serving hybrid",
                        assignment.experiment_id, algorithm,
                    )
                    algorithm = "hybrid"
                return algorithm, assignment

        return self.config.default_algorithm, None

    # ── Candidates and re-ranking ────────────────────────────────────────

    def candidate_ids(self, user_id: str, exclude_interacted: bool = True) -> list[str]:
        candidates = self.catalog.available_ids()
        if not exclude_interacted:
            return candidates
        excluded = self.store.recently_interacted(
            user_id, self.config.exclusion_types, self.config.exclusion_window_days,
        )
        return [i for i in candidates if i not in excluded]

    def _context_filter(self, candidates: list[str], context: Context) -> list[str]:
        meal_period = effective_meal_period(context)
        kept = []
        for item_id in candidates:
            row = self.catalog.get(item_id)
            if context.category and row["category_lower"] != context.category.lower():
                continue
            if context.budget_range and not context.budget_range.contains(float(row["price"])):
                continue
            periods = row["meal_periods_list"]
            if meal_period and periods and meal_period not in periods:
                continue
            kept.append(item_id)
        return kept

    def _apply_context(
        self, scored: list[ScoredItem], context: Context,
    ) -> tuple[list[ScoredItem], set[str]]:
        meal_period = effective_meal_period(context)
        temperature = context.weather.temperature if context.weather else None
        promotional: set[str] = set()

        for item in scored:
            row = self.catalog.get(item.item_id)
            if row is None:
                continue
            multiplier = 1.0
            if meal_period and meal_period in row["meal_periods_list"]:
                multiplier *= self.config.meal_period_boost
            if temperature is not None and (
                (temperature > 25 and "cold" in row["dietary_tags_list"])
                or (temperature < 15 and float(row["spice_level"]) > 3)
            ):
                multiplier *= self.config.weather_boost
            if context.budget_range and context.budget_range.contains(float(row["price"])):
                multiplier *= self.config.budget_boost
            if item.item_id in context.promotional_items:
                multiplier *= self.config.promotion_boost
                promotional.add(item.item_id)
            item.score *= multiplier

        order = {id(item): i for i, item in enumerate(scored)}
        ranked = sorted(scored, key=lambda s: (-s.score, order[id(s)]))
        return ranked, promotional

    def _context_summary(self, context: Context) -> dict[str, Any]:
        summary: dict[str, Any] = {
            "meal_period": effective_meal_period(context),
            "season": effective_season(context),
            "is_first_visit": context.is_first_visit,
        }
        if context.weather:
            summary["weather"] = ", ".join(
                str(v) for v in (context.weather.temperature, context.weather.condition) if v is not None
            )
        if context.budget_range:
            summary["budget"] = f"{context.budget_range.min or 0} - {context.budget_range.max or 'any'}"
        return summary

    # ── Orchestration ────────────────────────────────────────────────────

    def _rank(
        self,
        user_id: str,
        algorithm: str,
        candidates: list[str],
        context: Context,
        options: RecommendationOptions,
        assignment: "Assignment | None" = None,
    ) -> RecommendationResponse:
        start_time = time.time()
        strategy = self.registry.get(algorithm)
        scored = strategy.score(user_id, candidates, context, {"limit": options.limit})
        ranked, promotional = self._apply_context(scored, context)
        picked = diversify(
            ranked, options.limit, options.diversity_factor,
            lambda s: self.catalog.category_of(s.item_id),
        )

        items: list[RecommendationItem] = []
        for s in picked:
            row = self.catalog.get(s.item_id)
            explanation = None
            if options.include_explanations:
                explanation = s.explanation or _FALLBACK_EXPLANATIONS.get(
                    algorithm, "Recommended for you",
                )
            items.append(RecommendationItem(
                item_id=s.item_id,
                score=round(float(s.score), 4),
                algorithm=algorithm,
                explanation=explanation,
                category=row["category"] if row is not None else None,
                name=row["name"] if row is not None else None,
                is_promotional=s.item_id in promotional,
            ))

        if options.include_explanations and items:
            llm_reasons = explain_recommendations(
                self._context_summary(context),
                [
                    {
                        "id": item.item_id,
                        "name": item.name,
                        "category": item.category,
                        "price": self.catalog.get(item.item_id)["price"],
                        "rating": self.catalog.get(item.item_id)["rating_average"],
                        "reason": item.explanation,
                    }
                    for item in items
                ],
                self.llm_config,
            )
            for item in items:
                if item.item_id in llm_reasons:
                    item.explanation = llm_reasons[item.item_id]

        experiment_info = None
        if assignment is not None and assignment.in_experiment:
            experiment_info = ExperimentInfo(
                experiment_id=assignment.experiment_id, variant=assignment.variant,
            )
            self.experiments.record_impressions(
                assignment.experiment_id,
                user_id,
                assignment.variant,
                [item.item_id for item in items],
            )

        elapsed_ms = round((time.time() - start_time) * 1000, 1)
        record_event("recommendation", {
            "algorithm": algorithm,
            "total_candidates": len(candidates),
            "results_returned": len(items),
            "avg_score": (
                round(sum(i.score for i in items) / len(items), 4) if items else None
            ),
            "response_time_ms": elapsed_ms,
            "experiment_id": experiment_info.experiment_id if experiment_info else None,
        })

        return RecommendationResponse(
            items=items,
            algorithm=algorithm,
            total_generated=len(scored),
            experiment_info=experiment_info,
            user_id=user_id,
            generated_at=utcnow(),
        )

    def get_recommendations(
        self, user_id: str, options: RecommendationOptions | None = None,
    ) -> RecommendationResponse:
        options = options or RecommendationOptions()
        context = self._validate(user_id, options)
        algorithm, assignment = self.resolve_algorithm(user_id, options.algorithm)
        candidates = self.candidate_ids(user_id, options.exclude_interacted)
        return self._rank(user_id, algorithm, candidates, context, options, assignment)

    def get_personalized_recommendations(
        self, user_id: str, options: RecommendationOptions | None = None,
    ) -> RecommendationResponse:
        options = options or RecommendationOptions()
        context = self._validate(user_id, options)
        candidates = self.candidate_ids(user_id, options.exclude_interacted)
        return self._rank(user_id, "hybrid", candidates, context, options)

    def get_contextual_recommendations(
        self, user_id: str, options: RecommendationOptions,
    ) -> RecommendationResponse:
        context = self._validate(user_id, options)
        if options.context is None or options.context == "":
            raise ValidationError(
                "Context is required for contextual recommendations",
                code="MISSING_PARAMETERS",
                details=[{"field": "context", "message": "Field required"}],
            )

        algorithm = "hybrid"
        if context.is_first_visit and self.config.enable_trending:
            algorithm = "trending"
        elif context.is_exploring:
            algorithm = "content_based"
            options = replace(options, diversity_factor=max(options.diversity_factor, 0.5))

        candidates = self._context_filter(
            self.candidate_ids(user_id, options.exclude_interacted), context,
        )
        return self._rank(user_id, algorithm, candidates, context, options)

    # ── Status ───────────────────────────────────────────────────────────

    def health(self) -> dict[str, Any]:
        now = utcnow()
        return {
            "status": "healthy",
            "isInitialized": self.is_initialized,
            "uptime": round((now - self.started_at).total_seconds(), 1),
            "timestamp": now.isoformat(),
        }

    def get_service_status(self) -> dict[str, Any]:
        running = self.experiments.list_experiments("running") if self.experiments else []
        return {
            "isInitialized": self.is_initialized,
            "uptime": round((utcnow() - self.started_at).total_seconds(), 1),
            "defaultAlgorithm": self.config.default_algorithm,
            "algorithms": self.enabled_algorithms(),
            "features": {
                "abTesting": self.config.enable_ab_testing,
                "neuralNetwork": self.config.enable_neural,
                "trending": self.config.enable_trending,
                "scheduling": self.config.enable_scheduling,
            },
            "catalogItems": len(self.catalog),
            "interactions": len(self.store),
            "runningExperiments": len(running),
            "training": self.trainer.get_training_status(),
            "trendAnalysis": self.analyzer.get_analysis_status(),
            "cache": get_cache_stats(),
        }
