"""
Wiring of the recommendation service.

``build_service()`` constructs every component from explicit config objects;
the FastAPI app holds one instance and tests build their own.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .ab_testing.config import DEFAULT_EXPERIMENT_DEFAULTS, ExperimentDefaults
from .ab_testing.experiments import ExperimentFramework, RegistrationLookup
from .analytics.store import clear_events
from .interactions.store import InteractionStore
from .interactions.tracking import InteractionTracker
from .llm.config import DEFAULT_LLM_CONFIG, LLMConfig
from .neural.config import DEFAULT_NEURAL_CONFIG, NeuralConfig
from .neural.trainer import TrainingController
from .recommendations.cache import clear_cache
from .recommendations.catalog import Catalog, get_catalog
from .recommendations.config import EngineConfig
from .recommendations.engine import RecommendationEngine
from .trending.analyzer import TrendAnalyzer
from .trending.config import DEFAULT_TRENDING_CONFIG, TrendingConfig

logger = logging.getLogger(__name__)


@dataclass
class Service:
    catalog: Catalog
    store: InteractionStore
    experiments: ExperimentFramework
    trainer: TrainingController
    analyzer: TrendAnalyzer
    tracker: InteractionTracker
    engine: RecommendationEngine

    def reset(self) -> None:
        """Drop all recorded state. Used by tests and local demos."""
        self.engine.shutdown()
        self.store.clear()
        self.experiments.clear()
        clear_cache()
        clear_events()


def build_service(
    catalog: Catalog | None = None,
    store: InteractionStore | None = None,
    engine_config: EngineConfig | None = None,
    neural_config: NeuralConfig = DEFAULT_NEURAL_CONFIG,
    trending_config: TrendingConfig = DEFAULT_TRENDING_CONFIG,
    experiment_defaults: ExperimentDefaults = DEFAULT_EXPERIMENT_DEFAULTS,
    llm_config: LLMConfig = DEFAULT_LLM_CONFIG,
    registration_lookup: RegistrationLookup | None = None,
) -> Service:
    catalog = catalog or get_catalog()
    if store is None:
        store = InteractionStore(os.getenv("MENUREC_INTERACTION_LOG") or None)
        loaded = store.load()
        if loaded:
            logger.info("Replayed %d interactions from %s", loaded, store.log_path)
    engine_config = engine_config or EngineConfig.from_env()

    experiments = ExperimentFramework(
        store, catalog, experiment_defaults, registration_lookup=registration_lookup,
    )
    trainer = TrainingController(store, catalog, neural_config)
    analyzer = TrendAnalyzer(store, catalog, trending_config)
    engine = RecommendationEngine(
        catalog,
        store,
        trainer,
        analyzer,
        experiments=experiments,
        config=engine_config,
        llm_config=llm_config,
    )
    tracker = InteractionTracker(store, experiments)
    return Service(
        catalog=catalog,
        store=store,
        experiments=experiments,
        trainer=trainer,
        analyzer=analyzer,
        tracker=tracker,
        engine=engine,
    )
