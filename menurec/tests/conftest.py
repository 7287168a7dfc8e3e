from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from menurec.analytics.store import clear_events
from menurec.app import app, get_service
from menurec.interactions.store import Interaction, InteractionStore
from menurec.jobs import utcnow
from menurec.llm.config import LLMConfig
from menurec.neural.config import NeuralConfig
from menurec.recommendations.cache import clear_cache
from menurec.recommendations.catalog import Catalog
from menurec.recommendations.config import EngineConfig
from menurec.service import build_service
from menurec.trending.config import TrendingConfig

TEST_NEURAL_CONFIG = NeuralConfig(min_training_samples=50, max_iter=200)
TEST_TRENDING_CONFIG = TrendingConfig(min_interactions_for_trending=3, min_seasonal_interactions=3)
NO_LLM = LLMConfig(api_key="", enabled=False)


def new_user() -> str:
    return str(uuid.uuid4())


def add(
    store, user_id, item_id, interaction_type="view", value=None,
    days_ago=0.0, hours_ago=0.0, at=None,
):
    return store.append(Interaction(
        user_id=user_id,
        item_id=str(item_id),
        interaction_type=interaction_type,
        value=value,
        timestamp=(at or utcnow()) - timedelta(days=days_ago, hours=hours_ago),
    ))


def seed_taste_groups(store, n_users: int = 30) -> dict[str, list[str]]:
    """Two groups of users: breakfast lovers and dessert lovers."""
    groups = {
        "breakfast": ["101", "102", "103", "104", "105"],
        "dessert": ["137", "138", "139", "140"],
    }
    members: dict[str, list[str]] = {"breakfast": [], "dessert": []}
    for i in range(n_users):
        group = "breakfast" if i % 2 == 0 else "dessert"
        user = new_user()
        members[group].append(user)
        for j, item in enumerate(groups[group]):
            kind = "purchase" if (i + j) % 3 == 0 else "click"
            add(store, user, item, kind, days_ago=(i + j) % 5)
    return members


@pytest.fixture(autouse=True)
def _clean_globals():
    clear_cache()
    clear_events()
    yield
    clear_cache()
    clear_events()


@pytest.fixture
def catalog() -> Catalog:
    return Catalog.from_csv()


@pytest.fixture
def store() -> InteractionStore:
    return InteractionStore()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def service(catalog, store, engine_config):
    svc = build_service(
        catalog=catalog,
        store=store,
        engine_config=engine_config,
        neural_config=TEST_NEURAL_CONFIG,
        trending_config=TEST_TRENDING_CONFIG,
        llm_config=NO_LLM,
    )
    yield svc
    svc.trainer.wait(30)
    svc.analyzer.wait(30)
    svc.reset()


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
