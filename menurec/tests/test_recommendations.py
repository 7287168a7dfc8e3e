from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import NO_LLM, TEST_NEURAL_CONFIG, TEST_TRENDING_CONFIG, add, new_user
from menurec.analytics.store import get_events
from menurec.errors import InvalidAlgorithm, InvalidContext, ModelUnavailable, ValidationError
from menurec.recommendations.config import EngineConfig
from menurec.recommendations.context import normalize
from menurec.recommendations.engine import RecommendationOptions
from menurec.recommendations.strategies import ScoredItem
from menurec.service import build_service


def _options(**kwargs) -> RecommendationOptions:
    kwargs.setdefault("include_explanations", False)
    return RecommendationOptions(**kwargs)


# ── Validation ───────────────────────────────────────────────────────────


def test_limit_above_max_rejected_before_scoring(service):
    hybrid = service.engine.registry.get("hybrid")
    with patch.object(hybrid, "score") as mock_score:
        with pytest.raises(ValidationError) as exc_info:
            service.engine.get_recommendations(new_user(), _options(limit=51))
    assert exc_info.value.code == "LIMIT_EXCEEDED"
    mock_score.assert_not_called()


def test_limit_below_one_rejected(service):
    with pytest.raises(ValidationError) as exc_info:
        service.engine.get_recommendations(new_user(), _options(limit=0))
    assert exc_info.value.code == "INVALID_LIMIT"


def test_missing_user_rejected(service):
    with pytest.raises(ValidationError) as exc_info:
        service.engine.get_recommendations("", _options())
    assert exc_info.value.code == "MISSING_USER_ID"


def test_diversity_factor_out_of_range(service):
    with pytest.raises(ValidationError) as exc_info:
        service.engine.get_recommendations(new_user(), _options(diversity_factor=1.5))
    assert exc_info.value.code == "INVALID_DIVERSITY_FACTOR"


def test_invalid_context_rejected(service):
    with pytest.raises(InvalidContext):
        service.engine.get_recommendations(new_user(), _options(context='{"timeOfDay": 30}'))


def test_unknown_algorithm_rejected(service):
    with pytest.raises(InvalidAlgorithm):
        service.engine.get_recommendations(new_user(), _options(algorithm="magic"))


@pytest.mark.parametrize("limit", [1, 5, 10, 25, 50])
def test_never_returns_more_than_limit(service, limit):
    resp = service.engine.get_recommendations(
        new_user(), _options(limit=limit, algorithm="content_based"),
    )
    assert len(resp.items) <= limit
    assert resp.total_generated >= len(resp.items)


# ── Candidates ───────────────────────────────────────────────────────────


def test_recent_purchases_and_favorites_excluded(service, store):
    user = new_user()
    add(store, user, "110", "purchase", days_ago=3)
    add(store, user, "111", "favorite", days_ago=10)
    add(store, user, "112", "purchase", days_ago=45)
    add(store, user, "113", "view", days_ago=1)

    resp = service.engine.get_recommendations(
        user, _options(limit=50, algorithm="content_based", diversity_factor=0.0),
    )
    ids = {item.item_id for item in resp.items}
    assert "110" not in ids
    assert "111" not in ids
    assert {"112", "113"} <= ids
    assert "141" not in ids


def test_exclusion_can_be_switched_off(service, store):
    user = new_user()
    add(store, user, "110", "purchase", days_ago=3)
    resp = service.engine.get_recommendations(
        user,
        _options(limit=50, algorithm="content_based", diversity_factor=0.0, exclude_interacted=False),
    )
    assert "110" in {item.item_id for item in resp.items}


# ── Neural availability ──────────────────────────────────────────────────


def test_direct_neural_request_fails_when_untrained(service):
    with pytest.raises(ModelUnavailable):
        service.engine.get_recommendations(new_user(), _options(algorithm="neural"))


def test_hybrid_degrades_without_neural(service, store):
    user = new_user()
    add(store, user, "137", "purchase")
    resp = service.engine.get_recommendations(user, _options(algorithm="hybrid"))
    assert resp.algorithm == "hybrid"
    assert resp.items


def test_neural_disabled_by_config(catalog, store):
    svc = build_service(
        catalog=catalog,
        store=store,
        engine_config=EngineConfig(enable_neural=False),
        neural_config=TEST_NEURAL_CONFIG,
        trending_config=TEST_TRENDING_CONFIG,
        llm_config=NO_LLM,
    )
    with pytest.raises(ValidationError) as exc_info:
        svc.engine.get_recommendations(new_user(), _options(algorithm="neural"))
    assert exc_info.value.code == "NEURAL_NETWORK_DISABLED"
    assert "neural" not in svc.engine.enabled_algorithms()


# ── Context ──────────────────────────────────────────────────────────────


def test_weather_boosts_cold_items(service):
    scored = [ScoredItem("110", 1.0), ScoredItem("107", 1.0)]
    ranked, _ = service.engine._apply_context(scored, normalize({"weather": {"temperature": 31}}))
    assert [s.item_id for s in ranked] == ["107", "110"]
    assert ranked[0].score == pytest.approx(1.15)


def test_cold_weather_boosts_spicy_items(service):
    scored = [ScoredItem("117", 1.0), ScoredItem("116", 1.0)]
    ranked, _ = service.engine._apply_context(scored, normalize({"weather": {"temperature": 8}}))
    assert ranked[0].item_id == "116"


def test_meal_period_and_budget_boosts(service):
    scored = [ScoredItem("110", 1.0), ScoredItem("101", 1.0)]
    context = normalize({"mealPeriod": "breakfast", "budgetRange": {"max": 5}})
    ranked, _ = service.engine._apply_context(scored, context)
    assert ranked[0].item_id == "101"
    assert ranked[0].score == pytest.approx(1.2 * 1.1)
    assert ranked[1].score == pytest.approx(1.0)


def test_promotional_items_flagged(service):
    resp = service.engine.get_recommendations(
        new_user(),
        _options(
            limit=50,
            algorithm="content_based",
            diversity_factor=0.0,
            context={"promotionalItems": ["106"]},
        ),
    )
    flagged = [item.item_id for item in resp.items if item.is_promotional]
    assert flagged == ["106"]


def test_contextual_requires_context(service):
    with pytest.raises(ValidationError) as exc_info:
        service.engine.get_contextual_recommendations(new_user(), _options())
    assert exc_info.value.code == "MISSING_PARAMETERS"


@pytest.mark.parametrize(
    "user_id,limit,code",
    [("", 10, "MISSING_USER_ID"), (None, 100, "LIMIT_EXCEEDED"), (None, 0, "INVALID_LIMIT")],
)
def test_contextual_checks_user_and_limit_before_context(service, user_id, limit, code):
    user_id = new_user() if user_id is None else user_id
    with pytest.raises(ValidationError) as exc_info:
        service.engine.get_contextual_recommendations(user_id, _options(limit=limit))
    assert exc_info.value.code == code


def test_contextual_filters_by_budget(service, catalog):
    resp = service.engine.get_contextual_recommendations(
        new_user(), _options(limit=20, context={"budgetRange": {"max": 4}}),
    )
    assert resp.items
    for item in resp.items:
        assert float(catalog.get(item.item_id)["price"]) <= 4


def test_contextual_first_visit_uses_trending(service):
    resp = service.engine.get_contextual_recommendations(
        new_user(), _options(context={"isFirstVisit": True}),
    )
    assert resp.algorithm == "trending"


def test_contextual_exploring_uses_content_based(service):
    resp = service.engine.get_contextual_recommendations(
        new_user(), _options(limit=10, context={"isExploring": True}, diversity_factor=0.0),
    )
    assert resp.algorithm == "content_based"
    categories = [item.category for item in resp.items]
    # Exploring raises the diversity factor to at least 0.5.
    assert max(categories.count(c) for c in set(categories)) <= 5


def test_contextual_exploring_leaves_options_untouched(service):
    options = _options(limit=10, context={"isExploring": True}, diversity_factor=0.1)
    service.engine.get_contextual_recommendations(new_user(), options)
    assert options.diversity_factor == 0.1


def test_personalized_uses_hybrid(service):
    resp = service.engine.get_personalized_recommendations(new_user(), _options())
    assert resp.algorithm == "hybrid"


# ── Explanations ─────────────────────────────────────────────────────────


def test_explanations_omitted_when_disabled(service):
    with patch("menurec.recommendations.engine.explain_recommendations") as mock_explain:
        resp = service.engine.get_recommendations(
            new_user(), _options(algorithm="content_based", include_explanations=False),
        )
    mock_explain.assert_not_called()
    assert all(item.explanation is None for item in resp.items)


def test_template_explanations_by_default(service):
    resp = service.engine.get_recommendations(
        new_user(), _options(algorithm="content_based", include_explanations=True),
    )
    assert resp.items
    assert all(item.explanation for item in resp.items)


@patch("menurec.recommendations.engine.explain_recommendations")
def test_llm_explanations_replace_templates(mock_explain, service):
    mock_explain.return_value = {"106": "A warming cup of chai to start your day."}
    resp = service.engine.get_recommendations(
        new_user(),
        _options(limit=50, algorithm="content_based", diversity_factor=0.0, include_explanations=True),
    )
    by_id = {item.item_id: item for item in resp.items}
    assert by_id["106"].explanation == "A warming cup of chai to start your day."
    assert by_id["110"].explanation != "A warming cup of chai to start your day."
    mock_explain.assert_called_once()


# ── Experiments and analytics ────────────────────────────────────────────


def test_experiment_assignment_drives_algorithm(service):
    experiment = service.experiments.create_experiment({
        "name": "content vs collaborative",
        "controlAlgorithm": "content_based",
        "treatmentAlgorithm": "collaborative",
        "trafficSplit": 0.5,
    })
    for _ in range(20):
        user = new_user()
        variant = service.experiments.assign(experiment.id, user)
        resp = service.engine.get_recommendations(user, _options())
        assert resp.algorithm == experiment.algorithm_for(variant)
        assert resp.experiment_info.experiment_id == experiment.id
        assert resp.experiment_info.variant == variant


def test_explicit_algorithm_bypasses_experiment(service):
    service.experiments.create_experiment({
        "name": "content vs collaborative",
        "controlAlgorithm": "content_based",
        "treatmentAlgorithm": "collaborative",
    })
    resp = service.engine.get_recommendations(new_user(), _options(algorithm="trending"))
    assert resp.algorithm == "trending"
    assert resp.experiment_info is None


def test_experiment_neural_degrades_to_hybrid(service):
    service.experiments.create_experiment({
        "name": "all neural",
        "controlAlgorithm": "neural",
        "treatmentAlgorithm": "neural",
    })
    resp = service.engine.get_recommendations(new_user(), _options())
    assert resp.algorithm == "hybrid"
    assert resp.experiment_info is not None


def test_recommendation_event_recorded(service):
    service.engine.get_recommendations(new_user(), _options(algorithm="content_based", limit=5))
    events = get_events("recommendation")
    assert len(events) == 1
    assert events[0]["algorithm"] == "content_based"
    assert events[0]["results_returned"] == 5


def test_service_status(service):
    status = service.engine.get_service_status()
    assert status["defaultAlgorithm"] == "hybrid"
    assert "neural" in status["algorithms"]
    assert status["catalogItems"] == 41
    assert status["training"]["status"] == "idle"
    assert status["trendAnalysis"]["status"] == "idle"
