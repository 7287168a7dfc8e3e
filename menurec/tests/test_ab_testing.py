from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import add, new_user, seed_taste_groups
from menurec.ab_testing.config import ExperimentDefaults
from menurec.ab_testing.experiments import (
    ExperimentFramework,
    assign_variant,
    assignment_ratio,
)
from menurec.errors import (
    ExperimentConflict,
    ExperimentNotFound,
    InvalidExperimentConfig,
)
from menurec.jobs import utcnow
from menurec.recommendations.engine import RecommendationOptions

BASE_CONFIG = {
    "name": "content vs neural",
    "controlAlgorithm": "content_based",
    "treatmentAlgorithm": "neural",
    "trafficSplit": 0.5,
}


@pytest.fixture
def framework(store, catalog):
    return ExperimentFramework(store, catalog)


# ── Assignment ───────────────────────────────────────────────────────────


def test_assignment_is_deterministic():
    user = new_user()
    first = assign_variant("0123456789abcdef", user, 0.5)
    assert all(assign_variant("0123456789abcdef", user, 0.5) == first for _ in range(20))


def test_assignment_is_pure_function_of_ids(store, catalog):
    # Two frameworks stand in for two processes: nothing is shared but the ids.
    one = ExperimentFramework(store, catalog)
    experiment = one.create_experiment(BASE_CONFIG)
    users = [new_user() for _ in range(50)]
    expected = {u: one.assign(experiment.id, u) for u in users}
    for user, variant in expected.items():
        assert assign_variant(experiment.id, user, 0.5) == variant


def test_assignment_ratio_in_unit_interval():
    for _ in range(200):
        ratio = assignment_ratio("0123456789abcdef", new_user())
        assert 0.0 <= ratio < 1.0


def test_assignment_extremes():
    user = new_user()
    assert assign_variant("0123456789abcdef", user, 0.0) == "control"
    assert assign_variant("0123456789abcdef", user, 1.0) == "treatment"


@pytest.mark.parametrize("split", [0.3, 0.5, 0.8])
def test_treatment_fraction_converges_to_split(split):
    n = 20000
    treated = sum(
        assign_variant("fedcba9876543210", f"user-{i}", split) == "treatment"
        for i in range(n)
    )
    assert abs(treated / n - split) < 0.02


# ── Lifecycle ────────────────────────────────────────────────────────────


def test_create_experiment(framework):
    experiment = framework.create_experiment(BASE_CONFIG)
    assert len(experiment.id) == 16
    assert experiment.status == "running"
    assert experiment.target_metrics == ["ctr", "conversion_rate"]
    assert experiment.duration_days == 14
    assert experiment.ends_at - experiment.created_at == timedelta(days=14)


def test_create_accepts_duration_alias(framework):
    experiment = framework.create_experiment({**BASE_CONFIG, "duration": 7})
    assert experiment.duration_days == 7


def test_create_rejects_missing_fields(framework):
    with pytest.raises(InvalidExperimentConfig) as exc_info:
        framework.create_experiment({"name": "incomplete"})
    fields = {d["field"] for d in exc_info.value.details}
    assert fields == {"controlAlgorithm", "treatmentAlgorithm"}


def test_create_rejects_unknown_algorithm(framework):
    with pytest.raises(InvalidExperimentConfig):
        framework.create_experiment({**BASE_CONFIG, "treatmentAlgorithm": "magic"})


@pytest.mark.parametrize("override", [
    {"trafficSplit": 1.5},
    {"durationDays": 0},
    {"durationDays": 91},
    {"targetMetrics": ["dwell_time"]},
    {"name": "ab"},
])
def test_create_rejects_out_of_range_values(framework, override):
    with pytest.raises(InvalidExperimentConfig):
        framework.create_experiment({**BASE_CONFIG, **override})


def test_duplicate_running_name_conflicts(framework):
    framework.create_experiment(BASE_CONFIG)
    with pytest.raises(ExperimentConflict) as exc_info:
        framework.create_experiment(BASE_CONFIG)
    assert exc_info.value.status_code == 409


def test_name_reusable_after_stop(framework):
    first = framework.create_experiment(BASE_CONFIG)
    framework.stop_experiment(first.id)
    second = framework.create_experiment(BASE_CONFIG)
    assert second.id != first.id


def test_stop_is_idempotent(framework):
    experiment = framework.create_experiment(BASE_CONFIG)
    stopped = framework.stop_experiment(experiment.id)
    stopped_at = stopped.stopped_at
    again = framework.stop_experiment(experiment.id)
    assert again.status == "stopped"
    assert again.stopped_at == stopped_at


def test_unknown_experiment(framework):
    with pytest.raises(ExperimentNotFound):
        framework.get_experiment("0000000000000000")
    with pytest.raises(ExperimentNotFound):
        framework.stop_experiment("0000000000000000")
    with pytest.raises(ExperimentNotFound):
        framework.analyze_experiment("0000000000000000")
    assert framework.get_experiment_summary("0000000000000000") is None


def test_list_filters_by_status(framework):
    running = framework.create_experiment(BASE_CONFIG)
    stopped = framework.create_experiment({**BASE_CONFIG, "name": "another test"})
    framework.stop_experiment(stopped.id)
    assert [e.id for e in framework.list_experiments("running")] == [running.id]
    assert len(framework.list_experiments()) == 2


def test_stopped_experiment_no_longer_assigns(framework):
    experiment = framework.create_experiment(BASE_CONFIG)
    framework.stop_experiment(experiment.id)
    assignment = framework.get_user_assignment(new_user(), "hybrid")
    assert assignment.algorithm == "hybrid"
    assert not assignment.in_experiment


# ── Segment filters ──────────────────────────────────────────────────────


def test_min_interactions_filter(framework, store):
    experiment = framework.create_experiment({
        **BASE_CONFIG, "segmentFilters": {"minInteractions": 3},
    })
    light, heavy = new_user(), new_user()
    add(store, light, "101")
    for item in ("101", "102", "103"):
        add(store, heavy, item)

    assert not framework.is_eligible(experiment, light)
    assert framework.is_eligible(experiment, heavy)
    assert framework.get_user_assignment(light, "hybrid").algorithm == "hybrid"
    assert framework.get_user_assignment(heavy, "hybrid").in_experiment


def test_preferred_categories_filter(framework, store):
    experiment = framework.create_experiment({
        **BASE_CONFIG, "segmentFilters": {"preferredCategories": ["Dessert"]},
    })
    sweet, savoury = new_user(), new_user()
    add(store, sweet, "137")
    add(store, savoury, "110")
    assert framework.is_eligible(experiment, sweet)
    assert not framework.is_eligible(experiment, savoury)


def test_registration_filter(store, catalog):
    registered = {}
    framework = ExperimentFramework(store, catalog, registration_lookup=registered.get)
    experiment = framework.create_experiment({
        **BASE_CONFIG, "segmentFilters": {"registrationDaysAgo": 30},
    })
    veteran, newcomer, unknown = new_user(), new_user(), new_user()
    registered[veteran] = utcnow() - timedelta(days=90)
    registered[newcomer] = utcnow() - timedelta(days=2)

    assert framework.is_eligible(experiment, veteran)
    assert not framework.is_eligible(experiment, newcomer)
    assert not framework.is_eligible(experiment, unknown)


# ── Metrics and analysis ─────────────────────────────────────────────────


def _click(framework, store, user, item_id="101"):
    interaction = add(store, user, item_id, "click")
    return framework.attribute_interaction(interaction)


def test_attribution_requires_exposure(framework, store):
    experiment = framework.create_experiment(BASE_CONFIG)
    unexposed, exposed = new_user(), new_user()

    assert _click(framework, store, unexposed) == 0

    variant = framework.assign(experiment.id, exposed)
    framework.record_impressions(experiment.id, exposed, variant, ["101", "102"])
    assert _click(framework, store, exposed) == 1

    samples = framework.samples(experiment.id)
    assert [s.metric for s in samples] == ["impression", "click"]
    assert samples[1].variant == variant


def test_stopped_experiment_collects_nothing(framework, store):
    experiment = framework.create_experiment(BASE_CONFIG)
    user = new_user()
    framework.record_impressions(experiment.id, user, "control", ["101"])
    framework.stop_experiment(experiment.id)

    assert framework.record_impressions(experiment.id, user, "control", ["102"]) is False
    assert _click(framework, store, user) == 0


def test_analysis_with_no_samples(framework):
    experiment = framework.create_experiment(BASE_CONFIG)
    results = framework.analyze_experiment(experiment.id)
    assert results["totalSamples"] == 0
    for variant in ("control", "treatment"):
        assert results["metrics"][variant]["sampleSize"] == 0
        assert results["metrics"][variant]["ctr"] == 0.0
    assert results["significance"]["ctr"]["isSignificant"] is False
    assert results["result"]["decision"] == "inconclusive"


def test_analysis_computes_rates(framework, store):
    experiment = framework.create_experiment({**BASE_CONFIG, "trafficSplit": 0.0})
    users = [new_user() for _ in range(4)]
    for user in users:
        framework.record_impressions(experiment.id, user, "control", ["101", "102"])
    _click(framework, store, users[0])
    _click(framework, store, users[1])
    purchase = add(store, users[0], "110", "purchase")
    framework.attribute_interaction(purchase)

    control = framework.analyze_experiment(experiment.id)["metrics"]["control"]
    assert control["sampleSize"] == 4
    assert control["recommendationsShown"] == 8
    assert control["clicks"] == 2
    assert control["ctr"] == pytest.approx(2 / 8)
    assert control["conversion_rate"] == pytest.approx(1 / 4)
    assert control["engagement_rate"] == pytest.approx(2 / 4)
    # No explicit value: the purchase is worth the catalog price.
    assert control["revenue_per_user"] == pytest.approx(11.0 / 4)


def test_analysis_requires_minimum_sample(store, catalog):
    framework = ExperimentFramework(store, catalog, ExperimentDefaults(min_sample_size=30))
    experiment = framework.create_experiment(BASE_CONFIG)
    for _ in range(10):
        user = new_user()
        framework.record_impressions(experiment.id, user, framework.assign(experiment.id, user), ["101"])
    significance = framework.analyze_experiment(experiment.id)["significance"]["ctr"]
    assert significance["isSignificant"] is False
    assert significance["reason"] == "Insufficient sample size"


def test_treatment_wins_on_clear_lift(framework, store):
    experiment = framework.create_experiment(BASE_CONFIG)
    for i in range(200):
        user = f"user-{i}"
        variant = framework.assign(experiment.id, user)
        framework.record_impressions(experiment.id, user, variant, ["101"])
        if variant == "treatment" or i % 10 == 0:
            purchase = add(store, user, "101", "purchase")
            framework.attribute_interaction(purchase)
            _click(framework, store, user)

    results = framework.analyze_experiment(experiment.id)
    assert results["significance"]["conversion_rate"]["isSignificant"] is True
    assert results["significance"]["conversion_rate"]["effect"] > 0
    assert results["result"]["decision"] == "treatment_wins"


def test_stopped_analysis_status(framework):
    experiment = framework.create_experiment(BASE_CONFIG)
    framework.stop_experiment(experiment.id)
    assert framework.analyze_experiment(experiment.id)["status"] == "analyzed"


def test_summary_counts_participants(framework):
    experiment = framework.create_experiment({**BASE_CONFIG, "trafficSplit": 1.0})
    for _ in range(3):
        framework.record_impressions(experiment.id, new_user(), "treatment", ["101"])
    summary = framework.get_experiment_summary(experiment.id)
    assert summary["participants"] == {"control": 0, "treatment": 3}
    assert summary["totalSamples"] == 3


# ── End to end ───────────────────────────────────────────────────────────


def test_content_based_vs_neural_end_to_end(service, store):
    seed_taste_groups(store)
    service.trainer.train_model()
    assert service.trainer.wait(120)
    assert service.trainer.is_trained

    experiment = service.experiments.create_experiment(BASE_CONFIG)
    options = RecommendationOptions(limit=5, include_explanations=False)

    users = [new_user() for _ in range(1000)]
    for user in users:
        variant = service.experiments.assign(experiment.id, user)
        resp = service.engine.get_recommendations(user, options)
        assert resp.algorithm == experiment.algorithm_for(variant)
        assert resp.experiment_info.variant == variant
        service.tracker.track_interaction(user, "101", "click")

    results = service.experiments.analyze_experiment(experiment.id)
    metrics = results["metrics"]
    assert metrics["control"]["sampleSize"] > 0
    assert metrics["treatment"]["sampleSize"] > 0
    assert metrics["control"]["sampleSize"] + metrics["treatment"]["sampleSize"] == 1000
    assert (
        metrics["control"]["totalInteractions"] + metrics["treatment"]["totalInteractions"]
        == 1000
    )
