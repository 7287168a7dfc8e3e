"""
A/B Testing Framework
=====================

Experiments compare two recommendation **algorithms** on live traffic.

What an experiment tests
------------------------
Each experiment names a **control** and a **treatment** algorithm (any of the
registered strategies, e.g. ``content_based`` vs ``neural``) and the metrics
it is judged on: click-through rate, conversion rate, user engagement and
revenue per user.

How variant assignment works
----------------------------
Assignment is a pure function of the experiment id and the user id::

    ratio = int(md5(f"{user_id}:{experiment_id}")[:8], 16) / 2**32
    variant = "treatment" if ratio < traffic_split else "control"

Nothing is stored, so the same user sees the same variant on every request,
in every process, after every restart.  A ratio exactly equal to the split
goes to control.  Users who fail the experiment's segment filters are not in
the experiment at all: they get the service's default algorithm and none of
their activity is counted.

How results are measured
------------------------
Every recommendation served under an experiment records an **impression**
sample; interactions of exposed users are attributed to their variant as
further samples.  Analysis snapshots the samples up to a fixed cutoff and
compares the arms with a two-proportion z-test (rates) or Welch's test
(revenue per user).  Each arm needs at least 30 users before a difference
can be called significant.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from ..errors import ExperimentConflict, ExperimentNotFound, InvalidExperimentConfig
from ..interactions.store import Interaction, InteractionStore
from ..jobs import utcnow
from ..recommendations.catalog import Catalog
from ..recommendations.context import field_errors
from . import stats
from .config import DEFAULT_EXPERIMENT_DEFAULTS, ExperimentDefaults
from .models import ExperimentConfig

logger = logging.getLogger(__name__)

VARIANTS = ("control", "treatment")
REQUIRED_FIELDS = ("name", "controlAlgorithm", "treatmentAlgorithm")

# Returns when a user registered, or None when unknown.
RegistrationLookup = Callable[[str], "datetime | None"]


# ---------------------------------------------------------------------------
# Variant assignment
# ---------------------------------------------------------------------------


def assignment_ratio(experiment_id: str, user_id: str) -> float:
    digest = hashlib.md5(f"{user_id}:{experiment_id}".encode()).hexdigest()
    return int(digest[:8], 16) / 2**32


def assign_variant(experiment_id: str, user_id: str, traffic_split: float) -> str:
    """Deterministic variant for ``user_id`` in ``experiment_id``."""
    if assignment_ratio(experiment_id, user_id) < traffic_split:
        return "treatment"
    return "control"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Experiment:
    id: str
    name: str
    control_algorithm: str
    treatment_algorithm: str
    traffic_split: float
    target_metrics: list[str]
    segment_filters: dict[str, Any]
    duration_days: int
    created_at: datetime
    ends_at: datetime
    description: str | None = None
    status: str = "created"
    stopped_at: datetime | None = None

    def algorithm_for(self, variant: str) -> str:
        return self.treatment_algorithm if variant == "treatment" else self.control_algorithm

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return self.status == "running" and now < self.ends_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "experimentId": self.id,
            "name": self.name,
            "description": self.description,
            "controlAlgorithm": self.control_algorithm,
            "treatmentAlgorithm": self.treatment_algorithm,
            "trafficSplit": self.traffic_split,
            "targetMetrics": list(self.target_metrics),
            "segmentFilters": dict(self.segment_filters),
            "durationDays": self.duration_days,
            "status": self.status,
            "createdAt": self.created_at.isoformat(),
            "endsAt": self.ends_at.isoformat(),
            "stoppedAt": self.stopped_at.isoformat() if self.stopped_at else None,
        }


@dataclass(frozen=True)
class MetricSample:
    experiment_id: str
    user_id: str
    variant: str
    metric: str
    value: float
    timestamp: datetime
    item_id: str | None = None


@dataclass(frozen=True)
class Assignment:
    algorithm: str
    experiment_id: str | None = None
    variant: str | None = None

    @property
    def in_experiment(self) -> bool:
        return self.experiment_id is not None


# ---------------------------------------------------------------------------
# Framework
# ---------------------------------------------------------------------------


class ExperimentFramework:
    def __init__(
        self,
        store: InteractionStore,
        catalog: Catalog,
        defaults: ExperimentDefaults = DEFAULT_EXPERIMENT_DEFAULTS,
        registration_lookup: RegistrationLookup | None = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.defaults = defaults
        self.registration_lookup = registration_lookup
        self._lock = threading.Lock()
        self._experiments: dict[str, Experiment] = {}
        self._samples: list[MetricSample] = []
        self._exposed: dict[tuple[str, str], set[str]] = {}

    # -- lifecycle ---------------------------------------------------------

    def _parse_config(self, config: ExperimentConfig | Mapping[str, Any]) -> ExperimentConfig:
        if isinstance(config, ExperimentConfig):
            return config
        if not isinstance(config, Mapping):
            raise InvalidExperimentConfig("Experiment configuration must be an object")

        aliases = {
            "controlAlgorithm": "control_algorithm",
            "treatmentAlgorithm": "treatment_algorithm",
        }
        missing = [
            name for name in REQUIRED_FIELDS
            if not config.get(name) and not config.get(aliases.get(name, name))
        ]
        if missing:
            raise InvalidExperimentConfig(
                "Missing required fields: name, controlAlgorithm, treatmentAlgorithm",
                details=[{"field": name, "message": "Field required"} for name in missing],
            )
        try:
            return ExperimentConfig.model_validate(dict(config))
        except PydanticValidationError as exc:
            raise InvalidExperimentConfig(details=field_errors(exc)) from exc

    def create_experiment(self, config: ExperimentConfig | Mapping[str, Any]) -> Experiment:
        parsed = self._parse_config(config)
        now = utcnow()
        with self._lock:
            for existing in self._experiments.values():
                if existing.name == parsed.name and existing.status == "running":
                    raise ExperimentConflict(
                        details=[{"field": "name", "value": parsed.name}],
                    )
            experiment_id = secrets.token_hex(8)
            while experiment_id in self._experiments:
                experiment_id = secrets.token_hex(8)

            experiment = Experiment(
                id=experiment_id,
                name=parsed.name,
                description=parsed.description,
                control_algorithm=parsed.control_algorithm,
                treatment_algorithm=parsed.treatment_algorithm,
                traffic_split=parsed.traffic_split,
                target_metrics=list(parsed.target_metrics),
                segment_filters=parsed.segment_filters.model_dump(
                    by_alias=True, exclude_none=True,
                ),
                duration_days=parsed.duration_days,
                created_at=now,
                ends_at=now + timedelta(days=parsed.duration_days),
            )
            self._experiments[experiment_id] = experiment
            experiment.status = "running"

        logger.info(
            "Created experiment %s (%s): %s vs %s, split %.2f",
            experiment.id,
            experiment.name,
            experiment.control_algorithm,
            experiment.treatment_algorithm,
            experiment.traffic_split,
        )
        return experiment

    def get_experiment(self, experiment_id: str) -> Experiment:
        with self._lock:
            experiment = self._experiments.get(experiment_id)
        if experiment is None:
            raise ExperimentNotFound(details=[{"field": "experimentId", "value": experiment_id}])
        return experiment

    def list_experiments(self, status: str | None = None) -> list[Experiment]:
        with self._lock:
            experiments = list(self._experiments.values())
        if status:
            experiments = [e for e in experiments if e.status == status]
        return experiments

    def stop_experiment(self, experiment_id: str) -> Experiment:
        experiment = self.get_experiment(experiment_id)
        with self._lock:
            if experiment.status == "stopped":
                return experiment
            experiment.status = "stopped"
            experiment.stopped_at = utcnow()
        logger.info("Stopped experiment %s (%s)", experiment.id, experiment.name)
        return experiment

    # -- assignment --------------------------------------------------------

    def assign(self, experiment_id: str, user_id: str) -> str:
        experiment = self.get_experiment(experiment_id)
        return assign_variant(experiment.id, user_id, experiment.traffic_split)

    def is_eligible(self, experiment: Experiment, user_id: str) -> bool:
        filters = experiment.segment_filters
        if not filters:
            return True

        min_interactions = filters.get("minInteractions")
        if min_interactions is not None and self.store.count_for_user(user_id) < min_interactions:
            return False

        preferred = filters.get("preferredCategories")
        if preferred:
            wanted = {c.lower() for c in preferred}
            seen = {
                (self.catalog.category_of(i.item_id) or "").lower()
                for i in self.store.for_user(user_id)
            }
            if not wanted & seen:
                return False

        days_ago = filters.get("registrationDaysAgo")
        if days_ago is not None:
            registered = self.registration_lookup(user_id) if self.registration_lookup else None
            if registered is None:
                return False
            if utcnow() - registered < timedelta(days=days_ago):
                return False

        return True

    def get_user_assignment(self, user_id: str, default_algorithm: str) -> Assignment:
        """Algorithm for ``user_id`` under the oldest active experiment admitting them."""
        now = utcnow()
        for experiment in self.list_experiments():
            if not experiment.is_active(now) or not self.is_eligible(experiment, user_id):
                continue
            variant = assign_variant(experiment.id, user_id, experiment.traffic_split)
            return Assignment(
                algorithm=experiment.algorithm_for(variant),
                experiment_id=experiment.id,
                variant=variant,
            )
        return Assignment(algorithm=default_algorithm)

    # -- metric collection -------------------------------------------------

    def record_impressions(
        self,
        experiment_id: str,
        user_id: str,
        variant: str,
        item_ids: Iterable[str],
    ) -> bool:
        shown = [str(i) for i in item_ids]
        with self._lock:
            experiment = self._experiments.get(experiment_id)
            if experiment is None or experiment.status != "running":
                return False
            self._samples.append(MetricSample(
                experiment_id=experiment_id,
                user_id=user_id,
                variant=variant,
                metric="impression",
                value=float(len(shown)),
                timestamp=utcnow(),
            ))
            self._exposed.setdefault((experiment_id, user_id), set()).update(shown)
        return True

    def _sample_value(self, interaction: Interaction) -> float:
        if interaction.interaction_type == "purchase":
            if interaction.value is not None:
                return float(interaction.value)
            row = self.catalog.get(interaction.item_id)
            return float(row["price"]) if row is not None else 0.0
        if interaction.interaction_type == "rate":
            return float(interaction.value or 0.0)
        return 1.0

    def attribute_interaction(self, interaction: Interaction) -> int:
        """Attribute an interaction to every running experiment the user saw.

        Returns the number of samples written.
        """
        written = 0
        with self._lock:
            for experiment in self._experiments.values():
                if experiment.status != "running":
                    continue
                if (experiment.id, interaction.user_id) not in self._exposed:
                    continue
                self._samples.append(MetricSample(
                    experiment_id=experiment.id,
                    user_id=interaction.user_id,
                    variant=assign_variant(
                        experiment.id, interaction.user_id, experiment.traffic_split,
                    ),
                    metric=interaction.interaction_type,
                    value=self._sample_value(interaction),
                    timestamp=interaction.timestamp,
                    item_id=interaction.item_id,
                ))
                written += 1
        return written

    def samples(self, experiment_id: str, until: datetime | None = None) -> list[MetricSample]:
        with self._lock:
            items = [s for s in self._samples if s.experiment_id == experiment_id]
        if until is not None:
            items = [s for s in items if s.timestamp <= until]
        return items

    # -- analysis ----------------------------------------------------------

    @staticmethod
    def _variant_metrics(frame: pd.DataFrame) -> dict[str, Any]:
        impressions = frame[frame["metric"] == "impression"]
        events = frame[frame["metric"] != "impression"]
        exposed = sorted(impressions["user_id"].unique())
        sample_size = len(exposed)
        shown = float(impressions["value"].sum()) if not impressions.empty else 0.0

        def count(metric: str) -> int:
            return int((events["metric"] == metric).sum())

        purchases = events[events["metric"] == "purchase"]
        purchasers = int(purchases["user_id"].nunique())
        active = int(events["user_id"].nunique())
        clicks = count("click")

        revenue_by_user = purchases.groupby("user_id")["value"].sum()
        revenue = [float(revenue_by_user.get(u, 0.0)) for u in exposed]

        return {
            "sampleSize": sample_size,
            "impressions": int(len(impressions)),
            "recommendationsShown": int(shown),
            "totalInteractions": int(len(events)),
            "activeUsers": active,
            "uniqueItems": int(events["item_id"].nunique()),
            "clicks": clicks,
            "conversions": count("purchase"),
            "purchasers": purchasers,
            "views": count("view"),
            "favorites": count("favorite"),
            "shares": count("share"),
            "ratings": count("rate"),
            "ctr": clicks / shown if shown else 0.0,
            "conversion_rate": purchasers / sample_size if sample_size else 0.0,
            "engagement_rate": active / sample_size if sample_size else 0.0,
            "revenue_per_user": sum(revenue) / sample_size if sample_size else 0.0,
            "interactions_per_user": len(events) / active if active else 0.0,
            "_revenue": revenue,
        }

    def _significance(
        self, metric: str, control: dict[str, Any], treatment: dict[str, Any],
    ) -> dict[str, Any]:
        n_c, n_t = control["sampleSize"], treatment["sampleSize"]
        if n_c < self.defaults.min_sample_size or n_t < self.defaults.min_sample_size:
            return {
                "isSignificant": False,
                "pValue": None,
                "confidenceInterval": None,
                "reason": "Insufficient sample size",
            }

        if metric == "revenue_per_user":
            result = stats.welch_t_test(control["_revenue"], treatment["_revenue"])
            baseline = control["revenue_per_user"]
        elif metric == "ctr":
            result = stats.two_proportion_z_test(
                control["clicks"], control["recommendationsShown"],
                treatment["clicks"], treatment["recommendationsShown"],
            )
            baseline = control["ctr"]
        elif metric == "conversion_rate":
            result = stats.two_proportion_z_test(
                control["purchasers"], n_c, treatment["purchasers"], n_t,
            )
            baseline = control["conversion_rate"]
        else:
            result = stats.two_proportion_z_test(
                control["activeUsers"], n_c, treatment["activeUsers"], n_t,
            )
            baseline = control["engagement_rate"]

        p_value = result.get("pValue")
        effect = result.get("effect")
        result["isSignificant"] = p_value is not None and p_value < self.defaults.significance_level
        result["improvement"] = (
            effect / baseline * 100 if effect is not None and baseline else None
        )
        return result

    @staticmethod
    def _decide(significance: dict[str, dict[str, Any]]) -> dict[str, Any]:
        significant = [m for m, r in significance.items() if r["isSignificant"]]
        if not significant:
            return {
                "decision": "inconclusive",
                "reason": "No statistically significant differences found",
                "recommendedAction": "continue_control",
                "significantMetrics": [],
            }
        improved = [m for m in significant if (significance[m].get("effect") or 0) > 0]
        if len(improved) > len(significant) / 2:
            return {
                "decision": "treatment_wins",
                "reason": f"Treatment shows significant improvement in {', '.join(improved)}",
                "recommendedAction": "adopt_treatment",
                "significantMetrics": improved,
            }
        return {
            "decision": "control_wins",
            "reason": "Control performs better or treatment shows negative impact",
            "recommendedAction": "keep_control",
            "significantMetrics": significant,
        }

    def analyze_experiment(self, experiment_id: str) -> dict[str, Any]:
        experiment = self.get_experiment(experiment_id)
        cutoff = utcnow()
        samples = self.samples(experiment_id, until=cutoff)

        frame = pd.DataFrame(
            [
                {
                    "user_id": s.user_id,
                    "variant": s.variant,
                    "metric": s.metric,
                    "value": s.value,
                    "item_id": s.item_id,
                }
                for s in samples
            ],
            columns=["user_id", "variant", "metric", "value", "item_id"],
        )
        metrics = {
            variant: self._variant_metrics(frame[frame["variant"] == variant])
            for variant in VARIANTS
        }
        significance = {
            metric: self._significance(metric, metrics["control"], metrics["treatment"])
            for metric in experiment.target_metrics
        }
        for variant_metrics in metrics.values():
            variant_metrics.pop("_revenue")

        return {
            "experimentId": experiment.id,
            "name": experiment.name,
            "status": "analyzed" if experiment.status == "stopped" else experiment.status,
            "analyzedAt": cutoff.isoformat(),
            "controlAlgorithm": experiment.control_algorithm,
            "treatmentAlgorithm": experiment.treatment_algorithm,
            "totalSamples": len(samples),
            "metrics": metrics,
            "significance": significance,
            "result": self._decide(significance),
        }

    def get_experiment_summary(self, experiment_id: str) -> dict[str, Any] | None:
        with self._lock:
            experiment = self._experiments.get(experiment_id)
        if experiment is None:
            return None
        samples = self.samples(experiment_id)
        users = {v: set() for v in VARIANTS}
        for s in samples:
            if s.metric == "impression":
                users[s.variant].add(s.user_id)
        return {
            **experiment.to_dict(),
            "participants": {v: len(u) for v, u in users.items()},
            "totalSamples": len(samples),
        }

    def clear(self) -> None:
        with self._lock:
            self._experiments.clear()
            self._samples.clear()
            self._exposed.clear()
