from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ExperimentDefaults:
    traffic_split: float = 0.5
    duration_days: int = 14
    max_duration_days: int = 90
    target_metrics: tuple[str, ...] = ("ctr", "conversion_rate")
    significance_level: float = 0.05
    min_sample_size: int = 30


DEFAULT_EXPERIMENT_DEFAULTS = ExperimentDefaults()
