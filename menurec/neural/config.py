from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class NeuralConfig:
    min_training_samples: int = int(os.getenv("MENUREC_MIN_TRAINING_SAMPLES", "100"))
    embedding_dim: int = 16
    hidden_layers: tuple[int, ...] = (64, 32)
    max_iter: int = 300
    learning_rate: float = 0.001
    random_state: int = 42
    negative_ratio: float = 1.0
    retrain_interval_hours: float = 24.0


DEFAULT_NEURAL_CONFIG = NeuralConfig()
