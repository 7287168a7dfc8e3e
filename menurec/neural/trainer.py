from __future__ import annotations

import logging
from typing import Any

from ..errors import TrainingInProgress
from ..interactions.store import InteractionStore
from ..jobs import SingleFlightJob, utcnow
from ..recommendations.catalog import Catalog
from .config import DEFAULT_NEURAL_CONFIG, NeuralConfig
from .model import NeuralModel

logger = logging.getLogger(__name__)


class TrainingController(SingleFlightJob):
    """Owns the neural model and its TrainingState.

    Scoring only reads ``model`` and ``is_trained``; a finished run swaps the
    new model in before the state flips to ``trained``.
    """

    job_name = "neural training"
    idle_state = "idle"
    running_state = "training"
    success_state = "trained"
    failed_state = "failed"
    conflict_error = TrainingInProgress

    def __init__(
        self,
        store: InteractionStore,
        catalog: Catalog,
        config: NeuralConfig = DEFAULT_NEURAL_CONFIG,
    ) -> None:
        super().__init__(interval_seconds=config.retrain_interval_hours * 3600)
        self.store = store
        self.catalog = catalog
        self.config = config
        self.model: NeuralModel | None = None
        self.model_version = 0
        self.training_samples = 0
        self.last_trained_at = None

    @property
    def is_trained(self) -> bool:
        return self.state == self.success_state and self.model is not None

    def run(self) -> None:
        interactions = self.store.to_frame(until=utcnow())
        model = NeuralModel(self.config).fit(interactions, self.catalog)
        with self._lock:
            self.model = model
            self.model_version += 1
            self.training_samples = model.training_samples
            self.last_trained_at = utcnow()

    def train_model(self) -> dict[str, Any]:
        ack = self.trigger()
        ack["message"] = "Neural network training started"
        return ack

    def get_training_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "status": self.state,
                "isTraining": self.is_running,
                "lastTrainedAt": (
                    self.last_trained_at.isoformat() if self.last_trained_at else None
                ),
                "lastError": self.last_error,
                "modelVersion": self.model_version,
                "trainingSamples": self.training_samples,
            }
