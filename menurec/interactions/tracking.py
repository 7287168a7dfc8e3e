from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import TYPE_CHECKING, Any, Mapping

from ..analytics.store import record_event
from ..errors import InvalidInteractionType, MissingUser, ValidationError
from ..jobs import utcnow
from .store import INTERACTION_TYPES, Interaction, InteractionStore

if TYPE_CHECKING:
    from ..ab_testing.experiments import ExperimentFramework

logger = logging.getLogger(__name__)


class InteractionTracker:
    """Validates and records user-item interactions.

    The append is the only step that can fail the call.  Experiment
    attribution and analytics run afterwards and only log their failures.
    """

    def __init__(
        self,
        store: InteractionStore,
        experiments: "ExperimentFramework | None" = None,
    ) -> None:
        self.store = store
        self.experiments = experiments
        self._lock = threading.Lock()
        self.counters: Counter[str] = Counter()

    @staticmethod
    def validate(interaction_type: str, value: float | None) -> float | None:
        if interaction_type not in INTERACTION_TYPES:
            raise InvalidInteractionType(
                details=[{
                    "field": "interactionType",
                    "value": interaction_type,
                    "allowed": list(INTERACTION_TYPES),
                }],
            )
        if interaction_type != "rate":
            return value
        if value is None:
            raise ValidationError(
                "Rating value is required for rate interactions",
                code="MISSING_INTERACTION_VALUE",
                details=[{"field": "interactionValue", "message": "Field required"}],
            )
        if not 1 <= value <= 5:
            raise ValidationError(
                "Rating value must be between 1 and 5",
                code="INVALID_INTERACTION_VALUE",
                details=[{"field": "interactionValue", "value": value}],
            )
        return float(value)

    def track_interaction(
        self,
        user_id: str,
        item_id: str,
        interaction_type: str,
        value: float | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Interaction:
        if not user_id:
            raise MissingUser()
        value = self.validate(interaction_type, value)
        metadata = metadata or {}

        interaction = self.store.append(Interaction(
            user_id=str(user_id),
            item_id=str(item_id),
            interaction_type=interaction_type,
            value=value,
            timestamp=utcnow(),
            source=metadata.get("source") or "api",
            session_id=metadata.get("session_id"),
            recommendation_id=metadata.get("recommendation_id"),
            position=metadata.get("position"),
        ))
        self._after_append(interaction)
        return interaction

    def _after_append(self, interaction: Interaction) -> None:
        with self._lock:
            self.counters[interaction.interaction_type] += 1

        if self.experiments is not None:
            try:
                self.experiments.attribute_interaction(interaction)
            except Exception:
                logger.warning(
                    "Experiment attribution failed for %s/%s",
                    interaction.user_id, interaction.item_id, exc_info=True,
                )

        record_event("interaction", {
            "interaction_type": interaction.interaction_type,
            "source": interaction.source,
            "position": interaction.position,
        })
