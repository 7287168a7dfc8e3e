"""
Typed errors raised by the recommendation engine.

Every error carries a machine-readable ``code`` and the HTTP status class
the API layer reports it with.  Strategies and sub-components raise these;
the orchestrator decides whether to degrade or propagate.
"""
from __future__ import annotations

from typing import Any


class RecommendationError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        self.message = message or self.message
        if code:
            self.code = code
        self.details = details or []
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        if self.details:
            body["details"] = self.details
        return body


# ── Taxonomy ─────────────────────────────────────────────────────────────


class ValidationError(RecommendationError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Validation failed"


class NotFoundError(RecommendationError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"


class ConflictError(RecommendationError):
    status_code = 409
    code = "CONFLICT"
    message = "Conflicting operation"


class UnavailableError(RecommendationError):
    status_code = 503
    code = "UNAVAILABLE"
    message = "Component unavailable"


class InternalError(RecommendationError):
    pass


# ── Validation ───────────────────────────────────────────────────────────


class MissingUser(ValidationError):
    code = "MISSING_USER_ID"
    message = "User ID is required"


class InvalidLimit(ValidationError):
    code = "LIMIT_EXCEEDED"
    message = "Limit cannot exceed 50 recommendations"


class InvalidContext(ValidationError):
    code = "INVALID_CONTEXT"
    message = "Invalid context"


class InvalidAlgorithm(ValidationError):
    code = "INVALID_ALGORITHM"
    message = "Unknown recommendation algorithm"


class InvalidInteractionType(ValidationError):
    code = "INVALID_INTERACTION_TYPE"
    message = "Invalid interaction type"


class InvalidExperimentConfig(ValidationError):
    code = "INVALID_EXPERIMENT_CONFIG"
    message = "Invalid experiment configuration"


# ── Not found / conflict / unavailable ───────────────────────────────────


class ExperimentNotFound(NotFoundError):
    code = "EXPERIMENT_NOT_FOUND"
    message = "Experiment not found"


class ExperimentConflict(ConflictError):
    code = "EXPERIMENT_EXISTS"
    message = "Experiment with this name already exists"


class TrainingInProgress(ConflictError):
    code = "TRAINING_IN_PROGRESS"
    message = "Neural model training already in progress"


class AnalysisInProgress(ConflictError):
    code = "ANALYSIS_IN_PROGRESS"
    message = "Trend analysis already in progress"


class ModelUnavailable(UnavailableError):
    code = "MODEL_UNAVAILABLE"
    message = "Neural model is not trained"
