from __future__ import annotations

import logging
import os
import re
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .analytics.aggregator import compute_performance
from .analytics.store import get_events
from .errors import ExperimentNotFound, InternalError, RecommendationError, ValidationError
from .recommendations.context import normalize
from .recommendations.engine import RecommendationOptions
from .recommendations.models import (
    InteractionRequest,
    InteractionResponse,
    RecommendationResponse,
    TrendingResponse,
)
from .service import Service, build_service

logging.basicConfig(
    level=os.getenv("MENUREC_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_EXPERIMENT_ID = re.compile(r"^[0-9a-f]{16}$")

_service: Service | None = None


def get_service() -> Service:
    """Return the process-wide service, building it on first call."""
    global _service
    if _service is None:
        _service = build_service()
    return _service


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = get_service()
    service.engine.initialize()
    yield
    service.engine.shutdown()


app = FastAPI(title="Menu Recommendation API", version="1.0.0", lifespan=lifespan)


# ── Error handling ───────────────────────────────────────────────────────


@app.exception_handler(RecommendationError)
def recommendation_error(request: Request, exc: RecommendationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(p) for p in err["loc"] if p not in ("body", "query", "path")),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    error = ValidationError("Validation failed", details=details)
    return JSONResponse(status_code=400, content=error.to_dict())


@app.exception_handler(Exception)
def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalError("Internal server error")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# ── Path validation ──────────────────────────────────────────────────────


def _user_id(user_id: str) -> str:
    try:
        return str(uuid.UUID(user_id))
    except ValueError:
        raise ValidationError(
            "Invalid user ID format",
            code="INVALID_USER_ID",
            details=[{"field": "userId", "value": user_id}],
        ) from None


def _item_id(item_id: str) -> str:
    if item_id.isdigit() and int(item_id) > 0:
        return item_id
    try:
        return str(uuid.UUID(item_id))
    except ValueError:
        raise ValidationError(
            "Invalid item ID format",
            code="INVALID_ITEM_ID",
            details=[{"field": "itemId", "value": item_id}],
        ) from None


def _experiment_id(experiment_id: str) -> str:
    if not _EXPERIMENT_ID.match(experiment_id):
        raise ValidationError(
            "Invalid experiment ID format",
            code="INVALID_EXPERIMENT_ID",
            details=[{"field": "experimentId", "value": experiment_id}],
        )
    return experiment_id


def _options(
    limit: int = Query(10),
    algorithm: str | None = Query(None),
    context: str | None = Query(None),
    include_explanations: bool = Query(True, alias="includeExplanations"),
    diversity_factor: float = Query(0.3, alias="diversityFactor"),
    exclude_interacted: bool = Query(True, alias="excludeInteracted"),
) -> RecommendationOptions:
    return RecommendationOptions(
        limit=limit,
        algorithm=algorithm or None,
        context=context,
        include_explanations=include_explanations,
        diversity_factor=diversity_factor,
        exclude_interacted=exclude_interacted,
    )


# ── Service endpoints ────────────────────────────────────────────────────


@app.get("/health")
def health(service: Service = Depends(get_service)) -> JSONResponse:
    try:
        return JSONResponse(content=service.engine.health())
    except Exception as exc:
        logger.exception("Health check failed")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "isInitialized": False, "error": str(exc)},
        )


@app.get("/status")
def status(service: Service = Depends(get_service)) -> dict:
    return {"success": True, "data": service.engine.get_service_status()}


@app.get("/performance")
def performance(service: Service = Depends(get_service)) -> dict:
    data = compute_performance(get_events())
    data["interactionCounters"] = dict(service.tracker.counters)
    return {"success": True, "data": data}


# ── Recommendation endpoints ─────────────────────────────────────────────


@app.get("/users/{user_id}/recommendations", response_model=RecommendationResponse)
def recommendations(
    user_id: str,
    options: RecommendationOptions = Depends(_options),
    service: Service = Depends(get_service),
) -> RecommendationResponse:
    return service.engine.get_recommendations(_user_id(user_id), options)


@app.get("/users/{user_id}/recommendations/personalized", response_model=RecommendationResponse)
def personalized_recommendations(
    user_id: str,
    options: RecommendationOptions = Depends(_options),
    service: Service = Depends(get_service),
) -> RecommendationResponse:
    return service.engine.get_personalized_recommendations(_user_id(user_id), options)


@app.get("/users/{user_id}/recommendations/contextual", response_model=RecommendationResponse)
def contextual_recommendations(
    user_id: str,
    options: RecommendationOptions = Depends(_options),
    service: Service = Depends(get_service),
) -> RecommendationResponse:
    return service.engine.get_contextual_recommendations(_user_id(user_id), options)


@app.get("/trending", response_model=TrendingResponse)
def trending(
    limit: int = Query(10),
    time_period: str = Query("week", alias="timePeriod"),
    category: str | None = Query(None),
    meal_period: str | None = Query(None, alias="mealPeriod"),
    service: Service = Depends(get_service),
) -> TrendingResponse:
    service.engine.require_trending()
    return service.analyzer.get_trending_recommendations(
        limit=limit, time_period=time_period, category=category, meal_period=meal_period,
    )


@app.get("/seasonal", response_model=TrendingResponse)
def seasonal(
    limit: int = Query(10),
    meal_period: str | None = Query(None, alias="mealPeriod"),
    context: str | None = Query(None),
    service: Service = Depends(get_service),
) -> TrendingResponse:
    service.engine.require_trending()
    return service.analyzer.get_seasonal_recommendations(
        limit=limit, meal_period=meal_period, context=normalize(context),
    )


# ── Interaction endpoints ────────────────────────────────────────────────


@app.post(
    "/users/{user_id}/interactions/{item_id}",
    response_model=InteractionResponse,
    status_code=201,
)
def track_interaction(
    user_id: str,
    item_id: str,
    body: InteractionRequest,
    service: Service = Depends(get_service),
) -> InteractionResponse:
    interaction = service.tracker.track_interaction(
        _user_id(user_id),
        _item_id(item_id),
        body.interaction_type,
        body.interaction_value,
        body.metadata.model_dump(),
    )
    return InteractionResponse(
        status="recorded",
        user_id=interaction.user_id,
        item_id=interaction.item_id,
        interaction_type=interaction.interaction_type,
        recorded_at=interaction.timestamp,
    )


# ── Experiment endpoints ─────────────────────────────────────────────────


@app.post("/experiments", status_code=201)
def create_experiment(
    body: dict[str, Any] = Body(...),
    service: Service = Depends(get_service),
) -> dict:
    experiment = service.experiments.create_experiment(body)
    return {
        "success": True,
        "experimentId": experiment.id,
        "experiment": experiment.to_dict(),
    }


@app.get("/experiments")
def list_experiments(
    status: str | None = Query(None),
    service: Service = Depends(get_service),
) -> dict:
    experiments = service.experiments.list_experiments(status)
    return {"success": True, "experiments": [e.to_dict() for e in experiments]}


@app.get("/experiments/{experiment_id}")
def experiment_summary(experiment_id: str, service: Service = Depends(get_service)) -> dict:
    summary = service.experiments.get_experiment_summary(_experiment_id(experiment_id))
    if summary is None:
        raise ExperimentNotFound(details=[{"field": "experimentId", "value": experiment_id}])
    return {"success": True, "experiment": summary}


@app.get("/experiments/{experiment_id}/results")
def experiment_results(experiment_id: str, service: Service = Depends(get_service)) -> dict:
    results = service.experiments.analyze_experiment(_experiment_id(experiment_id))
    return {"success": True, "results": results}


@app.post("/experiments/{experiment_id}/stop")
def stop_experiment(experiment_id: str, service: Service = Depends(get_service)) -> dict:
    experiment = service.experiments.stop_experiment(_experiment_id(experiment_id))
    return {"success": True, "experiment": experiment.to_dict()}


# ── Background job endpoints ─────────────────────────────────────────────


@app.post("/neural/train", status_code=202)
def train_neural(service: Service = Depends(get_service)) -> dict:
    service.engine.require_neural()
    return {"success": True, **service.trainer.train_model()}


@app.get("/neural/status")
def neural_status(service: Service = Depends(get_service)) -> dict:
    service.engine.require_neural()
    return {"success": True, "data": service.trainer.get_training_status()}


@app.post("/trending/analyze", status_code=202)
def analyze_trending(service: Service = Depends(get_service)) -> dict:
    service.engine.require_trending()
    return {"success": True, **service.analyzer.analyze_trends()}


@app.get("/trending/status")
def trending_status(service: Service = Depends(get_service)) -> dict:
    service.engine.require_trending()
    return {"success": True, "data": service.analyzer.get_analysis_status()}
