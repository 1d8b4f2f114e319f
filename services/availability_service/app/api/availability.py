"""HTTP routes for evaluating product availability."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request

from ..dependencies import get_availability_service
from ..schemas import (
    BatchEvaluationRequest,
    BatchEvaluationResponse,
    ConflictReportResponse,
    EvaluationResponse,
    PreviewRequest,
    UpcomingChangesResponse,
)
from ..services import AvailabilityService, RuleValidationError
from .rules import validation_failed
from .serialization import serialize_evaluation, serialize_rule, serialize_schedule

router = APIRouter(tags=["availability"])


@router.get("/products/{product_id}/availability", response_model=EvaluationResponse)
async def get_product_availability(
    product_id: str,
    at: datetime | None = None,
    service: AvailabilityService = Depends(get_availability_service),
) -> EvaluationResponse:
    evaluation = await service.evaluate_product(product_id, at=at)
    return serialize_evaluation(evaluation)


@router.post("/products/{product_id}/availability/preview", response_model=EvaluationResponse)
async def preview_availability(
    product_id: str,
    payload: PreviewRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> EvaluationResponse:
    try:
        evaluation = service.preview(product_id, payload.rules, at=payload.at)
    except RuleValidationError as exc:
        raise validation_failed(exc)
    return serialize_evaluation(evaluation)


@router.get("/products/{product_id}/availability/conflicts", response_model=ConflictReportResponse)
async def get_conflicts(
    product_id: str,
    service: AvailabilityService = Depends(get_availability_service),
) -> ConflictReportResponse:
    rules, conflicts = await service.detect_conflicts(product_id)
    return ConflictReportResponse.model_validate(
        {
            "rules": [serialize_rule(rule) for rule in rules],
            "conflicts": [
                {
                    "rule1Id": conflict.rule1.id,
                    "rule2Id": conflict.rule2.id,
                    "conflictType": conflict.conflict_type,
                }
                for conflict in conflicts
            ],
        }
    )


@router.get("/products/{product_id}/availability/upcoming", response_model=UpcomingChangesResponse)
async def get_upcoming_changes(
    product_id: str,
    request: Request,
    horizon_days: int | None = Query(default=None, alias="horizonDays", ge=1, le=366),
    service: AvailabilityService = Depends(get_availability_service),
) -> UpcomingChangesResponse:
    horizon = horizon_days or request.app.state.settings.availability_upcoming_horizon_days
    entries = await service.scheduler.get_upcoming_changes(product_id, horizon)
    return UpcomingChangesResponse(
        productId=product_id,
        horizonDays=horizon,
        items=[serialize_schedule(entry, product_id=product_id) for entry in entries],
    )


@router.post("/availability/evaluate", response_model=BatchEvaluationResponse)
async def evaluate_products(
    payload: BatchEvaluationRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> BatchEvaluationResponse:
    evaluations = await service.evaluate_products(payload.product_ids, at=payload.at)
    return BatchEvaluationResponse(
        items={product_id: serialize_evaluation(evaluation) for product_id, evaluation in evaluations.items()}
    )
