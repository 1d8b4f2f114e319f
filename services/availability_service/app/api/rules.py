"""HTTP routes for authoring availability rules."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status

from ..dependencies import get_availability_service
from ..schemas import (
    BulkAvailabilityRequest,
    BulkOperationResponse,
    RuleDraft,
    RuleListResponse,
    RuleResponse,
    RuleStatisticsResponse,
    RuleUpdate,
)
from ..services import AvailabilityService, RuleNotFound, RuleValidationError
from .serialization import serialize_rule

router = APIRouter(tags=["availability-rules"])


def validation_failed(exc: RuleValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"message": "Validation failed", "errors": exc.errors},
    )


def rule_not_found(exc: RuleNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post(
    "/products/{product_id}/availability-rules",
    response_model=RuleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_rule(
    product_id: str,
    payload: RuleDraft,
    actor: str | None = Header(default=None, alias="X-Actor-Id"),
    service: AvailabilityService = Depends(get_availability_service),
) -> RuleResponse:
    try:
        rule = await service.create_rule(product_id, payload, actor=actor)
    except RuleValidationError as exc:
        await service.repository.session.rollback()
        raise validation_failed(exc)
    return serialize_rule(rule)


@router.get("/products/{product_id}/availability-rules", response_model=RuleListResponse)
async def list_rules(
    product_id: str,
    service: AvailabilityService = Depends(get_availability_service),
) -> RuleListResponse:
    rules = await service.list_product_rules(product_id)
    return RuleListResponse(items=[serialize_rule(rule) for rule in rules], total=len(rules))


@router.get("/availability-rules/statistics", response_model=RuleStatisticsResponse)
async def rule_statistics(
    service: AvailabilityService = Depends(get_availability_service),
) -> RuleStatisticsResponse:
    stats = await service.statistics()
    return RuleStatisticsResponse.model_validate(stats)


@router.post("/availability-rules/bulk", response_model=BulkOperationResponse)
async def bulk_update(
    payload: BulkAvailabilityRequest,
    actor: str | None = Header(default=None, alias="X-Actor-Id"),
    service: AvailabilityService = Depends(get_availability_service),
) -> BulkOperationResponse:
    try:
        rules, deleted = await service.bulk_update(payload, actor=actor)
    except RuleValidationError as exc:
        await service.repository.session.rollback()
        raise validation_failed(exc)
    except RuleNotFound as exc:
        await service.repository.session.rollback()
        raise rule_not_found(exc)
    return BulkOperationResponse(
        operation=payload.operation or "",
        rules=[serialize_rule(rule) for rule in rules],
        deletedCount=deleted,
    )


@router.get("/availability-rules/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: int,
    service: AvailabilityService = Depends(get_availability_service),
) -> RuleResponse:
    try:
        rule = await service.get_rule(rule_id)
    except RuleNotFound as exc:
        raise rule_not_found(exc)
    return serialize_rule(rule)


@router.patch("/availability-rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: int,
    payload: RuleUpdate,
    actor: str | None = Header(default=None, alias="X-Actor-Id"),
    service: AvailabilityService = Depends(get_availability_service),
) -> RuleResponse:
    try:
        rule = await service.update_rule(rule_id, payload, actor=actor)
    except RuleNotFound as exc:
        raise rule_not_found(exc)
    except RuleValidationError as exc:
        await service.repository.session.rollback()
        raise validation_failed(exc)
    return serialize_rule(rule)


@router.delete("/availability-rules/{rule_id}")
async def delete_rule(
    rule_id: int,
    actor: str | None = Header(default=None, alias="X-Actor-Id"),
    service: AvailabilityService = Depends(get_availability_service),
) -> Response:
    try:
        await service.delete_rule(rule_id, actor=actor)
    except RuleNotFound as exc:
        raise rule_not_found(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
