"""Response payload builders shared by the availability routers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..domain import Evaluation, Rule, SeasonalWindow, TimeWindow
from ..jobs import JobResult, JobStatus
from ..models import AvailabilityRule, AvailabilitySchedule
from ..schemas import (
    EvaluationResponse,
    JobStatusResponse,
    ProcessingResultResponse,
    RuleResponse,
    ScheduleEntryResponse,
)


def serialize_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def serialize_rule(rule: AvailabilityRule) -> RuleResponse:
    return RuleResponse.model_validate(
        {
            "id": rule.id,
            "productId": rule.product_id,
            "name": rule.name,
            "description": rule.description,
            "ruleType": rule.rule_type,
            "state": rule.state,
            "priority": rule.priority,
            "enabled": rule.enabled,
            "startDate": serialize_datetime(rule.start_date),
            "endDate": serialize_datetime(rule.end_date),
            "seasonalConfig": rule.seasonal_config,
            "timeRestrictions": rule.time_restrictions,
            "preOrderSettings": rule.pre_order_settings,
            "viewOnlySettings": rule.view_only_settings,
            "createdBy": rule.created_by,
            "updatedBy": rule.updated_by,
            "createdAt": serialize_datetime(rule.created_at),
            "updatedAt": serialize_datetime(rule.updated_at),
        }
    )


def serialize_domain_rule(rule: Rule) -> RuleResponse:
    condition = rule.condition
    return RuleResponse.model_validate(
        {
            "id": rule.id,
            "productId": rule.product_id,
            "name": rule.name,
            "description": rule.description,
            "ruleType": rule.rule_type,
            "state": rule.state,
            "priority": rule.priority,
            "enabled": rule.enabled,
            "startDate": rule.start_date,
            "endDate": rule.end_date,
            "seasonalConfig": condition.to_dict() if isinstance(condition, SeasonalWindow) else None,
            "timeRestrictions": condition.to_dict() if isinstance(condition, TimeWindow) else None,
            "preOrderSettings": rule.pre_order_settings.to_dict() if rule.pre_order_settings else None,
            "viewOnlySettings": rule.view_only_settings.to_dict() if rule.view_only_settings else None,
            "createdBy": rule.created_by,
            "updatedBy": rule.updated_by,
            "createdAt": rule.created_at,
            "updatedAt": rule.updated_at,
        }
    )


def serialize_evaluation(evaluation: Evaluation) -> EvaluationResponse:
    next_change: dict[str, Any] | None = None
    if evaluation.next_state_change is not None:
        change = evaluation.next_state_change
        next_change = {
            "date": change.date,
            "newState": change.new_state,
            "ruleId": change.rule.id,
            "ruleName": change.rule.name,
        }
    return EvaluationResponse.model_validate(
        {
            "productId": evaluation.product_id,
            "currentState": evaluation.current_state,
            "appliedRules": [serialize_domain_rule(rule) for rule in evaluation.applied_rules],
            "computedAt": evaluation.computed_at,
            "nextStateChange": next_change,
        }
    )


def serialize_schedule(entry: AvailabilitySchedule, *, product_id: str | None = None) -> ScheduleEntryResponse:
    return ScheduleEntryResponse.model_validate(
        {
            "id": entry.id,
            "ruleId": entry.rule_id,
            "productId": product_id,
            "scheduledAt": serialize_datetime(entry.scheduled_at),
            "transition": entry.transition,
            "processed": entry.processed,
            "processedAt": serialize_datetime(entry.processed_at),
            "errorMessage": entry.error_message,
        }
    )


def serialize_job_result(result: JobResult) -> ProcessingResultResponse:
    return ProcessingResultResponse.model_validate(
        {
            "jobId": result.job_id,
            "processed": result.processed,
            "failed": result.failed,
            "cleanedUp": result.cleaned_up,
            "rescheduled": result.rescheduled,
            "errors": result.errors,
            "durationSeconds": result.duration_seconds,
        }
    )


def serialize_job_status(status: JobStatus) -> JobStatusResponse:
    return JobStatusResponse.model_validate(
        {
            "isRunning": status.is_running,
            "currentJobId": status.current_job_id,
            "lastRun": status.last_run,
            "lastResult": serialize_job_result(status.last_result) if status.last_result else None,
        }
    )
