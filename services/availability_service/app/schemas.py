"""Pydantic schemas for the availability service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import (
    DEFAULT_TIMEZONE,
    AvailabilityState,
    PreOrderSettings,
    Rule,
    RuleType,
    ViewOnlySettings,
    condition_for,
    ensure_utc,
)


class SeasonalConfigSchema(BaseModel):
    start_month: int | None = Field(default=None, alias="startMonth")
    start_day: int | None = Field(default=None, alias="startDay")
    end_month: int | None = Field(default=None, alias="endMonth")
    end_day: int | None = Field(default=None, alias="endDay")
    yearly: bool = True
    timezone: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class TimeRestrictionsSchema(BaseModel):
    days_of_week: list[int] | None = Field(default=None, alias="daysOfWeek")
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")
    timezone: str | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("start_time", "end_time")
    @classmethod
    def _strip_time(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip()


class PreOrderSettingsSchema(BaseModel):
    message: str | None = None
    expected_delivery_date: datetime | None = Field(default=None, alias="expectedDeliveryDate")
    deposit_required: bool = Field(default=False, alias="depositRequired")
    deposit_amount: Decimal | None = Field(default=None, alias="depositAmount", max_digits=12, decimal_places=2)
    max_quantity: int | None = Field(default=None, alias="maxQuantity")

    model_config = ConfigDict(populate_by_name=True)


class ViewOnlySettingsSchema(BaseModel):
    message: str | None = None
    show_price: bool = Field(default=True, alias="showPrice")
    allow_wishlist: bool = Field(default=False, alias="allowWishlist")
    notify_when_available: bool = Field(default=True, alias="notifyWhenAvailable")

    model_config = ConfigDict(populate_by_name=True)


class RuleDraft(BaseModel):
    """Candidate rule as submitted by an author.

    Only types are enforced here; completeness and semantic checks belong to
    ``validators.validate_rule`` so that every problem is reported at once.
    """

    product_id: str | None = Field(default=None, alias="productId")
    name: str | None = None
    description: str | None = None
    rule_type: RuleType | None = Field(default=None, alias="ruleType")
    state: AvailabilityState | None = None
    priority: int = 0
    enabled: bool = True
    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    seasonal_config: SeasonalConfigSchema | None = Field(default=None, alias="seasonalConfig")
    time_restrictions: TimeRestrictionsSchema | None = Field(default=None, alias="timeRestrictions")
    pre_order_settings: PreOrderSettingsSchema | None = Field(default=None, alias="preOrderSettings")
    view_only_settings: ViewOnlySettingsSchema | None = Field(default=None, alias="viewOnlySettings")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name", "description", "product_id")
    @classmethod
    def _strip_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    def config_blocks(self) -> dict[str, dict[str, Any] | None]:
        """JSON-ready config blocks keyed by storage column name."""

        def _dump(block: BaseModel | None) -> dict[str, Any] | None:
            if block is None:
                return None
            return block.model_dump(mode="json", by_alias=True)

        return {
            "seasonal_config": _dump(self.seasonal_config),
            "time_restrictions": _dump(self.time_restrictions),
            "pre_order_settings": _dump(self.pre_order_settings),
            "view_only_settings": _dump(self.view_only_settings),
        }

    def to_rule(
        self,
        *,
        product_id: str | None = None,
        rule_id: int | None = None,
        created_at: datetime | None = None,
        default_timezone: str = DEFAULT_TIMEZONE,
    ) -> Rule:
        """Build the engine's view of this draft; call only on validated drafts."""

        if self.rule_type is None or self.state is None:
            raise ValueError("draft is missing rule type or state")
        blocks = self.config_blocks()
        pre_order = blocks["pre_order_settings"]
        view_only = blocks["view_only_settings"]
        return Rule(
            id=rule_id,
            product_id=product_id or self.product_id or "",
            name=self.name or "",
            description=self.description,
            state=self.state,
            condition=condition_for(
                self.rule_type,
                seasonal_config=blocks["seasonal_config"],
                time_restrictions=blocks["time_restrictions"],
                default_timezone=default_timezone,
            ),
            priority=self.priority,
            enabled=self.enabled,
            start_date=ensure_utc(self.start_date),
            end_date=ensure_utc(self.end_date),
            pre_order_settings=PreOrderSettings.from_mapping(pre_order) if pre_order else None,
            view_only_settings=ViewOnlySettings.from_mapping(view_only) if view_only else None,
            created_at=created_at,
        )


class RuleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    rule_type: RuleType | None = Field(default=None, alias="ruleType")
    state: AvailabilityState | None = None
    priority: int | None = None
    enabled: bool | None = None
    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    seasonal_config: SeasonalConfigSchema | None = Field(default=None, alias="seasonalConfig")
    time_restrictions: TimeRestrictionsSchema | None = Field(default=None, alias="timeRestrictions")
    pre_order_settings: PreOrderSettingsSchema | None = Field(default=None, alias="preOrderSettings")
    view_only_settings: ViewOnlySettingsSchema | None = Field(default=None, alias="viewOnlySettings")

    model_config = ConfigDict(populate_by_name=True)


class BulkRuleEntry(RuleDraft):
    id: int | None = None


class BulkAvailabilityRequest(BaseModel):
    product_ids: list[str] | None = Field(default=None, alias="productIds")
    operation: str | None = None
    rules: list[BulkRuleEntry] | None = None

    model_config = ConfigDict(populate_by_name=True)


class PreviewRequest(BaseModel):
    rules: list[RuleDraft] = Field(default_factory=list)
    at: datetime | None = None


class BatchEvaluationRequest(BaseModel):
    product_ids: list[str] = Field(alias="productIds", min_length=1, max_length=100)
    at: datetime | None = None

    model_config = ConfigDict(populate_by_name=True)


class ValidationErrorResponse(BaseModel):
    message: str
    errors: list[str]


class RuleResponse(BaseModel):
    id: int | None = None
    product_id: str = Field(alias="productId")
    name: str
    description: str | None = None
    rule_type: RuleType = Field(alias="ruleType")
    state: AvailabilityState
    priority: int
    enabled: bool
    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    seasonal_config: dict[str, Any] | None = Field(default=None, alias="seasonalConfig")
    time_restrictions: dict[str, Any] | None = Field(default=None, alias="timeRestrictions")
    pre_order_settings: dict[str, Any] | None = Field(default=None, alias="preOrderSettings")
    view_only_settings: dict[str, Any] | None = Field(default=None, alias="viewOnlySettings")
    created_by: str | None = Field(default=None, alias="createdBy")
    updated_by: str | None = Field(default=None, alias="updatedBy")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class RuleListResponse(BaseModel):
    items: list[RuleResponse]
    total: int


class NextStateChangeResponse(BaseModel):
    date: datetime
    new_state: AvailabilityState = Field(alias="newState")
    rule_id: int | None = Field(default=None, alias="ruleId")
    rule_name: str = Field(alias="ruleName")

    model_config = ConfigDict(populate_by_name=True)


class EvaluationResponse(BaseModel):
    product_id: str = Field(alias="productId")
    current_state: AvailabilityState = Field(alias="currentState")
    applied_rules: list[RuleResponse] = Field(alias="appliedRules")
    computed_at: datetime = Field(alias="computedAt")
    next_state_change: NextStateChangeResponse | None = Field(default=None, alias="nextStateChange")

    model_config = ConfigDict(populate_by_name=True)


class BatchEvaluationResponse(BaseModel):
    items: dict[str, EvaluationResponse]


class ConflictEntry(BaseModel):
    rule1_id: int | None = Field(alias="rule1Id")
    rule2_id: int | None = Field(alias="rule2Id")
    conflict_type: Literal["priority", "date_overlap"] = Field(alias="conflictType")

    model_config = ConfigDict(populate_by_name=True)


class ConflictReportResponse(BaseModel):
    rules: list[RuleResponse]
    conflicts: list[ConflictEntry]


class RuleStatisticsResponse(BaseModel):
    total_rules: int = Field(alias="totalRules")
    active_rules: int = Field(alias="activeRules")
    rules_by_type: dict[str, int] = Field(alias="rulesByType")
    rules_by_state: dict[str, int] = Field(alias="rulesByState")

    model_config = ConfigDict(populate_by_name=True)


class BulkOperationResponse(BaseModel):
    operation: str
    rules: list[RuleResponse] = Field(default_factory=list)
    deleted_count: int = Field(default=0, alias="deletedCount")

    model_config = ConfigDict(populate_by_name=True)


class ScheduleEntryResponse(BaseModel):
    id: int
    rule_id: int = Field(alias="ruleId")
    product_id: str | None = Field(default=None, alias="productId")
    scheduled_at: datetime = Field(alias="scheduledAt")
    transition: str
    processed: bool
    processed_at: datetime | None = Field(default=None, alias="processedAt")
    error_message: str | None = Field(default=None, alias="errorMessage")

    model_config = ConfigDict(populate_by_name=True)


class UpcomingChangesResponse(BaseModel):
    product_id: str = Field(alias="productId")
    horizon_days: int = Field(alias="horizonDays")
    items: list[ScheduleEntryResponse]

    model_config = ConfigDict(populate_by_name=True)


class ProcessingResultResponse(BaseModel):
    job_id: str = Field(alias="jobId")
    processed: int
    failed: int
    cleaned_up: int = Field(alias="cleanedUp")
    rescheduled: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_seconds: float = Field(alias="durationSeconds")

    model_config = ConfigDict(populate_by_name=True)


class JobStatusResponse(BaseModel):
    is_running: bool = Field(alias="isRunning")
    current_job_id: str | None = Field(default=None, alias="currentJobId")
    last_run: datetime | None = Field(default=None, alias="lastRun")
    last_result: ProcessingResultResponse | None = Field(default=None, alias="lastResult")

    model_config = ConfigDict(populate_by_name=True)


class RescheduleResponse(BaseModel):
    rescheduled: int


class CleanupResponse(BaseModel):
    deleted: int
