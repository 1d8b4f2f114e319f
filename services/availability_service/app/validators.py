"""Authoring-time validation for availability rules.

Validators never raise. They return every violation they find so an author can
fix a rule in one pass; the caller decides whether to block persistence.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from .domain import AvailabilityState, RuleType, ensure_utc
from .schemas import BulkAvailabilityRequest, RuleDraft, SeasonalConfigSchema, TimeRestrictionsSchema

MIN_PRIORITY = 0
MAX_PRIORITY = 1000
MAX_BULK_PRODUCTS = 100
BULK_OPERATIONS = ("create", "update", "delete")

_TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
_LEAP_REFERENCE_YEAR = 2024


@dataclass(slots=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def format_validation_errors(exc: ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location}: {error.get('msg', 'invalid value')}" if location else error.get("msg", ""))
    return messages


def _shift_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 shifted into a non-leap year.
        return value.replace(year=value.year + years, day=28)


def is_valid_timezone(name: str | None) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def is_valid_month_day(month: int, day: int) -> bool:
    try:
        date(_LEAP_REFERENCE_YEAR, month, day)
    except ValueError:
        return False
    return True


def is_valid_time(value: str | None) -> bool:
    return bool(value) and _TIME_PATTERN.match(value) is not None


def validate_structure(draft: RuleDraft, product_id: str | None = None) -> list[str]:
    errors: list[str] = []
    if not draft.name:
        errors.append("Rule name is required")
    if draft.rule_type is None:
        errors.append("Rule type is required")
    if draft.state is None:
        errors.append("Rule state is required")
    if product_id is None and draft.product_id is None:
        errors.append("Product reference is required")
    elif product_id is not None and draft.product_id is not None and draft.product_id != product_id:
        errors.append("Rule product does not match the target product")

    if draft.rule_type is RuleType.SEASONAL and draft.seasonal_config is not None:
        config = draft.seasonal_config
        missing = [
            label
            for label, value in (
                ("startMonth", config.start_month),
                ("startDay", config.start_day),
                ("endMonth", config.end_month),
                ("endDay", config.end_day),
            )
            if value is None
        ]
        if missing:
            errors.append(f"Seasonal configuration is missing {', '.join(missing)}")
    if draft.rule_type is RuleType.TIME_BASED and draft.time_restrictions is not None:
        restrictions = draft.time_restrictions
        missing = [
            label
            for label, value in (
                ("daysOfWeek", restrictions.days_of_week),
                ("startTime", restrictions.start_time),
                ("endTime", restrictions.end_time),
            )
            if value is None
        ]
        if missing:
            errors.append(f"Time restrictions are missing {', '.join(missing)}")
    return errors


def validate_date_range(draft: RuleDraft, now: datetime) -> list[str]:
    errors: list[str] = []
    start = ensure_utc(draft.start_date)
    end = ensure_utc(draft.end_date)
    if start is not None and end is not None and start >= end:
        errors.append("Start date must be before end date")
    if start is not None and start < _shift_years(now, -2):
        errors.append("Start date cannot be more than 2 years in the past")
    if end is not None and end > _shift_years(now, 5):
        errors.append("End date cannot be more than 5 years in the future")
    return errors


def validate_seasonal_config(config: SeasonalConfigSchema | None) -> list[str]:
    if config is None:
        return []
    errors: list[str] = []
    if config.start_month is not None and config.start_day is not None:
        if not is_valid_month_day(config.start_month, config.start_day):
            errors.append("Invalid start date for seasonal rule")
    if config.end_month is not None and config.end_day is not None:
        if not is_valid_month_day(config.end_month, config.end_day):
            errors.append("Invalid end date for seasonal rule")
    if config.timezone is not None and not is_valid_timezone(config.timezone):
        errors.append(f"Invalid timezone: {config.timezone}")
    return errors


def validate_time_restrictions(restrictions: TimeRestrictionsSchema | None) -> list[str]:
    if restrictions is None:
        return []
    errors: list[str] = []
    if restrictions.days_of_week is not None:
        if not restrictions.days_of_week:
            errors.append("At least one day of the week must be selected")
        elif any(day < 0 or day > 6 for day in restrictions.days_of_week):
            errors.append("Days of week must be between 0 (Sunday) and 6 (Saturday)")
    # Overnight windows such as 22:00-06:00 are valid, so start/end order is not checked.
    if restrictions.start_time is not None and not is_valid_time(restrictions.start_time):
        errors.append("Invalid start time format (use HH:MM)")
    if restrictions.end_time is not None and not is_valid_time(restrictions.end_time):
        errors.append("Invalid end time format (use HH:MM)")
    if restrictions.timezone is not None and not is_valid_timezone(restrictions.timezone):
        errors.append(f"Invalid timezone: {restrictions.timezone}")
    return errors


def validate_pre_order_settings(draft: RuleDraft, now: datetime, *, skip_future_date_check: bool) -> list[str]:
    if draft.state is not AvailabilityState.PRE_ORDER:
        return []
    settings = draft.pre_order_settings
    if settings is None:
        return ["Pre-order rules must have pre-order settings configured"]
    errors: list[str] = []
    delivery = ensure_utc(settings.expected_delivery_date)
    if delivery is not None and not skip_future_date_check and delivery <= now:
        errors.append("Expected delivery date must be in the future")
    if settings.deposit_required and (settings.deposit_amount is None or settings.deposit_amount <= 0):
        errors.append("Deposit amount must be greater than 0")
    if settings.max_quantity is not None and settings.max_quantity <= 0:
        errors.append("Maximum quantity must be greater than 0")
    return errors


def validate_view_only_settings(draft: RuleDraft) -> list[str]:
    if draft.state is AvailabilityState.VIEW_ONLY and draft.view_only_settings is None:
        return ["View-only rules must have view-only settings configured"]
    return []


def validate_consistency(draft: RuleDraft) -> list[str]:
    errors: list[str] = []
    if draft.rule_type is RuleType.SEASONAL and draft.seasonal_config is None:
        errors.append("Seasonal rules must have seasonal configuration")
    if draft.rule_type is not RuleType.SEASONAL and draft.seasonal_config is not None:
        errors.append("Seasonal configuration is only allowed on seasonal rules")
    if draft.rule_type is RuleType.TIME_BASED and draft.time_restrictions is None:
        errors.append("Time-based rules must have time restrictions")
    if draft.rule_type is not RuleType.TIME_BASED and draft.time_restrictions is not None:
        errors.append("Time restrictions are only allowed on time-based rules")
    if draft.rule_type is RuleType.DATE_RANGE and draft.start_date is None and draft.end_date is None:
        errors.append("Date range rules must have at least a start or end date")
    if draft.priority < MIN_PRIORITY or draft.priority > MAX_PRIORITY:
        errors.append(f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")
    return errors


def validate_rule(
    rule: RuleDraft | Mapping[str, Any],
    product_id: str | None = None,
    *,
    skip_future_date_check: bool = False,
    now: datetime | None = None,
) -> ValidationResult:
    """Run every structural and semantic check against a candidate rule.

    ``skip_future_date_check`` lets an existing pre-order rule be re-enabled
    without its original delivery date having to still lie in the future.
    """

    if isinstance(rule, RuleDraft):
        draft = rule
    else:
        try:
            draft = RuleDraft.model_validate(rule)
        except ValidationError as exc:
            return ValidationResult(errors=format_validation_errors(exc))

    reference = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    errors: list[str] = []
    errors.extend(validate_structure(draft, product_id))
    errors.extend(validate_date_range(draft, reference))
    if draft.rule_type is RuleType.SEASONAL:
        errors.extend(validate_seasonal_config(draft.seasonal_config))
    if draft.rule_type is RuleType.TIME_BASED:
        errors.extend(validate_time_restrictions(draft.time_restrictions))
    errors.extend(validate_pre_order_settings(draft, reference, skip_future_date_check=skip_future_date_check))
    errors.extend(validate_view_only_settings(draft))
    errors.extend(validate_consistency(draft))
    return ValidationResult(errors=errors)


def validate_bulk_request(request: BulkAvailabilityRequest | Mapping[str, Any]) -> ValidationResult:
    """Check the envelope of a bulk authoring request (not the rules inside it)."""

    if isinstance(request, BulkAvailabilityRequest):
        bulk = request
    else:
        try:
            bulk = BulkAvailabilityRequest.model_validate(request)
        except ValidationError as exc:
            return ValidationResult(errors=format_validation_errors(exc))

    errors: list[str] = []
    if bulk.product_ids is None:
        errors.append("Product IDs must be provided as an array")
    elif not bulk.product_ids:
        errors.append("At least one product ID must be provided")
    elif len(bulk.product_ids) > MAX_BULK_PRODUCTS:
        errors.append(f"Cannot process more than {MAX_BULK_PRODUCTS} products at once")

    if bulk.operation not in BULK_OPERATIONS:
        errors.append("Operation must be create, update, or delete")

    if bulk.operation != "delete" and bulk.rules is None:
        errors.append("Rules must be provided as an array for create and update operations")
    return ValidationResult(errors=errors)
